"""
Delivery of generated export artifacts to the download directory.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Union

from ..exporters.base import ExportArtifact

logger = logging.getLogger(__name__)


class FileDownloadDelivery:
    """Writes artifacts atomically so a failed export never leaves a partial file."""

    def __init__(self, download_dir: Union[str, Path] = "downloads"):
        self.download_dir = Path(download_dir)

    def deliver(self, artifact: ExportArtifact) -> Path:
        """
        Write an artifact into the download directory.

        The content goes to a temporary file in the same directory first and
        is moved into place with os.replace.

        Returns:
            Path of the delivered file
        """
        self.download_dir.mkdir(parents=True, exist_ok=True)
        target = self.download_dir / artifact.filename

        fd, temp_path = tempfile.mkstemp(dir=self.download_dir, prefix='.', suffix='.part')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(artifact.content)
            os.replace(temp_path, target)
        except OSError:
            self._discard(temp_path)
            raise

        logger.info(f"Delivered {artifact.format} export to {target} ({artifact.size} bytes)")
        return target

    def _discard(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove temporary export file {path}: {e}")

    def list_downloads(self) -> List[Path]:
        if not self.download_dir.exists():
            return []
        return sorted(p for p in self.download_dir.iterdir() if p.is_file() and not p.name.startswith('.'))
