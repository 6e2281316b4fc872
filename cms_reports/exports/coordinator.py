"""
Export state machine and concurrency guard

The coordinator owns the two shared maps of the export pipeline: the active
fingerprint guard (fingerprint -> export id) and the state records
(export id -> ExportState). Only the orchestrator mutates them. All
mutation happens on the event loop thread between suspension points, so the
guard map itself provides mutual exclusion: a fingerprint is inserted before
the first await and removed in a finally block.
"""

import asyncio
import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..models import ExportFilters
from ..utils.config_loader import ExportSettings
from ..utils.errors import ExportCancelledError, ExportConcurrencyError

logger = logging.getLogger(__name__)


class ExportStatus(Enum):
    """Lifecycle of one export."""
    PREPARING = "preparing"
    FETCHING = "fetching"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportStatus.COMPLETED, ExportStatus.FAILED)


ALLOWED_TRANSITIONS = {
    ExportStatus.PREPARING: {ExportStatus.FETCHING, ExportStatus.FAILED},
    ExportStatus.FETCHING: {ExportStatus.GENERATING, ExportStatus.FAILED},
    ExportStatus.GENERATING: {ExportStatus.COMPLETED, ExportStatus.FAILED},
    ExportStatus.COMPLETED: set(),
    ExportStatus.FAILED: set(),
}


@dataclass
class ExportState:
    """Progress record of one export, retained briefly after it terminates."""
    id: str
    fingerprint: str
    format: str
    start_time: float
    status: ExportStatus = ExportStatus.PREPARING
    progress: str = "Preparing export..."
    updated_at: float = 0.0
    completed_at: Optional[float] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data['status'] = self.status.value
        return data


@dataclass
class SweepResult:
    """Outcome of one recovery sweep."""
    purged: List[str] = field(default_factory=list)
    abandoned: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.purged) + len(self.abandoned)


class ExportCoordinator:
    """Deduplicates in-flight exports and tracks their state."""

    def __init__(
        self,
        settings: Optional[ExportSettings] = None,
        active: Optional[Dict[str, str]] = None,
        states: Optional[Dict[str, ExportState]] = None,
        clock: Callable[[], float] = time.time
    ):
        self.settings = settings or ExportSettings()
        self.active: Dict[str, str] = active if active is not None else {}
        self.states: Dict[str, ExportState] = states if states is not None else {}
        self._clock = clock
        self._sweeper: Optional[asyncio.Task] = None

    def compute_fingerprint(
        self,
        role: str,
        fmt: str,
        filters: ExportFilters,
        at: Optional[float] = None,
        dataset_version: Optional[str] = None
    ) -> str:
        """
        Deterministic dedup key for an export request.

        Args:
            role: Requesting user's role
            fmt: Export format
            filters: Filters as requested
            at: Request time in seconds, defaults to the coordinator clock
            dataset_version: Optional dataset version or ETag; when given,
                requests against different data versions never collide

        Returns:
            Hex SHA-256 digest
        """
        bucket_seconds = self.settings.fingerprint_bucket_seconds
        moment = self._clock() if at is None else at
        bucket = int(moment // bucket_seconds) if bucket_seconds > 0 else 0

        key = {
            'role': role.upper(),
            'format': fmt,
            'filters': filters.serialize(),
            'bucket': bucket,
        }
        if dataset_version:
            key['dataset_version'] = dataset_version

        return hashlib.sha256(json.dumps(key, sort_keys=True).encode('utf-8')).hexdigest()

    def begin(self, fingerprint: str, fmt: str) -> ExportState:
        """
        Register a new export under a fingerprint.

        Raises:
            ExportConcurrencyError: If a non-terminal export owns the fingerprint.
                No state is created in that case.
        """
        existing_id = self.active.get(fingerprint)
        if existing_id is not None:
            existing = self.states.get(existing_id)
            if existing is not None and not existing.status.is_terminal:
                logger.info(f"Rejected duplicate export for fingerprint {fingerprint[:12]} (owned by {existing_id})")
                raise ExportConcurrencyError(
                    "This export is already in progress. Please wait for it to finish.",
                    format=fmt,
                    details={'export_id': existing_id}
                )
            # Guard left behind by a terminated or purged export
            del self.active[fingerprint]

        now = self._clock()
        state = ExportState(
            id=uuid.uuid4().hex,
            fingerprint=fingerprint,
            format=fmt,
            start_time=now,
            updated_at=now
        )
        self.active[fingerprint] = state.id
        self.states[state.id] = state
        logger.debug(f"Export {state.id} started ({fmt})")
        return state

    def transition(self, export_id: str, status: ExportStatus, progress: Optional[str] = None) -> ExportState:
        """
        Move an export to its next state.

        Raises:
            ExportCancelledError: If the state no longer exists (cancelled or swept)
            ValueError: If the transition is not allowed
        """
        state = self.states.get(export_id)
        if state is None:
            raise ExportCancelledError("Export was cancelled")

        if status not in ALLOWED_TRANSITIONS[state.status]:
            raise ValueError(f"Invalid export transition {state.status.value} -> {status.value}")

        state.status = status
        state.updated_at = self._clock()
        if progress is not None:
            state.progress = progress
        if status.is_terminal:
            state.completed_at = state.updated_at

        logger.debug(f"Export {export_id} -> {status.value}: {state.progress}")
        return state

    def complete(self, export_id: str, progress: str) -> Optional[ExportState]:
        if export_id not in self.states:
            return None
        return self.transition(export_id, ExportStatus.COMPLETED, progress)

    def fail(self, export_id: str, progress: str, error_kind: Optional[str] = None) -> Optional[ExportState]:
        """Mark an export failed. Exports already removed or terminated are left alone."""
        state = self.states.get(export_id)
        if state is None or state.status.is_terminal:
            return state
        state.error_kind = error_kind
        return self.transition(export_id, ExportStatus.FAILED, progress)

    def is_running(self, export_id: str) -> bool:
        state = self.states.get(export_id)
        return state is not None and not state.status.is_terminal

    def release(self, fingerprint: str, export_id: str) -> None:
        """Drop the fingerprint guard if it still belongs to this export."""
        if self.active.get(fingerprint) == export_id:
            del self.active[fingerprint]

    def cancel(self, fingerprint: str) -> bool:
        """
        Cancel the in-flight export owning a fingerprint.

        Deletes the state and its guard. Work already in progress is not
        interrupted; the orchestrator notices at its next checkpoint.

        Returns:
            True if a non-terminal export was cancelled
        """
        export_id = self.active.get(fingerprint)
        if export_id is None:
            return False

        state = self.states.get(export_id)
        if state is not None and state.status.is_terminal:
            return False

        self.states.pop(export_id, None)
        del self.active[fingerprint]
        logger.info(f"Cancelled export {export_id}")
        return True

    def get_state(self, export_id: str) -> Optional[ExportState]:
        return self.states.get(export_id)

    def get_state_by_fingerprint(self, fingerprint: str) -> Optional[ExportState]:
        export_id = self.active.get(fingerprint)
        return self.states.get(export_id) if export_id else None

    def list_states(self) -> List[ExportState]:
        return sorted(self.states.values(), key=lambda s: s.start_time)

    def sweep(self, now: Optional[float] = None) -> SweepResult:
        """
        Purge expired terminal states and reclaim stuck exports.

        Terminal states older than the retention window are deleted.
        Non-terminal states older than the staleness threshold are treated as
        abandoned: their state and guard are removed so the fingerprint can
        be used again.
        """
        now = self._clock() if now is None else now
        retention = self.settings.completed_retention_seconds
        stale_after = self.settings.stale_threshold_seconds
        result = SweepResult()

        for export_id, state in list(self.states.items()):
            if state.status.is_terminal:
                finished = state.completed_at if state.completed_at is not None else state.updated_at
                if now - finished >= retention:
                    del self.states[export_id]
                    result.purged.append(export_id)
            elif now - state.start_time >= stale_after:
                del self.states[export_id]
                self.release(state.fingerprint, export_id)
                result.abandoned.append(export_id)
                logger.warning(
                    f"Export {export_id} abandoned after {now - state.start_time:.0f}s in {state.status.value}"
                )

        for fingerprint, export_id in list(self.active.items()):
            if export_id not in self.states:
                del self.active[fingerprint]

        if result.total:
            logger.info(f"Export sweep purged {len(result.purged)}, reclaimed {len(result.abandoned)}")
        return result

    def start_sweeper(self) -> asyncio.Task:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self) -> None:
        interval = self.settings.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.sweep()
