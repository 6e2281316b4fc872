"""
Client for the complaint export data endpoint.

Responses are validated against ExportPayload immediately on receipt; any
shape mismatch is a transient failure rather than silently defaulted data.
"""

import copy
import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

import aiohttp
from pydantic import ValidationError

from ..models import ExportDataSet, ExportFilters, ExportPayload
from ..utils.config_loader import ExportSettings
from ..utils.errors import ExportTransientError, classify_http_status, handle_export_error

logger = logging.getLogger(__name__)


def parse_payload(body: Any) -> ExportDataSet:
    """
    Validate a decoded response body.

    Raises:
        ExportTransientError: If the body does not match the expected schema
            or the endpoint reports a failure
    """
    try:
        payload = ExportPayload.model_validate(body)
    except ValidationError as e:
        logger.error(f"Unexpected export payload: {e.error_count()} validation errors")
        raise ExportTransientError(
            "Unexpected response format from the report endpoint. Please try again.",
            details={'errors': e.error_count()}
        ) from e

    if not payload.success:
        raise ExportTransientError(payload.message or "The report endpoint could not prepare the data.")
    return payload.data


class ComplaintDataClient:
    """Fetches role/ward-scoped complaint data for exports."""

    def __init__(
        self,
        settings: ExportSettings,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.settings = settings
        self._clock = clock
        self.session = session
        self._owns_session = session is None
        self._cache: Dict[str, Tuple[float, ExportDataSet]] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()
        self.session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self.session

    def _headers(self) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.settings.api_token:
            headers['Authorization'] = f"Bearer {self.settings.api_token}"
        return headers

    async def fetch_export_data(
        self,
        filters: ExportFilters,
        role: Optional[str] = None,
        user_ward: Optional[str] = None
    ) -> ExportDataSet:
        """
        Fetch complaints matching already-scoped filters.

        Args:
            filters: Filters scoped to the requesting user's ward
            role: Requesting user's role, part of the cache key
            user_ward: Requesting user's ward, part of the cache key

        Returns:
            A private deep copy of the dataset; the cached entry is never shared

        Raises:
            ExportPermissionError: On 401/403
            ExportTransientError: On other error statuses, connection failures
                or malformed payloads
        """
        params = filters.to_query_params()
        cache_key = json.dumps({'params': params, 'role': role, 'ward': user_ward}, sort_keys=True)

        cached = self._cache.get(cache_key)
        if cached is not None and self._clock() - cached[0] < self.settings.response_cache_seconds:
            logger.debug(f"Using cached export data for {params}")
            return copy.deepcopy(cached[1])

        url = self.settings.export_url
        session = self._get_session()
        try:
            async with session.get(url, params=params, headers=self._headers()) as response:
                if response.status >= 300:
                    logger.error(f"Export data request failed with HTTP {response.status}")
                    raise classify_http_status(response.status)
                try:
                    body = await response.json(content_type=None)
                except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
                    raise ExportTransientError(
                        "The report endpoint returned an unreadable response. Please try again."
                    ) from e
        except aiohttp.ClientError as e:
            logger.error(f"Error fetching export data from {url}: {e}")
            raise handle_export_error(e) from e

        dataset = parse_payload(body)
        self._store(cache_key, dataset)
        logger.info(f"Fetched {len(dataset.complaints)} complaints for export")
        return copy.deepcopy(dataset)

    def _store(self, cache_key: str, dataset: ExportDataSet) -> None:
        """Cache a dataset, evicting entries that have already expired."""
        ttl = self.settings.response_cache_seconds
        now = self._clock()
        for key in [k for k, (stored_at, _) in self._cache.items() if now - stored_at >= ttl]:
            del self._cache[key]
        if ttl > 0:
            self._cache[cache_key] = (now, dataset)

    def invalidate_cache(self) -> None:
        self._cache.clear()
