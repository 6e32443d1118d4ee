"""
Upstream media-management API client

One authenticated GET per feed type. Failures surface as UpstreamError;
retrying is left to the next scheduled refresh.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import httpx

from feedarr.core.config import settings
from feedarr.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

CALENDAR_DAYS_AHEAD = 30
QUEUE_PAGE_SIZE = 50


def normalize_records(payload: Any) -> List[Dict[str, Any]]:
    """
    Normalize an upstream payload into a list of records

    The queue endpoint answers either with a bare list or with a paginated
    envelope ({"page": 1, "records": [...]}); the other endpoints return lists.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        records = payload.get("records")
        if isinstance(records, list):
            return records
    return []


def default_calendar_params(today: Optional[date] = None) -> Dict[str, Any]:
    """Upcoming releases for the next 30 days, monitored movies only"""
    end = (today or date.today()) + timedelta(days=CALENDAR_DAYS_AHEAD)
    return {"end": end.isoformat(), "unmonitored": "false"}


def default_queue_params() -> Dict[str, Any]:
    return {"pageSize": QUEUE_PAGE_SIZE, "includeUnknownMovieItems": "false"}


class ArrApiClient:
    """Async client for the calendar, notification and queue endpoints"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.upstream_base_url
        self.api_key = settings.API_KEY if api_key is None else api_key
        self.timeout = timeout or settings.REQUEST_TIMEOUT
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"X-Api-Key": self.api_key, "Content-Type": "application/json"},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            async with self._client() as client:
                response = await client.get(path, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"API timeout: {path} after {self.timeout}s")
            raise UpstreamError(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"API transport error: {path}: {str(e)}")
            raise UpstreamError(f"Request to {path} failed: {e}") from e

        if not response.is_success:
            logger.error(f"API Error: {response.status_code} - {response.reason_phrase}")
            logger.error(f"URL: {response.request.url}")
            raise UpstreamError(
                f"Request to {path} returned {response.reason_phrase or 'an error'}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Request to {path} returned an invalid JSON body",
                status_code=response.status_code,
            ) from e

    async def fetch_calendar(self, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._get("/calendar", params=params or default_calendar_params())

    async def fetch_notifications(self) -> Any:
        return await self._get("/notification")

    async def fetch_queue(self, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._get("/queue", params=params or default_queue_params())

    async def check_connectivity(self) -> Dict[str, Dict[str, Any]]:
        """Probe each endpoint once; never raises"""
        results: Dict[str, Dict[str, Any]] = {}
        for name, path in (("calendar", "/calendar"), ("notification", "/notification"), ("queue", "/queue")):
            try:
                async with self._client() as client:
                    response = await client.get(path)
                entry: Dict[str, Any] = {"http_status": response.status_code}
                if response.is_success:
                    try:
                        entry["item_count"] = len(normalize_records(response.json()))
                    except ValueError:
                        entry["item_count"] = None
                results[name] = entry
            except httpx.HTTPError as e:
                results[name] = {"http_status": None, "error": str(e)}
        return results
