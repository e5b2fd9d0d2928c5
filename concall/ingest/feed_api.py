from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from concall.common.errors import UpstreamFetchError
from concall.common.logging import log_event

from .models import Announcement, DateRange, FeedEnvelope

logger = logging.getLogger(__name__)

# Fixed query for the "Earnings Call Transcript" subcategory; dates and page are set per call.
_FEED_QUERY: dict[str, str] = {
    "pageno": "1",
    "strCat": "Company Update",
    "strScrip": "",
    "strSearch": "P",
    "strType": "C",
    "subcategory": "Earnings Call Transcript",
}


class FeedClient(Protocol):
    """
    Read-only announcement source.

    Implementations return a single page of results for the range.
    """

    async def fetch(self, date_range: DateRange) -> list[Announcement]: ...


class BseFeedClient:
    def __init__(self, *, http: httpx.AsyncClient, base_url: str, referer: str) -> None:
        self._http = http
        self._base_url = base_url
        self._referer = referer

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json, text/plain, */*",
            "Referer": self._referer,
            "User-Agent": "Mozilla/5.0",
            "Sec-CH-UA": '"Google Chrome";v="141", "Not?A_Brand";v="8", "Chromium";v="141"',
            "Sec-CH-UA-Mobile": "?0",
            "Sec-CH-UA-Platform": '"macOS"',
        }

    async def fetch(self, date_range: DateRange) -> list[Announcement]:
        prev_date, to_date = date_range.feed_params()
        params = dict(_FEED_QUERY, strPrevDate=prev_date, strToDate=to_date)
        try:
            resp = await self._http.get(self._base_url, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise UpstreamFetchError(f"failed to fetch announcements: {e}") from e

        if resp.status_code != 200:
            raise UpstreamFetchError(f"announcement feed returned status {resp.status_code}")

        try:
            envelope = FeedEnvelope.model_validate_json(resp.content)
        except PydanticValidationError as e:
            raise UpstreamFetchError(f"failed to decode announcement feed: {e}") from e

        log_event(
            logger,
            "concall_ingest.feed_page",
            rows=len(envelope.table),
            row_count=envelope.row_count,
            prev_date=prev_date,
            to_date=to_date,
        )
        return list(envelope.table)
