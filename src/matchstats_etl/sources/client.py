from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from ..api_client import ApiClient, ApiConfig, RetryPolicy
from ..errors import SourceUnavailable
from ..logging_utils import log_json
from ..utils import nested, to_str
from .base import EVENTS, FIXTURE_FANOUT, LINEUPS, RawPage, ScopeQuery, SkippedPage, SourceSpec


class SourceClient:
    """Lazy, restartable page iterator over one upstream for one scope.

    Requests go through a single ``ApiClient`` so they share its rate limiter
    and retry policy. A page that still fails once retries are spent is
    yielded with ``error`` set (a ``SourceUnavailable``) and iteration moves
    on to the next page.
    """

    def __init__(
        self,
        spec: SourceSpec,
        api: ApiClient,
        logger: Optional[logging.Logger] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> None:
        self.spec = spec
        self.api = api
        self.logger = logger or logging.getLogger(__name__)
        self.cancel = cancel

    @classmethod
    def build(
        cls,
        spec: SourceSpec,
        api_key: Optional[str],
        rate_limit_ms: int,
        retry: RetryPolicy,
        logger: Optional[logging.Logger] = None,
        cancel: Optional[asyncio.Event] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SourceClient":
        api = ApiClient(
            ApiConfig(
                base_url=spec.base_url_for(api_key),
                timeout_seconds=spec.timeout_seconds,
                rate_limit_ms=rate_limit_ms,
                headers=spec.headers(api_key),
                retry=retry,
                transport=transport,
            )
        )
        if logger:
            api.set_logger(logger)
        return cls(spec, api, logger=logger, cancel=cancel)

    async def close(self) -> None:
        await self.api.close()

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    async def fetch_all(self, query: ScopeQuery, start_page: Optional[int] = None) -> AsyncIterator[RawPage]:
        async for listing in self._iter_listing(query, start_page):
            if self.spec.type != FIXTURE_FANOUT or listing.skipped:
                yield listing
                continue
            async for page in self._expand_listing(query, listing):
                yield page

    async def retry_skipped(self, query: ScopeQuery, skipped: Sequence[SkippedPage]) -> AsyncIterator[RawPage]:
        for entry in skipped:
            if self.cancelled:
                return
            if entry.match_id is not None:
                if entry.kind == LINEUPS:
                    yield await self.fetch_lineups(query, entry.match_id, page=entry.page)
                else:
                    yield await self.fetch_match(query, entry.match_id, page=entry.page)
                continue
            listing = await self.fetch_page(query, entry.page)
            if self.spec.type != FIXTURE_FANOUT or listing.skipped:
                yield listing
                continue
            async for page in self._expand_listing(query, listing):
                yield page

    async def _iter_listing(self, query: ScopeQuery, start_page: Optional[int]) -> AsyncIterator[RawPage]:
        spec = self.spec
        page = start_page if start_page is not None else spec.page_start
        fetched = 0
        consecutive_skips = 0
        while fetched < spec.max_pages:
            if self.cancelled:
                log_json(self.logger, "fetch_cancelled", source=spec.name, page=page)
                return
            raw = await self.fetch_page(query, page if spec.page_param else None)
            fetched += 1
            yield raw
            if raw.skipped:
                consecutive_skips += 1
                if not spec.page_param:
                    return
                if consecutive_skips >= spec.max_consecutive_skips:
                    log_json(
                        self.logger,
                        "pagination_abandoned",
                        level=logging.WARNING,
                        source=spec.name,
                        page=page,
                        consecutive_skips=consecutive_skips,
                    )
                    return
                page += spec.page_step
                continue
            consecutive_skips = 0
            if not raw.has_more:
                return
            page += spec.page_step
        log_json(self.logger, "pagination_cap_reached", level=logging.WARNING, source=spec.name, max_pages=spec.max_pages)

    async def _expand_listing(self, query: ScopeQuery, listing: RawPage) -> AsyncIterator[RawPage]:
        for fixture in listing.records:
            if self.cancelled:
                log_json(self.logger, "fetch_cancelled", source=self.spec.name, page=listing.page)
                return
            match_id = to_str(nested(fixture, *self.spec.fixture_id_path))
            if match_id is None:
                continue
            if not self._is_finished(fixture):
                continue
            yield await self.fetch_match(query, match_id, page=listing.page)
            if self.spec.lineups_path and not self.cancelled:
                yield await self.fetch_lineups(query, match_id, page=listing.page)

    def _is_finished(self, fixture: Dict[str, Any]) -> bool:
        if not self.spec.finished_statuses or not self.spec.fixture_status_path:
            return True
        status = to_str(nested(fixture, *self.spec.fixture_status_path))
        return status in self.spec.finished_statuses

    async def fetch_page(self, query: ScopeQuery, page: Optional[int]) -> RawPage:
        params = self.spec.list_params(query, page)
        try:
            payload = await self.api.get_json(self.spec.path, params=params)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return RawPage(source_id=self.spec.name, page=page)
            return self._unavailable(page, None, _describe(exc))
        except (httpx.HTTPError, ValueError) as exc:
            return self._unavailable(page, None, _describe(exc))
        body_error = _body_error(payload)
        if body_error:
            return self._unavailable(page, None, body_error)
        records = coerce_records(payload, self.spec.records_path)
        return RawPage(
            source_id=self.spec.name,
            page=page,
            records=records,
            has_more=self._has_more(payload, records, page),
        )

    async def fetch_match(self, query: ScopeQuery, match_id: str, page: Optional[int] = None) -> RawPage:
        spec = self.spec
        path = spec.events_path.format(match_id=match_id)
        params: Dict[str, Any] = {}
        if spec.events_match_param:
            params[spec.events_match_param] = match_id
        try:
            payload = await self.api.get_json(path, params=params)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return RawPage(source_id=spec.name, page=page, match_id=match_id)
            return self._unavailable(page, match_id, _describe(exc))
        except (httpx.HTTPError, ValueError) as exc:
            return self._unavailable(page, match_id, _describe(exc))
        body_error = _body_error(payload)
        if body_error:
            return self._unavailable(page, match_id, body_error)
        records = coerce_records(payload, spec.events_records_path)
        for rec in records:
            rec.setdefault("_match_id", match_id)
        return RawPage(source_id=spec.name, page=page, records=records, match_id=match_id)

    async def fetch_lineups(self, query: ScopeQuery, match_id: str, page: Optional[int] = None) -> RawPage:
        """One record per starting player, tagged ``_lineup`` for the normalizer."""
        spec = self.spec
        path = spec.lineups_path.format(match_id=match_id)
        params: Dict[str, Any] = {}
        if spec.events_match_param:
            params[spec.events_match_param] = match_id
        try:
            payload = await self.api.get_json(path, params=params)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return RawPage(source_id=spec.name, page=page, match_id=match_id, kind=LINEUPS)
            return self._unavailable(page, match_id, _describe(exc), kind=LINEUPS)
        except (httpx.HTTPError, ValueError) as exc:
            return self._unavailable(page, match_id, _describe(exc), kind=LINEUPS)
        body_error = _body_error(payload)
        if body_error:
            return self._unavailable(page, match_id, body_error, kind=LINEUPS)
        records = []
        for team in coerce_records(payload, spec.lineups_records_path):
            entries = nested(team, *spec.lineup_players_path)
            for entry in entries if isinstance(entries, list) else []:
                player = nested(entry, *spec.lineup_player_path) if spec.lineup_player_path else entry
                if not isinstance(player, dict):
                    continue
                records.append(
                    {
                        "_match_id": match_id,
                        "_lineup": True,
                        "team": nested(team, *spec.lineup_team_path) if spec.lineup_team_path else None,
                        "player": player,
                    }
                )
        return RawPage(source_id=spec.name, page=page, records=records, match_id=match_id, kind=LINEUPS)

    def _unavailable(self, page: Optional[int], match_id: Optional[str], reason: str, kind: str = EVENTS) -> RawPage:
        error = SourceUnavailable(self.spec.name, page if page is not None else -1, reason)
        log_json(
            self.logger,
            "page_skipped",
            level=logging.WARNING,
            source=self.spec.name,
            page=page,
            match_id=match_id,
            kind=kind,
            reason=error.reason,
        )
        return RawPage(source_id=self.spec.name, page=page, match_id=match_id, error=error, kind=kind)

    def _has_more(self, payload: Any, records: List[Dict[str, Any]], page: Optional[int]) -> bool:
        if not self.spec.page_param or not records:
            return False
        if isinstance(payload, dict):
            paging = payload.get("paging")
            if isinstance(paging, dict) and paging.get("current") is not None and paging.get("total") is not None:
                if int(paging["current"]) >= int(paging["total"]):
                    return False
            if payload.get("hasMore") is False:
                return False
            pagination = payload.get("pagination")
            if isinstance(pagination, dict):
                if pagination.get("hasNext") is False:
                    return False
                total = pagination.get("totalCount")
                if total is not None and page is not None and self.spec.page_param == "offset":
                    if page + len(records) >= int(total):
                        return False
        if self.spec.page_size and len(records) < self.spec.page_size:
            return False
        return True


def coerce_records(payload: Any, path: Sequence[str] = ()) -> List[Dict[str, Any]]:
    if payload is None:
        return []
    data = nested(payload, *path) if path else payload
    if isinstance(data, dict) and not path and isinstance(data.get("data"), list):
        data = data["data"]
    if isinstance(data, list):
        return [rec for rec in data if isinstance(rec, dict)]
    return []


def _body_error(payload: Any) -> Optional[str]:
    # API-Football reports quota and parameter problems inside a 200 body
    if isinstance(payload, dict):
        errors = payload.get("errors")
        if errors:
            return f"upstream errors: {errors}"
    return None


def _describe(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"
