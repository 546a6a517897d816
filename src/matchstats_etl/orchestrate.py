from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from .aggregate import PlayerStatLine, aggregate, top_players
from .api_client import ApiClient, ApiConfig, RetryPolicy
from .checkpoint import CheckpointStore
from .config import Config, RunSpec, get_api_key
from .dedupe import EventAccumulator
from .errors import InvalidEvent, PersistenceConflict
from .logging_utils import log_json
from .normalize import MatchEvent, normalize_event
from .persistence import PersistenceGateway
from .reconcile import OfficialFeedClient, ReconciliationReport, reconcile
from .s3_io import ReportWriter, new_run_id
from .sources import ScopeQuery, SkippedPage, SourceSpec, build_registry
from .sources.client import SourceClient

STATUS_OK = "ok"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _rate_limit(source: SourceSpec, spec: RunSpec) -> int:
    return source.rate_limit_ms if source.rate_limit_ms is not None else spec.rate_limit_ms


def _leaders(lines: List[PlayerStatLine], limit: int = 5) -> Dict[str, List[Dict[str, Any]]]:
    return {
        stat: [
            {"player_id": line.player_id, "player_name": line.player_name, stat: line.stat(stat)}
            for line in top_players(lines, stat, limit)
        ]
        for stat in ("goals", "assists")
    }


@dataclass
class ScopeResult:
    competition_id: str
    season_label: str
    status: str = STATUS_OK
    pages_fetched: int = 0
    events_fetched: int = 0
    invalid_events: int = 0
    duplicates_collapsed: int = 0
    events_written: int = 0
    stat_lines_written: int = 0
    reconciliation_diffs: int = 0
    ambiguous_matches: int = 0
    unmatched_official: int = 0
    skipped_pages: List[Dict[str, Any]] = field(default_factory=list)
    leaders: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.competition_id}/{self.season_label}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Orchestrator:
    def __init__(
        self,
        config: Config,
        logger: logging.Logger,
        gateway: Optional[PersistenceGateway] = None,
        checkpoints: Optional[CheckpointStore] = None,
        reports: Optional[ReportWriter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.logger = logger
        self.registry = build_registry(config.sources)
        self.gateway = gateway or PersistenceGateway.from_url(config.database_url)
        if checkpoints is None and config.checkpoints:
            checkpoints = CheckpointStore(config.region, config.checkpoints.get("table"))
        self.checkpoints = checkpoints
        if reports is None and config.report:
            reports = ReportWriter(
                config.report["bucket"],
                config.region,
                config.report.get("prefix", "meta"),
                max_attempts=int(config.report.get("max_attempts", 5)),
            )
        self.reports = reports
        self._cancel: Dict[str, asyncio.Event] = {}
        self._cancel_all = False
        self._run_id = new_run_id()
        # every event fetched by this run shares one ingestion time
        self._started = datetime.now(timezone.utc)
        self._summary: Dict[str, Any] = {"run_id": self._run_id, "started_at": self._started.isoformat()}
        self._max_scopes = int(config.pipeline.get("max_concurrent_scopes", 4))
        self._threshold = float(config.reconciliation.get("threshold", 0.8))

    @property
    def run_id(self) -> str:
        return self._run_id

    def request_cancel(self, scope: Optional[str] = None) -> None:
        """Stop fetching for one scope label (``"K1/2025"``), or for every scope."""
        if scope is None:
            self._cancel_all = True
            for event in self._cancel.values():
                event.set()
            return
        self._cancel_event(scope).set()

    def _cancel_event(self, label: str) -> asyncio.Event:
        event = self._cancel.setdefault(label, asyncio.Event())
        if self._cancel_all:
            event.set()
        return event

    async def run(
        self,
        specs: Sequence[RunSpec],
        reimport: bool = False,
        retry_skipped_only: bool = False,
        run_reconciliation: bool = True,
    ) -> Dict[str, Any]:
        await asyncio.to_thread(self.gateway.create_schema)
        gate = asyncio.Semaphore(self._max_scopes)

        async def _one(spec: RunSpec) -> ScopeResult:
            async with gate:
                return await self._guarded(
                    spec,
                    lambda result: self._sync_scope(spec, result, reimport, retry_skipped_only, run_reconciliation),
                )

        results = await asyncio.gather(*(_one(spec) for spec in specs))
        return await self._finalize_summary("sync", results)

    async def rebuild(self, specs: Sequence[RunSpec]) -> Dict[str, Any]:
        await asyncio.to_thread(self.gateway.create_schema)
        results = []
        for spec in specs:
            results.append(await self._guarded(spec, lambda result, spec=spec: self._rebuild_scope(spec, result)))
        return await self._finalize_summary("rebuild", results)

    async def reconcile_only(self, specs: Sequence[RunSpec]) -> Dict[str, Any]:
        results = []
        for spec in specs:
            results.append(await self._guarded(spec, lambda result, spec=spec: self._reconcile_scope(spec, result)))
        return await self._finalize_summary("reconcile", results)

    async def close(self) -> None:
        await asyncio.to_thread(self.gateway.dispose)

    async def _guarded(self, spec: RunSpec, work: Callable[[ScopeResult], Any]) -> ScopeResult:
        result = ScopeResult(spec.competition_id, spec.season_label)
        log_json(self.logger, "scope_start", scope=result.label, sources=spec.sources)
        try:
            await work(result)
        except Exception as exc:
            # one scope failing must not take its siblings down
            result.status = STATUS_FAILED
            result.error = f"{type(exc).__name__}: {exc}"
            self.logger.exception("scope_failed", extra={"extra": {"scope": result.label}})
        log_json(self.logger, "scope_done", **result.to_dict())
        return result

    async def _sync_scope(
        self,
        spec: RunSpec,
        result: ScopeResult,
        reimport: bool,
        retry_skipped_only: bool,
        run_reconciliation: bool,
    ) -> None:
        query = ScopeQuery(spec.competition_id, spec.season_label)
        cancel = self._cancel_event(spec.label)
        retry = RetryPolicy.from_config(self.config.pipeline.get("retry"), max_retries=spec.max_retries)
        keys = {name: get_api_key(name, {"api_key_env": self.registry[name].api_key_env}) for name in spec.sources}
        clients = [
            SourceClient.build(
                self.registry[name],
                keys[name],
                _rate_limit(self.registry[name], spec),
                retry,
                logger=self.logger,
                cancel=cancel,
                transport=self.transport,
            )
            for name in spec.sources
        ]
        try:
            collected = await asyncio.gather(
                *(self._collect(client, query, result, retry_skipped_only) for client in clients)
            )
        finally:
            for client in clients:
                await client.close()

        fetched: List[MatchEvent] = [ev for events, _ in collected for ev in events]
        for client, (_, skipped) in zip(clients, collected):
            result.skipped_pages.extend(asdict(s) for s in skipped)
            await self._checkpoint(client.spec.name, spec.scope, skipped)
        if result.skipped_pages:
            result.status = STATUS_PARTIAL

        stored = await asyncio.to_thread(self.gateway.load_events, spec.scope)
        refetched = {ev.match_id for ev in fetched}
        if reimport:
            stored = [ev for ev in stored if ev.match_id not in refetched]
        acc = EventAccumulator(source_priority=self.config.source_priority)
        acc.extend(stored)
        acc.extend(fetched)
        # collisions among this run's records; matching a stored event is not one
        result.duplicates_collapsed = len(fetched) - len({ev.natural_key() for ev in fetched})
        events = acc.events()

        known = set(stored)
        to_write = [ev for ev in events if ev not in known]
        if reimport and refetched and not cancel.is_set():
            result.events_written = await self._persist(
                self.gateway.replace_match_events, spec.scope, refetched, to_write
            )
        else:
            result.events_written = await self._persist(self.gateway.upsert_events, to_write)

        if cancel.is_set():
            # totals over a half-fetched scope would be wrong; keep prior lines
            result.status = STATUS_CANCELLED
            return

        lines = aggregate(events)
        result.stat_lines_written = await self._persist(self.gateway.replace_stat_lines, spec.scope, lines)
        result.leaders = _leaders(lines)
        if run_reconciliation:
            await self._run_reconciliation(spec, result, lines)

    async def _collect(
        self,
        client: SourceClient,
        query: ScopeQuery,
        result: ScopeResult,
        retry_skipped_only: bool,
    ) -> Tuple[List[MatchEvent], List[SkippedPage]]:
        source = client.spec
        events: List[MatchEvent] = []
        skipped: List[SkippedPage] = []
        if retry_skipped_only:
            previous = await self._load_checkpoint(source.name, (query.competition_id, query.season_label))
            pages = client.retry_skipped(query, previous)
        else:
            pages = client.fetch_all(query)
        async for page in pages:
            result.pages_fetched += 1
            if page.skipped:
                skipped.append(page.as_skipped())
                continue
            for raw in page.records:
                result.events_fetched += 1
                try:
                    events.append(
                        normalize_event(
                            raw,
                            source_id=source.name,
                            fmt=source.format,
                            competition_id=query.competition_id,
                            season_label=query.season_label,
                            ingested_at=self._started,
                        )
                    )
                except InvalidEvent as exc:
                    result.invalid_events += 1
                    log_json(
                        self.logger,
                        "invalid_event",
                        level=logging.WARNING,
                        source=source.name,
                        match_id=page.match_id,
                        reason=exc.reason,
                    )
        log_json(
            self.logger,
            "source_collected",
            source=source.name,
            scope=result.label,
            events=len(events),
            skipped=len(skipped),
            requests=client.api.request_count,
        )
        return events, skipped

    async def _rebuild_scope(self, spec: RunSpec, result: ScopeResult) -> None:
        stored = await asyncio.to_thread(self.gateway.load_events, spec.scope)
        acc = EventAccumulator(source_priority=self.config.source_priority)
        acc.extend(stored)
        result.events_fetched = len(stored)
        result.duplicates_collapsed = acc.duplicates
        lines = aggregate(acc.events())
        result.stat_lines_written = await self._persist(self.gateway.replace_stat_lines, spec.scope, lines)
        result.leaders = _leaders(lines)

    async def _reconcile_scope(self, spec: RunSpec, result: ScopeResult) -> None:
        lines = await asyncio.to_thread(self.gateway.load_stat_lines, spec.scope)
        await self._run_reconciliation(spec, result, lines)

    async def _run_reconciliation(self, spec: RunSpec, result: ScopeResult, lines: List[PlayerStatLine]) -> None:
        if not spec.official_feeds:
            return
        recon_cfg = self.config.reconciliation
        api = ApiClient(
            ApiConfig(
                base_url=recon_cfg.get("base_url", ""),
                timeout_seconds=recon_cfg.get("timeout_seconds", 30),
                rate_limit_ms=spec.rate_limit_ms,
                headers=dict(recon_cfg.get("headers") or {}),
                retry=RetryPolicy.from_config(self.config.pipeline.get("retry"), max_retries=spec.max_retries),
                transport=self.transport,
            )
        )
        api.set_logger(self.logger)
        try:
            feed = await OfficialFeedClient(api).fetch_all(spec.official_feeds)
        except (httpx.HTTPError, ValueError) as exc:
            # reconciliation is observational; a dead feed never fails the sync
            log_json(self.logger, "reconciliation_feed_unavailable", level=logging.WARNING, scope=result.label, error=str(exc))
            return
        finally:
            await api.close()
        report = reconcile(lines, feed, threshold=self._threshold)
        await self._record_reconciliation(result, report)

    async def _record_reconciliation(self, result: ScopeResult, report: ReconciliationReport) -> None:
        result.reconciliation_diffs = len(report.diffs)
        result.ambiguous_matches = len(report.ambiguous)
        result.unmatched_official = len(report.unmatched)
        for diff in report.diffs:
            log_json(self.logger, "reconciliation_diff", level=logging.WARNING, scope=result.label, **asdict(diff))
        for amb in report.ambiguous:
            log_json(
                self.logger,
                "reconciliation_ambiguous",
                level=logging.WARNING,
                scope=result.label,
                player_name=amb.official.player_name,
                team_name=amb.official.team_name,
                candidates=list(amb.candidate_ids),
            )
        if self.reports:
            await self._write_report(self.reports.write_reconciliation, self._run_id, result.label, report.to_dict())

    async def _write_report(self, write: Callable[..., Any], *args: Any) -> None:
        try:
            await asyncio.to_thread(write, *args)
        except (BotoCoreError, ClientError) as exc:
            # a failed upload never fails the run
            log_json(self.logger, "report_write_failed", level=logging.WARNING, op=write.__name__, error=str(exc))

    async def _persist(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except PersistenceConflict as exc:
            log_json(self.logger, "persistence_conflict_retry", level=logging.WARNING, op=fn.__name__, error=str(exc))
            return await asyncio.to_thread(fn, *args)

    async def _checkpoint(self, source_id: str, scope: Tuple[str, str], skipped: List[SkippedPage]) -> None:
        if self.checkpoints is None:
            return
        await asyncio.to_thread(self.checkpoints.put_skipped, source_id, scope, skipped)

    async def _load_checkpoint(self, source_id: str, scope: Tuple[str, str]) -> List[SkippedPage]:
        if self.checkpoints is None:
            return []
        return await asyncio.to_thread(self.checkpoints.get_skipped, source_id, scope)

    async def _finalize_summary(self, command: str, results: Sequence[ScopeResult]) -> Dict[str, Any]:
        self._summary["command"] = command
        self._summary["finished_at"] = _now()
        self._summary["scopes"] = [r.to_dict() for r in results]
        self._summary["totals"] = {
            "events_fetched": sum(r.events_fetched for r in results),
            "duplicates_collapsed": sum(r.duplicates_collapsed for r in results),
            "stat_lines_written": sum(r.stat_lines_written for r in results),
            "reconciliation_diffs": sum(r.reconciliation_diffs for r in results),
            "skipped_pages": sum(len(r.skipped_pages) for r in results),
            "failed_scopes": [r.label for r in results if r.status == STATUS_FAILED],
            "partial_scopes": [r.label for r in results if r.status == STATUS_PARTIAL],
        }
        log_json(self.logger, "run_summary", **self._summary)
        if self.reports:
            await self._write_report(self.reports.write_run_summary, self._run_id, self._summary)
        return self._summary
