from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import ConfigError, SourceUnavailable

PAGED = "paged"
FIXTURE_FANOUT = "fixture_fanout"
SOURCE_TYPES = (PAGED, FIXTURE_FANOUT)

EVENTS = "events"
LINEUPS = "lineups"


@dataclass(frozen=True)
class ScopeQuery:
    competition_id: str
    season_label: str


@dataclass
class SkippedPage:
    source_id: str
    page: Optional[int] = None
    match_id: Optional[str] = None
    reason: Optional[str] = None
    kind: str = EVENTS


@dataclass
class RawPage:
    source_id: str
    page: Optional[int]
    records: List[Dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    match_id: Optional[str] = None
    error: Optional[SourceUnavailable] = None
    kind: str = EVENTS

    @property
    def skipped(self) -> bool:
        return self.error is not None

    def as_skipped(self) -> SkippedPage:
        return SkippedPage(
            source_id=self.source_id,
            page=self.page,
            match_id=self.match_id,
            reason=self.error.reason if self.error else None,
            kind=self.kind,
        )


@dataclass
class SourceSpec:
    name: str
    format: str
    type: str
    base_url: str
    path: str
    events_path: Optional[str] = None
    events_match_param: Optional[str] = None
    competition_param: Optional[str] = None
    season_param: Optional[str] = None
    page_param: Optional[str] = None
    page_start: int = 1
    page_step: int = 1
    page_size: Optional[int] = None
    limit_param: Optional[str] = None
    records_path: List[str] = field(default_factory=list)
    events_records_path: List[str] = field(default_factory=list)
    lineups_path: Optional[str] = None
    lineups_records_path: List[str] = field(default_factory=list)
    lineup_team_path: List[str] = field(default_factory=list)
    lineup_players_path: List[str] = field(default_factory=list)
    lineup_player_path: List[str] = field(default_factory=list)
    fixture_id_path: List[str] = field(default_factory=lambda: ["id"])
    fixture_status_path: List[str] = field(default_factory=list)
    finished_statuses: List[str] = field(default_factory=list)
    extra_params: Dict[str, Any] = field(default_factory=dict)
    competition_aliases: Dict[str, str] = field(default_factory=dict)
    season_aliases: Dict[str, str] = field(default_factory=dict)
    api_key_env: Optional[str] = None
    api_key_header: Optional[str] = None
    rate_limit_ms: Optional[int] = None
    timeout_seconds: float = 30
    max_pages: int = 100
    max_consecutive_skips: int = 3

    def competition_for(self, query: ScopeQuery) -> str:
        return self.competition_aliases.get(query.competition_id, query.competition_id)

    def season_for(self, query: ScopeQuery) -> str:
        return self.season_aliases.get(query.season_label, query.season_label)

    def list_params(self, query: ScopeQuery, page: Optional[int]) -> Dict[str, Any]:
        params = dict(self.extra_params)
        if self.competition_param:
            params[self.competition_param] = self.competition_for(query)
        if self.season_param:
            params[self.season_param] = self.season_for(query)
        if self.page_param and page is not None:
            params[self.page_param] = page
        if self.limit_param and self.page_size:
            params[self.limit_param] = self.page_size
        return params

    def base_url_for(self, api_key: Optional[str]) -> str:
        if "{api_key}" in self.base_url:
            if not api_key:
                raise ConfigError(f"{self.name}: base_url needs an api key")
            return self.base_url.replace("{api_key}", api_key)
        return self.base_url

    def headers(self, api_key: Optional[str]) -> Dict[str, str]:
        if self.api_key_header and api_key:
            return {self.api_key_header: api_key}
        return {}


def build_source_spec(name: str, cfg: Dict[str, Any], defaults: Optional[Dict[str, Any]] = None) -> SourceSpec:
    merged: Dict[str, Any] = dict(defaults or {})
    merged.update(cfg)
    merged["name"] = name
    merged.setdefault("format", name)
    source_type = merged.get("type")
    if source_type not in SOURCE_TYPES:
        raise ConfigError(f"{name}: type must be one of {SOURCE_TYPES}, got {source_type!r}")
    for required in ("base_url", "path"):
        if not merged.get(required):
            raise ConfigError(f"{name}: missing {required}")
    if source_type == FIXTURE_FANOUT and not merged.get("events_path"):
        raise ConfigError(f"{name}: fixture_fanout sources need events_path")
    if merged.get("lineups_path") and not merged.get("lineup_players_path"):
        raise ConfigError(f"{name}: lineups_path needs lineup_players_path")
    known = SourceSpec.__dataclass_fields__
    unknown = sorted(k for k in merged if k not in known)
    if unknown:
        raise ConfigError(f"{name}: unknown source settings {unknown}")
    merged["competition_aliases"] = {str(k): str(v) for k, v in (merged.get("competition_aliases") or {}).items()}
    merged["season_aliases"] = {str(k): str(v) for k, v in (merged.get("season_aliases") or {}).items()}
    return SourceSpec(**merged)
