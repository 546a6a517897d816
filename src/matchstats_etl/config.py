from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError

DEFAULT_RATE_LIMIT_MS = 300
DEFAULT_MAX_RETRIES = 3


@dataclass
class RunSpec:
    competition_id: str
    season_label: str
    sources: List[str]
    rate_limit_ms: int = DEFAULT_RATE_LIMIT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    official_feeds: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def scope(self) -> tuple[str, str]:
        return (self.competition_id, self.season_label)

    @property
    def label(self) -> str:
        return f"{self.competition_id}/{self.season_label}"


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def database_url(self) -> str:
        return os.getenv("DATABASE_URL") or self.raw.get("database_url", "sqlite:///matchstats.db")

    @property
    def region(self) -> str:
        return self.raw.get("region", "us-east-1")

    @property
    def pipeline(self) -> Dict[str, Any]:
        return self.raw.get("pipeline", {})

    @property
    def sources(self) -> Dict[str, Any]:
        return self.raw["sources"]

    @property
    def scopes(self) -> List[Dict[str, Any]]:
        return self.raw.get("scopes", [])

    @property
    def reconciliation(self) -> Dict[str, Any]:
        return self.raw.get("reconciliation", {})

    @property
    def report(self) -> Optional[Dict[str, Any]]:
        return self.raw.get("report")

    @property
    def checkpoints(self) -> Optional[Dict[str, Any]]:
        return self.raw.get("checkpoints")

    @property
    def source_priority(self) -> List[str]:
        return list(self.pipeline.get("source_priority", list(self.sources)))

    def run_specs(self) -> List[RunSpec]:
        return [self.run_spec(entry) for entry in self.scopes]

    def run_spec(self, entry: Dict[str, Any]) -> RunSpec:
        sources = entry.get("sources") or list(self.sources)
        unknown = [s for s in sources if s not in self.sources]
        if unknown:
            raise ConfigError(f"scope {entry.get('competition_id')} references unknown sources: {unknown}")
        return RunSpec(
            competition_id=str(entry["competition_id"]),
            season_label=str(entry["season_label"]),
            sources=list(sources),
            rate_limit_ms=int(entry.get("rate_limit_ms", self.pipeline.get("rate_limit_ms", DEFAULT_RATE_LIMIT_MS))),
            max_retries=int(entry.get("max_retries", self.pipeline.get("max_retries", DEFAULT_MAX_RETRIES))),
            official_feeds=list(entry.get("official_feeds", [])),
        )


def load_config(path: str = "config.yaml") -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw.get("sources"), dict) or not raw["sources"]:
        raise ConfigError("config must define at least one entry under 'sources'")
    for entry in raw.get("scopes", []):
        if "competition_id" not in entry or "season_label" not in entry:
            raise ConfigError("every scope needs competition_id and season_label")
    rate_limit = raw.get("pipeline", {}).get("rate_limit_ms", DEFAULT_RATE_LIMIT_MS)
    if int(rate_limit) < 0:
        raise ConfigError("pipeline.rate_limit_ms must be >= 0")
    return Config(raw)


def get_api_key(source_name: str, source_cfg: Dict[str, Any]) -> Optional[str]:
    env_name = source_cfg.get("api_key_env")
    if not env_name:
        return None
    key = os.getenv(env_name)
    if not key:
        raise RuntimeError(f"Missing API key for {source_name}; set {env_name}")
    return key
