from importlib import import_module
from typing import Any, Dict

from ..errors import ConfigError
from .base import RawPage, ScopeQuery, SkippedPage, SourceSpec, build_source_spec

SOURCE_MODULES = [
    "api_football",
    "highlightly",
    "thesportsdb",
    "canonical",
]


def build_registry(config_sources: Dict[str, Any]) -> Dict[str, SourceSpec]:
    registry = {}
    for name, cfg in config_sources.items():
        fmt = cfg.get("format", name)
        if fmt not in SOURCE_MODULES:
            raise ConfigError(f"{name}: unsupported source format {fmt!r}")
        mod = import_module(f"matchstats_etl.sources.{fmt}")
        registry[name] = mod.get_spec(name, cfg)
    return registry


__all__ = [
    "SOURCE_MODULES",
    "RawPage",
    "ScopeQuery",
    "SkippedPage",
    "SourceSpec",
    "build_registry",
    "build_source_spec",
]
