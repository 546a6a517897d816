from __future__ import annotations

from typing import Any, Dict, Optional


class PipelineError(Exception):
    pass


class ConfigError(PipelineError, ValueError):
    pass


class SourceUnavailable(PipelineError):
    """A page could not be fetched after the retry budget was spent."""

    def __init__(self, source_id: str, page: int, reason: str) -> None:
        super().__init__(f"{source_id} page {page} unavailable: {reason}")
        self.source_id = source_id
        self.page = page
        self.reason = reason


class InvalidEvent(PipelineError):
    def __init__(self, reason: str, record: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.record = record or {}


class PersistenceConflict(PipelineError):
    pass
