"""JSON-lines logging: one object per record on stdout."""

import json
import logging
import os
import sys
from typing import Any, Dict, Optional, TextIO

# these log every request at INFO; the pipeline already logs its own requests
NOISY_LOGGERS = ("httpx", "httpcore", "botocore", "boto3", "urllib3")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        run_id = getattr(record, "run_id", None)
        if run_id:
            payload["run_id"] = run_id
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


class RunContextFilter(logging.Filter):
    """Stamps every record passing through a handler with the run id."""

    def __init__(self, run_id: str) -> None:
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self.run_id
        return True


def setup_logging(level: Optional[str] = None, stream: Optional[TextIO] = None) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel((level or os.getenv("MATCHSTATS_LOG_LEVEL") or "INFO").upper())
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if any(isinstance(h.formatter, JsonFormatter) for h in root.handlers):
        return root
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    return root


def bind_run_id(run_id: str, logger: Optional[logging.Logger] = None) -> None:
    """Attach the run id to every JSON handler of ``logger`` (root by default)."""
    target = logger or logging.getLogger()
    for handler in target.handlers:
        if not isinstance(handler.formatter, JsonFormatter):
            continue
        for old in [f for f in handler.filters if isinstance(f, RunContextFilter)]:
            handler.removeFilter(old)
        handler.addFilter(RunContextFilter(run_id))


def log_json(logger: logging.Logger, msg: str, level: int = logging.INFO, **extra: Any) -> None:
    logger.log(level, msg, extra={"extra": extra})
