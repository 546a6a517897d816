from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


@dataclass
class RetryPolicy:
    """Exponential backoff shared by every vendor client."""

    max_attempts: int = 4
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0

    @classmethod
    def from_config(cls, raw: Optional[Dict[str, Any]], max_retries: Optional[int] = None) -> "RetryPolicy":
        raw = raw or {}
        attempts = raw.get("max_attempts")
        if attempts is None and max_retries is not None:
            attempts = max_retries + 1
        return cls(
            max_attempts=int(attempts if attempts is not None else cls.max_attempts),
            base_delay=float(raw.get("base_delay_seconds", cls.base_delay)),
            multiplier=float(raw.get("multiplier", cls.multiplier)),
            max_delay=float(raw.get("max_delay_seconds", cls.max_delay)),
        )

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))


@dataclass
class ApiConfig:
    base_url: str
    timeout_seconds: float = 30
    rate_limit_ms: int = 300
    headers: Dict[str, str] = field(default_factory=dict)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    transport: Optional[httpx.AsyncBaseTransport] = None


class RateLimiter:
    """Keeps at least ``min_interval`` seconds between consecutive calls."""

    def __init__(self, min_interval: float) -> None:
        self.min_interval = max(0.0, min_interval)
        self._lock = asyncio.Lock()
        self._last: Optional[float] = None

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            if self._last is not None:
                wait = self.min_interval - (now - self._last)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last = time.monotonic()


class ApiClient:
    def __init__(self, cfg: ApiConfig) -> None:
        self.cfg = cfg
        self._limiter = RateLimiter(cfg.rate_limit_ms / 1000.0)
        self._client = httpx.AsyncClient(
            base_url=cfg.base_url,
            timeout=cfg.timeout_seconds,
            headers=cfg.headers,
            transport=cfg.transport,
        )
        self._logger = None
        self.request_count = 0

    def set_logger(self, logger) -> None:
        self._logger = logger

    async def close(self) -> None:
        await self._client.aclose()

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        attempt = 0
        retry = self.cfg.retry
        params = params or {}
        while True:
            attempt += 1
            await self._limiter.acquire()
            self.request_count += 1
            if self._logger:
                self._logger.info(
                    "http_request_start",
                    extra={"extra": {"path": path, "attempt": attempt, "params": params}},
                )
            try:
                resp = await self._client.get(path, params=params)
            except httpx.TimeoutException:
                if self._logger:
                    self._logger.info("http_timeout", extra={"extra": {"path": path, "attempt": attempt}})
                if attempt >= retry.max_attempts:
                    raise
                await asyncio.sleep(retry.delay(attempt))
                continue
            except httpx.RequestError as exc:
                if self._logger:
                    self._logger.info("http_error", extra={"extra": {"path": path, "attempt": attempt, "error": str(exc)}})
                if attempt >= retry.max_attempts:
                    raise
                await asyncio.sleep(retry.delay(attempt))
                continue
            if resp.status_code == 200:
                return resp.json()
            if resp.status_code in RETRYABLE_STATUS:
                if attempt >= retry.max_attempts:
                    resp.raise_for_status()
                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        delay = min(retry.max_delay, float(retry_after))
                    except ValueError:
                        delay = retry.delay(attempt)
                else:
                    delay = retry.delay(attempt)
                if self._logger:
                    self._logger.info(
                        "http_retry",
                        extra={
                            "extra": {
                                "path": path,
                                "status": resp.status_code,
                                "attempt": attempt,
                                "delay": delay,
                            }
                        },
                    )
                await asyncio.sleep(delay)
                continue
            resp.raise_for_status()
            # 2xx other than 200 (e.g. 204) carries no body worth parsing
            return None
