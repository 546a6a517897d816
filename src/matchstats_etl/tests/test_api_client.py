"""Tests for the async API client using httpx.MockTransport."""

from __future__ import annotations

import asyncio
import time

import httpx
import pytest

from matchstats_etl.api_client import ApiClient, ApiConfig, RateLimiter, RetryPolicy


class TestGetJson:
    async def test_success(self, api_factory):
        """A 200 response is decoded and returned after one request."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            assert request.url.params["season"] == "2025"
            return httpx.Response(200, json={"response": [{"id": 1}]})

        client = api_factory(handler)
        try:
            result = await client.get_json("/fixtures", params={"season": 2025})
            assert result == {"response": [{"id": 1}]}
            assert calls == 1
            assert client.request_count == 1
        finally:
            await client.close()

    async def test_retry_on_429_then_success(self, api_factory):
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            if attempt == 1:
                return httpx.Response(429, headers={"Retry-After": "0"}, json={"message": "slow down"})
            return httpx.Response(200, json={"ok": True})

        client = api_factory(handler)
        try:
            assert await client.get_json("/events") == {"ok": True}
            assert attempt == 2
        finally:
            await client.close()

    async def test_retry_on_500_then_success(self, api_factory):
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            if attempt < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=[1, 2])

        client = api_factory(handler)
        try:
            assert await client.get_json("/events") == [1, 2]
            assert attempt == 3
        finally:
            await client.close()

    async def test_exhausted_retries_raise(self, api_factory):
        """After max_attempts 5xx responses the HTTP error propagates."""
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            return httpx.Response(500)

        client = api_factory(handler)
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await client.get_json("/events")
            assert attempt == 3
        finally:
            await client.close()

    async def test_timeout_retried_then_raised(self, api_factory):
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            raise httpx.ReadTimeout("timed out", request=request)

        client = api_factory(handler)
        try:
            with pytest.raises(httpx.TimeoutException):
                await client.get_json("/events")
            assert attempt == 3
        finally:
            await client.close()

    async def test_client_error_not_retried(self, api_factory):
        attempt = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempt
            attempt += 1
            return httpx.Response(403)

        client = api_factory(handler)
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await client.get_json("/events")
            assert attempt == 1
        finally:
            await client.close()

    async def test_no_content_returns_none(self, api_factory):
        client = api_factory(lambda request: httpx.Response(204))
        try:
            assert await client.get_json("/events") is None
        finally:
            await client.close()


class TestRetryPolicy:
    def test_from_config_uses_max_retries(self):
        policy = RetryPolicy.from_config({}, max_retries=3)
        assert policy.max_attempts == 4

    def test_explicit_attempts_win(self):
        policy = RetryPolicy.from_config({"max_attempts": 2}, max_retries=5)
        assert policy.max_attempts == 2

    def test_delay_is_capped(self):
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=3.0)
        assert policy.delay(1) == 1.0
        assert policy.delay(2) == 2.0
        assert policy.delay(5) == 3.0


class TestRateLimiter:
    async def test_min_interval_between_calls(self):
        limiter = RateLimiter(0.05)
        start = time.monotonic()
        for _ in range(3):
            await limiter.acquire()
        # two enforced gaps
        assert time.monotonic() - start >= 0.09

    async def test_zero_interval_does_not_sleep(self):
        limiter = RateLimiter(0)
        start = time.monotonic()
        await asyncio.gather(*(limiter.acquire() for _ in range(10)))
        assert time.monotonic() - start < 0.5

    def test_rate_limit_from_config(self):
        client = ApiClient(ApiConfig(base_url="https://api.test", rate_limit_ms=250))
        assert client._limiter.min_interval == pytest.approx(0.25)
