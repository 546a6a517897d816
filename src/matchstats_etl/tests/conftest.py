"""Shared test fixtures for the matchstats_etl test suite.

Provides moto-based AWS mocks, an in-memory SQLite gateway, and sample
payloads shaped like the vendor APIs.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import boto3
import httpx
import pytest
from moto import mock_aws

from matchstats_etl.api_client import ApiClient, ApiConfig, RetryPolicy
from matchstats_etl.config import Config
from matchstats_etl.normalize import EventType, MatchEvent
from matchstats_etl.persistence import PersistenceGateway


# ---------------------------------------------------------------------------
# AWS credential safety
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True, scope="session")
def aws_credentials():
    """Set fake AWS credentials for the entire test session."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    yield
    for key in (
        "AWS_ACCESS_KEY_ID",
        "AWS_SECRET_ACCESS_KEY",
        "AWS_SECURITY_TOKEN",
        "AWS_SESSION_TOKEN",
        "AWS_DEFAULT_REGION",
    ):
        os.environ.pop(key, None)


@pytest.fixture()
def s3_bucket():
    """Moto S3 bucket named 'matchstats-reports'; yields the client."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket="matchstats-reports")
        yield client


@pytest.fixture()
def dynamodb_table():
    """Moto DynamoDB table 'matchstats_checkpoints' keyed source_id / scope_key."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="us-east-1")
        client.create_table(
            TableName="matchstats_checkpoints",
            KeySchema=[
                {"AttributeName": "source_id", "KeyType": "HASH"},
                {"AttributeName": "scope_key", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "source_id", "AttributeType": "S"},
                {"AttributeName": "scope_key", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        yield client


# ---------------------------------------------------------------------------
# Persistence / HTTP helpers
# ---------------------------------------------------------------------------

@pytest.fixture()
def gateway():
    gw = PersistenceGateway.from_url("sqlite://")
    gw.create_schema()
    yield gw
    gw.dispose()


FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0.001, multiplier=2.0, max_delay=0.01)


def mock_api(handler: Callable[[httpx.Request], httpx.Response], base_url: str = "https://api.test") -> ApiClient:
    """ApiClient whose transport is an ``httpx.MockTransport``."""
    cfg = ApiConfig(base_url=base_url, timeout_seconds=5, rate_limit_ms=0, retry=FAST_RETRY)
    client = ApiClient(cfg)
    client._client = httpx.AsyncClient(base_url=cfg.base_url, transport=httpx.MockTransport(handler))
    return client


def make_event(**overrides: Any) -> MatchEvent:
    fields: Dict[str, Any] = {
        "match_id": "M1",
        "competition_id": "K1",
        "season_label": "2025",
        "minute": 59,
        "event_type": EventType.GOAL,
        "event_detail": "Normal Goal",
        "source_id": "canonical",
        "source_record_id": "r1",
        "primary_player_id": "P42",
        "primary_player_name": "Joo Min-kyu",
        "team_id": "T1",
        "team_name": "Daejeon Hana Citizen",
        "ingested_at": datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return MatchEvent(**fields)


# ---------------------------------------------------------------------------
# Configuration fixture
# ---------------------------------------------------------------------------

@pytest.fixture()
def sample_raw_config() -> Dict[str, Any]:
    return {
        "database_url": "sqlite://",
        "region": "us-east-1",
        "pipeline": {
            "rate_limit_ms": 0,
            "max_retries": 1,
            "max_concurrent_scopes": 2,
            "source_priority": ["primary", "secondary"],
            "retry": {"base_delay_seconds": 0.001, "max_delay_seconds": 0.01},
        },
        "sources": {
            "primary": {
                "format": "canonical",
                "base_url": "https://primary.test",
                "path": "/events",
            },
            "secondary": {
                "format": "canonical",
                "base_url": "https://secondary.test",
                "path": "/events",
            },
        },
        "scopes": [
            {"competition_id": "K1", "season_label": "2025"},
        ],
        "reconciliation": {"base_url": "https://official.test", "threshold": 0.8},
    }


@pytest.fixture()
def sample_config(sample_raw_config) -> Config:
    return Config(sample_raw_config)


# ---------------------------------------------------------------------------
# Sample vendor payloads
# ---------------------------------------------------------------------------

@pytest.fixture()
def api_football_events() -> List[Dict[str, Any]]:
    """Records shaped like API-Football /fixtures/events ``response`` items."""
    return [
        {
            "time": {"elapsed": 59, "extra": None},
            "team": {"id": 2763, "name": "Daejeon Citizen"},
            "player": {"id": 42, "name": "Joo Min-Kyu"},
            "assist": {"id": 77, "name": "Kim In-Kyun"},
            "type": "Goal",
            "detail": "Normal Goal",
            "comments": None,
        },
        {
            "time": {"elapsed": 30, "extra": None},
            "team": {"id": 2767, "name": "Ulsan Hyundai FC"},
            "player": {"id": 7, "name": "Lee Myung-Jae"},
            "assist": {"id": None, "name": None},
            "type": "Goal",
            "detail": "Own Goal",
            "comments": None,
        },
        {
            "time": {"elapsed": 90, "extra": 3},
            "team": {"id": 2763, "name": "Daejeon Citizen"},
            "player": {"id": 15, "name": "Lee Soon-Min"},
            "assist": {"id": None, "name": None},
            "type": "Card",
            "detail": "Yellow Card",
            "comments": "Foul",
        },
    ]


@pytest.fixture()
def api_football_lineups() -> List[Dict[str, Any]]:
    """Records shaped like API-Football /fixtures/lineups ``response`` items."""
    return [
        {
            "team": {"id": 2763, "name": "Daejeon Citizen"},
            "formation": "4-4-2",
            "startXI": [
                {"player": {"id": 42, "name": "Joo Min-Kyu", "number": 9, "pos": "F", "grid": "4:1"}},
                {"player": {"id": 15, "name": "Lee Soon-Min", "number": 6, "pos": "M", "grid": "3:2"}},
            ],
            "substitutes": [
                {"player": {"id": 88, "name": "Kim Seung-Dae", "number": 12, "pos": "F", "grid": None}},
            ],
        },
    ]


@pytest.fixture()
def highlightly_events() -> List[Dict[str, Any]]:
    return [
        {
            "team": {"id": 5001, "name": "Daejeon Citizen"},
            "time": "90+2",
            "type": "Penalty",
            "player": "Joo Min-Kyu",
            "playerId": 42,
            "assist": None,
            "assistingPlayerId": None,
            "substituted": None,
        },
        {
            "team": {"id": 5001, "name": "Daejeon Citizen"},
            "time": "64",
            "type": "Substitution",
            "player": "Joo Min-Kyu",
            "playerId": 42,
            "assist": "Kim Seung-Dae",
            "assistingPlayerId": 88,
        },
    ]


@pytest.fixture()
def thesportsdb_timeline() -> List[Dict[str, Any]]:
    return [
        {
            "idTimeline": "1138812",
            "idEvent": "2070123",
            "strTimeline": "Goal",
            "strTimelineDetail": "Normal Goal",
            "strHome": "Yes",
            "idPlayer": "34172410",
            "strPlayer": "Joo Min-kyu",
            "idAssist": "34172411",
            "strAssist": "Kim In-kyun",
            "intTime": "59",
            "idTeam": "138107",
            "strTeam": "Daejeon Hana Citizen",
        },
        {
            "idTimeline": "1138813",
            "idEvent": "2070123",
            "strTimeline": "subst",
            "strTimelineDetail": "Substitution",
            "idPlayer": "34172412",
            "strPlayer": "Park Jin-seong",
            "idAssist": None,
            "strAssist": None,
            "intTime": "71",
            "idTeam": "138107",
            "strTeam": "Daejeon Hana Citizen",
        },
    ]


@pytest.fixture()
def event_factory() -> Callable[..., MatchEvent]:
    return make_event


@pytest.fixture()
def api_factory() -> Callable[..., ApiClient]:
    return mock_api
