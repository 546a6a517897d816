"""Tests for the SQLAlchemy persistence gateway on in-memory SQLite."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from matchstats_etl.aggregate import PlayerStatLine
from matchstats_etl.errors import PersistenceConflict
from matchstats_etl.normalize import EventType
from matchstats_etl.persistence import match_events, player_stat_lines

SCOPE = ("K1", "2025")


def _count(gateway, table):
    with gateway.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


class TestUpsertEvents:
    def test_upsert_is_idempotent(self, gateway, event_factory):
        events = [event_factory(), event_factory(minute=70, source_record_id="r2")]
        assert gateway.upsert_events(events) == 2
        gateway.upsert_events(events)
        assert _count(gateway, match_events) == 2

    def test_conflict_updates_provenance(self, gateway, event_factory):
        gateway.upsert_events([event_factory(source_id="secondary", source_record_id="B")])
        gateway.upsert_events([event_factory(source_id="primary", source_record_id="A")])
        stored = gateway.load_events(SCOPE)
        assert len(stored) == 1
        assert (stored[0].source_id, stored[0].source_record_id) == ("primary", "A")

    def test_null_key_parts_still_unique(self, gateway, event_factory):
        """minute_extra and player NULLs must not make rows look distinct."""
        ev = event_factory(minute_extra=None, primary_player_id=None, event_type=EventType.VAR, event_detail=None)
        gateway.upsert_events([ev])
        gateway.upsert_events([ev])
        assert _count(gateway, match_events) == 1

    def test_round_trip(self, gateway, event_factory):
        ev = event_factory(minute_extra=2, secondary_player_id="P10")
        gateway.upsert_events([ev])
        assert gateway.load_events(SCOPE) == [ev]

    def test_empty(self, gateway):
        assert gateway.upsert_events([]) == 0


class TestDeleteAndLoad:
    def test_delete_match_events_scoped(self, gateway, event_factory):
        gateway.upsert_events(
            [
                event_factory(match_id="M1"),
                event_factory(match_id="M2"),
                event_factory(match_id="M3", season_label="2024"),
            ]
        )
        assert gateway.delete_match_events(SCOPE, ["M2"]) == 1
        assert [ev.match_id for ev in gateway.load_events(SCOPE)] == ["M1"]
        assert len(gateway.load_events(("K1", "2024"))) == 1

    def test_replace_match_events(self, gateway, event_factory):
        gateway.upsert_events(
            [event_factory(), event_factory(minute=70, source_record_id="r2"), event_factory(match_id="M2")]
        )
        assert gateway.replace_match_events(SCOPE, ["M1"], [event_factory(minute=5)]) == 1
        stored = gateway.load_events(SCOPE)
        assert sorted((ev.match_id, ev.minute) for ev in stored) == [("M1", 5), ("M2", 59)]

    def test_failed_replace_keeps_stored_events(self, gateway, event_factory):
        gateway.upsert_events([event_factory(), event_factory(minute=70, source_record_id="r2")])
        # source_id is NOT NULL, so the insert half of the swap fails
        with pytest.raises(PersistenceConflict):
            gateway.replace_match_events(SCOPE, ["M1"], [event_factory(minute=5, source_id=None)])
        assert sorted(ev.minute for ev in gateway.load_events(SCOPE)) == [59, 70]

    def test_load_filtered_by_match(self, gateway, event_factory):
        gateway.upsert_events([event_factory(match_id="M1"), event_factory(match_id="M2")])
        assert [ev.match_id for ev in gateway.load_events(SCOPE, match_ids=["M2"])] == ["M2"]


class TestReplaceStatLines:
    def test_replace_overwrites_scope_only(self, gateway):
        gateway.replace_stat_lines(SCOPE, [PlayerStatLine("P1", "K1", "2025", goals=1), PlayerStatLine("P2", "K1", "2025")])
        gateway.replace_stat_lines(("K1", "2024"), [PlayerStatLine("P1", "K1", "2024", goals=9)])
        gateway.replace_stat_lines(SCOPE, [PlayerStatLine("P1", "K1", "2025", goals=2)])
        assert gateway.load_stat_lines(SCOPE) == [PlayerStatLine("P1", "K1", "2025", goals=2)]
        assert gateway.load_stat_lines(("K1", "2024"))[0].goals == 9
        assert _count(gateway, player_stat_lines) == 2

    def test_rejects_foreign_scope(self, gateway):
        with pytest.raises(ValueError):
            gateway.replace_stat_lines(SCOPE, [PlayerStatLine("P1", "K2", "2025")])

    def test_empty_replacement_clears(self, gateway):
        gateway.replace_stat_lines(SCOPE, [PlayerStatLine("P1", "K1", "2025", goals=1)])
        assert gateway.replace_stat_lines(SCOPE, []) == 0
        assert gateway.load_stat_lines(SCOPE) == []
