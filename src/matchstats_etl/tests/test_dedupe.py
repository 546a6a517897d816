"""Tests for natural-key deduplication and the deterministic tie-break."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

from matchstats_etl.dedupe import EventAccumulator, dedupe, tie_break_key
from matchstats_etl.normalize import EventType

T0 = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestDedupe:
    def test_same_goal_from_two_sources_collapses(self, event_factory):
        """P42 scoring at 59' reported by two feeds is one goal."""
        a = event_factory(source_id="primary", source_record_id="A")
        b = event_factory(source_id="secondary", source_record_id="B")
        out = dedupe([a, b], source_priority=["primary", "secondary"])
        assert len(out) == 1
        assert out[0].source_record_id == "A"

    def test_idempotent(self, event_factory):
        events = [
            event_factory(),
            event_factory(source_record_id="r2"),
            event_factory(minute=75, source_record_id="r3"),
        ]
        once = dedupe(events)
        assert dedupe(once) == once
        assert dedupe(events + events) == once

    def test_superset_does_not_grow(self, event_factory):
        base = [event_factory(), event_factory(minute=10, source_record_id="r2")]
        extra = base + [event_factory(source_record_id="r9")]
        assert dedupe(extra) == dedupe(base)

    def test_better_duplicate_replaces_without_growing(self, event_factory):
        """A lower record id wins the group, but the key set stays the same."""
        base = [event_factory(), event_factory(minute=10, source_record_id="r2")]
        out = dedupe(base + [event_factory(source_record_id="again")])
        assert [ev.natural_key() for ev in out] == [ev.natural_key() for ev in dedupe(base)]
        assert out[1].source_record_id == "again"

    def test_distinct_keys_survive(self, event_factory):
        events = [
            event_factory(),
            event_factory(minute=60),
            event_factory(minute=59, minute_extra=1),
            event_factory(primary_player_id="P43"),
            event_factory(match_id="M2"),
            event_factory(event_detail="Header"),
        ]
        assert len(dedupe(events)) == 6

    def test_own_goal_never_merges_with_goal(self, event_factory):
        goal = event_factory(primary_player_id="P7", minute=30)
        own = event_factory(
            primary_player_id="P7",
            minute=30,
            event_type=EventType.OWN_GOAL,
            event_detail="Own Goal",
            source_record_id="og",
        )
        assert len(dedupe([goal, own])) == 2

    def test_order_independent(self, event_factory):
        events = [
            event_factory(source_id="secondary", source_record_id="B", ingested_at=T0),
            event_factory(source_id="primary", source_record_id="A", ingested_at=T0),
            event_factory(source_id="primary", source_record_id="C", ingested_at=T0 + timedelta(seconds=1)),
            event_factory(minute=10, source_record_id="D"),
        ]
        expected = dedupe(events, ["primary", "secondary"])
        for perm in itertools.permutations(events):
            assert dedupe(perm, ["primary", "secondary"]) == expected


class TestTieBreak:
    def test_earliest_ingestion_wins(self, event_factory):
        late = event_factory(source_id="primary", source_record_id="A", ingested_at=T0 + timedelta(hours=1))
        early = event_factory(source_id="secondary", source_record_id="B", ingested_at=T0)
        assert dedupe([late, early], ["primary", "secondary"])[0] is early

    def test_missing_timestamp_ranks_last(self, event_factory):
        undated = event_factory(source_record_id="A", ingested_at=None)
        dated = event_factory(source_record_id="B", ingested_at=T0 + timedelta(days=30))
        assert dedupe([undated, dated])[0] is dated

    def test_priority_then_record_id(self, event_factory):
        low = event_factory(source_id="secondary", source_record_id="A")
        high = event_factory(source_id="primary", source_record_id="Z")
        assert dedupe([low, high], ["primary", "secondary"])[0] is high
        z = event_factory(source_id="primary", source_record_id="Z")
        a = event_factory(source_id="primary", source_record_id="A")
        assert dedupe([z, a], ["primary"])[0] is a

    def test_unknown_source_ranks_after_listed(self, event_factory):
        listed = event_factory(source_id="primary")
        other = event_factory(source_id="mystery")
        assert tie_break_key(listed, ["primary"]) < tie_break_key(other, ["primary"])

    def test_naive_timestamp_treated_as_utc(self, event_factory):
        naive = event_factory(ingested_at=T0.replace(tzinfo=None))
        assert tie_break_key(naive, [])[0] == T0.timestamp()


class TestAccumulator:
    def test_counters(self, event_factory):
        acc = EventAccumulator(source_priority=["primary"])
        assert acc.add(event_factory(source_id="primary"))
        assert not acc.add(event_factory(source_id="secondary"))
        acc.add(event_factory(minute=1))
        assert acc.seen == 3
        assert acc.duplicates == 1
        assert len(acc) == 2

    def test_discard_matches(self, event_factory):
        acc = EventAccumulator()
        acc.extend([event_factory(match_id="M1"), event_factory(match_id="M2"), event_factory(match_id="M2", minute=3)])
        assert acc.discard_matches(["M2"]) == 2
        assert [ev.match_id for ev in acc.events()] == ["M1"]

    def test_scopes_do_not_share_state(self, event_factory):
        first = EventAccumulator()
        second = EventAccumulator()
        first.add(event_factory())
        assert len(second) == 0
        assert second.add(event_factory())
