from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .normalize import MatchEvent, NaturalKey
from .utils import stable_hash


def _ts(value: Optional[datetime]) -> float:
    if value is None:
        return float("inf")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def tie_break_key(event: MatchEvent, source_priority: Sequence[str]) -> Tuple[float, int, str, str]:
    """Ordering used to pick the surviving record of a duplicate group.

    Earliest ingestion wins, records without a timestamp rank last. Then the
    higher-trust source (earlier in ``source_priority``, unknown sources
    last), then the smallest ``source_record_id``. Records equal on all three
    fall back to a content hash so the choice never depends on input order.
    """
    try:
        rank = list(source_priority).index(event.source_id)
    except ValueError:
        rank = len(source_priority)
    return (_ts(event.ingested_at), rank, event.source_record_id, stable_hash(event.to_row()))


@dataclass
class EventAccumulator:
    """Per-scope dedupe state for one run.

    One accumulator is created per ``(competition_id, season_label)`` scope and
    passed through the pipeline; nothing is shared between scopes.
    """

    source_priority: Sequence[str] = ()
    seen: int = 0
    duplicates: int = 0
    _winners: Dict[NaturalKey, MatchEvent] = field(default_factory=dict, init=False, repr=False)

    def add(self, event: MatchEvent) -> bool:
        """Offer an event; return True when it is (for now) the group's representative."""
        self.seen += 1
        key = event.natural_key()
        current = self._winners.get(key)
        if current is None:
            self._winners[key] = event
            return True
        self.duplicates += 1
        if current == event:
            return False
        if tie_break_key(event, self.source_priority) < tie_break_key(current, self.source_priority):
            self._winners[key] = event
            return True
        return False

    def extend(self, events: Iterable[MatchEvent]) -> None:
        for event in events:
            self.add(event)

    def discard_matches(self, match_ids: Iterable[str]) -> int:
        drop = set(match_ids)
        keys = [k for k, ev in self._winners.items() if ev.match_id in drop]
        for k in keys:
            del self._winners[k]
        return len(keys)

    def events(self) -> List[MatchEvent]:
        return sorted(self._winners.values(), key=lambda ev: ev.sort_key())

    def __len__(self) -> int:
        return len(self._winners)


def dedupe(events: Iterable[MatchEvent], source_priority: Sequence[str] = ()) -> List[MatchEvent]:
    acc = EventAccumulator(source_priority=source_priority)
    acc.extend(events)
    return acc.events()
