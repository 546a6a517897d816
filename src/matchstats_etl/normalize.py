"""Vendor payload -> canonical ``MatchEvent`` mapping.

Every upstream (API-Football, Highlightly, TheSportsDB, or a feed already in
canonical shape) reports the same real-world occurrences with different field
names and enumerations. ``normalize_event`` is a pure function that maps one
raw vendor record onto a ``MatchEvent`` or raises ``InvalidEvent``.

Own goals are their own ``EventType`` so they can never be folded into the
scorer's personal tally or merged with a genuine goal at the same minute.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import InvalidEvent
from .utils import nested, parse_minute, stable_hash, to_int, to_str


class EventType(str, Enum):
    GOAL = "goal"
    PENALTY = "penalty"
    OWN_GOAL = "own_goal"
    MISSED_PENALTY = "missed_penalty"
    YELLOW_CARD = "yellow_card"
    RED_CARD = "red_card"
    SUBSTITUTION = "substitution"
    PLAYED = "played"
    VAR = "var"
    OTHER = "other"


SCORING_TYPES = frozenset({EventType.GOAL, EventType.PENALTY})

DEFAULT_DETAIL = {
    EventType.GOAL: "Normal Goal",
    EventType.PENALTY: "Penalty",
    EventType.OWN_GOAL: "Own Goal",
    EventType.MISSED_PENALTY: "Missed Penalty",
    EventType.YELLOW_CARD: "Yellow Card",
    EventType.RED_CARD: "Red Card",
}

NaturalKey = Tuple[str, Optional[str], str, int, Optional[int], Optional[str]]


@dataclass(frozen=True)
class MatchEvent:
    match_id: str
    competition_id: str
    season_label: str
    minute: int
    event_type: EventType
    source_id: str
    source_record_id: str
    minute_extra: Optional[int] = None
    event_detail: Optional[str] = None
    team_id: Optional[str] = None
    primary_player_id: Optional[str] = None
    secondary_player_id: Optional[str] = None
    ingested_at: Optional[datetime] = None
    primary_player_name: Optional[str] = None
    secondary_player_name: Optional[str] = None
    team_name: Optional[str] = None

    def natural_key(self) -> NaturalKey:
        return (
            self.match_id,
            self.primary_player_id,
            self.event_type.value,
            self.minute,
            self.minute_extra,
            self.event_detail,
        )

    def event_key(self) -> str:
        return stable_hash(list(self.natural_key()))

    def sort_key(self) -> Tuple[Any, ...]:
        return tuple((v is not None, v if v is not None else "") for v in self.natural_key())

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["event_type"] = self.event_type.value
        row["event_key"] = self.event_key()
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MatchEvent":
        fields = {k: row.get(k) for k in cls.__dataclass_fields__}
        fields["event_type"] = EventType(row["event_type"])
        ts = fields.get("ingested_at")
        if isinstance(ts, datetime) and ts.tzinfo is None:
            # SQLite hands timestamps back without an offset
            fields["ingested_at"] = ts.replace(tzinfo=timezone.utc)
        return cls(**fields)

    def with_scope(self, competition_id: str, season_label: str) -> "MatchEvent":
        return replace(self, competition_id=competition_id, season_label=season_label)


_OWN_GOAL_RE = re.compile(r"\bown[\s_-]?goal\b|\bog\b|자책")
_MISSED_PEN_RE = re.compile(r"missed\s+penalty|penalty\s+(missed|saved)")
_RED_CARD_RE = re.compile(r"\bred\b|second\s+yellow")


def classify(type_text: Optional[str], detail_text: Optional[str]) -> Optional[EventType]:
    """Map a vendor ``(type, detail)`` pair onto an ``EventType``.

    Returns ``None`` when the type is missing altogether.
    """
    if not type_text and not detail_text:
        return None
    kind = (type_text or "").strip().lower()
    detail = (detail_text or "").strip().lower()
    both = f"{kind} {detail}"
    if kind.startswith("var"):
        return EventType.VAR
    if _MISSED_PEN_RE.search(both):
        return EventType.MISSED_PENALTY
    if _OWN_GOAL_RE.search(both):
        return EventType.OWN_GOAL
    if "card" in kind or "card" in detail or kind in ("yellow", "red", "booking"):
        if _RED_CARD_RE.search(both):
            return EventType.RED_CARD
        return EventType.YELLOW_CARD
    if "penalty" in kind or ("goal" in kind and "penalty" in detail):
        return EventType.PENALTY
    if "goal" in kind:
        return EventType.GOAL
    if kind.startswith("subst"):
        return EventType.SUBSTITUTION
    if kind in ("played", "appearance", "lineup", "starting xi", "start"):
        return EventType.PLAYED
    return EventType.OTHER


def _record_id(raw: Dict[str, Any], *candidates: Any) -> str:
    for value in candidates:
        text = to_str(value)
        if text:
            return text
    clean = {k: v for k, v in raw.items() if not k.startswith("_")}
    return stable_hash(clean)[:24]


def _map_api_football_lineup(raw: Dict[str, Any]) -> Dict[str, Any]:
    match_id = raw.get("_match_id")
    player_id = nested(raw, "player", "id")
    return {
        "match_id": match_id,
        "type_text": "Lineup",
        "detail": "Starting XI",
        "minute": 0,
        "minute_extra": None,
        "team_id": nested(raw, "team", "id"),
        "team_name": nested(raw, "team", "name"),
        "primary_player_id": player_id,
        "primary_player_name": nested(raw, "player", "name"),
        "secondary_player_id": None,
        "source_record_id": f"lineup:{match_id}:{player_id}",
    }


def _map_api_football(raw: Dict[str, Any]) -> Dict[str, Any]:
    if raw.get("_lineup"):
        return _map_api_football_lineup(raw)
    minute = to_int(nested(raw, "time", "elapsed"))
    extra = to_int(nested(raw, "time", "extra"))
    return {
        "match_id": raw.get("_match_id") or nested(raw, "fixture", "id"),
        "type_text": to_str(raw.get("type")),
        "detail": to_str(raw.get("detail")),
        "minute": minute,
        "minute_extra": extra,
        "team_id": nested(raw, "team", "id"),
        "team_name": nested(raw, "team", "name"),
        "primary_player_id": nested(raw, "player", "id"),
        "primary_player_name": nested(raw, "player", "name"),
        "secondary_player_id": nested(raw, "assist", "id"),
        "secondary_player_name": nested(raw, "assist", "name"),
        "source_record_id": _record_id(raw, raw.get("id")),
    }


def _map_highlightly(raw: Dict[str, Any]) -> Dict[str, Any]:
    minute, extra = parse_minute(raw.get("time"))
    return {
        "match_id": raw.get("_match_id") or raw.get("matchId"),
        "type_text": to_str(raw.get("type")),
        "detail": to_str(raw.get("detail")),
        "minute": minute,
        "minute_extra": extra,
        "team_id": nested(raw, "team", "id"),
        "team_name": nested(raw, "team", "name"),
        "primary_player_id": raw.get("playerId"),
        "primary_player_name": raw.get("player"),
        "secondary_player_id": raw.get("assistingPlayerId"),
        "secondary_player_name": raw.get("assist"),
        "source_record_id": _record_id(raw, raw.get("id")),
    }


def _map_thesportsdb(raw: Dict[str, Any]) -> Dict[str, Any]:
    minute, extra = parse_minute(raw.get("intTime"))
    if raw.get("intTimeExtra") is not None:
        extra = to_int(raw.get("intTimeExtra"))
    return {
        "match_id": raw.get("_match_id") or raw.get("idEvent"),
        "type_text": to_str(raw.get("strTimeline") or raw.get("strEvent")),
        "detail": to_str(raw.get("strTimelineDetail") or raw.get("strDetail")),
        "minute": minute,
        "minute_extra": extra,
        "team_id": raw.get("idTeam"),
        "team_name": raw.get("strTeam"),
        "primary_player_id": raw.get("idPlayer"),
        "primary_player_name": raw.get("strPlayer"),
        "secondary_player_id": raw.get("idAssist"),
        "secondary_player_name": raw.get("strAssist"),
        "source_record_id": _record_id(raw, raw.get("idTimeline")),
    }


def _map_canonical(raw: Dict[str, Any]) -> Dict[str, Any]:
    minute, extra = parse_minute(raw.get("minute"))
    if raw.get("minute_extra") is not None:
        extra = to_int(raw.get("minute_extra"))
    return {
        "match_id": raw.get("match_id") or raw.get("_match_id"),
        "type_text": to_str(raw.get("event_type")),
        "detail": to_str(raw.get("event_detail")),
        "minute": minute,
        "minute_extra": extra,
        "team_id": raw.get("team_id"),
        "team_name": raw.get("team_name"),
        "primary_player_id": raw.get("primary_player_id"),
        "primary_player_name": raw.get("primary_player_name"),
        "secondary_player_id": raw.get("secondary_player_id"),
        "secondary_player_name": raw.get("secondary_player_name"),
        "source_record_id": _record_id(raw, raw.get("source_record_id"), raw.get("id")),
        "ingested_at": raw.get("ingested_at"),
    }


MAPPERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "api_football": _map_api_football,
    "highlightly": _map_highlightly,
    "thesportsdb": _map_thesportsdb,
    "canonical": _map_canonical,
}


def _canonical_type(type_text: Optional[str]) -> Optional[EventType]:
    if not type_text:
        return None
    try:
        return EventType(type_text.lower())
    except ValueError:
        return None


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def normalize_event(
    raw: Dict[str, Any],
    source_id: str,
    fmt: str,
    competition_id: str,
    season_label: str,
    ingested_at: Optional[datetime] = None,
) -> MatchEvent:
    if not isinstance(raw, dict):
        raise InvalidEvent("record is not an object")
    mapper = MAPPERS.get(fmt)
    if mapper is None:
        raise InvalidEvent(f"unknown source format: {fmt}", raw)
    fields = mapper(raw)

    match_id = to_str(fields.get("match_id"))
    if not match_id:
        raise InvalidEvent("missing match_id", raw)

    type_text = fields.get("type_text")
    event_type = _canonical_type(type_text) if fmt == "canonical" else None
    if event_type is None:
        event_type = classify(type_text, fields.get("detail"))
    if event_type is None:
        raise InvalidEvent("missing event_type", raw)

    minute = fields.get("minute")
    if minute is None:
        raise InvalidEvent("missing minute", raw)
    if minute < 0:
        raise InvalidEvent(f"negative minute: {minute}", raw)
    extra = fields.get("minute_extra")
    if extra is not None and extra < 0:
        raise InvalidEvent(f"negative minute_extra: {extra}", raw)

    primary = to_str(fields.get("primary_player_id"))
    secondary = to_str(fields.get("secondary_player_id"))
    if event_type in (EventType.OWN_GOAL, EventType.MISSED_PENALTY):
        # neither earns the partner player an assist
        secondary = None
    if secondary is not None and secondary == primary:
        secondary = None
    if event_type is EventType.PLAYED and primary is None:
        raise InvalidEvent("played marker without player", raw)

    detail = fields.get("detail") or DEFAULT_DETAIL.get(event_type)
    return MatchEvent(
        match_id=match_id,
        competition_id=str(competition_id),
        season_label=str(season_label),
        minute=minute,
        minute_extra=extra,
        event_type=event_type,
        event_detail=detail,
        team_id=to_str(fields.get("team_id")),
        primary_player_id=primary,
        secondary_player_id=secondary,
        source_id=source_id,
        source_record_id=str(fields["source_record_id"]),
        ingested_at=_coerce_datetime(fields.get("ingested_at")) or ingested_at,
        primary_player_name=to_str(fields.get("primary_player_name")),
        secondary_player_name=to_str(fields.get("secondary_player_name")) if secondary else None,
        team_name=to_str(fields.get("team_name")),
    )
