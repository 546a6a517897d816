from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .normalize import SCORING_TYPES, EventType, MatchEvent

STAT_NAMES = ("goals", "assists", "yellow_cards", "red_cards", "appearances")

# the credited team of an own goal is the opponent of the player who scored it
_TEAM_UNRELIABLE = frozenset({EventType.OWN_GOAL})


@dataclass(frozen=True)
class PlayerStatLine:
    player_id: str
    competition_id: str
    season_label: str
    goals: int = 0
    assists: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    appearances: int = 0
    player_name: Optional[str] = None
    team_id: Optional[str] = None
    team_name: Optional[str] = None

    @property
    def scope(self) -> Tuple[str, str]:
        return (self.competition_id, self.season_label)

    def stat(self, name: str) -> int:
        if name not in STAT_NAMES:
            raise KeyError(f"unknown stat: {name}")
        return getattr(self, name)

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PlayerStatLine":
        return cls(**{k: row.get(k) for k in cls.__dataclass_fields__})


@dataclass
class _Tally:
    goals: int = 0
    assists: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    matches: Set[str] = field(default_factory=set)
    names: Counter = field(default_factory=Counter)
    teams: Counter = field(default_factory=Counter)
    team_names: Dict[str, Counter] = field(default_factory=lambda: defaultdict(Counter))

    def seen(self, event: MatchEvent, name: Optional[str]) -> None:
        self.matches.add(event.match_id)
        if name:
            self.names[name] += 1
        if event.team_id and event.event_type not in _TEAM_UNRELIABLE:
            self.teams[event.team_id] += 1
            if event.team_name:
                self.team_names[event.team_id][event.team_name] += 1


def _most_common(counter: Counter) -> Optional[str]:
    if not counter:
        return None
    return min(counter.items(), key=lambda kv: (-kv[1], kv[0]))[0]


def aggregate(events: Iterable[MatchEvent]) -> List[PlayerStatLine]:
    """Fold deduplicated events into one stat line per player and scope.

    A full recompute: nothing is carried over between calls and the result is
    sorted, so any ordering of the same event set gives identical output.
    """
    tallies: Dict[Tuple[str, str, str], _Tally] = defaultdict(_Tally)
    for ev in events:
        scope = (ev.competition_id, ev.season_label)
        if ev.event_type == EventType.VAR:
            continue
        if ev.primary_player_id:
            tally = tallies[scope + (ev.primary_player_id,)]
            tally.seen(ev, ev.primary_player_name)
            if ev.event_type in SCORING_TYPES:
                tally.goals += 1
            elif ev.event_type == EventType.YELLOW_CARD:
                tally.yellow_cards += 1
            elif ev.event_type == EventType.RED_CARD:
                tally.red_cards += 1
        if ev.secondary_player_id:
            if ev.event_type in SCORING_TYPES:
                tally = tallies[scope + (ev.secondary_player_id,)]
                tally.assists += 1
                tally.seen(ev, ev.secondary_player_name)
            elif ev.event_type == EventType.SUBSTITUTION:
                tallies[scope + (ev.secondary_player_id,)].seen(ev, ev.secondary_player_name)

    lines = []
    for (competition_id, season_label, player_id), tally in tallies.items():
        team_id = _most_common(tally.teams)
        lines.append(
            PlayerStatLine(
                player_id=player_id,
                competition_id=competition_id,
                season_label=season_label,
                goals=tally.goals,
                assists=tally.assists,
                yellow_cards=tally.yellow_cards,
                red_cards=tally.red_cards,
                appearances=len(tally.matches),
                player_name=_most_common(tally.names),
                team_id=team_id,
                team_name=_most_common(tally.team_names[team_id]) if team_id else None,
            )
        )
    lines.sort(key=lambda line: (line.competition_id, line.season_label, line.player_id))
    return lines


def top_players(lines: Iterable[PlayerStatLine], stat_name: str, limit: int = 10) -> List[PlayerStatLine]:
    ranked = [line for line in lines if line.stat(stat_name) > 0]
    ranked.sort(key=lambda line: (-line.stat(stat_name), line.player_name or "", line.player_id))
    return ranked[:limit]
