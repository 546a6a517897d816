"""Read-only comparison of computed stat lines against an official ranking.

The official feed (e.g. the league's own top scorer / top assister lists)
shares no identifier with the vendor APIs, so players are paired by a scored
name matcher. A tie between equally good candidates is reported as an
``AmbiguousMatch`` for an operator to resolve; it is never guessed.
Nothing here writes to the stat lines.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .aggregate import STAT_NAMES, PlayerStatLine
from .api_client import ApiClient
from .utils import nested, to_int, to_str

EXACT_SCORE = 1.0
CONTAINS_SCORE = 0.8
TEAM_BONUS = 0.1
DEFAULT_THRESHOLD = 0.8

_TRANSLITERATE = {
    "ø": "o", "æ": "ae", "ð": "d", "þ": "th",
    "ł": "l", "đ": "d", "ß": "ss", "ı": "i", "œ": "oe",
}
_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, strip diacritics and punctuation, collapse whitespace."""
    if not name:
        return ""
    text = name.casefold()
    text = "".join(_TRANSLITERATE.get(c, c) for c in text)
    text = unicodedata.normalize("NFKD", text)
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = _PUNCT_RE.sub(" ", text).replace("_", " ")
    text = " ".join(text.split())
    return unicodedata.normalize("NFC", text)


@dataclass(frozen=True)
class OfficialStat:
    player_name: str
    team_name: Optional[str]
    stat_name: str
    value: int
    player_id: Optional[str] = None


@dataclass(frozen=True)
class ReconciliationDiff:
    player_id: str
    stat_name: str
    computed_value: int
    official_value: int
    delta: int
    player_name: Optional[str] = None


@dataclass(frozen=True)
class AmbiguousMatch:
    official: OfficialStat
    candidate_ids: Tuple[str, ...]
    score: float


@dataclass
class ReconciliationReport:
    diffs: List[ReconciliationDiff] = field(default_factory=list)
    ambiguous: List[AmbiguousMatch] = field(default_factory=list)
    unmatched: List[OfficialStat] = field(default_factory=list)
    matched: int = 0

    @property
    def clean(self) -> bool:
        return not (self.diffs or self.ambiguous or self.unmatched)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "diffs": [asdict(d) for d in self.diffs],
            "ambiguous": [
                {"official": asdict(a.official), "candidate_ids": list(a.candidate_ids), "score": a.score}
                for a in self.ambiguous
            ],
            "unmatched": [asdict(u) for u in self.unmatched],
        }


class PlayerMatcher:
    """Scored-candidate matcher from official rows to computed stat lines."""

    def __init__(self, lines: Iterable[PlayerStatLine], threshold: float = DEFAULT_THRESHOLD) -> None:
        self.threshold = threshold
        self._lines = list(lines)
        self._by_id = {line.player_id: line for line in self._lines}
        self._names = [(normalize_name(line.player_name), line) for line in self._lines]

    def score(self, official: OfficialStat, line: PlayerStatLine, name: str) -> float:
        target = normalize_name(official.player_name)
        if not target or not name:
            return 0.0
        if target == name:
            score = EXACT_SCORE
        elif target in name or name in target:
            score = CONTAINS_SCORE
        else:
            return 0.0
        team = normalize_name(official.team_name)
        line_team = normalize_name(line.team_name)
        if team and line_team and (team == line_team or team in line_team or line_team in team):
            score += TEAM_BONUS
        return round(score, 6)

    def candidates(self, official: OfficialStat) -> List[Tuple[float, PlayerStatLine]]:
        scored = []
        for name, line in self._names:
            s = self.score(official, line, name)
            if s > 0:
                scored.append((s, line))
        scored.sort(key=lambda item: (-item[0], item[1].player_id))
        return scored

    def match(self, official: OfficialStat) -> Tuple[Optional[PlayerStatLine], List[Tuple[float, PlayerStatLine]]]:
        """Return ``(line, ties)``.

        ``line`` is the single best candidate at or above threshold. When
        several candidates share the best score, ``line`` is None and ``ties``
        lists them.
        """
        if official.player_id and official.player_id in self._by_id:
            return self._by_id[official.player_id], []
        scored = self.candidates(official)
        if not scored or scored[0][0] < self.threshold:
            return None, []
        best = scored[0][0]
        ties = [item for item in scored if item[0] == best]
        if len(ties) > 1:
            return None, ties
        return scored[0][1], []


def reconcile(
    lines: Iterable[PlayerStatLine],
    feed: Iterable[OfficialStat],
    threshold: float = DEFAULT_THRESHOLD,
) -> ReconciliationReport:
    matcher = PlayerMatcher(lines, threshold=threshold)
    report = ReconciliationReport()
    for official in feed:
        if official.stat_name not in STAT_NAMES:
            raise ValueError(f"official feed carries unknown stat: {official.stat_name}")
        line, ties = matcher.match(official)
        if ties:
            report.ambiguous.append(
                AmbiguousMatch(
                    official=official,
                    candidate_ids=tuple(t[1].player_id for t in ties),
                    score=ties[0][0],
                )
            )
            continue
        if line is None:
            report.unmatched.append(official)
            continue
        report.matched += 1
        computed = line.stat(official.stat_name)
        delta = computed - official.value
        if delta != 0:
            report.diffs.append(
                ReconciliationDiff(
                    player_id=line.player_id,
                    stat_name=official.stat_name,
                    computed_value=computed,
                    official_value=official.value,
                    delta=delta,
                    player_name=line.player_name,
                )
            )
    report.diffs.sort(key=lambda d: (d.stat_name, d.player_id))
    return report


def parse_official_feed(
    records: Iterable[Dict[str, Any]],
    stat_name: str,
    name_field: str = "name",
    team_field: str = "teamName",
    value_field: str = "qty",
    id_field: Optional[str] = None,
) -> List[OfficialStat]:
    out = []
    for rec in records:
        name = to_str(rec.get(name_field))
        value = to_int(rec.get(value_field))
        if not name or value is None:
            continue
        out.append(
            OfficialStat(
                player_name=name,
                team_name=to_str(rec.get(team_field)),
                stat_name=stat_name,
                value=value,
                player_id=to_str(rec.get(id_field)) if id_field else None,
            )
        )
    return out


class OfficialFeedClient:
    """Fetches official ranking lists described by ``official_feeds`` config entries.

    Each entry looks like::

        stat_name: goals
        path: /api/playerRecord.json
        params: {leagueId: 1, year: 2025, recordType: goal}
        records_path: [data, goal, league1]
    """

    def __init__(self, api: ApiClient) -> None:
        self.api = api

    async def fetch(self, feed_cfg: Dict[str, Any]) -> List[OfficialStat]:
        payload = await self.api.get_json(feed_cfg["path"], params=feed_cfg.get("params") or {})
        records = _records_at(payload, feed_cfg.get("records_path") or [])
        return parse_official_feed(
            records,
            stat_name=feed_cfg["stat_name"],
            name_field=feed_cfg.get("name_field", "name"),
            team_field=feed_cfg.get("team_field", "teamName"),
            value_field=feed_cfg.get("value_field", "qty"),
            id_field=feed_cfg.get("id_field"),
        )

    async def fetch_all(self, feeds: Sequence[Dict[str, Any]]) -> List[OfficialStat]:
        rows: List[OfficialStat] = []
        for feed_cfg in feeds:
            rows.extend(await self.fetch(feed_cfg))
        return rows


def _records_at(payload: Any, path: Sequence[str]) -> List[Dict[str, Any]]:
    data = nested(payload, *path) if path else payload
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]
    return []
