from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from .aggregate import PlayerStatLine
from .errors import PersistenceConflict
from .logging_utils import log_json
from .normalize import MatchEvent

logger = logging.getLogger(__name__)

Scope = Tuple[str, str]

metadata = MetaData()

# event_key is the hash of the natural key; a composite unique constraint would
# let rows with NULL minute_extra / player / detail slip through as distinct
match_events = Table(
    "match_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_key", String(64), nullable=False),
    Column("match_id", String(64), nullable=False),
    Column("competition_id", String(64), nullable=False),
    Column("season_label", String(32), nullable=False),
    Column("minute", Integer, nullable=False),
    Column("minute_extra", Integer),
    Column("event_type", String(32), nullable=False),
    Column("event_detail", String(128)),
    Column("team_id", String(64)),
    Column("primary_player_id", String(64)),
    Column("secondary_player_id", String(64)),
    Column("source_id", String(64), nullable=False),
    Column("source_record_id", String(128), nullable=False),
    Column("ingested_at", DateTime(timezone=True)),
    Column("primary_player_name", String(255)),
    Column("secondary_player_name", String(255)),
    Column("team_name", String(255)),
    UniqueConstraint("event_key", name="uq_match_events_natural_key"),
    Index("ix_match_events_scope", "competition_id", "season_label"),
    Index("ix_match_events_match", "match_id"),
)

player_stat_lines = Table(
    "player_stat_lines",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("player_id", String(64), nullable=False),
    Column("competition_id", String(64), nullable=False),
    Column("season_label", String(32), nullable=False),
    Column("goals", Integer, nullable=False, default=0),
    Column("assists", Integer, nullable=False, default=0),
    Column("yellow_cards", Integer, nullable=False, default=0),
    Column("red_cards", Integer, nullable=False, default=0),
    Column("appearances", Integer, nullable=False, default=0),
    Column("player_name", String(255)),
    Column("team_id", String(64)),
    Column("team_name", String(255)),
    Column("computed_at", DateTime(timezone=True)),
    UniqueConstraint("player_id", "competition_id", "season_label", name="uq_player_stat_lines_player_scope"),
)

EVENT_COLUMNS = [c.name for c in match_events.columns if c.name != "id"]
STAT_COLUMNS = [c.name for c in player_stat_lines.columns if c.name not in ("id", "computed_at")]


def _dialect_insert(engine: Engine):
    name = engine.dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"upsert not supported for dialect {name}")
    return insert


class PersistenceGateway:
    """Relational store for match events and per-scope stat lines.

    Events are upserted by natural key, or swapped per match on reimport.
    A scope's stat lines are replaced atomically (delete then insert).
    """

    def __init__(self, engine: Engine, chunk_size: int = 500) -> None:
        self.engine = engine
        self.chunk_size = chunk_size
        self._insert = _dialect_insert(engine)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "PersistenceGateway":
        engine_kwargs: Dict[str, Any] = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        return cls(create_engine(url, **engine_kwargs), **kwargs)

    def create_schema(self) -> None:
        metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    def _upsert_rows(self, conn: Connection, events: Sequence[MatchEvent]) -> int:
        rows = [{k: v for k, v in ev.to_row().items() if k in EVENT_COLUMNS} for ev in events]
        stmt = self._insert(match_events)
        update_cols = {c: stmt.excluded[c] for c in EVENT_COLUMNS if c != "event_key"}
        stmt = stmt.on_conflict_do_update(index_elements=["event_key"], set_=update_cols)
        written = 0
        for i in range(0, len(rows), self.chunk_size):
            chunk = rows[i : i + self.chunk_size]
            conn.execute(stmt, chunk)
            written += len(chunk)
        return written

    def _delete_matches(self, conn: Connection, scope: Scope, match_ids: Sequence[str]) -> int:
        competition_id, season_label = scope
        result = conn.execute(
            delete(match_events).where(
                match_events.c.competition_id == competition_id,
                match_events.c.season_label == season_label,
                match_events.c.match_id.in_(match_ids),
            )
        )
        return result.rowcount

    def upsert_events(self, events: Sequence[MatchEvent]) -> int:
        if not events:
            return 0
        try:
            with self.engine.begin() as conn:
                written = self._upsert_rows(conn, events)
        except IntegrityError as exc:
            raise PersistenceConflict(f"match_events upsert failed: {exc.orig}") from exc
        log_json(logger, "events_upserted", rows=written)
        return written

    def delete_match_events(self, scope: Scope, match_ids: Iterable[str]) -> int:
        ids = sorted(set(match_ids))
        if not ids:
            return 0
        with self.engine.begin() as conn:
            deleted = self._delete_matches(conn, scope, ids)
        log_json(logger, "match_events_deleted", scope=list(scope), matches=len(ids), rows=deleted)
        return deleted

    def replace_match_events(self, scope: Scope, match_ids: Iterable[str], events: Sequence[MatchEvent]) -> int:
        """Swap the stored events of ``match_ids`` for ``events`` in one transaction.

        On failure nothing is deleted, so stored events and stat lines keep
        agreeing with each other.
        """
        ids = sorted(set(match_ids))
        deleted = written = 0
        try:
            with self.engine.begin() as conn:
                if ids:
                    deleted = self._delete_matches(conn, scope, ids)
                if events:
                    written = self._upsert_rows(conn, events)
        except IntegrityError as exc:
            raise PersistenceConflict(f"match_events replace failed: {exc.orig}") from exc
        log_json(logger, "match_events_replaced", scope=list(scope), matches=len(ids), deleted=deleted, rows=written)
        return written

    def replace_stat_lines(self, scope: Scope, lines: Sequence[PlayerStatLine]) -> int:
        competition_id, season_label = scope
        stray = [line.player_id for line in lines if line.scope != scope]
        if stray:
            raise ValueError(f"stat lines outside scope {scope}: {stray[:5]}")
        computed_at = datetime.now(timezone.utc)
        rows = [dict(line.to_row(), computed_at=computed_at) for line in lines]
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    delete(player_stat_lines).where(
                        player_stat_lines.c.competition_id == competition_id,
                        player_stat_lines.c.season_label == season_label,
                    )
                )
                for i in range(0, len(rows), self.chunk_size):
                    conn.execute(player_stat_lines.insert(), rows[i : i + self.chunk_size])
        except IntegrityError as exc:
            raise PersistenceConflict(f"player_stat_lines replace failed: {exc.orig}") from exc
        log_json(logger, "stat_lines_replaced", scope=list(scope), rows=len(rows))
        return len(rows)

    def load_events(self, scope: Scope, match_ids: Optional[Iterable[str]] = None) -> List[MatchEvent]:
        competition_id, season_label = scope
        query = select(match_events).where(
            match_events.c.competition_id == competition_id,
            match_events.c.season_label == season_label,
        )
        if match_ids is not None:
            query = query.where(match_events.c.match_id.in_(sorted(set(match_ids))))
        query = query.order_by(match_events.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [MatchEvent.from_row(dict(row)) for row in rows]

    def load_stat_lines(self, scope: Scope) -> List[PlayerStatLine]:
        competition_id, season_label = scope
        query = (
            select(player_stat_lines)
            .where(
                player_stat_lines.c.competition_id == competition_id,
                player_stat_lines.c.season_label == season_label,
            )
            .order_by(player_stat_lines.c.player_id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [PlayerStatLine.from_row(dict(row)) for row in rows]
