"""Implementation of RecordStore using SQLAlchemy"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from sqlalchemy import JSON, create_engine, select, update
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import RecordNotFoundError, WriteConflictError
from .game import Score
from .records import GameRecord, utc_now
from .store import (
    ErrorCallback,
    QueryCallback,
    QuerySubscription,
    RecordCallback,
    RecordQuery,
    RecordSubscription,
    Subscription,
    SubscriptionHub,
    _safe_call,
    new_game_id,
)

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class DBGame(Base):
    __tablename__ = "games"
    id: Mapped[str] = mapped_column(primary_key=True)
    board: Mapped[list[str]] = mapped_column(JSON)
    current_player: Mapped[str]
    active: Mapped[bool]
    player_x_id: Mapped[str]
    player_x_name: Mapped[str]
    player_o_id: Mapped[Optional[str]]
    player_o_name: Mapped[Optional[str]]
    game_name: Mapped[str] = mapped_column(default="")
    is_private: Mapped[bool] = mapped_column(default=False, index=True)
    score: Mapped[dict[str, int]] = mapped_column(JSON)
    winner: Mapped[Optional[str]]
    winning_cells: Mapped[Optional[list[int]]] = mapped_column(JSON)
    status_message: Mapped[str] = mapped_column(default="")
    rematch: Mapped[dict[str, bool]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, index=True)
    abandoned: Mapped[bool] = mapped_column(default=False)
    version: Mapped[int] = mapped_column(default=1)


def create_session_factory(database_url: str, echo: bool = False) -> sessionmaker[Session]:
    """Engine + session factory; in-memory SQLite shares one connection across threads."""
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(database_url, echo=echo)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class SQLRecordStore:
    """Records stored in SQL; conditional writes use the ``version`` column.

    Sessions are opened one at a time: with in-memory SQLite every session
    shares a single connection, which must not be used from two threads at once.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._db_lock = threading.RLock()
        self.hub = SubscriptionHub()

    def create(self, record: GameRecord) -> GameRecord:
        game_id = record.id or new_game_id()
        with self.hub.ordering:
            with self._session() as db:
                if db.get(DBGame, game_id) is not None:
                    raise WriteConflictError(f"Game {game_id} already exists")
                game_db = DBGame(id=game_id, version=1, **self._columns(record))
                db.add(game_db)
                db.commit()
                db.refresh(game_db)
                stored = self._to_record(game_db)
            logger.debug("Created game %s", game_id)
            self._publish(game_id, stored)
        return stored

    def get(self, game_id: str) -> Optional[GameRecord]:
        with self._session() as db:
            game_db = db.get(DBGame, game_id)
            if game_db is None:
                return None
            return self._to_record(game_db)

    def update_if_version(self, record: GameRecord, expected_version: int) -> GameRecord:
        with self.hub.ordering:
            with self._session() as db:
                statement = (
                    update(DBGame)
                    .where(DBGame.id == record.id, DBGame.version == expected_version)
                    .values(version=expected_version + 1, **self._columns(record))
                )
                result = db.execute(statement)
                if result.rowcount == 0:
                    db.rollback()
                    if db.get(DBGame, record.id) is None:
                        raise RecordNotFoundError(f"Game with id={record.id!r} not found.")
                    raise WriteConflictError(
                        f"Game {record.id} moved past version {expected_version}"
                    )
                db.commit()
                game_db = db.get(DBGame, record.id, populate_existing=True)
                assert game_db is not None
                stored = self._to_record(game_db)
            self._publish(record.id, stored)
        return stored

    def delete(self, game_id: str) -> Optional[GameRecord]:
        with self.hub.ordering:
            with self._session() as db:
                game_db = db.get(DBGame, game_id)
                if game_db is None:
                    return None
                removed = self._to_record(game_db)
                db.delete(game_db)
                db.commit()
            self._publish(game_id, None)
        return removed

    def query(self, query: RecordQuery) -> List[GameRecord]:
        column = getattr(DBGame, query.field)
        order_column = getattr(DBGame, query.order_by)
        statement = select(DBGame).where(column == query.value)
        statement = statement.order_by(
            order_column.desc() if query.descending else order_column.asc()
        )
        with self._session() as db:
            return [self._to_record(row) for row in db.scalars(statement)]

    def subscribe(
        self,
        game_id: str,
        on_change: RecordCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        sub = RecordSubscription(self.hub, game_id, on_change, on_error)
        with self.hub.ordering:
            self.hub.add_record(sub)
            _safe_call(on_change, self.get(game_id))
        return sub

    def subscribe_query(
        self,
        query: RecordQuery,
        on_change: QueryCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        sub = QuerySubscription(self.hub, query, on_change, on_error)
        with self.hub.ordering:
            self.hub.add_query(sub)
            _safe_call(on_change, self.query(query))
        return sub

    # -- Internal helpers --
    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self._db_lock, self._session_factory() as db:
            yield db

    def _publish(self, game_id: str, record: Optional[GameRecord]) -> None:
        self.hub.publish(game_id, record, self.query)

    def _columns(self, record: GameRecord) -> dict[str, object]:
        return {
            "board": list(record.board),
            "current_player": record.current_player,
            "active": record.active,
            "player_x_id": record.player_x_id,
            "player_x_name": record.player_x_name,
            "player_o_id": record.player_o_id,
            "player_o_name": record.player_o_name,
            "game_name": record.game_name,
            "is_private": record.is_private,
            "score": record.score.to_dict(),
            "winner": record.winner,
            "winning_cells": (
                list(record.winning_cells) if record.winning_cells is not None else None
            ),
            "status_message": record.status_message,
            "rematch": dict(record.rematch),
            "created_at": record.created_at,
            "abandoned": record.abandoned,
        }

    def _to_record(self, game_db: DBGame) -> GameRecord:
        """Convert SQLAlchemy row to the transport record."""
        created_at = game_db.created_at
        # SQLite drops tzinfo on the way back.
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return GameRecord(
            id=game_db.id,
            board=list(game_db.board),
            current_player=game_db.current_player,
            active=game_db.active,
            player_x_id=game_db.player_x_id,
            player_x_name=game_db.player_x_name,
            player_o_id=game_db.player_o_id,
            player_o_name=game_db.player_o_name,
            game_name=game_db.game_name,
            is_private=game_db.is_private,
            score=Score.from_dict(game_db.score),
            winner=game_db.winner,
            winning_cells=(
                list(game_db.winning_cells) if game_db.winning_cells is not None else None
            ),
            status_message=game_db.status_message,
            rematch=dict(game_db.rematch),
            created_at=created_at,
            abandoned=game_db.abandoned,
            version=game_db.version,
        )
