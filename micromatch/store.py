"""
Persistent store for responses, participant status, rooms and the weekly
unmatched ledger.

SQLAlchemy ORM over any supported database; SQLite is the default.
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .data_models import ParticipantResponse, ParticipantStatus, Preference, RoomRecord
from .errors import StoreError


def now():
    return datetime.now(timezone.utc)


Base = declarative_base()


class Participant(Base):
    __tablename__ = "participants"

    participant_id = Column(String(64), primary_key=True)
    status = Column(String(32), default=ParticipantStatus.AWAITING_TOPICS.value, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=now, onupdate=now)


class Response(Base):
    __tablename__ = "responses"

    participant_id = Column(String(64), primary_key=True)
    topics = Column(JSON, default=list, nullable=False)
    preference = Column(String(16), default=Preference.GROUP.value, nullable=False)
    submitted_at = Column(DateTime(timezone=True), default=now)


class Room(Base):
    __tablename__ = "match_rooms"

    room_id = Column(String(64), primary_key=True)
    topic = Column(String(255), nullable=True)
    kind = Column(String(16), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now)
    archived = Column(Boolean, default=False, nullable=False)


class RoomParticipant(Base):
    __tablename__ = "match_participants"
    __table_args__ = (UniqueConstraint("room_id", "participant_id", name="uq_room_participant"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(String(64), index=True, nullable=False)
    participant_id = Column(String(64), index=True, nullable=False)


class WeeklyUnmatched(Base):
    __tablename__ = "weekly_unmatched"
    __table_args__ = (UniqueConstraint("participant_id", "week_bucket", name="uq_unmatched_week"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    participant_id = Column(String(64), index=True, nullable=False)
    week_bucket = Column(String(10), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=now)


class MatchStore(Protocol):
    def get_all_responses(self) -> List[ParticipantResponse]:
        ...

    def add_unmatched_for_week(self, week_bucket: str, participant_ids: Iterable[str]) -> int:
        ...

    def upsert_room(self, room_id: str, topic: Optional[str] = None, kind: Optional[str] = None) -> None:
        ...

    def add_room_participants(self, room_id: str, participant_ids: Iterable[str]) -> int:
        ...

    def set_status(self, participant_ids: Iterable[str], status: ParticipantStatus) -> None:
        ...

    def list_participants(self, exclude: Iterable[ParticipantStatus] = (ParticipantStatus.OPTED_OUT,)) -> List[str]:
        ...


class SqlStore:
    """SQLAlchemy-backed store.

    Writes are serialized with a lock so provisioning workers can record
    rooms from several threads.
    """

    def __init__(self, database_url: str = "sqlite:///data/micromatch.db", echo: bool = False):
        url = make_url(database_url)
        kwargs = {}
        if url.get_backend_name() == "sqlite":
            kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every thread sees its own empty database
                kwargs["poolclass"] = StaticPool
            else:
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(database_url, echo=echo, future=True, **kwargs)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False, autoflush=False)
        self._lock = threading.RLock()
        Base.metadata.create_all(self.engine)

    def _session(self) -> Session:
        return self.Session()

    def _write(self, fn):
        with self._lock:
            with self._session() as session:
                try:
                    result = fn(session)
                    session.commit()
                    return result
                except SQLAlchemyError as e:
                    session.rollback()
                    raise StoreError(str(e)) from e

    def _read(self, fn):
        with self._lock:
            with self._session() as session:
                try:
                    return fn(session)
                except SQLAlchemyError as e:
                    raise StoreError(str(e)) from e

    # --- responses -------------------------------------------------------

    def save_response(
        self,
        participant_id: str,
        topics: List[str],
        preference: Preference = Preference.GROUP,
    ) -> None:
        """Insert or replace a participant's response and mark them RESPONDED."""

        def _save(session: Session) -> None:
            row = session.get(Response, participant_id)
            if row is None:
                row = Response(participant_id=participant_id)
                session.add(row)
            row.topics = list(topics)
            row.preference = Preference(preference).value
            row.submitted_at = now()
            self._set_status(session, [participant_id], ParticipantStatus.RESPONDED)

        self._write(_save)

    def get_all_responses(self) -> List[ParticipantResponse]:
        def _all(session: Session) -> List[ParticipantResponse]:
            rows = session.scalars(select(Response).order_by(Response.submitted_at, Response.participant_id))
            return [
                ParticipantResponse(
                    participant_id=row.participant_id,
                    topics=list(row.topics or []),
                    preference=row.preference,
                    submitted_at=row.submitted_at,
                )
                for row in rows
            ]

        return self._read(_all)

    def clear_responses(self) -> int:
        def _clear(session: Session) -> int:
            rows = session.scalars(select(Response)).all()
            for row in rows:
                session.delete(row)
            return len(rows)

        return self._write(_clear)

    # --- participants ----------------------------------------------------

    @staticmethod
    def _set_status(session: Session, participant_ids: Iterable[str], status: ParticipantStatus) -> None:
        for pid in dict.fromkeys(participant_ids):
            row = session.get(Participant, pid)
            if row is None:
                session.add(Participant(participant_id=pid, status=status.value))
            else:
                row.status = status.value

    def set_status(self, participant_ids: Iterable[str], status: ParticipantStatus) -> None:
        ids = list(participant_ids)
        self._write(lambda session: self._set_status(session, ids, status))

    def get_status(self, participant_id: str) -> Optional[ParticipantStatus]:
        def _get(session: Session) -> Optional[ParticipantStatus]:
            row = session.get(Participant, participant_id)
            return ParticipantStatus(row.status) if row else None

        return self._read(_get)

    def list_participants(self, exclude: Iterable[ParticipantStatus] = (ParticipantStatus.OPTED_OUT,)) -> List[str]:
        excluded = [s.value for s in exclude]

        def _list(session: Session) -> List[str]:
            stmt = select(Participant.participant_id).order_by(Participant.participant_id)
            if excluded:
                stmt = stmt.where(Participant.status.not_in(excluded))
            return list(session.scalars(stmt))

        return self._read(_list)

    # --- rooms -----------------------------------------------------------

    def upsert_room(self, room_id: str, topic: Optional[str] = None, kind: Optional[str] = None) -> None:
        def _upsert(session: Session) -> None:
            row = session.get(Room, room_id)
            if row is None:
                session.add(Room(room_id=room_id, topic=topic, kind=kind))
                return
            if topic is not None:
                row.topic = topic
            if kind is not None:
                row.kind = kind

        self._write(_upsert)

    def add_room_participants(self, room_id: str, participant_ids: Iterable[str]) -> int:
        """Record room membership; already-recorded members are skipped. Returns rows added."""
        ids = list(dict.fromkeys(participant_ids))

        def _add(session: Session) -> int:
            existing = set(
                session.scalars(
                    select(RoomParticipant.participant_id).where(RoomParticipant.room_id == room_id)
                )
            )
            added = [pid for pid in ids if pid not in existing]
            session.add_all(RoomParticipant(room_id=room_id, participant_id=pid) for pid in added)
            return len(added)

        return self._write(_add)

    def get_room_participants(self, room_id: str) -> List[str]:
        def _get(session: Session) -> List[str]:
            stmt = (
                select(RoomParticipant.participant_id)
                .where(RoomParticipant.room_id == room_id)
                .order_by(RoomParticipant.id)
            )
            return list(session.scalars(stmt))

        return self._read(_get)

    def list_rooms(self, archived: Optional[bool] = None) -> List[RoomRecord]:
        def _list(session: Session) -> List[RoomRecord]:
            stmt = select(Room).order_by(Room.created_at, Room.room_id)
            if archived is not None:
                stmt = stmt.where(Room.archived == archived)
            return [
                RoomRecord(
                    room_id=row.room_id,
                    topic=row.topic,
                    kind=row.kind,
                    created_at=row.created_at,
                    archived=row.archived,
                )
                for row in session.scalars(stmt)
            ]

        return self._read(_list)

    def mark_room_archived(self, room_id: str) -> bool:
        def _mark(session: Session) -> bool:
            row = session.get(Room, room_id)
            if row is None:
                return False
            row.archived = True
            return True

        return self._write(_mark)

    # --- weekly ledger ---------------------------------------------------

    def add_unmatched_for_week(self, week_bucket: str, participant_ids: Iterable[str]) -> int:
        """Insert-if-absent per (participant, week). Returns rows added."""
        ids = list(dict.fromkeys(participant_ids))

        def _add(session: Session) -> int:
            existing = set(
                session.scalars(
                    select(WeeklyUnmatched.participant_id).where(WeeklyUnmatched.week_bucket == week_bucket)
                )
            )
            added = [pid for pid in ids if pid not in existing]
            session.add_all(WeeklyUnmatched(participant_id=pid, week_bucket=week_bucket) for pid in added)
            return len(added)

        return self._write(_add)

    def get_unmatched_for_week(self, week_bucket: str) -> List[str]:
        def _get(session: Session) -> List[str]:
            stmt = (
                select(WeeklyUnmatched.participant_id)
                .where(WeeklyUnmatched.week_bucket == week_bucket)
                .order_by(WeeklyUnmatched.id)
            )
            return list(session.scalars(stmt))

        return self._read(_get)
