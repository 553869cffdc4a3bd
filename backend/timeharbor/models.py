from __future__ import annotations

import datetime as dt
import uuid
from zoneinfo import ZoneInfo

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import declarative_base, relationship, validates

from .config import settings

Base = declarative_base()

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)

SESSION_ACTIVE = "active"
SESSION_COMPLETED = "completed"
SESSION_STATUSES = (SESSION_ACTIVE, SESSION_COMPLETED)

TICKET_OPEN = "Open"
TICKET_IN_PROGRESS = "In Progress"
TICKET_CLOSED = "Closed"

_LEGACY_TICKET_STATUSES = {
    "open": TICKET_OPEN,
    "in_progress": TICKET_IN_PROGRESS,
    "in progress": TICKET_IN_PROGRESS,
    "done": TICKET_CLOSED,
    "closed": TICKET_CLOSED,
}


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """Convert caller input to UTC; naive values are local wall-clock time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=LOCAL_TZ)
    return value.astimezone(UTC)


def resolve_now(now: dt.datetime | None = None) -> dt.datetime:
    return ensure_utc(now) if now else utcnow()


def to_local(value: dt.datetime) -> dt.datetime:
    return as_utc(value).astimezone(LOCAL_TZ)


def local_midnight(day: dt.date) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.min, tzinfo=LOCAL_TZ).astimezone(UTC)


def normalize_ticket_status(value: str | None) -> str:
    if not value:
        return TICKET_OPEN
    return _LEGACY_TICKET_STATUSES.get(value.strip().lower(), value)


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=new_id)
    display_name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Team(Base):
    __tablename__ = "teams"

    id = Column(String(64), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    owner_id = Column(String(64), nullable=False, index=True)
    manager_ids = Column(SQLiteJSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")

    @property
    def member_ids(self) -> list[str]:
        return [member.user_id for member in self.members]

    def is_lead(self, user_id: str) -> bool:
        return user_id == self.owner_id or user_id in (self.manager_ids or [])


class TeamMember(Base):
    __tablename__ = "team_members"

    team_id = Column(String(64), ForeignKey("teams.id"), primary_key=True)
    user_id = Column(String(64), primary_key=True, index=True)

    team = relationship("Team", back_populates="members")


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String(64), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    team_id = Column(String(64), nullable=True, index=True)
    created_by = Column(String(64), nullable=False, index=True)
    assigned_to = Column(String(64), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=TICKET_OPEN, index=True)
    total_time_spent = Column(Integer, nullable=False, default=0)  # seconds
    last_tracked_duration = Column(Integer, nullable=False, default=0)  # seconds
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @validates("status")
    def _normalize_status(self, _key: str, value: str | None) -> str:
        return normalize_ticket_status(value)

    def record_tracked(self, seconds: int, now: dt.datetime) -> None:
        seconds = max(int(seconds), 0)
        self.total_time_spent = (self.total_time_spent or 0) + seconds
        self.last_tracked_duration = seconds
        self.updated_at = as_utc(now)


class TimeSession(Base):
    __tablename__ = "time_sessions"
    __table_args__ = (
        # Store-level guard: one active session per worker.
        Index(
            "uq_time_sessions_active_worker",
            "worker_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(String(64), primary_key=True, default=new_id)
    worker_id = Column(String(64), nullable=False, index=True)
    team_id = Column(String(64), nullable=True, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=False, default=0)  # seconds
    status = Column(String(20), nullable=False, default=SESSION_ACTIVE, index=True)
    ticket_id = Column(String(64), nullable=True)
    ticket_title = Column(String(200), nullable=True)
    ticket_start_time = Column(DateTime(timezone=True), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    intervals = relationship(
        "TicketInterval",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="TicketInterval.end_time",
    )

    @property
    def is_tracking(self) -> bool:
        return self.ticket_id is not None and self.ticket_start_time is not None

    def clear_attribution(self) -> None:
        self.ticket_id = None
        self.ticket_title = None
        self.ticket_start_time = None

    def mark_completed(self, now: dt.datetime) -> None:
        normalized_now = as_utc(now)
        self.end_time = normalized_now
        delta = normalized_now - as_utc(self.start_time)
        self.duration = max(int(delta.total_seconds()), 0)
        self.status = SESSION_COMPLETED


class TicketInterval(Base):
    __tablename__ = "ticket_intervals"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(64), ForeignKey("time_sessions.id"), nullable=False, index=True)
    ticket_id = Column(String(64), nullable=False, index=True)
    ticket_title = Column(String(200), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    duration = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    session = relationship("TimeSession", back_populates="intervals")
