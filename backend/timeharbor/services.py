from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .database import atomic
from .errors import ConflictError, InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from .models import (
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    SESSION_STATUSES,
    Team,
    Ticket,
    TicketInterval,
    TimeSession,
    as_utc,
    ensure_utc,
    resolve_now,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlushedInterval:
    """Ticket time committed when an attribution is closed."""

    ticket_id: str
    duration: int


def _parse_datetime(value: Any, field: str) -> Optional[dt.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = dt.datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"Invalid {field}: {value!r}") from exc
        return ensure_utc(parsed)
    raise ValidationError(f"Invalid {field}: {value!r}")


def _get_session(db: Session, session_id: str) -> TimeSession:
    session = db.get(TimeSession, session_id)
    if session is None:
        raise NotFoundError("Session")
    return session


def _get_ticket(db: Session, ticket_id: str) -> Ticket:
    ticket = db.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket")
    return ticket


def _require_active(session: TimeSession) -> None:
    if session.status != SESSION_ACTIVE:
        raise InvalidStateError("Session is not active")


# Session lifecycle


def get_active_session(db: Session, worker_id: str) -> Optional[TimeSession]:
    return (
        db.query(TimeSession)
        .filter(TimeSession.worker_id == worker_id, TimeSession.status == SESSION_ACTIVE)
        .order_by(TimeSession.start_time.desc())
        .first()
    )


def clock_in(
    db: Session,
    worker_id: str,
    ticket_id: Optional[str] = None,
    ticket_title: Optional[str] = None,
    team_id: Optional[str] = None,
    *,
    now: Optional[dt.datetime] = None,
) -> TimeSession:
    if get_active_session(db, worker_id) is not None:
        raise ConflictError()
    if ticket_title and not ticket_id:
        raise ValidationError("ticket_title requires ticket_id")

    started = resolve_now(now)
    session = TimeSession(
        worker_id=worker_id,
        team_id=team_id,
        start_time=started,
        end_time=None,
        duration=0,
        status=SESSION_ACTIVE,
        created_at=started,
    )
    if ticket_id:
        ticket = _get_ticket(db, ticket_id)
        session.ticket_id = ticket.id
        session.ticket_title = ticket_title or ticket.title
        session.ticket_start_time = started

    db.add(session)
    try:
        db.commit()
    except IntegrityError as exc:
        # A concurrent clock-in won the partial unique index.
        db.rollback()
        logger.warning("Concurrent clock-in rejected for worker %s", worker_id)
        raise ConflictError() from exc
    db.refresh(session)
    logger.info("Worker %s clocked in (session %s)", worker_id, session.id)
    return session


def clock_out(db: Session, session_id: str, *, now: Optional[dt.datetime] = None) -> TimeSession:
    session = _get_session(db, session_id)
    _require_active(session)
    ended = resolve_now(now)
    with atomic(db):
        if session.is_tracking:
            _flush_attribution(db, session, ended)
        session.clear_attribution()
        session.mark_completed(ended)
        db.add(session)
    db.refresh(session)
    logger.info(
        "Worker %s clocked out (session %s, %ss)", session.worker_id, session.id, session.duration
    )
    return session


def list_recent_sessions(db: Session, worker_id: str, limit: Optional[int] = None) -> List[TimeSession]:
    count = limit if limit is not None else settings.recent_limit
    try:
        return (
            db.query(TimeSession)
            .filter(TimeSession.worker_id == worker_id)
            .order_by(TimeSession.start_time.desc(), TimeSession.created_at.desc())
            .limit(max(count, 0))
            .all()
        )
    except Exception:
        logger.exception("Could not load recent sessions for worker %s", worker_id)
        return []


# Ticket sub-timer


def _flush_attribution(db: Session, session: TimeSession, now: dt.datetime) -> Optional[FlushedInterval]:
    if not session.is_tracking:
        session.clear_attribution()
        return None

    started = as_utc(session.ticket_start_time)
    ended = as_utc(now)
    duration = max(int((ended - started).total_seconds()), 0)

    ticket = db.get(Ticket, session.ticket_id)
    if ticket is None:
        logger.warning("Ticket %s vanished while tracked; %ss not credited", session.ticket_id, duration)
    else:
        ticket.record_tracked(duration, ended)
        db.add(ticket)

    db.add(
        TicketInterval(
            session_id=session.id,
            ticket_id=session.ticket_id,
            ticket_title=session.ticket_title,
            start_time=started,
            end_time=ended,
            duration=duration,
        )
    )
    flushed = FlushedInterval(ticket_id=session.ticket_id, duration=duration)
    session.clear_attribution()
    db.add(session)
    return flushed


def _open_attribution(
    session: TimeSession,
    ticket: Ticket,
    ticket_title: Optional[str],
    note: Optional[str],
    now: dt.datetime,
) -> None:
    session.ticket_id = ticket.id
    session.ticket_title = ticket_title or ticket.title
    session.ticket_start_time = now
    if note is not None:
        session.note = note or None


def start_ticket_tracking(
    db: Session,
    session_id: str,
    ticket_id: str,
    ticket_title: Optional[str] = None,
    note: Optional[str] = None,
    *,
    now: Optional[dt.datetime] = None,
) -> TimeSession:
    session = _get_session(db, session_id)
    _require_active(session)
    if session.is_tracking:
        if session.ticket_id == ticket_id:
            return session
        raise InvalidStateError("Another ticket is already being tracked; stop or switch first")
    ticket = _get_ticket(db, ticket_id)

    with atomic(db):
        _open_attribution(session, ticket, ticket_title, note, resolve_now(now))
        db.add(session)
    db.refresh(session)
    logger.info("Session %s tracking ticket %s", session.id, ticket.id)
    return session


def stop_ticket_tracking(
    db: Session,
    session_id: str,
    *,
    now: Optional[dt.datetime] = None,
) -> Optional[FlushedInterval]:
    session = _get_session(db, session_id)
    stray = not session.is_tracking and (
        session.ticket_id or session.ticket_title or session.ticket_start_time
    )
    if not session.is_tracking and not stray:
        return None

    with atomic(db):
        flushed = _flush_attribution(db, session, resolve_now(now))
    if flushed is not None:
        logger.info("Session %s flushed %ss to ticket %s", session.id, flushed.duration, flushed.ticket_id)
    return flushed


def switch_ticket_tracking(
    db: Session,
    session_id: str,
    ticket_id: str,
    ticket_title: Optional[str] = None,
    note: Optional[str] = None,
    *,
    now: Optional[dt.datetime] = None,
) -> Tuple[Optional[FlushedInterval], TimeSession]:
    """Stop the current attribution and start ``ticket_id`` at the same instant."""
    session = _get_session(db, session_id)
    _require_active(session)
    if session.is_tracking and session.ticket_id == ticket_id:
        return None, session
    ticket = _get_ticket(db, ticket_id)

    switched_at = resolve_now(now)
    with atomic(db):
        flushed = _flush_attribution(db, session, switched_at)
        _open_attribution(session, ticket, ticket_title, note, switched_at)
        db.add(session)
    db.refresh(session)
    logger.info("Session %s switched to ticket %s", session.id, ticket.id)
    return flushed, session


# Corrections


def _ensure_can_edit(db: Session, session: TimeSession, editor_id: str) -> None:
    if editor_id == session.worker_id:
        return
    team = db.get(Team, session.team_id) if session.team_id else None
    if team is not None and team.is_lead(editor_id):
        return
    raise PermissionDeniedError()


def update_session_times(
    db: Session,
    session_id: str,
    start_time: Any,
    end_time: Any = None,
    status: Optional[str] = None,
    *,
    editor_id: Optional[str] = None,
) -> TimeSession:
    session = _get_session(db, session_id)
    if editor_id is not None:
        _ensure_can_edit(db, session, editor_id)

    start_utc = _parse_datetime(start_time, "start_time")
    if start_utc is None:
        raise ValidationError("start_time is required")
    end_utc = _parse_datetime(end_time, "end_time")
    if status is not None and status not in SESSION_STATUSES:
        raise ValidationError(f"Unknown status: {status!r}")

    clamped = False
    if end_utc is not None and end_utc < start_utc:
        logger.info("Discarding end before start for session %s", session.id)
        end_utc = None
        clamped = True

    if clamped:
        resolved = SESSION_ACTIVE
    elif status is not None:
        resolved = status
    else:
        resolved = SESSION_COMPLETED if end_utc is not None else SESSION_ACTIVE

    if resolved == SESSION_COMPLETED and end_utc is None:
        raise ValidationError("A completed session needs an end time")
    if resolved == SESSION_ACTIVE:
        end_utc = None
        other = get_active_session(db, session.worker_id)
        if other is not None and other.id != session.id:
            raise ConflictError()

    try:
        with atomic(db):
            session.start_time = start_utc
            session.end_time = end_utc
            session.status = resolved
            if end_utc is not None:
                session.duration = max(int((end_utc - start_utc).total_seconds()), 0)
            else:
                session.duration = 0
            if resolved == SESSION_COMPLETED and (session.ticket_id or session.ticket_start_time):
                logger.warning("Correction closed session %s with open ticket attribution", session.id)
                session.clear_attribution()
            db.add(session)
    except IntegrityError as exc:
        raise ConflictError() from exc
    db.refresh(session)
    logger.info("Session %s corrected to %s (%ss)", session.id, session.status, session.duration)
    return session
