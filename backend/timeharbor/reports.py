"""Dashboard statistics and team activity reports.

Everything here is a read-only view over the raw session records. Failures are
logged and replaced with zero or empty results so a broken report never blocks
the caller.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union, get_args

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from .models import (
    SESSION_ACTIVE,
    SESSION_COMPLETED,
    TICKET_IN_PROGRESS,
    TICKET_OPEN,
    Team,
    TeamMember,
    Ticket,
    TimeSession,
    User,
    as_utc,
    ensure_utc,
    local_midnight,
    resolve_now,
    to_local,
)
from .schemas import ActivityFilters, ActivityRow, DashboardStats, DateRangePreset
from .utils import format_duration_short

logger = logging.getLogger(__name__)

OPEN_TICKET_STATUSES = (TICKET_OPEN, TICKET_IN_PROGRESS, "open", "in_progress")

DATE_RANGE_PRESETS = get_args(DateRangePreset)

Bound = Union[dt.datetime, dt.date, str, None]


def calendar_bounds(as_of: dt.datetime) -> Tuple[dt.datetime, dt.datetime]:
    """Return ``(today_start, week_start)`` in UTC; weeks start on Sunday."""
    today = to_local(ensure_utc(as_of)).date()
    days_since_sunday = (today.weekday() + 1) % 7
    return local_midnight(today), local_midnight(today - dt.timedelta(days=days_since_sunday))


def _end_of_local_day(day: dt.date) -> dt.datetime:
    return local_midnight(day + dt.timedelta(days=1)) - dt.timedelta(microseconds=1)


def date_range_preset(preset: str, as_of: Optional[dt.datetime] = None) -> Tuple[dt.datetime, dt.datetime]:
    """Inclusive ``(start, end)`` window in UTC for a named preset.

    Every preset closes at the end of a local calendar day.
    """
    if preset not in DATE_RANGE_PRESETS:
        raise ValueError(f"Unknown date range preset: {preset}")
    now = resolve_now(as_of)
    today = to_local(now).date()
    today_start, week_start = calendar_bounds(now)
    if preset == "yesterday":
        yesterday = today - dt.timedelta(days=1)
        return local_midnight(yesterday), _end_of_local_day(yesterday)
    starts = {
        "today": today_start,
        "last7": local_midnight(today - dt.timedelta(days=6)),
        "thisWeek": week_start,
        "last14": local_midnight(today - dt.timedelta(days=13)),
    }
    return starts[preset], _end_of_local_day(today)


def compute_duration(session: TimeSession, as_of: Optional[dt.datetime] = None) -> int:
    """Seconds consumed by ``session`` as of ``as_of``.

    Completed sessions report their stored duration (or ``end - start`` when no
    duration was stored); running sessions always count up to ``as_of``.
    """
    if session.start_time is None:
        return 0
    start = as_utc(session.start_time)
    if session.status == SESSION_COMPLETED:
        if session.duration and session.duration > 0:
            return int(session.duration)
        if session.end_time is not None:
            return max(int((as_utc(session.end_time) - start).total_seconds()), 0)
    end = as_utc(session.end_time) if session.end_time is not None else None
    if end is None:
        end = resolve_now(as_of)
    return max(int((end - start).total_seconds()), 0)


def _member_count(team: Any) -> int:
    if isinstance(team, Mapping):
        members = team.get("member_ids") or []
    else:
        members = getattr(team, "member_ids", None) or []
    return len(members)


def _team_identifier(team: Any) -> Optional[str]:
    if isinstance(team, Mapping):
        return team.get("id")
    return getattr(team, "id", None)


def _worker_teams(db: Session, worker_id: str) -> List[Team]:
    return (
        db.query(Team)
        .outerjoin(TeamMember, TeamMember.team_id == Team.id)
        .filter(or_(Team.owner_id == worker_id, TeamMember.user_id == worker_id))
        .distinct()
        .all()
    )


def _count_open_tickets(db: Session, worker_id: str, team_id: Optional[str]) -> int:
    query = db.query(Ticket).filter(
        Ticket.status.in_(OPEN_TICKET_STATUSES),
        or_(
            Ticket.assigned_to == worker_id,
            and_(Ticket.assigned_to.is_(None), Ticket.created_by == worker_id),
        ),
    )
    if team_id:
        query = query.filter(Ticket.team_id == team_id)
    return query.count()


def get_dashboard_stats(
    db: Session,
    worker_id: str,
    teams: Optional[Sequence[Any]] = None,
    as_of: Optional[dt.datetime] = None,
    team_id: Optional[str] = None,
) -> DashboardStats:
    try:
        now = resolve_now(as_of)
        today_start, week_start = calendar_bounds(now)

        query = db.query(TimeSession).filter(TimeSession.worker_id == worker_id)
        if team_id:
            query = query.filter(TimeSession.team_id == team_id)

        today_seconds = 0
        week_seconds = 0
        # Bucketed by start time only, even when a session spans midnight.
        for session in query.all():
            start = as_utc(session.start_time)
            duration = compute_duration(session, now)
            if start >= today_start:
                today_seconds += duration
            if start >= week_start:
                week_seconds += duration

        if teams is None:
            teams = _worker_teams(db, worker_id)
        relevant = [team for team in teams if not team_id or _team_identifier(team) == team_id]
        members = sum(_member_count(team) for team in relevant)

        return DashboardStats(
            today_hours=today_seconds,
            week_hours=week_seconds,
            open_tickets=_count_open_tickets(db, worker_id, team_id),
            team_members=members or 1,
        )
    except Exception:
        logger.exception("Dashboard stats failed for worker %s", worker_id)
        return DashboardStats(today_hours=0, week_hours=0, open_tickets=0, team_members=1)


def _coerce_bound(value: Bound, *, end: bool) -> Optional[dt.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            value = dt.date.fromisoformat(text)
        else:
            value = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    if isinstance(value, dt.datetime):
        return ensure_utc(value)
    # Whole days: the end bound covers the full local day.
    if end:
        return _end_of_local_day(value)
    return local_midnight(value)


def _format_local_time(value: dt.datetime) -> str:
    return to_local(value).strftime("%H:%M")


def _ticket_titles(session: TimeSession) -> List[str]:
    titles: List[str] = []
    if session.ticket_title:
        titles.append(session.ticket_title)
    for interval in reversed(session.intervals or []):
        if interval.ticket_title and interval.ticket_title not in titles:
            titles.append(interval.ticket_title)
    return titles


def build_activity_row(session: TimeSession, user: Optional[User], as_of: dt.datetime) -> ActivityRow:
    local_start = to_local(session.start_time)
    is_active = session.status == SESSION_ACTIVE
    if is_active:
        clock_out = "Now"
    elif session.end_time is not None:
        clock_out = _format_local_time(session.end_time)
    else:
        clock_out = "N/A"
    duration = compute_duration(session, as_of)
    titles = _ticket_titles(session)
    name = None
    email = None
    if user is not None:
        name = user.display_name or user.email
        email = user.email
    return ActivityRow(
        session_id=session.id,
        worker_id=session.worker_id,
        worker_name=name or "Member",
        worker_email=email,
        date=local_start.date().isoformat(),
        clock_in=local_start.strftime("%H:%M"),
        clock_out=clock_out,
        start_time=as_utc(session.start_time),
        end_time=as_utc(session.end_time) if session.end_time is not None else None,
        duration=duration,
        hours=format_duration_short(duration),
        status=session.status,
        ticket_title=titles[0] if titles else None,
        ticket_titles=titles,
        note=session.note,
    )


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().casefold()


def matches_filters(row: ActivityRow, filters: Optional[ActivityFilters]) -> bool:
    if filters is None:
        return True
    status = _norm(filters.status)
    if status and _norm(row.status) != status:
        return False
    partial: Dict[str, Optional[str]] = {
        "date": row.date,
        "member": row.worker_name,
        "email": row.worker_email,
        "hours": row.hours,
        "clock_in": row.clock_in,
        "clock_out": row.clock_out,
    }
    for field, actual in partial.items():
        wanted = _norm(getattr(filters, field))
        if wanted and wanted not in _norm(actual):
            return False
    ticket = _norm(filters.ticket)
    if ticket and not any(ticket in _norm(title) for title in row.ticket_titles):
        return False
    return True


def _lookup_users(db: Session, worker_ids: Iterable[str]) -> Dict[str, User]:
    ids = set(worker_ids)
    if not ids:
        return {}
    return {user.id: user for user in db.query(User).filter(User.id.in_(ids)).all()}


def get_team_sessions(
    db: Session,
    team_id: str,
    range_start: Bound = None,
    range_end: Bound = None,
    filters: Optional[ActivityFilters] = None,
    preset: Optional[str] = None,
    as_of: Optional[dt.datetime] = None,
) -> List[ActivityRow]:
    try:
        now = resolve_now(as_of)
        window_start: Optional[dt.datetime] = None
        window_end: Optional[dt.datetime] = None
        if preset:
            window_start, window_end = date_range_preset(preset, now)
        window_start = _coerce_bound(range_start, end=False) or window_start
        window_end = _coerce_bound(range_end, end=True) or window_end

        sessions = db.query(TimeSession).filter(TimeSession.team_id == team_id).all()
        sessions.sort(key=lambda item: as_utc(item.start_time), reverse=True)

        in_window: List[TimeSession] = []
        for session in sessions:
            start = as_utc(session.start_time)
            if window_start is not None and start < window_start:
                continue
            if window_end is not None and start > window_end:
                continue
            in_window.append(session)

        users = _lookup_users(db, (session.worker_id for session in in_window))
        rows = [build_activity_row(session, users.get(session.worker_id), now) for session in in_window]
        return [row for row in rows if matches_filters(row, filters)]
    except Exception:
        logger.exception("Team activity report failed for team %s", team_id)
        return []
