from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy.orm import Session

from timeharbor import models, services
from timeharbor.errors import InvalidStateError, NotFoundError


def _seconds(value: int) -> dt.timedelta:
    return dt.timedelta(seconds=value)


def test_clock_out_flushes_open_attribution(session: Session, t0: dt.datetime, make_ticket):
    ticket = make_ticket("t-a", "Ticket A")
    record = services.clock_in(session, "alice", now=t0)
    services.start_ticket_tracking(session, record.id, "t-a", now=t0 + _seconds(10))

    closed = services.clock_out(session, record.id, now=t0 + _seconds(40))

    session.refresh(ticket)
    assert ticket.total_time_spent == 30
    assert ticket.last_tracked_duration == 30
    assert closed.duration == 40
    assert closed.ticket_id is None
    assert closed.ticket_title is None
    assert closed.ticket_start_time is None
    assert [interval.duration for interval in closed.intervals] == [30]


def test_clock_in_with_ticket_credits_whole_session(session: Session, t0: dt.datetime, make_ticket):
    ticket = make_ticket("t-a")
    record = services.clock_in(session, "alice", ticket_id="t-a", now=t0)

    services.clock_out(session, record.id, now=t0 + dt.timedelta(minutes=25))

    session.refresh(ticket)
    assert ticket.total_time_spent == 25 * 60


def test_switching_tickets_conserves_time(session: Session, t0: dt.datetime, make_ticket):
    ticket_a = make_ticket("t-a")
    ticket_b = make_ticket("t-b")
    record = services.clock_in(session, "alice", now=t0)
    services.start_ticket_tracking(session, record.id, "t-a", now=t0)

    flushed, switched = services.switch_ticket_tracking(session, record.id, "t-b", now=t0 + _seconds(20))
    assert flushed == services.FlushedInterval(ticket_id="t-a", duration=20)
    assert switched.ticket_id == "t-b"
    assert models.as_utc(switched.ticket_start_time) == t0 + _seconds(20)

    stopped = services.stop_ticket_tracking(session, record.id, now=t0 + _seconds(35))
    assert stopped == services.FlushedInterval(ticket_id="t-b", duration=15)

    session.refresh(ticket_a)
    session.refresh(ticket_b)
    assert ticket_a.total_time_spent == 20
    assert ticket_b.total_time_spent == 15
    assert ticket_a.total_time_spent + ticket_b.total_time_spent == 35


def test_stop_then_start_matches_switch(session: Session, t0: dt.datetime, make_ticket):
    ticket_a = make_ticket("t-a")
    ticket_b = make_ticket("t-b")
    record = services.clock_in(session, "alice", ticket_id="t-a", now=t0)

    services.stop_ticket_tracking(session, record.id, now=t0 + _seconds(20))
    services.start_ticket_tracking(session, record.id, "t-b", now=t0 + _seconds(20))
    closed = services.clock_out(session, record.id, now=t0 + _seconds(35))

    session.refresh(ticket_a)
    session.refresh(ticket_b)
    assert ticket_a.total_time_spent == 20
    assert ticket_b.total_time_spent == 15
    assert closed.duration == ticket_a.total_time_spent + ticket_b.total_time_spent


def test_totals_accumulate_across_sessions(session: Session, t0: dt.datetime, make_ticket):
    ticket = make_ticket("t-a")
    first = services.clock_in(session, "alice", ticket_id="t-a", now=t0)
    services.clock_out(session, first.id, now=t0 + _seconds(100))
    second = services.clock_in(session, "bob", ticket_id="t-a", now=t0)
    services.clock_out(session, second.id, now=t0 + _seconds(50))

    session.refresh(ticket)
    assert ticket.total_time_spent == 150
    assert ticket.last_tracked_duration == 50


def test_stop_without_attribution_is_noop(session: Session, t0: dt.datetime, make_ticket):
    ticket = make_ticket("t-a")
    record = services.clock_in(session, "alice", now=t0)

    assert services.stop_ticket_tracking(session, record.id, now=t0 + _seconds(10)) is None
    assert services.stop_ticket_tracking(session, record.id, now=t0 + _seconds(20)) is None

    session.refresh(ticket)
    assert ticket.total_time_spent == 0
    assert ticket.last_tracked_duration == 0
    assert session.query(models.TicketInterval).count() == 0


def test_stop_clears_stray_fields(session: Session, t0: dt.datetime):
    record = services.clock_in(session, "alice", now=t0)
    record.ticket_title = "Leftover"
    session.commit()

    assert services.stop_ticket_tracking(session, record.id, now=t0 + _seconds(5)) is None

    session.refresh(record)
    assert record.ticket_title is None


def test_stop_unknown_session(session: Session):
    with pytest.raises(NotFoundError):
        services.stop_ticket_tracking(session, "missing")


def test_start_requires_active_session(session: Session, t0: dt.datetime, make_ticket, record_session):
    make_ticket("t-a")
    record = record_session("alice", t0, t0 + _seconds(60))

    with pytest.raises(InvalidStateError):
        services.start_ticket_tracking(session, record.id, "t-a", now=t0 + _seconds(90))


def test_start_unknown_ticket(session: Session, t0: dt.datetime):
    record = services.clock_in(session, "alice", now=t0)

    with pytest.raises(NotFoundError):
        services.start_ticket_tracking(session, record.id, "missing", now=t0)


def test_start_while_tracking_other_ticket_is_rejected(session: Session, t0: dt.datetime, make_ticket):
    make_ticket("t-a")
    make_ticket("t-b")
    record = services.clock_in(session, "alice", ticket_id="t-a", now=t0)

    with pytest.raises(InvalidStateError):
        services.start_ticket_tracking(session, record.id, "t-b", now=t0 + _seconds(5))

    session.refresh(record)
    assert record.ticket_id == "t-a"


def test_restarting_same_ticket_keeps_start(session: Session, t0: dt.datetime, make_ticket):
    make_ticket("t-a")
    record = services.clock_in(session, "alice", ticket_id="t-a", now=t0)

    again = services.start_ticket_tracking(session, record.id, "t-a", now=t0 + _seconds(30))

    assert models.as_utc(again.ticket_start_time) == t0


def test_start_sets_note_and_title(session: Session, t0: dt.datetime, make_ticket):
    make_ticket("t-a", "Ticket A")
    record = services.clock_in(session, "alice", now=t0)

    tracked = services.start_ticket_tracking(
        session, record.id, "t-a", note="Pairing with Bob", now=t0 + _seconds(3)
    )

    assert tracked.ticket_title == "Ticket A"
    assert tracked.note == "Pairing with Bob"
    assert models.as_utc(tracked.ticket_start_time) == t0 + _seconds(3)


def test_flush_never_goes_negative(session: Session, t0: dt.datetime, make_ticket):
    ticket = make_ticket("t-a")
    record = services.clock_in(session, "alice", now=t0)
    services.start_ticket_tracking(session, record.id, "t-a", now=t0 + _seconds(60))

    flushed = services.stop_ticket_tracking(session, record.id, now=t0 + _seconds(30))

    assert flushed.duration == 0
    session.refresh(ticket)
    assert ticket.total_time_spent == 0


def test_vanished_ticket_still_clears_attribution(session: Session, t0: dt.datetime, make_ticket):
    ticket = make_ticket("t-a")
    record = services.clock_in(session, "alice", ticket_id="t-a", now=t0)
    session.delete(ticket)
    session.commit()

    flushed = services.stop_ticket_tracking(session, record.id, now=t0 + _seconds(12))

    assert flushed == services.FlushedInterval(ticket_id="t-a", duration=12)
    session.refresh(record)
    assert record.ticket_id is None
    assert record.ticket_start_time is None


def test_switch_to_current_ticket_is_noop(session: Session, t0: dt.datetime, make_ticket):
    ticket = make_ticket("t-a")
    record = services.clock_in(session, "alice", ticket_id="t-a", now=t0)

    flushed, same = services.switch_ticket_tracking(session, record.id, "t-a", now=t0 + _seconds(10))

    assert flushed is None
    assert models.as_utc(same.ticket_start_time) == t0
    session.refresh(ticket)
    assert ticket.total_time_spent == 0


def test_switch_from_idle_starts_tracking(session: Session, t0: dt.datetime, make_ticket):
    make_ticket("t-b")
    record = services.clock_in(session, "alice", now=t0)

    flushed, switched = services.switch_ticket_tracking(session, record.id, "t-b", now=t0 + _seconds(10))

    assert flushed is None
    assert switched.ticket_id == "t-b"


def test_legacy_ticket_status_is_normalized(make_ticket):
    assert make_ticket("t-a", status="in_progress").status == models.TICKET_IN_PROGRESS
    assert make_ticket("t-b", status="done").status == models.TICKET_CLOSED
    assert make_ticket("t-c", status="").status == models.TICKET_OPEN
