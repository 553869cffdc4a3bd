from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db, init_db
from .reports import get_dashboard_stats, get_team_sessions
from .schemas import (
    ActivityFilters,
    ActivityRow,
    ClockInRequest,
    DashboardStats,
    DateRangePreset,
    FlushedIntervalResponse,
    SessionTimesUpdateRequest,
    TicketStopResponse,
    TicketSwitchResponse,
    TicketTrackingRequest,
    TimeSessionResponse,
)
from .services import (
    clock_in,
    clock_out,
    get_active_session,
    list_recent_sessions,
    start_ticket_tracking,
    stop_ticket_tracking,
    switch_ticket_tracking,
    update_session_times,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

init_db()

app = FastAPI(title=settings.app_name)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:8081", "http://localhost:8081"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _flushed(value) -> Optional[FlushedIntervalResponse]:
    if value is None:
        return None
    return FlushedIntervalResponse.model_validate(value)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/sessions/clock-in", response_model=TimeSessionResponse, status_code=status.HTTP_201_CREATED)
def sessions_clock_in(payload: ClockInRequest, db: Session = Depends(get_db)) -> TimeSessionResponse:
    return clock_in(db, payload.worker_id, payload.ticket_id, payload.ticket_title, payload.team_id)


@app.post("/sessions/{session_id}/clock-out", response_model=TimeSessionResponse)
def sessions_clock_out(session_id: str, db: Session = Depends(get_db)) -> TimeSessionResponse:
    return clock_out(db, session_id)


@app.get("/workers/{worker_id}/active-session", response_model=Optional[TimeSessionResponse])
def workers_active_session(worker_id: str, db: Session = Depends(get_db)) -> Optional[TimeSessionResponse]:
    return get_active_session(db, worker_id)


@app.get("/workers/{worker_id}/sessions", response_model=list[TimeSessionResponse])
def workers_recent_sessions(
    worker_id: str,
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
) -> list[TimeSessionResponse]:
    return list_recent_sessions(db, worker_id, limit)


@app.post("/sessions/{session_id}/ticket/start", response_model=TimeSessionResponse)
def sessions_ticket_start(
    session_id: str,
    payload: TicketTrackingRequest,
    db: Session = Depends(get_db),
) -> TimeSessionResponse:
    return start_ticket_tracking(db, session_id, payload.ticket_id, payload.ticket_title, payload.note)


@app.post("/sessions/{session_id}/ticket/stop", response_model=TicketStopResponse)
def sessions_ticket_stop(session_id: str, db: Session = Depends(get_db)) -> TicketStopResponse:
    flushed = stop_ticket_tracking(db, session_id)
    return TicketStopResponse(flushed=_flushed(flushed))


@app.post("/sessions/{session_id}/ticket/switch", response_model=TicketSwitchResponse)
def sessions_ticket_switch(
    session_id: str,
    payload: TicketTrackingRequest,
    db: Session = Depends(get_db),
) -> TicketSwitchResponse:
    flushed, session = switch_ticket_tracking(
        db, session_id, payload.ticket_id, payload.ticket_title, payload.note
    )
    return TicketSwitchResponse(
        flushed=_flushed(flushed),
        session=TimeSessionResponse.model_validate(session),
    )


@app.patch("/sessions/{session_id}/times", response_model=TimeSessionResponse)
def sessions_update_times(
    session_id: str,
    payload: SessionTimesUpdateRequest,
    db: Session = Depends(get_db),
) -> TimeSessionResponse:
    return update_session_times(
        db,
        session_id,
        payload.start_time,
        payload.end_time,
        payload.status,
        editor_id=payload.editor_id,
    )


@app.get("/workers/{worker_id}/dashboard", response_model=DashboardStats)
def workers_dashboard(
    worker_id: str,
    team_id: Optional[str] = None,
    db: Session = Depends(get_db),
) -> DashboardStats:
    return get_dashboard_stats(db, worker_id, team_id=team_id)


@app.get("/teams/{team_id}/sessions", response_model=list[ActivityRow])
def teams_sessions(
    team_id: str,
    range_start: Optional[str] = None,
    range_end: Optional[str] = None,
    preset: Optional[DateRangePreset] = None,
    filters: ActivityFilters = Depends(),
    db: Session = Depends(get_db),
) -> list[ActivityRow]:
    return get_team_sessions(db, team_id, range_start, range_end, filters, preset)
