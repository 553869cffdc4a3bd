from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, model_serializer


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


def _optional_datetime(value: Optional[dt.datetime]) -> Optional[str]:
    return _serialize_datetime(value) if value else None


class TimeSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    worker_id: str
    team_id: Optional[str]
    start_time: dt.datetime
    end_time: Optional[dt.datetime]
    duration: int
    status: str
    ticket_id: Optional[str]
    ticket_title: Optional[str]
    ticket_start_time: Optional[dt.datetime]
    note: Optional[str]
    created_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "worker_id": self.worker_id,
            "team_id": self.team_id,
            "start_time": _serialize_datetime(self.start_time),
            "end_time": _optional_datetime(self.end_time),
            "duration": self.duration,
            "status": self.status,
            "ticket_id": self.ticket_id,
            "ticket_title": self.ticket_title,
            "ticket_start_time": _optional_datetime(self.ticket_start_time),
            "note": self.note,
            "created_at": _serialize_datetime(self.created_at),
        }


class ClockInRequest(BaseModel):
    worker_id: str
    ticket_id: Optional[str] = None
    ticket_title: Optional[str] = None
    team_id: Optional[str] = None


class TicketTrackingRequest(BaseModel):
    ticket_id: str
    ticket_title: Optional[str] = None
    note: Optional[str] = None


class FlushedIntervalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    ticket_id: str
    duration: int


class TicketStopResponse(BaseModel):
    flushed: Optional[FlushedIntervalResponse] = None


class TicketSwitchResponse(BaseModel):
    flushed: Optional[FlushedIntervalResponse] = None
    session: TimeSessionResponse


class SessionTimesUpdateRequest(BaseModel):
    # Strings are parsed by the correction service so malformed input maps to a ValidationError.
    start_time: str
    end_time: Optional[str] = None
    status: Optional[str] = None
    editor_id: Optional[str] = None


class DashboardStats(BaseModel):
    """Derived per-worker totals; the hour fields hold seconds."""

    today_hours: int = 0
    week_hours: int = 0
    open_tickets: int = 0
    team_members: int = 1


class ActivityFilters(BaseModel):
    date: Optional[str] = None
    member: Optional[str] = None
    email: Optional[str] = None
    hours: Optional[str] = None
    clock_in: Optional[str] = None
    clock_out: Optional[str] = None
    status: Optional[str] = None
    ticket: Optional[str] = None


class ActivityRow(BaseModel):
    session_id: str
    worker_id: str
    worker_name: str
    worker_email: Optional[str] = None
    date: str
    clock_in: str
    clock_out: str
    start_time: dt.datetime
    end_time: Optional[dt.datetime] = None
    duration: int
    hours: str
    status: str
    ticket_title: Optional[str] = None
    ticket_titles: List[str] = Field(default_factory=list)
    note: Optional[str] = None

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "worker_id": self.worker_id,
            "worker_name": self.worker_name,
            "worker_email": self.worker_email,
            "date": self.date,
            "clock_in": self.clock_in,
            "clock_out": self.clock_out,
            "start_time": _serialize_datetime(self.start_time),
            "end_time": _optional_datetime(self.end_time),
            "duration": self.duration,
            "hours": self.hours,
            "status": self.status,
            "ticket_title": self.ticket_title,
            "ticket_titles": list(self.ticket_titles),
            "note": self.note,
        }


DateRangePreset = Literal["today", "yesterday", "last7", "thisWeek", "last14"]
