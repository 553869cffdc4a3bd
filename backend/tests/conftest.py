from __future__ import annotations

import datetime as dt
import tempfile
from pathlib import Path
from typing import Callable, Generator, Optional
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from timeharbor import models, services
from timeharbor.database import get_db
from timeharbor.main import app

BERLIN = ZoneInfo("Europe/Berlin")
UTC = dt.timezone.utc


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def client(session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def berlin_time(monkeypatch) -> None:
    monkeypatch.setattr(models, "LOCAL_TZ", BERLIN)


@pytest.fixture()
def t0() -> dt.datetime:
    return dt.datetime(2024, 5, 15, 8, 0, tzinfo=UTC)


@pytest.fixture()
def team(session: Session) -> models.Team:
    session.add_all(
        [
            models.User(id="lead", display_name="Lea Lead", email="lea@example.com"),
            models.User(id="alice", display_name="Alice Example", email="alice@example.com"),
            models.User(id="bob", display_name=None, email="bob@example.com"),
        ]
    )
    team = models.Team(id="team-1", name="Core", owner_id="lead", manager_ids=[])
    team.members = [
        models.TeamMember(user_id="lead"),
        models.TeamMember(user_id="alice"),
        models.TeamMember(user_id="bob"),
    ]
    session.add(team)
    session.commit()
    return team


@pytest.fixture()
def make_ticket(session: Session) -> Callable[..., models.Ticket]:
    def _make(
        ticket_id: str,
        title: Optional[str] = None,
        *,
        created_by: str = "alice",
        assigned_to: Optional[str] = None,
        status: str = models.TICKET_OPEN,
        team_id: Optional[str] = "team-1",
    ) -> models.Ticket:
        ticket = models.Ticket(
            id=ticket_id,
            title=title or ticket_id.upper(),
            created_by=created_by,
            assigned_to=assigned_to,
            status=status,
            team_id=team_id,
        )
        session.add(ticket)
        session.commit()
        return ticket

    return _make


@pytest.fixture()
def record_session(session: Session) -> Callable[..., models.TimeSession]:
    """Clock a worker in and, when ``end`` is given, out again at fixed instants."""

    def _record(
        worker_id: str,
        start: dt.datetime,
        end: Optional[dt.datetime] = None,
        *,
        team_id: Optional[str] = "team-1",
        ticket_id: Optional[str] = None,
    ) -> models.TimeSession:
        record = services.clock_in(session, worker_id, ticket_id=ticket_id, team_id=team_id, now=start)
        if end is not None:
            record = services.clock_out(session, record.id, now=end)
        return record

    return _record
