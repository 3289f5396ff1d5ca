from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dispute import database as dispute_db
from dispute.manager import DisputeManager
from dispute.models import DisputeConfig
from resolution.history import ResolutionHistoryDB


class Clock:
    """Settable clock for window-based tests."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def dispute_database(tmp_path, monkeypatch):
    monkeypatch.setattr(dispute_db, "DB_PATH", str(tmp_path / "disputes.db"))
    return tmp_path / "disputes.db"


@pytest.fixture
def dispute_manager(dispute_database, clock) -> DisputeManager:
    return DisputeManager(DisputeConfig(slash_percentage=0.20, window_hours=48), now=clock)


@pytest.fixture
def history(tmp_path) -> ResolutionHistoryDB:
    return ResolutionHistoryDB(db_path=str(tmp_path / "resolutions.db"))
