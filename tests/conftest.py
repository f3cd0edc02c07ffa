import sqlite3
from typing import List, Tuple

import pytest

from adapters.metrics.base import Metrics


def make_db(db_path) -> None:
    """Create a small SQLite DB: users(id, name, email) with two rows."""
    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute(
            "CREATE TABLE users("
            "id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "name TEXT NOT NULL, "
            "email TEXT DEFAULT 'n/a')"
        )
        conn.execute("INSERT INTO users(name, email) VALUES ('Alice', 'alice@example.com')")
        conn.execute("INSERT INTO users(name, email) VALUES ('Bob', NULL)")
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "test.db"
    make_db(path)
    return path


class RecordingMetrics(Metrics):
    """Metrics double that keeps every call for assertions."""

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.durations: List[str] = []
        self.retries: List[str] = []
        self.failures: List[str] = []

    def observe_tool_duration_ms(self, *, tool: str, dt_ms: float) -> None:
        self.durations.append(tool)

    def inc_tool_call(self, *, tool: str, outcome: str) -> None:
        self.calls.append((tool, outcome))

    def inc_connection_retry(self, *, backend: str) -> None:
        self.retries.append(backend)

    def inc_connection_failure(self, *, backend: str) -> None:
        self.failures.append(backend)


@pytest.fixture
def metrics():
    return RecordingMetrics()
