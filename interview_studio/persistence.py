from __future__ import annotations

import json
import logging
import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from .clock import Clock
from .model import EventType, Problem, SessionEvent, SessionState, SessionStatus, thaw_data
from .presets import Preset
from .results import SessionSummary, summary_from_session
from .session import SessionEngine, Unsubscribe, derive_state

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DB_PATH_ENV = "INTERVIEW_STUDIO_DB_PATH"


def default_db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".interview_studio.sqlite3"


def open_db(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session (
                id TEXT PRIMARY KEY,
                problem_json TEXT NOT NULL,
                preset TEXT NOT NULL,
                created_at_ms INTEGER NOT NULL,
                updated_at_ms INTEGER NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session_event (
                session_id TEXT NOT NULL REFERENCES session(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                type TEXT NOT NULL,
                timestamp_ms INTEGER NOT NULL,
                data_json TEXT NOT NULL,
                PRIMARY KEY (session_id, seq)
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_session_updated ON session(updated_at_ms);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


@dataclass(frozen=True, slots=True)
class StoredSession:
    """Persistable session: metadata + the full event log."""

    id: str
    problem: Problem
    preset: Preset
    events: tuple[SessionEvent, ...]
    created_at_ms: int
    updated_at_ms: int

    @property
    def status(self) -> SessionStatus:
        if not self.events:
            return SessionStatus.IN_PROGRESS
        last = self.events[-1].type
        if last is EventType.SESSION_COMPLETED:
            return SessionStatus.COMPLETED
        if last is EventType.SESSION_ABANDONED:
            return SessionStatus.ABANDONED_EXPLICIT
        return SessionStatus.IN_PROGRESS

    @property
    def is_incomplete(self) -> bool:
        return bool(self.events) and self.status is SessionStatus.IN_PROGRESS


def stored_session_from_engine(engine: SessionEngine, *, now_ms: int, created_at_ms: int | None = None) -> StoredSession:
    state = engine.get_state()
    if state.id is None:
        raise ValueError("session has not started")
    created = created_at_ms
    if created is None:
        created = state.session_started_at if state.session_started_at is not None else now_ms
    return StoredSession(
        id=state.id,
        problem=engine.problem,
        preset=engine.preset,
        events=tuple(engine.get_events()),
        created_at_ms=int(created),
        updated_at_ms=int(now_ms),
    )


def save_session(conn: sqlite3.Connection, stored: StoredSession) -> None:
    """Upsert the session row and replace its whole event array."""

    with conn:
        conn.execute(
            """
            INSERT INTO session(id, problem_json, preset, created_at_ms, updated_at_ms)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                problem_json = excluded.problem_json,
                preset = excluded.preset,
                updated_at_ms = excluded.updated_at_ms
            """,
            (
                stored.id,
                json.dumps(stored.problem.to_dict()),
                stored.preset.value,
                int(stored.created_at_ms),
                int(stored.updated_at_ms),
            ),
        )
        conn.execute("DELETE FROM session_event WHERE session_id = ?", (stored.id,))
        conn.executemany(
            """
            INSERT INTO session_event(session_id, seq, type, timestamp_ms, data_json)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (stored.id, seq, e.type.value, int(e.timestamp), json.dumps(thaw_data(e.data)))
                for seq, e in enumerate(stored.events)
            ],
        )
    logger.debug("saved session %s (%d events)", stored.id, len(stored.events))


def get_session(conn: sqlite3.Connection, session_id: str) -> StoredSession | None:
    row = conn.execute(
        "SELECT id, problem_json, preset, created_at_ms, updated_at_ms FROM session WHERE id = ?",
        (session_id,),
    ).fetchone()
    if row is None:
        return None
    return _row_to_session(conn, row)


def list_sessions(conn: sqlite3.Connection) -> list[StoredSession]:
    """All sessions, most recently updated first."""
    rows = conn.execute(
        "SELECT id, problem_json, preset, created_at_ms, updated_at_ms FROM session "
        "ORDER BY updated_at_ms DESC, rowid DESC"
    ).fetchall()
    return [_row_to_session(conn, row) for row in rows]


def get_incomplete_session(conn: sqlite3.Connection) -> StoredSession | None:
    for stored in list_sessions(conn):
        if stored.is_incomplete:
            return stored
    return None


def delete_session(conn: sqlite3.Connection, session_id: str) -> bool:
    with conn:
        cur = conn.execute("DELETE FROM session WHERE id = ?", (session_id,))
    deleted = cur.rowcount > 0
    if deleted:
        logger.debug("deleted session %s", session_id)
    return deleted


def _row_to_session(conn: sqlite3.Connection, row: tuple) -> StoredSession:
    session_id, problem_json, preset, created_at_ms, updated_at_ms = row
    event_rows = conn.execute(
        "SELECT type, timestamp_ms, data_json FROM session_event WHERE session_id = ? ORDER BY seq",
        (session_id,),
    ).fetchall()
    events = tuple(
        SessionEvent(type=EventType(t), timestamp=int(ts), data=json.loads(data_json))
        for t, ts, data_json in event_rows
    )
    return StoredSession(
        id=str(session_id),
        problem=Problem.from_dict(json.loads(problem_json)),
        preset=Preset(preset),
        events=events,
        created_at_ms=int(created_at_ms),
        updated_at_ms=int(updated_at_ms),
    )


@dataclass(frozen=True, slots=True)
class SessionStats:
    total: int
    completed: int
    avg_nudges: float


def summary_from_stored(stored: StoredSession) -> SessionSummary:
    """Summary of a stored session as of its last event (no live clock)."""
    as_of = stored.events[-1].timestamp if stored.events else stored.updated_at_ms
    state = derive_state(stored.events, problem=stored.problem, preset=stored.preset, now=as_of)
    return summary_from_session(state, list(stored.events))


def session_stats(conn: sqlite3.Connection) -> SessionStats:
    """Dashboard numbers over every stored session, derived from the logs."""
    summaries = [summary_from_stored(s) for s in list_sessions(conn)]
    total = len(summaries)
    completed = sum(1 for s in summaries if s.status is SessionStatus.COMPLETED)
    avg_nudges = round(sum(s.nudges_used for s in summaries) / total, 1) if total else 0.0
    return SessionStats(total=total, completed=completed, avg_nudges=avg_nudges)


def resume_engine(stored: StoredSession, *, clock: Clock | None = None) -> SessionEngine:
    """Rebuild a live engine from storage by replaying its log."""

    engine = SessionEngine(problem=stored.problem, preset=stored.preset, clock=clock)
    engine.restore(stored.events)
    logger.info("resumed session %s at %d events", stored.id, len(stored.events))
    return engine


class SessionRecorder:
    """Subscriber that writes the full log to sqlite after every accepted event."""

    def __init__(self, conn: sqlite3.Connection, engine: SessionEngine, *, clock: Clock) -> None:
        self._conn = conn
        self._engine = engine
        self._clock = clock
        self._unsubscribe: Unsubscribe | None = engine.subscribe(self._on_event)

    def _on_event(self, event: SessionEvent, state: SessionState) -> None:
        if state.id is None:
            return
        # created_at_ms is kept by the upsert, only updated_at_ms moves.
        save_session(self._conn, stored_session_from_engine(self._engine, now_ms=self._clock.now()))

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
