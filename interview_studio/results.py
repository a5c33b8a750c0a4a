from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .model import EventType, SessionEvent, SessionState, SessionStatus
from .presets import Preset


@dataclass(frozen=True, slots=True)
class SessionSummary:
    """Persistable/displayable summary of one session.

    Everything here is read off the final state and the event log; nothing is
    recomputed against the clock, so the summary of a stored session is stable.
    """

    session_id: str | None
    problem_id: str
    preset: Preset
    status: SessionStatus

    prep_time_used_ms: int | None
    prep_time_expired: bool
    coding_time_ms: int | None
    silent_time_ms: int | None
    submitted_early: bool

    nudges_used: int
    nudge_budget: int

    invariants: str
    code: str
    code_lines: int
    reflection: Mapping[str, str] | None


def _first_timestamp(events: Iterable[SessionEvent], kind: EventType) -> int | None:
    for e in events:
        if e.type is kind:
            return int(e.timestamp)
    return None


def summary_from_session(state: SessionState, events: list[SessionEvent]) -> SessionSummary:
    """Build a SessionSummary from a state and the log it was derived from."""

    submitted_at = _first_timestamp(events, EventType.CODING_SOLUTION_SUBMITTED)
    silent_ended_at = _first_timestamp(events, EventType.SILENT_ENDED)

    coding_end = state.silent_started_at if state.silent_started_at is not None else submitted_at
    coding_ms: int | None = None
    if state.coding_started_at is not None and coding_end is not None:
        coding_ms = coding_end - state.coding_started_at

    silent_ms: int | None = None
    if state.silent_started_at is not None and silent_ended_at is not None:
        silent_ms = silent_ended_at - state.silent_started_at

    code = state.code
    return SessionSummary(
        session_id=state.id,
        problem_id=state.problem.id,
        preset=state.preset,
        status=state.status,
        prep_time_used_ms=state.prep_time_used,
        prep_time_expired=state.prep_time_expired,
        coding_time_ms=coding_ms,
        silent_time_ms=silent_ms,
        submitted_early=submitted_at is not None,
        nudges_used=state.nudges_used,
        nudge_budget=state.config.nudge_budget,
        invariants=state.invariants,
        code=code,
        code_lines=0 if code.strip() == "" else len(code.rstrip("\n").split("\n")),
        reflection=state.reflection,
    )


def format_duration(ms: int) -> str:
    """MM:SS, with a leading '-' once a phase has overrun."""

    total_s = abs(int(ms)) // 1000
    sign = "-" if ms < 0 else ""
    return f"{sign}{total_s // 60:02d}:{total_s % 60:02d}"


def timer_tone(ms: int) -> str:
    if ms < 0:
        return "overtime"
    if ms <= 60_000:
        return "warning"
    return "normal"
