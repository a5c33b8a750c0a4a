from __future__ import annotations

from dataclasses import dataclass, replace

import pytest

from interview_studio.model import DispatchErrorCode, EventType, Phase, Problem, SessionStatus
from interview_studio.presets import Preset
from interview_studio.session import SessionEngine

PROBLEM = Problem(id="two-sum", title="Two Sum", description="Find two numbers adding to target.")

# Events that walk a session from pre-start to REFLECTION, paired with the phase reached.
PATH: list[tuple[EventType, Phase]] = [
    (EventType.SESSION_STARTED, Phase.PREP),
    (EventType.CODING_STARTED, Phase.CODING),
    (EventType.CODING_SILENT_STARTED, Phase.SILENT),
    (EventType.SILENT_ENDED, Phase.SUMMARY),
    (EventType.SUMMARY_CONTINUED, Phase.REFLECTION),
]


@dataclass
class FakeClock:
    t: int = 0

    def now(self) -> int:
        return self.t

    def advance(self, dt: int) -> None:
        self.t += int(dt)


def _engine(clock: FakeClock, preset: Preset = Preset.STANDARD) -> SessionEngine:
    return SessionEngine(problem=PROBLEM, preset=preset, clock=clock)


def _drive_to(engine: SessionEngine, clock: FakeClock, phase: Phase | None) -> None:
    if phase is None:
        return
    for event_type, reached in PATH:
        clock.advance(1000)
        assert engine.dispatch(event_type).ok
        if reached is phase:
            return
    raise AssertionError(f"phase not on path: {phase}")


def test_initial_state_before_start() -> None:
    clock = FakeClock(t=500)
    engine = _engine(clock)
    s = engine.get_state()

    assert s.id is None
    assert s.phase is None
    assert s.status is SessionStatus.IN_PROGRESS
    assert s.problem == PROBLEM
    assert s.invariants == ""
    assert s.code == ""
    assert s.nudges_used == 0
    assert s.nudges_remaining == 3
    assert s.nudges_allowed is False
    assert s.remaining_time == 5 * 60 * 1000
    assert s.reflection is None
    assert engine.get_events() == []


def test_start_enters_prep_and_counts_down_into_overrun() -> None:
    clock = FakeClock(t=1000)
    engine = _engine(clock)

    result = engine.dispatch("session.started")
    assert result.ok is True
    assert result.value is not None
    assert result.value.timestamp == 1000

    s = engine.get_state()
    assert s.phase is Phase.PREP
    assert s.id is not None
    assert s.session_started_at == 1000
    assert s.prep_started_at == 1000
    assert s.remaining_time == 300_000

    clock.advance(360_000)
    s = engine.get_state()
    assert s.remaining_time == -60_000
    assert s.prep_time_expired is False

    assert engine.dispatch(EventType.PREP_TIME_EXPIRED).ok
    assert engine.get_state().prep_time_expired is True


def test_session_id_is_recorded_in_start_payload() -> None:
    clock = FakeClock()
    engine = SessionEngine(problem=PROBLEM, clock=clock, id_factory=lambda: "abc123")
    result = engine.dispatch(EventType.SESSION_STARTED)

    assert result.value is not None
    assert result.value.data["sessionId"] == "abc123"
    assert engine.get_state().id == "abc123"


def test_default_ids_differ_between_sessions() -> None:
    clock = FakeClock()
    a = _engine(clock)
    b = _engine(clock)
    a.dispatch(EventType.SESSION_STARTED)
    b.dispatch(EventType.SESSION_STARTED)
    assert a.get_state().id != b.get_state().id


def test_session_id_is_stable_across_appends() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    engine.dispatch(EventType.SESSION_STARTED)
    first = engine.get_state().id
    engine.dispatch(EventType.PREP_INVARIANTS_CHANGED, {"invariants": "sorted input"})
    engine.dispatch(EventType.CODING_STARTED)
    assert engine.get_state().id == first


@pytest.mark.parametrize("bogus", ["session.paused", "", 42, None])
def test_unknown_event_type_is_rejected(bogus: object) -> None:
    clock = FakeClock()
    engine = _engine(clock)
    result = engine.dispatch(bogus)  # type: ignore[arg-type]

    assert result.ok is False
    assert result.error is not None
    assert result.error.code is DispatchErrorCode.INVALID_EVENT_TYPE
    assert engine.get_events() == []


def _code(engine: SessionEngine, event_type: EventType, payload: dict | None = None) -> DispatchErrorCode | None:
    result = engine.dispatch(event_type, payload)
    return None if result.error is None else result.error.code


def test_transition_table_rejections() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    invalid = DispatchErrorCode.INVALID_PHASE

    assert _code(engine, EventType.CODING_STARTED) is invalid

    _drive_to(engine, clock, Phase.PREP)
    assert _code(engine, EventType.SESSION_STARTED) is invalid
    assert _code(engine, EventType.NUDGE_REQUESTED) is invalid
    assert _code(engine, EventType.CODING_SOLUTION_SUBMITTED) is invalid
    assert _code(engine, EventType.AUDIO_STARTED) is invalid

    assert _code(engine, EventType.CODING_STARTED) is None
    assert _code(engine, EventType.PREP_INVARIANTS_CHANGED, {"invariants": "x"}) is invalid
    assert _code(engine, EventType.AUDIO_PERMISSION_DENIED) is invalid
    assert _code(engine, EventType.SILENT_ENDED) is invalid

    assert _code(engine, EventType.CODING_SILENT_STARTED) is None
    assert _code(engine, EventType.NUDGE_REQUESTED) is invalid
    assert _code(engine, EventType.CODING_STARTED) is invalid
    assert _code(engine, EventType.CODING_SOLUTION_SUBMITTED) is invalid


def test_reflection_cannot_skip_summary() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, Phase.SUMMARY)

    result = engine.dispatch(EventType.REFLECTION_SUBMITTED, {"responses": {}})
    assert result.error is not None
    assert result.error.code is DispatchErrorCode.INVALID_PHASE


@pytest.mark.parametrize(
    "phase",
    [None, Phase.PREP, Phase.CODING, Phase.SILENT, Phase.SUMMARY, Phase.REFLECTION],
)
def test_completion_cannot_be_dispatched_directly(phase: Phase | None) -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, phase)
    before = len(engine.get_events())

    result = engine.dispatch(EventType.SESSION_COMPLETED)

    assert result.ok is False
    assert result.error is not None
    assert result.error.code is DispatchErrorCode.INVALID_PHASE
    assert len(engine.get_events()) == before
    assert engine.get_state().status is SessionStatus.IN_PROGRESS


def test_nudges_are_budgeted() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, Phase.CODING)
    assert engine.get_state().nudges_allowed is True

    for _ in range(3):
        assert engine.dispatch(EventType.NUDGE_REQUESTED).ok
        s = engine.get_state()
        assert s.nudges_used + s.nudges_remaining == 3

    result = engine.dispatch(EventType.NUDGE_REQUESTED)
    assert result.error is not None
    assert result.error.code is DispatchErrorCode.NUDGE_BUDGET_EXHAUSTED

    s = engine.get_state()
    assert s.nudges_used == 3
    assert s.nudges_remaining == 0
    assert s.nudges_allowed is False


def test_no_assistance_preset_has_no_nudges() -> None:
    clock = FakeClock()
    engine = _engine(clock, Preset.NO_ASSISTANCE)
    _drive_to(engine, clock, Phase.CODING)

    assert engine.get_state().nudges_allowed is False
    result = engine.dispatch(EventType.NUDGE_REQUESTED)
    assert result.error is not None
    assert result.error.code is DispatchErrorCode.NUDGE_BUDGET_EXHAUSTED


def test_nudges_not_allowed_outside_coding() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, Phase.SILENT)
    s = engine.get_state()
    assert s.nudges_remaining == 3
    assert s.nudges_allowed is False


def test_abandon_keeps_phase_and_terminates() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, Phase.PREP)

    assert engine.dispatch(EventType.SESSION_ABANDONED).ok
    s = engine.get_state()
    assert s.status is SessionStatus.ABANDONED_EXPLICIT
    assert s.phase is Phase.PREP

    result = engine.dispatch(EventType.CODING_STARTED)
    assert result.error is not None
    assert result.error.code is DispatchErrorCode.SESSION_TERMINATED

    # Unknown types are still reported as such, before the terminal check.
    result = engine.dispatch("not.an.event")
    assert result.error is not None
    assert result.error.code is DispatchErrorCode.INVALID_EVENT_TYPE


def test_terminal_check_runs_before_phase_check() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, Phase.CODING)
    engine.dispatch(EventType.SESSION_ABANDONED)

    result = engine.dispatch(EventType.SESSION_COMPLETED)
    assert result.error is not None
    assert result.error.code is DispatchErrorCode.SESSION_TERMINATED


def test_rejected_dispatch_is_a_no_op() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, Phase.PREP)
    engine.dispatch(EventType.PREP_INVARIANTS_CHANGED, {"invariants": "n >= 1"})

    seen: list[EventType] = []
    engine.subscribe(lambda e, s: seen.append(e.type))

    before_events = engine.get_events()
    before_state = engine.get_state()
    clock.advance(2500)

    for event_type in (EventType.NUDGE_REQUESTED, EventType.SILENT_ENDED, EventType.SESSION_COMPLETED):
        assert engine.dispatch(event_type).ok is False

    after_state = engine.get_state()
    assert engine.get_events() == before_events
    assert seen == []
    assert replace(after_state, remaining_time=0) == replace(before_state, remaining_time=0)
    assert after_state.remaining_time == before_state.remaining_time - 2500


def test_early_submission_skips_silent() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, Phase.CODING)
    engine.dispatch(EventType.CODING_CODE_CHANGED, {"code": "def f(): pass"})

    assert engine.dispatch(EventType.CODING_SOLUTION_SUBMITTED).ok
    s = engine.get_state()
    assert s.phase is Phase.SUMMARY
    assert s.silent_started_at is None
    assert s.code == "def f(): pass"
    assert s.remaining_time == 0


def test_prep_time_used_is_set_when_coding_starts() -> None:
    clock = FakeClock(t=10_000)
    engine = _engine(clock)
    engine.dispatch(EventType.SESSION_STARTED)
    assert engine.get_state().prep_time_used is None

    clock.advance(90_000)
    engine.dispatch(EventType.CODING_STARTED)
    s = engine.get_state()
    assert s.prep_time_used == 90_000
    assert s.coding_started_at == 100_000
    assert s.remaining_time == 35 * 60 * 1000


def test_text_fields_hold_latest_value() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, Phase.PREP)
    engine.dispatch(EventType.PREP_INVARIANTS_CHANGED, {"invariants": "a"})
    engine.dispatch(EventType.PREP_INVARIANTS_CHANGED, {"invariants": "a, b"})
    engine.dispatch(EventType.PREP_INVARIANTS_CHANGED, {"invariants": ""})
    assert engine.get_state().invariants == ""

    engine.dispatch(EventType.CODING_STARTED)
    engine.dispatch(EventType.CODING_CODE_CHANGED, {"code": "x = 1"})
    engine.dispatch(EventType.CODING_SILENT_STARTED)
    engine.dispatch(EventType.CODING_CODE_CHANGED, {"code": "x = 2"})
    assert engine.get_state().code == "x = 2"


def test_audio_events_toggle_recording() -> None:
    clock = FakeClock()
    engine = _engine(clock)
    _drive_to(engine, clock, Phase.PREP)
    assert engine.dispatch(EventType.AUDIO_PERMISSION_DENIED).ok
    assert engine.get_state().is_recording is False

    engine.dispatch(EventType.CODING_STARTED)
    engine.dispatch(EventType.AUDIO_STARTED)
    assert engine.get_state().is_recording is True
    engine.dispatch(EventType.CODING_SILENT_STARTED)
    engine.dispatch(EventType.AUDIO_STOPPED)
    assert engine.get_state().is_recording is False


def test_remaining_time_tracks_clock_without_new_events() -> None:
    clock = FakeClock()
    engine = _engine(clock, Preset.HIGH_PRESSURE)
    _drive_to(engine, clock, Phase.SILENT)

    assert engine.get_state().remaining_time == 2 * 60 * 1000
    clock.advance(30_000)
    assert engine.get_state().remaining_time == 90_000
    clock.advance(100_000)
    assert engine.get_state().remaining_time == -10_000


def test_constructor_rejects_unknown_preset() -> None:
    with pytest.raises(ValueError):
        SessionEngine(problem=PROBLEM, preset="leisurely", clock=FakeClock())  # type: ignore[arg-type]
