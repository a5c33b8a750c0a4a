"""Event-sourced session engine.

A session is an append-only log of ``SessionEvent`` records. Every read of
``SessionState`` is a left fold of that log plus the current clock reading;
the engine never stores a phase, a counter or a timer on its own. All
proposed events go through ``SessionEngine.dispatch`` which checks, in this
order: the event type is known, the session is not terminal, the current
phase accepts the event, and the event-specific rules (nudge budget,
reflection answers). Failures come back as ``DispatchResult`` values; nothing
here raises for a caller-correctable condition.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from typing import Any

from .clock import Clock, RealClock
from .model import (
    REFLECTION_FIELDS,
    DispatchErrorCode,
    DispatchResult,
    EventType,
    Phase,
    Problem,
    ReflectionResponses,
    SessionEvent,
    SessionState,
    SessionStatus,
)
from .presets import Preset, get_config

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent, SessionState], None]
Unsubscribe = Callable[[], None]

_ABANDON = EventType.SESSION_ABANDONED

# Phase -> events it accepts. ``None`` is the pre-start state.
# SESSION_COMPLETED is absent everywhere: only the engine itself emits it.
TRANSITIONS: dict[Phase | None, frozenset[EventType]] = {
    None: frozenset({EventType.SESSION_STARTED}),
    Phase.START: frozenset({EventType.SESSION_STARTED}),
    Phase.PREP: frozenset(
        {
            EventType.PREP_INVARIANTS_CHANGED,
            EventType.PREP_TIME_EXPIRED,
            EventType.CODING_STARTED,
            EventType.AUDIO_PERMISSION_DENIED,
            _ABANDON,
        }
    ),
    Phase.CODING: frozenset(
        {
            EventType.CODING_CODE_CHANGED,
            EventType.NUDGE_REQUESTED,
            EventType.CODING_SILENT_STARTED,
            EventType.CODING_SOLUTION_SUBMITTED,
            EventType.AUDIO_STARTED,
            EventType.AUDIO_STOPPED,
            _ABANDON,
        }
    ),
    Phase.SILENT: frozenset(
        {
            EventType.CODING_CODE_CHANGED,
            EventType.SILENT_ENDED,
            EventType.AUDIO_STARTED,
            EventType.AUDIO_STOPPED,
            _ABANDON,
        }
    ),
    Phase.SUMMARY: frozenset({EventType.SUMMARY_CONTINUED, _ABANDON}),
    Phase.REFLECTION: frozenset({EventType.REFLECTION_SUBMITTED, _ABANDON}),
    Phase.DONE: frozenset(),
}


def is_valid_transition(phase: Phase | None, event_type: EventType) -> bool:
    return event_type in TRANSITIONS.get(phase, frozenset())


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


def validate_reflection(responses: object) -> str | None:
    """Return a failure message for an invalid answer set, or None when it is valid."""

    if not isinstance(responses, Mapping):
        return "Missing responses object"

    for name in ("clearApproach", "prolongedStall", "recoveredFromStall"):
        value = responses.get(name)
        if value not in REFLECTION_FIELDS[name]:
            return f"Invalid {name}: {value}"

    # "n/a" only makes sense when there was no stall to recover from.
    if responses.get("recoveredFromStall") == "n/a" and responses.get("prolongedStall") != "no":
        return "recoveredFromStall can only be 'n/a' when prolongedStall is 'no'"

    for name in ("timePressure", "wouldChangeApproach"):
        value = responses.get(name)
        if value not in REFLECTION_FIELDS[name]:
            return f"Invalid {name}: {value}"

    return None


# -- State derivation -------------------------------------------------------


def initial_state(*, problem: Problem, preset: Preset) -> SessionState:
    config = get_config(preset)
    return SessionState(
        id=None,
        phase=None,
        status=SessionStatus.IN_PROGRESS,
        problem=problem,
        preset=preset,
        config=config,
        invariants="",
        code="",
        nudges_used=0,
        nudges_remaining=config.nudge_budget,
        nudges_allowed=False,
        is_recording=False,
        remaining_time=config.prep_duration,
        prep_time_used=None,
        prep_time_expired=False,
        reflection=None,
        session_started_at=None,
        prep_started_at=None,
        coding_started_at=None,
        silent_started_at=None,
    )


def apply_event(state: SessionState, event: SessionEvent) -> SessionState:
    """Fold one event into ``state``. No validation: the log is trusted."""

    kind = event.type
    data = event.data

    if kind is EventType.SESSION_STARTED:
        # Logs written without an id still replay to a stable one.
        session_id = str(data.get("sessionId") or format(event.timestamp, "x"))
        return replace(
            state,
            id=session_id,
            phase=Phase.PREP,
            session_started_at=event.timestamp,
            prep_started_at=event.timestamp,
        )
    if kind is EventType.PREP_INVARIANTS_CHANGED:
        return replace(state, invariants=str(data.get("invariants") or ""))
    if kind is EventType.PREP_TIME_EXPIRED:
        return replace(state, prep_time_expired=True)
    if kind is EventType.CODING_STARTED:
        return replace(state, phase=Phase.CODING, coding_started_at=event.timestamp)
    if kind is EventType.CODING_CODE_CHANGED:
        return replace(state, code=str(data.get("code") or ""))
    if kind is EventType.NUDGE_REQUESTED:
        return replace(
            state,
            nudges_used=state.nudges_used + 1,
            nudges_remaining=state.nudges_remaining - 1,
        )
    if kind is EventType.CODING_SILENT_STARTED:
        return replace(state, phase=Phase.SILENT, silent_started_at=event.timestamp)
    if kind in (EventType.CODING_SOLUTION_SUBMITTED, EventType.SILENT_ENDED):
        return replace(state, phase=Phase.SUMMARY)
    if kind is EventType.SUMMARY_CONTINUED:
        return replace(state, phase=Phase.REFLECTION)
    if kind is EventType.REFLECTION_SUBMITTED:
        responses = data.get("responses")
        # State keeps the answers themselves, not the {"responses": ...} envelope.
        return replace(state, reflection=dict(responses) if isinstance(responses, Mapping) else None)
    if kind is EventType.SESSION_COMPLETED:
        return replace(state, phase=Phase.DONE, status=SessionStatus.COMPLETED)
    if kind is EventType.SESSION_ABANDONED:
        return replace(state, status=SessionStatus.ABANDONED_EXPLICIT)
    if kind is EventType.AUDIO_STARTED:
        return replace(state, is_recording=True)
    if kind in (EventType.AUDIO_STOPPED, EventType.AUDIO_PERMISSION_DENIED):
        return replace(state, is_recording=False)
    return state


def remaining_time(state: SessionState, now: int) -> int:
    """Milliseconds left in the current phase; negative once the phase has overrun."""

    cfg = state.config
    phase = state.phase
    if phase is None or phase is Phase.START:
        return cfg.prep_duration
    if phase is Phase.PREP:
        if state.prep_started_at is None:
            return cfg.prep_duration
        return cfg.prep_duration - (now - state.prep_started_at)
    if phase is Phase.CODING:
        if state.coding_started_at is None:
            return cfg.coding_duration
        return cfg.coding_duration - (now - state.coding_started_at)
    if phase is Phase.SILENT:
        if state.silent_started_at is None:
            return cfg.silent_duration
        return cfg.silent_duration - (now - state.silent_started_at)
    return 0


def derive_state(
    events: Iterable[SessionEvent],
    *,
    problem: Problem,
    preset: Preset,
    now: int,
) -> SessionState:
    state = initial_state(problem=problem, preset=preset)
    for event in events:
        state = apply_event(state, event)

    prep_used = None
    if state.prep_started_at is not None and state.coding_started_at is not None:
        prep_used = state.coding_started_at - state.prep_started_at

    return replace(
        state,
        prep_time_used=prep_used,
        nudges_allowed=state.phase is Phase.CODING and state.nudges_remaining > 0,
        remaining_time=remaining_time(state, now),
    )


# -- Engine -----------------------------------------------------------------


class SessionEngine:
    """One practice session: start -> prep -> coding -> silent -> summary -> reflection -> done.

    - Single source of truth is the event log; state is memoized by log length.
    - Time is entirely via injected Clock.
    - Subscribers are called synchronously, in registration order, after each
      successful dispatch.
    """

    def __init__(
        self,
        *,
        problem: Problem,
        preset: Preset = Preset.STANDARD,
        clock: Clock | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        if not isinstance(problem, Problem):
            raise ValueError("problem must be a Problem")

        self._problem = problem
        self._preset = Preset(preset)
        self._clock: Clock = clock if clock is not None else RealClock()
        self._id_factory = id_factory if id_factory is not None else new_session_id

        self._events: list[SessionEvent] = []
        self._listeners: list[tuple[object, SessionListener]] = []
        self._cache: tuple[int, SessionState | None] = (-1, None)

    @property
    def problem(self) -> Problem:
        return self._problem

    @property
    def preset(self) -> Preset:
        return self._preset

    def dispatch(self, event_type: EventType | str, payload: Mapping[str, Any] | None = None) -> DispatchResult:
        kind = EventType.parse(event_type)
        if kind is None:
            return self._reject(DispatchErrorCode.INVALID_EVENT_TYPE, f"Unknown event type: {event_type}")

        state = self.get_state()
        if state.is_terminal:
            return self._reject(DispatchErrorCode.SESSION_TERMINATED, f"Session is {state.status.value}")

        if not is_valid_transition(state.phase, kind):
            phase_name = "undefined" if state.phase is None else state.phase.value
            return self._reject(
                DispatchErrorCode.INVALID_PHASE,
                f"Cannot dispatch {kind.value} in phase {phase_name}",
            )

        data: dict[str, Any] = dict(payload or {})

        if kind is EventType.NUDGE_REQUESTED and state.nudges_remaining <= 0:
            return self._reject(DispatchErrorCode.NUDGE_BUDGET_EXHAUSTED, "No nudges remaining")

        if kind is EventType.REFLECTION_SUBMITTED:
            responses = data.get("responses")
            if isinstance(responses, ReflectionResponses):
                responses = responses.to_dict()
            failure = validate_reflection(responses)
            if failure is not None:
                return self._reject(DispatchErrorCode.VALIDATION_FAILED, failure)
            data["responses"] = dict(responses)  # type: ignore[arg-type]

        if kind is EventType.SESSION_STARTED and not data.get("sessionId"):
            data["sessionId"] = self._id_factory()

        event = SessionEvent(type=kind, timestamp=int(self._clock.now()), data=data)
        appended = [event]
        self._events.append(event)

        if kind is EventType.REFLECTION_SUBMITTED:
            # Completion is never dispatchable from outside; it rides on the reflection.
            completed = SessionEvent(type=EventType.SESSION_COMPLETED, timestamp=int(self._clock.now()), data={})
            self._events.append(completed)
            appended.append(completed)

        self._cache = (-1, None)
        for e in appended:
            logger.debug("session event accepted: %s at %d", e.type.value, e.timestamp)

        self._notify(appended)
        return DispatchResult.success(event)

    def get_state(self) -> SessionState:
        now = int(self._clock.now())
        length, snapshot = self._cache
        if snapshot is not None and length == len(self._events):
            return replace(snapshot, remaining_time=remaining_time(snapshot, now))

        snapshot = derive_state(self._events, problem=self._problem, preset=self._preset, now=now)
        self._cache = (len(self._events), snapshot)
        return snapshot

    def get_events(self) -> list[SessionEvent]:
        return list(self._events)

    def subscribe(self, callback: SessionListener) -> Unsubscribe:
        # Each registration gets its own token; the same callable may be subscribed twice.
        token = object()
        self._listeners.append((token, callback))

        def unsubscribe() -> None:
            self._listeners = [entry for entry in self._listeners if entry[0] is not token]

        return unsubscribe

    def restore(self, events: Iterable[SessionEvent | Mapping[str, Any]]) -> None:
        """Replace the log wholesale (e.g. from storage). Historical transitions are not re-checked."""

        self._events = [e if isinstance(e, SessionEvent) else SessionEvent.from_dict(e) for e in events]
        self._cache = (-1, None)

    def _reject(self, code: DispatchErrorCode, message: str) -> DispatchResult:
        logger.debug("session event rejected: %s (%s)", code.value, message)
        return DispatchResult.failure(code, message)

    def _notify(self, events: list[SessionEvent]) -> None:
        state = self.get_state()
        for event in events:
            for _, listener in list(self._listeners):
                listener(event, state)


def build_session(
    *,
    problem: Problem,
    preset: Preset = Preset.STANDARD,
    clock: Clock | None = None,
) -> SessionEngine:
    return SessionEngine(problem=problem, preset=preset, clock=clock)
