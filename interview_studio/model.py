from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .presets import Preset, PresetConfig


class Phase(str, Enum):
    START = "START"
    PREP = "PREP"
    CODING = "CODING"
    SILENT = "SILENT"
    SUMMARY = "SUMMARY"
    REFLECTION = "REFLECTION"
    DONE = "DONE"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED_EXPLICIT = "abandoned_explicit"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.ABANDONED_EXPLICIT})


class EventType(str, Enum):
    SESSION_STARTED = "session.started"
    PREP_INVARIANTS_CHANGED = "prep.invariants_changed"
    PREP_TIME_EXPIRED = "prep.time_expired"
    CODING_STARTED = "coding.started"
    CODING_CODE_CHANGED = "coding.code_changed"
    NUDGE_REQUESTED = "nudge.requested"
    CODING_SILENT_STARTED = "coding.silent_started"
    CODING_SOLUTION_SUBMITTED = "coding.solution_submitted"
    SILENT_ENDED = "silent.ended"
    SUMMARY_CONTINUED = "summary.continued"
    REFLECTION_SUBMITTED = "reflection.submitted"
    SESSION_COMPLETED = "session.completed"
    SESSION_ABANDONED = "session.abandoned"
    AUDIO_STARTED = "audio.started"
    AUDIO_STOPPED = "audio.stopped"
    AUDIO_PERMISSION_DENIED = "audio.permission_denied"

    @classmethod
    def parse(cls, value: object) -> EventType | None:
        """Return the member for ``value`` or None when it is not a known event type."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class Problem:
    id: str
    title: str
    description: str
    difficulty: str = "medium"  # "easy" | "medium" | "hard"
    patterns: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "difficulty": self.difficulty,
            "patterns": list(self.patterns),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Problem:
        patterns = raw.get("patterns") or ()
        return cls(
            id=str(raw["id"]),
            title=str(raw.get("title", "")),
            description=str(raw.get("description", "")),
            difficulty=str(raw.get("difficulty", "medium")),
            patterns=tuple(str(p) for p in patterns),
        )


def freeze_data(value: Any) -> Any:
    """Read-only deep copy of an event payload (mappings and lists only)."""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): freeze_data(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze_data(v) for v in value)
    return value


def thaw_data(value: Any) -> Any:
    """Plain ``dict``/``list`` copy of a frozen payload, e.g. for JSON."""
    if isinstance(value, Mapping):
        return {k: thaw_data(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw_data(v) for v in value]
    return value


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """One entry of a session's append-only log.

    ``data`` is frozen on construction, so an event handed out by the engine
    cannot be used to rewrite its log. ``to_dict`` / ``from_dict`` define the
    persisted shape ``{"type", "timestamp", "data"}`` that
    ``SessionEngine.restore`` replays.
    """

    type: EventType
    timestamp: int
    data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", freeze_data(self.data or {}))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "timestamp": int(self.timestamp), "data": thaw_data(self.data)}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> SessionEvent:
        return cls(
            type=EventType(raw["type"]),
            timestamp=int(raw["timestamp"]),
            data=raw.get("data") or {},
        )


CLEAR_APPROACH_CHOICES = ("yes", "partially", "no")
PROLONGED_STALL_CHOICES = ("yes", "no")
RECOVERED_FROM_STALL_CHOICES = ("yes", "partially", "no", "n/a")
TIME_PRESSURE_CHOICES = ("comfortable", "manageable", "overwhelming")
WOULD_CHANGE_APPROACH_CHOICES = ("yes", "no")

# Field name -> allowed answers, in the order the questions are asked.
REFLECTION_FIELDS: dict[str, tuple[str, ...]] = {
    "clearApproach": CLEAR_APPROACH_CHOICES,
    "prolongedStall": PROLONGED_STALL_CHOICES,
    "recoveredFromStall": RECOVERED_FROM_STALL_CHOICES,
    "timePressure": TIME_PRESSURE_CHOICES,
    "wouldChangeApproach": WOULD_CHANGE_APPROACH_CHOICES,
}


@dataclass(frozen=True, slots=True)
class ReflectionResponses:
    clear_approach: str
    prolonged_stall: str
    recovered_from_stall: str
    time_pressure: str
    would_change_approach: str

    def to_dict(self) -> dict[str, str]:
        return {
            "clearApproach": self.clear_approach,
            "prolongedStall": self.prolonged_stall,
            "recoveredFromStall": self.recovered_from_stall,
            "timePressure": self.time_pressure,
            "wouldChangeApproach": self.would_change_approach,
        }


class DispatchErrorCode(str, Enum):
    INVALID_EVENT_TYPE = "INVALID_EVENT_TYPE"
    SESSION_TERMINATED = "SESSION_TERMINATED"
    INVALID_PHASE = "INVALID_PHASE"
    NUDGE_BUDGET_EXHAUSTED = "NUDGE_BUDGET_EXHAUSTED"
    VALIDATION_FAILED = "VALIDATION_FAILED"


@dataclass(frozen=True, slots=True)
class DispatchError:
    code: DispatchErrorCode
    message: str


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Tagged outcome of ``SessionEngine.dispatch``: exactly one of value/error is set."""

    ok: bool
    value: SessionEvent | None = None
    error: DispatchError | None = None

    @classmethod
    def success(cls, event: SessionEvent) -> DispatchResult:
        return cls(ok=True, value=event)

    @classmethod
    def failure(cls, code: DispatchErrorCode, message: str) -> DispatchResult:
        return cls(ok=False, error=DispatchError(code=code, message=message))


@dataclass(frozen=True, slots=True)
class SessionState:
    """Projection of the event log at one clock reading (pure data)."""

    id: str | None
    phase: Phase | None
    status: SessionStatus
    problem: Problem
    preset: Preset
    config: PresetConfig
    invariants: str
    code: str
    nudges_used: int
    nudges_remaining: int
    nudges_allowed: bool
    is_recording: bool
    remaining_time: int
    prep_time_used: int | None
    prep_time_expired: bool
    reflection: Mapping[str, str] | None
    session_started_at: int | None
    prep_started_at: int | None
    coding_started_at: int | None
    silent_started_at: int | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
