from __future__ import annotations

import logging

from .model import EventType, Phase, SessionEvent
from .session import SessionEngine

logger = logging.getLogger(__name__)


class PhaseTimer:
    """Turns phase overrun into expiry events.

    The engine never advances itself; something has to poll ``remaining_time``
    and dispatch the expiry transition. Call ``update()`` once per frame/tick.
    """

    def __init__(self, engine: SessionEngine) -> None:
        self._engine = engine

    def update(self) -> list[SessionEvent]:
        """Dispatch any due expiry events. Returns the events appended (usually none)."""

        state = self._engine.get_state()
        if state.is_terminal or state.remaining_time > 0:
            return []

        if state.phase is Phase.PREP:
            plan = [EventType.CODING_STARTED]
            if not state.prep_time_expired:
                plan.insert(0, EventType.PREP_TIME_EXPIRED)
        elif state.phase is Phase.CODING:
            plan = [EventType.CODING_SILENT_STARTED]
        elif state.phase is Phase.SILENT:
            plan = [EventType.SILENT_ENDED]
        else:
            return []

        fired: list[SessionEvent] = []
        for event_type in plan:
            result = self._engine.dispatch(event_type)
            if not result.ok:
                assert result.error is not None
                logger.warning("expiry dispatch %s rejected: %s", event_type.value, result.error.message)
                break
            assert result.value is not None
            fired.append(result.value)
        return fired
