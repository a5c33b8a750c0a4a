"""Pygame UI shell for Interview Studio.

Main Menu -> preset choice -> one practice session screen, plus a History
screen over the stored sessions. The session screen only renders
``SessionEngine.get_state()`` and turns key presses into ``dispatch`` calls;
phase timing, nudges and validation all live in interview_studio/session.py.
"""

from __future__ import annotations

import random
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import pygame

from .clock import Clock, RealClock
from .model import REFLECTION_FIELDS, EventType, Phase, SessionState, SessionStatus
from .persistence import (
    SessionRecorder,
    SessionStats,
    StoredSession,
    default_db_path,
    delete_session,
    get_incomplete_session,
    list_sessions,
    open_db,
    resume_engine,
    session_stats,
    summary_from_stored,
)
from .presets import PRESET_LABELS, Preset, describe
from .problems import SeededRng, pick_problem
from .results import SessionSummary, format_duration, summary_from_session, timer_tone
from .session import SessionEngine
from .timer import PhaseTimer

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (10, 10, 14)
TEXT_MAIN = (235, 235, 245)
TEXT_MUTED = (180, 180, 190)
TEXT_HINT = (140, 140, 150)
ROW_ACTIVE = (235, 235, 245)
ROW_BORDER = (70, 70, 90)
TONE_COLORS = {
    "normal": (235, 235, 245),
    "warning": (240, 200, 120),
    "overtime": (235, 110, 110),
}

REFLECTION_QUESTIONS: tuple[tuple[str, str], ...] = (
    ("clearApproach", "Did you have a clear approach before coding?"),
    ("prolongedStall", "Did you have a prolonged stall?"),
    ("recoveredFromStall", "Did you recover from the stall?"),
    ("timePressure", "How did the time pressure feel?"),
    ("wouldChangeApproach", "Would you change your approach?"),
)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]
    detail: str = ""


def _fit_label(font: pygame.font.Font, label: str, max_width: int) -> str:
    if max_width <= 0:
        return ""
    if font.size(label)[0] <= max_width:
        return label
    clipped = label
    while clipped and font.size(f"{clipped}...")[0] > max_width:
        clipped = clipped[:-1]
    return f"{clipped}..." if clipped else "..."


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # The root menu is never popped; it quits instead.
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if self._screens:
            self._screens[-1].handle_event(event)

    def render(self) -> None:
        if self._screens:
            self._screens[-1].render(self._surface)


class MenuScreen:
    """Vertical list of actions. Items with a ``detail`` show it right-aligned."""

    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._item_font = pygame.font.Font(None, 32)
        self._detail_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN or not self._items:
            return
        key = event.key
        if key in (pygame.K_UP, pygame.K_w):
            self._selected = (self._selected - 1) % len(self._items)
        elif key in (pygame.K_DOWN, pygame.K_s):
            self._selected = (self._selected + 1) % len(self._items)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._items[self._selected].action()
        elif key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)

        title = self._app.font.render(self._title, True, TEXT_MAIN)
        surface.blit(title, (40, 24))

        y = 90
        for idx, item in enumerate(self._items):
            row = pygame.Rect(30, y, w - 60, 38)
            selected = idx == self._selected
            if selected:
                pygame.draw.rect(surface, ROW_ACTIVE, row)
            else:
                pygame.draw.rect(surface, ROW_BORDER, row, 1)

            detail_w = 0
            if item.detail:
                detail = self._detail_font.render(item.detail, True, BG if selected else TEXT_MUTED)
                detail_w = detail.get_width() + 20
                surface.blit(detail, detail.get_rect(midright=(row.right - 10, row.centery)))

            label = _fit_label(self._item_font, item.label, row.w - 20 - detail_w)
            text = self._item_font.render(label, True, BG if selected else TEXT_MAIN)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += 46

        hint = self._detail_font.render("Enter: Select  |  Esc: Back", True, TEXT_HINT)
        surface.blit(hint, (40, h - 32))


def _edit_text(current: str, event: pygame.event.Event) -> str | None:
    """Apply one key press to a text buffer. Returns None when the key is not an edit."""

    if event.key == pygame.K_BACKSPACE:
        return current[:-1] if current else None
    if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
        return current + "\n"
    if event.key == pygame.K_TAB:
        return current + "    "
    ch = getattr(event, "unicode", "")
    if ch and ch.isprintable():
        return current + ch
    return None


class SessionScreen:
    """Renders one session and maps keys to engine events.

    Keys: typing edits invariants (prep) or code (coding/silent); Ctrl+Enter
    runs the phase's main action; F1 asks for a nudge; Shift+Esc abandons.
    """

    def __init__(
        self,
        app: App,
        *,
        engine: SessionEngine,
        clock: Clock,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        self._app = app
        self._engine = engine
        self._timer = PhaseTimer(engine)
        self._recorder = SessionRecorder(conn, engine, clock=clock) if conn is not None else None
        self._message: str | None = None
        self._question = 0
        self._answers: dict[str, int] = {name: 0 for name in REFLECTION_FIELDS}

        self._small_font = pygame.font.Font(None, 24)
        self._mono_font = pygame.font.SysFont("monospace", 18)
        self._big_font = pygame.font.Font(None, 52)

    # -- Input ---------------------------------------------------------------
    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        state = self._engine.get_state()
        mods = getattr(event, "mod", 0)

        if event.key == pygame.K_ESCAPE:
            if state.is_terminal or state.phase is None:
                self._close()
            elif mods & pygame.KMOD_SHIFT:
                self._dispatch(EventType.SESSION_ABANDONED)
            else:
                self._message = "Shift+Esc abandons the session."
            return

        if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER) and (mods & pygame.KMOD_CTRL):
            self._primary_action(state)
            return

        if state.is_terminal:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._close()
            return

        phase = state.phase
        if phase is None:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._dispatch(EventType.SESSION_STARTED)
        elif phase is Phase.PREP:
            edited = _edit_text(state.invariants, event)
            if edited is not None:
                self._dispatch(EventType.PREP_INVARIANTS_CHANGED, {"invariants": edited})
        elif phase in (Phase.CODING, Phase.SILENT):
            if event.key == pygame.K_F1:
                self._dispatch(EventType.NUDGE_REQUESTED)
                return
            edited = _edit_text(state.code, event)
            if edited is not None:
                self._dispatch(EventType.CODING_CODE_CHANGED, {"code": edited})
        elif phase is Phase.SUMMARY:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                self._dispatch(EventType.SUMMARY_CONTINUED)
        elif phase is Phase.REFLECTION:
            self._handle_reflection_key(event.key)

    def _handle_reflection_key(self, key: int) -> None:
        if key in (pygame.K_UP, pygame.K_w):
            self._question = (self._question - 1) % len(REFLECTION_QUESTIONS)
        elif key in (pygame.K_DOWN, pygame.K_s):
            self._question = (self._question + 1) % len(REFLECTION_QUESTIONS)
        elif key in (pygame.K_LEFT, pygame.K_RIGHT, pygame.K_a, pygame.K_d):
            name = REFLECTION_QUESTIONS[self._question][0]
            delta = -1 if key in (pygame.K_LEFT, pygame.K_a) else 1
            self._answers[name] = (self._answers[name] + delta) % len(REFLECTION_FIELDS[name])
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            self._submit_reflection()

    def _primary_action(self, state: SessionState) -> None:
        if state.is_terminal:
            self._close()
        elif state.phase is None:
            self._dispatch(EventType.SESSION_STARTED)
        elif state.phase is Phase.PREP:
            self._dispatch(EventType.CODING_STARTED)
        elif state.phase is Phase.CODING:
            self._dispatch(EventType.CODING_SOLUTION_SUBMITTED)
        elif state.phase is Phase.SUMMARY:
            self._dispatch(EventType.SUMMARY_CONTINUED)
        elif state.phase is Phase.REFLECTION:
            self._submit_reflection()

    def _submit_reflection(self) -> None:
        responses = {name: REFLECTION_FIELDS[name][idx] for name, idx in self._answers.items()}
        self._dispatch(EventType.REFLECTION_SUBMITTED, {"responses": responses})

    def _dispatch(self, event_type: EventType, payload: dict[str, Any] | None = None) -> None:
        result = self._engine.dispatch(event_type, payload)
        if result.ok:
            self._message = None
        else:
            assert result.error is not None
            self._message = f"{result.error.code.value}: {result.error.message}"

    def _close(self) -> None:
        if self._recorder is not None:
            self._recorder.close()
            self._recorder = None
        self._app.pop()

    # -- Rendering -----------------------------------------------------------
    def render(self, surface: pygame.Surface) -> None:
        self._timer.update()
        state = self._engine.get_state()

        surface.fill(BG)
        self._render_header(surface, state)

        if state.is_terminal:
            self._render_done(surface, state)
        elif state.phase is None:
            self._render_lines(
                surface,
                [state.problem.title, "", *self._wrap(state.problem.description, 80), "", "Press Enter to start."],
                y=90,
            )
        elif state.phase is Phase.PREP:
            self._render_prep(surface, state)
        elif state.phase in (Phase.CODING, Phase.SILENT):
            self._render_coding(surface, state)
        elif state.phase is Phase.SUMMARY:
            self._render_summary(surface, state)
        elif state.phase is Phase.REFLECTION:
            self._render_reflection(surface)

        if self._message:
            msg = self._small_font.render(self._message, True, TONE_COLORS["overtime"])
            surface.blit(msg, (40, surface.get_height() - 60))
        hint = self._small_font.render(self._hint(state), True, TEXT_HINT)
        surface.blit(hint, (40, surface.get_height() - 32))

    def _render_header(self, surface: pygame.Surface, state: SessionState) -> None:
        phase = "READY" if state.phase is None else state.phase.value
        if state.is_terminal:
            phase = state.status.value.upper()
        title = self._big_font.render(phase, True, TEXT_MAIN)
        surface.blit(title, (40, 24))

        if state.phase in (Phase.PREP, Phase.CODING, Phase.SILENT) and not state.is_terminal:
            tone = timer_tone(state.remaining_time)
            clock = self._big_font.render(format_duration(state.remaining_time), True, TONE_COLORS[tone])
            surface.blit(clock, clock.get_rect(topright=(surface.get_width() - 40, 24)))

        if state.phase is Phase.CODING:
            nudges = f"Nudges: {state.nudges_remaining}/{state.config.nudge_budget}"
            surf = self._small_font.render(nudges, True, TEXT_MUTED)
            surface.blit(surf, surf.get_rect(topright=(surface.get_width() - 40, 70)))

    def _render_prep(self, surface: pygame.Surface, state: SessionState) -> None:
        lines = [state.problem.title, *self._wrap(state.problem.description, 80), "", "Invariants:"]
        y = self._render_lines(surface, lines, y=90)
        self._render_lines(surface, (state.invariants + "_").split("\n"), y=y, font=self._mono_font)

    def _render_coding(self, surface: pygame.Surface, state: SessionState) -> None:
        if state.phase is Phase.SILENT:
            label = "Silent: no assistance. Keep going."
        else:
            label = state.problem.title
        y = self._render_lines(surface, [label], y=90)
        self._render_lines(surface, (state.code + "_").split("\n"), y=y + 6, font=self._mono_font, max_lines=16)

    def _render_summary(self, surface: pygame.Surface, state: SessionState) -> None:
        s = summary_from_session(state, self._engine.get_events())
        prep = "N/A" if s.prep_time_used_ms is None else format_duration(s.prep_time_used_ms)
        lines = [
            f"Problem: {state.problem.title}",
            f"Prep time used: {prep}",
            f"Nudges used: {s.nudges_used} / {s.nudge_budget}",
            f"Invariants: {state.invariants.splitlines()[0] if state.invariants.strip() else '(none)'}",
            f"Code: {s.code_lines} lines",
            "",
            "Press Enter to continue to reflection.",
        ]
        self._render_lines(surface, lines, y=90)

    def _render_reflection(self, surface: pygame.Surface) -> None:
        y = 90
        for idx, (name, question) in enumerate(REFLECTION_QUESTIONS):
            answer = REFLECTION_FIELDS[name][self._answers[name]]
            color = TEXT_MAIN if idx == self._question else TEXT_MUTED
            marker = ">" if idx == self._question else " "
            surf = self._small_font.render(f"{marker} {question}  < {answer} >", True, color)
            surface.blit(surf, (40, y))
            y += 34

    def _render_done(self, surface: pygame.Surface, state: SessionState) -> None:
        if state.status is SessionStatus.COMPLETED:
            lines = ["Session complete. Nice work.", "", "Press Enter to return to the menu."]
        else:
            lines = ["Session abandoned.", "", "Press Enter to return to the menu."]
        self._render_lines(surface, lines, y=90)

    def _render_lines(
        self,
        surface: pygame.Surface,
        lines: list[str],
        *,
        y: int,
        font: pygame.font.Font | None = None,
        max_lines: int | None = None,
    ) -> int:
        font = font or self._small_font
        if max_lines is not None and len(lines) > max_lines:
            lines = lines[-max_lines:]
        for line in lines:
            surf = font.render(line, True, TEXT_MAIN)
            surface.blit(surf, (40, y))
            y += font.get_linesize()
        return y

    def _wrap(self, text: str, width: int) -> list[str]:
        words = text.split()
        out: list[str] = []
        line = ""
        for word in words:
            if line and len(line) + 1 + len(word) > width:
                out.append(line)
                line = word
            else:
                line = f"{line} {word}" if line else word
        if line:
            out.append(line)
        return out

    def _hint(self, state: SessionState) -> str:
        if state.is_terminal:
            return "Enter: Back to menu"
        if state.phase is None:
            return "Enter: Start  |  Esc: Back"
        if state.phase is Phase.PREP:
            return "Type invariants  |  Ctrl+Enter: Start coding  |  Shift+Esc: Abandon"
        if state.phase is Phase.CODING:
            return "Type code  |  F1: Nudge  |  Ctrl+Enter: Submit  |  Shift+Esc: Abandon"
        if state.phase is Phase.SILENT:
            return "Type code  |  Shift+Esc: Abandon"
        if state.phase is Phase.REFLECTION:
            return "Up/Down: Question  |  Left/Right: Answer  |  Enter: Submit"
        return "Enter: Continue  |  Shift+Esc: Abandon"


STATUS_LABELS = {
    SessionStatus.IN_PROGRESS: "In progress",
    SessionStatus.COMPLETED: "Completed",
    SessionStatus.ABANDONED_EXPLICIT: "Abandoned",
}


class HistoryScreen:
    """Stored sessions, newest first, under the aggregate stats.

    Up/Down selects, Enter resumes an incomplete session, Delete pressed
    twice on the same row removes it, Esc goes back.
    """

    def __init__(
        self,
        app: App,
        *,
        conn: sqlite3.Connection,
        on_resume: Callable[[StoredSession], None],
    ) -> None:
        self._app = app
        self._conn = conn
        self._on_resume = on_resume
        self._selected = 0
        self._pending_delete: str | None = None
        self._sessions: list[StoredSession] = []
        self._summaries: list[SessionSummary] = []
        self._stats = SessionStats(total=0, completed=0, avg_nudges=0.0)
        self._small_font = pygame.font.Font(None, 24)
        self.refresh()

    def refresh(self) -> None:
        self._sessions = list_sessions(self._conn)
        self._summaries = [summary_from_stored(s) for s in self._sessions]
        self._stats = session_stats(self._conn)
        self._selected = min(self._selected, max(0, len(self._sessions) - 1))

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        key = event.key
        if key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()
            return
        if not self._sessions:
            return

        if key in (pygame.K_UP, pygame.K_w, pygame.K_DOWN, pygame.K_s):
            delta = -1 if key in (pygame.K_UP, pygame.K_w) else 1
            self._selected = (self._selected + delta) % len(self._sessions)
            self._pending_delete = None
        elif key == pygame.K_DELETE:
            target = self._sessions[self._selected].id
            if self._pending_delete == target:
                delete_session(self._conn, target)
                self._pending_delete = None
                self.refresh()
            else:
                self._pending_delete = target
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            stored = self._sessions[self._selected]
            if stored.is_incomplete:
                self._on_resume(stored)

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)

        title = self._app.font.render("History", True, TEXT_MAIN)
        surface.blit(title, (40, 24))
        st = self._stats
        stats = f"Sessions: {st.total}   Completed: {st.completed}   Avg nudges: {st.avg_nudges:.1f}"
        surf = self._small_font.render(stats, True, TEXT_MUTED)
        surface.blit(surf, surf.get_rect(topright=(w - 40, 32)))

        if not self._sessions:
            empty = self._app.font.render("No sessions yet.", True, TEXT_MUTED)
            surface.blit(empty, (40, 100))
        else:
            y = 80
            # Keep the selected row on screen.
            first = max(0, self._selected - 7)
            for idx in range(first, min(len(self._sessions), first + 8)):
                row = pygame.Rect(30, y, w - 60, 30)
                selected = idx == self._selected
                if selected:
                    pygame.draw.rect(surface, ROW_ACTIVE, row)
                label = _fit_label(self._small_font, self._row_label(idx), row.w - 20)
                text = self._small_font.render(label, True, BG if selected else TEXT_MAIN)
                surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
                y += 34
            self._render_detail(surface, self._summaries[self._selected], y=y + 12)

        if self._pending_delete is not None:
            hint = "Press Delete again to remove this session."
        else:
            hint = "Up/Down: Select  |  Enter: Resume  |  Delete: Remove  |  Esc: Back"
        surf = self._small_font.render(hint, True, TEXT_HINT)
        surface.blit(surf, (40, h - 32))

    def _row_label(self, idx: int) -> str:
        stored = self._sessions[idx]
        s = self._summaries[idx]
        started = time.strftime("%Y-%m-%d %H:%M", time.localtime(stored.created_at_ms / 1000))
        return (
            f"{started}  {stored.problem.title}  |  {PRESET_LABELS[stored.preset]}  |  "
            f"{STATUS_LABELS[s.status]}  |  Nudges {s.nudges_used}/{s.nudge_budget}"
        )

    def _render_detail(self, surface: pygame.Surface, s: SessionSummary, *, y: int) -> None:
        prep = "N/A" if s.prep_time_used_ms is None else format_duration(s.prep_time_used_ms)
        coding = "N/A" if s.coding_time_ms is None else format_duration(s.coding_time_ms)
        lines = [
            f"Prep: {prep}{' (expired)' if s.prep_time_expired else ''}   "
            f"Coding: {coding}{' (submitted early)' if s.submitted_early else ''}   Code: {s.code_lines} lines",
        ]
        if s.reflection:
            lines.append("  ".join(f"{name}: {value}" for name, value in s.reflection.items()))
        for line in lines:
            clipped = _fit_label(self._small_font, line, surface.get_width() - 80)
            surface.blit(self._small_font.render(clipped, True, TEXT_MUTED), (40, y))
            y += self._small_font.get_linesize()


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    db_path: Path | None = None,
) -> int:
    pygame.init()

    pygame.display.set_caption("Interview Studio")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    frame_clock = pygame.time.Clock()

    app = App(surface=surface, font=font)
    real_clock = RealClock()
    conn = open_db(db_path if db_path is not None else default_db_path())

    def open_session(preset: Preset) -> None:
        problem = pick_problem(SeededRng(_new_seed()))
        engine = SessionEngine(problem=problem, preset=preset, clock=real_clock)
        app.pop()  # leave the preset menu; closing the session returns to the main menu
        app.push(SessionScreen(app, engine=engine, clock=real_clock, conn=conn))

    def open_stored(stored: StoredSession) -> None:
        engine = resume_engine(stored, clock=real_clock)
        app.push(SessionScreen(app, engine=engine, clock=real_clock, conn=conn))

    def resume_session() -> None:
        stored = get_incomplete_session(conn)
        if stored is not None:
            open_stored(stored)

    def resume_from_history(stored: StoredSession) -> None:
        app.pop()
        open_stored(stored)

    preset_items = [
        MenuItem(PRESET_LABELS[p], lambda p=p: open_session(p), detail=describe(p))
        for p in (Preset.STANDARD, Preset.HIGH_PRESSURE, Preset.NO_ASSISTANCE, Preset.SPEED_ROUND)
    ]
    preset_items.append(MenuItem("Back", app.pop))
    preset_menu = MenuScreen(app, "Choose a Preset", preset_items)

    main_items = [
        MenuItem("New Session", lambda: app.push(preset_menu)),
        MenuItem("Resume Session", resume_session),
        MenuItem("History", lambda: app.push(HistoryScreen(app, conn=conn, on_resume=resume_from_history))),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Interview Studio", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            frame_clock.tick(TARGET_FPS)
    finally:
        conn.close()
        pygame.quit()

    return 0
