"""Mission progression state machine for one case playthrough.

Phases run ``narrative -> task -> resolved``. While in ``task`` every source
edit schedules a debounced, stability-gated validation of the current
mission. A passing verdict marks the mission complete and reveals its clue;
only ``complete_and_advance`` moves on to the next mission.

Source text is reset to the mission's broken defaults only when a mission is
entered (first entry to the task phase, or a mission index change). No other
command touches the learner's edits.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Literal

from .errors import InvalidTransition
from .hints import HintRecord, HintResolver
from .models import Case, Mission, NarrativeBeat
from .stability import DEFAULT_QUIESCENCE_SECONDS, Debouncer, Scheduler, StabilityGate
from .validator import ValidationVerdict

logger = logging.getLogger(__name__)

Phase = Literal["narrative", "task", "resolved"]
Pane = Literal["html", "css"]

NARRATIVE: Phase = "narrative"
TASK: Phase = "task"
RESOLVED: Phase = "resolved"
DEFAULT_PANE: Pane = "html"


@dataclass
class ProgressionState:
    """Mutable playthrough state; callers receive copies from ``Playthrough.state``."""

    phase: Phase = NARRATIVE
    beat_index: int = 0
    mission_index: int = 0
    html: str = ""
    css: str = ""
    revealed_clues: list[str] = field(default_factory=list)
    mission_completed: bool = False
    reset_pending: bool = True
    active_pane: Pane = DEFAULT_PANE
    verdict: ValidationVerdict | None = None

    def reveal_clue(self, clue: str) -> bool:
        """Append a clue once. Returns False if it was already revealed."""
        if clue in self.revealed_clues:
            return False
        self.revealed_clues.append(clue)
        return True

    def snapshot(self) -> ProgressionState:
        return replace(self, revealed_clues=list(self.revealed_clues))


class Playthrough:
    """Owns the progression state of one learner working through one case."""

    def __init__(
        self,
        case: Case,
        *,
        gate: StabilityGate | None = None,
        hints: HintResolver | None = None,
        quiescence_seconds: float = DEFAULT_QUIESCENCE_SECONDS,
        scheduler: Scheduler | None = None,
    ) -> None:
        if not case.missions:
            raise ValueError(f"Case '{case.id}' has no missions.")
        self.case = case
        self._gate = gate if gate is not None else StabilityGate()
        self._hints = hints if hints is not None else HintResolver()
        self._debouncer = Debouncer(quiescence_seconds, scheduler)
        self._lock = threading.RLock()
        self._state = ProgressionState()
        if not case.beats:
            self._enter_task()

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> ProgressionState:
        with self._lock:
            return self._state.snapshot()

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def current_mission(self) -> Mission:
        return self.case.missions[self._state.mission_index]

    @property
    def current_beat(self) -> NarrativeBeat | None:
        if self._state.phase != NARRATIVE or not self.case.beats:
            return None
        return self.case.beats[self._state.beat_index]

    @property
    def verdict(self) -> ValidationVerdict | None:
        return self._state.verdict

    @property
    def validation_pending(self) -> bool:
        return self._debouncer.pending

    @property
    def is_last_mission(self) -> bool:
        return self._state.mission_index == len(self.case.missions) - 1

    def hint(self) -> HintRecord | None:
        """Resolve the hint for the current mission text; None outside the task phase."""
        with self._lock:
            if self._state.phase != TASK:
                return None
            return self._hints.resolve(self.current_mission.id, self._state.html, self._state.css)

    def fallback_hint(self, attempt: int) -> str | None:
        """Return the authored hint for the given attempt number, cycling through the list."""
        hints = self.current_mission.fallback_hints
        if not hints:
            return None
        return hints[attempt % len(hints)]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def advance_narrative(self) -> ProgressionState:
        """Show the next beat; continuing from the final beat starts the first mission."""
        with self._lock:
            self._require(NARRATIVE, "advance narrative")
            if self._state.beat_index < len(self.case.beats) - 1:
                self._state.beat_index += 1
            else:
                self._enter_task()
            return self._state.snapshot()

    def retreat_narrative(self) -> ProgressionState:
        """Show the previous beat; stays on the first beat."""
        with self._lock:
            self._require(NARRATIVE, "retreat narrative")
            if self._state.beat_index > 0:
                self._state.beat_index -= 1
            return self._state.snapshot()

    def skip_to_task(self) -> ProgressionState:
        with self._lock:
            self._require(NARRATIVE, "skip to task")
            self._enter_task()
            return self._state.snapshot()

    def update_source(self, html: str, css: str) -> ProgressionState:
        """Store the learner's latest text and schedule a debounced validation."""
        with self._lock:
            self._require(TASK, "update source")
            self._state.html = html
            self._state.css = css
            mission_index = self._state.mission_index
            self._debouncer.schedule(lambda: self._validate(mission_index))
            return self._state.snapshot()

    def set_active_pane(self, pane: Pane) -> ProgressionState:
        if pane not in ("html", "css"):
            raise ValueError(f"Unknown editor pane: {pane}")
        with self._lock:
            self._state.active_pane = pane
            return self._state.snapshot()

    def settle(self) -> ValidationVerdict | None:
        """Run any pending validation immediately and return the current verdict."""
        self._debouncer.flush()
        return self.verdict

    def complete_and_advance(self) -> ProgressionState:
        """Move past a completed mission: to the next mission, or to the resolution."""
        with self._lock:
            self._require(TASK, "complete and advance")
            if not self._state.mission_completed:
                raise InvalidTransition(f"Mission '{self.current_mission.id}' is not complete yet.")

            self._debouncer.cancel()
            if self.is_last_mission:
                self._state.phase = RESOLVED
                logger.info("Case %s resolved with %s clues", self.case.id, len(self._state.revealed_clues))
                return self._state.snapshot()

            self._state.mission_index += 1
            self._state.mission_completed = False
            self._state.reset_pending = True
            self._state.active_pane = DEFAULT_PANE
            logger.info("Case %s advanced to mission %s", self.case.id, self.current_mission.id)
            self._apply_pending_reset()
            return self._state.snapshot()

    def close(self) -> None:
        """Drop any pending validation."""
        self._debouncer.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, phase: Phase, action: str) -> None:
        if self._state.phase != phase:
            raise InvalidTransition(f"Cannot {action} during the {self._state.phase} phase.")

    def _enter_task(self) -> None:
        self._state.phase = TASK
        self._state.reset_pending = True
        logger.info("Case %s entered task phase at mission %s", self.case.id, self.current_mission.id)
        self._apply_pending_reset()

    def _apply_pending_reset(self) -> None:
        """Load the mission's broken source once per mission entry."""
        if self._state.phase != TASK or not self._state.reset_pending:
            return
        mission = self.current_mission
        self._debouncer.cancel()
        self._state.html = mission.broken_html
        self._state.css = mission.broken_css
        self._state.mission_completed = False
        self._state.verdict = None
        self._state.reset_pending = False
        mission_index = self._state.mission_index
        self._debouncer.schedule(lambda: self._validate(mission_index))

    def _validate(self, mission_index: int) -> None:
        with self._lock:
            if self._state.phase != TASK or self._state.mission_index != mission_index:
                return
            mission = self.current_mission
            verdict = self._gate.evaluate(
                mission.conditions,
                self._state.html,
                self._state.css,
                previous=self._state.verdict,
            )
            self._state.verdict = verdict
            if verdict.is_completed and not self._state.mission_completed:
                self._state.mission_completed = True
                self._state.reveal_clue(mission.clue)
                logger.info("Mission %s completed; clue revealed", mission.id)
