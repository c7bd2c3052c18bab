"""Decide when edited source text is settled enough to validate.

Two pieces live here:

- ``Debouncer`` delays an action until the text has been quiet for a fixed
  interval. Each new change cancels the pending action (last write wins).
- ``StabilityGate`` applies structural balance heuristics before handing the
  text to the validator, so a half-typed tag can never complete a mission.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from .rules import RuleRegistry
from .validator import ValidationVerdict, evaluate

logger = logging.getLogger(__name__)

DEFAULT_QUIESCENCE_SECONDS = 1.0
DEFAULT_HTML_TOLERANCE = 2

_OPEN_TAG = re.compile(r"<[^/][^>]*>")
_CLOSE_TAG = re.compile(r"</[^>]*>")
_SELF_CLOSING_TAG = re.compile(r"<[^>]*/>")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs a callback once after a delay, returning a cancellable handle."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    """Scheduler backed by daemon ``threading.Timer`` objects."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


@dataclass
class _ManualTimer:
    due: float
    seq: int
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by explicit ``advance`` calls instead of wall time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[_ManualTimer] = []
        self._seq = 0

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        self._seq += 1
        timer = _ManualTimer(due=self.now + max(0.0, delay), seq=self._seq, callback=callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return len([timer for timer in self._timers if not timer.cancelled])

    def advance(self, seconds: float) -> None:
        """Move time forward and fire every timer that came due, in order."""
        target = self.now + seconds
        while True:
            due = sorted(
                (timer for timer in self._timers if not timer.cancelled and timer.due <= target),
                key=lambda timer: (timer.due, timer.seq),
            )
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self.now = timer.due
            timer.callback()
        self.now = target
        self._timers = [timer for timer in self._timers if not timer.cancelled]


class Debouncer:
    """Cancellable delayed action where only the latest request ever fires."""

    def __init__(self, delay: float = DEFAULT_QUIESCENCE_SECONDS, scheduler: Scheduler | None = None) -> None:
        if delay < 0:
            raise ValueError("Debounce delay must not be negative.")
        self.delay = delay
        self._scheduler = scheduler or ThreadingScheduler()
        self._lock = threading.Lock()
        self._handle: TimerHandle | None = None
        self._pending: Callable[[], None] | None = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def schedule(self, action: Callable[[], None]) -> None:
        """Replace any pending action with ``action`` and restart the delay."""
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._generation += 1
            generation = self._generation
            self._pending = action
            self._handle = self._scheduler.call_later(self.delay, lambda: self._fire(generation))

    def cancel(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._handle = None
            self._pending = None
            self._generation += 1

    def flush(self) -> bool:
        """Run the pending action now. Returns False when nothing was pending."""
        with self._lock:
            action = self._pending
            if self._handle is not None:
                self._handle.cancel()
            self._handle = None
            self._pending = None
            self._generation += 1
        if action is None:
            return False
        action()
        return True

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._pending is None:
                return
            action = self._pending
            self._pending = None
            self._handle = None
        action()


@dataclass(frozen=True)
class StabilityReport:
    """Result of the structural checks; ``reasons`` is empty when stable."""

    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def stable(self) -> bool:
        return not self.reasons


def html_tags_balanced(html: str, tolerance: int = DEFAULT_HTML_TOLERANCE) -> bool:
    """Loose tag balance check tolerating doctype, meta and void elements."""
    open_tags = len(_OPEN_TAG.findall(html))
    close_tags = len(_CLOSE_TAG.findall(html))
    self_closing = len(_SELF_CLOSING_TAG.findall(html))
    return abs(open_tags - close_tags - self_closing) <= tolerance


def css_braces_balanced(css: str) -> bool:
    return css.count("{") == css.count("}")


def inside_unterminated_tag(html: str) -> bool:
    return "<" in html and html.rfind("<") > html.rfind(">")


def inside_unterminated_attribute(html: str) -> bool:
    return html.count('"') % 2 != 0


def inside_unterminated_rule(css: str) -> bool:
    return "{" in css and css.rfind("{") > css.rfind("}")


def check_stability(html: str, css: str, tolerance: int = DEFAULT_HTML_TOLERANCE) -> StabilityReport:
    """Run every heuristic and collect the ones that failed."""
    reasons: list[str] = []
    if not html_tags_balanced(html, tolerance):
        reasons.append("html tags unbalanced")
    if not css_braces_balanced(css):
        reasons.append("css braces unbalanced")
    if inside_unterminated_tag(html):
        reasons.append("html tag still open")
    if inside_unterminated_attribute(html):
        reasons.append("html attribute quote still open")
    if inside_unterminated_rule(css):
        reasons.append("css rule still open")
    return StabilityReport(reasons=tuple(reasons))


class StabilityGate:
    """Validate only structurally settled text; otherwise withhold completion."""

    def __init__(self, registry: RuleRegistry | None = None, tolerance: int = DEFAULT_HTML_TOLERANCE) -> None:
        self.registry = registry if registry is not None else RuleRegistry()
        self.tolerance = tolerance

    def evaluate(
        self,
        conditions: Sequence[str],
        html: str,
        css: str,
        previous: ValidationVerdict | None = None,
    ) -> ValidationVerdict:
        """Return a fresh verdict for stable text, else the previous one forced incomplete."""
        report = check_stability(html, css, self.tolerance)
        if report.stable:
            return evaluate(conditions, html, css, self.registry)

        logger.debug("Evaluation suppressed: %s", ", ".join(report.reasons))
        if previous is not None:
            return previous.forced_incomplete()
        return evaluate(conditions, html, css, self.registry).forced_incomplete()
