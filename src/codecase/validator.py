"""Evaluate mission conditions against the learner's current source text."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace

from .rules import RuleRegistry

MAX_SCORE = 100


@dataclass(frozen=True)
class ValidationVerdict:
    """Outcome of one evaluation; recomputed on demand, never persisted."""

    satisfied: tuple[str, ...]
    unsatisfied: tuple[str, ...]
    score: int
    feedback: tuple[str, ...]
    is_completed: bool
    max_score: int = MAX_SCORE

    @property
    def total(self) -> int:
        return len(self.satisfied) + len(self.unsatisfied)

    def forced_incomplete(self) -> ValidationVerdict:
        """Return the same partial progress with completion withheld."""
        if not self.is_completed:
            return self
        return replace(self, is_completed=False)


def score_for(satisfied: int, total: int) -> int:
    """Return ``100 * satisfied / total`` rounded half-up to an integer."""
    if total <= 0:
        return MAX_SCORE
    return (2 * MAX_SCORE * satisfied + total) // (2 * total)


def evaluate(
    conditions: Sequence[str],
    html: str,
    css: str,
    registry: RuleRegistry | None = None,
) -> ValidationVerdict:
    """Check every condition in order and return the verdict."""
    rules = registry if registry is not None else RuleRegistry()
    satisfied: list[str] = []
    unsatisfied: list[str] = []
    feedback: list[str] = []
    for condition in conditions:
        if rules.check(condition, html, css):
            satisfied.append(condition)
            feedback.append(f"[x] {condition}")
        else:
            unsatisfied.append(condition)
            feedback.append(f"[ ] {condition}")

    return ValidationVerdict(
        satisfied=tuple(satisfied),
        unsatisfied=tuple(unsatisfied),
        score=score_for(len(satisfied), len(conditions)),
        feedback=tuple(feedback),
        is_completed=not unsatisfied,
    )
