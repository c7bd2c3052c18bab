"""Pick the single most relevant hint for a mission's current source text.

Hint signatures are authored separately from the validator's conditions and
check narrower things (a stray attribute, a missing id) in a fixed priority
order. The first signature that still matches the text wins.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class HintRecord:
    """Hint shown to the learner."""

    id: str
    message: str
    is_resolved: bool
    error_message: str | None = None


@dataclass(frozen=True)
class HintSignature:
    """A known failure: ``detect`` returns True while the problem is still present."""

    id: str
    message: str
    detect: Callable[[str, str], bool]
    error_message: str | None = None


@dataclass(frozen=True)
class MissionHints:
    """Priority-ordered signatures plus the hint shown once none of them match."""

    signatures: tuple[HintSignature, ...]
    completion: HintRecord


ENCOURAGEMENT = HintRecord(
    id="investigate",
    message=(
        "Keep investigating the code! Look for hidden elements or broken HTML/CSS that might contain clues."
    ),
    is_resolved=False,
)


def has_css_error(css: str) -> bool:
    """Detect empty declarations and unbalanced braces."""
    if "display: ;" in css or "display:;" in css:
        return True
    if "visibility: ;" in css or "visibility:;" in css:
        return True
    return css.count("{") != css.count("}")


def _completion(message: str) -> HintRecord:
    return HintRecord(id="mission-complete", message=message, is_resolved=True)


BUILTIN_HINTS: Mapping[str, MissionHints] = MappingProxyType(
    {
        "clue-1": MissionHints(
            signatures=(
                HintSignature(
                    id="remove-hidden",
                    message=(
                        'I can see a paragraph with the "hidden" attribute! Remove the word "hidden" '
                        "to reveal Sam's secret message."
                    ),
                    detect=lambda html, css: "hidden" in html,
                ),
                HintSignature(
                    id="remove-center",
                    message=(
                        "The <center> tags are outdated! Replace them with semantic HTML elements "
                        "like <header> and <footer>."
                    ),
                    detect=lambda html, css: "<center>" in html or "</center>" in html,
                ),
                HintSignature(
                    id="css-error",
                    message=(
                        "There's a CSS syntax error. Check for missing colons, semicolons, or malformed properties."
                    ),
                    detect=lambda html, css: has_css_error(css),
                    error_message="CSS syntax error detected",
                ),
            ),
            completion=_completion(
                "Excellent detective work! You've revealed the hidden clue. The mission is complete!"
            ),
        ),
        "clue-2": MissionHints(
            signatures=(
                HintSignature(
                    id="fix-display",
                    message=(
                        'I found hidden Instagram evidence! Change "display: none" to "display: block" to reveal it.'
                    ),
                    detect=lambda html, css: "display: none" in css or "display:none" in css,
                ),
                HintSignature(
                    id="add-id",
                    message='Add id="insta-clue" to the Instagram evidence element so we can style it with CSS.',
                    detect=lambda html, css: 'id="insta-clue"' not in html,
                ),
            ),
            completion=_completion("Perfect! You've uncovered the Instagram evidence. Another clue revealed!"),
        ),
        "clue-3": MissionHints(
            signatures=(
                HintSignature(
                    id="fix-visibility",
                    message=(
                        'There\'s hidden address information! Change "visibility: hidden" to "visibility: visible".'
                    ),
                    detect=lambda html, css: "visibility: hidden" in css or "visibility:hidden" in css,
                ),
            ),
            completion=_completion("Outstanding work! You've found the final piece of evidence. Case solved!"),
        ),
    }
)


class HintResolver:
    """Stateless lookup from (mission, text) to one hint record."""

    def __init__(self, tables: Mapping[str, MissionHints] | None = None, *, include_builtin: bool = True) -> None:
        self._tables: dict[str, MissionHints] = dict(BUILTIN_HINTS) if include_builtin else {}
        if tables:
            self._tables.update(tables)

    def register(self, mission_id: str, signatures: Sequence[HintSignature], completion: HintRecord) -> None:
        """Install or replace the hint table for one mission."""
        self._tables[mission_id] = MissionHints(signatures=tuple(signatures), completion=completion)

    def knows(self, mission_id: str) -> bool:
        return mission_id in self._tables

    def resolve(self, mission_id: str, html: str, css: str) -> HintRecord:
        table = self._tables.get(mission_id)
        if table is None:
            return ENCOURAGEMENT

        html_lower = html.lower()
        css_lower = css.lower()
        for signature in table.signatures:
            if signature.detect(html_lower, css_lower):
                return HintRecord(
                    id=signature.id,
                    message=signature.message,
                    is_resolved=False,
                    error_message=signature.error_message,
                )
        return table.completion
