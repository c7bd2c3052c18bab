"""Substring predicates that decide whether a mission condition holds.

Every predicate receives lower-cased HTML and lower-cased CSS and returns a
bool. Predicates are plain substring checks tuned against the bundled mission
content; they are not an HTML or CSS parser.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType

logger = logging.getLogger(__name__)

Predicate = Callable[[str, str], bool]

REVEAL_HIDDEN_MESSAGE = "Remove the hidden attribute and make the message visible"
REPLACE_CENTER_STRUCTURE = "Replace <center> tags with proper HTML structure"
STYLE_REVEALED_MESSAGE = "Apply proper CSS styling for the revealed message"
SHOW_INSTA_CLUE = "Change display: none to display: block on #insta-clue element"
STYLE_INSTAGRAM_EVIDENCE = "Style the revealed Instagram evidence section appropriately"
SHOW_ADDRESS_CLUE = "Change visibility: hidden to visibility: visible on #address-clue"
REPLACE_FONT_TAGS = "Replace <font> tags with modern CSS styling"
STYLE_LOCATION_INFO = "Apply proper styling to the revealed location information"
REPLACE_CENTER_SEMANTIC = "Replace <center> tags with proper semantic HTML elements"
USE_SEMANTIC_ELEMENTS = "Use modern HTML5 semantic elements (header, main, footer)"


def _any_in(text: str, needles: Iterable[str]) -> bool:
    return any(needle in text for needle in needles)


def reveal_hidden_message(html: str, css: str) -> bool:
    no_hidden = not _any_in(
        html,
        ("hidden>", "hidden ", " hidden", 'style="display: none"', 'style="display:none"'),
    )
    return no_hidden and "check my last insta story" in html


def replace_center_structure(html: str, css: str) -> bool:
    no_center = "<center>" not in html and "</center>" not in html
    return no_center and ("the truth about novacorp" in html or "sam out" in html)


def style_revealed_message(html: str, css: str) -> bool:
    return _any_in(css, (".revealed-message", ".hidden-message", "background:", "border:", "animation:"))


def show_insta_clue(html: str, css: str) -> bool:
    has_target = "#insta-clue" in css or 'id="insta-clue"' in html
    has_block = "display: block" in css or "display:block" in css
    no_none = "display: none" not in css and "display:none" not in css
    return has_target and has_block and no_none


def style_instagram_evidence(html: str, css: str) -> bool:
    return _any_in(
        css,
        ("#insta-clue", ".instagram-evidence", ".social-post", "border:", "animation:", "background:"),
    )


def show_address_clue(html: str, css: str) -> bool:
    has_target = "#address-clue" in css or 'id="address-clue"' in html
    has_visible = "visibility: visible" in css or "visibility:visible" in css
    no_hidden = "visibility: hidden" not in css and "visibility:hidden" not in css
    return has_target and has_visible and no_hidden


def replace_font_tags(html: str, css: str) -> bool:
    no_font = "<font" not in html and "</font>" not in html
    preserved = _any_in(html, ("warehouse 17", "dockside street", "12:00 am", "address-clue"))
    return no_font and preserved


def style_location_info(html: str, css: str) -> bool:
    return _any_in(
        css,
        (
            "#address-clue",
            ".location-clue",
            ".critical-location",
            "color:",
            "font-size:",
            "background:",
            "animation:",
            "border:",
        ),
    )


def replace_center_semantic(html: str, css: str) -> bool:
    no_center = "<center>" not in html and "</center>" not in html
    has_semantic = _any_in(html, ("<header>", "<footer>", "<main>")) and "<body>" in html
    return no_center and has_semantic


def use_semantic_elements(html: str, css: str) -> bool:
    return "<header>" in html and "<main>" in html and ("<footer>" in html or "</body>" in html)


BUILTIN_RULES: Mapping[str, Predicate] = MappingProxyType(
    {
        REVEAL_HIDDEN_MESSAGE: reveal_hidden_message,
        REPLACE_CENTER_STRUCTURE: replace_center_structure,
        STYLE_REVEALED_MESSAGE: style_revealed_message,
        SHOW_INSTA_CLUE: show_insta_clue,
        STYLE_INSTAGRAM_EVIDENCE: style_instagram_evidence,
        SHOW_ADDRESS_CLUE: show_address_clue,
        REPLACE_FONT_TAGS: replace_font_tags,
        STYLE_LOCATION_INFO: style_location_info,
        REPLACE_CENTER_SEMANTIC: replace_center_semantic,
        USE_SEMANTIC_ELEMENTS: use_semantic_elements,
    }
)


class RuleRegistry:
    """Condition identifier to predicate lookup.

    Each registry owns its own table, seeded from ``BUILTIN_RULES`` unless
    ``include_builtin`` is false, so registering a condition never leaks into
    other playthroughs.
    """

    def __init__(self, rules: Mapping[str, Predicate] | None = None, *, include_builtin: bool = True) -> None:
        self._rules: dict[str, Predicate] = dict(BUILTIN_RULES) if include_builtin else {}
        if rules:
            for condition_id, predicate in rules.items():
                self.register(condition_id, predicate)

    def register(self, condition_id: str, predicate: Predicate) -> None:
        """Add or replace the predicate for one condition id."""
        if not condition_id:
            raise ValueError("Condition id must be a non-empty string.")
        if not callable(predicate):
            raise TypeError(f"Predicate for '{condition_id}' is not callable.")
        self._rules[condition_id] = predicate

    def __contains__(self, condition_id: object) -> bool:
        return condition_id in self._rules

    def condition_ids(self) -> list[str]:
        return sorted(self._rules)

    def check(self, condition_id: str, html: str, css: str) -> bool:
        """Return whether the condition holds; unknown ids are never satisfied."""
        predicate = self._rules.get(condition_id)
        if predicate is None:
            logger.warning("Unknown condition %r treated as unsatisfied", condition_id)
            return False
        try:
            return bool(predicate(html.lower(), css.lower()))
        except Exception:
            logger.exception("Predicate for condition %r failed; treated as unsatisfied", condition_id)
            return False
