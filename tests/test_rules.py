import logging

import pytest

from codecase import rules
from codecase.rules import BUILTIN_RULES, RuleRegistry


def test_builtin_registry_knows_every_bundled_condition() -> None:
    registry = RuleRegistry()
    for condition in BUILTIN_RULES:
        assert condition in registry
    assert len(registry.condition_ids()) == 10


def test_registry_inputs_are_lowercased_before_predicates_run() -> None:
    seen: list[tuple[str, str]] = []

    def capture(html: str, css: str) -> bool:
        seen.append((html, css))
        return True

    registry = RuleRegistry({"capture": capture}, include_builtin=False)
    assert registry.check("capture", "<P>Hello</P>", "P { COLOR: RED; }") is True
    assert seen == [("<p>hello</p>", "p { color: red; }")]


def test_unknown_condition_is_unsatisfied_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    registry = RuleRegistry()
    with caplog.at_level(logging.WARNING, logger="codecase.rules"):
        assert registry.check("no-such-condition", "<p></p>", "") is False
    assert "no-such-condition" in caplog.text


def test_failing_predicate_counts_as_unsatisfied(caplog: pytest.LogCaptureFixture) -> None:
    def explode(html: str, css: str) -> bool:
        raise RuntimeError("boom")

    registry = RuleRegistry({"explode": explode}, include_builtin=False)
    with caplog.at_level(logging.ERROR, logger="codecase.rules"):
        assert registry.check("explode", "", "") is False
    assert "explode" in caplog.text


def test_register_rejects_bad_entries() -> None:
    registry = RuleRegistry(include_builtin=False)
    with pytest.raises(ValueError):
        registry.register("", lambda html, css: True)
    with pytest.raises(TypeError):
        registry.register("not-callable", "nope")  # type: ignore[arg-type]


def test_registries_do_not_share_registrations() -> None:
    first = RuleRegistry()
    second = RuleRegistry()
    first.register("only-here", lambda html, css: True)
    assert "only-here" in first
    assert "only-here" not in second
    assert "only-here" not in BUILTIN_RULES


def test_reveal_hidden_message_needs_clue_text_without_hidden_attribute() -> None:
    assert rules.reveal_hidden_message("<p hidden>check my last insta story</p>", "") is False
    assert rules.reveal_hidden_message("<p>check my last insta story</p>", "") is True
    assert rules.reveal_hidden_message("<p>nothing here</p>", "") is False


def test_replace_center_structure() -> None:
    assert rules.replace_center_structure("<center><p>sam out.</p></center>", "") is False
    assert rules.replace_center_structure("<footer><p>sam out.</p></footer>", "") is True


def test_show_insta_clue_requires_block_and_no_none() -> None:
    html = '<section id="insta-clue"></section>'
    assert rules.show_insta_clue(html, "#insta-clue { display: none; }") is False
    assert rules.show_insta_clue(html, "#insta-clue { display: block; }") is True
    assert rules.show_insta_clue("<section></section>", ".x { display:block; }") is False


def test_show_address_clue_requires_visible() -> None:
    assert rules.show_address_clue("", "#address-clue { visibility: hidden; }") is False
    assert rules.show_address_clue("", "#address-clue { visibility:visible; }") is True


def test_replace_font_tags_keeps_location_text() -> None:
    assert rules.replace_font_tags('<font color="red">warehouse 17</font>', "") is False
    assert rules.replace_font_tags("<strong>warehouse 17</strong>", "") is True
    assert rules.replace_font_tags("<strong>gone</strong>", "") is False


def test_semantic_element_rules() -> None:
    html = "<body><header></header><main></main><footer></footer></body>"
    assert rules.replace_center_semantic(html, "") is True
    assert rules.use_semantic_elements(html, "") is True
    assert rules.use_semantic_elements("<body><center></center></body>", "") is False
