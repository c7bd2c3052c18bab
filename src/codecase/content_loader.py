"""Load declarative case content from bundled JSON resources."""

from __future__ import annotations

import json
import logging
from importlib import resources
from pathlib import Path
from typing import Any

from .models import DIFFICULTIES, Case, Mission, NarrativeBeat
from .rules import RuleRegistry

logger = logging.getLogger(__name__)

CONTENT_PACKAGE = "codecase.content.cases"

_CASE_KEYS = ("id", "title", "difficulty", "point_reward", "missions")
_MISSION_KEYS = ("id", "title", "objective", "broken_html", "broken_css", "conditions", "clue")
_BEAT_KEYS = ("id", "title", "dialogue", "speaker")


def _require_keys(kind: str, raw: dict[str, Any], keys: tuple[str, ...]) -> None:
    """Raise when a content record is missing required keys."""
    missing = [key for key in keys if key not in raw]
    if missing:
        raise ValueError(f"{kind} '{raw.get('id', '<unknown>')}' is missing keys: {', '.join(missing)}")


def _beat_from_dict(raw: dict[str, Any]) -> NarrativeBeat:
    """Build a narrative beat from raw JSON content."""
    _require_keys("Beat", raw, _BEAT_KEYS)
    return NarrativeBeat(
        id=str(raw["id"]),
        title=str(raw["title"]),
        dialogue=str(raw["dialogue"]),
        speaker=str(raw["speaker"]),
        background=str(raw.get("background", "")),
    )


def _mission_from_dict(raw: dict[str, Any]) -> Mission:
    """Build a mission from raw JSON content."""
    _require_keys("Mission", raw, _MISSION_KEYS)
    conditions = tuple(str(value).strip() for value in raw["conditions"] if str(value).strip())
    if not conditions:
        raise ValueError(f"Mission '{raw['id']}' has no success conditions.")

    return Mission(
        id=str(raw["id"]),
        title=str(raw["title"]),
        objective=str(raw["objective"]),
        broken_html=str(raw["broken_html"]),
        broken_css=str(raw["broken_css"]),
        conditions=conditions,
        clue=str(raw["clue"]),
        fallback_hints=tuple(str(item) for item in raw.get("fallback_hints", []) if str(item).strip()),
    )


def _case_from_dict(raw: dict[str, Any]) -> Case:
    """Build a case from raw JSON content."""
    _require_keys("Case", raw, _CASE_KEYS)
    case_id = str(raw["id"])

    difficulty = str(raw["difficulty"])
    if difficulty not in DIFFICULTIES:
        raise ValueError(f"Case '{case_id}' has unknown difficulty '{difficulty}'.")

    reward = raw["point_reward"]
    if isinstance(reward, bool) or not isinstance(reward, int) or reward < 0:
        raise ValueError(f"Case '{case_id}' point_reward must be a non-negative integer.")

    missions = tuple(_mission_from_dict(item) for item in raw["missions"])
    if not missions:
        raise ValueError(f"Case '{case_id}' has no missions.")

    return Case(
        id=case_id,
        title=str(raw["title"]),
        description=str(raw.get("description", "")),
        difficulty=difficulty,
        point_reward=reward,
        beats=tuple(_beat_from_dict(item) for item in raw.get("beats", [])),
        missions=missions,
        resolution=str(raw.get("resolution", "")),
        free=bool(raw.get("free", False)),
    )


def _add_case(cases: dict[str, Case], raw: dict[str, Any]) -> None:
    case = _case_from_dict(raw)
    if case.id in cases:
        raise ValueError(f"Duplicate case id: {case.id}")
    cases[case.id] = case


def load_cases(registry: RuleRegistry | None = None) -> dict[str, Case]:
    """Load bundled cases."""
    cases: dict[str, Case] = {}
    entries = sorted(resources.files(CONTENT_PACKAGE).iterdir(), key=lambda item: item.name)
    for entry in entries:
        if entry.name.endswith(".json"):
            _add_case(cases, json.loads(entry.read_text(encoding="utf-8-sig")))
    _validate_unique_mission_ids(cases)
    _warn_unknown_conditions(cases, registry or RuleRegistry())
    return cases


def load_cases_from_dir(path: Path, registry: RuleRegistry | None = None) -> dict[str, Case]:
    """Load cases from directory for tests/tools."""
    cases: dict[str, Case] = {}
    for file_path in sorted(path.glob("*.json")):
        _add_case(cases, json.loads(file_path.read_text(encoding="utf-8-sig")))
    _validate_unique_mission_ids(cases)
    _warn_unknown_conditions(cases, registry or RuleRegistry())
    return cases


def _validate_unique_mission_ids(cases: dict[str, Case]) -> None:
    """Validate that mission IDs are globally unique across all cases."""
    seen: dict[str, str] = {}
    for case in cases.values():
        for mission in case.missions:
            previous = seen.get(mission.id)
            if previous is not None:
                raise ValueError(f"Duplicate mission id: {mission.id} (in {previous} and {case.id})")
            seen[mission.id] = case.id


def _warn_unknown_conditions(cases: dict[str, Case], registry: RuleRegistry) -> None:
    """Log conditions no predicate is registered for; they can never be satisfied."""
    for case in cases.values():
        for mission in case.missions:
            for condition in mission.conditions:
                if condition not in registry:
                    logger.warning("Mission %s in case %s uses unknown condition %r", mission.id, case.id, condition)
