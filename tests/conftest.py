from __future__ import annotations

import shutil
import sys
from collections.abc import Iterator
from pathlib import Path
from uuid import uuid4

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from codecase.models import Case, Mission, NarrativeBeat  # noqa: E402
from codecase.stability import ManualScheduler  # noqa: E402


def _tmp_path_fixture() -> Iterator[Path]:
    """Provide per-test temporary directory path inside the workspace.

    Overrides pytest's builtin ``tmp_path`` so temporary databases and export
    files stay under ``.tmp_pytest/`` in the project directory.
    """
    base = ROOT / ".tmp_pytest"
    base.mkdir(parents=True, exist_ok=True)
    path = base / str(uuid4())
    path.mkdir(parents=True, exist_ok=False)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        try:
            next(base.iterdir())
        except StopIteration:
            base.rmdir()
        except FileNotFoundError:
            pass


tmp_path = pytest.fixture(name="tmp_path")(_tmp_path_fixture)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


def make_mission(mission_id: str, conditions: tuple[str, ...], **overrides: object) -> Mission:
    """Build a small mission for state machine tests."""
    values: dict[str, object] = {
        "id": mission_id,
        "title": f"Mission {mission_id}",
        "objective": "Fix the page.",
        "broken_html": f"<p>{mission_id} broken</p>",
        "broken_css": "p { color: red; }",
        "conditions": conditions,
        "clue": f"clue from {mission_id}",
        "fallback_hints": (f"first hint for {mission_id}", f"second hint for {mission_id}"),
    }
    values.update(overrides)
    return Mission(**values)  # type: ignore[arg-type]


def make_case(
    case_id: str = "case-test",
    *,
    missions: tuple[Mission, ...] | None = None,
    beats: int = 2,
    difficulty: str = "Beginner",
    point_reward: int = 100,
    free: bool = False,
) -> Case:
    """Build a case with generated beats around the given missions."""
    return Case(
        id=case_id,
        title=f"Case {case_id}",
        description="A test case.",
        difficulty=difficulty,
        point_reward=point_reward,
        beats=tuple(
            NarrativeBeat(
                id=f"{case_id}-beat-{index}",
                title=f"Beat {index}",
                dialogue=f"Dialogue {index}",
                speaker="Detective Codec",
                background="office",
            )
            for index in range(beats)
        ),
        missions=missions if missions is not None else (make_mission(f"{case_id}-m1", ("has-fixed",)),),
        resolution="Case closed.",
        free=free,
    )
