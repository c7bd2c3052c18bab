"""Core content models for detective coding cases."""

from __future__ import annotations

from dataclasses import dataclass

DIFFICULTIES = ("Beginner", "Intermediate", "Advanced")


@dataclass(frozen=True)
class NarrativeBeat:
    """One story slide shown before the missions."""

    id: str
    title: str
    dialogue: str
    speaker: str
    background: str


@dataclass(frozen=True)
class Mission:
    """One gated HTML/CSS task that reveals a clue when solved."""

    id: str
    title: str
    objective: str
    broken_html: str
    broken_css: str
    conditions: tuple[str, ...]
    clue: str
    fallback_hints: tuple[str, ...]


@dataclass(frozen=True)
class Case:
    """Ordered narrative beats followed by ordered missions."""

    id: str
    title: str
    description: str
    difficulty: str
    point_reward: int
    beats: tuple[NarrativeBeat, ...]
    missions: tuple[Mission, ...]
    resolution: str
    free: bool = False

    def mission_index(self, mission_id: str) -> int | None:
        """Return the position of a mission by id."""
        for index, mission in enumerate(self.missions):
            if mission.id == mission_id:
                return index
        return None
