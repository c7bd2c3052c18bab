"""Application service for profiles, case access and playthroughs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from . import __version__
from .config import Settings
from .content_loader import load_cases
from .errors import InvalidTransition
from .hints import HintResolver
from .ledger import ALREADY_UNLOCKED, SpendResult, UnlockGate, unlock_cost
from .models import Case
from .progression import RESOLVED, Playthrough
from .rules import RuleRegistry
from .stability import Scheduler, StabilityGate
from .store import SCHEMA_VERSION, Profile, SQLiteProfileStore

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1


@dataclass(frozen=True)
class CaseState:
    """Case access state for one profile."""

    case: Case
    unlocked: bool
    completed: bool
    cost: int
    affordable: bool


@dataclass(frozen=True)
class ProfileTransferSummary:
    """Summary emitted by profile export/import operations."""

    profile_id: int
    profile_name: str
    point_balance: int
    unlock_rows: int
    completion_rows: int


class CaseService:
    """Coordinates content, the profile store and playthroughs."""

    def __init__(
        self,
        db_path: Path | str,
        settings: Settings | None = None,
        *,
        cases: dict[str, Case] | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        """Initialize service with database path."""
        self.settings = settings or Settings()
        self.registry = RuleRegistry()
        self.hints = HintResolver()
        self.cases = cases if cases is not None else load_cases(self.registry)
        self.store = SQLiteProfileStore(db_path, timeout=self.settings.store_timeout_seconds)
        self._scheduler = scheduler
        self._gates: dict[int, UnlockGate] = {}

    def list_profiles(self) -> list[Profile]:
        """Return all profiles."""
        return self.store.list_profiles()

    def create_profile(self, name: str) -> Profile:
        """Create profile by name with the configured opening balance."""
        return self.store.create_profile(name.strip(), starting_points=self.settings.starting_points)

    def delete_profile(self, profile_id: int) -> bool:
        """Delete one profile by id."""
        self._gates.pop(profile_id, None)
        return self.store.delete_profile(profile_id)

    def unlock_gate(self, profile_id: int) -> UnlockGate:
        """Return the cached unlock gate for a profile."""
        gate = self._gates.get(profile_id)
        if gate is None:
            gate = UnlockGate(self.store, profile_id)
            self._gates[profile_id] = gate
        return gate

    def balance(self, profile_id: int) -> int:
        return self.unlock_gate(profile_id).balance

    def get_case(self, case_id: str) -> Case | None:
        """Get case by id."""
        return self.cases.get(case_id)

    def case_unlock_cost(self, case_id: str) -> int:
        """Points needed to unlock a case; free cases cost nothing."""
        case = self.cases[case_id]
        if case.free:
            return 0
        return unlock_cost(case.point_reward, case.difficulty)

    def is_case_unlocked(self, profile_id: int, case_id: str) -> bool:
        case = self.cases[case_id]
        return case.free or self.unlock_gate(profile_id).is_unlocked(case.id)

    def list_case_states(self, profile_id: int) -> list[CaseState]:
        """Return case states, free cases first, then by cost and id."""
        gate = self.unlock_gate(profile_id)
        completed = self.store.completed_case_ids(profile_id)
        states: list[CaseState] = []
        for case in self.cases.values():
            cost = self.case_unlock_cost(case.id)
            states.append(
                CaseState(
                    case=case,
                    unlocked=case.free or gate.is_unlocked(case.id),
                    completed=case.id in completed,
                    cost=cost,
                    affordable=gate.can_afford(cost),
                )
            )
        states.sort(key=lambda item: (not item.case.free, item.cost, item.case.id))
        return states

    def spend_to_unlock(self, profile_id: int, content_id: str, cost: int | None = None) -> SpendResult:
        """Spend points to unlock content; the cost defaults to the case's unlock cost."""
        gate = self.unlock_gate(profile_id)
        case = self.cases.get(content_id)
        if cost is None:
            if case is None:
                raise KeyError(content_id)
            cost = self.case_unlock_cost(content_id)
        if case is not None and case.free:
            return SpendResult(outcome=ALREADY_UNLOCKED, content_id=content_id, cost=0, state=gate.state)
        return gate.spend(content_id, cost)

    def open_playthrough(self, profile_id: int, case_id: str) -> Playthrough:
        """Start a fresh playthrough of an accessible case."""
        case = self.cases[case_id]
        if not self.is_case_unlocked(profile_id, case_id):
            raise InvalidTransition(f"Case '{case_id}' is locked. Unlock it first.")
        logger.info("Profile %s opened case %s", profile_id, case_id)
        return Playthrough(
            case,
            gate=StabilityGate(self.registry, tolerance=self.settings.html_balance_tolerance),
            hints=self.hints,
            quiescence_seconds=self.settings.quiescence_seconds,
            scheduler=self._scheduler,
        )

    def finish_playthrough(self, profile_id: int, playthrough: Playthrough) -> int:
        """Record a resolved case and return the points credited (0 on repeats)."""
        if playthrough.phase != RESOLVED:
            raise InvalidTransition(f"Case '{playthrough.case.id}' is not resolved yet.")
        case = playthrough.case
        playthrough.close()
        credited = self.store.record_case_completion(profile_id, case.id, case.point_reward)
        self.unlock_gate(profile_id).refresh()
        if not credited:
            logger.info("Profile %s already completed case %s", profile_id, case.id)
            return 0
        logger.info("Profile %s completed case %s for %s points", profile_id, case.id, case.point_reward)
        return case.point_reward

    def export_profile(self, profile_id: int, export_path: Path | str) -> ProfileTransferSummary:
        """Export a profile with its ledger and completions to a JSON file."""
        profile = self.store.get_profile(profile_id)
        if profile is None:
            raise KeyError(profile_id)

        ledger = self.store.read(profile_id)
        unlock_rows = self.store.list_unlock_rows(profile_id)
        completion_rows = self.store.list_completion_rows(profile_id)
        payload = {
            "format_version": EXPORT_FORMAT_VERSION,
            "exported_at": datetime.now(UTC).isoformat(),
            "source": {
                "app_version": __version__,
                "schema_version": SCHEMA_VERSION,
            },
            "profile": {
                "name": profile.name,
            },
            "ledger": {
                "point_balance": ledger.point_balance,
            },
            "unlocked_content": unlock_rows,
            "case_completions": completion_rows,
        }

        path = Path(export_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return ProfileTransferSummary(
            profile_id=profile.id,
            profile_name=profile.name,
            point_balance=ledger.point_balance,
            unlock_rows=len(unlock_rows),
            completion_rows=len(completion_rows),
        )

    def import_profile(self, import_path: Path | str, profile_name: str | None = None) -> ProfileTransferSummary:
        """Import a profile export JSON file as a new profile."""
        path = Path(import_path)
        raw_obj: object = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw_obj, dict):
            raise ValueError("Import file root must be a JSON object.")
        raw = cast(dict[str, object], raw_obj)

        format_version = _coerce_int(raw.get("format_version", 0))
        if format_version is None:
            raise ValueError("Import file has invalid format_version.")
        if format_version > EXPORT_FORMAT_VERSION:
            raise ValueError(
                f"Import file format version {format_version} is newer than supported {EXPORT_FORMAT_VERSION}."
            )

        target_name = (profile_name or "").strip()
        if not target_name:
            profile_section = raw.get("profile")
            if isinstance(profile_section, dict):
                name_raw: object = cast(dict[str, object], profile_section).get("name")
                if isinstance(name_raw, str):
                    target_name = name_raw.strip()
        if not target_name:
            raise ValueError("Could not determine profile name from import file.")

        point_balance = 0
        ledger_section = raw.get("ledger")
        if isinstance(ledger_section, dict):
            balance_raw: object = cast(dict[str, object], ledger_section).get("point_balance", 0)
            point_balance = max(0, _coerce_int(balance_raw, default=0) or 0)

        now = datetime.now(UTC).isoformat()
        unlock_rows = _normalize_unlock_rows(raw.get("unlocked_content"), now)
        completion_rows = _normalize_completion_rows(raw.get("case_completions"), now)

        profile = self.store.create_profile(target_name)
        self.store.replace_profile_data(profile.id, point_balance, unlock_rows, completion_rows)
        self._gates.pop(profile.id, None)
        return ProfileTransferSummary(
            profile_id=profile.id,
            profile_name=profile.name,
            point_balance=point_balance,
            unlock_rows=len(unlock_rows),
            completion_rows=len(completion_rows),
        )

    def close(self) -> None:
        """Close underlying resources."""
        self.store.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort cleanup."""
        try:
            self.close()
        except Exception:
            pass


def _normalize_unlock_rows(raw: object, now: str) -> list[dict[str, object]]:
    """Normalize raw unlocked content rows from import payload."""
    if not isinstance(raw, list):
        return []
    rows: list[dict[str, object]] = []
    seen: set[str] = set()
    for item in cast(list[object], raw):
        if not isinstance(item, dict):
            continue
        row = cast(dict[str, object], item)
        content_id: object = row.get("content_id")
        if not isinstance(content_id, str) or not content_id.strip() or content_id.strip() in seen:
            continue
        unlocked_at: object = row.get("unlocked_at")
        if not isinstance(unlocked_at, str) or not unlocked_at:
            unlocked_at = now
        seen.add(content_id.strip())
        rows.append({"content_id": content_id.strip(), "unlocked_at": unlocked_at})
    return rows


def _normalize_completion_rows(raw: object, now: str) -> list[dict[str, object]]:
    """Normalize raw case completion rows from import payload."""
    if not isinstance(raw, list):
        return []
    rows: list[dict[str, object]] = []
    for item in cast(list[object], raw):
        if not isinstance(item, dict):
            continue
        row = cast(dict[str, object], item)
        case_id: object = row.get("case_id")
        if not isinstance(case_id, str) or not case_id.strip():
            continue
        points = _coerce_int(row.get("points_awarded", 0), default=0) or 0
        completed_at: object = row.get("completed_at")
        if not isinstance(completed_at, str) or not completed_at:
            completed_at = now
        rows.append(
            {
                "case_id": case_id.strip(),
                "points_awarded": max(0, points),
                "completed_at": completed_at,
            }
        )
    return rows


def _coerce_int(value: object, default: int | None = None) -> int | None:
    """Coerce value to int for import normalization."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default
