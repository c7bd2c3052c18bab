"""CLI entrypoint for the detective coding case app."""

from __future__ import annotations

import argparse
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import cast

from .config import Settings, load_settings
from .errors import InvalidTransition, StoreError
from .hints import ENCOURAGEMENT
from .ledger import ALREADY_UNLOCKED, INSUFFICIENT_FUNDS, UNLOCKED
from .logging_config import configure_logging
from .progression import NARRATIVE, RESOLVED, TASK, Pane, Playthrough
from .service import CaseService, CaseState
from .validator import ValidationVerdict

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
BACK_COMMANDS = {":back", ":b", "back"}
MENU_QUIT_COMMANDS = {"q"}
FLOW_EXIT_COMMANDS = {":quit", ":exit", ":q"}
MENU_BACK_COMMANDS = {"b"}
PANES = ("html", "css")


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _service(settings: Settings) -> CaseService:
    """Create app service with the configured database path."""
    return CaseService(db_path=settings.db_path, settings=settings)


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="codecase", description="Fix broken web pages to crack detective cases")
    parser.add_argument("command", nargs="?", default="play", choices=["play"])
    parser.add_argument("--config", default=None, help="Path to a YAML settings file")
    args = parser.parse_args(argv)
    settings = load_settings(args.config)
    configure_logging(settings.log_level)
    return play_shell(settings=settings)


def play_shell(input_fn: InputFn = input, print_fn: PrintFn = print, settings: Settings | None = None) -> int:
    """Run persistent menu-driven shell."""
    service = _service(settings or Settings())
    try:
        selected = _select_profile(service, input_fn, print_fn, allow_cancel=False)
        if selected is None:
            return 0
        profile_id, profile_name = selected
        try:
            while True:
                print_fn("\n=== CodeCase ===")
                print_fn(f"Profile: {profile_name} ({service.balance(profile_id)} points)")
                print_fn("1) Open a case")
                print_fn("2) Unlock a case")
                print_fn("3) Status")
                print_fn("4) Admin")
                print_fn("b) Back")
                print_fn("q) Quit")
                choice = input_fn("Choose: ").strip().lower()

                if choice == "1":
                    _open_case_flow(service, profile_id, input_fn, print_fn)
                elif choice == "2":
                    _unlock_case_flow(service, profile_id, input_fn, print_fn)
                elif choice == "3":
                    _status_flow(service, profile_id, print_fn)
                elif choice == "4":
                    _admin_flow(service, profile_id, input_fn, print_fn)
                elif choice in MENU_BACK_COMMANDS:
                    switched = _select_profile(service, input_fn, print_fn, allow_cancel=True)
                    if switched is None:
                        return 0
                    profile_id, profile_name = switched
                elif choice in MENU_QUIT_COMMANDS:
                    return 0
                else:
                    print_fn("Invalid choice.")
        except QuitApp:
            return 0
    finally:
        service.close()


def _select_profile(
    service: CaseService, input_fn: InputFn, print_fn: PrintFn, *, allow_cancel: bool
) -> tuple[int, str] | None:
    """Select existing profile or create new one."""
    while True:
        profiles = service.list_profiles()
        print_fn("\n=== Profiles ===")
        if profiles:
            for idx, profile in enumerate(profiles, start=1):
                print_fn(f"{idx}) {profile.name}")
        else:
            print_fn("No profiles yet.")
        print_fn("n) New profile")
        print_fn("i) Import profile from file")
        print_fn("d) Delete profile")
        print_fn("q) Quit")

        choice = input_fn("Select profile: ").strip().lower()
        if choice in MENU_QUIT_COMMANDS:
            return None
        if choice == "n":
            name = input_fn("New profile name: ").strip()
            if not name:
                print_fn("Profile name is required.")
                continue
            try:
                created = service.create_profile(name)
            except sqlite3.IntegrityError:
                print_fn("Could not create profile (name may already exist).")
                continue
            return (created.id, created.name)
        if choice == "d":
            _delete_profile_flow(service, input_fn, print_fn)
            continue
        if choice == "i":
            _import_profile_flow(service, input_fn, print_fn)
            continue

        if choice.isdigit():
            index = int(choice) - 1
            if 0 <= index < len(profiles):
                selected = profiles[index]
                return (selected.id, selected.name)

        print_fn("Invalid profile selection.")


def _delete_profile_flow(service: CaseService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Delete a profile with explicit confirmation safeguard."""
    profiles = service.list_profiles()
    if not profiles:
        print_fn("No profiles available to delete.")
        return

    print_fn("\nDelete profile")
    for idx, profile in enumerate(profiles, start=1):
        print_fn(f"{idx}) {profile.name}")
    print_fn("b) Back")
    choice = input_fn("Choose profile to delete: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(profiles)):
        print_fn("Invalid choice.")
        return

    target = profiles[int(choice) - 1]
    print_fn(f"WARNING: This permanently deletes profile '{target.name}' with its points, unlocks and solved cases.")
    confirm = input_fn("Type YES to confirm deletion: ").strip()
    if confirm != "YES":
        print_fn("Deletion cancelled.")
        return
    if service.delete_profile(target.id):
        print_fn(f"Deleted profile '{target.name}'.")
    else:
        print_fn("Profile was not found.")


def _status_flow(service: CaseService, profile_id: int, print_fn: PrintFn) -> None:
    """Print balance and case access table."""
    print_fn("\n=== Case Status ===")
    print_fn(f"Points: {service.balance(profile_id)}")
    states = service.list_case_states(profile_id)
    if not states:
        print_fn("No cases installed.")
        return
    rows: list[tuple[str, str, str, str, str]] = []
    for state in states:
        access = "free" if state.case.free else ("unlocked" if state.unlocked else "locked")
        stage = "solved" if state.completed else "open"
        cost = "-" if state.unlocked else str(state.cost)
        rows.append((state.case.id, state.case.difficulty, access, stage, cost))

    id_width = max(len("Case"), max(len(row[0]) for row in rows))
    level_width = max(len("Level"), max(len(row[1]) for row in rows))
    access_width = max(len("Access"), max(len(row[2]) for row in rows))
    stage_width = max(len("Stage"), max(len(row[3]) for row in rows))
    header = (
        f"{'Case':<{id_width}} {'Level':<{level_width}} {'Access':<{access_width}} {'Stage':<{stage_width}} Cost"
    )
    print_fn(header)
    print_fn("-" * len(header))
    for row in rows:
        print_fn(
            f"{row[0]:<{id_width}} {row[1]:<{level_width}} {row[2]:<{access_width}} {row[3]:<{stage_width}} {row[4]}"
        )


def _choose_case(states: list[CaseState], input_fn: InputFn, print_fn: PrintFn, prompt: str) -> CaseState | None:
    """Read a 1-based case choice; returns None on back or invalid input."""
    print_fn("b) Back")
    print_fn("q) Quit")
    choice = input_fn(prompt).strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return None
    if choice in MENU_QUIT_COMMANDS:
        raise QuitApp()
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(states)):
        print_fn("Invalid choice.")
        return None
    return states[int(choice) - 1]


def _open_case_flow(service: CaseService, profile_id: int, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Pick an accessible case and play it."""
    states = [state for state in service.list_case_states(profile_id) if state.unlocked]
    if not states:
        print_fn("No unlocked cases yet.")
        return
    print_fn("\n=== Open Case ===")
    for idx, state in enumerate(states, start=1):
        solved = " (solved)" if state.completed else ""
        print_fn(f"{idx}) {state.case.title} [{state.case.difficulty}]{solved}")
    selected = _choose_case(states, input_fn, print_fn, "Choose case: ")
    if selected is None:
        return
    playthrough = service.open_playthrough(profile_id, selected.case.id)
    try:
        _run_playthrough(service, profile_id, playthrough, input_fn, print_fn)
    finally:
        playthrough.close()


def _unlock_case_flow(service: CaseService, profile_id: int, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Spend points on a locked case."""
    states = [state for state in service.list_case_states(profile_id) if not state.unlocked]
    if not states:
        print_fn("Every case is already unlocked.")
        return
    print_fn("\n=== Unlock Case ===")
    print_fn(f"Points: {service.balance(profile_id)}")
    for idx, state in enumerate(states, start=1):
        marker = "" if state.affordable else " (not enough points)"
        print_fn(f"{idx}) {state.case.title} [{state.case.difficulty}] - {state.cost} points{marker}")
    selected = _choose_case(states, input_fn, print_fn, "Choose case to unlock: ")
    if selected is None:
        return

    result = service.spend_to_unlock(profile_id, selected.case.id)
    title = selected.case.title
    if result.outcome == UNLOCKED:
        print_fn(f"Unlocked '{title}' for {result.cost} points. Balance: {result.state.point_balance}.")
    elif result.outcome == ALREADY_UNLOCKED:
        print_fn(f"'{title}' is already unlocked.")
    elif result.outcome == INSUFFICIENT_FUNDS:
        print_fn(
            f"Not enough points for '{title}': need {result.cost}, have {result.state.point_balance} "
            f"({result.shortfall} short)."
        )
    else:
        print_fn(f"Could not save the unlock; no points were spent. ({result.error})")


def _admin_flow(service: CaseService, profile_id: int, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Admin menu for profile transfer."""
    while True:
        print_fn("\n=== Admin ===")
        print_fn("1) Export current profile")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose admin option: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "1":
            _export_profile_flow(service, profile_id, input_fn, print_fn)
        else:
            print_fn("Invalid choice.")


def _export_profile_flow(service: CaseService, profile_id: int, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Export current profile to a JSON file."""
    print_fn("\n=== Export Profile ===")
    path_text = input_fn("Export file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    try:
        summary = service.export_profile(profile_id, path_text)
    except (OSError, KeyError) as exc:
        print_fn(f"Export failed: {exc}")
        return
    print_fn(f"Exported profile '{summary.profile_name}' to {path_text}")
    print_fn(f"- points: {summary.point_balance}")
    print_fn(f"- unlocked content: {summary.unlock_rows}")
    print_fn(f"- solved cases: {summary.completion_rows}")


def _import_profile_flow(service: CaseService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Import a profile from a JSON file as a new profile."""
    print_fn("\n=== Import Profile ===")
    path_text = input_fn("Import file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    name_text = input_fn("Imported profile name (blank = file value): ").strip()
    target_name = name_text if name_text else None
    try:
        summary = service.import_profile(path_text, target_name)
    except (OSError, ValueError, sqlite3.IntegrityError) as exc:
        print_fn(f"Import failed: {exc}")
        return
    print_fn(f"Imported profile '{summary.profile_name}'.")
    print_fn(f"- points: {summary.point_balance}")
    print_fn(f"- unlocked content: {summary.unlock_rows}")
    print_fn(f"- solved cases: {summary.completion_rows}")


def _run_playthrough(
    service: CaseService,
    profile_id: int,
    playthrough: Playthrough,
    input_fn: InputFn,
    print_fn: PrintFn,
) -> None:
    """Drive one case from the first beat to the resolution."""
    case = playthrough.case
    print_fn(f"\nCase: {case.title}")
    if case.description:
        print_fn(case.description)
    print_fn("Type :b or :q to leave the case.")

    announced_mission: int | None = None
    hint_attempts: dict[str, int] = {}
    while True:
        phase = playthrough.phase
        if phase == NARRATIVE:
            if not _narrative_step(playthrough, input_fn, print_fn):
                print_fn("Leaving case.")
                return
        elif phase == TASK:
            mission_index = playthrough.state.mission_index
            if announced_mission != mission_index:
                _announce_mission(playthrough, print_fn)
                announced_mission = mission_index
            if not _task_step(playthrough, hint_attempts, input_fn, print_fn):
                print_fn("Leaving case. Solved missions are not saved until the case is closed.")
                return
        elif phase == RESOLVED:
            _finish_case(service, profile_id, playthrough, print_fn)
            return


def _narrative_step(playthrough: Playthrough, input_fn: InputFn, print_fn: PrintFn) -> bool:
    """Show the current beat and apply one navigation command."""
    beat = playthrough.current_beat
    if beat is None:
        return True
    index = playthrough.state.beat_index
    print_fn(f"\n[{index + 1}/{len(playthrough.case.beats)}] {beat.title}")
    print_fn(f"{beat.speaker}: {beat.dialogue}")
    choice = input_fn("n) next  p) previous  s) skip to missions: ").strip().lower()
    if choice in BACK_COMMANDS or choice in FLOW_EXIT_COMMANDS:
        return False
    if choice in {"n", ""}:
        playthrough.advance_narrative()
    elif choice == "p":
        playthrough.retreat_narrative()
    elif choice == "s":
        playthrough.skip_to_task()
    else:
        print_fn("Invalid choice.")
    return True


def _announce_mission(playthrough: Playthrough, print_fn: PrintFn) -> None:
    mission = playthrough.current_mission
    index = playthrough.state.mission_index
    print_fn(f"\n=== Mission {index + 1}/{len(playthrough.case.missions)}: {mission.title} ===")
    print_fn(mission.objective)
    print_fn("Commands: :show, :html PATH, :css PATH, :replace html|css OLD => NEW, :pane html|css,")
    print_fn("          :hint, :hint more, :next, :b")


def _task_step(
    playthrough: Playthrough, hint_attempts: dict[str, int], input_fn: InputFn, print_fn: PrintFn
) -> bool:
    """Apply one task command. Returns False when the learner leaves."""
    raw = input_fn("Command: ").strip()
    command, _, argument = raw.partition(" ")
    command = command.lower()
    argument = argument.strip()

    if command in BACK_COMMANDS or command in FLOW_EXIT_COMMANDS:
        return False
    if command == ":show":
        _show_source(playthrough, print_fn)
    elif command in {":html", ":css"}:
        _load_source_file(playthrough, command[1:], argument, print_fn)
    elif command == ":replace":
        _replace_source(playthrough, argument, print_fn)
    elif command == ":pane":
        if argument.lower() not in PANES:
            print_fn("Usage: :pane html|css")
        else:
            playthrough.set_active_pane(cast(Pane, argument.lower()))
            print_fn(f"Editing {argument.lower()}.")
    elif command == ":hint":
        _show_hint(playthrough, hint_attempts, argument.lower() == "more", print_fn)
    elif command == ":next":
        try:
            playthrough.complete_and_advance()
        except InvalidTransition as exc:
            print_fn(str(exc))
    else:
        print_fn("Unknown command.")
    return True


def _show_source(playthrough: Playthrough, print_fn: PrintFn) -> None:
    state = playthrough.state
    text = state.html if state.active_pane == "html" else state.css
    print_fn(f"--- {state.active_pane} ---")
    print_fn(text)
    print_fn("---")
    if state.verdict is not None:
        _print_verdict(state.verdict, print_fn)


def _load_source_file(playthrough: Playthrough, pane: str, path_text: str, print_fn: PrintFn) -> None:
    """Replace one pane with the contents of a file."""
    if not path_text:
        print_fn(f"Usage: :{pane} PATH")
        return
    try:
        text = Path(path_text).read_text(encoding="utf-8")
    except OSError as exc:
        print_fn(f"Could not read {path_text}: {exc}")
        return
    state = playthrough.state
    if pane == "html":
        playthrough.update_source(text, state.css)
    else:
        playthrough.update_source(state.html, text)
    _report_progress(playthrough, print_fn)


def _replace_source(playthrough: Playthrough, argument: str, print_fn: PrintFn) -> None:
    """Apply ``html|css OLD => NEW`` to the current text."""
    pane, _, rest = argument.partition(" ")
    pane = pane.lower()
    old, separator, new = rest.partition("=>")
    old = old.strip()
    if pane not in PANES or not separator or not old:
        print_fn("Usage: :replace html|css OLD => NEW")
        return
    new = new.strip()
    state = playthrough.state
    text = state.html if pane == "html" else state.css
    if old not in text:
        print_fn(f"Text not found in {pane}.")
        return
    updated = text.replace(old, new)
    if pane == "html":
        playthrough.update_source(updated, state.css)
    else:
        playthrough.update_source(state.html, updated)
    _report_progress(playthrough, print_fn)


def _report_progress(playthrough: Playthrough, print_fn: PrintFn) -> None:
    """Settle the pending validation and print progress plus any new clue."""
    before = len(playthrough.state.revealed_clues)
    verdict = playthrough.settle()
    if verdict is not None:
        _print_verdict(verdict, print_fn)
    state = playthrough.state
    if len(state.revealed_clues) > before:
        print_fn(f"Clue revealed: {state.revealed_clues[-1]}")
        if playthrough.is_last_mission:
            print_fn("Type :next to close the case.")
        else:
            print_fn("Type :next to continue to the next mission.")


def _print_verdict(verdict: ValidationVerdict, print_fn: PrintFn) -> None:
    print_fn(f"Progress: {verdict.score}/{verdict.max_score}")
    for line in verdict.feedback:
        print_fn(line)


def _show_hint(playthrough: Playthrough, hint_attempts: dict[str, int], more: bool, print_fn: PrintFn) -> None:
    """Show the detected hint, or the next authored hint for ``:hint more`` and unknown missions."""
    hint = playthrough.hint()
    if hint is None:
        return
    if more or hint.id == ENCOURAGEMENT.id:
        mission_id = playthrough.current_mission.id
        attempt = hint_attempts.get(mission_id, 0)
        authored = playthrough.fallback_hint(attempt)
        if authored is not None:
            hint_attempts[mission_id] = attempt + 1
            print_fn(f"Hint: {authored}")
            return
    if hint.error_message:
        print_fn(f"Error: {hint.error_message}")
    print_fn(f"Hint: {hint.message}")


def _finish_case(service: CaseService, profile_id: int, playthrough: Playthrough, print_fn: PrintFn) -> None:
    """Show the resolution and credit the case reward once."""
    case = playthrough.case
    print_fn(f"\n=== Case Closed: {case.title} ===")
    if case.resolution:
        print_fn(case.resolution)
    print_fn("Clues found:")
    for clue in playthrough.state.revealed_clues:
        print_fn(f"- {clue}")
    try:
        awarded = service.finish_playthrough(profile_id, playthrough)
    except StoreError as exc:
        print_fn(f"Could not save the solved case; no points were awarded. ({exc})")
        return
    if awarded:
        print_fn(f"Reward: {awarded} points. Balance: {service.balance(profile_id)}.")
    else:
        print_fn("Case already solved before; no new points awarded.")


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
