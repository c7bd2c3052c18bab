from pathlib import Path
from typing import Any

import codecase.main as main
from codecase.config import Settings
from codecase.errors import StoreError
from codecase.ledger import STORE_ERROR, SpendResult
from codecase.service import CaseService
from codecase.stability import ManualScheduler
from codecase.store import LedgerState

SOLVE_BLOGGER = [
    "s",
    ":replace html <p hidden> => <p>",
    ":replace html <center> => <header>",
    ":replace html </center> => </header>",
    ":next",
    ":replace css display: none => display: block",
    ":next",
    ':replace html <font color="red" size="5"> => <strong>',
    ":replace html </font> => </strong>",
    ":replace css visibility: hidden => visibility: visible",
    ":next",
]


def _service(starting_points: int = 0) -> CaseService:
    return CaseService(":memory:", Settings(starting_points=starting_points), scheduler=ManualScheduler())


def _play(monkeypatch: Any, service: CaseService, inputs: list[str]) -> tuple[int, list[str]]:
    monkeypatch.setattr(main, "_service", lambda settings: service)
    feed = iter(inputs)
    outputs: list[str] = []
    code = main.play_shell(input_fn=lambda _: next(feed), print_fn=outputs.append)
    return code, outputs


def test_run_loads_config_and_configures_logging(monkeypatch: Any, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("log_level: debug\nstarting_points: 25\n", encoding="utf-8")
    seen: dict[str, object] = {}
    monkeypatch.setattr(main, "configure_logging", lambda level: seen.__setitem__("level", level))
    monkeypatch.setattr(main, "play_shell", lambda settings: seen.__setitem__("settings", settings) or 0)

    assert main.run(["--config", str(config_path)]) == 0
    assert seen["level"] == "DEBUG"
    settings = seen["settings"]
    assert isinstance(settings, Settings)
    assert settings.starting_points == 25


def test_play_shell_basic_flow(monkeypatch: Any) -> None:
    service = _service()
    code, outputs = _play(monkeypatch, service, ["n", "alice", "q"])
    assert code == 0
    assert any("Profile: alice (0 points)" in line for line in outputs)


def test_play_shell_invalid_choice_then_quit(monkeypatch: Any) -> None:
    code, outputs = _play(monkeypatch, _service(), ["n", "alice", "9", "q"])
    assert code == 0
    assert any("Invalid choice." in line for line in outputs)


def test_play_shell_switch_profile(monkeypatch: Any) -> None:
    code, outputs = _play(monkeypatch, _service(), ["n", "alice", "b", "n", "bob", "q"])
    assert code == 0
    assert any("Profile: bob" in line for line in outputs)


def test_duplicate_profile_name_is_reported(monkeypatch: Any) -> None:
    service = _service()
    service.create_profile("alice")
    code, outputs = _play(monkeypatch, service, ["n", "alice", "1", "q"])
    assert code == 0
    assert any("name may already exist" in line for line in outputs)


def test_play_shell_calls_menu_handlers(monkeypatch: Any) -> None:
    called = {"open": 0, "unlock": 0, "status": 0, "admin": 0}
    monkeypatch.setattr(main, "_open_case_flow", lambda *args, **kwargs: called.__setitem__("open", 1))
    monkeypatch.setattr(main, "_unlock_case_flow", lambda *args, **kwargs: called.__setitem__("unlock", 1))
    monkeypatch.setattr(main, "_status_flow", lambda *args, **kwargs: called.__setitem__("status", 1))
    monkeypatch.setattr(main, "_admin_flow", lambda *args, **kwargs: called.__setitem__("admin", 1))

    code, _ = _play(monkeypatch, _service(), ["n", "alice", "1", "2", "3", "4", "q"])
    assert code == 0
    assert called == {"open": 1, "unlock": 1, "status": 1, "admin": 1}


def test_solving_blogger_case_awards_points(monkeypatch: Any) -> None:
    service = _service()
    code, outputs = _play(monkeypatch, service, ["n", "alice", "1", "1", *SOLVE_BLOGGER, "q"])
    assert code == 0
    assert "Clue revealed: Check my last Insta story before they wipe it." in outputs
    assert "Clue revealed: Meet me where the shadows watch but the cameras don't." in outputs
    assert "Clue revealed: Warehouse 17, Dockside Street, 12:00 AM." in outputs
    assert "Reward: 750 points. Balance: 750." in outputs
    assert "1) The Vanishing Blogger [Beginner] (solved)" not in outputs


def test_replaying_solved_case_awards_nothing(monkeypatch: Any) -> None:
    service = _service()
    inputs = ["n", "alice", "1", "1", *SOLVE_BLOGGER, "1", "1", *SOLVE_BLOGGER, "q"]
    code, outputs = _play(monkeypatch, service, inputs)
    assert code == 0
    assert "Case already solved before; no new points awarded." in outputs
    assert "1) The Vanishing Blogger [Beginner] (solved)" in outputs
    assert outputs.count("Reward: 750 points. Balance: 750.") == 1
    replay_end = outputs.index("Case already solved before; no new points awarded.")
    assert outputs[replay_end + 2] == "Profile: alice (750 points)"


def test_narrative_navigation_and_leave(monkeypatch: Any) -> None:
    code, outputs = _play(monkeypatch, _service(), ["n", "alice", "1", "1", "n", "p", "x", ":b", "q"])
    assert code == 0
    assert outputs.count("[1/3] Missing Person Report") == 3
    assert "[2/3] Last Known Activity" in outputs
    assert "Invalid choice." in outputs
    assert "Leaving case." in outputs


def test_task_commands(monkeypatch: Any, tmp_path: Path) -> None:
    css_file = tmp_path / "style.css"
    css_file.write_text("p { color: teal; }", encoding="utf-8")
    inputs = [
        "n",
        "alice",
        "1",
        "1",
        "s",
        ":next",
        ":hint",
        ":hint more",
        ":replace html nothing-like-this => x",
        ":replace",
        f":css {css_file}",
        ":pane css",
        ":show",
        ":pane js",
        ":html missing-file.html",
        ":dance",
        ":q",
        "q",
    ]
    code, outputs = _play(monkeypatch, _service(), inputs)
    assert code == 0
    assert "Mission 'clue-1' is not complete yet." in outputs
    assert any(line.startswith('Hint: I can see a paragraph with the "hidden" attribute') for line in outputs)
    assert any("Remove the word hidden" in line for line in outputs)
    assert "Text not found in html." in outputs
    assert "Usage: :replace html|css OLD => NEW" in outputs
    assert "Progress: 0/100" in outputs
    assert "--- css ---" in outputs
    assert "p { color: teal; }" in outputs
    assert "Usage: :pane html|css" in outputs
    assert any(line.startswith("Could not read missing-file.html") for line in outputs)
    assert "Unknown command." in outputs


def test_unlock_flow_reports_each_outcome(monkeypatch: Any) -> None:
    poor = _service(starting_points=100)
    _, outputs = _play(monkeypatch, poor, ["n", "alice", "2", "1", "q"])
    assert "Not enough points for 'The Broken Portfolio': need 600, have 100 (500 short)." in outputs

    rich = _service(starting_points=600)
    _, outputs = _play(monkeypatch, rich, ["n", "alice", "2", "1", "2", "q"])
    assert "Unlocked 'The Broken Portfolio' for 600 points. Balance: 0." in outputs
    assert "Every case is already unlocked." in outputs


def test_unlock_flow_store_error_message(monkeypatch: Any) -> None:
    service = _service(starting_points=600)
    failure = SpendResult(
        outcome=STORE_ERROR,
        content_id="case-broken-portfolio",
        cost=600,
        state=LedgerState(point_balance=600),
        error=StoreError("database is locked"),
    )
    monkeypatch.setattr(service, "spend_to_unlock", lambda *args, **kwargs: failure)
    _, outputs = _play(monkeypatch, service, ["n", "alice", "2", "1", "q"])
    assert "Could not save the unlock; no points were spent. (database is locked)" in outputs


def test_status_flow_prints_case_table(monkeypatch: Any) -> None:
    _, outputs = _play(monkeypatch, _service(starting_points=5), ["n", "alice", "3", "q"])
    assert "Points: 5" in outputs
    assert any(line.startswith("case-vanishing-blogger") and "free" in line for line in outputs)
    assert any(line.startswith("case-broken-portfolio") and line.endswith("600") for line in outputs)


def test_export_and_import_flows(monkeypatch: Any, tmp_path: Path) -> None:
    service = _service(starting_points=40)
    export_path = tmp_path / "alice.json"
    inputs = ["n", "alice", "4", "1", str(export_path), "b", "b", "i", str(export_path), "alice-2", "2", "q"]
    code, outputs = _play(monkeypatch, service, inputs)
    assert code == 0
    assert f"Exported profile 'alice' to {export_path}" in outputs
    assert "Imported profile 'alice-2'." in outputs
    assert "Profile: alice-2 (40 points)" in outputs


def test_delete_profile_flow(monkeypatch: Any) -> None:
    service = _service()
    service.create_profile("alice")
    code, outputs = _play(monkeypatch, service, ["d", "1", "no", "d", "1", "YES", "q"])
    assert code == 0
    assert "Deletion cancelled." in outputs
    assert "Deleted profile 'alice'." in outputs
    assert outputs[outputs.index("Deleted profile 'alice'.") + 2] == "No profiles yet."


def test_quit_from_nested_menu(monkeypatch: Any) -> None:
    code, _ = _play(monkeypatch, _service(), ["n", "alice", "4", "q"])
    assert code == 0


def test_finish_case_store_error_message(monkeypatch: Any) -> None:
    service = _service()

    def _failing_finish(*args: Any, **kwargs: Any) -> int:
        raise StoreError("database is locked")

    monkeypatch.setattr(service, "finish_playthrough", _failing_finish)
    code, outputs = _play(monkeypatch, service, ["n", "alice", "1", "1", *SOLVE_BLOGGER, "q"])
    assert code == 0
    assert "Could not save the solved case; no points were awarded. (database is locked)" in outputs
    assert not any(line.startswith("Reward:") for line in outputs)
    assert "Profile: alice (0 points)" in outputs
