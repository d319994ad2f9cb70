"""CLI regression tests for the pzp-agent Typer application."""

from __future__ import annotations

from pathlib import Path

from _pytest.monkeypatch import MonkeyPatch
from pytest_mock import MockerFixture
from typer.testing import CliRunner

from pzp_agent.cli import app
from pzp_agent.errors import ExitCode
from pzp_agent.models import ConversationRef, JobAddress, RoomRecord
from pzp_agent.rooms import RoomStore
from pzp_agent.transport import LoggingTransport

runner = CliRunner()


def _isolate(monkeypatch: MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    for name in (
        "XDG_CONFIG_HOME",
        "PZP_AGENT_PROFILE",
        "PZP_AGENT_API_SECRET",
        "PZP_AGENT_STATE_DIR",
        "PZP_AGENT_REQUEST_TIMEOUT",
        "PZP_AGENT_RELAY_CONCURRENCY",
    ):
        monkeypatch.delenv(name, raising=False)


def test_config_set_and_show_round_trip(tmp_path: Path) -> None:
    state = str(tmp_path / "state")

    toggled = runner.invoke(app, ["config", "set", "alice", "Autoplay", "--state-dir", state])
    bitrate = runner.invoke(
        app, ["config", "set", "alice", "VideoBitrate", "12000", "--state-dir", state]
    )
    shown = runner.invoke(app, ["config", "show", "alice", "--state-dir", state])

    assert toggled.exit_code == 0
    assert "alice: Autoplay = off" in toggled.output
    assert bitrate.exit_code == 0
    assert "· Video Bitrate: 12000 kbps" in shown.output
    assert "· Autoplay: off" in shown.output


def test_config_set_rejects_unknown_property(tmp_path: Path) -> None:
    result = runner.invoke(
        app, ["config", "set", "alice", "Teleport", "on", "--state-dir", str(tmp_path)]
    )

    assert result.exit_code == ExitCode.VALIDATION
    assert not (tmp_path / "configs.json").exists()


def test_rooms_list_prints_stored_rooms(tmp_path: Path) -> None:
    empty = runner.invoke(app, ["rooms", "list", "--state-dir", str(tmp_path)])
    RoomStore(tmp_path / "rooms.json").put(
        RoomRecord(
            user="alice",
            address=JobAddress("ns", "alice", "run-1"),
            conversation=ConversationRef("channel-1"),
        )
    )
    listed = runner.invoke(app, ["rooms", "list", "--state-dir", str(tmp_path)])

    assert "No active rooms." in empty.output
    assert listed.exit_code == 0
    assert "alice\tns/alice/run-1\tqueued\t0%\tchannel-1" in listed.output
    assert "1 room(s) in " in listed.output


def test_rooms_list_without_secret_reports_configuration_error(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    _isolate(monkeypatch, tmp_path)

    result = runner.invoke(app, ["rooms", "list"])

    assert result.exit_code == ExitCode.CONFIG


def test_serve_requires_transport_or_dry_run(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("PZP_AGENT_API_SECRET", "s3cret")

    result = runner.invoke(app, ["serve"])

    assert result.exit_code != 0


def test_serve_dry_run_builds_runtime_with_logging_transport(
    monkeypatch: MonkeyPatch, tmp_path: Path, mocker: MockerFixture
) -> None:
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("PZP_AGENT_API_SECRET", "s3cret")
    monkeypatch.setenv("PZP_AGENT_STATE_DIR", str(tmp_path / "state"))

    runtime = mocker.Mock()
    runtime.rooms.records.return_value = []
    runtime.serve = mocker.AsyncMock()
    build = mocker.patch("pzp_agent.cli.build_runtime", return_value=runtime)

    result = runner.invoke(app, ["serve", "--dry-run"])

    assert result.exit_code == 0, result.output
    settings, transport = build.call_args.args
    assert settings.state_dir == tmp_path / "state"
    assert isinstance(transport, LoggingTransport)
    runtime.serve.assert_awaited_once()


def test_serve_loads_transport_factory(
    monkeypatch: MonkeyPatch, tmp_path: Path, mocker: MockerFixture
) -> None:
    _isolate(monkeypatch, tmp_path)
    monkeypatch.setenv("PZP_AGENT_API_SECRET", "s3cret")

    chat = LoggingTransport()
    factory = mocker.Mock(return_value=chat)
    module = mocker.Mock(make_transport=factory)
    mocker.patch("pzp_agent.cli.import_module", return_value=module)
    runtime = mocker.Mock()
    runtime.rooms.records.return_value = []
    runtime.serve = mocker.AsyncMock()
    build = mocker.patch("pzp_agent.cli.build_runtime", return_value=runtime)

    result = runner.invoke(app, ["serve", "--transport", "chat_bridge:make_transport"])

    assert result.exit_code == 0, result.output
    factory.assert_called_once()
    assert build.call_args.args[1] is chat


def test_rooms_list_warns_about_unreadable_document(tmp_path: Path) -> None:
    (tmp_path / "rooms.json").write_text("{not json", encoding="utf-8")

    result = runner.invoke(app, ["rooms", "list", "--state-dir", str(tmp_path)])

    assert result.exit_code == 0
    assert "could not be read: invalid JSON" in result.output
    assert "No active rooms." in result.output
