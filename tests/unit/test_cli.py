"""Tests for the click-based CLI."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import yaml
from click.testing import CliRunner

from matrix_migrator.cli.commands import cli, handle_exception
from matrix_migrator.cli.migrate_cmd import build_settings, run
from matrix_migrator.core.config import MigrationConfig
from matrix_migrator.exceptions import (
    ConfigError,
    DestinationUnreachable,
    LoginError,
    SyncTimeout,
)

from ..conftest import DESTINATION_USER, SOURCE_USER
from .conftest import ab_sessions

ACCOUNT_ARGS = [
    "--from",
    SOURCE_USER,
    "--from-pw",
    "old-pw",
    "--to",
    DESTINATION_USER,
    "--to-pw",
    "new-pw",
]


class TestCLIGroup:
    """Tests for the CLI group structure."""

    def test_cli_has_all_subcommands(self):
        assert set(cli.commands.keys()) == {"migrate", "init-config"}

    def test_version_flag(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "matrix-migrator" in result.output

    def test_short_help_flag(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["-h"])
        assert result.exit_code == 0
        assert "migrate" in result.output
        assert "init-config" in result.output


class TestMigrateCommand:
    """Tests for the migrate subcommand."""

    def test_help_shows_all_options(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["migrate", "--help"])
        assert result.exit_code == 0
        for opt in [
            "--from",
            "--from-pw",
            "--from-homeserver",
            "--to",
            "--to-pw",
            "--to-homeserver",
            "--dry-run",
            "--rooms",
            "--rooms-excluded",
            "--leave-rooms",
            "--timeout",
            "--config",
            "--verbose",
            "--debug-http",
        ]:
            assert opt in result.output

    def test_missing_required_options(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["migrate"], env={"FROM_USER": None, "TO_USER": None})
        assert result.exit_code != 0
        assert "Missing option" in result.output or "Error" in result.output

    def test_accounts_from_environment(self, tmp_path):
        runner = CliRunner()
        with patch("matrix_migrator.cli.migrate_cmd.MatrixSession") as mock_session, patch(
            "matrix_migrator.cli.migrate_cmd.run", new=AsyncMock(return_value=0)
        ):
            result = runner.invoke(
                cli,
                [
                    "migrate",
                    "--config",
                    str(tmp_path / "none.yaml"),
                    "--output-dir",
                    str(tmp_path / "out"),
                ],
                env={
                    "FROM_USER": SOURCE_USER,
                    "FROM_PASSWORD": "old-pw",
                    "TO_USER": DESTINATION_USER,
                    "TO_PASSWORD": "new-pw",
                },
            )

        assert result.exit_code == 0, result.output
        logged_in = [c.args[0] for c in mock_session.login.call_args_list]
        assert logged_in == [SOURCE_USER, DESTINATION_USER]

    def test_options_reach_the_run(self, tmp_path):
        mock_run = AsyncMock(return_value=1)
        runner = CliRunner()
        with patch("matrix_migrator.cli.migrate_cmd.MatrixSession"), patch(
            "matrix_migrator.cli.migrate_cmd.run", new=mock_run
        ):
            result = runner.invoke(
                cli,
                [
                    "migrate",
                    *ACCOUNT_ARGS,
                    "--config",
                    str(tmp_path / "none.yaml"),
                    "--output-dir",
                    str(tmp_path / "out"),
                    "--dry-run",
                    "--leave-rooms",
                    "--rooms-excluded",
                    "*bridge*",
                    "--timeout",
                    "60",
                ],
            )

        assert result.exit_code == 1
        settings = mock_run.call_args.args[2]
        assert settings.dry_run is True
        assert settings.leave_rooms is True
        assert settings.rooms_excluded == ["*bridge*"]
        assert settings.timeout_seconds == 60

    def test_login_failure_exits_with_error(self, tmp_path):
        runner = CliRunner()
        with patch("matrix_migrator.cli.migrate_cmd.MatrixSession") as mock_session:
            mock_session.login.side_effect = LoginError("bad password")
            result = runner.invoke(
                cli,
                [
                    "migrate",
                    *ACCOUNT_ARGS,
                    "--config",
                    str(tmp_path / "none.yaml"),
                    "--output-dir",
                    str(tmp_path / "out"),
                ],
            )

        assert result.exit_code == 1

    def test_source_is_logged_out_when_destination_login_fails(self, tmp_path):
        source = MagicMock()
        source.logout = AsyncMock()
        runner = CliRunner()
        with patch("matrix_migrator.cli.migrate_cmd.MatrixSession") as mock_session, patch(
            "matrix_migrator.cli.migrate_cmd.run", new=AsyncMock(return_value=0)
        ) as mock_run:
            mock_session.login.side_effect = [source, LoginError("bad password")]
            result = runner.invoke(
                cli,
                [
                    "migrate",
                    *ACCOUNT_ARGS,
                    "--config",
                    str(tmp_path / "none.yaml"),
                    "--output-dir",
                    str(tmp_path / "out"),
                ],
            )

        assert result.exit_code == 1
        source.logout.assert_awaited_once()
        mock_run.assert_not_called()

    def test_invalid_config_exits_with_error(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("max_workers: 0\n")
        runner = CliRunner()
        with patch("matrix_migrator.cli.migrate_cmd.MatrixSession") as mock_session:
            result = runner.invoke(
                cli,
                [
                    "migrate",
                    *ACCOUNT_ARGS,
                    "--config",
                    str(config),
                    "--output-dir",
                    str(tmp_path / "out"),
                ],
            )

        assert result.exit_code == 1
        mock_session.login.assert_not_called()


class TestInitConfigCommand:
    """Tests for the init-config subcommand."""

    def test_writes_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        result = CliRunner().invoke(cli, ["init-config", "--output", str(path)])

        assert result.exit_code == 0
        assert yaml.safe_load(path.read_text())["leave_rooms"] is False

    def test_refuses_to_overwrite(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("dry_run: true\n")

        result = CliRunner().invoke(cli, ["init-config", "--output", str(path)])

        assert result.exit_code == 1
        assert path.read_text() == "dry_run: true\n"


class TestBuildSettings:
    """Tests for build_settings()."""

    def test_cli_rooms_extend_config_rooms(self):
        base = MigrationConfig(rooms=["!a:example.org"], rooms_excluded=["x"])

        settings = build_settings(
            base, rooms=("!b:example.org", "!a:example.org"), rooms_excluded=("y",)
        )

        assert settings.rooms == ["!a:example.org", "!b:example.org"]
        assert settings.rooms_excluded == ["x", "y"]

    def test_flags_only_switch_on(self):
        base = MigrationConfig(leave_rooms=True, dry_run=True)
        settings = build_settings(base)
        assert settings.leave_rooms is True
        assert settings.dry_run is True

    def test_timeout_override(self):
        settings = build_settings(MigrationConfig(), timeout_seconds=10)
        assert settings.timeout_seconds == 10.0

    def test_base_is_not_modified(self):
        base = MigrationConfig()
        build_settings(base, rooms=("!a:example.org",), leave_rooms=True)
        assert base.rooms == []
        assert base.leave_rooms is False


class TestRun:
    """Tests for the run() coroutine behind the migrate command."""

    def test_dry_run_writes_plan(self, tmp_path):
        source, destination = ab_sessions()
        settings = MigrationConfig(dry_run=True, retry_delay=0)

        exit_code = asyncio.run(run(source, destination, settings, str(tmp_path)))

        assert exit_code == 0
        assert "[DRY RUN]" in (tmp_path / "dry_run_plan.txt").read_text()
        assert source.mutating_calls == []
        assert destination.mutating_calls == []
        assert ("logout",) in source.calls
        assert ("logout",) in destination.calls

    def test_migration_writes_report(self, tmp_path):
        source, destination = ab_sessions()
        settings = MigrationConfig(leave_rooms=True, retry_delay=0)

        exit_code = asyncio.run(run(source, destination, settings, str(tmp_path)))

        assert exit_code == 0
        report = yaml.safe_load((tmp_path / "migration_report.yaml").read_text())
        assert report["migration_summary"]["rooms_applied"] == 2
        assert report["migration_summary"]["rooms_left"] == 2
        assert report["rooms"]["!a:example.org"]["status"] == "applied"
        assert report["cleanup"]["!a:example.org"]["direct_flag_restored"] is True


class TestHandleException:
    """Tests for handle_exception()."""

    def _messages(self, caplog, exc):
        with caplog.at_level(logging.INFO, logger="matrix_migrator"):
            handle_exception(exc)
        return " ".join(r.message for r in caplog.records)

    def test_sync_timeout(self, caplog):
        text = self._messages(caplog, SyncTimeout("no token"))
        assert "Initial sync failed: no token" in text
        assert "No changes were made" in text

    def test_destination_unreachable(self, caplog):
        assert "Destination unreachable" in self._messages(
            caplog, DestinationUnreachable("down")
        )

    def test_config_error(self, caplog):
        assert "Configuration error: bad" in self._messages(caplog, ConfigError("bad"))

    def test_keyboard_interrupt(self, caplog):
        assert "interrupted" in self._messages(caplog, KeyboardInterrupt())

    def test_unexpected_error_logs_traceback(self, caplog):
        with caplog.at_level(logging.ERROR, logger="matrix_migrator"):
            handle_exception(RuntimeError("boom"))

        record = caplog.records[-1]
        assert "Migration failed: boom" in record.message
        assert record.levelno == logging.ERROR
