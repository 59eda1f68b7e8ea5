"""
Unit tests for parproc.cmd.parproc_cli module.

Tests cover:
- Basic CLI help
- Config subcommands
- Argument validation of the run command
"""

import pytest
from typer.testing import CliRunner


runner = CliRunner()


class TestCLIBasic:
    """Basic CLI tests."""

    @pytest.mark.unit
    def test_help(self):
        """Test --help flag displays usage."""
        from parproc.cmd.parproc_cli import app

        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "run" in result.output
        assert "config" in result.output

    @pytest.mark.unit
    def test_run_help(self):
        """Test run --help lists the scheduling options."""
        from parproc.cmd.parproc_cli import app

        result = runner.invoke(app, ["run", "--help"])

        assert result.exit_code == 0
        assert "--parallel" in result.output
        assert "--start-delay" in result.output


class TestConfigCommands:
    """Tests for config subcommands."""

    @pytest.mark.unit
    def test_config_show(self, temp_config_dir):
        """Test config show prints the effective configuration."""
        from parproc.cmd.parproc_cli import app

        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        assert "scheduler" in result.output
        assert "parallelism" in result.output

    @pytest.mark.unit
    def test_config_show_uses_config_option(self, config_file):
        """Test --config values show up in config show."""
        from parproc.cmd.parproc_cli import app

        result = runner.invoke(app, ["--config", str(config_file), "config", "show"])

        assert result.exit_code == 0
        assert "parallelism: 4" in result.output

    @pytest.mark.unit
    def test_config_path(self, temp_config_dir):
        """Test config path shows the config file location."""
        from parproc.cmd.parproc_cli import app

        result = runner.invoke(app, ["config", "path"])

        assert result.exit_code == 0
        assert ".parproc" in result.output

    @pytest.mark.unit
    def test_config_init(self, temp_config_dir):
        """Test config init writes the file and refuses to overwrite it."""
        from parproc.cmd.parproc_cli import app

        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 0
        assert (temp_config_dir / "config.yaml").exists()

        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 0
        assert "already exists" in result.output

        result = runner.invoke(app, ["config", "init", "--force"])
        assert result.exit_code == 0
        assert "Config created" in result.output


class TestRunValidation:
    """Tests for run argument handling that never spawn a process."""

    @pytest.mark.unit
    def test_no_commands(self, temp_config_dir):
        """Test run without commands fails."""
        from parproc.cmd.parproc_cli import app

        result = runner.invoke(app, ["run"])

        assert result.exit_code == 1
        assert "No commands" in result.output

    @pytest.mark.unit
    def test_invalid_parallelism(self, temp_config_dir):
        """Test run rejects a parallelism below one."""
        from parproc.cmd.parproc_cli import app

        result = runner.invoke(app, ["run", "true", "--parallel", "0"])

        assert result.exit_code == 1
        assert "parallelism" in result.output

    @pytest.mark.unit
    def test_malformed_env(self, temp_config_dir):
        """Test --env requires KEY=VALUE."""
        from parproc.cmd.parproc_cli import app

        result = runner.invoke(app, ["run", "true", "--env", "NOVALUE"])

        assert result.exit_code == 2

    @pytest.mark.unit
    def test_read_command_file(self, temp_dir):
        """Test command files skip blank lines and comments."""
        from parproc.cmd.parproc_cli import _read_command_file

        path = temp_dir / "jobs.txt"
        path.write_text("# build\necho a\n\n   echo b  \n#echo c\n")

        assert _read_command_file(path) == ["echo a", "echo b"]

    @pytest.mark.unit
    def test_parse_env(self):
        """Test KEY=VALUE parsing keeps '=' inside values."""
        from parproc.cmd.parproc_cli import _parse_env

        assert _parse_env(["A=1", "B=x=y", "C="]) == {"A": "1", "B": "x=y", "C": ""}
        assert _parse_env(None) == {}


class TestRunManagerConfig:
    """Tests for how run builds its ProcessManager."""

    @pytest.mark.unit
    def test_cli_overrides_applied_to_scheduler_copy(self, config_file, monkeypatch):
        """Test CLI options override the config file without mutating it."""
        from unittest.mock import MagicMock
        import parproc.cmd.parproc_cli as cli
        from parproc.utils.config import SchedulerConfig, get_config

        fake_manager_cls = MagicMock()
        monkeypatch.setattr(cli, "ProcessManager", fake_manager_cls)

        result = runner.invoke(cli.app, ["--config", str(config_file), "run", "true", "--parallel", "3"])

        assert result.exit_code == 0
        fake_manager_cls.from_config.assert_called_once_with(
            SchedulerConfig(parallelism=3, poll_interval=25, start_delay=0)
        )
        assert get_config().scheduler.parallelism == 4
