"""Tests for the CLI module."""

import argparse
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from agent_team.cli import _parse_task, cmd_check, cmd_report, cmd_roster, cmd_run, main
from agent_team.config import Config
from agent_team.models import TaskType

from .helpers import FakeEngine


@pytest.fixture
def config(tmp_path: Path) -> Config:
	return Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data", workspace=tmp_path / "ws")


def _args(**kwargs) -> argparse.Namespace:
	defaults = {"team": None}
	defaults.update(kwargs)
	return argparse.Namespace(**defaults)


class TestParseTask:
	def test_kind_and_description(self):
		task = _parse_task("testing:Run the unit tests")
		assert task.type == TaskType.TESTING
		assert task.description == "Run the unit tests"

	def test_description_may_contain_colons(self):
		assert _parse_task("review:Check a:b mapping").description == "Check a:b mapping"

	@pytest.mark.parametrize("value", ["no-separator", "testing:", "gardening:Water plants"])
	def test_invalid(self, value):
		with pytest.raises(argparse.ArgumentTypeError):
			_parse_task(value)


class TestRoster:
	def test_default_team(self, config, capsys):
		with patch("agent_team.cli.load_config", return_value=config):
			cmd_roster(_args())
		out = capsys.readouterr().out
		assert "Team Roster (7 members)" in out

	def test_team_file(self, config, tmp_path, capsys):
		team_file = tmp_path / "team.toml"
		team_file.write_text('[[members]]\nid = "solo"\nname = "Solo"\nrole = "developer"\n')
		with patch("agent_team.cli.load_config", return_value=config):
			cmd_roster(_args(team=str(team_file)))
		assert "solo" in capsys.readouterr().out

	@pytest.mark.parametrize("content, message", [
		("[[members]\nid = ", "Malformed team file"),
		("[[members]]\nname = \"No Id\"\n", "Invalid team file"),
	])
	def test_bad_team_file_exits_1(self, config, tmp_path, capsys, content, message):
		team_file = tmp_path / "team.toml"
		team_file.write_text(content)
		with patch("agent_team.cli.load_config", return_value=config):
			with pytest.raises(SystemExit) as exc:
				cmd_roster(_args(team=str(team_file)))
		assert exc.value.code == 1
		assert message in capsys.readouterr().err

	def test_missing_team_file_exits_1(self, config, tmp_path, capsys):
		with patch("agent_team.cli.load_config", return_value=config):
			with pytest.raises(SystemExit) as exc:
				cmd_roster(_args(team=str(tmp_path / "absent.toml")))
		assert exc.value.code == 1
		assert "Cannot read team file" in capsys.readouterr().err


class TestCheck:
	def test_allowed_exits_cleanly(self, config, capsys):
		with patch("agent_team.cli.load_config", return_value=config):
			cmd_check(_args(kind="Read", input='{"file_path": "README.md"}', priority=None, json=False))
		assert "ALLOW" in capsys.readouterr().out

	def test_denied_exits_1(self, config, capsys):
		with patch("agent_team.cli.load_config", return_value=config):
			with pytest.raises(SystemExit) as exc:
				cmd_check(_args(kind="Write", input='{"file_path": ".env"}', priority=None, json=False))
		assert exc.value.code == 1
		assert "DENY" in capsys.readouterr().out

	def test_priority_escalates(self, config):
		with patch("agent_team.cli.load_config", return_value=config):
			cmd_check(_args(kind="Bash", input='{"command": "make build"}', priority="high", json=False))

	def test_json_output(self, config, capsys):
		with patch("agent_team.cli.load_config", return_value=config):
			cmd_check(_args(kind="Bash", input='{"command": "git push"}', priority=None, json=True))
		assert '"behavior": "allow"' in capsys.readouterr().out

	def test_bad_json_exits_2(self, config):
		with patch("agent_team.cli.load_config", return_value=config):
			with pytest.raises(SystemExit) as exc:
				cmd_check(_args(kind="Read", input="{not json", priority=None, json=False))
		assert exc.value.code == 2


class TestReport:
	def test_renders_saved_report(self, tmp_path, capsys):
		path = tmp_path / "session-1.json"
		path.write_text(json.dumps({
			"session_id": "session_1",
			"name": "nightly",
			"duration": 2.0,
			"total_tasks": 1,
			"total_cost": 0.01,
			"usage": {"input_tokens": 10},
			"tasks": [{"task_id": "task_1", "status": "completed", "duration": 2.0, "cost": 0.01}],
		}))
		cmd_report(_args(path=str(path)))
		out = capsys.readouterr().out
		assert "nightly" in out
		assert "task_1" in out

	def test_missing_report(self, tmp_path):
		with pytest.raises(SystemExit) as exc:
			cmd_report(_args(path=str(tmp_path / "nope.json")))
		assert exc.value.code == 1

	def test_invalid_report(self, tmp_path):
		path = tmp_path / "bad.json"
		path.write_text("[]")
		with pytest.raises(SystemExit):
			cmd_report(_args(path=str(path)))


class TestRun:
	def test_run_writes_report(self, config, capsys):
		engine = FakeEngine()
		tasks = [_parse_task("analysis:Survey the repo"), _parse_task("testing:Run the suite")]
		with patch("agent_team.cli.load_config", return_value=config), \
				patch("agent_team.cli.ClaudeCLIEngine", return_value=engine):
			cmd_run(_args(name="nightly", task=tasks, model=None, init=True))

		reports = list((config.workspace / "reports").glob("session-*.json"))
		assert len(reports) == 1
		assert json.loads(reports[0].read_text())["total_tasks"] == 2
		assert (config.workspace / ".claude" / "settings.json").exists()
		assert len(engine.requests) == 2
		out = capsys.readouterr().out
		assert "Session Report" in out
		assert "Hook executions: 2" in out

	def test_run_with_failure_exits_1(self, config):
		engine = FakeEngine({"Explode": RuntimeError("boom")})
		with patch("agent_team.cli.load_config", return_value=config), \
				patch("agent_team.cli.ClaudeCLIEngine", return_value=engine):
			with pytest.raises(SystemExit) as exc:
				cmd_run(_args(name="n", task=[_parse_task("debugging:Explode")], model=None, init=False))
		assert exc.value.code == 1


class TestMain:
	def test_no_command_prints_help(self, capsys):
		with patch("sys.argv", ["agent-team"]):
			with pytest.raises(SystemExit) as exc:
				main()
		assert exc.value.code == 1
		assert "usage" in capsys.readouterr().out.lower()

	def test_dispatches_subcommand(self, config, capsys):
		with patch("sys.argv", ["agent-team", "roster"]), \
				patch("agent_team.cli.load_config", return_value=config), \
				patch("agent_team.cli.setup_logging") as setup:
			main()
		setup.assert_called_once_with("INFO", config.log_dir)
		assert "Team Roster" in capsys.readouterr().out

	def test_run_requires_task(self):
		with patch("sys.argv", ["agent-team", "run", "nightly"]):
			with pytest.raises(SystemExit) as exc:
				main()
		assert exc.value.code == 2
