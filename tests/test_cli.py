"""Tests for the command-line interface."""

from __future__ import annotations

import json
import logging

import pytest
import yaml

from board_automation.cli import build_parser, main, parse_json_arg

STUCK_EVENT = json.dumps(
    {
        "type": "status_changed",
        "boardId": "b1",
        "taskId": "t1",
        "field": "status",
        "previousValue": "not-started",
        "newValue": "stuck",
    }
)


@pytest.fixture(autouse=True)
def reset_logging():
    """Commands reconfigure root logging; restore it afterwards."""
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level

    yield

    logging.root.handlers = original_handlers
    logging.root.setLevel(original_level)
    from board_automation.core import logger

    logger._loggers.clear()
    logger._current_level = logging.INFO


@pytest.fixture
def fixtures_file(tmp_path, board_data):
    """Fixtures file with one escalation rule on board b1."""
    board_data["rules"] = [
        {
            "id": "escalate",
            "scope_id": "b1",
            "name": "Escalate stuck",
            "trigger_type": "status_changed",
            "trigger_value": "stuck",
            "action_type": "change_priority",
            "action_config": {"priority": "critical"},
        }
    ]
    path = tmp_path / "board.yaml"
    path.write_text(yaml.safe_dump(board_data))
    return path


class TestParser:
    """Tests for argument parsing."""

    def test_no_command_exits(self, capsys):
        """Test that running without a command prints help and exits 0."""
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 0
        assert "board-automation" in capsys.readouterr().out

    def test_dry_run_requires_rule_or_candidate(self):
        """Test the rule/candidate mutual exclusion."""
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["dry-run", "-f", "x.yaml"])
        with pytest.raises(SystemExit):
            parser.parse_args(["dry-run", "-f", "x.yaml", "-r", "a", "--candidate", "{}"])

    def test_global_options(self):
        """Test global options before the subcommand."""
        args = build_parser().parse_args(["-c", "c.yaml", "--log-level", "debug", "actions"])
        assert args.config == "c.yaml"
        assert args.log_level == "debug"
        assert args.command == "actions"


class TestParseJsonArg:
    """Tests for parse_json_arg."""

    def test_inline_and_file(self, tmp_path):
        """Test inline JSON and @file arguments."""
        assert parse_json_arg('{"a": 1}', "event") == {"a": 1}
        path = tmp_path / "event.yaml"
        path.write_text("type: task_created\nboardId: b1\n")
        assert parse_json_arg(f"@{path}", "event") == {"type": "task_created", "boardId": "b1"}
        assert parse_json_arg(None, "event") is None

    def test_invalid_json(self):
        """Test that malformed JSON raises ValueError."""
        with pytest.raises(ValueError, match="Invalid JSON for event"):
            parse_json_arg("{nope", "event")


class TestActionsCommand:
    """Tests for the actions command."""

    def test_json_listing(self, capsys):
        """Test the JSON listing of action types."""
        assert main(["--log-level", "error", "actions", "--json"]) == 0
        rows = json.loads(capsys.readouterr().out)
        by_type = {row["type"]: row for row in rows}
        assert len(rows) == 35
        assert by_type["change_priority"]["category"] == "mutation"
        assert by_type["send_slack"]["category"] == "notification"
        assert by_type["ai_summarize"]["category"] == "ai"
        assert by_type["synseekr_rag_query"]["category"] == "document intelligence"

    def test_table_listing(self, capsys):
        """Test the table listing."""
        assert main(["actions"]) == 0
        assert "Action Types (35)" in capsys.readouterr().out


class TestProcessCommand:
    """Tests for the process command."""

    def test_process_json(self, fixtures_file, capsys):
        """Test processing an event with JSON output."""
        code = main(
            ["--log-level", "error", "process", "-f", str(fixtures_file), "-e", STUCK_EVENT, "--json"]
        )
        assert code == 0
        results = json.loads(capsys.readouterr().out)
        assert len(results) == 1
        assert results[0]["rule_id"] == "escalate"
        assert results[0]["success"] is True
        assert results[0]["cascade_depth"] == 0

    def test_process_save(self, fixtures_file, capsys):
        """Test that --save writes the mutated store back."""
        code = main(
            ["--log-level", "error", "process", "-f", str(fixtures_file), "-e", STUCK_EVENT, "--save"]
        )
        assert code == 0
        assert "Execution Results (1)" in capsys.readouterr().out

        saved = yaml.safe_load(fixtures_file.read_text())
        t1 = next(e for e in saved["entities"] if e["id"] == "t1")
        assert t1["priority"] == "critical"
        assert saved["rules"][0]["run_count"] == 1

    def test_no_rules_fired(self, fixtures_file, capsys):
        """Test the message when nothing matches."""
        event = json.dumps({"type": "item_created", "boardId": "b1", "taskId": "t2"})
        assert main(["--log-level", "error", "process", "-f", str(fixtures_file), "-e", event]) == 0
        assert "No rules fired" in capsys.readouterr().out

    def test_failed_rule_exit_code(self, tmp_path, board_data, capsys):
        """Test that a failed rule makes the command exit 1."""
        board_data["rules"] = [
            {
                "id": "summarize",
                "scope_id": "b1",
                "name": "Summarize",
                "trigger_type": "status_changed",
                "action_type": "ai_summarize",
            }
        ]
        path = tmp_path / "board.yaml"
        path.write_text(yaml.safe_dump(board_data))

        code = main(["--log-level", "error", "process", "-f", str(path), "-e", STUCK_EVENT, "--json"])

        assert code == 1
        results = json.loads(capsys.readouterr().out)
        assert results[0]["success"] is False
        assert results[0]["message"] == "AI provider not connected"

    def test_missing_fixtures(self, tmp_path, capsys):
        """Test a missing fixtures file."""
        code = main(["process", "-f", str(tmp_path / "none.yaml"), "-e", STUCK_EVENT])
        assert code == 1
        assert "Error: Fixtures file not found" in capsys.readouterr().out

    def test_invalid_event(self, fixtures_file, capsys):
        """Test that an event missing its board is rejected."""
        code = main(
            ["--log-level", "error", "process", "-f", str(fixtures_file), "-e", '{"type": "status_changed"}']
        )
        assert code == 1
        assert "Error:" in capsys.readouterr().out


class TestDryRunCommand:
    """Tests for the dry-run command."""

    def test_stored_rule(self, fixtures_file, capsys):
        """Test dry-running a rule from the fixtures file."""
        code = main(["--log-level", "error", "dry-run", "-f", str(fixtures_file), "-r", "escalate", "--json"])
        assert code == 0
        result = json.loads(capsys.readouterr().out)
        assert result["rule_id"] == "escalate"
        assert result["scope_id"] == "b1"
        assert result["would_fire_count"] == 2

        saved = yaml.safe_load(fixtures_file.read_text())
        assert saved["tasks"][0]["priority"] == "medium"

    def test_candidate_table(self, fixtures_file, capsys):
        """Test a JSON candidate with table output."""
        candidate = json.dumps(
            {
                "name": "Ping legal",
                "boardId": "b1",
                "trigger_type": "status_changed",
                "trigger_value": "stuck",
                "action_type": "send_slack",
                "action_config": {"channel": "#legal", "message": "Stuck"},
            }
        )
        code = main(["--log-level", "error", "dry-run", "-f", str(fixtures_file), "--candidate", candidate])
        assert code == 0
        assert "Dry Run" in capsys.readouterr().out

    def test_unknown_rule(self, fixtures_file, capsys):
        """Test that an unknown rule id is reported."""
        code = main(["--log-level", "error", "dry-run", "-f", str(fixtures_file), "-r", "ghost"])
        assert code == 1
        assert "Automation rule not found: ghost" in capsys.readouterr().out


class TestHistoryCommand:
    """Tests for the history command."""

    def test_requires_database(self, capsys):
        """Test that history needs a ledger database."""
        assert main(["history", "--rule", "escalate"]) == 1
        assert "no ledger database configured" in capsys.readouterr().out

    def test_history_after_process(self, tmp_path, fixtures_file, capsys):
        """Test that executions recorded by process show up in history."""
        database_url = f"sqlite:///{tmp_path / 'ledger.db'}"
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.safe_dump({"ledger": {"database_url": database_url}}))

        assert (
            main(
                [
                    "-c",
                    str(config_path),
                    "--log-level",
                    "error",
                    "process",
                    "-f",
                    str(fixtures_file),
                    "-e",
                    STUCK_EVENT,
                ]
            )
            == 0
        )
        capsys.readouterr()

        code = main(["-c", str(config_path), "--log-level", "error", "history", "--rule", "escalate"])

        assert code == 0
        out = capsys.readouterr().out
        assert "Execution History: escalate" in out

    def test_history_empty(self, tmp_path, capsys):
        """Test the message for a target with no executions."""
        database_url = f"sqlite:///{tmp_path / 'empty.db'}"
        code = main(["--log-level", "error", "history", "--database", database_url, "--scope", "b9"])
        assert code == 0
        assert "No executions recorded for b9" in capsys.readouterr().out
