import json
import logging

import pytest

from intent_warden.cli import EXIT_DENIED, main


@pytest.fixture(autouse=True)
def _reset_package_logger(monkeypatch):
    logger = logging.getLogger("intent_warden")
    monkeypatch.setattr(logger, "_intent_warden_configured", False, raising=False)
    level = logger.level
    before = list(logger.handlers)
    yield
    for h in logger.handlers[:]:
        if h not in before:
            logger.removeHandler(h)
            h.close()
    logger.setLevel(level)


def run(workspace, *argv):
    return main(["--workspace", str(workspace), "-q", "--log", str(workspace / "cli.log"), *argv])


def test_intents_lists_file(workspace, capsys):
    assert run(workspace, "intents") == 0
    out = capsys.readouterr().out
    assert "INT-001\tactive\tJWT authentication\tsrc/auth/**, src/middleware/jwt.ts" in out
    assert "INT-004\tactive\tUnscoped\t(no scope)" in out


def test_intents_without_file(tmp_path, capsys):
    assert run(tmp_path, "intents") == 1
    assert "No intents found" in capsys.readouterr().out


def test_declare_status_clear_round_trip(workspace, capsys):
    assert run(workspace, "declare", "s1", "INT-001") == 0
    assert '<intent_context intent_id="INT-001">' in capsys.readouterr().out

    assert run(workspace, "status") == 0
    assert json.loads(capsys.readouterr().out) == {"s1": "INT-001"}

    assert run(workspace, "status", "s1") == 0
    assert json.loads(capsys.readouterr().out)["intent_id"] == "INT-001"

    assert run(workspace, "clear", "s1") == 0
    assert run(workspace, "status", "s1") == 1


def test_declare_refuses_completed_intent(workspace, capsys):
    assert run(workspace, "declare", "s1", "INT-003") == 1
    assert "ERROR" in capsys.readouterr().err


def test_classify(workspace, capsys):
    assert run(workspace, "classify", "chmod", "777", "site") == 0
    out = json.loads(capsys.readouterr().out)
    assert out["risk_level"] == "critical"
    assert out["requires_approval"] is True
    assert out["explanation"].startswith("CRITICAL")
    assert "755" in out["safer_alternative"]


def test_check_denies_without_intent(workspace, capsys):
    code = run(workspace, "check", "s1", "write_to_file", "--args", '{"path": "src/auth/a.ts"}')
    assert code == EXIT_DENIED
    out = json.loads(capsys.readouterr().out)
    assert out["continue"] is False
    assert out["reason_code"] == "NO_ACTIVE_INTENT"


def test_check_allows_in_scope_after_declare(workspace, capsys):
    run(workspace, "declare", "s1", "INT-001")
    capsys.readouterr()
    assert run(workspace, "check", "s1", "write_to_file", "--args", '{"path": "src/auth/a.ts"}') == 0
    assert json.loads(capsys.readouterr().out) == {"continue": True}


def test_check_scope_violation(workspace, capsys):
    run(workspace, "declare", "s1", "INT-001")
    capsys.readouterr()
    assert run(workspace, "check", "s1", "write_to_file", "--args", '{"path": "lib/x.ts"}') == EXIT_DENIED
    assert json.loads(capsys.readouterr().out)["reason_code"] == "SCOPE_VIOLATION"


def test_trace_metrics_and_tail(workspace, capsys):
    log = workspace / ".orchestration" / "agent_trace.jsonl"
    log.write_text(
        '{"task_id": "a", "tool_name": "write_to_file", "duration_ms": 2, "success": true}\n'
        '{"task_id": "b", "tool_name": "execute_command", "duration_ms": 4, "success": false}\n',
        encoding="utf-8",
    )
    assert run(workspace, "trace", "--metrics") == 0
    metrics = json.loads(capsys.readouterr().out)
    assert metrics["total_tools"] == 2 and metrics["failures"] == 1

    assert run(workspace, "trace", "--session", "b") == 0
    lines = capsys.readouterr().out.splitlines()
    assert [json.loads(ln)["task_id"] for ln in lines] == ["b"]

    assert run(workspace, "trace", "--tail", "1") == 0
    assert json.loads(capsys.readouterr().out)["task_id"] == "b"


def test_log_level_from_config_and_verbose(workspace):
    (workspace / ".orchestration" / "warden.yaml").write_text("logging:\n  level: warning\n", encoding="utf-8")
    logger = logging.getLogger("intent_warden")

    assert run(workspace, "intents") == 0
    assert logger.level == logging.WARNING
    assert run(workspace, "-v", "intents") == 0
    assert logger.level == logging.DEBUG
