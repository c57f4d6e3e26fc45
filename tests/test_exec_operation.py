from pathlib import Path

import pytest

from hostforge_automation.conditions import ConditionEvaluator
from hostforge_automation.executors import LocalExecutor
from hostforge_automation.operations.exec import ExecOperation, normalize_command
from hostforge_automation.types import Check, HostConfig


def test_exec_runs_command(tmp_path: Path) -> None:
    host = HostConfig("local")
    target = tmp_path / "out.txt"
    op = ExecOperation({"command": f"echo hi > {target}"})
    result = op.apply(host, LocalExecutor(host))

    assert target.read_text().strip() == "hi"
    assert result.changed is True
    assert result.details == "ran (rc=0)"


def test_exec_guard_from_creates_unless_and_only_if(tmp_path: Path) -> None:
    op = ExecOperation(
        {
            "command": "openssl dhparam -out dhparams.pem 2048",
            "creates": "dhparams.pem",
            "cwd": str(tmp_path),
            "unless": "test -s dhparams.pem",
            "only_if": "command -v openssl",
        }
    )

    guard = op.guard()

    assert guard.kind == "all"
    assert guard.params["checks"] == [
        Check("path_exists", {"path": str(tmp_path / "dhparams.pem")}),
        Check("command", {"command": "test -s dhparams.pem"}),
        Check("command", {"command": "command -v openssl"}, negate=True),
    ]


def test_exec_without_guards_always_applies() -> None:
    assert ExecOperation({"command": "/etc/init.d/netfilter-persistent save"}).guard() is None


def test_exec_respects_allowed_returns() -> None:
    host = HostConfig("local")
    op_ok = ExecOperation({"command": "exit 3", "returns": [0, 3]})
    ok = op_ok.apply(host, LocalExecutor(host))

    op_fail = ExecOperation({"command": "echo nope >&2; exit 5"})
    fail = op_fail.apply(host, LocalExecutor(host))

    assert ok.changed is True
    assert ok.failed is False
    assert fail.failed is True
    assert fail.details == "rc=5: nope"


def test_exec_passes_env() -> None:
    host = HostConfig("local")
    op = ExecOperation({"command": 'test "$FOO" = bar', "env": ["FOO=bar"]})
    result = op.apply(host, LocalExecutor(host))

    assert result.failed is False


def test_exec_timeout_is_a_failure() -> None:
    host = HostConfig("local")
    result = ExecOperation({"command": "sleep 5", "timeout": 0.2}).apply(host, LocalExecutor(host))

    assert result.failed is True
    assert result.details.startswith("rc=124")


def test_exec_rejects_bad_parameters() -> None:
    with pytest.raises(ValueError):
        ExecOperation({})
    with pytest.raises(ValueError):
        ExecOperation({"command": "true", "timeout": "soon"})


def test_normalize_command() -> None:
    assert normalize_command("echo hi") == ["sh", "-c", "echo hi"]
    assert normalize_command(["systemctl", "restart", "nginx"]) == ["systemctl", "restart", "nginx"]


def test_exec_list_guards_run_without_a_shell(tmp_path: Path) -> None:
    host = HostConfig("local")
    marker = tmp_path / "installed"
    marker.write_text("")
    evaluator = ConditionEvaluator(LocalExecutor(host))

    unless = ExecOperation({"command": "true", "unless": ["test", "-f", str(marker)]})
    only_if = ExecOperation({"command": "true", "only_if": ["test", "-f", str(tmp_path / "absent")]})

    assert evaluator.holds(host, unless.guard()) is True
    assert evaluator.holds(host, only_if.guard()) is True
