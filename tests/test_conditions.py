import hashlib
from pathlib import Path

import pytest

from hostforge_automation.conditions import ConditionEvaluator
from hostforge_automation.errors import ProbeUnknown, TransportUnreachable
from hostforge_automation.executors import CommandResult, LocalExecutor
from hostforge_automation.types import Check, HostConfig

HOST = HostConfig(name="local")


class ScriptedExecutor:
    """Answers commands from a table of ``tuple(argv) -> (rc, stdout)``."""

    def __init__(self, answers=None, files=None, modes=None):
        self.host = HOST
        self.answers = answers or {}
        self.files = files or {}
        self.modes = modes or {}
        self.commands: list[list[str]] = []

    def run(self, command, *, check=True, env=None, cwd=None, timeout=None):  # noqa: ARG002
        cmd = [str(part) for part in command]
        self.commands.append(cmd)
        rc, stdout = self.answers.get(tuple(cmd), (127, ""))
        return CommandResult(cmd, stdout, "" if rc != 127 else "command not found", rc)

    def read_file(self, path):
        value = self.files.get(str(path))
        if isinstance(value, Exception):
            raise value
        return value

    def file_mode(self, path):
        return self.modes.get(str(path))


def test_path_exists_uses_test_flags() -> None:
    fake = ScriptedExecutor({("test", "-d", "/var/www"): (0, ""), ("test", "-e", "/etc/missing"): (1, "")})
    evaluator = ConditionEvaluator(fake)

    assert evaluator.holds(HOST, Check("path_exists", {"path": "/var/www", "type": "directory"})) is True
    assert evaluator.holds(HOST, Check("path_exists", {"path": "/etc/missing"})) is False
    assert evaluator.holds(HOST, Check("path_exists", {"path": "/etc/missing"}, negate=True)) is True


def test_path_exists_checks_mode() -> None:
    fake = ScriptedExecutor({("test", "-d", "/srv"): (0, "")}, modes={"/srv": 0o700})
    evaluator = ConditionEvaluator(fake)

    assert evaluator.holds(HOST, Check("path_exists", {"path": "/srv", "type": "directory", "mode": 0o755})) is False


def test_missing_probe_binary_is_unknown_even_when_negated() -> None:
    evaluator = ConditionEvaluator(ScriptedExecutor())

    with pytest.raises(ProbeUnknown):
        evaluator.holds(HOST, Check("user_exists", {"name": "app"}, negate=True))


def test_unexpected_exit_status_is_unknown() -> None:
    fake = ScriptedExecutor({("iptables", "-t", "filter", "-C", "INPUT", "-j", "DROP"): (4, "")})

    with pytest.raises(ProbeUnknown, match="rc=4"):
        ConditionEvaluator(fake).holds(HOST, Check("firewall_rule", {"chain": "INPUT", "rule": ["-j", "DROP"]}))


def test_file_matches_compares_content_and_mode() -> None:
    fake = ScriptedExecutor(files={"/etc/motd": "hi\n"}, modes={"/etc/motd": 0o644})
    evaluator = ConditionEvaluator(fake)

    assert evaluator.holds(HOST, Check("file_matches", {"path": "/etc/motd", "content": "hi\n", "mode": 0o644}))
    assert not evaluator.holds(HOST, Check("file_matches", {"path": "/etc/motd", "content": "bye\n"}))
    assert not evaluator.holds(HOST, Check("file_matches", {"path": "/etc/nope", "content": ""}))


def test_file_read_errors_are_unknown_but_transport_errors_propagate() -> None:
    fake = ScriptedExecutor(
        files={"/etc/shadow": PermissionError("denied"), "/etc/hosts": TransportUnreachable("web1", "timeout")}
    )
    evaluator = ConditionEvaluator(fake)

    with pytest.raises(ProbeUnknown):
        evaluator.holds(HOST, Check("file_matches", {"path": "/etc/shadow", "content": ""}))
    with pytest.raises(TransportUnreachable):
        evaluator.holds(HOST, Check("file_matches", {"path": "/etc/hosts", "content": ""}))


def test_command_probe() -> None:
    fake = ScriptedExecutor({("sh", "-c", "true"): (0, ""), ("sh", "-c", "false"): (1, "")})
    evaluator = ConditionEvaluator(fake)

    assert evaluator.holds(HOST, Check("command", {"command": "true"})) is True
    assert evaluator.holds(HOST, Check("command", {"command": "false"})) is False
    with pytest.raises(ProbeUnknown):
        evaluator.holds(HOST, Check("command", {"command": "missing-binary"}))


def test_service_probes() -> None:
    fake = ScriptedExecutor(
        {
            ("systemctl", "is-active", "nginx"): (0, "active"),
            ("systemctl", "is-enabled", "nginx"): (1, "disabled"),
            ("systemctl", "is-active", "app"): (3, "inactive"),
        }
    )
    evaluator = ConditionEvaluator(fake)

    assert evaluator.holds(HOST, Check("service_active", {"name": "nginx"})) is True
    assert evaluator.holds(HOST, Check("service_enabled", {"name": "nginx"})) is False
    assert evaluator.holds(HOST, Check("service_active", {"name": "app"})) is False


def test_package_installed_uses_dpkg_status() -> None:
    fake = ScriptedExecutor(
        {
            ("dpkg-query", "-W", "-f", "${Status}", "nginx"): (0, "install ok installed"),
            ("dpkg-query", "-W", "-f", "${Status}", "cron"): (0, "deinstall ok config-files"),
        }
    )
    evaluator = ConditionEvaluator(fake)

    assert evaluator.holds(HOST, Check("package_installed", {"packages": ["nginx"], "manager": "apt"})) is True
    assert evaluator.holds(HOST, Check("package_installed", {"packages": ["nginx", "cron"], "manager": "apt"})) is False


def test_certificate_valid_checks_expiry_window() -> None:
    pem = "/etc/letsencrypt/live/example.org/fullchain.pem"
    fake = ScriptedExecutor(
        {
            ("test", "-f", pem): (0, ""),
            ("openssl", "x509", "-checkend", str(30 * 86400), "-noout", "-in", pem): (1, "Certificate will expire"),
        }
    )

    holds = ConditionEvaluator(fake).holds(HOST, Check("certificate_valid", {"path": pem, "renew_before_days": 30}))

    assert holds is False


def test_certificate_valid_missing_file() -> None:
    fake = ScriptedExecutor({("test", "-f", "/etc/cert.pem"): (1, "")})

    assert ConditionEvaluator(fake).holds(HOST, Check("certificate_valid", {"path": "/etc/cert.pem"})) is False
    assert len(fake.commands) == 1


def test_all_short_circuits() -> None:
    fake = ScriptedExecutor({("getent", "group", "app"): (2, "")})
    check = Check(
        "all",
        {"checks": [Check("group_exists", {"name": "app"}), Check("user_exists", {"name": "app"})]},
    )

    assert ConditionEvaluator(fake).holds(HOST, check) is False
    assert fake.commands == [["getent", "group", "app"]]


def test_unknown_kind_is_unknown() -> None:
    with pytest.raises(ProbeUnknown):
        ConditionEvaluator(ScriptedExecutor()).holds(HOST, Check("telepathy"))


def test_files_match_against_local_host(tmp_path: Path) -> None:
    source = tmp_path / "deploy"
    source.mkdir()
    (source / "config.toml").write_text("port = 8080\n")
    dest = tmp_path / "home"
    dest.mkdir()
    evaluator = ConditionEvaluator(LocalExecutor(HOST))
    check = Check("files_match", {"src": str(source), "dest": str(dest)})

    assert evaluator.holds(HOST, check) is False

    (dest / "config.toml").write_text("port = 8080\n")
    assert evaluator.holds(HOST, check) is True


def test_files_match_parses_sha256sum_output(tmp_path: Path) -> None:
    binary = tmp_path / "server"
    binary.write_bytes(b"\x7fELF")
    digest = hashlib.sha256(b"\x7fELF").hexdigest()
    fake = ScriptedExecutor({("sha256sum", "--", "/usr/local/bin/app"): (0, f"{digest}  /usr/local/bin/app\n")})

    check = Check("files_match", {"src": str(binary), "dest": "/usr/local/bin/app"})

    assert ConditionEvaluator(fake).holds(HOST, check) is True


def test_files_match_missing_source_is_unknown(tmp_path: Path) -> None:
    check = Check("files_match", {"src": str(tmp_path / "absent"), "dest": "/srv"})

    with pytest.raises(ProbeUnknown):
        ConditionEvaluator(ScriptedExecutor()).holds(HOST, check)


def test_command_check_accepts_argument_lists() -> None:
    fake = ScriptedExecutor({("test", "-f", "/etc/app.conf"): (0, "")})

    assert ConditionEvaluator(fake).holds(HOST, Check("command", {"command": ["test", "-f", "/etc/app.conf"]}))
    assert fake.commands == [["test", "-f", "/etc/app.conf"]]


@pytest.mark.parametrize("mode", ["0755", "755", 0o755])
def test_explicit_mode_accepts_octal_text(mode) -> None:
    fake = ScriptedExecutor(
        {("test", "-d", "/srv/app"): (0, "")},
        files={"/srv/app.conf": "x\n"},
        modes={"/srv/app": 0o755, "/srv/app.conf": 0o755},
    )
    evaluator = ConditionEvaluator(fake)

    assert evaluator.holds(HOST, Check("path_exists", {"path": "/srv/app", "type": "directory", "mode": mode}))
    assert evaluator.holds(HOST, Check("file_matches", {"path": "/srv/app.conf", "content": "x\n", "mode": mode}))


def test_check_errors_become_unknown() -> None:
    fake = ScriptedExecutor({("test", "-f", "/etc/cert.pem"): (0, "")})
    check = Check("certificate_valid", {"path": "/etc/cert.pem", "renew_before_days": "thirty"})

    with pytest.raises(ProbeUnknown, match="certificate_valid check failed"):
        ConditionEvaluator(fake).holds(HOST, check)


def test_user_in_groups_check() -> None:
    fake = ScriptedExecutor(
        {("id", "-nG", "app"): (0, "app adm\n"), ("id", "-nG", "ghost"): (1, "")}
    )
    evaluator = ConditionEvaluator(fake)

    assert evaluator.holds(HOST, Check("user_in_groups", {"name": "app", "groups": ["adm"]})) is True
    assert evaluator.holds(HOST, Check("user_in_groups", {"name": "app", "groups": ["docker"]})) is False
    assert evaluator.holds(HOST, Check("user_in_groups", {"name": "ghost", "groups": ["adm"]})) is False
