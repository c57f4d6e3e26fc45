from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union
import grp
import io
import logging
import os
import pwd
import shlex
import shutil
import stat
import subprocess
import tarfile

from .errors import TransportUnreachable
from .types import HostConfig

logger = logging.getLogger(__name__)

SSH_UNREACHABLE_RC = 255
TIMEOUT_RC = 124
NOT_FOUND_RC = 127


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Base transport abstraction used by operations and probes."""

    def __init__(self, host: HostConfig):
        self.host = host

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        raise NotImplementedError

    # File primitives -----------------------------------------------------
    def read_file(self, path: Path) -> Optional[str]:
        raise NotImplementedError

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        raise NotImplementedError

    def remove_path(self, path: Path) -> bool:
        raise NotImplementedError

    def file_mode(self, path: Path) -> Optional[int]:
        raise NotImplementedError

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str], recursive: bool = False
    ) -> tuple[bool, str]:
        raise NotImplementedError

    def copy(
        self,
        source: Path,
        dest: Path,
        *,
        mode: Optional[int] = None,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> tuple[bool, str]:
        raise NotImplementedError

    @staticmethod
    def _raise_for_status(result: CommandResult, check: bool) -> CommandResult:
        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode,
                result.command,
                result.stdout,
                result.stderr,
            )
        return result


class LocalExecutor(Executor):
    """Executor that acts directly on the control host."""

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        cmd_list = [str(part) for part in command]
        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        try:
            proc = subprocess.run(
                cmd_list,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=str(cwd) if cwd is not None else None,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            result = CommandResult(cmd_list, "", str(exc), NOT_FOUND_RC)
        except subprocess.TimeoutExpired:
            result = CommandResult(cmd_list, "", "timeout", TIMEOUT_RC)
        else:
            result = CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)
        return self._raise_for_status(result, check)

    def read_file(self, path: Path) -> Optional[str]:
        try:
            return path.read_text()
        except FileNotFoundError:
            return None

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)

        if mode is not None and self.file_mode(path) != mode:
            changed = True
            reasons.append(f"mode->{mode:04o}")
            os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []

        if not path.exists():
            changed = True
            reasons.append("created")
            path.mkdir(parents=True, exist_ok=True)
        elif not path.is_dir():
            changed = True
            reasons.append("replaced-non-dir")
            self.remove_path(path)
            path.mkdir(parents=True, exist_ok=True)

        if mode is not None and self.file_mode(path) != mode:
            changed = True
            reasons.append(f"mode->{mode:04o}")
            os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        if not path.exists() and not path.is_symlink():
            return False
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def file_mode(self, path: Path) -> Optional[int]:
        try:
            return stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            return None

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str], recursive: bool = False
    ) -> tuple[bool, str]:
        if owner is None and group is None:
            return False, "noop"
        targets = [path]
        if recursive and path.is_dir():
            targets.extend(path.rglob("*"))
        changed = False
        for target in targets:
            info = target.lstat()
            current_owner = pwd.getpwuid(info.st_uid).pw_name
            current_group = grp.getgrgid(info.st_gid).gr_name
            if (owner is None or owner == current_owner) and (group is None or group == current_group):
                continue
            shutil.chown(target, user=owner, group=group)
            changed = True
        detail = f"owner->{owner or ''}:{group or ''}" if changed else "noop"
        return changed, detail

    def copy(
        self,
        source: Path,
        dest: Path,
        *,
        mode: Optional[int] = None,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> tuple[bool, str]:
        if source.is_dir():
            shutil.copytree(source, dest, dirs_exist_ok=True)
            copied = [dest / item.relative_to(source) for item in source.rglob("*") if item.is_file()]
        else:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, dest)
            copied = [dest]
        if mode is not None:
            for target in copied:
                os.chmod(target, mode)
        self.set_ownership(dest, owner=owner, group=group, recursive=True)
        return True, f"copied {len(copied)} file(s)"


class SSHExecutor(Executor):
    """Executor that reaches the host through the ``ssh`` client in batch mode."""

    def __init__(self, host: HostConfig, *, connect_timeout: int = 10):
        super().__init__(host)
        if not host.address:
            raise ValueError(f"host {host.name} uses ssh but has no address")
        self.connect_timeout = connect_timeout

    @property
    def target(self) -> str:
        if self.host.user:
            return f"{self.host.user}@{self.host.address}"
        return str(self.host.address)

    def cmd_base(self) -> list[str]:
        return [
            "ssh",
            "-p",
            str(self.host.port),
            "-o",
            "BatchMode=yes",
            "-o",
            "StrictHostKeyChecking=accept-new",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
            self.target,
        ]

    def remote_command(
        self,
        command: Sequence[str],
        *,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> str:
        script = shlex.join(str(part) for part in command)
        if env:
            assignments = " ".join(f"{key}={shlex.quote(value)}" for key, value in env.items())
            script = f"env {assignments} {script}"
        if cwd is not None:
            script = f"cd {shlex.quote(str(cwd))} && {script}"
        if self.host.become:
            return f"sudo -n sh -c {shlex.quote(script)}"
        return f"sh -c {shlex.quote(script)}"

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        stdin: Optional[bytes] = None,
    ) -> CommandResult:
        cmd_list = [str(part) for part in command]
        full = self.cmd_base() + [self.remote_command(cmd_list, env=env, cwd=cwd)]
        logger.debug("ssh host=%s cmd=%s", self.host.name, shlex.join(cmd_list))
        try:
            proc = subprocess.run(full, capture_output=True, input=stdin, timeout=timeout, check=False)
        except FileNotFoundError as exc:
            raise TransportUnreachable(self.host.name, str(exc)) from exc
        except subprocess.TimeoutExpired:
            return self._raise_for_status(CommandResult(cmd_list, "", "timeout", TIMEOUT_RC), check)
        stdout = proc.stdout.decode(errors="replace")
        stderr = proc.stderr.decode(errors="replace")
        if proc.returncode == SSH_UNREACHABLE_RC:
            raise TransportUnreachable(self.host.name, stderr.strip())
        return self._raise_for_status(CommandResult(cmd_list, stdout, stderr, proc.returncode), check)

    def read_file(self, path: Path) -> Optional[str]:
        result = self.run(
            ["sh", "-c", 'test -f "$1" || exit 3; cat -- "$1"', "sh", str(path)],
            check=False,
        )
        if result.returncode == 3:
            return None
        self._raise_for_status(result, True)
        return result.stdout

    def write_file(self, path: Path, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []
        if current != content:
            changed = True
            reasons.append("content")
            self.run(["mkdir", "-p", str(path.parent)])
            self.run(["sh", "-c", 'cat > "$1"', "sh", str(path)], stdin=content.encode())
        if mode is not None and self.file_mode(path) != mode:
            changed = True
            reasons.append(f"mode->{mode:04o}")
            self.run(["chmod", f"{mode:04o}", str(path)])
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def ensure_directory(self, path: Path, *, mode: Optional[int]) -> tuple[bool, str]:
        changed = False
        reasons: list[str] = []
        exists = self.run(["test", "-d", str(path)], check=False).returncode == 0
        if not exists:
            changed = True
            reasons.append("created")
            self.run(["rm", "-f", str(path)])
            self.run(["mkdir", "-p", str(path)])
        if mode is not None and self.file_mode(path) != mode:
            changed = True
            reasons.append(f"mode->{mode:04o}")
            self.run(["chmod", f"{mode:04o}", str(path)])
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail

    def remove_path(self, path: Path) -> bool:
        if self.run(["test", "-e", str(path)], check=False).returncode != 0:
            return False
        self.run(["rm", "-rf", "--", str(path)])
        return True

    def file_mode(self, path: Path) -> Optional[int]:
        result = self.run(["stat", "-c", "%a", str(path)], check=False)
        if result.returncode != 0:
            return None
        return int(result.stdout.strip(), 8)

    def set_ownership(
        self, path: Path, *, owner: Optional[str], group: Optional[str], recursive: bool = False
    ) -> tuple[bool, str]:
        if owner is None and group is None:
            return False, "noop"
        current = self.run(["stat", "-c", "%U:%G", str(path)]).stdout.strip()
        current_owner, _, current_group = current.partition(":")
        if not recursive and (owner is None or owner == current_owner) and (
            group is None or group == current_group
        ):
            return False, "noop"
        spec = f"{owner or ''}:{group or ''}" if group else str(owner)
        cmd = ["chown"]
        if recursive:
            cmd.append("-R")
        self.run(cmd + [spec, str(path)])
        return True, f"owner->{spec}"

    def copy(
        self,
        source: Path,
        dest: Path,
        *,
        mode: Optional[int] = None,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> tuple[bool, str]:
        if source.is_dir():
            self.run(["mkdir", "-p", str(dest)])
            self.run(["tar", "-C", str(dest), "-xf", "-"], stdin=self._tar_bytes(source))
            count = sum(1 for item in source.rglob("*") if item.is_file())
            if mode is not None:
                self.run(["find", str(dest), "-type", "f", "-exec", "chmod", f"{mode:04o}", "{}", "+"])
        else:
            self.run(["mkdir", "-p", str(dest.parent)])
            self.run(["sh", "-c", 'cat > "$1"', "sh", str(dest)], stdin=source.read_bytes())
            count = 1
            if mode is not None:
                self.run(["chmod", f"{mode:04o}", str(dest)])
        self.set_ownership(dest, owner=owner, group=group, recursive=True)
        return True, f"copied {count} file(s)"

    @staticmethod
    def _tar_bytes(source: Path) -> bytes:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as archive:
            for item in sorted(source.iterdir()):
                archive.add(item, arcname=item.name)
        return buffer.getvalue()


def executor_for(host: HostConfig) -> Executor:
    if host.connection == "local":
        return LocalExecutor(host)
    if host.connection == "ssh":
        return SSHExecutor(host)
    raise ValueError(f"Unknown connection type '{host.connection}'")
