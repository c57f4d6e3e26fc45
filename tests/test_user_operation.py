from hostforge_automation.executors import CommandResult
from hostforge_automation.operations.user import GroupOperation, UserOperation
from hostforge_automation.types import Check, HostConfig


class AccountsHost:
    def __init__(self, users=(), groups=(), memberships=None):
        self.host = HostConfig(name="local")
        self.users = set(users)
        self.memberships = {user: set(names) for user, names in (memberships or {}).items()}
        self.groups = set(groups)
        self.commands: list[list[str]] = []

    def run(self, command, *, check=True, env=None, cwd=None, timeout=None):  # noqa: ARG002
        cmd = [str(part) for part in command]
        self.commands.append(cmd)
        if cmd[0] == "getent":
            known = self.users if cmd[1] == "passwd" else self.groups
            return CommandResult(cmd, "", "", 0 if cmd[2] in known else 2)
        if cmd[0] == "id":
            if cmd[-1] not in self.users:
                return CommandResult(cmd, "", "no such user", 1)
            return CommandResult(cmd, " ".join(sorted(self.memberships.get(cmd[-1], set()))), "", 0)
        if cmd[0] == "usermod":
            self.memberships.setdefault(cmd[-1], set()).update(cmd[-2].split(","))
        if cmd[0] == "useradd":
            self.users.add(cmd[-1])
        if cmd[0] == "groupadd":
            self.groups.add(cmd[-1])
        return CommandResult(cmd, "", "", 0)


def test_user_created_with_groups_and_shell():
    fake = AccountsHost(groups={"app"})
    op = UserOperation({"user": "app", "groups": ["app"], "shell": "/sbin/nologin", "create_home": True})

    result = op.apply(HostConfig("local"), fake)

    assert result.changed is True
    assert fake.commands[-1] == ["useradd", "--shell", "/sbin/nologin", "--groups", "app", "--create-home", "app"]
    assert op.guard() == Check(
        "all",
        {"checks": [Check("user_exists", {"name": "app"}), Check("user_in_groups", {"name": "app", "groups": ["app"]})]},
    )


def test_user_noop_when_present():
    fake = AccountsHost(users={"app"})
    result = UserOperation({"user": "app"}).apply(HostConfig("local"), fake)

    assert result.changed is False
    assert fake.commands == [["getent", "passwd", "app"]]


def test_group_created():
    fake = AccountsHost()
    op = GroupOperation({"group": "app", "system": True})

    result = op.apply(HostConfig("local"), fake)

    assert result.changed is True
    assert fake.commands[-1] == ["groupadd", "--system", "app"]
    assert op.guard() == Check("group_exists", {"name": "app"})


def test_existing_user_appended_to_missing_groups():
    fake = AccountsHost(users={"app"}, groups={"app", "adm"}, memberships={"app": {"app"}})
    op = UserOperation({"user": "app", "groups": ["app", "adm"]})

    result = op.apply(HostConfig("local"), fake)

    assert result.changed is True
    assert result.details == "groups+=adm"
    assert fake.commands[-1] == ["usermod", "--append", "--groups", "adm", "app"]

    again = op.apply(HostConfig("local"), fake)
    assert again.changed is False
