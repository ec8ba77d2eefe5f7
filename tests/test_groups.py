"""Unit tests for docker group membership helpers."""
from __future__ import annotations

from types import SimpleNamespace

import pytest
from conftest import FakeRunner

from dockprov import groups
from dockprov.groups import (
    GroupMembershipSpec,
    apply_membership_plan,
    plan_membership,
    resolve_target_user,
)


def _raise_key_error(*args: object, **kwargs: object) -> None:
    raise KeyError


def _patch_databases(monkeypatch: pytest.MonkeyPatch, *, user=None, group=None) -> None:
    monkeypatch.setattr(
        groups.pwd, "getpwnam", (lambda name: user) if user else _raise_key_error
    )
    monkeypatch.setattr(
        groups.grp, "getgrnam", (lambda name: group) if group else _raise_key_error
    )


def test_explicit_user_wins() -> None:
    """An explicit user is used without consulting the environment."""
    assert resolve_target_user("alice", env={"SUDO_USER": "bob"}) == "alice"


def test_sudo_user_preferred_over_user() -> None:
    """SUDO_USER names the operator who escalated."""
    assert resolve_target_user(env={"SUDO_USER": "bob", "USER": "root"}) == "bob"


def test_sudo_user_root_is_ignored() -> None:
    """A root SUDO_USER falls through to USER."""
    assert resolve_target_user(env={"SUDO_USER": "root", "USER": "carol"}) == "carol"


def test_falls_back_to_passwd_entry(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without environment hints the current uid's passwd entry is used."""
    monkeypatch.setattr(groups.pwd, "getpwuid", lambda uid: SimpleNamespace(pw_name="dave"))

    assert resolve_target_user(env={}, uid=1000) == "dave"


def test_no_user_resolvable(monkeypatch: pytest.MonkeyPatch) -> None:
    """A uid without a passwd entry yields ``None``."""
    monkeypatch.setattr(groups.pwd, "getpwuid", _raise_key_error)

    assert resolve_target_user(env={}, uid=4242) is None


def test_missing_user_warns_and_plans_nothing(monkeypatch: pytest.MonkeyPatch) -> None:
    """A nonexistent user is a warning, never an error."""
    _patch_databases(monkeypatch)

    plan = plan_membership(GroupMembershipSpec(user="ghost"))

    assert plan.actions == []
    assert plan.warnings == ["User 'ghost' does not exist; skipping group add."]


def test_missing_group_is_created_before_membership(monkeypatch: pytest.MonkeyPatch) -> None:
    """The group is created when packages did not create it."""
    _patch_databases(monkeypatch, user=SimpleNamespace(pw_uid=1000, pw_gid=1000))

    plan = plan_membership(GroupMembershipSpec(user="alice"))

    assert [action.kind for action in plan.actions] == ["ensure-group", "add-member"]
    assert plan.actions[0].command == ["groupadd", "-f", "docker"]
    assert plan.actions[1].command == ["usermod", "-aG", "docker", "alice"]


def test_existing_member_needs_no_action(monkeypatch: pytest.MonkeyPatch) -> None:
    """Supplementary membership satisfies the plan."""
    _patch_databases(
        monkeypatch,
        user=SimpleNamespace(pw_uid=1000, pw_gid=1000),
        group=SimpleNamespace(gr_gid=998, gr_mem=["alice"]),
    )

    plan = plan_membership(GroupMembershipSpec(user="alice"))

    assert plan.satisfied
    assert plan.status.member


def test_primary_group_counts_as_membership(monkeypatch: pytest.MonkeyPatch) -> None:
    """A user whose primary gid is docker is already a member."""
    _patch_databases(
        monkeypatch,
        user=SimpleNamespace(pw_uid=1000, pw_gid=998),
        group=SimpleNamespace(gr_gid=998, gr_mem=[]),
    )

    assert plan_membership(GroupMembershipSpec(user="alice")).satisfied


def test_apply_runs_commands_privileged(monkeypatch: pytest.MonkeyPatch, make_executor,
                                        fake_runner: FakeRunner) -> None:
    """Each planned command goes through the privileged path."""
    _patch_databases(
        monkeypatch,
        user=SimpleNamespace(pw_uid=1000, pw_gid=1000),
        group=SimpleNamespace(gr_gid=998, gr_mem=[]),
    )
    plan = plan_membership(GroupMembershipSpec(user="alice"))

    outcomes = apply_membership_plan(plan, make_executor())

    assert len(outcomes) == 1
    assert fake_runner.calls == [["usermod", "-aG", "docker", "alice"]]
