"""Inspect, plan and apply docker group membership for the operator."""
from __future__ import annotations

import grp
import os
import pwd
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Literal

from .execution import CommandOutcome, Executor

DOCKER_GROUP = "docker"


@dataclass(slots=True)
class GroupMembershipSpec:
    """Desired membership of *user* in *group*."""

    user: str
    group: str = DOCKER_GROUP


@dataclass(slots=True)
class GroupMembershipStatus:
    """Current state of the user and group on the host."""

    user_exists: bool
    group_exists: bool
    member: bool = False
    uid: int | None = None
    gid: int | None = None


@dataclass(slots=True)
class GroupAction:
    """Single remediation step required to satisfy the desired state."""

    kind: Literal["ensure-group", "add-member"]
    description: str
    command: list[str]


@dataclass(slots=True)
class GroupMembershipPlan:
    """Aggregated actions and warnings required to satisfy the spec."""

    spec: GroupMembershipSpec
    status: GroupMembershipStatus
    actions: list[GroupAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def satisfied(self) -> bool:
        """``True`` when nothing needs to change."""
        return not self.actions


def resolve_target_user(
    explicit: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    uid: int | None = None,
) -> str | None:
    """Pick the user to enrol.

    Order: *explicit*, ``SUDO_USER`` (unless it is root), ``USER``, then the
    passwd entry of the current uid.
    """
    if explicit:
        return explicit
    environ = os.environ if env is None else env
    sudo_user = environ.get("SUDO_USER", "")
    if sudo_user and sudo_user != "root":
        return sudo_user
    if environ.get("USER"):
        return environ["USER"]
    try:
        return pwd.getpwuid(os.getuid() if uid is None else uid).pw_name
    except KeyError:
        return None


def inspect_membership(spec: GroupMembershipSpec) -> GroupMembershipStatus:
    """Return the current status for *spec* from the passwd/group databases."""
    try:
        pw_entry = pwd.getpwnam(spec.user)
    except KeyError:
        return GroupMembershipStatus(user_exists=False, group_exists=_group_exists(spec.group))

    try:
        group_entry = grp.getgrnam(spec.group)
    except KeyError:
        return GroupMembershipStatus(
            user_exists=True,
            group_exists=False,
            uid=pw_entry.pw_uid,
        )

    member = spec.user in group_entry.gr_mem or pw_entry.pw_gid == group_entry.gr_gid
    return GroupMembershipStatus(
        user_exists=True,
        group_exists=True,
        member=member,
        uid=pw_entry.pw_uid,
        gid=group_entry.gr_gid,
    )


def plan_membership(
    spec: GroupMembershipSpec,
    status: GroupMembershipStatus | None = None,
) -> GroupMembershipPlan:
    """Return a plan describing how to satisfy *spec* on the current host."""
    if status is None:
        status = inspect_membership(spec)
    plan = GroupMembershipPlan(spec=spec, status=status)

    if not status.user_exists:
        plan.warnings.append(f"User '{spec.user}' does not exist; skipping group add.")
        return plan

    if not status.group_exists:
        plan.actions.append(
            GroupAction(
                kind="ensure-group",
                description=f"Create group '{spec.group}'.",
                command=["groupadd", "-f", spec.group],
            )
        )

    if not status.member:
        plan.actions.append(
            GroupAction(
                kind="add-member",
                description=f"Add '{spec.user}' to group '{spec.group}'.",
                command=["usermod", "-aG", spec.group, spec.user],
            )
        )

    return plan


def apply_membership_plan(
    plan: GroupMembershipPlan,
    executor: Executor,
) -> list[CommandOutcome]:
    """Execute the commands described by *plan* as root."""
    return [executor.run_privileged(action.command) for action in plan.actions]


def _group_exists(name: str) -> bool:
    try:
        grp.getgrnam(name)
    except KeyError:
        return False
    return True


__all__ = [
    "DOCKER_GROUP",
    "GroupAction",
    "GroupMembershipPlan",
    "GroupMembershipSpec",
    "GroupMembershipStatus",
    "apply_membership_plan",
    "inspect_membership",
    "plan_membership",
    "resolve_target_user",
]
