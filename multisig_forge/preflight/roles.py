"""
Role Registry — in-process model of the generated Roles contract.

Mirrors the contract's storage and guards so role changes and verdicts can
be previewed before anything is deployed. Rejections raise ValueError with
the same text the contract reverts with.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from multisig_forge.configuration.schema import (
    ADMIN_ROLE_ID,
    PermissionTag,
    RoleConfig,
    normalize_address,
)

logger = logging.getLogger(__name__)


@dataclass
class RoleState:
    """One registered role, including its ordered membership collection."""

    id: str
    name: str
    description: str
    level: int
    permissions: set[PermissionTag] = field(default_factory=set)
    members: list[str] = field(default_factory=list)

    @property
    def member_count(self) -> int:
        return len(self.members)


def _swap_and_pop(items: list[str], value: str) -> None:
    """Remove `value` by moving the last element into its slot."""
    for i, current in enumerate(items):
        if current == value:
            items[i] = items[-1]
            items.pop()
            return


class RoleRegistry:
    """
    Role storage with the Roles contract's exclusivity rules.

    Every member holds at most one role and appears in exactly that role's
    collection. The reserved admin role is seated only at construction.
    """

    def __init__(self, config: RoleConfig) -> None:
        self.name = config.name
        self.is_active = True
        self.roles: dict[str, RoleState] = {}
        self.member_roles: dict[str, str] = {}
        self.members: list[str] = []

        for role in config.enabled_roles:
            self._register(role.id, role.display_name, role.description, role.level)
            self.roles[role.id].permissions = set(role.permissions)
        for address, role_id in config.member_roles.items():
            self._seat(address, role_id)

    # ── Internal mutators ────────────────────────────────────

    def _register(self, role_id: str, name: str, description: str, level: int) -> None:
        self.roles[role_id] = RoleState(id=role_id, name=name, description=description, level=level)

    def _seat(self, member: str, role_id: str) -> None:
        old = self.member_roles.get(member)
        if old is not None:
            _swap_and_pop(self.roles[old].members, member)
        else:
            self.members.append(member)
        self.member_roles[member] = role_id
        self.roles[role_id].members.append(member)

    def _require(self, caller: str, permission: PermissionTag) -> None:
        if not self.is_active:
            raise ValueError("Roles contract is paused")
        if not self.has_member_permission(caller, permission):
            raise ValueError("Insufficient permissions")

    # ── Membership ───────────────────────────────────────────

    def assign_role(self, caller: str, member: str, role_id: str) -> None:
        """
        Seat `member` in `role_id`, moving them out of any previous role.

        Raises:
            ValueError: Caller lacks ASSIGN_ROLE, unknown role, admin role,
                zero address, or the member currently holds admin.
        """
        self._require(caller, PermissionTag.ASSIGN_ROLE)
        if role_id not in self.roles:
            raise ValueError("Role does not exist")
        if role_id == ADMIN_ROLE_ID:
            raise ValueError("Cannot assign admin role")
        member = normalize_address(member)
        if int(member, 16) == 0:
            raise ValueError("Invalid member address")
        if self.member_roles.get(member) == ADMIN_ROLE_ID:
            raise ValueError("Cannot reassign admin role holder")
        self._seat(member, role_id)
        logger.debug("Assigned %s to role %s", member, role_id)

    def remove_role(self, caller: str, member: str) -> None:
        self._require(caller, PermissionTag.REMOVE_ROLE)
        member = normalize_address(member)
        if member not in self.member_roles:
            raise ValueError("Member does not exist")
        if self.member_roles[member] == ADMIN_ROLE_ID:
            raise ValueError("Cannot remove admin role")
        old = self.member_roles.pop(member)
        _swap_and_pop(self.roles[old].members, member)
        _swap_and_pop(self.members, member)

    # ── Role definitions ─────────────────────────────────────

    def create_role(self, caller: str, role_id: str, name: str, description: str, level: int) -> None:
        self._require(caller, PermissionTag.CREATE_ROLE)
        if role_id in self.roles:
            raise ValueError("Role already exists")
        if not role_id:
            raise ValueError("Role id required")
        if not 0 <= level <= 100:
            raise ValueError("Level must be between 0 and 100")
        self._register(role_id, name, description, level)

    def delete_role(self, caller: str, role_id: str) -> None:
        self._require(caller, PermissionTag.DELETE_ROLE)
        if role_id not in self.roles:
            raise ValueError("Role does not exist")
        if role_id == ADMIN_ROLE_ID:
            raise ValueError("Cannot delete admin role")
        if self.roles[role_id].member_count:
            raise ValueError("Role still has members")
        del self.roles[role_id]

    def grant_permission(self, caller: str, role_id: str, permission: PermissionTag | str) -> None:
        self._require(caller, PermissionTag.MODIFY_PERMISSIONS)
        if role_id not in self.roles:
            raise ValueError("Role does not exist")
        self.roles[role_id].permissions.add(PermissionTag(permission))

    def revoke_permission(self, caller: str, role_id: str, permission: PermissionTag | str) -> None:
        self._require(caller, PermissionTag.MODIFY_PERMISSIONS)
        if role_id not in self.roles:
            raise ValueError("Role does not exist")
        self.roles[role_id].permissions.discard(PermissionTag(permission))

    # ── Emergency ────────────────────────────────────────────

    def emergency_pause(self, caller: str) -> None:
        if not self.has_member_permission(caller, PermissionTag.EMERGENCY_PAUSE):
            raise ValueError("Insufficient permissions")
        self.is_active = False
        logger.warning("Roles paused by %s", caller)

    def emergency_unpause(self) -> None:
        self.is_active = True

    # ── Queries ──────────────────────────────────────────────

    def get_member_role(self, member: str) -> str | None:
        return self.member_roles.get(member.lower())

    def has_member_role(self, member: str, role_id: str) -> bool:
        return self.get_member_role(member) == role_id

    def has_role_permission(self, role_id: str, permission: PermissionTag | str) -> bool:
        role = self.roles.get(role_id)
        return role is not None and PermissionTag(permission) in role.permissions

    def has_member_permission(self, member: str, permission: PermissionTag | str) -> bool:
        role_id = self.get_member_role(member)
        return role_id is not None and self.has_role_permission(role_id, permission)

    def meets_role_requirement(self, member: str, role_id: str) -> bool:
        """True if the member holds `role_id` or a strictly higher-level role."""
        held = self.get_member_role(member)
        if held is None or role_id not in self.roles:
            return False
        if held == role_id:
            return True
        return self.roles[held].level > self.roles[role_id].level

    def is_role_higher(self, role_a: str, role_b: str) -> bool:
        return self.role_level(role_a) > self.role_level(role_b)

    def role_level(self, role_id: str) -> int:
        if role_id not in self.roles:
            raise ValueError("Role does not exist")
        return self.roles[role_id].level

    def members_of(self, role_id: str) -> list[str]:
        return list(self.roles[role_id].members) if role_id in self.roles else []

    def can_execute_transaction(self, member: str) -> bool:
        return self.has_member_permission(member, PermissionTag.EXECUTE_TRANSACTION)

    def can_approve_transaction(self, member: str) -> bool:
        return self.has_member_permission(member, PermissionTag.APPROVE_TRANSACTION)
