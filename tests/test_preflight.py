"""
Tests for the preflight evaluator.

Validates:
- Role exclusivity across assign / reassign / remove sequences
- The reserved admin role
- Policy check order and the daily window
- Tier short-circuit in the manager verdict
- The end-to-end treasury scenario
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from multisig_forge.configuration.schema import (
    AmountRule,
    PermissionTag,
    PolicyConfig,
    RoleConfig,
    RoleDefinition,
    SystemConfig,
)
from multisig_forge.errors import ConfigurationError
from multisig_forge.generation.identifiers import WEI_PER_ETH, eth_to_wei
from multisig_forge.preflight.policy import SECONDS_PER_DAY, SpendingPolicy
from multisig_forge.preflight.roles import RoleRegistry
from multisig_forge.preflight.validator import TransactionValidator

ADMIN = "0x1111111111111111111111111111111111111111"
MANAGER = "0x2222222222222222222222222222222222222222"
ALICE = "0x3333333333333333333333333333333333333333"
BOB = "0x4444444444444444444444444444444444444444"
RECIPIENT = "0x5555555555555555555555555555555555555555"
TOKEN = "0x6666666666666666666666666666666666666666"


class FakeClock:
    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _role_config() -> RoleConfig:
    return RoleConfig(
        roles=[
            RoleDefinition(id="admin", display_name="Admin", level=100, permissions=set(PermissionTag)),
            RoleDefinition(
                id="manager", display_name="Manager", level=80,
                permissions={
                    PermissionTag.ASSIGN_ROLE,
                    PermissionTag.REMOVE_ROLE,
                    PermissionTag.EXECUTE_TRANSACTION,
                },
            ),
            RoleDefinition(
                id="member", display_name="Member", level=40,
                permissions={PermissionTag.EXECUTE_TRANSACTION},
            ),
            RoleDefinition(id="viewer", display_name="Viewer", level=10,
                           permissions={PermissionTag.VIEW_TRANSACTIONS}),
        ],
        member_roles={ADMIN: "admin", MANAGER: "manager"},
    )


class TestRoleRegistry:
    def setup_method(self):
        self.registry = RoleRegistry(_role_config())

    def _assert_exclusive(self):
        for member, role_id in self.registry.member_roles.items():
            holders = [r.id for r in self.registry.roles.values() if member in r.members]
            assert holders == [role_id]
        assert sorted(self.registry.members) == sorted(self.registry.member_roles)

    def test_seeded_members(self):
        assert self.registry.get_member_role(ADMIN) == "admin"
        assert self.registry.members_of("manager") == [MANAGER]
        self._assert_exclusive()

    def test_assign_reassign_remove(self):
        self.registry.assign_role(MANAGER, ALICE, "member")
        self.registry.assign_role(MANAGER, BOB, "member")
        self.registry.assign_role(MANAGER, ALICE, "viewer")
        self._assert_exclusive()
        assert self.registry.members_of("member") == [BOB]
        assert self.registry.members_of("viewer") == [ALICE]

        self.registry.remove_role(MANAGER, BOB)
        self._assert_exclusive()
        assert self.registry.members_of("member") == []
        assert self.registry.get_member_role(BOB) is None

    def test_swap_and_pop_order(self):
        for address in (ALICE, BOB, RECIPIENT):
            self.registry.assign_role(MANAGER, address, "member")
        self.registry.remove_role(MANAGER, ALICE)
        assert self.registry.members_of("member") == [RECIPIENT, BOB]

    def test_admin_cannot_be_assigned(self):
        with pytest.raises(ValueError, match="Cannot assign admin role"):
            self.registry.assign_role(ADMIN, ALICE, "admin")

    def test_admin_holder_cannot_be_moved_or_removed(self):
        with pytest.raises(ValueError, match="Cannot reassign admin role holder"):
            self.registry.assign_role(ADMIN, ADMIN, "member")
        with pytest.raises(ValueError, match="Cannot remove admin role"):
            self.registry.remove_role(ADMIN, ADMIN)
        assert self.registry.get_member_role(ADMIN) == "admin"

    def test_caller_needs_permission(self):
        self.registry.assign_role(MANAGER, ALICE, "member")
        with pytest.raises(ValueError, match="Insufficient permissions"):
            self.registry.assign_role(ALICE, BOB, "member")

    def test_unknown_role_and_zero_address(self):
        with pytest.raises(ValueError, match="Role does not exist"):
            self.registry.assign_role(MANAGER, ALICE, "ghost")
        with pytest.raises(ValueError, match="Invalid member address"):
            self.registry.assign_role(MANAGER, "0x" + "0" * 40, "member")

    def test_meets_role_requirement(self):
        self.registry.assign_role(MANAGER, ALICE, "member")
        assert self.registry.meets_role_requirement(ADMIN, "manager")
        assert self.registry.meets_role_requirement(MANAGER, "manager")
        assert not self.registry.meets_role_requirement(ALICE, "manager")
        assert not self.registry.meets_role_requirement(BOB, "member")

    def test_pause_blocks_changes(self):
        self.registry.emergency_pause(ADMIN)
        with pytest.raises(ValueError, match="paused"):
            self.registry.assign_role(MANAGER, ALICE, "member")
        self.registry.emergency_unpause()
        self.registry.assign_role(MANAGER, ALICE, "member")

    def test_role_definitions(self):
        self.registry.create_role(ADMIN, "auditor", "Auditor", "", 30)
        self.registry.grant_permission(ADMIN, "auditor", "VIEW_TRANSACTIONS")
        assert self.registry.has_role_permission("auditor", PermissionTag.VIEW_TRANSACTIONS)
        self.registry.revoke_permission(ADMIN, "auditor", PermissionTag.VIEW_TRANSACTIONS)
        assert not self.registry.has_role_permission("auditor", "view_transactions")
        self.registry.delete_role(ADMIN, "auditor")
        assert "auditor" not in self.registry.roles
        with pytest.raises(ValueError, match="Cannot delete admin role"):
            self.registry.delete_role(ADMIN, "admin")
        with pytest.raises(ValueError, match="Role still has members"):
            self.registry.delete_role(ADMIN, "manager")


class TestSpendingPolicy:
    def setup_method(self):
        self.clock = FakeClock()
        self.policy = SpendingPolicy(
            PolicyConfig(
                max_tx_amount_eth=Decimal("1"),
                daily_limit_eth=Decimal("2"),
                allowed_tokens=[TOKEN],
                blacklisted_addresses=[BOB],
            ),
            clock=self.clock,
        )

    def test_daily_checked_before_max(self):
        result = self.policy.validate_transaction(ALICE, RECIPIENT, 3 * WEI_PER_ETH)
        assert not result.approved
        assert result.reason == "Daily limit exceeded"

    def test_max_amount(self):
        approved, reason = self.policy.validate_transaction(ALICE, RECIPIENT, eth_to_wei("1.5"))
        assert not approved
        assert reason == "Transaction amount exceeds maximum allowed"

    def test_blacklist_either_side(self):
        assert self.policy.validate_transaction(BOB, RECIPIENT, 1).reason == (
            "Transaction involves blacklisted address"
        )
        assert self.policy.validate_transaction(ALICE, BOB.upper().replace("0X", "0x"), 1).reason == (
            "Transaction involves blacklisted address"
        )

    def test_tokens(self):
        assert self.policy.validate_transaction(ALICE, RECIPIENT, 1, TOKEN).approved
        other = "0x7777777777777777777777777777777777777777"
        assert self.policy.validate_transaction(ALICE, RECIPIENT, 1, other).reason == "Token not allowed"
        assert self.policy.validate_transaction(ALICE, RECIPIENT, 1).approved

    def test_daily_limit_boundary(self):
        self.policy.record_spend(WEI_PER_ETH)
        assert self.policy.validate_transaction(ALICE, RECIPIENT, WEI_PER_ETH).approved
        assert self.policy.validate_transaction(ALICE, RECIPIENT, WEI_PER_ETH + 1).reason == (
            "Daily limit exceeded"
        )

    def test_rollover(self):
        self.policy.record_spend(2 * WEI_PER_ETH)
        assert self.policy.current_daily_spent() == 2 * WEI_PER_ETH
        assert not self.policy.validate_transaction(ALICE, RECIPIENT, 1).approved

        self.clock.now += SECONDS_PER_DAY
        assert self.policy.current_daily_spent() == 0
        assert self.policy.validate_transaction(ALICE, RECIPIENT, WEI_PER_ETH).approved
        self.policy.record_spend(WEI_PER_ETH)
        assert self.policy.daily_spent == WEI_PER_ETH
        assert self.policy.last_reset_day == self.policy.current_day()

    def test_pause(self):
        self.policy.pause()
        assert self.policy.validate_transaction(ALICE, RECIPIENT, 1).reason == "Policy is not active"
        with pytest.raises(ValueError):
            self.policy.record_spend(1)
        self.policy.activate()
        assert self.policy.validate_transaction(ALICE, RECIPIENT, 1).approved


class TestTransactionValidator:
    def _config(self, amount_rules, daily="100", max_tx="100") -> SystemConfig:
        return SystemConfig(
            roles=_role_config().model_copy(
                update={"member_roles": {ADMIN: "admin", MANAGER: "manager", ALICE: "member", BOB: "viewer"}}
            ),
            policy=PolicyConfig(
                max_tx_amount_eth=Decimal(max_tx),
                daily_limit_eth=Decimal(daily),
                amount_rules=amount_rules,
            ),
        )

    def test_tier_short_circuit(self):
        validator = TransactionValidator.from_config(self._config([
            AmountRule(threshold_eth=Decimal("0.1"), required_role_id="member"),
            AmountRule(threshold_eth=Decimal("1"), required_role_id="manager"),
            AmountRule(threshold_eth=Decimal("10"), required_role_id="manager"),
        ]))
        for amount in ("5", "50"):
            result = validator.validate_eth(ALICE, RECIPIENT, amount)
            assert not result.approved
            assert result.reason == "Requires manager approval for 1 ETH+ transactions"

    def test_tiers_walked_in_declaration_order(self):
        validator = TransactionValidator.from_config(self._config([
            AmountRule(threshold_eth=Decimal("10"), required_role_id="admin"),
            AmountRule(threshold_eth=Decimal("0.1"), required_role_id="manager"),
        ]))
        assert validator.validate_eth(ALICE, RECIPIENT, "20").reason == (
            "Requires admin approval for 10 ETH+ transactions"
        )
        assert validator.validate_eth(ALICE, RECIPIENT, "5").reason == (
            "Requires manager approval for 0.1 ETH+ transactions"
        )

    def test_first_matching_tier_reported(self):
        validator = TransactionValidator.from_config(self._config([
            AmountRule(threshold_eth=Decimal("0.1"), required_role_id="member"),
            AmountRule(threshold_eth=Decimal("1"), required_role_id="manager"),
            AmountRule(threshold_eth=Decimal("10"), required_role_id="admin"),
        ]))
        assert validator.validate_eth(ALICE, RECIPIENT, "0.5").approved
        assert validator.validate_eth(ALICE, RECIPIENT, "5").reason == (
            "Requires manager approval for 1 ETH+ transactions"
        )
        assert validator.validate_eth(MANAGER, RECIPIENT, "5").approved
        assert validator.validate_eth(MANAGER, RECIPIENT, "10").reason == (
            "Requires admin approval for 10 ETH+ transactions"
        )

    def test_execute_permission_required(self):
        validator = TransactionValidator.from_config(self._config([]))
        assert validator.validate_eth(BOB, RECIPIENT, "0.01").reason == "Insufficient role permissions"
        unknown = "0x8888888888888888888888888888888888888888"
        assert validator.validate_eth(unknown, RECIPIENT, "0.01").reason == "Insufficient role permissions"

    def test_invalid_config_rejected(self):
        with pytest.raises(ConfigurationError):
            TransactionValidator.from_config(self._config([
                AmountRule(threshold_eth=Decimal("1"), required_role_id="treasurer"),
            ]))

    def test_treasury_scenario(self):
        config = SystemConfig(
            roles=RoleConfig(
                roles=[
                    RoleDefinition(id="admin", display_name="Admin", level=100,
                                   permissions={PermissionTag.EXECUTE_TRANSACTION}),
                    RoleDefinition(id="member", display_name="Member", level=40,
                                   permissions={PermissionTag.EXECUTE_TRANSACTION}),
                ],
                member_roles={ADMIN: "admin", ALICE: "member"},
            ),
            policy=PolicyConfig(
                max_tx_amount_eth=Decimal("10"),
                daily_limit_eth=Decimal("2"),
                amount_rules=[AmountRule(threshold_eth=Decimal("0.5"), required_role_id="admin")],
            ),
        )
        validator = TransactionValidator.from_config(config, clock=FakeClock())

        assert validator.execute(ALICE, RECIPIENT, eth_to_wei("0.3")).approved
        rejected = validator.execute(ALICE, RECIPIENT, eth_to_wei("0.7"))
        assert not rejected.approved
        assert rejected.reason == "Requires admin approval for 0.5 ETH+ transactions"

        assert validator.execute(ADMIN, RECIPIENT, eth_to_wei("0.7")).approved
        assert validator.execute(ADMIN, RECIPIENT, eth_to_wei("0.4")).approved
        assert validator.policy.current_daily_spent() == eth_to_wei("1.4")

        final = validator.execute(ADMIN, RECIPIENT, eth_to_wei("0.7"))
        assert not final.approved
        assert final.reason == "Daily limit exceeded"
        assert validator.policy.current_daily_spent() == eth_to_wei("1.4")
