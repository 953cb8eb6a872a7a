"""
Transaction Validator — in-process model of IntegratedWalletManager.

Combines a RoleRegistry with a SpendingPolicy the way the generated manager
combines the Roles and Policy contracts:

1. the member must be able to execute transactions;
2. amount tiers are walked in declaration order and the first tier whose
   threshold is met and whose required role the member neither holds nor
   outranks rejects the transfer;
3. otherwise the policy verdict is returned unchanged.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable

from multisig_forge.configuration.schema import (
    NATIVE_TOKEN,
    REASON_NO_EXECUTE_PERMISSION,
    SystemConfig,
    normalize_address,
    tier_rejection_reason,
)
from multisig_forge.configuration.validation import validate_system_config
from multisig_forge.generation.identifiers import eth_to_wei
from multisig_forge.preflight.policy import SpendingPolicy, ValidationResult
from multisig_forge.preflight.roles import RoleRegistry

logger = logging.getLogger(__name__)


class TransactionValidator:
    """Role-aware transaction checks over a registry and a policy."""

    def __init__(self, registry: RoleRegistry, policy: SpendingPolicy) -> None:
        self.registry = registry
        self.policy = policy

    @classmethod
    def from_config(
        cls,
        config: SystemConfig,
        clock: Callable[[], int] | None = None,
    ) -> TransactionValidator:
        """Build a validator from a configuration, validating it first."""
        validate_system_config(config)
        return cls(RoleRegistry(config.roles), SpendingPolicy(config.policy, clock=clock))

    def validate_transaction_with_role(
        self,
        member: str,
        recipient: str,
        amount_wei: int,
        token: str = NATIVE_TOKEN,
    ) -> ValidationResult:
        """
        Verdict for `member` sending `amount_wei` of `token` to `recipient`.

        Returns:
            ValidationResult whose reason is the exact string the deployed
            manager would return.
        """
        member = normalize_address(member)
        if not self.registry.can_execute_transaction(member):
            return ValidationResult(False, REASON_NO_EXECUTE_PERMISSION)

        for tier in self.policy.tiers:
            if tier.applies(amount_wei) and not self.registry.meets_role_requirement(
                member, tier.required_role_id
            ):
                logger.debug(
                    "Tier %s rejects %s: requires %s",
                    tier.identifier, member, tier.required_role_id,
                )
                return ValidationResult(
                    False,
                    tier_rejection_reason(tier.required_role_id, tier.threshold_label),
                )

        return self.policy.validate_transaction(member, recipient, amount_wei, token)

    def validate_eth(
        self,
        member: str,
        recipient: str,
        amount_eth: Decimal | int | str,
        token: str = NATIVE_TOKEN,
    ) -> ValidationResult:
        """Same as validate_transaction_with_role, with the amount in ETH."""
        return self.validate_transaction_with_role(member, recipient, eth_to_wei(amount_eth), token)

    def execute(
        self,
        member: str,
        recipient: str,
        amount_wei: int,
        token: str = NATIVE_TOKEN,
    ) -> ValidationResult:
        """Validate and, when approved, count the amount against today's limit."""
        result = self.validate_transaction_with_role(member, recipient, amount_wei, token)
        if result.approved:
            self.policy.record_spend(amount_wei)
        return result
