"""
Spending Policy — in-process model of the generated Policy contract.

Amounts are integer wei. `validate_transaction` applies the same checks in
the same order as the contract and returns the same reason strings; the
daily window rolls over on its own when the clock enters a new day bucket.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from multisig_forge.configuration.schema import (
    NATIVE_TOKEN,
    REASON_APPROVED,
    REASON_BLACKLISTED,
    REASON_DAILY_LIMIT,
    REASON_MAX_AMOUNT,
    REASON_POLICY_INACTIVE,
    REASON_TOKEN_NOT_ALLOWED,
    PolicyConfig,
)
from multisig_forge.generation.identifiers import eth_to_wei, format_eth
from multisig_forge.generation.policy import tier_identifiers

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


@dataclass
class ValidationResult:
    """Verdict of a transaction check: approval flag plus the stable reason."""

    approved: bool
    reason: str

    def __iter__(self):
        # Unpacks like the contract's (bool, string) return.
        return iter((self.approved, self.reason))


@dataclass(frozen=True)
class AmountTier:
    """An enabled amount rule resolved to wei, with its predicate name."""

    identifier: str
    threshold_wei: int
    required_role_id: str
    threshold_label: str

    def applies(self, amount_wei: int) -> bool:
        return amount_wei >= self.threshold_wei


class SpendingPolicy:
    """
    Policy state: limits, allow/deny lists, the daily window and pause flag.

    Args:
        config: Validated policy configuration.
        clock: Returns the current unix time in seconds (block.timestamp).
    """

    def __init__(self, config: PolicyConfig, clock: Callable[[], int] | None = None) -> None:
        self.clock = clock or (lambda: int(time.time()))
        self.name = config.name
        self.is_active = True
        self.max_transaction_amount = eth_to_wei(config.max_tx_amount_eth)
        self.daily_limit = eth_to_wei(config.daily_limit_eth)
        self.require_approval = config.require_approval
        self.approval_threshold = config.approval_threshold
        self.time_lock_delay = config.time_lock_seconds
        self.allowed_tokens: set[str] = set(config.allowed_tokens)
        self.blacklisted_addresses: set[str] = set(config.blacklisted_addresses)
        self.daily_spent = 0
        self.last_reset_day = self.current_day()

        self.tiers: list[AmountTier] = [
            AmountTier(
                identifier=ident,
                threshold_wei=eth_to_wei(rule.threshold_eth),
                required_role_id=rule.required_role_id,
                threshold_label=format_eth(rule.threshold_eth),
            )
            for rule, ident in tier_identifiers(config)
        ]

    # ── Daily window ─────────────────────────────────────────

    def current_day(self) -> int:
        return self.clock() // SECONDS_PER_DAY

    def current_daily_spent(self) -> int:
        """Spend in the current day bucket; stale buckets count as zero."""
        if self.current_day() > self.last_reset_day:
            return 0
        return self.daily_spent

    def record_spend(self, amount_wei: int) -> None:
        if not self.is_active:
            raise ValueError(REASON_POLICY_INACTIVE)
        day = self.current_day()
        if day > self.last_reset_day:
            self.daily_spent = 0
            self.last_reset_day = day
        self.daily_spent += amount_wei

    # ── Validation ───────────────────────────────────────────

    def validate_transaction(
        self,
        sender: str,
        recipient: str,
        amount_wei: int,
        token: str = NATIVE_TOKEN,
    ) -> ValidationResult:
        """
        Check a transfer against the policy.

        Order: daily limit, per-transaction max, blacklist, token allow-list
        (skipped for the native asset). A paused policy rejects everything.
        """
        if not self.is_active:
            return ValidationResult(False, REASON_POLICY_INACTIVE)
        if self.current_daily_spent() + amount_wei > self.daily_limit:
            return ValidationResult(False, REASON_DAILY_LIMIT)
        if amount_wei > self.max_transaction_amount:
            return ValidationResult(False, REASON_MAX_AMOUNT)
        if sender.lower() in self.blacklisted_addresses or recipient.lower() in self.blacklisted_addresses:
            return ValidationResult(False, REASON_BLACKLISTED)
        token = token.lower()
        if token != NATIVE_TOKEN and token not in self.allowed_tokens:
            return ValidationResult(False, REASON_TOKEN_NOT_ALLOWED)
        return ValidationResult(True, REASON_APPROVED)

    # ── Administration ───────────────────────────────────────

    def update_limits(self, max_transaction_wei: int, daily_limit_wei: int) -> None:
        self.max_transaction_amount = max_transaction_wei
        self.daily_limit = daily_limit_wei

    def allow_token(self, token: str, allowed: bool = True) -> None:
        if allowed:
            self.allowed_tokens.add(token.lower())
        else:
            self.allowed_tokens.discard(token.lower())

    def blacklist(self, address: str, blacklisted: bool = True) -> None:
        if blacklisted:
            self.blacklisted_addresses.add(address.lower())
        else:
            self.blacklisted_addresses.discard(address.lower())

    def pause(self) -> None:
        self.is_active = False
        logger.warning("Policy '%s' paused", self.name)

    def activate(self) -> None:
        self.is_active = True
