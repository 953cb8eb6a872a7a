"""
Configuration Validation — cross-field checks run before any text is generated.

Pydantic enforces shapes; this module enforces the rules that make a
configuration generatable and deployable. Every failure is a
ConfigurationError, raised before a single line of module text exists.
"""

from __future__ import annotations

import logging
import re

from multisig_forge.configuration.schema import (
    ADMIN_ROLE_ID,
    PolicyConfig,
    RoleConfig,
    SystemConfig,
    is_valid_address,
)
from multisig_forge.errors import ConfigurationError
from multisig_forge.generation.identifiers import (
    amount_identifier,
    derive_unique,
    eth_to_wei,
    format_eth,
)
from multisig_forge.generation.roles import role_identifiers

logger = logging.getLogger(__name__)

ROLE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")
MIN_OWNERS = 2


def validate_role_config(config: RoleConfig) -> None:
    """
    Check role ids, derived identifiers and the assignment table.

    Raises:
        ConfigurationError: On empty/duplicate/unsafe ids, identifier
            collisions, or assignments to unknown or disabled roles.
    """
    seen_ids: set[str] = set()
    for role in config.roles:
        if not role.id or not ROLE_ID_PATTERN.match(role.id):
            raise ConfigurationError(
                f"Invalid role id {role.id!r}: use letters, digits, '_' or '-'"
            )
        if role.id in seen_ids:
            raise ConfigurationError(f"Duplicate role id: {role.id!r}")
        seen_ids.add(role.id)

    role_identifiers(config)

    enabled_ids = {r.id for r in config.enabled_roles}
    for address, role_id in config.member_roles.items():
        if role_id not in seen_ids:
            raise ConfigurationError(f"Member {address} assigned to unknown role {role_id!r}")
        if role_id not in enabled_ids:
            raise ConfigurationError(f"Member {address} assigned to disabled role {role_id!r}")


def validate_policy_config(config: PolicyConfig, roles: RoleConfig | None = None) -> None:
    """
    Check limits, approval settings and amount tiers.

    When `roles` is given, every enabled tier must require an enabled role,
    and an approval threshold may not exceed the number of assigned members.
    """
    eth_to_wei(config.max_tx_amount_eth)
    eth_to_wei(config.daily_limit_eth)

    if config.approval_threshold < 1:
        raise ConfigurationError(
            f"Approval threshold must be at least 1, got {config.approval_threshold}"
        )
    if config.time_lock_seconds < 0:
        raise ConfigurationError(
            f"Time lock must be non-negative, got {config.time_lock_seconds}"
        )

    rules = config.enabled_amount_rules
    for rule in rules:
        eth_to_wei(rule.threshold_eth)
    derive_unique(
        rules,
        lambda r: amount_identifier(r.threshold_eth),
        kind="amount tier",
        label=lambda r: f"{format_eth(r.threshold_eth)} ETH",
    )

    if roles is None:
        return

    enabled_ids = {r.id for r in roles.enabled_roles}
    for rule in rules:
        if rule.required_role_id not in enabled_ids:
            raise ConfigurationError(
                f"Amount tier {format_eth(rule.threshold_eth)} ETH requires unknown "
                f"or disabled role {rule.required_role_id!r}"
            )

    if config.require_approval:
        member_count = len(roles.member_roles)
        if config.approval_threshold > member_count:
            raise ConfigurationError(
                f"Approval threshold {config.approval_threshold} exceeds member "
                f"count {member_count}"
            )


def validate_owners(owners: list[str]) -> list[str]:
    """
    Validate multisig owners and return them normalized.

    Requires at least two distinct, syntactically valid addresses.
    """
    cleaned = [o.strip() for o in owners if o and o.strip()]
    if len(cleaned) < MIN_OWNERS:
        raise ConfigurationError(f"At least {MIN_OWNERS} owners are required")
    for owner in cleaned:
        if not is_valid_address(owner):
            raise ConfigurationError(f"Invalid owner address: {owner}")
    normalized = [o.lower() for o in cleaned]
    if len(set(normalized)) != len(normalized):
        raise ConfigurationError("Duplicate owner addresses")
    return normalized


def validate_threshold(threshold: int, owner_count: int) -> None:
    """A multisig threshold must lie in 1..owner_count."""
    if threshold < 1:
        raise ConfigurationError(f"Threshold must be at least 1, got {threshold}")
    if threshold > owner_count:
        raise ConfigurationError(
            f"Threshold {threshold} exceeds owner count {owner_count}"
        )


def validate_system_config(config: SystemConfig) -> None:
    """Run every check that must pass before a system is generated."""
    validate_role_config(config.roles)
    validate_policy_config(config.policy, config.roles)
    if config.multisig is not None:
        owners = validate_owners(config.multisig.owners)
        validate_threshold(config.multisig.threshold, len(owners))

    if ADMIN_ROLE_ID not in {r.id for r in config.roles.enabled_roles}:
        logger.warning(
            "Configuration '%s' declares no '%s' role; no member can be seated as admin",
            config.roles.name, ADMIN_ROLE_ID,
        )
