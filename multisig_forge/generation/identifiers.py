"""
Identifier Deriver — canonical program identifiers from free text and amounts.

Role names become membership-array and accessor names; ETH thresholds become
tier predicate names. Both derivations are pure, and `derive_unique` refuses
to let two distinct inputs share an identifier.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, TypeVar

from multisig_forge.errors import ConfigurationError

T = TypeVar("T")

WEI_PER_ETH = 10**18
ROLE_DIGIT_PREFIX = "role"

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def to_decimal(amount: Decimal | int | float | str) -> Decimal:
    """Coerce an ETH amount to Decimal without going through binary floats."""
    if isinstance(amount, Decimal):
        return amount
    try:
        return Decimal(str(amount))
    except InvalidOperation as exc:
        raise ConfigurationError(f"Invalid ETH amount: {amount!r}") from exc


def format_eth(amount: Decimal | int | float | str) -> str:
    """Canonical text form of an ETH amount: '0.1', '1', '12.5' (no exponent)."""
    value = to_decimal(amount)
    text = format(value.normalize(), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def eth_to_wei(amount: Decimal | int | float | str) -> int:
    """Exact ETH → wei conversion. Sub-wei precision is a configuration error."""
    value = to_decimal(amount)
    if value < 0:
        raise ConfigurationError(f"ETH amount must be non-negative, got {amount}")
    wei = value * WEI_PER_ETH
    if wei != wei.to_integral_value():
        raise ConfigurationError(f"ETH amount {amount} has more than 18 decimal places")
    return int(wei)


def role_identifier(name: str) -> str:
    """
    Derive a function/array identifier from a role name.

    Lower-cases, strips every non-alphanumeric character, and prefixes
    'role' when the result would start with a digit.
    """
    ident = _NON_ALNUM.sub("", (name or "").lower())
    if not ident:
        raise ConfigurationError(
            f"Role name {name!r} has no alphanumeric characters to derive an identifier from"
        )
    if ident[0].isdigit():
        ident = ROLE_DIGIT_PREFIX + ident
    return ident


def amount_identifier(threshold_eth: Decimal | int | float | str) -> str:
    """
    Derive a tier predicate identifier from an ETH threshold.

    Integer and fractional parts are encoded separately around 'dot'
    ('isOver0dot1eth', 'isOver1eth'), so 0.1 and 1 never collide.
    """
    value = to_decimal(threshold_eth)
    if value < 0:
        raise ConfigurationError(f"Threshold must be non-negative, got {threshold_eth}")
    whole, _, fraction = format_eth(value).partition(".")
    if fraction:
        return f"isOver{whole}dot{fraction}eth"
    return f"isOver{whole}eth"


def capitalize(identifier: str) -> str:
    """'manager' → 'Manager', 'isOver1eth' → 'IsOver1eth'."""
    return identifier[:1].upper() + identifier[1:]


def derive_unique(
    items: Iterable[T],
    derive: Callable[[T], str],
    kind: str,
    label: Callable[[T], str] = str,
) -> list[tuple[T, str]]:
    """
    Derive identifiers for every item, failing fast on collisions.

    Args:
        items: Inputs in declaration order.
        derive: Identifier derivation (e.g. role_identifier).
        kind: Human label for error messages ('role', 'amount tier').
        label: How to render an input in an error message.

    Returns:
        (item, identifier) pairs in input order.

    Raises:
        ConfigurationError: If two inputs derive the same identifier.
    """
    seen: dict[str, T] = {}
    pairs: list[tuple[T, str]] = []
    for item in items:
        ident = derive(item)
        if ident in seen:
            raise ConfigurationError(
                f"Identifier collision: {kind} {label(seen[ident])!r} and "
                f"{label(item)!r} both derive '{ident}'"
            )
        seen[ident] = item
        pairs.append((item, ident))
    return pairs
