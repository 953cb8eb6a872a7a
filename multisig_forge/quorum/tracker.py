"""
Quorum Tracker — confirmation bookkeeping for multisig transactions.

Holds a cached snapshot of PendingTransactions keyed by id. The snapshot is
not subscribed to the chain: callers `load` a fresh one after every
mutation they submit.

Rules:
- a confirmer counts once; confirming twice is a no-op
- only an existing confirmer may revoke
- execution requires at least `required_confirmations` confirmers
- an executed transaction can no longer be confirmed, revoked or executed

A rejected operation raises QuorumViolation and leaves the snapshot as it was.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from multisig_forge.configuration.schema import (
    PendingTransaction,
    TransactionKind,
    normalize_address,
)
from multisig_forge.errors import QuorumViolation

logger = logging.getLogger(__name__)


def is_confirmed_by(tx: PendingTransaction, address: str) -> bool:
    return address.strip().lower() in tx.confirmed_by


def can_execute(tx: PendingTransaction) -> bool:
    return not tx.executed and tx.confirmation_count >= tx.required_confirmations


class QuorumTracker:
    """
    Snapshot of a wallet's transactions with quorum-checked mutations.

    Args:
        transactions: Initial snapshot.
        owners: When given, only these addresses may confirm or revoke.
    """

    def __init__(
        self,
        transactions: Iterable[PendingTransaction] = (),
        owners: Iterable[str] | None = None,
    ) -> None:
        self._transactions: dict[int, PendingTransaction] = {}
        self.owners: set[str] | None = (
            {normalize_address(o) for o in owners} if owners is not None else None
        )
        self.load(transactions)

    def load(self, transactions: Iterable[PendingTransaction]) -> None:
        """Replace the snapshot."""
        self._transactions = {tx.id: tx for tx in transactions}

    def get(self, tx_id: int) -> PendingTransaction:
        try:
            return self._transactions[tx_id]
        except KeyError:
            raise QuorumViolation(tx_id, "unknown transaction") from None

    def all(self) -> list[PendingTransaction]:
        return [self._transactions[k] for k in sorted(self._transactions)]

    # ── Guards ───────────────────────────────────────────────

    def _check_owner(self, tx_id: int, address: str) -> str:
        address = normalize_address(address)
        if self.owners is not None and address not in self.owners:
            raise QuorumViolation(tx_id, f"{address} is not an owner")
        return address

    def check_confirm(self, tx_id: int, owner: str) -> str | None:
        """
        Raise if `owner` may not confirm `tx_id`.

        Returns:
            The normalized owner address, or None if the owner already
            confirmed (the call would be a no-op).
        """
        tx = self.get(tx_id)
        owner = self._check_owner(tx_id, owner)
        if tx.executed:
            raise QuorumViolation(tx_id, "already executed")
        return None if owner in tx.confirmed_by else owner

    def check_revoke(self, tx_id: int, owner: str) -> str:
        """Raise if `owner` may not revoke; return the normalized address."""
        tx = self.get(tx_id)
        owner = self._check_owner(tx_id, owner)
        if tx.executed:
            raise QuorumViolation(tx_id, "already executed")
        if owner not in tx.confirmed_by:
            raise QuorumViolation(tx_id, f"{owner} has not confirmed")
        return owner

    def check_execute(self, tx_id: int) -> None:
        tx = self.get(tx_id)
        if tx.executed:
            raise QuorumViolation(tx_id, "already executed")
        if not can_execute(tx):
            raise QuorumViolation(
                tx_id,
                f"has {tx.confirmation_count} of {tx.required_confirmations} "
                f"required confirmations",
            )

    # ── Mutations ────────────────────────────────────────────

    def propose(
        self,
        kind: TransactionKind,
        payload: dict[str, Any],
        required_confirmations: int,
        proposer: str | None = None,
    ) -> PendingTransaction:
        """Add a transaction with the next free id, optionally confirmed by its proposer."""
        tx_id = max(self._transactions, default=-1) + 1
        confirmed = set()
        if proposer is not None:
            confirmed.add(self._check_owner(tx_id, proposer))
        tx = PendingTransaction(
            id=tx_id,
            kind=kind,
            payload=payload,
            confirmed_by=confirmed,
            required_confirmations=required_confirmations,
        )
        self._transactions[tx_id] = tx
        logger.info("Proposed transaction #%d (%s)", tx_id, kind.value)
        return tx

    def confirm(self, tx_id: int, owner: str) -> bool:
        """
        Record a confirmation.

        Returns:
            True if the confirmation was new, False for a repeated confirmation.
        """
        owner = self.check_confirm(tx_id, owner)
        if owner is None:
            return False
        tx = self.get(tx_id)
        self._transactions[tx_id] = tx.model_copy(
            update={"confirmed_by": tx.confirmed_by | {owner}}
        )
        return True

    def revoke(self, tx_id: int, owner: str) -> None:
        owner = self.check_revoke(tx_id, owner)
        tx = self.get(tx_id)
        self._transactions[tx_id] = tx.model_copy(
            update={"confirmed_by": tx.confirmed_by - {owner}}
        )

    def mark_executed(self, tx_id: int) -> None:
        self.check_execute(tx_id)
        self._transactions[tx_id] = self.get(tx_id).model_copy(update={"executed": True})
        logger.info("Transaction #%d executed", tx_id)

    # ── Listing ──────────────────────────────────────────────

    def pending(self) -> list[PendingTransaction]:
        return [tx for tx in self.all() if not tx.executed]

    def executable(self) -> list[PendingTransaction]:
        return [tx for tx in self.all() if can_execute(tx)]

    def summary(self, tx: PendingTransaction) -> dict[str, Any]:
        """Display row for a transaction list."""
        if tx.executed:
            status = "executed"
        elif can_execute(tx):
            status = "ready"
        else:
            status = f"awaiting {tx.required_confirmations - tx.confirmation_count} more"
        return {
            "id": tx.id,
            "kind": tx.kind.value,
            "confirmations": tx.confirmation_count,
            "required": tx.required_confirmations,
            "executed": tx.executed,
            "executable": can_execute(tx),
            "status": status,
        }
