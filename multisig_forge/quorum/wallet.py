"""
Multisig Wallet Client — read and operate a deployed multisig account.

Reads owners, threshold and transactions through a ChainReader and keeps
them in a QuorumTracker. Every state-changing call is checked against the
tracker first, so an illegal confirm / revoke / execute fails locally with
QuorumViolation before anything is signed.

Governance transactions (add owner, remove owner, change threshold) are
submitted to the wallet itself with standard call data; the helpers below
encode and decode the three calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from multisig_forge.config import settings
from multisig_forge.configuration.schema import (
    PendingTransaction,
    TransactionKind,
    normalize_address,
)
from multisig_forge.deployment.collaborators import (
    ChainReader,
    Signer,
    SubmittedTransaction,
    TransactionIntent,
)
from multisig_forge.errors import QuorumViolation, RpcError
from multisig_forge.quorum.tracker import QuorumTracker

logger = logging.getLogger(__name__)

EMPTY_CALL_DATA = "0x"

# 4-byte selectors of the wallet's self-administration functions.
GOVERNANCE_SELECTORS: dict[TransactionKind, str] = {
    TransactionKind.ADD_OWNER: "7065cb48",        # addOwner(address)
    TransactionKind.REMOVE_OWNER: "173825d9",     # removeOwner(address)
    TransactionKind.CHANGE_THRESHOLD: "ba51a6df",  # changeRequirement(uint256)
}


# ════════════════════════════════════════════════════════════════
# Call Data
# ════════════════════════════════════════════════════════════════


def encode_governance_call(kind: TransactionKind, payload: dict[str, Any]) -> str:
    """Call data for a governance transaction ('owner' or 'threshold' in payload)."""
    if kind not in GOVERNANCE_SELECTORS:
        raise ValueError(f"{kind.value} is not a governance transaction")
    selector = GOVERNANCE_SELECTORS[kind]
    if kind == TransactionKind.CHANGE_THRESHOLD:
        threshold = int(payload["threshold"])
        if threshold < 1:
            raise ValueError(f"Threshold must be at least 1, got {threshold}")
        return f"0x{selector}{threshold:064x}"
    owner = normalize_address(payload["owner"])
    return f"0x{selector}{owner[2:].rjust(64, '0')}"


def decode_call_data(data: str | None) -> tuple[TransactionKind, dict[str, Any]]:
    """Classify call data; anything that is not a governance call is a transfer."""
    body = (data or EMPTY_CALL_DATA).lower().removeprefix("0x")
    for kind, selector in GOVERNANCE_SELECTORS.items():
        if body.startswith(selector) and len(body) == 8 + 64:
            word = body[8:]
            if kind == TransactionKind.CHANGE_THRESHOLD:
                return kind, {"threshold": int(word, 16)}
            return kind, {"owner": "0x" + word[-40:]}
    return TransactionKind.TRANSFER, {}


# ════════════════════════════════════════════════════════════════
# Client
# ════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class WalletInfo:
    address: str
    owners: list[str]
    threshold: int
    balance_wei: int
    transaction_count: int


class MultisigWalletClient:
    """
    Client for one deployed multisig wallet.

    Args:
        address: Wallet address.
        reader: Chain access for reads and confirmation waits.
        signer: Required only for state-changing calls.
        confirmation_timeout: Seconds to wait for each submitted call.
    """

    def __init__(
        self,
        address: str,
        reader: ChainReader,
        signer: Signer | None = None,
        confirmation_timeout: float | None = None,
    ) -> None:
        self.address = normalize_address(address)
        self.reader = reader
        self.signer = signer
        self.confirmation_timeout = (
            confirmation_timeout
            if confirmation_timeout is not None
            else settings.confirmation_timeout_seconds
        )
        self.tracker = QuorumTracker()

    # ── Reads ────────────────────────────────────────────────

    async def get_owners(self) -> list[str]:
        owners = await self.reader.call(self.address, "getOwners")
        return [normalize_address(o) for o in owners]

    async def get_threshold(self) -> int:
        return int(await self.reader.call(self.address, "threshold"))

    async def get_info(self) -> WalletInfo:
        owners = await self.get_owners()
        return WalletInfo(
            address=self.address,
            owners=owners,
            threshold=await self.get_threshold(),
            balance_wei=await self.reader.get_balance(self.address),
            transaction_count=int(await self.reader.call(self.address, "getTransactionCount")),
        )

    async def is_multisig_wallet(self) -> bool:
        """True if code is deployed at the address and it answers getOwners/threshold."""
        code = await self.reader.get_code(self.address)
        if not code or code == EMPTY_CALL_DATA:
            return False
        try:
            await self.get_owners()
            await self.get_threshold()
        except RpcError as exc:
            logger.info("%s has code but is not a multisig wallet: %s", self.address, exc)
            return False
        return True

    async def fetch_transactions(self) -> list[PendingTransaction]:
        """Read every transaction, rebuild the tracker snapshot and return it."""
        owners = await self.get_owners()
        threshold = await self.get_threshold()
        count = int(await self.reader.call(self.address, "getTransactionCount"))

        transactions: list[PendingTransaction] = []
        for tx_id in range(count):
            try:
                to, value, data = await self.reader.call(self.address, "getTransaction", tx_id)
                executed = await self.reader.call(self.address, "isExecuted", tx_id)
                confirmations = await self.reader.call(self.address, "getConfirmations", tx_id)
            except RpcError as exc:
                logger.warning("Skipping transaction #%d of %s: %s", tx_id, self.address, exc)
                continue
            kind, payload = decode_call_data(data)
            if kind == TransactionKind.TRANSFER:
                payload = {"to": normalize_address(to), "value_wei": int(value), "data": data or EMPTY_CALL_DATA}
            transactions.append(PendingTransaction(
                id=tx_id,
                kind=kind,
                payload=payload,
                confirmed_by=set(confirmations),
                required_confirmations=max(threshold, 1),
                executed=bool(executed),
            ))

        self.tracker = QuorumTracker(transactions, owners=owners)
        return transactions

    # ── Writes ───────────────────────────────────────────────

    def _require_signer(self) -> Signer:
        if self.signer is None:
            raise ValueError("A signer is required for state-changing wallet calls")
        return self.signer

    async def _submit(self, tx_id: int, intent: TransactionIntent) -> SubmittedTransaction:
        signer = self._require_signer()
        submitted = await signer.sign_and_submit(intent)
        receipt = await self.reader.wait_for_confirmation(submitted.hash, self.confirmation_timeout)
        if not receipt.status:
            raise QuorumViolation(tx_id, f"{intent.method} reverted ({submitted.hash})")
        await self.fetch_transactions()
        return submitted

    async def propose_transaction(
        self,
        kind: TransactionKind,
        payload: dict[str, Any],
    ) -> SubmittedTransaction:
        """
        Submit a new transaction to the wallet.

        Transfers take `to`, `value_wei` and optional `data`; governance kinds
        take `owner` or `threshold`.
        """
        if kind == TransactionKind.TRANSFER:
            intent = TransactionIntent.call(
                self.address,
                "submitTransaction",
                normalize_address(payload["to"]),
                int(payload.get("value_wei", 0)),
                payload.get("data", EMPTY_CALL_DATA),
            )
        else:
            intent = TransactionIntent.call(
                self.address, "submitTransaction", self.address, 0,
                encode_governance_call(kind, payload),
            )
        next_id = max((tx.id for tx in self.tracker.all()), default=-1) + 1
        return await self._submit(next_id, intent)

    async def confirm_transaction(self, tx_id: int) -> bool:
        """
        Confirm as the signer.

        Returns:
            False without submitting if the signer already confirmed.
        """
        signer = self._require_signer()
        if not self.tracker.check_confirm(tx_id, signer.address):
            logger.info("Transaction #%d already confirmed by %s", tx_id, signer.address)
            return False
        await self._submit(tx_id, TransactionIntent.call(self.address, "confirmTransaction", tx_id))
        return True

    async def revoke_confirmation(self, tx_id: int) -> SubmittedTransaction:
        signer = self._require_signer()
        self.tracker.check_revoke(tx_id, signer.address)
        return await self._submit(tx_id, TransactionIntent.call(self.address, "revokeConfirmation", tx_id))

    async def execute_transaction(self, tx_id: int) -> SubmittedTransaction:
        self.tracker.check_execute(tx_id)
        return await self._submit(tx_id, TransactionIntent.call(self.address, "executeTransaction", tx_id))
