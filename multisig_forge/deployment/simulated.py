"""
Simulated chain and in-memory record store.

`SimulatedChain` stands in for a signer and a network node. Addresses and
hashes are derived from the sender and nonce with SHA-256, so a given
sequence of submissions always yields the same values. It models just enough
contract behaviour for deployment and wallet flows:

- MultiSigWallet: owners, threshold, submit / confirm / revoke / execute,
  including self-administration (add owner, remove owner, change threshold)
- IntegratedWalletManager: set-if-unset `initialize` and its getters

Faults can be injected per contract name (creations) or method name (calls):
a refused submission, a reverted receipt, or a receipt that never arrives
until `release` is called.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any

from multisig_forge.configuration.schema import NATIVE_TOKEN, DeploymentRecord, TransactionKind
from multisig_forge.deployment.collaborators import (
    IntentKind,
    SubmittedTransaction,
    TransactionIntent,
    TransactionReceipt,
)
from multisig_forge.errors import DeploymentTimeoutError, RpcError
from multisig_forge.generation.integration import CONTRACT_NAME as MANAGER_CONTRACT
from multisig_forge.generation.system import MULTISIG_CONTRACT, PLACEHOLDER_BYTECODE
from multisig_forge.quorum.wallet import decode_call_data

logger = logging.getLogger(__name__)

DEFAULT_DEPLOYER = "0x" + "de" * 20
REVERT_CODE = -32000


class _Revert(Exception):
    """Raised inside the simulation when a call would revert on chain."""


@dataclass
class SimulatedContract:
    logical_name: str
    creator: str
    storage: dict[str, Any] = field(default_factory=dict)


@dataclass
class _Pending:
    submitted: SubmittedTransaction
    sender: str
    reverted: bool = False


class SimulatedAccount:
    """A Signer bound to one account on a SimulatedChain."""

    is_simulation = True

    def __init__(self, chain: SimulatedChain, address: str) -> None:
        self._chain = chain
        self._address = address.lower()

    @property
    def address(self) -> str:
        return self._address

    async def sign_and_submit(self, intent: TransactionIntent) -> SubmittedTransaction:
        return self._chain.submit(self._address, intent)


class SimulatedChain:
    """In-process Signer + ChainReader with deterministic addresses and hashes."""

    is_simulation = True

    def __init__(self, deployer: str = DEFAULT_DEPLOYER) -> None:
        self._deployer = deployer.lower()
        self.contracts: dict[str, SimulatedContract] = {}
        self.balances: dict[str, int] = {}
        self.receipts: dict[str, TransactionReceipt] = {}
        self.submissions: list[SubmittedTransaction] = []
        self._stalled: dict[str, _Pending] = {}
        self._nonces: dict[str, int] = {}
        self._block = 0
        self._refuse: dict[str, str] = {}
        self._revert: set[str] = set()
        self._stall: set[str] = set()

    # ── Signer ───────────────────────────────────────────────

    @property
    def address(self) -> str:
        return self._deployer

    async def sign_and_submit(self, intent: TransactionIntent) -> SubmittedTransaction:
        return self.submit(self._deployer, intent)

    def account(self, address: str) -> SimulatedAccount:
        """Signer for another account on this chain."""
        return SimulatedAccount(self, address)

    # ── Fault injection ──────────────────────────────────────

    def refuse_next(self, label: str, message: str = "insufficient funds for gas") -> None:
        """The next submission for `label` is refused by the node."""
        self._refuse[label] = message

    def revert_next(self, label: str) -> None:
        """The next submission for `label` is mined with a failed status."""
        self._revert.add(label)

    def stall_next(self, label: str) -> None:
        """The next submission for `label` gets no receipt until released."""
        self._stall.add(label)

    def release(self, tx_hash: str) -> TransactionReceipt:
        """Mine a stalled transaction."""
        pending = self._stalled.pop(tx_hash)
        return self._mine(pending)

    def fund(self, address: str, amount_wei: int) -> None:
        key = address.lower()
        self.balances[key] = self.balances.get(key, 0) + amount_wei

    # ── Submission ───────────────────────────────────────────

    def _next_nonce(self, sender: str) -> int:
        nonce = self._nonces.get(sender, 0)
        self._nonces[sender] = nonce + 1
        return nonce

    def submit(self, sender: str, intent: TransactionIntent) -> SubmittedTransaction:
        label = intent.label
        if label in self._refuse:
            message = self._refuse.pop(label)
            raise RpcError("eth_sendRawTransaction", REVERT_CODE, message)

        nonce = self._next_nonce(sender)
        digest = hashlib.sha256(f"{sender}:{nonce}:{label}".encode()).hexdigest()
        submitted = SubmittedTransaction(hash="0x" + digest, intent=intent)
        self.submissions.append(submitted)

        pending = _Pending(submitted=submitted, sender=sender, reverted=label in self._revert)
        self._revert.discard(label)
        if label in self._stall:
            self._stall.discard(label)
            self._stalled[submitted.hash] = pending
            logger.debug("Stalled %s (%s)", submitted.hash, label)
        else:
            self._mine(pending)
        return submitted

    def _mine(self, pending: _Pending) -> TransactionReceipt:
        intent = pending.submitted.intent
        tx_hash = pending.submitted.hash
        self._block += 1
        contract_address = None
        status = not pending.reverted
        if status:
            try:
                if intent.kind == IntentKind.CREATE:
                    contract_address = self._create(pending.sender, tx_hash, intent)
                else:
                    self._apply_call(pending.sender, intent)
            except _Revert as exc:
                logger.debug("Reverted %s: %s", tx_hash, exc)
                status = False
                contract_address = None
        receipt = TransactionReceipt(
            tx_hash=tx_hash,
            status=status,
            contract_address=contract_address,
            block_number=self._block,
        )
        self.receipts[tx_hash] = receipt
        return receipt

    def _create(self, sender: str, tx_hash: str, intent: TransactionIntent) -> str:
        address = "0x" + hashlib.sha256(f"{sender}:{tx_hash}".encode()).hexdigest()[-40:]
        contract = SimulatedContract(logical_name=intent.logical_name, creator=sender)
        if intent.logical_name == MULTISIG_CONTRACT:
            owners, threshold = intent.args
            contract.storage = {
                "owners": [o.lower() for o in owners],
                "threshold": int(threshold),
                "transactions": [],
            }
        elif intent.logical_name == MANAGER_CONTRACT:
            contract.storage = {"multisig": NATIVE_TOKEN, "policy": NATIVE_TOKEN, "roles": NATIVE_TOKEN}
        self.contracts[address] = contract
        return address

    # ── Contract behaviour ───────────────────────────────────

    def _contract(self, address: str | None) -> SimulatedContract:
        contract = self.contracts.get((address or "").lower())
        if contract is None:
            raise _Revert(f"no contract at {address}")
        return contract

    def _apply_call(self, sender: str, intent: TransactionIntent) -> None:
        contract = self._contract(intent.to)
        if contract.logical_name == MULTISIG_CONTRACT:
            self._apply_wallet_call(intent.to.lower(), contract, sender, intent.method, intent.args)
        elif contract.logical_name == MANAGER_CONTRACT and intent.method == "initialize":
            self._initialize_manager(contract, sender, *intent.args)
        else:
            raise _Revert(f"{contract.logical_name} has no method {intent.method}")

    def _initialize_manager(self, contract: SimulatedContract, sender: str, multisig: str, policy: str, roles: str) -> None:
        if sender != contract.creator:
            raise _Revert("Only owner can call this function")
        wanted = {"multisig": multisig.lower(), "policy": policy.lower(), "roles": roles.lower()}
        if NATIVE_TOKEN in wanted.values():
            raise _Revert("Invalid contract address")
        if contract.storage["policy"] != NATIVE_TOKEN:
            if contract.storage != wanted:
                raise _Revert("Already linked to different contracts")
            return
        contract.storage.update(wanted)

    def _apply_wallet_call(
        self,
        address: str,
        contract: SimulatedContract,
        sender: str,
        method: str,
        args: tuple[Any, ...],
    ) -> None:
        state = contract.storage
        if sender not in state["owners"]:
            raise _Revert("Not an owner")
        txs: list[dict[str, Any]] = state["transactions"]

        if method == "submitTransaction":
            to, value, data = args
            txs.append({"to": to.lower(), "value": int(value), "data": data,
                        "confirmations": [], "executed": False})
            return

        tx_id = int(args[0])
        if not 0 <= tx_id < len(txs):
            raise _Revert("Transaction does not exist")
        tx = txs[tx_id]
        if tx["executed"]:
            raise _Revert("Transaction already executed")

        if method == "confirmTransaction":
            if sender in tx["confirmations"]:
                raise _Revert("Transaction already confirmed")
            tx["confirmations"].append(sender)
        elif method == "revokeConfirmation":
            if sender not in tx["confirmations"]:
                raise _Revert("Transaction not confirmed")
            tx["confirmations"].remove(sender)
        elif method == "executeTransaction":
            if len(tx["confirmations"]) < state["threshold"]:
                raise _Revert("Not enough confirmations")
            self._execute(address, state, tx)
            tx["executed"] = True
        else:
            raise _Revert(f"MultiSigWallet has no method {method}")

    def _execute(self, address: str, state: dict[str, Any], tx: dict[str, Any]) -> None:
        if tx["to"] == address:
            kind, payload = decode_call_data(tx["data"])
            if kind == TransactionKind.ADD_OWNER:
                if payload["owner"] in state["owners"]:
                    raise _Revert("Owner exists")
                state["owners"].append(payload["owner"])
            elif kind == TransactionKind.REMOVE_OWNER:
                if payload["owner"] not in state["owners"]:
                    raise _Revert("Not an owner")
                if len(state["owners"]) - 1 < state["threshold"]:
                    raise _Revert("Threshold exceeds owner count")
                state["owners"].remove(payload["owner"])
            elif kind == TransactionKind.CHANGE_THRESHOLD:
                if not 1 <= payload["threshold"] <= len(state["owners"]):
                    raise _Revert("Invalid threshold")
                state["threshold"] = payload["threshold"]
            return
        if tx["value"]:
            balance = self.balances.get(address, 0)
            if balance < tx["value"]:
                raise _Revert("Insufficient balance")
            self.balances[address] = balance - tx["value"]
            self.fund(tx["to"], tx["value"])

    # ── ChainReader ──────────────────────────────────────────

    async def get_balance(self, address: str) -> int:
        return self.balances.get(address.lower(), 0)

    async def get_code(self, address: str) -> str:
        return PLACEHOLDER_BYTECODE if address.lower() in self.contracts else "0x"

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        return self.receipts.get(tx_hash)

    async def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            raise DeploymentTimeoutError(tx_hash, timeout)
        return receipt

    async def call(self, address: str, method: str, *args: Any) -> Any:
        try:
            return self._read(address, method, args)
        except _Revert as exc:
            raise RpcError("eth_call", REVERT_CODE, f"execution reverted: {exc}") from None

    def _read(self, address: str, method: str, args: tuple[Any, ...]) -> Any:
        contract = self._contract(address)
        state = contract.storage
        if contract.logical_name == MANAGER_CONTRACT:
            getters = {
                "getPolicyContract": "policy",
                "getRolesContract": "roles",
                "getMultisigWallet": "multisig",
            }
            if method in getters:
                return state[getters[method]]
            if method == "owner":
                return contract.creator
        elif contract.logical_name == MULTISIG_CONTRACT:
            txs = state["transactions"]
            if method == "getOwners":
                return list(state["owners"])
            if method == "threshold":
                return state["threshold"]
            if method == "getTransactionCount":
                return len(txs)
            if method in {"getTransaction", "isExecuted", "getConfirmations", "isConfirmed"}:
                tx_id = int(args[0])
                if not 0 <= tx_id < len(txs):
                    raise _Revert("Transaction does not exist")
                tx = txs[tx_id]
                if method == "getTransaction":
                    return tx["to"], tx["value"], tx["data"]
                if method == "isExecuted":
                    return tx["executed"]
                if method == "getConfirmations":
                    return list(tx["confirmations"])
                return args[1].lower() in tx["confirmations"]
        elif method == "owner":
            return contract.creator
        raise _Revert(f"{contract.logical_name} has no method {method}")


class InMemoryRecordStore:
    """RecordStore kept in a dict; records are copied in and out."""

    def __init__(self) -> None:
        self._records: dict[str, DeploymentRecord] = {}

    def save(self, key: str, record: DeploymentRecord) -> None:
        self._records[key] = record.model_copy(deep=True)

    def load(self, key: str) -> DeploymentRecord | None:
        record = self._records.get(key)
        return record.model_copy(deep=True) if record is not None else None

    def keys(self) -> list[str]:
        return sorted(self._records)
