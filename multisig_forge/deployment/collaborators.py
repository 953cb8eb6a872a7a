"""
Collaborator contracts for deployment and wallet operations.

The orchestrator and the wallet client never talk to a node or a database
directly. They depend on three narrow interfaces:

- Signer       — signs and submits a transaction intent
- ChainReader  — balances, code, receipts, confirmation waits, read calls
- RecordStore  — persists DeploymentRecords by key

`SimulatedChain` implements the first two in-process; `JsonRpcClient` is a
read-only ChainReader over JSON-RPC; `SqlRecordStore` and
`InMemoryRecordStore` implement the third.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from multisig_forge.configuration.schema import CompiledArtifact, DeploymentRecord


class IntentKind(str, enum.Enum):
    CREATE = "create"  # contract creation
    CALL = "call"      # state-changing call on an existing contract


@dataclass(frozen=True)
class TransactionIntent:
    """A transaction the signer is asked to sign and submit."""

    kind: IntentKind
    logical_name: str = ""
    bytecode: str = ""
    abi: tuple[dict[str, Any], ...] = ()
    to: str | None = None
    method: str = ""
    args: tuple[Any, ...] = ()
    value: int = 0

    @classmethod
    def create(cls, artifact: CompiledArtifact, *args: Any) -> TransactionIntent:
        return cls(
            kind=IntentKind.CREATE,
            logical_name=artifact.logical_name,
            bytecode=artifact.bytecode,
            abi=tuple(artifact.abi),
            args=tuple(args),
        )

    @classmethod
    def call(cls, to: str, method: str, *args: Any, value: int = 0) -> TransactionIntent:
        return cls(kind=IntentKind.CALL, to=to, method=method, args=tuple(args), value=value)

    @property
    def label(self) -> str:
        """Contract name for creations, method name for calls."""
        return self.logical_name if self.kind == IntentKind.CREATE else self.method


@dataclass(frozen=True)
class SubmittedTransaction:
    hash: str
    intent: TransactionIntent


@dataclass(frozen=True)
class TransactionReceipt:
    tx_hash: str
    status: bool
    contract_address: str | None = None
    block_number: int | None = None
    logs: tuple[dict[str, Any], ...] = field(default_factory=tuple)


@runtime_checkable
class Signer(Protocol):
    """Signs and submits transactions from a single account."""

    @property
    def address(self) -> str: ...

    async def sign_and_submit(self, intent: TransactionIntent) -> SubmittedTransaction:
        """
        Submit `intent` and return its hash without waiting for inclusion.

        Raises:
            RpcError: If the node refuses the transaction.
        """
        ...


@runtime_checkable
class ChainReader(Protocol):
    """Read access to the network."""

    async def get_balance(self, address: str) -> int: ...

    async def get_code(self, address: str) -> str: ...

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None: ...

    async def wait_for_confirmation(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        """
        Wait until `tx_hash` has a receipt.

        Raises:
            DeploymentTimeoutError: If no receipt appears within `timeout` seconds.
        """
        ...

    async def call(self, address: str, method: str, *args: Any) -> Any: ...


@runtime_checkable
class RecordStore(Protocol):
    """Keyed persistence for deployment records."""

    def save(self, key: str, record: DeploymentRecord) -> None: ...

    def load(self, key: str) -> DeploymentRecord | None: ...
