"""
Error taxonomy for multisig-forge.

Every failure surfaced to a caller belongs to exactly one of these kinds so the
caller can decide whether to fix its input, resume a deployment, poll for a
confirmation, or abandon an operation:

- ConfigurationError     — rejected before any module text is produced
- DeploymentStageError   — a stage reverted or failed before submission
- DeploymentTimeoutError — submitted, but not confirmed within the bound
- QuorumViolation        — illegal confirm / revoke / execute
- RpcError               — the JSON-RPC node answered with an error payload
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from multisig_forge.configuration.schema import DeploymentRecord, DeploymentStage


class ForgeError(Exception):
    """Base class for all multisig-forge errors."""
    pass


class ConfigurationError(ForgeError):
    """Invalid operator configuration (duplicate ids, identifier collisions, bad thresholds)."""
    pass


class DeploymentStageError(ForgeError):
    """
    A deployment stage failed.

    The attached record shows the last successfully completed stage; the
    stage that failed is the record's next stage. Never retried automatically.
    """

    def __init__(
        self,
        message: str,
        record: DeploymentRecord,
        stage: DeploymentStage,
    ) -> None:
        super().__init__(message)
        self.record = record
        self.stage = stage


class DeploymentTimeoutError(ForgeError):
    """A submitted transaction was not confirmed within the configured timeout."""

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(
            f"Transaction {tx_hash} not confirmed within {timeout:g}s"
        )
        self.tx_hash = tx_hash
        self.timeout = timeout


class QuorumViolation(ForgeError):
    """A confirm / revoke / execute call that the quorum rules forbid."""

    def __init__(self, tx_id: int, reason: str) -> None:
        super().__init__(f"Transaction #{tx_id}: {reason}")
        self.tx_id = tx_id
        self.reason = reason


class RpcError(ForgeError):
    """Error object returned by a JSON-RPC endpoint."""

    def __init__(self, method: str, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"RPC error [{method}]: {message} (code {code})")
        self.method = method
        self.code = code
        self.data = data
