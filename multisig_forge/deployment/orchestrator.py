"""
Deployment Orchestrator — ordered, resumable deployment of a contract system.

Stages run in a fixed order, one on-chain transaction each:

1. BASE_DEPLOYED    — create the multisig account (owners, threshold)
2. MANAGER_DEPLOYED — create the IntegratedWalletManager
3. POLICY_DEPLOYED  — create the generated Policy contract
4. ROLES_DEPLOYED   — create the generated Roles contract
5. LINKED           — manager.initialize(multisig, policy, roles)

For each stage the transaction hash is recorded and persisted before the
confirmation wait, then the resulting address is recorded and persisted
again. A failure leaves every completed stage in the record, so `resume`
continues exactly where the last run stopped and never redeploys a stage.

A confirmation that does not arrive within the timeout is not an error: the
record comes back with `pending` set, and `confirm_pending` waits on the same
hash again without re-submitting.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from multisig_forge.config import settings
from multisig_forge.configuration.schema import (
    NATIVE_TOKEN,
    ContractSystem,
    DeploymentRecord,
    DeploymentStage,
    GeneratedModule,
    PendingConfirmation,
)
from multisig_forge.configuration.validation import validate_owners, validate_threshold
from multisig_forge.deployment.collaborators import (
    ChainReader,
    RecordStore,
    Signer,
    TransactionIntent,
    TransactionReceipt,
)
from multisig_forge.errors import (
    ConfigurationError,
    DeploymentStageError,
    DeploymentTimeoutError,
    RpcError,
)
from multisig_forge.generation.system import (
    multisig_artifact,
    prepare_for_deployment,
)
from multisig_forge.generation.integration import CONTRACT_NAME as MANAGER_CONTRACT

logger = logging.getLogger(__name__)

# Stages whose transaction creates a contract, mapped to the record field they fill.
ADDRESS_FIELDS: dict[DeploymentStage, str] = {
    DeploymentStage.BASE_DEPLOYED: "multisig_address",
    DeploymentStage.MANAGER_DEPLOYED: "manager_address",
    DeploymentStage.POLICY_DEPLOYED: "policy_address",
    DeploymentStage.ROLES_DEPLOYED: "roles_address",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentOrchestrator:
    """
    Drives DeploymentRecords through the stage machine.

    Args:
        signer: Submits each stage's transaction.
        reader: Waits for confirmations and reads the manager's links.
        store: Persists the record after every state change.
        confirmation_timeout: Seconds to wait per stage. Defaults to
            settings.confirmation_timeout_seconds.
    """

    def __init__(
        self,
        signer: Signer,
        reader: ChainReader,
        store: RecordStore,
        confirmation_timeout: float | None = None,
    ) -> None:
        self.signer = signer
        self.reader = reader
        self.store = store
        self.confirmation_timeout = (
            confirmation_timeout
            if confirmation_timeout is not None
            else settings.confirmation_timeout_seconds
        )

    # ════════════════════════════════════════════════════════════
    # Public operations
    # ════════════════════════════════════════════════════════════

    async def deploy_multisig(self, key: str, owners: list[str], threshold: int) -> DeploymentRecord:
        """
        Deploy only the base multisig account.

        Returns:
            The record at BASE_DEPLOYED, or with `pending` set on timeout.

        Raises:
            ConfigurationError: Invalid owners or threshold.
            DeploymentStageError: Submission refused or creation reverted.
        """
        record = self._open_record(key, owners, threshold)
        if record.is_pending:
            return await self.confirm_pending(record)
        if record.stage == DeploymentStage.NOT_STARTED:
            await self._advance(record, DeploymentStage.BASE_DEPLOYED, system=None)
        return record

    async def deploy_system(
        self,
        key: str,
        system: ContractSystem,
        owners: list[str],
        threshold: int,
    ) -> DeploymentRecord:
        """
        Deploy the multisig, the manager, Policy and Roles, then link them.

        Deploying under a key that already has a record resumes that record.
        """
        record = self._open_record(key, owners, threshold)
        return await self.resume(record, system)

    async def resume(self, record: DeploymentRecord, system: ContractSystem) -> DeploymentRecord:
        """
        Run every stage the record has not completed yet.

        A pending confirmation is awaited first. Stops and returns the record
        when a confirmation times out.
        """
        if record.is_pending:
            record = await self.confirm_pending(record)
            if record.is_pending:
                return record

        while not record.is_complete:
            stage = record.next_stage
            if not await self._advance(record, stage, system):
                break
        return record

    async def confirm_pending(self, record: DeploymentRecord) -> DeploymentRecord:
        """
        Wait again for the record's pending transaction without re-submitting.

        Returns:
            The record, advanced by one stage if the confirmation arrived.
        """
        if record.pending is None:
            return record
        stage = record.pending.stage
        try:
            receipt = await self.reader.wait_for_confirmation(
                record.pending.tx_hash, self.confirmation_timeout
            )
        except DeploymentTimeoutError as exc:
            return self._mark_timeout(record, exc)
        self._complete(record, stage, receipt)
        return record

    # ════════════════════════════════════════════════════════════
    # Stage machine
    # ════════════════════════════════════════════════════════════

    def _open_record(self, key: str, owners: list[str], threshold: int) -> DeploymentRecord:
        owners = validate_owners(owners)
        validate_threshold(threshold, len(owners))

        existing = self.store.load(key)
        if existing is not None:
            if existing.owners != owners or existing.threshold != threshold:
                raise ConfigurationError(
                    f"Deployment '{key}' already exists with different owners or threshold"
                )
            logger.info("Resuming deployment %s from stage %s", key, existing.stage.value)
            return existing

        record = DeploymentRecord(
            key=key,
            owners=owners,
            threshold=threshold,
            is_simulation=bool(getattr(self.signer, "is_simulation", False)),
        )
        self._save(record)
        return record

    def _save(self, record: DeploymentRecord) -> None:
        record.updated_at = _now()
        self.store.save(record.key, record)

    def _fail(self, record: DeploymentRecord, stage: DeploymentStage, message: str) -> DeploymentStageError:
        record.last_error = message
        self._save(record)
        logger.error("Deployment %s failed at %s: %s", record.key, stage.value, message)
        return DeploymentStageError(message, record, stage)

    def _intent_for(
        self,
        record: DeploymentRecord,
        stage: DeploymentStage,
        system: ContractSystem | None,
    ) -> TransactionIntent:
        if stage == DeploymentStage.BASE_DEPLOYED:
            return TransactionIntent.create(multisig_artifact(), list(record.owners), record.threshold)
        if system is None:
            raise ValueError(f"Stage {stage.value} needs a generated contract system")
        modules: dict[DeploymentStage, GeneratedModule] = {
            DeploymentStage.MANAGER_DEPLOYED: system.integrated,
            DeploymentStage.POLICY_DEPLOYED: system.policy,
            DeploymentStage.ROLES_DEPLOYED: system.roles,
        }
        if stage in modules:
            return TransactionIntent.create(prepare_for_deployment(modules[stage]))
        return TransactionIntent.call(
            record.manager_address,
            "initialize",
            record.multisig_address,
            record.policy_address,
            record.roles_address,
        )

    async def _advance(
        self,
        record: DeploymentRecord,
        stage: DeploymentStage,
        system: ContractSystem | None,
    ) -> bool:
        """
        Run one stage.

        Returns:
            True if the stage completed, False if its confirmation is pending.
        """
        if stage == DeploymentStage.LINKED and await self._already_linked(record):
            record.stage = DeploymentStage.LINKED
            record.last_error = None
            self._save(record)
            logger.info("Deployment %s: manager already linked, nothing submitted", record.key)
            return True

        intent = self._intent_for(record, stage, system)
        try:
            submitted = await self.signer.sign_and_submit(intent)
        except (RpcError, httpx.HTTPError) as exc:
            raise self._fail(record, stage, f"Submitting {intent.label} failed: {exc}") from exc

        record.transaction_hashes[stage] = submitted.hash
        record.pending = PendingConfirmation(stage=stage, tx_hash=submitted.hash)
        self._save(record)
        logger.info("Deployment %s: %s submitted (%s)", record.key, stage.value, submitted.hash)

        try:
            receipt = await self.reader.wait_for_confirmation(submitted.hash, self.confirmation_timeout)
        except DeploymentTimeoutError as exc:
            self._mark_timeout(record, exc)
            return False

        self._complete(record, stage, receipt)
        return True

    async def _already_linked(self, record: DeploymentRecord) -> bool:
        """
        Check the manager's current links before linking.

        Returns:
            True if it already points at this record's contracts, False if unset.

        Raises:
            DeploymentStageError: If the links cannot be read or point elsewhere.
        """
        stage = DeploymentStage.LINKED
        if not (record.manager_address and record.policy_address and record.roles_address):
            raise self._fail(record, stage, "Linking requires manager, policy and roles addresses")
        try:
            policy = await self.reader.call(record.manager_address, "getPolicyContract")
            roles = await self.reader.call(record.manager_address, "getRolesContract")
        except (RpcError, httpx.HTTPError) as exc:
            raise self._fail(record, stage, f"Reading {MANAGER_CONTRACT} links failed: {exc}") from exc

        policy, roles = str(policy).lower(), str(roles).lower()
        if policy == NATIVE_TOKEN and roles == NATIVE_TOKEN:
            return False
        if policy == record.policy_address and roles == record.roles_address:
            return True
        raise self._fail(
            record, stage,
            f"{MANAGER_CONTRACT} at {record.manager_address} is already linked to "
            f"policy {policy} and roles {roles}",
        )

    def _complete(self, record: DeploymentRecord, stage: DeploymentStage, receipt: TransactionReceipt) -> None:
        record.pending = None
        if not receipt.status:
            record.transaction_hashes.pop(stage, None)
            raise self._fail(record, stage, f"Transaction {receipt.tx_hash} reverted")

        field = ADDRESS_FIELDS.get(stage)
        if field is not None:
            if not receipt.contract_address:
                raise self._fail(record, stage, f"Receipt {receipt.tx_hash} has no contract address")
            setattr(record, field, receipt.contract_address.lower())
        record.stage = stage
        record.last_error = None
        self._save(record)
        logger.info(
            "Deployment %s: %s confirmed%s",
            record.key, stage.value,
            f" at {record.address_for(stage)}" if field else "",
        )

    def _mark_timeout(self, record: DeploymentRecord, exc: DeploymentTimeoutError) -> DeploymentRecord:
        record.last_error = str(exc)
        self._save(record)
        logger.warning("Deployment %s: %s; left pending", record.key, exc)
        return record
