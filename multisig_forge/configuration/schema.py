"""
Configuration Schema — Pydantic models for every multisig-forge entity.

These models are the canonical data structures shared by the generators, the
preflight evaluator, the deployment orchestrator and the quorum tracker:

- Operator input: RoleDefinition, RoleConfig, AmountRule, PolicyConfig,
  MultisigConfig, SystemConfig
- Generated artifacts: GeneratedModule, SystemMetadata, ContractSystem,
  CompiledArtifact
- Deployment state: DeploymentStage, PendingConfirmation, DeploymentRecord
- Quorum state: TransactionKind, PendingTransaction

Structural checks live here (types, ranges, address syntax). Cross-field
checks that must surface as ConfigurationError live in
`multisig_forge.configuration.validation`.
"""

from __future__ import annotations

import enum
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
)


# ════════════════════════════════════════════════════════════════
# Constants
# ════════════════════════════════════════════════════════════════

ADMIN_ROLE_ID = "admin"  # Reserved: never assigned, removed or deleted generically
NATIVE_TOKEN = "0x" + "0" * 40  # address(0) denotes ETH itself
ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
MODULE_VERSION = "1.0.0"

# Verdict reasons shared by the generated modules and the preflight evaluator.
REASON_APPROVED = "Transaction approved"
REASON_DAILY_LIMIT = "Daily limit exceeded"
REASON_MAX_AMOUNT = "Transaction amount exceeds maximum allowed"
REASON_BLACKLISTED = "Transaction involves blacklisted address"
REASON_TOKEN_NOT_ALLOWED = "Token not allowed"
REASON_POLICY_INACTIVE = "Policy is not active"
REASON_NO_EXECUTE_PERMISSION = "Insufficient role permissions"


def tier_rejection_reason(role_id: str, threshold: str) -> str:
    """Reason emitted when a member misses the role an amount tier requires."""
    return f"Requires {role_id} approval for {threshold} ETH+ transactions"


def normalize_address(value: str) -> str:
    """Validate an account address and return its lower-case form."""
    if not isinstance(value, str) or not ADDRESS_PATTERN.match(value.strip()):
        raise ValueError(f"Invalid address: {value!r}")
    return value.strip().lower()


def is_valid_address(value: str) -> bool:
    """True if `value` is a syntactically valid 20-byte hex address."""
    return isinstance(value, str) and bool(ADDRESS_PATTERN.match(value.strip()))


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class PermissionTag(str, enum.Enum):
    """Fixed permission vocabulary understood by the Roles module."""

    CREATE_ROLE = "create_role"
    DELETE_ROLE = "delete_role"
    ASSIGN_ROLE = "assign_role"
    REMOVE_ROLE = "remove_role"
    MODIFY_PERMISSIONS = "modify_permissions"
    EXECUTE_TRANSACTION = "execute_transaction"
    APPROVE_TRANSACTION = "approve_transaction"
    VIEW_TRANSACTIONS = "view_transactions"
    MANAGE_POLICIES = "manage_policies"
    EMERGENCY_PAUSE = "emergency_pause"
    MANAGE_MEMBERS = "manage_members"
    VIEW_MEMBERS = "view_members"

    @property
    def on_chain(self) -> str:
        """Key used for this permission inside generated contracts."""
        return self.value.upper()

    @classmethod
    def _missing_(cls, value: object) -> PermissionTag | None:
        # Accept the on-chain spelling ("EXECUTE_TRANSACTION") and kebab case.
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            for member in cls:
                if member.value == key:
                    return member
        return None


class DeploymentStage(str, enum.Enum):
    """Ordered deployment stages: base → manager → policy → roles → link."""

    NOT_STARTED = "not_started"
    BASE_DEPLOYED = "base_deployed"
    MANAGER_DEPLOYED = "manager_deployed"
    POLICY_DEPLOYED = "policy_deployed"
    ROLES_DEPLOYED = "roles_deployed"
    LINKED = "linked"

    @property
    def index(self) -> int:
        return STAGE_ORDER.index(self)

    def next(self) -> DeploymentStage | None:
        """The stage that follows this one, or None for the terminal stage."""
        if self is DeploymentStage.LINKED:
            return None
        return STAGE_ORDER[self.index + 1]


STAGE_ORDER: list[DeploymentStage] = [
    DeploymentStage.NOT_STARTED,
    DeploymentStage.BASE_DEPLOYED,
    DeploymentStage.MANAGER_DEPLOYED,
    DeploymentStage.POLICY_DEPLOYED,
    DeploymentStage.ROLES_DEPLOYED,
    DeploymentStage.LINKED,
]


class TransactionKind(str, enum.Enum):
    """Kinds of multisig transactions tracked for quorum."""

    TRANSFER = "transfer"
    ADD_OWNER = "add_owner"
    REMOVE_OWNER = "remove_owner"
    CHANGE_THRESHOLD = "change_threshold"


# ════════════════════════════════════════════════════════════════
# Operator Configuration
# ════════════════════════════════════════════════════════════════


class RoleDefinition(BaseModel):
    """
    A named capability bucket with a permission set and a seniority level.

    `id` is stable and embedded verbatim in generated contracts; the
    membership collection and `is<Role>` accessors are named after
    `display_name` via the identifier deriver.
    """

    id: str = Field(description="Stable role identifier (e.g., 'manager')")
    display_name: str = Field(description="Human-readable role name")
    description: str = Field(default="")
    level: int = Field(default=50, ge=0, le=100, description="Seniority, higher = more senior")
    permissions: set[PermissionTag] = Field(default_factory=set)
    enabled: bool = True

    @property
    def ordered_permissions(self) -> list[PermissionTag]:
        """Permissions in vocabulary order (set iteration order is not stable)."""
        return [p for p in PermissionTag if p in self.permissions]

    @field_serializer("permissions")
    def _serialize_permissions(self, permissions: set[PermissionTag]) -> list[str]:
        return [p.value for p in PermissionTag if p in permissions]


class RoleConfig(BaseModel):
    """Role list plus the member → role assignment table."""

    name: str = Field(default="Dynamic Roles")
    description: str = Field(default="Role management for a multi-signature wallet")
    roles: list[RoleDefinition] = Field(default_factory=list)
    member_roles: dict[str, str] = Field(
        default_factory=dict, description="Account address → RoleDefinition.id"
    )

    @field_validator("member_roles")
    @classmethod
    def _normalize_members(cls, value: dict[str, str]) -> dict[str, str]:
        normalized: dict[str, str] = {}
        for address, role_id in value.items():
            key = normalize_address(address)
            if key in normalized:
                raise ValueError(f"Address {address} is assigned more than once")
            normalized[key] = role_id
        return normalized

    @property
    def enabled_roles(self) -> list[RoleDefinition]:
        return [r for r in self.roles if r.enabled]

    def get_role(self, role_id: str) -> RoleDefinition | None:
        return next((r for r in self.roles if r.id == role_id), None)


class AmountRule(BaseModel):
    """A spending threshold paired with the role required at or above it."""

    threshold_eth: Decimal = Field(description="Threshold in ETH (inclusive)")
    required_role_id: str = Field(description="RoleDefinition.id required at this tier")
    enabled: bool = True


class PolicyConfig(BaseModel):
    """Spending policy for the multisig account."""

    name: str = Field(default="Custom Policy")
    description: str = Field(default="Generated policy contract")
    max_tx_amount_eth: Decimal = Field(default=Decimal("10"))
    daily_limit_eth: Decimal = Field(default=Decimal("50"))
    require_approval: bool = False
    approval_threshold: int = Field(default=2)
    time_lock_seconds: int = Field(default=0)
    amount_rules: list[AmountRule] = Field(
        default_factory=list, description="Ordered; declaration order is evaluation order"
    )
    allowed_tokens: list[str] = Field(default_factory=list)
    blacklisted_addresses: list[str] = Field(default_factory=list)

    @field_validator("allowed_tokens", "blacklisted_addresses")
    @classmethod
    def _normalize_addresses(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for address in value:
            normalized = normalize_address(address)
            if normalized not in seen:
                seen.append(normalized)
        return seen

    @property
    def enabled_amount_rules(self) -> list[AmountRule]:
        return [r for r in self.amount_rules if r.enabled]


class MultisigConfig(BaseModel):
    """Owners and confirmation threshold of the base multisig account."""

    owners: list[str] = Field(default_factory=list)
    threshold: int = 2


class SystemConfig(BaseModel):
    """Complete operator input for one generated system."""

    roles: RoleConfig = Field(default_factory=RoleConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    multisig: MultisigConfig | None = None


# ════════════════════════════════════════════════════════════════
# Generated Artifacts
# ════════════════════════════════════════════════════════════════


class GeneratedModule(BaseModel):
    """One deployable program unit. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    source_text: str
    logical_name: str = Field(description="Contract name, e.g. 'Policy'")
    description: str = ""

    @computed_field
    @property
    def filename(self) -> str:
        return f"{self.logical_name}.sol"


class SystemMetadata(BaseModel):
    """Provenance recorded alongside (never inside) generated source text."""

    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    custom_roles: list[str] = Field(default_factory=list)
    amount_rules: list[str] = Field(default_factory=list)
    version: str = MODULE_VERSION


class ContractSystem(BaseModel):
    """The three generated modules bundled with metadata."""

    roles: GeneratedModule
    policy: GeneratedModule
    integrated: GeneratedModule
    metadata: SystemMetadata

    @property
    def modules(self) -> list[GeneratedModule]:
        return [self.roles, self.policy, self.integrated]


class CompiledArtifact(BaseModel):
    """Deployment-ready view of a module. Compilation is simulated."""

    model_config = ConfigDict(frozen=True)

    logical_name: str
    source_text: str
    abi: list[dict[str, Any]]
    bytecode: str
    is_simulation: bool = True


# ════════════════════════════════════════════════════════════════
# Deployment State
# ════════════════════════════════════════════════════════════════


class PendingConfirmation(BaseModel):
    """A stage whose creation transaction was sent but not yet confirmed."""

    stage: DeploymentStage = Field(description="Stage reached once confirmed")
    tx_hash: str
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DeploymentRecord(BaseModel):
    """
    Progress of one system deployment, filled stage by stage.

    Addresses left as None after an error mark a resumable partial
    deployment; the next stage to run is always `next_stage`.
    """

    key: str
    stage: DeploymentStage = DeploymentStage.NOT_STARTED
    owners: list[str] = Field(default_factory=list)
    threshold: int = 0
    multisig_address: str | None = None
    manager_address: str | None = None
    policy_address: str | None = None
    roles_address: str | None = None
    transaction_hashes: dict[DeploymentStage, str] = Field(default_factory=dict)
    pending: PendingConfirmation | None = None
    last_error: str | None = None
    is_simulation: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def next_stage(self) -> DeploymentStage | None:
        return self.stage.next()

    @property
    def is_complete(self) -> bool:
        return self.stage == DeploymentStage.LINKED

    @property
    def is_pending(self) -> bool:
        return self.pending is not None

    def address_for(self, stage: DeploymentStage) -> str | None:
        """Address produced by a creation stage (None for link / not started)."""
        return {
            DeploymentStage.BASE_DEPLOYED: self.multisig_address,
            DeploymentStage.MANAGER_DEPLOYED: self.manager_address,
            DeploymentStage.POLICY_DEPLOYED: self.policy_address,
            DeploymentStage.ROLES_DEPLOYED: self.roles_address,
        }.get(stage)


# ════════════════════════════════════════════════════════════════
# Quorum State
# ════════════════════════════════════════════════════════════════


class PendingTransaction(BaseModel):
    """A multisig transaction (monetary or governance) awaiting confirmations."""

    id: int
    kind: TransactionKind = TransactionKind.TRANSFER
    payload: dict[str, Any] = Field(default_factory=dict)
    confirmed_by: set[str] = Field(default_factory=set)
    required_confirmations: int = Field(ge=1)
    executed: bool = False

    @field_validator("confirmed_by", mode="before")
    @classmethod
    def _normalize_confirmers(cls, value: Any) -> set[str]:
        return {normalize_address(a) for a in (value or [])}

    @field_serializer("confirmed_by")
    def _serialize_confirmers(self, confirmed_by: set[str]) -> list[str]:
        return sorted(confirmed_by)

    @property
    def confirmation_count(self) -> int:
        return len(self.confirmed_by)


# ════════════════════════════════════════════════════════════════
# Default Role Template
# ════════════════════════════════════════════════════════════════

DEFAULT_ROLES: dict[str, RoleDefinition] = {
    "admin": RoleDefinition(
        id="admin",
        display_name="Admin",
        description="Top-level administrator holding every permission",
        level=100,
        permissions=set(PermissionTag),
    ),
    "manager": RoleDefinition(
        id="manager",
        display_name="Manager",
        description="Team management and transaction approval",
        level=80,
        permissions={
            PermissionTag.ASSIGN_ROLE,
            PermissionTag.EXECUTE_TRANSACTION,
            PermissionTag.APPROVE_TRANSACTION,
            PermissionTag.VIEW_TRANSACTIONS,
        },
    ),
    "approver": RoleDefinition(
        id="approver",
        display_name="Approver",
        description="Transaction approval",
        level=60,
        permissions={PermissionTag.APPROVE_TRANSACTION, PermissionTag.VIEW_TRANSACTIONS},
    ),
    "member": RoleDefinition(
        id="member",
        display_name="Member",
        description="Baseline member",
        level=40,
        permissions={PermissionTag.VIEW_TRANSACTIONS},
    ),
}
