"""
System Assembler — validate a configuration and bundle the three modules.

Also the compilation boundary: `prepare_for_deployment` turns a generated
module into a CompiledArtifact carrying a fixed ABI per logical name and
placeholder bytecode. Real compilation is out of scope, so every artifact is
flagged as a simulation.
"""

from __future__ import annotations

import logging
from typing import Any

from multisig_forge.configuration.schema import (
    CompiledArtifact,
    ContractSystem,
    GeneratedModule,
    SystemConfig,
    SystemMetadata,
)
from multisig_forge.configuration.validation import validate_system_config
from multisig_forge.generation.identifiers import format_eth
from multisig_forge.generation.integration import CONTRACT_NAME as MANAGER_CONTRACT
from multisig_forge.generation.integration import generate_integration_module
from multisig_forge.generation.policy import CONTRACT_NAME as POLICY_CONTRACT
from multisig_forge.generation.policy import generate_policy_module
from multisig_forge.generation.roles import CONTRACT_NAME as ROLES_CONTRACT
from multisig_forge.generation.roles import generate_roles_module

logger = logging.getLogger(__name__)

MULTISIG_CONTRACT = "MultiSigWallet"
PLACEHOLDER_BYTECODE = "0x608060405234801561001057600080fd5b50600436106100a95760003560e01c8063"


# ════════════════════════════════════════════════════════════════
# Fixed ABIs
# ════════════════════════════════════════════════════════════════


def _param(type_: str, name: str = "") -> dict[str, str]:
    return {"internalType": type_, "name": name, "type": type_}


def _function(
    name: str,
    inputs: list[dict[str, str]] | None = None,
    outputs: list[dict[str, str]] | None = None,
    mutability: str = "nonpayable",
) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": inputs or [],
        "outputs": outputs or [],
        "stateMutability": mutability,
    }


def _constructor(inputs: list[dict[str, str]] | None = None) -> dict[str, Any]:
    return {"type": "constructor", "inputs": inputs or [], "stateMutability": "nonpayable"}


_ADDRESS = _param("address")
_BOOL = _param("bool")
_UINT = _param("uint256")
_STRING = _param("string")

_COMMON = [
    _function("owner", outputs=[_ADDRESS], mutability="view"),
]

ABIS: dict[str, list[dict[str, Any]]] = {
    MULTISIG_CONTRACT: [
        _constructor([_param("address[]", "owners"), _param("uint256", "threshold")]),
        _function("getOwners", outputs=[_param("address[]")], mutability="view"),
        _function("threshold", outputs=[_UINT], mutability="view"),
        _function("getTransactionCount", outputs=[_UINT], mutability="view"),
        _function(
            "getTransaction",
            [_param("uint256", "txIndex")],
            [_param("address", "to"), _param("uint256", "value"), _param("bytes", "data")],
            "view",
        ),
        _function("isExecuted", [_param("uint256", "txIndex")], [_BOOL], "view"),
        _function("getConfirmations", [_param("uint256", "txIndex")], [_param("address[]")], "view"),
        _function(
            "isConfirmed",
            [_param("uint256", "txIndex"), _param("address", "owner")],
            [_BOOL],
            "view",
        ),
        _function(
            "submitTransaction",
            [_param("address", "to"), _param("uint256", "value"), _param("bytes", "data")],
        ),
        _function("confirmTransaction", [_param("uint256", "txIndex")]),
        _function("revokeConfirmation", [_param("uint256", "txIndex")]),
        _function("executeTransaction", [_param("uint256", "txIndex")]),
    ],
    MANAGER_CONTRACT: _COMMON + [
        _constructor(),
        _function(
            "initialize",
            [
                _param("address", "_multisigWallet"),
                _param("address", "_policyContract"),
                _param("address", "_rolesContract"),
            ],
        ),
        _function("getPolicyContract", outputs=[_ADDRESS], mutability="view"),
        _function("getRolesContract", outputs=[_ADDRESS], mutability="view"),
        _function("getMultisigWallet", outputs=[_ADDRESS], mutability="view"),
        _function(
            "validateTransactionWithRole",
            [
                _param("address", "member"),
                _param("address", "to"),
                _param("uint256", "amount"),
                _param("address", "token"),
            ],
            [_BOOL, _STRING],
        ),
        _function("canMemberExecuteTransaction", [_param("address", "member")], [_BOOL], "view"),
        _function("canMemberApproveTransaction", [_param("address", "member")], [_BOOL], "view"),
    ],
    POLICY_CONTRACT: _COMMON + [
        _constructor(),
        _function("isActive", outputs=[_BOOL], mutability="view"),
        _function(
            "validateTransaction",
            [
                _param("address", "from"),
                _param("address", "to"),
                _param("uint256", "amount"),
                _param("address", "token"),
            ],
            [_BOOL, _STRING],
            "view",
        ),
        _function("currentDailySpent", outputs=[_UINT], mutability="view"),
        _function("recordSpend", [_param("uint256", "amount")]),
        _function(
            "updatePolicyLimits",
            [_param("uint256", "newMaxTransactionAmount"), _param("uint256", "newDailyLimit")],
        ),
        _function("pausePolicy"),
        _function("activatePolicy"),
    ],
    ROLES_CONTRACT: _COMMON + [
        _constructor(),
        _function("isActive", outputs=[_BOOL], mutability="view"),
        _function("assignRole", [_param("address", "member"), _param("string", "roleId")]),
        _function("removeRole", [_param("address", "member")]),
        _function(
            "hasMemberPermission",
            [_param("address", "member"), _param("string", "permission")],
            [_BOOL],
            "view",
        ),
        _function(
            "meetsRoleRequirement",
            [_param("address", "member"), _param("string", "roleId")],
            [_BOOL],
            "view",
        ),
        _function("getMemberRole", [_param("address", "member")], [_STRING], "view"),
        _function("canExecuteTransaction", [_param("address", "member")], [_BOOL], "view"),
    ],
}


# ════════════════════════════════════════════════════════════════
# Assembly
# ════════════════════════════════════════════════════════════════


def generate_contract_system(config: SystemConfig) -> ContractSystem:
    """
    Validate the configuration and generate Roles, Policy and the manager.

    Raises:
        ConfigurationError: Before any module text is produced.
    """
    validate_system_config(config)

    roles = generate_roles_module(config.roles)
    policy = generate_policy_module(config.policy)
    integrated = generate_integration_module(config.policy, config.roles)

    metadata = SystemMetadata(
        custom_roles=[r.display_name for r in config.roles.enabled_roles],
        amount_rules=[f"{format_eth(r.threshold_eth)}ETH" for r in config.policy.enabled_amount_rules],
    )
    logger.info(
        "Generated contract system '%s': %d roles, %d amount tiers",
        config.roles.name, len(metadata.custom_roles), len(metadata.amount_rules),
    )
    return ContractSystem(roles=roles, policy=policy, integrated=integrated, metadata=metadata)


def prepare_for_deployment(module: GeneratedModule) -> CompiledArtifact:
    """Attach the fixed ABI and placeholder bytecode to a generated module."""
    return CompiledArtifact(
        logical_name=module.logical_name,
        source_text=module.source_text,
        abi=abi_for(module.logical_name),
        bytecode=PLACEHOLDER_BYTECODE,
    )


def multisig_artifact() -> CompiledArtifact:
    """Artifact for the fixed (not generated) base multisig contract."""
    return CompiledArtifact(
        logical_name=MULTISIG_CONTRACT,
        source_text="",
        abi=abi_for(MULTISIG_CONTRACT),
        bytecode=PLACEHOLDER_BYTECODE,
    )


def abi_for(logical_name: str) -> list[dict[str, Any]]:
    try:
        return [dict(entry) for entry in ABIS[logical_name]]
    except KeyError:
        raise ValueError(f"No ABI registered for contract '{logical_name}'") from None
