"""
Integration Module Generator — emit `IntegratedWalletManager`.

The manager is deployed empty and later linked to the multisig account, the
Policy and the Roles contracts through `initialize`. Linking is "set if
unset": repeating it with the same addresses is a no-op, while relinking to
different addresses reverts.

`validateTransactionWithRole` answers, in order:
  1. Can the member execute transactions at all?
  2. Walking amount tiers in declaration order, does the first tier whose
     predicate holds require a role the member neither holds nor outranks?
  3. Otherwise, whatever the Policy verdict is.
"""

from __future__ import annotations

from multisig_forge.configuration.schema import (
    REASON_NO_EXECUTE_PERMISSION,
    GeneratedModule,
    PolicyConfig,
    RoleConfig,
    tier_rejection_reason,
)
from multisig_forge.generation.identifiers import capitalize, format_eth
from multisig_forge.generation.policy import CONTRACT_NAME as POLICY_CONTRACT
from multisig_forge.generation.policy import tier_identifiers
from multisig_forge.generation.roles import CONTRACT_NAME as ROLES_CONTRACT
from multisig_forge.generation.roles import role_identifiers
from multisig_forge.generation.solidity import (
    block,
    render_contract,
    render_file_header,
    string_literal,
)

CONTRACT_NAME = "IntegratedWalletManager"


def _render_state() -> str:
    return block(f"""
        // ── Events ──
        event ContractsLinked(address indexed multisigWallet, address policyContract, address rolesContract);
        event TransactionValidated(address indexed member, bool approved, string reason);
        event RoleValidationFailed(address indexed member, string requiredRole);

        // ── State ──
        {POLICY_CONTRACT} public policyContract;
        {ROLES_CONTRACT} public rolesContract;
        address public multisigWallet;
        address public owner;

        modifier onlyOwner() {{
            require(msg.sender == owner, "Only owner can call this function");
            _;
        }}

        modifier whenLinked() {{
            require(address(policyContract) != address(0), "Contracts not linked");
            _;
        }}

        constructor() {{
            owner = msg.sender;
        }}
    """)


def _render_linking() -> str:
    return block(f"""
        // ── Linking ──

        function initialize(address _multisigWallet, address _policyContract, address _rolesContract)
            external
            onlyOwner
        {{
            require(
                _multisigWallet != address(0) && _policyContract != address(0) && _rolesContract != address(0),
                "Invalid contract address"
            );
            if (address(policyContract) != address(0)) {{
                require(
                    multisigWallet == _multisigWallet
                        && address(policyContract) == _policyContract
                        && address(rolesContract) == _rolesContract,
                    "Already linked to different contracts"
                );
                return;
            }}
            multisigWallet = _multisigWallet;
            policyContract = {POLICY_CONTRACT}(_policyContract);
            rolesContract = {ROLES_CONTRACT}(_rolesContract);
            emit ContractsLinked(_multisigWallet, _policyContract, _rolesContract);
        }}

        function getPolicyContract() external view returns (address) {{
            return address(policyContract);
        }}

        function getRolesContract() external view returns (address) {{
            return address(rolesContract);
        }}

        function getMultisigWallet() external view returns (address) {{
            return multisigWallet;
        }}
    """)


def _render_validation(policy: PolicyConfig) -> str:
    no_permission = string_literal(REASON_NO_EXECUTE_PERMISSION)
    lines = [
        "// ── Validation ──",
        "",
        "function validateTransactionWithRole(address member, address to, uint256 amount, address token)",
        "    external",
        "    whenLinked",
        "    returns (bool, string memory)",
        "{",
        "    if (!rolesContract.canExecuteTransaction(member)) {",
        f"        emit TransactionValidated(member, false, {no_permission});",
        f"        return (false, {no_permission});",
        "    }",
    ]
    for rule, ident in tier_identifiers(policy):
        role_id = string_literal(rule.required_role_id)
        reason = string_literal(
            tier_rejection_reason(rule.required_role_id, format_eth(rule.threshold_eth))
        )
        lines.extend([
            "",
            f"    if (policyContract.{ident}(amount) && !rolesContract.meetsRoleRequirement(member, {role_id})) {{",
            f"        emit RoleValidationFailed(member, {role_id});",
            f"        emit TransactionValidated(member, false, {reason});",
            f"        return (false, {reason});",
            "    }",
        ])
    lines.extend([
        "",
        "    (bool approved, string memory reason) = policyContract.validateTransaction(member, to, amount, token);",
        "    emit TransactionValidated(member, approved, reason);",
        "    return (approved, reason);",
        "}",
    ])
    return "\n".join(lines)


def _render_delegates(policy: PolicyConfig, roles: RoleConfig) -> str:
    chunks = [block("""
        // ── Delegated queries ──

        function canMemberExecuteTransaction(address member) external view whenLinked returns (bool) {
            return rolesContract.canExecuteTransaction(member);
        }

        function canMemberApproveTransaction(address member) external view whenLinked returns (bool) {
            return rolesContract.canApproveTransaction(member);
        }
    """)]
    for _, ident in role_identifiers(roles):
        name = capitalize(ident)
        chunks.append("\n".join([
            f"function is{name}(address member) external view whenLinked returns (bool) {{",
            f"    return rolesContract.is{name}(member);",
            "}",
        ]))
    for _, ident in tier_identifiers(policy):
        chunks.append("\n".join([
            f"function {ident}(uint256 amount) external view whenLinked returns (bool) {{",
            f"    return policyContract.{ident}(amount);",
            "}",
        ]))
    return "\n\n".join(chunks)


def generate_integration_module(policy: PolicyConfig, roles: RoleConfig) -> GeneratedModule:
    """
    Generate the manager contract that combines role checks with the policy.

    Tier checks reference the same predicate names as the Policy contract
    and the same `is<Role>` accessors as the Roles contract, so the three
    modules must be generated from the same configuration.
    """
    role_names = [r.display_name for r, _ in role_identifiers(roles)]
    tier_names = [f"{format_eth(r.threshold_eth)} ETH" for r, _ in tier_identifiers(policy)]
    header = render_file_header(
        "Integrated Policy and Role Management Contract",
        [
            "Combines policy enforcement with role-based access control.",
            "",
            "Roles: " + (", ".join(role_names) or "none"),
            "Amount tiers: " + (", ".join(tier_names) or "none"),
        ],
        imports=[f"./{POLICY_CONTRACT}.sol", f"./{ROLES_CONTRACT}.sol"],
    )
    source = render_contract(header, CONTRACT_NAME, [
        _render_state(),
        _render_linking(),
        _render_validation(policy),
        _render_delegates(policy, roles),
    ])
    return GeneratedModule(
        source_text=source,
        logical_name=CONTRACT_NAME,
        description="Combined role and policy enforcement",
    )
