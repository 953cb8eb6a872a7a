"""
Tests for the module generators and the System Assembler.

Validates:
- Byte-identical output for identical configurations
- Policy check order and tier emission
- Manager tier ordering and rejection reasons
- Member seating, disabled roles and string escaping
- Configuration errors raised before any text is produced
"""

from __future__ import annotations

import json
import re
from collections import Counter
from decimal import Decimal

import pytest

from multisig_forge.configuration.parser import write_contract_system
from multisig_forge.configuration.schema import (
    DEFAULT_ROLES,
    AmountRule,
    PermissionTag,
    PolicyConfig,
    RoleConfig,
    RoleDefinition,
    SystemConfig,
)
from multisig_forge.errors import ConfigurationError
from multisig_forge.generation.integration import generate_integration_module
from multisig_forge.generation.policy import generate_policy_module
from multisig_forge.generation.roles import generate_roles_module
from multisig_forge.generation.system import (
    PLACEHOLDER_BYTECODE,
    abi_for,
    generate_contract_system,
    prepare_for_deployment,
)

ADMIN = "0x1111111111111111111111111111111111111111"
MANAGER = "0x2222222222222222222222222222222222222222"
MEMBER = "0xAbCdEf0000000000000000000000000000000003"

DECLARATION = re.compile(
    r"^\s*(?:function|modifier|event) (\w+)\(|^\s*\S.* public (\w+);", re.MULTILINE
)


def _declared_names(text: str) -> Counter:
    """Count every function, modifier, event and public state name in a module."""
    return Counter(a or b for a, b in DECLARATION.findall(text))


def _roles(**overrides) -> RoleConfig:
    data = dict(
        name="Treasury Roles",
        roles=[
            RoleDefinition(
                id="admin", display_name="Admin", level=100,
                permissions=set(PermissionTag),
            ),
            RoleDefinition(
                id="manager", display_name="Manager", level=80,
                permissions={PermissionTag.EXECUTE_TRANSACTION, PermissionTag.ASSIGN_ROLE},
            ),
            RoleDefinition(
                id="member", display_name="Member", level=40,
                permissions={PermissionTag.EXECUTE_TRANSACTION},
            ),
        ],
        member_roles={ADMIN: "admin", MANAGER: "manager", MEMBER: "member"},
    )
    data.update(overrides)
    return RoleConfig(**data)


def _policy(**overrides) -> PolicyConfig:
    data = dict(
        name="Treasury Policy",
        max_tx_amount_eth=Decimal("10"),
        daily_limit_eth=Decimal("50"),
        amount_rules=[
            AmountRule(threshold_eth=Decimal("0.1"), required_role_id="member"),
            AmountRule(threshold_eth=Decimal("1"), required_role_id="manager"),
            AmountRule(threshold_eth=Decimal("10"), required_role_id="admin"),
        ],
    )
    data.update(overrides)
    return PolicyConfig(**data)


class TestDeterminism:
    def test_identical_config_identical_text(self):
        first = generate_contract_system(SystemConfig(roles=_roles(), policy=_policy()))
        second = generate_contract_system(SystemConfig(roles=_roles(), policy=_policy()))
        for a, b in zip(first.modules, second.modules):
            assert a.source_text == b.source_text

    def test_no_timestamp_in_text(self):
        system = generate_contract_system(SystemConfig(roles=_roles(), policy=_policy()))
        year = str(system.metadata.generated_at.year)
        for module in system.modules:
            assert f"Generated: {year}" not in module.source_text

    def test_metadata(self):
        system = generate_contract_system(SystemConfig(roles=_roles(), policy=_policy()))
        assert system.metadata.custom_roles == ["Admin", "Manager", "Member"]
        assert system.metadata.amount_rules == ["0.1ETH", "1ETH", "10ETH"]
        assert [m.filename for m in system.modules] == [
            "Roles.sol", "Policy.sol", "IntegratedWalletManager.sol",
        ]


class TestRolesModule:
    def test_accessors_per_enabled_role(self):
        text = generate_roles_module(_roles()).source_text
        assert "contract Roles {" in text
        assert "address[] public managerMembers;" in text
        assert "function isManager(address member) public view returns (bool)" in text
        assert "function isMember(address member) public view returns (bool)" in text
        assert "function getMemberCount() external view returns (uint256)" in text
        assert "function getTotalMemberCount() external view returns (uint256)" in text

    def test_disabled_role_omitted(self):
        roles = _roles()
        roles.roles.append(
            RoleDefinition(id="auditor", display_name="Auditor", level=30, enabled=False)
        )
        text = generate_roles_module(roles).source_text
        assert "isAuditor" not in text
        assert "auditorMembers" not in text

    def test_members_seated_with_lowercase_literal(self):
        text = generate_roles_module(_roles()).source_text
        assert '_seatMember(address(bytes20(hex"abcdef0000000000000000000000000000000003")), "member");' in text
        assert '_seatMember(address(bytes20(hex"1111111111111111111111111111111111111111")), "admin");' in text

    def test_permissions_emitted_in_vocabulary_order(self):
        text = generate_roles_module(_roles()).source_text
        assign = text.index('rolePermissions["manager"]["ASSIGN_ROLE"] = true;')
        execute = text.index('rolePermissions["manager"]["EXECUTE_TRANSACTION"] = true;')
        assert assign < execute

    def test_escaping(self):
        roles = _roles(name='Team "Alpha"', description="Line one\nLine two */ done")
        roles.roles[1] = RoleDefinition(
            id="manager", display_name="Gérant", level=80, description='Says "hi"\\',
            permissions={PermissionTag.EXECUTE_TRANSACTION},
        )
        text = generate_roles_module(roles).source_text
        assert 'rolesName = "Team \\"Alpha\\"";' in text
        assert 'description = "Line one\\nLine two */ done";' in text
        assert '"G\\u00e9rant"' in text
        assert '"Says \\"hi\\"\\\\"' in text
        # Only the closing delimiter of the header comment remains.
        header = text.split("contract Roles")[0]
        assert header.count("*/") == 1
        assert "function isGrant(address member)" in text

    def test_default_roles_declare_each_name_once(self):
        roles = RoleConfig(roles=list(DEFAULT_ROLES.values()))
        declared = _declared_names(generate_roles_module(roles).source_text)
        assert [name for name, count in declared.items() if count > 1] == []
        assert declared["isMember"] == 1
        assert declared["getMemberCount"] == 1
        assert declared["registered"] == 1

    def test_role_shadowing_fixed_member(self):
        roles = _roles()
        roles.roles.append(RoleDefinition(id="active", display_name="Active", level=20))
        with pytest.raises(ConfigurationError) as exc_info:
            generate_roles_module(roles)
        assert "'Active'" in str(exc_info.value)
        assert "isActive" in str(exc_info.value)

        with pytest.raises(ConfigurationError):
            generate_contract_system(SystemConfig(roles=roles, policy=_policy()))

    def test_name_collision(self):
        roles = _roles()
        roles.roles.append(RoleDefinition(id="manager2", display_name="manager!", level=70))
        with pytest.raises(ConfigurationError) as exc_info:
            generate_roles_module(roles)
        assert "'Manager'" in str(exc_info.value)
        assert "'manager!'" in str(exc_info.value)


class TestPolicyModule:
    def test_check_order(self):
        text = generate_policy_module(_policy()).source_text
        body = text[text.index("function validateTransaction("):]
        positions = [
            body.index("Daily limit exceeded"),
            body.index("Transaction amount exceeds maximum allowed"),
            body.index("Transaction involves blacklisted address"),
            body.index("Token not allowed"),
            body.index("Transaction approved"),
        ]
        assert positions == sorted(positions)
        assert "token != address(0) && !allowedTokens[token]" in body

    def test_tier_predicates(self):
        text = generate_policy_module(_policy()).source_text
        assert "function isOver0dot1eth(uint256 amount) public pure returns (bool)" in text
        assert "return amount >= 100000000000000000;" in text
        assert "function isOver1eth(uint256 amount) public pure returns (bool)" in text
        assert "function requiresIsOver10ethApproval(uint256 amount)" in text

    def test_limits_in_wei(self):
        text = generate_policy_module(_policy(max_tx_amount_eth=Decimal("0.5"))).source_text
        assert "maxTransactionAmount = 500000000000000000; // 0.5 ETH" in text
        assert "dailyLimit = 50000000000000000000; // 50 ETH" in text

    def test_no_tiers(self):
        text = generate_policy_module(_policy(amount_rules=[])).source_text
        assert "// No amount tiers configured." in text
        assert "isOver" not in text

    def test_disabled_tier_omitted(self):
        policy = _policy(amount_rules=[
            AmountRule(threshold_eth=Decimal("5"), required_role_id="admin", enabled=False),
        ])
        assert "isOver5eth" not in generate_policy_module(policy).source_text

    def test_tier_collision(self):
        policy = _policy(amount_rules=[
            AmountRule(threshold_eth=Decimal("0.1"), required_role_id="member"),
            AmountRule(threshold_eth=Decimal("0.10"), required_role_id="admin"),
        ])
        with pytest.raises(ConfigurationError) as exc_info:
            generate_policy_module(policy)
        assert "isOver0dot1eth" in str(exc_info.value)

    def test_token_and_blacklist_literals(self):
        token = "0x" + "Aa" * 20
        policy = _policy(allowed_tokens=[token], blacklisted_addresses=[MANAGER])
        text = generate_policy_module(policy).source_text
        assert f'allowedTokens[address(bytes20(hex"{"aa" * 20}"))] = true;' in text
        assert 'blacklistedAddresses[address(bytes20(hex"2222222222222222222222222222222222222222"))] = true;' in text


class TestIntegratedModule:
    def test_imports_and_links(self):
        text = generate_integration_module(_policy(), _roles()).source_text
        assert 'import "./Policy.sol";' in text
        assert 'import "./Roles.sol";' in text
        assert "contract IntegratedWalletManager {" in text
        assert "function initialize(" in text

    def test_tiers_checked_in_declaration_order(self):
        text = generate_integration_module(_policy(), _roles()).source_text
        first = text.index("policyContract.isOver0dot1eth(amount)")
        second = text.index("policyContract.isOver1eth(amount)")
        third = text.index("policyContract.isOver10eth(amount)")
        final = text.index("policyContract.validateTransaction(member, to, amount, token)")
        assert first < second < third < final

    def test_rejection_reasons(self):
        text = generate_integration_module(_policy(), _roles()).source_text
        assert '"Requires manager approval for 1 ETH+ transactions"' in text
        assert '"Requires member approval for 0.1 ETH+ transactions"' in text
        assert 'rolesContract.meetsRoleRequirement(member, "admin")' in text
        execute = text.index("rolesContract.canExecuteTransaction(member)")
        assert execute < text.index("policyContract.isOver0dot1eth(amount)")


class TestSystemAssembler:
    def test_unknown_tier_role_rejected(self):
        policy = _policy(amount_rules=[
            AmountRule(threshold_eth=Decimal("1"), required_role_id="treasurer"),
        ])
        with pytest.raises(ConfigurationError) as exc_info:
            generate_contract_system(SystemConfig(roles=_roles(), policy=policy))
        assert "treasurer" in str(exc_info.value)

    def test_member_in_unknown_role_rejected(self):
        roles = _roles(member_roles={ADMIN: "admin", MEMBER: "ghost"})
        with pytest.raises(ConfigurationError):
            generate_contract_system(SystemConfig(roles=roles, policy=_policy()))

    def test_approval_threshold_above_member_count(self):
        policy = _policy(require_approval=True, approval_threshold=5)
        with pytest.raises(ConfigurationError):
            generate_contract_system(SystemConfig(roles=_roles(), policy=policy))

    def test_prepare_for_deployment(self):
        system = generate_contract_system(SystemConfig(roles=_roles(), policy=_policy()))
        artifact = prepare_for_deployment(system.policy)
        assert artifact.logical_name == "Policy"
        assert artifact.bytecode == PLACEHOLDER_BYTECODE
        assert artifact.is_simulation
        names = {entry.get("name") for entry in artifact.abi}
        assert "validateTransaction" in names

    def test_treasury_modules_declare_each_name_once(self):
        roles = RoleConfig(
            roles=[
                RoleDefinition(id="admin", display_name="Admin", level=100,
                               permissions={PermissionTag.EXECUTE_TRANSACTION}),
                RoleDefinition(id="member", display_name="Member", level=40,
                               permissions={PermissionTag.EXECUTE_TRANSACTION}),
            ],
            member_roles={ADMIN: "admin", MEMBER: "member"},
        )
        policy = PolicyConfig(
            max_tx_amount_eth=Decimal("10"),
            daily_limit_eth=Decimal("2"),
            amount_rules=[AmountRule(threshold_eth=Decimal("0.5"), required_role_id="admin")],
        )
        system = generate_contract_system(SystemConfig(roles=roles, policy=policy))

        for module in system.modules:
            declared = _declared_names(module.source_text)
            assert [name for name, count in declared.items() if count > 1] == [], module.logical_name
            assert module.source_text.count("{") == module.source_text.count("}"), module.logical_name

        manager = _declared_names(system.integrated.source_text)
        assert manager["isMember"] == manager["isAdmin"] == manager["isOver0dot5eth"] == 1
        assert _declared_names(system.policy.source_text)["requiresIsOver0dot5ethApproval"] == 1

    def test_abi_for_unknown(self):
        with pytest.raises(ValueError):
            abi_for("Vault")

    def test_write_contract_system(self, tmp_path):
        system = generate_contract_system(SystemConfig(roles=_roles(), policy=_policy()))
        written = write_contract_system(system, tmp_path / "build")
        assert [p.name for p in written] == [
            "Roles.sol", "Policy.sol", "IntegratedWalletManager.sol", "metadata.json",
        ]
        assert written[1].read_text(encoding="utf-8") == system.policy.source_text
        meta = json.loads(written[3].read_text(encoding="utf-8"))
        assert meta["custom_roles"] == ["Admin", "Manager", "Member"]
