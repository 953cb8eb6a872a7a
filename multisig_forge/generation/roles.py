"""
Role Module Generator — emit the `Roles` contract from a RoleConfig.

The generated contract registers every enabled role with its level and
permission set, seeds the member assignment table, and keeps one membership
array per role so each member sits in exactly one role collection.
Reassignment removes a member from its old collection (swap-and-pop) before
adding it to the new one. The reserved `admin` role can only be seated by
the constructor.

Generation is pure: the same RoleConfig always produces the same text.
"""

from __future__ import annotations

from multisig_forge.configuration.schema import (
    ADMIN_ROLE_ID,
    GeneratedModule,
    PermissionTag,
    RoleConfig,
    RoleDefinition,
)
from multisig_forge.errors import ConfigurationError
from multisig_forge.generation.identifiers import capitalize, derive_unique, role_identifier
from multisig_forge.generation.solidity import (
    address_literal,
    block,
    comment_text,
    render_contract,
    render_file_header,
    string_literal,
)

CONTRACT_NAME = "Roles"

# State variables, modifiers and functions every Roles contract declares.
# Per-role accessors must not reuse any of these names.
FIXED_MEMBERS = frozenset({
    "rolesName", "description", "owner", "isActive",
    "memberRoles", "registered", "memberJoinTime",
    "roles", "roleExists", "rolePermissions", "validPermissions",
    "roleIds", "members",
    "onlyOwner", "onlyPermitted", "whenActive",
    "_sameRole", "_isAdminRole", "_removeFromArray", "_addToRoleArray",
    "_removeFromRoleArray", "_registerRole", "_seatMember",
    "assignRole", "removeRole", "createRole", "deleteRole",
    "grantPermission", "revokePermission",
    "hasMemberRole", "hasRolePermission", "hasMemberPermission", "meetsRoleRequirement",
    "canExecuteTransaction", "canApproveTransaction", "canViewTransactions",
    "canManagePolicies", "getMemberRole", "getRoleInfo", "getRoleLevel", "isRoleHigher",
    "getAllRoles", "getMembers", "getTotalMemberCount", "getRolePermissions",
    "emergencyPause", "emergencyUnpause", "transferOwnership",
})


def role_accessor_names(identifier: str) -> list[str]:
    """Names declared for one role: its membership array and three accessors."""
    name = capitalize(identifier)
    return [f"{identifier}Members", f"is{name}", f"get{name}Members", f"get{name}Count"]


def role_identifiers(config: RoleConfig) -> list[tuple[RoleDefinition, str]]:
    """
    Enabled roles paired with their derived identifiers.

    Raises:
        ConfigurationError: If two roles derive the same identifier, or a
            role's accessors would redeclare a fixed Roles member.
    """
    pairs = derive_unique(
        config.enabled_roles,
        lambda r: role_identifier(r.display_name),
        kind="role",
        label=lambda r: r.display_name,
    )
    for role, ident in pairs:
        for name in role_accessor_names(ident):
            if name in FIXED_MEMBERS:
                raise ConfigurationError(
                    f"Identifier collision: role {role.display_name!r} derives '{ident}', "
                    f"whose accessor '{name}' is already declared by the Roles contract"
                )
    return pairs


# ════════════════════════════════════════════════════════════════
# Sections
# ════════════════════════════════════════════════════════════════


def _render_state(roles: list[tuple[RoleDefinition, str]]) -> str:
    lines = [
        block("""
            // ── Events ──
            event RoleCreated(string roleId, string roleName, uint256 level);
            event RoleDeleted(string roleId);
            event RoleAssigned(address indexed member, string roleId);
            event RoleRemoved(address indexed member, string roleId);
            event PermissionGranted(string roleId, string permission);
            event PermissionRevoked(string roleId, string permission);
            event EmergencyPaused(address indexed by);
            event EmergencyUnpaused(address indexed by);
            event OwnershipTransferred(address indexed previousOwner, address indexed newOwner);

            // ── State ──
            string public rolesName;
            string public description;
            address public owner;
            bool public isActive;

            struct Role {
                string id;
                string name;
                string description;
                uint256 level;
                bool exists;
                uint256 memberCount;
            }

            mapping(address => string) public memberRoles;
            mapping(address => bool) public registered;
            mapping(address => uint256) public memberJoinTime;

            mapping(string => Role) public roles;
            mapping(string => bool) public roleExists;
            mapping(string => mapping(string => bool)) public rolePermissions;
            mapping(string => bool) public validPermissions;

            string[] public roleIds;
            address[] public members;
        """),
        "",
        "// ── Role membership collections ──",
    ]
    for _, ident in roles:
        lines.append(f"address[] public {ident}Members;")
    return "\n".join(lines)


def _render_modifiers() -> str:
    return block("""
        modifier onlyOwner() {
            require(msg.sender == owner, "Only owner can call this function");
            _;
        }

        modifier onlyPermitted(string memory permission) {
            require(hasMemberPermission(msg.sender, permission), "Insufficient permissions");
            _;
        }

        modifier whenActive() {
            require(isActive, "Roles contract is paused");
            _;
        }
    """)


def _render_constructor(config: RoleConfig, roles: list[tuple[RoleDefinition, str]]) -> str:
    body = [
        "owner = msg.sender;",
        f"rolesName = {string_literal(config.name)};",
        f"description = {string_literal(config.description)};",
        "isActive = true;",
        "",
    ]
    for tag in PermissionTag:
        body.append(f'validPermissions["{tag.on_chain}"] = true;')

    for role, _ in roles:
        body.append("")
        body.append(
            f"_registerRole({string_literal(role.id)}, {string_literal(role.display_name)}, "
            f"{string_literal(role.description)}, {role.level});"
        )
        for tag in role.ordered_permissions:
            body.append(f'rolePermissions[{string_literal(role.id)}]["{tag.on_chain}"] = true;')

    if config.member_roles:
        body.append("")
    for address, role_id in config.member_roles.items():
        body.append(f"_seatMember({address_literal(address)}, {string_literal(role_id)});")

    inner = "\n".join(f"    {line}" if line else "" for line in body)
    return f"constructor() {{\n{inner}\n}}"


def _render_collection_helpers(roles: list[tuple[RoleDefinition, str]]) -> str:
    add_branches = []
    remove_branches = []
    for role, ident in roles:
        test = f"_sameRole(roleId, {string_literal(role.id)})"
        add_branches.append(f"if ({test}) {{\n    {ident}Members.push(member);\n}}")
        remove_branches.append(
            f"if ({test}) {{\n    _removeFromArray({ident}Members, member);\n}}"
        )
    add_body = " else ".join(add_branches) or "// no role collections"
    remove_body = " else ".join(remove_branches) or "// no role collections"

    def wrap(text: str) -> str:
        return "\n".join(f"    {line}" for line in text.splitlines())

    return "\n\n".join([
        block("""
            function _sameRole(string memory a, string memory b) internal pure returns (bool) {
                return keccak256(bytes(a)) == keccak256(bytes(b));
            }

            function _isAdminRole(string memory roleId) internal pure returns (bool) {
                return _sameRole(roleId, "%s");
            }

            function _removeFromArray(address[] storage list, address member) internal {
                for (uint256 i = 0; i < list.length; i++) {
                    if (list[i] == member) {
                        list[i] = list[list.length - 1];
                        list.pop();
                        break;
                    }
                }
            }
        """ % ADMIN_ROLE_ID),
        "function _addToRoleArray(address member, string memory roleId) internal {\n"
        + wrap(add_body) + "\n}",
        "function _removeFromRoleArray(address member, string memory roleId) internal {\n"
        + wrap(remove_body) + "\n}",
    ])


def _render_internal_mutators() -> str:
    return block("""
        function _registerRole(
            string memory roleId,
            string memory roleName,
            string memory roleDescription,
            uint256 level
        ) internal {
            roles[roleId] = Role({
                id: roleId,
                name: roleName,
                description: roleDescription,
                level: level,
                exists: true,
                memberCount: 0
            });
            roleExists[roleId] = true;
            roleIds.push(roleId);
            emit RoleCreated(roleId, roleName, level);
        }

        function _seatMember(address member, string memory roleId) internal {
            if (registered[member]) {
                string memory oldRole = memberRoles[member];
                roles[oldRole].memberCount--;
                _removeFromRoleArray(member, oldRole);
                emit RoleRemoved(member, oldRole);
            } else {
                members.push(member);
            }
            memberRoles[member] = roleId;
            registered[member] = true;
            memberJoinTime[member] = block.timestamp;
            roles[roleId].memberCount++;
            _addToRoleArray(member, roleId);
            emit RoleAssigned(member, roleId);
        }
    """)


def _render_role_management() -> str:
    return block("""
        // ── Membership ──

        function assignRole(address member, string memory roleId)
            external
            whenActive
            onlyPermitted("ASSIGN_ROLE")
        {
            require(roleExists[roleId], "Role does not exist");
            require(!_isAdminRole(roleId), "Cannot assign admin role");
            require(member != address(0), "Invalid member address");
            require(
                !registered[member] || !_isAdminRole(memberRoles[member]),
                "Cannot reassign admin role holder"
            );
            _seatMember(member, roleId);
        }

        function removeRole(address member) external whenActive onlyPermitted("REMOVE_ROLE") {
            require(registered[member], "Member does not exist");
            require(!_isAdminRole(memberRoles[member]), "Cannot remove admin role");

            string memory oldRole = memberRoles[member];
            roles[oldRole].memberCount--;
            _removeFromRoleArray(member, oldRole);
            _removeFromArray(members, member);

            delete memberRoles[member];
            delete memberJoinTime[member];
            registered[member] = false;

            emit RoleRemoved(member, oldRole);
        }

        // ── Role definitions ──

        function createRole(
            string memory roleId,
            string memory roleName,
            string memory roleDescription,
            uint256 level
        ) external whenActive onlyPermitted("CREATE_ROLE") {
            require(!roleExists[roleId], "Role already exists");
            require(bytes(roleId).length > 0, "Role id required");
            require(level <= 100, "Level must be between 0 and 100");
            _registerRole(roleId, roleName, roleDescription, level);
        }

        function deleteRole(string memory roleId) external whenActive onlyPermitted("DELETE_ROLE") {
            require(roleExists[roleId], "Role does not exist");
            require(!_isAdminRole(roleId), "Cannot delete admin role");
            require(roles[roleId].memberCount == 0, "Role still has members");

            delete roles[roleId];
            roleExists[roleId] = false;
            for (uint256 i = 0; i < roleIds.length; i++) {
                if (_sameRole(roleIds[i], roleId)) {
                    roleIds[i] = roleIds[roleIds.length - 1];
                    roleIds.pop();
                    break;
                }
            }
            emit RoleDeleted(roleId);
        }

        // ── Permissions ──

        function grantPermission(string memory roleId, string memory permission)
            external
            whenActive
            onlyPermitted("MODIFY_PERMISSIONS")
        {
            require(roleExists[roleId], "Role does not exist");
            require(validPermissions[permission], "Unknown permission");
            rolePermissions[roleId][permission] = true;
            emit PermissionGranted(roleId, permission);
        }

        function revokePermission(string memory roleId, string memory permission)
            external
            whenActive
            onlyPermitted("MODIFY_PERMISSIONS")
        {
            require(roleExists[roleId], "Role does not exist");
            require(validPermissions[permission], "Unknown permission");
            rolePermissions[roleId][permission] = false;
            emit PermissionRevoked(roleId, permission);
        }
    """)


def _render_role_accessors(roles: list[tuple[RoleDefinition, str]]) -> str:
    chunks = []
    for role, ident in roles:
        array, is_role, get_members, get_count = role_accessor_names(ident)
        rid = string_literal(role.id)
        chunks.append("\n".join([
            f"// {comment_text(role.display_name)} (level {role.level})",
            f"function {is_role}(address member) public view returns (bool) {{",
            f"    return hasMemberRole(member, {rid});",
            "}",
            "",
            f"function {get_members}() external view returns (address[] memory) {{",
            f"    return {array};",
            "}",
            "",
            f"function {get_count}() external view returns (uint256) {{",
            f"    return {array}.length;",
            "}",
        ]))
    return "\n\n".join(chunks)


def _render_queries() -> str:
    permission_list = ",\n".join(f'    "{t.on_chain}"' for t in PermissionTag)
    permission_count = len(PermissionTag)
    lookups = block("""
        // ── Queries ──

        function hasMemberRole(address member, string memory roleId) public view returns (bool) {
            return registered[member] && _sameRole(memberRoles[member], roleId);
        }

        function hasRolePermission(string memory roleId, string memory permission)
            public
            view
            returns (bool)
        {
            return rolePermissions[roleId][permission];
        }

        function hasMemberPermission(address member, string memory permission)
            public
            view
            returns (bool)
        {
            return registered[member] && rolePermissions[memberRoles[member]][permission];
        }

        function meetsRoleRequirement(address member, string memory roleId) public view returns (bool) {
            if (!registered[member] || !roleExists[roleId]) {
                return false;
            }
            string memory held = memberRoles[member];
            if (_sameRole(held, roleId)) {
                return true;
            }
            return roles[held].level > roles[roleId].level;
        }

        function canExecuteTransaction(address member) external view returns (bool) {
            return hasMemberPermission(member, "EXECUTE_TRANSACTION");
        }

        function canApproveTransaction(address member) external view returns (bool) {
            return hasMemberPermission(member, "APPROVE_TRANSACTION");
        }

        function canViewTransactions(address member) external view returns (bool) {
            return hasMemberPermission(member, "VIEW_TRANSACTIONS");
        }

        function canManagePolicies(address member) external view returns (bool) {
            return hasMemberPermission(member, "MANAGE_POLICIES");
        }

        function getMemberRole(address member) external view returns (string memory) {
            return memberRoles[member];
        }

        function getRoleInfo(string memory roleId)
            external
            view
            returns (string memory name, string memory roleDescription, uint256 level, uint256 memberCount)
        {
            require(roleExists[roleId], "Role does not exist");
            Role storage role = roles[roleId];
            return (role.name, role.description, role.level, role.memberCount);
        }

        function getRoleLevel(string memory roleId) public view returns (uint256) {
            require(roleExists[roleId], "Role does not exist");
            return roles[roleId].level;
        }

        function isRoleHigher(string memory roleA, string memory roleB) external view returns (bool) {
            return getRoleLevel(roleA) > getRoleLevel(roleB);
        }

        function getAllRoles() external view returns (string[] memory) {
            return roleIds;
        }

        function getMembers() external view returns (address[] memory) {
            return members;
        }

        function getTotalMemberCount() external view returns (uint256) {
            return members.length;
        }
    """)
    permissions = "\n".join([
        "function getRolePermissions(string memory roleId) external view returns (string[] memory) {",
        "    require(roleExists[roleId], \"Role does not exist\");",
        f"    string[{permission_count}] memory known = [",
        "\n".join("    " + line for line in permission_list.splitlines()),
        "    ];",
        "    uint256 count = 0;",
        "    for (uint256 i = 0; i < known.length; i++) {",
        "        if (rolePermissions[roleId][known[i]]) {",
        "            count++;",
        "        }",
        "    }",
        "    string[] memory granted = new string[](count);",
        "    uint256 j = 0;",
        "    for (uint256 i = 0; i < known.length; i++) {",
        "        if (rolePermissions[roleId][known[i]]) {",
        "            granted[j++] = known[i];",
        "        }",
        "    }",
        "    return granted;",
        "}",
    ])
    return f"{lookups}\n\n{permissions}"


def _render_admin_controls() -> str:
    return block("""
        // ── Emergency & ownership ──

        function emergencyPause() external onlyPermitted("EMERGENCY_PAUSE") {
            isActive = false;
            emit EmergencyPaused(msg.sender);
        }

        function emergencyUnpause() external onlyOwner {
            isActive = true;
            emit EmergencyUnpaused(msg.sender);
        }

        function transferOwnership(address newOwner) external onlyOwner {
            require(newOwner != address(0), "Invalid owner address");
            emit OwnershipTransferred(owner, newOwner);
            owner = newOwner;
        }
    """)


# ════════════════════════════════════════════════════════════════
# Entry Point
# ════════════════════════════════════════════════════════════════


def generate_roles_module(config: RoleConfig) -> GeneratedModule:
    """
    Generate the Roles contract for a role configuration.

    Args:
        config: Roles and member assignment table. Only enabled roles are
            emitted; members must be assigned to enabled roles.

    Returns:
        GeneratedModule with logical name 'Roles'.

    Raises:
        ConfigurationError: If two enabled role names derive the same identifier.
    """
    roles = role_identifiers(config)
    header = render_file_header(
        f"{config.name} - Role Management Contract",
        [
            config.description,
            "",
            "Roles: " + (", ".join(r.display_name for r, _ in roles) or "none"),
            "Admin role can only be seated at construction.",
        ],
    )
    source = render_contract(header, CONTRACT_NAME, [
        _render_state(roles),
        _render_modifiers(),
        _render_constructor(config, roles),
        _render_collection_helpers(roles),
        _render_internal_mutators(),
        _render_role_management(),
        _render_role_accessors(roles),
        _render_queries(),
        _render_admin_controls(),
    ])
    return GeneratedModule(
        source_text=source,
        logical_name=CONTRACT_NAME,
        description=f"Role management for {config.name}",
    )
