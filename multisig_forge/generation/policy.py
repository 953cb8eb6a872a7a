"""
Policy Module Generator — emit the `Policy` contract from a PolicyConfig.

`validateTransaction` checks, in this order and returning at the first
failure: daily limit, per-transaction maximum, blacklist (sender and
recipient), token allow-list (skipped for the native asset, address(0)).

The daily window is the day bucket `block.timestamp / 1 days`. It rolls over
automatically: `currentDailySpent()` reports zero once the bucket of the last
recorded spend has passed, and `recordSpend` resets before adding.
"""

from __future__ import annotations

from multisig_forge.configuration.schema import (
    REASON_APPROVED,
    REASON_BLACKLISTED,
    REASON_DAILY_LIMIT,
    REASON_MAX_AMOUNT,
    REASON_TOKEN_NOT_ALLOWED,
    AmountRule,
    GeneratedModule,
    PolicyConfig,
)
from multisig_forge.generation.identifiers import (
    amount_identifier,
    capitalize,
    derive_unique,
    eth_to_wei,
    format_eth,
)
from multisig_forge.generation.solidity import (
    address_literal,
    block,
    comment_text,
    render_contract,
    render_file_header,
    string_literal,
)

CONTRACT_NAME = "Policy"


def tier_identifiers(config: PolicyConfig) -> list[tuple[AmountRule, str]]:
    """Enabled amount rules, in declaration order, paired with predicate names."""
    return derive_unique(
        config.enabled_amount_rules,
        lambda r: amount_identifier(r.threshold_eth),
        kind="amount tier",
        label=lambda r: f"{format_eth(r.threshold_eth)} ETH",
    )


def approval_alias(identifier: str) -> str:
    """'isOver1eth' → 'requiresIsOver1ethApproval'."""
    return f"requires{capitalize(identifier)}Approval"


# ════════════════════════════════════════════════════════════════
# Sections
# ════════════════════════════════════════════════════════════════


def _render_state() -> str:
    return block("""
        // ── Events ──
        event PolicyUpdated(string policyName, string description);
        event LimitsUpdated(uint256 maxTransactionAmount, uint256 dailyLimit);
        event ApprovalSettingsUpdated(bool requireApproval, uint256 approvalThreshold, uint256 timeLockDelay);
        event SpendRecorded(uint256 amount, uint256 dailySpent, uint256 day);
        event TokenAllowed(address indexed token, bool allowed);
        event AddressBlacklisted(address indexed account, bool blacklisted);
        event PolicyPaused(address indexed by);
        event PolicyActivated(address indexed by);
        event OwnershipTransferred(address indexed previousOwner, address indexed newOwner);

        // ── State ──
        string public policyName;
        string public description;
        address public owner;
        bool public isActive;

        uint256 public maxTransactionAmount;
        uint256 public dailyLimit;
        uint256 public dailySpent;
        uint256 public lastResetDay;

        bool public requireApproval;
        uint256 public approvalThreshold;
        uint256 public timeLockDelay;

        mapping(address => bool) public allowedTokens;
        mapping(address => bool) public blacklistedAddresses;
    """)


def _render_modifiers() -> str:
    return block("""
        modifier onlyOwner() {
            require(msg.sender == owner, "Only owner can call this function");
            _;
        }

        modifier whenActive() {
            require(isActive, "Policy is not active");
            _;
        }
    """)


def _render_constructor(config: PolicyConfig) -> str:
    body = [
        "owner = msg.sender;",
        f"policyName = {string_literal(config.name)};",
        f"description = {string_literal(config.description)};",
        "isActive = true;",
        "",
        f"maxTransactionAmount = {eth_to_wei(config.max_tx_amount_eth)}; "
        f"// {format_eth(config.max_tx_amount_eth)} ETH",
        f"dailyLimit = {eth_to_wei(config.daily_limit_eth)}; "
        f"// {format_eth(config.daily_limit_eth)} ETH",
        "dailySpent = 0;",
        "lastResetDay = block.timestamp / 1 days;",
        "",
        f"requireApproval = {'true' if config.require_approval else 'false'};",
        f"approvalThreshold = {config.approval_threshold};",
        f"timeLockDelay = {config.time_lock_seconds};",
    ]
    if config.allowed_tokens:
        body.append("")
        body.extend(f"allowedTokens[{address_literal(t)}] = true;" for t in config.allowed_tokens)
    if config.blacklisted_addresses:
        body.append("")
        body.extend(
            f"blacklistedAddresses[{address_literal(a)}] = true;"
            for a in config.blacklisted_addresses
        )
    body.append("")
    body.append("emit PolicyUpdated(policyName, description);")

    inner = "\n".join(f"    {line}" if line else "" for line in body)
    return f"constructor() {{\n{inner}\n}}"


def _render_tiers(tiers: list[tuple[AmountRule, str]]) -> str:
    if not tiers:
        return "// ── Amount tiers ──\n// No amount tiers configured."
    chunks = ["// ── Amount tiers ──"]
    for rule, ident in tiers:
        wei = eth_to_wei(rule.threshold_eth)
        chunks.append("\n".join([
            f"// {format_eth(rule.threshold_eth)} ETH and above requires "
            f"{comment_text(rule.required_role_id)}",
            f"function {ident}(uint256 amount) public pure returns (bool) {{",
            f"    return amount >= {wei};",
            "}",
            "",
            f"function {approval_alias(ident)}(uint256 amount) external pure returns (bool) {{",
            f"    return {ident}(amount);",
            "}",
        ]))
    return "\n\n".join(chunks)


def _render_spend_tracking() -> str:
    return block("""
        // ── Daily window ──

        function currentDay() public view returns (uint256) {
            return block.timestamp / 1 days;
        }

        function currentDailySpent() public view returns (uint256) {
            if (currentDay() > lastResetDay) {
                return 0;
            }
            return dailySpent;
        }

        function recordSpend(uint256 amount) external onlyOwner whenActive {
            uint256 day = currentDay();
            if (day > lastResetDay) {
                dailySpent = 0;
                lastResetDay = day;
            }
            dailySpent += amount;
            emit SpendRecorded(amount, dailySpent, day);
        }
    """)


def _render_validation() -> str:
    return "\n".join([
        "// ── Validation ──",
        "",
        "function validateTransaction(address from, address to, uint256 amount, address token)",
        "    external",
        "    view",
        "    whenActive",
        "    returns (bool, string memory)",
        "{",
        "    if (currentDailySpent() + amount > dailyLimit) {",
        f"        return (false, {string_literal(REASON_DAILY_LIMIT)});",
        "    }",
        "    if (amount > maxTransactionAmount) {",
        f"        return (false, {string_literal(REASON_MAX_AMOUNT)});",
        "    }",
        "    if (blacklistedAddresses[from] || blacklistedAddresses[to]) {",
        f"        return (false, {string_literal(REASON_BLACKLISTED)});",
        "    }",
        "    if (token != address(0) && !allowedTokens[token]) {",
        f"        return (false, {string_literal(REASON_TOKEN_NOT_ALLOWED)});",
        "    }",
        f"    return (true, {string_literal(REASON_APPROVED)});",
        "}",
    ])


def _render_mutators() -> str:
    return block("""
        // ── Administration ──

        function updatePolicyLimits(uint256 newMaxTransactionAmount, uint256 newDailyLimit) external onlyOwner {
            maxTransactionAmount = newMaxTransactionAmount;
            dailyLimit = newDailyLimit;
            emit LimitsUpdated(newMaxTransactionAmount, newDailyLimit);
        }

        function updateApprovalSettings(bool newRequireApproval, uint256 newApprovalThreshold, uint256 newTimeLockDelay)
            external
            onlyOwner
        {
            require(newApprovalThreshold > 0, "Approval threshold must be at least 1");
            requireApproval = newRequireApproval;
            approvalThreshold = newApprovalThreshold;
            timeLockDelay = newTimeLockDelay;
            emit ApprovalSettingsUpdated(newRequireApproval, newApprovalThreshold, newTimeLockDelay);
        }

        function addAllowedToken(address token) external onlyOwner {
            allowedTokens[token] = true;
            emit TokenAllowed(token, true);
        }

        function removeAllowedToken(address token) external onlyOwner {
            allowedTokens[token] = false;
            emit TokenAllowed(token, false);
        }

        function addBlacklistedAddress(address account) external onlyOwner {
            blacklistedAddresses[account] = true;
            emit AddressBlacklisted(account, true);
        }

        function removeBlacklistedAddress(address account) external onlyOwner {
            blacklistedAddresses[account] = false;
            emit AddressBlacklisted(account, false);
        }

        function pausePolicy() external onlyOwner {
            isActive = false;
            emit PolicyPaused(msg.sender);
        }

        function activatePolicy() external onlyOwner {
            isActive = true;
            emit PolicyActivated(msg.sender);
        }

        function transferOwnership(address newOwner) external onlyOwner {
            require(newOwner != address(0), "Invalid owner address");
            emit OwnershipTransferred(owner, newOwner);
            owner = newOwner;
        }

        function getPolicyInfo()
            external
            view
            returns (
                string memory name,
                uint256 maxAmount,
                uint256 limit,
                uint256 spentToday,
                bool approvalRequired,
                uint256 threshold,
                bool active
            )
        {
            return (
                policyName,
                maxTransactionAmount,
                dailyLimit,
                currentDailySpent(),
                requireApproval,
                approvalThreshold,
                isActive
            );
        }
    """)


# ════════════════════════════════════════════════════════════════
# Entry Point
# ════════════════════════════════════════════════════════════════


def generate_policy_module(config: PolicyConfig) -> GeneratedModule:
    """
    Generate the Policy contract for a spending policy.

    Raises:
        ConfigurationError: On sub-wei amounts or colliding tier identifiers.
    """
    tiers = tier_identifiers(config)
    header = render_file_header(
        f"{config.name} - Spending Policy Contract",
        [
            config.description,
            "",
            f"Max per transaction: {format_eth(config.max_tx_amount_eth)} ETH",
            f"Daily limit: {format_eth(config.daily_limit_eth)} ETH",
            "Amount tiers: "
            + (", ".join(f"{format_eth(r.threshold_eth)} ETH -> {r.required_role_id}"
                         for r, _ in tiers) or "none"),
        ],
    )
    source = render_contract(header, CONTRACT_NAME, [
        _render_state(),
        _render_modifiers(),
        _render_constructor(config),
        _render_tiers(tiers),
        _render_spend_tracking(),
        _render_validation(),
        _render_mutators(),
    ])
    return GeneratedModule(
        source_text=source,
        logical_name=CONTRACT_NAME,
        description=f"Spending policy {config.name}",
    )
