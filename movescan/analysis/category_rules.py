"""Audit-taxonomy rules, one per vulnerability category.

Severities follow the audit report scale: "major" findings are reported as
high and "minor" findings as low.
"""

import re

from ..models import Severity
from .rules import (
    ASSIGNMENT_PATTERN,
    MODULE_CALL_PATTERN,
    MUT_REF_PATTERN,
    Rule,
    TRANSFER_CALL_PATTERN,
    body_lines,
    function_rule,
    has_guard,
    is_framework_module,
)

READ_PATTERN = re.compile(r"balance::value|\bget_\w*|\bread\w*|\bborrow\s*\(")
WRITE_PATTERN = re.compile(r"balance::split|balance::join|\bset_\w*|\bupdate\w*|\bborrow_mut\b")
LOCK_PATTERN = re.compile(r"lock|mutex|atomic", re.IGNORECASE)

TIME_COMPARISON_PATTERN = re.compile(
    r"\w*(?:timestamp|epoch|time)\w*(?:\s*\([^()]*\))?\s*(?:<=|>=|==|!=|<|>)\s*[\w(]"
    r"|[\w)]\s*(?:<=|>=|==|!=|<|>)\s*[\w:.]*(?:timestamp|epoch|time)"
)

FINANCIAL_PATTERN = re.compile(r"amount|balance|value|price|supply|reserve", re.IGNORECASE)
ARITHMETIC_PATTERN = re.compile(r"[\w)\]]\s*[-+*/%]\s*[\w(]")
CHECKED_MARKER_PATTERN = re.compile(r"checked_|safe_|math::")

DIVISION_PATTERN = re.compile(r"[\w)\]]\s*/\s*[\w(]")
RATE_CONTEXT_PATTERN = re.compile(r"rate|fee|price|reward", re.IGNORECASE)
PRECISION_MARKER_PATTERN = re.compile(r"precision|scale", re.IGNORECASE)

# Framework calls returning unit; nothing to check on their result
UNIT_RETURNING_CALLS = frozenset(
    {
        "transfer",
        "public_transfer",
        "share_object",
        "public_share_object",
        "freeze_object",
        "public_freeze_object",
        "emit",
        "delete",
        "put",
        "join",
        "push_back",
        "add",
        "destroy_zero",
        "destroy_none",
        "fill",
        "drop",
        "reverse",
        "append",
        "keep",
    }
)
STATEMENT_CALL_PATTERN = re.compile(
    r"^\s*(?:[A-Za-z_]\w*::)*(?P<module>[A-Za-z_]\w*)::(?P<function>[A-Za-z_]\w*)\s*(?:<[^()]*>)?\s*\(.*\)\s*;\s*$"
)

LOOP_PATTERN = re.compile(r"\bwhile\b|\bloop\b")
LOOP_EXIT_PATTERN = re.compile(r"\bbreak\b|\breturn\b")
HEAVY_OPERATIONS = ("vector::for_each", "vector::map", "hash::sha3", "hash::", "crypto::", "ecdsa_k1::")

PRIVILEGED_VERB_PATTERN = re.compile(r"transfer|mint|burn|admin|owner", re.IGNORECASE)
CAPABILITY_WORD_PATTERN = re.compile(r"capability|authority", re.IGNORECASE)

MULTISIG_PATTERN = re.compile(r"multisig|consensus", re.IGNORECASE)

AMOUNT_PARAM_PATTERN = re.compile(r"amount|value|qty|quantity", re.IGNORECASE)
NUMERIC_TYPE_PATTERN = re.compile(r"^u(?:8|16|32|64|128|256)$")
BALANCE_UPDATE_PATTERN = re.compile(
    r"balance::(?:join|split|increase_supply|decrease_supply)\s*\(|\bbalance\w*\s*(?:[-+*/]?=)(?![=])"
)
ATOMIC_MARKER_PATTERN = re.compile(r"atomic|transaction", re.IGNORECASE)

GAS_EXPENSIVE_OPERATIONS = (
    ("vector::length", "Consider caching vector length in loops"),
    ("string::utf8", "String operations can be gas-intensive"),
    ("table::borrow", "Frequent table access may be inefficient"),
    ("event::emit", "Excessive event emission increases gas cost"),
)

MINT_CALL_PATTERN = re.compile(
    r"\b(?:[A-Za-z_]\w*::)*mint\w*\s*(?:<[^()]*>)?\s*\(|coin::from_balance|balance::increase_supply"
)
SUPPLY_CHECK_PATTERN = re.compile(r"supply|cap|limit|max_", re.IGNORECASE)

REENTRANCY_GUARD_PATTERN = re.compile(r"reentrancy_guard|nonReentrant|lock|mutex", re.IGNORECASE)
STATE_UPDATE_PATTERN = re.compile(r"balance|amount", re.IGNORECASE)

ORACLE_PATTERN = re.compile(r"price|oracle|feed", re.IGNORECASE)
TIME_WEIGHTING_PATTERN = re.compile(r"twap|time_weighted|average|median", re.IGNORECASE)
PRICE_VALIDATION_PATTERN = re.compile(r"validate|bounds|sanity", re.IGNORECASE)
FALLBACK_PATTERN = re.compile(r"fallback|multiple", re.IGNORECASE)

AUTHORIZATION_VERB_PATTERN = re.compile(r"admin|owner|mint|burn|transfer|withdraw|emergency", re.IGNORECASE)
AUTHORIZATION_WORD_PATTERN = re.compile(r"require|permission|capability", re.IGNORECASE)
ROLE_PATTERN = re.compile(r"role|permission", re.IGNORECASE)
ROLE_CHECK_PATTERN = re.compile(r"has_role|check_permission")


@function_rule(
    "transaction-ordering-dependence",
    "Transaction-Ordering Dependence",
    Severity.HIGH,
    "Transaction-Ordering Dependence",
    "Guard read-then-write sequences with a version check or lock so concurrent transactions cannot interleave",
)
def transaction_ordering(rule, func, ctx):
    """Read-then-write of state with no lock or atomic marker."""
    if not func.is_public or LOCK_PATTERN.search(func.code):
        return
    body = func.body_code
    read = READ_PATTERN.search(body)
    if not read:
        return
    write = WRITE_PATTERN.search(body, read.end())
    if write:
        yield rule.finding(
            ctx,
            func.body_line_of(write.start()),
            f"Function '{func.name}' performs read-then-write operations without proper synchronization, "
            "vulnerable to race conditions",
            confidence=0.5,
        )


@function_rule(
    "timestamp-dependence",
    "Timestamp Dependence",
    Severity.MEDIUM,
    "Timestamp Dependence",
    "Avoid exact timestamp comparisons in critical logic; allow for validator clock drift",
)
def timestamp_dependence(rule, func, ctx):
    """Comparisons against timestamp or epoch values."""
    for line, code in body_lines(func):
        if TIME_COMPARISON_PATTERN.search(code):
            yield rule.finding(
                ctx,
                line,
                "Critical logic depends on block timestamp which can be influenced by validators",
                confidence=0.6,
            )


@function_rule(
    "integer-overflow-underflow",
    "Integer Overflow/Underflow",
    Severity.HIGH,
    "Integer Overflow/Underflow",
    "Use checked arithmetic or assert bounds before arithmetic on amounts and balances",
)
def integer_overflow(rule, func, ctx):
    """Arithmetic on financial values with no checked-math marker."""
    if CHECKED_MARKER_PATTERN.search(func.code):
        return
    for line, code in body_lines(func):
        op = ARITHMETIC_PATTERN.search(code)
        if op and FINANCIAL_PATTERN.search(code):
            yield rule.finding(
                ctx,
                line,
                f"Arithmetic operation '{op.group(0).strip()}' without overflow protection in financial context",
                confidence=0.6,
            )


@function_rule(
    "rounding-errors",
    "Rounding Errors",
    Severity.MEDIUM,
    "Rounding Errors",
    "Scale values by a precision factor before dividing and round in the protocol's favour",
)
def rounding_errors(rule, func, ctx):
    """Division in rate, fee, price or reward code with no precision marker."""
    code = func.code
    if not RATE_CONTEXT_PATTERN.search(code) or PRECISION_MARKER_PATTERN.search(code):
        return
    for line, body_code in body_lines(func):
        if DIVISION_PATTERN.search(body_code):
            yield rule.finding(
                ctx,
                line,
                "Division operation in financial calculation may cause precision loss",
                confidence=0.6,
            )


@function_rule(
    "unchecked-external-calls",
    "Unchecked External Calls",
    Severity.HIGH,
    "Unchecked External Calls",
    "Bind and check the result of external calls",
)
def unchecked_external_calls(rule, func, ctx):
    """Module calls whose result is neither bound nor asserted."""
    for line, code in body_lines(func):
        match = STATEMENT_CALL_PATTERN.match(code)
        if not match:
            continue
        module, function = match.group("module"), match.group("function")
        if is_framework_module(module) and function in UNIT_RETURNING_CALLS:
            continue
        yield rule.finding(
            ctx,
            line,
            f"Result of external call '{module}::{function}' is not checked, may fail silently",
            confidence=0.5,
        )


@function_rule(
    "denial-of-service",
    "Denial-of-Service",
    Severity.HIGH,
    "Denial-of-Service",
    "Bound loop iterations and avoid heavy operations over user-controlled collections",
)
def denial_of_service(rule, func, ctx):
    """Loops with no exit, and lines calling heavy operations."""
    body = func.body_code
    loop = LOOP_PATTERN.search(body)
    if loop and not LOOP_EXIT_PATTERN.search(body):
        yield rule.finding(
            ctx,
            func.body_line_of(loop.start()),
            "Unbounded loop may cause gas exhaustion or infinite execution",
        )
    for line, code in body_lines(func):
        for op in HEAVY_OPERATIONS:
            if op in code:
                yield rule.finding(
                    ctx,
                    line,
                    f"Heavy operation '{op}' may cause gas exhaustion in large datasets",
                    severity=Severity.MEDIUM,
                    confidence=0.5,
                )
                break


@function_rule(
    "access-control",
    "Access Control",
    Severity.CRITICAL,
    "Access Control",
    "Require a capability or assert the sender before privileged operations",
)
def access_control(rule, func, ctx):
    """Privileged public entry functions without assert or capability tokens."""
    if not func.is_public_entry:
        return
    body = func.body_code
    if not PRIVILEGED_VERB_PATTERN.search(body):
        return
    if has_guard(body) or CAPABILITY_WORD_PATTERN.search(func.code):
        return
    yield rule.finding(
        ctx,
        func.start_line,
        f"Privileged operation in '{func.name}' lacks proper access control checks",
        confidence=0.8,
    )


def _admin_cap_without_multisig(rule, func, ctx):
    """An AdminCap with no multisig or consensus marker."""
    code = func.code
    if "AdminCap" in code and not MULTISIG_PATTERN.search(code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Administrative function '{func.name}' relies on single key without multisig protection",
            confidence=0.6,
        )


def _admin_function_density(rule, ctx):
    """File-level check on the number of admin functions."""
    count = ctx.admin_function_count
    if count > ctx.config.admin_function_threshold:
        yield rule.finding(
            ctx,
            1,
            f"High concentration of administrative functions ({count}) may indicate centralization risk",
            confidence=0.5,
        )


centralization_of_power = Rule(
    "centralization-of-power",
    "Centralization of Power",
    Severity.MEDIUM,
    "Centralization of Power",
    "Distribute administrative control using multisig or governance",
    predicate=_admin_cap_without_multisig,
    file_predicate=_admin_function_density,
)


@function_rule(
    "business-logic-issues",
    "Business Logic Issues",
    Severity.HIGH,
    "Business Logic Issues",
    "Validate amounts with assert!(amount > 0, E_ZERO_AMOUNT) and keep balance updates consistent",
)
def business_logic(rule, func, ctx):
    """Amount parameters never asserted positive, and balance updates with no atomic marker."""
    body = func.body_code
    if func.is_public:
        for param in func.parameters:
            if not AMOUNT_PARAM_PATTERN.search(param.name):
                continue
            if not NUMERIC_TYPE_PATTERN.match(param.type.strip()):
                continue
            if not _has_positive_assertion(body, param.name):
                yield rule.finding(
                    ctx,
                    func.start_line,
                    f"Parameter '{param.name}' of '{func.name}' is used without a boundary check (> 0)",
                    confidence=0.6,
                )
    updates = BALANCE_UPDATE_PATTERN.findall(body)
    if len(updates) > 1 and not ATOMIC_MARKER_PATTERN.search(func.code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Function '{func.name}' performs multiple balance updates without atomic protection",
            confidence=0.4,
        )


def _has_positive_assertion(body: str, name: str) -> bool:
    name = re.escape(name)
    patterns = (
        rf"\b{name}\b\s*(?:>\s*0|!=\s*0|>=\s*1)",
        rf"(?:0\s*<|0\s*!=|1\s*<=)\s*\b{name}\b",
    )
    for match in re.finditer(r"\bassert!?\s*\(([^;]*)", body):
        if any(re.search(p, match.group(1)) for p in patterns):
            return True
    return False


@function_rule(
    "gas-usage-inefficiencies",
    "Gas Usage Inefficiencies",
    Severity.LOW,
    "Gas Usage Inefficiencies",
    "Cache repeated lookups and batch expensive operations",
)
def gas_inefficiencies(rule, func, ctx):
    """Expensive operations repeated above the configured threshold."""
    code = func.body_code
    for token, message in GAS_EXPENSIVE_OPERATIONS:
        count = code.count(token)
        if count > ctx.config.gas_repeat_threshold:
            yield rule.finding(ctx, func.start_line, f"{message} ({count} occurrences)", confidence=0.7)


@function_rule(
    "arbitrary-token-minting",
    "Arbitrary Token Minting",
    Severity.CRITICAL,
    "Arbitrary Token Minting",
    "Gate minting behind a TreasuryCap holder check and enforce a supply cap",
)
def arbitrary_minting(rule, func, ctx):
    """Mint calls without a supply cap or access control."""
    if not func.is_public:
        return
    body = func.body_code
    mint = MINT_CALL_PATTERN.search(body)
    if not mint:
        return
    line = func.body_line_of(mint.start())
    if not SUPPLY_CHECK_PATTERN.search(func.code):
        yield rule.finding(ctx, line, f"Token minting in '{func.name}' lacks supply cap validation")
    if not has_guard(body) and not CAPABILITY_WORD_PATTERN.search(func.code):
        yield rule.finding(ctx, line, f"Token minting in '{func.name}' lacks proper access control")


@function_rule(
    "reentrancy-attacks",
    "Reentrancy Attacks",
    Severity.CRITICAL,
    "Reentrancy Attacks",
    "Update state before transfers and external calls (checks-effects-interactions)",
)
def reentrancy(rule, func, ctx):
    """External calls or state updates after a transfer with no lock."""
    body = func.body_code
    transfer = TRANSFER_CALL_PATTERN.search(body)
    if not transfer:
        return
    external = [m for m in MODULE_CALL_PATTERN.finditer(body) if not is_framework_module(m.group("module"))]
    if external and not REENTRANCY_GUARD_PATTERN.search(func.code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Function '{func.name}' performs external calls and transfers without reentrancy protection",
            confidence=0.5,
        )
    transfer_line = func.body_line_of(transfer.start())
    for line, code in body_lines(func):
        if line <= transfer_line:
            continue
        if ASSIGNMENT_PATTERN.search(code) and STATE_UPDATE_PATTERN.search(code):
            yield rule.finding(
                ctx,
                line,
                "State update occurs after transfer, violating checks-effects-interactions pattern",
                severity=Severity.HIGH,
                confidence=0.6,
            )
            break


@function_rule(
    "oracle-manipulation",
    "Oracle Manipulation",
    Severity.HIGH,
    "Oracle Manipulation",
    "Use time-weighted prices from multiple sources and validate them against bounds",
)
def oracle_manipulation(rule, func, ctx):
    """Price or oracle reads with no TWAP, validation or fallback."""
    code = func.code
    if ORACLE_PATTERN.search(code):
        validated = has_guard(func.body_code) or PRICE_VALIDATION_PATTERN.search(code)
        if not TIME_WEIGHTING_PATTERN.search(code) and not validated:
            yield rule.finding(
                ctx,
                func.start_line,
                "Price oracle usage without time weighting or validation checks",
                confidence=0.5,
            )
    if "get_price" in func.body_code and not FALLBACK_PATTERN.search(code):
        yield rule.finding(
            ctx,
            func.start_line,
            "Single oracle dependency without fallback mechanism",
            severity=Severity.MEDIUM,
            confidence=0.5,
        )


@function_rule(
    "mutable-reference-leaks",
    "Mutable Reference Leaks",
    Severity.HIGH,
    "Mutable Reference Leaks",
    "Pass immutable references or narrowly scoped values to external modules",
)
def mutable_reference_leaks(rule, func, ctx):
    """&mut references passed into non-framework modules."""
    for line, code in body_lines(func):
        for call in MODULE_CALL_PATTERN.finditer(code):
            if is_framework_module(call.group("module")):
                continue
            ref = MUT_REF_PATTERN.search(code, call.end())
            if ref:
                yield rule.finding(
                    ctx,
                    line,
                    f"Mutable reference &mut {ref.group('name')} is passed to external module "
                    f"'{call.group('module')}'",
                    confidence=0.6,
                )
                break


@function_rule(
    "insufficient-authorization",
    "Insufficient Authorization",
    Severity.CRITICAL,
    "Insufficient Authorization",
    "Check the caller's capability or role before privileged operations",
)
def insufficient_authorization(rule, func, ctx):
    """Privileged verbs or role tokens with no authorization check call."""
    if not func.is_public:
        return
    body = func.body_code
    if AUTHORIZATION_VERB_PATTERN.search(func.name) or AUTHORIZATION_VERB_PATTERN.search(body):
        if not has_guard(body) and not AUTHORIZATION_WORD_PATTERN.search(func.code):
            yield rule.finding(
                ctx,
                func.start_line,
                f"Privileged operation in '{func.name}' lacks sufficient authorization checks",
            )
    if ROLE_PATTERN.search(func.code) and not ROLE_CHECK_PATTERN.search(body):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Role-based function '{func.name}' lacks proper role validation",
            severity=Severity.HIGH,
        )


CATEGORY_RULES = [
    transaction_ordering,
    timestamp_dependence,
    integer_overflow,
    rounding_errors,
    unchecked_external_calls,
    denial_of_service,
    access_control,
    centralization_of_power,
    business_logic,
    gas_inefficiencies,
    arbitrary_minting,
    reentrancy,
    oracle_manipulation,
    mutable_reference_leaks,
    insufficient_authorization,
]
