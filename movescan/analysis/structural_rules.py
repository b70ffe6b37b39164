"""Structural access-control rules for Move functions."""

import re

from ..models import Severity
from .rules import (
    MUT_REF_PATTERN,
    TRANSFER_CALL_PATTERN,
    function_rule,
    guard_positions,
    has_guard,
)

SHARED_STATE_PATTERN = re.compile(r"shared|global|share_object")
SYNC_MARKER_PATTERN = re.compile(r"lock|mutex|atomic|version", re.IGNORECASE)
PRIVILEGED_WORK_PATTERN = re.compile(r"mint|burn|transfer|Cap\b")


@function_rule(
    "unrestricted-public-entry",
    "Access Control",
    Severity.HIGH,
    "Unrestricted Public Entry Function",
    "Add capability checks or assert_owner guards",
)
def unrestricted_public_entry(rule, func, ctx):
    """Public entry functions with no access check in the body."""
    if func.is_public_entry and not has_guard(func.body_code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Public entry function '{func.name}' lacks proper access controls",
            confidence=0.9,
        )


@function_rule(
    "mutable-shared-data",
    "Shared State",
    Severity.HIGH,
    "Mutable References to Shared Data",
    "Add proper synchronization or use immutable references",
)
def mutable_shared_data(rule, func, ctx):
    """Flag &mut access in functions touching shared state without a sync marker."""
    code = func.code
    if not SHARED_STATE_PATTERN.search(code) or SYNC_MARKER_PATTERN.search(code):
        return
    # Parameter names, not the types that follow `&mut` in the signature
    names = [p.name for p in func.parameters if p.type.startswith("&mut")]
    line = func.start_line if names else None
    for match in MUT_REF_PATTERN.finditer(func.body_code):
        names.append(match.group("name"))
        if line is None:
            line = func.body_line_of(match.start())
    if names:
        yield rule.finding(
            ctx,
            line,
            f"Function '{func.name}' has mutable access to shared objects "
            f"({', '.join(dict.fromkeys(names))}) without synchronization",
            confidence=0.6,
        )


@function_rule(
    "unchecked-coin-transfer",
    "Unchecked Transfer",
    Severity.CRITICAL,
    "Unchecked Coin Transfer",
    "Add access control checks before coin transfers",
)
def unchecked_coin_transfer(rule, func, ctx):
    """One finding per transfer call that no earlier guard covers."""
    body = func.body_code
    guards = guard_positions(body)
    for match in TRANSFER_CALL_PATTERN.finditer(body):
        if any(pos < match.start() for pos in guards):
            continue
        call = match.group(0).rstrip("( ")
        yield rule.finding(
            ctx,
            func.body_line_of(match.start()),
            f"Transfer call '{call}' in '{func.name}' is not preceded by an access check",
            confidence=0.9,
        )


@function_rule(
    "authority-overuse",
    "Authority Management",
    Severity.MEDIUM,
    "Authority Overuse",
    "Limit authority usage and add proper verification",
)
def authority_overuse(rule, func, ctx):
    """Heavy capability use without any guard."""
    count = ctx.capability_counts.get(func.qualified_name, 0)
    if count > ctx.config.capability_threshold and not has_guard(func.body_code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Function '{func.name}' uses {count} capability tokens without verification",
            confidence=0.6,
        )


@function_rule(
    "missing-access-guard",
    "Access Control",
    Severity.HIGH,
    "Missing Access Guard",
    "Add has_access() or assert_owner() checks",
)
def missing_access_guard(rule, func, ctx):
    """Public functions doing mint, burn, transfer or capability work unguarded."""
    if not func.is_public:
        return
    if PRIVILEGED_WORK_PATTERN.search(func.body_code) and not has_guard(func.body_code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Function '{func.name}' performs privileged operations without has_access or assert_owner guards",
        )


@function_rule(
    "cetus-style-transfer",
    "DeFi Exploit Pattern",
    Severity.CRITICAL,
    "Cetus-style DeFi Vulnerability",
    "Add access control checks before any transfer operations",
)
def cetus_style_transfer(rule, func, ctx):
    """Any public function that can reach a transfer before any guard, whatever its name."""
    if not func.is_public:
        return
    body = func.body_code
    guards = guard_positions(body)
    first_guard = guards[0] if guards else None
    for match in TRANSFER_CALL_PATTERN.finditer(body):
        if first_guard is None or match.start() < first_guard:
            yield rule.finding(
                ctx,
                func.start_line,
                f"Public function '{func.name}' can transfer coins without access control "
                "(similar to the Cetus exploit)",
                confidence=0.9,
            )
            return


STRUCTURAL_RULES = [
    unrestricted_public_entry,
    mutable_shared_data,
    unchecked_coin_transfer,
    authority_overuse,
    missing_access_guard,
    cetus_style_transfer,
]
