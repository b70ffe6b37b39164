"""DeFi exploit-pattern rules (swaps, pools, prices, capabilities)."""

import re

from ..models import Severity
from .rules import function_rule

SLIPPAGE_PATTERN = re.compile(r"min_amount|slippage|minimum_out|deadline")
RESERVE_CHECK_PATTERN = re.compile(r"reserve|balance_check|invariant")
PRICE_PROTECTION_PATTERN = re.compile(r"twap|time_weighted|oracle|median")
CAPABILITY_TYPE_PATTERN = re.compile(r"\b\w*(?:Cap|Authority)\b")
VALIDATION_PATTERN = re.compile(r"\bassert!?\s*\(|\brequire\b|\babort\b")
OBJECT_NEW_PATTERN = re.compile(r"\bobject::new\s*\(")
RESOURCE_HANDOFF_PATTERN = re.compile(r"transfer|delete|destroy|share_object|freeze_object")


@function_rule(
    "swap-slippage-vulnerability",
    "DeFi Exploit Pattern",
    Severity.CRITICAL,
    "Swap Slippage Vulnerability",
    "Add slippage protection with min_amount_out and deadline parameters",
)
def swap_slippage(rule, func, ctx):
    """Public swap functions without minimum output, slippage or deadline."""
    if func.is_public and "swap" in func.name and not SLIPPAGE_PATTERN.search(func.code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Swap function '{func.name}' lacks slippage protection, vulnerable to sandwich attacks",
            confidence=0.9,
        )


@function_rule(
    "pool-reserve-manipulation",
    "DeFi Exploit Pattern",
    Severity.HIGH,
    "Pool Reserve Manipulation Risk",
    "Add reserve balance validation and invariant checks",
)
def pool_reserve(rule, func, ctx):
    """Public pool functions without a reserve or invariant check."""
    if not func.is_public or not ("pool" in func.name or "liquidity" in func.name):
        return
    if not RESERVE_CHECK_PATTERN.search(func.code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Pool function '{func.name}' lacks reserve consistency validation",
            confidence=0.6,
        )


@function_rule(
    "price-manipulation-risk",
    "DeFi Exploit Pattern",
    Severity.HIGH,
    "Price Oracle Manipulation Risk",
    "Use time-weighted average prices (TWAP) or multiple oracle sources",
)
def price_manipulation(rule, func, ctx):
    """Public price functions without TWAP, oracle or median."""
    if func.is_public and "price" in func.name and not PRICE_PROTECTION_PATTERN.search(func.code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Price function '{func.name}' is vulnerable to market manipulation attacks",
            confidence=0.6,
        )


@function_rule(
    "capability-without-verification",
    "Access Control",
    Severity.HIGH,
    "Capability Usage Without Verification",
    "Verify capability ownership with assert!(cap.owner == tx_context::sender(ctx))",
)
def capability_without_verification(rule, func, ctx):
    """Capability parameters never checked against the sender."""
    caps = [p for p in func.parameters if CAPABILITY_TYPE_PATTERN.search(p.type)]
    if not caps:
        return
    body = func.body_code
    verified = "assert" in body and ("owner" in body or "sender" in body)
    if not verified:
        yield rule.finding(
            ctx,
            func.start_line,
            f"Function '{func.name}' takes capability '{caps[0].name}: {caps[0].type}' without verifying ownership",
        )


@function_rule(
    "missing-input-validation",
    "Input Validation",
    Severity.MEDIUM,
    "Missing Input Validation",
    "Add input validation using assert! or appropriate checks",
)
def missing_input_validation(rule, func, ctx):
    """Public functions that take parameters but validate none of them."""
    if not func.is_public:
        return
    inputs = [p for p in func.parameters if "TxContext" not in p.type]
    if inputs and not VALIDATION_PATTERN.search(func.body_code):
        yield rule.finding(
            ctx,
            func.start_line,
            f"Public function '{func.name}' does not validate its input parameters",
            confidence=0.6,
        )


@function_rule(
    "resource-leak",
    "Resource Management",
    Severity.LOW,
    "Potential Resource Leak",
    "Ensure created objects are transferred, shared, returned or deleted",
)
def resource_leak(rule, func, ctx):
    """Objects created but never transferred, shared, deleted or returned."""
    body = func.body_code
    created = OBJECT_NEW_PATTERN.search(body)
    if not created or func.return_type:
        return
    if not RESOURCE_HANDOFF_PATTERN.search(body):
        yield rule.finding(
            ctx,
            func.body_line_of(created.start()),
            f"Object created in '{func.name}' is not transferred, shared or deleted",
            confidence=0.6,
        )


DEFI_RULES = [
    swap_slippage,
    pool_reserve,
    price_manipulation,
    capability_without_verification,
    missing_input_validation,
    resource_leak,
]
