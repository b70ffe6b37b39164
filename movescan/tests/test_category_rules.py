"""Test the audit-taxonomy rules and rule engine fault isolation."""

from dataclasses import replace

import pytest

from movescan.analysis.category_rules import CATEGORY_RULES
from movescan.analysis.rules import Rule
from movescan.analysis.security import RuleEngine, default_rules
from movescan.analysis.structural_rules import STRUCTURAL_RULES
from movescan.models import Severity, SourceFile

from .conftest import parse, wrap_module


def run(content, config, rule_id=None):
    findings = RuleEngine(config, rules=CATEGORY_RULES).analyze([parse(content)])
    if rule_id:
        return [f for f in findings if f.rule_id == rule_id]
    return findings


class TestCategoryCatalog:
    """Test the category rule registry."""

    def test_one_rule_per_category(self):
        """Test that every audit category has exactly one rule."""
        assert len(CATEGORY_RULES) == 15
        assert len({r.id for r in CATEGORY_RULES}) == 15

    def test_default_rules_include_every_set(self):
        """Test the default rule list."""
        ids = {r.id for r in default_rules()}

        assert "cetus-style-transfer" in ids
        assert "reentrancy-attacks" in ids
        assert "swap-slippage-vulnerability" in ids


class TestLineRules:
    """Test rules that look at single body lines."""

    def test_timestamp_dependence(self, config):
        """Test detection of comparisons against time values."""
        content = wrap_module(
            "    public fun claim(clock: &Clock, deadline: u64) {\n"
            "        let x = 1;\n"
            "        assert!(clock::timestamp_ms(clock) < deadline, 0);\n"
            "    }"
        )
        findings = run(content, config, "timestamp-dependence")

        assert [f.line for f in findings] == [4]
        assert findings[0].severity == Severity.MEDIUM

    def test_integer_overflow(self, config):
        """Test detection of unchecked arithmetic on amounts."""
        content = wrap_module(
            "    public fun add(pool: &mut Pool, amount: u64): u64 {\n"
            "        let total = pool.balance + amount;\n"
            "        total\n"
            "    }"
        )
        findings = run(content, config, "integer-overflow-underflow")

        assert [f.line for f in findings] == [3]
        assert findings[0].category == "Integer Overflow/Underflow"

    def test_checked_math_suppresses_overflow(self, config):
        """Test that checked math is not flagged."""
        content = wrap_module(
            "    public fun add(pool: &mut Pool, amount: u64): u64 {\n"
            "        let total = math::checked_add(pool.balance, amount) + amount;\n"
            "        total\n"
            "    }"
        )
        assert run(content, config, "integer-overflow-underflow") == []

    def test_unbounded_loop(self, config):
        """Test detection of loops without an exit."""
        content = wrap_module(
            "    fun spin(n: u64) {\n"
            "        let i = 0;\n"
            "        while (i < n) {\n"
            "            i = i + 1;\n"
            "        };\n"
            "    }"
        )
        findings = run(content, config, "denial-of-service")

        assert [f.line for f in findings] == [4]
        assert findings[0].severity == Severity.HIGH

    def test_loop_with_break_is_bounded(self, config):
        """Test that a loop with a break is not flagged."""
        content = wrap_module(
            "    fun spin(n: u64) {\n"
            "        loop {\n"
            "            if (n == 0) break;\n"
            "        };\n"
            "    }"
        )
        assert run(content, config, "denial-of-service") == []


class TestCallRules:
    """Test rules about calls into other modules."""

    def test_unchecked_external_call(self, config):
        """Test detection of discarded external call results."""
        content = wrap_module(
            "    fun refresh(feed: &mut Feed, c: Coin<SUI>, to: address) {\n"
            "        oracle::refresh(feed);\n"
            "        transfer::public_transfer(c, to);\n"
            "        let quote = dex::quote(1);\n"
            "    }"
        )
        findings = run(content, config, "unchecked-external-calls")

        assert [f.line for f in findings] == [3]
        assert "oracle::refresh" in findings[0].description

    def test_mutable_reference_leak(self, config):
        """Test detection of &mut passed to another module."""
        content = wrap_module(
            "    fun route(pool: &mut Pool, amount: u64) {\n"
            "        let out = dex::swap(&mut pool, amount);\n"
            "        vector::push_back(&mut out, 1);\n"
            "    }"
        )
        findings = run(content, config, "mutable-reference-leaks")

        assert [f.line for f in findings] == [3]
        assert "&mut pool" in findings[0].description
        assert "'dex'" in findings[0].description

    def test_reentrancy(self, config):
        """Test detection of external calls after a transfer."""
        content = wrap_module(
            "    public fun cash_out(c: Coin<SUI>, to: address) {\n"
            "        rewards::notify(to);\n"
            "        transfer::public_transfer(c, to);\n"
            "    }"
        )
        findings = run(content, config, "reentrancy-attacks")

        assert len(findings) == 1
        assert findings[0].severity == Severity.CRITICAL
        assert findings[0].line == 2


class TestPrivilegeRules:
    """Test rules about privileged operations."""

    def test_access_control_on_public_entry(self, config, parser, unguarded_source):
        """Test detection of privileged entry functions without checks."""
        findings = RuleEngine(config, rules=CATEGORY_RULES).analyze([parser.extract(unguarded_source)])

        access = [f for f in findings if f.rule_id == "access-control"]
        assert [f.line for f in access] == [5]
        assert access[0].severity == Severity.CRITICAL

    def test_access_control_passes_with_guard(self, config, parser, guarded_source):
        """Test that a guarded entry function passes."""
        findings = RuleEngine(config, rules=CATEGORY_RULES).analyze([parser.extract(guarded_source)])

        assert [f for f in findings if f.rule_id == "access-control"] == []

    def test_arbitrary_minting(self, config):
        """Test detection of uncapped, unguarded minting."""
        content = wrap_module(
            "    public fun print(store: &mut Store, amount: u64, ctx: &mut TxContext): Coin<T> {\n"
            "        coin::mint(&mut store.t, amount, ctx)\n"
            "    }"
        )
        findings = run(content, config, "arbitrary-token-minting")

        assert [f.line for f in findings] == [3, 3]
        assert "supply cap" in findings[0].description
        assert "access control" in findings[1].description

    def test_business_logic_amount_check(self, config):
        """Test detection of unvalidated amount parameters."""
        unchecked = wrap_module(
            "    public fun deposit(pool: &mut Pool, amount: u64) {\n"
            "        pool.total = amount;\n"
            "    }"
        )
        checked = wrap_module(
            "    public fun deposit(pool: &mut Pool, amount: u64) {\n"
            "        assert!(amount > 0, 0);\n"
            "        pool.total = amount;\n"
            "    }"
        )

        assert len(run(unchecked, config, "business-logic-issues")) == 1
        assert run(checked, config, "business-logic-issues") == []

    def test_centralization_density(self, config):
        """Test the per-file admin function threshold."""
        content = wrap_module(
            "    public fun set_admin(a: &mut Config, admin: address) { a.admin = admin; }\n"
            "    public fun pause(a: &mut Config, owner: address) { a.owner = owner; }"
        )
        strict = replace(config, admin_function_threshold=1)
        findings = run(content, strict, "centralization-of-power")

        assert [f.line for f in findings] == [1]
        assert "(2)" in findings[0].description
        assert run(content, config, "centralization-of-power") == []

    def test_admin_cap_without_multisig(self, config):
        """Test detection of a single admin capability."""
        content = wrap_module(
            "    public fun set_fee(_: &AdminCap, cfg: &mut Config, fee: u64) {\n"
            "        cfg.fee = fee;\n"
            "    }"
        )
        findings = run(content, config, "centralization-of-power")

        assert [f.line for f in findings] == [2]


class TestGasRule:
    """Test the gas usage rule."""

    def test_repeated_expensive_operation(self, config):
        """Test detection of repeated expensive operations."""
        content = wrap_module(
            "    fun sum(v: &vector<u64>): u64 {\n"
            "        let a = vector::length(v);\n"
            "        let b = vector::length(v);\n"
            "        let c = vector::length(v);\n"
            "        let d = vector::length(v);\n"
            "        a\n"
            "    }"
        )
        findings = run(content, config, "gas-usage-inefficiencies")

        assert len(findings) == 1
        assert findings[0].severity == Severity.LOW
        assert "(4 occurrences)" in findings[0].description


class TestRuleEngine:
    """Test rule evaluation across files."""

    def test_failing_rule_is_isolated(self, config, parser, unguarded_source):
        """Test that a rule raising an exception does not stop the others."""
        def explode(rule, func, ctx):
            raise RuntimeError("rule bug")

        broken = Rule("broken", "Test", Severity.LOW, "Broken", "", predicate=explode)
        engine = RuleEngine(config, rules=[broken, *STRUCTURAL_RULES])

        findings = engine.analyze([parser.extract(unguarded_source)])

        assert {f.rule_id for f in findings} >= {"unchecked-coin-transfer", "cetus-style-transfer"}
        assert "broken" not in {f.rule_id for f in findings}

    def test_skips_files_with_parse_errors(self, config):
        """Test that unparsed files produce no findings."""
        engine = RuleEngine(config)
        assert engine.analyze([parse("module a::b {")]) == []

    @pytest.mark.parametrize("parallel", [True, False])
    def test_file_order_is_preserved(self, config, parser, parallel):
        """Test that results follow input file order."""
        sources = [
            SourceFile(name=f"f{i}.move", content=wrap_module(
                f"    public entry fun go{i}(c: Coin<SUI>, to: address) {{\n"
                "        transfer::public_transfer(c, to);\n"
                "    }"
            ))
            for i in range(6)
        ]
        engine = RuleEngine(replace(config, parallel_rules=parallel, max_workers=3))

        findings = engine.analyze(parser.extract_all(sources))
        files = list(dict.fromkeys(f.file for f in findings))

        assert files == [f"f{i}.move" for i in range(6)]
