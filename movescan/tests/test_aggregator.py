"""Test finding deduplication and ordering."""

import random

import pytest

from movescan.analysis.aggregator import FindingAggregator
from movescan.models import Finding, FindingSource, Severity


def make_finding(**overrides) -> Finding:
    values = {
        "rule_id": "unchecked-coin-transfer",
        "category": "Unchecked Transfer",
        "severity": Severity.HIGH,
        "description": "Transfer without check",
        "file": "pool.move",
        "line": 8,
    }
    values.update(overrides)
    return Finding(**values)


@pytest.fixture
def aggregator():
    return FindingAggregator(bucket_width=5)


class TestDeduplication:
    """Test merging of findings that share a key."""

    def test_merged_severity_is_maximum(self, aggregator):
        """Test that a merged finding keeps the highest severity."""
        low = make_finding(severity=Severity.LOW, description="Possible issue")
        critical = make_finding(severity=Severity.CRITICAL, line=9, source=FindingSource.SEMANTIC)

        result = aggregator.aggregate([low, critical])

        assert len(result) == 1
        assert result[0].severity == Severity.CRITICAL
        assert result[0].line == 8
        assert result[0].description == "Possible issue | Transfer without check"

    def test_identical_descriptions_not_repeated(self, aggregator):
        """Test that equal descriptions are not joined twice."""
        result = aggregator.aggregate([make_finding(), make_finding(line=7)])

        assert len(result) == 1
        assert result[0].description == "Transfer without check"

    def test_merge_descriptions_disabled(self):
        """Test that the first description wins when merging is off."""
        aggregator = FindingAggregator(merge_descriptions=False)

        result = aggregator.aggregate([make_finding(), make_finding(description="Other wording")])

        assert result[0].description == "Transfer without check"

    def test_different_buckets_kept(self, aggregator):
        """Test that findings in different line buckets stay separate."""
        result = aggregator.aggregate([make_finding(line=4), make_finding(line=5)])
        assert len(result) == 2

    def test_different_files_and_categories_kept(self, aggregator):
        """Test that file and category are part of the key."""
        result = aggregator.aggregate(
            [
                make_finding(),
                make_finding(file="other.move"),
                make_finding(category="Access Control"),
            ]
        )
        assert len(result) == 3

    def test_category_comparison_ignores_case(self, aggregator):
        """Test case-insensitive category matching."""
        result = aggregator.aggregate([make_finding(), make_finding(category="unchecked transfer ")])
        assert len(result) == 1

    def test_description_fallback_without_category(self, aggregator):
        """Test keying on description words when the category is missing."""
        same_start = [
            make_finding(category=None, description="Unbounded loop may exhaust gas"),
            make_finding(category=None, description="Unbounded loop may never end"),
        ]
        different = make_finding(category=None, description="Price oracle can be manipulated")

        result = aggregator.aggregate([*same_start, different])

        assert len(result) == 2

    def test_inputs_not_mutated(self, aggregator):
        """Test that input findings are left untouched."""
        first = make_finding(severity=Severity.LOW)
        aggregator.aggregate([first, make_finding(severity=Severity.CRITICAL)])

        assert first.severity == Severity.LOW


class TestOrdering:
    """Test the deterministic output order."""

    def test_sorted_by_file_line_severity(self, aggregator):
        """Test the output ordering."""
        findings = [
            make_finding(file="b.move", line=1, category="A"),
            make_finding(file="a.move", line=20, category="B"),
            make_finding(file="a.move", line=3, category="C", severity=Severity.LOW),
            make_finding(file="a.move", line=3, category="D", severity=Severity.CRITICAL),
        ]

        result = aggregator.aggregate(findings)

        assert [(f.file, f.line, f.category) for f in result] == [
            ("a.move", 3, "D"),
            ("a.move", 3, "C"),
            ("a.move", 20, "B"),
            ("b.move", 1, "A"),
        ]

    def test_order_independent_of_input_order(self, aggregator):
        """Test deterministic output for shuffled input."""
        findings = [
            make_finding(file=f"f{i % 3}.move", line=i * 7, category=f"cat{i % 4}", rule_id=f"r{i}")
            for i in range(30)
        ]
        expected = aggregator.aggregate(findings)

        rng = random.Random(7)
        for _ in range(5):
            shuffled = findings[:]
            rng.shuffle(shuffled)
            result = aggregator.aggregate(shuffled)
            assert [(f.file, f.line, f.rule_id) for f in result] == [(f.file, f.line, f.rule_id) for f in expected]

    def test_empty_input(self, aggregator):
        """Test aggregation of no findings."""
        assert aggregator.aggregate([]) == []
