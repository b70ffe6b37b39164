"""Test chunking, response parsing and concurrent contextual analysis."""

import asyncio
import json
from dataclasses import replace

import pytest

from movescan.analysis.semantic import (
    SemanticAnalyzer,
    normalize_entry,
    parse_response,
    reconcile_line,
    split_into_chunks,
)
from movescan.models import Chunk, FindingSource, Severity

from .conftest import parse


class FakeClient:
    """Inference client returning canned text, optionally slow or failing."""

    def __init__(self, response="[]", delay=0.0, fail_on=None):
        self.response = response
        self.delay = delay
        self.fail_on = fail_on
        self.prompts = []
        self.active = 0
        self.peak = 0

    async def infer(self, system_prompt, user_prompt):
        self.prompts.append(user_prompt)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_on and self.fail_on in user_prompt:
                raise RuntimeError("model unavailable")
            return self.response
        finally:
            self.active -= 1


def statement_lines(count: int) -> str:
    return "\n".join(f"let v{i} = {i};" for i in range(1, count + 1)) + "\n"


class TestSplitIntoChunks:
    """Test line-based chunking."""

    def test_line_budget_boundaries(self):
        """Test chunk boundaries for a token budget."""
        content = "\n".join("x" * 99 for _ in range(150))

        chunks = split_into_chunks(content, "big.move", max_tokens=1500, tokens_per_char=0.25)

        assert [(c.start_line, c.end_line) for c in chunks] == [(1, 60), (61, 120), (121, 150)]
        assert all(c.file_name == "big.move" for c in chunks)

    def test_oversized_line_gets_its_own_chunk(self):
        """Test that a long line forms its own chunk."""
        content = "a\n" + "y" * 1000 + "\nb\n"

        chunks = split_into_chunks(content, "f.move", max_tokens=50)

        assert [(c.start_line, c.end_line) for c in chunks] == [(1, 1), (2, 2), (3, 3)]
        assert chunks[1].content == "y" * 1000

    def test_chunks_cover_every_line_once(self):
        """Test that chunks cover every line exactly once."""
        content = statement_lines(37) + "\n\n"

        chunks = split_into_chunks(content, "f.move", max_tokens=20)

        covered = [n for c in chunks for n in range(c.start_line, c.end_line + 1)]
        assert covered == list(range(1, 40))
        rebuilt = "\n".join(c.content for c in chunks)
        assert rebuilt == content[:-1]

    def test_empty_content(self):
        """Test chunking of empty content."""
        assert split_into_chunks("", "f.move") == []


class TestReconcileLine:
    """Test line reconciliation."""

    @pytest.fixture
    def chunk(self):
        return Chunk("f.move", "...", 61, 120)

    @pytest.mark.parametrize(
        "reported, expected",
        [
            (5, 65),
            (1, 61),
            (60, 120),
            (100, 100),
            (0, 61),
            (500, 61),
            ("7", 67),
            (7.0, 67),
            (None, 61),
            (True, 61),
            ("line 7", 61),
        ],
    )
    def test_reconcile(self, chunk, reported, expected):
        """Test mapping reported lines to file lines."""
        assert reconcile_line(reported, chunk) == expected


class TestParseResponse:
    """Test parsing of model responses."""

    ENTRY = {"line": 3, "category": "Access Control", "description": "No check", "severity": "high"}

    def test_bare_array(self):
        """Test parsing a bare JSON array."""
        assert parse_response(json.dumps([self.ENTRY])) == [self.ENTRY]

    def test_fenced_array(self):
        """Test parsing a fenced JSON block."""
        text = f"Here is the result:\n```json\n{json.dumps([self.ENTRY])}\n```\nDone."
        assert parse_response(text) == [self.ENTRY]

    @pytest.mark.parametrize("key", ["vulnerabilities", "findings"])
    def test_wrapped_in_object(self, key):
        """Test parsing an array wrapped in an object."""
        assert parse_response(json.dumps({key: [self.ENTRY]})) == [self.ENTRY]

    def test_single_object(self):
        """Test parsing a single finding object."""
        assert parse_response(json.dumps(self.ENTRY)) == [self.ENTRY]

    def test_embedded_in_prose(self):
        """Test parsing JSON surrounded by text."""
        text = f"I found these: {json.dumps([self.ENTRY])} hope it helps"
        assert parse_response(text) == [self.ENTRY]

    def test_object_without_entries(self):
        """Test an object with no finding list."""
        assert parse_response('{"status": "ok"}') == []

    def test_garbage_raises(self):
        """Test that unparsable text raises."""
        with pytest.raises(ValueError):
            parse_response("no vulnerabilities here")


class TestNormalizeEntry:
    """Test conversion of response entries into findings."""

    @pytest.fixture
    def chunk(self):
        return Chunk("vault.move", "a\nb\nc", 11, 13)

    def test_record_entry(self, chunk):
        """Test normalizing a finding record."""
        entry = {
            "file": "somewhere_else.move",
            "line": 2,
            "category": "Reentrancy Attacks",
            "description": "Possible reentrancy through callback",
            "severity": "major",
        }

        finding = normalize_entry(entry, chunk)

        assert finding.file == "vault.move"
        assert finding.line == 12
        assert finding.severity == Severity.HIGH
        assert finding.rule_id == "semantic-reentrancy-attacks"
        assert finding.source == FindingSource.SEMANTIC
        assert finding.confidence == 0.6
        assert finding.title == "Reentrancy Risk"
        assert finding.recommendation == "Update state before external calls and transfers"

    def test_bare_string_entry(self, chunk):
        """Test normalizing a bare string."""
        finding = normalize_entry("Unbounded loop over user input", chunk)

        assert finding.description == "Unbounded loop over user input"
        assert finding.rule_id == "semantic-analysis"
        assert finding.category is None
        assert finding.line == 11
        assert finding.severity == Severity.MEDIUM

    def test_snippet_from_file_lines(self, chunk):
        """Test that snippets come from the file."""
        lines = [f"line {i}" for i in range(1, 21)]
        finding = normalize_entry({"description": "x", "line": 13}, chunk, lines)

        assert finding.snippet == "line 13"

    def test_unusable_entries(self, chunk):
        """Test that unusable entries are dropped."""
        assert normalize_entry(42, chunk) is None
        assert normalize_entry({"severity": "low"}, chunk) is None


@pytest.mark.asyncio
class TestSemanticAnalyzer:
    """Test concurrent chunk analysis."""

    @pytest.fixture
    def small_chunks(self, config):
        # Each statement line becomes its own chunk
        return replace(config, max_tokens_per_chunk=4)

    async def test_disabled_without_client(self, config, unguarded_source, parser):
        """Test that no client means no calls."""
        analyzer = SemanticAnalyzer(config, None)

        assert not analyzer.enabled
        assert await analyzer.analyze([parser.extract(unguarded_source)]) == []
        assert analyzer.calls == 0

    async def test_findings_use_chunk_file(self, config, parser, unguarded_source):
        """Test that findings name the chunk's file."""
        client = FakeClient(json.dumps([{"file": "other.move", "line": 8, "description": "Unchecked transfer"}]))
        analyzer = SemanticAnalyzer(config, client)

        findings = await analyzer.analyze([parser.extract(unguarded_source)])

        assert len(findings) == 1
        assert findings[0].file == "pool.move"
        assert findings[0].line == 8
        assert findings[0].snippet == "public_transfer(c, sender);"
        assert "File: pool.move" in client.prompts[0]

    async def test_failed_chunk_is_isolated(self, small_chunks):
        """Test that a failing call drops only its chunk."""
        client = FakeClient(json.dumps(["Issue"]), fail_on="Lines: 2-2")
        analyzer = SemanticAnalyzer(small_chunks, client)

        findings = await analyzer.analyze([parse(statement_lines(3))])

        assert analyzer.calls == 3
        assert [f.line for f in findings] == [1, 3]

    async def test_timeout_yields_no_findings(self, config):
        """Test the per-call timeout."""
        client = FakeClient(json.dumps(["Issue"]), delay=5)
        analyzer = SemanticAnalyzer(replace(config, llm_timeout=0.05), client)

        assert await analyzer.analyze([parse(statement_lines(2))]) == []

    async def test_malformed_response(self, config):
        """Test that a malformed response gives no findings."""
        analyzer = SemanticAnalyzer(config, FakeClient("I could not analyze this"))

        assert await analyzer.analyze([parse(statement_lines(2))]) == []

    async def test_concurrency_is_bounded(self, small_chunks):
        """Test the concurrency limit."""
        client = FakeClient("[]", delay=0.01)
        analyzer = SemanticAnalyzer(replace(small_chunks, max_concurrency=2), client)

        await analyzer.analyze([parse(statement_lines(6))])

        assert analyzer.calls == 6
        assert client.peak <= 2

    async def test_collector_receives_chunk_results(self, small_chunks):
        """Test that finished chunks reach the collector."""
        analyzer = SemanticAnalyzer(small_chunks, FakeClient(json.dumps(["Issue"])))
        collector = {}

        findings = await analyzer.analyze([parse(statement_lines(3))], collector)

        assert sorted(collector) == [0, 1, 2]
        assert findings == SemanticAnalyzer.collect(collector)

    async def test_skips_files_with_parse_errors(self, config):
        """Test that unparsed files are not sent."""
        client = FakeClient()
        analyzer = SemanticAnalyzer(config, client)

        broken = parse("module a::b {")
        ok = parse(statement_lines(1), name="ok.move")
        await analyzer.analyze([broken, ok])

        assert analyzer.calls == 1
        assert "File: ok.move" in client.prompts[0]

