"""Contextual analysis: chunk files, ask the inference capability, normalize answers."""

import asyncio
import json
import re
from collections.abc import Sequence
from typing import Any

from loguru import logger

from ..config import AnalysisConfig
from ..models import Chunk, Finding, FindingSource, ParsedFile, Severity
from ..utils.text_helpers import line_content, split_lines
from .inference import InferenceClient
from .prompts import SYSTEM_PROMPT, build_user_prompt

SEMANTIC_CONFIDENCE = 0.6

# (keyword in description, title)
TITLE_KEYWORDS = [
    ("reentran", "Reentrancy Risk"),
    ("overflow", "Integer Overflow/Underflow"),
    ("underflow", "Integer Overflow/Underflow"),
    ("oracle", "Oracle Manipulation"),
    ("price", "Price Manipulation"),
    ("mint", "Arbitrary Token Minting"),
    ("capability", "Capability Misuse"),
    ("access", "Missing Access Control"),
    ("authoriz", "Insufficient Authorization"),
    ("timestamp", "Timestamp Dependence"),
    ("rounding", "Rounding Errors"),
    ("precision", "Rounding Errors"),
    ("loop", "Denial-of-Service"),
    ("gas", "Gas Usage Inefficiency"),
    ("race", "Transaction-Ordering Dependence"),
    ("slippage", "Swap Slippage Vulnerability"),
]

RECOMMENDATION_KEYWORDS = [
    ("reentran", "Update state before external calls and transfers"),
    ("overflow", "Use checked arithmetic or assert bounds before the operation"),
    ("underflow", "Use checked arithmetic or assert bounds before the operation"),
    ("oracle", "Use time-weighted prices from multiple sources and validate them"),
    ("price", "Use time-weighted prices from multiple sources and validate them"),
    ("mint", "Gate minting behind a capability and enforce a supply cap"),
    ("capability", "Verify capability ownership before privileged operations"),
    ("access", "Add capability checks or assert the sender before privileged operations"),
    ("authoriz", "Add capability checks or assert the sender before privileged operations"),
    ("timestamp", "Avoid exact timestamp comparisons in critical logic"),
    ("rounding", "Scale by a precision factor before dividing"),
    ("precision", "Scale by a precision factor before dividing"),
    ("loop", "Bound loop iterations"),
    ("gas", "Cache repeated lookups and batch expensive operations"),
    ("slippage", "Add min_amount_out and deadline parameters"),
]

DEFAULT_RECOMMENDATION = "Review the flagged code and add appropriate validation"


def split_into_chunks(
    content: str,
    file_name: str,
    max_tokens: int = 1500,
    tokens_per_char: float = 0.25,
) -> list[Chunk]:
    """Split ``content`` into contiguous line ranges within an estimated token budget.

    Each line costs ``(len(line) + 1) * tokens_per_char``. A line that alone
    exceeds the budget becomes its own chunk. The chunks cover lines 1..N
    exactly once.
    """
    lines = split_lines(content)
    chunks: list[Chunk] = []
    current: list[str] = []
    start_line = 1
    tokens = 0.0

    for line_num, line in enumerate(lines, 1):
        cost = (len(line) + 1) * tokens_per_char
        if current and tokens + cost > max_tokens:
            chunks.append(Chunk(file_name, "\n".join(current), start_line, line_num - 1))
            current = []
            start_line = line_num
            tokens = 0.0
        current.append(line)
        tokens += cost

    if current:
        chunks.append(Chunk(file_name, "\n".join(current), start_line, len(lines)))
    return chunks


def reconcile_line(reported: Any, chunk: Chunk) -> int:
    """Map a model-reported line number onto an absolute file line.

    Values within ``1..line_count`` are read as chunk-relative, values within
    the chunk's absolute range as absolute, anything else falls back to the
    chunk start. A value that fits both readings is read as relative.
    """
    value = _as_int(reported)
    if value is None:
        return chunk.start_line
    if 1 <= value <= chunk.line_count:
        return chunk.start_line + value - 1
    if chunk.start_line <= value <= chunk.end_line:
        return value
    return chunk.start_line


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def parse_response(text: str) -> list[Any]:
    """Extract the list of entries from a model response.

    Accepts a bare JSON array, an object holding the list under
    ``vulnerabilities`` or ``findings``, and either wrapped in a ``` fence.
    Raises ValueError when nothing usable is found.
    """
    content = (text or "").strip()
    if "```" in content:
        fence = re.search(r"```(?:json)?\s*(.*?)```", content, re.DOTALL)
        if fence:
            content = fence.group(1).strip()

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        data = _loads_embedded(content)

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ("vulnerabilities", "findings"):
            if isinstance(data.get(key), list):
                return data[key]
        if "description" in data:
            return [data]
        return []
    raise ValueError("Response JSON is neither an array nor an object")


def _loads_embedded(content: str) -> Any:
    for open_char, close_char in (("[", "]"), ("{", "}")):
        start = content.find(open_char)
        end = content.rfind(close_char)
        if start != -1 and end > start:
            try:
                return json.loads(content[start:end + 1])
            except json.JSONDecodeError:
                continue
    raise ValueError("No valid JSON found in response")


def _keyword_lookup(text: str, table: list[tuple[str, str]]) -> str | None:
    lowered = text.lower()
    for keyword, value in table:
        if keyword in lowered:
            return value
    return None


def _title_for(description: str, category: str | None) -> str:
    title = _keyword_lookup(description, TITLE_KEYWORDS)
    if title:
        return title
    if category:
        return category
    words = description.split()[:4]
    return " ".join(words) if words else "Semantic Finding"


def _rule_id_for(category: str | None) -> str:
    if not category:
        return "semantic-analysis"
    slug = re.sub(r"[^a-z0-9]+", "-", category.lower()).strip("-")
    return f"semantic-{slug}" if slug else "semantic-analysis"


def normalize_entry(entry: Any, chunk: Chunk, lines: list[str] | None = None) -> Finding | None:
    """Turn one response entry (a record or a bare string) into a Finding."""
    if isinstance(entry, str):
        entry = {"description": entry}
    if not isinstance(entry, dict):
        return None

    description = str(entry.get("description") or entry.get("issue") or "").strip()
    category = entry.get("category") or entry.get("type")
    category = str(category).strip() if category else None
    if not description:
        if not category:
            return None
        description = category

    line = reconcile_line(entry.get("line"), chunk)
    snippet = line_content(lines, line) if lines else ""
    return Finding(
        rule_id=_rule_id_for(category),
        category=category,
        severity=Severity.parse(entry.get("severity")),
        description=description,
        file=chunk.file_name,
        line=line,
        snippet=snippet,
        recommendation=(
            entry.get("recommendation")
            or _keyword_lookup(description, RECOMMENDATION_KEYWORDS)
            or DEFAULT_RECOMMENDATION
        ),
        confidence=SEMANTIC_CONFIDENCE,
        source=FindingSource.SEMANTIC,
        title=_title_for(description, category),
    )


class SemanticAnalyzer:
    """Dispatches chunk-level inference calls concurrently.

    Disabled (zero findings, zero calls) when no client is supplied.
    """

    def __init__(self, config: AnalysisConfig | None = None, client: InferenceClient | None = None):
        self.config = config or AnalysisConfig()
        self.client = client
        self.calls = 0

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def chunk_files(self, parsed_files: Sequence[ParsedFile]) -> list[Chunk]:
        chunks = []
        for parsed in parsed_files:
            if not parsed.ok:
                continue
            chunks.extend(
                split_into_chunks(
                    parsed.source.content,
                    parsed.name,
                    self.config.max_tokens_per_chunk,
                    self.config.tokens_per_char,
                )
            )
        return chunks

    async def analyze(
        self,
        parsed_files: Sequence[ParsedFile],
        collector: dict[int, list[Finding]] | None = None,
    ) -> list[Finding]:
        """Analyze every chunk of every error-free file.

        Completed chunk results are stored in ``collector`` (keyed by chunk
        index) as they finish, so a caller that cancels this coroutine still
        has them.
        """
        if not self.enabled:
            logger.debug("Semantic analyzer disabled, skipping")
            return []

        chunks = self.chunk_files(parsed_files)
        if not chunks:
            return []

        lines_by_file = {p.name: split_lines(p.source.content) for p in parsed_files if p.ok}
        results = collector if collector is not None else {}
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def run(index: int, chunk: Chunk) -> None:
            async with semaphore:
                findings = await self.analyze_chunk(chunk, lines_by_file.get(chunk.file_name))
            results[index] = findings

        logger.info(f"Dispatching {len(chunks)} chunks for contextual analysis")
        await asyncio.gather(*(run(i, chunk) for i, chunk in enumerate(chunks)))

        findings = self.collect(results)
        logger.info(f"Contextual analysis produced {len(findings)} findings")
        return findings

    @staticmethod
    def collect(results: dict[int, list[Finding]]) -> list[Finding]:
        """Flatten per-chunk results in chunk order."""
        return [f for index in sorted(results) for f in results[index]]

    async def analyze_chunk(self, chunk: Chunk, lines: list[str] | None = None) -> list[Finding]:
        """One inference call. Any failure yields no findings for this chunk only."""
        self.calls += 1
        label = f"{chunk.file_name}:{chunk.start_line}-{chunk.end_line}"
        try:
            text = await asyncio.wait_for(
                self.client.infer(SYSTEM_PROMPT, build_user_prompt(chunk)),
                timeout=self.config.llm_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Inference timed out for {label}")
            return []
        except Exception as e:
            logger.warning(f"Inference failed for {label}: {e}")
            return []

        try:
            entries = parse_response(text)
        except ValueError as e:
            logger.warning(f"Failed to parse LLM response for {label}: {e}: {(text or '')[:200]}")
            return []

        findings = []
        for entry in entries:
            finding = normalize_entry(entry, chunk, lines)
            if finding is not None:
                findings.append(finding)
        logger.debug(f"Chunk {label} produced {len(findings)} findings")
        return findings
