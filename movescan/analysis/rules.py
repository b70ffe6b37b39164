"""Rule type, per-file context and the token patterns shared by rule sets."""

import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from ..config import AnalysisConfig
from ..models import Finding, FindingSource, FunctionRecord, ParsedFile, Severity
from ..utils.text_helpers import line_content, split_lines

# Modules of the Sui/Move standard library. Calls into these are not treated
# as calls into untrusted external code.
FRAMEWORK_MODULES = frozenset(
    {
        "coin",
        "balance",
        "tx_context",
        "object",
        "transfer",
        "event",
        "option",
        "vector",
        "string",
        "table",
        "bag",
        "dynamic_field",
        "math",
        "clock",
        "std",
        "sui",
    }
)

ACCESS_CHECK_PATTERN = re.compile(
    r"\bassert!?\s*\("
    r"|\bhas_access\b"
    r"|\bassert_owner\b"
    r"|\bcheck_permission\b"
    r"|\bhas_role\b"
    r"|\bverify_\w*cap\w*"
)

IF_ABORT_PATTERN = re.compile(r"\bif\b[^\n]*\babort\b")

TRANSFER_CALL_PATTERN = re.compile(
    r"\b(?:[A-Za-z_]\w*::)*(?:public_)?transfer(?:_to_sender)?\s*(?:<[^()\n]*>)?\s*\("
)

MODULE_CALL_PATTERN = re.compile(
    r"\b(?P<module>[A-Za-z_]\w*)::(?P<function>[A-Za-z_]\w*)\s*(?:<[^()\n]*>)?\s*\("
)

CAPABILITY_TOKEN_PATTERN = re.compile(r"\b\w*(?:Cap|Authority|Admin)\w*\b")

ADMIN_MARKER_PATTERN = re.compile(r"admin|owner|authority", re.IGNORECASE)

MUT_REF_PATTERN = re.compile(r"&mut\s+(?P<name>[A-Za-z_]\w*)")

ASSIGNMENT_PATTERN = re.compile(r"(?<![=!<>+\-*/%])=(?![=>])")


def guard_positions(code: str) -> list[int]:
    """Offsets of every access-check construct in ``code``."""
    positions = [m.start() for m in ACCESS_CHECK_PATTERN.finditer(code)]
    positions.extend(m.start() for m in IF_ABORT_PATTERN.finditer(code))
    return sorted(positions)


def has_guard(code: str) -> bool:
    return bool(guard_positions(code))


def count_capability_tokens(code: str) -> int:
    return len(CAPABILITY_TOKEN_PATTERN.findall(code))


def is_framework_module(module: str) -> bool:
    return module in FRAMEWORK_MODULES


def body_lines(func: FunctionRecord) -> Iterator[tuple[int, str]]:
    """Yield ``(absolute_line, code)`` for every line of the comment-stripped body."""
    for offset, code in enumerate(func.body_code.split("\n")):
        yield func.body_start_line + offset, code


@dataclass
class FileContext:
    """Read-only facts about one file, computed once and shared by every rule."""

    parsed: ParsedFile
    config: AnalysisConfig
    lines: list[str]
    capability_counts: dict[str, int] = field(default_factory=dict)
    admin_function_count: int = 0

    @classmethod
    def build(cls, parsed: ParsedFile, config: AnalysisConfig | None = None) -> "FileContext":
        capability_counts = {}
        admin_function_count = 0
        for func in parsed.functions:
            capability_counts[func.qualified_name] = count_capability_tokens(func.code)
            if ADMIN_MARKER_PATTERN.search(func.code):
                admin_function_count += 1
        return cls(
            parsed=parsed,
            config=config or AnalysisConfig(),
            lines=split_lines(parsed.source.content),
            capability_counts=capability_counts,
            admin_function_count=admin_function_count,
        )

    @property
    def file_name(self) -> str:
        return self.parsed.name

    def snippet(self, line: int) -> str:
        return line_content(self.lines, line)


FunctionPredicate = Callable[["Rule", FunctionRecord, FileContext], Iterable[Finding]]
FilePredicate = Callable[["Rule", FileContext], Iterable[Finding]]


@dataclass(frozen=True)
class Rule:
    """A named detection predicate with the metadata attached to its findings."""

    id: str
    category: str
    severity: Severity
    title: str
    recommendation: str
    predicate: FunctionPredicate | None = None
    file_predicate: FilePredicate | None = None

    def check(self, func: FunctionRecord, ctx: FileContext) -> Iterable[Finding]:
        if self.predicate is None:
            return ()
        return self.predicate(self, func, ctx)

    def check_file(self, ctx: FileContext) -> Iterable[Finding]:
        if self.file_predicate is None:
            return ()
        return self.file_predicate(self, ctx)

    def finding(
        self,
        ctx: FileContext,
        line: int,
        description: str,
        severity: Severity | None = None,
        confidence: float = 0.8,
    ) -> Finding:
        line = max(1, line)
        return Finding(
            rule_id=self.id,
            category=self.category,
            severity=severity or self.severity,
            description=description,
            file=ctx.file_name,
            line=line,
            snippet=ctx.snippet(line),
            recommendation=self.recommendation,
            confidence=confidence,
            source=FindingSource.STATIC,
            title=self.title,
        )


def function_rule(
    id: str,
    category: str,
    severity: Severity,
    title: str,
    recommendation: str,
) -> Callable[[FunctionPredicate], Rule]:
    """Decorator turning a predicate function into a ``Rule``."""

    def decorator(predicate: FunctionPredicate) -> Rule:
        return Rule(id, category, severity, title, recommendation, predicate=predicate)

    return decorator
