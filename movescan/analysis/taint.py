"""Intraprocedural taint propagation from resource-typed entry parameters."""

import re
from collections import defaultdict
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from ..config import AnalysisConfig
from ..models import Finding, FindingSource, FunctionRecord, ParsedFile, Severity, TaintedSymbol
from ..utils.text_helpers import contains_word, line_content, split_lines
from .rules import ACCESS_CHECK_PATTERN, ASSIGNMENT_PATTERN, IF_ABORT_PATTERN, TRANSFER_CALL_PATTERN

TAINT_RULE_ID = "tainted-resource-operation"

ARITHMETIC_PATTERN = re.compile(r"[\w)\]]\s*[-+*/%]\s*[\w(]|[-+*/%]=")
LET_PATTERN = re.compile(r"\blet\s+(?:mut\s+)?(?P<name>[A-Za-z_]\w*)")
LET_TUPLE_PATTERN = re.compile(r"\blet\s*\((?P<names>[^)]*)\)")
ASSIGN_TARGET_PATTERN = re.compile(r"^\s*\*?\s*\(?\s*(?P<name>[A-Za-z_]\w*)(?:\s*\.\s*\w+)*\s*\)?\s*(?:[-+*/%]?=)(?![=>])")
COMPOUND_ASSIGN_PATTERN = re.compile(r"[-+*/%]=(?![=>])")


class InstructionKind(Enum):
    ACCESS_CHECK = "access_check"
    TRANSFER_CALL = "transfer_call"
    ARITHMETIC_OP = "arithmetic_op"
    ASSIGNMENT = "assignment"
    OTHER = "other"


@dataclass(frozen=True)
class Instruction:
    """One body line of a function, classified."""

    kind: InstructionKind
    code: str
    line: int
    targets: tuple[str, ...] = ()

    @property
    def right_side(self) -> str:
        """Text after the first assignment operator, or the whole line."""
        match = _assignment(self.code)
        return self.code[match.end():] if match else self.code


class TaintContext:
    """Per-request taint state: scope (function) to tainted symbols.

    Symbols can be added but never removed.
    """

    def __init__(self):
        self._symbols: dict[str, set[TaintedSymbol]] = defaultdict(set)

    def taint(self, scope: str, name: str) -> bool:
        """Mark ``name`` tainted in ``scope``. Returns True if it was new."""
        symbol = TaintedSymbol(name=name, scope=scope)
        if symbol in self._symbols[scope]:
            return False
        self._symbols[scope].add(symbol)
        return True

    def is_tainted(self, scope: str, name: str) -> bool:
        return TaintedSymbol(name=name, scope=scope) in self._symbols.get(scope, set())

    def symbols(self, scope: str) -> frozenset[TaintedSymbol]:
        return frozenset(self._symbols.get(scope, set()))

    def names(self, scope: str) -> list[str]:
        return sorted(s.name for s in self._symbols.get(scope, set()))

    def references_taint(self, scope: str, code: str) -> str | None:
        """First tainted name (alphabetically) that ``code`` mentions as a whole word."""
        for name in self.names(scope):
            if contains_word(code, name):
                return name
        return None

    def scopes(self) -> list[str]:
        return sorted(self._symbols)

    def __len__(self) -> int:
        return sum(len(s) for s in self._symbols.values())


def _assignment(code: str) -> re.Match | None:
    return ASSIGNMENT_PATTERN.search(code) or COMPOUND_ASSIGN_PATTERN.search(code)


def classify(code: str) -> InstructionKind:
    if ACCESS_CHECK_PATTERN.search(code) or IF_ABORT_PATTERN.search(code):
        return InstructionKind.ACCESS_CHECK
    if TRANSFER_CALL_PATTERN.search(code):
        return InstructionKind.TRANSFER_CALL
    if ARITHMETIC_PATTERN.search(code):
        return InstructionKind.ARITHMETIC_OP
    if ASSIGNMENT_PATTERN.search(code):
        return InstructionKind.ASSIGNMENT
    return InstructionKind.OTHER


def extract_targets(code: str) -> tuple[str, ...]:
    """Identifiers written by ``code``: ``let x``, ``let (a, b)``, ``*x =``, ``x.f =``."""
    if not _assignment(code):
        return ()
    tuple_match = LET_TUPLE_PATTERN.search(code)
    if tuple_match:
        names = []
        for part in tuple_match.group("names").split(","):
            name = part.strip().removeprefix("mut ").strip()
            if name and name != "_" and re.fullmatch(r"[A-Za-z_]\w*", name):
                names.append(name)
        return tuple(names)
    let_match = LET_PATTERN.search(code)
    if let_match:
        return (let_match.group("name"),) if let_match.group("name") != "_" else ()
    assign_match = ASSIGN_TARGET_PATTERN.match(code)
    if assign_match:
        return (assign_match.group("name"),)
    return ()


def linearize(func: FunctionRecord) -> list[Instruction]:
    """One instruction per non-blank body line, in order, with absolute lines."""
    instructions = []
    for offset, raw in enumerate(func.body_code.split("\n")):
        code = raw.strip()
        if not code:
            continue
        instructions.append(
            Instruction(
                kind=classify(code),
                code=code,
                line=func.body_start_line + offset,
                targets=extract_targets(code),
            )
        )
    return instructions


class TaintAnalyzer:
    """Single forward pass per entry function; taint never crosses calls."""

    def __init__(self, config: AnalysisConfig | None = None):
        self.config = config or AnalysisConfig()

    def is_resource_type(self, type_text: str) -> bool:
        return any(resource in type_text for resource in self.config.resource_types)

    def seed(self, func: FunctionRecord, context: TaintContext) -> list[str]:
        scope = func.qualified_name
        seeded = []
        for param in func.parameters:
            if self.is_resource_type(param.type):
                context.taint(scope, param.name)
                seeded.append(param.name)
        return seeded

    def analyze(self, parsed_files: Sequence[ParsedFile], context: TaintContext | None = None) -> list[Finding]:
        context = context if context is not None else TaintContext()
        findings: list[Finding] = []
        for parsed in parsed_files:
            if not parsed.ok:
                continue
            lines = split_lines(parsed.source.content)
            for func in parsed.functions:
                if not func.is_entry:
                    continue
                try:
                    findings.extend(self.analyze_function(func, parsed.name, context, lines))
                except Exception as e:
                    logger.error(f"Taint analysis failed for {func.qualified_name}: {e}")
        logger.info(f"Taint analysis produced {len(findings)} findings")
        return findings

    def analyze_function(
        self,
        func: FunctionRecord,
        file_name: str,
        context: TaintContext,
        lines: list[str] | None = None,
    ) -> list[Finding]:
        if not self.seed(func, context):
            return []
        return list(self._propagate(func, file_name, context, lines or []))

    def _propagate(
        self, func: FunctionRecord, file_name: str, context: TaintContext, lines: list[str]
    ) -> Iterator[Finding]:
        scope = func.qualified_name
        checked = False
        for instruction in linearize(func):
            if instruction.kind is InstructionKind.ACCESS_CHECK:
                checked = True
            elif instruction.kind in (InstructionKind.TRANSFER_CALL, InstructionKind.ARITHMETIC_OP) and not checked:
                symbol = context.references_taint(scope, instruction.code)
                if symbol:
                    yield self._finding(func, file_name, instruction, symbol, lines)

            if instruction.targets and context.references_taint(scope, instruction.right_side):
                for target in instruction.targets:
                    if context.taint(scope, target):
                        logger.debug(f"Taint propagated to {scope}::{target} at line {instruction.line}")

    @staticmethod
    def _finding(
        func: FunctionRecord, file_name: str, instruction: Instruction, symbol: str, lines: list[str]
    ) -> Finding:
        operation = "Transfer" if instruction.kind is InstructionKind.TRANSFER_CALL else "Arithmetic"
        return Finding(
            rule_id=TAINT_RULE_ID,
            category="Tainted Resource Flow",
            severity=Severity.HIGH,
            description=(
                f"{operation} on tainted resource '{symbol}' in '{func.name}' occurs before any access check"
            ),
            file=file_name,
            line=instruction.line,
            snippet=line_content(lines, instruction.line) or instruction.code,
            recommendation="Add access control checks before operating on tainted resources",
            confidence=0.8,
            source=FindingSource.TAINT,
            title="Tainted Resource Operation",
        )
