"""Core data model shared by the extractor, the analysis engines and collaborators."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from functools import cached_property, total_ordering
from typing import Any

from .utils.text_helpers import strip_comments


@total_ordering
class Severity(Enum):
    """Canonical severity levels, totally ordered critical > high > medium > low."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: "str | Severity | None") -> "Severity":
        """Normalize free-text severity (major, minor, info, ...) into the enum."""
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            return cls.MEDIUM
        return _SEVERITY_ALIASES.get(value.strip().lower(), cls.MEDIUM)


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}

_SEVERITY_ALIASES = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "major": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
    "minor": Severity.LOW,
    "info": Severity.LOW,
    "informational": Severity.LOW,
}


class FindingSource(Enum):
    """Engine that produced a finding."""

    STATIC = "static"
    TAINT = "taint"
    SEMANTIC = "semantic"


@dataclass
class SourceFile:
    """Unit of input handed to the core by upload/fetch collaborators."""

    name: str
    content: str
    parse_error: str | None = None


@dataclass(frozen=True)
class Parameter:
    """A declared function parameter."""

    name: str
    type: str


@dataclass(frozen=True)
class FunctionRecord:
    """One function declaration as seen by the rules.

    ``text`` spans from the first signature token to the closing brace,
    ``body`` is the text between the braces. Any extractor that fills these
    fields can stand in for the pattern-based one.
    """

    name: str
    module: str
    visibility: str  # "public", "public(friend)", "public(package)", "private"
    is_entry: bool
    signature: str
    body: str
    text: str
    start_line: int
    end_line: int
    body_start_line: int
    parameters: tuple[Parameter, ...] = ()
    generics: str | None = None
    return_type: str | None = None
    address: str | None = None

    @property
    def is_public(self) -> bool:
        return self.visibility == "public"

    @property
    def is_public_entry(self) -> bool:
        return self.is_public and self.is_entry

    @property
    def qualified_name(self) -> str:
        return f"{self.module}::{self.name}"

    @cached_property
    def code(self) -> str:
        """``text`` with comments blanked out, same length and line layout."""
        return strip_comments(self.text)

    @cached_property
    def body_code(self) -> str:
        return strip_comments(self.body)

    def line_of(self, index: int) -> int:
        """Absolute file line for an offset into ``text``/``code``."""
        return self.start_line + self.text.count("\n", 0, max(index, 0))

    def body_line_of(self, index: int) -> int:
        """Absolute file line for an offset into ``body``/``body_code``."""
        return self.body_start_line + self.body.count("\n", 0, max(index, 0))


@dataclass
class ModuleRecord:
    """A module declaration, used mainly by graph collaborators."""

    name: str
    address: str | None
    start_line: int
    end_line: int
    functions: list[str] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.address}::{self.name}" if self.address else self.name


@dataclass
class StructRecord:
    name: str
    abilities: list[str]
    fields: list[Parameter]
    line: int
    generics: str | None = None


@dataclass
class ConstantRecord:
    name: str
    type: str
    value: str
    line: int


@dataclass
class ImportRecord:
    module: str
    items: list[str]
    alias: str | None
    line: int


@dataclass
class ParsedFile:
    """Extractor output for one source file."""

    source: SourceFile
    modules: list[ModuleRecord] = field(default_factory=list)
    functions: list[FunctionRecord] = field(default_factory=list)
    structs: list[StructRecord] = field(default_factory=list)
    constants: list[ConstantRecord] = field(default_factory=list)
    imports: list[ImportRecord] = field(default_factory=list)
    parse_error: str | None = None

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def ok(self) -> bool:
        return self.parse_error is None


@dataclass(frozen=True)
class Finding:
    """One reported issue. Immutable once created."""

    rule_id: str
    category: str | None
    severity: Severity
    description: str
    file: str
    line: int
    snippet: str = ""
    recommendation: str = ""
    confidence: float = 0.8  # 0.0 to 1.0
    source: FindingSource = FindingSource.STATIC
    title: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["source"] = self.source.value
        return data


@dataclass(frozen=True)
class TaintedSymbol:
    """A symbol derived from an externally supplied resource-typed value."""

    name: str
    scope: str


@dataclass(frozen=True)
class Chunk:
    """A bounded, line-addressed slice of a file for contextual analysis."""

    file_name: str
    content: str
    start_line: int
    end_line: int

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1


@dataclass(frozen=True)
class CallDescriptor:
    """A synthesized, never-executed transaction call."""

    kind: str
    target: str
    arguments: tuple[str, ...]
    type_arguments: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecutionResult:
    status: str
    gas_used: int = 0
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class SimulationResult:
    function: str
    file: str
    descriptor: CallDescriptor | None
    status: str
    execution: ExecutionResult | None = None
    error: str | None = None
    recommendation: str = ""


@dataclass
class AnalysisMetadata:
    per_engine_counts: dict[str, int]
    timestamp: str
    partial: bool = False
    files: dict[str, str | None] = field(default_factory=dict)  # name -> parse error
    error: str | None = None


@dataclass
class AnalysisResult:
    """Terminal output handed to report/UI collaborators."""

    findings: list[Finding]
    simulations: list[SimulationResult]
    metadata: AnalysisMetadata

    def findings_by_severity(self, severity: Severity) -> list[Finding]:
        return [f for f in self.findings if f.severity == severity]

    def to_dict(self) -> dict[str, Any]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "simulations": [asdict(s) for s in self.simulations],
            "metadata": asdict(self.metadata),
        }

