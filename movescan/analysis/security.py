"""Rule engine: evaluates every rule against every extracted function."""

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from loguru import logger

from ..config import AnalysisConfig
from ..models import Finding, ParsedFile
from .category_rules import CATEGORY_RULES
from .defi_rules import DEFI_RULES
from .rules import FileContext, Rule
from .structural_rules import STRUCTURAL_RULES


def default_rules() -> list[Rule]:
    return [*STRUCTURAL_RULES, *CATEGORY_RULES, *DEFI_RULES]


class RuleEngine:
    """Runs structural, category and DeFi rules over parsed files.

    Findings are raw: no deduplication happens here. A rule that raises is
    logged and contributes nothing for that function.
    """

    def __init__(self, config: AnalysisConfig | None = None, rules: Sequence[Rule] | None = None):
        self.config = config or AnalysisConfig()
        self.rules = list(rules) if rules is not None else default_rules()

    def analyze_file(self, parsed: ParsedFile) -> list[Finding]:
        """Evaluate all rules on one file."""
        if not parsed.ok:
            logger.warning(f"Skipping rules for {parsed.name}: {parsed.parse_error}")
            return []

        ctx = FileContext.build(parsed, self.config)
        findings: list[Finding] = []
        for func in parsed.functions:
            for rule in self.rules:
                try:
                    findings.extend(rule.check(func, ctx))
                except Exception as e:
                    logger.error(f"Error in rule {rule.id} on {func.qualified_name}: {e}")
        for rule in self.rules:
            try:
                findings.extend(rule.check_file(ctx))
            except Exception as e:
                logger.error(f"Error in file-level rule {rule.id} on {parsed.name}: {e}")

        logger.debug(f"Rules produced {len(findings)} findings for {parsed.name}")
        return findings

    def analyze(self, parsed_files: Sequence[ParsedFile]) -> list[Finding]:
        """Evaluate all files, fanning out over a thread pool.

        Results are reassembled in input file order regardless of completion order.
        """
        files = [p for p in parsed_files if p.ok]
        if not files:
            return []

        if not self.config.parallel_rules or len(files) == 1:
            per_file = [self.analyze_file(p) for p in files]
        else:
            per_file = self._analyze_parallel(files)

        findings = [f for file_findings in per_file for f in file_findings]
        logger.info(f"Rule engine produced {len(findings)} raw findings across {len(files)} files")
        return findings

    def _analyze_parallel(self, files: list[ParsedFile]) -> list[list[Finding]]:
        workers = min(self.config.worker_count, len(files))
        results: list[list[Finding]] = [[] for _ in files]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_index = {executor.submit(self.analyze_file, p): i for i, p in enumerate(files)}
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                try:
                    results[index] = future.result()
                except Exception as e:
                    logger.error(f"Failed to analyze {files[index].name}: {e}")
        return results
