"""Per-request orchestration: extract, run the engines, aggregate."""

import asyncio
import contextlib
from collections.abc import Sequence
from datetime import datetime, timezone

from loguru import logger

from .analysis.aggregator import FindingAggregator
from .analysis.inference import InferenceClient, create_inference_client
from .analysis.rules import Rule
from .analysis.security import RuleEngine
from .analysis.semantic import SemanticAnalyzer
from .analysis.taint import TaintAnalyzer, TaintContext
from .config import AnalysisConfig
from .models import AnalysisMetadata, AnalysisResult, Finding, ParsedFile, SourceFile
from .parsers.move_parser import MoveParser, SourceExtractor
from .simulation import DryRunExecutor, SimulationGenerator


class AnalysisPipeline:
    """One instance per analysis request; holds no state shared across requests."""

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        inference_client: InferenceClient | None = None,
        executor: DryRunExecutor | None = None,
        extractor: SourceExtractor | None = None,
        rules: Sequence[Rule] | None = None,
    ):
        self.config = (config or AnalysisConfig()).validate()
        self.extractor = extractor or MoveParser()
        self.rule_engine = RuleEngine(self.config, rules)
        self.taint_analyzer = TaintAnalyzer(self.config)
        if inference_client is None:
            inference_client = create_inference_client(self.config)
        self.semantic_analyzer = SemanticAnalyzer(self.config, inference_client)
        self.simulator = SimulationGenerator(executor)
        self.aggregator = FindingAggregator(
            bucket_width=self.config.dedup_bucket_width,
            description_words=self.config.dedup_description_words,
            merge_descriptions=self.config.merge_descriptions,
        )

    async def analyze(
        self,
        files: Sequence[SourceFile],
        cancel_event: asyncio.Event | None = None,
    ) -> AnalysisResult:
        """Run every engine over ``files``.

        Setting ``cancel_event`` aborts outstanding inference calls; chunks
        already answered are kept and the result is marked partial. An
        unexpected failure falls back to static-rule findings only.
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        parsed_files = self.extractor.extract_all(files)
        file_status = {p.name: p.parse_error for p in parsed_files}
        errored = sum(1 for p in parsed_files if not p.ok)
        logger.info(f"Analyzing {len(parsed_files)} files ({errored} with parse errors)")

        static: list[Finding] = []
        try:
            static = self.rule_engine.analyze(parsed_files)
            taint = self.taint_analyzer.analyze(parsed_files, TaintContext())
            semantic, partial = await self._run_semantic(parsed_files, cancel_event)
            simulations = await self.simulator.generate(parsed_files)
            findings = self.aggregator.aggregate([*static, *taint, *semantic])
        except Exception as e:
            logger.error(f"Analysis pipeline failed, falling back to static rules: {e}")
            return AnalysisResult(
                findings=self.aggregator.aggregate(static),
                simulations=[],
                metadata=AnalysisMetadata(
                    per_engine_counts={"static": len(static), "taint": 0, "semantic": 0},
                    timestamp=timestamp,
                    files=file_status,
                    error=str(e),
                ),
            )

        metadata = AnalysisMetadata(
            per_engine_counts={"static": len(static), "taint": len(taint), "semantic": len(semantic)},
            timestamp=timestamp,
            partial=partial,
            files=file_status,
        )
        logger.info(
            f"Analysis complete: {len(findings)} findings, {len(simulations)} simulations"
            + (" (partial)" if partial else "")
        )
        return AnalysisResult(findings=findings, simulations=simulations, metadata=metadata)

    async def _run_semantic(
        self,
        parsed_files: list[ParsedFile],
        cancel_event: asyncio.Event | None,
    ) -> tuple[list[Finding], bool]:
        if not self.semantic_analyzer.enabled:
            return [], False

        collector: dict[int, list[Finding]] = {}
        task = asyncio.create_task(self.semantic_analyzer.analyze(parsed_files, collector))
        if cancel_event is None:
            return await task, False

        cancel_wait = asyncio.create_task(cancel_event.wait())
        done, _ = await asyncio.wait({task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            cancel_wait.cancel()
            return task.result(), False

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        findings = SemanticAnalyzer.collect(collector)
        logger.warning(f"Contextual analysis cancelled; keeping {len(collector)} completed chunks")
        return findings, True

    def analyze_sync(self, files: Sequence[SourceFile]) -> AnalysisResult:
        return asyncio.run(self.analyze(files))


def analyze_sync(
    files: Sequence[SourceFile],
    config: AnalysisConfig | None = None,
    inference_client: InferenceClient | None = None,
) -> AnalysisResult:
    """Run a fresh pipeline to completion from synchronous code."""
    return AnalysisPipeline(config, inference_client=inference_client).analyze_sync(files)
