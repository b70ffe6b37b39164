"""Security scanner for Sui Move smart-contract source text."""

from .config import AnalysisConfig
from .models import AnalysisResult, Finding, FindingSource, Severity, SourceFile
from .pipeline import AnalysisPipeline, analyze_sync

__version__ = "0.1.0"

__all__ = [
    "AnalysisConfig",
    "AnalysisPipeline",
    "AnalysisResult",
    "Finding",
    "FindingSource",
    "Severity",
    "SourceFile",
    "analyze_sync",
]
