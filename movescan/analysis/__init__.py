"""Detection engines and the finding aggregator."""

from .aggregator import FindingAggregator
from .inference import ChatOpenAIInferenceClient, InferenceClient, create_inference_client
from .rules import FileContext, Rule
from .security import RuleEngine, default_rules
from .semantic import SemanticAnalyzer, reconcile_line, split_into_chunks
from .taint import Instruction, InstructionKind, TaintAnalyzer, TaintContext, linearize

__all__ = [
    "ChatOpenAIInferenceClient",
    "FileContext",
    "FindingAggregator",
    "InferenceClient",
    "Instruction",
    "InstructionKind",
    "Rule",
    "RuleEngine",
    "SemanticAnalyzer",
    "TaintAnalyzer",
    "TaintContext",
    "create_inference_client",
    "default_rules",
    "linearize",
    "reconcile_line",
    "split_into_chunks",
]
