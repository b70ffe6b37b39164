"""Source extractors."""

from .move_parser import MoveParser, SourceExtractor

__all__ = ["MoveParser", "SourceExtractor"]
