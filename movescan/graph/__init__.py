"""Graph building for visualization collaborators."""

from .builder import GraphData, build_graph

__all__ = ["GraphData", "build_graph"]
