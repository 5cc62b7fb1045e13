# src/ogmalchemy/core/__init__.py
"""
ogmalchemy Core Module

The in-memory property graph used by ``InMemoryGraphStore``.
"""

from ogmalchemy.core.graph import Graph
from ogmalchemy.core.graph_node import StoredNode
from ogmalchemy.core.graph_edge import StoredRelationship

__all__ = [
    "Graph",
    "StoredNode",
    "StoredRelationship",
]
