"""
ogmalchemy query layer

Structured node queries, their Cypher rendering, finder derivation and
repositories.
"""

from ogmalchemy.query.model import (
    NodeQuery,
    Operator,
    Order,
    Page,
    PathStep,
    Predicate,
    Sort,
    SortDirection,
)
from ogmalchemy.query.cypher import render_node_query
from ogmalchemy.query.derivation import (
    DerivedQuery,
    ExplicitQuery,
    QueryDerivationEngine,
    QueryMode,
    query,
)
from ogmalchemy.query.repository import GraphRepository

__all__ = [
    "NodeQuery",
    "Operator",
    "Order",
    "Page",
    "PathStep",
    "Predicate",
    "Sort",
    "SortDirection",
    "render_node_query",
    "DerivedQuery",
    "ExplicitQuery",
    "QueryDerivationEngine",
    "QueryMode",
    "query",
    "GraphRepository",
]
