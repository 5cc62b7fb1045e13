# src/ogmalchemy/store/__init__.py
"""
ogmalchemy graph stores

The store port the mapper reads and writes through, and its in-memory and
Neo4j implementations.
"""

from ogmalchemy.store.base import (
    GraphReader,
    GraphStore,
    NodeRecord,
    RelationshipRecord,
    StoreTransaction,
)
from ogmalchemy.store.memory import InMemoryGraphStore, InMemoryTransaction
from ogmalchemy.store.neo4j_store import Neo4jGraphStore, Neo4jTransaction

__all__ = [
    "GraphReader",
    "GraphStore",
    "NodeRecord",
    "RelationshipRecord",
    "StoreTransaction",
    "InMemoryGraphStore",
    "InMemoryTransaction",
    "Neo4jGraphStore",
    "Neo4jTransaction",
]
