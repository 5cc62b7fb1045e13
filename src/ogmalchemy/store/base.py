# src/ogmalchemy/store/base.py
"""
Graph store port.

The mapper never talks to a database directly. It reads through a
``GraphReader`` and writes through a ``StoreTransaction`` obtained from a
``GraphStore``. Nodes and relationships cross the port as plain records whose
properties hold wire values only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ogmalchemy.query.model import NodeQuery


class NodeRecord(BaseModel):
    """A node as returned by a store."""

    model_config = ConfigDict(frozen=True)

    identity: str
    labels: Tuple[str, ...] = ()
    properties: Dict[str, Any] = Field(default_factory=dict)


class RelationshipRecord(BaseModel):
    """A relationship as returned by a store."""

    model_config = ConfigDict(frozen=True)

    identity: str
    type: str
    start: str
    end: str
    properties: Dict[str, Any] = Field(default_factory=dict)


class GraphReader(ABC):
    """Read operations shared by stores and their transactions."""

    # ── read ──

    @abstractmethod
    async def fetch_nodes(self, identities: Sequence[str]) -> List[NodeRecord]:
        """Nodes with the given identities; missing identities are skipped."""

    @abstractmethod
    async def fetch_relationships(self, identities: Sequence[str]) -> List[RelationshipRecord]:
        """Relationships with the given identities; missing identities are skipped."""

    @abstractmethod
    async def expand(
        self,
        identities: Sequence[str],
        relationship_types: Optional[Sequence[str]] = None
    ) -> List[RelationshipRecord]:
        """Distinct relationships of the given types attached to any of the nodes."""

    @abstractmethod
    async def find_nodes(self, query: NodeQuery) -> List[NodeRecord]: ...

    @abstractmethod
    async def count_nodes(self, query: NodeQuery) -> int: ...

    @abstractmethod
    async def run(self, cypher: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run a query; graph values in rows come back as records."""


class StoreTransaction(GraphReader):
    """Write operations, valid until the enclosing transaction ends."""

    # ── write ──

    @abstractmethod
    async def create_node(self, labels: Sequence[str], properties: Dict[str, Any]) -> str:
        """Create a node and return its identity."""

    @abstractmethod
    async def update_node(self, identity: str, properties: Dict[str, Any]) -> None:
        """Merge properties into a node; ``None`` removes a property."""

    @abstractmethod
    async def delete_node(self, identity: str) -> None:
        """Delete a node together with its relationships."""

    @abstractmethod
    async def create_relationship(
        self,
        relationship_type: str,
        start: str,
        end: str,
        properties: Dict[str, Any]
    ) -> str:
        """Create a relationship and return its identity."""

    @abstractmethod
    async def merge_relationship(
        self,
        relationship_type: str,
        start: str,
        end: str,
        properties: Dict[str, Any],
        undirected: bool = False
    ) -> str:
        """Return the identity of a matching relationship, creating it if absent."""

    @abstractmethod
    async def update_relationship(self, identity: str, properties: Dict[str, Any]) -> None:
        """Merge properties into a relationship; ``None`` removes a property."""

    @abstractmethod
    async def delete_relationship(self, identity: str) -> None: ...


class GraphStore(GraphReader):
    """A graph database the session reads from and writes to."""

    # ── lifecycle ──

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]:
        """
        Open a write transaction.

        The transaction commits when the ``async with`` block exits normally
        and rolls back when it raises.
        """

    @abstractmethod
    async def close(self) -> None: ...
