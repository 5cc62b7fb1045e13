# src/ogmalchemy/store/neo4j_store.py
"""
Neo4j graph store.

Runs Cypher through the official async driver owned by a ``GraphEngine``.
Identities are Neo4j element ids. Reads run as auto-commit queries on a
short-lived driver session; writes run in one explicit transaction per
``transaction()`` block. Driver errors propagate unchanged.

Example:
    ```python
    engine = create_graph_engine("bolt://localhost:7687", ("neo4j", "secret"))
    store = Neo4jGraphStore(engine)

    factory = SessionFactory(store, MetadataRegistry.from_declared())
    async with factory.session() as session:
        basil = await session.load(Ingredient, basil_id, depth=2)
    ```
"""

from __future__ import annotations

from abc import abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import structlog
from neo4j import AsyncTransaction

from ogmalchemy.exceptions import EntityNotFoundError, QueryExecutionError
from ogmalchemy.orm.engine import GraphEngine
from ogmalchemy.query.cypher import escape, render_node_query
from ogmalchemy.query.model import NodeQuery
from ogmalchemy.store.base import (
    GraphReader,
    GraphStore,
    NodeRecord,
    RelationshipRecord,
    StoreTransaction,
)


logger = structlog.get_logger(__name__)


REL_PROJECTION = (
    "elementId(r) AS identity, type(r) AS type, elementId(startNode(r)) AS start, "
    "elementId(endNode(r)) AS end, properties(r) AS properties"
)

FETCH_NODES = (
    "MATCH (n) WHERE elementId(n) IN $ids "
    "RETURN elementId(n) AS identity, labels(n) AS labels, properties(n) AS properties"
)
FETCH_RELATIONSHIPS = f"MATCH ()-[r]->() WHERE elementId(r) IN $ids RETURN {REL_PROJECTION}"
EXPAND = (
    "MATCH (n)-[r]-() WHERE elementId(n) IN $ids AND ($types IS NULL OR type(r) IN $types) "
    f"RETURN DISTINCT {REL_PROJECTION} ORDER BY identity"
)

CREATE_NODE = "CREATE (n{labels}) SET n = $props RETURN elementId(n) AS identity"
UPDATE_NODE = "MATCH (n) WHERE elementId(n) = $id SET n += $props RETURN elementId(n) AS identity"
DELETE_NODE = "MATCH (n) WHERE elementId(n) = $id DETACH DELETE n RETURN count(n) AS deleted"
CREATE_RELATIONSHIP = (
    "MATCH (a), (b) WHERE elementId(a) = $start AND elementId(b) = $end "
    "CREATE (a)-[r:{type}]->(b) SET r = $props RETURN elementId(r) AS identity"
)
MERGE_RELATIONSHIP = (
    "MATCH (a), (b) WHERE elementId(a) = $start AND elementId(b) = $end "
    "MERGE (a)-[r:{type}]{arrow}(b) SET r += $props RETURN elementId(r) AS identity"
)
UPDATE_RELATIONSHIP = (
    "MATCH ()-[r]->() WHERE elementId(r) = $id SET r += $props RETURN elementId(r) AS identity"
)
DELETE_RELATIONSHIP = "MATCH ()-[r]->() WHERE elementId(r) = $id DELETE r RETURN count(r) AS deleted"


class _CypherReads(GraphReader):
    """Read operations expressed in Cypher."""

    @abstractmethod
    async def _rows(self, cypher: str, parameters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Run a query and return its rows with graph values converted to records."""

    async def fetch_nodes(self, identities: Sequence[str]) -> List[NodeRecord]:
        if not identities:
            return []
        rows = await self._rows(FETCH_NODES, {"ids": list(dict.fromkeys(identities))})
        return [NodeRecord(**row) for row in rows]

    async def fetch_relationships(self, identities: Sequence[str]) -> List[RelationshipRecord]:
        if not identities:
            return []
        rows = await self._rows(FETCH_RELATIONSHIPS, {"ids": list(dict.fromkeys(identities))})
        return [RelationshipRecord(**row) for row in rows]

    async def expand(
        self,
        identities: Sequence[str],
        relationship_types: Optional[Sequence[str]] = None
    ) -> List[RelationshipRecord]:
        if not identities:
            return []
        parameters = {
            "ids": list(dict.fromkeys(identities)),
            "types": list(relationship_types) if relationship_types is not None else None,
        }
        rows = await self._rows(EXPAND, parameters)
        return [RelationshipRecord(**row) for row in rows]

    async def find_nodes(self, query: NodeQuery) -> List[NodeRecord]:
        cypher, parameters = render_node_query(query)
        rows = await self._rows(cypher, parameters)
        return [NodeRecord(**row) for row in rows]

    async def count_nodes(self, query: NodeQuery) -> int:
        cypher, parameters = render_node_query(query, count=True)
        rows = await self._rows(cypher, parameters)
        if not rows:
            raise QueryExecutionError("Count query returned no rows")
        return rows[0]["count"]

    async def run(self, cypher: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self._rows(cypher, dict(parameters or {}))


class Neo4jTransaction(_CypherReads, StoreTransaction):
    """Write access through an explicit driver transaction."""

    def __init__(self, tx: AsyncTransaction):
        self.tx = tx

    async def _rows(self, cypher: str, parameters: Dict[str, Any]) -> List[Dict[str, Any]]:
        result = await self.tx.run(cypher, parameters)
        return [convert_row(record) async for record in result]

    async def _single(self, cypher: str, parameters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        result = await self.tx.run(cypher, parameters)
        record = await result.single()
        return convert_row(record) if record is not None else None

    async def create_node(self, labels: Sequence[str], properties: Dict[str, Any]) -> str:
        label_clause = "".join(f":{escape(label)}" for label in labels)
        row = await self._single(CREATE_NODE.format(labels=label_clause), {"props": properties})
        if row is None:
            raise QueryExecutionError("CREATE returned no node")
        return row["identity"]

    async def update_node(self, identity: str, properties: Dict[str, Any]) -> None:
        row = await self._single(UPDATE_NODE, {"id": identity, "props": properties})
        if row is None:
            raise EntityNotFoundError("Node", identity)

    async def delete_node(self, identity: str) -> None:
        row = await self._single(DELETE_NODE, {"id": identity})
        if row is None or not row["deleted"]:
            raise EntityNotFoundError("Node", identity)

    async def create_relationship(
        self,
        relationship_type: str,
        start: str,
        end: str,
        properties: Dict[str, Any]
    ) -> str:
        cypher = CREATE_RELATIONSHIP.format(type=escape(relationship_type))
        row = await self._single(cypher, {"start": start, "end": end, "props": properties})
        if row is None:
            raise EntityNotFoundError("Node", f"{start} or {end}")
        return row["identity"]

    async def merge_relationship(
        self,
        relationship_type: str,
        start: str,
        end: str,
        properties: Dict[str, Any],
        undirected: bool = False
    ) -> str:
        cypher = MERGE_RELATIONSHIP.format(
            type=escape(relationship_type),
            arrow="-" if undirected else "->",
        )
        row = await self._single(cypher, {"start": start, "end": end, "props": properties})
        if row is None:
            raise EntityNotFoundError("Node", f"{start} or {end}")
        return row["identity"]

    async def update_relationship(self, identity: str, properties: Dict[str, Any]) -> None:
        row = await self._single(UPDATE_RELATIONSHIP, {"id": identity, "props": properties})
        if row is None:
            raise EntityNotFoundError("Relationship", identity)

    async def delete_relationship(self, identity: str) -> None:
        row = await self._single(DELETE_RELATIONSHIP, {"id": identity})
        if row is None or not row["deleted"]:
            raise EntityNotFoundError("Relationship", identity)


class Neo4jGraphStore(_CypherReads, GraphStore):
    """
    Graph store backed by a Neo4j database.

    Args:
        engine: Engine owning the driver; connected on first use
        database: Database to use (defaults to the engine's default database)
        owns_engine: Close the engine when the store is closed
    """

    def __init__(self, engine: GraphEngine, database: Optional[str] = None, owns_engine: bool = False):
        self.engine = engine
        self.database = database
        self.owns_engine = owns_engine

    @classmethod
    def from_settings(cls, settings, **driver_config: Any) -> Neo4jGraphStore:
        """Create a store with its own engine from ``OGMSettings``."""
        engine = GraphEngine.from_settings(settings, **driver_config)
        return cls(engine, database=settings.database, owns_engine=True)

    async def _session(self) -> Any:
        if not self.engine.connected:
            await self.engine.connect()
        return self.engine.get_session(self.database)

    async def _rows(self, cypher: str, parameters: Dict[str, Any]) -> List[Dict[str, Any]]:
        session = await self._session()
        async with session:
            result = await session.run(cypher, parameters)
            return [convert_row(record) async for record in result]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Neo4jTransaction]:
        session = await self._session()
        async with session:
            tx = await session.begin_transaction()
            try:
                yield Neo4jTransaction(tx)
            except BaseException:
                await tx.rollback()
                logger.debug("store.rolled_back", uri=self.engine.uri)
                raise
            else:
                await tx.commit()

    async def close(self) -> None:
        if self.owns_engine:
            await self.engine.close()

    def __repr__(self) -> str:
        return f"Neo4jGraphStore(uri={self.engine.uri!r}, database={self.database or self.engine.default_database!r})"


# =============================================================================
# RECORD CONVERSION
# =============================================================================

def convert_row(record: Any) -> Dict[str, Any]:
    """Convert a driver record to a dict, turning nodes and relationships into records."""
    return {key: convert_value(value) for key, value in record.items()}


def convert_value(value: Any) -> Any:
    if _is_relationship(value):
        return RelationshipRecord(
            identity=value.element_id,
            type=value.type,
            start=value.start_node.element_id,
            end=value.end_node.element_id,
            properties=dict(value.items()),
        )
    if _is_node(value):
        return NodeRecord(
            identity=value.element_id,
            labels=tuple(value.labels),
            properties=dict(value.items()),
        )
    if isinstance(value, list):
        return [convert_value(item) for item in value]
    if isinstance(value, dict):
        return {key: convert_value(item) for key, item in value.items()}
    return value


def _is_node(value: Any) -> bool:
    return hasattr(value, "element_id") and hasattr(value, "labels")


def _is_relationship(value: Any) -> bool:
    return hasattr(value, "element_id") and hasattr(value, "start_node") and hasattr(value, "end_node")
