# src/ogmalchemy/store/memory.py
"""
In-memory graph store.

Keeps a ``Graph`` in process. Write transactions are serialized; each one works
on the live graph and restores a copy taken at begin when the block raises.
Used by the test-suite and wherever an embedded store is enough.

Example:
    ```python
    store = InMemoryGraphStore()
    store.add_unique_constraint("Ingredient", "name")

    factory = SessionFactory(store, MetadataRegistry([Ingredient, Category]))
    async with factory.session() as session:
        await session.save(Ingredient(name="Basil"))
    ```
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic import ValidationError

from ogmalchemy.core.graph import Graph
from ogmalchemy.core.graph_edge import StoredRelationship
from ogmalchemy.core.graph_node import StoredNode
from ogmalchemy.exceptions import MappingError, QueryExecutionError
from ogmalchemy.orm.fields import Direction
from ogmalchemy.query.model import NodeQuery, Operator, PathStep, Predicate, SortDirection
from ogmalchemy.store.base import GraphStore, NodeRecord, RelationshipRecord, StoreTransaction, GraphReader


logger = structlog.get_logger(__name__)


class _GraphReads(GraphReader):
    """Read operations evaluated against a ``Graph``."""

    graph: Graph

    async def fetch_nodes(self, identities: Sequence[str]) -> List[NodeRecord]:
        nodes = (self.graph.get_node(identity) for identity in dict.fromkeys(identities))
        return [_node_record(node) for node in nodes if node is not None]

    async def fetch_relationships(self, identities: Sequence[str]) -> List[RelationshipRecord]:
        relationships = (self.graph.get_relationship(identity) for identity in dict.fromkeys(identities))
        return [_relationship_record(rel) for rel in relationships if rel is not None]

    async def expand(
        self,
        identities: Sequence[str],
        relationship_types: Optional[Sequence[str]] = None
    ) -> List[RelationshipRecord]:
        seen: Dict[str, RelationshipRecord] = {}
        for identity in identities:
            for relationship in self.graph.relationships_of(identity, relationship_types):
                if relationship.id not in seen:
                    seen[relationship.id] = _relationship_record(relationship)
        return list(seen.values())

    async def find_nodes(self, query: NodeQuery) -> List[NodeRecord]:
        matched = self._ordered(self._match(query), query)
        end = query.skip + query.limit if query.limit is not None else None
        return [_node_record(node) for node in matched[query.skip:end]]

    async def count_nodes(self, query: NodeQuery) -> int:
        return len(self._match(query))

    async def run(self, cypher: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        raise QueryExecutionError("The in-memory store cannot execute Cypher queries")

    # =========================================================================
    # QUERY EVALUATION
    # =========================================================================

    def _match(self, query: NodeQuery) -> List[StoredNode]:
        return [
            node
            for node in self.graph.nodes_with_label(query.label)
            if all(self._satisfies(node, predicate, query.parameters) for predicate in query.predicates)
        ]

    def _satisfies(self, node: StoredNode, predicate: Predicate, parameters: Dict[str, Any]) -> bool:
        if predicate.operator.takes_argument and predicate.parameter not in parameters:
            raise QueryExecutionError(f"Missing query parameter '{predicate.parameter}'")
        argument = parameters.get(predicate.parameter) if predicate.parameter else None
        return any(
            _compare(candidate.get_property(predicate.property), predicate.operator, argument)
            for candidate in self._reach(node, predicate.steps)
        )

    def _reach(self, node: StoredNode, steps: Sequence[PathStep]) -> List[StoredNode]:
        frontier = [node]
        for step in steps:
            reached: Dict[str, StoredNode] = {}
            for current in frontier:
                for relationship in self.graph.relationships_of(current.id, [step.relationship_type]):
                    other_id = _follow(relationship, current.id, step.direction)
                    other = self.graph.get_node(other_id) if other_id is not None else None
                    if other is not None and other.has_label(step.label):
                        reached[other.id] = other
            frontier = list(reached.values())
        return frontier

    @staticmethod
    def _ordered(nodes: List[StoredNode], query: NodeQuery) -> List[StoredNode]:
        """Apply sorts in reverse order so the first order has highest priority."""
        ordered = list(nodes)
        for order in reversed(query.orders):
            def sort_key(node: StoredNode, prop: str = order.property):
                value = node.get_property(prop)
                # Missing values sort last ascending and first descending
                if value is None:
                    return (1, ())
                return (0, _order_key(value))

            ordered.sort(key=sort_key, reverse=order.direction is SortDirection.DESC)
        return ordered


class InMemoryTransaction(_GraphReads, StoreTransaction):
    """Write access to the graph of an ``InMemoryGraphStore``."""

    def __init__(self, store: InMemoryGraphStore):
        self.store = store
        self.graph = store.graph
        self.active = True

    def _written(self) -> None:
        if not self.active:
            raise QueryExecutionError("Transaction is no longer active")
        self.store.write_count += 1

    async def create_node(self, labels: Sequence[str], properties: Dict[str, Any]) -> str:
        self._written()
        try:
            return self.graph.add_node(labels, properties).id
        except ValidationError as exc:
            raise MappingError(f"Cannot store node properties: {exc}") from exc

    async def update_node(self, identity: str, properties: Dict[str, Any]) -> None:
        self._written()
        try:
            self.graph.update_node(identity, properties)
        except ValidationError as exc:
            raise MappingError(f"Cannot store node properties: {exc}") from exc

    async def delete_node(self, identity: str) -> None:
        self._written()
        self.graph.remove_node(identity)

    async def create_relationship(
        self,
        relationship_type: str,
        start: str,
        end: str,
        properties: Dict[str, Any]
    ) -> str:
        self._written()
        try:
            return self.graph.add_relationship(relationship_type, start, end, properties).id
        except ValidationError as exc:
            raise MappingError(f"Cannot store relationship properties: {exc}") from exc

    async def merge_relationship(
        self,
        relationship_type: str,
        start: str,
        end: str,
        properties: Dict[str, Any],
        undirected: bool = False
    ) -> str:
        existing = self.graph.find_relationship(relationship_type, start, end, undirected=undirected)
        if existing is not None:
            if properties:
                await self.update_relationship(existing.id, properties)
            return existing.id
        return await self.create_relationship(relationship_type, start, end, properties)

    async def update_relationship(self, identity: str, properties: Dict[str, Any]) -> None:
        self._written()
        try:
            self.graph.update_relationship(identity, properties)
        except ValidationError as exc:
            raise MappingError(f"Cannot store relationship properties: {exc}") from exc

    async def delete_relationship(self, identity: str) -> None:
        self._written()
        self.graph.remove_relationship(identity)


class InMemoryGraphStore(_GraphReads, GraphStore):
    """
    Graph store backed by an in-memory ``Graph``.

    Attributes:
        write_count: Number of write operations issued so far
        transaction_count: Number of transactions opened so far
        rollback_count: Number of transactions rolled back so far
    """

    def __init__(self, graph: Optional[Graph] = None):
        self.graph = graph if graph is not None else Graph()
        self.write_count = 0
        self.transaction_count = 0
        self.rollback_count = 0
        self._lock = asyncio.Lock()

    def add_unique_constraint(self, label: str, key: str) -> None:
        self.graph.add_unique_constraint(label, key)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        async with self._lock:
            backup = self.graph.copy()
            self.transaction_count += 1
            tx = InMemoryTransaction(self)
            try:
                yield tx
            except BaseException:
                self.graph.restore(backup)
                self.rollback_count += 1
                logger.debug("store.rolled_back", transaction=self.transaction_count)
                raise
            finally:
                tx.active = False

    async def close(self) -> None:
        logger.debug("store.closed", nodes=self.graph.node_count())

    def __repr__(self) -> str:
        return f"InMemoryGraphStore({self.graph!r})"


# =============================================================================
# HELPERS
# =============================================================================

def _node_record(node: StoredNode) -> NodeRecord:
    return NodeRecord(
        identity=node.id,
        labels=tuple(node.labels),
        properties=_copy_properties(node.properties),
    )


def _relationship_record(relationship: StoredRelationship) -> RelationshipRecord:
    return RelationshipRecord(
        identity=relationship.id,
        type=relationship.type,
        start=relationship.start,
        end=relationship.end,
        properties=_copy_properties(relationship.properties),
    )


def _copy_properties(properties: Dict[str, Any]) -> Dict[str, Any]:
    return {key: list(value) if isinstance(value, list) else value for key, value in properties.items()}


def _follow(relationship: StoredRelationship, node_id: str, direction: Direction) -> Optional[str]:
    if direction is Direction.OUTGOING:
        return relationship.end if relationship.start == node_id else None
    if direction is Direction.INCOMING:
        return relationship.start if relationship.end == node_id else None
    return relationship.other_end(node_id)


def _order_key(value: Any) -> Tuple[int, Any]:
    """Sort key ranking mixed types as Cypher does: lists, strings, booleans, numbers."""
    if isinstance(value, list):
        return (0, tuple(_order_key(item) for item in value))
    if isinstance(value, str):
        return (1, value)
    if isinstance(value, bool):
        return (2, value)
    return (3, value)


def _compare(value: Any, operator: Operator, argument: Any) -> bool:
    """Evaluate one predicate with Cypher null semantics: comparing null never matches."""
    if operator is Operator.IS_NULL:
        return value is None
    if value is None or (argument is None and operator is not Operator.IN):
        return False

    try:
        if operator is Operator.EQUALS:
            return value == argument
        if operator is Operator.NOT:
            return value != argument
        if operator is Operator.GREATER_THAN:
            return value > argument
        if operator is Operator.GREATER_THAN_EQUAL:
            return value >= argument
        if operator is Operator.LESS_THAN:
            return value < argument
        if operator is Operator.LESS_THAN_EQUAL:
            return value <= argument
        if operator is Operator.CONTAINING:
            return isinstance(value, str) and isinstance(argument, str) and argument in value
        if operator is Operator.HAS_ITEM:
            return isinstance(value, list) and argument in value
        if operator is Operator.STARTING_WITH:
            return isinstance(value, str) and isinstance(argument, str) and value.startswith(argument)
        if operator is Operator.IN:
            return argument is not None and value in argument
    except TypeError:
        # Values of different types are not comparable
        return False
    raise QueryExecutionError(f"Unsupported operator {operator.value}")
