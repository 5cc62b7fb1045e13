"""
ogmalchemy Core Graph Implementation

This module contains the in-memory property graph behind ``InMemoryGraphStore``:
labelled nodes, typed relationships, identities handed out by the graph, an
adjacency index and unique property constraints.
"""
from typing import (
    Dict,
    List,
    Set,
    Optional,
    Any,
    Iterable,
    Iterator,
    DefaultDict,
    Tuple,
)
from collections import defaultdict

from ogmalchemy.core.graph_node import StoredNode
from ogmalchemy.core.graph_edge import StoredRelationship
from ogmalchemy.exceptions import ConstraintViolationError, EntityNotFoundError


class Graph:
    """
    In-memory property graph.

    Identities are strings of a single counter shared by nodes and
    relationships, so an identity is never reused within one graph.
    """

    def __init__(self):
        """Initialize empty graph."""
        # Core storage
        self._nodes: Dict[str, StoredNode] = {}
        self._relationships: Dict[str, StoredRelationship] = {}

        # Adjacency index: node id -> ids of attached relationships
        self._adjacency: DefaultDict[str, Set[str]] = defaultdict(set)

        # label -> property keys that must be unique
        self._constraints: DefaultDict[str, Set[str]] = defaultdict(set)

        self._next_id = 0

    # =============================================================================
    # NODES
    # =============================================================================

    def add_node(
        self,
        labels: Iterable[str],
        properties: Optional[Dict[str, Any]] = None
    ) -> StoredNode:
        """Add a node and return it with its assigned identity."""
        node = StoredNode(
            id=self._new_id(),
            labels=list(labels),
            properties=_without_none(properties or {})
        )
        self._check_constraints(node.labels, node.properties, node.id)
        self._nodes[node.id] = node
        return node

    def update_node(self, node_id: str, properties: Dict[str, Any]) -> StoredNode:
        """Merge properties into a node; ``None`` values remove properties."""
        node = self._require_node(node_id)
        merged = dict(node.properties)
        merged.update(properties)
        self._check_constraints(node.labels, _without_none(merged), node_id)
        node.update_properties(properties)
        return node

    def remove_node(self, node_id: str) -> List[str]:
        """Remove a node and all its relationships. Returns removed relationship ids."""
        self._require_node(node_id)

        removed = sorted(self._adjacency.get(node_id, set()), key=_identity_order)
        for rel_id in removed:
            self.remove_relationship(rel_id)

        del self._nodes[node_id]
        self._adjacency.pop(node_id, None)
        return removed

    def get_node(self, node_id: str) -> Optional[StoredNode]:
        """Get a node by ID."""
        return self._nodes.get(str(node_id))

    def has_node(self, node_id: str) -> bool:
        """Check if node exists."""
        return str(node_id) in self._nodes

    def nodes_with_label(self, label: str) -> List[StoredNode]:
        """Nodes carrying ``label``, in creation order."""
        return [node for node in self._nodes.values() if node.has_label(label)]

    # =============================================================================
    # RELATIONSHIPS
    # =============================================================================

    def add_relationship(
        self,
        relationship_type: str,
        start: str,
        end: str,
        properties: Optional[Dict[str, Any]] = None
    ) -> StoredRelationship:
        """Add a relationship between two existing nodes."""
        self._require_node(start)
        self._require_node(end)

        relationship = StoredRelationship(
            id=self._new_id(),
            type=relationship_type,
            start=start,
            end=end,
            properties=_without_none(properties or {})
        )
        self._relationships[relationship.id] = relationship
        self._adjacency[start].add(relationship.id)
        self._adjacency[end].add(relationship.id)
        return relationship

    def find_relationship(
        self,
        relationship_type: str,
        start: str,
        end: str,
        undirected: bool = False
    ) -> Optional[StoredRelationship]:
        """First relationship of the type from start to end (either way if undirected)."""
        for relationship in self.relationships_of(start, [relationship_type]):
            if relationship.start == start and relationship.end == end:
                return relationship
            if undirected and relationship.connects(start, end):
                return relationship
        return None

    def update_relationship(self, rel_id: str, properties: Dict[str, Any]) -> StoredRelationship:
        """Merge properties into a relationship; ``None`` values remove properties."""
        relationship = self._require_relationship(rel_id)
        relationship.update_properties(properties)
        return relationship

    def remove_relationship(self, rel_id: str) -> bool:
        """Remove a relationship by ID."""
        relationship = self._relationships.pop(rel_id, None)
        if relationship is None:
            return False
        self._adjacency[relationship.start].discard(rel_id)
        self._adjacency[relationship.end].discard(rel_id)
        return True

    def get_relationship(self, rel_id: str) -> Optional[StoredRelationship]:
        """Get a relationship by ID."""
        return self._relationships.get(str(rel_id))

    def relationships_of(
        self,
        node_id: str,
        relationship_types: Optional[Iterable[str]] = None
    ) -> List[StoredRelationship]:
        """Relationships attached to a node in either direction, in creation order."""
        types = set(relationship_types) if relationship_types is not None else None
        attached = sorted(self._adjacency.get(str(node_id), set()), key=_identity_order)
        return [
            self._relationships[rel_id]
            for rel_id in attached
            if types is None or self._relationships[rel_id].type in types
        ]

    # =============================================================================
    # CONSTRAINTS
    # =============================================================================

    def add_unique_constraint(self, label: str, key: str) -> None:
        """Require ``key`` to be unique among nodes labelled ``label``."""
        seen: Dict[Any, str] = {}
        for node in self.nodes_with_label(label):
            value = node.properties.get(key)
            if value is None:
                continue
            marker = _hashable(value)
            if marker in seen:
                raise ConstraintViolationError(label, key, value, seen[marker])
            seen[marker] = node.id
        self._constraints[label].add(key)

    def constraints(self) -> List[Tuple[str, str]]:
        return sorted((label, key) for label, keys in self._constraints.items() for key in keys)

    def _check_constraints(self, labels: List[str], properties: Dict[str, Any], node_id: str) -> None:
        for label in labels:
            for key in self._constraints.get(label, ()):
                value = properties.get(key)
                if value is None:
                    continue
                for other in self.nodes_with_label(label):
                    if other.id != node_id and _hashable(other.properties.get(key)) == _hashable(value):
                        raise ConstraintViolationError(label, key, value, other.id)

    # =============================================================================
    # GRAPH STATISTICS
    # =============================================================================

    def node_count(self) -> int:
        """Get total number of nodes."""
        return len(self._nodes)

    def relationship_count(self) -> int:
        """Get total number of relationships."""
        return len(self._relationships)

    # =============================================================================
    # SNAPSHOTS
    # =============================================================================

    def to_dict(self) -> Dict[str, Any]:
        """Convert graph to dictionary representation."""
        return {
            "next_id": self._next_id,
            "nodes": [node.model_dump() for node in self._nodes.values()],
            "relationships": [rel.model_dump() for rel in self._relationships.values()],
            "constraints": [list(pair) for pair in self.constraints()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Graph':
        """Create graph from dictionary representation."""
        graph = cls()
        graph._next_id = data.get("next_id", 0)

        for node_data in data.get("nodes", []):
            node = StoredNode.model_validate(node_data)
            graph._nodes[node.id] = node

        for rel_data in data.get("relationships", []):
            relationship = StoredRelationship.model_validate(rel_data)
            graph._relationships[relationship.id] = relationship
            graph._adjacency[relationship.start].add(relationship.id)
            graph._adjacency[relationship.end].add(relationship.id)

        for label, key in data.get("constraints", []):
            graph._constraints[label].add(key)

        return graph

    # =============================================================================
    # UTILITIES
    # =============================================================================

    def copy(self) -> 'Graph':
        """Create a deep copy of the graph."""
        return Graph.from_dict(self.to_dict())

    def restore(self, other: 'Graph') -> None:
        """Replace the content of this graph with the content of ``other``."""
        self._nodes = other._nodes
        self._relationships = other._relationships
        self._adjacency = other._adjacency
        self._constraints = other._constraints
        self._next_id = other._next_id

    def clear(self):
        """Remove all nodes and relationships; constraints are kept."""
        self._nodes.clear()
        self._relationships.clear()
        self._adjacency.clear()

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    def _require_node(self, node_id: str) -> StoredNode:
        node = self._nodes.get(str(node_id))
        if node is None:
            raise EntityNotFoundError("Node", node_id)
        return node

    def _require_relationship(self, rel_id: str) -> StoredRelationship:
        relationship = self._relationships.get(str(rel_id))
        if relationship is None:
            raise EntityNotFoundError("Relationship", rel_id)
        return relationship

    def __len__(self) -> int:
        """Return number of nodes."""
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        """Check if node exists in graph."""
        return str(node_id) in self._nodes

    def __iter__(self) -> Iterator[str]:
        """Iterate over node IDs."""
        return iter(self._nodes.keys())

    def __repr__(self) -> str:
        """String representation of graph."""
        return (
            f"Graph(nodes={self.node_count()}, "
            f"relationships={self.relationship_count()})"
        )


def _without_none(properties: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in properties.items() if value is not None}


def _identity_order(identity: str) -> Tuple[int, str]:
    return (int(identity), identity) if identity.isdigit() else (0, identity)


def _hashable(value: Any) -> Any:
    return tuple(value) if isinstance(value, list) else value
