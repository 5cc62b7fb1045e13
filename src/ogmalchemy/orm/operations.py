# src/ogmalchemy/orm/operations.py
"""
Write operations and change sets.

A ``ChangeSet`` is the ordered list of operations that reconciles the
database with an in-memory entity graph, plus the plan the session uses to
refresh snapshots once the operations have been committed.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Hashable, Iterator, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field


OperationType = TypeVar('OperationType', bound='Operation')


class Operation(BaseModel):
    """Base class of all write operations."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class CreateNode(Operation):
    entity: Any
    labels: Tuple[str, ...]
    properties: Dict[str, Any] = Field(default_factory=dict)


class UpdateNode(Operation):
    """
    Property changes of an existing node. ``None`` removes a property.

    ``full`` is set when the node was not tracked and every property is
    written.
    """

    entity: Any
    identity: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    full: bool = False


class DeleteNode(Operation):
    """Deletion of a node together with its relationships."""

    entity: Any
    identity: str


class CreateRelationship(Operation):
    """
    A relationship to create.

    ``key`` identifies the relationship within one change set so it is written
    once however many endpoints reference it. With ``merge`` the store reuses
    an existing relationship of the same type between the same nodes.
    """

    key: Hashable
    relationship_type: str
    start: Any
    end: Any
    properties: Dict[str, Any] = Field(default_factory=dict)
    merge: bool = False
    undirected: bool = False
    entity: Any = None


class UpdateRelationship(Operation):
    entity: Any
    identity: str
    properties: Dict[str, Any] = Field(default_factory=dict)
    full: bool = False


class DeleteRelationship(Operation):
    identity: str
    relationship_type: str
    entity: Any = None


AnyOperation = Union[
    CreateNode, UpdateNode, DeleteNode, CreateRelationship, UpdateRelationship, DeleteRelationship
]


class PlannedNode:
    """
    A node visited while computing a change set.

    ``relations`` holds, for every relationship field that was diffed, the
    expected relationships after the write as ``(target node, reference)``
    pairs. A reference is a relationship identity or the key of a
    ``CreateRelationship``. Fields that were not diffed are absent.
    """

    __slots__ = ('entity', 'hop', 'relations')

    def __init__(self, entity: Any, hop: int):
        self.entity = entity
        self.hop = hop
        self.relations: Dict[str, List[Tuple[Any, Hashable]]] = {}


class PlannedRelationship:
    """A relationship entity visited while computing a change set."""

    __slots__ = ('entity', 'hop')

    def __init__(self, entity: Any, hop: int):
        self.entity = entity
        self.hop = hop


class ChangeSet:
    """Ordered write operations plus the snapshot plan of the visited entities."""

    def __init__(self, operations: Optional[List[AnyOperation]] = None):
        self.operations: List[AnyOperation] = list(operations or [])
        self.planned: List[Union[PlannedNode, PlannedRelationship]] = []
        self._created: Dict[Hashable, CreateRelationship] = {}
        self._deleted: Dict[str, DeleteRelationship] = {}

    def add(self, operation: AnyOperation) -> None:
        self.operations.append(operation)

    def create_relationship(self, operation: CreateRelationship) -> bool:
        """Add a relationship creation unless its key was already added."""
        if operation.key in self._created:
            return False
        self._created[operation.key] = operation
        self.operations.append(operation)
        return True

    def delete_relationship(self, operation: DeleteRelationship) -> bool:
        """Add a relationship deletion unless that relationship is already deleted."""
        if operation.identity in self._deleted:
            return False
        self._deleted[operation.identity] = operation
        self.operations.append(operation)
        return True

    def of_type(self, operation_type: Type[OperationType]) -> List[OperationType]:
        return [op for op in self.operations if isinstance(op, operation_type)]

    @property
    def visited(self) -> int:
        return len(self.planned)

    def summary(self) -> Dict[str, int]:
        """Operation counts by operation name."""
        return dict(Counter(type(op).__name__ for op in self.operations))

    def __bool__(self) -> bool:
        return bool(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self) -> Iterator[AnyOperation]:
        return iter(self.operations)

    def __repr__(self) -> str:
        return f"ChangeSet({self.summary()}, visited={self.visited})"
