# src/ogmalchemy/query/model.py
"""
Structured node queries.

A ``NodeQuery`` selects nodes of one label by predicates on their own
properties or on properties of nodes reachable through relationship paths,
with store-side sorting and pagination. Stores evaluate it directly
(in-memory) or through the Cypher renderer (Neo4j).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ogmalchemy.orm.fields import Direction


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class Order(BaseModel):
    """Sort on one field (entity-level) or property (store-level)."""

    model_config = ConfigDict(frozen=True)

    property: str
    direction: SortDirection = SortDirection.ASC


class Sort:
    """
    Entity-level sort specification for ``Session.load_all``.

    Example:
        ```python
        Sort.by("date_added").descending()
        Sort.by("flavour").and_(Sort.by("name").descending())
        ```
    """

    def __init__(self, orders: Tuple[Order, ...] = ()):
        self.orders = tuple(orders)

    @classmethod
    def by(cls, *fields: str) -> Sort:
        return cls(tuple(Order(property=field) for field in fields))

    def ascending(self) -> Sort:
        return Sort(tuple(Order(property=o.property, direction=SortDirection.ASC) for o in self.orders))

    def descending(self) -> Sort:
        return Sort(tuple(Order(property=o.property, direction=SortDirection.DESC) for o in self.orders))

    def and_(self, other: Sort) -> Sort:
        return Sort(self.orders + other.orders)

    def __iter__(self):
        return iter(self.orders)

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Sort) and other.orders == self.orders

    def __repr__(self) -> str:
        inner = ", ".join(f"{o.property} {o.direction.value}" for o in self.orders)
        return f"Sort({inner})"


class Page(BaseModel):
    """Zero-based page request."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(ge=0)
    size: int = Field(gt=0)

    def __init__(self, number: int = 0, size: int = 20, **data: Any):
        super().__init__(number=number, size=size, **data)

    @property
    def offset(self) -> int:
        return self.number * self.size


class Operator(str, Enum):
    EQUALS = "EQUALS"
    NOT = "NOT"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_EQUAL = "GREATER_THAN_EQUAL"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_EQUAL = "LESS_THAN_EQUAL"
    CONTAINING = "CONTAINING"
    HAS_ITEM = "HAS_ITEM"
    STARTING_WITH = "STARTING_WITH"
    IN = "IN"
    IS_NULL = "IS_NULL"

    @property
    def takes_argument(self) -> bool:
        return self is not Operator.IS_NULL


class PathStep(BaseModel):
    """One relationship hop from the matched node towards a related node."""

    model_config = ConfigDict(frozen=True)

    relationship_type: str
    direction: Direction
    label: str


class Predicate(BaseModel):
    """
    Condition on a property of the matched node or of a related node.

    ``steps`` is empty for the node's own properties. ``parameter`` names the
    query parameter holding the compared value (unused for ``IS_NULL``).
    """

    model_config = ConfigDict(frozen=True)

    steps: Tuple[PathStep, ...] = ()
    property: str
    operator: Operator = Operator.EQUALS
    parameter: Optional[str] = None


class NodeQuery(BaseModel):
    """Store-level node query: label, predicates (AND), sort and pagination."""

    model_config = ConfigDict(frozen=True)

    label: str
    predicates: Tuple[Predicate, ...] = ()
    parameters: Dict[str, Any] = Field(default_factory=dict)
    orders: Tuple[Order, ...] = ()
    skip: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, gt=0)

    def with_parameters(self, parameters: Dict[str, Any]) -> NodeQuery:
        return self.model_copy(update={'parameters': dict(parameters)})
