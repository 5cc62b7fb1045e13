# src/ogmalchemy/orm/relationships.py
"""
ogmalchemy RelationshipEntity - relationships that carry properties

A relationship entity wraps a start node, an end node and the properties of
the relationship between them. Node entities reach it through a ``Related``
field whose target is the relationship entity class.

Example:
    ```python
    @relationship_entity(type="PAIRS_WITH")
    class Pairing(RelationshipEntity):
        affinity: Affinity = Affinity.GOOD
        first = StartNode("Ingredient")
        second = EndNode("Ingredient")

    @node_entity(label="Ingredient")
    class Ingredient(NodeEntity):
        name: str
        pairings = Related(target=Pairing, direction=Direction.UNDIRECTED)

    basil.pairings.append(Pairing(first=basil, second=tomato, affinity=Affinity.EXCELLENT))
    await session.save(basil)
    ```
"""

from __future__ import annotations

import inspect
from typing import Annotated, Any, Optional, Set, Type, Union

from pydantic import Field

from ogmalchemy.orm.entities import (
    GraphEntity,
    GraphEntityConfig,
    camel_to_upper_snake,
    get_entity_classes,
)
from ogmalchemy.orm.fields import Identity


class RelationshipEntity(GraphEntity):
    """
    Base class for relationships with properties.

    Subclasses declare exactly one ``StartNode`` and one ``EndNode``. The
    relationship type defaults to the class name in UPPER_SNAKE_CASE; override
    it with ``@relationship_entity(type=...)``.
    """

    __abstract__ = True

    id: Annotated[Optional[str], Identity()] = Field(
        default=None,
        frozen=True,
        description="Database-assigned identity, None until first save",
    )

    @classmethod
    def _default_entity_config(cls) -> GraphEntityConfig:
        return GraphEntityConfig(relationship_type=camel_to_upper_snake(cls.__name__))


# =============================================================================
# DECORATOR FUNCTION
# =============================================================================

def relationship_entity(
    cls: Optional[Type] = None,
    *,
    type: Optional[str] = None
) -> Union[Type[RelationshipEntity], Any]:
    """
    Decorator configuring the type of a relationship entity.

    Args:
        cls: The class being decorated
        type: Relationship type (defaults to the class name in UPPER_SNAKE_CASE)
    """
    def decorator(target_cls: Type) -> Type:
        if not inspect.isclass(target_cls) or not issubclass(target_cls, RelationshipEntity):
            raise TypeError("@relationship_entity can only be applied to RelationshipEntity subclasses")
        target_cls._entity_config = GraphEntityConfig(
            relationship_type=type or camel_to_upper_snake(target_cls.__name__)
        )
        return target_cls

    if cls is None:
        return decorator
    return decorator(cls)


# =============================================================================
# REGISTRY FUNCTIONS
# =============================================================================

def get_relationship_classes() -> Set[Type[RelationshipEntity]]:
    """Get all declared relationship entity classes."""
    return {
        entity_class
        for entity_class in get_entity_classes()
        if issubclass(entity_class, RelationshipEntity)
    }


def get_relationship_by_type(relationship_type: str) -> Optional[Type[RelationshipEntity]]:
    """Get the declared relationship entity class with the given type."""
    for relationship_class in get_relationship_classes():
        if relationship_class._entity_config.relationship_type == relationship_type:
            return relationship_class
    return None
