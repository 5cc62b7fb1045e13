# src/ogmalchemy/orm/fields.py
"""
ogmalchemy field markers and relationship descriptors.

Scalar properties are ordinary pydantic fields. They can be tuned with
``Annotated`` markers::

    class Ingredient(NodeEntity):
        name: Annotated[str, Property(name="ingredient_name")]
        added: Annotated[date, Property(converter=DateConverter())]

Relationships are not pydantic fields. They are declared with descriptors that
keep their values next to the model, outside validation and serialization::

    class Ingredient(NodeEntity):
        category = Related("HAS_CATEGORY", target="Category", many=False)
        pairings = Related(target="Pairing", direction=Direction.UNDIRECTED)

The descriptors subclass ``property`` so pydantic routes attribute assignment
through them and leaves them out of the model schema.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Type, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from ogmalchemy.orm.converters import Converter
    from ogmalchemy.orm.entities import GraphEntity


class Direction(str, Enum):
    """Direction of a relationship as seen from the declaring entity."""

    OUTGOING = "OUTGOING"
    INCOMING = "INCOMING"
    UNDIRECTED = "UNDIRECTED"


class Identity:
    """Marks the field holding the database-assigned identity."""

    def __repr__(self) -> str:
        return "Identity()"


class Property:
    """
    Persistence options for a scalar field.

    Args:
        name: Property name in the database (defaults to the field name)
        converter: Converter between the field value and its wire value
    """

    def __init__(self, name: Optional[str] = None, converter: Optional["Converter"] = None):
        self.name = name
        self.converter = converter

    def __repr__(self) -> str:
        return f"Property(name={self.name!r}, converter={self.converter!r})"


class Unresolved:
    """
    Value of a relationship field that lies beyond the load horizon.

    An unresolved field was not loaded: it says nothing about whether related
    entities exist. Use ``Session.resolve`` to load it.
    """

    __slots__ = ("field", "owner_identity")

    def __init__(self, field: str, owner_identity: Optional[str] = None):
        self.field = field
        self.owner_identity = owner_identity

    def __iter__(self):
        raise TypeError(
            f"Relationship '{self.field}' of {self.owner_identity} was not loaded; "
            "use Session.resolve() or load with a greater depth"
        )

    def __eq__(self, other: Any) -> bool:
        return (
            isinstance(other, Unresolved)
            and other.field == self.field
            and other.owner_identity == self.owner_identity
        )

    def __hash__(self) -> int:
        return hash((Unresolved, self.field, self.owner_identity))

    def __repr__(self) -> str:
        return f"<Unresolved {self.field} of {self.owner_identity}>"


def is_unresolved(value: Any) -> bool:
    """True when a relationship field value was not loaded."""
    return isinstance(value, Unresolved)


class ReferenceDescriptor(property):
    """Base descriptor storing a reference value on a GraphEntity instance."""

    def __init__(self) -> None:
        super().__init__()
        self.name: Optional[str] = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def default(self) -> Any:
        return None

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self
        references = instance._references
        if self.name not in references:
            references[self.name] = self.default()
        return references[self.name]

    def __set__(self, instance: Any, value: Any) -> None:
        instance._references[self.name] = value

    def __delete__(self, instance: Any) -> None:
        raise AttributeError(f"Cannot delete relationship field '{self.name}'")


class Related(ReferenceDescriptor):
    """
    Relationship field on a node entity.

    Args:
        type: Relationship type. Omit when ``target`` is a relationship entity,
            whose declared type is used.
        target: Node entity or relationship entity class, or its class name
        direction: Direction of the relationship seen from the owner
        many: Whether the field holds a list (default) or a single reference
    """

    def __init__(
        self,
        type: Optional[str] = None,
        *,
        target: Union[str, Type["GraphEntity"]],
        direction: Union[Direction, str] = Direction.OUTGOING,
        many: bool = True,
    ):
        super().__init__()
        self.relationship_type = type
        self.target = target
        self.direction = Direction(direction)
        self.many = many

    def default(self) -> Any:
        return [] if self.many else None

    def __set__(self, instance: Any, value: Any) -> None:
        if self.many and not isinstance(value, Unresolved):
            value = list(value) if value is not None else []
        super().__set__(instance, value)

    def __repr__(self) -> str:
        target = self.target if isinstance(self.target, str) else self.target.__name__
        return (
            f"Related({self.relationship_type!r}, target={target}, "
            f"direction={self.direction.value}, many={self.many})"
        )


class StartNode(ReferenceDescriptor):
    """Start node of a relationship entity."""

    def __init__(self, target: Union[str, Type["GraphEntity"]]):
        super().__init__()
        self.target = target

    def __repr__(self) -> str:
        return f"StartNode({self.target!r})"


class EndNode(ReferenceDescriptor):
    """End node of a relationship entity."""

    def __init__(self, target: Union[str, Type["GraphEntity"]]):
        super().__init__()
        self.target = target

    def __repr__(self) -> str:
        return f"EndNode({self.target!r})"
