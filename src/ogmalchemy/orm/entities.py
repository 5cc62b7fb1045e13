# src/ogmalchemy/orm/entities.py
"""
ogmalchemy GraphEntity - Pydantic V2 entity models

Entities are pydantic models. Scalar fields are validated by pydantic; the
identity field is filled in by the database on first save and frozen after
that. Relationship fields are descriptors (see ``ogmalchemy.orm.fields``) and
live outside the pydantic schema, so ``model_dump()`` never walks into a cyclic
object graph.

Example:
    ```python
    @node_entity(label="Ingredient")
    class Ingredient(NodeEntity):
        name: str = Field(min_length=1)
        flavour: Optional[str] = None
        category = Related("HAS_CATEGORY", target="Category", many=False)
        pairings = Related(target="Pairing", direction=Direction.UNDIRECTED)
    ```
"""

from __future__ import annotations

import re
import weakref
from typing import Annotated, Any, ClassVar, Dict, Optional, Set, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from ogmalchemy.orm.fields import Identity, ReferenceDescriptor


# Type variable for GraphEntity subclasses
EntityType = TypeVar('EntityType', bound='GraphEntity')


class GraphEntityConfig:
    """Persistence configuration attached to every concrete entity class."""

    def __init__(self, label: Optional[str] = None, relationship_type: Optional[str] = None):
        self.label = label
        self.relationship_type = relationship_type

    def __repr__(self) -> str:
        if self.relationship_type:
            return f"GraphEntityConfig(relationship_type={self.relationship_type!r})"
        return f"GraphEntityConfig(label={self.label!r})"


class GraphEntityMeta(type(BaseModel)):
    """
    Metaclass for GraphEntity.

    Collects relationship descriptors and registers every concrete entity class
    so ``MetadataRegistry.from_declared()`` can find it. Classes that set
    ``__abstract__ = True`` in their body are base classes and are not
    registered.
    """

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any
    ) -> GraphEntityMeta:
        abstract = namespace.pop('__abstract__', False)

        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        descriptors: Dict[str, ReferenceDescriptor] = {}
        for klass in reversed(cls.__mro__):
            for attr_name, value in vars(klass).items():
                if isinstance(value, ReferenceDescriptor):
                    descriptors[attr_name] = value
        cls._descriptors = descriptors

        if abstract:
            return cls

        cls._entity_config = cls._default_entity_config()
        GraphEntity._entity_registry.add(cls)
        return cls


class GraphEntity(BaseModel, metaclass=GraphEntityMeta):
    """
    Base class shared by node entities and relationship entities.

    Entities compare and hash by object identity: two instances are the same
    entity only when they are the same object. The session's identity map
    guarantees one instance per database identity.
    """

    __abstract__ = True

    model_config = ConfigDict(
        validate_assignment=True,
        validate_default=True,
        extra='forbid',
        arbitrary_types_allowed=True,
    )

    # Class-level attributes
    _entity_registry: ClassVar[weakref.WeakSet] = weakref.WeakSet()
    _entity_config: ClassVar[GraphEntityConfig]
    _descriptors: ClassVar[Dict[str, ReferenceDescriptor]]

    # Relationship values, keyed by descriptor name
    _references: Dict[str, Any] = PrivateAttr(default_factory=dict)

    def __init__(self, **data: Any) -> None:
        references = {
            name: data.pop(name)
            for name in list(data)
            if name in self._descriptors
        }
        super().__init__(**data)
        for name, value in references.items():
            setattr(self, name, value)

    @classmethod
    def _default_entity_config(cls) -> GraphEntityConfig:
        return GraphEntityConfig(label=cls.__name__)

    @classmethod
    def reference_fields(cls) -> Dict[str, ReferenceDescriptor]:
        """Relationship descriptors declared on this class, by field name."""
        return dict(cls._descriptors)

    def __eq__(self, other: Any) -> bool:
        return self is other

    def __hash__(self) -> int:
        return id(self)

    def __repr__(self) -> str:
        fields = ", ".join(f"{name}={value!r}" for name, value in self.__dict__.items())
        return f"{self.__class__.__name__}({fields})"


class NodeEntity(GraphEntity):
    """
    Base class for entities stored as nodes.

    The node label defaults to the class name; override it with
    ``@node_entity(label=...)``.
    """

    __abstract__ = True

    id: Annotated[Optional[str], Identity()] = Field(
        default=None,
        frozen=True,
        description="Database-assigned identity, None until first save",
    )


# =============================================================================
# DECORATOR FUNCTION
# =============================================================================

def node_entity(
    cls: Optional[Type] = None,
    *,
    label: Optional[str] = None
) -> Union[Type[NodeEntity], Any]:
    """
    Decorator configuring the label of a node entity.

    Args:
        cls: The class being decorated
        label: Node label (defaults to the class name)

    Example:
        ```python
        @node_entity(label="Ingredient")
        class Ingredient(NodeEntity):
            name: str
        ```
    """
    def decorator(target_cls: Type) -> Type:
        if not isinstance(target_cls, type) or not issubclass(target_cls, NodeEntity):
            raise TypeError("@node_entity can only be applied to NodeEntity subclasses")
        target_cls._entity_config = GraphEntityConfig(label=label or target_cls.__name__)
        return target_cls

    if cls is None:
        return decorator
    return decorator(cls)


# =============================================================================
# REGISTRY FUNCTIONS
# =============================================================================

def get_entity_classes() -> Set[Type[GraphEntity]]:
    """Get all declared concrete entity classes."""
    return set(GraphEntity._entity_registry)


def get_entity_by_label(label: str) -> Optional[Type[NodeEntity]]:
    """Get the declared node entity class with the given label."""
    for entity_class in get_entity_classes():
        if issubclass(entity_class, NodeEntity) and entity_class._entity_config.label == label:
            return entity_class
    return None


def camel_to_upper_snake(name: str) -> str:
    """Convert CamelCase to UPPER_SNAKE_CASE (PairsWith -> PAIRS_WITH)."""
    s1 = re.sub('(.)([A-Z][a-z]+)', r'\1_\2', name)
    return re.sub('([a-z0-9])([A-Z])', r'\1_\2', s1).upper()
