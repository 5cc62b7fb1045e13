# src/ogmalchemy/orm/metadata.py
"""
ogmalchemy metadata registry.

The registry reflects entity classes once into immutable persistence metadata:
node label or relationship type, identity field, the scalar field to property
name table with its converters, and the relationship field descriptors. Every
other component reads entity structure from here and never from the classes
directly.

Example:
    ```python
    registry = MetadataRegistry([Ingredient, Category, Pairing])
    registry.for_class(Ingredient).label            # "Ingredient"
    registry.for_type("PAIRS_WITH").kind            # Pairing
    ```
"""

from __future__ import annotations

import types
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Literal,
    Mapping,
    Optional,
    Tuple,
    Type,
    Union,
    get_args,
    get_origin,
)

from pydantic import BaseModel, ConfigDict
from pydantic.fields import FieldInfo

from ogmalchemy.exceptions import ConfigurationError
from ogmalchemy.orm.converters import Converter, ListConverter, default_converter
from ogmalchemy.orm.entities import GraphEntity, NodeEntity, get_entity_classes
from ogmalchemy.orm.fields import (
    Direction,
    EndNode,
    Identity,
    Property,
    Related,
    StartNode,
)
from ogmalchemy.orm.relationships import RelationshipEntity


WIRE_SCALARS = (bool, int, float, str)


# =============================================================================
# METADATA MODELS
# =============================================================================

class PropertyMetadata(BaseModel):
    """Mapping of one scalar field onto one stored property."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    field_name: str
    property_name: str
    converter: Optional[Converter] = None

    def to_wire(self, value: Any) -> Any:
        if value is None or self.converter is None:
            return value
        return self.converter.to_persisted(value)

    def from_wire(self, value: Any) -> Any:
        if value is None or self.converter is None:
            return value
        return self.converter.from_persisted(value)


class RelationshipFieldMetadata(BaseModel):
    """
    A ``Related`` field of a node entity.

    ``target`` is the declared target class: a node entity, or a relationship
    entity when the relationship carries properties. ``node_kind`` is always the
    node entity at the other end.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    relationship_type: str
    direction: Direction
    target: Type[Any]
    node_kind: Type[Any]
    many: bool = True
    via_entity: bool = False


class NodeMetadata(BaseModel):
    """Persistence metadata of a node entity."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Type[Any]
    label: str
    identity_field: str
    properties: Tuple[PropertyMetadata, ...] = ()
    relationships: Tuple[RelationshipFieldMetadata, ...] = ()

    is_relationship: bool = False

    def property_for(self, field_name: str) -> Optional[PropertyMetadata]:
        return next((p for p in self.properties if p.field_name == field_name), None)

    def relationship_for(self, field_name: str) -> Optional[RelationshipFieldMetadata]:
        return next((r for r in self.relationships if r.name == field_name), None)


class RelationshipMetadata(BaseModel):
    """Persistence metadata of a relationship entity."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: Type[Any]
    relationship_type: str
    identity_field: str
    properties: Tuple[PropertyMetadata, ...] = ()
    start_field: str
    start_kind: Type[Any]
    end_field: str
    end_kind: Type[Any]

    is_relationship: bool = True

    def property_for(self, field_name: str) -> Optional[PropertyMetadata]:
        return next((p for p in self.properties if p.field_name == field_name), None)


EntityMetadata = Union[NodeMetadata, RelationshipMetadata]


# =============================================================================
# REGISTRY
# =============================================================================

class MetadataRegistry:
    """
    Read-only mapping from entity kind to its persistence metadata.

    Built once from a set of entity classes; raises ``ConfigurationError`` on
    the first declaration that cannot be mapped.
    """

    def __init__(self, entity_classes: Iterable[Type[GraphEntity]]):
        classes = list(dict.fromkeys(entity_classes))
        for entity_class in classes:
            if not isinstance(entity_class, type) or not issubclass(entity_class, GraphEntity):
                raise ConfigurationError(f"{entity_class!r} is not an entity class")
            if not hasattr(entity_class, '_entity_config'):
                raise ConfigurationError(f"{entity_class.__name__} is an abstract entity base")

        self._names = self._index_names(classes)

        metadata: Dict[Type[Any], EntityMetadata] = {}
        labels: Dict[str, NodeMetadata] = {}
        types_: Dict[str, RelationshipMetadata] = {}

        # Relationship entities first: node fields targeting them need their endpoints
        for entity_class in sorted(classes, key=lambda c: not issubclass(c, RelationshipEntity)):
            if issubclass(entity_class, RelationshipEntity):
                rel_meta = self._reflect_relationship(entity_class)
                if rel_meta.relationship_type in types_:
                    raise ConfigurationError(
                        f"Relationship type '{rel_meta.relationship_type}' is declared by both "
                        f"{types_[rel_meta.relationship_type].kind.__name__} and {entity_class.__name__}"
                    )
                types_[rel_meta.relationship_type] = rel_meta
                metadata[entity_class] = rel_meta
            elif issubclass(entity_class, NodeEntity):
                node_meta = self._reflect_node(entity_class, metadata)
                if node_meta.label in labels:
                    raise ConfigurationError(
                        f"Label '{node_meta.label}' is declared by both "
                        f"{labels[node_meta.label].kind.__name__} and {entity_class.__name__}"
                    )
                labels[node_meta.label] = node_meta
                metadata[entity_class] = node_meta
            else:
                raise ConfigurationError(
                    f"{entity_class.__name__} must subclass NodeEntity or RelationshipEntity"
                )

        self._metadata: Mapping[Type[Any], EntityMetadata] = MappingProxyType(metadata)
        self._labels: Mapping[str, NodeMetadata] = MappingProxyType(labels)
        self._types: Mapping[str, RelationshipMetadata] = MappingProxyType(types_)

    @classmethod
    def from_declared(cls) -> MetadataRegistry:
        """Build a registry from every concrete entity class declared so far."""
        return cls(sorted(get_entity_classes(), key=lambda c: (c.__module__, c.__qualname__)))

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def for_class(self, kind: Type[Any]) -> EntityMetadata:
        try:
            return self._metadata[kind]
        except KeyError:
            name = getattr(kind, '__name__', repr(kind))
            raise ConfigurationError(f"{name} is not a mapped entity") from None

    def for_instance(self, entity: Any) -> EntityMetadata:
        return self.for_class(type(entity))

    def for_node(self, kind: Type[Any]) -> NodeMetadata:
        meta = self.for_class(kind)
        if not isinstance(meta, NodeMetadata):
            raise ConfigurationError(f"{kind.__name__} is a relationship entity, not a node entity")
        return meta

    def for_label(self, label: str) -> NodeMetadata:
        try:
            return self._labels[label]
        except KeyError:
            raise ConfigurationError(f"No node entity is mapped to label '{label}'") from None

    def for_type(self, relationship_type: str) -> RelationshipMetadata:
        try:
            return self._types[relationship_type]
        except KeyError:
            raise ConfigurationError(
                f"No relationship entity is mapped to type '{relationship_type}'"
            ) from None

    def kinds(self) -> Tuple[Type[Any], ...]:
        return tuple(self._metadata)

    @property
    def mapping(self) -> Mapping[Type[Any], EntityMetadata]:
        return self._metadata

    def __contains__(self, kind: Any) -> bool:
        return kind in self._metadata

    def __len__(self) -> int:
        return len(self._metadata)

    def __repr__(self) -> str:
        return f"MetadataRegistry(nodes={len(self._labels)}, relationships={len(self._types)})"

    # =========================================================================
    # REFLECTION
    # =========================================================================

    @staticmethod
    def _index_names(classes: List[Type[GraphEntity]]) -> Dict[str, Type[GraphEntity]]:
        names: Dict[str, Type[GraphEntity]] = {}
        ambiguous = set()
        for entity_class in classes:
            if entity_class.__name__ in names:
                ambiguous.add(entity_class.__name__)
            names[entity_class.__name__] = entity_class
            names[entity_class.__qualname__] = entity_class
        for name in ambiguous:
            names.pop(name, None)
        return names

    def _resolve_target(self, owner: type, field_name: str, target: Any) -> Type[GraphEntity]:
        if isinstance(target, str):
            resolved = self._names.get(target)
        else:
            resolved = target if target in self._names.values() else None
        if resolved is None:
            name = target if isinstance(target, str) else getattr(target, '__name__', repr(target))
            raise ConfigurationError(
                f"{owner.__name__}.{field_name} targets '{name}', which is not a declared entity"
            )
        return resolved

    @staticmethod
    def _identity_field(entity_class: type) -> str:
        identity_fields = [
            name
            for name, info in entity_class.model_fields.items()
            if any(isinstance(marker, Identity) for marker in info.metadata)
        ]
        if not identity_fields:
            raise ConfigurationError(f"{entity_class.__name__} has no identity field")
        if len(identity_fields) > 1:
            raise ConfigurationError(
                f"{entity_class.__name__} declares more than one identity field: "
                f"{', '.join(identity_fields)}"
            )
        return identity_fields[0]

    @staticmethod
    def _properties(entity_class: type, identity_field: str) -> Tuple[PropertyMetadata, ...]:
        properties = []
        seen: Dict[str, str] = {}
        for name, info in entity_class.model_fields.items():
            if name == identity_field:
                continue
            prop = _reflect_property(entity_class, name, info)
            if prop.property_name in seen:
                raise ConfigurationError(
                    f"{entity_class.__name__}.{name} and {entity_class.__name__}.{seen[prop.property_name]} "
                    f"both map to property '{prop.property_name}'"
                )
            seen[prop.property_name] = name
            properties.append(prop)
        return tuple(properties)

    def _reflect_relationship(self, entity_class: Type[RelationshipEntity]) -> RelationshipMetadata:
        identity_field = self._identity_field(entity_class)
        starts = [(n, d) for n, d in entity_class._descriptors.items() if isinstance(d, StartNode)]
        ends = [(n, d) for n, d in entity_class._descriptors.items() if isinstance(d, EndNode)]
        related = [n for n, d in entity_class._descriptors.items() if isinstance(d, Related)]

        if related:
            raise ConfigurationError(
                f"Relationship entity {entity_class.__name__} cannot declare Related fields: "
                f"{', '.join(related)}"
            )
        if len(starts) != 1:
            raise ConfigurationError(
                f"Relationship entity {entity_class.__name__} must declare exactly one StartNode"
            )
        if len(ends) != 1:
            raise ConfigurationError(
                f"Relationship entity {entity_class.__name__} must declare exactly one EndNode"
            )

        (start_field, start), (end_field, end) = starts[0], ends[0]
        start_kind = self._resolve_target(entity_class, start_field, start.target)
        end_kind = self._resolve_target(entity_class, end_field, end.target)
        for field_name, endpoint in ((start_field, start_kind), (end_field, end_kind)):
            if not issubclass(endpoint, NodeEntity):
                raise ConfigurationError(
                    f"{entity_class.__name__}.{field_name} must target a node entity"
                )

        return RelationshipMetadata(
            kind=entity_class,
            relationship_type=entity_class._entity_config.relationship_type,
            identity_field=identity_field,
            properties=self._properties(entity_class, identity_field),
            start_field=start_field,
            start_kind=start_kind,
            end_field=end_field,
            end_kind=end_kind,
        )

    def _reflect_node(
        self,
        entity_class: Type[NodeEntity],
        reflected: Dict[Type[Any], EntityMetadata]
    ) -> NodeMetadata:
        identity_field = self._identity_field(entity_class)
        relationships = []

        for name, descriptor in entity_class._descriptors.items():
            if isinstance(descriptor, (StartNode, EndNode)):
                raise ConfigurationError(
                    f"Node entity {entity_class.__name__} cannot declare {type(descriptor).__name__} "
                    f"field '{name}'"
                )
            if not isinstance(descriptor, Related):
                continue
            relationships.append(
                self._reflect_related(entity_class, name, descriptor, reflected)
            )

        return NodeMetadata(
            kind=entity_class,
            label=entity_class._entity_config.label,
            identity_field=identity_field,
            properties=self._properties(entity_class, identity_field),
            relationships=tuple(relationships),
        )

    def _reflect_related(
        self,
        owner: Type[NodeEntity],
        name: str,
        descriptor: Related,
        reflected: Dict[Type[Any], EntityMetadata]
    ) -> RelationshipFieldMetadata:
        target = self._resolve_target(owner, name, descriptor.target)

        if issubclass(target, RelationshipEntity):
            rel_meta = reflected[target]
            if descriptor.relationship_type and descriptor.relationship_type != rel_meta.relationship_type:
                raise ConfigurationError(
                    f"{owner.__name__}.{name} declares type '{descriptor.relationship_type}' but "
                    f"{target.__name__} has type '{rel_meta.relationship_type}'"
                )
            node_kind = _other_endpoint(owner, name, descriptor.direction, rel_meta)
            return RelationshipFieldMetadata(
                name=name,
                relationship_type=rel_meta.relationship_type,
                direction=descriptor.direction,
                target=target,
                node_kind=node_kind,
                many=descriptor.many,
                via_entity=True,
            )

        if not descriptor.relationship_type:
            raise ConfigurationError(
                f"{owner.__name__}.{name} targets node entity {target.__name__} "
                "and must declare a relationship type"
            )
        return RelationshipFieldMetadata(
            name=name,
            relationship_type=descriptor.relationship_type,
            direction=descriptor.direction,
            target=target,
            node_kind=target,
            many=descriptor.many,
        )


# =============================================================================
# HELPERS
# =============================================================================

def _other_endpoint(
    owner: type,
    field_name: str,
    direction: Direction,
    rel_meta: RelationshipMetadata
) -> Type[Any]:
    """Node kind at the far end of a relationship entity seen from ``owner``."""
    if direction is Direction.OUTGOING and issubclass(owner, rel_meta.start_kind):
        return rel_meta.end_kind
    if direction is Direction.INCOMING and issubclass(owner, rel_meta.end_kind):
        return rel_meta.start_kind
    if direction is Direction.UNDIRECTED:
        if issubclass(owner, rel_meta.start_kind):
            return rel_meta.end_kind
        if issubclass(owner, rel_meta.end_kind):
            return rel_meta.start_kind
    raise ConfigurationError(
        f"{owner.__name__}.{field_name} ({direction.value}) does not match the endpoints of "
        f"{rel_meta.kind.__name__} ({rel_meta.start_kind.__name__} -> {rel_meta.end_kind.__name__})"
    )


def _unwrap_optional(annotation: Any) -> Any:
    if get_origin(annotation) in (Union, types.UnionType):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _is_wire_scalar(annotation: Any) -> bool:
    if get_origin(annotation) is Literal:
        return all(isinstance(arg, WIRE_SCALARS) for arg in get_args(annotation))
    return (
        isinstance(annotation, type)
        and issubclass(annotation, WIRE_SCALARS)
        and not issubclass(annotation, Enum)
    )


def _implicit_converter(annotation: Any) -> Optional[Converter]:
    converter = default_converter(annotation)
    if converter is not None:
        return converter
    if get_origin(annotation) in (list, List):
        args = get_args(annotation)
        if len(args) == 1:
            item_converter = default_converter(_unwrap_optional(args[0]))
            if item_converter is not None:
                return ListConverter(item_converter)
    return None


def _is_wire_type(annotation: Any) -> bool:
    if _is_wire_scalar(annotation):
        return True
    if get_origin(annotation) in (list, List):
        args = get_args(annotation)
        return len(args) == 1 and _is_wire_scalar(args[0])
    return False


def _reflect_property(entity_class: type, name: str, info: FieldInfo) -> PropertyMetadata:
    marker = next((m for m in info.metadata if isinstance(m, Property)), None)
    converter = marker.converter if marker else None
    annotation = _unwrap_optional(info.annotation)

    if converter is None:
        converter = _implicit_converter(annotation)
        if converter is None and not _is_wire_type(annotation):
            raise ConfigurationError(
                f"{entity_class.__name__}.{name} has type {annotation!r}, which cannot be stored "
                "as a property; declare a converter with Property(converter=...)"
            )

    return PropertyMetadata(
        field_name=name,
        property_name=(marker.name if marker and marker.name else name),
        converter=converter,
    )
