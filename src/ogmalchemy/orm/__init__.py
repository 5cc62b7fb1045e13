"""
ogmalchemy ORM Module

Entity declarations, the metadata registry, the object graph mapper and the
session layer.
"""

from ogmalchemy.orm.fields import (
    Direction,
    EndNode,
    Identity,
    Property,
    Related,
    StartNode,
    Unresolved,
    is_unresolved,
)
from ogmalchemy.orm.converters import (
    Converter,
    DateConverter,
    DateTimeConverter,
    DecimalConverter,
    EnumConverter,
    JsonConverter,
    ListConverter,
    UUIDConverter,
)
from ogmalchemy.orm.entities import (
    GraphEntity,
    NodeEntity,
    node_entity,
    get_entity_classes,
    get_entity_by_label,
)
from ogmalchemy.orm.relationships import (
    RelationshipEntity,
    relationship_entity,
    get_relationship_classes,
    get_relationship_by_type,
)
from ogmalchemy.orm.metadata import MetadataRegistry, NodeMetadata, RelationshipMetadata
from ogmalchemy.orm.engine import GraphEngine, create_graph_engine

# Imported last: the session pulls in the store and query packages
from ogmalchemy.orm.session import Session, SessionFactory, SessionStatus

__all__ = [
    # Fields
    "Direction",
    "EndNode",
    "Identity",
    "Property",
    "Related",
    "StartNode",
    "Unresolved",
    "is_unresolved",

    # Converters
    "Converter",
    "DateConverter",
    "DateTimeConverter",
    "DecimalConverter",
    "EnumConverter",
    "JsonConverter",
    "ListConverter",
    "UUIDConverter",

    # Entities
    "GraphEntity",
    "NodeEntity",
    "node_entity",
    "get_entity_classes",
    "get_entity_by_label",
    "RelationshipEntity",
    "relationship_entity",
    "get_relationship_classes",
    "get_relationship_by_type",

    # Metadata
    "MetadataRegistry",
    "NodeMetadata",
    "RelationshipMetadata",

    # Engine
    "GraphEngine",
    "create_graph_engine",

    # Sessions
    "Session",
    "SessionFactory",
    "SessionStatus",
]
