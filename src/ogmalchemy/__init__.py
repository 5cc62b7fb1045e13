# src/ogmalchemy/__init__.py
r"""
ogmalchemy - Object Graph Mapper for Neo4j

ogmalchemy maps typed Python object graphs onto a property graph database:
- Pydantic V2 node and relationship entities with converters for rich types
- Depth-bounded loading with explicit ``Unresolved`` markers beyond the horizon
- Snapshot-based change detection: saves write only what changed
- Store-side sorting and pagination
- Finder queries derived from method names, plus explicit Cypher queries
- An in-memory graph store for tests and a Neo4j store for production

Example:
    ```python
    from ogmalchemy import (
        Direction, EndNode, InMemoryGraphStore, MetadataRegistry, NodeEntity,
        Page, Related, RelationshipEntity, SessionFactory, Sort, StartNode,
    )

    class Category(NodeEntity):
        name: str

    class Ingredient(NodeEntity):
        name: str = Field(min_length=1)
        date_added: date
        category = Related("HAS_CATEGORY", target="Category", many=False)
        pairings = Related(target="Pairing", direction=Direction.UNDIRECTED)

    class Pairing(RelationshipEntity):
        affinity: str = "good"
        first = StartNode("Ingredient")
        second = EndNode("Ingredient")

    factory = SessionFactory(InMemoryGraphStore(), MetadataRegistry([Category, Ingredient, Pairing]))

    async with factory.session() as session:
        herb = Category(name="Herb")
        basil = Ingredient(name="Basil", date_added=date(2024, 5, 1), category=herb)
        tomato = Ingredient(name="Tomato", date_added=date(2024, 5, 2), category=herb)
        basil.pairings = [Pairing(first=basil, second=tomato, affinity="excellent")]
        await session.save(basil)          # creates 3 nodes and 3 relationships

        newest = await session.load_all(
            Ingredient, sort=Sort.by("date_added").descending(), page=Page(0, 5)
        )
    ```
"""

from ogmalchemy.exceptions import (
    OGMError,
    ConfigurationError,
    ConstraintViolationError,
    EntityNotFoundError,
    MappingError,
    QueryBindingError,
    QueryExecutionError,
    SessionClosedError,
    UnsupportedDerivationError,
)

# ORM system
from ogmalchemy.orm import (
    Direction,
    EndNode,
    Identity,
    Property,
    Related,
    StartNode,
    Unresolved,
    is_unresolved,
    Converter,
    DateConverter,
    DateTimeConverter,
    DecimalConverter,
    EnumConverter,
    JsonConverter,
    ListConverter,
    UUIDConverter,
    GraphEntity,
    NodeEntity,
    node_entity,
    RelationshipEntity,
    relationship_entity,
    MetadataRegistry,
    GraphEngine,
    create_graph_engine,
    Session,
    SessionFactory,
    SessionStatus,
)

# Core graph and stores
from ogmalchemy.core import Graph
from ogmalchemy.store import GraphStore, InMemoryGraphStore, Neo4jGraphStore

# Queries
from ogmalchemy.query import (
    GraphRepository,
    NodeQuery,
    Page,
    QueryDerivationEngine,
    Sort,
    query,
)

from ogmalchemy.config import OGMSettings
from ogmalchemy.logging_config import configure_logging

__version__ = "0.1.0"

__all__ = [
    # Errors
    "OGMError",
    "ConfigurationError",
    "ConstraintViolationError",
    "EntityNotFoundError",
    "MappingError",
    "QueryBindingError",
    "QueryExecutionError",
    "SessionClosedError",
    "UnsupportedDerivationError",

    # Fields and converters
    "Direction",
    "EndNode",
    "Identity",
    "Property",
    "Related",
    "StartNode",
    "Unresolved",
    "is_unresolved",
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
    "RelationshipEntity",
    "relationship_entity",
    "MetadataRegistry",

    # Engine and stores
    "GraphEngine",
    "create_graph_engine",
    "Graph",
    "GraphStore",
    "InMemoryGraphStore",
    "Neo4jGraphStore",

    # Sessions and queries
    "Session",
    "SessionFactory",
    "SessionStatus",
    "GraphRepository",
    "NodeQuery",
    "Page",
    "QueryDerivationEngine",
    "Sort",
    "query",

    # Configuration
    "OGMSettings",
    "configure_logging",

    # Version
    "__version__",
]
