# src/ogmalchemy/orm/session.py
"""
ogmalchemy sessions.

A ``Session`` is one unit of work: it owns the identity map and snapshots of
everything it loaded or saved, and is closed at the end of the request that
created it. Sessions are handed out by a ``SessionFactory`` bound to one graph
store and one metadata registry.

Example:
    ```python
    factory = SessionFactory(store, MetadataRegistry([Ingredient, Category, Pairing]))

    async with factory.session() as session:
        basil = await session.load(Ingredient, basil_id, depth=1)
        basil.flavour = "peppery"
        await session.save(basil)              # one UpdateNode, nothing else

        newest = await session.load_all(
            Ingredient,
            sort=Sort.by("date_added").descending(),
            page=Page(0, 5),
        )
    ```
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type, TypeVar, Union

import structlog

from ogmalchemy.config import OGMSettings
from ogmalchemy.exceptions import ConfigurationError, MappingError, SessionClosedError
from ogmalchemy.orm.changes import ChangeSetCalculator
from ogmalchemy.orm.mapper import ObjectGraphMapper
from ogmalchemy.orm.metadata import MetadataRegistry, NodeMetadata
from ogmalchemy.orm.state import SessionState
from ogmalchemy.query.model import NodeQuery, Order, Page, Sort
from ogmalchemy.store.base import GraphStore, NodeRecord


logger = structlog.get_logger(__name__)

EntityType = TypeVar('EntityType')


class SessionStatus(str, Enum):
    EMPTY = "empty"
    POPULATED = "populated"
    CLOSED = "closed"


class Session:
    """
    Unit of work over a graph store.

    Not safe for concurrent use: every task obtains its own session.
    """

    def __init__(self, store: GraphStore, registry: MetadataRegistry, default_depth: int = 1):
        self.store = store
        self.registry = registry
        self.default_depth = default_depth
        self.session_id = uuid.uuid4().hex[:12]
        self.state = SessionState()
        self.mapper = ObjectGraphMapper(registry)
        self.changes = ChangeSetCalculator(registry, self.mapper)
        self.status = SessionStatus.EMPTY
        self._log = logger.bind(session_id=self.session_id)

    # =========================================================================
    # LOADING
    # =========================================================================

    async def load(self, kind: Type[EntityType], identity: str, depth: Optional[int] = None) -> EntityType:
        """
        Load one entity and its neighbourhood.

        Args:
            kind: Entity class to load
            identity: Database identity of the node or relationship
            depth: Hops to load (0: properties only, -1: unbounded)

        Raises:
            EntityNotFoundError: No entity of this kind has that identity
        """
        self._ensure_open("load")
        depth = self._depth(depth)
        entity = await self.mapper.load(self.store, self.state, kind, identity, depth)
        self._populated()
        self._log.debug("session.loaded", kind=kind.__name__, identity=identity, depth=depth)
        return entity

    async def load_all(
        self,
        kind: Type[EntityType],
        sort: Optional[Sort] = None,
        page: Optional[Page] = None,
        depth: Optional[int] = None
    ) -> List[EntityType]:
        """
        Load every node of a kind, sorted and paginated by the store.

        Always queries the store; tracked instances are reused for the rows it
        returns.
        """
        self._ensure_open("load_all")
        meta = self.registry.for_node(kind)
        node_query = NodeQuery(
            label=meta.label,
            orders=self._orders(meta, sort),
            skip=page.offset if page is not None else 0,
            limit=page.size if page is not None else None,
        )
        return await self.find(kind, node_query, depth)

    async def find(
        self,
        kind: Type[EntityType],
        node_query: NodeQuery,
        depth: Optional[int] = None
    ) -> List[EntityType]:
        """Load the nodes selected by a structured query."""
        self._ensure_open("find")
        depth = self._depth(depth)
        records = await self.store.find_nodes(node_query)
        entities = await self.mapper.load_many(self.store, self.state, kind, records, depth)
        self._populated()
        self._log.debug("session.found", kind=kind.__name__, rows=len(records), depth=depth)
        return entities

    async def count(self, kind: Type[Any], node_query: Optional[NodeQuery] = None) -> int:
        self._ensure_open("count")
        if node_query is None:
            node_query = NodeQuery(label=self.registry.for_node(kind).label)
        return await self.store.count_nodes(node_query)

    async def query(
        self,
        cypher: str,
        parameters: Optional[Dict[str, Any]] = None,
        result: Union[Type[dict], Type[Any]] = dict,
        depth: Optional[int] = None
    ) -> List[Any]:
        """
        Run an explicit query.

        With ``result=dict`` the rows are returned as dicts. With an entity
        class the first node of every row is mapped to that class.
        """
        self._ensure_open("query")
        rows = await self.store.run(cypher, dict(parameters or {}))
        if result is dict:
            return rows

        meta = self.registry.for_node(result)
        records = []
        for row in rows:
            record = next((value for value in row.values() if isinstance(value, NodeRecord)), None)
            if record is None or meta.label not in record.labels:
                raise MappingError(f"Query row has no :{meta.label} node to map to {result.__name__}")
            records.append(record)
        entities = await self.mapper.load_many(self.store, self.state, result, records, self._depth(depth))
        self._populated()
        return entities

    async def resolve(self, entity: Any, field: str, depth: int = 1) -> Any:
        """Load a relationship field of a tracked entity and return its value."""
        self._ensure_open("resolve")
        meta = self.registry.for_node(type(entity))
        if meta.relationship_for(field) is None:
            raise ConfigurationError(f"{type(entity).__name__} has no relationship field '{field}'")
        identity = self.mapper.identity_of(entity)
        if self.state.snapshot_of(entity, identity) is None:
            raise MappingError(f"{type(entity).__name__} {identity} is not attached to this session")
        await self.mapper.load(self.store, self.state, type(entity), identity, max(1, depth))
        return getattr(entity, field)

    # =========================================================================
    # WRITING
    # =========================================================================

    async def save(self, entity: EntityType, depth: int = -1) -> EntityType:
        """
        Persist the changes of everything reachable from ``entity``.

        Unchanged subgraphs issue no writes. All operations run in one store
        transaction; when it fails nothing in the session is updated and the
        error propagates.

        Args:
            entity: Root entity
            depth: Hops of relationship fields to follow (-1: unbounded)
        """
        self._ensure_open("save")
        change_set = self.changes.compute(entity, self.state, depth)
        if not change_set:
            self._log.debug("session.save_skipped", root=type(entity).__name__, visited=change_set.visited)
            return entity

        async with self.store.transaction() as tx:
            assignments = await self.mapper.persist(tx, change_set)
        self.mapper.refresh(change_set, assignments, self.state)
        self._populated()
        self._log.info(
            "session.saved",
            root=type(entity).__name__,
            visited=change_set.visited,
            **change_set.summary(),
        )
        return entity

    async def delete(self, entity: Any) -> None:
        """
        Delete a node (with its relationships) or a relationship entity.

        The entity's identity is reset to ``None`` and it is removed from the
        relationship fields of the entities this session tracks.
        """
        self._ensure_open("delete")
        change_set = self.changes.deletion(entity, self.state)
        async with self.store.transaction() as tx:
            assignments = await self.mapper.persist(tx, change_set)
        self.mapper.refresh(change_set, assignments, self.state)
        self._log.info("session.deleted", kind=type(entity).__name__, **change_set.summary())

    # =========================================================================
    # STATE
    # =========================================================================

    def is_dirty(self, entity: Any) -> bool:
        """True when ``entity`` has changes this session has not saved."""
        self._ensure_open("check entities")
        return self.mapper.is_dirty(entity, self.state)

    def clear(self) -> None:
        """Forget every tracked entity."""
        self._ensure_open("clear")
        self.state.clear()
        self.status = SessionStatus.EMPTY

    async def close(self) -> None:
        if self.status is SessionStatus.CLOSED:
            return
        tracked = len(self.state)
        self.state.clear()
        self.status = SessionStatus.CLOSED
        self._log.debug("session.closed", tracked=tracked)

    @property
    def closed(self) -> bool:
        return self.status is SessionStatus.CLOSED

    def __contains__(self, entity: Any) -> bool:
        if type(entity) not in self.registry:
            return False
        meta = self.registry.for_instance(entity)
        identity = self.mapper.identity_of(entity)
        return self.state.snapshot_of(entity, identity, relationship=meta.is_relationship) is not None

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"Session({self.session_id}, status={self.status.value}, tracked={len(self.state)})"

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _ensure_open(self, operation: str) -> None:
        if self.status is SessionStatus.CLOSED:
            raise SessionClosedError(self.session_id, operation)

    def _populated(self) -> None:
        if self.status is SessionStatus.EMPTY:
            self.status = SessionStatus.POPULATED

    def _depth(self, depth: Optional[int]) -> int:
        depth = self.default_depth if depth is None else depth
        if depth < -1:
            raise ValueError(f"depth must be -1 (unbounded) or >= 0, got {depth}")
        return depth

    @staticmethod
    def _orders(meta: NodeMetadata, sort: Optional[Sort]) -> Tuple[Order, ...]:
        if sort is None:
            return ()
        orders = []
        for order in sort:
            prop = meta.property_for(order.property)
            if prop is None:
                raise ConfigurationError(f"{meta.kind.__name__} has no property field '{order.property}'")
            orders.append(Order(property=prop.property_name, direction=order.direction))
        return tuple(orders)


class SessionFactory:
    """
    Hands out sessions bound to one store and registry.

    Args:
        store: Graph store shared by every session
        registry: Metadata of the mapped entities (defaults to every declared entity)
        settings: Settings providing ``default_depth``
    """

    def __init__(
        self,
        store: GraphStore,
        registry: Optional[MetadataRegistry] = None,
        settings: Optional[OGMSettings] = None
    ):
        self.store = store
        self.registry = registry if registry is not None else MetadataRegistry.from_declared()
        self.settings = settings if settings is not None else OGMSettings()

    @property
    def default_depth(self) -> int:
        return self.settings.default_depth

    def open(self) -> Session:
        """Open a session; the caller must close it."""
        session = Session(self.store, self.registry, default_depth=self.default_depth)
        logger.debug("session.opened", session_id=session.session_id)
        return session

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Session]:
        """Session that is closed on every exit path of the block."""
        session = self.open()
        try:
            yield session
        finally:
            await session.close()

    async def close(self) -> None:
        await self.store.close()
