# src/ogmalchemy/orm/mapper.py
"""
ogmalchemy object graph mapper.

Translates between entities and store records:

- ``hydrate`` / ``dehydrate`` convert one entity to and from wire properties.
- ``load`` / ``load_many`` read a depth-bounded entity graph breadth-first.
  Entities on the horizon get ``Unresolved`` markers on their relationship
  fields. Loaded instances are reused through the session's identity map.
- ``reachable`` walks an in-memory entity graph breadth-first for saving.
- ``persist`` writes a change set through an open store transaction and
  ``refresh`` applies the result to the session state after commit.
"""

from __future__ import annotations

import copy
from collections import defaultdict, deque
from typing import Any, DefaultDict, Deque, Dict, Hashable, List, Optional, Sequence, Set, Tuple, Type

import structlog

from ogmalchemy.exceptions import EntityNotFoundError, MappingError
from ogmalchemy.orm.fields import Direction, Unresolved, is_unresolved
from ogmalchemy.orm.metadata import (
    EntityMetadata,
    MetadataRegistry,
    NodeMetadata,
    RelationshipFieldMetadata,
    RelationshipMetadata,
)
from ogmalchemy.orm.operations import (
    ChangeSet,
    CreateNode,
    CreateRelationship,
    DeleteNode,
    DeleteRelationship,
    PlannedNode,
    PlannedRelationship,
    UpdateNode,
    UpdateRelationship,
)
from ogmalchemy.orm.state import SessionState, Snapshot
from ogmalchemy.store.base import GraphReader, NodeRecord, RelationshipRecord, StoreTransaction


logger = structlog.get_logger(__name__)


class Assignments:
    """Identities handed out by the store while a change set was written."""

    def __init__(self) -> None:
        self.nodes: Dict[int, str] = {}
        self.relationships: Dict[Hashable, str] = {}
        self.deleted_relationships: Set[str] = set()
        self.deleted_nodes: Set[str] = set()

    def __repr__(self) -> str:
        return (
            f"Assignments(nodes={len(self.nodes)}, relationships={len(self.relationships)}, "
            f"deleted={len(self.deleted_nodes) + len(self.deleted_relationships)})"
        )


class _Loaded:
    """
    An entity materialized during one load.

    Tracked entities are not touched until the load commits: ``fresh`` holds
    the field values read from the store and ``pending`` the reference fields
    to assign.
    """

    __slots__ = ('entity', 'meta', 'refreshed', 'record', 'fresh', 'pending')

    def __init__(
        self,
        entity: Any,
        meta: EntityMetadata,
        refreshed: bool,
        record: Any,
        fresh: Optional[Dict[str, Any]] = None
    ):
        self.entity = entity
        self.meta = meta
        self.refreshed = refreshed
        self.record = record
        self.fresh = fresh
        self.pending: Dict[str, Any] = {}

    def apply(self) -> None:
        if self.fresh is not None:
            self.entity.__dict__.update(self.fresh)
        for name, value in self.pending.items():
            setattr(self.entity, name, value)


class _LoadContext:
    """Working set of one load; merged into the session state when it succeeds."""

    def __init__(self, state: SessionState):
        self.state = state
        self.nodes: Dict[str, _Loaded] = {}
        self.relationships: Dict[str, _Loaded] = {}
        self.relations: DefaultDict[str, Dict[str, Optional[Dict[str, str]]]] = defaultdict(dict)


class ObjectGraphMapper:
    """Maps entity graphs onto store records using a ``MetadataRegistry``."""

    def __init__(self, registry: MetadataRegistry):
        self.registry = registry

    # =========================================================================
    # ENTITY <-> RECORD
    # =========================================================================

    def identity_of(self, entity: Any) -> Optional[str]:
        return getattr(entity, self.registry.for_instance(entity).identity_field)

    def assign_identity(self, entity: Any, identity: Optional[str]) -> None:
        # The identity field is frozen for callers; only the mapper sets it
        entity.__dict__[self.registry.for_instance(entity).identity_field] = identity

    def dehydrate(self, entity: Any) -> Dict[str, Any]:
        """Wire properties of an entity, with ``None`` for missing values."""
        meta = self.registry.for_instance(entity)
        properties = {}
        for prop in meta.properties:
            try:
                properties[prop.property_name] = prop.to_wire(getattr(entity, prop.field_name))
            except (TypeError, ValueError) as exc:
                raise MappingError(
                    f"Cannot convert {type(entity).__name__}.{prop.field_name}: {exc}"
                ) from exc
        return properties

    def hydrate(self, kind: Type[Any], identity: str, properties: Dict[str, Any]) -> Any:
        """Build an entity from wire properties. Missing properties take field defaults."""
        meta = self.registry.for_class(kind)
        data: Dict[str, Any] = {meta.identity_field: identity}
        try:
            for prop in meta.properties:
                if prop.property_name in properties:
                    data[prop.field_name] = prop.from_wire(properties[prop.property_name])
            return kind.model_validate(data)
        except (TypeError, ValueError) as exc:
            raise MappingError(f"Cannot hydrate {kind.__name__} {identity}: {exc}") from exc

    def endpoints(self, relationship: Any) -> Tuple[Any, Any]:
        meta = self.registry.for_instance(relationship)
        return getattr(relationship, meta.start_field), getattr(relationship, meta.end_field)

    def node_snapshot(self, entity: Any, relations: Dict[str, Optional[Dict[str, str]]]) -> Snapshot:
        return Snapshot(properties=copy.deepcopy(self.dehydrate(entity)), relations=relations)

    def relationship_snapshot(self, relationship: Any) -> Snapshot:
        start, end = self.endpoints(relationship)
        return Snapshot(
            properties=copy.deepcopy(self.dehydrate(relationship)),
            start=self.identity_of(start) if start is not None else None,
            end=self.identity_of(end) if end is not None else None,
        )

    @staticmethod
    def related_items(value: Any, many: bool) -> List[Any]:
        if value is None:
            return []
        return list(value) if many else [value]

    # =========================================================================
    # DIRTY CHECKING
    # =========================================================================

    def is_dirty(self, entity: Any, state: SessionState) -> bool:
        """True when the entity differs from its snapshot or is not tracked."""
        meta = self.registry.for_instance(entity)
        identity = self.identity_of(entity)
        snapshot = state.snapshot_of(entity, identity, relationship=meta.is_relationship)
        if snapshot is None:
            return True
        if self.dehydrate(entity) != snapshot.properties:
            return True
        if isinstance(meta, RelationshipMetadata):
            start, end = self.endpoints(entity)
            return (
                start is None or end is None
                or self.identity_of(start) != snapshot.start
                or self.identity_of(end) != snapshot.end
            )
        return any(self._field_changed(entity, field, snapshot) for field in meta.relationships)

    def _field_changed(self, entity: Any, field: RelationshipFieldMetadata, snapshot: Snapshot) -> bool:
        value = getattr(entity, field.name)
        if is_unresolved(value):
            return False
        items = self.related_items(value, field.many)
        previous = snapshot.relations.get(field.name)
        if previous is None:
            return bool(items)
        current = [self.identity_of(item) for item in items]
        if None in current:
            return True
        expected = set(previous) if field.via_entity else set(previous.values())
        return set(current) != expected

    # =========================================================================
    # LOADING
    # =========================================================================

    async def load(
        self,
        reader: GraphReader,
        state: SessionState,
        kind: Type[Any],
        identity: str,
        depth: int
    ) -> Any:
        """Load one entity and its neighbourhood up to ``depth`` hops (-1: unbounded)."""
        meta = self.registry.for_class(kind)
        if isinstance(meta, RelationshipMetadata):
            return await self._load_relationship(reader, state, meta, identity, depth)

        records = [
            record for record in await reader.fetch_nodes([identity])
            if meta.label in record.labels
        ]
        if not records:
            raise EntityNotFoundError(kind.__name__, identity)
        entities = await self.load_many(reader, state, kind, records, depth)
        return entities[0]

    async def load_many(
        self,
        reader: GraphReader,
        state: SessionState,
        kind: Type[Any],
        records: Sequence[NodeRecord],
        depth: int
    ) -> List[Any]:
        """Hydrate several root nodes and load their neighbourhoods in one pass."""
        meta = self.registry.for_node(kind)
        ctx = _LoadContext(state)

        roots = []
        frontier: List[str] = []
        for record in records:
            if record.identity not in ctx.nodes:
                frontier.append(record.identity)
            roots.append(self._materialize_node(ctx, meta, record))

        await self._traverse(reader, ctx, frontier, depth)
        self._commit(ctx)
        logger.debug(
            "mapper.loaded",
            kind=kind.__name__,
            roots=len(roots),
            nodes=len(ctx.nodes),
            relationships=len(ctx.relationships),
            depth=depth,
        )
        return roots

    async def _load_relationship(
        self,
        reader: GraphReader,
        state: SessionState,
        meta: RelationshipMetadata,
        identity: str,
        depth: int
    ) -> Any:
        records = [
            record for record in await reader.fetch_relationships([identity])
            if record.type == meta.relationship_type
        ]
        if not records:
            raise EntityNotFoundError(meta.kind.__name__, identity)
        record = records[0]

        nodes = {node.identity: node for node in await reader.fetch_nodes([record.start, record.end])}
        ctx = _LoadContext(state)
        for node_id, node_kind in ((record.start, meta.start_kind), (record.end, meta.end_kind)):
            node_meta = self.registry.for_node(node_kind)
            node = nodes.get(node_id)
            if node is None or node_meta.label not in node.labels:
                raise MappingError(
                    f"{meta.kind.__name__} {identity} is not attached to a {node_kind.__name__} node"
                )
            self._materialize_node(ctx, node_meta, node)

        relationship = self._materialize_relationship(ctx, record)
        await self._traverse(reader, ctx, list(dict.fromkeys([record.start, record.end])), depth)
        self._commit(ctx)
        return relationship

    async def _traverse(self, reader: GraphReader, ctx: _LoadContext, frontier: List[str], depth: int) -> None:
        """Breadth-first expansion of the frontier until the horizon."""
        hop = 0
        while frontier:
            if depth >= 0 and hop >= depth:
                for identity in frontier:
                    self._mark_horizon(ctx, identity)
                return

            types = sorted({
                field.relationship_type
                for identity in frontier
                for field in ctx.nodes[identity].meta.relationships
            })
            if not types:
                return

            records = await reader.expand(frontier, types)
            by_node: DefaultDict[str, List[RelationshipRecord]] = defaultdict(list)
            for record in records:
                by_node[record.start].append(record)
                if record.end != record.start:
                    by_node[record.end].append(record)

            unseen = sorted({
                node_id
                for record in records
                for node_id in (record.start, record.end)
                if node_id not in ctx.nodes
            })
            fetched = {node.identity: node for node in await reader.fetch_nodes(unseen)} if unseen else {}

            next_frontier: List[str] = []
            for identity in frontier:
                loaded = ctx.nodes[identity]
                for field in loaded.meta.relationships:
                    values, relation_map = [], {}
                    for record in by_node.get(identity, ()):
                        if record.type != field.relationship_type:
                            continue
                        other = _other_end(record, identity, field.direction)
                        if other is None:
                            continue
                        other_meta = self.registry.for_node(field.node_kind)
                        if other not in ctx.nodes:
                            node = fetched.get(other)
                            if node is None or other_meta.label not in node.labels:
                                continue
                            self._materialize_node(ctx, other_meta, node)
                            next_frontier.append(other)
                        elif other_meta.label not in ctx.nodes[other].record.labels:
                            continue

                        if field.via_entity:
                            values.append(self._materialize_relationship(ctx, record))
                        else:
                            values.append(ctx.nodes[other].entity)
                        relation_map[record.identity] = other

                    self._wire(ctx, identity, field, values, relation_map)

            frontier = next_frontier
            hop += 1

    def _materialize_node(self, ctx: _LoadContext, meta: NodeMetadata, record: NodeRecord) -> Any:
        if record.identity in ctx.nodes:
            return ctx.nodes[record.identity].entity

        tracked = ctx.state.node(record.identity)
        fresh = None
        if tracked is None:
            entity = self.hydrate(meta.kind, record.identity, record.properties)
            refreshed = True
        elif not isinstance(tracked.entity, meta.kind):
            raise MappingError(
                f"Node {record.identity} is tracked as {type(tracked.entity).__name__}, "
                f"not {meta.kind.__name__}"
            )
        elif not self.is_dirty(tracked.entity, ctx.state):
            entity = tracked.entity
            fresh = dict(self.hydrate(meta.kind, record.identity, record.properties).__dict__)
            refreshed = True
        else:
            # Dirty entities keep their local edits
            entity = tracked.entity
            refreshed = False

        ctx.nodes[record.identity] = _Loaded(entity, meta, refreshed, record, fresh)
        return entity

    def _materialize_relationship(self, ctx: _LoadContext, record: RelationshipRecord) -> Any:
        if record.identity in ctx.relationships:
            return ctx.relationships[record.identity].entity

        meta = self.registry.for_type(record.type)
        tracked = ctx.state.relationship(record.identity)
        fresh = None
        if tracked is None:
            entity = self.hydrate(meta.kind, record.identity, record.properties)
            refreshed = True
        elif not self.is_dirty(tracked.entity, ctx.state):
            entity = tracked.entity
            fresh = dict(self.hydrate(meta.kind, record.identity, record.properties).__dict__)
            refreshed = True
        else:
            entity = tracked.entity
            refreshed = False

        loaded = _Loaded(entity, meta, refreshed, record, fresh)
        loaded.pending[meta.start_field] = ctx.nodes[record.start].entity
        loaded.pending[meta.end_field] = ctx.nodes[record.end].entity
        ctx.relationships[record.identity] = loaded
        return entity

    def _wire(
        self,
        ctx: _LoadContext,
        identity: str,
        field: RelationshipFieldMetadata,
        values: List[Any],
        relation_map: Dict[str, str]
    ) -> None:
        loaded = ctx.nodes[identity]
        if not loaded.refreshed and not is_unresolved(getattr(loaded.entity, field.name)):
            return
        loaded.pending[field.name] = values if field.many else (values[0] if values else None)
        ctx.relations[identity][field.name] = relation_map

    def _mark_horizon(self, ctx: _LoadContext, identity: str) -> None:
        loaded = ctx.nodes[identity]
        entity = loaded.entity
        snapshot = ctx.state.snapshot_of(entity, identity)
        for field in loaded.meta.relationships:
            current = getattr(entity, field.name)
            if snapshot is not None and (snapshot.is_loaded(field.name) or not is_unresolved(current)):
                # Never downgrade a loaded field, never drop local assignments
                continue
            loaded.pending[field.name] = Unresolved(field.name, identity)
            ctx.relations[identity][field.name] = None

    def _commit(self, ctx: _LoadContext) -> None:
        state = ctx.state
        for loaded in (*ctx.nodes.values(), *ctx.relationships.values()):
            loaded.apply()

        for identity, loaded in ctx.nodes.items():
            previous = state.snapshot_of(loaded.entity, identity)
            relations: Dict[str, Optional[Dict[str, str]]] = {
                field.name: previous.relations.get(field.name) if previous else None
                for field in loaded.meta.relationships
            }
            relations.update(ctx.relations.get(identity, {}))
            if loaded.refreshed or previous is None:
                snapshot = self.node_snapshot(loaded.entity, relations)
            else:
                snapshot = previous.model_copy(update={'relations': relations})
            state.track_node(identity, loaded.entity, snapshot)

        for identity, loaded in ctx.relationships.items():
            previous = state.snapshot_of(loaded.entity, identity, relationship=True)
            if loaded.refreshed or previous is None:
                snapshot = self.relationship_snapshot(loaded.entity)
            else:
                snapshot = previous
            state.track_relationship(identity, loaded.entity, snapshot)

    # =========================================================================
    # SAVING
    # =========================================================================

    def reachable(self, root: Any, depth: int = -1) -> List[Tuple[Any, int]]:
        """
        Entities reachable from ``root`` with their hop distance, breadth-first.

        Each entity is visited exactly once (tracked by object identity).
        Relationship fields holding ``Unresolved`` are not followed. A
        relationship entity is visited at the hop of its far endpoint, and its
        endpoints at its own hop.
        """
        order: List[Tuple[Any, int]] = []
        seen: Set[int] = set()
        queue: Deque[Tuple[Any, int]] = deque()

        def visit(entity: Any, hop: int) -> None:
            if id(entity) not in seen:
                seen.add(id(entity))
                queue.append((entity, hop))

        self.registry.for_instance(root)
        visit(root, 0)
        while queue:
            entity, hop = queue.popleft()
            order.append((entity, hop))
            meta = self.registry.for_instance(entity)

            if isinstance(meta, RelationshipMetadata):
                for endpoint in self.endpoints(entity):
                    if endpoint is not None:
                        visit(endpoint, hop)
                continue

            if depth >= 0 and hop >= depth:
                continue

            for field in meta.relationships:
                value = getattr(entity, field.name)
                if is_unresolved(value):
                    continue
                for item in self.related_items(value, field.many):
                    if not isinstance(item, field.target):
                        raise MappingError(
                            f"{type(entity).__name__}.{field.name} holds {type(item).__name__}, "
                            f"expected {field.target.__name__}"
                        )
                    visit(item, hop + 1)
                    if field.via_entity:
                        for endpoint in self.endpoints(item):
                            if endpoint is not None:
                                visit(endpoint, hop + 1)
        return order

    def relationship_key(self, field: RelationshipFieldMetadata, owner: Any, target: Any) -> Hashable:
        """Key of a plain relationship, equal from both of its endpoints."""
        if field.direction is Direction.UNDIRECTED:
            return (field.relationship_type, frozenset((id(owner), id(target))))
        if field.direction is Direction.OUTGOING:
            return (field.relationship_type, id(owner), id(target))
        return (field.relationship_type, id(target), id(owner))

    async def persist(self, writer: StoreTransaction, change_set: ChangeSet) -> Assignments:
        """
        Write a change set in dependency order.

        Nodes are created and updated first, then relationships are deleted,
        created and updated, and nodes are deleted last. Entities are not
        modified; see ``refresh``.
        """
        assignments = Assignments()

        for op in change_set.of_type(CreateNode):
            assignments.nodes[id(op.entity)] = await writer.create_node(op.labels, op.properties)
        for op in change_set.of_type(UpdateNode):
            await writer.update_node(op.identity, op.properties)
        for op in change_set.of_type(DeleteRelationship):
            await writer.delete_relationship(op.identity)
            assignments.deleted_relationships.add(op.identity)
        for op in change_set.of_type(CreateRelationship):
            start = self._written_identity(op.start, assignments)
            end = self._written_identity(op.end, assignments)
            if op.merge:
                rel_id = await writer.merge_relationship(
                    op.relationship_type, start, end, op.properties, undirected=op.undirected
                )
            else:
                rel_id = await writer.create_relationship(op.relationship_type, start, end, op.properties)
            assignments.relationships[op.key] = rel_id
        for op in change_set.of_type(UpdateRelationship):
            if op.identity in assignments.deleted_relationships:
                continue
            await writer.update_relationship(op.identity, op.properties)
        for op in change_set.of_type(DeleteNode):
            await writer.delete_node(op.identity)
            assignments.deleted_nodes.add(op.identity)

        return assignments

    def _written_identity(self, entity: Any, assignments: Assignments) -> str:
        identity = self.identity_of(entity)
        if identity is None:
            identity = assignments.nodes.get(id(entity))
        if identity is None:
            raise MappingError(
                f"{type(entity).__name__} is the endpoint of a new relationship but was not saved"
            )
        return identity

    def refresh(self, change_set: ChangeSet, assignments: Assignments, state: SessionState) -> None:
        """Apply committed identities and take new snapshots of every planned entity."""
        for op in change_set.of_type(CreateNode):
            self.assign_identity(op.entity, assignments.nodes[id(op.entity)])
        for op in change_set.of_type(CreateRelationship):
            if op.entity is not None:
                self.assign_identity(op.entity, assignments.relationships[op.key])

        removed: List[Any] = []
        deleted = assignments.deleted_relationships
        for op in change_set.of_type(DeleteRelationship):
            tracked = state.forget_relationship(op.identity)
            for entity in (op.entity, tracked.entity if tracked else None):
                if entity is not None and self.identity_of(entity) == op.identity:
                    self.assign_identity(entity, None)
                    removed.append(entity)
        self._unlink(state, deleted)
        state.discard_relationships(deleted)

        for op in change_set.of_type(DeleteNode):
            for tracked in state.forget_node(op.identity):
                self.assign_identity(tracked.entity, None)
                removed.append(tracked.entity)
            self.assign_identity(op.entity, None)
            removed.append(op.entity)
        if removed:
            self._detach(state, removed)

        for entry in change_set.planned:
            identity = self.identity_of(entry.entity)
            if identity is None:
                continue
            if isinstance(entry, PlannedRelationship):
                state.track_relationship(identity, entry.entity, self.relationship_snapshot(entry.entity))
                continue

            meta = self.registry.for_node(type(entry.entity))
            previous = state.snapshot_of(entry.entity, identity)
            relations: Dict[str, Optional[Dict[str, str]]] = {}
            for field in meta.relationships:
                planned = entry.relations.get(field.name)
                if planned is None:
                    relations[field.name] = previous.relations.get(field.name) if previous else None
                    continue
                mapping: Dict[str, str] = {}
                for target, reference in planned:
                    rel_id = reference if isinstance(reference, str) else assignments.relationships.get(reference)
                    target_id = self.identity_of(target)
                    if rel_id is None or rel_id in deleted or target_id is None:
                        continue
                    mapping[rel_id] = target_id
                relations[field.name] = mapping
            state.track_node(identity, entry.entity, self.node_snapshot(entry.entity, relations))

    def _unlink(self, state: SessionState, deleted: Set[str]) -> None:
        """
        Take the far ends of deleted plain relationships out of the loaded
        fields that still hold them, typically on the endpoint the caller did
        not touch. A target stays while another relationship still links it.
        """
        if not deleted:
            return
        for tracked in state.nodes():
            entity = tracked.entity
            for field in self.registry.for_node(type(entity)).relationships:
                mapping = tracked.snapshot.relations.get(field.name)
                if field.via_entity or not mapping:
                    continue
                gone = {target for rel_id, target in mapping.items() if rel_id in deleted}
                gone -= {target for rel_id, target in mapping.items() if rel_id not in deleted}
                value = getattr(entity, field.name)
                if not gone or is_unresolved(value):
                    continue
                items = self.related_items(value, field.many)
                kept = [item for item in items if self.identity_of(item) not in gone]
                if len(kept) != len(items):
                    setattr(entity, field.name, kept if field.many else None)

    def _detach(self, state: SessionState, removed: List[Any]) -> None:
        """Take deleted entities out of the relationship fields of tracked nodes."""
        gone = {id(entity) for entity in removed}
        for entity in list(state.entities()):
            meta = self.registry.for_instance(entity)
            if not isinstance(meta, NodeMetadata):
                continue
            for field in meta.relationships:
                value = getattr(entity, field.name)
                if is_unresolved(value):
                    continue
                items = self.related_items(value, field.many)
                kept = [
                    item for item in items
                    if id(item) not in gone and not (
                        field.via_entity and any(id(end) in gone for end in self.endpoints(item))
                    )
                ]
                if len(kept) != len(items):
                    setattr(entity, field.name, kept if field.many else None)


def _other_end(record: RelationshipRecord, identity: str, direction: Direction) -> Optional[str]:
    """Identity of the node at the far end of ``record`` seen from ``identity``."""
    if direction is Direction.OUTGOING:
        return record.end if record.start == identity else None
    if direction is Direction.INCOMING:
        return record.start if record.end == identity else None
    if record.start == identity:
        return record.end
    if record.end == identity:
        return record.start
    return None
