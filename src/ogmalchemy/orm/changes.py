# src/ogmalchemy/orm/changes.py
"""
ogmalchemy change-set calculator.

Diffs every entity reachable from a root against its snapshot and produces
the minimal set of write operations. Relationship removals are only detected
on fields whose previous state was loaded; a field that was beyond the load
horizon never produces deletions.
"""

from __future__ import annotations

from typing import Any, Dict, Hashable, List, Optional, Tuple

import structlog

from ogmalchemy.exceptions import MappingError
from ogmalchemy.orm.fields import Direction, is_unresolved
from ogmalchemy.orm.mapper import ObjectGraphMapper
from ogmalchemy.orm.metadata import (
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
from ogmalchemy.orm.state import SessionState


logger = structlog.get_logger(__name__)


class ChangeSetCalculator:
    """Computes change sets for ``Session.save`` and ``Session.delete``."""

    def __init__(self, registry: MetadataRegistry, mapper: ObjectGraphMapper):
        self.registry = registry
        self.mapper = mapper

    def compute(self, root: Any, state: SessionState, depth: int = -1) -> ChangeSet:
        """
        Operations that make the database match the graph reachable from ``root``.

        Args:
            root: Entity to start from
            state: Session state holding the snapshots
            depth: Hops of relationship fields to follow (-1: unbounded)

        Returns:
            A ChangeSet; empty when nothing reachable changed
        """
        change_set = ChangeSet()
        for entity, hop in self.mapper.reachable(root, depth):
            meta = self.registry.for_instance(entity)
            if isinstance(meta, RelationshipMetadata):
                self._relationship_entity(change_set, entity, meta, state, hop)
            else:
                self._node(change_set, entity, meta, state, hop, depth)

        logger.debug(
            "changes.computed",
            root=type(root).__name__,
            visited=change_set.visited,
            **change_set.summary(),
        )
        return change_set

    def deletion(self, entity: Any, state: SessionState) -> ChangeSet:
        """Operations deleting one persisted entity."""
        meta = self.registry.for_instance(entity)
        identity = self.mapper.identity_of(entity)
        if identity is None:
            raise MappingError(f"Cannot delete {type(entity).__name__}: it has never been saved")

        change_set = ChangeSet()
        if isinstance(meta, RelationshipMetadata):
            change_set.delete_relationship(
                DeleteRelationship(identity=identity, relationship_type=meta.relationship_type, entity=entity)
            )
        else:
            change_set.add(DeleteNode(entity=entity, identity=identity))
        return change_set

    # =========================================================================
    # NODES
    # =========================================================================

    def _node(
        self,
        change_set: ChangeSet,
        entity: Any,
        meta: NodeMetadata,
        state: SessionState,
        hop: int,
        depth: int
    ) -> None:
        identity = self.mapper.identity_of(entity)
        properties = self.mapper.dehydrate(entity)
        previous = state.snapshot_of(entity, identity)

        if identity is None:
            change_set.add(CreateNode(
                entity=entity,
                labels=(meta.label,),
                properties={k: v for k, v in properties.items() if v is not None},
            ))
        elif previous is None:
            change_set.add(UpdateNode(entity=entity, identity=identity, properties=properties, full=True))
        else:
            changed = _changed_properties(properties, previous.properties)
            if changed:
                change_set.add(UpdateNode(entity=entity, identity=identity, properties=changed))

        planned = PlannedNode(entity, hop)
        change_set.planned.append(planned)
        if depth >= 0 and hop >= depth:
            return

        for field in meta.relationships:
            value = getattr(entity, field.name)
            if is_unresolved(value):
                continue
            items = self.mapper.related_items(value, field.many)
            loaded = previous.relations.get(field.name) if previous is not None else None
            if field.via_entity:
                planned.relations[field.name] = self._entity_field(
                    change_set, entity, field, items, loaded, state
                )
            else:
                merge = identity is not None and loaded is None
                planned.relations[field.name] = self._plain_field(
                    change_set, entity, field, items, loaded, merge
                )

    def _plain_field(
        self,
        change_set: ChangeSet,
        owner: Any,
        field: RelationshipFieldMetadata,
        items: List[Any],
        loaded: Optional[Dict[str, str]],
        merge: bool
    ) -> List[Tuple[Any, Hashable]]:
        remaining = dict(loaded or {})
        relations: List[Tuple[Any, Hashable]] = []

        for target in items:
            target_id = self.mapper.identity_of(target)
            kept = None
            if target_id is not None:
                kept = next((rel_id for rel_id, other in remaining.items() if other == target_id), None)
            if kept is not None:
                del remaining[kept]
                relations.append((target, kept))
                continue

            key = self.mapper.relationship_key(field, owner, target)
            start, end = (target, owner) if field.direction is Direction.INCOMING else (owner, target)
            change_set.create_relationship(CreateRelationship(
                key=key,
                relationship_type=field.relationship_type,
                start=start,
                end=end,
                merge=merge and target_id is not None,
                undirected=field.direction is Direction.UNDIRECTED,
            ))
            relations.append((target, key))

        for rel_id in remaining:
            change_set.delete_relationship(
                DeleteRelationship(identity=rel_id, relationship_type=field.relationship_type)
            )
        return relations

    def _entity_field(
        self,
        change_set: ChangeSet,
        owner: Any,
        field: RelationshipFieldMetadata,
        items: List[Any],
        loaded: Optional[Dict[str, str]],
        state: SessionState
    ) -> List[Tuple[Any, Hashable]]:
        remaining = dict(loaded or {})
        relations: List[Tuple[Any, Hashable]] = []

        for relationship in items:
            other = self._far_end(owner, field, relationship)
            rel_id = self.mapper.identity_of(relationship)
            if rel_id is None:
                relations.append((other, ('entity', id(relationship))))
            else:
                remaining.pop(rel_id, None)
                relations.append((other, rel_id))

        for rel_id in remaining:
            tracked = state.relationship(rel_id)
            change_set.delete_relationship(DeleteRelationship(
                identity=rel_id,
                relationship_type=field.relationship_type,
                entity=tracked.entity if tracked is not None else None,
            ))
        return relations

    def _far_end(self, owner: Any, field: RelationshipFieldMetadata, relationship: Any) -> Any:
        start, end = self.mapper.endpoints(relationship)
        if field.direction is Direction.OUTGOING and start is owner:
            return end
        if field.direction is Direction.INCOMING and end is owner:
            return start
        if field.direction is Direction.UNDIRECTED:
            if start is owner:
                return end
            if end is owner:
                return start
        raise MappingError(
            f"{type(owner).__name__}.{field.name} holds a {type(relationship).__name__} "
            f"that is not attached to it"
        )

    # =========================================================================
    # RELATIONSHIP ENTITIES
    # =========================================================================

    def _relationship_entity(
        self,
        change_set: ChangeSet,
        relationship: Any,
        meta: RelationshipMetadata,
        state: SessionState,
        hop: int
    ) -> None:
        start, end = self.mapper.endpoints(relationship)
        if start is None or end is None:
            raise MappingError(f"{meta.kind.__name__} needs both a start node and an end node")

        identity = self.mapper.identity_of(relationship)
        properties = self.mapper.dehydrate(relationship)

        if identity is None:
            change_set.create_relationship(CreateRelationship(
                key=('entity', id(relationship)),
                relationship_type=meta.relationship_type,
                start=start,
                end=end,
                properties={k: v for k, v in properties.items() if v is not None},
                entity=relationship,
            ))
        else:
            previous = state.snapshot_of(relationship, identity, relationship=True)
            if previous is None:
                change_set.add(UpdateRelationship(
                    entity=relationship, identity=identity, properties=properties, full=True
                ))
            else:
                if (self.mapper.identity_of(start), self.mapper.identity_of(end)) != (previous.start, previous.end):
                    raise MappingError(
                        f"{meta.kind.__name__} {identity} cannot be moved to other nodes; "
                        "delete it and save a new one"
                    )
                changed = _changed_properties(properties, previous.properties)
                if changed:
                    change_set.add(UpdateRelationship(entity=relationship, identity=identity, properties=changed))

        change_set.planned.append(PlannedRelationship(relationship, hop))


def _changed_properties(current: Dict[str, Any], previous: Dict[str, Any]) -> Dict[str, Any]:
    return {
        name: value
        for name, value in current.items()
        if name not in previous or previous[name] != value
    }
