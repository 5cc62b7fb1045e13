# src/ogmalchemy/orm/state.py
"""
Session state: the identity map and the snapshots used for change detection.

A snapshot records what the database held for an entity when it was last
loaded or saved: its wire properties and, for every relationship field, the
relationships it had as ``{relationship identity: other node identity}``.
A field that was beyond the load horizon is recorded as ``None`` ("unloaded"),
which is different from ``{}`` ("loaded, no relationships").
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field


RelationMap = Dict[str, str]


class Snapshot(BaseModel):
    """Immutable last-known persisted state of one entity."""

    model_config = ConfigDict(frozen=True)

    properties: Dict[str, Any] = Field(default_factory=dict)
    relations: Dict[str, Optional[RelationMap]] = Field(default_factory=dict)
    start: Optional[str] = None
    end: Optional[str] = None

    def is_loaded(self, field: str) -> bool:
        return self.relations.get(field) is not None

    def without(
        self,
        relationships: Iterable[str] = (),
        targets: Iterable[str] = ()
    ) -> Snapshot:
        """Copy with the given relationship identities and target nodes dropped."""
        dropped_rels, dropped_targets = set(relationships), set(targets)
        relations = {
            field: (
                None if mapping is None else {
                    rel_id: target
                    for rel_id, target in mapping.items()
                    if rel_id not in dropped_rels and target not in dropped_targets
                }
            )
            for field, mapping in self.relations.items()
        }
        return self.model_copy(update={'relations': relations})


class TrackedEntity:
    """A live entity together with its snapshot."""

    __slots__ = ('entity', 'snapshot')

    def __init__(self, entity: Any, snapshot: Snapshot):
        self.entity = entity
        self.snapshot = snapshot

    def __repr__(self) -> str:
        return f"TrackedEntity({self.entity!r})"


class SessionState:
    """
    Identity map of one session.

    Nodes and relationship entities are kept apart because the database may
    hand out the same identity value to a node and to a relationship.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, TrackedEntity] = {}
        self._relationships: Dict[str, TrackedEntity] = {}

    # =========================================================================
    # NODES
    # =========================================================================

    def track_node(self, identity: str, entity: Any, snapshot: Snapshot) -> None:
        self._nodes[identity] = TrackedEntity(entity, snapshot)

    def node(self, identity: Optional[str]) -> Optional[TrackedEntity]:
        if identity is None:
            return None
        return self._nodes.get(identity)

    def nodes(self) -> Iterator[TrackedEntity]:
        return iter(list(self._nodes.values()))

    def forget_node(self, identity: str) -> List[TrackedEntity]:
        """
        Stop tracking a deleted node.

        Relationship entities attached to it are forgotten too, and other
        snapshots lose their relationships to it. Returns everything that was
        forgotten.
        """
        forgotten = []
        node = self._nodes.pop(identity, None)
        if node is not None:
            forgotten.append(node)
        attached = [
            rel_id
            for rel_id, tracked in self._relationships.items()
            if identity in (tracked.snapshot.start, tracked.snapshot.end)
        ]
        for rel_id in attached:
            forgotten.append(self._relationships.pop(rel_id))
        for tracked in self._nodes.values():
            tracked.snapshot = tracked.snapshot.without(relationships=attached, targets=[identity])
        return forgotten

    # =========================================================================
    # RELATIONSHIPS
    # =========================================================================

    def track_relationship(self, identity: str, entity: Any, snapshot: Snapshot) -> None:
        self._relationships[identity] = TrackedEntity(entity, snapshot)

    def relationship(self, identity: Optional[str]) -> Optional[TrackedEntity]:
        if identity is None:
            return None
        return self._relationships.get(identity)

    def forget_relationship(self, identity: str) -> Optional[TrackedEntity]:
        return self._relationships.pop(identity, None)

    def discard_relationships(self, identities: Iterable[str]) -> None:
        """Drop deleted relationships from every node snapshot."""
        dropped = set(identities)
        if not dropped:
            return
        for rel_id in dropped:
            self._relationships.pop(rel_id, None)
        for tracked in self._nodes.values():
            tracked.snapshot = tracked.snapshot.without(relationships=dropped)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def snapshot_of(self, entity: Any, identity: Optional[str], relationship: bool = False) -> Optional[Snapshot]:
        """Snapshot of ``entity`` if this very instance is tracked."""
        tracked = self.relationship(identity) if relationship else self.node(identity)
        if tracked is None or tracked.entity is not entity:
            return None
        return tracked.snapshot

    def entities(self) -> Iterator[Any]:
        for tracked in self._nodes.values():
            yield tracked.entity
        for tracked in self._relationships.values():
            yield tracked.entity

    def clear(self) -> None:
        self._nodes.clear()
        self._relationships.clear()

    def __len__(self) -> int:
        return len(self._nodes) + len(self._relationships)

    def __repr__(self) -> str:
        return f"SessionState(nodes={len(self._nodes)}, relationships={len(self._relationships)})"
