"""
Tests for the ChangeSetCalculator.

These tests verify:
- Unchanged graphs produce empty change sets
- Creates, property updates and relationship deletions are minimal
- Relationships shared by both endpoints are written once
- Fields beyond the load horizon never produce deletions
- Relationship entities are created, updated and deleted with their owners
"""

import pytest

from ogmalchemy.exceptions import MappingError
from ogmalchemy.orm.operations import (
    CreateNode,
    CreateRelationship,
    DeleteNode,
    DeleteRelationship,
    UpdateNode,
    UpdateRelationship,
)

from recipe_models import Affinity, Ingredient, Pairing


def compute(session, root, depth=-1):
    return session.changes.compute(root, session.state, depth)


class TestNodeChanges:
    """Test node creation and property updates."""

    async def test_new_graph(self, session, herbs):
        mint = Ingredient(name="Mint")
        basil = Ingredient(name="Basil", category=herbs, similar=[mint])

        change_set = compute(session, basil)

        assert change_set.summary() == {"CreateNode": 3, "CreateRelationship": 2}
        [create_basil, create_herbs, create_mint] = change_set.of_type(CreateNode)
        assert create_basil.entity is basil
        assert create_basil.labels == ("Ingredient",)
        assert create_basil.properties == {"name": "Basil", "date_added": "2024-01-01", "tags": []}
        assert create_herbs.entity is herbs
        assert create_mint.entity is mint

        category, similar = change_set.of_type(CreateRelationship)
        assert (category.relationship_type, category.start, category.end) == ("HAS_CATEGORY", basil, herbs)
        assert similar.undirected is True
        assert similar.merge is False

    async def test_unchanged_graph_is_empty(self, session, herbs):
        basil = Ingredient(name="Basil", category=herbs, similar=[Ingredient(name="Mint")])
        await session.save(basil)

        change_set = compute(session, basil)

        assert not change_set
        assert change_set.visited == 3

    async def test_only_changed_properties(self, session, herbs):
        basil = Ingredient(name="Basil", flavour="sweet", category=herbs)
        await session.save(basil)

        basil.flavour = "peppery"
        herbs.name = "Herbs"

        change_set = compute(session, basil)

        assert change_set.summary() == {"UpdateNode": 2}
        updates = {op.entity.__class__.__name__: op for op in change_set.of_type(UpdateNode)}
        assert updates["Ingredient"].properties == {"flavour": "peppery"}
        assert updates["Ingredient"].full is False
        assert updates["Category"].properties == {"name": "Herbs"}

    async def test_cleared_property_is_removed(self, session):
        basil = Ingredient(name="Basil", flavour="sweet")
        await session.save(basil)

        basil.flavour = None

        [update] = compute(session, basil)
        assert update.properties == {"flavour": None}

    async def test_untracked_entity_with_identity(self, factory, session):
        basil = Ingredient(name="Basil")
        await session.save(basil)

        async with factory.session() as other:
            [update] = other.changes.compute(basil, other.state)

        assert isinstance(update, UpdateNode)
        assert update.full is True
        assert update.identity == basil.id

    async def test_depth_limits_the_diff(self, session, herbs):
        basil = Ingredient(name="Basil", category=herbs)
        await session.save(basil)

        basil.flavour = "sweet"
        basil.category = None
        herbs.name = "Herbs"

        change_set = compute(session, basil, depth=0)

        assert change_set.summary() == {"UpdateNode": 1}
        assert change_set.operations[0].entity is basil


class TestRelationshipChanges:
    """Test plain relationships."""

    async def test_undirected_relationship_written_once(self, session):
        basil, mint = Ingredient(name="Basil"), Ingredient(name="Mint")
        basil.similar = [mint]
        mint.similar = [basil]

        change_set = compute(session, basil)

        assert len(change_set.of_type(CreateRelationship)) == 1

    async def test_duplicate_references_collapse(self, session, herbs):
        basil, mint = Ingredient(name="Basil"), Ingredient(name="Mint")
        basil.similar = [mint, mint]

        assert len(compute(session, basil).of_type(CreateRelationship)) == 1

    async def test_removed_reference_deletes_relationship(self, session, store, herbs):
        mint = Ingredient(name="Mint")
        basil = Ingredient(name="Basil", category=herbs, similar=[mint])
        await session.save(basil)

        basil.similar = []
        change_set = compute(session, basil)

        [delete] = change_set
        assert isinstance(delete, DeleteRelationship)
        assert delete.relationship_type == "SIMILAR_TO"
        assert store.graph.get_relationship(delete.identity).type == "SIMILAR_TO"
        assert change_set.of_type(DeleteNode) == []

    async def test_unresolved_field_produces_no_deletes(self, session):
        mint = Ingredient(name="Mint")
        basil = Ingredient(name="Basil", similar=[mint])
        await session.save(basil)
        session.clear()

        basil = await session.load(Ingredient, basil.id, depth=0)
        assert compute(session, basil).operations == []

        sage = Ingredient(name="Sage")
        basil.similar = [sage]
        change_set = compute(session, basil)

        assert change_set.of_type(DeleteRelationship) == []
        [create] = change_set.of_type(CreateRelationship)
        assert create.end is sage
        assert create.merge is False

    async def test_assigned_unloaded_field_merges_with_existing(self, session, store):
        mint = Ingredient(name="Mint")
        basil = Ingredient(name="Basil", similar=[mint])
        await session.save(basil)
        session.clear()

        basil = await session.load(Ingredient, basil.id, depth=0)
        mint = await session.load(Ingredient, mint.id, depth=0)
        basil.similar = [mint, Ingredient(name="Sage")]

        kept, new = compute(session, basil).of_type(CreateRelationship)
        assert kept.merge is True
        assert new.merge is False

        await session.save(basil)
        assert store.graph.relationship_count() == 2

    async def test_incoming_relationship_direction(self, session):
        from recipe_models import Recipe

        pesto = Recipe(title="Pesto")
        basil = Ingredient(name="Basil", recipes=[pesto])

        [create] = compute(session, basil).of_type(CreateRelationship)

        assert (create.relationship_type, create.start, create.end) == ("CONTAINS", pesto, basil)


class TestRelationshipEntityChanges:
    """Test relationship entities reached through node fields."""

    @pytest.fixture
    def basil(self):
        basil = Ingredient(name="Basil")
        basil.pairings = [Pairing(first=basil, second=Ingredient(name="Tomato"))]
        return basil

    async def test_new_relationship_entity(self, session, basil):
        change_set = compute(session, basil)

        assert change_set.summary() == {"CreateNode": 2, "CreateRelationship": 1}
        [create] = change_set.of_type(CreateRelationship)
        assert create.entity is basil.pairings[0]
        assert create.relationship_type == "PAIRS_WITH"
        assert create.properties == {"affinity": "good"}

    async def test_property_update(self, session, basil):
        await session.save(basil)
        pairing = basil.pairings[0]

        pairing.affinity = Affinity.GREAT

        [update] = compute(session, basil)
        assert isinstance(update, UpdateRelationship)
        assert update.identity == pairing.id
        assert update.properties == {"affinity": "great"}

    async def test_removal_deletes_relationship(self, session, basil):
        await session.save(basil)
        pairing = basil.pairings[0]

        basil.pairings = []

        [delete] = compute(session, basil)
        assert isinstance(delete, DeleteRelationship)
        assert delete.identity == pairing.id
        assert delete.entity is pairing

    async def test_endpoints_cannot_move(self, session, basil):
        mint = Ingredient(name="Mint")
        basil.similar = [mint]
        await session.save(basil)

        basil.pairings[0].second = mint

        with pytest.raises(MappingError, match="cannot be moved"):
            compute(session, basil)

    async def test_detached_relationship_entity(self, session, basil):
        strangers = Pairing(first=Ingredient(name="Mint"), second=Ingredient(name="Sage"))
        basil.pairings = [strangers]

        with pytest.raises(MappingError, match="not attached"):
            compute(session, basil)

    async def test_missing_endpoint(self, session):
        basil = Ingredient(name="Basil")
        basil.pairings = [Pairing(first=basil)]

        with pytest.raises(MappingError, match="needs both"):
            compute(session, basil)


class TestDeletion:
    """Test deletion change sets."""

    async def test_unsaved_entity(self, session):
        with pytest.raises(MappingError, match="never been saved"):
            session.changes.deletion(Ingredient(name="Basil"), session.state)

    async def test_node_and_relationship_deletion(self, session):
        basil = Ingredient(name="Basil")
        basil.pairings = [Pairing(first=basil, second=Ingredient(name="Tomato"))]
        await session.save(basil)

        [delete_node] = session.changes.deletion(basil, session.state)
        [delete_rel] = session.changes.deletion(basil.pairings[0], session.state)

        assert isinstance(delete_node, DeleteNode)
        assert delete_node.identity == basil.id
        assert isinstance(delete_rel, DeleteRelationship)
        assert delete_rel.relationship_type == "PAIRS_WITH"
