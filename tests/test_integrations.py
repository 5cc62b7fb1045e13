# tests/test_integrations.py
"""
Integration tests for ogmalchemy.

Exercises the complete flow across sessions on one in-memory store:
saving object graphs, reloading them at a depth, detecting changes,
querying through repositories and recovering from failed saves.
"""

import pytest
from datetime import date

from ogmalchemy import (
    ConstraintViolationError,
    GraphRepository,
    InMemoryGraphStore,
    Page,
    SessionClosedError,
    SessionFactory,
    Sort,
    is_unresolved,
)

from recipe_models import Affinity, Category, Ingredient, Pairing, Recipe


class IngredientRepository(GraphRepository[Ingredient]):
    async def find_all_by_category_name_order_by_name(self, name): ...


class TestRecipeWorkflow:
    """Save, reload, modify and delete a small recipe graph."""

    async def test_complete_workflow(self, factory, store):
        # 1. Save a new object graph from its root
        async with factory.session() as session:
            herbs = Category(name="Herb")
            basil = Ingredient(name="Basil", flavour="sweet", date_added=date(2024, 5, 1), category=herbs)
            tomato = Ingredient(name="Tomato", flavour="umami", date_added=date(2024, 5, 2))
            basil.pairings = [Pairing(first=basil, second=tomato, affinity=Affinity.EXCELLENT)]

            await session.save(basil)

            assert store.graph.node_count() == 3
            assert store.graph.relationship_count() == 2
            assert store.write_count == 5

            # Saving again without changes writes nothing
            await session.save(basil)
            assert store.write_count == 5
            basil_id, tomato_id = basil.id, tomato.id

        # 2. Reload in a new unit of work and change one relationship property
        async with factory.session() as session:
            basil = await session.load(Ingredient, basil_id, depth=1)

            assert basil.category.name == "Herb"
            [pairing] = basil.pairings
            assert pairing.second.name == "Tomato"
            assert is_unresolved(pairing.second.pairings)

            pairing.affinity = Affinity.GREAT
            await session.save(basil)

            assert store.write_count == 6
            assert store.graph.get_relationship(pairing.id).properties["affinity"] == "great"

            # 3. Removing the pairing deletes the relationship, not the nodes
            basil.pairings = []
            await session.save(basil)

            assert store.write_count == 7
            assert store.graph.relationship_count() == 1
            assert tomato_id in store.graph

        # 4. Delete a node from a third session
        async with factory.session() as session:
            tomato = await session.load(Ingredient, tomato_id)
            await session.delete(tomato)

            assert tomato.id is None
            assert await session.count(Ingredient) == 1

    async def test_cycles_are_saved_and_loaded_once(self, factory, store):
        async with factory.session() as session:
            basil = Ingredient(name="Basil")
            mint = Ingredient(name="Mint", similar=[basil])
            basil.similar = [mint]

            await session.save(basil)

            assert store.graph.node_count() == 2
            assert store.graph.relationship_count() == 1

        async with factory.session() as session:
            basil = await session.load(Ingredient, basil.id, depth=-1)

            [mint] = basil.similar
            assert mint.similar == [basil]

            writes = store.write_count
            await session.save(basil)
            assert store.write_count == writes

    async def test_recipe_lists_ingredients_from_the_incoming_side(self, factory):
        async with factory.session() as session:
            basil = Ingredient(name="Basil")
            tomato = Ingredient(name="Tomato")
            await session.save(Recipe(title="Caprese", servings=4, ingredients=[basil, tomato]))

        async with factory.session() as session:
            basil = await session.load(Ingredient, basil.id, depth=1)
            [caprese] = basil.recipes

            assert caprese.title == "Caprese"
            assert caprese.servings == 4


class TestQueries:
    """Store-side sorting, pagination and derived finders across sessions."""

    async def test_load_all_reflects_committed_state(self, factory, pantry):
        async with factory.session() as writer:
            for ingredient in pantry:
                await writer.save(ingredient)

        async with factory.session() as reader:
            newest = await reader.load_all(Ingredient, sort=Sort.by("date_added").descending(), page=Page(0, 3))
            assert [i.name for i in newest] == ["Chives", "Oregano", "Parsley"]

            async with factory.session() as writer:
                await writer.save(Ingredient(name="Fennel", date_added=date(2024, 4, 1)))

            newest = await reader.load_all(Ingredient, sort=Sort.by("date_added").descending(), page=Page(0, 3))
            assert [i.name for i in newest] == ["Fennel", "Chives", "Oregano"]

    async def test_repository_finder(self, factory, pantry):
        async with factory.session() as session:
            for ingredient in pantry:
                await session.save(ingredient)
            await session.save(Ingredient(name="Cumin", category=Category(name="Spice")))

        async with factory.session() as session:
            repository = IngredientRepository(session)

            herbs = await repository.find_all_by_category_name_order_by_name("Herb")
            spices = await repository.find_all_by_category_name_order_by_name("Spice")

            assert [i.name for i in herbs] == sorted(i.name for i in pantry)
            assert [i.name for i in spices] == ["Cumin"]


class TestFailureRecovery:
    """A failed save leaves the session able to retry."""

    async def test_retry_after_constraint_violation(self, registry, settings):
        store = InMemoryGraphStore()
        store.add_unique_constraint("Ingredient", "name")
        factory = SessionFactory(store, registry, settings)

        async with factory.session() as session:
            herbs = Category(name="Herb")
            await session.save(Ingredient(name="Basil", category=herbs))

            duplicate = Ingredient(name="Basil", category=herbs)
            with pytest.raises(ConstraintViolationError):
                await session.save(duplicate)

            assert duplicate.id is None
            assert session.is_dirty(duplicate)
            assert store.graph.node_count() == 2

            duplicate.name = "Thai Basil"
            await session.save(duplicate)

            assert duplicate.id is not None
            assert not session.is_dirty(duplicate)
            assert store.graph.node_count() == 3

    async def test_session_is_released_on_error(self, factory):
        with pytest.raises(RuntimeError):
            async with factory.session() as session:
                raise RuntimeError("request failed")

        assert session.closed
        with pytest.raises(SessionClosedError):
            await session.load(Ingredient, "1")
