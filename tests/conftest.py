# tests/conftest.py

from datetime import date

import pytest
import pytest_asyncio

from ogmalchemy import InMemoryGraphStore, MetadataRegistry, OGMSettings, SessionFactory

from recipe_models import RECIPE_ENTITIES, Category, Ingredient


@pytest.fixture
def registry() -> MetadataRegistry:
    return MetadataRegistry(RECIPE_ENTITIES)


@pytest.fixture
def store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def settings() -> OGMSettings:
    return OGMSettings(_env_file=None, default_depth=1)


@pytest.fixture
def factory(store, registry, settings) -> SessionFactory:
    return SessionFactory(store, registry, settings)


@pytest_asyncio.fixture
async def session(factory):
    async with factory.session() as session:
        yield session


@pytest.fixture
def herbs() -> Category:
    return Category(name="Herb")


@pytest.fixture
def pantry(herbs):
    """Eight ingredients added on consecutive days, all in the herb category."""
    names = ["Basil", "Thyme", "Mint", "Sage", "Dill", "Parsley", "Oregano", "Chives"]
    return [
        Ingredient(
            name=name,
            flavour="sweet" if index % 2 == 0 else "bitter",
            date_added=date(2024, 3, index + 1),
            tags=["fresh"] if index < 4 else ["dried"],
            category=herbs,
        )
        for index, name in enumerate(names)
    ]
