#!/usr/bin/env python3
"""
ogmalchemy Recipe Pairings Example

This example walks through a small flavour-pairing catalogue:
- Node and relationship entities declared with Pydantic V2
- Saving an object graph from its root, and re-saving without writes
- Depth-bounded loading with unresolved references at the horizon
- Store-side sorting and pagination
- Finder methods derived from their names

Runs against the in-memory store by default. Set OGM_EXAMPLE_NEO4J=1 to
use the Neo4j server configured through the OGM_* environment variables.
"""

import asyncio
import os
from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import Field

from ogmalchemy import (
    Direction,
    EndNode,
    GraphRepository,
    InMemoryGraphStore,
    MetadataRegistry,
    Neo4jGraphStore,
    NodeEntity,
    OGMSettings,
    Page,
    Related,
    RelationshipEntity,
    SessionFactory,
    Sort,
    StartNode,
    configure_logging,
    is_unresolved,
    node_entity,
    relationship_entity,
)


# =============================================================================
# DEFINE ENTITIES
# =============================================================================

class Affinity(str, Enum):
    GOOD = "good"
    GREAT = "great"
    EXCELLENT = "excellent"


@node_entity(label="Category")
class Category(NodeEntity):
    name: str = Field(min_length=1)


@node_entity(label="Ingredient")
class Ingredient(NodeEntity):
    name: str = Field(min_length=1)
    flavour: Optional[str] = None
    date_added: date = Field(default_factory=date.today)
    tags: List[str] = Field(default_factory=list)

    category = Related("HAS_CATEGORY", target="Category", many=False)
    pairings = Related(target="Pairing", direction=Direction.UNDIRECTED)


@relationship_entity(type="PAIRS_WITH")
class Pairing(RelationshipEntity):
    affinity: Affinity = Affinity.GOOD
    note: Optional[str] = None

    first = StartNode("Ingredient")
    second = EndNode("Ingredient")


class IngredientRepository(GraphRepository[Ingredient]):
    async def find_all_by_category_name_and_flavour(self, category, flavour):
        """Ingredients of one category with one flavour."""

    async def count_by_tags_containing(self, tag): ...


# =============================================================================
# DEMO
# =============================================================================

def create_store(settings: OGMSettings):
    if os.environ.get("OGM_EXAMPLE_NEO4J"):
        return Neo4jGraphStore.from_settings(settings)
    store = InMemoryGraphStore()
    store.add_unique_constraint("Ingredient", "name")
    return store


async def main():
    settings = OGMSettings()
    configure_logging(settings.log_level, log_json=settings.log_json)

    store = create_store(settings)
    factory = SessionFactory(store, MetadataRegistry([Category, Ingredient, Pairing]), settings)

    print("🌿 Building the pantry...")
    async with factory.session() as session:
        herbs = Category(name="Herb")
        vegetables = Category(name="Vegetable")

        basil = Ingredient(name="Basil", flavour="sweet", date_added=date(2024, 5, 1), tags=["fresh"], category=herbs)
        mint = Ingredient(name="Mint", flavour="sweet", date_added=date(2024, 5, 3), tags=["fresh"], category=herbs)
        sage = Ingredient(name="Sage", flavour="bitter", date_added=date(2024, 5, 4), tags=["dried"], category=herbs)
        tomato = Ingredient(name="Tomato", flavour="umami", date_added=date(2024, 5, 2), category=vegetables)

        basil.pairings = [
            Pairing(first=basil, second=tomato, affinity=Affinity.EXCELLENT, note="caprese"),
            Pairing(first=basil, second=mint),
        ]
        sage.pairings = [Pairing(first=sage, second=tomato, affinity=Affinity.GREAT)]

        await session.save(basil)
        await session.save(sage)
        print(f"   Saved {basil!r} and {sage!r}")

        # Unchanged graphs are not written again
        await session.save(basil)
        basil_id = basil.id

    print("\n🔎 Loading Basil one hop deep...")
    async with factory.session() as session:
        basil = await session.load(Ingredient, basil_id, depth=1)
        for pairing in basil.pairings:
            other = pairing.second if pairing.first is basil else pairing.first
            print(f"   Basil + {other.name}: {pairing.affinity.value}")
            print(f"   {other.name}'s own pairings loaded: {not is_unresolved(other.pairings)}")

        basil.pairings[0].affinity = Affinity.GREAT
        await session.save(basil)
        print("   Downgraded the caprese pairing")

    print("\n📅 Newest ingredients first, two per page:")
    async with factory.session() as session:
        for number in range(2):
            page = await session.load_all(
                Ingredient,
                sort=Sort.by("date_added").descending(),
                page=Page(number, 2),
                depth=0,
            )
            print(f"   Page {number}: {[i.name for i in page]}")

    print("\n🧭 Derived finders:")
    async with factory.session() as session:
        repository = IngredientRepository(session)
        sweet_herbs = await repository.find_all_by_category_name_and_flavour("Herb", "sweet")
        print(f"   Sweet herbs: {[i.name for i in sweet_herbs]}")
        print(f"   Fresh ingredients: {await repository.count_by_tags_containing('fresh')}")
        print(f"   Sage on file: {await repository.exists_by_name('Sage')}")

    await factory.close()


if __name__ == "__main__":
    asyncio.run(main())
