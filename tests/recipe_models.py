# tests/recipe_models.py
"""Recipe domain shared by the test-suite."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import Field

from ogmalchemy import (
    Direction,
    EndNode,
    NodeEntity,
    Property,
    Related,
    RelationshipEntity,
    StartNode,
    node_entity,
    relationship_entity,
)


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
    date_added: date = date(2024, 1, 1)
    tags: List[str] = Field(default_factory=list)

    category = Related("HAS_CATEGORY", target="Category", many=False)
    pairings = Related(target="Pairing", direction=Direction.UNDIRECTED)
    similar = Related("SIMILAR_TO", target="Ingredient", direction=Direction.UNDIRECTED)
    recipes = Related("CONTAINS", target="Recipe", direction=Direction.INCOMING)


@relationship_entity(type="PAIRS_WITH")
class Pairing(RelationshipEntity):
    affinity: Affinity = Affinity.GOOD
    note: Optional[str] = None

    first = StartNode("Ingredient")
    second = EndNode("Ingredient")


@node_entity(label="Recipe")
class Recipe(NodeEntity):
    title: str
    servings: int = Field(default=2, ge=1)
    cost: Annotated[Optional[Decimal], Property(name="cost_eur")] = None

    ingredients = Related("CONTAINS", target="Ingredient")


RECIPE_ENTITIES = [Category, Ingredient, Pairing, Recipe]
