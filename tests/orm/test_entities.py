"""
Tests for GraphEntity, NodeEntity and RelationshipEntity declarations.

These tests verify:
- Pydantic validation of scalar fields
- Relationship descriptors living outside the pydantic schema
- Frozen, database-assigned identities
- Identity-based equality and hashing
- Label and relationship type configuration
"""

import pytest
from datetime import date
from pydantic import ValidationError

from ogmalchemy.orm.entities import (
    GraphEntity,
    NodeEntity,
    node_entity,
    get_entity_classes,
    get_entity_by_label,
    camel_to_upper_snake,
)
from ogmalchemy.orm.fields import Direction, Related, Unresolved, is_unresolved
from ogmalchemy.orm.relationships import (
    RelationshipEntity,
    relationship_entity,
    get_relationship_by_type,
)

from recipe_models import Affinity, Category, Ingredient, Pairing, Recipe


class TestNodeEntityBasics:
    """Test scalar fields and validation."""

    def test_entity_creation(self):
        basil = Ingredient(name="Basil", date_added=date(2024, 5, 1))

        assert basil.name == "Basil"
        assert basil.flavour is None
        assert basil.tags == []
        assert basil.id is None

    def test_field_validation(self):
        with pytest.raises(ValidationError):
            Ingredient(name="")

        with pytest.raises(ValidationError):
            Recipe(title="Pesto", servings=0)

    def test_validate_assignment(self):
        basil = Ingredient(name="Basil")
        with pytest.raises(ValidationError):
            basil.name = ""
        assert basil.name == "Basil"

    def test_extra_fields_forbidden(self):
        with pytest.raises(ValidationError):
            Ingredient(name="Basil", colour="green")

    def test_identity_is_frozen(self):
        basil = Ingredient(name="Basil")
        with pytest.raises(ValidationError):
            basil.id = "42"

    def test_identity_equality_and_hash(self):
        first = Ingredient(name="Basil")
        second = Ingredient(name="Basil")

        assert first == first
        assert first != second
        assert len({first, second, first}) == 2

    def test_model_dump_excludes_relationships(self):
        herb = Category(name="Herb")
        basil = Ingredient(name="Basil", category=herb)

        dumped = basil.model_dump()

        assert dumped["name"] == "Basil"
        assert "category" not in dumped
        assert "pairings" not in dumped


class TestRelationshipFields:
    """Test Related descriptors."""

    def test_defaults(self):
        basil = Ingredient(name="Basil")
        assert basil.category is None
        assert basil.pairings == []
        assert basil.recipes == []

    def test_default_lists_are_per_instance(self):
        basil, mint = Ingredient(name="Basil"), Ingredient(name="Mint")
        basil.similar.append(mint)
        assert mint.similar == []

    def test_assignment_through_constructor_and_setattr(self):
        herb = Category(name="Herb")
        basil = Ingredient(name="Basil", category=herb)
        mint = Ingredient(name="Mint")

        basil.similar = (mint,)

        assert basil.category is herb
        assert basil.similar == [mint]
        assert isinstance(basil.similar, list)

    def test_none_on_many_field_becomes_empty_list(self):
        basil = Ingredient(name="Basil")
        basil.similar = None
        assert basil.similar == []

    def test_unresolved_value(self):
        basil = Ingredient(name="Basil")
        basil.similar = Unresolved("similar", "12")

        assert is_unresolved(basil.similar)
        with pytest.raises(TypeError, match="was not loaded"):
            list(basil.similar)

    def test_unresolved_equality(self):
        assert Unresolved("similar", "1") == Unresolved("similar", "1")
        assert Unresolved("similar", "1") != Unresolved("similar", "2")
        assert len({Unresolved("similar", "1"), Unresolved("similar", "1")}) == 1

    def test_relationship_field_cannot_be_deleted(self):
        basil = Ingredient(name="Basil")
        with pytest.raises(AttributeError):
            del basil.similar

    def test_descriptor_on_class(self):
        descriptor = Ingredient.similar
        assert isinstance(descriptor, Related)
        assert descriptor.relationship_type == "SIMILAR_TO"
        assert descriptor.direction is Direction.UNDIRECTED
        assert set(Ingredient.reference_fields()) == {"category", "pairings", "similar", "recipes"}

    def test_direction_accepts_strings(self):
        field = Related("KNOWS", target="Ingredient", direction="INCOMING")
        assert field.direction is Direction.INCOMING


class TestEntityConfiguration:
    """Test labels, relationship types and the class registry."""

    def test_default_label_is_class_name(self):
        class Utensil(NodeEntity):
            name: str

        assert Utensil._entity_config.label == "Utensil"
        assert Utensil in get_entity_classes()

    def test_node_entity_decorator(self):
        @node_entity(label="Spice")
        class SpiceEntity(NodeEntity):
            name: str

        assert SpiceEntity._entity_config.label == "Spice"
        assert get_entity_by_label("Spice") is SpiceEntity

    def test_node_entity_decorator_rejects_other_classes(self):
        with pytest.raises(TypeError):
            node_entity(label="Nope")(dict)

    def test_abstract_bases_are_not_registered(self):
        class Timestamped(NodeEntity):
            __abstract__ = True
            created: date = date(2024, 1, 1)

        class Pantry(Timestamped):
            name: str

        assert Timestamped not in get_entity_classes()
        assert Pantry in get_entity_classes()
        assert Pantry(name="Main").created == date(2024, 1, 1)

    def test_relationship_type_defaults(self):
        class GoesWellWith(RelationshipEntity):
            pass

        assert GoesWellWith._entity_config.relationship_type == "GOES_WELL_WITH"

    def test_relationship_entity_decorator(self):
        assert Pairing._entity_config.relationship_type == "PAIRS_WITH"
        assert get_relationship_by_type("PAIRS_WITH") is Pairing

        with pytest.raises(TypeError):
            relationship_entity(type="X")(Category)

    def test_relationship_entity_endpoints(self):
        basil, tomato = Ingredient(name="Basil"), Ingredient(name="Tomato")
        pairing = Pairing(first=basil, second=tomato, affinity="excellent")

        assert pairing.first is basil
        assert pairing.second is tomato
        assert pairing.affinity is Affinity.EXCELLENT
        assert pairing.id is None

    def test_base_classes_are_abstract(self):
        assert GraphEntity not in get_entity_classes()
        assert NodeEntity not in get_entity_classes()
        assert RelationshipEntity not in get_entity_classes()


@pytest.mark.parametrize(
    "name, expected",
    [
        ("PairsWith", "PAIRS_WITH"),
        ("Contains", "CONTAINS"),
        ("HTTPLink", "HTTP_LINK"),
        ("Step2Next", "STEP2_NEXT"),
    ],
)
def test_camel_to_upper_snake(name, expected):
    assert camel_to_upper_snake(name) == expected
