from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Dict, Any, List


WIRE_SCALARS = (bool, int, float, str)


def validate_wire_properties(properties: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check that every property holds a storable value.

    Storable values are numbers, booleans, text and homogeneous lists of
    these. ``None`` is not storable: a missing value is a missing property.
    """
    if properties is None:
        return {}

    for key, value in properties.items():
        if not isinstance(key, str):
            raise ValueError("All property keys must be strings")
        if isinstance(value, list):
            kinds = {_wire_kind(item, key) for item in value}
            if len(kinds) > 1:
                raise ValueError(f"Property '{key}' holds a list of mixed types")
        else:
            _wire_kind(value, key)
    return properties


def _wire_kind(value: Any, key: str) -> type:
    if isinstance(value, bool):
        return bool
    if isinstance(value, (int, float)):
        return float
    if isinstance(value, str):
        return str
    raise ValueError(f"Property '{key}' holds {type(value).__name__}, which cannot be stored")


class StoredNode(BaseModel):
    """
    A node held by the in-memory graph.

    Uses Pydantic so every write is checked against the storable value types.
    """

    id: str = Field(..., min_length=1, description="Database-assigned identity")
    labels: List[str] = Field(..., min_length=1, description="Node labels")
    properties: Dict[str, Any] = Field(
        default_factory=dict,
        description="Node properties"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "id": "12",
                "labels": ["Ingredient"],
                "properties": {
                    "name": "Basil",
                    "flavour": "sweet",
                    "tags": ["herb", "fresh"]
                }
            }
        }
    )

    @field_validator('labels')
    @classmethod
    def validate_labels(cls, v):
        """Ensure labels are not empty after stripping."""
        if any(not label or not label.strip() for label in v):
            raise ValueError("Labels cannot be empty")
        return [label.strip() for label in v]

    @field_validator('properties')
    @classmethod
    def validate_properties(cls, v):
        """Validate properties dictionary."""
        return validate_wire_properties(v)

    def update_properties(self, new_properties: Dict[str, Any]) -> None:
        """
        Update node properties; ``None`` removes a property.

        Args:
            new_properties: Properties to update/add/remove
        """
        merged = dict(self.properties)
        for key, value in new_properties.items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
        self.properties = merged

    def get_property(self, key: str, default: Any = None) -> Any:
        """
        Get a specific property value.

        Args:
            key: Property key to retrieve
            default: Default value if key not found

        Returns:
            Property value or default
        """
        return self.properties.get(key, default)

    def has_label(self, label: str) -> bool:
        return label in self.labels
