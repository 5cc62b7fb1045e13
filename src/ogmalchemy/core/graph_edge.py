from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Dict, Any, Optional

from ogmalchemy.core.graph_node import validate_wire_properties


class StoredRelationship(BaseModel):
    """
    A relationship held by the in-memory graph.

    Relationships are always stored with a direction; undirected relationship
    fields match them either way round.
    """

    id: str = Field(..., min_length=1, description="Database-assigned identity")
    type: str = Field(..., min_length=1, description="Relationship type")
    start: str = Field(..., min_length=1, description="Start node identity")
    end: str = Field(..., min_length=1, description="End node identity")
    properties: Dict[str, Any] = Field(
        default_factory=dict,
        description="Relationship properties"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "id": "31",
                "type": "PAIRS_WITH",
                "start": "12",
                "end": "14",
                "properties": {
                    "affinity": "EXCELLENT"
                }
            }
        }
    )

    @field_validator('type')
    @classmethod
    def validate_type(cls, v):
        """Validate relationship type."""
        if not v or not v.strip():
            raise ValueError("Relationship type cannot be empty")
        return v.strip()

    @field_validator('properties')
    @classmethod
    def validate_properties(cls, v):
        """Validate properties dictionary."""
        return validate_wire_properties(v)

    def update_properties(self, new_properties: Dict[str, Any]) -> None:
        """
        Update relationship properties; ``None`` removes a property.

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

    def other_end(self, node_id: str) -> Optional[str]:
        """Identity of the node at the other end, or None if not attached."""
        if node_id == self.start:
            return self.end
        if node_id == self.end:
            return self.start
        return None

    def connects(self, first: str, second: str) -> bool:
        """Check if the relationship joins the two nodes, in either direction."""
        return {self.start, self.end} == {first, second}

    @property
    def is_self_loop(self) -> bool:
        """Check if relationship is a self-loop."""
        return self.start == self.end
