"""Base model for payloads exchanged with clients in camelCase."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Accepts and emits camelCase keys while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
