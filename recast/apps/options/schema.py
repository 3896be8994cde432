"""
schema.py — Option Generator Models
===================================
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from recast.core.models import CreativityMode


class GenerateOptionsRequest(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"example": {"prompt": "fruits", "playerCount": 3, "creativity": "normal"}},
    )

    prompt: str = Field(..., min_length=1, max_length=200, description="Category to generate items for")
    player_count: int = Field(..., ge=1, le=32, description="Exact number of items wanted")
    creativity: CreativityMode = CreativityMode.NORMAL


class GenerateOptionsResponse(BaseModel):
    options: list[str]
