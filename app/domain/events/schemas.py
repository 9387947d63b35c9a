from pydantic import BaseModel, Field, ConfigDict, field_validator
from datetime import datetime
from app.core.text_utils import strip_text


class EventCreateDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    name: str = Field(min_length=3, max_length=200)
    capacity: int | None = Field(default=None, ge=0)

    _strip_name = field_validator("name", mode="before")(strip_text)


class EventReadDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra='forbid')

    id: int
    name: str
    organizer_id: int
    capacity: int | None
    committed: int
    created_at: datetime


class CapacityReadDTO(BaseModel):
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    success: bool = True
    space_available: bool = Field(serialization_alias="spaceAvailable")
    capacity: int | None
    committed: int
