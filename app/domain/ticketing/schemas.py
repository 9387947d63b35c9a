from pydantic import BaseModel, Field, ConfigDict, field_validator
from app.core.text_utils import strip_text


class TicketTypeCreateDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    name: str = Field(min_length=1, max_length=100)
    price: int = Field(ge=0, description='Price in minor currency units (pence), 0 = free')
    capacity: int | None = Field(default=None, ge=0, description='NULL = unlimited')

    _strip_name = field_validator("name", mode="before")(strip_text)


class TicketTypeBulkCreateDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    tickets: list[TicketTypeCreateDTO] = Field(min_length=1)


class TicketTypeUpdateDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    name: str | None = Field(default=None, min_length=1, max_length=100)
    price: int | None = Field(default=None, ge=0)
    capacity: int | None = Field(default=None, ge=0)
    # capacity=None is ambiguous in a patch: set this to switch a ticket type to unlimited
    unlimited: bool = False

    _strip_name = field_validator("name", mode="before")(strip_text)


class TicketTypeDeleteDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    ticket_ids: list[int] = Field(min_length=1)


class TicketTypeReadDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra='forbid', populate_by_name=True)

    ticket_id: int = Field(validation_alias='id', serialization_alias='ticketId')
    ticket_name: str = Field(validation_alias='name', serialization_alias='ticketName')
    price: int
    capacity: int | None
    available: int | None
