from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator, AliasPath
from app.domain.registrations.models import RegistrationPaymentStatus


class RegistrationRequestDTO(BaseModel):
    """`ticket_quantities` maps ticket type id -> quantity requested in this call."""
    model_config = ConfigDict(extra='forbid')

    ticket_quantities: dict[int, int] = Field(min_length=1)

    @field_validator("ticket_quantities")
    @classmethod
    def _quantities_positive(cls, value: dict[int, int]) -> dict[int, int]:
        bad = sorted(tid for tid, qty in value.items() if qty < 1)
        if bad:
            raise ValueError(f"Quantity must be at least 1 (ticket types: {bad})")
        return value


class RegistrationResultDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    success: bool = True
    registration_ids: list[int]
    payment_required: bool
    checkout_reference: UUID | None = None
    amount_due: int = 0
    expires_at: datetime | None = None


class RegistrationStatusDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    event_id: int
    registered: bool


class RegistrationReadDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra='forbid')

    id: int
    uuid: UUID
    event_id: int
    user_id: int
    ticket_type_id: int
    ticket_name: str = Field(validation_alias=AliasPath('ticket_type', 'name'))
    quantity: int
    name: str | None
    email: str | None
    payment_required: bool
    payment_status: RegistrationPaymentStatus
    is_cancelled: bool
    cancelled_at: datetime | None
    created_at: datetime
