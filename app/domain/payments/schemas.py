from datetime import datetime
from uuid import UUID
from pydantic import AliasPath, BaseModel, ConfigDict, Field, field_validator
from app.core.text_utils import strip_text
from app.domain.payments.models import PaymentStatus


class PaymentReadDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra='forbid')

    id: int
    event_id: int
    checkout_reference: UUID
    amount_total: int
    platform_fee: int
    quantity: int
    status: PaymentStatus
    refund_amount: int
    created_at: datetime
    paid_at: datetime | None
    expires_at: datetime | None


class RefundRequestDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    registration_uuid: UUID
    reason: str | None = Field(default=None, max_length=500)

    _strip_reason = field_validator("reason", mode="before")(strip_text)


class RefundReadDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    id: str
    amount: int
    status: str


class RefundResponseDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    success: bool = True
    refund: RefundReadDTO


class RecentPaymentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra='forbid')

    id: int
    amount_total: int
    payment_status: PaymentStatus = Field(validation_alias='status')
    quantity: int
    user_name: str | None = Field(default=None, validation_alias=AliasPath("registration", "name"))
    created_at: datetime


class RevenueSummaryDTO(BaseModel):
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    total_revenue: int = Field(serialization_alias='totalRevenue')
    platform_fee: int = Field(serialization_alias='platformFee')
    organizer_earnings: int = Field(serialization_alias='organizerEarnings')
    refunded_amount: int = Field(serialization_alias='refundedAmount')
    pending_amount: int = Field(serialization_alias='pendingAmount')
    total_transactions: int = Field(serialization_alias='totalTransactions')
    successful_payments: int = Field(serialization_alias='successfulPayments')
    failed_payments: int = Field(serialization_alias='failedPayments')
    average_transaction_value: int = Field(serialization_alias='averageTransactionValue')
    recent_payments: list[RecentPaymentDTO] = Field(default_factory=list, serialization_alias='recentPayments')


class RevenueResponseDTO(BaseModel):
    model_config = ConfigDict(extra='forbid')

    success: bool = True
    revenue: RevenueSummaryDTO


class ExpiryStatsDTO(BaseModel):
    payments_expired: int
    registrations_cancelled: int
    seats_released: int


class WebhookAckDTO(BaseModel):
    received: bool = True
    duplicate: bool = False
    handled: bool = False
