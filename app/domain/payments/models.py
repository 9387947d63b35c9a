import uuid
from app.core.database import Base
from enum import Enum
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Identity, Text, ForeignKey, Integer, TIMESTAMP, func, Enum as SQLEnum, CheckConstraint, \
    Uuid, text


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Identity(always=True), primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    # shared by every payment created by one register call; the gateway echoes it back
    checkout_reference: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_total: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(SQLEnum(PaymentStatus, name="payment_status"),
                                                  nullable=False, server_default=PaymentStatus.PENDING.value)
    refund_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    gateway_refund_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
    paid_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    registration: Mapped["Registration"] = relationship(back_populates="payment", lazy="selectin", uselist=False)

    __table_args__ = (
        CheckConstraint("amount_total >= 0", name="chk_payment_amount_nonneg"),
        CheckConstraint("platform_fee >= 0 AND platform_fee <= amount_total", name="chk_payment_fee_range"),
        CheckConstraint("quantity >= 1", name="chk_payment_quantity_pos"),
        CheckConstraint("refund_amount >= 0 AND refund_amount <= amount_total", name="chk_payment_refund_range"),
    )

    @property
    def organizer_amount(self) -> int:
        return self.amount_total - self.platform_fee
