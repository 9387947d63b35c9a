from uuid import UUID, uuid4
from app.core.database import Base
from enum import Enum
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Identity, text, Text, ForeignKey, Integer, TIMESTAMP, func, Enum as SQLEnum, \
    CheckConstraint, Boolean, Index, Uuid


class RegistrationPaymentStatus(str, Enum):
    NOT_REQUIRED = "NOT_REQUIRED"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[int] = mapped_column(Identity(always=True), primary_key=True)
    uuid: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True, default=uuid4,
                                       server_default=text("gen_random_uuid()"))
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    ticket_type_id: Mapped[int] = mapped_column(ForeignKey("ticket_types.id", ondelete="RESTRICT"),
                                                nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_required: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    payment_status: Mapped[RegistrationPaymentStatus] = mapped_column(
        SQLEnum(RegistrationPaymentStatus, name="registration_payment_status"),
        nullable=False,
        server_default=RegistrationPaymentStatus.NOT_REQUIRED.value
    )
    payment_id: Mapped[int | None] = mapped_column(ForeignKey("payments.id", ondelete="RESTRICT"),
                                                   nullable=True, unique=True)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    cancelled_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    ticket_type: Mapped["TicketType"] = relationship(lazy="selectin")
    payment: Mapped["Payment"] = relationship(back_populates="registration", lazy="selectin", uselist=False)

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="chk_registration_quantity_pos"),
        CheckConstraint("is_cancelled OR cancelled_at IS NULL", name="chk_registration_cancelled_at"),
        Index(
            "uq_registrations_user_ticket_type_active",
            "user_id",
            "ticket_type_id",
            unique=True,
            postgresql_where=text("NOT is_cancelled")
        ),
    )
