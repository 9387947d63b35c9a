from app.core.database import Base
from datetime import datetime
from sqlalchemy import Identity, ForeignKey, CheckConstraint, Index, Text, Integer, TIMESTAMP, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship


class TicketType(Base):
    __tablename__ = "ticket_types"

    id: Mapped[int] = mapped_column(Identity(always=True), primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="RESTRICT"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    # minor currency units, 0 = free
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    committed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )
    # soft delete: cancelled registrations keep pointing at the row
    deleted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    event: Mapped["Event"] = relationship(lazy="selectin")

    __table_args__ = (
        Index(
            "uq_ticket_type_event_name_live",
            "event_id",
            "name",
            unique=True,
            postgresql_where=text("deleted_at IS NULL")
        ),
        CheckConstraint("price >= 0", name="chk_ticket_price_nonneg"),
        CheckConstraint("capacity IS NULL OR capacity >= 0", name="chk_ticket_capacity_nonneg"),
        CheckConstraint("committed >= 0", name="chk_ticket_committed_nonneg"),
        CheckConstraint("capacity IS NULL OR committed <= capacity", name="chk_ticket_not_oversold"),
    )

    @property
    def available(self) -> int | None:
        if self.capacity is None:
            return None
        return max(self.capacity - (self.committed or 0), 0)

    @property
    def is_free(self) -> bool:
        return self.price == 0
