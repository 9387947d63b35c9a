from sqlalchemy.orm import mapped_column, Mapped
from sqlalchemy import Identity, Text, Integer, CheckConstraint, TIMESTAMP, func, text
from app.core.database import Base
from datetime import datetime


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Identity(always=True), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    organizer_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    # NULL = unlimited; ticket type limits still apply
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    committed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("capacity IS NULL OR capacity >= 0", name="chk_event_capacity_nonneg"),
        CheckConstraint("committed >= 0", name="chk_event_committed_nonneg"),
        CheckConstraint("capacity IS NULL OR committed <= capacity", name="chk_event_not_oversold"),
    )
