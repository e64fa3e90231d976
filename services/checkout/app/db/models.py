from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class PendingOrder(Base):
    """Pending-order marker that survives the redirect to the payment gateway.

    A single durable key: at most one row, keyed by ``slot``.
    """

    __tablename__ = "pending_orders"

    slot: Mapped[str] = mapped_column(String, primary_key=True)
    order_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
