"""SQLAlchemy database models for the checkout service."""
import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """
    Order lifecycle states.

    Progression is strictly CREATED -> APPROVED -> COMPLETED.
    """

    CREATED = "CREATED"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def predecessors(self) -> frozenset:
        """States that may legally move forward into this one."""
        return frozenset(s for s in OrderStatus if s.rank < self.rank)


_STATUS_RANK = {
    OrderStatus.CREATED: 0,
    OrderStatus.APPROVED: 1,
    OrderStatus.COMPLETED: 2,
}


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Order(Base):
    """
    Orders table.

    One row per PayPal order created through this service. Amount and
    currency are fixed at creation; only status moves afterwards.
    """

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    processor_order_id: Mapped[str | None] = mapped_column(
        String(128), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status", native_enum=False, length=16),
        nullable=False,
        default=OrderStatus.CREATED,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="positive_total_amount"),
        CheckConstraint("length(currency) BETWEEN 3 AND 8", name="valid_currency"),
    )

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(id={self.id}, processor_order_id={self.processor_order_id}, "
            f"amount={self.total_amount} {self.currency}, status={self.status.value})>"
        )


class OrderEvent(Base):
    """
    Webhook audit trail table.

    One row per webhook event that resolved to a known order, whatever the
    outcome. Immutable once written.
    """

    __tablename__ = "order_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    order_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    transmission_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    resulting_status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (Index("idx_order_events_type", "event_type"),)

    def __repr__(self) -> str:
        """String representation of OrderEvent."""
        return (
            f"<OrderEvent(id={self.id}, order_id={self.order_id}, "
            f"type={self.event_type}, outcome={self.outcome})>"
        )
