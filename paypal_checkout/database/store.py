"""
Order persistence.

Every method runs in its own short transaction. Status changes go through a
single conditional UPDATE so that concurrent writers for the same order are
serialized by the database: at most one of them sees its precondition hold.
"""
from typing import Iterable, List, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paypal_checkout.core.exceptions import PersistenceError
from paypal_checkout.database.models import Order, OrderEvent, OrderStatus

logger = structlog.get_logger(__name__)


class OrderStore:
    """
    Persistence abstraction for orders.

    Wraps every SQLAlchemy failure in PersistenceError with enough context
    to reconcile by hand.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize order store.

        Args:
            session_factory: Async session factory bound to the orders database
        """
        self.session_factory = session_factory

    async def list(self) -> List[Order]:
        """
        List all orders, most recent first.

        Returns:
            List[Order]: Detached order rows
        """
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Order).order_by(Order.created_at.desc(), Order.id.desc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("order_list_failed", error=str(e))
            raise PersistenceError(f"Failed to list orders: {e}") from e

    async def find(self, order_id: int) -> Optional[Order]:
        """Look up an order by local id."""
        try:
            async with self.session_factory() as session:
                return await session.get(Order, order_id)
        except SQLAlchemyError as e:
            logger.error("order_lookup_failed", order_id=order_id, error=str(e))
            raise PersistenceError(f"Failed to load order {order_id}: {e}") from e

    async def find_by_processor_id(self, processor_order_id: str) -> Optional[Order]:
        """
        Look up an order by its PayPal order id.

        Args:
            processor_order_id: PayPal-assigned order id

        Returns:
            Optional[Order]: The matching order, or None
        """
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Order).where(Order.processor_order_id == processor_order_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "order_lookup_failed",
                processor_order_id=processor_order_id,
                error=str(e),
            )
            raise PersistenceError(
                f"Failed to load order for PayPal id {processor_order_id}: {e}"
            ) from e

    async def insert(self, order: Order) -> Order:
        """
        Persist a new order.

        Args:
            order: Transient order instance

        Returns:
            Order: The same instance with its id assigned
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(order)
                    await session.flush()
            logger.info(
                "order_inserted",
                order_id=order.id,
                processor_order_id=order.processor_order_id,
            )
            return order
        except SQLAlchemyError as e:
            logger.error(
                "order_insert_failed",
                processor_order_id=order.processor_order_id,
                amount=str(order.total_amount),
                currency=order.currency,
                error=str(e),
            )
            raise PersistenceError(
                f"Failed to persist order {order.processor_order_id}: {e}"
            ) from e

    async def update_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        expected: Optional[OrderStatus | Iterable[OrderStatus]] = None,
    ) -> bool:
        """
        Move an order to a new status if its current status allows it.

        The check and the write are one UPDATE statement, so two callers
        racing on the same order cannot both succeed.

        Args:
            order_id: Local order id
            new_status: Target status
            expected: Status(es) the order must currently be in; defaults to
                every status strictly before new_status

        Returns:
            bool: True if the row was updated
        """
        if expected is None:
            allowed = new_status.predecessors()
        elif isinstance(expected, OrderStatus):
            allowed = frozenset([expected])
        else:
            allowed = frozenset(expected)

        # Never move backwards, whatever the caller asked for
        allowed = frozenset(s for s in allowed if s.rank < new_status.rank)
        if not allowed:
            return False

        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status.in_(allowed))
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "order_status_update_failed",
                order_id=order_id,
                new_status=new_status.value,
                error=str(e),
            )
            raise PersistenceError(
                f"Failed to move order {order_id} to {new_status.value}: {e}"
            ) from e

        applied = result.rowcount == 1
        logger.info(
            "order_status_update",
            order_id=order_id,
            new_status=new_status.value,
            applied=applied,
        )
        return applied

    async def delete_many(self, order_ids: Iterable[int]) -> int:
        """
        Delete orders by local id.

        Args:
            order_ids: Local order ids

        Returns:
            int: Number of rows removed
        """
        ids = list(order_ids)
        if not ids:
            return 0
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(OrderEvent).where(OrderEvent.order_id.in_(ids))
                    )
                    result = await session.execute(
                        delete(Order)
                        .where(Order.id.in_(ids))
                        .execution_options(synchronize_session=False)
                    )
        except SQLAlchemyError as e:
            logger.error("order_delete_failed", order_ids=ids, error=str(e))
            raise PersistenceError(f"Failed to delete orders: {e}") from e

        logger.info("orders_deleted", requested=len(ids), deleted=result.rowcount)
        return result.rowcount

    async def record_event(
        self,
        order_id: int,
        event_type: str,
        outcome: str,
        resulting_status: OrderStatus,
        transmission_id: Optional[str] = None,
    ) -> None:
        """
        Append a webhook event to the audit trail.

        Args:
            order_id: Local order id
            event_type: PayPal event type
            outcome: applied / ignored / unhandled / capture_failed
            resulting_status: Order status after the event
            transmission_id: PayPal transmission id, when known
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(
                        OrderEvent(
                            order_id=order_id,
                            event_type=event_type,
                            outcome=outcome,
                            resulting_status=resulting_status.value,
                            transmission_id=transmission_id,
                        )
                    )
        except SQLAlchemyError as e:
            logger.error(
                "order_event_record_failed",
                order_id=order_id,
                event_type=event_type,
                error=str(e),
            )
            raise PersistenceError(f"Failed to record event for order {order_id}: {e}") from e
