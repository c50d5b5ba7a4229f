"""
Order creation, listing and bulk deletion.

Creation is only complete once both the PayPal order and the local row
exist. If the insert fails after PayPal accepted the order, the remote id is
logged and counted for manual reconciliation and the failure is re-raised.
"""
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional

import structlog

from paypal_checkout.config import Settings, get_settings
from paypal_checkout.core.exceptions import (
    OrderNotFoundError,
    OrderValidationError,
    PersistenceError,
)
from paypal_checkout.database.models import Order, OrderStatus
from paypal_checkout.database.store import OrderStore
from paypal_checkout.integrations.paypal_client import PayPalClient
from paypal_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3,8}$")


@dataclass(frozen=True)
class OrderCreation:
    """A persisted order and where to send the buyer."""

    order: Order
    approval_url: str


class OrderService:
    """
    Orchestrates order creation against PayPal and the local store.
    """

    def __init__(
        self,
        store: OrderStore,
        paypal_client: PayPalClient,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.paypal_client = paypal_client

    @staticmethod
    def _validate_amount(amount: Any) -> Decimal:
        """
        Validate an order total.

        Raises:
            OrderValidationError: If the amount is not a positive value with
                at most two decimals
        """
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError) as e:
            raise OrderValidationError("Amount must be a decimal number") from e

        if not value.is_finite() or value <= 0:
            raise OrderValidationError("Amount must be positive")
        if value != value.quantize(Decimal("0.01")):
            raise OrderValidationError("Amount supports at most 2 decimal places")
        return value.quantize(Decimal("0.01"))

    @staticmethod
    def _validate_currency(currency: str) -> str:
        code = (currency or "").strip().upper()
        if not CURRENCY_PATTERN.match(code):
            raise OrderValidationError("Currency must be a 3-8 letter code")
        return code

    async def create_order(
        self,
        amount: Optional[Any] = None,
        currency: Optional[str] = None,
    ) -> OrderCreation:
        """
        Create a PayPal order and record it locally in CREATED.

        Args:
            amount: Order total (settings default if omitted)
            currency: Currency code (settings default if omitted)

        Returns:
            OrderCreation: Persisted order and approval URL

        Raises:
            OrderValidationError: If amount or currency is invalid
            GatewayError: If PayPal rejects the order
            CredentialExchangeError: If no access token can be obtained
            PersistenceError: If the local insert fails after remote creation
        """
        total = self._validate_amount(
            self.settings.order_default_amount if amount is None else amount
        )
        code = self._validate_currency(
            self.settings.order_default_currency if currency is None else currency
        )

        logger.info("create_order_started", amount=str(total), currency=code)
        created = await self.paypal_client.create_order(total, code)

        order = Order(
            processor_order_id=created.processor_order_id,
            status=OrderStatus.CREATED,
            total_amount=total,
            currency=code,
        )
        try:
            await self.store.insert(order)
        except PersistenceError:
            metrics.record_orphaned_remote_order()
            logger.error(
                "remote_order_not_persisted",
                processor_order_id=created.processor_order_id,
                amount=str(total),
                currency=code,
                action="reconcile manually",
            )
            raise

        metrics.record_order_created(code)
        logger.info(
            "create_order_completed",
            order_id=order.id,
            processor_order_id=created.processor_order_id,
        )
        return OrderCreation(order=order, approval_url=created.approval_url)

    async def list_orders(self) -> List[Order]:
        """List orders, most recent first."""
        return await self.store.list()

    async def delete_orders(self, order_ids: Optional[Iterable[Any]]) -> int:
        """
        Bulk-delete orders by local id.

        Args:
            order_ids: Local order ids (ints or numeric strings)

        Returns:
            int: Number of deleted orders

        Raises:
            OrderValidationError: If no ids were provided
            OrderNotFoundError: If none of the ids matched
        """
        ids = list(order_ids or [])
        if not ids:
            raise OrderValidationError("No order IDs provided")

        # Ids arrive as strings from the API; ones that are not integers can't match
        numeric_ids = set()
        for raw in ids:
            try:
                numeric_ids.add(int(str(raw).strip()))
            except ValueError:
                logger.debug("delete_orders_skipping_id", order_id=raw)

        deleted = await self.store.delete_many(sorted(numeric_ids))
        if deleted == 0:
            raise OrderNotFoundError("No orders found to delete")

        logger.info("orders_bulk_deleted", count=deleted)
        return deleted
