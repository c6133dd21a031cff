from datetime import datetime, timedelta
from typing import Optional
import asyncio
import contextlib
import logging

from storefront.models import PaymentMethod, PaymentStatus
from storefront.repositories import OrderRepository, PaymentRepository
from storefront.services.orders import OrderService
from storefront.services.payments import PaymentService

logger = logging.getLogger(__name__)


class PendingOrderSweeper:
    """Cancels online orders left unpaid for longer than ``ttl`` and restocks them.

    The provider intent is canceled before the order goes, so a buyer cannot
    pay for stock that was already released. Runs as a background task owned
    by the application; cash-on-delivery orders stay pending until the seller
    dispatches them and are never swept.
    """

    def __init__(
        self,
        orders: OrderRepository,
        payments: PaymentRepository,
        order_service: OrderService,
        payment_service: PaymentService,
        ttl: timedelta,
        interval: float,
    ):
        self.orders = orders
        self.payments = payments
        self.order_service = order_service
        self.payment_service = payment_service
        self.ttl = ttl
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def sweep_once(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or datetime.utcnow()) - self.ttl
        expired = 0
        for order in await self.orders.list_pending_before(cutoff):
            if order.payment_method != PaymentMethod.ONLINE:
                continue

            payment = await self.payments.get_by_order(order.id)
            if payment is not None and payment.status == PaymentStatus.SUCCESS:
                continue
            if payment is not None and not await self.payment_service.cancel_open_intent(payment):
                continue

            if not await self.order_service.expire_order(order):
                continue
            if payment is not None:
                await self.payments.transition_status(payment.id, [PaymentStatus.PENDING], PaymentStatus.FAILED)

            logger.info("Expired unpaid order", extra={"order_id": order.id, "user_id": order.user_id})
            expired += 1

        if expired:
            logger.info(f"Pending order sweep expired {expired} order(s)", extra={"count": expired})
        return expired

    async def run(self):
        while True:
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Pending order sweep failed")
            await asyncio.sleep(self.interval)

    def start(self):
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
