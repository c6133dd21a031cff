"""Payment intents, webhook reconciliation and refunds.

Webhooks are delivered at least once and in no particular order, so every
status change is a conditional transition: replays and late deliveries find
the record already past the expected state and leave it alone.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
import logging

from storefront.gateway import (
    EVENT_PAYMENT_FAILED, EVENT_PAYMENT_SUCCEEDED, PaymentGateway, PaymentIntent,
)
from storefront.models import (
    OrderDB, OrderStatus, PaymentDB, PaymentMethod, PaymentStatus,
    from_minor_units, is_valid_id, to_minor_units, to_money,
)
from storefront.repositories import OrderRepository, PaymentRepository
from storefront.schemas import PaymentConfigResponse, PaymentIntentResponse
from storefront.services.common import is_admin, require_valid_id
from storefront.shared.utils import (
    ConflictException, ForbiddenException, NotFoundException, PaymentProviderException,
    ValidationException,
)

logger = logging.getLogger(__name__)

PAID_STATUSES = (PaymentStatus.SUCCESS, PaymentStatus.REFUNDED)


def check_payment_amount(payment_method: PaymentMethod, amount: Decimal, order_total: Decimal):
    if payment_method == PaymentMethod.ONLINE and to_money(amount) != to_money(order_total):
        raise ValidationException("Payment amount must match order total for online payments")


class PaymentService:

    def __init__(
        self,
        payments: PaymentRepository,
        orders: OrderRepository,
        gateway: PaymentGateway,
        currency: str = "inr",
        min_charge: Decimal = Decimal("1.00"),
        publishable_key: str = "",
    ):
        self.payments = payments
        self.orders = orders
        self.gateway = gateway
        self.currency = currency.lower()
        self.min_charge = to_money(min_charge)
        self.publishable_key = publishable_key

    def config(self) -> PaymentConfigResponse:
        return PaymentConfigResponse(publishable_key=self.publishable_key, currency=self.currency)

    async def record_payment(self, order: OrderDB, amount: Decimal) -> PaymentDB:
        """Persist a pending payment for *order* and link it to the order."""
        check_payment_amount(order.payment_method, amount, order.total_amount)
        payment = await self.payments.insert(PaymentDB(
            user_id=order.user_id,
            order_id=order.id,
            amount=amount,
            payment_method=order.payment_method,
        ))
        await self.orders.set_payment(order.id, payment.id)
        return payment

    # --- Intents ---

    async def create_intent(self, user_id: str, order_id: str) -> PaymentIntentResponse:
        order = await self._owned_order(user_id, order_id, "Not authorized to pay for this order")

        if order.payment_method != PaymentMethod.ONLINE:
            raise ConflictException("Order does not require online payment")
        if order.order_status != OrderStatus.PENDING:
            raise ConflictException("Only pending orders can be paid")

        payment = await self.payments.get_by_order(order.id)
        if payment is not None and payment.status in PAID_STATUSES:
            raise ConflictException("Order already paid")

        if order.total_amount < self.min_charge:
            raise ValidationException(f"Amount must be at least {self.min_charge} {self.currency.upper()}")

        if payment is None:
            payment = await self.record_payment(order, order.total_amount)
        elif payment.status == PaymentStatus.FAILED:
            # A new attempt after a declined one
            payment = await self.payments.transition_status(
                payment.id, [PaymentStatus.FAILED], PaymentStatus.PENDING
            ) or await self.payments.get_by_order(order.id)
            if payment.status != PaymentStatus.PENDING:
                raise ConflictException("Order already paid")

        intent = await self._ensure_intent(payment, order)
        logger.info("Payment intent ready", extra={"order_id": order.id, "payment_id": intent.id})

        return PaymentIntentResponse(
            payment_id=intent.id,
            client_secret=intent.client_secret,
            amount=from_minor_units(intent.amount),
            currency=intent.currency,
        )

    async def _ensure_intent(self, payment: PaymentDB, order: OrderDB) -> PaymentIntent:
        if payment.provider_payment_id:
            return await self.gateway.update_intent(payment.provider_payment_id, order.total_amount, self.currency)

        intent = await self.gateway.create_intent(
            order.total_amount, self.currency, {"order_id": order.id, "user_id": order.user_id}
        )
        if await self.payments.attach_provider_intent(payment.id, intent.id):
            return intent

        # A concurrent request attached its intent first; reuse that one
        current = await self.payments.get_by_order(order.id)
        logger.warning(
            f"Discarding duplicate intent {intent.id}",
            extra={"order_id": order.id, "payment_id": current.provider_payment_id},
        )
        return await self.gateway.update_intent(current.provider_payment_id, order.total_amount, self.currency)

    # --- Webhooks ---

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> str:
        event = self.gateway.construct_event(payload, signature)
        extra = {"event_id": event.id, "event_type": event.type}

        if event.type == EVENT_PAYMENT_SUCCEEDED:
            payment = await self._apply_succeeded_event(event.object)
        elif event.type == EVENT_PAYMENT_FAILED:
            payment = await self._apply_failed_event(event.object)
        else:
            logger.info("Ignoring unhandled webhook event", extra=extra)
            return "Event ignored"

        logger.info(
            f"Webhook applied, payment is {payment.status.value}",
            extra={**extra, "order_id": payment.order_id, "payment_id": payment.provider_payment_id},
        )
        return "Webhook processed successfully"

    async def _apply_succeeded_event(self, intent: dict) -> PaymentDB:
        metadata = intent.get("metadata") or {}
        order_id = metadata.get("order_id")
        user_id = metadata.get("user_id")
        if not is_valid_id(order_id):
            raise ValidationException("Invalid order_id in payment metadata")
        if not is_valid_id(user_id):
            raise ValidationException("Invalid user_id in payment metadata")

        payment = await self._payment_for_intent(intent.get("id"))
        if payment.order_id != order_id or payment.user_id != user_id:
            raise ValidationException("Payment metadata does not match the payment record")

        return await self._mark_succeeded(payment)

    async def _apply_failed_event(self, intent: dict) -> PaymentDB:
        payment = await self._payment_for_intent(intent.get("id"))
        return await self._mark_failed(payment)

    async def _payment_for_intent(self, intent_id: Optional[str]) -> PaymentDB:
        if not intent_id:
            raise ValidationException("Missing payment intent id in event")
        payment = await self.payments.get_by_provider_id(intent_id)
        if payment is None:
            raise NotFoundException("Payment record not found")
        return payment

    async def _mark_succeeded(self, payment: PaymentDB) -> PaymentDB:
        if payment.status == PaymentStatus.REFUNDED:
            logger.warning("Success event for a refunded payment ignored", extra={"order_id": payment.order_id})
            return payment

        if payment.status != PaymentStatus.SUCCESS:
            payment = await self.payments.transition_status(
                payment.id,
                [PaymentStatus.PENDING, PaymentStatus.FAILED],
                PaymentStatus.SUCCESS,
                transaction_date=datetime.utcnow(),
            ) or await self.payments.get_by_provider_id(payment.provider_payment_id)

        # Also runs on replays, in case an earlier delivery stopped before this step
        order = await self.orders.transition_status(payment.order_id, OrderStatus.PENDING, OrderStatus.DISPATCHED)
        if order is None and payment.status == PaymentStatus.SUCCESS:
            if await self.orders.get(payment.order_id) is None:
                return await self._refund_orphaned(payment)
        return payment

    async def _refund_orphaned(self, payment: PaymentDB) -> PaymentDB:
        # The order was canceled or expired while the buyer was paying
        extra = {"order_id": payment.order_id, "payment_id": payment.provider_payment_id}
        logger.warning("Payment succeeded for an order that no longer exists, refunding", extra=extra)
        refund = await self.gateway.refund(payment.provider_payment_id, payment.amount)
        updated = await self.payments.transition_status(
            payment.id, [PaymentStatus.SUCCESS], PaymentStatus.REFUNDED, refund_id=refund.id
        )
        return updated or await self.payments.get_by_provider_id(payment.provider_payment_id)

    async def _mark_failed(self, payment: PaymentDB) -> PaymentDB:
        updated = await self.payments.transition_status(payment.id, [PaymentStatus.PENDING], PaymentStatus.FAILED)
        if updated is None:
            logger.info(f"Failure event ignored, payment already {payment.status.value}", extra={"order_id": payment.order_id})
            return payment
        return updated

    async def cancel_open_intent(self, payment: PaymentDB) -> bool:
        """Cancel the provider intent behind an unpaid payment.

        Returns False when the provider refuses, usually because the buyer
        completed the payment in the meantime.
        """
        if not payment.provider_payment_id:
            return True
        try:
            await self.gateway.cancel_intent(payment.provider_payment_id)
        except PaymentProviderException as exc:
            logger.warning(
                f"Could not cancel payment intent: {exc.detail}",
                extra={"order_id": payment.order_id, "payment_id": payment.provider_payment_id},
            )
            return False
        return True

    # --- Client-side verification ---

    async def verify_payment(self, user_id: str, order_id: str) -> PaymentDB:
        """Reconcile from the provider directly when the webhook is late."""
        order = await self._owned_order(user_id, order_id, "Not authorized")

        payment = await self.payments.get_by_order(order.id)
        if payment is None or not payment.provider_payment_id:
            raise NotFoundException("Payment record not found")

        intent = await self.gateway.retrieve_intent(payment.provider_payment_id)
        if intent.amount != to_minor_units(payment.amount):
            raise ValidationException("Payment amount mismatch")

        if intent.succeeded:
            return await self._mark_succeeded(payment)
        if intent.failed:
            return await self._mark_failed(payment)
        raise ConflictException("Payment not completed")

    # --- Refunds ---

    async def refund(self, provider_payment_id: str) -> PaymentDB:
        payment = await self.payments.get_by_provider_id(provider_payment_id)
        if payment is None:
            raise NotFoundException("Payment not found")
        if payment.status != PaymentStatus.SUCCESS:
            raise ConflictException("Only successful payments can be refunded")

        if await self.orders.get(payment.order_id) is None:
            raise NotFoundException("Associated order not found")

        refund = await self.gateway.refund(provider_payment_id, payment.amount)
        updated = await self.payments.transition_status(
            payment.id, [PaymentStatus.SUCCESS], PaymentStatus.REFUNDED, refund_id=refund.id
        )
        if updated is None:
            logger.error(
                f"Provider refund {refund.id} issued but the payment record changed",
                extra={"order_id": payment.order_id, "payment_id": provider_payment_id},
            )
            raise ConflictException("Payment was modified while the refund was issued")

        logger.info(f"Refunded {payment.amount}", extra={"order_id": payment.order_id, "payment_id": provider_payment_id})
        return updated

    # --- Read models ---

    async def get_by_order(self, user: dict, order_id: str) -> PaymentDB:
        require_valid_id(order_id, "order")
        payment = await self.payments.get_by_order(order_id)
        if payment is None:
            raise NotFoundException("Payment not found")
        if not is_admin(user) and payment.user_id != user["sub"]:
            raise ForbiddenException("Not authorized to view this payment")
        return payment

    async def _owned_order(self, user_id: str, order_id: str, denied: str) -> OrderDB:
        require_valid_id(order_id, "order")
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFoundException("Order not found")
        if order.user_id != user_id:
            raise ForbiddenException(denied)
        return order
