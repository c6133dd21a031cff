"""Payment provider client.

Talks to Stripe (payment intents, refunds) through the official ``stripe``
SDK and verifies signed webhook deliveries with it. Amounts cross this
boundary in minor units (cents); callers pass and receive ``Decimal`` amounts.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
import logging

import stripe
from fastapi import status
from pydantic import BaseModel, ValidationError as PydanticValidationError

from storefront.models import to_minor_units
from storefront.shared.utils import PaymentProviderException, Settings, ValidationException

logger = logging.getLogger(__name__)

EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"


class PaymentIntent(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    client_secret: Optional[str] = None
    metadata: dict = {}
    last_payment_error: Optional[dict] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def failed(self) -> bool:
        # A declined attempt drops the intent back to requires_payment_method
        if self.status == "canceled":
            return True
        return self.status == "requires_payment_method" and bool(self.last_payment_error)


class Refund(BaseModel):
    id: str
    amount: int
    status: str
    payment_intent: Optional[str] = None


class WebhookEvent(BaseModel):
    id: str
    type: str
    data: dict = {}

    @property
    def object(self) -> dict:
        return self.data.get("object") or {}


class PaymentGateway(ABC):
    """Boundary to the external payment provider."""

    def __init__(self, webhook_secret: str, tolerance: int = 300):
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    @abstractmethod
    async def create_intent(self, amount: Decimal, currency: str, metadata: dict) -> PaymentIntent: ...

    @abstractmethod
    async def update_intent(self, intent_id: str, amount: Decimal, currency: str) -> PaymentIntent: ...

    @abstractmethod
    async def retrieve_intent(self, intent_id: str) -> PaymentIntent: ...

    @abstractmethod
    async def cancel_intent(self, intent_id: str) -> PaymentIntent:
        """Cancel an unpaid intent so the buyer can no longer complete it."""

    @abstractmethod
    async def refund(self, intent_id: str, amount: Decimal) -> Refund: ...

    async def aclose(self):
        pass

    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent:
        """Verify the signature, then parse the event. Nothing is parsed before
        the signature checks out."""
        if not self.webhook_secret:
            raise PaymentProviderException("Webhook secret not configured", status.HTTP_500_INTERNAL_SERVER_ERROR)
        if not signature_header:
            raise PaymentProviderException("Missing webhook signature header", status.HTTP_400_BAD_REQUEST)

        try:
            stripe.Webhook.construct_event(payload, signature_header, self.webhook_secret, tolerance=self.tolerance)
        except stripe.SignatureVerificationError as exc:
            raise PaymentProviderException(
                f"Webhook signature verification failed: {exc.user_message}", status.HTTP_400_BAD_REQUEST
            )
        except ValueError:
            raise ValidationException("Invalid webhook payload")

        try:
            return WebhookEvent.model_validate_json(payload)
        except PydanticValidationError:
            raise ValidationException("Invalid webhook payload")


class StripeGateway(PaymentGateway):
    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        api_url: Optional[str] = None,
        tolerance: int = 300,
        timeout: float = 10.0,
        client: Optional[stripe.StripeClient] = None,
    ):
        super().__init__(webhook_secret, tolerance)
        self.http_client = None
        if client is None:
            self.http_client = stripe.HTTPXClient(timeout=timeout)
            client = stripe.StripeClient(
                secret_key,
                base_addresses={"api": api_url} if api_url else {},
                http_client=self.http_client,
                max_network_retries=0,
            )
        self.client = client

    @classmethod
    def from_settings(cls, config: Settings) -> "StripeGateway":
        return cls(
            secret_key=config.PAYMENT_SECRET_KEY,
            webhook_secret=config.PAYMENT_WEBHOOK_SECRET,
            api_url=config.PAYMENT_API_URL,
            tolerance=config.PAYMENT_WEBHOOK_TOLERANCE_SECONDS,
            timeout=config.PAYMENT_TIMEOUT_SECONDS,
        )

    async def _call(self, operation: str, method, *args, **kwargs):
        try:
            return await method(*args, **kwargs)
        except stripe.APIConnectionError as exc:
            logger.error(f"Payment provider unreachable during {operation}: {exc}")
            raise PaymentProviderException("Payment provider unavailable")
        except stripe.StripeError as exc:
            message = exc.user_message or f"HTTP {exc.http_status}"
            logger.error(f"Payment provider rejected {operation}: {message}")
            raise PaymentProviderException(f"Payment provider error: {message}")

    async def create_intent(self, amount: Decimal, currency: str, metadata: dict) -> PaymentIntent:
        params = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": {key: str(value) for key, value in metadata.items()},
        }
        intent = await self._call("create intent", self.client.payment_intents.create_async, params=params)
        return _to_intent(intent)

    async def update_intent(self, intent_id: str, amount: Decimal, currency: str) -> PaymentIntent:
        params = {"amount": to_minor_units(amount), "currency": currency.lower()}
        intent = await self._call("update intent", self.client.payment_intents.update_async, intent_id, params=params)
        return _to_intent(intent)

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        return _to_intent(await self._call("retrieve intent", self.client.payment_intents.retrieve_async, intent_id))

    async def cancel_intent(self, intent_id: str) -> PaymentIntent:
        params = {"cancellation_reason": "abandoned"}
        intent = await self._call("cancel intent", self.client.payment_intents.cancel_async, intent_id, params=params)
        return _to_intent(intent)

    async def refund(self, intent_id: str, amount: Decimal) -> Refund:
        # One full refund per intent; a repeated call returns the first refund
        refund = await self._call(
            "refund",
            self.client.refunds.create_async,
            params={"payment_intent": intent_id, "amount": to_minor_units(amount)},
            options={"idempotency_key": f"refund-{intent_id}"},
        )
        return Refund(
            id=refund["id"],
            amount=refund["amount"],
            status=refund["status"],
            payment_intent=refund.get("payment_intent"),
        )

    async def aclose(self):
        if self.http_client is not None:
            await self.http_client.close_async()


def _to_intent(intent) -> PaymentIntent:
    error = intent.get("last_payment_error")
    return PaymentIntent(
        id=intent["id"],
        amount=intent["amount"],
        currency=intent["currency"],
        status=intent["status"],
        client_secret=intent.get("client_secret"),
        metadata=dict(intent.get("metadata") or {}),
        last_payment_error=dict(error) if error else None,
    )
