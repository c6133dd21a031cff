from datetime import timedelta
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from storefront.gateway import PaymentGateway, StripeGateway
from storefront.mongo_repositories import (
    MongoAddressRepository, MongoCartRepository, MongoOrderRepository,
    MongoPaymentRepository, MongoProductRepository,
)
from storefront.repositories import (
    AddressRepository, CartRepository, OrderRepository, PaymentRepository,
    ProductRepository,
)
from storefront.services import CartService, OrderService, PaymentService
from storefront.shared.utils import Settings
from storefront.sweeper import PendingOrderSweeper


class ServiceContainer:
    """Services shared by every request, built once at startup.

    The payment gateway and the sweeper live and die with the container.
    """

    def __init__(
        self,
        config: Settings,
        products: ProductRepository,
        addresses: AddressRepository,
        carts: CartRepository,
        orders: OrderRepository,
        payments: PaymentRepository,
        gateway: PaymentGateway,
    ):
        self.config = config
        self.gateway = gateway
        self.cart_service = CartService(carts, products)
        self.order_service = OrderService(orders, products, carts, addresses, payments)
        self.payment_service = PaymentService(
            payments,
            orders,
            gateway,
            currency=config.CURRENCY,
            min_charge=config.MIN_CHARGE_AMOUNT,
            publishable_key=config.PAYMENT_PUBLISHABLE_KEY,
        )
        self.sweeper: Optional[PendingOrderSweeper] = None
        if config.PENDING_ORDER_TTL_MINUTES > 0:
            self.sweeper = PendingOrderSweeper(
                orders,
                payments,
                self.order_service,
                self.payment_service,
                ttl=timedelta(minutes=config.PENDING_ORDER_TTL_MINUTES),
                interval=config.PENDING_ORDER_SWEEP_INTERVAL_SECONDS,
            )

    @classmethod
    def from_database(cls, db: AsyncIOMotorDatabase, config: Settings) -> "ServiceContainer":
        return cls(
            config,
            products=MongoProductRepository(db),
            addresses=MongoAddressRepository(db),
            carts=MongoCartRepository(db),
            orders=MongoOrderRepository(db),
            payments=MongoPaymentRepository(db),
            gateway=StripeGateway.from_settings(config),
        )

    def start(self):
        if self.sweeper is not None:
            self.sweeper.start()

    async def close(self):
        if self.sweeper is not None:
            await self.sweeper.stop()
        await self.gateway.aclose()
