from storefront.services.cart import CartService
from storefront.services.orders import OrderService
from storefront.services.payments import PaymentService, check_payment_amount

__all__ = ["CartService", "OrderService", "PaymentService", "check_payment_amount"]
