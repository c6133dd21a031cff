from decimal import Decimal

import pytest
from pydantic import ValidationError

from storefront.models import (
    OrderStatus, ProductDB, from_minor_units, is_valid_id, new_id,
    next_order_status, to_minor_units, to_money,
)
from tests.fakes import SELLER_ID


class TestMoney:

    def test_rounds_half_up_to_cents(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(Decimal("10.004")) == Decimal("10.00")

    def test_float_goes_through_string(self):
        assert to_money(0.1 + 0.2) == Decimal("0.30")

    def test_minor_units(self):
        assert to_minor_units(Decimal("499.99")) == 49999
        assert from_minor_units(49999) == Decimal("499.99")


class TestProduct:

    def test_discounted_price(self):
        product = ProductDB(seller_id=SELLER_ID, name="Lamp", price="200", discount=15)
        assert product.discounted_price() == Decimal("170.00")

    def test_no_discount_keeps_price(self):
        product = ProductDB(seller_id=SELLER_ID, name="Lamp", price="19.99")
        assert product.discounted_price() == Decimal("19.99")

    def test_discount_over_100_rejected(self):
        with pytest.raises(ValidationError):
            ProductDB(seller_id=SELLER_ID, name="Lamp", price="10", discount=101)

    def test_negative_stock_rejected(self):
        with pytest.raises(ValidationError):
            ProductDB(seller_id=SELLER_ID, name="Lamp", price="10", stock=-1)


class TestOrderStatusFlow:

    def test_each_status_advances_one_step(self):
        assert next_order_status(OrderStatus.PENDING) == OrderStatus.DISPATCHED
        assert next_order_status(OrderStatus.DISPATCHED) == OrderStatus.SHIPPED
        assert next_order_status(OrderStatus.SHIPPED) == OrderStatus.DELIVERED

    def test_delivered_is_terminal(self):
        assert next_order_status(OrderStatus.DELIVERED) is None


def test_ids():
    assert is_valid_id(new_id())
    assert not is_valid_id("not-an-id")
    assert not is_valid_id(None)
