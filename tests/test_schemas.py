"""Tests for record helpers and derived values."""

from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.schemas import (
    Address,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    Role,
    User,
    to_money,
    utc_now,
)
from storefront.security import authorities, authority_for


def make_user(**fields):
    data = {
        "username": "alice",
        "email": "alice@example.com",
        "password_hash": "x",
        "first_name": "Alice",
        "last_name": "Liddell",
    }
    data.update(fields)
    return User(**data)


def make_order(status=OrderStatus.PENDING, items=()):
    return Order(
        order_number="ORD-1",
        user_id="u1",
        status=status,
        shipping_address_id="a1",
        billing_address_id="a1",
        items=list(items),
    )


def make_item(quantity=1, unit_price="1.00"):
    return OrderItem(product_id="p1", quantity=quantity, unit_price=unit_price,
                     product_name="Thing", product_sku="T-1")


class TestMoney:
    def test_quantizes_half_up(self):
        assert to_money("2.345") == Decimal("2.35")
        assert to_money(0.1) == Decimal("0.10")
        assert to_money(3) == Decimal("3.00")

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_money("ten dollars")


class TestUser:
    def test_full_name(self):
        assert make_user().full_name == "Alice Liddell"

    def test_pending_user_is_not_enabled(self):
        user = make_user()
        assert not user.is_enabled()
        assert not user.can_sign_in()

    def test_active_user_can_sign_in(self):
        assert make_user(status="ACTIVE").can_sign_in()

    def test_future_lockout_time_locks(self):
        now = utc_now()
        user = make_user(status="ACTIVE", lockout_time=now + timedelta(minutes=5))

        assert not user.is_account_non_locked(now)
        assert user.is_account_non_locked(now + timedelta(minutes=10))

    def test_lock_flag_locks_regardless_of_time(self):
        user = make_user(status="ACTIVE", account_non_locked=False)
        assert not user.is_account_non_locked()

    def test_authorities(self):
        assert authority_for(Role.INVENTORY_MANAGER) == "ROLE_INVENTORY_MANAGER"
        assert authorities([Role.USER, Role.ADMIN]) == ["ROLE_USER", "ROLE_ADMIN"]
        assert make_user(roles=["ADMIN"]).has_role(Role.ADMIN, Role.MANAGER)


class TestProduct:
    def make(self, **fields):
        data = {"name": "Lamp", "sku": "L-1", "price": "9.99", "category_id": "c1"}
        data.update(fields)
        return Product(**data)

    def test_availability(self):
        assert self.make(stock_quantity=1).is_available()
        assert not self.make(stock_quantity=0).is_available()
        assert not self.make(stock_quantity=5, active=False).is_available()
        assert not self.make(stock_quantity=5, status="DISCONTINUED").is_available()

    def test_low_stock_includes_threshold(self):
        assert self.make(stock_quantity=10, minimum_stock_level=10).is_low_stock()
        assert not self.make(stock_quantity=11, minimum_stock_level=10).is_low_stock()


class TestAddress:
    def make(self, **fields):
        data = {
            "user_id": "u1",
            "street_address": "1 Main St",
            "city": "Springfield",
            "state": "IL",
            "postal_code": "62701",
            "country": "US",
        }
        data.update(fields)
        return Address(**data)

    def test_full_address(self):
        assert self.make().full_address() == "1 Main St, Springfield, IL 62701, US"
        assert self.make(address_line2="Apt 4").full_address() == "1 Main St, Apt 4, Springfield, IL 62701, US"
        assert self.make(address_line2="  ").full_address() == "1 Main St, Springfield, IL 62701, US"

    def test_recipient_name_falls_back_to_user(self):
        assert self.make(first_name="Bob", last_name="Builder").recipient_name(make_user()) == "Bob Builder"
        assert self.make(first_name="Bob").recipient_name(make_user()) == "Alice Liddell"


class TestOrder:
    def test_item_total_is_derived(self):
        assert make_item(quantity=3, unit_price="2.50").total_price == Decimal("7.50")

    def test_recompute_after_quantity_change(self):
        item = make_item(quantity=1, unit_price="2.50")
        order = make_order(items=[item])
        item.quantity = 4

        order.recompute_item_totals()

        assert order.items[0].total_price == Decimal("10.00")

    def test_total_items_count(self):
        order = make_order(items=[make_item(quantity=2), make_item(quantity=3)])
        assert order.total_items_count == 5

    @pytest.mark.parametrize("status,expected", [
        (OrderStatus.PENDING, True),
        (OrderStatus.CONFIRMED, True),
        (OrderStatus.PROCESSING, False),
        (OrderStatus.SHIPPED, False),
        (OrderStatus.DELIVERED, False),
        (OrderStatus.CANCELLED, False),
    ])
    def test_can_be_cancelled(self, status, expected):
        assert make_order(status=status).can_be_cancelled() is expected

    def test_is_completed(self):
        assert make_order(status=OrderStatus.DELIVERED).is_completed()
        assert not make_order(status=OrderStatus.SHIPPED).is_completed()
