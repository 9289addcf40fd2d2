"""Shopping cart aggregation. Totals are derived on every read, never stored."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List

from .database import UnitOfWork
from .errors import InvalidArgumentError, NotFoundError
from .repositories import CartRepository, ProductRepository
from .schemas import ZERO, CartItem, Product, ShoppingCart, to_money

log = logging.getLogger(__name__)


@dataclass
class CartLine:
    product: Product
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return to_money(self.product.price * self.quantity)


@dataclass
class CartView:
    cart: ShoppingCart
    lines: List[CartLine]

    @property
    def total_items_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total_price(self) -> Decimal:
        return sum((line.line_total for line in self.lines), ZERO)

    @property
    def is_empty(self) -> bool:
        return not self.lines


class CartService:
    def get_cart(self, uow: UnitOfWork, user_id: str) -> CartView:
        cart = CartRepository(uow).get_or_create(user_id)
        return self._view(uow, cart)

    def add_item(self, uow: UnitOfWork, user_id: str, product_id: str, quantity: int = 1) -> CartView:
        if quantity < 1:
            raise InvalidArgumentError("Quantity must be at least 1")
        product = ProductRepository(uow).get(product_id)
        if not product.is_available():
            raise InvalidArgumentError(f"Product is not available: {product.sku}")

        carts = CartRepository(uow)
        cart = carts.get_or_create(user_id)
        item = cart.find_item(product_id)
        if item is not None:
            item.quantity += quantity
        else:
            cart.items.append(CartItem(product_id=product_id, quantity=quantity))
        cart = carts.save(cart)
        log.info("Added %d x %s to cart of user ID: %s", quantity, product.sku, user_id)
        return self._view(uow, cart)

    def update_item(self, uow: UnitOfWork, user_id: str, product_id: str, quantity: int) -> CartView:
        if quantity < 1:
            raise InvalidArgumentError("Quantity must be at least 1")
        carts = CartRepository(uow)
        cart = carts.get_or_create(user_id)
        item = cart.find_item(product_id)
        if item is None:
            raise NotFoundError("Cart item", "product ID", product_id)
        item.quantity = quantity
        return self._view(uow, carts.save(cart))

    def remove_item(self, uow: UnitOfWork, user_id: str, product_id: str) -> CartView:
        carts = CartRepository(uow)
        cart = carts.get_or_create(user_id)
        cart.items = [item for item in cart.items if item.product_id != product_id]
        return self._view(uow, carts.save(cart))

    def clear_cart(self, uow: UnitOfWork, user_id: str) -> CartView:
        carts = CartRepository(uow)
        cart = carts.get_or_create(user_id)
        cart.items = []
        return self._view(uow, carts.save(cart))

    def _view(self, uow: UnitOfWork, cart: ShoppingCart) -> CartView:
        # lines whose product has since been deleted are pruned from the stored cart
        products = ProductRepository(uow)
        lines = []
        for item in cart.items:
            product = products.find(item.product_id)
            if product is not None:
                lines.append(CartLine(product=product, quantity=item.quantity))
        if len(lines) != len(cart.items):
            live = {line.product.id for line in lines}
            log.info("Dropping %d stale line(s) from cart of user ID: %s", len(cart.items) - len(lines), cart.user_id)
            cart.items = [item for item in cart.items if item.product_id in live]
            cart = CartRepository(uow).save(cart)
        return CartView(cart=cart, lines=lines)
