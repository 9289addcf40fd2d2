"""Order placement and the order status lifecycle."""

import logging
import secrets
from typing import Dict, List, Optional

from .carts import CartService
from .database import UnitOfWork
from .errors import InsufficientStockError, InvalidArgumentError, NotFoundError
from .notifications import EmailSender
from .payloads import OrderItemIn, PlaceOrderRequest
from .repositories import (
    AddressRepository,
    CartRepository,
    OrderRepository,
    Page,
    ProductRepository,
    UserRepository,
    contains,
)
from .schemas import (
    ZERO,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    StatusHistoryEntry,
    to_money,
    utc_now,
)

log = logging.getLogger(__name__)


def generate_order_number() -> str:
    return f"ORD-{utc_now():%Y%m%d}-{secrets.token_hex(4).upper()}"


class OrderService:
    """
    Order lifecycle: PENDING -> CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED,
    with CANCELLED, RETURNED and REFUNDED as side branches.

    ``update_status`` does not police transitions; only cancellation is
    gated (PENDING or CONFIRMED). Every status change appends to the order's
    history and nothing ever rewrites that history.
    """

    def __init__(self, email_sender: EmailSender):
        self.email_sender = email_sender

    def place_order(self, uow: UnitOfWork, user_id: str, request: PlaceOrderRequest,
                    changed_by: Optional[str] = None) -> Order:
        users = UserRepository(uow)
        user = users.get(user_id)
        changed_by = changed_by or user.username

        addresses = AddressRepository(uow)
        shipping = addresses.get_for_user(user_id, request.shipping_address_id)
        billing = addresses.get_for_user(user_id, request.billing_address_id or shipping.id)

        from_cart = not request.items
        requested = request.items
        if from_cart:
            cart = CartService().get_cart(uow, user_id)
            if cart.is_empty:
                raise InvalidArgumentError("Cart is empty")
            requested = [OrderItemIn(product_id=line.product.id, quantity=line.quantity) for line in cart.lines]

        items = self._take_stock(uow, _merge_lines(requested))

        subtotal = sum((item.total_price for item in items), ZERO)
        total = to_money(subtotal + request.tax_amount + request.shipping_amount - request.discount_amount)
        if total < 0:
            raise InvalidArgumentError("Discount amount exceeds the order total")

        order_number = generate_order_number()
        orders = OrderRepository(uow)
        while orders.exists_by_number(order_number):
            order_number = generate_order_number()

        order = orders.insert(Order(
            order_number=order_number,
            user_id=user_id,
            status=OrderStatus.PENDING,
            subtotal=subtotal,
            tax_amount=request.tax_amount,
            shipping_amount=request.shipping_amount,
            discount_amount=request.discount_amount,
            total_amount=total,
            items=items,
            shipping_address_id=shipping.id,
            billing_address_id=billing.id,
            payment_method=request.payment_method,
            payment_status=PaymentStatus.PENDING,
            notes=request.notes,
            status_history=[StatusHistoryEntry(
                status=OrderStatus.PENDING, notes="Order placed", changed_by=changed_by,
            )],
        ))

        if from_cart:
            carts = CartRepository(uow)
            cart = carts.for_user(user_id)
            cart.items = []
            carts.save(cart)

        log.info("Order %s placed by user ID: %s (%d items)", order.order_number, user_id, order.total_items_count)
        self.email_sender.send_order_confirmation_email(user, order.order_number)
        return order

    def _take_stock(self, uow: UnitOfWork, lines: List[OrderItemIn]) -> List[OrderItem]:
        """Snapshot each product and decrement its stock; any shortfall aborts the whole order."""
        products = ProductRepository(uow)
        items = []
        for line in lines:
            product = products.get(line.product_id)
            if not product.is_available():
                raise InvalidArgumentError(f"Product is not available: {product.sku}")
            if products.decrement_stock(product.id, line.quantity) == 0:
                raise InsufficientStockError(product.id, line.quantity, product.sku)
            products.increment_sales_count(product.id, line.quantity)
            items.append(OrderItem(
                product_id=product.id,
                quantity=line.quantity,
                unit_price=product.price,
                product_name=product.name,
                product_sku=product.sku,
                product_description=product.description,
            ))
        return items

    def get_order(self, uow: UnitOfWork, order_id: str) -> Order:
        return OrderRepository(uow).get(order_id)

    def get_order_by_number(self, uow: UnitOfWork, order_number: str) -> Order:
        order = OrderRepository(uow).find_by_number(order_number)
        if order is None:
            raise NotFoundError("Order", "number", order_number)
        return order

    def list_user_orders(self, uow: UnitOfWork, user_id: str, page: int, page_size: int) -> Page[Order]:
        UserRepository(uow).get(user_id)
        return OrderRepository(uow).for_user(user_id, page, page_size)

    def list_orders(self, uow: UnitOfWork, status: Optional[OrderStatus], page: int, page_size: int) -> Page[Order]:
        filt = {"status": status.value} if status else {}
        return OrderRepository(uow).page(filt, page, page_size, sort=[("order_date", -1)])

    def search_orders(self, uow: UnitOfWork, text: str, page: int, page_size: int) -> Page[Order]:
        """Match on order number or on the customer's name or email."""
        user_ids = [
            user.id for user in UserRepository(uow).find_all({"$or": [
                {field: contains(text)} for field in ("first_name", "last_name", "email")
            ]})
        ]
        filt = {"$or": [{"order_number": contains(text)}, {"user_id": {"$in": user_ids}}]}
        return OrderRepository(uow).page(filt, page, page_size, sort=[("order_date", -1)])

    def update_status(self, uow: UnitOfWork, order_id: str, status: OrderStatus, changed_by: str,
                      notes: Optional[str] = None, tracking_number: Optional[str] = None) -> Order:
        log.info("Updating status of order ID: %s to %s", order_id, status.value)
        orders = OrderRepository(uow)
        orders.get(order_id)

        changes: Dict[str, object] = {}
        if status == OrderStatus.SHIPPED:
            changes["shipped_date"] = utc_now()
            if tracking_number:
                changes["tracking_number"] = tracking_number
        elif status == OrderStatus.DELIVERED:
            changes["delivered_date"] = utc_now()

        entry = StatusHistoryEntry(status=status, notes=notes, changed_by=changed_by)
        order = orders.append_status(order_id, entry, changes)

        if status == OrderStatus.SHIPPED:
            user = UserRepository(uow).find(order.user_id)
            if user is not None:
                self.email_sender.send_order_shipped_email(user, order.order_number, order.tracking_number)
        return order

    def cancel_order(self, uow: UnitOfWork, order_id: str, changed_by: str, notes: Optional[str] = None) -> Order:
        """Cancel a PENDING or CONFIRMED order and put its quantities back on the shelf."""
        orders = OrderRepository(uow)
        order = orders.get(order_id)
        if not order.can_be_cancelled():
            raise InvalidArgumentError(f"Order {order.order_number} cannot be cancelled in status {order.status.value}")

        products = ProductRepository(uow)
        for item in order.items:
            if products.find(item.product_id) is not None:
                products.increment_stock(item.product_id, item.quantity)
                products.increment_sales_count(item.product_id, -item.quantity)

        entry = StatusHistoryEntry(status=OrderStatus.CANCELLED, notes=notes or "Order cancelled", changed_by=changed_by)
        order = orders.append_status(order_id, entry, {})
        log.info("Order %s cancelled by %s", order.order_number, changed_by)
        return order

    def update_payment_status(self, uow: UnitOfWork, order_id: str, payment_status: PaymentStatus,
                              transaction_id: Optional[str] = None) -> Order:
        log.info("Updating payment status of order ID: %s to %s", order_id, payment_status.value)
        changes: Dict[str, object] = {"payment_status": payment_status.value}
        if transaction_id:
            changes["payment_transaction_id"] = transaction_id
        return OrderRepository(uow).update(order_id, changes)

    def update_item_quantity(self, uow: UnitOfWork, order_id: str, product_id: str, quantity: int) -> Order:
        """Adjust a line of a not-yet-confirmed order; stock follows the difference."""
        if quantity < 1:
            raise InvalidArgumentError("Quantity must be at least 1")
        orders = OrderRepository(uow)
        order = orders.get(order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidArgumentError("Only pending orders can be changed")
        item = next((i for i in order.items if i.product_id == product_id), None)
        if item is None:
            raise NotFoundError("Order item", "product ID", product_id)

        products = ProductRepository(uow)
        delta = quantity - item.quantity
        if delta > 0 and products.decrement_stock(product_id, delta) == 0:
            raise InsufficientStockError(product_id, delta, item.product_sku)
        if delta < 0:
            products.increment_stock(product_id, -delta)
        if delta:
            products.increment_sales_count(product_id, delta)

        item.quantity = quantity
        order.subtotal = sum((i.unit_price * i.quantity for i in order.items), ZERO)
        order.total_amount = to_money(
            order.subtotal + order.tax_amount + order.shipping_amount - order.discount_amount
        )
        if order.total_amount < 0:
            raise InvalidArgumentError("Discount amount exceeds the order total")
        return orders.save(order)


def _merge_lines(lines: List[OrderItemIn]) -> List[OrderItemIn]:
    merged: Dict[str, int] = {}
    for line in lines:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return [OrderItemIn(product_id=pid, quantity=qty) for pid, qty in merged.items()]
