"""
Database Schemas for the Storefront

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name
(ShoppingCart -> "cart"). Records point at each other by id string; nothing holds a live reference to another record.
"""
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import BaseModel, BeforeValidator, Field, PlainSerializer, model_validator

CENTS = Decimal("0.01")


def utc_now() -> datetime:
    """Naive UTC timestamp, matching what pymongo hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_money(value) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Not a valid amount: {value!r}")


# Decimal in memory, plain number in Mongo and JSON
Money = Annotated[Decimal, BeforeValidator(to_money), PlainSerializer(float, return_type=float)]

ZERO = to_money(0)


# Enumerations

class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CUSTOMER_SERVICE = "CUSTOMER_SERVICE"
    INVENTORY_MANAGER = "INVENTORY_MANAGER"


class ProductStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    DISCONTINUED = "DISCONTINUED"
    PENDING_APPROVAL = "PENDING_APPROVAL"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"
    REFUNDED = "REFUNDED"


CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})


class PaymentMethod(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    PAYPAL = "PAYPAL"
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH_ON_DELIVERY = "CASH_ON_DELIVERY"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class AddressType(str, Enum):
    SHIPPING = "SHIPPING"
    BILLING = "BILLING"
    BOTH = "BOTH"


# Core domain models

class Record(BaseModel):
    id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class User(Record):
    username: str
    email: str
    password_hash: str
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    enabled: bool = True
    account_non_expired: bool = True
    account_non_locked: bool = True
    credentials_non_expired: bool = True
    email_verified: bool = False
    last_login_date: Optional[datetime] = None
    failed_login_attempts: int = Field(0, ge=0)
    lockout_time: Optional[datetime] = None
    status: UserStatus = UserStatus.PENDING_VERIFICATION
    roles: List[Role] = Field(default_factory=lambda: [Role.USER])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def is_enabled(self) -> bool:
        return self.enabled and self.status == UserStatus.ACTIVE

    def is_account_non_locked(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.account_non_locked and (self.lockout_time is None or self.lockout_time < now)

    def can_sign_in(self, now: Optional[datetime] = None) -> bool:
        return self.is_enabled() and self.is_account_non_locked(now)

    def has_role(self, *roles: Role) -> bool:
        return any(role in self.roles for role in roles)


class Category(Record):
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    active: bool = True
    sort_order: int = 0
    parent_id: Optional[str] = None

    def is_root(self) -> bool:
        return self.parent_id is None


class ProductImage(BaseModel):
    url: str
    alt_text: Optional[str] = None
    sort_order: int = 0
    primary: bool = False


class Product(Record):
    name: str
    sku: str
    description: Optional[str] = None
    price: Money = Field(..., gt=0)
    cost: Optional[Money] = Field(None, ge=0)
    stock_quantity: int = Field(0, ge=0)
    minimum_stock_level: int = Field(10, ge=0)
    active: bool = True
    featured: bool = False
    weight: Optional[float] = None
    weight_unit: str = "kg"
    dimensions: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    status: ProductStatus = ProductStatus.ACTIVE
    category_id: str
    images: List[ProductImage] = Field(default_factory=list)
    average_rating: Optional[float] = None
    rating_count: int = 0
    view_count: int = 0
    sales_count: int = 0

    def is_available(self) -> bool:
        return self.active and self.status == ProductStatus.ACTIVE and self.stock_quantity > 0

    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.minimum_stock_level


class Review(Record):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None
    approved: bool = False
    verified: bool = False
    helpful_count: int = 0
    unhelpful_count: int = 0


class Address(Record):
    user_id: str
    type: AddressType = AddressType.SHIPPING
    street_address: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str
    is_default: bool = False
    active: bool = True
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    company: Optional[str] = None

    def full_address(self) -> str:
        parts = [self.street_address]
        if self.address_line2 and self.address_line2.strip():
            parts.append(self.address_line2)
        parts.append(self.city)
        return ", ".join(parts) + f", {self.state} {self.postal_code}, {self.country}"

    def recipient_name(self, user: Optional[User] = None) -> str:
        if self.first_name is not None and self.last_name is not None:
            return f"{self.first_name} {self.last_name}"
        return user.full_name if user is not None else ""


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    added_at: datetime = Field(default_factory=utc_now)


class ShoppingCart(Record):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)

    def find_item(self, product_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    unit_price: Money
    total_price: Money = ZERO
    product_name: str
    product_sku: str
    product_description: Optional[str] = None

    @model_validator(mode="after")
    def _total_from_quantity(self):
        self.total_price = to_money(self.unit_price * self.quantity)
        return self


class StatusHistoryEntry(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None
    changed_by: str
    changed_at: datetime = Field(default_factory=utc_now)


class Order(Record):
    order_number: str
    user_id: str
    status: OrderStatus = OrderStatus.PENDING
    subtotal: Money = ZERO
    tax_amount: Money = ZERO
    shipping_amount: Money = ZERO
    discount_amount: Money = ZERO
    total_amount: Money = ZERO
    items: List[OrderItem] = Field(default_factory=list)
    shipping_address_id: str
    billing_address_id: str
    payment_method: Optional[PaymentMethod] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_transaction_id: Optional[str] = None
    order_date: datetime = Field(default_factory=utc_now)
    shipped_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)

    @property
    def total_items_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    def is_completed(self) -> bool:
        return self.status == OrderStatus.DELIVERED

    def recompute_item_totals(self) -> None:
        for item in self.items:
            item.total_price = to_money(item.unit_price * item.quantity)
