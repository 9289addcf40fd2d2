"""Request bodies and response projections for the HTTP layer."""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from .carts import CartView
from .repositories import Page
from .schemas import (
    Address,
    AddressType,
    Category,
    Money,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    ProductImage,
    ProductStatus,
    Review,
    User,
)
from .security import authorities


# Schemas (request)

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    phone_number: Optional[str] = Field(None, max_length=20)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Username or email")
    password: str = Field(..., min_length=1)


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(..., min_length=8)
    confirm_password: str


class UpdateUserRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    phone_number: Optional[str] = Field(None, max_length=20)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)
    confirm_password: str


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    image_url: Optional[str] = Field(None, max_length=255)
    active: bool = True
    sort_order: int = 0
    parent_id: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    image_url: Optional[str] = Field(None, max_length=255)
    active: Optional[bool] = None
    sort_order: Optional[int] = None
    parent_id: Optional[str] = None


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sku: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    price: Money = Field(..., gt=0)
    cost: Optional[Money] = Field(None, ge=0)
    stock_quantity: int = Field(..., ge=0)
    minimum_stock_level: Optional[int] = Field(None, ge=0)
    active: Optional[bool] = None
    featured: Optional[bool] = None
    weight: Optional[float] = Field(None, ge=0, le=999.99)
    weight_unit: Optional[str] = Field(None, max_length=50)
    dimensions: Optional[str] = Field(None, max_length=100)
    brand: Optional[str] = Field(None, max_length=50)
    model: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    size: Optional[str] = Field(None, max_length=20)
    status: Optional[ProductStatus] = None
    category_id: str
    images: List[ProductImage] = []


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    sku: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    price: Optional[Money] = Field(None, gt=0)
    cost: Optional[Money] = Field(None, ge=0)
    stock_quantity: Optional[int] = Field(None, ge=0)
    minimum_stock_level: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0, le=999.99)
    weight_unit: Optional[str] = Field(None, max_length=50)
    dimensions: Optional[str] = Field(None, max_length=100)
    brand: Optional[str] = Field(None, max_length=50)
    model: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=50)
    size: Optional[str] = Field(None, max_length=20)
    status: Optional[ProductStatus] = None
    category_id: Optional[str] = None
    images: Optional[List[ProductImage]] = None


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=2000)


class AddressIn(BaseModel):
    type: AddressType = AddressType.SHIPPING
    street_address: str = Field(..., min_length=1, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=1, max_length=100)
    is_default: bool = False
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    company: Optional[str] = Field(None, max_length=100)


class CartItemIn(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartQuantityIn(BaseModel):
    quantity: int = Field(..., ge=1)


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class PlaceOrderRequest(BaseModel):
    items: List[OrderItemIn] = Field(default_factory=list, description="Empty means: order the cart")
    shipping_address_id: str
    billing_address_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    tax_amount: Money = Field(Decimal("0.00"), ge=0)
    shipping_amount: Money = Field(Decimal("0.00"), ge=0)
    discount_amount: Money = Field(Decimal("0.00"), ge=0)
    notes: Optional[str] = Field(None, max_length=1000)


class OrderStatusIn(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=1000)
    tracking_number: Optional[str] = Field(None, max_length=100)


class CancelOrderIn(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class PaymentStatusIn(BaseModel):
    payment_status: PaymentStatus
    transaction_id: Optional[str] = Field(None, max_length=255)


# Projections (response)

def user_out(user: User) -> Dict[str, Any]:
    data = user.model_dump(mode="json", exclude={"password_hash"})
    data["full_name"] = user.full_name
    data["authorities"] = authorities(user.roles)
    data["account_non_locked"] = user.is_account_non_locked()
    return data


def category_out(category: Category) -> Dict[str, Any]:
    data = category.model_dump(mode="json")
    data["is_root"] = category.is_root()
    return data


def product_out(product: Product) -> Dict[str, Any]:
    data = product.model_dump(mode="json")
    data["is_available"] = product.is_available()
    data["is_low_stock"] = product.is_low_stock()
    return data


def review_out(review: Review) -> Dict[str, Any]:
    return review.model_dump(mode="json")


def address_out(address: Address) -> Dict[str, Any]:
    data = address.model_dump(mode="json")
    data["full_address"] = address.full_address()
    return data


def order_out(order: Order) -> Dict[str, Any]:
    data = order.model_dump(mode="json")
    data["total_items_count"] = order.total_items_count
    data["can_be_cancelled"] = order.can_be_cancelled()
    data["is_completed"] = order.is_completed()
    return data


def cart_out(cart: CartView) -> Dict[str, Any]:
    return {
        "id": cart.cart.id,
        "user_id": cart.cart.user_id,
        "items": [
            {
                "product_id": line.product.id,
                "product_name": line.product.name,
                "product_sku": line.product.sku,
                "unit_price": float(line.product.price),
                "quantity": line.quantity,
                "line_total": float(line.line_total),
                "available": line.product.is_available(),
            }
            for line in cart.lines
        ],
        "total_items_count": cart.total_items_count,
        "total_price": float(cart.total_price),
        "is_empty": cart.is_empty,
    }


def page_out(page: Page, project) -> Dict[str, Any]:
    return {
        "items": [project(item) for item in page.items],
        "page": page.page,
        "page_size": page.page_size,
        "total": page.total,
        "total_pages": page.total_pages,
    }
