import logging
import os
import sys
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from .addresses import AddressService
from .auth import AuthService, LoginResult
from .carts import CartService
from .catalog import CategoryService, ProductService, ReviewService
from .database import UnitOfWork, connect
from .errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    StorefrontError,
    UnauthenticatedError,
    ValidationFailedError,
)
from .notifications import EmailSender
from .orders import OrderService
from .payloads import (
    AddressIn,
    CancelOrderIn,
    CartItemIn,
    CartQuantityIn,
    CategoryIn,
    CategoryUpdate,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    OrderStatusIn,
    PaymentStatusIn,
    PlaceOrderRequest,
    ProductIn,
    ProductUpdate,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    ReviewIn,
    UpdateUserRequest,
    address_out,
    cart_out,
    category_out,
    order_out,
    page_out,
    product_out,
    review_out,
    user_out,
)
from .schemas import Order, OrderStatus, Role, User, utc_now
from .security import PasswordHasher, TokenService
from .settings import Settings
from .users import UserService

log = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Send records to stdout; a no-op when the root logger is already configured."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


# Wiring (tests override these)

@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def get_database(settings: Settings = Depends(get_settings)) -> Database:
    return connect(settings)


@lru_cache
def get_email_sender() -> EmailSender:
    return EmailSender()


@dataclass
class Services:
    users: UserService
    auth: AuthService
    categories: CategoryService
    products: ProductService
    reviews: ReviewService
    addresses: AddressService
    carts: CartService
    orders: OrderService

    @classmethod
    def build(cls, settings: Settings, email_sender: EmailSender) -> "Services":
        tokens = TokenService(settings)
        users = UserService(settings, PasswordHasher(settings), tokens, email_sender)
        return cls(
            users=users,
            auth=AuthService(users, tokens, email_sender),
            categories=CategoryService(),
            products=ProductService(settings),
            reviews=ReviewService(),
            addresses=AddressService(),
            carts=CartService(),
            orders=OrderService(email_sender),
        )


def get_services(settings: Settings = Depends(get_settings),
                 email_sender: EmailSender = Depends(get_email_sender)) -> Services:
    return Services.build(settings, email_sender)


@dataclass
class PageParams:
    page: int
    page_size: int


def get_page_params(page: int = Query(1, ge=1), page_size: Optional[int] = Query(None, ge=1),
                    settings: Settings = Depends(get_settings)) -> PageParams:
    size = page_size or settings.default_page_size
    return PageParams(page=page, page_size=min(size, settings.max_page_size))


# App setup
setup_logging(os.getenv("LOG_LEVEL", "INFO"))

app = FastAPI(title="Storefront API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

security = HTTPBearer(auto_error=False)
api = APIRouter(prefix="/api/v1")


# Authentication and authorization

def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                     db: Database = Depends(get_database),
                     services: Services = Depends(get_services)) -> User:
    if credentials is None:
        raise UnauthenticatedError("Missing bearer token")
    with UnitOfWork(db) as uow:
        return services.auth.authenticate(uow, credentials.credentials)


def require_roles(*roles: Role):
    def checker(user: User = Depends(get_current_user)) -> User:
        if not user.has_role(*roles):
            raise ForbiddenError(f"Requires one of: {', '.join(r.value for r in roles)}")
        return user
    return checker


require_admin = require_roles(Role.ADMIN)
require_inventory = require_roles(Role.ADMIN, Role.INVENTORY_MANAGER)


def ensure_self_or_admin(current: User, user_id: str) -> None:
    if current.id != user_id and not current.has_role(Role.ADMIN):
        raise ForbiddenError()


def ensure_order_access(current: User, order: Order) -> None:
    # someone else's order reads as missing rather than forbidden
    if order.user_id != current.id and not current.has_role(Role.ADMIN):
        raise NotFoundError("Order", "ID", order.id)


# Error mapping

ERROR_RESPONSES = [
    (NotFoundError, 404, "Resource Not Found"),
    (ConflictError, 409, "Conflict"),
    (ValidationFailedError, 400, "Validation Failed"),
    (InvalidArgumentError, 400, "Invalid Request"),
    (UnauthenticatedError, 401, "Authentication Failed"),
    (ForbiddenError, 403, "Access Denied"),
]


def error_response(request: Request, status: int, error: str, message: str, **extra: Any) -> JSONResponse:
    body = {
        "status": status,
        "error": error,
        "message": message,
        "path": request.url.path,
        "timestamp": utc_now().isoformat(),
    }
    body.update(extra)
    headers = {"WWW-Authenticate": "Bearer"} if status == 401 else None
    return JSONResponse(status_code=status, content=body, headers=headers)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    for cls, status, label in ERROR_RESPONSES:
        if isinstance(exc, cls):
            break
    else:
        status, label = 400, "Invalid Request"

    log.error("%s on %s: %s", label, request.url.path, exc)
    if isinstance(exc, UnauthenticatedError):
        return error_response(request, status, label, "Invalid credentials or authentication token")
    if isinstance(exc, ForbiddenError):
        return error_response(request, status, label, "You don't have permission to access this resource")
    if isinstance(exc, ValidationFailedError):
        return error_response(request, status, label, str(exc), field_errors=exc.field_errors)
    return error_response(request, status, label, str(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    field_errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field_errors.setdefault(".".join(loc) or "request", err.get("msg", "Invalid value"))
    return await storefront_error_handler(request, ValidationFailedError(field_errors))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    log.exception("Unexpected error on %s", request.url.path)
    return error_response(request, 500, "Internal Server Error",
                          "An unexpected error occurred. Please try again later.")


# Health

@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/health")
def health(db: Database = Depends(get_database)):
    db.command("ping")
    return {"status": "UP"}


# Auth

def login_out(result: LoginResult) -> Dict[str, Any]:
    return {
        "access_token": result.access_token,
        "refresh_token": result.refresh_token,
        "token_type": result.token_type,
        "expires_in": result.expires_in,
        "user": user_out(result.user),
    }


@api.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_database),
             services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        user = services.auth.register(uow, **payload.model_dump())
    return user_out(user)


@api.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_database),
          services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        result = services.auth.login(uow, payload.username, payload.password)
    return login_out(result)


@api.post("/auth/refresh")
def refresh(payload: RefreshTokenRequest, db: Database = Depends(get_database),
            services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        result = services.auth.refresh_token(uow, payload.refresh_token)
    return login_out(result)


@api.post("/auth/logout")
def logout(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
           user: User = Depends(get_current_user), db: Database = Depends(get_database),
           services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        services.auth.logout(uow, credentials.credentials)
    return {"message": "Logged out successfully"}


@api.post("/auth/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db: Database = Depends(get_database),
                    services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        services.auth.forgot_password(uow, payload.email)
    return {"message": "If the email is registered, a reset link has been sent"}


@api.post("/auth/reset-password")
def reset_password(payload: ResetPasswordRequest, db: Database = Depends(get_database),
                   services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        services.auth.reset_password(uow, payload.token, payload.new_password, payload.confirm_password)
    return {"message": "Password reset successfully"}


@api.post("/auth/verify-email")
def verify_email(token: str = Query(...), db: Database = Depends(get_database),
                 services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        user = services.auth.verify_email(uow, token)
    return user_out(user)


@api.get("/auth/me")
def me(user: User = Depends(get_current_user)):
    return user_out(user)


# Users

@api.get("/users")
def list_users(paging: PageParams = Depends(get_page_params), admin: User = Depends(require_admin),
               db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.users.list_users(uow, paging.page, paging.page_size)
    return page_out(page, user_out)


@api.get("/users/search")
def search_users(q: Optional[str] = None, paging: PageParams = Depends(get_page_params),
                 admin: User = Depends(require_admin), db: Database = Depends(get_database),
                 services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.users.search_users(uow, q, paging.page, paging.page_size)
    return page_out(page, user_out)


@api.get("/users/username/{username}")
def get_user_by_username(username: str, admin: User = Depends(require_admin),
                         db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        user = services.users.get_user_by_username(uow, username)
    return user_out(user)


@api.get("/users/{user_id}")
def get_user(user_id: str, current: User = Depends(get_current_user), db: Database = Depends(get_database),
             services: Services = Depends(get_services)):
    ensure_self_or_admin(current, user_id)
    with UnitOfWork(db) as uow:
        user = services.users.get_user_by_id(uow, user_id)
    return user_out(user)


@api.put("/users/{user_id}")
def update_user(user_id: str, payload: UpdateUserRequest, current: User = Depends(get_current_user),
                db: Database = Depends(get_database), services: Services = Depends(get_services)):
    ensure_self_or_admin(current, user_id)
    with UnitOfWork(db) as uow:
        user = services.users.update_user(uow, user_id, **payload.model_dump())
    return user_out(user)


@api.put("/users/{user_id}/password")
def change_password(user_id: str, payload: ChangePasswordRequest, current: User = Depends(get_current_user),
                    db: Database = Depends(get_database), services: Services = Depends(get_services)):
    ensure_self_or_admin(current, user_id)
    with UnitOfWork(db) as uow:
        services.users.change_password(uow, user_id, payload.current_password, payload.new_password,
                                       payload.confirm_password)
    return {"message": "Password changed successfully"}


@api.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: str, admin: User = Depends(require_admin), db: Database = Depends(get_database),
                services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        services.users.delete_user(uow, user_id)
    return Response(status_code=204)


@api.put("/users/{user_id}/status")
def toggle_user_status(user_id: str, enabled: bool = Query(...), admin: User = Depends(require_admin),
                       db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        user = services.users.toggle_enabled(uow, user_id, enabled)
    return user_out(user)


@api.put("/users/{user_id}/lock")
def toggle_user_lock(user_id: str, locked: bool = Query(...), admin: User = Depends(require_admin),
                     db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        user = services.users.toggle_lock(uow, user_id, locked)
    return user_out(user)


@api.put("/users/{user_id}/verify-email")
def verify_user_email(user_id: str, admin: User = Depends(require_admin), db: Database = Depends(get_database),
                      services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        user = services.users.verify_email(uow, user_id)
    return user_out(user)


@api.put("/users/{user_id}/roles")
def update_user_roles(user_id: str, roles: List[Role] = Body(...), admin: User = Depends(require_admin),
                      db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        user = services.users.update_roles(uow, user_id, roles)
    return user_out(user)


# Categories

@api.get("/categories")
def root_categories(db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        return [category_out(c) for c in services.categories.root_categories(uow)]


@api.get("/categories/slug/{slug}")
def get_category_by_slug(slug: str, db: Database = Depends(get_database),
                         services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        return category_out(services.categories.get_category_by_slug(uow, slug))


@api.get("/categories/{category_id}")
def get_category(category_id: str, db: Database = Depends(get_database),
                 services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        return category_out(services.categories.get_category(uow, category_id))


@api.get("/categories/{category_id}/subcategories")
def subcategories(category_id: str, db: Database = Depends(get_database),
                  services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        return [category_out(c) for c in services.categories.subcategories(uow, category_id)]


@api.post("/categories", status_code=201)
def create_category(payload: CategoryIn, admin: User = Depends(require_admin),
                    db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        category = services.categories.create_category(uow, payload)
    return category_out(category)


@api.put("/categories/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate, admin: User = Depends(require_admin),
                    db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        category = services.categories.update_category(uow, category_id, payload)
    return category_out(category)


@api.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: str, admin: User = Depends(require_admin),
                    db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        services.categories.delete_category(uow, category_id)
    return Response(status_code=204)


# Products

@api.get("/products")
def list_products(q: Optional[str] = None, category_id: Optional[str] = None,
                  min_price: Optional[Decimal] = Query(None, ge=0), max_price: Optional[Decimal] = Query(None, ge=0),
                  brand: Optional[str] = None, featured: bool = False,
                  paging: PageParams = Depends(get_page_params), db: Database = Depends(get_database),
                  services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.products.search_products(
            uow, search=q, category_id=category_id, min_price=min_price, max_price=max_price,
            brand=brand, featured_only=featured, page=paging.page, page_size=paging.page_size,
        )
    return page_out(page, product_out)


@api.get("/products/inventory")
def inventory(paging: PageParams = Depends(get_page_params), staff: User = Depends(require_inventory),
              db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.products.list_products(uow, paging.page, paging.page_size)
    return page_out(page, product_out)


@api.get("/products/low-stock")
def low_stock(staff: User = Depends(require_inventory), db: Database = Depends(get_database),
              services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        return [product_out(p) for p in services.products.low_stock_products(uow)]


@api.get("/products/featured")
def featured_products(paging: PageParams = Depends(get_page_params), db: Database = Depends(get_database),
                      services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.products.featured_products(uow, paging.page, paging.page_size)
    return page_out(page, product_out)


@api.get("/products/top-rated")
def top_rated_products(paging: PageParams = Depends(get_page_params), db: Database = Depends(get_database),
                       services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.products.top_rated_products(uow, paging.page, paging.page_size)
    return page_out(page, product_out)


@api.get("/products/best-selling")
def best_selling_products(paging: PageParams = Depends(get_page_params), db: Database = Depends(get_database),
                          services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.products.best_selling_products(uow, paging.page, paging.page_size)
    return page_out(page, product_out)


@api.get("/products/recent")
def recent_products(paging: PageParams = Depends(get_page_params), db: Database = Depends(get_database),
                    services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.products.recent_products(uow, paging.page, paging.page_size)
    return page_out(page, product_out)


@api.get("/products/sku/{sku}")
def get_product_by_sku(sku: str, db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        return product_out(services.products.get_product_by_sku(uow, sku))


@api.get("/products/category/{category_id}")
def products_by_category(category_id: str, paging: PageParams = Depends(get_page_params),
                         db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.products.products_by_category(uow, category_id, paging.page, paging.page_size)
    return page_out(page, product_out)


@api.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        product = services.products.get_product(uow, product_id)
        services.products.record_view(uow, product_id)
    return product_out(product)


@api.post("/products", status_code=201)
def create_product(payload: ProductIn, staff: User = Depends(require_inventory),
                   db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        product = services.products.create_product(uow, payload)
    return product_out(product)


@api.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, staff: User = Depends(require_inventory),
                   db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        product = services.products.update_product(uow, product_id, payload)
    return product_out(product)


@api.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: str, admin: User = Depends(require_admin),
                   db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        services.products.delete_product(uow, product_id)
    return Response(status_code=204)


@api.put("/products/{product_id}/stock")
def update_stock(product_id: str, quantity: int = Query(...), staff: User = Depends(require_inventory),
                 db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        product = services.products.update_stock(uow, product_id, quantity)
    return product_out(product)


@api.put("/products/{product_id}/status")
def toggle_product_status(product_id: str, active: bool = Query(...), staff: User = Depends(require_inventory),
                          db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        product = services.products.toggle_status(uow, product_id, active)
    return product_out(product)


@api.put("/products/{product_id}/featured")
def toggle_product_featured(product_id: str, featured: bool = Query(...), staff: User = Depends(require_inventory),
                            db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        product = services.products.toggle_featured(uow, product_id, featured)
    return product_out(product)


# Reviews

@api.get("/products/{product_id}/reviews")
def list_reviews(product_id: str, paging: PageParams = Depends(get_page_params),
                 db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.reviews.list_reviews(uow, product_id, paging.page, paging.page_size)
    return page_out(page, review_out)


@api.post("/products/{product_id}/reviews", status_code=201)
def create_review(product_id: str, payload: ReviewIn, user: User = Depends(get_current_user),
                  db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        review = services.reviews.create_review(uow, product_id, user.id, payload)
    return review_out(review)


@api.put("/reviews/{review_id}/approve")
def approve_review(review_id: str, admin: User = Depends(require_admin),
                   db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        review = services.reviews.approve_review(uow, review_id)
    return review_out(review)


@api.delete("/reviews/{review_id}", status_code=204)
def delete_review(review_id: str, admin: User = Depends(require_admin),
                  db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        services.reviews.delete_review(uow, review_id)
    return Response(status_code=204)


# Addresses

@api.get("/addresses")
def list_addresses(user: User = Depends(get_current_user), db: Database = Depends(get_database),
                   services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        return [address_out(a) for a in services.addresses.list_addresses(uow, user.id)]


@api.post("/addresses", status_code=201)
def create_address(payload: AddressIn, user: User = Depends(get_current_user),
                   db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        address = services.addresses.create_address(uow, user.id, payload)
    return address_out(address)


@api.get("/addresses/{address_id}")
def get_address(address_id: str, user: User = Depends(get_current_user),
                db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        return address_out(services.addresses.get_address(uow, user.id, address_id))


@api.put("/addresses/{address_id}")
def update_address(address_id: str, payload: AddressIn, user: User = Depends(get_current_user),
                   db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        address = services.addresses.update_address(uow, user.id, address_id, payload)
    return address_out(address)


@api.put("/addresses/{address_id}/default")
def set_default_address(address_id: str, user: User = Depends(get_current_user),
                        db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        address = services.addresses.set_default(uow, user.id, address_id)
    return address_out(address)


@api.delete("/addresses/{address_id}", status_code=204)
def delete_address(address_id: str, user: User = Depends(get_current_user),
                   db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        services.addresses.delete_address(uow, user.id, address_id)
    return Response(status_code=204)


# Cart

@api.get("/cart")
def get_cart(user: User = Depends(get_current_user), db: Database = Depends(get_database),
             services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        cart = services.carts.get_cart(uow, user.id)
    return cart_out(cart)


@api.post("/cart/items")
def cart_add(item: CartItemIn, user: User = Depends(get_current_user), db: Database = Depends(get_database),
             services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        cart = services.carts.add_item(uow, user.id, item.product_id, item.quantity)
    return cart_out(cart)


@api.put("/cart/items/{product_id}")
def cart_update(product_id: str, payload: CartQuantityIn, user: User = Depends(get_current_user),
                db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        cart = services.carts.update_item(uow, user.id, product_id, payload.quantity)
    return cart_out(cart)


@api.delete("/cart/items/{product_id}")
def cart_remove(product_id: str, user: User = Depends(get_current_user), db: Database = Depends(get_database),
                services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        cart = services.carts.remove_item(uow, user.id, product_id)
    return cart_out(cart)


@api.delete("/cart")
def cart_clear(user: User = Depends(get_current_user), db: Database = Depends(get_database),
               services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        cart = services.carts.clear_cart(uow, user.id)
    return cart_out(cart)


# Orders

@api.post("/orders", status_code=201)
def place_order(payload: PlaceOrderRequest, user: User = Depends(get_current_user),
                db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        order = services.orders.place_order(uow, user.id, payload, changed_by=user.username)
    return order_out(order)


@api.get("/orders")
def list_my_orders(paging: PageParams = Depends(get_page_params), user: User = Depends(get_current_user),
                   db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.orders.list_user_orders(uow, user.id, paging.page, paging.page_size)
    return page_out(page, order_out)


@api.get("/orders/all")
def list_all_orders(status: Optional[OrderStatus] = None, paging: PageParams = Depends(get_page_params),
                    admin: User = Depends(require_admin), db: Database = Depends(get_database),
                    services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.orders.list_orders(uow, status, paging.page, paging.page_size)
    return page_out(page, order_out)


@api.get("/orders/search")
def search_orders(q: str = Query(..., min_length=1), paging: PageParams = Depends(get_page_params),
                  admin: User = Depends(require_admin), db: Database = Depends(get_database),
                  services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        page = services.orders.search_orders(uow, q, paging.page, paging.page_size)
    return page_out(page, order_out)


@api.get("/orders/number/{order_number}")
def get_order_by_number(order_number: str, user: User = Depends(get_current_user),
                        db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        order = services.orders.get_order_by_number(uow, order_number)
    ensure_order_access(user, order)
    return order_out(order)


@api.get("/orders/{order_id}")
def get_order(order_id: str, user: User = Depends(get_current_user), db: Database = Depends(get_database),
              services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        order = services.orders.get_order(uow, order_id)
    ensure_order_access(user, order)
    return order_out(order)


@api.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusIn, admin: User = Depends(require_admin),
                        db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        order = services.orders.update_status(
            uow, order_id, payload.status, changed_by=admin.username,
            notes=payload.notes, tracking_number=payload.tracking_number,
        )
    return order_out(order)


@api.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, payload: Optional[CancelOrderIn] = None, user: User = Depends(get_current_user),
                 db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        ensure_order_access(user, services.orders.get_order(uow, order_id))
        order = services.orders.cancel_order(uow, order_id, changed_by=user.username,
                                             notes=payload.notes if payload else None)
    return order_out(order)


@api.put("/orders/{order_id}/items/{product_id}")
def update_order_item(order_id: str, product_id: str, payload: CartQuantityIn,
                      user: User = Depends(get_current_user), db: Database = Depends(get_database),
                      services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        ensure_order_access(user, services.orders.get_order(uow, order_id))
        order = services.orders.update_item_quantity(uow, order_id, product_id, payload.quantity)
    return order_out(order)


@api.put("/orders/{order_id}/payment")
def update_payment_status(order_id: str, payload: PaymentStatusIn, admin: User = Depends(require_admin),
                          db: Database = Depends(get_database), services: Services = Depends(get_services)):
    with UnitOfWork(db) as uow:
        order = services.orders.update_payment_status(uow, order_id, payload.payment_status,
                                                      payload.transaction_id)
    return order_out(order)


app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
