"""Categories, products, inventory and reviews."""

import logging
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING

from .database import UnitOfWork
from .errors import ConflictError, InvalidArgumentError, NotFoundError
from .payloads import CategoryIn, CategoryUpdate, ProductIn, ProductUpdate, ReviewIn
from .repositories import (
    CategoryRepository,
    OrderRepository,
    Page,
    ProductRepository,
    ReviewRepository,
    contains,
)
from .schemas import Category, Product, ProductStatus, Review
from .settings import Settings

log = logging.getLogger(__name__)


class CategoryService:
    def create_category(self, uow: UnitOfWork, request: CategoryIn) -> Category:
        log.info("Creating category with slug: %s", request.slug)
        categories = CategoryRepository(uow)
        if categories.exists_by_slug(request.slug):
            raise ConflictError(f"Category slug already exists: {request.slug}", field="slug")
        if request.parent_id is not None:
            categories.get(request.parent_id)
        return categories.insert(Category(**request.model_dump()))

    def get_category(self, uow: UnitOfWork, category_id: str) -> Category:
        return CategoryRepository(uow).get(category_id)

    def get_category_by_slug(self, uow: UnitOfWork, slug: str) -> Category:
        category = CategoryRepository(uow).find_by_slug(slug)
        if category is None:
            raise NotFoundError("Category", "slug", slug)
        return category

    def root_categories(self, uow: UnitOfWork) -> List[Category]:
        return CategoryRepository(uow).roots()

    def subcategories(self, uow: UnitOfWork, category_id: str) -> List[Category]:
        categories = CategoryRepository(uow)
        categories.get(category_id)
        return categories.children(category_id)

    def update_category(self, uow: UnitOfWork, category_id: str, request: CategoryUpdate) -> Category:
        log.info("Updating category with ID: %s", category_id)
        categories = CategoryRepository(uow)
        current = categories.get(category_id)
        changes = request.model_dump(exclude_unset=True)
        # a null parent_id moves the category to the root; other nulls leave the field as is
        for key in [k for k, v in changes.items() if v is None and k != "parent_id"]:
            del changes[key]

        slug = changes.get("slug")
        if slug and slug != current.slug and categories.exists_by_slug(slug):
            raise ConflictError(f"Category slug already exists: {slug}", field="slug")
        parent_id = changes.get("parent_id")
        if parent_id is not None:
            if parent_id in categories.subtree_ids(category_id):
                raise InvalidArgumentError("A category cannot be moved under itself or its descendants")
            categories.get(parent_id)
        return categories.update(category_id, changes)

    def delete_category(self, uow: UnitOfWork, category_id: str) -> None:
        """Delete the category, its subcategories and every product filed under them."""
        log.info("Deleting category with ID: %s", category_id)
        categories = CategoryRepository(uow)
        categories.get(category_id)
        ids = categories.subtree_ids(category_id)
        removed = ProductRepository(uow).delete_many({"category_id": {"$in": ids}})
        for sub_id in reversed(ids):
            categories.delete(sub_id)
        log.info("Deleted %d categories and %d products", len(ids), removed)


class ProductService:
    def __init__(self, settings: Settings):
        self.settings = settings

    def create_product(self, uow: UnitOfWork, request: ProductIn) -> Product:
        log.info("Creating product with SKU: %s", request.sku)
        products = ProductRepository(uow)
        if products.exists_by_sku(request.sku):
            raise ConflictError(f"Product SKU already exists: {request.sku}", field="sku")
        CategoryRepository(uow).get(request.category_id)

        data = request.model_dump(exclude_none=True)
        data.setdefault("minimum_stock_level", self.settings.default_minimum_stock_level)
        data.setdefault("active", True)
        data.setdefault("featured", False)
        data.setdefault("status", ProductStatus.ACTIVE)
        product = products.insert(Product(**data))
        log.info("Product created successfully with ID: %s", product.id)
        return product

    def get_product(self, uow: UnitOfWork, product_id: str) -> Product:
        return ProductRepository(uow).get(product_id)

    def get_product_by_sku(self, uow: UnitOfWork, sku: str) -> Product:
        product = ProductRepository(uow).find_by_sku(sku)
        if product is None:
            raise NotFoundError("Product", "SKU", sku)
        return product

    def record_view(self, uow: UnitOfWork, product_id: str) -> None:
        ProductRepository(uow).increment_view_count(product_id)

    def update_product(self, uow: UnitOfWork, product_id: str, request: ProductUpdate) -> Product:
        log.info("Updating product with ID: %s", product_id)
        products = ProductRepository(uow)
        current = products.get(product_id)
        changes = request.model_dump(exclude_unset=True)
        for key in [k for k, v in changes.items() if v is None]:
            del changes[key]

        sku = changes.get("sku")
        if sku and sku != current.sku and products.exists_by_sku(sku):
            raise ConflictError(f"Product SKU already exists: {sku}", field="sku")
        if "category_id" in changes:
            CategoryRepository(uow).get(changes["category_id"])

        merged = current.model_copy(update=changes)
        # round-trip through validation so prices are re-quantized
        return products.save(Product.model_validate(merged.model_dump()))

    def delete_product(self, uow: UnitOfWork, product_id: str) -> None:
        log.info("Deleting product with ID: %s", product_id)
        ProductRepository(uow).delete(product_id)
        ReviewRepository(uow).delete_many({"product_id": product_id})

    def list_products(self, uow: UnitOfWork, page: int, page_size: int) -> Page[Product]:
        return ProductRepository(uow).page({}, page, page_size)

    def search_products(self, uow: UnitOfWork, search: Optional[str] = None, category_id: Optional[str] = None,
                        min_price: Optional[Decimal] = None, max_price: Optional[Decimal] = None,
                        brand: Optional[str] = None, featured_only: bool = False,
                        page: int = 1, page_size: int = 20) -> Page[Product]:
        """Active products matching every supplied filter."""
        filt: Dict[str, Any] = {"active": True}
        if search:
            filt["$or"] = [{field: contains(search)} for field in ("name", "description", "brand", "sku")]
        if category_id:
            filt["category_id"] = category_id
        if brand:
            filt["brand"] = {"$regex": f"^{re.escape(brand)}$", "$options": "i"}
        if featured_only:
            filt["featured"] = True
        price_cond = {}
        if min_price is not None:
            price_cond["$gte"] = float(min_price)
        if max_price is not None:
            price_cond["$lte"] = float(max_price)
        if price_cond:
            filt["price"] = price_cond
        return ProductRepository(uow).page(filt, page, page_size)

    def products_by_category(self, uow: UnitOfWork, category_id: str, page: int, page_size: int) -> Page[Product]:
        CategoryRepository(uow).get(category_id)
        return ProductRepository(uow).page({"category_id": category_id, "active": True}, page, page_size)

    def featured_products(self, uow: UnitOfWork, page: int, page_size: int) -> Page[Product]:
        return ProductRepository(uow).page({"featured": True, "active": True}, page, page_size)

    def top_rated_products(self, uow: UnitOfWork, page: int, page_size: int) -> Page[Product]:
        return ProductRepository(uow).page(
            {"average_rating": {"$ne": None}, "active": True}, page, page_size,
            sort=[("average_rating", DESCENDING)],
        )

    def best_selling_products(self, uow: UnitOfWork, page: int, page_size: int) -> Page[Product]:
        return ProductRepository(uow).page({"active": True}, page, page_size, sort=[("sales_count", DESCENDING)])

    def recent_products(self, uow: UnitOfWork, page: int, page_size: int) -> Page[Product]:
        return ProductRepository(uow).page({"active": True}, page, page_size, sort=[("created_at", DESCENDING)])

    def low_stock_products(self, uow: UnitOfWork) -> List[Product]:
        return ProductRepository(uow).low_stock()

    def update_stock(self, uow: UnitOfWork, product_id: str, quantity: int) -> Product:
        log.info("Updating stock for product ID: %s to %s", product_id, quantity)
        if quantity < 0:
            raise InvalidArgumentError("Stock quantity must be greater than or equal to 0")
        return ProductRepository(uow).update(product_id, {"stock_quantity": quantity})

    def decrement_stock(self, uow: UnitOfWork, product_id: str, quantity: int) -> int:
        """Conditional decrement; 0 means there was not enough stock and nothing changed."""
        if quantity < 1:
            raise InvalidArgumentError("Quantity must be at least 1")
        products = ProductRepository(uow)
        products.get(product_id)
        return products.decrement_stock(product_id, quantity)

    def toggle_status(self, uow: UnitOfWork, product_id: str, active: bool) -> Product:
        log.info("Toggling status for product ID: %s to %s", product_id, active)
        return ProductRepository(uow).update(product_id, {"active": active})

    def toggle_featured(self, uow: UnitOfWork, product_id: str, featured: bool) -> Product:
        log.info("Toggling featured status for product ID: %s to %s", product_id, featured)
        return ProductRepository(uow).update(product_id, {"featured": featured})


class ReviewService:
    def create_review(self, uow: UnitOfWork, product_id: str, user_id: str, request: ReviewIn) -> Review:
        ProductRepository(uow).get(product_id)
        verified = OrderRepository(uow).has_delivered_item(user_id, product_id)
        review = ReviewRepository(uow).insert(Review(
            product_id=product_id,
            user_id=user_id,
            verified=verified,
            **request.model_dump(),
        ))
        log.info("Review %s created for product ID: %s", review.id, product_id)
        return review

    def list_reviews(self, uow: UnitOfWork, product_id: str, page: int, page_size: int,
                     approved_only: bool = True) -> Page[Review]:
        ProductRepository(uow).get(product_id)
        return ReviewRepository(uow).for_product(product_id, page, page_size, approved_only)

    def approve_review(self, uow: UnitOfWork, review_id: str) -> Review:
        reviews = ReviewRepository(uow)
        review = reviews.update(review_id, {"approved": True})
        self._refresh_rating(uow, review.product_id)
        return review

    def delete_review(self, uow: UnitOfWork, review_id: str) -> None:
        reviews = ReviewRepository(uow)
        review = reviews.get(review_id)
        reviews.delete(review_id)
        self._refresh_rating(uow, review.product_id)

    def _refresh_rating(self, uow: UnitOfWork, product_id: str) -> None:
        ProductRepository(uow).refresh_rating(product_id)
