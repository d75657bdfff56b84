import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, List

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import EmailStr, Field, ValidationError, model_validator
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import cart as carts
import catalog
import coupons
import dashboard
import database
import orders
import users
import wishlist as wishlists
from database import get_db
from errors import APIError
from schemas import (Address, BundleItem, Category, Coupon, DiscountType, OrderStatus, PaymentMethod,
                     PaymentStatus, Product, Schema, ShippingMethod, Variant, VariantChoice)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
    yield


# App setup
app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Responses
def respond(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def fail(status_code: int, message: str, errors=None, headers=None) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors is not None:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body, headers=headers)


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    return fail(exc.status_code, exc.message, exc.errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return fail(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return fail(400, "Validation failed", jsonable_encoder(exc.errors()))


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError):
    return fail(400, "Validation failed", jsonable_encoder(exc.errors(include_url=False, include_context=False)))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return fail(500, "Internal server error")


def user_id_of(user: dict) -> str:
    return str(user["_id"])


def cart_payload(cart) -> dict:
    data = cart.to_api()
    data["summary"] = carts.summarize(cart).to_api()
    return {"cart": data}


# Schemas (request)
class RegisterRequest(Schema):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(Schema):
    email: EmailStr
    password: str


class ProfileUpdate(Schema):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    addresses: Optional[List[Address]] = None


SERVER_OWNED_PRODUCT_FIELDS = {"id", "sold_count", "soldCount", "created_at", "createdAt", "updated_at", "updatedAt"}


class ProductCreate(Product):
    """A new product as an admin submits it. The id, sales counter and timestamps are set here, not by the client."""

    @model_validator(mode="before")
    @classmethod
    def drop_server_owned(cls, data):
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if k not in SERVER_OWNED_PRODUCT_FIELDS}
        return data


class StockUpdate(Schema):
    stock: int = Field(..., ge=0)


class ProductUpdate(Schema):
    name: Optional[str] = Field(None, max_length=100)
    slug: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    brand: Optional[str] = None
    images: Optional[List[str]] = None
    sku: Optional[str] = None
    variants: Optional[List[Variant]] = None
    tags: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    has_bundle_items: Optional[bool] = None
    bundle_items: Optional[List[BundleItem]] = None
    bundle_size: Optional[int] = Field(None, ge=1, le=16)
    bundle_description: Optional[str] = None
    bundle_instructions: Optional[str] = None


class UserStatusUpdate(Schema):
    is_active: bool


class CategoryUpdate(Schema):
    name: Optional[str] = Field(None, max_length=50)
    slug: Optional[str] = None
    description: Optional[str] = Field(None, max_length=200)
    parent_id: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    sort_order: Optional[int] = None


class BundleSelection(Schema):
    selected_items: List[str] = Field(default_factory=list)


class CartItemIn(Schema):
    product_id: str
    quantity: int = Field(1, ge=1)
    variant: Optional[VariantChoice] = None
    selected_bundle_items: Optional[List[str]] = None


class CartItemUpdate(Schema):
    quantity: int = Field(..., ge=0)
    variant: Optional[VariantChoice] = None


class CouponCode(Schema):
    code: str = Field(..., min_length=1)


class CouponValidateRequest(Schema):
    code: str = Field(..., min_length=1)
    order_amount: float = Field(..., ge=0)


class CouponUpdate(Schema):
    code: Optional[str] = Field(None, min_length=3, max_length=20)
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = None
    type: Optional[DiscountType] = None
    value: Optional[float] = Field(None, ge=0)
    max_discount: Optional[float] = Field(None, ge=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=0)
    user_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None


class OrderCreate(Schema):
    shipping_address: Address
    billing_address: Address
    payment_method: PaymentMethod
    shipping_method: ShippingMethod = "standard"
    notes: Optional[str] = None
    is_gift: bool = False
    gift_message: Optional[str] = None


class StatusUpdate(Schema):
    status: OrderStatus
    note: Optional[str] = ""


class WishlistIn(Schema):
    product_id: str


# Health and helpers
@app.get("/")
def root():
    return respond(message="Storefront API running")


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Auth
@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    user = auth.register_user(db, payload.name, payload.email, payload.password)
    return respond({"token": auth.create_token(user), "user": auth.public_user(user)}, "User registered successfully")


@app.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = auth.authenticate(db, payload.email, payload.password)
    return respond({"token": auth.create_token(user), "user": auth.public_user(user)})


@app.get("/me")
def me(current_user: dict = Depends(auth.get_current_user)):
    return respond({"user": auth.public_user(current_user)})


@app.put("/me")
def update_profile(update: ProfileUpdate, current_user: dict = Depends(auth.get_current_user),
                   db: Database = Depends(get_db)):
    changes = update.model_dump(exclude_unset=True)
    changes["updated_at"] = database.utcnow()
    db["user"].update_one({"_id": current_user["_id"]}, {"$set": changes})
    user = db["user"].find_one({"_id": current_user["_id"]})
    return respond({"user": auth.public_user(user)}, "Profile updated successfully")


# Products
@app.get("/products")
def list_products(search: Optional[str] = None, category: Optional[str] = None,
                  featured: Optional[bool] = None,
                  min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
                  max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
                  sort: str = Query("newest", pattern="^(price_asc|price_desc|popular|newest|oldest)$"),
                  page: int = Query(1, ge=1), limit: int = Query(12, ge=1, le=50),
                  db: Database = Depends(get_db)):
    items, pagination = catalog.list_products(db, search, category, featured, min_price, max_price, sort, page, limit)
    return respond({"products": [p.to_api() for p in items], "pagination": pagination.to_api()})


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = catalog.get_available_product(db, product_id)
    return respond({"product": product.to_api()})


@app.get("/admin/products")
def admin_list_products(search: Optional[str] = None, category: Optional[str] = None,
                        is_active: Optional[bool] = Query(None, alias="isActive"),
                        sort: str = Query("newest", pattern="^(price_asc|price_desc|popular|newest|oldest)$"),
                        page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=50),
                        admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    items, pagination = catalog.list_products(db, search, category, sort=sort, page=page, limit=limit,
                                              is_active=is_active)
    return respond({"products": [p.to_api() for p in items], "pagination": pagination.to_api()})


@app.get("/admin/products/{product_id}")
def admin_get_product(product_id: str, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    return respond({"product": catalog.require_product(db, product_id).to_api()})


@app.post("/admin/products", status_code=201)
def create_product(payload: ProductCreate, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    product = catalog.create_product(db, payload)
    return respond({"product": product.to_api()}, "Product created successfully")


@app.put("/admin/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, admin: dict = Depends(auth.require_admin),
                   db: Database = Depends(get_db)):
    product = catalog.update_product(db, product_id, payload.model_dump(exclude_unset=True))
    return respond({"product": product.to_api()}, "Product updated successfully")


@app.delete("/admin/products/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return respond(message="Product deleted successfully")


@app.patch("/admin/products/{product_id}/toggle-status")
def toggle_product(product_id: str, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    product = catalog.toggle_product(db, product_id)
    state = "activated" if product.is_active else "deactivated"
    return respond({"product": product.to_api()}, f"Product {state} successfully")


@app.patch("/admin/products/{product_id}/stock")
def update_product_stock(product_id: str, payload: StockUpdate, admin: dict = Depends(auth.require_admin),
                         db: Database = Depends(get_db)):
    product = catalog.set_stock(db, product_id, payload.stock)
    return respond({"product": product.to_api()}, "Product stock updated successfully")


# Categories
@app.get("/categories")
def list_categories(db: Database = Depends(get_db)):
    return respond({"categories": [c.to_api() for c in catalog.list_categories(db)]})


@app.post("/admin/categories", status_code=201)
def create_category(payload: Category, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    category = catalog.create_category(db, payload)
    return respond({"category": category.to_api()}, "Category created successfully")


@app.put("/admin/categories/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate, admin: dict = Depends(auth.require_admin),
                    db: Database = Depends(get_db)):
    category = catalog.update_category(db, category_id, payload.model_dump(exclude_unset=True))
    return respond({"category": category.to_api()}, "Category updated successfully")


@app.delete("/admin/categories/{category_id}")
def delete_category(category_id: str, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    catalog.delete_category(db, category_id)
    return respond(message="Category deleted successfully")


@app.get("/admin/categories")
def admin_list_categories(admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    return respond({"categories": [c.to_api() for c in catalog.list_categories(db, include_inactive=True)]})


@app.patch("/admin/categories/{category_id}/toggle-status")
def toggle_category(category_id: str, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    category = catalog.toggle_category(db, category_id)
    state = "activated" if category.is_active else "deactivated"
    return respond({"category": category.to_api()}, f"Category {state} successfully")


# Bundles
@app.get("/bundle/config/{product_id}")
def bundle_config(product_id: str, db: Database = Depends(get_db)):
    product = catalog.get_available_product(db, product_id)
    if not product.has_bundle_items:
        raise HTTPException(status_code=400, detail="This product does not have bundle items")
    return respond({"bundleConfig": {
        "bundleSize": product.bundle_size,
        "bundleDescription": product.bundle_description,
        "bundleInstructions": product.bundle_instructions,
        "bundleItems": [item.to_api() for item in product.bundle_items],
    }})


@app.post("/bundle/calculate/{product_id}")
def bundle_price(product_id: str, payload: BundleSelection, db: Database = Depends(get_db)):
    product = catalog.get_available_product(db, product_id)
    if not product.has_bundle_items:
        raise HTTPException(status_code=400, detail="This product does not have bundle items")
    known = product.bundle_item_map()
    selected = [known[i] for i in payload.selected_items if i in known]
    return respond({
        "totalPrice": catalog.resolve_price(product, bundle_items=selected) if selected else 0,
        "selectedItems": [item.to_api() for item in selected],
        "itemCount": len(payload.selected_items),
    })


# Cart
@app.get("/cart")
def get_cart(user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return respond(cart_payload(carts.get_cart(db, user_id_of(user))))


@app.post("/cart")
def add_to_cart(item: CartItemIn, user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    cart = carts.add_to_cart(db, user_id_of(user), item.product_id, item.quantity, item.variant,
                             item.selected_bundle_items)
    return respond(cart_payload(cart), "Item added to cart successfully")


@app.post("/cart/coupon")
def apply_cart_coupon(payload: CouponCode, user: dict = Depends(auth.get_current_user),
                      db: Database = Depends(get_db)):
    cart = carts.apply_coupon_to_cart(db, user_id_of(user), payload.code)
    data = cart_payload(cart)
    data["discount"] = cart.coupon.discount_amount
    return respond(data, "Coupon applied successfully")


@app.delete("/cart/coupon")
def remove_cart_coupon(user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    cart = carts.remove_coupon_from_cart(db, user_id_of(user))
    return respond(cart_payload(cart), "Coupon removed successfully")


@app.put("/cart/{product_id}")
def update_cart_item(product_id: str, payload: CartItemUpdate, user: dict = Depends(auth.get_current_user),
                     db: Database = Depends(get_db)):
    cart = carts.update_cart_item(db, user_id_of(user), product_id, payload.quantity, payload.variant)
    message = "Item removed from cart" if payload.quantity == 0 else "Cart updated successfully"
    return respond(cart_payload(cart), message)


@app.delete("/cart/{product_id}")
def remove_cart_item(product_id: str, variant: Optional[str] = Query(None, description="Variant as JSON"),
                     user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    choice = VariantChoice.model_validate_json(variant) if variant else None
    cart = carts.remove_from_cart(db, user_id_of(user), product_id, choice)
    return respond(cart_payload(cart), "Item removed from cart successfully")


@app.delete("/cart")
def clear_cart(user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    cart = carts.clear_cart(db, user_id_of(user))
    return respond(cart_payload(cart), "Cart cleared successfully")


# Coupons
@app.post("/coupons/validate")
def validate_coupon(payload: CouponValidateRequest, user: dict = Depends(auth.get_current_user),
                    db: Database = Depends(get_db)):
    check = coupons.find_valid_coupon(db, payload.code, user_id_of(user))
    if check.valid:
        check = coupons.calculate_discount(check.coupon, payload.order_amount)
    if not check.valid:
        raise HTTPException(status_code=400, detail=check.message)
    coupon = check.coupon
    return respond({"coupon": {
        "code": coupon.code,
        "name": coupon.name,
        "description": coupon.description,
        "type": coupon.type,
        "value": coupon.value,
        "maxDiscount": coupon.max_discount,
        "discountAmount": check.discount_amount,
    }}, "Coupon is valid")


@app.get("/coupons/active")
def active_coupons(db: Database = Depends(get_db)):
    fields = {"code", "name", "description", "type", "value", "max_discount", "min_order_amount", "valid_until"}
    return respond({"coupons": [
        c.model_dump(include=fields, by_alias=True, mode="json") for c in coupons.active_coupons(db)
    ]})


@app.get("/coupons")
def list_coupons(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=50),
                 is_active: Optional[bool] = Query(None, alias="isActive"),
                 admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    items, pagination = coupons.list_coupons(db, is_active, page, limit)
    return respond({"coupons": [c.to_api() for c in items], "pagination": pagination.to_api()})


@app.post("/coupons", status_code=201)
def create_coupon(payload: Coupon, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    coupon = coupons.create_coupon(db, payload)
    return respond({"coupon": coupon.to_api()}, "Coupon created successfully")


@app.put("/coupons/{coupon_id}/toggle")
def toggle_coupon(coupon_id: str, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    coupon = coupons.toggle_coupon(db, coupon_id)
    state = "activated" if coupon.is_active else "deactivated"
    return respond({"coupon": coupon.to_api()}, f"Coupon {state} successfully")


@app.put("/coupons/{coupon_id}")
def update_coupon(coupon_id: str, payload: CouponUpdate, admin: dict = Depends(auth.require_admin),
                  db: Database = Depends(get_db)):
    coupon = coupons.update_coupon(db, coupon_id, payload.model_dump(exclude_unset=True))
    return respond({"coupon": coupon.to_api()}, "Coupon updated successfully")


@app.delete("/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    coupons.delete_coupon(db, coupon_id)
    return respond(message="Coupon deleted successfully")


# Orders
@app.post("/orders", status_code=201)
def create_order(payload: OrderCreate, user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    order = orders.create_order(
        db, user_id_of(user),
        shipping_address=payload.shipping_address,
        billing_address=payload.billing_address,
        payment_method=payload.payment_method,
        shipping_method=payload.shipping_method,
        notes=payload.notes,
        is_gift=payload.is_gift,
        gift_message=payload.gift_message,
    )
    return respond({"order": order.to_api()}, "Order created successfully")


@app.get("/orders")
def list_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50),
                status: Optional[OrderStatus] = None,
                user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    items, pagination = orders.list_orders(db, user_id_of(user), status, page=page, limit=limit)
    return respond({"orders": [o.to_api() for o in items], "pagination": pagination.to_api()})


@app.get("/orders/stats")
def order_stats(user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return respond({"stats": orders.get_order_stats(db, user_id_of(user)).to_api()})


@app.get("/orders/admin/all")
def list_all_orders(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=50),
                    status: Optional[OrderStatus] = None,
                    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
                    admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    items, pagination = orders.list_orders(db, None, status, payment_status, page, limit)
    return respond({"orders": [o.to_api() for o in items], "pagination": pagination.to_api()})


@app.get("/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    order = orders.get_order_for_user(db, order_id, user_id_of(user), user.get("is_admin", False))
    return respond({"order": order.to_api()})


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    order = orders.cancel_order(db, order_id, user_id_of(user))
    return respond({"order": order.to_api()}, "Order cancelled successfully")


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdate, admin: dict = Depends(auth.require_admin),
                        db: Database = Depends(get_db)):
    order = orders.update_status(db, order_id, payload.status, payload.note or "", user_id_of(admin))
    return respond({"order": order.to_api()}, "Order status updated successfully")


# Wishlist
@app.get("/wishlist")
def get_wishlist(user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return respond({"wishlist": wishlists.get_wishlist(db, user_id_of(user)).to_api()})


@app.post("/wishlist")
def add_to_wishlist(payload: WishlistIn, user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    wishlist = wishlists.add_to_wishlist(db, user_id_of(user), payload.product_id)
    return respond({"wishlist": wishlist.to_api()}, "Item added to wishlist successfully")


@app.get("/wishlist/check/{product_id}")
def wishlist_contains(product_id: str, user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    wishlist = wishlists.get_wishlist(db, user_id_of(user))
    return respond({"inWishlist": wishlist.has_item(product_id)})


@app.delete("/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user: dict = Depends(auth.get_current_user),
                         db: Database = Depends(get_db)):
    wishlist = wishlists.remove_from_wishlist(db, user_id_of(user), product_id)
    return respond({"wishlist": wishlist.to_api()}, "Item removed from wishlist successfully")


@app.delete("/wishlist")
def clear_wishlist(user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    wishlist = wishlists.clear_wishlist(db, user_id_of(user))
    return respond({"wishlist": wishlist.to_api()}, "Wishlist cleared successfully")


# Admin dashboard
@app.get("/admin/dashboard/stats")
def dashboard_stats(admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    return respond({"stats": dashboard.get_dashboard_stats(db).to_api()})


@app.get("/admin/dashboard/recent-orders")
def dashboard_recent_orders(limit: int = Query(10, ge=1, le=50), admin: dict = Depends(auth.require_admin),
                            db: Database = Depends(get_db)):
    return respond({"orders": [o.to_api() for o in dashboard.get_recent_orders(db, limit)]})


@app.get("/admin/dashboard/top-products")
def dashboard_top_products(limit: int = Query(5, ge=1, le=50), admin: dict = Depends(auth.require_admin),
                           db: Database = Depends(get_db)):
    return respond({"products": [p.to_api() for p in dashboard.get_top_products(db, limit)]})


@app.get("/admin/dashboard/sales-data")
def dashboard_sales(period: str = "7d", admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    return respond(dashboard.get_sales_data(db, period).to_api())


@app.get("/admin/dashboard/user-analytics")
def dashboard_users(admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    return respond({"analytics": dashboard.get_user_analytics(db).to_api()})


# Admin users
@app.get("/admin/users")
def admin_list_users(search: Optional[str] = None, role: Optional[str] = Query(None, pattern="^(user|admin)$"),
                     is_active: Optional[bool] = Query(None, alias="isActive"),
                     page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=50),
                     admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    items, pagination = users.list_users(db, search, role, is_active, page, limit)
    return respond({"users": [auth.public_user(u) for u in items], "pagination": pagination.to_api()})


@app.put("/admin/users/{user_id}/status")
def admin_set_user_status(user_id: str, payload: UserStatusUpdate, admin: dict = Depends(auth.require_admin),
                          db: Database = Depends(get_db)):
    user = users.set_user_status(db, user_id, payload.is_active)
    state = "activated" if payload.is_active else "deactivated"
    return respond({"user": auth.public_user(user)}, f"User {state} successfully")


@app.get("/admin/orders/stats")
def all_order_stats(admin: dict = Depends(auth.require_admin), db: Database = Depends(get_db)):
    return respond({"stats": orders.get_order_stats(db).to_api()})


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
