"""
Shopping cart: one per user, created on first access.

The pure operations (``add_item`` .. ``summarize``) mutate a ``schemas.Cart``
in memory and never touch the database. The service functions below them
load the cart, check the catalog, apply one operation and write the whole
document back. Two concurrent requests for the same user are last-write-wins.
"""
import logging
from typing import List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

import catalog
import coupons
from database import serialize_document, utcnow
from errors import NotFound, Rejected
from schemas import AppliedCoupon, Cart, CartItem, CartSummary, VariantChoice, line_key

logger = logging.getLogger(__name__)


# Aggregate operations

def _find_line(cart: Cart, product_id: str, variant: Optional[VariantChoice] = None,
               selected_bundle_items: Optional[List[str]] = None) -> Optional[int]:
    """Index of the matching line.

    With a bundle selection the full line key must match. Without one, the
    first line for the product and variant matches, whatever its selection.
    """
    if selected_bundle_items is not None:
        index = {item.line_key(): i for i, item in enumerate(cart.items)}
        return index.get(line_key(product_id, variant, selected_bundle_items))
    wanted = line_key(product_id, variant)[:2]
    for i, item in enumerate(cart.items):
        if item.line_key()[:2] == wanted:
            return i
    return None


def add_item(cart: Cart, product_id: str, quantity: int, price: float, variant: Optional[VariantChoice] = None,
             selected_bundle_items: Optional[List[str]] = None) -> Cart:
    i = _find_line(cart, product_id, variant, selected_bundle_items or [])
    if i is not None:
        cart.items[i].quantity += quantity
    else:
        cart.items.append(CartItem(
            product_id=str(product_id),
            quantity=quantity,
            variant=variant,
            price=price,
            selected_bundle_items=list(selected_bundle_items or []),
            added_at=utcnow(),
        ))
    cart.last_updated = utcnow()
    return cart


def update_item_quantity(cart: Cart, product_id: str, quantity: int, variant: Optional[VariantChoice] = None) -> Cart:
    i = _find_line(cart, product_id, variant)
    if i is None:
        return cart
    if quantity <= 0:
        del cart.items[i]
    else:
        cart.items[i].quantity = quantity
    cart.last_updated = utcnow()
    return cart


def remove_item(cart: Cart, product_id: str, variant: Optional[VariantChoice] = None) -> Cart:
    i = _find_line(cart, product_id, variant)
    if i is not None:
        del cart.items[i]
        cart.last_updated = utcnow()
    return cart


def clear(cart: Cart) -> Cart:
    cart.items = []
    cart.coupon = None
    cart.last_updated = utcnow()
    return cart


def apply_coupon(cart: Cart, code: str, discount_amount: float, discount_type: str = "percentage") -> Cart:
    cart.coupon = AppliedCoupon(code=code, discount_amount=discount_amount, discount_type=discount_type)
    cart.last_updated = utcnow()
    return cart


def remove_coupon(cart: Cart) -> Cart:
    cart.coupon = None
    cart.last_updated = utcnow()
    return cart


def summarize(cart: Cart) -> CartSummary:
    item_count = sum(item.quantity for item in cart.items)
    subtotal = round(sum(item.price * item.quantity for item in cart.items), 2)
    # The snapshot was taken against an earlier subtotal; never discount past the current one.
    discount = min(cart.coupon.discount_amount, subtotal) if cart.coupon else 0
    return CartSummary(
        item_count=item_count,
        subtotal=subtotal,
        discount=discount,
        total=max(0, round(subtotal - discount, 2)),
    )


def prune(cart: Cart, valid_product_ids: set) -> List[CartItem]:
    """Drop lines whose product is gone or inactive; return what was dropped."""
    dropped = [item for item in cart.items if item.product_id not in valid_product_ids]
    if dropped:
        cart.items = [item for item in cart.items if item.product_id in valid_product_ids]
        cart.last_updated = utcnow()
    return dropped


# Persistence

def save(db: Database, cart: Cart) -> Cart:
    doc = cart.model_dump(exclude={"id", "user_id"})
    db["cart"].update_one({"user_id": cart.user_id}, {"$set": doc})
    return cart


def load(db: Database, user_id: str) -> Cart:
    doc = db["cart"].find_one_and_update(
        {"user_id": user_id},
        {"$setOnInsert": {"items": [], "coupon": None, "last_updated": utcnow()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return Cart.model_validate(serialize_document(doc))


def get_cart(db: Database, user_id: str) -> Cart:
    cart = load(db, user_id)
    if cart.items:
        valid = catalog.active_product_ids(db, [item.product_id for item in cart.items])
        dropped = prune(cart, valid)
        if dropped:
            logger.warning("Removed %d unavailable item(s) from cart of user %s", len(dropped), user_id)
            save(db, cart)
    return cart


# Flows used by the API

def add_to_cart(db: Database, user_id: str, product_id: str, quantity: int,
                variant: Optional[VariantChoice] = None, selected_bundle_items: Optional[List[str]] = None) -> Cart:
    product = catalog.get_available_product(db, product_id)
    bundle_items = None
    if product.has_bundle_items:
        bundle_items = catalog.select_bundle_items(product, selected_bundle_items)
    else:
        selected_bundle_items = None
    variant = catalog.resolve_variant(product, variant)
    if product.stock < quantity:
        raise Rejected("Insufficient stock available")

    cart = get_cart(db, user_id)
    price = catalog.resolve_price(product, variant, bundle_items)
    add_item(cart, product.id, quantity, price, variant, selected_bundle_items)
    return save(db, cart)


def update_cart_item(db: Database, user_id: str, product_id: str, quantity: int,
                     variant: Optional[VariantChoice] = None) -> Cart:
    cart = get_cart(db, user_id)
    i = _find_line(cart, product_id, variant)
    if i is None:
        raise NotFound("Item not found in cart")
    if quantity > cart.items[i].quantity:
        product = catalog.get_product(db, product_id)
        if product is None or product.stock < quantity:
            raise Rejected("Insufficient stock available")
    update_item_quantity(cart, product_id, quantity, variant)
    return save(db, cart)


def remove_from_cart(db: Database, user_id: str, product_id: str, variant: Optional[VariantChoice] = None) -> Cart:
    cart = get_cart(db, user_id)
    remove_item(cart, product_id, variant)
    return save(db, cart)


def clear_cart(db: Database, user_id: str) -> Cart:
    cart = load(db, user_id)
    clear(cart)
    return save(db, cart)


def apply_coupon_to_cart(db: Database, user_id: str, code: str) -> Cart:
    cart = get_cart(db, user_id)
    if not cart.items:
        raise Rejected("Cannot apply coupon to empty cart")

    check = coupons.find_valid_coupon(db, code, user_id)
    if not check.valid:
        raise Rejected(check.message)
    coupon = check.coupon

    result = coupons.calculate_discount(coupon, summarize(cart).subtotal)
    if not result.valid:
        raise Rejected(result.message)
    if cart.coupon and cart.coupon.code == coupon.code:
        raise Rejected("This coupon is already applied to your cart")

    # One coupon at a time: the new snapshot replaces any previous one.
    remove_coupon(cart)
    apply_coupon(cart, coupon.code, result.discount_amount, coupon.type)
    logger.info("Applied coupon %s to cart of user %s (discount %.2f)", coupon.code, user_id, result.discount_amount)
    return save(db, cart)


def remove_coupon_from_cart(db: Database, user_id: str) -> Cart:
    cart = get_cart(db, user_id)
    if cart.coupon is None:
        raise Rejected("No coupon applied to cart")
    remove_coupon(cart)
    return save(db, cart)
