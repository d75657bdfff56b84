"""
Orders: checkout from the cart and the status lifecycle afterwards.

Checkout touches several documents (product stock, the order, the cart, the
coupon ledger) and MongoDB gives atomicity per document only. Stock is taken
first with one conditional decrement per product, then the coupon use is
claimed with a conditional update. If either claim fails, or the order cannot
be written, everything already taken is given back and nothing else is
changed. The cart is cleared only after the order exists.
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

import cart as carts
import catalog
import coupons
from database import oid, serialize_document, paginate, utcnow
from errors import Forbidden, NotFound, Rejected
from schemas import (Address, Cart, Order, OrderCoupon, OrderItem, OrderStats, Pagination, Product, StatusEntry)

logger = logging.getLogger(__name__)

TAX_RATE = 0.18  # GST
SHIPPING_RATES = {"standard": 100.0, "express": 200.0, "overnight": 500.0}
CURRENCY = "INR"
ORDER_PREFIX = "FL"
CANCELLABLE_STATUSES = ("pending", "confirmed")


def next_order_number(db: Database, now: Optional[datetime] = None) -> str:
    """FL + YYMMDD + a four digit sequence that restarts every day."""
    day = (now or utcnow()).strftime("%y%m%d")
    counter = db["counter"].find_one_and_update(
        {"_id": f"order-{day}"},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return f"{ORDER_PREFIX}{day}{counter['seq']:04d}"


def compute_totals(subtotal: float, discount: float, shipping_method: str) -> Dict[str, float]:
    tax = round(subtotal * TAX_RATE, 2)
    shipping_cost = SHIPPING_RATES[shipping_method]
    return {
        "subtotal": round(subtotal, 2),
        "tax": tax,
        "shipping_cost": shipping_cost,
        "discount": round(discount, 2),
        "total": round(subtotal + tax + shipping_cost - discount, 2),
    }


def _reserve_all(db: Database, needed: Dict[str, int], products: Dict[str, Product]) -> None:
    reserved: List[Tuple[str, int]] = []
    for product_id, quantity in needed.items():
        if not catalog.reserve_stock(db, product_id, quantity):
            logger.warning("Stock reservation failed for product %s (wanted %d)", product_id, quantity)
            _release_all(db, reserved)
            name = products[product_id].name if product_id in products else "product"
            raise Rejected(f"Insufficient stock for {name}")
        reserved.append((product_id, quantity))


def _release_all(db: Database, reserved: List[Tuple[str, int]]) -> None:
    for product_id, quantity in reserved:
        catalog.release_stock(db, product_id, quantity)
    if reserved:
        logger.warning("Released stock for %d product(s) after failed checkout", len(reserved))


def _checkout_coupon(db: Database, cart: Cart, user_id: str, subtotal: float) -> Optional[OrderCoupon]:
    """Re-evaluate the cart's coupon against the subtotal actually being charged."""
    if cart.coupon is None:
        return None
    check = coupons.find_valid_coupon(db, cart.coupon.code, user_id)
    if check.valid:
        check = coupons.calculate_discount(check.coupon, subtotal)
    if not check.valid:
        raise Rejected(check.message)
    return OrderCoupon(code=check.coupon.code, discount_amount=check.discount_amount)


def create_order(db: Database, user_id: str, shipping_address: Address, billing_address: Address,
                 payment_method: str, shipping_method: str = "standard", notes: Optional[str] = None,
                 is_gift: bool = False, gift_message: Optional[str] = None) -> Order:
    cart = carts.get_cart(db, user_id)
    if not cart.items:
        raise Rejected("Cart is empty")

    products: Dict[str, Product] = {}
    needed: Counter = Counter()
    for item in cart.items:
        product = products.get(item.product_id) or catalog.get_product(db, item.product_id)
        if product is None:
            raise Rejected("Insufficient stock for product")
        products[item.product_id] = product
        needed[item.product_id] += item.quantity

    # Cheap check on the loaded documents; the reservations below re-check atomically.
    for product_id, quantity in needed.items():
        if products[product_id].stock < quantity:
            raise Rejected(f"Insufficient stock for {products[product_id].name}")

    subtotal = carts.summarize(cart).subtotal
    order_coupon = _checkout_coupon(db, cart, user_id, subtotal)
    now = utcnow()
    items = [
        OrderItem(
            product_id=item.product_id,
            name=products[item.product_id].name,
            price=item.price,
            quantity=item.quantity,
            variant=item.variant,
            selected_bundle_items=item.selected_bundle_items,
            image=(products[item.product_id].images or [None])[0],
            sku=products[item.product_id].sku,
        )
        for item in cart.items
    ]

    _reserve_all(db, needed, products)
    order_id = ObjectId()
    coupon_taken = False
    try:
        if order_coupon:
            check = coupons.use_coupon(db, order_coupon.code, user_id, str(order_id), now)
            if not check.valid:
                raise Rejected(check.message)
            coupon_taken = True
        order = Order(
            order_number=next_order_number(db, now),
            user_id=user_id,
            items=items,
            shipping_address=shipping_address,
            billing_address=billing_address,
            payment_method=payment_method,
            shipping_method=shipping_method,
            status_history=[StatusEntry(status="pending", timestamp=now, note="Order created")],
            coupon=order_coupon,
            currency=CURRENCY,
            notes=notes,
            is_gift=is_gift,
            gift_message=gift_message,
            created_at=now,
            updated_at=now,
            **compute_totals(subtotal, order_coupon.discount_amount if order_coupon else 0, shipping_method),
        )
        db["order"].insert_one({"_id": order_id, **order.model_dump(exclude={"id"})})
    except Exception:
        if coupon_taken:
            coupons.release_coupon(db, order_coupon.code, str(order_id))
        _release_all(db, list(needed.items()))
        raise

    carts.clear_cart(db, user_id)
    logger.info("Order %s created for user %s (total %.2f)", order.order_number, user_id, order.total)
    return order.model_copy(update={"id": str(order_id)})


def get_order(db: Database, order_id: str) -> Order:
    _id = oid(order_id)
    doc = db["order"].find_one({"_id": _id}) if _id else None
    if not doc:
        raise NotFound("Order not found")
    return Order.model_validate(serialize_document(doc))


def get_order_for_user(db: Database, order_id: str, user_id: str, is_admin: bool = False) -> Order:
    order = get_order(db, order_id)
    if order.user_id != user_id and not is_admin:
        raise Forbidden("Not authorized to access this order")
    return order


def list_orders(db: Database, user_id: Optional[str] = None, status: Optional[str] = None,
                payment_status: Optional[str] = None, page: int = 1, limit: int = 10) -> Tuple[List[Order], Pagination]:
    filt = {}
    if user_id:
        filt["user_id"] = user_id
    if status:
        filt["order_status"] = status
    if payment_status:
        filt["payment_status"] = payment_status
    docs, pagination = paginate(db, "order", filt, page, limit, sort=[("created_at", -1)])
    return [Order.model_validate(d) for d in docs], pagination


def _apply_status(db: Database, filt: dict, status: str, note: str, updated_by: Optional[str]) -> bool:
    now = utcnow()
    entry = StatusEntry(status=status, timestamp=now, note=note or "", updated_by=updated_by)
    changes = {"order_status": status, "updated_at": now}
    if status == "delivered":
        changes["delivered_at"] = now
    result = db["order"].update_one(filt, {"$set": changes, "$push": {"status_history": entry.model_dump()}})
    return result.matched_count == 1


def update_status(db: Database, order_id: str, status: str, note: str = "",
                  updated_by: Optional[str] = None) -> Order:
    _id = oid(order_id)
    if _id is None or not _apply_status(db, {"_id": _id}, status, note, updated_by):
        raise NotFound("Order not found")
    logger.info("Order %s moved to %s", order_id, status)
    return get_order(db, order_id)


def cancel_order(db: Database, order_id: str, user_id: str) -> Order:
    order = get_order(db, order_id)
    if order.user_id != user_id:
        raise Forbidden("Not authorized to cancel this order")
    if order.order_status not in CANCELLABLE_STATUSES:
        raise Rejected("Order cannot be cancelled at this stage")

    # The status guard in the filter makes sure only one cancel restores stock.
    filt = {"_id": oid(order_id), "order_status": {"$in": list(CANCELLABLE_STATUSES)}}
    if not _apply_status(db, filt, "cancelled", "Order cancelled by customer", None):
        raise Rejected("Order cannot be cancelled at this stage")

    for item in order.items:
        catalog.release_stock(db, item.product_id, item.quantity)
    logger.info("Order %s cancelled by user %s", order.order_number, user_id)
    return get_order(db, order_id)


def get_order_stats(db: Database, user_id: Optional[str] = None) -> OrderStats:
    match = {"user_id": user_id} if user_id else {}
    pipeline = [
        {"$match": match},
        {"$group": {
            "_id": None,
            "total_orders": {"$sum": 1},
            "total_revenue": {"$sum": "$total"},
            "average_order_value": {"$avg": "$total"},
            "pending_orders": {"$sum": {"$cond": [{"$eq": ["$order_status", "pending"]}, 1, 0]}},
            "completed_orders": {"$sum": {"$cond": [{"$eq": ["$order_status", "delivered"]}, 1, 0]}},
        }},
    ]
    rows = list(db["order"].aggregate(pipeline))
    if not rows:
        return OrderStats()
    row = rows[0]
    row.pop("_id", None)
    row["average_order_value"] = round(row.get("average_order_value") or 0, 2)
    return OrderStats(**row)
