"""
Coupon evaluation and administration.

Eligibility is answered with a ``CouponCheck`` value rather than an
exception: an expired or exhausted coupon is an ordinary outcome the caller
reports back to the shopper.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from pymongo.database import Database

from database import oid, serialize_document, create_document, paginate, utcnow
from errors import NotFound, Rejected
from schemas import Coupon, Pagination

logger = logging.getLogger(__name__)

USE_ATTEMPTS = 5


class CouponCheck(NamedTuple):
    valid: bool
    message: Optional[str] = None
    coupon: Optional[Coupon] = None
    discount_amount: float = 0.0


def validity_problem(coupon: Coupon, now: Optional[datetime] = None) -> Optional[str]:
    now = now or utcnow()
    if not coupon.is_active:
        return "Coupon is inactive"
    if now < coupon.valid_from:
        return "Coupon is not yet active"
    if now > coupon.valid_until:
        return "Coupon has expired"
    if coupon.max_uses and coupon.used_count >= coupon.max_uses:
        return "Coupon usage limit reached"
    return None


def is_valid(coupon: Coupon, now: Optional[datetime] = None) -> bool:
    return validity_problem(coupon, now) is None


def can_user_use(coupon: Coupon, user_id: str, now: Optional[datetime] = None) -> CouponCheck:
    problem = validity_problem(coupon, now)
    if problem:
        return CouponCheck(False, problem)
    if coupon.user_limit:
        used = sum(1 for usage in coupon.used_by if usage.user_id == str(user_id))
        if used >= coupon.user_limit:
            return CouponCheck(False, "Coupon usage limit reached for this user")
    return CouponCheck(True, coupon=coupon)


def calculate_discount(coupon: Coupon, order_amount: float) -> CouponCheck:
    if order_amount < 0:
        raise ValueError("order_amount must not be negative")
    if order_amount < coupon.min_order_amount:
        return CouponCheck(False, f"Minimum order amount of ₹{coupon.min_order_amount:g} required")

    if coupon.type == "percentage":
        discount = order_amount * coupon.value / 100
        if coupon.max_discount:
            discount = min(discount, coupon.max_discount)
    else:
        discount = coupon.value

    return CouponCheck(True, coupon=coupon, discount_amount=round(min(discount, order_amount), 2))


def get_coupon_by_code(db: Database, code: str) -> Optional[Coupon]:
    doc = db["coupon"].find_one({"code": code.strip().upper()})
    return Coupon.model_validate(serialize_document(doc)) if doc else None


def find_valid_coupon(db: Database, code: str, user_id: Optional[str] = None,
                      now: Optional[datetime] = None) -> CouponCheck:
    coupon = get_coupon_by_code(db, code)
    if coupon is None:
        return CouponCheck(False, "Coupon not found")
    problem = validity_problem(coupon, now)
    if problem:
        return CouponCheck(False, problem)
    if user_id:
        return can_user_use(coupon, user_id, now)
    return CouponCheck(True, coupon=coupon)


def use_coupon(db: Database, code: str, user_id: str, order_id: str,
               now: Optional[datetime] = None) -> CouponCheck:
    """Record one use for ``order_id`` if the coupon still allows it.

    The ledger write is conditional on ``used_count`` being what was read, so
    two checkouts racing for the last use (or for the same shopper's last
    use) cannot both get it. A lost race re-reads and re-checks.
    """
    now = now or utcnow()
    for _ in range(USE_ATTEMPTS):
        coupon = get_coupon_by_code(db, code)
        if coupon is None:
            return CouponCheck(False, "Coupon not found")
        check = can_user_use(coupon, user_id, now)
        if not check.valid:
            return check
        result = db["coupon"].update_one(
            {"code": coupon.code, "is_active": True, "used_count": coupon.used_count},
            {
                "$inc": {"used_count": 1},
                "$push": {"used_by": {"user_id": str(user_id), "used_at": now, "order_id": order_id}},
            },
        )
        if result.modified_count == 1:
            return check
        logger.info("Coupon %s changed while recording use for order %s, retrying", coupon.code, order_id)
    logger.warning("Gave up recording use of coupon %s for order %s", code, order_id)
    return CouponCheck(False, "Coupon is in high demand, please try again")


def release_coupon(db: Database, code: str, order_id: str) -> None:
    """Undo ``use_coupon`` for an order that was never written."""
    db["coupon"].update_one(
        {"code": code.strip().upper(), "used_by.order_id": order_id},
        {"$inc": {"used_count": -1}, "$pull": {"used_by": {"order_id": order_id}}},
    )


# Administration

def get_coupon(db: Database, coupon_id: str) -> Coupon:
    _id = oid(coupon_id)
    doc = db["coupon"].find_one({"_id": _id}) if _id else None
    if not doc:
        raise NotFound("Coupon not found")
    return Coupon.model_validate(serialize_document(doc))


def list_coupons(db: Database, is_active: Optional[bool] = None, page: int = 1,
                 limit: int = 20) -> Tuple[List[Coupon], Pagination]:
    filt = {} if is_active is None else {"is_active": is_active}
    docs, pagination = paginate(db, "coupon", filt, page, limit, sort=[("created_at", -1)])
    return [Coupon.model_validate(d) for d in docs], pagination


def active_coupons(db: Database, now: Optional[datetime] = None, limit: int = 10) -> List[Coupon]:
    now = now or utcnow()
    cursor = db["coupon"].find({
        "is_active": True,
        "valid_from": {"$lte": now},
        "valid_until": {"$gte": now},
    }).sort("valid_until", 1).limit(limit)
    return [Coupon.model_validate(serialize_document(d)) for d in cursor]


def create_coupon(db: Database, coupon: Coupon) -> Coupon:
    if get_coupon_by_code(db, coupon.code):
        raise Rejected("Coupon code already exists")
    coupon_id = create_document(db, "coupon", coupon.model_copy(update={"used_count": 0, "used_by": []}))
    logger.info("Created coupon %s", coupon.code)
    return get_coupon(db, coupon_id)


def update_coupon(db: Database, coupon_id: str, changes: Dict[str, Any]) -> Coupon:
    current = get_coupon(db, coupon_id)
    merged = current.model_dump()
    merged.update({k: v for k, v in changes.items() if k not in ("used_count", "used_by")})
    updated = Coupon.model_validate(merged)
    if updated.code != current.code and get_coupon_by_code(db, updated.code):
        raise Rejected("Coupon code already exists")
    doc = updated.model_dump(exclude={"id", "created_at", "used_count", "used_by"})
    doc["updated_at"] = utcnow()
    db["coupon"].update_one({"_id": oid(coupon_id)}, {"$set": doc})
    return get_coupon(db, coupon_id)


def delete_coupon(db: Database, coupon_id: str) -> None:
    get_coupon(db, coupon_id)
    db["coupon"].delete_one({"_id": oid(coupon_id)})


def toggle_coupon(db: Database, coupon_id: str) -> Coupon:
    coupon = get_coupon(db, coupon_id)
    db["coupon"].update_one({"_id": oid(coupon_id)}, {"$set": {"is_active": not coupon.is_active, "updated_at": utcnow()}})
    return get_coupon(db, coupon_id)
