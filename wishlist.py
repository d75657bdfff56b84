"""Per-user wishlist of saved products."""
from pymongo import ReturnDocument
from pymongo.database import Database

import catalog
from database import serialize_document, utcnow
from errors import Rejected
from schemas import Wishlist, WishlistItem


def get_wishlist(db: Database, user_id: str) -> Wishlist:
    doc = db["wishlist"].find_one_and_update(
        {"user_id": user_id},
        {"$setOnInsert": {"items": [], "last_updated": utcnow()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return Wishlist.model_validate(serialize_document(doc))


def _save(db: Database, wishlist: Wishlist) -> Wishlist:
    wishlist.last_updated = utcnow()
    db["wishlist"].update_one(
        {"user_id": wishlist.user_id},
        {"$set": wishlist.model_dump(exclude={"id", "user_id"})},
    )
    return wishlist


def add_to_wishlist(db: Database, user_id: str, product_id: str) -> Wishlist:
    catalog.get_available_product(db, product_id)
    wishlist = get_wishlist(db, user_id)
    if wishlist.has_item(product_id):
        raise Rejected("Item already exists in wishlist")
    wishlist.items.append(WishlistItem(product_id=product_id, added_at=utcnow()))
    return _save(db, wishlist)


def remove_from_wishlist(db: Database, user_id: str, product_id: str) -> Wishlist:
    wishlist = get_wishlist(db, user_id)
    if wishlist.has_item(product_id):
        wishlist.items = [it for it in wishlist.items if it.product_id != product_id]
        _save(db, wishlist)
    return wishlist


def clear_wishlist(db: Database, user_id: str) -> Wishlist:
    wishlist = get_wishlist(db, user_id)
    wishlist.items = []
    return _save(db, wishlist)
