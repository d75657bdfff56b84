"""
Catalog: products, categories, price resolution and the stock counters.

Stock is the one counter shared by several flows (cart validation reads it,
checkout and cancellation write it). Writes go through ``reserve_stock`` and
``release_stock`` so each change is a single atomic document update.
"""
import re
import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database

from database import oid, serialize_document, create_document, paginate, utcnow
from errors import NotFound, Rejected
from schemas import BundleItem, Category, Pagination, Product, VariantChoice

logger = logging.getLogger(__name__)

PRODUCT_SORTS = {
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "popular": [("sold_count", -1)],
    "oldest": [("created_at", 1)],
    "newest": [("created_at", -1)],
}


# Products

def get_product(db: Database, product_id: str) -> Optional[Product]:
    _id = oid(product_id)
    if _id is None:
        return None
    doc = db["product"].find_one({"_id": _id})
    return Product.model_validate(serialize_document(doc)) if doc else None


def get_available_product(db: Database, product_id: str) -> Product:
    product = get_product(db, product_id)
    if product is None or not product.is_active:
        raise NotFound("Product not found or unavailable")
    return product


def require_product(db: Database, product_id: str) -> Product:
    """Any product, active or not, for admin screens."""
    product = get_product(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    return product


def active_product_ids(db: Database, product_ids: List[str]) -> set:
    ids = [i for i in (oid(p) for p in product_ids) if i is not None]
    if not ids:
        return set()
    cursor = db["product"].find({"_id": {"$in": ids}, "is_active": True}, {"_id": 1})
    return {str(d["_id"]) for d in cursor}


def list_products(db: Database, search: Optional[str] = None, category: Optional[str] = None,
                  featured: Optional[bool] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, sort: str = "newest", page: int = 1,
                  limit: int = 12, is_active: Optional[bool] = True) -> Tuple[List[Product], Pagination]:
    """Storefront listing by default; admins pass ``is_active=None`` to see everything."""
    filt: Dict[str, Any] = {} if is_active is None else {"is_active": is_active}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [
            {"name": pattern},
            {"description": pattern},
            {"brand": pattern},
            {"tags": pattern},
        ]
    if category:
        filt["category_id"] = category
    if featured is not None:
        filt["is_featured"] = featured
    price_cond = {}
    if min_price is not None:
        price_cond["$gte"] = min_price
    if max_price is not None:
        price_cond["$lte"] = max_price
    if price_cond:
        filt["price"] = price_cond

    docs, pagination = paginate(db, "product", filt, page, limit, sort=PRODUCT_SORTS.get(sort, PRODUCT_SORTS["newest"]))
    return [Product.model_validate(d) for d in docs], pagination


def create_product(db: Database, product: Product) -> Product:
    if product.category_id and get_category(db, product.category_id) is None:
        raise Rejected("Category not found")
    product_id = create_document(db, "product", product)
    logger.info("Created product %s (%s)", product_id, product.name)
    return get_product(db, product_id)


def update_product(db: Database, product_id: str, changes: Dict[str, Any]) -> Product:
    current = require_product(db, product_id)
    merged = current.model_dump()
    merged.update(changes)
    # Validating the merged document keeps the pricing rules true after partial updates.
    updated = Product.model_validate(merged)
    doc = updated.model_dump(exclude={"id", "created_at", "stock", "sold_count"})
    if "stock" in changes:
        doc["stock"] = updated.stock
    doc["updated_at"] = utcnow()
    db["product"].update_one({"_id": oid(product_id)}, {"$set": doc})
    return get_product(db, product_id)


def delete_product(db: Database, product_id: str) -> None:
    _id = oid(product_id)
    if _id is None or db["product"].delete_one({"_id": _id}).deleted_count == 0:
        raise NotFound("Product not found")
    logger.info("Deleted product %s", product_id)


def toggle_product(db: Database, product_id: str) -> Product:
    product = require_product(db, product_id)
    db["product"].update_one({"_id": oid(product_id)}, {"$set": {"is_active": not product.is_active, "updated_at": utcnow()}})
    logger.info("Product %s %s", product_id, "deactivated" if product.is_active else "activated")
    return get_product(db, product_id)


def set_stock(db: Database, product_id: str, stock: int) -> Product:
    """Set the stock count outright, as after a stocktake."""
    if stock < 0:
        raise Rejected("Stock cannot be negative")
    require_product(db, product_id)
    db["product"].update_one({"_id": oid(product_id)}, {"$set": {"stock": stock, "updated_at": utcnow()}})
    return get_product(db, product_id)


# Pricing

def resolve_variant(product: Product, choice: Optional[VariantChoice]) -> Optional[VariantChoice]:
    """Return the shopper's variant with the catalog price filled in."""
    if choice is None:
        return None
    variant = product.find_variant(choice.name, choice.value)
    if variant is None:
        raise Rejected(f"Variant {choice.name}: {choice.value} is not available for this product")
    return VariantChoice(name=variant.name, value=variant.value, price=variant.price)


def select_bundle_items(product: Product, selected: Optional[List[str]]) -> List[BundleItem]:
    if not product.has_bundle_items:
        raise Rejected("This product does not have bundle items")
    selected = selected or []
    if len(selected) != product.bundle_size:
        raise Rejected(f"Please select exactly {product.bundle_size} items for this product")
    known = product.bundle_item_map()
    if not all(item_id in known for item_id in selected):
        raise Rejected("Invalid bundle item selection")
    return [known[item_id] for item_id in selected]


def resolve_price(product: Product, variant: Optional[VariantChoice] = None,
                  bundle_items: Optional[List[BundleItem]] = None) -> float:
    if variant is not None and variant.price is not None:
        return variant.price
    if product.has_bundle_items and bundle_items:
        return sum(item.price for item in bundle_items)
    return product.price or 0.0


# Stock

def reserve_stock(db: Database, product_id: str, quantity: int) -> bool:
    """Atomically take ``quantity`` units if at least that many are in stock."""
    doc = db["product"].find_one_and_update(
        {"_id": oid(product_id), "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity, "sold_count": quantity}},
        return_document=ReturnDocument.AFTER,
    )
    return doc is not None


def release_stock(db: Database, product_id: str, quantity: int) -> None:
    db["product"].update_one(
        {"_id": oid(product_id)},
        {"$inc": {"stock": quantity, "sold_count": -quantity}},
    )


# Categories

def get_category(db: Database, category_id: str) -> Optional[Category]:
    _id = oid(category_id)
    doc = db["category"].find_one({"_id": _id}) if _id else None
    return Category.model_validate(serialize_document(doc)) if doc else None


def list_categories(db: Database, include_inactive: bool = False) -> List[Category]:
    filt = {} if include_inactive else {"is_active": True}
    cursor = db["category"].find(filt).sort([("sort_order", 1), ("name", 1)])
    return [Category.model_validate(serialize_document(d)) for d in cursor]


def create_category(db: Database, category: Category) -> Category:
    if db["category"].find_one({"$or": [{"name": category.name}, {"slug": category.slug}]}):
        raise Rejected("Category with this name already exists")
    if category.parent_id and get_category(db, category.parent_id) is None:
        raise Rejected("Parent category not found")
    category_id = create_document(db, "category", category)
    return get_category(db, category_id)


def update_category(db: Database, category_id: str, changes: Dict[str, Any]) -> Category:
    current = get_category(db, category_id)
    if current is None:
        raise NotFound("Category not found")
    merged = current.model_dump()
    merged.update(changes)
    updated = Category.model_validate(merged)
    if updated.name != current.name and db["category"].find_one({"name": updated.name}):
        raise Rejected("Category with this name already exists")
    doc = updated.model_dump(exclude={"id"})
    doc["updated_at"] = utcnow()
    db["category"].update_one({"_id": oid(category_id)}, {"$set": doc})
    return get_category(db, category_id)


def delete_category(db: Database, category_id: str) -> None:
    if get_category(db, category_id) is None:
        raise NotFound("Category not found")
    in_use = db["product"].count_documents({"category_id": category_id})
    if in_use:
        raise Rejected(f"Cannot delete category. It has {in_use} product(s) associated with it.")
    db["category"].delete_one({"_id": oid(category_id)})


def toggle_category(db: Database, category_id: str) -> Category:
    category = get_category(db, category_id)
    if category is None:
        raise NotFound("Category not found")
    db["category"].update_one({"_id": oid(category_id)}, {"$set": {"is_active": not category.is_active, "updated_at": utcnow()}})
    return get_category(db, category_id)
