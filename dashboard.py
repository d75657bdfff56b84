"""Read-only admin reporting over users, products and orders."""
import calendar
from datetime import datetime, timedelta
from typing import List, Optional

from pymongo.database import Database

from database import serialize_document, utcnow
from schemas import Order, Product, Schema

# Revenue only counts orders that reached the customer.
COMPLETED_STATUS = "delivered"

PERIODS = {
    "7d": ("days", 7, "$dayOfYear"),
    "30d": ("days", 30, "$dayOfYear"),
    "3m": ("months", 3, "$month"),
    "1y": ("months", 12, "$month"),
}


class DashboardStats(Schema):
    total_users: int
    total_products: int
    total_orders: int
    total_revenue: float
    recent_orders: int
    new_users: int


class SalesBucket(Schema):
    year: int
    bucket: int
    total_sales: float
    order_count: int


class SalesData(Schema):
    period: str
    granularity: str
    sales_data: List[SalesBucket]


class GrowthPoint(Schema):
    date: str
    count: int


class UserAnalytics(Schema):
    total_users: int
    active_users: int
    new_users_this_month: int
    user_growth: List[GrowthPoint]


def months_ago(now: datetime, months: int) -> datetime:
    month_index = now.year * 12 + now.month - 1 - months
    year, month = divmod(month_index, 12)
    day = min(now.day, calendar.monthrange(year, month + 1)[1])
    return now.replace(year=year, month=month + 1, day=day)


def _customer_filter(**extra):
    return {"is_admin": {"$ne": True}, **extra}


def get_dashboard_stats(db: Database, now: Optional[datetime] = None) -> DashboardStats:
    now = now or utcnow()
    week_ago = now - timedelta(days=7)
    revenue = list(db["order"].aggregate([
        {"$match": {"order_status": COMPLETED_STATUS}},
        {"$group": {"_id": None, "total": {"$sum": "$total"}}},
    ]))
    return DashboardStats(
        total_users=db["user"].count_documents(_customer_filter()),
        total_products=db["product"].count_documents({}),
        total_orders=db["order"].count_documents({}),
        total_revenue=round(revenue[0]["total"], 2) if revenue else 0,
        recent_orders=db["order"].count_documents({"created_at": {"$gte": week_ago}}),
        new_users=db["user"].count_documents(_customer_filter(created_at={"$gte": week_ago})),
    )


def get_recent_orders(db: Database, limit: int = 10) -> List[Order]:
    cursor = db["order"].find({}).sort("created_at", -1).limit(limit)
    return [Order.model_validate(serialize_document(d)) for d in cursor]


def get_top_products(db: Database, limit: int = 5) -> List[Product]:
    cursor = db["product"].find({"is_active": True}).sort("sold_count", -1).limit(limit)
    return [Product.model_validate(serialize_document(d)) for d in cursor]


def get_sales_data(db: Database, period: str = "7d", now: Optional[datetime] = None) -> SalesData:
    """Completed-order sales for the period, bucketed by day of year (7d, 30d) or month (3m, 1y)."""
    if period not in PERIODS:
        period = "7d"
    unit, amount, operator = PERIODS[period]
    now = now or utcnow()
    start = now - timedelta(days=amount) if unit == "days" else months_ago(now, amount)

    rows = db["order"].aggregate([
        {"$match": {"order_status": COMPLETED_STATUS, "created_at": {"$gte": start}}},
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "bucket": {operator: "$created_at"}},
            "total_sales": {"$sum": "$total"},
            "order_count": {"$sum": 1},
        }},
    ])
    buckets = sorted(
        (SalesBucket(year=r["_id"]["year"], bucket=r["_id"]["bucket"],
                     total_sales=round(r["total_sales"], 2), order_count=r["order_count"]) for r in rows),
        key=lambda b: (b.year, b.bucket),
    )
    return SalesData(period=period, granularity="day" if unit == "days" else "month", sales_data=buckets)


def get_user_analytics(db: Database, now: Optional[datetime] = None) -> UserAnalytics:
    now = now or utcnow()
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    buyers = [b for b in db["order"].distinct("user_id") if b]
    customer_ids = [serialize_document(u)["id"] for u in db["user"].find(_customer_filter(), {"_id": 1})]

    rows = db["user"].aggregate([
        {"$match": _customer_filter(created_at={"$gte": now - timedelta(days=30)})},
        {"$group": {
            "_id": {
                "year": {"$year": "$created_at"},
                "month": {"$month": "$created_at"},
                "day": {"$dayOfMonth": "$created_at"},
            },
            "count": {"$sum": 1},
        }},
    ])
    growth = sorted(
        (GrowthPoint(date=f"{r['_id']['year']:04d}-{r['_id']['month']:02d}-{r['_id']['day']:02d}", count=r["count"])
         for r in rows),
        key=lambda p: p.date,
    )
    return UserAnalytics(
        total_users=len(customer_ids),
        active_users=len(set(customer_ids) & set(buyers)),
        new_users_this_month=db["user"].count_documents(_customer_filter(created_at={"$gte": start_of_month})),
        user_growth=growth,
    )
