from datetime import datetime, timedelta

import pytest

import dashboard

NOW = datetime(2026, 3, 15, 12, 0, 0)


def add_order(db, created_at, total, status="delivered", user_id="u1", number=None):
    db["order"].insert_one({
        "order_number": number or f"FL{created_at:%y%m%d}{db['order'].count_documents({}) + 1:04d}",
        "user_id": user_id,
        "items": [],
        "shipping_address": {"street": "s", "city": "c", "state": "st", "zip_code": "1", "phone": "p"},
        "billing_address": {"street": "s", "city": "c", "state": "st", "zip_code": "1", "phone": "p"},
        "payment_method": "cod",
        "order_status": status,
        "subtotal": total,
        "total": total,
        "created_at": created_at,
    })


def add_user(db, email, created_at, is_admin=False):
    return db["user"].insert_one({
        "name": "U", "email": email, "hashed_password": "x",
        "is_admin": is_admin, "created_at": created_at,
    }).inserted_id


@pytest.mark.parametrize("now,months,expected", [
    (datetime(2026, 3, 15), 3, datetime(2025, 12, 15)),
    (datetime(2026, 5, 31), 3, datetime(2026, 2, 28)),
    (datetime(2026, 3, 15), 12, datetime(2025, 3, 15)),
])
def test_months_ago(now, months, expected):
    assert dashboard.months_ago(now, months) == expected


def test_dashboard_stats(db, make_product):
    add_user(db, "a@x.io", NOW - timedelta(days=2))
    add_user(db, "b@x.io", NOW - timedelta(days=20))
    add_user(db, "root@x.io", NOW - timedelta(days=1), is_admin=True)
    make_product()
    add_order(db, NOW - timedelta(days=1), 300)
    add_order(db, NOW - timedelta(days=3), 200, status="pending")
    add_order(db, NOW - timedelta(days=10), 150.25)

    stats = dashboard.get_dashboard_stats(db, NOW)
    assert stats.total_users == 2
    assert stats.new_users == 1
    assert stats.total_products == 1
    assert stats.total_orders == 3
    assert stats.recent_orders == 2
    # Only delivered orders count as revenue.
    assert stats.total_revenue == 450.25


def test_dashboard_stats_empty(db):
    stats = dashboard.get_dashboard_stats(db, NOW)
    assert stats.total_revenue == 0
    assert stats.total_orders == 0


def test_sales_data_daily_buckets(db):
    add_order(db, NOW - timedelta(days=1), 100)
    add_order(db, NOW - timedelta(days=1, hours=2), 50)
    add_order(db, NOW - timedelta(days=2), 80)
    add_order(db, NOW - timedelta(days=2), 999, status="cancelled")
    add_order(db, NOW - timedelta(days=9), 70)

    data = dashboard.get_sales_data(db, "7d", NOW)
    assert data.period == "7d" and data.granularity == "day"
    day = (NOW - timedelta(days=1)).timetuple().tm_yday
    assert [(b.bucket, b.total_sales, b.order_count) for b in data.sales_data] == [
        (day - 1, 80, 1),
        (day, 150, 2),
    ]

    assert len(dashboard.get_sales_data(db, "30d", NOW).sales_data) == 3


def test_sales_data_monthly_buckets_keep_years_apart(db):
    add_order(db, datetime(2025, 3, 20), 10)
    add_order(db, datetime(2025, 12, 5), 20)
    add_order(db, datetime(2026, 1, 7), 30)
    add_order(db, datetime(2026, 3, 1), 40)
    add_order(db, datetime(2026, 3, 2), 5)

    data = dashboard.get_sales_data(db, "1y", NOW)
    assert data.granularity == "month"
    assert [(b.year, b.bucket, b.total_sales) for b in data.sales_data] == [
        (2025, 3, 10),
        (2025, 12, 20),
        (2026, 1, 30),
        (2026, 3, 45),
    ]

    quarter = dashboard.get_sales_data(db, "3m", NOW)
    assert [(b.year, b.bucket) for b in quarter.sales_data] == [(2026, 1), (2026, 3)]


def test_unknown_period_falls_back_to_week(db):
    add_order(db, NOW - timedelta(days=20), 100)
    data = dashboard.get_sales_data(db, "decade", NOW)
    assert data.period == "7d"
    assert data.sales_data == []


def test_recent_orders_and_top_products(db, make_product):
    add_order(db, NOW - timedelta(days=3), 10, number="OLD")
    add_order(db, NOW - timedelta(days=1), 20, number="NEW")
    assert [o.order_number for o in dashboard.get_recent_orders(db, 1)] == ["NEW"]

    make_product(name="Slow", sold_count=1)
    make_product(name="Fast", sold_count=40)
    make_product(name="Retired", sold_count=99, is_active=False)
    assert [p.name for p in dashboard.get_top_products(db, 5)] == ["Fast", "Slow"]


def test_user_analytics(db):
    buyer = add_user(db, "a@x.io", NOW - timedelta(days=2))
    add_user(db, "b@x.io", NOW - timedelta(days=2))
    add_user(db, "c@x.io", NOW - timedelta(days=40))
    add_user(db, "root@x.io", NOW - timedelta(days=1), is_admin=True)
    add_order(db, NOW - timedelta(days=1), 10, user_id=str(buyer))

    analytics = dashboard.get_user_analytics(db, NOW)
    assert analytics.total_users == 3
    assert analytics.active_users == 1
    assert analytics.new_users_this_month == 2
    assert [(g.date, g.count) for g in analytics.user_growth] == [("2026-03-13", 2)]
