"""
Unit Tests - Admin Dashboard
"""
from datetime import datetime, timedelta

import pytest

from marketplace.admin import AdminDashboard
from marketplace.admin.dashboard import product_sales_by_month, revenue_by_day, units_by_vendor
from marketplace.database.models import OrderStatus, utcnow
from marketplace.errors import AuthorizationError, NotFoundError
from marketplace.orders.processor import OrderLine, OrderProcessor

NOW = datetime(2026, 3, 15, 18, 0, 0)


class TestAggregations:
    """Tests for the dashboard series builders"""

    def test_revenue_by_day_zero_fills(self):
        """Test a week of keys comes back with empty days at zero"""
        rows = [
            {"created_at": datetime(2026, 3, 15, 9, 0), "total_price": 20.0},
            {"created_at": datetime(2026, 3, 15, 11, 0), "total_price": 5.5},
            {"created_at": datetime(2026, 3, 10, 8, 0), "total_price": 12.0},
            {"created_at": datetime(2026, 3, 1, 8, 0), "total_price": 99.0},
        ]

        series = revenue_by_day(rows, 7, NOW)

        assert series[0]["name"] == "2026-03-09"
        assert series[-1] == {"name": "2026-03-15", "value": 25.5}
        assert series[1] == {"name": "2026-03-10", "value": 12.0}
        assert sum(point["value"] for point in series) == 37.5

    def test_units_by_vendor(self):
        """Test vendorless and unknown-shop lines are reported as the platform"""
        rows = [
            {"vendor_id": "a", "quantity": 2},
            {"vendor_id": "a", "quantity": 1},
            {"vendor_id": "b", "quantity": 5},
            {"vendor_id": None, "quantity": 4},
        ]

        ranked = units_by_vendor(rows, {"b": "Beta", "a": "Alpha"})

        assert ranked == [
            {"name": "Beta", "value": 5},
            {"name": "Platform", "value": 4},
            {"name": "Alpha", "value": 3},
        ]

    def test_empty_inputs(self):
        """Test no orders still yields full zero series"""
        assert units_by_vendor([], {}) == []
        assert [point["value"] for point in revenue_by_day([], 7, NOW)] == [0.0] * 7
        months = product_sales_by_month([], 12, NOW)
        assert len(months) == 12
        assert months[-1] == {"month": "2026-03", "count": 0, "revenue": 0.0}


@pytest.fixture
async def sales(test_db, notifications, factory):
    """
    Three orders:
    - today: 2 speakers, 1 cable, 5 platform posters (120.00)
    - ten days ago: 3 cables (30.00)
    - cancelled: 1 speaker
    """
    admin = await factory.admin()
    audio = await factory.category("Audio")
    books = await factory.category("Books")
    alpha, _ = await factory.vendor("Alpha Owner")
    beta, _ = await factory.vendor("Beta Owner")
    speaker = await factory.product(alpha, audio, price="50.00", stock=20, name="Speaker")
    cable = await factory.product(beta, audio, price="10.00", stock=20, name="Cable")
    poster = await factory.product(admin, books, price="2.00", stock=20, name="Poster")
    buyer = await factory.buyer(name="Ada")

    processor = OrderProcessor(test_db, notifications)
    today = await processor.place_order(
        buyer, [OrderLine(speaker.id, 2), OrderLine(cable.id, 1), OrderLine(poster.id, 5)]
    )
    older = await processor.place_order(buyer, [OrderLine(cable.id, 3)])
    older.created_at = utcnow() - timedelta(days=10)
    await test_db.commit()
    dropped = await processor.place_order(buyer, [OrderLine(speaker.id, 1)])
    await processor.cancel_order(buyer, dropped.id)

    return {"admin": admin, "buyer": buyer, "speaker_id": speaker.id, "today_id": today.id}


class TestDashboardStats:
    """Tests for the marketplace dashboard"""

    async def test_totals_and_series(self, test_db, sales):
        """Test cancelled orders are left out and every series is filled"""
        stats = await AdminDashboard(test_db).dashboard_stats(sales["admin"])

        assert stats["total_revenue"] == 150.0
        assert stats["total_orders"] == 2
        assert stats["total_customers"] == 4
        assert stats["total_products"] == 3

        assert len(stats["revenue_by_day"]) == 7
        assert stats["revenue_by_day"][-1]["value"] == 120.0
        assert sum(point["value"] for point in stats["revenue_by_day"]) == 120.0

        assert stats["orders_by_vendor"][0] == {"name": "Platform", "value": 5}
        assert [entry["value"] for entry in stats["orders_by_vendor"]] == [5, 4, 2]
        assert stats["products_by_category"] == [
            {"name": "Audio", "value": 2},
            {"name": "Books", "value": 1},
        ]

    async def test_admin_only(self, test_db, sales):
        """Test buyers cannot read marketplace figures"""
        with pytest.raises(AuthorizationError):
            await AdminDashboard(test_db).dashboard_stats(sales["buyer"])


class TestProductStats:
    """Tests for per-product sales"""

    async def test_recent_buyers_and_months(self, test_db, notifications, sales):
        """Test only shipped or delivered orders list buyers; live orders count per month"""
        dashboard = AdminDashboard(test_db)
        processor = OrderProcessor(test_db, notifications)

        before = await dashboard.product_stats(sales["admin"], sales["speaker_id"])
        assert before["recent_buyers"] == []

        await processor.update_status(sales["admin"], sales["today_id"], OrderStatus.SHIPPED)
        stats = await dashboard.product_stats(sales["admin"], sales["speaker_id"])

        assert stats["name"] == "Speaker"
        buyer = stats["recent_buyers"][0]
        assert (buyer["name"], buyer["quantity"], buyer["order_total"]) == ("Ada", 2, 120.0)
        assert len(stats["sales_by_month"]) == 12
        assert stats["sales_by_month"][-1]["count"] == 2
        assert stats["sales_by_month"][-1]["revenue"] == 100.0

    async def test_unknown_product(self, test_db, sales):
        """Test a missing product is reported as not found"""
        with pytest.raises(NotFoundError):
            await AdminDashboard(test_db).product_stats(sales["admin"], sales["buyer"].id)
