"""
Unit Tests - Buyer Insights
"""
from datetime import datetime
from decimal import Decimal

from marketplace.orders.insights import (
    append_purchase,
    bump_month,
    compute_buyer_insights,
    month_key,
    purchase_location,
    purchase_record,
    top_locations,
)

NOW = datetime(2026, 1, 20, 9, 30, 0)


def record(user: str, quantity: int = 1, price: float = 10.0, city: str = "Lagos", country: str = "NG") -> dict:
    return {
        "user": user,
        "order": f"order-{user}",
        "quantity": quantity,
        "price_at_purchase": price,
        "purchased_at": NOW.isoformat(),
        "location": {"city": city, "state": None, "country": country},
    }


class TestPurchaseHistory:
    """Tests for purchase record helpers"""

    def test_purchase_record_shape(self):
        """Test a purchase record stores plain JSON values"""
        rec = purchase_record("u1", "o1", 2, Decimal("19.99"), NOW, {"city": "Accra"})

        assert rec["user"] == "u1"
        assert rec["price_at_purchase"] == 19.99
        assert rec["purchased_at"] == "2026-01-20T09:30:00"
        assert rec["location"] == {"city": "Accra"}

    def test_append_keeps_most_recent(self):
        """Test history is trimmed to the newest records"""
        history = [record(f"u{i}") for i in range(5)]

        updated = append_purchase(history, record("u5"), limit=3)

        assert [r["user"] for r in updated] == ["u3", "u4", "u5"]
        assert len(history) == 5

    def test_location_from_address(self):
        """Test only city, state and country are taken from the address"""
        location = purchase_location({"city": "Nairobi", "country": "KE", "street_address": "1 Main"})

        assert location == {"city": "Nairobi", "state": None, "country": "KE"}
        assert purchase_location(None) == {"city": None, "state": None, "country": None}


class TestBuyerInsights:
    """Tests for compute_buyer_insights"""

    def test_repeat_buyers(self):
        """Test buyers with more than one purchase count as repeat buyers"""
        history = [record("a"), record("a"), record("b"), record("c")]

        insights = compute_buyer_insights(history, total_quantity_sold=4, total_orders=4)

        assert insights["total_buyers"] == 3
        assert insights["repeat_buyers"] == 1
        assert insights["repeat_buyer_rate"] == 33.33
        assert insights["average_order_quantity"] == 1.0

    def test_empty_history(self):
        """Test an empty history yields zeroed insights"""
        insights = compute_buyer_insights([], total_quantity_sold=0, total_orders=0)

        assert insights["total_buyers"] == 0
        assert insights["repeat_buyer_rate"] == 0.0
        assert insights["top_locations"] == []

    def test_month_buckets_are_carried_over(self):
        """Test buyers_by_month survives a recompute"""
        previous = {"buyers_by_month": [{"month": "2025-12", "count": 4, "revenue": 80.0}]}

        insights = compute_buyer_insights([record("a")], 1, 1, previous=previous)

        assert insights["buyers_by_month"] == previous["buyers_by_month"]

    def test_top_locations_rank_by_count(self):
        """Test locations are ranked by purchase count with revenue totals"""
        history = [
            record("a", quantity=2, price=5.0, city="Lagos"),
            record("b", city="Lagos"),
            record("c", city="Abuja"),
            {"user": "d", "quantity": 1, "price_at_purchase": 1.0, "location": {}},
        ]

        locations = top_locations(history, limit=5)

        assert locations[0]["city"] == "Lagos"
        assert locations[0]["count"] == 2
        assert locations[0]["revenue"] == 20.0
        assert len(locations) == 2


class TestMonthBuckets:
    """Tests for bump_month"""

    def test_opens_new_bucket(self):
        """Test the first sale of a month opens its bucket"""
        buckets = bump_month([], month_key(NOW), Decimal("15.50"))

        assert buckets == [{"month": "2026-01", "count": 1, "revenue": 15.5}]

    def test_increments_existing_bucket(self):
        """Test later sales in the same month add up"""
        buckets = [{"month": "2026-01", "count": 1, "revenue": 15.5}]

        updated = bump_month(buckets, "2026-01", Decimal("4.50"))

        assert updated == [{"month": "2026-01", "count": 2, "revenue": 20.0}]
        assert buckets[0]["count"] == 1
