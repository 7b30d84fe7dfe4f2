"""
Buyer Insights

Pure helpers that maintain the per-product purchase history and the buyer
analytics derived from it. All functions return new containers so JSON
columns are reassigned rather than mutated in place.
"""

from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional


def month_key(moment: datetime) -> str:
    """Calendar bucket key, e.g. '2026-01'."""
    return moment.strftime("%Y-%m")


def purchase_location(shipping_address: Optional[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    address = shipping_address or {}
    return {
        "city": address.get("city"),
        "state": address.get("state"),
        "country": address.get("country"),
    }


def purchase_record(
    user_id: Any,
    order_id: Any,
    quantity: int,
    price: Decimal,
    purchased_at: datetime,
    location: Optional[Dict[str, Optional[str]]] = None,
) -> Dict[str, Any]:
    return {
        "user": str(user_id),
        "order": str(order_id),
        "quantity": quantity,
        "price_at_purchase": float(price),
        "purchased_at": purchased_at.isoformat(),
        "location": location or {},
    }


def append_purchase(history: Optional[List[dict]], record: dict, limit: int) -> List[dict]:
    """Append and keep only the most recent `limit` records."""
    updated = list(history or [])
    updated.append(record)
    if len(updated) > limit:
        updated = updated[-limit:]
    return updated


def top_locations(history: List[dict], limit: int) -> List[Dict[str, Any]]:
    counts: Counter = Counter()
    revenue: Dict[tuple, float] = {}

    for record in history:
        location = record.get("location") or {}
        key = (location.get("city"), location.get("state"), location.get("country"))
        if not any(key):
            continue
        counts[key] += 1
        revenue[key] = revenue.get(key, 0.0) + record.get("price_at_purchase", 0.0) * record.get("quantity", 0)

    return [
        {
            "city": city,
            "state": state,
            "country": country,
            "count": count,
            "revenue": round(revenue[(city, state, country)], 2),
        }
        for (city, state, country), count in counts.most_common(limit)
    ]


def bump_month(buckets: Optional[List[dict]], key: str, revenue: Decimal) -> List[dict]:
    """Increment (or open) the month bucket for an order line."""
    updated = [dict(bucket) for bucket in (buckets or [])]
    for bucket in updated:
        if bucket.get("month") == key:
            bucket["count"] = bucket.get("count", 0) + 1
            bucket["revenue"] = round(bucket.get("revenue", 0.0) + float(revenue), 2)
            return updated

    updated.append({"month": key, "count": 1, "revenue": round(float(revenue), 2)})
    return updated


def compute_buyer_insights(
    history: List[dict],
    total_quantity_sold: int,
    total_orders: int,
    previous: Optional[Dict[str, Any]] = None,
    location_limit: int = 5,
) -> Dict[str, Any]:
    """
    Rebuild buyer insights from the retained purchase history.

    buyers_by_month is carried over from `previous`; it is advanced
    separately with bump_month() because it outlives the trimmed history.
    """
    purchases_per_buyer = Counter(record["user"] for record in history if record.get("user"))
    total_buyers = len(purchases_per_buyer)
    repeat_buyers = sum(1 for count in purchases_per_buyer.values() if count > 1)

    return {
        "total_buyers": total_buyers,
        "repeat_buyers": repeat_buyers,
        "repeat_buyer_rate": round(repeat_buyers / total_buyers * 100, 2) if total_buyers else 0.0,
        "average_order_quantity": round((total_quantity_sold or 0) / max(total_orders or 0, 1), 2),
        "top_locations": top_locations(history, location_limit),
        "buyers_by_month": list((previous or {}).get("buyers_by_month", [])),
    }
