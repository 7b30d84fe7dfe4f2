"""
Unit Tests - Request Payload Normalisation
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from marketplace.database.models import DiscountType
from marketplace.schemas import DiscountInput, ProductCreate, parse_json_value, parse_string_list


class TestParsers:
    """Tests for the multipart field parsers"""

    @pytest.mark.parametrize("raw,expected", [
        ('["red", "blue"]', ["red", "blue"]),
        ("red, blue ,", ["red", "blue"]),
        ("", []),
        (None, []),
        (["red"], ["red"]),
    ])
    def test_string_list(self, raw, expected):
        """Test JSON arrays, comma text and empties all become lists"""
        assert parse_string_list(raw) == expected

    def test_json_value(self):
        """Test JSON text is decoded and plain text is kept"""
        assert parse_json_value('{"type": "fixed"}') == {"type": "fixed"}
        assert parse_json_value("not json") == "not json"
        assert parse_json_value("  ") is None


class TestProductCreate:
    """Tests for product payloads sent as form fields"""

    def test_string_fields_are_parsed(self):
        """Test tags, images, discount and booleans given as strings"""
        payload = ProductCreate(
            name="Desk Lamp",
            price="25.50",
            category_id=str(uuid.uuid4()),
            tags="office, lighting",
            images='[{"url": "https://cdn.example.com/lamp.jpg", "is_primary": "true"}]',
            discount='{"type": "percentage", "value": 10}',
            allow_backorders="false",
        )

        assert payload.tags == ["office", "lighting"]
        assert payload.images[0].is_primary is True
        assert payload.discount.type == DiscountType.PERCENTAGE
        assert payload.discount.value == Decimal("10")
        assert payload.allow_backorders is False

    def test_negative_price_rejected(self):
        """Test prices cannot be negative"""
        with pytest.raises(ValidationError):
            ProductCreate(name="Lamp", price="-1", category_id=uuid.uuid4())


class TestDiscountInput:
    """Tests for discount window validation"""

    def test_percentage_capped(self):
        """Test percentage discounts above 100 are rejected"""
        with pytest.raises(ValidationError):
            DiscountInput(type=DiscountType.PERCENTAGE, value=Decimal("120"))

    def test_window_order(self):
        """Test the end date must follow the start date"""
        start = datetime(2024, 5, 1)

        with pytest.raises(ValidationError):
            DiscountInput(type=DiscountType.FIXED, value=5, start_date=start, end_date=start - timedelta(days=1))

    def test_dates_normalised_to_naive_utc(self):
        """Test aware datetimes are stored as naive UTC"""
        aware = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))

        discount = DiscountInput(type=DiscountType.FIXED, value=5, start_date=aware)

        assert discount.start_date == datetime(2024, 5, 1, 10, 0)
