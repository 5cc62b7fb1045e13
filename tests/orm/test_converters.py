"""Tests for property converters."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List
from uuid import UUID

from ogmalchemy.orm.converters import (
    DateConverter,
    DateTimeConverter,
    DecimalConverter,
    EnumConverter,
    JsonConverter,
    ListConverter,
    UUIDConverter,
    default_converter,
)


class Season(Enum):
    SPRING = 1
    SUMMER = 2


class TestTemporalConverters:
    def test_date(self):
        converter = DateConverter()
        assert converter.to_persisted(date(2024, 3, 9)) == "2024-03-09"
        assert converter.from_persisted("2024-03-09") == date(2024, 3, 9)

    def test_date_from_datetime(self):
        converter = DateConverter()
        assert converter.to_persisted(datetime(2024, 3, 9, 18, 30)) == "2024-03-09"
        assert converter.from_persisted(datetime(2024, 3, 9, 18, 30)) == date(2024, 3, 9)

    def test_iso_dates_sort_chronologically(self):
        converter = DateConverter()
        days = [date(2024, 12, 1), date(2023, 1, 15), date(2024, 2, 29)]
        assert sorted(converter.to_persisted(d) for d in days) == [
            converter.to_persisted(d) for d in sorted(days)
        ]

    def test_datetime(self):
        converter = DateTimeConverter()
        moment = datetime(2024, 3, 9, 18, 30, tzinfo=timezone.utc)
        assert converter.to_persisted(moment) == "2024-03-09T18:30:00+00:00"
        assert converter.from_persisted("2024-03-09T18:30:00+00:00") == moment

    def test_native_driver_values(self):
        class DriverDate:
            def to_native(self):
                return date(2024, 1, 2)

        assert DateConverter().from_persisted(DriverDate()) == date(2024, 1, 2)

    def test_invalid_values(self):
        with pytest.raises(ValueError, match="Invalid date"):
            DateConverter().from_persisted("yesterday")
        with pytest.raises(ValueError, match="Invalid datetime"):
            DateTimeConverter().from_persisted(42)


class TestEnumConverter:
    def test_by_value(self):
        converter = EnumConverter(Season)
        assert converter.to_persisted(Season.SUMMER) == 2
        assert converter.from_persisted(1) is Season.SPRING

    def test_by_name(self):
        converter = EnumConverter(Season, by_name=True)
        assert converter.to_persisted(Season.SUMMER) == "SUMMER"
        assert converter.from_persisted("SPRING") is Season.SPRING

    def test_unknown_member(self):
        with pytest.raises(ValueError):
            EnumConverter(Season).from_persisted(7)
        with pytest.raises(ValueError, match="not a member"):
            EnumConverter(Season, by_name=True).from_persisted("WINTER")


class TestOtherConverters:
    def test_decimal_keeps_precision(self):
        converter = DecimalConverter()
        assert converter.to_persisted(Decimal("12.50")) == "12.50"
        assert converter.from_persisted("12.50") == Decimal("12.50")

    def test_uuid(self):
        value = UUID("12345678-1234-5678-1234-567812345678")
        converter = UUIDConverter()
        assert converter.to_persisted(value) == "12345678-1234-5678-1234-567812345678"
        assert converter.from_persisted(str(value)) == value

    def test_json(self):
        converter = JsonConverter()
        stored = converter.to_persisted({"b": 1, "a": [1, 2]})
        assert stored == '{"a": [1, 2], "b": 1}'
        assert converter.from_persisted(stored) == {"a": [1, 2], "b": 1}

    def test_list(self):
        converter = ListConverter(DateConverter())
        assert converter.to_persisted([date(2024, 1, 1)]) == ["2024-01-01"]
        assert converter.from_persisted(["2024-01-01"]) == [date(2024, 1, 1)]
        assert repr(converter) == "ListConverter(DateConverter())"


@pytest.mark.parametrize(
    "annotation, expected",
    [
        (datetime, DateTimeConverter),
        (date, DateConverter),
        (Season, EnumConverter),
        (Decimal, DecimalConverter),
        (UUID, UUIDConverter),
    ],
)
def test_default_converter(annotation, expected):
    assert isinstance(default_converter(annotation), expected)


@pytest.mark.parametrize("annotation", [str, int, float, bool, List[str]])
def test_no_default_converter_for_wire_types(annotation):
    assert default_converter(annotation) is None
