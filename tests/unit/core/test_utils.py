"""Unit tests for core utilities."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dbpulse.core.utils import (
    FormatUtils,
    ListUtils,
    ValidationUtils,
    ensure_utc,
    safe_cast,
    safe_float,
    safe_int,
    utc_now,
)


class TestValidationUtils:

    @pytest.mark.parametrize("value, expected", [
        ("prod_db_1", True),
        ("_private", True),
        ("1-invalid", False),
        ("has space", False),
        ("", False),
    ])
    def test_identifier(self, value, expected):
        assert ValidationUtils.validate_identifier(value) is expected

    def test_identifier_allow_empty(self):
        assert ValidationUtils.validate_identifier("", allow_empty=True) is True

    @pytest.mark.parametrize("value, expected", [
        ("shop-eu", True),
        ("billing$2024", True),
        ("Sales Archive", True),
        ("tenant.eu-west", True),
        ("", False),
        ("   ", False),
        ("shop\x00", False),
        ("shop\nprod", False),
    ])
    def test_database_name(self, value, expected):
        assert ValidationUtils.validate_database_name(value) is expected

    def test_file_path(self, temp_dir):
        existing = temp_dir / "ca.pem"
        existing.write_text("cert")

        assert ValidationUtils.validate_file_path(existing) is True
        assert ValidationUtils.validate_file_path(temp_dir) is False
        assert ValidationUtils.validate_file_path(temp_dir / "missing.pem") is False


class TestFormatUtils:

    @pytest.mark.parametrize("value, expected", [
        (0, "0 B"),
        (512, "512.00 B"),
        (1536, "1.50 KB"),
        (1048576, "1.00 MB"),
        (5 * 1024 ** 4, "5.00 TB"),
    ])
    def test_format_bytes(self, value, expected):
        assert FormatUtils.format_bytes(value) == expected

    @pytest.mark.parametrize("value, expected", [
        (0, "0s"),
        (0.25, "250.00ms"),
        (59, "59s"),
        (90.5, "1m 30.50s"),
        (3600, "1h"),
        (3661, "1h 1m 1s"),
        (-61, "-1m 1s"),
    ])
    def test_format_duration(self, value, expected):
        assert FormatUtils.format_duration(value) == expected


class TestListUtils:

    def test_deduplicate(self):
        assert ListUtils.deduplicate_list([1, 2, 2, 3, 1]) == [1, 2, 3]

    def test_deduplicate_with_key(self):
        assert ListUtils.deduplicate_list(["Users", "users", "Orders"], key=str.lower) == [
            "Users", "Orders"
        ]


class TestCoercion:
    """Test coercion of catalog values."""

    @pytest.mark.parametrize("value, expected", [
        (None, 0.0),
        (Decimal("12.5"), 12.5),
        ("3.25", 3.25),
        (7, 7.0),
        ("n/a", 0.0),
    ])
    def test_safe_float(self, value, expected):
        assert safe_float(value) == expected

    @pytest.mark.parametrize("value, expected", [
        (None, 0),
        ("3.7", 3),
        ("42", 42),
        (Decimal("9.9"), 9),
        ("n/a", 0),
        (float("inf"), 0),
    ])
    def test_safe_int(self, value, expected):
        assert safe_int(value) == expected

    def test_safe_cast_default(self):
        assert safe_cast("invalid", int, default=-1) == -1
        assert safe_cast("123", int) == 123
        assert safe_int(None, default=5) == 5


class TestTime:

    def test_utc_now_is_aware(self):
        assert utc_now().tzinfo is timezone.utc

    def test_ensure_utc(self):
        naive = datetime(2024, 3, 1, 12, 0)
        offset = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        assert ensure_utc(None) is None
        assert ensure_utc(naive) == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert ensure_utc(offset).tzinfo is timezone.utc
        assert ensure_utc(offset).hour == 12
