"""Utility functions for DBPulse operations.

This module provides common utility functions used throughout DBPulse,
including validation, formatting, row value coercion and UTC time helpers.

Functions:
    safe_cast: Cast a value with a fallback default
    safe_float: Coerce catalog values (None, Decimal, str) to float
    safe_int: Coerce catalog values to int
    utc_now: Current time as an aware UTC datetime
    ensure_utc: Normalize a datetime to aware UTC

Example:
    >>> FormatUtils.format_bytes(1536)
    '1.50 KB'
    >>> safe_float(None)
    0.0
"""

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, TypeVar, Union

# Type variables
T = TypeVar("T")


class ValidationUtils:
    """Utility class for validation operations."""

    # Common regex patterns
    IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
    CONTROL_CHARACTER_PATTERN = re.compile(r"[\x00-\x1f\x7f]")

    @classmethod
    def validate_identifier(cls, identifier: str, *, allow_empty: bool = False) -> bool:
        """Validate identifier string.

        Args:
            identifier: String to validate as identifier
            allow_empty: Whether to allow empty strings

        Returns:
            True if identifier is valid

        Example:
            >>> ValidationUtils.validate_identifier("prod_db_1")
            True
            >>> ValidationUtils.validate_identifier("1-invalid")
            False
        """
        if not identifier:
            return allow_empty

        return bool(cls.IDENTIFIER_PATTERN.match(identifier))

    @classmethod
    def validate_database_name(cls, name: str) -> bool:
        """Validate a database name.

        Database names are passed to drivers as connection parameters, never
        interpolated into SQL, so any printable name the engine accepts is
        valid, including spaces and dots.

        Args:
            name: String to validate as database name

        Returns:
            True if the name is non-blank and free of control characters
        """
        if not name or not name.strip():
            return False

        return not cls.CONTROL_CHARACTER_PATTERN.search(name)

    @classmethod
    def validate_file_path(cls, path: Union[str, Path]) -> bool:
        """Validate file path exists and is readable.

        Args:
            path: File path to validate

        Returns:
            True if file path is valid
        """
        try:
            path_obj = Path(path)
            return path_obj.exists() and path_obj.is_file()
        except (TypeError, OSError):
            return False


class FormatUtils:
    """Utility class for formatting operations."""

    @staticmethod
    def format_bytes(bytes_count: Union[int, float], *, decimal_places: int = 2) -> str:
        """Format byte count into human-readable string.

        Args:
            bytes_count: Number of bytes
            decimal_places: Number of decimal places

        Returns:
            Formatted byte string

        Example:
            >>> FormatUtils.format_bytes(1536)
            '1.50 KB'
            >>> FormatUtils.format_bytes(1048576)
            '1.00 MB'
        """
        if bytes_count == 0:
            return "0 B"

        units = ["B", "KB", "MB", "GB", "TB"]
        unit_index = 0
        size = float(bytes_count)

        while abs(size) >= 1024 and unit_index < len(units) - 1:
            size /= 1024
            unit_index += 1

        return f"{size:.{decimal_places}f} {units[unit_index]}"

    @staticmethod
    def format_duration(seconds: Union[int, float]) -> str:
        """Format duration into human-readable string.

        Args:
            seconds: Duration in seconds

        Returns:
            Formatted duration string

        Example:
            >>> FormatUtils.format_duration(3661)
            '1h 1m 1s'
            >>> FormatUtils.format_duration(0.25)
            '250.00ms'
        """
        if seconds == 0:
            return "0s"

        abs_seconds = abs(seconds)
        sign = "-" if seconds < 0 else ""

        if abs_seconds < 1:
            return f"{sign}{abs_seconds * 1000:.2f}ms"

        hours = int(abs_seconds // 3600)
        minutes = int((abs_seconds % 3600) // 60)
        secs = abs_seconds % 60

        parts = []
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        if secs > 0 or not parts:
            if secs == int(secs):
                parts.append(f"{int(secs)}s")
            else:
                parts.append(f"{secs:.2f}s")

        return sign + " ".join(parts)


class ListUtils:
    """Utility class for list operations."""

    @staticmethod
    def deduplicate_list(items: List[T], *, key: Optional[Any] = None) -> List[T]:
        """Remove duplicates from list, preserving first-seen order.

        Args:
            items: List with potential duplicates
            key: Optional callable computing the comparison key

        Returns:
            List without duplicates

        Example:
            >>> ListUtils.deduplicate_list([1, 2, 2, 3, 1])
            [1, 2, 3]
            >>> ListUtils.deduplicate_list(["Users", "users"], key=str.lower)
            ['Users']
        """
        seen = set()
        result = []
        for item in items:
            marker = key(item) if key else item
            if marker not in seen:
                seen.add(marker)
                result.append(item)
        return result


def safe_cast(value: Any, target_type: type, *, default: Any = None) -> Any:
    """Safely cast value to target type.

    Args:
        value: Value to cast
        target_type: Target type
        default: Default value if casting fails

    Returns:
        Cast value or default

    Example:
        >>> safe_cast("123", int)
        123
        >>> safe_cast("invalid", int, default=0)
        0
    """
    if value is None:
        return default
    try:
        return target_type(value)
    except (ValueError, TypeError, ArithmeticError):
        return default


def safe_float(value: Any, default: float = 0.0) -> float:
    """Coerce a catalog value (None, Decimal, str, int) to float."""
    return safe_cast(value, float, default=default)


def safe_int(value: Any, default: int = 0) -> int:
    """Coerce a catalog value to int, truncating fractional numerics."""
    if isinstance(value, str):
        value = safe_cast(value, float, default=None)
    return safe_cast(value, int, default=default)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC, which is how the drivers
    return server timestamps fetched with explicit UTC conversion.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
