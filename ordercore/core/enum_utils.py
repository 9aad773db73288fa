"""
Enum Utilities for VARCHAR-based Status Fields

STORAGE STANDARD:
━━━━━━━━━━━━━━━━━
• Database: VARCHAR(50) - NOT a database ENUM type
• SQLAlchemy: String(50) with Mapped[str]
• Python: ``str, Enum`` classes for validation and transition logic
• Case: All enum values stored in lowercase (the dashboard filters on them)

DATA FLOW:
━━━━━━━━━━
INPUT (API Request / service call):
    Enum or str → normalize → .value → VARCHAR
    Example: OrderStatus.SHIPPED → "shipped"

OUTPUT (API Response):
    VARCHAR → returned as-is
"""

from enum import Enum
from typing import Any, Optional, TypeVar, Type


T = TypeVar('T', bound=Enum)


def to_enum(value: Any, enum_class: Type[T]) -> Optional[T]:
    """
    Convert a string value to an enum instance, case-insensitively.

    Returns None when the value is not a member, so callers decide
    whether that is an error.

    Examples:
        >>> to_enum("SHIPPED", OrderStatus)
        OrderStatus.SHIPPED
        >>> to_enum("lost", OrderStatus)
        None
    """
    if value is None:
        return None
    if isinstance(value, enum_class):
        return value
    if isinstance(value, Enum):
        value = value.value
    try:
        return enum_class(str(value).strip().lower())
    except (ValueError, KeyError):
        return None


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for a VARCHAR column.

    Examples:
        >>> enum_comment(PaymentStatus)
        'pending, paid, failed, refunded, partially_refunded'
    """
    return ", ".join(enum_values(enum_class))

