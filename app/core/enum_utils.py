"""
Enum Utilities for VARCHAR-based Status Fields

STORAGE CONVENTION:
━━━━━━━━━━━━━━━━━━━
• Database: VARCHAR - NOT PostgreSQL ENUM
• SQLAlchemy: String(n) with Mapped[str]
• Pydantic: Python Enum or Literal for API validation
• API Response: Use string directly (NO .value needed)
• Case: All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: PaymentMethod.UPI → "UPI" → VARCHAR

OUTPUT (API Response):
    Database → String → Return directly
    Example: VARCHAR "PENDING" → "PENDING"

USAGE PATTERNS:
━━━━━━━━━━━━━━━
1. In Pydantic field validators (case-insensitive input):
   return normalize_to_uppercase(v, VALID_PAYMENT_METHODS)

2. Anywhere an Enum or a plain string may arrive:
   status = get_enum_value(data.status)
"""

from enum import Enum
from typing import Any, Optional, Set


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(OrderStatus.PENDING)
        'PENDING'
        >>> get_enum_value("PENDING")
        'PENDING'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================

def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Returns the original value otherwise so Pydantic raises the
    validation error.

    Examples:
        >>> normalize_to_uppercase('cod', {'COD', 'UPI'})
        'COD'
        >>> normalize_to_uppercase('bitcoin', {'COD', 'UPI'})
        'bitcoin'
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.strip().upper()
        if upper_v in valid_values:
            return upper_v
    return value


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_PAYMENT_METHODS = {"COD", "UPI", "CARD", "WALLET"}
