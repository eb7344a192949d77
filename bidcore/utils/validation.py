"""
Input Validation - sanitization of values entering the engine.

Provides validation for external inputs to prevent:
- Malformed or negative money amounts
- Sub-cent precision
- Oversized text fields
- Inverted auction windows

Each validator returns an (is_valid, error_message) pair; services
translate failures into the engine's exception taxonomy.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_HALF_UP
from typing import Any, Optional, Tuple

# =============================================================================
# Constants
# =============================================================================

CENT = Decimal("0.01")

# Field bounds
MIN_AMOUNT = Decimal("0.01")
MAX_AMOUNT = Decimal("1000000000.00")
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 10_000
MAX_REASON_LENGTH = 500
MAX_ATTRIBUTES_SIZE = 1_000_000  # Opaque JSON blobs (embeddings, tags)


# =============================================================================
# Money helpers
# =============================================================================


def to_money(value: Any) -> Decimal:
    """
    Convert a value to a Decimal rounded to cents.

    Floats go through str() so 110.1 becomes 110.10, not 110.0999...
    """
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        amount = Decimal(value)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def ceil_money(value: Decimal) -> Decimal:
    """Round up to the next cent."""
    return value.quantize(CENT, rounding=ROUND_CEILING)


def to_cents(value: Decimal) -> int:
    return int(to_money(value) * 100)


def from_cents(cents: Optional[int]) -> Optional[Decimal]:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT)


# =============================================================================
# Validation Functions
# =============================================================================


def validate_amount(
    value: Any,
    name: str = "amount",
    min_val: Decimal = MIN_AMOUNT,
    max_val: Decimal = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate a money amount.

    Args:
        value: Value to validate (Decimal, int, or numeric string)
        name: Field name for error messages
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        (is_valid, error_message)
    """
    if isinstance(value, bool) or not isinstance(value, (Decimal, int, float, str)):
        return False, f"{name} must be a number, got {type(value).__name__}"

    try:
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except InvalidOperation:
        return False, f"{name} is not a valid number: {value!r}"

    if not amount.is_finite():
        return False, f"{name} must be finite"

    if amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
        return False, f"{name} has more than two decimal places: {value}"

    if amount < min_val:
        return False, f"{name} must be >= {min_val}, got {amount}"

    if amount > max_val:
        return False, f"{name} must be <= {max_val}, got {amount}"

    return True, ""


def validate_optional_price(
    value: Any,
    name: str,
    floor: Optional[Decimal] = None,
) -> Tuple[bool, str]:
    """Validate an optional price that, when given, may not sit below floor."""
    if value is None:
        return True, ""
    valid, err = validate_amount(value, name)
    if not valid:
        return valid, err
    if floor is not None and to_money(value) < floor:
        return False, f"{name} must be >= starting price {floor}"
    return True, ""


def validate_string(
    value: Any,
    name: str,
    max_length: int,
    allow_empty: bool = False,
) -> Tuple[bool, str]:
    """Validate a text field."""
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not allow_empty and not value.strip():
        return False, f"{name} must not be empty"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}, got {len(value)}"

    return True, ""


def validate_title(title: Any) -> Tuple[bool, str]:
    return validate_string(title, "title", MAX_TITLE_LENGTH)


def validate_description(description: Any) -> Tuple[bool, str]:
    return validate_string(description, "description", MAX_DESCRIPTION_LENGTH, allow_empty=True)


def validate_reason(reason: Any) -> Tuple[bool, str]:
    return validate_string(reason, "reason", MAX_REASON_LENGTH, allow_empty=True)


def validate_attributes(attributes: Any) -> Tuple[bool, str]:
    """Opaque attributes are stored verbatim; only type and size are checked."""
    if attributes is None:
        return True, ""
    return validate_string(attributes, "attributes", MAX_ATTRIBUTES_SIZE, allow_empty=True)


def validate_time_window(
    start_time: Any,
    end_time: Any,
    now: Optional[datetime] = None,
) -> Tuple[bool, str]:
    """
    Validate an auction's bidding window.

    Args:
        start_time: When bidding opens
        end_time: Deadline
        now: If given, start_time may not be earlier than now

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(start_time, datetime) or not isinstance(end_time, datetime):
        return False, "start_time and end_time must be datetimes"

    if end_time <= start_time:
        return False, "End time must be after start time"

    if now is not None and start_time < now:
        return False, "Start time cannot be in the past"

    return True, ""


def validate_user_id(user_id: Any, name: str = "user_id") -> Tuple[bool, str]:
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        return False, f"{name} must be int, got {type(user_id).__name__}"
    if user_id <= 0:
        return False, f"{name} must be positive, got {user_id}"
    return True, ""
