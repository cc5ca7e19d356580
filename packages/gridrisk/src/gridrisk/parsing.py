"""Numeric parsing for venue payloads."""

import logging
import math

from gridrisk.errors import PriceParseError, QuantityParseError

logger = logging.getLogger(__name__)


def parse_fill_price(value: str) -> float:
    """Parse a fill price, raising PriceParseError on malformed input."""
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise PriceParseError(f"invalid fill price {value!r}: {e}") from e


def parse_fill_qty(value: str) -> float:
    """Parse a fill size, raising QuantityParseError on malformed input."""
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise QuantityParseError(f"invalid fill size {value!r}: {e}") from e


def safe_parse_float(value: str | None, field_name: str, default: float) -> float:
    """
    Lenient parse for optional numeric fields.

    Empty, unparseable, non-finite or negative values fall back to
    `default` with a warning.
    """
    trimmed = (value or '').strip()
    if not trimmed:
        logger.warning("Field '%s' is empty, using default %s", field_name, default)
        return default

    try:
        parsed = float(trimmed)
    except ValueError:
        logger.warning("Field '%s' failed to parse (%r), using default %s", field_name, trimmed, default)
        return default

    if not math.isfinite(parsed) or parsed < 0:
        logger.warning("Field '%s' has invalid value %s, using default %s", field_name, parsed, default)
        return default
    return parsed
