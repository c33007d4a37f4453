"""Locale-invariant text and JSON renderings of projected values."""

from __future__ import annotations

import base64
import json
import math
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from lakeexport.schema.domain import OPAQUE_TYPES, to_text

_MICROS_PER_SECOND = 10 ** 6


def format_duration(value: timedelta) -> str:
    """Render a duration as ISO-8601, e.g. ``P1DT2H3M4.500000S``."""
    total = (value.days * 86400 + value.seconds) * _MICROS_PER_SECOND + value.microseconds
    sign = "-" if total < 0 else ""
    total = abs(total)
    days, rem = divmod(total, 86400 * _MICROS_PER_SECOND)
    hours, rem = divmod(rem, 3600 * _MICROS_PER_SECOND)
    minutes, rem = divmod(rem, 60 * _MICROS_PER_SECOND)
    seconds, micros = divmod(rem, _MICROS_PER_SECOND)
    text = f"{sign}P{days}DT{hours}H{minutes}M{seconds}"
    if micros:
        text += f".{micros:06d}"
    return text + "S"


def format_decimal(value: Decimal) -> str:
    # Fixed-point, never scientific notation
    return format(value, "f")


def enum_to_json(value: Enum) -> str:
    return json.dumps(value.name)


def to_json_compatible(value: Any) -> Any:
    """Convert a projected value into something ``json.dumps`` accepts."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        as_float = float(value)
        if math.isfinite(as_float) and Decimal(repr(as_float)) == value:
            return as_float
        return format_decimal(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return format_duration(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, OPAQUE_TYPES):
        return to_text(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json_compatible(v) for v in value]
    return str(value)


def to_invariant_text(value: Any) -> str:
    """Render a projected value as culture-independent text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, Decimal):
        return format_decimal(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return format_duration(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Enum):
        return enum_to_json(value)
    if isinstance(value, OPAQUE_TYPES):
        return to_text(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return json.dumps(to_json_compatible(list(value)))
    return str(value)
