"""
Conversion of raw Glide values into destination column types.

convert_value never raises: anything that cannot be represented in the
declared type comes back as None so the rest of the row can still be synced.
"""

import json
import logging
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse

from app.schemas.mapping import DataType

log = logging.getLogger(__name__)

TRUE_TOKENS = {"true", "t", "yes", "y", "1", "on", "checked"}
FALSE_TOKENS = {"false", "f", "no", "n", "0", "off", "unchecked"}

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Thousands separators only in valid groups of three: "1,234.5" but not "1,5"
GROUPED_NUMBER_RE = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")

# Epoch values above this are taken as milliseconds (year 2286 in seconds)
_EPOCH_MS_THRESHOLD = 10_000_000_000


def _is_blank(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and raw.strip() == "")


def to_string(raw: Any) -> Optional[str]:
    if _is_blank(raw):
        return None
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, default=str)
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (datetime, date)):
        return raw.isoformat()
    return str(raw)


def to_number(raw: Any) -> Optional[float]:
    if _is_blank(raw):
        return None
    if isinstance(raw, bool):
        return 1 if raw else 0
    if isinstance(raw, (int, float)):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if "," in text:
            if not GROUPED_NUMBER_RE.match(text):
                return None
            text = text.replace(",", "")
        try:
            value = int(text)
        except ValueError:
            try:
                value = float(text)
            except ValueError:
                return None
    else:
        return None

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        if value.is_integer() and abs(value) < 2 ** 53:
            return int(value)
    return value


def to_boolean(raw: Any) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        if raw == 1:
            return True
        if raw == 0:
            return False
        return None
    if isinstance(raw, str):
        token = raw.strip().lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
    return None


def _from_epoch(value: float) -> Optional[datetime]:
    if math.isnan(value) or math.isinf(value):
        return None
    seconds = value / 1000 if abs(value) >= _EPOCH_MS_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_datetime(raw: Any) -> Optional[datetime]:
    if _is_blank(raw) or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return _as_utc(raw)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day, tzinfo=timezone.utc)
    if isinstance(raw, (int, float)):
        return _from_epoch(float(raw))
    if not isinstance(raw, str):
        return None

    text = raw.strip()
    if text.isdigit():
        return _from_epoch(float(text))
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        return _as_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        parsed = date.fromisoformat(text[:10])
    except ValueError:
        return None
    return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)


def to_image_uri(raw: Any) -> Optional[str]:
    if isinstance(raw, (list, tuple)):
        raw = raw[0] if raw else None
    if not isinstance(raw, str) or _is_blank(raw):
        return None
    text = raw.strip()
    if text.lower().startswith("data:image/"):
        return text
    parsed = urlparse(text)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return text
    return None


def to_email(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if EMAIL_RE.match(text):
        return text
    return None


CONVERTERS = {
    DataType.STRING: to_string,
    DataType.NUMBER: to_number,
    DataType.BOOLEAN: to_boolean,
    DataType.DATE_TIME: to_datetime,
    DataType.IMAGE_URI: to_image_uri,
    DataType.EMAIL_ADDRESS: to_email,
}


def convert_value(raw: Any, data_type: Any) -> Any:
    """Convert a raw Glide value into the declared type; unknown types are treated as string."""
    try:
        kind = DataType(data_type)
    except (TypeError, ValueError):
        kind = DataType.STRING
    try:
        return CONVERTERS[kind](raw)
    except Exception as e:  # never raise
        log.debug(f"Could not convert {raw!r} to {kind.value}: {e}")
        return None
