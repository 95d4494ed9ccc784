import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

# Epoch values above this are treated as milliseconds (year ~5138 in seconds)
_EPOCH_MS_THRESHOLD = 1e11


def normalize_metadata(value: Any) -> dict[str, Any]:
    """Return fragment metadata as a plain dict, tolerating malformed values."""
    if value is None:
        return {}

    if isinstance(value, Mapping):
        return dict(value)

    if isinstance(value, str):
        if not value.strip():
            return {}

        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Dropping unparseable fragment metadata string")
            return {}

        if isinstance(parsed, Mapping):
            return dict(parsed)

        logger.warning("Dropping non-object fragment metadata (%s)", type(parsed).__name__)
        return {}

    try:
        return dict(value)
    except (TypeError, ValueError):
        logger.warning("Dropping non-mapping fragment metadata (%s)", type(value).__name__)
        return {}


def parse_timestamp(value: Any) -> datetime | None:
    """
    Coerce a timestamp into an aware UTC datetime.

    Accepts datetimes (naive ones are assumed UTC), ISO-8601 strings and
    epoch numbers in seconds or milliseconds. Anything unparseable or out of
    the representable range yields None.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) > _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("Dropping out-of-range epoch timestamp %r", value)
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Dropping unparseable timestamp %r", value)
            return None
        return parse_timestamp(parsed)

    logger.warning("Dropping timestamp of unsupported type (%s)", type(value).__name__)
    return None
