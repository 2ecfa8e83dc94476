"""Shared model helpers.

* :func:`parse_timestamp` accepts the timestamp shapes seen on the wire
  (ISO-8601 strings, ``datetime`` objects, epoch seconds or milliseconds)
  and always yields a timezone-aware UTC ``datetime``.
* :class:`PaySyncBaseModel` strips placeholder values (``""``, ``"--"``,
  NaN) so field defaults apply, and stashes the original payload in ``raw``.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 100_000_000_000


def _from_epoch(seconds: float) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"epoch timestamp out of range: {seconds}") from exc


def parse_timestamp(value: Any) -> datetime:
    """Convert a wire timestamp to a UTC datetime.

    Raises :class:`ValueError` when *value* cannot be interpreted, so a
    record without a usable timestamp fails validation.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        raise ValueError("timestamp must not be a boolean")
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value) or value < 0:
            raise ValueError(f"invalid epoch timestamp: {value}")
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return _from_epoch(ts)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("timestamp is empty")
        if text.lstrip("-").replace(".", "", 1).isdigit():
            return parse_timestamp(float(text))
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    if isinstance(value, dict):
        # Firestore-style ``{"seconds": ..., "nanoseconds": ...}``.
        seconds = value.get("seconds", value.get("_seconds"))
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
            nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
            return _from_epoch(float(seconds) + float(nanos) / 1e9)
    raise ValueError(f"unsupported timestamp value: {value!r}")


PaySyncTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces wire timestamps to UTC datetimes."""


class PaySyncBaseModel(BaseModel):
    """Base for wire payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Drop placeholder values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
