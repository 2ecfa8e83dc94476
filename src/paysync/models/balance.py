"""Balance payload model."""

from __future__ import annotations

import math
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from paysync.models._base import PaySyncBaseModel


class BalanceUpdate(PaySyncBaseModel):
    """A full replacement of the wallet balance (``{"balance": 1250.5}``)."""

    balance: float = Field(..., validation_alias=AliasChoices("balance", "value"))

    @field_validator("balance", mode="before")
    @classmethod
    def _require_number(cls, value: Any) -> float:
        # The backend always sends numbers; numeric strings are malformed.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"balance must be numeric, got {type(value).__name__}")
        if math.isnan(value) or math.isinf(value):
            raise ValueError("balance must be finite")
        return float(value)
