"""Push message envelope."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from paysync.models._base import PaySyncTimestamp


class PayloadKind(StrEnum):
    """Explicit discriminator between full snapshots and single-record deltas."""

    SNAPSHOT = "snapshot"
    DELTA = "delta"


class PushEnvelope(BaseModel):
    """A decoded push message: ``{"type": ..., "kind": ..., "payload": ...}``.

    ``kind`` is optional; when a publisher omits it the payload shape decides
    (a list is a snapshot, a mapping is a delta).
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    type: str = Field(..., validation_alias=AliasChoices("type", "event"))
    kind: PayloadKind | None = None
    payload: Any = None
    sent_at: PaySyncTimestamp | None = Field(default=None, validation_alias=AliasChoices("sentAt", "sent_at"))

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("message type must be non-empty")
        return text

    @field_validator("kind", mode="before")
    @classmethod
    def _lenient_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in {"snapshot", "full", "initial"}:
                return PayloadKind.SNAPSHOT
            if lowered in {"delta", "update", "single"}:
                return PayloadKind.DELTA
            return None
        return value
