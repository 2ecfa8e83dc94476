"""Transaction record and filter models."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from paysync.models._base import PaySyncBaseModel, PaySyncTimestamp


class Transaction(PaySyncBaseModel):
    """A single entry of the user's transaction feed.

    ``id`` and ``timestamp`` are required; everything else is opaque to the
    synchronization core and kept as delivered. Unknown keys are preserved
    in ``model_extra``.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
    )

    id: str = Field(..., validation_alias=AliasChoices("id", "transactionId", "transaction_id"))
    """Backend document id, unique within the feed."""
    timestamp: PaySyncTimestamp = Field(..., validation_alias=AliasChoices("timestamp", "date", "ts"))
    """When the transaction happened (UTC)."""
    user_id: str = Field(default="", validation_alias=AliasChoices("userId", "user_id"))
    type: str = Field(default="", validation_alias=AliasChoices("type"))
    """Transaction type label (e.g. ``"Sent"``, ``"Recharge"``)."""
    name: str = Field(default="", validation_alias=AliasChoices("name"))
    """Payee, payer or service name."""
    description: str = Field(default="", validation_alias=AliasChoices("description"))
    amount: float | None = Field(default=None, validation_alias=AliasChoices("amount"))
    """Signed amount: positive for credits, negative for debits."""
    status: str = Field(default="", validation_alias=AliasChoices("status"))
    avatar_seed: str = Field(default="", validation_alias=AliasChoices("avatarSeed", "avatar_seed"))
    upi_id: str | None = Field(default=None, validation_alias=AliasChoices("upiId", "upi_id"))
    biller_id: str | None = Field(default=None, validation_alias=AliasChoices("billerId", "biller_id"))
    loan_id: str | None = Field(default=None, validation_alias=AliasChoices("loanId", "loan_id"))
    ticket_id: str | None = Field(default=None, validation_alias=AliasChoices("ticketId", "ticket_id"))
    refund_eta: str | None = Field(default=None, validation_alias=AliasChoices("refundEta", "refund_eta"))

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValueError("id must be a string or integer")
        text = str(value).strip()
        if not text:
            raise ValueError("id must be non-empty")
        return text

    @model_validator(mode="after")
    def _default_avatar_seed(self) -> Transaction:
        if not self.avatar_seed:
            seed = "".join(self.name.lower().split()) or self.id
            object.__setattr__(self, "avatar_seed", seed)
        return self

    @property
    def sort_key(self) -> float:
        """Epoch seconds used for newest-first ordering."""
        return self.timestamp.timestamp()


class TransactionFilters(BaseModel):
    """Filters passed through unchanged to the transaction pull endpoint.

    ``"all"`` (any case) on ``type``/``status`` means "no filter".
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
    )

    type: str | None = None
    status: str | None = None
    date_from: date | None = Field(default=None, validation_alias=AliasChoices("date_from", "dateFrom", "from"))
    date_to: date | None = Field(default=None, validation_alias=AliasChoices("date_to", "dateTo", "to"))
    search_term: str | None = Field(default=None, validation_alias=AliasChoices("search_term", "searchTerm"))

    @field_validator("type", "status", "search_term", mode="before")
    @classmethod
    def _normalize_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        if not text or text.lower() == "all":
            return None
        return text

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        return value

    def merged(self, other: TransactionFilters | None) -> TransactionFilters:
        """Overlay the fields set on *other* on top of these filters."""
        if other is None:
            return self
        return self.model_copy(update=other.model_dump(exclude_unset=True))

    def to_query_params(self) -> dict[str, str]:
        """Query string parameters understood by ``GET /transactions``."""
        params: dict[str, str] = {}
        if self.type:
            params["type"] = self.type
        if self.status:
            params["status"] = self.status
        if self.date_from is not None:
            params["startDate"] = self.date_from.isoformat()
        if self.date_to is not None:
            params["endDate"] = self.date_to.isoformat()
        if self.search_term:
            params["searchTerm"] = self.search_term
        return params

    def to_request(self) -> dict[str, Any]:
        """Filters as sent inside a push initial-data request."""
        return self.model_dump(mode="json", by_alias=False, exclude_none=True)
