"""
Pydantic schemas for API request validation.

These schemas define the contract between clients and the Gift Aid API.
Field names accept both snake_case and the camelCase used by the admin UI.
"", "undefined" and "null" strings are treated as "not provided".

Donation fields are deliberately loose (strings or numbers): the
DonationValidator owns their rules so every entry path reports the same
field errors.
"""

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.utils.helpers import is_blank


class GatewayConnectionModeEnum(str, Enum):
    """Who holds the Government Gateway credentials."""
    CHARITY = "charity"
    CENTRAL = "central"


class _RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_sentinels(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: (None if is_blank(v) else v) for k, v in data.items()}
        return data


# =============================================================================
# Request Schemas
# =============================================================================

class ClaimCreateRequest(_RequestModel):
    """Request to open a draft claim."""
    charity_id: int = Field(..., alias="charityId", description="Owning charity")
    period_start: date = Field(..., alias="periodStart")
    period_end: date = Field(..., alias="periodEnd")
    tax_year: str | None = Field(default=None, alias="taxYear", max_length=20)


class DonationRequest(_RequestModel):
    """One donation row for manual add/update."""
    title: str | None = Field(default=None, max_length=20)
    first_name: str | None = Field(default=None, alias="firstName", max_length=100)
    last_name: str | None = Field(default=None, alias="lastName", max_length=100)
    address: str | None = Field(default=None, max_length=255)
    postcode: str | None = Field(default=None, max_length=20)
    donation_date: str | date | None = Field(default=None, alias="donationDate")
    donation_amount: str | int | float | None = Field(default=None, alias="donationAmount")

    def as_data(self) -> dict:
        """Fields present in the request, keyed by snake_case name.

        A field sent as null or a blank sentinel comes through as None.
        """
        return self.model_dump(exclude_unset=True)


class DonationImportRequest(_RequestModel):
    """Bulk import of already-parsed CSV rows."""
    rows: list[dict[str, Any]] = Field(..., min_length=1, description="rows[] is required")


class GatewayConnectionRequest(_RequestModel):
    """Save Government Gateway credentials for a charity."""
    # Passwords are stored exactly as typed
    model_config = ConfigDict(str_strip_whitespace=False)

    mode: GatewayConnectionModeEnum = GatewayConnectionModeEnum.CHARITY
    sender_id: str | None = Field(default=None, alias="gatewayUserId", max_length=100)
    password: str | None = Field(default=None, alias="gatewayPassword", max_length=200)


class CharityIdentifierRequest(_RequestModel):
    """Set a charity's HMRC CHARID."""
    hmrc_charid: str | None = Field(default=None, alias="hmrcCharid")
