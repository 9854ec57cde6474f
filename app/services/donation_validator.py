"""
Donation record validation.

One pure function, `validate_donation`, turns a loosely-typed mapping
(manual entry, CSV import row, or a stored DonationRecord) into a
normalised `ValidatedDonation` or raises ValidationError naming the first
failing field.

It runs at data entry *and* again when the claim envelope is built, so a
row that reached the database by any other path still cannot reach HMRC.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from app.core.exceptions import ValidationError
from app.utils.helpers import is_blank, is_xml_safe, parse_date, parse_money

# field → label, in the order fields are checked
REQUIRED_TEXT_FIELDS = (
    ("first_name", "First Name"),
    ("last_name", "Last Name"),
    ("address", "Address"),
    ("postcode", "Postcode"),
)

DATE_ERROR = "Donation Date must be YYYY-MM-DD"
AMOUNT_ERROR = "Donation Amount must be a positive number"
AMOUNT_TOO_LARGE_ERROR = "Donation Amount is too large"

# donation_amount is Numeric(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")


@dataclass(frozen=True)
class ValidatedDonation:
    first_name: str
    last_name: str
    address: str
    postcode: str
    donation_date: date
    donation_amount: Decimal
    title: str | None = None

    def to_columns(self) -> dict:
        """Keyword arguments for a DonationRecord."""
        return {
            "donor_title": self.title,
            "donor_first_name": self.first_name,
            "donor_last_name": self.last_name,
            "donor_address": self.address,
            "donor_postcode": self.postcode,
            "donation_date": self.donation_date,
            "donation_amount": self.donation_amount,
        }


def _text(value) -> str:
    return "" if is_blank(value) else str(value).strip()


def _xml_text(data: dict, field: str, label: str) -> str:
    value = _text(data.get(field))
    if not is_xml_safe(value):
        raise ValidationError(f"{label} contains characters that are not allowed", field=field)
    return value


def validate_donation(data: dict) -> ValidatedDonation:
    """Validate and normalise one donation.

    Names and address are trimmed; the postcode is trimmed, inner
    whitespace collapsed and upper-cased; the amount is rounded to pence
    and must be > 0 and fit the stored column. Text holding characters
    XML cannot carry (control characters such as \\x0b) is refused.

    Raises:
        ValidationError: with ``field`` set to the first failing field.
    """
    title = _xml_text(data, "title", "Title") or None

    values = {}
    for field, label in REQUIRED_TEXT_FIELDS:
        values[field] = _xml_text(data, field, label)
        if not values[field]:
            raise ValidationError(f"{label} is required", field=field)

    values["postcode"] = " ".join(values["postcode"].split()).upper()

    donation_date = parse_date(data.get("donation_date"))
    if donation_date is None:
        raise ValidationError(DATE_ERROR, field="donation_date")

    amount = parse_money(data.get("donation_amount"))
    if amount is None or amount <= 0:
        raise ValidationError(AMOUNT_ERROR, field="donation_amount")
    if amount > MAX_AMOUNT:
        raise ValidationError(AMOUNT_TOO_LARGE_ERROR, field="donation_amount")

    return ValidatedDonation(
        title=title,
        donation_date=donation_date,
        donation_amount=amount,
        **values,
    )


def record_as_mapping(record) -> dict:
    """Expose a stored DonationRecord in the shape validate_donation expects."""
    return {
        "title": record.donor_title,
        "first_name": record.donor_first_name,
        "last_name": record.donor_last_name,
        "address": record.donor_address,
        "postcode": record.donor_postcode,
        "donation_date": record.donation_date,
        "donation_amount": record.donation_amount,
    }
