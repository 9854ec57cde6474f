"""Unit tests for app.services.donation_validator."""

from datetime import date
from decimal import Decimal

import pytest

from app.core.exceptions import ValidationError
from app.services.donation_validator import validate_donation


def _row(**overrides):
    row = {
        "title": "Mrs",
        "first_name": "Jane",
        "last_name": "Smith",
        "address": "1 High Street",
        "postcode": "SW1A 1AA",
        "donation_date": "2024-05-01",
        "donation_amount": "10.00",
    }
    row.update(overrides)
    return row


def test_valid_row_is_normalised():
    result = validate_donation(_row(
        first_name="  Jane ", postcode="  sw1a   1aa ", donation_amount="10",
    ))
    assert result.first_name == "Jane"
    assert result.postcode == "SW1A 1AA"
    assert result.donation_date == date(2024, 5, 1)
    assert result.donation_amount == Decimal("10.00")
    assert str(result.donation_amount) == "10.00"


@pytest.mark.parametrize("field,message", [
    ("first_name", "First Name is required"),
    ("last_name", "Last Name is required"),
    ("address", "Address is required"),
    ("postcode", "Postcode is required"),
])
@pytest.mark.parametrize("blank", [None, "", "   ", "undefined", "null"])
def test_required_text_fields(field, message, blank):
    with pytest.raises(ValidationError) as exc:
        validate_donation(_row(**{field: blank}))
    assert exc.value.field == field
    assert str(exc.value) == message
    assert exc.value.details == {field: message}


@pytest.mark.parametrize("amount", [0, "0", "0.00", "-5", -1.5, "abc", "NaN", "inf", "-Infinity", None, True, "0.004"])
def test_non_positive_or_unparseable_amount_names_amount_field(amount):
    with pytest.raises(ValidationError) as exc:
        validate_donation(_row(donation_amount=amount))
    assert exc.value.field == "donation_amount"


@pytest.mark.parametrize("raw", ["2024-13-01", "2024-02-30", "yesterday", "", None, "01.05.2024"])
def test_unparseable_date_names_date_field(raw):
    with pytest.raises(ValidationError) as exc:
        validate_donation(_row(donation_date=raw))
    assert exc.value.field == "donation_date"


@pytest.mark.parametrize("raw,expected", [
    ("2024-06-15", date(2024, 6, 15)),
    ("15/06/2024", date(2024, 6, 15)),
    ("2024-06-15T09:30:00", date(2024, 6, 15)),
    (date(2024, 6, 15), date(2024, 6, 15)),
])
def test_accepted_date_forms(raw, expected):
    assert validate_donation(_row(donation_date=raw)).donation_date == expected


@pytest.mark.parametrize("raw,expected", [
    ("25.5", "25.50"),
    (25.5, "25.50"),
    ("£1,250", "1250.00"),
    ("10.005", "10.01"),
    (Decimal("3"), "3.00"),
])
def test_amount_rounds_to_pence(raw, expected):
    assert str(validate_donation(_row(donation_amount=raw)).donation_amount) == expected


def test_first_failing_field_is_reported():
    with pytest.raises(ValidationError) as exc:
        validate_donation(_row(last_name="", donation_amount="-1"))
    assert exc.value.field == "last_name"


def test_blank_title_becomes_none():
    assert validate_donation(_row(title="  ")).title is None


def test_to_columns_maps_onto_donation_record():
    columns = validate_donation(_row()).to_columns()
    assert columns["donor_first_name"] == "Jane"
    assert columns["donor_postcode"] == "SW1A 1AA"
    assert columns["donation_amount"] == Decimal("10.00")


@pytest.mark.parametrize("amount", ["1e30", "1E+40", "10000000000", "9999999999.995"])
def test_amount_beyond_stored_precision_names_amount_field(amount):
    with pytest.raises(ValidationError) as exc:
        validate_donation(_row(donation_amount=amount))
    assert exc.value.field == "donation_amount"


def test_largest_storable_amount_is_accepted():
    assert validate_donation(_row(donation_amount="9999999999.99")).donation_amount == Decimal("9999999999.99")


@pytest.mark.parametrize("field,label", [
    ("title", "Title"),
    ("first_name", "First Name"),
    ("last_name", "Last Name"),
    ("address", "Address"),
    ("postcode", "Postcode"),
])
@pytest.mark.parametrize("bad", ["Ann\x0bMarie", "A\x00B", "x\ufffey"])
def test_text_xml_cannot_carry_names_field(field, label, bad):
    with pytest.raises(ValidationError) as exc:
        validate_donation(_row(**{field: bad}))
    assert exc.value.field == field
    assert str(exc.value) == f"{label} contains characters that are not allowed"


def test_tabs_and_non_ascii_text_are_allowed():
    result = validate_donation(_row(first_name="Zoë", address="Flat 2\t1 High Street"))
    assert result.first_name == "Zoë"
