"""
Shared pytest fixtures for the Gift Aid Claims test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - charity: Pre-created Charity with a valid HMRC CHARID
    - make_claim: Factory for draft claims with optional donation rows
    - gateway_connection: Active charity-held gateway connection
    - govtalk_response: Builder for HMRC gateway response bodies

GATEWAY_CRED_ENCRYPTION_KEY is set at import time, before the app is
created, so the credential vault works in every test.
"""

import os
from datetime import date
from decimal import Decimal

import pytest

os.environ["GATEWAY_CRED_ENCRYPTION_KEY"] = "test-only-gateway-credential-secret"

from app import create_app  # noqa: E402
from app.models import db as _db  # noqa: E402
from app.models.giftaid import Charity, Claim, DonationRecord  # noqa: E402


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def charity():
    """A charity ready for submission (CHARID + regulator number)."""
    c = Charity(
        name="Riverside Food Bank",
        contact_email="treasurer@riverside.example",
        hmrc_charid="AB12345",
        regulator_number="1234567",
    )
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def make_claim(charity):
    """Factory: make_claim(rows=[...], status="draft") → committed Claim.

    Rows are dicts of DonationRecord column values; donor fields default
    to a valid donor so tests only spell out what they care about.
    """

    def _make(rows=(), status="draft", charity_id=None, **claim_fields):
        claim = Claim(
            charity_id=charity_id or charity.id,
            period_start=claim_fields.pop("period_start", date(2024, 4, 6)),
            period_end=claim_fields.pop("period_end", date(2025, 4, 5)),
            status=status,
            donation_count=0,
            total_amount=Decimal("0.00"),
            **claim_fields,
        )
        _db.session.add(claim)
        _db.session.flush()
        for row in rows:
            values = {
                "donor_first_name": "Jane",
                "donor_last_name": "Smith",
                "donor_address": "1 High Street",
                "donor_postcode": "SW1A 1AA",
                "donation_date": date(2024, 5, 1),
                "donation_amount": Decimal("10.00"),
            }
            values.update(row)
            _db.session.add(DonationRecord(claim_id=claim.id, **values))
        _db.session.commit()
        return claim

    return _make


@pytest.fixture()
def gateway_connection(charity):
    """Active charity-held Government Gateway connection."""
    from app.services.gateway_connection_service import save_connection

    return save_connection(
        charity.id,
        sender_id="CHARITY-USER-01",
        password="gateway-pass-01",
        mode="charity",
        actor="ops@example.org",
    )


def _govtalk_response(qualifier, correlation_id="ABCDEF0123456789ABCDEF0123456789",
                      errors=(), poll_interval=None):
    endpoint = ""
    if poll_interval is not None:
        endpoint = (
            f'<ResponseEndPoint PollInterval="{poll_interval}">'
            "https://hmrc.test/poll</ResponseEndPoint>"
        )
    error_xml = "".join(
        f"<Error><RaisedBy>ChRIS</RaisedBy><Number>{n}</Number>"
        f"<Type>{t}</Type><Text>{x}</Text></Error>"
        for n, t, x in errors
    )
    details = f"<GovTalkErrors>{error_xml}</GovTalkErrors>" if error_xml else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<GovTalkMessage xmlns="http://www.govtalk.gov.uk/CM/envelope">'
        "<EnvelopeVersion>2.0</EnvelopeVersion><Header><MessageDetails>"
        "<Class>HMRC-CHAR-CLM</Class>"
        f"<Qualifier>{qualifier}</Qualifier><Function>submit</Function>"
        f"<CorrelationID>{correlation_id}</CorrelationID>{endpoint}"
        "</MessageDetails></Header>"
        f"<GovTalkDetails><Keys/>{details}</GovTalkDetails><Body/>"
        "</GovTalkMessage>"
    )


@pytest.fixture()
def govtalk_response():
    """Builder for GovTalk gateway response bodies:
    govtalk_response(qualifier, correlation_id=..., errors=[(number, type, text)], poll_interval=None)
    """
    return _govtalk_response
