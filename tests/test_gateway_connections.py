"""
Tests for app.services.gateway_connection_service.

Coverage:
    - Saving credentials encrypts them and activates the new connection
    - Re-saving soft-deactivates the previous row (audit history kept)
    - Serialised connections never expose credential material
    - Credential resolution: charity → central config → ConfigurationError
    - Tampered blobs fail closed
"""

import pytest
from sqlalchemy import select

from app.core.exceptions import ConfigurationError, NotFoundError, ValidationError
from app.models import db
from app.models.giftaid import Charity, GatewayConnection
from app.services.gateway_connection_service import (
    get_active_connection,
    list_connections,
    load_credentials,
    mask_sender_id,
    save_connection,
)
from app.utils.crypto import CredentialIntegrityError, decrypt_credentials


@pytest.mark.parametrize("raw,masked", [
    ("CHARITY-USER-01", "CH***1"),
    ("ABCD", "AB***D"),
    ("ABC", "***"),
    ("", "***"),
    (None, "***"),
])
def test_mask_sender_id(raw, masked):
    assert mask_sender_id(raw) == masked


class TestSaveConnection:
    def test_credentials_encrypted_at_rest(self, charity, gateway_connection):
        blob = gateway_connection.credentials_encrypted
        assert "gateway-pass-01" not in blob
        assert "CHARITY-USER-01" not in blob
        payload = decrypt_credentials(blob)
        assert payload["sender_id"] == "CHARITY-USER-01"
        assert payload["password"] == "gateway-pass-01"
        assert payload["updated_at"]

    def test_charity_points_at_active_connection(self, charity, gateway_connection):
        db.session.refresh(charity)
        assert charity.gateway_connection_id == gateway_connection.id
        assert gateway_connection.sender_id_masked == "CH***1"
        assert gateway_connection.created_by == "ops@example.org"

    def test_resave_soft_deactivates_previous(self, charity, gateway_connection):
        """Given an active connection, When new credentials are saved,
        Then the old row stays with is_active False and a deactivated_at."""
        newer = save_connection(
            charity.id, sender_id="NEW-USER-02", password="pw-2", actor="admin@example.org",
        )

        history = list_connections(charity.id)
        assert [c.id for c in history] == [newer.id, gateway_connection.id]
        old = db.session.get(GatewayConnection, gateway_connection.id)
        assert old.is_active is False
        assert old.deactivated_at is not None
        assert old.updated_by == "admin@example.org"
        assert get_active_connection(charity.id).id == newer.id

        active = db.session.execute(
            select(GatewayConnection).where(
                GatewayConnection.charity_id == charity.id,
                GatewayConnection.is_active.is_(True),
            )
        ).scalars().all()
        assert len(active) == 1
        assert db.session.get(Charity, charity.id).gateway_connection_id == newer.id

    def test_to_dict_hides_credentials(self, gateway_connection):
        d = gateway_connection.to_dict()
        assert "credentials_encrypted" not in d
        assert "gateway-pass-01" not in str(d)
        assert d["sender_id_masked"] == "CH***1"
        assert d["is_active"] is True

    @pytest.mark.parametrize("sender_id,password,field", [
        ("", "pw", "sender_id"),
        ("USER", "", "password"),
        ("USER", "   ", "password"),
    ])
    def test_charity_mode_requires_both_fields(self, charity, sender_id, password, field):
        with pytest.raises(ValidationError) as exc:
            save_connection(charity.id, sender_id=sender_id, password=password)
        assert exc.value.field == field
        assert get_active_connection(charity.id) is None

    def test_unknown_mode(self, charity):
        with pytest.raises(ValidationError):
            save_connection(charity.id, sender_id="U", password="P", mode="shared")

    def test_unknown_charity(self):
        with pytest.raises(NotFoundError):
            save_connection(9999, sender_id="U", password="P")

    def test_central_mode_stores_no_credentials(self, charity):
        conn = save_connection(charity.id, mode="central", actor="ops@example.org")
        assert conn.credentials_encrypted is None
        assert conn.sender_id_masked is None
        assert conn.is_active is True

    def test_missing_secret_leaves_no_row(self, charity, monkeypatch):
        monkeypatch.delenv("GATEWAY_CRED_ENCRYPTION_KEY")
        with pytest.raises(ConfigurationError):
            save_connection(charity.id, sender_id="U", password="P")
        assert list_connections(charity.id) == []

    def test_password_whitespace_is_kept(self, app, charity):
        save_connection(charity.id, sender_id="  USER01 ", password="  pass word  ")
        creds, _ = load_credentials(charity.id, app.config)
        assert creds.sender_id == "USER01"
        assert creds.password == "  pass word  "

    @pytest.mark.parametrize("sender_id,password,field", [
        ("USER\x00", "pw", "sender_id"),
        ("USER", "p\x0bw", "password"),
    ])
    def test_credentials_xml_cannot_carry_are_refused(self, charity, sender_id, password, field):
        with pytest.raises(ValidationError) as exc:
            save_connection(charity.id, sender_id=sender_id, password=password)
        assert exc.value.field == field
        assert list_connections(charity.id) == []


class TestLoadCredentials:
    def test_charity_credentials_preferred(self, app, charity, gateway_connection, monkeypatch):
        monkeypatch.setitem(app.config, "HMRC_SENDER_ID", "CENTRAL01")
        monkeypatch.setitem(app.config, "HMRC_SENDER_PASSWORD", "central-pw")
        creds, source = load_credentials(charity.id, app.config)
        assert source == "charity"
        assert creds.sender_id == "CHARITY-USER-01"
        assert creds.password == "gateway-pass-01"

    def test_central_fallback_without_connection(self, app, charity, monkeypatch):
        monkeypatch.setitem(app.config, "HMRC_SENDER_ID", "CENTRAL01")
        monkeypatch.setitem(app.config, "HMRC_SENDER_PASSWORD", "central-pw")
        creds, source = load_credentials(charity.id, app.config)
        assert source == "central"
        assert creds.sender_id == "CENTRAL01"

    def test_central_mode_connection_uses_config(self, app, charity, monkeypatch):
        save_connection(charity.id, mode="central")
        monkeypatch.setitem(app.config, "HMRC_SENDER_ID", "CENTRAL01")
        monkeypatch.setitem(app.config, "HMRC_SENDER_PASSWORD", "central-pw")
        _, source = load_credentials(charity.id, app.config)
        assert source == "central"

    def test_nothing_configured(self, app, charity):
        with pytest.raises(ConfigurationError):
            load_credentials(charity.id, app.config)

    def test_tampered_blob_fails_closed(self, app, charity, gateway_connection):
        blob = gateway_connection.credentials_encrypted
        iv, tag, ciphertext = blob.split(".")
        gateway_connection.credentials_encrypted = ".".join([iv, tag, ciphertext[::-1]])
        db.session.commit()
        with pytest.raises(CredentialIntegrityError):
            load_credentials(charity.id, app.config)

    def test_redacted_copy_keeps_sender(self, app, charity, gateway_connection):
        creds, _ = load_credentials(charity.id, app.config)
        redacted = creds.redacted()
        assert redacted.sender_id == creds.sender_id
        assert redacted.password == "REDACTED"
