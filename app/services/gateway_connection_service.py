"""
HMRC gateway connection service.

Business logic for Government Gateway credentials:
  - Saving a charity's credentials (AES-256-GCM encrypted at rest)
  - Soft-deactivating superseded connections, keeping audit history
  - Resolving the credentials a submission or poll should use

Credential resolution order:
  1. The charity's active connection in "charity" mode (decrypted transiently)
  2. The centrally-held sender credentials from app config
     (HMRC_SENDER_ID / HMRC_SENDER_PASSWORD), used for "central" mode
     connections and for charities with no connection at all
  3. Otherwise ConfigurationError

Passwords and encrypted blobs are never logged or serialised.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Mapping

from sqlalchemy import select, update

from app.core.exceptions import ConfigurationError, ValidationError
from app.models import db
from app.models.giftaid import GATEWAY_MODES, GatewayConnection
from app.services.charity_service import get_charity
from app.services.envelope_builder import GatewayCredentials
from app.utils.crypto import decrypt_credentials, encrypt_credentials
from app.utils.helpers import is_xml_safe

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def mask_sender_id(sender_id: str) -> str:
    """Show only enough of a gateway user id to recognise it: AB***9."""
    value = (sender_id or "").strip()
    if len(value) <= 3:
        return "***"
    return f"{value[:2]}***{value[-1]}"


# ═════════════════════════════════════════════════════════════════════════════
# Connection management
# ═════════════════════════════════════════════════════════════════════════════


def get_active_connection(charity_id) -> GatewayConnection | None:
    """Return the charity's active connection, or None if none is active."""
    stmt = select(GatewayConnection).where(
        GatewayConnection.charity_id == charity_id,
        GatewayConnection.is_active.is_(True),
    )
    return db.session.execute(stmt).scalar_one_or_none()


def list_connections(charity_id) -> list[GatewayConnection]:
    """All connections for a charity, newest first (audit history)."""
    stmt = (
        select(GatewayConnection)
        .where(GatewayConnection.charity_id == charity_id)
        .order_by(GatewayConnection.id.desc())
    )
    return list(db.session.execute(stmt).scalars())


def save_connection(
    charity_id,
    *,
    sender_id: str | None = None,
    password: str | None = None,
    mode: str = "charity",
    actor: str | None = None,
) -> GatewayConnection:
    """Activate a new gateway connection for a charity.

    In one transaction: every currently-active connection for the charity
    is soft-deactivated, the new connection is inserted as active and the
    charity is pointed at it.

    Args:
        charity_id: Owning charity.
        sender_id: Government Gateway user id (required in "charity" mode).
        password: Government Gateway password (required in "charity" mode).
        mode: "charity" (charity-held credentials) or "central".
        actor: Who made the change, recorded in created_by/updated_by.

    Raises:
        NotFoundError: Unknown charity.
        ValidationError: Missing credentials or unknown mode.
        ConfigurationError: Encryption secret unset or too short.
    """
    charity = get_charity(charity_id)

    if mode not in GATEWAY_MODES:
        raise ValidationError(
            f"mode must be one of: {', '.join(GATEWAY_MODES)}", field="mode"
        )

    encrypted = None
    masked = None
    if mode == "charity":
        sender_id = (sender_id or "").strip()
        password = password or ""
        if not sender_id:
            raise ValidationError("gatewayUserId is required", field="sender_id")
        if not password.strip():
            raise ValidationError("gatewayPassword is required", field="password")
        for field, value in (("sender_id", sender_id), ("password", password)):
            if not is_xml_safe(value):
                raise ValidationError(
                    f"{field} contains characters that are not allowed", field=field
                )
        # Encrypt before touching the session so a config error leaves no trace
        encrypted = encrypt_credentials({
            "sender_id": sender_id,
            "password": password,
            "updated_at": _utcnow().isoformat(),
        })
        masked = mask_sender_id(sender_id)

    now = _utcnow()
    db.session.execute(
        update(GatewayConnection)
        .where(
            GatewayConnection.charity_id == charity.id,
            GatewayConnection.is_active.is_(True),
        )
        .values(is_active=False, deactivated_at=now, updated_at=now, updated_by=actor)
        .execution_options(synchronize_session="fetch")
    )

    connection = GatewayConnection(
        charity_id=charity.id,
        mode=mode,
        is_active=True,
        credentials_encrypted=encrypted,
        sender_id_masked=masked,
        created_by=actor,
        updated_by=actor,
    )
    db.session.add(connection)
    db.session.flush()

    charity.gateway_connection_id = connection.id
    db.session.commit()

    logger.info(
        "Gateway connection activated charity=%s connection=%s mode=%s by=%s",
        charity.id, connection.id, mode, actor,
    )
    return connection


# ═════════════════════════════════════════════════════════════════════════════
# Credential resolution
# ═════════════════════════════════════════════════════════════════════════════


def central_credentials(cfg: Mapping) -> GatewayCredentials | None:
    sender_id = (cfg.get("HMRC_SENDER_ID") or "").strip()
    password = cfg.get("HMRC_SENDER_PASSWORD") or ""
    if not sender_id or not password.strip():
        return None
    return GatewayCredentials(sender_id=sender_id, password=password)


def load_credentials(charity_id, cfg: Mapping) -> tuple[GatewayCredentials, str]:
    """Resolve the sender credentials for a charity.

    Returns:
        (credentials, source) where source is "charity" or "central".

    Raises:
        ConfigurationError: No usable credentials, or the stored set is incomplete.
        CredentialIntegrityError: The stored blob fails authentication.
    """
    connection = get_active_connection(charity_id)

    if connection is not None and connection.mode == "charity":
        payload = decrypt_credentials(connection.credentials_encrypted or "")
        sender_id = str((payload or {}).get("sender_id") or "").strip()
        password = str((payload or {}).get("password") or "")
        if not sender_id or not password.strip():
            raise ConfigurationError(
                "HMRC credentials are incomplete. Please re-save them "
                "(gateway user id + password)."
            )
        return GatewayCredentials(sender_id=sender_id, password=password), "charity"

    central = central_credentials(cfg)
    if central is None:
        raise ConfigurationError(
            "No HMRC gateway credentials available: save a charity connection "
            "or configure HMRC_SENDER_ID and HMRC_SENDER_PASSWORD."
        )
    return central, "central"
