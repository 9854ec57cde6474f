"""Gift Aid models: charities, claims, donation records and HMRC gateway connections."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return f"{value:.2f}" if value is not None else None


# ── Claim lifecycle ──────────────────────────────────────────────

CLAIM_STATUSES = ("draft", "ready", "submitted", "accepted", "rejected", "failed")

CLAIM_TRANSITIONS = {
    "draft":     ["ready"],
    "ready":     ["ready", "submitted"],   # mark-ready is idempotent
    "submitted": ["accepted", "rejected", "failed"],
    "accepted":  [],
    "rejected":  [],
    "failed":    [],
}

GATEWAY_MODES = ("charity", "central")


def validate_claim_transition(old_status, new_status):
    """Return True if Claim status transition is valid."""
    return new_status in CLAIM_TRANSITIONS.get(old_status, [])


# ── Charity ──────────────────────────────────────────────────────

class Charity(db.Model):
    """Charity on whose behalf Gift Aid is claimed."""

    __tablename__ = "charities"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=True)
    hmrc_charid = Column(String(30), nullable=True)  # upper-cased on save
    regulator_number = Column(String(50), nullable=True)
    gateway_connection_id = Column(Integer, nullable=True)  # active connection pointer
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    claims = relationship("Claim", back_populates="charity", lazy="select")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "contact_email": self.contact_email,
            "hmrc_charid": self.hmrc_charid,
            "regulator_number": self.regulator_number,
            "gateway_connection_id": self.gateway_connection_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ── Claim ────────────────────────────────────────────────────────

class Claim(db.Model):
    """A Gift Aid repayment claim covering one period for one charity.

    donation_count and total_amount are frozen at the draft→ready
    transition and are not recomputed afterwards.
    """

    __tablename__ = "claims"

    id = Column(String(36), primary_key=True, default=_uuid)
    charity_id = Column(
        Integer, ForeignKey("charities.id", ondelete="CASCADE"), nullable=False
    )
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    tax_year = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default="draft")
    donation_count = Column(Integer, nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    hmrc_correlation_id = Column(String(64), nullable=True)
    hmrc_last_message = Column(Text, nullable=True)
    hmrc_raw_response = Column(Text, nullable=True)
    submitted_by = Column(String(255), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    charity = relationship("Charity", back_populates="claims")
    donations = relationship(
        "DonationRecord",
        back_populates="claim",
        cascade="all, delete-orphan",
        order_by="DonationRecord.id",
        lazy="select",
    )

    __table_args__ = (
        Index("ix_claims_charity_status", "charity_id", "status"),
    )

    def to_dict(self, include_donations=False):
        d = {
            "id": self.id,
            "charity_id": self.charity_id,
            "period_start": _iso(self.period_start),
            "period_end": _iso(self.period_end),
            "tax_year": self.tax_year,
            "status": self.status,
            "donation_count": self.donation_count,
            "total_amount": _money(self.total_amount),
            "hmrc_correlation_id": self.hmrc_correlation_id,
            "hmrc_last_message": self.hmrc_last_message,
            "submitted_by": self.submitted_by,
            "submitted_at": _iso(self.submitted_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_donations:
            d["donations"] = [r.to_dict() for r in self.donations]
        return d


# ── Donation record ──────────────────────────────────────────────

class DonationRecord(db.Model):
    """One donor/donation row; becomes a GAD entry in the claim envelope."""

    __tablename__ = "donation_records"

    id = Column(Integer, primary_key=True)
    claim_id = Column(
        String(36), ForeignKey("claims.id", ondelete="CASCADE"), nullable=False,
        index=True,
    )
    donor_title = Column(String(20), nullable=True)
    donor_first_name = Column(String(100), nullable=False)
    donor_last_name = Column(String(100), nullable=False)
    donor_address = Column(String(255), nullable=False)
    donor_postcode = Column(String(20), nullable=False)
    donation_date = Column(Date, nullable=False)
    donation_amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    claim = relationship("Claim", back_populates="donations")

    def to_dict(self):
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "title": self.donor_title,
            "first_name": self.donor_first_name,
            "last_name": self.donor_last_name,
            "address": self.donor_address,
            "postcode": self.donor_postcode,
            "donation_date": _iso(self.donation_date),
            "donation_amount": _money(self.donation_amount),
            "created_at": _iso(self.created_at),
        }


# ── HMRC gateway connection ──────────────────────────────────────

class GatewayConnection(db.Model):
    """Encrypted Government Gateway credentials for one charity.

    Superseded rows are soft-deactivated (is_active=False) so the audit
    history survives. The partial unique index keeps at most one active
    connection per charity.
    """

    __tablename__ = "gateway_connections"

    id = Column(Integer, primary_key=True)
    charity_id = Column(
        Integer, ForeignKey("charities.id", ondelete="CASCADE"), nullable=False
    )
    mode = Column(String(20), nullable=False, default="charity")  # charity | central
    is_active = Column(Boolean, nullable=False, default=True)
    credentials_encrypted = Column(Text, nullable=True)  # None in central mode; never exposed
    sender_id_masked = Column(String(50), nullable=True)
    created_by = Column(String(255), nullable=True)
    updated_by = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_gateway_connections_active_charity",
            "charity_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "charity_id": self.charity_id,
            "mode": self.mode,
            "is_active": self.is_active,
            "sender_id_masked": self.sender_id_masked,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "deactivated_at": _iso(self.deactivated_at),
        }
