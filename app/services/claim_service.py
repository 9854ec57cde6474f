"""
Gift Aid claim lifecycle service.

State machine (see CLAIM_TRANSITIONS):

    draft ──mark ready──▶ ready ──submit──▶ submitted ──poll──▶ accepted
      ▲ add/edit/delete/import                          ├──────▶ rejected
      └ only while draft                                └──────▶ failed

Business rules:
  - Donation rows are mutable only while the claim is draft; any other
    status is refused with StateError before the datastore is touched.
  - Mark ready freezes donation_count / total_amount and needs ≥1 row.
  - Submit is allowed only from ready. Once the ready→submitted
    compare-and-set succeeds the claim stays submitted whatever the
    transport outcome; the outcome message and raw response are recorded
    for audit and the operator retries manually.
  - Poll interprets the gateway response best-effort and may move the
    claim to accepted, rejected or failed.

Every status change is an atomic compare-and-set on the status column
(UPDATE ... WHERE status = :expected), so two concurrent requests cannot
both win the same transition.

All outbound HTTP: delegated to `app.integrations.hmrc_gateway.hmrc_gateway`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy import select, update

from app.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    StateError,
    ValidationError,
)
from app.integrations.hmrc_gateway import (
    DEFAULT_ENDPOINTS,
    DEFAULT_TIMEOUT,
    OutcomeKind,
    TransportOutcome,
    hmrc_gateway,
    parse_gateway_response,
)
from app.models import db
from app.models.giftaid import Claim, DonationRecord, validate_claim_transition
from app.services.charity_service import get_charity, normalize_charid
from app.services.donation_validator import validate_donation
from app.services.envelope_builder import (
    EnvelopeConfig,
    GatewayCredentials,
    build_envelope,
    correlation_id_for,
)
from app.services.gateway_connection_service import load_credentials
from app.utils.helpers import parse_date

logger = logging.getLogger(__name__)

IMPORT_CHUNK_SIZE = 500
# Optional donation fields an update may clear by sending None
_CLEARABLE_FIELDS = frozenset({"title"})
# Spreadsheet line of the first data row (header is line 1)
_IMPORT_FIRST_LINE = 2


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def get_claim(claim_id) -> Claim:
    claim = db.session.get(Claim, claim_id)
    if claim is None:
        raise NotFoundError(resource="Claim", resource_id=claim_id)
    return claim


def _get_donation(claim_id, donation_id) -> DonationRecord:
    stmt = select(DonationRecord).where(
        DonationRecord.id == donation_id,
        DonationRecord.claim_id == claim_id,
    )
    record = db.session.execute(stmt).scalar_one_or_none()
    if record is None:
        raise NotFoundError(resource="Donation", resource_id=donation_id)
    return record


def _compare_and_set(claim_id, expected: str, new: str, **values) -> bool:
    """Atomically move a claim from `expected` to `new`.

    Returns False when the claim was no longer in `expected`.
    Does NOT commit - caller owns the transaction.
    """
    if not validate_claim_transition(expected, new):
        raise StateError(f"Invalid claim transition {expected} → {new}", current_status=expected)
    result = db.session.execute(
        update(Claim)
        .where(Claim.id == claim_id, Claim.status == expected)
        .values(status=new, updated_at=_utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _require_draft(claim: Claim) -> Claim:
    if claim.status != "draft":
        raise StateError(
            f"Donations can only be changed while the claim is draft (current: {claim.status})",
            current_status=claim.status,
        )
    return claim


def _lock_draft(claim_id) -> Claim:
    """Guard a donation mutation: the claim must be draft, and stay draft.

    The no-op UPDATE holds the claim row for the rest of the transaction
    on databases with row locks, so a concurrent mark-ready waits for it.
    """
    claim = _require_draft(get_claim(claim_id))
    result = db.session.execute(
        update(Claim)
        .where(Claim.id == claim_id, Claim.status == "draft")
        .values(updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise StateError("Claim left draft while being edited", current_status=None)
    return claim


def _gateway_settings():
    cfg = current_app.config
    envelope_config = EnvelopeConfig.from_mapping(cfg)
    submit_default, poll_default = DEFAULT_ENDPOINTS[envelope_config.mode]
    return (
        envelope_config,
        cfg.get("HMRC_SUBMIT_URL") or submit_default,
        cfg.get("HMRC_POLL_URL") or poll_default,
        cfg.get("HMRC_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT,
    )


def _transport_failure_message(action: str, label: str, outcome: TransportOutcome) -> str:
    if outcome.kind is OutcomeKind.TIMEOUT:
        return f"HMRC {label} {action} timed out ({outcome.timeout:g}s)"
    if outcome.kind is OutcomeKind.NETWORK_ERROR:
        return f"HMRC {label} {action} network error: {outcome.error}"
    return f"HMRC {label} {action} failed (HTTP {outcome.status_code})"


def _first_error_text(parsed: dict) -> str:
    errors = parsed.get("errors") or []
    if not errors:
        return "no error detail"
    first = errors[0]
    number = f"{first['number']} " if first.get("number") else ""
    return f"{number}{first.get('text') or ''}".strip()


# ═════════════════════════════════════════════════════════════════════════════
# Claim creation
# ═════════════════════════════════════════════════════════════════════════════


def create_claim(charity_id, period_start, period_end, tax_year=None) -> Claim:
    """Create a draft claim for a charity and period."""
    charity = get_charity(charity_id)

    start = parse_date(period_start)
    end = parse_date(period_end)
    if start is None:
        raise ValidationError("periodStart must be a valid date", field="period_start")
    if end is None:
        raise ValidationError("periodEnd must be a valid date", field="period_end")
    if start > end:
        raise ValidationError("periodStart must not be after periodEnd", field="period_start")

    claim = Claim(
        charity_id=charity.id,
        period_start=start,
        period_end=end,
        tax_year=(str(tax_year).strip() or None) if tax_year is not None else None,
        status="draft",
        donation_count=0,
        total_amount=Decimal("0.00"),
    )
    db.session.add(claim)
    db.session.commit()
    logger.info("Claim created claim=%s charity=%s", claim.id, charity.id)
    return claim


# ═════════════════════════════════════════════════════════════════════════════
# Donation rows (draft only)
# ═════════════════════════════════════════════════════════════════════════════


def add_donation(claim_id, data: dict) -> DonationRecord:
    _require_draft(get_claim(claim_id))
    validated = validate_donation(data)
    _lock_draft(claim_id)
    record = DonationRecord(claim_id=claim_id, **validated.to_columns())
    db.session.add(record)
    db.session.commit()
    logger.info("Donation added claim=%s donation=%s", claim_id, record.id)
    return record


def update_donation(claim_id, donation_id, data: dict) -> DonationRecord:
    """Replace a donation row's fields; partial data is merged over the stored row.

    None leaves a field as stored, except the optional title, which it clears.
    """
    _require_draft(get_claim(claim_id))
    record = _get_donation(claim_id, donation_id)
    merged = {
        "title": record.donor_title,
        "first_name": record.donor_first_name,
        "last_name": record.donor_last_name,
        "address": record.donor_address,
        "postcode": record.donor_postcode,
        "donation_date": record.donation_date,
        "donation_amount": record.donation_amount,
    }
    merged.update({
        k: v for k, v in data.items() if v is not None or k in _CLEARABLE_FIELDS
    })
    validated = validate_donation(merged)

    _lock_draft(claim_id)
    for column, value in validated.to_columns().items():
        setattr(record, column, value)
    db.session.commit()
    logger.info("Donation updated claim=%s donation=%s", claim_id, donation_id)
    return record


def delete_donation(claim_id, donation_id) -> None:
    _require_draft(get_claim(claim_id))
    record = _get_donation(claim_id, donation_id)
    _lock_draft(claim_id)
    db.session.delete(record)
    db.session.commit()
    logger.info("Donation deleted claim=%s donation=%s", claim_id, donation_id)


def _normalize_row_keys(row: dict) -> dict:
    """Accept CSV headers such as "First Name" as well as first_name."""
    return {
        str(key).strip().lower().replace(" ", "_"): value
        for key, value in (row or {}).items()
    }


def import_donations(claim_id, rows: list) -> dict:
    """Bulk-insert donation rows into a draft claim.

    Each row is validated on its own. Invalid rows are reported by
    spreadsheet line number (first data row = line 2) and skipped; valid
    rows are inserted in chunks.

    Returns:
        {"inserted": int, "errors": [{"row", "field", "error"}, ...]}
    """
    _require_draft(get_claim(claim_id))
    if not rows:
        raise ValidationError("rows[] is required", field="rows")

    _lock_draft(claim_id)

    errors = []
    valid = []
    for index, row in enumerate(rows):
        try:
            valid.append(validate_donation(_normalize_row_keys(row)))
        except ValidationError as exc:
            errors.append({
                "row": index + _IMPORT_FIRST_LINE,
                "field": exc.field,
                "error": str(exc),
            })

    inserted = 0
    for start in range(0, len(valid), IMPORT_CHUNK_SIZE):
        chunk = valid[start: start + IMPORT_CHUNK_SIZE]
        db.session.add_all(
            DonationRecord(claim_id=claim_id, **v.to_columns()) for v in chunk
        )
        db.session.flush()
        inserted += len(chunk)
    db.session.commit()

    logger.info(
        "Donations imported claim=%s inserted=%d rejected=%d",
        claim_id, inserted, len(errors),
    )
    return {"inserted": inserted, "errors": errors}


# ═════════════════════════════════════════════════════════════════════════════
# draft → ready
# ═════════════════════════════════════════════════════════════════════════════


def transition_to_ready(claim_id) -> Claim:
    """Freeze totals and mark the claim ready for submission.

    Idempotent from ready. Refused once the claim has been submitted.

    The draft → ready compare-and-set runs first and holds the claim row
    until commit, so donation edits (which update the same row while it
    is draft) either finish before the totals are read or are refused.
    """
    claim = get_claim(claim_id)
    if claim.status == "ready":
        return claim
    if claim.status != "draft":
        raise StateError(
            f"Claim cannot be marked ready from status '{claim.status}'",
            current_status=claim.status,
        )

    if not _compare_and_set(claim_id, "draft", "ready"):
        db.session.rollback()
        db.session.refresh(claim)
        if claim.status == "ready":
            return claim
        raise StateError(
            f"Claim cannot be marked ready from status '{claim.status}'",
            current_status=claim.status,
        )

    amounts = list(db.session.execute(
        select(DonationRecord.donation_amount).where(DonationRecord.claim_id == claim_id)
    ).scalars())
    if not amounts:
        db.session.rollback()
        raise ValidationError("No donations in this claim", field="donations")

    total = sum((Decimal(str(a)) for a in amounts), Decimal("0.00"))
    db.session.execute(
        update(Claim)
        .where(Claim.id == claim_id, Claim.status == "ready")
        .values(donation_count=len(amounts), total_amount=total.quantize(Decimal("0.01")))
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(claim)
    logger.info(
        "Claim ready claim=%s donations=%d total=%s",
        claim_id, claim.donation_count, claim.total_amount,
    )
    return claim


# ═════════════════════════════════════════════════════════════════════════════
# Envelope
# ═════════════════════════════════════════════════════════════════════════════


def build_claim_xml(claim_id) -> str:
    """Render the claim envelope for preview. No state change.

    The sender password is redacted; if no credentials are configured
    a placeholder sender is shown.
    """
    claim = get_claim(claim_id)
    envelope_config, _, _, _ = _gateway_settings()
    try:
        credentials, _ = load_credentials(claim.charity_id, current_app.config)
        credentials = credentials.redacted()
    except ConfigurationError:
        credentials = GatewayCredentials(sender_id="NOT-CONFIGURED", password="REDACTED")
    return build_envelope(claim, claim.donations, claim.charity, envelope_config, credentials)


# ═════════════════════════════════════════════════════════════════════════════
# ready → submitted
# ═════════════════════════════════════════════════════════════════════════════


def _submission_message(label: str, outcome: TransportOutcome, parsed: dict) -> str:
    if not outcome.ok:
        return _transport_failure_message("submission", label, outcome)
    if parsed.get("qualifier") == "error":
        return (
            f"HMRC {label} gateway returned an error (HTTP {outcome.status_code}): "
            f"{_first_error_text(parsed)}"
        )
    message = f"Submitted to HMRC {label} gateway (HTTP {outcome.status_code})"
    if parsed.get("poll_interval"):
        message += f"; poll again in {parsed['poll_interval']}s"
    return message


def submit_claim(claim_id, actor: str | None = None) -> dict:
    """Build, mark submitted, and transport a ready claim.

    The claim advances to submitted even if the transport fails; the
    failure is stored as hmrc_last_message with the raw response.

    Raises:
        StateError: Claim is not ready (or another request submitted it first).
        ConfigurationError: Missing CHARID or gateway credentials.
        ValidationError: A stored donation row fails re-validation.

    Returns:
        {"claim": dict, "outcome": dict}
    """
    claim = get_claim(claim_id)
    if claim.status != "ready":
        raise StateError(
            f"Claim must be 'ready' to submit (current: {claim.status})",
            current_status=claim.status,
        )

    charity = claim.charity
    try:
        normalize_charid(charity.hmrc_charid)
    except ValidationError as exc:
        raise ConfigurationError(f"Charity cannot be submitted: {exc}") from exc

    envelope_config, submit_url, _, timeout = _gateway_settings()
    credentials, source = load_credentials(charity.id, current_app.config)
    xml = build_envelope(claim, claim.donations, charity, envelope_config, credentials)

    correlation_id = correlation_id_for(claim.id)
    label = envelope_config.mode.label
    if not _compare_and_set(
        claim_id, "ready", "submitted",
        hmrc_correlation_id=correlation_id,
        hmrc_last_message=f"Submitting to HMRC {label} gateway",
        submitted_at=_utcnow(),
        submitted_by=actor,
    ):
        db.session.rollback()
        db.session.refresh(claim)
        raise StateError(
            f"Claim must be 'ready' to submit (current: {claim.status})",
            current_status=claim.status,
        )
    db.session.commit()

    logger.info(
        "Submitting claim=%s mode=%s credentials=%s by=%s",
        claim_id, envelope_config.mode.value, source, actor,
    )
    outcome = hmrc_gateway.submit(xml, url=submit_url, timeout=timeout)
    parsed = parse_gateway_response(outcome.body)

    claim = get_claim(claim_id)
    claim.hmrc_correlation_id = parsed.get("correlation_id") or correlation_id
    claim.hmrc_last_message = _submission_message(label, outcome, parsed)
    claim.hmrc_raw_response = outcome.body or None
    db.session.commit()

    if outcome.ok:
        logger.info("Claim submitted claim=%s status=%d", claim_id, outcome.status_code)
    else:
        logger.warning(
            "Claim submitted with transport failure claim=%s kind=%s",
            claim_id, outcome.kind.value,
        )
    return {"claim": claim.to_dict(), "outcome": outcome.to_dict()}


# ═════════════════════════════════════════════════════════════════════════════
# submitted → accepted | rejected | failed
# ═════════════════════════════════════════════════════════════════════════════


def _status_from_response(parsed: dict) -> str | None:
    qualifier = (parsed.get("qualifier") or "").lower()
    if qualifier == "response":
        return "accepted"
    if qualifier == "error":
        if any(e.get("type") == "business" for e in parsed.get("errors", [])):
            return "rejected"
        return "failed"
    return None


def _poll_message(label: str, outcome: TransportOutcome, parsed: dict, new_status) -> str:
    if not outcome.ok:
        return _transport_failure_message("poll", label, outcome)
    if new_status == "accepted":
        return f"HMRC {label} gateway accepted the claim (HTTP {outcome.status_code})"
    if new_status == "rejected":
        return f"HMRC {label} gateway rejected the claim: {_first_error_text(parsed)}"
    if new_status == "failed":
        return f"HMRC {label} gateway error: {_first_error_text(parsed)}"
    return f"HMRC {label} poll OK (HTTP {outcome.status_code}); no final response yet"


def poll_claim(claim_id) -> dict:
    """Poll HMRC for the outcome of a submitted claim.

    Returns:
        {"claim": dict, "outcome": dict, "response": parsed response dict}
    """
    claim = get_claim(claim_id)
    if claim.status != "submitted":
        raise StateError(
            f"Only submitted claims can be polled (current: {claim.status})",
            current_status=claim.status,
        )
    if not claim.hmrc_correlation_id:
        raise StateError("No HMRC correlation id stored on claim yet", current_status=claim.status)

    envelope_config, _, poll_url, timeout = _gateway_settings()
    credentials, _ = load_credentials(claim.charity_id, current_app.config)
    outcome = hmrc_gateway.poll(
        claim.hmrc_correlation_id,
        credentials,
        url=poll_url,
        mode=envelope_config.mode,
        timeout=timeout,
    )
    parsed = parse_gateway_response(outcome.body if outcome.ok else "")
    new_status = _status_from_response(parsed) if outcome.ok else None
    label = envelope_config.mode.label

    values = {
        "hmrc_last_message": _poll_message(label, outcome, parsed, new_status),
        "hmrc_raw_response": outcome.body or None,
    }
    if parsed.get("correlation_id"):
        values["hmrc_correlation_id"] = parsed["correlation_id"]

    if new_status and _compare_and_set(claim_id, "submitted", new_status, **values):
        logger.info("Claim acknowledged claim=%s status=%s", claim_id, new_status)
    else:
        db.session.execute(
            update(Claim)
            .where(Claim.id == claim_id)
            .values(updated_at=_utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
    db.session.commit()
    db.session.refresh(claim)
    return {"claim": claim.to_dict(), "outcome": outcome.to_dict(), "response": parsed}
