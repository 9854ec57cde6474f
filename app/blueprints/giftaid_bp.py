"""Gift Aid claims blueprint.

REST API over the claim lifecycle, donation rows and HMRC gateway setup.

Endpoint groups:
  Claims              POST /api/v1/claims
  Donation rows       POST   /api/v1/claims/<id>/donations
                      PUT    /api/v1/claims/<id>/donations/<donation_id>
                      DELETE /api/v1/claims/<id>/donations/<donation_id>
                      POST   /api/v1/claims/<id>/donations/import
  Lifecycle           POST /api/v1/claims/<id>/mark-ready
                      POST /api/v1/claims/<id>/submit
                      POST /api/v1/claims/<id>/poll
  Envelope preview    GET  /api/v1/claims/<id>/xml
  Charity HMRC setup  PUT  /api/v1/charities/<id>/hmrc-charid
                      POST /api/v1/charities/<id>/gateway-connection

Request bodies are validated with pydantic schemas (app.schemas).
The acting user is taken from the X-User header, set by the upstream
auth proxy. Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify, request
from pydantic import ValidationError as SchemaError
from werkzeug.exceptions import HTTPException

import app.services.charity_service as charity_svc
import app.services.claim_service as claim_svc
import app.services.gateway_connection_service as conn_svc
from app.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    StateError,
    TemplateIntegrityError,
    TransportError,
    ValidationError,
)
from app.schemas import (
    CharityIdentifierRequest,
    ClaimCreateRequest,
    DonationImportRequest,
    DonationRequest,
    GatewayConnectionRequest,
)
from app.utils.crypto import CredentialIntegrityError
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

giftaid_bp = Blueprint("giftaid", __name__, url_prefix="/api/v1")


# ── Request helpers ───────────────────────────────────────────────────────────


def _body(schema):
    """Validate the JSON body against a pydantic schema (raises SchemaError)."""
    data = request.get_json(silent=True)
    return schema.model_validate(data if isinstance(data, dict) else {})


def _actor() -> str | None:
    return (request.headers.get("X-User") or "").strip() or None


# ── Error handlers ────────────────────────────────────────────────────────────


@giftaid_bp.errorhandler(SchemaError)
def _handle_schema(error: SchemaError):
    details = [
        {"field": ".".join(str(p) for p in e["loc"]), "error": e["msg"]}
        for e in error.errors()
    ]
    return api_error(E.BAD_REQUEST, "Invalid request body", details=details)


@giftaid_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@giftaid_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@giftaid_bp.errorhandler(StateError)
def _handle_state(error: StateError):
    return api_error(
        E.CONFLICT_STATE, str(error),
        details={"status": error.current_status} if error.current_status else None,
    )


@giftaid_bp.errorhandler(ConfigurationError)
def _handle_configuration(error: ConfigurationError):
    return api_error(E.CONFIGURATION, str(error))


@giftaid_bp.errorhandler(CredentialIntegrityError)
def _handle_credentials(error: CredentialIntegrityError):
    logger.error("Stored gateway credentials could not be decrypted: %s", error)
    return api_error(
        E.CREDENTIALS,
        "Failed to decrypt HMRC credentials. Check GATEWAY_CRED_ENCRYPTION_KEY "
        "or re-save the gateway connection.",
    )


@giftaid_bp.errorhandler(TransportError)
def _handle_transport(error: TransportError):
    outcome = error.outcome.to_dict() if error.outcome is not None else None
    return api_error(E.GATEWAY, str(error), details=outcome)


@giftaid_bp.errorhandler(TemplateIntegrityError)
def _handle_template(error: TemplateIntegrityError):
    logger.error("Envelope template integrity failure: %s", error.snippet)
    return api_error(E.INTERNAL, "Claim envelope could not be rendered")


@giftaid_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in giftaid_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Claims
# ═════════════════════════════════════════════════════════════════════════


@giftaid_bp.route("/claims", methods=["POST"])
def create_claim():
    """Open a draft claim.

    Body: {charityId, periodStart, periodEnd, taxYear?}
    Returns: claim dict (201).
    """
    body = _body(ClaimCreateRequest)
    claim = claim_svc.create_claim(
        body.charity_id, body.period_start, body.period_end, body.tax_year
    )
    return jsonify(claim.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════
# Donation rows
# ═════════════════════════════════════════════════════════════════════════


@giftaid_bp.route("/claims/<claim_id>/donations", methods=["POST"])
def add_donation(claim_id):
    body = _body(DonationRequest)
    record = claim_svc.add_donation(claim_id, body.as_data())
    return jsonify(record.to_dict()), 201


@giftaid_bp.route("/claims/<claim_id>/donations/<int:donation_id>", methods=["PUT"])
def update_donation(claim_id, donation_id):
    body = _body(DonationRequest)
    record = claim_svc.update_donation(claim_id, donation_id, body.as_data())
    return jsonify(record.to_dict()), 200


@giftaid_bp.route("/claims/<claim_id>/donations/<int:donation_id>", methods=["DELETE"])
def delete_donation(claim_id, donation_id):
    claim_svc.delete_donation(claim_id, donation_id)
    return jsonify({"deleted": True, "id": donation_id}), 200


@giftaid_bp.route("/claims/<claim_id>/donations/import", methods=["POST"])
def import_donations(claim_id):
    """Bulk import parsed CSV rows.

    Body: {rows: [{first_name, last_name, address, postcode,
                   donation_date, donation_amount, title?}, ...]}
    Returns: {inserted, errors: [{row, field, error}]}
    """
    body = _body(DonationImportRequest)
    result = claim_svc.import_donations(claim_id, body.rows)
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════


@giftaid_bp.route("/claims/<claim_id>/mark-ready", methods=["POST"])
def mark_ready(claim_id):
    claim = claim_svc.transition_to_ready(claim_id)
    return jsonify(claim.to_dict()), 200


@giftaid_bp.route("/claims/<claim_id>/submit", methods=["POST"])
def submit_claim(claim_id):
    """Submit a ready claim to HMRC.

    Always 200 once the claim has moved to submitted, including when the
    transport failed; inspect outcome.ok / claim.hmrc_last_message.
    """
    result = claim_svc.submit_claim(claim_id, actor=_actor())
    return jsonify(result), 200


@giftaid_bp.route("/claims/<claim_id>/poll", methods=["POST"])
def poll_claim(claim_id):
    result = claim_svc.poll_claim(claim_id)
    return jsonify(result), 200


@giftaid_bp.route("/claims/<claim_id>/xml", methods=["GET"])
def claim_xml(claim_id):
    """Preview the claim envelope (sender password redacted)."""
    xml = claim_svc.build_claim_xml(claim_id)
    return Response(xml, status=200, mimetype="application/xml")


# ═════════════════════════════════════════════════════════════════════════
# Charity HMRC setup
# ═════════════════════════════════════════════════════════════════════════


@giftaid_bp.route("/charities/<int:charity_id>/hmrc-charid", methods=["PUT"])
def set_hmrc_charid(charity_id):
    body = _body(CharityIdentifierRequest)
    charity = charity_svc.set_tax_authority_id(charity_id, body.hmrc_charid)
    return jsonify(charity.to_dict()), 200


@giftaid_bp.route("/charities/<int:charity_id>/gateway-connection", methods=["POST"])
def save_gateway_connection(charity_id):
    """Save Government Gateway credentials and make them the active set.

    Body: {mode?: "charity"|"central", gatewayUserId?, gatewayPassword?}
    Returns: connection dict without credentials (201).
    """
    body = _body(GatewayConnectionRequest)
    connection = conn_svc.save_connection(
        charity_id,
        sender_id=body.sender_id,
        password=body.password,
        mode=body.mode.value,
        actor=_actor(),
    )
    return jsonify(connection.to_dict()), 201
