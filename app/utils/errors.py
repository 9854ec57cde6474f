"""JSON error bodies for the Gift Aid API: {"error", "code", "details"?}."""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes, one per service exception family."""

    BAD_REQUEST = "ERR_BAD_REQUEST"            # malformed body
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"  # field rule, names the field
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"      # claim status forbids the action
    CONFIGURATION = "ERR_CONFIGURATION"        # CHARID / gateway credentials missing
    GATEWAY = "ERR_GATEWAY"
    CREDENTIALS = "ERR_CREDENTIALS"            # stored blob failed authentication
    INTERNAL = "ERR_INTERNAL"


STATUS_BY_CODE = {
    E.BAD_REQUEST: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONFIGURATION: 400,
    E.GATEWAY: 502,
    E.CREDENTIALS: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details=None):
    """`(response, status)` for a Flask view; status defaults from the code."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS_BY_CODE.get(code, 400)
