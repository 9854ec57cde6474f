"""
Service-wide exception hierarchy.

Services raise these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Claim", resource_id=claim_id)
    raise ValidationError("Postcode is required", field="postcode")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Claim", "Charity").
        resource_id: The key that was looked up. Included in logs and messages.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a field rule.

    Caller-recoverable; never retried automatically. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
        field: The single offending field, when there is one.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        field: str | None = None,
    ) -> None:
        self.field = field
        self.details = details or ({field: message} if field else {})
        super().__init__(message)


class StateError(Exception):
    """Raised for an illegal claim transition or a mutation of a frozen claim.

    Maps to HTTP 409.

    Args:
        message: What was attempted and why it was refused.
        current_status: The claim status at the time of the refusal.
    """

    def __init__(self, message: str, current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(message)


class ConfigurationError(Exception):
    """Raised when required operator or charity configuration is missing.

    Examples: a charity without an HMRC CHARID, an unset or too-short
    credential encryption secret, no gateway credentials available.
    """


class TransportError(Exception):
    """Raised by callers that want a failed gateway call as an exception.

    The failed `TransportOutcome` is attached as `outcome`. Maps to HTTP 502.
    """

    def __init__(self, message: str, outcome=None) -> None:
        self.outcome = outcome
        super().__init__(message)


class TemplateIntegrityError(Exception):
    """Raised when rendered envelope text still contains a placeholder.

    Indicates a builder/field-mapping defect, never a user error.
    The offending region of the document is attached as `snippet`.
    """

    def __init__(self, message: str, snippet: str = "") -> None:
        self.snippet = snippet
        super().__init__(message)
