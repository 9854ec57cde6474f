"""
HMRC Transaction Engine gateway - GovTalk Document Submission Protocol.

All outbound HTTP calls to the HMRC submission and poll endpoints go
through this class. Direct `requests` calls in services or blueprints
are FORBIDDEN.

  - POST text/xml, 25 s hard timeout (configurable per call)
  - No automatic retries: a failed submission is recorded on the claim
    and retried manually by the operator
  - Structured outcome returned to the service; the service writes the
    message and raw response onto the claim

Outcome kinds are distinguishable because the message stored on the
claim differs for each:
    success        HTTP 2xx
    http_error     non-2xx response (body retained)
    timeout        no response within the timeout
    network_error  DNS / TLS / connection failure

Testability: pass a mock `session` to HMRCGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time
import xml.etree.ElementTree as ET
from enum import Enum

import requests

from app.core.exceptions import TransportError
from app.services.envelope_builder import (
    GatewayCredentials,
    GatewayMode,
    build_poll_envelope,
)

logger = logging.getLogger(__name__)

# ── Endpoints ──────────────────────────────────────────────────────────────
LOCAL_TEST_SERVICE_URL = "http://localhost:5665/LTS/LTSPostServlet"
TEST_SUBMIT_URL = "https://test-transaction-engine.tax.service.gov.uk/submission"
TEST_POLL_URL = "https://test-transaction-engine.tax.service.gov.uk/poll"
LIVE_SUBMIT_URL = "https://transaction-engine.tax.service.gov.uk/submission"
LIVE_POLL_URL = "https://transaction-engine.tax.service.gov.uk/poll"

DEFAULT_ENDPOINTS = {
    GatewayMode.LOCAL_TEST_SERVICE: (LOCAL_TEST_SERVICE_URL, LOCAL_TEST_SERVICE_URL),
    GatewayMode.TEST_GATEWAY: (TEST_SUBMIT_URL, TEST_POLL_URL),
    GatewayMode.LIVE_GATEWAY: (LIVE_SUBMIT_URL, LIVE_POLL_URL),
}

# ── Default request timeout ────────────────────────────────────────────────
DEFAULT_TIMEOUT = 25

_XML_HEADERS = {
    "Content-Type": "text/xml; charset=utf-8",
    "Accept": "text/xml, application/xml, */*",
}


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    HTTP_ERROR = "http_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"


class TransportOutcome:
    """Structured return value from HMRCGateway calls.

    Attributes:
        ok:            True if the call succeeded (HTTP 2xx + no exception).
        kind:          OutcomeKind classifying the result.
        status_code:   HTTP status code (0 if no response was received).
        body:          Raw response text, retained on the claim for audit.
        content_type:  Response Content-Type header, if any.
        error:         Human-readable error message or None.
        duration_ms:   Round-trip latency in milliseconds.
        timeout:       The timeout that applied to the call, in seconds.
    """

    __slots__ = (
        "ok", "kind", "status_code", "body", "content_type",
        "error", "duration_ms", "timeout",
    )

    def __init__(
        self,
        *,
        kind: OutcomeKind,
        status_code: int = 0,
        body: str = "",
        content_type: str | None = None,
        error: str | None = None,
        duration_ms: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.kind = kind
        self.ok = kind is OutcomeKind.SUCCESS
        self.status_code = status_code
        self.body = body
        self.content_type = content_type
        self.error = error
        self.duration_ms = duration_ms
        self.timeout = timeout

    def raise_for_error(self) -> "TransportOutcome":
        """Return self on success, otherwise raise TransportError."""
        if not self.ok:
            raise TransportError(
                self.error or f"HMRC gateway call failed ({self.kind.value})",
                outcome=self,
            )
        return self

    def to_dict(self, snippet_chars: int = 800) -> dict:
        return {
            "ok": self.ok,
            "kind": self.kind.value,
            "http_status": self.status_code,
            "content_type": self.content_type,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "response_snippet": (self.body or "")[:snippet_chars],
        }


class HMRCGateway:
    """HMRC Transaction Engine gateway.

    Instantiate once at module level (module-level singleton pattern).
    Pass a custom `session` in tests to intercept HTTP calls without
    making real network requests.

    Usage:
        from app.integrations.hmrc_gateway import hmrc_gateway
        outcome = hmrc_gateway.submit(xml, url=submit_url)
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── Core request dispatcher ───────────────────────────────────────────────

    def _post_xml(self, url: str, xml: str, timeout: float, action: str) -> TransportOutcome:
        """POST an XML document once. Always returns, never raises."""
        t0 = time.perf_counter()
        try:
            resp = self.session.post(
                url,
                data=xml.encode("utf-8"),
                headers=dict(_XML_HEADERS),
                timeout=timeout,
            )
        except requests.Timeout:
            logger.warning("HMRC %s timed out after %ss url=%s", action, timeout, url)
            return TransportOutcome(
                kind=OutcomeKind.TIMEOUT,
                error=f"Request timed out after {timeout}s",
                duration_ms=int(timeout * 1000),
                timeout=timeout,
            )
        except requests.RequestException as exc:
            error = str(exc)[:500]
            logger.warning("HMRC %s network error url=%s error=%s", action, url, error)
            return TransportOutcome(
                kind=OutcomeKind.NETWORK_ERROR,
                error=error,
                duration_ms=int((time.perf_counter() - t0) * 1000),
                timeout=timeout,
            )

        duration_ms = int((time.perf_counter() - t0) * 1000)
        body = resp.text or ""
        content_type = resp.headers.get("Content-Type")

        if resp.ok:
            logger.info(
                "HMRC %s ok status=%d duration_ms=%d", action, resp.status_code, duration_ms
            )
            return TransportOutcome(
                kind=OutcomeKind.SUCCESS,
                status_code=resp.status_code,
                body=body,
                content_type=content_type,
                duration_ms=duration_ms,
                timeout=timeout,
            )

        logger.warning(
            "HMRC %s failed status=%d url=%s duration_ms=%d",
            action, resp.status_code, url, duration_ms,
        )
        return TransportOutcome(
            kind=OutcomeKind.HTTP_ERROR,
            status_code=resp.status_code,
            body=body,
            content_type=content_type,
            error=f"HTTP {resp.status_code}: {body[:500]}",
            duration_ms=duration_ms,
            timeout=timeout,
        )

    # ── Document Submission Protocol ──────────────────────────────────────────

    def submit(self, xml: str, *, url: str, timeout: float = DEFAULT_TIMEOUT) -> TransportOutcome:
        """Post a claim envelope to the submission endpoint."""
        return self._post_xml(url, xml, timeout, "submit")

    def poll(
        self,
        correlation_id: str,
        credentials: GatewayCredentials,
        *,
        url: str,
        mode: GatewayMode = GatewayMode.TEST_GATEWAY,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> TransportOutcome:
        """Ask the poll endpoint for the response to a prior submission."""
        xml = build_poll_envelope(correlation_id, credentials, mode)
        return self._post_xml(url, xml, timeout, "poll")


# ── Response parsing ─────────────────────────────────────────────────────────


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element, name: str) -> str | None:
    for child in element:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return None


def parse_gateway_response(body: str) -> dict:
    """Extract protocol fields from a GovTalk response envelope.

    Tolerant of malformed or non-XML bodies: missing values come back as
    None and ``parsed`` is False.

    Returns:
        {"parsed", "qualifier", "function", "correlation_id",
         "poll_interval", "response_endpoint", "errors": [{type, number, text}]}
    """
    result = {
        "parsed": False,
        "qualifier": None,
        "function": None,
        "correlation_id": None,
        "poll_interval": None,
        "response_endpoint": None,
        "errors": [],
    }
    if not body or not body.strip():
        return result
    try:
        root = ET.fromstring(body.strip().encode("utf-8"))
    except ET.ParseError:
        return result

    result["parsed"] = True
    for element in root.iter():
        name = _local(element.tag)
        if name == "MessageDetails":
            result["qualifier"] = _child_text(element, "Qualifier")
            result["function"] = _child_text(element, "Function")
            result["correlation_id"] = _child_text(element, "CorrelationID") or None
        elif name == "ResponseEndPoint":
            result["response_endpoint"] = (element.text or "").strip() or None
            interval = element.get("PollInterval")
            result["poll_interval"] = int(interval) if interval and interval.isdigit() else None
        elif name == "Error":
            number = _child_text(element, "Number")
            error_type = _child_text(element, "Type")
            text = _child_text(element, "Text")
            if number or error_type or text:
                result["errors"].append({
                    "type": (error_type or "").lower() or None,
                    "number": number,
                    "text": text,
                })
    return result


# Module-level singleton
hmrc_gateway = HMRCGateway()
