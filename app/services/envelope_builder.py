"""
GovTalk envelope builder for HMRC Charities Online (R68) Gift Aid claims.

Responsibilities:
  1. Re-validate every donation row before anything is rendered.
  2. Derive EarliestGAdate, money totals and ISO dates.
  3. Apply the header policy of the explicit `GatewayMode`.
  4. Fill a fixed template in a single substitution pass; every value
     is XML-escaped first and substituted text is never re-scanned.
  5. Compute the IRmark over the canonicalised Body.
  6. Refuse to return a document that still contains a placeholder.

The builder is pure: it reads the objects it is given and the injected
`EnvelopeConfig`, never the environment or the database.
"""

from __future__ import annotations

import base64
import hashlib
import re
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Mapping

from app.core.exceptions import (
    ConfigurationError,
    TemplateIntegrityError,
    ValidationError,
)
from app.services.charity_service import normalize_charid
from app.services.donation_validator import record_as_mapping, validate_donation
from app.utils.helpers import format_money, is_xml_safe, parse_date

GOVTALK_NS = "http://www.govtalk.gov.uk/CM/envelope"
R68_NS = "http://www.govtalk.gov.uk/taxation/charities/r68/2"

CLAIM_MESSAGE_CLASS = "HMRC-CHAR-CLM"
POLL_MESSAGE_CLASS = "HMRC-GATEWAY-POLL"

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")
_IRMARK_RE = re.compile(r"<IRmark\b[^>]*>[^<]*</IRmark>")

_XML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
    "{": "&#123;",
    "}": "&#125;",
}


# ── Gateway mode & configuration ─────────────────────────────────────────────


class GatewayMode(str, Enum):
    """Target HMRC environment. Drives header policy and endpoint choice."""

    LOCAL_TEST_SERVICE = "local_test_service"
    TEST_GATEWAY = "test_gateway"
    LIVE_GATEWAY = "live_gateway"

    @classmethod
    def parse(cls, value) -> "GatewayMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ConfigurationError(
                f"Unknown HMRC gateway mode {value!r} (expected one of: {allowed})"
            ) from None

    @property
    def gateway_test(self) -> str:
        return "0" if self is GatewayMode.LIVE_GATEWAY else "1"

    @property
    def assigns_correlation(self) -> bool:
        """True when the gateway itself assigns CorrelationID and GatewayTimestamp."""
        return self is not GatewayMode.LOCAL_TEST_SERVICE

    @property
    def label(self) -> str:
        return {
            GatewayMode.LOCAL_TEST_SERVICE: "local test service",
            GatewayMode.TEST_GATEWAY: "test",
            GatewayMode.LIVE_GATEWAY: "live",
        }[self]


@dataclass(frozen=True)
class EnvelopeConfig:
    """Operator-level envelope settings, read once from app.config."""

    mode: GatewayMode = GatewayMode.TEST_GATEWAY
    official_fore: str = "Portal"
    official_sur: str = "Operator"
    official_postcode: str = "AA1 1AA"
    official_phone: str = "00000000000"
    reg_name: str = "CCEW"
    vendor_id: str = "0000"
    product: str = "GiftAidClaims"
    product_version: str = "1.0"

    @classmethod
    def from_mapping(cls, cfg: Mapping) -> "EnvelopeConfig":
        """Build from a Flask config (or any mapping) using HMRC_* keys.

        Raises:
            ConfigurationError: Unknown mode, or a text setting XML cannot carry.
        """
        for key, value in cfg.items():
            if str(key).startswith("HMRC_") and isinstance(value, str) and not is_xml_safe(value):
                raise ConfigurationError(f"{key} contains characters that are not allowed in XML")
        defaults = cls()
        return cls(
            mode=GatewayMode.parse(cfg.get("HMRC_GATEWAY_MODE", defaults.mode)),
            official_fore=cfg.get("HMRC_OFFICIAL_FORE") or defaults.official_fore,
            official_sur=cfg.get("HMRC_OFFICIAL_SUR") or defaults.official_sur,
            official_postcode=cfg.get("HMRC_OFFICIAL_POSTCODE") or defaults.official_postcode,
            official_phone=cfg.get("HMRC_OFFICIAL_PHONE") or defaults.official_phone,
            reg_name=cfg.get("HMRC_REG_NAME") or defaults.reg_name,
            vendor_id=cfg.get("HMRC_VENDOR_ID") or defaults.vendor_id,
            product=cfg.get("HMRC_PRODUCT") or defaults.product,
            product_version=cfg.get("HMRC_PRODUCT_VERSION") or defaults.product_version,
        )

    def with_mode(self, mode) -> "EnvelopeConfig":
        return replace(self, mode=GatewayMode.parse(mode))


@dataclass(frozen=True)
class GatewayCredentials:
    """Government Gateway sender credentials (decrypted, never persisted)."""

    sender_id: str
    password: str

    def redacted(self) -> "GatewayCredentials":
        return GatewayCredentials(sender_id=self.sender_id, password="REDACTED")


# ── Templates ────────────────────────────────────────────────────────────────

CLAIM_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<GovTalkMessage xmlns="http://www.govtalk.gov.uk/CM/envelope">
  <EnvelopeVersion>2.0</EnvelopeVersion>
  <Header>
    <MessageDetails>
      <Class>{{MESSAGE_CLASS}}</Class>
      <Qualifier>request</Qualifier>
      <Function>submit</Function>
      <CorrelationID>{{CORRELATION_ID}}</CorrelationID>
      <Transformation>XML</Transformation>
      <GatewayTest>{{GATEWAY_TEST}}</GatewayTest>
      <GatewayTimestamp>{{GATEWAY_TIMESTAMP}}</GatewayTimestamp>
    </MessageDetails>
    <SenderDetails>
      <IDAuthentication>
        <SenderID>{{SENDER_ID}}</SenderID>
        <Authentication>
          <Method>clear</Method>
          <Role>principal</Role>
          <Value>{{AUTH_VALUE}}</Value>
        </Authentication>
      </IDAuthentication>
    </SenderDetails>
  </Header>
  <GovTalkDetails>
    <Keys>
      <Key Type="CHARID">{{CHARID}}</Key>
    </Keys>
    <TargetDetails>
      <Organisation>IR</Organisation>
    </TargetDetails>
    <ChannelRouting>
      <Channel>
        <URI>{{VENDOR_ID}}</URI>
        <Product>{{PRODUCT}}</Product>
        <Version>{{PRODUCT_VERSION}}</Version>
      </Channel>
    </ChannelRouting>
  </GovTalkDetails>
  <Body>
    <IRenvelope xmlns="http://www.govtalk.gov.uk/taxation/charities/r68/2">
      <IRheader>
        <Keys>
          <Key Type="CHARID">{{CHARID}}</Key>
        </Keys>
        <PeriodEnd>{{PERIOD_END}}</PeriodEnd>
        <DefaultCurrency>GBP</DefaultCurrency>
        <IRmark Type="generic">{{IRMARK}}</IRmark>
        <Sender>Individual</Sender>
      </IRheader>
      <R68>
        <AuthOfficial>
          <OffName>
            <Fore>{{OFFICIAL_FORE}}</Fore>
            <Sur>{{OFFICIAL_SUR}}</Sur>
          </OffName>
          <OffID>
            <Postcode>{{OFFICIAL_POSTCODE}}</Postcode>
          </OffID>
          <Phone>{{OFFICIAL_PHONE}}</Phone>
        </AuthOfficial>
        <Declaration>yes</Declaration>
        <Claim>
          <OrgName>{{ORG_NAME}}</OrgName>
          <HMRCref>{{HMRC_REF}}</HMRCref>
{{REGULATOR}}          <Repayment>
{{DONATION_ROWS}}            <EarliestGAdate>{{EARLIEST_GA_DATE}}</EarliestGAdate>
          </Repayment>
          <GASDS>
            <ConnectedCharities>no</ConnectedCharities>
            <CommBldgs>no</CommBldgs>
          </GASDS>
        </Claim>
      </R68>
    </IRenvelope>
  </Body>
</GovTalkMessage>
"""

REGULATOR_TEMPLATE = """          <Regulator>
            <RegName>{{REG_NAME}}</RegName>
            <RegNo>{{REG_NO}}</RegNo>
          </Regulator>
"""

GAD_TEMPLATE = """            <GAD>
              <Donor>
{{TITLE}}                <Fore>{{FORE}}</Fore>
                <Sur>{{SUR}}</Sur>
                <House>{{HOUSE}}</House>
                <Postcode>{{POSTCODE}}</Postcode>
              </Donor>
              <Date>{{DATE}}</Date>
              <Total>{{TOTAL}}</Total>
            </GAD>
"""

TITLE_TEMPLATE = "                <Ttl>{{TITLE}}</Ttl>\n"

POLL_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<GovTalkMessage xmlns="http://www.govtalk.gov.uk/CM/envelope">
  <EnvelopeVersion>2.0</EnvelopeVersion>
  <Header>
    <MessageDetails>
      <Class>{{MESSAGE_CLASS}}</Class>
      <Qualifier>request</Qualifier>
      <Function>poll</Function>
      <CorrelationID>{{CORRELATION_ID}}</CorrelationID>
      <Transformation>XML</Transformation>
      <GatewayTest>{{GATEWAY_TEST}}</GatewayTest>
    </MessageDetails>
    <SenderDetails>
      <IDAuthentication>
        <SenderID>{{SENDER_ID}}</SenderID>
        <Authentication>
          <Method>clear</Method>
          <Role>principal</Role>
          <Value>{{AUTH_VALUE}}</Value>
        </Authentication>
      </IDAuthentication>
    </SenderDetails>
  </Header>
  <Body/>
</GovTalkMessage>
"""


# ── Primitives ───────────────────────────────────────────────────────────────


def xml_escape(value) -> str:
    """Escape text for element content and attribute values.

    Braces become numeric character references so free text can never
    spell a placeholder token.
    """
    return "".join(_XML_ESCAPES.get(ch, ch) for ch in str("" if value is None else value))


def _fill(template: str, values: Mapping[str, str]) -> str:
    """Single-pass placeholder substitution; unknown names are left in place."""
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def assert_no_placeholders(rendered: str) -> str:
    """Return `rendered` unchanged or raise TemplateIntegrityError."""
    idx = rendered.find("{{")
    if idx == -1:
        return rendered
    snippet = rendered[max(0, idx - 30): idx + 80]
    raise TemplateIntegrityError(
        f"Envelope still contains an unreplaced placeholder near: {snippet}",
        snippet=snippet,
    )


def correlation_id_for(claim_id) -> str:
    """Deterministic 32-char upper-case hex correlation id for a claim."""
    try:
        return uuid.UUID(str(claim_id)).hex.upper()
    except ValueError:
        return uuid.uuid5(uuid.NAMESPACE_URL, f"claim:{claim_id}").hex.upper()


def gateway_timestamp(now: datetime) -> str:
    """UTC timestamp with milliseconds, e.g. 2024-06-30T12:00:00.000Z."""
    now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def compute_irmark(document: str) -> str:
    """IRmark of a rendered envelope.

    The Body element (carrying the GovTalk default namespace it inherits)
    is canonicalised with the IRmark element removed, hashed with SHA-1
    and base64-encoded.
    """
    start = document.find("<Body>")
    end = document.find("</Body>")
    if start == -1 or end == -1:
        raise TemplateIntegrityError("Envelope has no Body element", snippet=document[:80])
    body = document[start: end + len("</Body>")]
    body = body.replace("<Body>", f'<Body xmlns="{GOVTALK_NS}">', 1)
    body = _IRMARK_RE.sub("", body, count=1)
    try:
        canonical = ET.canonicalize(xml_data=body)
    except ET.ParseError as exc:
        raise TemplateIntegrityError(
            f"Envelope Body is not well-formed XML: {exc}", snippet=body[:80]
        ) from exc
    digest = hashlib.sha1(canonical.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


# ── Row rendering ────────────────────────────────────────────────────────────


def _row_mapping(row) -> Mapping:
    return row if isinstance(row, Mapping) else record_as_mapping(row)


def validate_rows(donations: Iterable) -> list:
    """Validate every row; the first failure aborts the whole build."""
    validated = []
    for index, row in enumerate(donations, start=1):
        try:
            validated.append(validate_donation(_row_mapping(row)))
        except ValidationError as exc:
            raise ValidationError(
                f"Donation row {index}: {exc}",
                details={"row": index, "field": exc.field, "error": str(exc)},
                field=exc.field,
            ) from exc
    return validated


def _render_gad(donation) -> str:
    title = _fill(TITLE_TEMPLATE, {"TITLE": xml_escape(donation.title)}) if donation.title else ""
    return _fill(GAD_TEMPLATE, {
        "TITLE": title,
        "FORE": xml_escape(donation.first_name),
        "SUR": xml_escape(donation.last_name),
        "HOUSE": xml_escape(donation.address),
        "POSTCODE": xml_escape(donation.postcode),
        "DATE": donation.donation_date.isoformat(),
        "TOTAL": format_money(donation.donation_amount),
    })


def _render_regulator(charity, config: EnvelopeConfig) -> str:
    reg_no = (getattr(charity, "regulator_number", None) or "").strip()
    if not reg_no:
        return ""
    return _fill(REGULATOR_TEMPLATE, {
        "REG_NAME": xml_escape(config.reg_name),
        "REG_NO": xml_escape(reg_no),
    })


# ── Public API ───────────────────────────────────────────────────────────────


def build_envelope(
    claim,
    donations: Iterable,
    charity,
    config: EnvelopeConfig,
    credentials: GatewayCredentials,
    *,
    clock: Callable[[], datetime] | None = None,
) -> str:
    """Render the R68 claim envelope for a frozen claim.

    Args:
        claim: Claim with id, period_start and period_end.
        donations: DonationRecords (or equivalent mappings) in submission order.
        charity: Charity with name, hmrc_charid and optional regulator_number.
        config: Operator settings including the target GatewayMode.
        credentials: Sender credentials placed in IDAuthentication.
        clock: Returns "now"; only consulted in local-test-service mode.

    Returns:
        The complete XML document as text.

    Raises:
        ValidationError: A donation row failed validation (row and field named).
        ConfigurationError: The charity has no valid CHARID.
        TemplateIntegrityError: A placeholder survived rendering.
    """
    rows = validate_rows(donations)

    try:
        charid = normalize_charid(getattr(charity, "hmrc_charid", None))
    except ValidationError as exc:
        raise ConfigurationError(f"Charity cannot be submitted: {exc}") from exc
    if not is_xml_safe(charity.name):
        raise ValidationError(
            "Charity name contains characters that are not allowed", field="charity_name"
        )

    period_end = parse_date(claim.period_end)
    if period_end is None:
        raise ValidationError("Claim period_end is missing or invalid", field="period_end")

    if rows:
        earliest = min(r.donation_date for r in rows)
    else:
        earliest = parse_date(claim.period_start) or period_end

    mode = config.mode
    if mode.assigns_correlation:
        correlation_id = ""
        timestamp = ""
    else:
        correlation_id = correlation_id_for(claim.id)
        timestamp = gateway_timestamp((clock or _utcnow)())

    values = {
        "MESSAGE_CLASS": CLAIM_MESSAGE_CLASS,
        "CORRELATION_ID": xml_escape(correlation_id),
        "GATEWAY_TEST": mode.gateway_test,
        "GATEWAY_TIMESTAMP": timestamp,
        "SENDER_ID": xml_escape(credentials.sender_id),
        "AUTH_VALUE": xml_escape(credentials.password),
        "CHARID": xml_escape(charid),
        "VENDOR_ID": xml_escape(config.vendor_id),
        "PRODUCT": xml_escape(config.product),
        "PRODUCT_VERSION": xml_escape(config.product_version),
        "PERIOD_END": period_end.isoformat(),
        "IRMARK": "",
        "OFFICIAL_FORE": xml_escape(config.official_fore),
        "OFFICIAL_SUR": xml_escape(config.official_sur),
        "OFFICIAL_POSTCODE": xml_escape(config.official_postcode),
        "OFFICIAL_PHONE": xml_escape(config.official_phone),
        "ORG_NAME": xml_escape(charity.name),
        "HMRC_REF": xml_escape(charid),
        "REGULATOR": _render_regulator(charity, config),
        "DONATION_ROWS": "".join(_render_gad(r) for r in rows),
        "EARLIEST_GA_DATE": earliest.isoformat(),
    }

    unsigned = assert_no_placeholders(_fill(CLAIM_TEMPLATE, values))
    values["IRMARK"] = compute_irmark(unsigned)
    return assert_no_placeholders(_fill(CLAIM_TEMPLATE, values))


def build_poll_envelope(
    correlation_id: str,
    credentials: GatewayCredentials,
    mode: GatewayMode,
) -> str:
    """Render the minimal poll request for a prior submission."""
    if not (correlation_id or "").strip():
        raise ValidationError("Correlation id is required to poll", field="correlation_id")
    mode = GatewayMode.parse(mode)
    return assert_no_placeholders(_fill(POLL_TEMPLATE, {
        "MESSAGE_CLASS": POLL_MESSAGE_CLASS,
        "CORRELATION_ID": xml_escape(correlation_id.strip()),
        "GATEWAY_TEST": mode.gateway_test,
        "SENDER_ID": xml_escape(credentials.sender_id),
        "AUTH_VALUE": xml_escape(credentials.password),
    }))


def _utcnow():
    return datetime.now(timezone.utc)
