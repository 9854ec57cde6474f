"""
Charity service - HMRC charity identifier (CHARID) handling.

The CHARID is the key HMRC uses to file a claim against a charity; it
appears twice in every envelope (GovTalkDetails and IRheader keys) and
as HMRCref. It is stored normalised: trimmed and upper-cased.
"""

import logging
import re

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.giftaid import Charity

logger = logging.getLogger(__name__)

CHARID_MIN_LENGTH = 3
CHARID_MAX_LENGTH = 30
_CHARID_RE = re.compile(r"^[A-Z0-9\-]+$")


def normalize_charid(raw) -> str:
    """Trim, upper-case and validate an HMRC CHARID.

    Raises:
        ValidationError: field "hmrc_charid".
    """
    value = str(raw or "").strip().upper()
    if not value:
        raise ValidationError("HMRC CHARID is required", field="hmrc_charid")
    if len(value) < CHARID_MIN_LENGTH:
        raise ValidationError("HMRC CHARID looks too short", field="hmrc_charid")
    if len(value) > CHARID_MAX_LENGTH:
        raise ValidationError("HMRC CHARID looks too long", field="hmrc_charid")
    if not _CHARID_RE.match(value):
        raise ValidationError(
            "HMRC CHARID must be letters/numbers/hyphen only", field="hmrc_charid"
        )
    return value


def get_charity(charity_id) -> Charity:
    charity = db.session.get(Charity, charity_id)
    if charity is None:
        raise NotFoundError(resource="Charity", resource_id=charity_id)
    return charity


def set_tax_authority_id(charity_id, raw) -> Charity:
    """Validate and store a charity's HMRC CHARID."""
    charity = get_charity(charity_id)
    charity.hmrc_charid = normalize_charid(raw)
    db.session.commit()
    logger.info("HMRC CHARID updated charity=%s", charity_id)
    return charity
