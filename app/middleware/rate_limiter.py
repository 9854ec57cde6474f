"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

GIFTAID_LIMIT = "60/minute"
# Each submit/poll is an outbound HMRC call; keep operators from hammering it
GATEWAY_LIMIT = "10/minute"
_GATEWAY_ENDPOINTS = ("giftaid.submit_claim", "giftaid.poll_claim")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - HMRC submit/poll:  10/minute
        - Other Gift Aid:    60/minute
        - Health check:      exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for endpoint in _GATEWAY_ENDPOINTS:
        view = app.view_functions.get(endpoint)
        if view:
            app.view_functions[endpoint] = limiter.limit(GATEWAY_LIMIT)(view)

    bp = app.blueprints.get("giftaid")
    if bp:
        limiter.limit(GIFTAID_LIMIT)(bp)

    # Health check - exempt from rate limiting
    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured - gateway: %s, giftaid: %s", GATEWAY_LIMIT, GIFTAID_LIMIT
    )
