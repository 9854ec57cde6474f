"""app.integrations - External service gateway modules.

All outbound HTTP calls to external services must go through a gateway
in this package, never via bare `requests` calls in services or blueprints.

Current gateways:
  hmrc_gateway.HMRCGateway - HMRC Transaction Engine (submit + poll)
"""
