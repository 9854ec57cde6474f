"""
Gift Aid Claims Service
Blueprint registry: giftaid_bp (claims API) and health_bp (probes).
"""
