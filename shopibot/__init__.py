"""Shopibot webhook trust-and-compliance service.

Authenticates inbound Shopify webhooks and carries out the mandatory
privacy-law compliance topics (customer data requests, customer and shop
redaction, app uninstall cleanup).
"""

__version__ = "0.1.0"
