"""Inbound Shopify webhooks.

Each webhook is signature-verified against the raw body, checked for
freshness, classified by topic and, for compliance topics, routed to the
redaction or export components.
"""
