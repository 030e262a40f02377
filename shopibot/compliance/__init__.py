"""Privacy-law compliance actions: customer redaction, shop purge, data export."""
