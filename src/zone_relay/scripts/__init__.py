"""Operational scripts (``python -m zone_relay.scripts.<name>``)."""
