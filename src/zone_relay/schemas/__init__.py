"""Pydantic schemas for the Zone Relay API."""
