"""Pydantic schemas: the remote wire format and the local kiosk API."""
