"""Kiosk service layer."""
