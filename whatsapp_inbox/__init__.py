"""Webhook receiver and operator dashboard API for WhatsApp conversations."""

__version__ = "1.0.0"
