"""Webhook-driven usage enforcement pipeline for Vapi voice assistants."""

__version__ = "1.0.0"
