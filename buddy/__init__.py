"""Scheduling and lifecycle engine for the language buddy WhatsApp service."""

__version__ = "0.1.0"
