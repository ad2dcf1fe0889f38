"""Triage of incoming emails and chat messages into a human review queue."""

__version__ = "0.1.0"
