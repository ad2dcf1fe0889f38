"""Durable review queue for triaged items."""

from .plugin_data import PluginDataFile
from .triage_store import QUEUE_KEY, StoreChange, Subscription, TriageStore

__all__ = ["PluginDataFile", "QUEUE_KEY", "StoreChange", "Subscription", "TriageStore"]
