"""Adapters that connect the core to SQLite, Slack and the forum's data."""
