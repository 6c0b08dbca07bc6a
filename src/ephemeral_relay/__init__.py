"""Ephemeral Relay: private real-time messaging with expiring messages."""
