"""Core configuration for the relay."""
