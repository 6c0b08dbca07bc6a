"""Utility helpers for the relay."""
