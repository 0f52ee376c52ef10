"""Saved settings: named configurations and the recently used list."""
