"""Shared helpers: time zones, HTTP sessions and caching."""
