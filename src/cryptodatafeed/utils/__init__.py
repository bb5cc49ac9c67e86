"""Shared utilities: rate limiting and time conversions."""
