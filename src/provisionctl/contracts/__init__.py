"""Shared constants for provisionctl."""
