"""Spaced-repetition scheduling service (SM-2 family)."""

__version__ = "0.1.0"
