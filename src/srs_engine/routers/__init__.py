"""Router package exports."""

from . import health, review, sessions

__all__ = [
    "health",
    "review",
    "sessions",
]
