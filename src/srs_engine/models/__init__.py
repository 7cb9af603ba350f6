"""Domain dataclasses and API schemas."""
