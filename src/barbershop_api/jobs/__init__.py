"""Recurring job entrypoints for loyalty crediting and reminders."""

__all__ = [
    "loyalty",
    "reminders",
]
