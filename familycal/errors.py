"""Error types raised by the calendar core.

Every caller-facing failure is a :class:`ValidationError` so the transport
layer can map the whole family to a client error with a readable message.
"""

from __future__ import annotations


class ValidationError(ValueError):
    """Bad or missing arguments, or a request the calendar cannot honour."""


class NotFoundError(ValidationError):
    """A referenced event, member or family does not exist."""


class RangeTooLargeError(ValidationError):
    """A range query is longer than a recurring type allows."""

    def __init__(self, recurring_type, max_days: int, requested_days: int):
        self.recurring_type = recurring_type
        self.max_days = max_days
        self.requested_days = requested_days
        name = getattr(recurring_type, "value", recurring_type)
        super().__init__(
            f"Date range exceeds maximum allowed for {name} recurring events. "
            f"Maximum is {max_days} days (approximately {format_days(max_days)}), "
            f"but requested range is {requested_days} days "
            f"({requested_days - max_days} days too many)."
        )


class ConcurrencyConflict(RuntimeError):
    """A uniqueness race could not be resolved by re-reading the winner."""


def format_days(days: int) -> str:
    """Render a day count as a rough human-readable duration."""
    if days >= 3650:
        return f"{days / 365.0:.1f} years"
    if days >= 365:
        suffix = "s" if days >= 730 else ""
        return f"{days / 365.0:.1f} year{suffix}"
    return f"{days} days"
