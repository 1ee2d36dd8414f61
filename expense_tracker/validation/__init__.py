"""Input validation."""

from expense_tracker.validation.validator import (
    EMAIL_PATTERN,
    is_valid_email,
    normalize_email,
    normalize_emails,
    parse_input,
)

__all__ = [
    "EMAIL_PATTERN",
    "is_valid_email",
    "normalize_email",
    "normalize_emails",
    "parse_input",
]
