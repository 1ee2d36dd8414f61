"""
Input Validation

DESIGN DECISION: Malformed input is caught before any remote call.
Pydantic does the structural checks; this module turns its errors into
a ValidationFailureError with a message a person can act on, and
handles the one thing pydantic models do not: invitation emails.

IMPORTANT: Validation NEVER silently fixes issues beyond trimming and
lower-casing emails. Anything else is reported.
"""

import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from expense_tracker.errors import ValidationFailureError


ModelT = TypeVar("ModelT", bound=BaseModel)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _describe(error: ValidationError) -> str:
    parts = []
    for issue in error.errors():
        field = ".".join(str(loc) for loc in issue.get("loc", ())) or "input"
        parts.append(f"{field}: {issue.get('msg', 'invalid value')}")
    return "; ".join(parts)


def parse_input(model: type[ModelT], data: Any) -> ModelT:
    """
    Coerce ``data`` (a dict or an instance) into ``model``.

    Raises:
        ValidationFailureError: If the input does not fit the model
    """
    if isinstance(data, model):
        return data
    try:
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationFailureError(_describe(e)) from e


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(normalize_email(email)))


def normalize_emails(emails: list[str]) -> list[str]:
    """
    Trim, lower-case and de-duplicate invitation emails (order kept).

    Raises:
        ValidationFailureError: If any address is malformed
    """
    result: list[str] = []
    invalid: list[str] = []
    for raw in emails:
        email = normalize_email(raw)
        if not EMAIL_PATTERN.match(email):
            invalid.append(raw)
            continue
        if email not in result:
            result.append(email)
    if invalid:
        raise ValidationFailureError(
            f"Please enter a valid email address: {', '.join(invalid)}"
        )
    return result
