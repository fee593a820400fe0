"""
Input validation for names and descriptions. Each function returns the
cleaned value or raises `ValidationError`.
"""

import re

from .errors import ValidationError

GROUP_NAME_MAX_LENGTH = 50
GROUP_DESCRIPTION_MAX_LENGTH = 200
USER_NAME_MAX_LENGTH = 50

GROUP_NAME_PATTERN = re.compile(r"^[A-Za-z0-9 '_.-]+$")


def require_not_blank(value: str | None, field_name: str) -> str:
    """
    Strip `value`, rejecting `None` and anything that is only whitespace
    (including non-breaking and other unicode spaces).
    """
    if value is None:
        raise ValidationError(f"{field_name} can't be empty")

    value = value.strip()

    if not value:
        raise ValidationError(f"{field_name} can't be blank")

    return value


def validate_group_name(name: str | None) -> str:
    name = require_not_blank(name, "Group name")

    if len(name) > GROUP_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Group name can't be longer than {GROUP_NAME_MAX_LENGTH} characters"
        )

    if not GROUP_NAME_PATTERN.match(name):
        raise ValidationError(
            "Group name can only contain letters, numbers, spaces, dots, "
            "hyphens, underscores, or apostrophes"
        )

    return name


def validate_group_description(description: str | None) -> str:
    description = require_not_blank(description, "Description")

    if len(description) > GROUP_DESCRIPTION_MAX_LENGTH:
        raise ValidationError(
            f"Description can't be longer than {GROUP_DESCRIPTION_MAX_LENGTH} characters"
        )

    return description


def validate_user_name(user_name: str | None) -> str:
    user_name = require_not_blank(user_name, "User name")

    if len(user_name) > USER_NAME_MAX_LENGTH:
        raise ValidationError(
            f"User name can't be longer than {USER_NAME_MAX_LENGTH} characters"
        )

    return user_name
