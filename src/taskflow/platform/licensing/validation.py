"""
User field validation.

Pure functions: everything they need (known plans, who owns an email) is
passed in, and nothing is written. Every offending field is reported at
once, one message per field.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from pydantic import EmailStr, TypeAdapter, ValidationError

from taskflow.platform.licensing.exceptions import UserValidationError
from taskflow.platform.licensing.models import LicensePlan, UserCreateRequest, UserRole

EMAIL_ADAPTER = TypeAdapter(EmailStr)
DEFAULT_MAX_LENGTH = 50

OPTIONAL_TEXT_FIELDS = ("department", "designation", "location")


@dataclass(frozen=True)
class ValidatedUserFields:
    """Normalized user fields that passed validation."""

    name: str
    email: str
    role: UserRole
    plan_code: str
    department: str | None = None
    designation: str | None = None
    location: str | None = None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    """Email shape check; the top-level domain needs at least two letters."""
    try:
        EMAIL_ADAPTER.validate_python(email)
    except ValidationError:
        return False
    tld = email.rsplit(".", 1)[-1]
    return len(tld) >= 2 and tld.isalpha()


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_user_fields(
    data: UserCreateRequest,
    plans: Mapping[str, LicensePlan],
    *,
    email_owner_id: str | None = None,
    current_user_id: str | None = None,
    current_plan_code: str | None = None,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> ValidatedUserFields:
    """
    Check and normalize user fields.

    Args:
        data: Raw field values
        plans: Catalog plans by plan code
        email_owner_id: Id of the user already registered with this email, if any
        current_user_id: Id of the user being updated (None when adding)
        current_plan_code: Plan the user already holds; an inactive plan is
            only accepted when it is this one
        max_length: Maximum length of the text fields

    Returns:
        Normalized fields

    Raises:
        UserValidationError: One or more fields are invalid
    """
    errors: dict[str, str] = {}

    name = (data.name or "").strip()
    if not name:
        errors["name"] = "Name is required"
    elif len(name) > max_length:
        errors["name"] = f"Name must be less than {max_length} characters"

    email = normalize_email(data.email or "")
    if not email:
        errors["email"] = "Email is required"
    elif not is_valid_email(email):
        errors["email"] = "Please enter a valid email address"
    elif email_owner_id is not None and email_owner_id != current_user_id:
        errors["email"] = "Email address is already registered"

    role: UserRole | None = None
    if not data.role or not data.role.strip():
        errors["role"] = "Role selection is required"
    else:
        try:
            role = UserRole.parse(data.role)
        except ValueError:
            errors["role"] = "Invalid role selected"

    plan_code = (data.plan_code or "").strip()
    if not plan_code:
        errors["plan_code"] = "License selection is required"
    elif plan_code not in plans:
        errors["plan_code"] = "Invalid license type selected"
    elif not plans[plan_code].is_active and plan_code != current_plan_code:
        errors["plan_code"] = "Selected license type is not available"

    optional = {field: _optional(getattr(data, field)) for field in OPTIONAL_TEXT_FIELDS}
    for field, value in optional.items():
        if value is not None and len(value) > max_length:
            errors[field] = f"{field.capitalize()} must be less than {max_length} characters"

    if errors:
        raise UserValidationError(errors)

    return ValidatedUserFields(
        name=name,
        email=email,
        role=role,  # type: ignore[arg-type]
        plan_code=plan_code,
        **optional,
    )
