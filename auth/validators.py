"""
auth/validators.py -- Input shape rules and identifier normalization.

Each validate_* function inspects a whole request and returns every violation
as {field: [messages]} -- an empty dict means valid. Use cases raise
ValidationError with that dict before touching any store, so callers see all
problems at once instead of fixing them one round-trip at a time.

Normalization:
  Email -- trimmed and lowercased. Uniqueness and lookup are case-insensitive
      because only the normalized form is ever stored or queried.
  Phone -- Vietnamese mobile numbers. Spaces, dashes and parentheses are
      stripped and national (0xx…) or bare 84xx… prefixes become +84xx….
      Applying normalize_phone() to its own output returns it unchanged.

Layer rule: stdlib only, plus auth.passwords for the password policy.
"""

from __future__ import annotations

import re

from auth.passwords import meets_policy

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
# Viettel, Vinaphone, Mobifone, Vietnamobile, Gmobile prefixes.
VN_PHONE_RE = re.compile(r"^(\+84|84|0)(3[2-9]|5[2689]|7[06-9]|8[1-6]|9[0-46-9])[0-9]{7}$")

NAME_MAX_LENGTH = 100

_PHONE_NOISE = str.maketrans("", "", " -()")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str | None) -> bool:
    return bool(email) and EMAIL_RE.match(normalize_email(email)) is not None


def _canonical_phone(phone: str) -> str:
    cleaned = phone.translate(_PHONE_NOISE)
    if cleaned.startswith("+84"):
        return cleaned
    if cleaned.startswith("0"):
        return "+84" + cleaned[1:]
    if cleaned.startswith("84"):
        return "+" + cleaned
    return "+84" + cleaned


def normalize_phone(phone: str) -> str:
    """Return the +84 canonical form. Raises ValueError if it is not a Vietnamese mobile number."""
    if not phone or not phone.strip():
        raise ValueError("Phone number cannot be empty")
    canonical = _canonical_phone(phone)
    if not VN_PHONE_RE.match(canonical):
        raise ValueError("Invalid Vietnamese phone number format")
    return canonical


def is_valid_phone(phone: str | None) -> bool:
    try:
        normalize_phone(phone or "")
    except ValueError:
        return False
    return True


def split_login_identifier(identifier: str) -> tuple[str | None, str | None]:
    """Map a login string to (email, phone) lookup candidates.

    Anything containing "@" is treated as an email. Otherwise it is a phone
    probe if it normalizes; a string that is neither yields (None, None) and
    the lookup simply finds nobody.
    """
    identifier = identifier.strip()
    if "@" in identifier:
        return normalize_email(identifier), None
    try:
        return None, normalize_phone(identifier)
    except ValueError:
        return None, None


# ---------------------------------------------------------------------------
# Request validators
# ---------------------------------------------------------------------------


def _blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def _add(errors: dict[str, list[str]], field: str, message: str) -> None:
    errors.setdefault(field, []).append(message)


def _check_names(errors: dict[str, list[str]], first_name: str | None, last_name: str | None) -> None:
    for field, label, value in (("first_name", "First name", first_name), ("last_name", "Last name", last_name)):
        if _blank(value):
            _add(errors, field, f"{label} is required")
        elif len(value) > NAME_MAX_LENGTH:
            _add(errors, field, f"{label} cannot exceed {NAME_MAX_LENGTH} characters")


def _check_new_password(errors: dict[str, list[str]], field: str, password: str | None, confirm: str | None, confirm_field: str) -> None:
    if _blank(password):
        _add(errors, field, "Password is required")
    else:
        if len(password) < 8:
            _add(errors, field, "Password must be at least 8 characters long")
        if not meets_policy(password):
            _add(
                errors,
                field,
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one digit, and one special character",
            )
    if confirm != password:
        _add(errors, confirm_field, "Passwords do not match")


def validate_login(email_or_phone: str | None, password: str | None, device_id: str | None) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    if _blank(email_or_phone):
        _add(errors, "email_or_phone", "Email or phone number is required")
    if not password:
        _add(errors, "password", "Password is required")
    if _blank(device_id):
        _add(errors, "device_id", "Device ID is required")
    return errors


def validate_register(
    email: str | None,
    phone_number: str | None,
    password: str | None,
    confirm_password: str | None,
    first_name: str | None,
    last_name: str | None,
    device_id: str | None,
) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    if _blank(email):
        _add(errors, "email", "Email is required")
    elif not is_valid_email(email):
        _add(errors, "email", "Invalid email format")
    if not _blank(phone_number) and not is_valid_phone(phone_number):
        _add(errors, "phone_number", "Invalid Vietnamese phone number format")
    _check_new_password(errors, "password", password, confirm_password, "confirm_password")
    _check_names(errors, first_name, last_name)
    if _blank(device_id):
        _add(errors, "device_id", "Device ID is required")
    return errors


def validate_profile_update(first_name: str | None, last_name: str | None, phone_number: str | None) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    _check_names(errors, first_name, last_name)
    if not _blank(phone_number) and not is_valid_phone(phone_number):
        _add(errors, "phone_number", "Invalid Vietnamese phone number format")
    return errors


def validate_password_change(current_password: str | None, new_password: str | None, confirm_password: str | None) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    if not current_password:
        _add(errors, "current_password", "Current password is required")
    _check_new_password(errors, "new_password", new_password, confirm_password, "confirm_password")
    return errors


def validate_refresh(refresh_token: str | None, device_id: str | None) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    if _blank(refresh_token):
        _add(errors, "refresh_token", "Refresh token is required")
    if _blank(device_id):
        _add(errors, "device_id", "Device ID is required")
    return errors
