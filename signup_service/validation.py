import re
from typing import Any, Dict, Mapping, Optional

EMAIL_RE = re.compile(r"^[\w.-]+@[\w.-]+\.[a-zA-Z]{2,}$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]")
PHONE_RE = re.compile(r"^\+?[1-9]?\d{1,14}$")


def validate_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return "Email is required"
    if not EMAIL_RE.match(email):
        return "Please enter a valid email address"
    return None


def validate_password(password: Optional[str]) -> Optional[str]:
    if not password:
        return "Password is required"
    if len(password) < 8:
        return "Password must be at least 8 characters long"
    if not PASSWORD_RE.match(password):
        return "Password must contain uppercase, lowercase, number, and special character"
    return None


def validate_phone(phone: Optional[str]) -> Optional[str]:
    # Optional field
    if not phone:
        return None
    if not PHONE_RE.match(phone):
        return "Please enter a valid phone number"
    return None


def validate_username(username: Optional[str]) -> Optional[str]:
    if not username:
        return None
    if len(username) < 3 or len(username) > 30:
        return "Username must be between 3 and 30 characters"
    return None


def validate_signup(form: Mapping[str, Any]) -> Dict[str, str]:
    """Field -> error message for every invalid field of a signup form."""
    errors: Dict[str, str] = {}
    for field_name in ("firstName", "lastName"):
        if not form.get(field_name):
            errors[field_name] = "This field is required"

    checks = {
        "email": validate_email,
        "password": validate_password,
        "phone": validate_phone,
        "username": validate_username,
    }
    for field_name, check in checks.items():
        error = check(form.get(field_name))
        if error:
            errors[field_name] = error

    confirm = form.get("confirmPassword")
    if confirm is not None and confirm != form.get("password"):
        errors["confirmPassword"] = "Passwords do not match"
    return errors
