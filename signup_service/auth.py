"""
Account creation on top of the record store.

Canonical signup flow:
1. the caller validates the form and hashes the password (``hash_password``)
2. ``create_user_profile`` checks email then username uniqueness, picks a free
   slug, inserts the profile and the default preferences
3. the caller records the attempt with ``create_authentication_log``

Preference and log writes are best-effort: their failures are logged and never
fail the signup.
"""

import base64
import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .cms import AUTH_LOGS, USER_PREFERENCES, USER_PROFILES, get_user_profile_by_email, get_user_profile_by_username
from .record_store import RecordNotFound, RecordStore, RecordStoreError
from .ws_events import utc_timestamp

logger = logging.getLogger("signup.auth")

PBKDF2_ALGORITHM = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 260_000
MAX_SLUG_ATTEMPTS = 100

ACTION_TYPES = {
    "login_success": "Login Success",
    "login_failed": "Login Failed",
    "logout": "Logout",
    "password_reset": "Password Reset",
    "email_verification": "Email Verification",
    "account_locked": "Account Locked",
    "session_expired": "Session Expired",
    "registration_success": "Registration Success",
    "registration_failed": "Registration Failed",
}

VISIBILITY_LABELS = {"public": "Public", "private": "Private", "friends": "Friends Only"}


@dataclass
class CreateUserData:
    first_name: str
    last_name: str
    email: str
    username: str
    password_hash: str
    phone: str = ""
    bio: str = ""
    profile_visibility: str = "public"


@dataclass
class AuthResult:
    success: bool
    message: str
    user_id: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)


# ===== Passwords =====

def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    encoded = base64.b64encode(digest).decode("ascii")
    return f"{PBKDF2_ALGORITHM}${iterations}${salt}${encoded}"


def verify_password(password: str, hashed: str) -> bool:
    try:
        algorithm, iterations, salt, encoded = hashed.split("$", 3)
        rounds = int(iterations)
    except (AttributeError, ValueError):
        return False
    if algorithm != PBKDF2_ALGORITHM:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), rounds)
    return hmac.compare_digest(base64.b64encode(digest).decode("ascii"), encoded)


# ===== Profiles =====

def generate_slug(first_name: str, last_name: str, username: str = "") -> str:
    base = username or f"{first_name.lower()}-{last_name.lower()}"
    return re.sub(r"[^a-z0-9]+", "-", base.lower()).strip("-")


def check_email_exists(store: RecordStore, email: str) -> bool:
    return get_user_profile_by_email(store, email) is not None


def check_username_exists(store: RecordStore, username: str) -> bool:
    if not username:
        return False
    return get_user_profile_by_username(store, username) is not None


def _find_free_slug(store: RecordStore, data: CreateUserData) -> str:
    base = generate_slug(data.first_name, data.last_name, data.username)
    slug = base
    for counter in range(1, MAX_SLUG_ATTEMPTS):
        try:
            store.find_one(USER_PROFILES, {"slug": slug})
        except RecordNotFound:
            return slug
        slug = f"{base}-{counter}"
    return slug


def create_user_profile(store: RecordStore, data: CreateUserData) -> AuthResult:
    try:
        if check_email_exists(store, data.email):
            return AuthResult(
                success=False,
                message="An account with this email already exists",
                errors={"email": "Email already registered"},
            )
        if check_username_exists(store, data.username):
            return AuthResult(
                success=False,
                message="This username is already taken",
                errors={"username": "Username already taken"},
            )

        slug = _find_free_slug(store, data)
        visibility = data.profile_visibility if data.profile_visibility in VISIBILITY_LABELS else "public"
        new_user = store.insert_one(
            USER_PROFILES,
            {
                "title": f"{data.first_name} {data.last_name}",
                "slug": slug,
                "status": "published",
                "metadata": {
                    "first_name": data.first_name,
                    "last_name": data.last_name,
                    "email": data.email,
                    "username": data.username,
                    "password_hash": data.password_hash,
                    "phone": data.phone or "",
                    "bio": data.bio or "",
                    "date_joined": datetime.now(timezone.utc).date().isoformat(),
                    "is_active": True,
                    "email_verified": False,
                    "profile_visibility": {"key": visibility, "value": VISIBILITY_LABELS[visibility]},
                },
            },
        )
    except RecordStoreError as e:
        logger.error("create_user_profile_error email=%s error=%s", data.email, repr(e))
        return AuthResult(success=False, message="Failed to create account. Please try again.")

    user_id = new_user["id"]
    logger.info("user_created user_id=%s slug=%s", user_id, new_user["slug"])
    create_default_user_preferences(store, user_id)
    return AuthResult(success=True, message="Account created successfully! Welcome aboard!", user_id=user_id)


def create_default_user_preferences(store: RecordStore, user_id: str) -> Optional[Dict[str, Any]]:
    try:
        return store.insert_one(
            USER_PREFERENCES,
            {
                "title": f"User Preferences - {user_id}",
                "slug": f"preferences-{user_id}",
                "status": "published",
                "metadata": {
                    "user": user_id,
                    "theme_preference": {"key": "auto", "value": "Auto (System)"},
                    "notification_email": True,
                    "notification_push": False,
                    "newsletter_subscription": False,
                    "privacy_level": {"key": "moderate", "value": "Moderate"},
                    "language": {"key": "en", "value": "English"},
                    "timezone": {"key": "UTC", "value": "UTC"},
                },
            },
        )
    except Exception as e:
        # La création du compte reste valide même sans préférences
        logger.error("default_preferences_error user_id=%s error=%s", user_id, repr(e))
        return None


# ===== Authentication logs =====

def create_authentication_log(
    store: RecordStore,
    *,
    action_type: str,
    ip_address: str,
    success: bool,
    user_id: Optional[str] = None,
    device_info: Optional[str] = None,
    failure_reason: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    label = ACTION_TYPES.get(action_type, action_type.replace("_", " ").title())
    metadata: Dict[str, Any] = {
        "action_type": {"key": action_type, "value": label},
        "timestamp": datetime.now(timezone.utc).date().isoformat(),
        "ip_address": ip_address,
        "success": bool(success),
    }
    if user_id:
        metadata["user"] = user_id
    if device_info:
        metadata["device_info"] = device_info
    if failure_reason:
        metadata["failure_reason"] = failure_reason

    try:
        return store.insert_one(
            AUTH_LOGS,
            {"title": f"{label} - {utc_timestamp()}", "status": "published", "metadata": metadata},
        )
    except Exception as e:
        logger.error("auth_log_error action=%s user_id=%s error=%s", action_type, user_id, repr(e))
        return None
