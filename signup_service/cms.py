"""Read/write helpers for the user-related CMS object types."""

import logging
from typing import Any, Dict, List, Optional

from .record_store import RecordNotFound, RecordStore

logger = logging.getLogger("signup.cms")

USER_PROFILES = "user-profiles"
USER_PREFERENCES = "user-preferences"
USER_SESSIONS = "user-sessions"
AUTH_LOGS = "authentication-logs"

Record = Dict[str, Any]


def _first(records: List[Record]) -> Optional[Record]:
    return records[0] if records else None


def get_user_profiles(store: RecordStore) -> List[Record]:
    return store.find(USER_PROFILES)


def get_user_profile_by_slug(store: RecordStore, slug: str) -> Optional[Record]:
    try:
        return store.find_one(USER_PROFILES, {"slug": slug})
    except RecordNotFound:
        return None


def get_user_profile_by_id(store: RecordStore, user_id: str) -> Optional[Record]:
    try:
        return store.find_one(USER_PROFILES, {"id": user_id})
    except RecordNotFound:
        return None


def get_user_profile_by_email(store: RecordStore, email: str) -> Optional[Record]:
    return _first(store.find(USER_PROFILES, {"metadata.email": email}))


def get_user_profile_by_username(store: RecordStore, username: str) -> Optional[Record]:
    return _first(store.find(USER_PROFILES, {"metadata.username": username}))


def get_user_preferences(store: RecordStore, user_id: str) -> Optional[Record]:
    return _first(store.find(USER_PREFERENCES, {"metadata.user": user_id}))


def get_user_sessions(store: RecordStore, user_id: str) -> List[Record]:
    return store.find(USER_SESSIONS, {"metadata.user": user_id})


def get_active_user_sessions(store: RecordStore, user_id: str) -> List[Record]:
    return store.find(USER_SESSIONS, {"metadata.user": user_id, "metadata.is_active": True})


def get_sessions(store: RecordStore, active_only: bool = False) -> List[Record]:
    query = {"metadata.is_active": True} if active_only else None
    return store.find(USER_SESSIONS, query)


def get_authentication_logs(store: RecordStore, user_id: Optional[str] = None) -> List[Record]:
    query = {"metadata.user": user_id} if user_id else None
    return store.find(AUTH_LOGS, query)


def create_user_session(
    store: RecordStore,
    *,
    title: str,
    user: str,
    session_token: str,
    ip_address: str,
    login_timestamp: str,
    expires_at: str,
    is_active: bool = True,
    device_info: Optional[str] = None,
) -> Record:
    record = store.insert_one(
        USER_SESSIONS,
        {
            "title": title,
            "status": "published",
            "metadata": {
                "user": user,
                "session_token": session_token,
                "device_info": device_info,
                "ip_address": ip_address,
                "login_timestamp": login_timestamp,
                "expires_at": expires_at,
                "is_active": is_active,
            },
        },
    )
    logger.info("session_created user=%s session_id=%s", user, record["id"])
    return record


def update_user_session(
    store: RecordStore,
    session_id: str,
    *,
    is_active: Optional[bool] = None,
    expires_at: Optional[str] = None,
) -> Record:
    updates: Dict[str, Any] = {}
    if is_active is not None:
        updates["is_active"] = is_active
    if expires_at is not None:
        updates["expires_at"] = expires_at
    return store.update_one(session_id, {"metadata": updates})
