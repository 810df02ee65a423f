import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import cms
from .auth import (
    CreateUserData,
    create_authentication_log,
    create_user_profile,
    hash_password,
)
from .config import Settings
from .record_store import RecordStore
from .validation import validate_signup

logger = logging.getLogger("signup.cms")

router = APIRouter(prefix="/api/cms")
auth_router = APIRouter(prefix="/api/auth")


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else "127.0.0.1")


def _failure(settings: Settings, error: str, exc: Exception, status_code: int = 500) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": error}
    if not settings.is_production:
        content["details"] = str(exc)
    return JSONResponse(status_code=status_code, content=content)


# ===================== CMS (lecture) =====================

@router.get("/users")
def list_users(store: RecordStore = Depends(get_store), settings: Settings = Depends(get_app_settings)):
    try:
        users = cms.get_user_profiles(store)
    except Exception as e:
        logger.error("cms_users_error error=%s", repr(e))
        return _failure(settings, "Failed to fetch users", e)
    return {"success": True, "data": users, "count": len(users)}


@router.get("/users/{identifier}")
def get_user(identifier: str, store: RecordStore = Depends(get_store), settings: Settings = Depends(get_app_settings)):
    try:
        # Slug d'abord, puis id
        user = cms.get_user_profile_by_slug(store, identifier) or cms.get_user_profile_by_id(store, identifier)
    except Exception as e:
        logger.error("cms_user_error identifier=%s error=%s", identifier, repr(e))
        return _failure(settings, "Failed to fetch user", e)
    if user is None:
        return JSONResponse(status_code=404, content={"success": False, "error": "User not found"})
    return {"success": True, "data": user}


@router.get("/auth-logs")
def list_auth_logs(
    limit: int = 50,
    skip: int = 0,
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    try:
        logs = cms.get_authentication_logs(store)
    except Exception as e:
        logger.error("cms_auth_logs_error error=%s", repr(e))
        return _failure(settings, "Failed to fetch authentication logs", e)
    page = logs[max(skip, 0):max(skip, 0) + max(limit, 0)]
    return {"success": True, "data": page, "count": len(page)}


@router.get("/sessions")
def list_sessions(
    active_only: bool = False,
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    try:
        sessions = cms.get_sessions(store, active_only=active_only)
    except Exception as e:
        logger.error("cms_sessions_error error=%s", repr(e))
        return _failure(settings, "Failed to fetch sessions", e)
    return {"success": True, "data": sessions, "count": len(sessions)}


@router.get("/preferences/{user_id}")
def get_preferences(user_id: str, store: RecordStore = Depends(get_store), settings: Settings = Depends(get_app_settings)):
    try:
        preferences = cms.get_user_preferences(store, user_id)
    except Exception as e:
        logger.error("cms_preferences_error user_id=%s error=%s", user_id, repr(e))
        return _failure(settings, "Failed to fetch user preferences", e)
    return {"success": True, "data": preferences}


class AuthLogRequest(BaseModel):
    action_type: str
    success: bool = False
    user_id: Optional[str] = None
    failure_reason: Optional[str] = None
    device_info: Optional[str] = None


@router.post("/auth-logs", status_code=201)
def post_auth_log(
    body: AuthLogRequest,
    request: Request,
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    action_key = body.action_type.lower().replace(" ", "_")
    try:
        log = store.insert_one(
            cms.AUTH_LOGS,
            {
                "title": f"{body.action_type} - {'Success' if body.success else 'Failed'}",
                "status": "published",
                "metadata": {
                    "user": body.user_id or "",
                    "action_type": {"key": action_key, "value": body.action_type},
                    "ip_address": _client_ip(request),
                    "device_info": body.device_info or request.headers.get("user-agent") or "Unknown",
                    "success": body.success,
                    "failure_reason": body.failure_reason or "",
                },
            },
        )
    except Exception as e:
        logger.error("cms_auth_log_create_error action=%s error=%s", action_key, repr(e))
        return _failure(settings, "Failed to create authentication log", e)
    return {"success": True, "data": log, "message": "Authentication log created successfully"}


# ===================== Signup =====================

class SignUpRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    username: Optional[str] = None
    phone: Optional[str] = None
    confirmPassword: Optional[str] = None
    bio: Optional[str] = None
    profileVisibility: str = "public"


@auth_router.post("/signup")
def signup(
    body: SignUpRequest,
    request: Request,
    store: RecordStore = Depends(get_store),
):
    if not body.firstName or not body.lastName or not body.email or not body.password:
        return JSONResponse(status_code=400, content={"error": "Missing required fields"})

    errors = validate_signup(body.model_dump())
    if errors:
        # Premier message pour l'affichage, le détail par champ à côté
        return JSONResponse(status_code=400, content={"error": next(iter(errors.values())), "errors": errors})

    ip_address = _client_ip(request)
    device_info = request.headers.get("user-agent") or "Unknown"

    try:
        result = create_user_profile(
            store,
            CreateUserData(
                first_name=body.firstName,
                last_name=body.lastName,
                email=body.email,
                username=body.username or "",
                password_hash=hash_password(body.password),
                phone=body.phone or "",
                bio=body.bio or "",
                profile_visibility=body.profileVisibility,
            ),
        )
        if not result.success and result.errors:
            status_code = 409 if ("email" in result.errors or "username" in result.errors) else 400
            error = "User with this email already exists" if "email" in result.errors else result.message
            return JSONResponse(status_code=status_code, content={"error": error, "errors": result.errors})
        if not result.success:
            raise RuntimeError(result.message)
    except Exception as e:
        logger.error("signup_error email=%s error=%s", body.email, repr(e))
        create_authentication_log(
            store,
            action_type="registration_failed",
            ip_address=ip_address,
            device_info=device_info,
            success=False,
            failure_reason="Server error during registration",
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    create_authentication_log(
        store,
        action_type="registration_success",
        user_id=result.user_id,
        ip_address=ip_address,
        device_info=device_info,
        success=True,
    )
    return JSONResponse(
        status_code=201,
        content={
            "message": "User registered successfully",
            "user": {
                "id": result.user_id,
                "email": body.email,
                "firstName": body.firstName,
                "lastName": body.lastName,
            },
        },
    )
