"""Timekeeper Cloud API - device sync tokens and the desktop-sync receiver."""
import json
import logging
import secrets
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timekeeper import __version__
from timekeeper.cloud import tokens
from timekeeper.cloud.auth import InvalidSessionError, extract_bearer, verify_session_token
from timekeeper.cloud.config import CloudSettings
from timekeeper.cloud.database import make_engine, make_session_factory
from timekeeper.cloud.models import SyncedActivity, UserSyncSettings, as_utc, utcnow
from timekeeper.cloud.rate_limit import RateLimiter
from timekeeper.core.config import SyncSettings

logger = logging.getLogger(__name__)

router = APIRouter()


class CloudError(Exception):
    """Rendered as ``{"error": message}`` with the given status."""

    def __init__(self, status_code: int, message: str, headers: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.headers = headers


# ============ Request Models ============

class ActivityIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    application_name: str = Field(alias="applicationName", min_length=1)
    window_title: str = Field(default="", alias="windowTitle")
    start_time: datetime = Field(alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    duration: int = Field(default=0, ge=0)
    project_id: Optional[str] = Field(default=None, alias="projectId")
    task_id: Optional[str] = Field(default=None, alias="taskId")
    is_coded: bool = Field(default=False, alias="isCoded")
    is_idle: bool = Field(default=False, alias="isIdle")
    category_id: str = Field(default="uncategorized", alias="categoryId")
    category_auto_assigned: bool = Field(default=True, alias="categoryAutoAssigned")


class DesktopSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    activities: list[ActivityIn] = Field(default_factory=list)
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    device_name: Optional[str] = Field(default=None, alias="deviceName")
    platform: Optional[str] = None
    timestamp: Optional[str] = None
    sync_type: str = Field(default="push", alias="syncType")


# ============ Dependencies ============

def get_settings(request: Request) -> CloudSettings:
    return request.app.state.settings


def get_db(request: Request):
    factory = request.app.state.session_factory
    if factory is None:
        raise CloudError(500, "Missing database URL")
    db = factory()
    try:
        yield db
    finally:
        db.close()


async def json_body(request: Request) -> Any:
    """Parsed JSON body, or None when absent or malformed."""
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def authenticate(request: Request, settings: CloudSettings) -> str:
    token = extract_bearer(request.headers.get("authorization"))
    if token is None:
        raise CloudError(401, "Missing bearer token")
    try:
        return verify_session_token(token, settings.jwt_secret, settings.jwt_audience)
    except InvalidSessionError:
        raise CloudError(401, "Invalid session token")


def require_user(request: Request, settings: CloudSettings = Depends(get_settings)) -> str:
    if not settings.jwt_secret:
        raise CloudError(500, "Missing JWT secret")
    return authenticate(request, settings)


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


# ============ Health ============

@router.get("/health")
def health():
    return {"status": "ok", "version": __version__}


# ============ Token Issuance ============

@router.post("/functions/v1/generate-sync-token")
def generate_sync_token(
    request: Request,
    payload: Any = Depends(json_body),
    db: Session = Depends(get_db),
    settings: CloudSettings = Depends(get_settings),
):
    """Exchange a user session for a new device sync token."""
    problem = settings.configuration_error()
    if problem:
        raise CloudError(500, problem)

    user_id = authenticate(request, settings)

    body = payload if isinstance(payload, dict) else {}
    device_id = _clean(body.get("deviceId"))
    device_name = _clean(body.get("deviceName")) or "Desktop App"
    platform = _clean(body.get("platform")) or "unknown"

    try:
        token, row = tokens.issue_token(
            db,
            user_id=user_id,
            ttl_hours=settings.token_ttl_hours,
            device_id=device_id,
            device_name=device_name,
            platform=platform,
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to store sync token for {user_id}: {e}")
        raise CloudError(500, "Failed to store sync token")

    return {"success": True, "token": token, "expires_at": as_utc(row.expires_at).isoformat()}


# ============ Desktop Sync ============

@router.post("/functions/v1/desktop-sync")
def desktop_sync(
    request: Request,
    payload: Any = Depends(json_body),
    db: Session = Depends(get_db),
    settings: CloudSettings = Depends(get_settings),
):
    """Receive a batch of activities from a desktop device."""
    if not settings.gateway_key:
        raise CloudError(500, "Missing gateway key")
    apikey = request.headers.get("apikey") or ""
    if not secrets.compare_digest(apikey.encode(), settings.gateway_key.encode()):
        raise CloudError(401, "Invalid gateway key")

    sync_token = (request.headers.get("x-sync-token") or "").strip()
    if not sync_token:
        raise CloudError(401, "Missing sync token")
    try:
        token_row = tokens.validate_token(db, sync_token)
    except tokens.TokenRejected as e:
        raise CloudError(401, str(e))

    allowed, retry_after = request.app.state.rate_limiter.allow(token_row.id)
    if not allowed:
        raise CloudError(
            429, "Rate limit exceeded", headers={"Retry-After": f"{int(retry_after) + 1}"}
        )

    try:
        body = DesktopSyncRequest.model_validate(payload if isinstance(payload, dict) else {})
    except ValidationError as e:
        raise CloudError(400, f"Invalid payload ({e.error_count()} errors)")

    device_id = token_row.device_id or body.device_id or request.headers.get("x-device-id")

    for activity in body.activities:
        db.add(SyncedActivity(
            user_id=token_row.user_id,
            device_id=device_id,
            token_id=token_row.id,
            application_name=activity.application_name,
            window_title=activity.window_title,
            start_time=activity.start_time,
            end_time=activity.end_time,
            duration=activity.duration,
            project_id=activity.project_id,
            task_id=activity.task_id,
            is_coded=activity.is_coded,
            is_idle=activity.is_idle,
            category_id=activity.category_id,
            category_auto_assigned=activity.category_auto_assigned,
        ))

    token_row.last_used_at = utcnow()
    if token_row.device_id is None and device_id:
        token_row.device_id = device_id

    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store synced activities: {e}")
        raise CloudError(500, "Failed to store activities")

    logger.info(f"Stored {len(body.activities)} activities for user {token_row.user_id}")
    return {"success": True, "synced": len(body.activities)}


# ============ Device Management ============

@router.get("/api/devices")
def get_devices(user_id: str = Depends(require_user), db: Session = Depends(get_db)):
    """List the caller's active device tokens."""
    return {"devices": [row.to_dict() for row in tokens.list_devices(db, user_id)]}


@router.post("/api/devices/{token_id}/revoke")
def revoke_device(
    token_id: str,
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not tokens.revoke_token(db, user_id, token_id):
        raise CloudError(404, "Device not found")
    return {"success": True}


# ============ Sync Settings ============

def _settings_row(db: Session, user_id: str) -> UserSyncSettings:
    row = db.query(UserSyncSettings).filter(UserSyncSettings.user_id == user_id).first()
    if row is None:
        row = UserSyncSettings(user_id=user_id)
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


@router.get("/api/sync-settings")
def get_sync_settings(user_id: str = Depends(require_user), db: Session = Depends(get_db)):
    return _settings_row(db, user_id).to_dict()


@router.put("/api/sync-settings")
def update_sync_settings(
    payload: Any = Depends(json_body),
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
):
    if not isinstance(payload, dict):
        raise CloudError(400, "Expected a JSON object")

    row = _settings_row(db, user_id)
    current = {name: getattr(row, name) for name in SyncSettings.model_fields}
    changes = {k: v for k, v in payload.items() if k in SyncSettings.model_fields}

    try:
        merged = SyncSettings.model_validate({**current, **changes})
    except ValidationError as e:
        raise CloudError(400, e.errors()[0]["msg"])

    for name, value in merged.model_dump().items():
        setattr(row, name, value)
    db.commit()
    db.refresh(row)
    return row.to_dict()


# ============ App Factory ============

def create_app(settings: Optional[CloudSettings] = None) -> FastAPI:
    settings = settings or CloudSettings()

    app = FastAPI(
        title="Timekeeper Cloud API",
        description="Device sync tokens and activity sync for the Timekeeper desktop tracker",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.session_factory = (
        make_session_factory(make_engine(settings.database_url))
        if settings.database_url.strip()
        else None
    )
    app.state.rate_limiter = RateLimiter(settings.sync_rate_per_second, settings.sync_burst)

    @app.exception_handler(CloudError)
    async def cloud_error_handler(request: Request, exc: CloudError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
            headers=exc.headers,
        )

    app.include_router(router)
    return app
