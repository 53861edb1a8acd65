"""
FastAPI route: Notification channel decision endpoints.

Provides endpoints to:
    POST /api/v1/notifications/send              — route + dispatch an event
    POST /api/v1/notifications/ack               — acknowledge an event
    POST /api/v1/notifications/login             — login trust decision
    POST /api/v1/notifications/complete-binding  — confirm SIM binding
    POST /api/v1/notifications/context           — update simulated context
    GET  /api/v1/notifications/events            — dashboard feed (newest first)
    GET  /api/v1/notifications/events/{id}       — one telemetry record
    GET  /api/v1/notifications/inbox/{user_id}   — per-user inbox
    GET  /api/v1/notifications/channels          — routing catalogue
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from backend.app.core.config import settings
from backend.app.notifications.channel_selector import describe_cascade
from backend.app.notifications.models import NotificationChannel
from backend.app.notifications.notification_service import NotificationService

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


def get_service(request: Request) -> NotificationService:
    """The service instance owned by the running application."""
    return request.app.state.notifications


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------

class ContextInput(BaseModel):
    """Partial device context; omitted flags keep their stored value."""
    has_app: Optional[bool] = Field(None, examples=[True])
    is_active: Optional[bool] = Field(None, examples=[False])
    device_online: Optional[bool] = Field(None, examples=[True])
    whatsapp_opt_in: Optional[bool] = Field(None, examples=[True])

    def flags(self) -> Dict[str, bool]:
        return self.model_dump(exclude_none=True)


class DispatchRequest(BaseModel):
    user_id: Optional[str] = Field(None, examples=["demo_user"])
    event_type: Optional[str] = Field(
        None, examples=["LOGIN_OTP"],
        description="Defaults to the configured event type",
    )
    event_id: Optional[str] = Field(None, description="Generated when omitted")
    user_context: Optional[ContextInput] = None


class AckRequest(BaseModel):
    event_id: str = Field(..., min_length=1)
    channel: Optional[str] = Field(None, examples=["PUSH"])


class LoginRequest(BaseModel):
    user_id: Optional[str] = Field(None, examples=["demo_user"])
    device_id: Optional[str] = Field(None, examples=["device_999"])


class BindingRequest(BaseModel):
    user_id: Optional[str] = Field(None, examples=["demo_user"])
    device_id: Optional[str] = Field(None, examples=["device_999"])
    event_id: Optional[str] = None


class ContextUpdateRequest(BaseModel):
    user_id: Optional[str] = Field(None, description="Defaults to the demo user")
    context: ContextInput = Field(default_factory=ContextInput)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/send",
    summary="Dispatch a security notification",
    description=(
        "Runs the channel cascade over the user's context, records the "
        "decision and arms the escalation timer for PUSH / WHATSAPP."
    ),
)
async def send_notification(
    request: DispatchRequest,
    service: NotificationService = Depends(get_service),
) -> Dict[str, Any]:
    result = service.dispatch(
        request.user_id,
        request.event_type,
        request.user_context.flags() if request.user_context else None,
        request.event_id,
    )
    return result.to_dict()


@router.post("/ack", summary="Acknowledge an event")
async def acknowledge(
    request: AckRequest,
    service: NotificationService = Depends(get_service),
) -> Dict[str, bool]:
    return {"ok": service.acknowledge(request.event_id, request.channel)}


@router.post("/login", summary="Login trust decision")
async def login(
    request: LoginRequest,
    service: NotificationService = Depends(get_service),
) -> Dict[str, Any]:
    return service.login_attempt(request.user_id, request.device_id).to_dict()


@router.post("/complete-binding", summary="Confirm device binding")
async def complete_binding(
    request: BindingRequest,
    service: NotificationService = Depends(get_service),
) -> Dict[str, bool]:
    ok = service.complete_binding(request.user_id, request.device_id, request.event_id)
    return {"ok": ok}


@router.post("/context", summary="Update the simulated device context")
async def update_context(
    request: ContextUpdateRequest,
    service: NotificationService = Depends(get_service),
) -> Dict[str, Any]:
    user_id = request.user_id or settings.DEMO_USER_ID
    ctx = service.update_context(user_id, request.context.flags())
    return {"ok": True, "user_id": user_id, "context": ctx.to_dict()}


@router.get("/events", summary="Recent events, newest first")
async def list_events(
    limit: int = Query(settings.EVENT_LIST_LIMIT, ge=0, le=500),
    service: NotificationService = Depends(get_service),
) -> Dict[str, Any]:
    events = [r.to_dict() for r in service.list_recent(limit)]
    return {"count": len(events), "events": events}


@router.get("/events/{event_id}", summary="One telemetry record")
async def get_event(
    event_id: str,
    service: NotificationService = Depends(get_service),
) -> Dict[str, Any]:
    return service.get_event(event_id).to_dict()


@router.get("/inbox/{user_id}", summary="Per-user inbox, newest first")
async def inbox(
    user_id: str,
    service: NotificationService = Depends(get_service),
) -> Dict[str, Any]:
    return {"messages": [r.to_dict() for r in service.list_for_user(user_id)]}


@router.get("/channels", summary="Routing catalogue")
async def list_channels(
    service: NotificationService = Depends(get_service),
) -> Dict[str, Any]:
    return {
        "channels": [c.value for c in NotificationChannel],
        "escalation_timeout_seconds": service.scheduler.timeout_seconds,
        **describe_cascade(),
    }
