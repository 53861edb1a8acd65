"""
notification_service.py — Orchestration of the notification engine.

This is the central coordinator that:
    1. Resolves the device context (stored simulator flags + caller flags)
    2. Runs the channel cascade (or the trust decision for logins)
    3. Publishes the telemetry record with its routing decision logged
    4. Hands the message to the chosen channel backend
    5. Arms an escalation timer for PUSH / WHATSAPP
    6. Records acknowledgments and device bindings
    7. Serves dashboard / inbox queries

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    dispatch(user, event_type, ctx)
        │
        ▼
    ContextProvider.resolve ──► channel_selector.route
        │
        ▼
    EventStore.create (record routed, sent_ts stamped, decision logged)
        │
        ▼
    channel backend send()  ── failure is logged on the event, no retry
        │
        ▼
    PUSH / WHATSAPP? ──yes──► EscalationScheduler.arm(deadline)
                                   │
                      ack first ◄──┴──► deadline first
                      (no-op)           set_fallback + fallback send()

All state lives in the objects handed to the constructor; build a fresh
service per application (or per test) with ``build_notification_service``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

from backend.app.core.config import Settings, settings
from backend.app.core.errors import (
    DeliveryError,
    InternalFaultError,
    InvalidInputError,
    NotFoundError,
    NotificationError,
)
from backend.app.notifications.channel_selector import (
    decide_trust,
    fallback_channel_for,
    route,
)
from backend.app.notifications.channels import in_app, push, sms, whatsapp
from backend.app.notifications.escalation import EscalationScheduler
from backend.app.notifications.event_store import EventStore
from backend.app.notifications.models import (
    DeliveryAttempt,
    DeliveryStatus,
    DeviceContext,
    DispatchResult,
    LogEntry,
    LoginResult,
    LoginStatus,
    NotificationChannel,
    TelemetryRecord,
    _generate_id,
    _now,
)
from backend.app.notifications.registry import ContextProvider, DeviceRegistry

logger = logging.getLogger(__name__)

Sender = Callable[[TelemetryRecord, NotificationChannel], DeliveryAttempt]


def default_senders(sms_provider: str = "simulation") -> Dict[NotificationChannel, Sender]:
    """Channel → backend registry."""
    sms_send = partial(sms.send, provider=sms_provider)
    return {
        NotificationChannel.IN_APP:      in_app.send,
        NotificationChannel.PUSH:        push.send,
        NotificationChannel.WHATSAPP:    whatsapp.send,
        NotificationChannel.SMS:         sms_send,
        NotificationChannel.SMS_BINDING: sms_send,
    }


def _name(value: Union[str, Enum]) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _require(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidInputError(f"{field} is required", field=field)
    return str(value).strip()


class NotificationService:
    """
    Dispatch / acknowledge / login / binding operations over owned state.

    Usage:
        service = build_notification_service()
        result = service.dispatch("demo_user", "LOGIN_OTP", {"is_active": True})
        service.acknowledge(result.event_id, "IN_APP")
    """

    def __init__(
        self,
        store: EventStore,
        scheduler: EscalationScheduler,
        registry: DeviceRegistry,
        contexts: ContextProvider,
        *,
        senders: Optional[Mapping[NotificationChannel, Sender]] = None,
        clock: Callable[[], datetime] = _now,
        id_factory: Callable[[], str] = _generate_id,
        binding_target: str = "+919999999999",
        default_event_type: str = "LOGIN_OTP",
        list_limit: int = 50,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._registry = registry
        self._contexts = contexts
        self._senders: Dict[NotificationChannel, Sender] = dict(
            default_senders() if senders is None else senders
        )
        self._clock = clock
        self._new_id = id_factory
        self._binding_target = binding_target
        self._default_event_type = default_event_type
        self._list_limit = list_limit
        self._scheduler.set_escalation_hook(self._deliver_fallback)

    # ── Collaborators (read-only access for health / tests) ──

    @property
    def store(self) -> EventStore:
        return self._store

    @property
    def scheduler(self) -> EscalationScheduler:
        return self._scheduler

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def channels(self) -> List[NotificationChannel]:
        return list(self._senders)

    # ── Internals ──

    @contextmanager
    def _boundary(self, operation: str) -> Iterator[None]:
        """Let domain errors through; turn anything else into InternalFault."""
        try:
            yield
        except NotificationError:
            raise
        except Exception as exc:
            logger.exception("%s failed unexpectedly", operation)
            raise InternalFaultError(operation) from exc

    def _publish(self, record: TelemetryRecord) -> None:
        if not self._store.create(record):
            raise InvalidInputError(
                "event already dispatched",
                field="event_id",
                event_id=record.event_id,
            )

    def _deliver(
        self,
        event_id: str,
        channel: NotificationChannel,
    ) -> Optional[DeliveryAttempt]:
        """Hand the event to a channel backend; failures stay on the event."""
        record = self._store.get(event_id)
        if record is None:
            return None

        sender = self._senders.get(channel)
        try:
            if sender is None:
                raise DeliveryError(event_id, channel.value, "no backend registered")
            attempt = sender(record, channel)
            if attempt.status == DeliveryStatus.FAILED:
                raise DeliveryError(event_id, channel.value, attempt.error_message or "")
        except DeliveryError as exc:
            logger.warning(
                "%s", exc.message,
                extra={"event_id": event_id, "channel": channel.value},
            )
            self._store.append_log(event_id, f"Delivery via {channel.value} failed")
            return None
        except Exception:
            logger.exception("Channel backend %s raised for %s", channel.value, event_id)
            self._store.append_log(event_id, f"Delivery via {channel.value} failed")
            return None
        return attempt

    def _deliver_fallback(self, event_id: str, channel: NotificationChannel) -> None:
        self._deliver(event_id, channel)

    def _arm_escalation(
        self,
        event_id: str,
        channel: NotificationChannel,
        ctx: DeviceContext,
    ) -> bool:
        """Start the deadline; a timer that cannot start is logged on the event."""
        try:
            armed = self._scheduler.arm(
                event_id, None, partial(fallback_channel_for, channel), ctx,
            )
        except Exception:
            logger.exception("Arming escalation for %s raised", event_id)
            armed = False
        if not armed:
            logger.warning(
                "Event %s will not escalate", event_id,
                extra={"event_id": event_id, "channel": channel.value},
            )
            self._store.append_log(event_id, "Escalation timer could not be armed")
        return armed

    # ── Dispatch ──

    def dispatch(
        self,
        user_id: Optional[str],
        event_type: Optional[Union[str, Enum]] = None,
        context: Optional[Mapping[str, Any]] = None,
        event_id: Optional[str] = None,
    ) -> DispatchResult:
        """
        Route one security event and start its delivery lifecycle.

        Parameters
        ----------
        user_id : str
            Owning user; required.
        event_type : str | EventType, optional
            Defaults to the configured type (LOGIN_OTP).
        context : mapping, optional
            Context flags; layered over the user's stored context.
        event_id : str, optional
            Caller-chosen id; generated when omitted. Must be new.

        Returns
        -------
        DispatchResult
            Snapshot of the published record. Returns before any deadline.
        """
        user_id = _require(user_id, "user_id")

        with self._boundary("dispatch"):
            event_id = event_id or self._new_id()
            etype = _name(event_type) if event_type else self._default_event_type
            ctx = self._contexts.resolve(user_id, context)
            decision = route(ctx)
            now = self._clock()

            record = TelemetryRecord(
                event_id=event_id,
                user_id=user_id,
                event_type=etype,
                chosen_channel=decision.channel,
                sent_ts=now,
                context=ctx,
                logs=[LogEntry(ts=now, msg=decision.description)],
            )
            self._publish(record)

        # Published: from here on failures stay on the event and the
        # caller still gets its event_id.
        self._deliver(event_id, decision.channel)
        if decision.escalates:
            self._arm_escalation(event_id, decision.channel, ctx)

        logger.info(
            "Dispatched %s for %s via %s (rule %d)",
            event_id, user_id, decision.channel.value, decision.rule,
            extra={
                "event_id": event_id,
                "user_id": user_id,
                "channel": decision.channel.value,
                "event_type": etype,
            },
        )
        snapshot = self._store.get(event_id) or record.snapshot()
        return DispatchResult(
            event_id=event_id,
            chosen_channel=decision.channel,
            record=snapshot,
        )

    def acknowledge(
        self,
        event_id: Optional[str],
        channel: Optional[Union[str, Enum]] = None,
    ) -> bool:
        """
        Record the user's acknowledgment.

        Only the first ack stamps ``ack_ts``; repeats change nothing.
        Returns False only when the event is unknown.
        """
        if not event_id:
            return False
        via = _name(channel) if channel else "UNKNOWN"
        won = self._store.set_ack(
            event_id, self._clock(),
            channel=via,
            message=f"ACK received via {via}",
        )
        if won:
            return True
        known = event_id in self._store
        if not known:
            logger.debug("ACK for unknown event %s ignored", event_id)
        return known

    # ── Login / binding ──

    def login_attempt(
        self,
        user_id: Optional[str],
        device_id: Optional[str],
    ) -> LoginResult:
        """Trust decision for a login from ``device_id``."""
        user_id = _require(user_id, "user_id")
        device_id = _require(device_id, "device_id")

        with self._boundary("login_attempt"):
            trusted = self._registry.is_trusted(user_id, device_id)
            decision = decide_trust(trusted, binding_target=self._binding_target)
            event_id = self._new_id()
            now = self._clock()

            lines = [f"Login attempt from Device ID: {device_id}"]
            if decision.status == LoginStatus.TRUSTED:
                lines += [
                    "Device ID matched registry.",
                    "Trust Score: HIGH. Sending In-App Flash.",
                ]
                message = "Device Verified."
            else:
                lines += [
                    "Device ID mismatch (Unknown Device).",
                    "Security Policy: Force SIM Binding (Upstream SMS).",
                ]
                message = "Binding Required."

            self._publish(TelemetryRecord(
                event_id=event_id,
                user_id=user_id,
                event_type=decision.event_type.value,
                chosen_channel=decision.channel,
                sent_ts=now,
                logs=[LogEntry(ts=now, msg=line) for line in lines],
            ))
            self._deliver(event_id, decision.channel)

            return LoginResult(
                status=decision.status,
                event_id=event_id,
                channel=decision.channel,
                message=message,
                target_number=decision.target_number,
            )

    def complete_binding(
        self,
        user_id: Optional[str],
        device_id: Optional[str],
        event_id: Optional[str] = None,
    ) -> bool:
        """
        Bind ``device_id`` as the user's trusted device (last writer wins)
        and close the referenced binding event if it exists. The registry
        transition is appended to that event on every binding.
        """
        user_id = _require(user_id, "user_id")
        device_id = _require(device_id, "device_id")

        previous = self._registry.bind(user_id, device_id)
        transition = f"Registry Updated: Replaced {previous or 'none'} with {device_id}."

        if event_id:
            # first binding closes the event; every binding leaves its trace
            self._store.set_ack(
                event_id, self._clock(),
                channel=NotificationChannel.SMS_BINDING.value,
                message="Encrypted SMS received at Bank Server.",
            )
            self._store.append_log(event_id, transition)

        logger.info(
            "Binding for %s: %s", user_id, transition,
            extra={"user_id": user_id, "event_id": event_id},
        )
        return True

    # ── Context ──

    def update_context(
        self,
        user_id: Optional[str],
        partial_context: Optional[Mapping[str, Any]],
    ) -> DeviceContext:
        user_id = _require(user_id, "user_id")
        return self._contexts.update(user_id, partial_context)

    # ── Queries ──

    def get_event(self, event_id: str) -> TelemetryRecord:
        record = self._store.get(event_id)
        if record is None:
            raise NotFoundError("Event", event_id=event_id)
        return record

    def list_recent(self, limit: Optional[int] = None) -> List[TelemetryRecord]:
        return self._store.list_recent(self._list_limit if limit is None else limit)

    def list_for_user(self, user_id: str) -> List[TelemetryRecord]:
        return self._store.list_for_user(user_id)

    def shutdown(self) -> None:
        self._scheduler.shutdown()


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

def build_notification_service(
    cfg: Settings = settings,
    **overrides: Any,
) -> NotificationService:
    """
    Wire a service from settings.

    ``overrides`` may replace ``clock``, ``id_factory``, ``senders`` or the
    scheduler's ``timer_factory``.
    """
    clock = overrides.pop("clock", _now)
    timer_factory = overrides.pop("timer_factory", None)

    bindings: Dict[str, str] = {}
    contexts: Dict[str, DeviceContext] = {}
    if cfg.SEED_DEMO_DATA:
        bindings[cfg.DEMO_USER_ID] = cfg.DEMO_BOUND_DEVICE_ID
        contexts[cfg.DEMO_USER_ID] = DeviceContext(
            has_app=cfg.DEMO_HAS_APP,
            is_active=cfg.DEMO_IS_ACTIVE,
            device_online=cfg.DEMO_DEVICE_ONLINE,
            whatsapp_opt_in=cfg.DEMO_WHATSAPP_OPT_IN,
        )

    store = EventStore(clock=clock)
    scheduler_kwargs: Dict[str, Any] = {
        "timeout_seconds": cfg.ESCALATION_TIMEOUT_SECONDS,
        "clock": clock,
    }
    if timer_factory is not None:
        scheduler_kwargs["timer_factory"] = timer_factory
    scheduler = EscalationScheduler(store, **scheduler_kwargs)

    overrides.setdefault("senders", default_senders(cfg.SMS_PROVIDER))
    return NotificationService(
        store,
        scheduler,
        DeviceRegistry(bindings),
        ContextProvider(contexts),
        clock=clock,
        binding_target=cfg.BINDING_TARGET_NUMBER,
        default_event_type=cfg.DEFAULT_EVENT_TYPE,
        list_limit=cfg.EVENT_LIST_LIMIT,
        **overrides,
    )
