"""
registry.py — Collaborators the service consults but does not own logic for.

    DeviceRegistry   — user → bound (trusted) device id
    ContextProvider  — user → simulated device/session context

Both are volatile and thread-safe. In production the registry would be a
device-binding table and the context would come from live session
telemetry; here the simulator drives them through the API.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Mapping, Optional

from backend.app.notifications.models import DeviceContext


class DeviceRegistry:
    """Trusted-device bindings, last writer wins."""

    def __init__(self, bindings: Optional[Mapping[str, str]] = None) -> None:
        self._lock = threading.Lock()
        self._bound: Dict[str, str] = dict(bindings or {})

    def is_trusted(self, user_id: str, device_id: str) -> bool:
        with self._lock:
            return self._bound.get(user_id) == device_id

    def bound_device(self, user_id: str) -> Optional[str]:
        with self._lock:
            return self._bound.get(user_id)

    def bind(self, user_id: str, device_id: str) -> Optional[str]:
        """Replace the user's bound device. Returns the previous id."""
        with self._lock:
            previous = self._bound.get(user_id)
            self._bound[user_id] = device_id
            return previous

    def __len__(self) -> int:
        with self._lock:
            return len(self._bound)


class ContextProvider:
    """
    Stored per-user context used when a dispatch omits some or all flags.

    ``resolve`` layers caller-supplied flags over the stored ones.
    """

    def __init__(self, contexts: Optional[Mapping[str, DeviceContext]] = None) -> None:
        self._lock = threading.Lock()
        self._contexts: Dict[str, DeviceContext] = dict(contexts or {})

    def get(self, user_id: str) -> DeviceContext:
        with self._lock:
            return self._contexts.get(user_id, DeviceContext())

    def update(self, user_id: str, partial: Optional[Mapping[str, Any]]) -> DeviceContext:
        with self._lock:
            merged = self._contexts.get(user_id, DeviceContext()).merged(partial)
            self._contexts[user_id] = merged
            return merged

    def resolve(
        self,
        user_id: str,
        override: Optional[Mapping[str, Any]] = None,
    ) -> DeviceContext:
        return self.get(user_id).merged(override)
