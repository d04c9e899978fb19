"""Notifications emitted by the store for hosts (tray menus, UIs)."""

from __future__ import annotations

import threading
from typing import Callable, List

from clihub.core.apps import AppType
from clihub.utils.log import get_logger

logger = get_logger()

SwitchListener = Callable[[AppType], None]


class ProviderEvents:
    """Registry of ``provider_switched`` listeners."""

    def __init__(self) -> None:
        self._listeners: List[SwitchListener] = []
        self._lock = threading.Lock()

    def on_provider_switched(self, listener: SwitchListener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def emit_provider_switched(self, app: AppType) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            # A failing listener must not undo a switch that already committed.
            try:
                listener(app)
            except Exception as exc:
                logger.warning(
                    "[events] provider_switched listener failed: %s: %s",
                    type(exc).__name__,
                    exc,
                    extra={"app": app.value},
                )
