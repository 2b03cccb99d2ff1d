"""
TraceEmitter: fans run events out to registered listeners (sockets,
loggers, tests). One emitter is owned by each FlowSession.
"""
from __future__ import annotations

import time
from logging import getLogger
from typing import Any, Callable, Dict, List

logger = getLogger(__name__)


class TraceEmitter:
    def __init__(self) -> None:
        self._listeners: List[Callable[[Dict[str, Any]], None]] = []

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def on_trace(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Register a callback that receives every emitted trace event."""
        self._listeners.append(callback)

    def off_trace(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ------------------------------------------------------------------
    # Emit
    # ------------------------------------------------------------------

    def fire(self, payload: Dict[str, Any]) -> None:
        """Stamp the payload with a millisecond timestamp and broadcast it."""
        if "ts" not in payload:
            payload["ts"] = _now_ms()
        for cb in list(self._listeners):
            try:
                cb(payload)
            except Exception:
                # a listener never breaks a run
                logger.exception("trace listener failed on %s", payload.get("type"))


def _now_ms() -> int:
    return int(time.time() * 1000)
