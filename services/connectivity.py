"""Online/offline signal for the sync machinery."""

from __future__ import annotations

import asyncio
import socket
from typing import Callable, Optional, Set

from core.logs import ensure_logger
from core.settings import BACKEND, SYNC


Probe = Callable[[], bool]


def dns_probe(host: Optional[str] = None) -> Probe:
    """Reachability report based on name resolution of the backend host.

    This is a liveness hint only: no request reaches the backend.
    """

    target = host or BACKEND.host or "one.one.one.one"

    def _probe() -> bool:
        try:
            socket.getaddrinfo(target, None)
        except (socket.gaierror, OSError):
            return False
        return True

    return _probe


class ConnectivityMonitor:
    """Holds a single boolean and notifies listeners on transitions.

    Rapid flaps are not debounced; every observed change is delivered.
    """

    def __init__(self, probe: Optional[Probe] = None, *, initial: Optional[bool] = None):
        self._probe = probe or dns_probe()
        self._listeners: Set[Callable[[bool], None]] = set()
        self.logger = ensure_logger("triplog.sync")
        self._online = self._run_probe() if initial is None else bool(initial)

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, callback: Callable[[bool], None]) -> None:
        self._listeners.add(callback)

    def unsubscribe(self, callback: Callable[[bool], None]) -> None:
        self._listeners.discard(callback)

    def set_online(self, value: bool) -> bool:
        """Record the platform report. Returns True when it was a transition."""

        value = bool(value)
        if value == self._online:
            return False
        self._online = value
        self.logger.info("Connectivity changed: %s", "online" if value else "offline")
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as exc:  # pragma: no cover
                self.logger.error("Connectivity listener failed: %s", exc)
        return True

    def check(self) -> bool:
        self.set_online(self._run_probe())
        return self._online

    async def watch(self, interval: Optional[float] = None, should_continue: Callable[[], bool] = lambda: True):
        period = interval or SYNC.connectivity_probe_interval_sec
        while should_continue():
            result = await asyncio.to_thread(self._run_probe)
            self.set_online(result)
            await asyncio.sleep(period)

    def _run_probe(self) -> bool:
        try:
            return bool(self._probe())
        except Exception as exc:
            self.logger.warning("Connectivity probe failed: %s", exc)
            return False


__all__ = ["ConnectivityMonitor", "dns_probe"]
