"""Network connectivity as reported by the platform's network listener."""

import logging
from typing import Callable, List, Optional

from kiosk.services.remote_client import RemoteTicketService

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    def __init__(self, online: bool = True, remote: Optional[RemoteTicketService] = None):
        self._online = online
        self.remote = remote
        self._listeners: List[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> bool:
        """Record the reported state; returns True when it changed."""
        online = bool(online)
        if online == self._online:
            return False
        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        for listener in list(self._listeners):
            listener(online)
        return True

    async def check(self) -> bool:
        """Ask the remote service directly and record the answer."""
        if self.remote is None:
            return self._online
        self.set_online(await self.remote.ping())
        return self._online
