"""
Service lifecycle.
Services start in registration order and stop in reverse. Only services that
actually started are stopped, and a failed start stops the ones before it.
"""

import inspect
import logging
from typing import Any, Dict, List, Optional

from transit_live.core.event_loop import ManagedEventLoop

logger = logging.getLogger(__name__)


async def _call_hook(service: Any, hook: str):
    method = getattr(service, hook, None)
    if method is None:
        return
    result = method()
    if inspect.isawaitable(result):
        await result


class Application:
    """Ordered registry of long-running services"""

    def __init__(self):
        self.event_loop = ManagedEventLoop()
        self.services: Dict[str, Any] = {}
        self.started: List[str] = []

    def register_service(self, name: str, service: Any):
        if name in self.services:
            raise ValueError(f"Service {name!r} is already registered")
        self.services[name] = service

    def get_service(self, name: str) -> Optional[Any]:
        return self.services.get(name)

    async def start(self):
        await self.event_loop.start()
        for name, service in self.services.items():
            logger.info(f"Starting {name}")
            try:
                await _call_hook(service, "start")
            except Exception:
                logger.exception(f"Service {name} failed to start, stopping {len(self.started)} started services")
                await self.stop()
                raise
            self.started.append(name)

    async def stop(self):
        """Stop started services newest first, then cancel background tasks"""
        while self.started:
            name = self.started.pop()
            logger.info(f"Stopping {name}")
            try:
                await _call_hook(self.services[name], "stop")
            except Exception:
                # Keep stopping the rest
                logger.exception(f"Service {name} failed to stop cleanly")
        await self.event_loop.stop()
