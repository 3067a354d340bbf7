# transit_live/core/event_loop.py
import asyncio
import logging
from typing import Coroutine, Set

logger = logging.getLogger(__name__)


class ManagedEventLoop:
    """Single event loop with tracked background tasks"""

    def __init__(self):
        self.loop = None
        self.shutdown_event = asyncio.Event()
        self.running_tasks: Set[asyncio.Task] = set()

    async def start(self):
        if self.loop is None:
            self.loop = asyncio.get_running_loop()

    async def stop(self):
        """Cancel every tracked task and wait for them to finish"""
        self.shutdown_event.set()
        current_task = asyncio.current_task()
        tasks_to_cancel = [t for t in list(self.running_tasks) if t is not current_task]
        for task in tasks_to_cancel:
            if not task.done():
                task.cancel()
        if tasks_to_cancel:
            await asyncio.gather(*tasks_to_cancel, return_exceptions=True)
        self.running_tasks.clear()

    def add_task(self, coro: Coroutine, name: str) -> asyncio.Task:
        """Schedule a coroutine; the task drops out of the set once done"""
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        task = self.loop.create_task(coro, name=name)
        self.running_tasks.add(task)

        def _on_done(finished: asyncio.Task):
            self.running_tasks.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.error(f"Background task {finished.get_name()} failed: {finished.exception()}")

        task.add_done_callback(_on_done)
        return task
