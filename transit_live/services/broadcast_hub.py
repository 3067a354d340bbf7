"""
Broadcast hub.
Owns the previous snapshot and the set of live connections, runs the poll
cycle and the liveness sweep, and fans deltas out to every open connection.

Both periodic activities run as tasks on the one event loop, so the
connection set is only touched between awaits. Fan-out iterates over a
copy taken at a single point in time.
"""

import asyncio
import itertools
import json
import logging
import time
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Optional, Set

from ..core.errors import FeedFetchError
from ..data.models.vehicle import Delta, Snapshot
from ..data.sources.realtime_feed import RealtimeFeedClient
from .diff_engine import diff
from .enricher import VehicleEnricher

logger = logging.getLogger(__name__)

FETCH_ERROR_MESSAGE = "Failed to fetch vehicle updates"
_connection_ids = itertools.count(1)


def now_ms() -> int:
    return int(time.time() * 1000)


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ClientConnection:
    """One viewer connection.

    The transport only needs ``send_str(str)``, ``ping(bytes)`` and
    ``close()`` coroutines, which aiohttp's WebSocketResponse provides.
    """

    def __init__(self, transport, connection_id: Optional[int] = None, send_timeout_seconds: float = 5.0):
        self.transport = transport
        self.send_timeout_seconds = send_timeout_seconds
        self.connection_id = connection_id or next(_connection_ids)
        self.state = ConnectionState.CONNECTING
        self.awaiting_pong = False

    def __repr__(self):
        return f"<ClientConnection {self.connection_id} {self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def mark_open(self):
        if self.state is ConnectionState.CONNECTING:
            self.state = ConnectionState.OPEN

    def mark_alive(self):
        """Called when a pong arrives"""
        self.awaiting_pong = False

    async def send_text(self, data: str) -> bool:
        if not self.is_open:
            return False
        try:
            await asyncio.wait_for(self.transport.send_str(data), timeout=self.send_timeout_seconds)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send to connection {self.connection_id} timed out after {self.send_timeout_seconds}s")
            return False
        except (ConnectionError, RuntimeError) as e:
            logger.warning(f"Send to connection {self.connection_id} failed: {e}")
            return False

    async def send_json(self, message: dict) -> bool:
        return await self.send_text(json.dumps(message))

    async def ping(self) -> bool:
        self.awaiting_pong = True
        try:
            await asyncio.wait_for(self.transport.ping(b""), timeout=self.send_timeout_seconds)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Ping to connection {self.connection_id} timed out")
            return False
        except (ConnectionError, RuntimeError) as e:
            logger.warning(f"Ping to connection {self.connection_id} failed: {e}")
            return False

    async def close(self):
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        self.state = ConnectionState.CLOSING
        try:
            await asyncio.wait_for(self.transport.close(), timeout=self.send_timeout_seconds)
        except asyncio.TimeoutError:
            logger.debug(f"Close of connection {self.connection_id} timed out")
        except (ConnectionError, RuntimeError) as e:
            logger.debug(f"Close of connection {self.connection_id} raised: {e}")
        finally:
            self.state = ConnectionState.CLOSED


class BroadcastHub:
    """Drives the poll cycle and liveness sweep and fans out deltas"""

    def __init__(self, feed_client: RealtimeFeedClient, enricher: VehicleEnricher,
                 poll_interval_seconds: float = 10.0, heartbeat_interval_seconds: float = 30.0,
                 send_timeout_seconds: float = 5.0):
        self.feed_client = feed_client
        self.enricher = enricher
        self.poll_interval_seconds = poll_interval_seconds
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.send_timeout_seconds = send_timeout_seconds

        self._previous: Snapshot = MappingProxyType({})
        self._connections: Set[ClientConnection] = set()
        self.last_successful_poll: Optional[int] = None

        self.poll_task: Optional[asyncio.Task] = None
        self.sweep_task: Optional[asyncio.Task] = None
        self.is_running = False

    @property
    def snapshot(self) -> Snapshot:
        return self._previous

    @property
    def connections(self) -> List[ClientConnection]:
        return list(self._connections)

    async def start(self):
        logger.info("Starting broadcast hub...")
        self.is_running = True
        self.poll_task = asyncio.create_task(self._poll_loop(), name="poll_cycle")
        self.sweep_task = asyncio.create_task(self._sweep_loop(), name="liveness_sweep")
        logger.info(
            f"Broadcast hub started - polling every {self.poll_interval_seconds}s, "
            f"heartbeat every {self.heartbeat_interval_seconds}s"
        )

    async def stop(self):
        """Cancel both timers, then close every connection"""
        logger.info("Stopping broadcast hub...")
        self.is_running = False
        for task in (self.poll_task, self.sweep_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        connections = list(self._connections)
        self._connections.clear()
        for connection in connections:
            await connection.close()
        await self.feed_client.close()
        logger.info("Broadcast hub stopped")

    # Connection lifecycle

    async def register(self, transport) -> ClientConnection:
        """Admit a new connection and send it the current snapshot"""
        connection = ClientConnection(transport, send_timeout_seconds=self.send_timeout_seconds)
        # Built before the first await so it matches the membership we join
        initial = json.dumps({
            "type": "initial",
            "data": [record.to_dict() for record in self._previous.values()],
            "timestamp": now_ms(),
        })
        self._connections.add(connection)
        connection.mark_open()
        logger.info(f"New client connected ({len(self._connections)} total)")

        if not await connection.send_text(initial):
            logger.warning(f"Initial snapshot not delivered to connection {connection.connection_id}")
        return connection

    async def unregister(self, connection: ClientConnection):
        if connection in self._connections:
            self._connections.discard(connection)
            logger.info(f"Client disconnected ({len(self._connections)} remaining)")
        await connection.close()

    async def handle_message(self, connection: ClientConnection, raw: str):
        """Minimal client command protocol"""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"Dropping unparseable message from connection {connection.connection_id}")
            return
        if not isinstance(message, dict):
            logger.debug(f"Dropping non-object message from connection {connection.connection_id}")
            return

        message_type = message.get("type")
        if message_type == "ping":
            await connection.send_json({"type": "pong"})
        elif message_type == "subscribe":
            # Reserved for per-route subscriptions
            pass
        else:
            logger.info(f"Unknown message type: {message_type}")

    # Fan-out

    async def broadcast(self, message: dict) -> int:
        data = json.dumps(message)
        return await self._fan_out(data)

    async def _fan_out(self, data: str) -> int:
        targets = [c for c in self._connections if c.is_open]
        # Sent concurrently, so a fan-out waits at most one send timeout
        results = await asyncio.gather(*(connection.send_text(data) for connection in targets))
        delivered = 0
        for connection, sent in zip(targets, results):
            if sent:
                delivered += 1
            else:
                await self._evict(connection)
        return delivered

    async def _evict(self, connection: ClientConnection):
        self._connections.discard(connection)
        await connection.close()

    # Poll cycle

    async def poll_once(self) -> Optional[Delta]:
        """One fetch -> normalize -> diff -> broadcast pass.

        On failure an error notice goes out and the previous snapshot is kept.
        """
        try:
            feed = await self.feed_client.fetch()
            loop = asyncio.get_running_loop()
            current: Dict = await loop.run_in_executor(None, self.enricher.normalize, feed)
        except FeedFetchError as e:
            logger.warning(f"Error fetching vehicle updates: {e} (transient={e.is_transient})")
            await self.broadcast({"type": "error", "message": FETCH_ERROR_MESSAGE})
            return None
        except Exception:
            logger.exception("Unexpected error while processing vehicle updates")
            await self.broadcast({"type": "error", "message": FETCH_ERROR_MESSAGE})
            return None

        delta = diff(self._previous, current)
        # Connections admitted from here on get this state as their initial snapshot
        self._previous = MappingProxyType(current)
        self.last_successful_poll = now_ms()

        if not delta.is_empty:
            await self.broadcast({"type": "update", "data": delta.to_dict(), "timestamp": now_ms()})
            logger.info(
                f"Broadcast: {len(delta.updated)} updated, {len(delta.added)} added, "
                f"{len(delta.removed)} removed"
            )
        return delta

    async def _poll_loop(self):
        logger.info("Starting poll cycle")
        while self.is_running:
            await self.poll_once()
            await asyncio.sleep(self.poll_interval_seconds)

    # Liveness

    async def sweep_once(self) -> int:
        """Evict connections that missed the last ping, ping the rest"""
        evicted = 0
        for connection in list(self._connections):
            if connection.awaiting_pong or not connection.is_open:
                logger.info(f"Terminating dead connection {connection.connection_id}")
                await self._evict(connection)
                evicted += 1
                continue
            if not await connection.ping():
                await self._evict(connection)
                evicted += 1
        return evicted

    async def _sweep_loop(self):
        while self.is_running:
            await asyncio.sleep(self.heartbeat_interval_seconds)
            await self.sweep_once()
