#!/usr/bin/env python3
"""
Main entry point for the live transit tracking server.
Wires the reference store, feed client, enricher, broadcast hub and web server.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from transit_live.core.application import Application
from transit_live.core.config import ApplicationConfig
from transit_live.core.errors import ReferenceLoadFailure
from transit_live.data.repositories.stop_time_repo import StopTimeRepository
from transit_live.data.sources.realtime_feed import RealtimeFeedClient
from transit_live.api.web_server import WebServer
from transit_live.services.broadcast_hub import BroadcastHub
from transit_live.services.enricher import VehicleEnricher
from transit_live.services.reference_store import ReferenceStore
from transit_live.services.stop_service import StopService

logger = logging.getLogger(__name__)


class WebServerService:
    """Adapts WebServer to the Application start/stop lifecycle"""

    def __init__(self, web_server: WebServer, host: str, port: int):
        self.web_server = web_server
        self.host = host
        self.port = port

    async def start(self):
        await self.web_server.start(host=self.host, port=self.port)

    async def stop(self):
        await self.web_server.stop()


class TransitLiveSystem:
    """Main system coordinator that integrates all components"""

    def __init__(self, config: Optional[ApplicationConfig] = None):
        self.config = config or ApplicationConfig()
        self.app = Application()
        self.reference_store: Optional[ReferenceStore] = None
        self.stop_time_repo: Optional[StopTimeRepository] = None
        self.hub: Optional[BroadcastHub] = None
        self.web_server: Optional[WebServer] = None
        self.shutdown_event = asyncio.Event()
        self.exit_code = 0

    def setup(self):
        """Build and register all services"""
        logger.info("Setting up live transit system...")
        config = self.config

        self.reference_store = ReferenceStore(config.gtfs_dir, timezone=config.timezone)
        self.stop_time_repo = StopTimeRepository(config.db_path, self.reference_store.source)

        feed_client = RealtimeFeedClient(config.realtime_feed_url, timeout_seconds=config.request_timeout_seconds)
        enricher = VehicleEnricher(self.reference_store)
        self.hub = BroadcastHub(
            feed_client,
            enricher,
            poll_interval_seconds=config.poll_interval_seconds,
            heartbeat_interval_seconds=config.heartbeat_interval_seconds,
            send_timeout_seconds=config.send_timeout_seconds,
        )

        stop_service = StopService(self.reference_store, self.stop_time_repo)
        self.web_server = WebServer(config, self.hub, self.reference_store, stop_service)

        # Stopped in reverse: web server last, after the hub closed its connections
        self.app.register_service("web_server", WebServerService(self.web_server, config.host, config.port))
        self.app.register_service("broadcast_hub", self.hub)
        self.app.register_service("stop_time_repo", self.stop_time_repo)
        logger.info("All services initialized and registered")

    async def _load_reference_data(self):
        try:
            await self.reference_store.load_async()
        except ReferenceLoadFailure as e:
            logger.critical("FATAL: failed to load GTFS reference data")
            logger.critical(f"Error details: {e}")
            logger.critical(
                f"Download the GTFS static feed and extract it into {self.config.gtfs_dir}, then restart"
            )
            self.exit_code = 1
            self.shutdown_event.set()

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()

        def shutdown_handler(signum):
            logger.info(f"Received signal {signum}, shutting down...")
            self.shutdown_event.set()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, shutdown_handler, signum)

    async def start(self):
        logger.info("Starting live transit system...")
        self._setup_signal_handlers()
        self.setup()
        # Lookups miss until this finishes; the hub and server run meanwhile
        self.app.event_loop.add_task(self._load_reference_data(), name="load_reference_data")
        await self.app.start()
        await self.shutdown_event.wait()

    async def stop(self):
        logger.info("Stopping live transit system...")
        self.shutdown_event.set()
        await self.app.stop()
        logger.info("System stopped gracefully")


async def main() -> int:
    config = ApplicationConfig()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    system = TransitLiveSystem(config)
    try:
        await system.start()
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        system.exit_code = 1
    finally:
        await system.stop()
    return system.exit_code


def run():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutdown complete")
        sys.exit(0)


if __name__ == "__main__":
    run()
