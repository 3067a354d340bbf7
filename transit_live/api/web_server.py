"""
Web server: the WebSocket endpoint feeding the broadcast hub, plus the thin
REST handlers over the reference data.
"""

import logging
from typing import Optional

from aiohttp import web, WSMsgType
from google.protobuf.json_format import MessageToDict

from ..core.config import ApplicationConfig
from ..core.errors import FeedFetchError
from ..services.broadcast_hub import BroadcastHub
from ..services.reference_store import ReferenceStore
from ..services.stop_service import StopService

logger = logging.getLogger(__name__)


def cors_middleware_for(origin: str):
    cors_headers = {
        'Access-Control-Allow-Origin': origin,
        'Access-Control-Allow-Methods': 'GET, OPTIONS',
        'Access-Control-Allow-Headers': 'Content-Type, X-Requested-With, Authorization',
        'Access-Control-Max-Age': '3600',
    }

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        if request.method == 'OPTIONS':
            return web.Response(headers=cors_headers)
        try:
            response = await handler(request)
        except web.HTTPException as ex:
            ex.headers.update(cors_headers)
            raise
        # Upgraded WebSocket responses have already sent their headers
        if not isinstance(response, web.WebSocketResponse):
            response.headers.update(cors_headers)
        return response

    return cors_middleware


def _direction_param(request: web.Request) -> Optional[int]:
    try:
        direction = int(request.match_info['direction_id'])
    except ValueError:
        return None
    return direction if direction in (0, 1) else None


class WebServer:
    """aiohttp server hosting the vehicle stream and the reference REST API"""

    def __init__(self, config: ApplicationConfig, hub: BroadcastHub,
                 reference_store: ReferenceStore, stop_service: StopService):
        self.config = config
        self.hub = hub
        self.reference_store = reference_store
        self.stop_service = stop_service

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    def create_app(self) -> web.Application:
        app = web.Application(middlewares=[cors_middleware_for(self.config.cors_origin)])

        app.router.add_get('/', self._handle_websocket)
        app.router.add_get('/api/health', self._handle_health)
        app.router.add_get('/api/transit-data', self._handle_transit_data)
        app.router.add_get('/api/stops', self._handle_stops)
        app.router.add_get('/api/stops/bounds', self._handle_stops_in_bounds)
        app.router.add_get('/api/stops/route/{route_id}/{direction_id}', self._handle_stops_for_route)
        app.router.add_get('/api/stops/{stop_id}', self._handle_stop)
        app.router.add_get('/api/shape/{route_id}/{direction_id}', self._handle_shape)
        app.router.add_get('/api/emission/{route_id}', self._handle_emission)
        return app

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """GET / - vehicle stream. Pongs are surfaced so the hub can track liveness."""
        ws = web.WebSocketResponse(autoping=False)
        await ws.prepare(request)
        connection = await self.hub.register(ws)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self.hub.handle_message(connection, msg.data)
                elif msg.type == WSMsgType.PONG:
                    connection.mark_alive()
                elif msg.type == WSMsgType.PING:
                    await ws.pong(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket error on connection {connection.connection_id}: {ws.exception()}")
                    break
        finally:
            await self.hub.unregister(connection)

        return ws

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "reference_loaded": self.reference_store.is_loaded,
            "connections": len(self.hub.connections),
            "live_vehicles": len(self.hub.snapshot),
            "last_update": self.hub.last_successful_poll,
        })

    async def _handle_transit_data(self, request: web.Request) -> web.Response:
        try:
            feed = await self.hub.feed_client.fetch()
        except FeedFetchError as e:
            logger.error(f"Transit data request failed: {e}")
            return web.json_response({"error": "Failed to fetch realtime data"}, status=500)
        return web.json_response(MessageToDict(feed))

    async def _handle_stops(self, request: web.Request) -> web.Response:
        return web.json_response(self.stop_service.all_stops())

    async def _handle_stops_in_bounds(self, request: web.Request) -> web.Response:
        try:
            bounds = [float(request.query[name]) for name in ('minLat', 'maxLat', 'minLon', 'maxLon')]
        except (KeyError, ValueError):
            return web.json_response(
                {"error": "minLat, maxLat, minLon and maxLon must be numbers"}, status=400
            )
        return web.json_response(self.stop_service.stops_in_bounds(*bounds))

    async def _handle_stop(self, request: web.Request) -> web.Response:
        stop = await self.stop_service.stop_with_departures(request.match_info['stop_id'])
        return web.json_response(stop)

    async def _handle_stops_for_route(self, request: web.Request) -> web.Response:
        direction = _direction_param(request)
        if direction is None:
            return web.json_response({"error": "Invalid directionId. Must be 0 or 1."}, status=400)
        stops = await self.stop_service.stops_for_route(request.match_info['route_id'], direction)
        return web.json_response(stops)

    async def _handle_shape(self, request: web.Request) -> web.Response:
        route_id = request.match_info['route_id']
        direction = _direction_param(request)
        if direction is None:
            return web.json_response({"error": "Invalid directionId. Must be 0 or 1."}, status=400)

        coordinates = self.stop_service.route_shape(route_id, direction)
        if not coordinates:
            return web.json_response({"error": "Shape not found for this route/direction"}, status=404)
        return web.json_response({"routeId": route_id, "directionId": direction, "coordinates": coordinates})

    async def _handle_emission(self, request: web.Request) -> web.Response:
        emission = self.stop_service.route_emission(request.match_info['route_id'])
        if emission is None:
            return web.json_response({"error": "Emissions not found for this route"}, status=404)
        return web.json_response({"emission": emission})

    async def start(self, host: str = '0.0.0.0', port: int = 3000) -> None:
        logger.info(f"Starting web server on {host}:{port}")
        self.app = self.create_app()
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, host, port)
        await self.site.start()
        logger.info(f"Web server started on {host}:{port}")

    async def stop(self) -> None:
        """Release the listening socket. The hub closes connections first."""
        logger.info("Stopping web server...")
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()
        logger.info("Web server stopped")
