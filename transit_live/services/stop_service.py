"""
Stop, shape and emission queries behind the REST endpoints.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..data.repositories.stop_time_repo import StopTimeRepository
from .reference_store import ReferenceStore

logger = logging.getLogger(__name__)


class StopService:
    """Read-only queries over the reference store and stop-time store"""

    def __init__(self, reference_store: ReferenceStore, stop_time_repo: StopTimeRepository):
        self.reference_store = reference_store
        self.stop_time_repo = stop_time_repo

    def all_stops(self) -> List[Dict]:
        return [stop.to_dict() for stop in self.reference_store.all_stops()]

    def stops_in_bounds(self, min_lat: float, max_lat: float, min_lon: float, max_lon: float) -> List[Dict]:
        return [
            stop.to_dict()
            for stop in self.reference_store.all_stops()
            if stop.has_position
            and min_lat <= stop.latitude <= max_lat and min_lon <= stop.longitude <= max_lon
        ]

    async def departures_for_stop(self, stop_id: str, now: Optional[datetime] = None) -> List[Dict]:
        """Upcoming departures today, in departure order"""
        store = self.reference_store
        now = now or datetime.now(store.local_tz)
        current_time = now.strftime("%H:%M:%S")
        today = now.date()

        departures = []
        for stop_time in await self.stop_time_repo.departures_from(stop_id, current_time):
            trip = store.lookup_trip_by_id(stop_time["trip_id"])
            if trip is None or not store.is_service_active_on(trip.service_id, today):
                continue
            route = store.lookup_route(trip.route_id)
            departures.append({
                "route_id": trip.route_id,
                "route_name": route.short_name if route else "",
                "headsign": trip.headsign,
                "departure_time": stop_time["departure_time"],
            })
        return departures

    async def stop_with_departures(self, stop_id: str, now: Optional[datetime] = None) -> Optional[Dict]:
        stop = self.reference_store.lookup_stop(stop_id)
        if stop is None:
            return None
        result = stop.to_dict()
        result["departures"] = await self.departures_for_stop(stop_id, now)
        return result

    async def stops_for_route(self, route_id: str, direction_id: int) -> List[Dict]:
        trip = self.reference_store.lookup_trip(route_id, direction_id)
        if trip is None:
            return []

        stops = []
        for stop_time in await self.stop_time_repo.stop_times_for_trip(trip.trip_id):
            stop = self.reference_store.lookup_stop(stop_time["stop_id"])
            if stop is None:
                logger.debug(f"Stop {stop_time['stop_id']} of trip {trip.trip_id} missing from stops.txt")
                continue
            entry = stop.to_dict()
            entry["arrivalTime"] = stop_time["arrival_time"]
            entry["sequence"] = stop_time["stop_sequence"]
            stops.append(entry)
        return stops

    def route_shape(self, route_id: str, direction_id: int) -> List[Dict[str, float]]:
        points = self.reference_store.lookup_shape_for_route(route_id, direction_id)
        return [{"lat": p.latitude, "lon": p.longitude} for p in points]

    def route_emission(self, route_id: str) -> Optional[Dict]:
        emission = self.reference_store.lookup_emission(route_id)
        return emission.to_dict() if emission else None
