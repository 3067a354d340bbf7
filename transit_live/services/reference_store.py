"""
Static reference store.
Loads routes, stops, trips, shapes and service calendars once and answers
point lookups and the service-active predicate. Read-only after loading.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytz

from ..core.errors import ReferenceLoadFailure
from ..data.models.reference import (
    Route, Stop, Trip, ShapePoint, Calendar, CalendarDateException, Emission
)
from ..data.sources.static_files import StaticFileSource

logger = logging.getLogger(__name__)

REQUIRED_TABLES = (
    "routes.txt",
    "stops.txt",
    "trips.txt",
    "shapes.txt",
    "calendar.txt",
    "calendar_dates.txt",
)
EMISSIONS_TABLE = "emissions.txt"


class ReferenceStore:
    """Indexed static transit data. Every lookup misses until load() has finished."""

    def __init__(self, gtfs_dir: Union[str, Path], timezone: str = "Europe/Helsinki"):
        self.source = StaticFileSource(Path(gtfs_dir))
        self.local_tz = pytz.timezone(timezone)
        self.routes: Dict[str, Route] = {}
        self.stops: Dict[str, Stop] = {}
        self.trips: Dict[str, Trip] = {}
        self.trips_by_route_direction: Dict[Tuple[str, int], Trip] = {}
        self.shapes: Dict[str, List[ShapePoint]] = {}
        self.calendars: Dict[str, Calendar] = {}
        self.calendar_dates: Dict[str, Dict[str, CalendarDateException]] = {}
        self.emissions: Dict[str, Emission] = {}
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self):
        """Load every table. Raises ReferenceLoadFailure on a missing or
        unreadable required table; nothing is published in that case."""
        if not self.source.gtfs_dir.exists():
            raise ReferenceLoadFailure(
                "GTFS data directory", str(self.source.gtfs_dir),
                "download the GTFS static data and extract it there",
            )

        logger.info(f"Loading reference data from {self.source.gtfs_dir}")

        routes = self._index("routes.txt", Route.from_row, lambda r: r.route_id)
        logger.info(f"Loaded {len(routes)} routes")

        stops = self._index("stops.txt", Stop.from_row, lambda s: s.stop_id)
        logger.info(f"Loaded {len(stops)} stops")

        trips: Dict[str, Trip] = {}
        trips_by_route_direction: Dict[Tuple[str, int], Trip] = {}
        for trip in self._parse("trips.txt", Trip.from_row):
            trips[trip.trip_id] = trip
            # First trip in file order represents its (route, direction)
            trips_by_route_direction.setdefault((trip.route_id, trip.direction_id), trip)
        logger.info(f"Loaded {len(trips)} trips")

        grouped: Dict[str, List[ShapePoint]] = defaultdict(list)
        for shape_id, point in self._parse("shapes.txt", self._shape_row):
            grouped[shape_id].append(point)
        shapes = {}
        for shape_id, points in grouped.items():
            points.sort(key=lambda p: p.sequence)
            shapes[shape_id] = points
        logger.info(f"Loaded {len(shapes)} shapes")

        calendars = self._index("calendar.txt", Calendar.from_row, lambda c: c.service_id)

        calendar_dates: Dict[str, Dict[str, CalendarDateException]] = defaultdict(dict)
        for exception in self._parse("calendar_dates.txt", CalendarDateException.from_row):
            calendar_dates[exception.service_id].setdefault(exception.date, exception)
        logger.info(f"Loaded {len(calendars)} calendars and exceptions for {len(calendar_dates)} services")

        emissions: Dict[str, Emission] = {}
        emission_rows = self.source.read_table(EMISSIONS_TABLE, required=False)
        if emission_rows is not None:
            for row in emission_rows:
                emission = self._build(EMISSIONS_TABLE, Emission.from_row, row)
                emissions[emission.route_id] = emission
            logger.info(f"Loaded emissions data for {len(emissions)} routes")

        self.routes = routes
        self.stops = stops
        self.trips = trips
        self.trips_by_route_direction = trips_by_route_direction
        self.shapes = shapes
        self.calendars = calendars
        self.calendar_dates = dict(calendar_dates)
        self.emissions = emissions
        self._loaded = True
        logger.info("Reference data loaded successfully")

    async def load_async(self):
        """Run load() in the default executor so the event loop stays free"""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.load)

    def _build(self, file_name: str, factory: Callable, row: dict):
        try:
            return factory(row)
        except (KeyError, ValueError, TypeError) as e:
            raise ReferenceLoadFailure(
                file_name, str(self.source.path_for(file_name)), f"bad row {row!r}: {e}"
            ) from e

    def _parse(self, file_name: str, factory: Callable) -> List:
        rows = self.source.read_table(file_name, required=True)
        return [self._build(file_name, factory, row) for row in rows]

    def _index(self, file_name: str, factory: Callable, key: Callable) -> Dict:
        return {key(item): item for item in self._parse(file_name, factory)}

    @staticmethod
    def _shape_row(row: dict) -> Tuple[str, ShapePoint]:
        return str(row["shape_id"]).strip(), ShapePoint.from_row(row)

    # Lookups

    def _miss(self, what: str) -> None:
        logger.debug(f"Reference data not loaded yet, {what} lookup missed")
        return None

    def lookup_route(self, route_id: str) -> Optional[Route]:
        if not self._loaded:
            return self._miss("route")
        return self.routes.get(route_id)

    def lookup_stop(self, stop_id: str) -> Optional[Stop]:
        if not self._loaded:
            return self._miss("stop")
        return self.stops.get(stop_id)

    def all_stops(self) -> List[Stop]:
        if not self._loaded:
            return []
        return list(self.stops.values())

    def lookup_trip(self, route_id: str, direction_id: int) -> Optional[Trip]:
        """Representative trip for a route and direction"""
        if not self._loaded:
            return self._miss("trip")
        return self.trips_by_route_direction.get((route_id, int(direction_id)))

    def lookup_trip_by_id(self, trip_id: str) -> Optional[Trip]:
        if not self._loaded:
            return self._miss("trip")
        return self.trips.get(trip_id)

    def lookup_shape_points(self, shape_id: str) -> List[ShapePoint]:
        """Shape vertices ordered by ascending sequence"""
        if not self._loaded:
            return []
        return list(self.shapes.get(shape_id, ()))

    def lookup_shape_for_route(self, route_id: str, direction_id: int) -> List[ShapePoint]:
        trip = self.lookup_trip(route_id, direction_id)
        if trip is None or not trip.shape_id:
            return []
        return self.lookup_shape_points(trip.shape_id)

    def lookup_emission(self, route_id: str) -> Optional[Emission]:
        if not self._loaded:
            return self._miss("emission")
        return self.emissions.get(route_id)

    # Service calendar

    def is_service_active_on(self, service_id: str, day: Union[date, str]) -> bool:
        if not self._loaded:
            return False

        if isinstance(day, str):
            day = datetime.strptime(day, "%Y%m%d").date()
        date_str = day.strftime("%Y%m%d")

        # An exception for the exact date wins over the weekly pattern
        exception = self.calendar_dates.get(service_id, {}).get(date_str)
        if exception is not None:
            return exception.is_added

        calendar = self.calendars.get(service_id)
        if calendar is None:
            return False
        if not calendar.covers(date_str):
            return False
        return calendar.runs_on_weekday(day)

    def today(self) -> date:
        return datetime.now(self.local_tz).date()

    def is_service_active_today(self, service_id: str) -> bool:
        return self.is_service_active_on(service_id, self.today())
