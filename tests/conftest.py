from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import pytest
from google.transit import gtfs_realtime_pb2

from transit_live.services.reference_store import ReferenceStore

TABLES = {
    "routes.txt": """route_id,route_short_name,route_long_name,route_type
1001,1,Eira - Kallio,0
2550,550,Itäkeskus - Westendinasema,702
2100,100,Kamppi - Munkkiniemi,700
1006,6,Hietalahti - Arabia,900
100H,H,Harbour tram,0
""",
    "stops.txt": """stop_id,stop_name,stop_lat,stop_lon
1010101,Senaatintori,60.1695,24.9525
1020202,Kamppi,60.1690,24.9320
1030303,Pasila,60.1986,24.9331
""",
    "trips.txt": """route_id,service_id,trip_id,trip_headsign,direction_id,shape_id
1001,WKDY,1001_1,Kallio,0,shp_1001_0
1001,WKDY,1001_2,Kallio (late),0,shp_1001_late
1001,WKDY,1001_3,Eira,1,shp_1001_1
2550,WKND,2550_1,Itäkeskus,0,shp_2550_0
""",
    # Deliberately out of order; 10 must sort after 3
    "shapes.txt": """shape_id,shape_pt_lat,shape_pt_lon,shape_pt_sequence
shp_1001_0,60.3,24.3,3
shp_1001_0,60.1,24.1,1
shp_1001_0,60.4,24.4,10
shp_1001_0,60.2,24.2,2
shp_1001_1,60.2,24.2,2
shp_1001_1,60.1,24.1,1
""",
    "calendar.txt": """service_id,monday,tuesday,wednesday,thursday,friday,saturday,sunday,start_date,end_date
ALLDAYS,1,1,1,1,1,1,1,20240101,20241231
WKDY,1,1,1,1,1,0,0,20240101,20241231
WKND,0,0,0,0,0,1,1,20240101,20241231
""",
    "calendar_dates.txt": """service_id,date,exception_type
ALLDAYS,20240610,2
WKND,20240612,1
EXTRA,20240615,1
""",
    "stop_times.txt": """trip_id,arrival_time,departure_time,stop_id,stop_sequence
1001_1,08:10:00,08:10:00,1030303,3
1001_1,08:00:00,08:00:00,1010101,1
1001_1,08:05:00,08:05:30,1020202,2
2550_1,09:00:00,09:00:00,1010101,1
1001_3,07:00:00,07:00:00,1010101,1
""",
    "emissions.txt": """route_id,avg_co2_g_per_km
1001,0
2550,812
""",
}


def write_gtfs(directory: Path, skip: tuple = (), overrides: Optional[dict] = None) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    tables = dict(TABLES)
    tables.update(overrides or {})
    for name, content in tables.items():
        if name in skip:
            continue
        (directory / name).write_text(content, encoding="utf-8")
    return directory


def make_entity(
    entity_id: str,
    vehicle_id: str = "",
    route_id: str = "1001",
    direction_id: int = 0,
    lat: float = 60.17,
    lon: float = 24.94,
    bearing: float = 90.0,
    speed: Optional[float] = None,
    stop_id: str = "",
    status: Optional[int] = None,
    occupancy: Optional[int] = None,
    start_time: str = "08:00:00",
    timestamp: int = 1718000000,
) -> gtfs_realtime_pb2.FeedEntity:
    entity = gtfs_realtime_pb2.FeedEntity()
    entity.id = entity_id
    vehicle = entity.vehicle
    vehicle.trip.route_id = route_id
    vehicle.trip.direction_id = direction_id
    vehicle.trip.start_time = start_time
    if vehicle_id:
        vehicle.vehicle.id = vehicle_id
    vehicle.position.latitude = lat
    vehicle.position.longitude = lon
    vehicle.position.bearing = bearing
    if speed is not None:
        vehicle.position.speed = speed
    if stop_id:
        vehicle.stop_id = stop_id
    if status is not None:
        vehicle.current_status = status
    if occupancy is not None:
        vehicle.occupancy_status = occupancy
    vehicle.timestamp = timestamp
    return entity


def make_feed(*entities: gtfs_realtime_pb2.FeedEntity) -> gtfs_realtime_pb2.FeedMessage:
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = 1718000000
    for entity in entities:
        feed.entity.append(entity)
    return feed


class FakeFeedClient:
    """Returns queued results in order; exceptions are raised"""

    def __init__(self, results=None):
        self.results = list(results or [])
        self.calls = 0
        self.closed = False

    async def fetch(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result

    async def close(self):
        self.closed = True


class FakeTransport:
    """Stands in for a WebSocket"""

    def __init__(self, fail_send: bool = False):
        self.sent = []
        self.pings = 0
        self.closed = False
        self.fail_send = fail_send

    async def send_str(self, data: str):
        if self.fail_send or self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    async def ping(self, message: bytes = b""):
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.pings += 1

    async def close(self):
        self.closed = True


@pytest.fixture
def gtfs_dir(tmp_path: Path) -> Path:
    return write_gtfs(tmp_path / "gtfs-static")


@pytest.fixture
def store(gtfs_dir: Path) -> ReferenceStore:
    reference_store = ReferenceStore(gtfs_dir)
    reference_store.load()
    return reference_store


class StalledTransport(FakeTransport):
    """A peer that stopped reading: writes and pings never complete"""

    def __init__(self):
        super().__init__()
        self._never = asyncio.Event()

    async def send_str(self, data: str):
        await self._never.wait()

    async def ping(self, message: bytes = b""):
        await self._never.wait()
