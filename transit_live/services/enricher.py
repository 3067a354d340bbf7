"""
Vehicle enrichment.
Joins raw GTFS-RT vehicle positions with static reference data into
display-ready VehicleSnapshotRecords.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Dict, Optional

from google.transit import gtfs_realtime_pb2

from ..core.errors import EnrichmentSkip
from ..data.models.vehicle import VehicleSnapshotRecord
from .reference_store import ReferenceStore

logger = logging.getLogger(__name__)

VehiclePosition = gtfs_realtime_pb2.VehiclePosition

# Realtime variants of one logical tram line
ROUTE_ID_ALIASES = {
    "100HE": "100H",
    "100HI": "100H",
    "100HA": "100H",
    "100HF": "100H",
    "100HC": "100H",
}

# Exact codes are checked before the ranges, so 702 (trunk bus) beats 700-799
EXACT_ROUTE_TYPES = {
    0: "tram",
    1: "metro",
    2: "train",
    3: "bus",
    4: "ferry",
    109: "train",
    702: "trunk",
}
ROUTE_TYPE_RANGES = (
    (100, 199, "train"),
    (400, 499, "metro"),
    (700, 799, "bus"),
    (900, 999, "tram"),
    (1000, 1099, "ferry"),
)
UNKNOWN_VEHICLE_TYPE = "unknown"

# Keyed by OccupancyStatus enum name; None means "nothing to show"
OCCUPANCY_LABELS = {
    "EMPTY": "Empty",
    "MANY_SEATS_AVAILABLE": "Many seats available",
    "FEW_SEATS_AVAILABLE": "Few seats available",
    "STANDING_ROOM_ONLY": "Standing room only",
    "CRUSHED_STANDING_ROOM_ONLY": "Crushed standing room only",
    "FULL": "Full",
    "NOT_ACCEPTING_PASSENGERS": "Not accepting passengers",
    "NOT_BOARDABLE": "Not boardable",
    "NO_DATA_AVAILABLE": None,
    "UNKNOWN": None,
}


def normalize_route_id(route_id: str) -> str:
    return ROUTE_ID_ALIASES.get(route_id, route_id)


def classify_vehicle_type(route_type: Optional[int]) -> str:
    if route_type is None:
        return UNKNOWN_VEHICLE_TYPE
    if route_type in EXACT_ROUTE_TYPES:
        return EXACT_ROUTE_TYPES[route_type]
    for low, high, label in ROUTE_TYPE_RANGES:
        if low <= route_type <= high:
            return label
    return UNKNOWN_VEHICLE_TYPE


def format_speed(meters_per_second: Optional[float]) -> str:
    """m/s -> rounded km/h display string, e.g. 10 -> '36 km/h'"""
    if meters_per_second is None or math.isnan(meters_per_second):
        return "0 km/h"
    kmh = meters_per_second * 3.6
    return f"{int(math.floor(kmh + 0.5))} km/h"


def occupancy_label(status: Optional[int]) -> Optional[str]:
    if status is None:
        return None
    try:
        name = VehiclePosition.OccupancyStatus.Name(status)
    except ValueError:
        name = "UNKNOWN"
    return OCCUPANCY_LABELS.get(name)


def stop_status_name(status: int) -> str:
    try:
        return VehiclePosition.VehicleStopStatus.Name(status)
    except ValueError:
        return ""


def format_timestamp(epoch_seconds: int) -> str:
    if not epoch_seconds:
        return ""
    try:
        return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()
    except (OverflowError, ValueError, OSError):
        logger.debug(f"Timestamp {epoch_seconds} out of range")
        return ""


def finite_or_zero(value: float) -> float:
    """Non-finite readings become 0.0"""
    return value if math.isfinite(value) else 0.0


class VehicleEnricher:
    """Turns a decoded FeedMessage into a Snapshot keyed by vehicle id"""

    def __init__(self, reference_store: ReferenceStore):
        self.reference_store = reference_store

    def normalize(self, feed: gtfs_realtime_pb2.FeedMessage) -> Dict[str, VehicleSnapshotRecord]:
        snapshot: Dict[str, VehicleSnapshotRecord] = {}
        skipped = 0
        for entity in feed.entity:
            if not entity.HasField("vehicle"):
                continue
            try:
                record = self.build_record(entity)
            except EnrichmentSkip as e:
                skipped += 1
                logger.debug(str(e))
                continue
            except Exception:
                skipped += 1
                logger.exception(f"Unexpected error building record for entity {entity.id!r}")
                continue
            snapshot[record.vehicle_id] = record

        if skipped:
            logger.info(f"Skipped {skipped} unusable feed entities")
        logger.debug(f"Normalized {len(snapshot)} vehicles from {len(feed.entity)} entities")
        return snapshot

    def build_record(self, entity: gtfs_realtime_pb2.FeedEntity) -> VehicleSnapshotRecord:
        vehicle = entity.vehicle

        # Some producers leave the inner descriptor id empty
        vehicle_id = vehicle.vehicle.id if vehicle.HasField("vehicle") else ""
        vehicle_id = vehicle_id or entity.id
        if not vehicle_id:
            raise EnrichmentSkip(entity.id, "no vehicle id")

        trip = vehicle.trip
        route_id = normalize_route_id(trip.route_id)
        direction_id = trip.direction_id

        position = vehicle.position
        fields = {
            "vehicle_id": vehicle_id,
            "route_id": route_id,
            "direction_id": direction_id,
            "latitude": finite_or_zero(position.latitude),
            "longitude": finite_or_zero(position.longitude),
            "bearing": finite_or_zero(position.bearing),
            "speed": format_speed(position.speed if position.HasField("speed") else None),
            "timestamp": format_timestamp(vehicle.timestamp),
            "stop_id": vehicle.stop_id,
            "current_status": stop_status_name(vehicle.current_status),
            "occupancy_status": occupancy_label(
                vehicle.occupancy_status if vehicle.HasField("occupancy_status") else None
            ),
            "start_time": trip.start_time,
        }

        try:
            fields.update(self._reference_fields(route_id, direction_id, vehicle.stop_id))
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            # Keep the position, lose the display names
            logger.debug(f"Reference join failed for vehicle {vehicle_id}: {e}")

        return VehicleSnapshotRecord(**fields)

    def _reference_fields(self, route_id: str, direction_id: int, stop_id: str) -> Dict[str, object]:
        store = self.reference_store
        route = store.lookup_route(route_id) if route_id else None
        trip = store.lookup_trip(route_id, direction_id) if route_id else None
        stop = store.lookup_stop(stop_id) if stop_id else None
        return {
            "route_name": route.short_name if route else "",
            "route_long_name": route.long_name if route else "",
            "headsign": trip.headsign if trip else "",
            "stop_name": stop.name if stop else "",
            "vehicle_type": classify_vehicle_type(route.route_type if route else None),
        }
