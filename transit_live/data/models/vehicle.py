"""
Vehicle data models.
Immutable enriched vehicle records and the deltas computed between snapshots.
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class VehicleSnapshotRecord:
    """Immutable enriched vehicle position, keyed by vehicle_id"""
    vehicle_id: str
    route_id: str = ""
    route_name: str = ""
    route_long_name: str = ""
    direction_id: int = 0
    headsign: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    bearing: float = 0.0
    speed: str = "0 km/h"
    timestamp: str = ""
    stop_id: str = ""
    stop_name: str = ""
    current_status: str = ""
    occupancy_status: Optional[str] = None
    start_time: str = ""
    vehicle_type: str = "unknown"

    def to_dict(self) -> Dict[str, object]:
        return {
            "vehicleId": self.vehicle_id,
            "routeId": self.route_id,
            "routeName": self.route_name,
            "routeLongName": self.route_long_name,
            "directionId": self.direction_id,
            "headsign": self.headsign,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "bearing": self.bearing,
            "speed": self.speed,
            "timestamp": self.timestamp,
            "stopId": self.stop_id,
            "stopName": self.stop_name,
            "currentStatus": self.current_status,
            "occupancyStatus": self.occupancy_status,
            "startTime": self.start_time,
            "vehicleType": self.vehicle_type,
        }


# World state as of the last successful poll. Always replaced, never edited.
Snapshot = Mapping[str, VehicleSnapshotRecord]


@dataclass(frozen=True)
class Delta:
    """Added/updated/removed reduction between two consecutive snapshots"""
    added: Tuple[VehicleSnapshotRecord, ...] = field(default_factory=tuple)
    updated: Tuple[VehicleSnapshotRecord, ...] = field(default_factory=tuple)
    removed: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed)

    def to_dict(self) -> Dict[str, list]:
        return {
            "added": [record.to_dict() for record in self.added],
            "updated": [record.to_dict() for record in self.updated],
            "removed": list(self.removed),
        }
