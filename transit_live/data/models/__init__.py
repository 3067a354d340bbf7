"""
Data models module.
Exports all data model classes.
"""

from .reference import (
    Route, Stop, Trip, ShapePoint, Calendar, CalendarDateException, Emission
)
from .vehicle import VehicleSnapshotRecord, Snapshot, Delta

__all__ = [
    "Route",
    "Stop",
    "Trip",
    "ShapePoint",
    "Calendar",
    "CalendarDateException",
    "Emission",
    "VehicleSnapshotRecord",
    "Snapshot",
    "Delta",
]
