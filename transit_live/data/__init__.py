"""
Data layer module.
Exports all data layer components including models, sources, and repositories.
"""

from .models import (
    Route, Stop, Trip, ShapePoint, Calendar, CalendarDateException, Emission,
    VehicleSnapshotRecord, Snapshot, Delta
)
from .sources import StaticFileSource, RealtimeFeedClient, decode_feed
from .repositories import StopTimeRepository

__all__ = [
    # Models
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

    # Sources
    "StaticFileSource",
    "RealtimeFeedClient",
    "decode_feed",

    # Repositories
    "StopTimeRepository",
]
