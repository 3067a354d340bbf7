"""
Snapshot diffing.
Reduces two consecutive full snapshots to the minimal added/updated/removed delta.
"""

import math
from typing import List

from ..data.models.vehicle import Delta, Snapshot, VehicleSnapshotRecord

# Display-only fields (names, headsign) never count as a change
COMPARABLE_FIELDS = (
    "latitude",
    "longitude",
    "bearing",
    "speed",
    "stop_id",
    "current_status",
)


def _same(before, after) -> bool:
    # NaN never equals itself
    if isinstance(before, float) and isinstance(after, float) and math.isnan(before) and math.isnan(after):
        return True
    return before == after


def has_changed(previous: VehicleSnapshotRecord, current: VehicleSnapshotRecord) -> bool:
    return any(not _same(getattr(previous, name), getattr(current, name)) for name in COMPARABLE_FIELDS)


def diff(previous: Snapshot, current: Snapshot) -> Delta:
    added: List[VehicleSnapshotRecord] = []
    updated: List[VehicleSnapshotRecord] = []
    for vehicle_id, record in current.items():
        before = previous.get(vehicle_id)
        if before is None:
            added.append(record)
        elif has_changed(before, record):
            updated.append(record)

    removed = [vehicle_id for vehicle_id in previous if vehicle_id not in current]
    return Delta(added=tuple(added), updated=tuple(updated), removed=tuple(removed))
