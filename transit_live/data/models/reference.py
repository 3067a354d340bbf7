"""
Static reference data models.
Immutable records built from the flat GTFS tables, loaded once per process.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional

WEEKDAY_FIELDS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
ACTIVE_MARKER = "1"
EXCEPTION_ADDED = "1"


def _clean(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_float(value) -> Optional[float]:
    text = _clean(value)
    if not text:
        return None
    return float(text)


def _optional_int(value, default: int = 0) -> int:
    text = _clean(value)
    if not text:
        return default
    return int(float(text))


@dataclass(frozen=True)
class Route:
    """Immutable route record"""
    route_id: str
    short_name: str
    long_name: str
    route_type: int
    route_url: str = ""

    @classmethod
    def from_row(cls, row: dict) -> 'Route':
        return cls(
            route_id=_clean(row["route_id"]),
            short_name=_clean(row.get("route_short_name")),
            long_name=_clean(row.get("route_long_name")),
            route_type=_optional_int(row.get("route_type"), default=-1),
            route_url=_clean(row.get("route_url")),
        )


@dataclass(frozen=True)
class Stop:
    """Immutable stop record. Generic nodes and boarding areas may have no coordinates."""
    stop_id: str
    name: str
    latitude: Optional[float]
    longitude: Optional[float]
    code: str = ""
    location_type: int = 0

    @classmethod
    def from_row(cls, row: dict) -> 'Stop':
        return cls(
            stop_id=_clean(row["stop_id"]),
            name=_clean(row.get("stop_name")),
            latitude=_optional_float(row.get("stop_lat")),
            longitude=_optional_float(row.get("stop_lon")),
            code=_clean(row.get("stop_code")),
            location_type=_optional_int(row.get("location_type")),
        )

    def to_dict(self) -> dict:
        return {
            "stopId": self.stop_id,
            "name": self.name,
            "lat": self.latitude,
            "lon": self.longitude,
        }

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class Trip:
    """Immutable trip record. direction_id is 0 or 1."""
    trip_id: str
    route_id: str
    service_id: str
    direction_id: int
    headsign: str
    shape_id: str

    @classmethod
    def from_row(cls, row: dict) -> 'Trip':
        return cls(
            trip_id=_clean(row["trip_id"]),
            route_id=_clean(row["route_id"]),
            service_id=_clean(row.get("service_id")),
            direction_id=_optional_int(row.get("direction_id")),
            headsign=_clean(row.get("trip_headsign")),
            shape_id=_clean(row.get("shape_id")),
        )


@dataclass(frozen=True)
class ShapePoint:
    """One vertex of a shape polyline"""
    latitude: float
    longitude: float
    sequence: int

    @classmethod
    def from_row(cls, row: dict) -> 'ShapePoint':
        return cls(
            latitude=float(row["shape_pt_lat"]),
            longitude=float(row["shape_pt_lon"]),
            sequence=int(float(row["shape_pt_sequence"])),
        )


@dataclass(frozen=True)
class Calendar:
    """Weekly service pattern for one service_id"""
    service_id: str
    monday: str
    tuesday: str
    wednesday: str
    thursday: str
    friday: str
    saturday: str
    sunday: str
    start_date: str  # YYYYMMDD
    end_date: str  # YYYYMMDD

    @classmethod
    def from_row(cls, row: dict) -> 'Calendar':
        return cls(
            service_id=_clean(row["service_id"]),
            start_date=_clean(row["start_date"]),
            end_date=_clean(row["end_date"]),
            **{day: _clean(row.get(day)) for day in WEEKDAY_FIELDS},
        )

    def runs_on_weekday(self, day: date) -> bool:
        return getattr(self, WEEKDAY_FIELDS[day.weekday()]) == ACTIVE_MARKER

    def covers(self, date_str: str) -> bool:
        # YYYYMMDD strings order the same way as the dates they encode
        return self.start_date <= date_str <= self.end_date


@dataclass(frozen=True)
class CalendarDateException:
    """Explicit per-date override of a Calendar (1 = added, 2 = removed)"""
    service_id: str
    date: str  # YYYYMMDD
    exception_type: str

    @classmethod
    def from_row(cls, row: dict) -> 'CalendarDateException':
        return cls(
            service_id=_clean(row["service_id"]),
            date=_clean(row["date"]),
            exception_type=_clean(row["exception_type"]),
        )

    @property
    def is_added(self) -> bool:
        return self.exception_type == EXCEPTION_ADDED


@dataclass(frozen=True)
class Emission:
    """Per-route emission figures; columns are kept as published"""
    route_id: str
    values: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict) -> 'Emission':
        return cls(
            route_id=_clean(row["route_id"]),
            values={key: _clean(value) for key, value in row.items()},
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        return dict(self.values)
