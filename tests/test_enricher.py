from __future__ import annotations

import json

import pytest
from google.transit import gtfs_realtime_pb2

from conftest import make_entity, make_feed
from transit_live.services.enricher import (
    ROUTE_ID_ALIASES,
    VehicleEnricher,
    classify_vehicle_type,
    format_speed,
    normalize_route_id,
    occupancy_label,
)
from transit_live.services.reference_store import ReferenceStore

VehiclePosition = gtfs_realtime_pb2.VehiclePosition


def test_speed_formatting() -> None:
    assert format_speed(10) == "36 km/h"
    assert format_speed(0) == "0 km/h"
    assert format_speed(None) == "0 km/h"
    assert format_speed(float("nan")) == "0 km/h"
    assert format_speed(1.25) == "5 km/h"  # 4.5 rounds up
    assert format_speed(13.9) == "50 km/h"


def test_route_aliases_collapse_to_one_canonical_id() -> None:
    canonical = {normalize_route_id(alias) for alias in ROUTE_ID_ALIASES}
    assert canonical == {"100H"}
    for alias in ("100HE", "100HI", "100HA", "100HF", "100HC"):
        assert normalize_route_id(alias) == "100H"
    assert normalize_route_id("1001") == "1001"
    assert normalize_route_id("100HX") == "100HX"


@pytest.mark.parametrize(
    ("route_type", "expected"),
    [
        (702, "trunk"),
        (700, "bus"),
        (799, "bus"),
        (3, "bus"),
        (0, "tram"),
        (900, "tram"),
        (1, "metro"),
        (109, "train"),
        (4, "ferry"),
        (1000, "ferry"),
        (5, "unknown"),
        (None, "unknown"),
    ],
)
def test_vehicle_type_buckets(route_type, expected) -> None:
    assert classify_vehicle_type(route_type) == expected


def test_occupancy_labels() -> None:
    assert occupancy_label(VehiclePosition.OccupancyStatus.Value("FEW_SEATS_AVAILABLE")) == "Few seats available"
    assert occupancy_label(VehiclePosition.OccupancyStatus.Value("FULL")) == "Full"
    assert occupancy_label(VehiclePosition.OccupancyStatus.Value("NO_DATA_AVAILABLE")) is None
    assert occupancy_label(99) is None
    assert occupancy_label(None) is None


def test_normalize_joins_reference_data(store: ReferenceStore) -> None:
    feed = make_feed(
        make_entity(
            "e1",
            vehicle_id="HSL:1001/12",
            route_id="1001",
            direction_id=0,
            lat=60.17,
            lon=24.94,
            speed=10.0,
            stop_id="1010101",
            status=VehiclePosition.VehicleStopStatus.Value("STOPPED_AT"),
            occupancy=VehiclePosition.OccupancyStatus.Value("MANY_SEATS_AVAILABLE"),
        )
    )

    snapshot = VehicleEnricher(store).normalize(feed)

    record = snapshot["HSL:1001/12"]
    assert record.route_id == "1001"
    assert record.route_name == "1"
    assert record.route_long_name == "Eira - Kallio"
    assert record.headsign == "Kallio"
    assert record.stop_name == "Senaatintori"
    assert record.current_status == "STOPPED_AT"
    assert record.occupancy_status == "Many seats available"
    assert record.vehicle_type == "tram"
    assert record.speed == "36 km/h"
    assert record.latitude == pytest.approx(60.17, abs=1e-5)
    assert record.start_time == "08:00:00"
    assert record.timestamp.startswith("2024-06-10T")


def test_normalize_uses_canonical_route_for_lookups(store: ReferenceStore) -> None:
    snapshot = VehicleEnricher(store).normalize(make_feed(make_entity("e1", vehicle_id="v1", route_id="100HE")))
    record = snapshot["v1"]
    assert record.route_id == "100H"
    assert record.route_name == "H"


def test_vehicle_id_falls_back_to_entity_id(store: ReferenceStore) -> None:
    snapshot = VehicleEnricher(store).normalize(make_feed(make_entity("entity-7")))
    assert list(snapshot) == ["entity-7"]


def test_missing_references_degrade_to_blank_fields(store: ReferenceStore) -> None:
    feed = make_feed(make_entity("e1", vehicle_id="v1", route_id="9999", stop_id="nowhere"))
    record = VehicleEnricher(store).normalize(feed)["v1"]
    assert record.route_name == ""
    assert record.route_long_name == ""
    assert record.headsign == ""
    assert record.stop_name == ""
    assert record.stop_id == "nowhere"
    assert record.vehicle_type == "unknown"
    assert record.occupancy_status is None


def test_unloaded_store_still_yields_positions(gtfs_dir) -> None:
    store = ReferenceStore(gtfs_dir)
    record = VehicleEnricher(store).normalize(make_feed(make_entity("e1", vehicle_id="v1")))["v1"]
    assert record.route_id == "1001"
    assert record.route_name == ""
    assert record.longitude == pytest.approx(24.94, abs=1e-5)


def test_entities_without_positions_or_identity_are_skipped(store: ReferenceStore) -> None:
    no_vehicle = gtfs_realtime_pb2.FeedEntity()
    no_vehicle.id = "alert-1"
    no_vehicle.alert.header_text.translation.add().text = "Detour"

    feed = make_feed(no_vehicle, make_entity("", vehicle_id=""), make_entity("e3", vehicle_id="v3"))
    snapshot = VehicleEnricher(store).normalize(feed)
    assert list(snapshot) == ["v3"]


def test_duplicate_vehicle_ids_keep_the_last_entity(store: ReferenceStore) -> None:
    feed = make_feed(
        make_entity("e1", vehicle_id="v1", lat=60.1),
        make_entity("e2", vehicle_id="v1", lat=60.2),
    )
    snapshot = VehicleEnricher(store).normalize(feed)
    assert snapshot["v1"].latitude == pytest.approx(60.2, abs=1e-5)


def test_out_of_range_timestamp_does_not_drop_the_batch(store: ReferenceStore) -> None:
    feed = make_feed(
        make_entity("e1", vehicle_id="good"),
        make_entity("e2", vehicle_id="bad", timestamp=2**63),
    )
    snapshot = VehicleEnricher(store).normalize(feed)
    assert set(snapshot) == {"good", "bad"}
    assert snapshot["bad"].timestamp == ""
    assert snapshot["good"].timestamp.startswith("2024-06-10T")


def test_unexpected_entity_error_skips_only_that_entity(store: ReferenceStore, monkeypatch) -> None:
    enricher = VehicleEnricher(store)
    build = enricher.build_record

    def flaky(entity):
        if entity.id == "e2":
            raise RuntimeError("corrupt entity")
        return build(entity)

    monkeypatch.setattr(enricher, "build_record", flaky)
    snapshot = enricher.normalize(make_feed(make_entity("e1", vehicle_id="v1"), make_entity("e2", vehicle_id="v2")))
    assert list(snapshot) == ["v1"]


def test_non_finite_position_is_zeroed(store: ReferenceStore) -> None:
    feed = make_feed(make_entity("e1", vehicle_id="v1", lat=float("nan"), bearing=float("inf")))
    record = VehicleEnricher(store).normalize(feed)["v1"]
    assert record.latitude == 0.0
    assert record.bearing == 0.0
    assert json.loads(json.dumps(record.to_dict(), allow_nan=False))["latitude"] == 0.0
