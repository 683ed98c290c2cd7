import pytest

from models import Stop, SyncStatus, Trip, TripVehicleSegment, Vehicle
from models.segment import mark_initial
from models.trip import is_placeholder, new_placeholder_id, stop_changes, trip_changes
from services.trip_store import TripStore


def test_stop_cost_is_cents_in_backend_rows():
    stop = Stop.from_row({"id": 7, "trip_id": "t1", "cost": 1999})
    assert stop.id == "7"
    assert stop.cost == 19.99
    assert stop.to_row()["cost"] == 1999
    assert stop_changes({"cost": 3.5}) == {"cost": 350}


def test_trip_changes_keep_known_columns():
    assert trip_changes({"name": "A", "status": "completed"}) == {"name": "A", "status": "completed"}
    with pytest.raises(ValueError):
        trip_changes({"id": "x"})


def test_trip_from_row_defaults():
    trip = Trip.from_row({"id": "t1", "name": "Serra", "vehicle_ids": None, "status": None})
    assert trip.status == "ongoing"
    assert trip.vehicle_ids == []
    assert trip.is_local is False


def test_vehicle_from_row_dedupes_fuels_and_is_synced():
    vehicle = Vehicle.from_row({"id": "v1", "fuels": ["gasolina", "gasolina", "gnv"], "active": None})
    assert vehicle.fuels == ["gasolina", "gnv"]
    assert vehicle.active is True
    assert vehicle.sync_status == SyncStatus.SYNCED


def test_placeholder_ids():
    assert is_placeholder(new_placeholder_id())
    assert not is_placeholder("srv-1")
    assert not is_placeholder(None)


def test_mark_initial_leaves_explicit_flag_alone():
    segments = [
        TripVehicleSegment(id="a", trip_id="t", vehicle_id="v", segment_date="2024-01-02"),
        TripVehicleSegment(id="b", trip_id="t", vehicle_id="v", segment_date="2024-01-01"),
        TripVehicleSegment(id="c", trip_id="t", vehicle_id="w", segment_date="2024-01-01", is_initial=False),
        TripVehicleSegment(id="d", trip_id="t", vehicle_id="w", segment_date="2024-01-03", is_initial=True),
    ]

    flagged = {s.id for s in mark_initial(segments) if s.is_initial}

    assert flagged == {"b", "d"}


def test_segment_row_omits_unset_flags():
    segment = TripVehicleSegment(id="a", trip_id="t", vehicle_id="v", segment_date="2024-01-01", tank_full=True)
    assert segment.to_row() == {
        "trip_id": "t",
        "vehicle_id": "v",
        "segment_date": "2024-01-01",
        "initial_km": 0,
        "current_km": 0,
        "tank_full": True,
    }
    assert "tank_full" not in segment.to_row(with_flags=False)


def test_store_rename_trip_moves_stops():
    store = TripStore()
    store.add_trip(Trip(id="local-1", stops=[Stop(id="s1", trip_id="local-1")]))

    assert store.rename_trip_id("local-1", "srv-1") == 1

    trip = store.get_trip("srv-1")
    assert trip.stops[0].trip_id == "srv-1"
    assert store.get_trip("local-1") is None


def test_store_rename_vehicle_rewrites_trip_links():
    store = TripStore()
    store.add_vehicle(Vehicle(id="local-v"))
    store.add_trip(Trip(id="t1", vehicle_ids=["local-v", "srv-9"]))
    store.add_trip(Trip(id="t2", vehicle_ids=["srv-2", "local-v"]))
    calls = []
    store.subscribe(lambda: calls.append(1))

    store.rename_vehicle_id("local-v", "srv-2")

    assert store.get_vehicle("srv-2") is not None
    assert store.get_trip("t1").vehicle_ids == ["srv-2", "srv-9"]
    assert store.get_trip("t2").vehicle_ids == ["srv-2"]
    assert calls == [1]


def test_store_listener_errors_do_not_break_mutations():
    store = TripStore()

    def broken():
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.add_trip(Trip(id="t1"))

    assert [t.id for t in store.trips] == ["t1"]
