import pytest

from models import Stop, Trip
from services.backend import BackendError


def _online(stack):
    stack.monitor.set_online(True)


def test_offline_stop_is_attached_and_cached(stack):
    stack.store.add_trip(Trip(id="t1"))

    stop = stack.stops.save_stop({"trip_id": "t1", "name": "Posto", "cost": 35.9})

    assert stack.store.get_trip("t1").stops == [stop]
    cached = stack.cache.load().trips[0]["stops"]
    assert cached[0]["name"] == "Posto"
    assert cached[0]["cost"] == 35.9
    assert stack.queue.count() == 0


def test_stop_requires_a_trip(stack):
    with pytest.raises(ValueError):
        stack.stops.save_stop({"name": "Sem viagem"})


def test_online_stop_stores_cost_in_cents(stack):
    trip_id = stack.backend.seed("trips", name="Beach", user_id="user-1")
    stack.store.add_trip(Trip(id=trip_id))
    _online(stack)

    stop = stack.stops.save_stop(
        {"trip_id": trip_id, "name": "Pedágio", "cost": 12.5, "cost_details": [{"label": "tag", "value": 12.5}]}
    )

    [row] = stack.backend.tables["stops"]
    assert row["cost"] == 1250
    assert stop.id == row["id"]
    assert stop.cost == 12.5
    assert stop.cost_details == [{"label": "tag", "value": 12.5}]


def test_online_failure_keeps_stop_locally_and_raises(stack):
    stack.store.add_trip(Trip(id="t1"))
    _online(stack)
    stack.backend.fail("insert", "stops")

    with pytest.raises(BackendError, match="Dados salvos localmente"):
        stack.stops.save_stop({"trip_id": "t1", "name": "Posto"})

    assert [s.name for s in stack.store.get_trip("t1").stops] == ["Posto"]


def test_driving_stop_moves_current_km_of_first_vehicle(stack):
    stack.store.add_trip(Trip(id="t1", vehicle_ids=["v1"], has_vehicle=True))
    stack.segments.save_trip_vehicle_segment("t1", "v1", "2024-03-02", 100, 100)

    stack.stops.save_stop({"trip_id": "t1", "was_driving": True, "arrival_km": 180})

    [segment] = stack.segments.cached("t1")
    assert segment.current_km == 180


def test_update_and_delete_stop_offline(stack):
    stack.store.add_trip(Trip(id="t1", stops=[Stop(id="s1", trip_id="t1", name="Old")]))

    updated = stack.stops.update_stop("s1", {"name": "New"})
    assert updated.name == "New"
    assert stack.store.get_trip("t1").stops[0].name == "New"

    stack.stops.delete_stop("s1")
    assert stack.store.get_trip("t1").stops == []
    assert stack.cache.load().trips[0]["stops"] == []


def test_online_delete_failure_still_removes_locally(stack):
    stack.store.add_trip(Trip(id="t1", stops=[Stop(id="s1", trip_id="t1")]))
    _online(stack)
    stack.backend.fail("delete", "stops")

    with pytest.raises(BackendError):
        stack.stops.delete_stop("s1")

    assert stack.store.get_trip("t1").stops == []


def test_unknown_stop_is_rejected(stack):
    with pytest.raises(ValueError, match="Parada não encontrada"):
        stack.stops.update_stop("missing", {"name": "x"})


def test_stop_of_placeholder_trip_is_kept_locally_online(stack):
    trip = stack.trips.create_trip({"name": "Beach"})
    _online(stack)

    stop = stack.stops.save_stop({"trip_id": trip.id, "name": "Posto"})

    assert stack.backend.calls == []
    assert stack.store.get_trip(trip.id).stops == [stop]
