import asyncio
import threading
import time

from models import OpKind, OpStatus, SyncStatus, Trip
from services.sync_service import SyncPhase


def _go_online(stack):
    stack.monitor.set_online(True)


def test_empty_flush_makes_no_backend_calls(stack):
    _go_online(stack)

    result = stack.sync.flush()

    assert result.ok
    assert result.applied == 0
    assert stack.backend.calls == []
    assert stack.queue.count() == 0


def test_failure_keeps_failing_item_and_everything_after_it(stack):
    stack.store.add_trip(Trip(id="srv-9", name="A"))
    stack.backend.seed("trips", id="srv-9", name="A", user_id="user-1")
    for name in ("B", "C", "D", "E"):
        stack.trips.update_trip("srv-9", {"name": name})
    before = stack.queue.read_all()
    _go_online(stack)
    stack.backend.fail("update", "trips", after=1)

    result = stack.sync.flush()

    remaining = stack.queue.read_all()
    assert result.applied == 1
    assert result.failed_item.seq == before[1].seq
    assert [i.seq for i in remaining] == [i.seq for i in before[1:]]
    assert [i.payload["name"] for i in remaining] == ["C", "D", "E"]
    assert remaining[0].attempts == 1
    assert "service unavailable" in remaining[0].last_error
    assert [i.attempts for i in remaining[1:]] == [0, 0]
    # the pass stopped at the failure
    assert stack.backend.count("update", "trips") == 2


def test_insert_reconciles_placeholders_everywhere(stack):
    vehicle = stack.trips.create_vehicle({"nickname": "Fusca"})
    trip = stack.trips.create_trip({"name": "Beach"})
    stack.trips.link_vehicle_to_trip(trip.id, vehicle.id)
    assert stack.queue.count() == 3
    _go_online(stack)

    result = stack.sync.flush()

    assert result.ok and result.applied == 3
    assert stack.queue.count() == 0
    [stored_vehicle] = stack.store.vehicles
    [stored_trip] = stack.store.trips
    assert stored_vehicle.id == "srv-1"
    assert stored_vehicle.sync_status == SyncStatus.SYNCED
    assert stored_trip.id == "srv-2"
    assert stored_trip.vehicle_ids == ["srv-1"]
    remote = stack.backend.tables["trips"][0]
    assert remote["vehicle_ids"] == ["srv-1"]
    assert remote["user_id"] == "user-1"
    assert [t["id"] for t in stack.cache.load().trips] == ["srv-2"]


def test_offline_create_then_reconnect_scenario(stack):
    trip = stack.trips.create_trip({"name": "Beach"})
    assert trip.id.startswith("local-")
    [item] = stack.queue.read_all()
    assert item.kind == OpKind.TRIP_INSERT
    assert item.entity_id == trip.id

    _go_online(stack)
    stack.sync.flush_and_refresh()

    assert [t.id for t in stack.store.trips] == ["srv-1"]
    assert stack.store.trips[0].name == "Beach"
    assert stack.queue.count() == 0
    snapshot = stack.cache.load()
    assert snapshot.trips == [t.model_dump(mode="json") for t in stack.store.trips]
    assert stack.sync.last_sync_at is not None


def test_refresh_runs_even_when_flush_fails(stack):
    stack.backend.seed("trips", name="Remote", user_id="user-1")
    stack.trips.create_trip({"name": "Local"})
    _go_online(stack)
    stack.backend.fail("insert", "trips")

    result = stack.sync.flush_and_refresh()

    assert not result.ok
    names = sorted(t.name for t in stack.store.trips)
    # the still-queued placeholder survives the refresh
    assert names == ["Local", "Remote"]
    assert stack.queue.count() == 1


def test_retry_cap_marks_item_failed_and_later_passes_skip_it(stack):
    stack.trips.create_trip({"name": "Doomed"})
    stack.trips.create_vehicle({"nickname": "Kombi"})
    _go_online(stack)
    stack.backend.fail("insert", "trips", times=10)

    for _ in range(3):
        stack.sync.flush()

    [failed] = stack.queue.failed()
    assert failed.status == OpStatus.FAILED
    assert failed.attempts == 3
    assert stack.backend.count("insert", "trips") == 3
    # every pass stopped at the trip, so the vehicle never went out
    assert stack.backend.count("insert", "vehicles") == 0
    assert [i.kind for i in stack.queue.pending()] == [OpKind.VEHICLE_INSERT]

    stack.sync.flush()
    assert stack.backend.count("insert", "trips") == 3
    assert stack.backend.count("insert", "vehicles") == 1
    assert stack.queue.pending() == []

    status = stack.sync.status()
    assert status["failed"] == 1
    assert stack.sync.discard_failed() == 1
    assert stack.queue.count() == 0


def test_failed_vehicle_replay_tags_vehicle_with_error(stack):
    vehicle = stack.trips.create_vehicle({"nickname": "Kombi"})
    _go_online(stack)
    stack.backend.fail("insert", "vehicles")

    stack.sync.flush()

    assert stack.store.get_vehicle(vehicle.id).sync_status == SyncStatus.ERROR


def test_cycle_finishing_in_time_stays_in_foreground(stack):
    phases = []
    stack.sync.subscribe(phases.append)
    stack.trips.create_trip({"name": "Beach"})
    _go_online(stack)

    finished = asyncio.run(stack.sync.run_cycle())

    assert finished is True
    assert phases == [SyncPhase(syncing=True), SyncPhase()]
    assert stack.queue.count() == 0


def test_timeout_hands_off_to_background_exactly_once(stack):
    phases = []
    stack.sync.subscribe(phases.append)
    stack.sync.timeout_sec = 0.05
    stack.trips.create_trip({"name": "Slow"})
    _go_online(stack)
    gate = threading.Event()
    stack.backend.gate = gate

    async def scenario():
        first = await stack.sync.run_cycle()
        assert first is False
        assert stack.sync.phase == SyncPhase(background_syncing=True)
        # a second trigger while the background work runs is refused
        assert await stack.sync.run_cycle() is False
        gate.set()
        for _ in range(500):
            if stack.sync.phase.idle:
                break
            await asyncio.sleep(0.01)

    asyncio.run(scenario())

    assert phases == [
        SyncPhase(syncing=True),
        SyncPhase(background_syncing=True),
        SyncPhase(),
    ]
    assert not stack.sync.in_flight
    assert stack.queue.count() == 0
    assert [t.id for t in stack.store.trips] == ["srv-1"]


def test_cycle_is_skipped_without_session(stack):
    stack.trips.create_trip({"name": "Beach"})
    stack.auth.user_id = None
    _go_online(stack)

    result = stack.sync.flush_and_refresh()

    assert result.applied == 0
    assert stack.backend.calls == []
    assert stack.queue.count() == 1


def test_offline_update_of_placeholder_replays_with_server_id(stack):
    trip = stack.trips.create_trip({"name": "Beach"})
    stack.trips.update_trip(trip.id, {"details": "Levar protetor"})
    _go_online(stack)

    result = stack.sync.flush()

    assert result.ok and result.applied == 2
    [remote] = stack.backend.tables["trips"]
    assert remote["id"] == "srv-1"
    assert remote["details"] == "Levar protetor"
    assert stack.backend.calls == [("insert", "trips"), ("update", "trips")]
    assert stack.queue.count() == 0


def test_items_enqueued_during_a_flush_survive_it(stack):
    stack.trips.create_trip({"name": "Beach"})
    _go_online(stack)
    gate = threading.Event()
    stack.backend.gate = gate
    worker = threading.Thread(target=stack.sync.flush)
    worker.start()
    for _ in range(500):
        if stack.backend.calls:
            break
        time.sleep(0.01)

    # the connection drops again while the insert is in flight
    stack.monitor.set_online(False)
    mountain = stack.trips.create_trip({"name": "Mountain"})
    gate.set()
    worker.join(5)

    kinds = [(i.kind, i.entity_id) for i in stack.queue.read_all()]
    assert kinds == [(OpKind.TRIP_INSERT, mountain.id)]
    assert sorted(t.id for t in stack.store.trips) == sorted(["srv-1", mountain.id])


def test_dependents_of_a_given_up_insert_are_held_back(stack):
    trip = stack.trips.create_trip({"name": "Doomed"})
    stack.trips.update_trip(trip.id, {"details": "x"})
    _go_online(stack)
    stack.backend.fail("insert", "trips", times=10)

    for _ in range(4):
        stack.sync.flush()

    assert stack.backend.count("update", "trips") == 0
    items = stack.queue.read_all()
    assert [(i.kind, i.status) for i in items] == [
        (OpKind.TRIP_INSERT, OpStatus.FAILED),
        (OpKind.TRIP_UPDATE, OpStatus.PENDING),
    ]
    assert items[1].entity_id == trip.id

    assert stack.sync.discard_failed() == 2
    assert stack.queue.count() == 0


def test_trip_held_back_by_a_given_up_vehicle(stack):
    vehicle = stack.trips.create_vehicle({"nickname": "Kombi"})
    stack.trips.create_trip({"name": "Serra", "vehicle_ids": [vehicle.id], "has_vehicle": True})
    _go_online(stack)
    stack.backend.fail("insert", "vehicles", times=10)

    for _ in range(4):
        stack.sync.flush()

    assert stack.backend.count("insert", "trips") == 0
    assert [i.kind for i in stack.queue.pending()] == [OpKind.TRIP_INSERT]


def test_update_matching_no_row_is_not_dropped(stack):
    stack.store.add_trip(Trip(id="srv-404", name="Gone"))
    stack.trips.update_trip("srv-404", {"name": "Still gone"})
    _go_online(stack)

    result = stack.sync.flush()

    assert not result.ok
    [item] = stack.queue.read_all()
    assert item.attempts == 1
    assert "no such row" in item.last_error


def test_reconcile_moves_cached_segments_to_server_ids(stack):
    vehicle = stack.trips.create_vehicle({"nickname": "Kombi"})
    trip = stack.trips.create_trip({"name": "Serra"})
    stack.trips.link_vehicle_to_trip(trip.id, vehicle.id, initial_km=100)
    _go_online(stack)

    stack.sync.flush()
    stack.monitor.set_online(False)

    [segment] = stack.segments.get_trip_vehicle_segments("srv-2")
    assert segment.vehicle_id == "srv-1"
    assert segment.initial_km == 100
    assert stack.segments.cached(trip.id) == []
