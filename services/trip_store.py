"""In-memory state shared by the façade, the orchestrator and the UI."""

from __future__ import annotations

import threading
from typing import Callable, Iterable, List, Optional, Set

from core.logs import ensure_logger
from models.trip import Trip
from models.vehicle import Vehicle


class TripStore:
    """Trips and vehicles currently shown to the user.

    Every read returns copies of the lists; every mutation happens under one
    re-entrant lock so a placeholder rename is observed atomically.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._trips: List[Trip] = []
        self._vehicles: List[Vehicle] = []
        self.error: Optional[str] = None
        self._listeners: Set[Callable[[], None]] = set()
        self.logger = ensure_logger("triplog.trips")

    # ------------------------------------------------------------------
    def subscribe(self, callback: Callable[[], None]) -> None:
        self._listeners.add(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        self._listeners.discard(callback)

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as exc:
                self.logger.error("Store listener failed: %s", exc)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # ------------------------------------------------------------------
    # Trips
    @property
    def trips(self) -> List[Trip]:
        with self._lock:
            return list(self._trips)

    def get_trip(self, trip_id: str) -> Optional[Trip]:
        with self._lock:
            return next((t for t in self._trips if t.id == trip_id), None)

    def add_trip(self, trip: Trip) -> None:
        with self._lock:
            self._trips.insert(0, trip)
        self._emit()

    def put_trip(self, trip: Trip) -> None:
        """Replace the trip with the same id, or prepend it when unknown."""

        with self._lock:
            for index, current in enumerate(self._trips):
                if current.id == trip.id:
                    self._trips[index] = trip
                    break
            else:
                self._trips.insert(0, trip)
        self._emit()

    def remove_trip(self, trip_id: str) -> Optional[Trip]:
        with self._lock:
            removed = self.get_trip(trip_id)
            self._trips = [t for t in self._trips if t.id != trip_id]
        self._emit()
        return removed

    def set_trips(self, trips: Iterable[Trip]) -> None:
        with self._lock:
            self._trips = list(trips)
        self._emit()

    # ------------------------------------------------------------------
    # Vehicles
    @property
    def vehicles(self) -> List[Vehicle]:
        with self._lock:
            return list(self._vehicles)

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        with self._lock:
            return next((v for v in self._vehicles if v.id == vehicle_id), None)

    def add_vehicle(self, vehicle: Vehicle) -> None:
        with self._lock:
            self._vehicles.insert(0, vehicle)
        self._emit()

    def put_vehicle(self, vehicle: Vehicle) -> None:
        with self._lock:
            for index, current in enumerate(self._vehicles):
                if current.id == vehicle.id:
                    self._vehicles[index] = vehicle
                    break
            else:
                self._vehicles.insert(0, vehicle)
        self._emit()

    def remove_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        with self._lock:
            removed = self.get_vehicle(vehicle_id)
            self._vehicles = [v for v in self._vehicles if v.id != vehicle_id]
        self._emit()
        return removed

    def set_vehicles(self, vehicles: Iterable[Vehicle]) -> None:
        with self._lock:
            self._vehicles = list(vehicles)
        self._emit()

    def replace(self, trips: Iterable[Trip], vehicles: Iterable[Vehicle]) -> None:
        with self._lock:
            self._trips = list(trips)
            self._vehicles = list(vehicles)
        self._emit()

    # ------------------------------------------------------------------
    # Placeholder reconciliation
    def rename_trip_id(self, old_id: str, new_id: str) -> int:
        renamed = 0
        with self._lock:
            trips = []
            for trip in self._trips:
                if trip.id == old_id:
                    stops = [s.model_copy(update={"trip_id": new_id}) for s in trip.stops]
                    trip = trip.model_copy(update={"id": new_id, "stops": stops})
                    renamed += 1
                trips.append(trip)
            self._trips = _unique_by_id(trips)
        if renamed:
            self._emit()
        return renamed

    def rename_vehicle_id(self, old_id: str, new_id: str) -> int:
        renamed = 0
        with self._lock:
            vehicles = []
            for vehicle in self._vehicles:
                if vehicle.id == old_id:
                    vehicle = vehicle.model_copy(update={"id": new_id})
                    renamed += 1
                vehicles.append(vehicle)
            self._vehicles = _unique_by_id(vehicles)

            trips = []
            for trip in self._trips:
                if old_id in trip.vehicle_ids:
                    ids = [new_id if v == old_id else v for v in trip.vehicle_ids]
                    trip = trip.model_copy(update={"vehicle_ids": list(dict.fromkeys(ids))})
                    renamed += 1
                trips.append(trip)
            self._trips = trips
        if renamed:
            self._emit()
        return renamed


def _unique_by_id(items):
    seen = set()
    result = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        result.append(item)
    return result


__all__ = ["TripStore"]
