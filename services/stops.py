"""Stops of a trip. Not queued: offline edits live in the local snapshot only."""

from __future__ import annotations

import uuid
from typing import Any, Mapping, Optional, Tuple

from datetime_utils import to_rfc3339_utc, utc_now
from models.trip import STOP_COLUMNS, Stop, Trip, is_placeholder, pick_columns, stop_changes
from services.backend import BackendError
from services.base import RemoteService
from services.segments import SegmentService


class StopService(RemoteService):
    def __init__(self, backend, auth, connectivity, store, cache, segments: SegmentService):
        super().__init__(backend, auth, connectivity, store, cache)
        self.segments = segments

    def save_stop(self, data: Mapping[str, Any]) -> Stop:
        fields = pick_columns(data, STOP_COLUMNS, kind="stop")
        if not fields.get("trip_id"):
            raise ValueError("Parada sem viagem")
        stop = Stop(id=str(uuid.uuid4()), created_at=to_rfc3339_utc(utc_now()), **fields)

        if self._direct() and not is_placeholder(stop.trip_id):
            try:
                row = self._insert_owned("stops", stop.to_row())
            except BackendError as exc:
                self.logger.error("Saving stop failed, kept locally: %s", exc)
                self._attach(stop)
                raise BackendError.wrap("Falha ao salvar parada. Dados salvos localmente.", exc) from exc
            # cost details stay as the client sent them
            stop = Stop.from_row(row).model_copy(update={"cost_details": stop.cost_details})

        self._attach(stop)
        self._follow_odometer(stop)
        return stop

    def update_stop(self, stop_id: str, updates: Mapping[str, Any]) -> Stop:
        trip, current = self._locate(stop_id)
        changes = pick_columns(updates, STOP_COLUMNS, kind="stop")
        merged = current.model_copy(update=changes)

        if self._direct() and not trip.is_local:
            try:
                row = self.backend.update("stops", stop_changes(updates), filters={"id": stop_id})
            except BackendError as exc:
                self.logger.error("Updating stop %s failed, kept locally: %s", stop_id, exc)
                self._replace_in(trip.id, merged)
                raise BackendError.wrap("Falha ao atualizar parada. Alterações salvas localmente.", exc) from exc
            if row:
                merged = Stop.from_row(row).model_copy(update={"cost_details": merged.cost_details})

        self._replace_in(trip.id, merged)
        self._follow_odometer(merged)
        return merged

    def delete_stop(self, stop_id: str) -> None:
        trip, _stop = self._locate(stop_id)
        failure: Optional[BackendError] = None
        if self._direct() and not trip.is_local:
            try:
                self.backend.delete("stops", filters={"id": stop_id})
            except BackendError as exc:
                self.logger.error("Deleting stop %s failed, removed locally: %s", stop_id, exc)
                failure = exc

        remaining = [s for s in trip.stops if s.id != stop_id]
        self.store.put_trip(trip.model_copy(update={"stops": remaining}))
        self._persist()
        if failure is not None:
            raise BackendError.wrap("Falha ao deletar parada. Alterações salvas localmente.", failure) from failure

    # ------------------------------------------------------------------
    def _locate(self, stop_id: str) -> Tuple[Trip, Stop]:
        for trip in self.store.trips:
            for stop in trip.stops:
                if stop.id == stop_id:
                    return trip, stop
        raise ValueError(f"Parada não encontrada: {stop_id}")

    def _attach(self, stop: Stop) -> None:
        trip = self.store.get_trip(stop.trip_id)
        if trip is None:
            raise ValueError(f"Viagem não encontrada: {stop.trip_id}")
        self.store.put_trip(trip.model_copy(update={"stops": trip.stops + [stop]}))
        self._persist()

    def _replace_in(self, trip_id: str, stop: Stop) -> None:
        trip = self.store.get_trip(trip_id)
        stops = [stop if s.id == stop.id else s for s in trip.stops]
        self.store.put_trip(trip.model_copy(update={"stops": stops}))
        self._persist()

    def _follow_odometer(self, stop: Stop) -> None:
        """A driving stop moves the current km of the trip's first vehicle."""

        km = stop.departure_km if stop.departure_km is not None else stop.arrival_km
        if not stop.was_driving or km is None:
            return
        trip = self.store.get_trip(stop.trip_id)
        if trip is None or not trip.vehicle_ids:
            return
        self.segments.update_trip_vehicle_current_km(trip.id, trip.vehicle_ids[0], float(km))


__all__ = ["StopService"]
