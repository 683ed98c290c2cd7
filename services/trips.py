# triplog/services/trips.py
from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from datetime_utils import to_rfc3339_utc, utc_now
from models.pending_op import OpKind
from models.trip import Stop, Trip, is_placeholder, new_placeholder_id, trip_changes
from models.vehicle import SyncStatus, Vehicle, vehicle_changes
from services.backend import BackendError
from services.base import RemoteService, parse_models
from services.cache_store import SEGMENTS_KEY
from services.pending_ops_queue import PendingOpsQueue
from services.segments import SegmentService


NEWEST_FIRST = (("created_at", False),)
STOPS_ORDER = (("arrival_date", True), ("arrival_time", True))
INSERT_KINDS = (OpKind.TRIP_INSERT, OpKind.VEHICLE_INSERT)


def _now() -> str:
    return to_rfc3339_utc(utc_now())


class TripService(RemoteService):
    """Trips, vehicles and their links.

    A mutation goes straight to the backend when it is configured, the device
    is online and a user is signed in. Otherwise it is applied to the store
    with a locally made result, queued for the sync orchestrator, and the
    snapshot is written to the cache.
    """

    def __init__(self, backend, auth, connectivity, store, cache, queue: PendingOpsQueue, segments: SegmentService):
        super().__init__(backend, auth, connectivity, store, cache)
        self.queue = queue
        self.segments = segments

    # ------------------------------------------------------------------
    # Reads
    def load(self) -> None:
        if self._direct():
            try:
                self.refresh_from_backend()
                self.store.error = None
                return
            except BackendError as exc:
                self.logger.error("Loading from backend failed, using local copy: %s", exc)
                self.store.error = "Falha ao carregar dados da nuvem. Usando dados locais."
        elif not self.backend.configured:
            self.store.error = "Serviço indisponível. Supabase não configurado."
        self.load_cached()

    def load_cached(self) -> None:
        snapshot = self.cache.load()
        for problem in snapshot.problems:
            self.logger.warning("Cache problem: %s", problem)
        self.store.replace(
            parse_models(Trip, snapshot.trips, self.logger),
            parse_models(Vehicle, snapshot.vehicles, self.logger),
        )

    def refresh_from_backend(self) -> None:
        """Replace store and cache with the backend state. Raises ``BackendError``."""

        trips = [Trip.from_row(row, self._fetch_stops(row["id"])) for row in self._select_owned("trips", order=NEWEST_FIRST)]
        vehicles = [Vehicle.from_row(row) for row in self._select_owned("vehicles", order=NEWEST_FIRST)]

        # placeholders whose insert is still queued would otherwise disappear
        queued = {item.entity_id for item in self.queue.read_all() if item.kind in INSERT_KINDS}
        local_trips = [t for t in self.store.trips if t.is_local and t.id in queued]
        local_vehicles = [v for v in self.store.vehicles if v.is_local and v.id in queued]

        self.store.replace(local_trips + trips, local_vehicles + vehicles)
        self._persist()
        self.logger.info("Refreshed %d trips and %d vehicles", len(trips), len(vehicles))

    def _fetch_stops(self, trip_id: str) -> List[Stop]:
        try:
            rows = self.backend.select("stops", filters={"trip_id": trip_id}, order=STOPS_ORDER)
        except BackendError as exc:
            self.logger.warning("Loading stops of %s failed: %s", trip_id, exc)
            return []
        return [Stop.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Remote calls shared by the direct path and the queue flush
    def push_trip_insert(self, payload: Mapping[str, Any]) -> Trip:
        return Trip.from_row(self._insert_owned("trips", trip_changes(payload)))

    def push_trip_update(self, trip_id: str, changes: Mapping[str, Any]) -> Optional[Trip]:
        row = self._update_owned("trips", trip_changes(changes), filters={"id": trip_id})
        return Trip.from_row(row) if row else None

    def push_trip_delete(self, trip_id: str) -> None:
        self._delete_owned("trips", filters={"id": trip_id})

    def push_vehicle_insert(self, payload: Mapping[str, Any]) -> Vehicle:
        return Vehicle.from_row(self._insert_owned("vehicles", vehicle_changes(payload)))

    def push_vehicle_update(self, vehicle_id: str, changes: Mapping[str, Any]) -> Optional[Vehicle]:
        row = self._update_owned("vehicles", vehicle_changes(changes), filters={"id": vehicle_id})
        return Vehicle.from_row(row) if row else None

    def push_vehicle_delete(self, vehicle_id: str) -> None:
        self._delete_owned("vehicles", filters={"id": vehicle_id})

    # ------------------------------------------------------------------
    # Trips
    def create_trip(self, data: Mapping[str, Any]) -> Trip:
        fields = trip_changes(data)
        if self._direct():
            try:
                trip = self.push_trip_insert(fields)
            except BackendError as exc:
                self.logger.error("Saving trip failed: %s", exc)
                raise BackendError.wrap("Falha ao salvar viagem na nuvem.", exc) from exc
            self.store.add_trip(trip)
            self._persist()
            return trip

        now = _now()
        trip = Trip(id=new_placeholder_id(), created_at=now, updated_at=now, **fields)
        self.store.add_trip(trip)
        self.queue.enqueue(OpKind.TRIP_INSERT, trip.id, trip.to_row())
        self._persist()
        self.logger.info("Trip %s created offline", trip.id)
        return trip

    def update_trip(self, trip_id: str, updates: Mapping[str, Any]) -> Trip:
        changes = trip_changes(updates)
        current = self.store.get_trip(trip_id)
        # a placeholder has no server row yet; its update must follow the queued insert
        if self._direct() and not is_placeholder(trip_id):
            try:
                pushed = self.push_trip_update(trip_id, changes)
            except BackendError as exc:
                self.logger.error("Updating trip %s failed: %s", trip_id, exc)
                raise BackendError.wrap("Falha ao atualizar viagem na nuvem.", exc) from exc
            if pushed is not None:
                trip = pushed.model_copy(update={"stops": current.stops if current else []})
            elif current is not None:
                trip = current.model_copy(update={**changes, "updated_at": _now()})
            else:
                raise BackendError("Viagem não encontrada na nuvem.")
            self.store.put_trip(trip)
            self._persist()
            return trip

        if current is None:
            raise ValueError(f"Viagem não encontrada: {trip_id}")
        trip = current.model_copy(update={**changes, "updated_at": _now()})
        self.store.put_trip(trip)
        self.queue.enqueue(OpKind.TRIP_UPDATE, trip_id, changes)
        self._persist()
        return trip

    def delete_trip(self, trip_id: str) -> None:
        if self._direct() and not is_placeholder(trip_id):
            try:
                self.push_trip_delete(trip_id)
            except BackendError as exc:
                self.logger.error("Deleting trip %s failed: %s", trip_id, exc)
                raise BackendError.wrap("Falha ao deletar viagem na nuvem.", exc) from exc
        else:
            self.queue.enqueue(OpKind.TRIP_DELETE, trip_id)
        self.store.remove_trip(trip_id)
        self._persist()
        self.segments.delete_trip_segments(trip_id)

    # ------------------------------------------------------------------
    # Vehicles
    def create_vehicle(self, data: Mapping[str, Any]) -> Vehicle:
        fields = vehicle_changes(data)
        if self._direct():
            try:
                vehicle = self.push_vehicle_insert(fields)
            except BackendError as exc:
                self.logger.error("Saving vehicle failed: %s", exc)
                raise BackendError.wrap("Falha ao salvar veículo na nuvem.", exc) from exc
            self.store.add_vehicle(vehicle)
            self._persist()
            return vehicle

        now = _now()
        vehicle = Vehicle(
            id=new_placeholder_id(),
            created_at=now,
            updated_at=now,
            sync_status=SyncStatus.PENDING,
            **fields,
        )
        self.store.add_vehicle(vehicle)
        self.queue.enqueue(OpKind.VEHICLE_INSERT, vehicle.id, vehicle.to_row())
        self._persist()
        self.logger.info("Vehicle %s created offline", vehicle.id)
        return vehicle

    def update_vehicle(self, vehicle_id: str, updates: Mapping[str, Any]) -> Vehicle:
        changes = vehicle_changes(updates)
        current = self.store.get_vehicle(vehicle_id)
        if self._direct() and not is_placeholder(vehicle_id):
            try:
                pushed = self.push_vehicle_update(vehicle_id, changes)
            except BackendError as exc:
                self.logger.error("Updating vehicle %s failed: %s", vehicle_id, exc)
                raise BackendError.wrap("Falha ao atualizar veículo na nuvem.", exc) from exc
            if pushed is not None:
                vehicle = pushed
            elif current is not None:
                vehicle = current.model_copy(update={**changes, "updated_at": _now()})
            else:
                raise BackendError("Veículo não encontrado na nuvem.")
            self.store.put_vehicle(vehicle)
            self._persist()
            return vehicle

        if current is None:
            raise ValueError(f"Veículo não encontrado: {vehicle_id}")
        vehicle = current.model_copy(
            update={**changes, "updated_at": _now(), "sync_status": SyncStatus.PENDING}
        )
        self.store.put_vehicle(vehicle)
        self.queue.enqueue(OpKind.VEHICLE_UPDATE, vehicle_id, changes)
        self._persist()
        return vehicle

    def delete_vehicle(self, vehicle_id: str) -> None:
        self._check_vehicle_deletable(vehicle_id)
        current = self.store.get_vehicle(vehicle_id)

        if self._direct() and not is_placeholder(vehicle_id):
            if current is not None and current.photo_path:
                try:
                    self.backend.remove([current.photo_path])
                except BackendError as exc:
                    self.logger.warning("Removing photo of %s failed: %s", vehicle_id, exc)
            try:
                self.push_vehicle_delete(vehicle_id)
            except BackendError as exc:
                self.logger.error("Deleting vehicle %s failed: %s", vehicle_id, exc)
                raise BackendError.wrap("Falha ao deletar veículo na nuvem.", exc) from exc
        else:
            self.queue.enqueue(OpKind.VEHICLE_DELETE, vehicle_id)
        self.store.remove_vehicle(vehicle_id)
        self._persist()

    def _check_vehicle_deletable(self, vehicle_id: str) -> None:
        linked = [t for t in self.store.trips if vehicle_id in t.vehicle_ids]
        if not linked:
            return
        driving = any(stop.was_driving for trip in linked for stop in trip.stops)
        rows, _problem = self.cache.read_list(SEGMENTS_KEY)
        has_segments = any(isinstance(row, dict) and row.get("vehicle_id") == vehicle_id for row in rows)
        if driving or has_segments:
            raise ValueError(
                "Não é possível excluir o veículo: há viagens/paradas vinculadas a ele. "
                "Remova o vínculo e ajuste as paradas antes."
            )

    def upload_vehicle_photo(self, vehicle_id: str, file_path: str | Path) -> Optional[Vehicle]:
        """Store a photo for the vehicle. Returns None when it could not be sent."""

        if not self._direct() or is_placeholder(vehicle_id):
            self.logger.warning("Photo of %s not uploaded: no backend session", vehicle_id)
            return None
        source = Path(file_path)
        content_type = mimetypes.guess_type(source.name)[0] or "application/octet-stream"
        remote_path = f"{self.user_id}/vehicles/{vehicle_id}/{source.name}"
        try:
            self.backend.upload(remote_path, source.read_bytes(), content_type=content_type)
            url = self.backend.signed_url(remote_path)
            return self.update_vehicle(vehicle_id, {"photo_path": remote_path, "photo_url": url})
        except (BackendError, OSError) as exc:
            self.logger.warning("Photo upload for %s failed: %s", vehicle_id, exc)
            return None

    # ------------------------------------------------------------------
    # Trip <-> vehicle links
    def link_vehicle_to_trip(self, trip_id: str, vehicle_id: str, initial_km: Optional[float] = None) -> Trip:
        trip = self._require_trip(trip_id)
        ids = list(dict.fromkeys(trip.vehicle_ids + [vehicle_id]))
        if ids != trip.vehicle_ids or not trip.has_vehicle:
            trip = self.update_trip(trip_id, {"vehicle_ids": ids, "has_vehicle": True})

        if self._direct() and not is_placeholder(trip_id):
            self._ensure_link_row(trip_id, vehicle_id, initial_km)
        if initial_km is not None:
            self.segments.update_trip_vehicle_initial_km(trip_id, vehicle_id, float(initial_km))
        return trip

    def _ensure_link_row(self, trip_id: str, vehicle_id: str, initial_km: Optional[float]) -> None:
        try:
            rows = self.backend.select(
                "trip_vehicles",
                filters={"trip_id": trip_id, "vehicle_id": vehicle_id},
                columns="id",
                limit=1,
            )
            if not rows:
                row: Dict[str, Any] = {"trip_id": trip_id, "vehicle_id": vehicle_id}
                if initial_km is not None:
                    row["initial_km"] = float(initial_km)
                self._insert_owned("trip_vehicles", row)
            elif initial_km is not None:
                self.backend.update("trip_vehicles", {"initial_km": float(initial_km)}, filters={"id": rows[0]["id"]})
        except BackendError as exc:
            self.logger.error("Linking vehicle %s to trip %s failed: %s", vehicle_id, trip_id, exc)

    def unlink_vehicle_from_trip(self, trip_id: str, vehicle_id: str) -> Trip:
        trip = self._require_trip(trip_id)
        ids = [v for v in trip.vehicle_ids if v != vehicle_id]
        trip = self.update_trip(trip_id, {"vehicle_ids": ids, "has_vehicle": bool(ids)})
        if self._direct() and not is_placeholder(trip_id):
            try:
                self._delete_owned("trip_vehicles", filters={"trip_id": trip_id, "vehicle_id": vehicle_id})
            except BackendError as exc:
                self.logger.warning("Removing link %s/%s failed: %s", trip_id, vehicle_id, exc)
        self.segments.delete_trip_vehicle_segments(trip_id, vehicle_id)
        return trip

    def unlink_all_vehicles_from_trip(self, trip_id: str) -> Trip:
        self._require_trip(trip_id)
        trip = self.update_trip(trip_id, {"vehicle_ids": [], "has_vehicle": False})
        if self._direct() and not is_placeholder(trip_id):
            try:
                self._delete_owned("trip_vehicles", filters={"trip_id": trip_id})
            except BackendError as exc:
                self.logger.warning("Removing links of trip %s failed: %s", trip_id, exc)
        self.segments.delete_trip_segments(trip_id)
        return trip

    def _require_trip(self, trip_id: str) -> Trip:
        trip = self.store.get_trip(trip_id)
        if trip is None:
            raise ValueError(f"Viagem não encontrada: {trip_id}")
        return trip


__all__ = ["TripService"]
