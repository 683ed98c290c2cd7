"""Odometer segments per trip and vehicle.

Every operation keeps the ``trip_vehicle_segments`` cache key coherent with
what was sent to the backend, so readings survive going offline. Backend
failures here are logged and absorbed; the caller always gets a result.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from datetime_utils import to_rfc3339_utc, today_iso, utc_now
from models.segment import SEGMENT_COLUMNS, TripVehicleSegment, mark_initial, ordered
from models.trip import is_placeholder
from services.backend import BackendError
from services.base import RemoteService, parse_models
from services.cache_store import SEGMENTS_KEY


TABLE = "trip_vehicle_segments"
BASIC_COLUMNS = "id, " + ", ".join(SEGMENT_COLUMNS) + ", created_at, updated_at"
SEGMENT_ORDER = (("segment_date", True), ("created_at", True))


class SegmentService(RemoteService):
    logger_name = "triplog.trips"

    # ------------------------------------------------------------------
    # Local cache
    def cached(self, trip_id: Optional[str] = None) -> List[TripVehicleSegment]:
        rows, _problem = self.cache.read_list(SEGMENTS_KEY)
        segments = parse_models(TripVehicleSegment, rows, self.logger)
        if trip_id is None:
            return segments
        return [seg for seg in segments if seg.trip_id == trip_id]

    def _write(self, segments: List[TripVehicleSegment]) -> bool:
        return self.cache.write_list(SEGMENTS_KEY, segments)

    def _remote(self, trip_id: str, vehicle_id: Optional[str] = None) -> bool:
        # rows of a placeholder trip or vehicle would be orphaned server side
        if is_placeholder(trip_id) or is_placeholder(vehicle_id):
            return False
        return self._direct()

    def rename_ids(self, old_id: str, new_id: str) -> int:
        """Move cached segments from a placeholder to its server id."""

        renamed = 0
        segments = []
        for seg in self.cached():
            changes = {}
            if seg.trip_id == old_id:
                changes["trip_id"] = new_id
            if seg.vehicle_id == old_id:
                changes["vehicle_id"] = new_id
            if changes:
                seg = seg.model_copy(update=changes)
                renamed += 1
            segments.append(seg)
        if renamed:
            self._write(segments)
        return renamed

    def _touch_local(self, trip_id: str, vehicle_id: str, *, last: bool, **changes) -> None:
        segments = self.cached()
        mine = ordered(s for s in segments if s.trip_id == trip_id and s.vehicle_id == vehicle_id)
        if mine:
            target = mine[-1 if last else 0].id
            segments = [
                seg.model_copy(update={**changes, "updated_at": _now()}) if seg.id == target else seg
                for seg in segments
            ]
        else:
            km = next(iter(changes.values()))
            segments.append(_new_segment(trip_id, vehicle_id, today_iso(), km, km))
        self._write(segments)

    # ------------------------------------------------------------------
    def get_trip_vehicle_segments(self, trip_id: str) -> List[TripVehicleSegment]:
        if not trip_id:
            return []
        if not self._remote(trip_id):
            return mark_initial(self.cached(trip_id))
        try:
            rows = self._select_owned(TABLE, filters={"trip_id": trip_id}, columns=BASIC_COLUMNS)
        except BackendError as exc:
            self.logger.warning("Loading segments of %s failed, using local copy: %s", trip_id, exc)
            return mark_initial(self.cached(trip_id))

        local = {seg.id: seg for seg in self.cached(trip_id)}
        merged = []
        for row in rows:
            seg = TripVehicleSegment.from_row(row)
            match = local.get(seg.id)
            if match is not None:
                flags = {
                    name: getattr(match, name)
                    for name in ("tank_full", "is_initial")
                    if isinstance(getattr(match, name), bool)
                }
                seg = seg.model_copy(update=flags)
            merged.append(seg)
        return mark_initial(merged)

    def save_trip_vehicle_segment(
        self,
        trip_id: str,
        vehicle_id: str,
        segment_date: str,
        initial_km: float,
        current_km: float,
        *,
        tank_full: Optional[bool] = None,
        is_initial: Optional[bool] = None,
    ) -> TripVehicleSegment:
        local = _new_segment(
            trip_id, vehicle_id, segment_date, initial_km, current_km,
            tank_full=tank_full, is_initial=is_initial,
        )
        if not self._remote(trip_id, vehicle_id):
            self._write(self.cached() + [local])
            return local

        try:
            try:
                row = self._insert_owned(TABLE, local.to_row())
            except BackendError as exc:
                if not exc.missing_column:
                    raise
                # projects created before the flag columns existed
                row = self._insert_owned(TABLE, local.to_row(with_flags=False))
        except BackendError as exc:
            self.logger.error("Saving segment for %s/%s failed, kept locally: %s", trip_id, vehicle_id, exc)
            self._write(self.cached() + [local])
            return local

        saved = TripVehicleSegment.from_row(row).model_copy(
            update={
                "tank_full": tank_full,
                "is_initial": row.get("is_initial") if isinstance(row.get("is_initial"), bool) else is_initial,
            }
        )
        self._write(self.cached() + [saved])
        return saved

    def delete_trip_vehicle_segments(self, trip_id: str, vehicle_id: str) -> None:
        try:
            if self._remote(trip_id, vehicle_id):
                self._delete_owned(TABLE, filters={"trip_id": trip_id, "vehicle_id": vehicle_id})
        except BackendError as exc:
            self.logger.warning("Deleting segments of %s/%s failed: %s", trip_id, vehicle_id, exc)
        finally:
            self._write([
                seg for seg in self.cached()
                if not (seg.trip_id == trip_id and seg.vehicle_id == vehicle_id)
            ])

    def delete_trip_segments(self, trip_id: str) -> None:
        try:
            if self._remote(trip_id):
                self._delete_owned(TABLE, filters={"trip_id": trip_id})
        except BackendError as exc:
            self.logger.warning("Deleting segments of trip %s failed: %s", trip_id, exc)
        finally:
            self._write([seg for seg in self.cached() if seg.trip_id != trip_id])

    def update_trip_vehicle_initial_km(self, trip_id: str, vehicle_id: str, km: float) -> None:
        """Set ``initial_km`` of the first segment, creating one for today if none."""

        if self._remote(trip_id, vehicle_id):
            try:
                rows = self._select_owned(
                    TABLE,
                    filters={"trip_id": trip_id, "vehicle_id": vehicle_id},
                    order=SEGMENT_ORDER,
                    columns="id",
                    limit=1,
                )
                self._update_or_create(trip_id, vehicle_id, rows[0]["id"] if rows else None, {"initial_km": km}, km)
            except BackendError as exc:
                self.logger.warning("Updating initial km of %s/%s failed: %s", trip_id, vehicle_id, exc)
        self._touch_local(trip_id, vehicle_id, last=False, initial_km=km)

    def update_trip_vehicle_current_km(self, trip_id: str, vehicle_id: str, km: float) -> None:
        """Set ``current_km`` of the last segment, creating one for today if none."""

        if self._remote(trip_id, vehicle_id):
            try:
                rows = self._select_owned(
                    TABLE,
                    filters={"trip_id": trip_id, "vehicle_id": vehicle_id},
                    order=SEGMENT_ORDER,
                    columns="id",
                )
                self._update_or_create(trip_id, vehicle_id, rows[-1]["id"] if rows else None, {"current_km": km}, km)
            except BackendError as exc:
                self.logger.warning("Updating current km of %s/%s failed: %s", trip_id, vehicle_id, exc)
        self._touch_local(trip_id, vehicle_id, last=True, current_km=km)

    def _update_or_create(self, trip_id, vehicle_id, segment_id, changes, km) -> None:
        if segment_id is not None:
            self._update_owned(TABLE, changes, filters={"id": segment_id})
            return
        fresh = _new_segment(trip_id, vehicle_id, today_iso(), km, km)
        self._insert_owned(TABLE, fresh.to_row(with_flags=False))


def _now() -> str:
    return to_rfc3339_utc(utc_now())


def _new_segment(trip_id, vehicle_id, segment_date, initial_km, current_km, **flags) -> TripVehicleSegment:
    now = _now()
    return TripVehicleSegment(
        id=str(uuid.uuid4()),
        trip_id=trip_id,
        vehicle_id=vehicle_id,
        segment_date=segment_date,
        initial_km=initial_km,
        current_km=current_km,
        created_at=now,
        updated_at=now,
        **flags,
    )


__all__ = ["SegmentService"]
