"""Per-vehicle odometer segments of a trip."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlmodel import SQLModel

from datetime_utils import parse_day, parse_rfc3339


SEGMENT_COLUMNS = (
    "trip_id",
    "vehicle_id",
    "segment_date",
    "initial_km",
    "current_km",
)
SEGMENT_FLAGS = ("tank_full", "is_initial")


class TripVehicleSegment(SQLModel):
    id: str
    trip_id: str
    vehicle_id: str
    segment_date: str  # yyyy-MM-dd
    initial_km: float = 0
    current_km: float = 0
    tank_full: Optional[bool] = None
    is_initial: Optional[bool] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TripVehicleSegment":
        tank_full = row.get("tank_full")
        is_initial = row.get("is_initial")
        return cls(
            id=str(row["id"]),
            trip_id=str(row["trip_id"]),
            vehicle_id=str(row["vehicle_id"]),
            segment_date=row.get("segment_date") or "",
            initial_km=row.get("initial_km") or 0,
            current_km=row.get("current_km") or 0,
            tank_full=tank_full if isinstance(tank_full, bool) else None,
            is_initial=is_initial if isinstance(is_initial, bool) else None,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_row(self, *, with_flags: bool = True) -> Dict[str, Any]:
        row = self.model_dump(include=set(SEGMENT_COLUMNS))
        if with_flags:
            for flag in SEGMENT_FLAGS:
                value = getattr(self, flag)
                if isinstance(value, bool):
                    row[flag] = value
        return row

    def sort_key(self):
        day = parse_day(self.segment_date)
        created = parse_rfc3339(self.created_at)
        return (
            day.toordinal() if day else 0,
            created.timestamp() if created else 0.0,
        )


def ordered(segments: Iterable[TripVehicleSegment]) -> List[TripVehicleSegment]:
    return sorted(segments, key=lambda seg: seg.sort_key())


def mark_initial(segments: Iterable[TripVehicleSegment]) -> List[TripVehicleSegment]:
    """Flag the earliest segment of each vehicle as initial when none is flagged."""

    by_vehicle: Dict[str, List[TripVehicleSegment]] = {}
    for seg in segments:
        by_vehicle.setdefault(seg.vehicle_id, []).append(seg)

    result: List[TripVehicleSegment] = []
    for group in by_vehicle.values():
        group = ordered(group)
        if group and not any(seg.is_initial is True for seg in group):
            group[0] = group[0].model_copy(update={"is_initial": True})
        result.extend(group)
    return result


__all__ = ["SEGMENT_COLUMNS", "SEGMENT_FLAGS", "TripVehicleSegment", "mark_initial", "ordered"]
