"""Trip and stop records as exchanged with the backend and the local cache."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlmodel import Field, SQLModel


PLACEHOLDER_PREFIX = "local-"

TRIP_COLUMNS = (
    "name",
    "departure_location",
    "departure_coords",
    "departure_date",
    "departure_time",
    "arrival_location",
    "arrival_coords",
    "arrival_date",
    "arrival_time",
    "start_km",
    "end_km",
    "details",
    "status",
    "is_driving",
    "has_vehicle",
    "vehicle_ids",
)

STOP_COLUMNS = (
    "trip_id",
    "name",
    "stop_type",
    "was_driving",
    "location",
    "place",
    "place_detail",
    "arrival_km",
    "departure_km",
    "arrival_date",
    "arrival_time",
    "departure_date",
    "departure_time",
    "reasons",
    "other_reason",
    "cost",
    "notes",
    "photo_urls",
    "cost_details",
)

TRIP_STATUSES = ("ongoing", "completed")


def new_placeholder_id() -> str:
    return f"{PLACEHOLDER_PREFIX}{uuid.uuid4()}"


def is_placeholder(entity_id: Optional[str]) -> bool:
    return bool(entity_id) and str(entity_id).startswith(PLACEHOLDER_PREFIX)


def pick_columns(data: Mapping[str, Any], columns, *, kind: str) -> Dict[str, Any]:
    """Keep the known columns of a partial payload, rejecting unknown ones."""

    unknown = sorted(key for key in data if key not in columns)
    if unknown:
        raise ValueError(f"Unsupported {kind} field(s): {', '.join(unknown)}")
    return {key: data[key] for key in columns if key in data}


class Stop(SQLModel):
    id: str
    trip_id: str
    name: str = ""
    stop_type: str = "stop"
    was_driving: bool = False
    location: Optional[Dict[str, float]] = None
    place: Optional[str] = None
    place_detail: Optional[str] = None
    arrival_km: Optional[float] = None
    departure_km: Optional[float] = None
    arrival_date: str = ""
    arrival_time: str = ""
    departure_date: Optional[str] = None
    departure_time: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)
    other_reason: Optional[str] = None
    # currency units on the client, cents in the backend
    cost: float = 0.0
    notes: Optional[str] = None
    photo_urls: List[str] = Field(default_factory=list)
    cost_details: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Stop":
        cost = row.get("cost")
        return cls(
            id=str(row["id"]),
            trip_id=str(row.get("trip_id") or ""),
            name=row.get("name") or "",
            stop_type=row.get("stop_type") or "stop",
            was_driving=bool(row.get("was_driving") or False),
            location=row.get("location"),
            place=row.get("place"),
            place_detail=row.get("place_detail"),
            arrival_km=row.get("arrival_km"),
            departure_km=row.get("departure_km"),
            arrival_date=row.get("arrival_date") or "",
            arrival_time=row.get("arrival_time") or "",
            departure_date=row.get("departure_date"),
            departure_time=row.get("departure_time"),
            reasons=list(row.get("reasons") or []),
            other_reason=row.get("other_reason"),
            cost=(cost / 100) if isinstance(cost, (int, float)) else 0.0,
            notes=row.get("notes"),
            photo_urls=list(row.get("photo_urls") or []),
            cost_details=list(row.get("cost_details") or []),
            created_at=row.get("created_at"),
        )

    def to_row(self) -> Dict[str, Any]:
        row = self.model_dump(include=set(STOP_COLUMNS))
        row["cost"] = round((self.cost or 0) * 100)
        return row


def stop_changes(updates: Mapping[str, Any]) -> Dict[str, Any]:
    changes = pick_columns(updates, STOP_COLUMNS, kind="stop")
    if "cost" in changes and changes["cost"] is not None:
        changes["cost"] = round(changes["cost"] * 100)
    return changes


class Trip(SQLModel):
    id: str
    name: str = ""
    departure_location: str = ""
    departure_coords: Optional[Dict[str, float]] = None
    departure_date: str = ""
    departure_time: str = ""
    arrival_location: Optional[str] = None
    arrival_coords: Optional[Dict[str, float]] = None
    arrival_date: Optional[str] = None
    arrival_time: Optional[str] = None
    start_km: Optional[float] = None
    end_km: Optional[float] = None
    details: Optional[str] = None
    status: str = "ongoing"
    is_driving: bool = False
    has_vehicle: bool = False
    vehicle_ids: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    stops: List[Stop] = Field(default_factory=list)

    @property
    def is_local(self) -> bool:
        return is_placeholder(self.id)

    @classmethod
    def from_row(cls, row: Mapping[str, Any], stops: Optional[List[Stop]] = None) -> "Trip":
        data = {key: row.get(key) for key in TRIP_COLUMNS if row.get(key) is not None}
        data["vehicle_ids"] = [str(v) for v in (row.get("vehicle_ids") or [])]
        data["is_driving"] = bool(row.get("is_driving") or False)
        data["has_vehicle"] = bool(row.get("has_vehicle") or False)
        return cls(
            id=str(row["id"]),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            stops=list(stops or []),
            **data,
        )

    def to_row(self) -> Dict[str, Any]:
        """Backend columns without the identifier (the server assigns it)."""

        return self.model_dump(include=set(TRIP_COLUMNS))


def trip_changes(updates: Mapping[str, Any]) -> Dict[str, Any]:
    changes = pick_columns(updates, TRIP_COLUMNS, kind="trip")
    status = changes.get("status")
    if status is not None and status not in TRIP_STATUSES:
        raise ValueError(f"Unsupported trip status: {status}")
    return changes


__all__ = [
    "PLACEHOLDER_PREFIX",
    "STOP_COLUMNS",
    "TRIP_COLUMNS",
    "Stop",
    "Trip",
    "is_placeholder",
    "new_placeholder_id",
    "pick_columns",
    "stop_changes",
    "trip_changes",
]
