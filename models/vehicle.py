from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlmodel import Field, SQLModel

from models.trip import is_placeholder, pick_columns


VEHICLE_COLUMNS = (
    "nickname",
    "category",
    "make",
    "model",
    "color",
    "year",
    "license_plate",
    "vehicle_type",
    "km_initial",
    "fuels",
    "photo_url",
    "photo_path",
    "active",
)


class SyncStatus(str, Enum):
    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


def unique_fuels(fuels: Optional[Iterable[str]]) -> List[str]:
    seen: List[str] = []
    for fuel in fuels or []:
        if fuel and fuel not in seen:
            seen.append(fuel)
    return seen


class Vehicle(SQLModel):
    id: str
    nickname: str = ""
    category: str = ""
    make: str = ""
    model: str = ""
    color: str = ""
    year: Optional[int] = None
    license_plate: str = ""
    vehicle_type: str = ""
    km_initial: Optional[float] = None
    fuels: List[str] = Field(default_factory=list)
    photo_url: Optional[str] = None
    photo_path: Optional[str] = None
    active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    # only vehicles carry a sync tag; trips do not
    sync_status: SyncStatus = SyncStatus.SYNCED

    @property
    def is_local(self) -> bool:
        return is_placeholder(self.id)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Vehicle":
        data = {key: row.get(key) for key in VEHICLE_COLUMNS if row.get(key) is not None}
        data["fuels"] = unique_fuels(row.get("fuels"))
        active = row.get("active")
        data["active"] = active if isinstance(active, bool) else True
        return cls(
            id=str(row["id"]),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            sync_status=SyncStatus.SYNCED,
            **data,
        )

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(include=set(VEHICLE_COLUMNS))


def vehicle_changes(updates: Mapping[str, Any]) -> Dict[str, Any]:
    changes = pick_columns(updates, VEHICLE_COLUMNS, kind="vehicle")
    if "fuels" in changes:
        changes["fuels"] = unique_fuels(changes["fuels"])
    return changes


__all__ = ["SyncStatus", "VEHICLE_COLUMNS", "Vehicle", "unique_fuels", "vehicle_changes"]
