"""SQLModel table for mutations waiting to reach the backend."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class OpKind(str, Enum):
    TRIP_INSERT = "trip_insert"
    TRIP_UPDATE = "trip_update"
    TRIP_DELETE = "trip_delete"
    VEHICLE_INSERT = "vehicle_insert"
    VEHICLE_UPDATE = "vehicle_update"
    VEHICLE_DELETE = "vehicle_delete"

    @property
    def entity(self) -> str:
        return self.value.split("_", 1)[0]

    @property
    def action(self) -> str:
        return self.value.split("_", 1)[1]


class OpStatus(str, Enum):
    PENDING = "pending"
    FAILED = "failed"


class PendingOp(SQLModel, table=True):
    # AUTOINCREMENT keeps ids monotonic even after the table is emptied
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    kind: str = Field(index=True)
    entity_id: str = Field(index=True)
    payload: str = "{}"
    attempts: int = Field(default=0)
    status: str = Field(default=OpStatus.PENDING.value, index=True)
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


__all__ = ["OpKind", "OpStatus", "PendingOp"]
