"""Offline snapshots of the trip and vehicle collections."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from core.logs import ensure_logger
from datetime_utils import utc_now
from models.cache_entry import CacheEntry
from storage.db import get_session


TRIPS_KEY = "trips"
VEHICLES_KEY = "vehicles"
SEGMENTS_KEY = "trip_vehicle_segments"


def _jsonable(item: Any) -> Any:
    if hasattr(item, "model_dump"):
        return item.model_dump(mode="json")
    return item


@dataclass
class CacheSnapshot:
    trips: List[dict] = field(default_factory=list)
    vehicles: List[dict] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


class CacheStore:
    """Whole-collection JSON snapshots stored under fixed keys.

    Writes overwrite the previous snapshot; there is no versioning, the last
    writer wins. Storage or serialization failures never raise: ``save`` and
    ``write_list`` report them through their boolean result and the sync log,
    ``load`` and ``read_list`` return empty lists plus a problem description.
    """

    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory
        self.logger = ensure_logger("triplog.cache")

    # ----- trips + vehicles -----
    def save(self, trips: Iterable[Any], vehicles: Iterable[Any]) -> bool:
        saved_trips = self.write_list(TRIPS_KEY, trips)
        saved_vehicles = self.write_list(VEHICLES_KEY, vehicles)
        return saved_trips and saved_vehicles

    def load(self) -> CacheSnapshot:
        snapshot = CacheSnapshot()
        snapshot.trips, problem = self.read_list(TRIPS_KEY)
        if problem:
            snapshot.problems.append(problem)
        snapshot.vehicles, problem = self.read_list(VEHICLES_KEY)
        if problem:
            snapshot.problems.append(problem)
        return snapshot

    # ----- generic keys -----
    def write_list(self, key: str, items: Iterable[Any]) -> bool:
        try:
            payload = json.dumps([_jsonable(item) for item in items], ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            self.logger.warning("Cache %s not serializable: %s", key, exc)
            return False
        try:
            with self._session_factory() as session:
                row = session.get(CacheEntry, key)
                if row is None:
                    row = CacheEntry(key=key, value=payload)
                else:
                    row.value = payload
                    row.updated_at = utc_now()
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            self.logger.warning("Cache %s write failed: %s", key, exc)
            return False
        return True

    def read_list(self, key: str) -> Tuple[List[dict], Optional[str]]:
        try:
            with self._session_factory() as session:
                row = session.get(CacheEntry, key)
                raw = row.value if row else None
        except SQLAlchemyError as exc:
            self.logger.warning("Cache %s read failed: %s", key, exc)
            return [], f"{key}: {exc}"

        if raw is None:
            return [], None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            self.logger.warning("Cache %s is corrupted, clearing it: %s", key, exc)
            self.clear(key)
            return [], f"{key}: {exc}"
        if not isinstance(data, list):
            self.logger.warning("Cache %s does not hold a list, clearing it", key)
            self.clear(key)
            return [], f"{key}: not a list"
        return data, None

    def clear(self, key: str) -> None:
        try:
            with self._session_factory() as session:
                row = session.get(CacheEntry, key)
                if row:
                    session.delete(row)
                    session.commit()
        except SQLAlchemyError as exc:
            self.logger.warning("Cache %s clear failed: %s", key, exc)


__all__ = ["CacheSnapshot", "CacheStore", "SEGMENTS_KEY", "TRIPS_KEY", "VEHICLES_KEY"]
