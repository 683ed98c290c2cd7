"""Shared plumbing of the services that talk to the backend or the cache."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, TypeVar

from pydantic import ValidationError
from sqlmodel import SQLModel

from core.logs import ensure_logger
from services.auth import BackendAuth
from services.backend import Backend, BackendError, Ordering
from services.cache_store import CacheStore
from services.connectivity import ConnectivityMonitor
from services.trip_store import TripStore


ModelT = TypeVar("ModelT", bound=SQLModel)


def missing_user_column(exc: BackendError) -> bool:
    return exc.missing_column and "user_id" in str(exc)


def parse_models(model: Type[ModelT], rows: Iterable[Any], logger=None) -> List[ModelT]:
    """Validate cached dictionaries, skipping the ones that no longer fit."""

    result: List[ModelT] = []
    for row in rows:
        try:
            result.append(model.model_validate(row))
        except ValidationError as exc:
            if logger is not None:
                logger.warning("Skipping malformed cached %s: %s", model.__name__, exc)
    return result


class RemoteService:
    """Direct-or-local decision shared by the trip, segment and stop services."""

    logger_name = "triplog.trips"

    def __init__(
        self,
        backend: Backend,
        auth: Optional[BackendAuth],
        connectivity: ConnectivityMonitor,
        store: TripStore,
        cache: CacheStore,
    ) -> None:
        self.backend = backend
        self.auth = auth
        self.connectivity = connectivity
        self.store = store
        self.cache = cache
        self.logger = ensure_logger(self.logger_name)

    @property
    def user_id(self) -> Optional[str]:
        return self.auth.user_id if self.auth is not None else None

    def _direct(self) -> bool:
        return bool(self.backend.configured and self.connectivity.online and self.user_id)

    def can_sync(self) -> bool:
        return self._direct()

    def _persist(self) -> bool:
        saved = self.cache.save(self.store.trips, self.store.vehicles)
        if not saved:
            self.logger.warning("Local snapshot not saved")
        return saved

    # ------------------------------------------------------------------
    # Per-user table helpers; projects without a user_id column are tolerated
    def _select_owned(
        self,
        table: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        order: Ordering = (),
        columns: str = "*",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        base = dict(filters or {})
        try:
            return self.backend.select(
                table, filters={**base, "user_id": self.user_id}, order=order, columns=columns, limit=limit
            )
        except BackendError as exc:
            if not missing_user_column(exc):
                raise
            return self.backend.select(table, filters=base, order=order, columns=columns, limit=limit)

    def _insert_owned(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            return self.backend.insert(table, {**row, "user_id": self.user_id})
        except BackendError as exc:
            if not missing_user_column(exc):
                raise
            return self.backend.insert(table, dict(row))

    def _update_owned(self, table: str, changes: Mapping[str, Any], *, filters: Mapping[str, Any]):
        try:
            return self.backend.update(table, changes, filters={**filters, "user_id": self.user_id})
        except BackendError as exc:
            if not missing_user_column(exc):
                raise
            return self.backend.update(table, changes, filters=dict(filters))

    def _delete_owned(self, table: str, *, filters: Mapping[str, Any]) -> int:
        try:
            return self.backend.delete(table, filters={**filters, "user_id": self.user_id})
        except BackendError as exc:
            if not missing_user_column(exc):
                raise
            return self.backend.delete(table, filters=dict(filters))


__all__ = ["RemoteService", "missing_user_column", "parse_models"]
