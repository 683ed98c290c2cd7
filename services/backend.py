"""Thin wrapper around the hosted backend (Supabase) used by the services."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from core.settings import BACKEND, BackendSettings


Filters = Mapping[str, Any]
Ordering = Sequence[Tuple[str, bool]]  # (column, ascending)


class BackendError(RuntimeError):
    """A backend call failed. ``code`` is the PostgREST/Postgres code if any."""

    def __init__(self, message: str, *, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status = status

    @classmethod
    def wrap(cls, message: str, exc: Exception) -> "BackendError":
        return cls(
            f"{message} ({exc})",
            code=getattr(exc, "code", None),
            status=getattr(exc, "status", None),
        )

    @property
    def missing_column(self) -> bool:
        text = str(self).lower()
        return self.code in ("42703", "PGRST204") or "column" in text or "schema cache" in text


class Backend:
    """Per-table CRUD, object storage and the auth client of the backend."""

    def __init__(self, settings: BackendSettings = BACKEND, client: Optional[Client] = None) -> None:
        self.settings = settings
        self.client = client

    @property
    def configured(self) -> bool:
        return self.client is not None or self.settings.configured

    # ------------------------------------------------------------------
    # Initialisation helpers
    def connect(self) -> Client:
        if self.client is not None:
            return self.client
        if not self.settings.configured:
            raise BackendError(
                "Serviço indisponível. Configure TRIPLOG_SUPABASE_URL e TRIPLOG_SUPABASE_ANON_KEY."
            )
        self.client = create_client(self.settings.url, self.settings.anon_key)
        return self.client

    @property
    def auth(self):
        return self.connect().auth

    # ------------------------------------------------------------------
    # Tables
    def select(
        self,
        table: str,
        *,
        filters: Optional[Filters] = None,
        order: Ordering = (),
        columns: str = "*",
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        request = self.connect().table(table).select(columns)
        request = self._apply_filters(request, filters)
        for column, ascending in order:
            request = request.order(column, desc=not ascending)
        if limit is not None:
            request = request.limit(limit)
        return self._execute(f"select {table}", request)

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        request = self.connect().table(table).insert(dict(row))
        data = self._execute(f"insert {table}", request)
        if not data:
            raise BackendError(f"insert {table} returned no row")
        return data[0]

    def update(self, table: str, changes: Mapping[str, Any], *, filters: Filters) -> Optional[Dict[str, Any]]:
        request = self.connect().table(table).update(dict(changes))
        request = self._apply_filters(request, filters)
        data = self._execute(f"update {table}", request)
        return data[0] if data else None

    def delete(self, table: str, *, filters: Filters) -> int:
        request = self.connect().table(table).delete()
        request = self._apply_filters(request, filters)
        return len(self._execute(f"delete {table}", request))

    # ------------------------------------------------------------------
    # Object storage
    def upload(self, path: str, data: bytes, *, content_type: str, bucket: Optional[str] = None) -> str:
        bucket_name = bucket or self.settings.photos_bucket
        try:
            self.connect().storage.from_(bucket_name).upload(
                path,
                data,
                {"content-type": content_type, "upsert": "true"},
            )
        except Exception as exc:
            raise BackendError.wrap(f"upload {bucket_name}/{path}", exc) from exc
        return path

    def signed_url(self, path: str, *, bucket: Optional[str] = None, expires_in: Optional[int] = None) -> Optional[str]:
        bucket_name = bucket or self.settings.photos_bucket
        try:
            response = self.connect().storage.from_(bucket_name).create_signed_url(
                path, expires_in or self.settings.signed_url_ttl_sec
            )
        except Exception as exc:
            raise BackendError.wrap(f"signed url {bucket_name}/{path}", exc) from exc
        if isinstance(response, dict):
            return response.get("signedURL") or response.get("signedUrl")
        return None

    def remove(self, paths: Iterable[str], *, bucket: Optional[str] = None) -> None:
        bucket_name = bucket or self.settings.photos_bucket
        targets = [p for p in paths if p]
        if not targets:
            return
        try:
            self.connect().storage.from_(bucket_name).remove(targets)
        except Exception as exc:
            raise BackendError.wrap(f"remove {bucket_name}", exc) from exc

    # ------------------------------------------------------------------
    @staticmethod
    def _apply_filters(request, filters: Optional[Filters]):
        for column, value in (filters or {}).items():
            if value is None:
                continue
            request = request.eq(column, value)
        return request

    @staticmethod
    def _execute(label: str, request) -> List[Dict[str, Any]]:
        try:
            response = request.execute()
        except APIError as exc:
            raise BackendError(f"{label}: {exc.message}", code=exc.code) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"{label}: {exc}") from exc
        data = getattr(response, "data", None)
        if data is None:
            return []
        return data if isinstance(data, list) else [data]


__all__ = ["Backend", "BackendError"]
