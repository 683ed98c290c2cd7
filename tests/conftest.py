import copy
import itertools
from pathlib import Path
from types import SimpleNamespace
import sys

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import models.cache_entry  # noqa: E402,F401
import models.pending_op  # noqa: E402,F401
from services.backend import BackendError  # noqa: E402
from services.cache_store import CacheStore  # noqa: E402
from services.connectivity import ConnectivityMonitor  # noqa: E402
from services.pending_ops_queue import PendingOpsQueue  # noqa: E402
from services.segments import SegmentService  # noqa: E402
from services.stops import StopService  # noqa: E402
from services.sync_service import SyncOrchestrator  # noqa: E402
from services.trip_store import TripStore  # noqa: E402
from services.trips import TripService  # noqa: E402


class FakeBackend:
    """In-memory tables with the same call surface as :class:`Backend`."""

    configured = True

    def __init__(self):
        self.tables = {}
        self.calls = []
        self.failures = {}
        self.objects = {}
        self.gate = None
        self._ids = itertools.count(1)

    # ----- test controls -----
    def fail(self, action, table, *, times=1, after=0, message="service unavailable", code=None):
        self.failures[(action, table)] = {"times": times, "after": after, "message": message, "code": code}

    def seed(self, table, **row):
        row.setdefault("id", f"srv-{next(self._ids)}")
        self.tables.setdefault(table, []).append(dict(row))
        return row["id"]

    def count(self, action=None, table=None):
        return sum(
            1 for a, t in self.calls
            if (action is None or a == action) and (table is None or t == table)
        )

    def _call(self, action, table):
        self.calls.append((action, table))
        if self.gate is not None:
            self.gate.wait(5)
        rule = self.failures.get((action, table))
        if rule is None:
            return
        if rule["after"] > 0:
            rule["after"] -= 1
            return
        if rule["times"] > 0:
            rule["times"] -= 1
            raise BackendError(f"{action} {table}: {rule['message']}", code=rule["code"], status=503)

    @staticmethod
    def _matches(row, filters):
        return all(row.get(k) == v for k, v in (filters or {}).items() if v is not None)

    # ----- Backend surface -----
    def select(self, table, *, filters=None, order=(), columns="*", limit=None):
        self._call("select", table)
        rows = [copy.deepcopy(r) for r in self.tables.get(table, []) if self._matches(r, filters)]
        for column, ascending in reversed(list(order)):
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=not ascending)
        return rows[:limit] if limit is not None else rows

    def insert(self, table, row):
        self._call("insert", table)
        stored = copy.deepcopy(dict(row))
        stored["id"] = f"srv-{next(self._ids)}"
        stored.setdefault("created_at", f"2024-01-01T00:00:{len(self.calls):02d}Z")
        self.tables.setdefault(table, []).append(stored)
        return copy.deepcopy(stored)

    def update(self, table, changes, *, filters):
        self._call("update", table)
        updated = None
        for row in self.tables.get(table, []):
            if self._matches(row, filters):
                row.update(copy.deepcopy(dict(changes)))
                updated = copy.deepcopy(row)
        return updated

    def delete(self, table, *, filters):
        self._call("delete", table)
        rows = self.tables.get(table, [])
        keep = [r for r in rows if not self._matches(r, filters)]
        self.tables[table] = keep
        return len(rows) - len(keep)

    def upload(self, path, data, *, content_type, bucket=None):
        self._call("upload", bucket or "trip-photos")
        self.objects[path] = (data, content_type)
        return path

    def signed_url(self, path, *, bucket=None, expires_in=None):
        self._call("signed_url", bucket or "trip-photos")
        return f"https://files.test/{path}?token=abc"

    def remove(self, paths, *, bucket=None):
        self._call("remove", bucket or "trip-photos")
        for path in paths:
            self.objects.pop(path, None)


class FakeAuth:
    def __init__(self, user_id="user-1"):
        self.user_id = user_id
        self.email = "ana@example.com" if user_id else None

    @property
    def is_authenticated(self):
        return self.user_id is not None


@pytest.fixture()
def session_factory():
    # one shared connection so the orchestrator's worker thread sees the same data
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)

    def factory():
        return Session(engine)

    return factory


@pytest.fixture()
def stack(session_factory):
    """Services wired like the app shell, offline by default."""

    backend = FakeBackend()
    auth = FakeAuth()
    monitor = ConnectivityMonitor(probe=lambda: False, initial=False)
    cache = CacheStore(session_factory)
    queue = PendingOpsQueue(session_factory)
    store = TripStore()
    parts = (backend, auth, monitor, store, cache)
    segments = SegmentService(*parts)
    trips = TripService(*parts, queue=queue, segments=segments)
    stops = StopService(*parts, segments=segments)
    sync = SyncOrchestrator(trips, queue, store, timeout_sec=5, max_attempts=3)
    return SimpleNamespace(
        backend=backend,
        auth=auth,
        monitor=monitor,
        cache=cache,
        queue=queue,
        store=store,
        segments=segments,
        trips=trips,
        stops=stops,
        sync=sync,
    )
