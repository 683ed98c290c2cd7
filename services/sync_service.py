from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from core.logs import ensure_logger
from core.settings import SYNC
from datetime_utils import to_rfc3339_utc, utc_now
from models.pending_op import OpKind, OpStatus
from models.trip import is_placeholder
from models.vehicle import SyncStatus
from services.backend import BackendError
from services.connectivity import ConnectivityMonitor
from services.pending_ops_queue import PendingOperation, PendingOpsQueue
from services.trip_store import TripStore
from services.trips import TripService


@dataclass(frozen=True)
class SyncPhase:
    syncing: bool = False
    background_syncing: bool = False

    @property
    def idle(self) -> bool:
        return not (self.syncing or self.background_syncing)


@dataclass
class FlushResult:
    applied: int = 0
    remaining: int = 0
    failed_item: Optional[PendingOperation] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SyncOrchestrator:
    """Replays the pending queue and refreshes from the backend on reconnect.

    A cycle is flush then refresh, raced against a foreground timeout. When
    the timeout wins the work keeps running in its thread and the phase moves
    to background syncing until it settles. Only one cycle runs at a time.
    """

    def __init__(
        self,
        trips: TripService,
        queue: PendingOpsQueue,
        store: TripStore,
        *,
        timeout_sec: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        self.trips = trips
        self.queue = queue
        self.store = store
        self.timeout_sec = SYNC.foreground_timeout_sec if timeout_sec is None else timeout_sec
        self.max_attempts = max_attempts or SYNC.max_attempts
        self.logger = ensure_logger("triplog.sync")
        self._phase = SyncPhase()
        self._listeners: Set[Callable[[SyncPhase], None]] = set()
        self._in_flight = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.last_sync_at: Optional[str] = None
        self.last_error: Optional[str] = None
        self._handlers: Dict[OpKind, Callable[[PendingOperation], Optional[str]]] = {
            OpKind.TRIP_INSERT: self._apply_trip_insert,
            OpKind.TRIP_UPDATE: self._apply_trip_update,
            OpKind.TRIP_DELETE: self._apply_trip_delete,
            OpKind.VEHICLE_INSERT: self._apply_vehicle_insert,
            OpKind.VEHICLE_UPDATE: self._apply_vehicle_update,
            OpKind.VEHICLE_DELETE: self._apply_vehicle_delete,
        }

    # ------------------------------------------------------------------
    # Phase
    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def subscribe(self, callback: Callable[[SyncPhase], None]) -> None:
        self._listeners.add(callback)

    def unsubscribe(self, callback: Callable[[SyncPhase], None]) -> None:
        self._listeners.discard(callback)

    def _set_phase(self, phase: SyncPhase) -> None:
        if phase == self._phase:
            return
        self._phase = phase
        for listener in list(self._listeners):
            try:
                listener(phase)
            except Exception as exc:  # pragma: no cover
                self.logger.error("Phase listener failed: %s", exc)

    # ------------------------------------------------------------------
    # Wiring
    def bind(self, monitor: ConnectivityMonitor, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        monitor.subscribe(self._on_connectivity)

    def _on_connectivity(self, online: bool) -> None:
        if not online or self._loop is None:
            return
        asyncio.run_coroutine_threadsafe(self.run_cycle(), self._loop)

    # ------------------------------------------------------------------
    # Cycle
    async def run_cycle(self) -> bool:
        """Run one sync cycle. Returns True when it finished in the foreground."""

        if self._in_flight:
            self.logger.info("Sync trigger ignored: a cycle is already running")
            return False
        self._in_flight = True
        self._set_phase(SyncPhase(syncing=True))
        work = asyncio.ensure_future(asyncio.to_thread(self.flush_and_refresh))
        done, _pending = await asyncio.wait({work}, timeout=self.timeout_sec)
        if work in done:
            self._settle(work)
            return True

        self.logger.warning("Sync exceeded %.1fs, continuing in background", self.timeout_sec)
        self._set_phase(SyncPhase(background_syncing=True))
        work.add_done_callback(self._settle)
        return False

    def _settle(self, work: "asyncio.Future") -> None:
        exc = None if work.cancelled() else work.exception()
        if exc is not None:
            self.last_error = str(exc)
            self.logger.error("Sync cycle failed: %s", exc)
        self._in_flight = False
        self._set_phase(SyncPhase())

    def flush_and_refresh(self) -> FlushResult:
        if not self.trips.can_sync():
            self.logger.info("Sync skipped: backend, connectivity or session missing")
            return FlushResult()
        result = self.flush()
        try:
            self.trips.refresh_from_backend()
            self.last_sync_at = to_rfc3339_utc(utc_now())
            if result.ok:
                self.last_error = None
        except BackendError as exc:
            self.last_error = str(exc)
            self.logger.error("Refresh after flush failed: %s", exc)
        return result

    # ------------------------------------------------------------------
    # Flush
    def flush(self) -> FlushResult:
        items = self.queue.read_all()
        result = FlushResult()
        if not items:
            return result

        remaining: List[PendingOperation] = []
        renames: List[Tuple[str, str]] = []
        # placeholders whose insert gave up; their dependents must wait
        blocked: Set[str] = set()
        stopped = False
        for index, item in enumerate(items):
            if stopped:
                remaining.append(item)
                continue
            if item.failed or self._depends_on(item, blocked):
                if item.kind.action == "insert":
                    blocked.add(item.entity_id)
                remaining.append(item)
                continue
            try:
                new_id = self._handlers[item.kind](item)
            except BackendError as exc:
                self._record_failure(item, str(exc))
            except Exception as exc:  # pragma: no cover
                self.logger.error("Replaying %s crashed: %s", item.kind.value, exc)
                self._record_failure(item, str(exc))
            else:
                result.applied += 1
                if new_id is not None and new_id != item.entity_id:
                    renames.append((item.entity_id, new_id))
                    self._reconcile(item, new_id, items[index + 1:])
                continue
            remaining.append(item)
            result.failed_item = item
            result.error = item.last_error
            stopped = True

        # rows enqueued while the pass ran are outside the scope and survive
        self.queue.replace(remaining, within=[item.seq for item in items])
        for old_id, new_id in renames:
            self.queue.rename_entity(old_id, new_id)
        result.remaining = len(remaining)
        if not self.trips.cache.save(self.store.trips, self.store.vehicles):
            self.logger.warning("Local snapshot not saved after flush")
        self.logger.info("Flushed %d operation(s), %d remaining", result.applied, result.remaining)
        return result

    @staticmethod
    def _depends_on(item: PendingOperation, blocked: Set[str]) -> bool:
        if not blocked:
            return False
        if item.entity_id in blocked:
            return True
        vehicle_ids = item.payload.get("vehicle_ids")
        return isinstance(vehicle_ids, list) and any(v in blocked for v in vehicle_ids)

    def _record_failure(self, item: PendingOperation, message: str) -> None:
        item.attempts += 1
        item.last_error = message
        if item.attempts >= self.max_attempts:
            item.status = OpStatus.FAILED
            self.logger.error(
                "Giving up on %s %s after %d attempts: %s",
                item.kind.value, item.entity_id, item.attempts, message,
            )
        else:
            self.logger.warning("Replaying %s %s failed: %s", item.kind.value, item.entity_id, message)
        if item.kind.entity == "vehicle":
            vehicle = self.store.get_vehicle(item.entity_id)
            if vehicle is not None:
                self.store.put_vehicle(vehicle.model_copy(update={"sync_status": SyncStatus.ERROR}))

    def _reconcile(self, item: PendingOperation, new_id: str, later: List[PendingOperation]) -> None:
        old_id = item.entity_id
        if item.kind == OpKind.TRIP_INSERT:
            self.store.rename_trip_id(old_id, new_id)
        else:
            self.store.rename_vehicle_id(old_id, new_id)
        self.trips.segments.rename_ids(old_id, new_id)
        for other in later:
            if other.kind.entity == item.kind.entity and other.entity_id == old_id:
                other.entity_id = new_id
            vehicle_ids = other.payload.get("vehicle_ids")
            if isinstance(vehicle_ids, list) and old_id in vehicle_ids:
                other.payload["vehicle_ids"] = [new_id if v == old_id else v for v in vehicle_ids]
        self.logger.info("Placeholder %s is now %s", old_id, new_id)

    # ----- handlers, one per OpKind -----
    @staticmethod
    def _require_server_id(item: PendingOperation) -> None:
        if is_placeholder(item.entity_id):
            raise BackendError(f"{item.kind.value} {item.entity_id}: insert not synced yet")

    def _apply_trip_insert(self, item: PendingOperation) -> str:
        return self.trips.push_trip_insert(item.payload).id

    def _apply_trip_update(self, item: PendingOperation) -> None:
        self._require_server_id(item)
        if self.trips.push_trip_update(item.entity_id, item.payload) is None:
            raise BackendError(f"trip_update {item.entity_id}: no such row")

    def _apply_trip_delete(self, item: PendingOperation) -> None:
        self._require_server_id(item)
        self.trips.push_trip_delete(item.entity_id)

    def _apply_vehicle_insert(self, item: PendingOperation) -> str:
        vehicle = self.trips.push_vehicle_insert(item.payload)
        current = self.store.get_vehicle(item.entity_id)
        if current is not None:
            self.store.put_vehicle(current.model_copy(update={"sync_status": SyncStatus.SYNCED}))
        return vehicle.id

    def _apply_vehicle_update(self, item: PendingOperation) -> None:
        self._require_server_id(item)
        if self.trips.push_vehicle_update(item.entity_id, item.payload) is None:
            raise BackendError(f"vehicle_update {item.entity_id}: no such row")
        current = self.store.get_vehicle(item.entity_id)
        if current is not None:
            self.store.put_vehicle(current.model_copy(update={"sync_status": SyncStatus.SYNCED}))

    def _apply_vehicle_delete(self, item: PendingOperation) -> None:
        self._require_server_id(item)
        self.trips.push_vehicle_delete(item.entity_id)

    # ------------------------------------------------------------------
    def discard_failed(self) -> int:
        dropped = self.queue.discard_failed()
        if dropped:
            self.logger.info("Discarded %d failed operation(s)", dropped)
        return dropped

    def status(self) -> dict:
        return {
            "queueSize": self.queue.count(),
            "failed": len(self.queue.failed()),
            "syncing": self._phase.syncing,
            "backgroundSyncing": self._phase.background_syncing,
            "lastSyncAt": self.last_sync_at,
            "lastError": self.last_error,
        }


__all__ = ["FlushResult", "SyncOrchestrator", "SyncPhase"]
