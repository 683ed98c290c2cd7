from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Union

from sqlalchemy import func
from sqlmodel import Session, select

from datetime_utils import utc_now
from models.pending_op import OpKind, OpStatus, PendingOp
from storage.db import get_session


@dataclass
class PendingOperation:
    kind: OpKind
    entity_id: str
    payload: dict = field(default_factory=dict)
    seq: Optional[int] = None
    attempts: int = 0
    status: OpStatus = OpStatus.PENDING
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def failed(self) -> bool:
        return self.status == OpStatus.FAILED


def _decode(row: PendingOp) -> PendingOperation:
    try:
        payload = json.loads(row.payload)
    except json.JSONDecodeError:
        payload = {}
    return PendingOperation(
        kind=OpKind(row.kind),
        entity_id=row.entity_id,
        payload=payload if isinstance(payload, dict) else {},
        seq=row.id,
        attempts=row.attempts,
        status=OpStatus(row.status),
        last_error=row.last_error,
        created_at=row.created_at,
    )


def _encode(item: PendingOperation) -> PendingOp:
    return PendingOp(
        id=item.seq,
        kind=item.kind.value,
        entity_id=item.entity_id,
        payload=json.dumps(item.payload or {}, ensure_ascii=False),
        attempts=item.attempts,
        status=item.status.value,
        last_error=item.last_error[:1000] if item.last_error else None,
        created_at=item.created_at or utc_now(),
    )


class PendingOpsQueue:
    """FIFO of mutations that could not reach the backend.

    Entries are never deduplicated or coalesced: two identical enqueues are
    replayed twice.
    """

    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory

    def enqueue(
        self,
        kind: Union[OpKind, str],
        entity_id: str,
        payload: Optional[dict] = None,
    ) -> PendingOperation:
        try:
            kind = OpKind(kind)
        except ValueError:
            raise ValueError(f"Unsupported op: {kind}") from None
        record = _encode(PendingOperation(kind=kind, entity_id=str(entity_id), payload=payload or {}))
        with self._session_factory() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return _decode(record)

    def read_all(self) -> List[PendingOperation]:
        with self._session_factory() as session:
            rows = list(session.exec(select(PendingOp).order_by(PendingOp.id.asc())))
        return [_decode(row) for row in rows]

    def replace(self, items: Iterable[PendingOperation], *, within: Optional[Iterable[int]] = None) -> None:
        """Rewrite the queue, keeping the sequence number of known items.

        With ``within`` only the rows with those sequence numbers are
        rewritten; rows enqueued after they were read stay untouched.
        """

        scope = None if within is None else {seq for seq in within if seq is not None}
        with self._session_factory() as session:
            stmt = select(PendingOp)
            if scope is not None:
                stmt = stmt.where(PendingOp.id.in_(scope))
            for obj in session.exec(stmt).all():
                session.delete(obj)
            session.flush()
            for item in items:
                session.add(_encode(item))
            session.commit()

    def rename_entity(self, old_id: str, new_id: str) -> int:
        """Point queued rows at ``new_id``, including trips' ``vehicle_ids``."""

        renamed = 0
        with self._session_factory() as session:
            for row in session.exec(select(PendingOp)).all():
                item = _decode(row)
                changed = False
                if item.entity_id == old_id:
                    row.entity_id = new_id
                    changed = True
                vehicle_ids = item.payload.get("vehicle_ids")
                if isinstance(vehicle_ids, list) and old_id in vehicle_ids:
                    item.payload["vehicle_ids"] = [new_id if v == old_id else v for v in vehicle_ids]
                    row.payload = json.dumps(item.payload, ensure_ascii=False)
                    changed = True
                if changed:
                    session.add(row)
                    renamed += 1
            session.commit()
        return renamed

    def pending(self) -> List[PendingOperation]:
        return [item for item in self.read_all() if not item.failed]

    def failed(self) -> List[PendingOperation]:
        return [item for item in self.read_all() if item.failed]

    def discard_failed(self) -> int:
        """Drop failed rows together with the rows that target a dropped insert."""

        with self._session_factory() as session:
            rows = session.exec(select(PendingOp).order_by(PendingOp.id.asc())).all()
            orphans = {
                row.entity_id
                for row in rows
                if row.status == OpStatus.FAILED.value
                and row.kind in (OpKind.TRIP_INSERT.value, OpKind.VEHICLE_INSERT.value)
            }
            dropped = 0
            for row in rows:
                if row.status == OpStatus.FAILED.value or row.entity_id in orphans:
                    session.delete(row)
                    dropped += 1
            session.commit()
            return dropped

    def count(self) -> int:
        with self._session_factory() as session:
            return int(session.exec(select(func.count()).select_from(PendingOp)).one())

    def has_pending_insert(self, entity_id: str) -> bool:
        with self._session_factory() as session:
            stmt = select(PendingOp).where(
                PendingOp.entity_id == entity_id,
                PendingOp.kind.in_([OpKind.TRIP_INSERT.value, OpKind.VEHICLE_INSERT.value]),
            )
            return session.exec(stmt).first() is not None


__all__ = ["PendingOpsQueue", "PendingOperation"]
