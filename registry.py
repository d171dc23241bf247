"""
Batch registry: owns the identifier counter, the batch records and the
event log, and applies every mutation as one locked transaction.
"""
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from errors import BatchNotFound, InvalidBatchId, MutationRejected, ReplayError
from models import INITIAL_STATUS, Batch, Event, RegistryState
from schemas import BatchDetails, ChainVerification, EventKind, EventRecord
from utils import GENESIS, compute_hash, replay_events, verify_chain

logger = logging.getLogger(__name__)

STATE_ROW_ID = 1

MutationGate = Callable[[EventKind, Optional[int]], bool]


def allow_all(kind: EventKind, batch_id: Optional[int]) -> bool:
    return True


def _event_dict(ev: Event) -> dict:
    return {
        "seq": ev.seq,
        "kind": ev.kind,
        "batch_id": ev.batch_id,
        "payload": json.loads(ev.payload),
        "timestamp": ev.timestamp,
        "prev_hash": ev.prev_hash,
        "hash": ev.hash,
    }


class BatchRegistry:
    """Registry of crop batches backed by a SQLAlchemy session factory.

    Every call, read or write, holds one lock for its whole duration; each
    mutation commits id allocation, the record write and the event append in
    a single transaction, so a failed call leaves no trace and no reader sees
    a pending write.
    """

    def __init__(self, session_factory: sessionmaker, gate: MutationGate = allow_all):
        self._session_factory = session_factory
        self._gate = gate
        self._lock = threading.RLock()

    # ---------- Identifier allocation ----------
    @staticmethod
    def _counter(db: Session) -> int:
        state = db.get(RegistryState, STATE_ROW_ID)
        return state.counter if state else 0

    @staticmethod
    def _next_id(db: Session) -> int:
        state = db.get(RegistryState, STATE_ROW_ID)
        if state is None:
            state = RegistryState(id=STATE_ROW_ID, counter=0)
            db.add(state)
        state.counter += 1
        return state.counter

    @property
    def counter(self) -> int:
        with self._lock, self._session_factory() as db:
            return self._counter(db)

    # ---------- Helpers ----------
    def _authorize(self, kind: EventKind, batch_id: Optional[int]) -> None:
        if not self._gate(kind, batch_id):
            logger.warning("gate rejected %s on batch %s", kind.value, batch_id)
            raise MutationRejected(kind.value, batch_id)

    def _load_for_update(self, db: Session, batch_id: int) -> Batch:
        counter = self._counter(db)
        if batch_id < 1 or batch_id > counter:
            logger.warning("rejected mutation on invalid batch id %s (counter=%s)", batch_id, counter)
            raise InvalidBatchId(batch_id, counter)
        return db.get(Batch, batch_id)

    def _load_existing(self, db: Session, batch_id: int) -> Batch:
        if batch_id < 1 or batch_id > self._counter(db):
            raise BatchNotFound(batch_id)
        return db.get(Batch, batch_id)

    @staticmethod
    def _append_event(db: Session, batch_id: int, kind: EventKind, payload: dict) -> Event:
        prev = db.scalar(select(Event).order_by(Event.seq.desc()).limit(1))
        prev_hash = prev.hash if prev else GENESIS
        seq = prev.seq + 1 if prev else 1
        ts = datetime.now(timezone.utc).isoformat()
        ev = Event(
            seq=seq,
            batch_id=batch_id,
            kind=kind.value,
            payload=json.dumps(payload),
            timestamp=ts,
            prev_hash=prev_hash,
            hash=compute_hash(prev_hash, seq, kind.value, batch_id, payload, ts),
        )
        db.add(ev)
        return ev

    # ---------- Mutations ----------
    def register_batch(self, crop_type: str, origin_farm: str, harvest_date: int) -> int:
        self._authorize(EventKind.REGISTERED, None)
        with self._lock, self._session_factory.begin() as db:
            batch_id = self._next_id(db)
            db.add(Batch(
                batch_id=batch_id,
                crop_type=crop_type,
                origin_farm=origin_farm,
                harvest_date=harvest_date,
                current_owner=origin_farm,
                status=INITIAL_STATUS,
            ))
            ev = self._append_event(db, batch_id, EventKind.REGISTERED, {
                "crop_type": crop_type,
                "origin_farm": origin_farm,
                "harvest_date": harvest_date,
            })
        logger.info("registered batch %s (%s from %s) seq=%s", batch_id, crop_type, origin_farm, ev.seq)
        return batch_id

    def transfer_ownership(self, batch_id: int, new_owner: str) -> None:
        self._authorize(EventKind.OWNERSHIP_TRANSFERRED, batch_id)
        with self._lock, self._session_factory.begin() as db:
            batch = self._load_for_update(db, batch_id)
            batch.current_owner = new_owner
            ev = self._append_event(db, batch_id, EventKind.OWNERSHIP_TRANSFERRED,
                                    {"new_owner": new_owner})
        logger.info("batch %s transferred to %s seq=%s", batch_id, new_owner, ev.seq)

    def update_status(self, batch_id: int, new_status: str) -> None:
        self._authorize(EventKind.STATUS_UPDATED, batch_id)
        with self._lock, self._session_factory.begin() as db:
            batch = self._load_for_update(db, batch_id)
            batch.status = new_status
            ev = self._append_event(db, batch_id, EventKind.STATUS_UPDATED,
                                    {"new_status": new_status})
        logger.info("batch %s status set to %s seq=%s", batch_id, new_status, ev.seq)

    def register_if_empty(self, crop_type: str, origin_farm: str, harvest_date: int) -> Optional[int]:
        """Register a batch only when nothing has been registered yet."""
        with self._lock:
            if self.counter > 0:
                return None
            return self.register_batch(crop_type, origin_farm, harvest_date)

    # ---------- Queries ----------
    def get_batch_details(self, batch_id: int) -> BatchDetails:
        with self._lock, self._session_factory() as db:
            return BatchDetails.model_validate(self._load_existing(db, batch_id))

    def list_batches(self, q: Optional[str] = None, page: int = 1,
                     page_size: int = 10) -> Tuple[List[BatchDetails], int]:
        base = select(Batch)
        if q:
            like = f"%{q}%"
            base = base.where(or_(
                Batch.crop_type.ilike(like),
                Batch.origin_farm.ilike(like),
                Batch.current_owner.ilike(like),
                Batch.status.ilike(like),
            ))
        with self._lock, self._session_factory() as db:
            total = db.scalar(select(func.count()).select_from(base.subquery()))
            rows = db.scalars(
                base.order_by(Batch.batch_id.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
            ).all()
            return [BatchDetails.model_validate(b) for b in rows], total or 0

    def events(self, after: int = 0, limit: Optional[int] = None) -> List[EventRecord]:
        stmt = select(Event).where(Event.seq > after).order_by(Event.seq.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._lock, self._session_factory() as db:
            return [EventRecord(**_event_dict(e)) for e in db.scalars(stmt)]

    def history(self, batch_id: int) -> List[EventRecord]:
        with self._lock, self._session_factory() as db:
            batch = self._load_existing(db, batch_id)
            return [EventRecord(**_event_dict(e)) for e in batch.events]

    # ---------- Audit ----------
    def _log_and_records(self) -> Tuple[List[dict], Dict[int, dict]]:
        with self._lock, self._session_factory() as db:
            log = [_event_dict(e) for e in db.scalars(select(Event).order_by(Event.seq.asc()))]
            records = {
                b.batch_id: BatchDetails.model_validate(b).model_dump()
                for b in db.scalars(select(Batch))
            }
        return log, records

    def replay(self) -> Dict[int, BatchDetails]:
        log, _ = self._log_and_records()
        return {bid: BatchDetails(**fields) for bid, fields in replay_events(log).items()}

    def verify(self) -> ChainVerification:
        log, records = self._log_and_records()
        verified = verify_chain(log)
        try:
            consistent = replay_events(log) == records
        except ReplayError as e:
            logger.warning("event log does not replay: %s", e)
            consistent = False
        if not (verified and consistent):
            logger.warning("audit failed: chain verified=%s replay consistent=%s", verified, consistent)
        return ChainVerification(
            verified=verified,
            events=len(log),
            head_hash=log[-1]["hash"] if log else GENESIS,
            replay_consistent=consistent,
        )
