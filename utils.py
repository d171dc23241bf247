import hashlib
import json
from typing import Any, Dict, Iterable, List

from errors import ReplayError
from models import INITIAL_STATUS
from schemas import EventKind

GENESIS = "GENESIS"


def compute_hash(prev_hash: str, seq: int, kind: str, batch_id: int,
                 payload: dict, timestamp: str) -> str:
    block = json.dumps({
        "prev_hash": prev_hash,
        "seq": seq,
        "kind": kind,
        "batch_id": batch_id,
        "payload": payload,
        "timestamp": timestamp,
    }, sort_keys=True)
    return hashlib.sha256(block.encode("utf-8")).hexdigest()


def verify_chain(events: List[Dict[str, Any]]) -> bool:
    """True when sequence numbers run 1..n and every hash links to the one before."""
    prev = GENESIS
    for expected_seq, ev in enumerate(events, start=1):
        if ev["seq"] != expected_seq or ev["prev_hash"] != prev:
            return False
        expected = compute_hash(prev, ev["seq"], ev["kind"], ev["batch_id"],
                                ev["payload"], ev["timestamp"])
        if ev["hash"] != expected:
            return False
        prev = ev["hash"]
    return True


def replay_events(events: Iterable[Dict[str, Any]]) -> Dict[int, Dict[str, Any]]:
    """Fold the log into batch records keyed by id."""
    batches: Dict[int, Dict[str, Any]] = {}
    for ev in events:
        kind, batch_id, payload = ev["kind"], ev["batch_id"], ev["payload"]
        if kind == EventKind.REGISTERED.value:
            if batch_id != len(batches) + 1:
                raise ReplayError(ev["seq"], f"registration of {batch_id} out of order")
            batches[batch_id] = {
                "batch_id": batch_id,
                "crop_type": payload["crop_type"],
                "origin_farm": payload["origin_farm"],
                "harvest_date": payload["harvest_date"],
                "current_owner": payload["origin_farm"],
                "status": INITIAL_STATUS,
            }
            continue
        if batch_id not in batches:
            raise ReplayError(ev["seq"], f"batch {batch_id} not registered yet")
        if kind == EventKind.OWNERSHIP_TRANSFERRED.value:
            batches[batch_id]["current_owner"] = payload["new_owner"]
        elif kind == EventKind.STATUS_UPDATED.value:
            batches[batch_id]["status"] = payload["new_status"]
        else:
            raise ReplayError(ev["seq"], f"unknown event kind {kind!r}")
    return batches
