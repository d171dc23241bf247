from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict


class EventKind(str, Enum):
    REGISTERED = "Registered"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"
    STATUS_UPDATED = "StatusUpdated"


# ---------- Requests ----------
class RegisterBatch(BaseModel):
    crop_type: str
    origin_farm: str
    harvest_date: int  # unix seconds


class TransferOwnership(BaseModel):
    new_owner: str


class UpdateStatus(BaseModel):
    new_status: str


# ---------- Responses / snapshots ----------
class BatchCreated(BaseModel):
    batch_id: int


class BatchDetails(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    batch_id: int
    crop_type: str
    origin_farm: str
    harvest_date: int
    current_owner: str
    status: str


class BatchList(BaseModel):
    items: List[BatchDetails]
    total: int
    page: int
    page_size: int


class EventRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    seq: int
    kind: EventKind
    batch_id: int
    payload: Dict[str, Any]
    timestamp: str
    prev_hash: str
    hash: str


class ChainVerification(BaseModel):
    verified: bool
    events: int
    head_hash: str
    replay_consistent: bool
