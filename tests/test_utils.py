import pytest

from errors import ReplayError
from utils import GENESIS, compute_hash, replay_events, verify_chain


def chain(*entries):
    events, prev = [], GENESIS
    for seq, (kind, batch_id, payload) in enumerate(entries, start=1):
        ts = f"2024-01-01T00:00:{seq:02d}+00:00"
        h = compute_hash(prev, seq, kind, batch_id, payload, ts)
        events.append({"seq": seq, "kind": kind, "batch_id": batch_id, "payload": payload,
                       "timestamp": ts, "prev_hash": prev, "hash": h})
        prev = h
    return events


REGISTER_1 = ("Registered", 1, {"crop_type": "Wheat", "origin_farm": "FarmA", "harvest_date": 5})


def test_compute_hash_is_deterministic_and_sensitive():
    a = compute_hash(GENESIS, 1, "Registered", 1, {"x": 1}, "t")
    assert a == compute_hash(GENESIS, 1, "Registered", 1, {"x": 1}, "t")
    assert a != compute_hash(GENESIS, 2, "Registered", 1, {"x": 1}, "t")
    assert a != compute_hash(GENESIS, 1, "Registered", 1, {"x": 2}, "t")


def test_verify_chain_accepts_valid_chain():
    assert verify_chain([])
    assert verify_chain(chain(REGISTER_1, ("StatusUpdated", 1, {"new_status": "Dry"})))


def test_verify_chain_rejects_gap_and_reorder():
    events = chain(REGISTER_1, ("StatusUpdated", 1, {"new_status": "Dry"}),
                   ("OwnershipTransferred", 1, {"new_owner": "B"}))
    assert not verify_chain([events[0], events[2]])
    assert not verify_chain([events[1], events[0], events[2]])


def test_replay_folds_mutations():
    batches = replay_events(chain(
        REGISTER_1,
        ("OwnershipTransferred", 1, {"new_owner": "B"}),
        ("StatusUpdated", 1, {"new_status": "Dry"}),
    ))
    assert batches == {1: {"batch_id": 1, "crop_type": "Wheat", "origin_farm": "FarmA",
                           "harvest_date": 5, "current_owner": "B", "status": "Dry"}}


def test_replay_rejects_mutation_before_registration():
    with pytest.raises(ReplayError) as exc:
        replay_events(chain(("StatusUpdated", 1, {"new_status": "Dry"})))
    assert exc.value.seq == 1


def test_replay_rejects_skipped_identifier():
    with pytest.raises(ReplayError):
        replay_events(chain(("Registered", 2, REGISTER_1[2])))


def test_replay_rejects_unknown_kind():
    with pytest.raises(ReplayError):
        replay_events(chain(REGISTER_1, ("Split", 1, {})))
