"""
Typed errors raised by the batch registry.

Every error carries a machine-readable ``code`` so the HTTP layer and
callers can branch on the type instead of parsing messages:

    RegistryError
    +-- InvalidBatchId          mutation aimed at an id outside [1, counter]
    +-- BatchNotFound           query for an id that was never registered
    +-- MutationRejected        the mutation gate refused the call
    +-- ReplayError             event log does not fold into a valid history
    +-- ImmutabilityViolation   attempt to rewrite an event or a fixed field
"""
from typing import Optional


class RegistryError(Exception):
    code = "REGISTRY_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidBatchId(RegistryError):
    code = "INVALID_BATCH_ID"

    def __init__(self, batch_id: int, counter: int):
        super().__init__(f"invalid batch id {batch_id} (valid range is 1..{counter})")
        self.batch_id = batch_id
        self.counter = counter


class BatchNotFound(RegistryError):
    code = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: int):
        super().__init__(f"batch {batch_id} not found")
        self.batch_id = batch_id


class MutationRejected(RegistryError):
    code = "MUTATION_REJECTED"

    def __init__(self, kind: str, batch_id: Optional[int] = None):
        target = f"batch {batch_id}" if batch_id is not None else "new batch"
        super().__init__(f"{kind} on {target} rejected by gate")
        self.kind = kind
        self.batch_id = batch_id


class ReplayError(RegistryError):
    code = "REPLAY_ERROR"

    def __init__(self, seq: int, reason: str):
        super().__init__(f"cannot replay event {seq}: {reason}")
        self.seq = seq


class ImmutabilityViolation(RegistryError):
    code = "IMMUTABILITY_VIOLATION"
