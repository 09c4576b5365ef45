# FILE: carelog/services/mar_errors.py
from __future__ import annotations

from carelog.services.mar_lock import LockDecision


class MarError(RuntimeError):
    code = "mar_error"


class LockDenied(MarError):
    """Policy refusal: the slot is locked for this actor. Not a fault."""
    code = "lock_denied"

    def __init__(self, decision: LockDecision):
        super().__init__(f"Cannot edit: {decision.reason}")
        self.decision = decision


class MarValidationError(MarError):
    code = "validation_error"


class RecordNotFound(MarError):
    code = "not_found"


class OrderNotFound(RecordNotFound):
    pass


class ResidentNotFound(RecordNotFound):
    pass


class PersistenceError(MarError):
    """Write rejected or storage unavailable. Retry with a fresh action."""
    code = "persistence_error"


class StaleSlotError(PersistenceError):
    """The slot changed in storage after it was read."""
    code = "stale_slot"
