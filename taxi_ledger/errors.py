from __future__ import annotations

from datetime import date
from typing import Any


class LedgerError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class InvalidConfig(LedgerError):
    def __init__(self, field: str, value: Any, message: str):
        super().__init__("INVALID_CONFIG", message)
        self.field = field
        self.value = value


class ReconciliationConflict(LedgerError):
    """A write of one recording mode onto a date held by the other mode.

    Carries both totals so the caller can ask the driver which one to keep.
    Nothing has been deleted when this is raised.
    """

    def __init__(
        self,
        *,
        business_date: date,
        existing_mode: str,
        existing_total: int,
        incoming_total: int,
        conflicting_ids: list[str],
    ):
        super().__init__(
            "RECONCILIATION_CONFLICT",
            f"{business_date.isoformat()} already holds {existing_mode} records "
            f"totalling {existing_total}; incoming total is {incoming_total}.",
        )
        self.business_date = business_date
        self.existing_mode = existing_mode
        self.existing_total = existing_total
        self.incoming_total = incoming_total
        self.conflicting_ids = conflicting_ids

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["error"].update(
            {
                "business_date": self.business_date.isoformat(),
                "existing_mode": self.existing_mode,
                "existing_total": self.existing_total,
                "incoming_total": self.incoming_total,
                "conflicting_ids": list(self.conflicting_ids),
            }
        )
        return payload


class InvalidSessionTransition(LedgerError):
    def __init__(self, *, state: str, operation: str, reason: str):
        super().__init__("INVALID_SESSION_TRANSITION", reason)
        self.state = state
        self.operation = operation
        self.reason = reason


class PersistenceError(LedgerError):
    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__("PERSISTENCE_FAILED", message)
        self.retryable = retryable
