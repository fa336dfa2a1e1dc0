# app-wide exceptions
#
#   PossyncError (base)
#   ├── PersistenceError    - local store unavailable or corrupt (propagated to caller)
#   ├── JobNotFoundError    - print job id does not exist
#   ├── JobStateError       - operator action not valid for the job's status
#   └── PrintDeliveryError  - a printer rejected or never received a job (retried)
#
# Remote-authority calls raise httpx errors directly; the sync engine
# captures them into its result object.

from __future__ import annotations

from typing import Any, Dict, Optional


class PossyncError(Exception):
    """Base exception for everything raised by this package."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class PersistenceError(PossyncError):
    """
    The durable store failed a read or write.

    Never swallowed by the store: masking it would silently lose a
    user-facing action such as an order being captured.
    """

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(
            f"Store operation '{operation}' failed: {cause}",
            {"operation": operation, "cause": type(cause).__name__},
        )
        self.operation = operation


class JobNotFoundError(PossyncError):
    def __init__(self, job_id: int):
        super().__init__(f"Print job {job_id} not found", {"job_id": job_id})
        self.job_id = job_id


class JobStateError(PossyncError):
    def __init__(self, job_id: int, status: str, action: str):
        super().__init__(
            f"Cannot {action} print job {job_id} in status '{status}'",
            {"job_id": job_id, "status": status},
        )
        self.job_id = job_id
        self.status = status


class PrintDeliveryError(PossyncError):
    """A delivery attempt failed; the dispatch queue will retry it."""

    def __init__(self, destination: str, reason: str):
        super().__init__(
            f"Printing to '{destination}' failed: {reason}",
            {"destination": destination},
        )
        self.destination = destination
        self.reason = reason
