# FILE: dentlink/core/errors.py
from __future__ import annotations

from typing import Optional


class DentlinkError(RuntimeError):
    """
    Base for every error the core raises on purpose.
    status_code is what the HTTP layer answers with.
    """
    status_code = 400
    code = "error"

    def __init__(self,
                 msg: str,
                 status_code: Optional[int] = None,
                 extra: Optional[dict] = None):
        super().__init__(msg)
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra


class ValidationError(DentlinkError):
    code = "validation_error"


class InvalidConfig(DentlinkError):
    code = "invalid_config"


class Forbidden(DentlinkError):
    status_code = 403
    code = "forbidden"


class NotFound(DentlinkError):
    status_code = 404
    code = "not_found"


class InvalidState(DentlinkError):
    status_code = 409
    code = "invalid_state"


class Conflict(DentlinkError):
    """Concurrent mutation lost a race; safe to retry after re-reading."""
    status_code = 409
    code = "conflict"


class InsufficientFunds(DentlinkError):
    status_code = 422
    code = "insufficient_funds"


class PaymentFailed(DentlinkError):
    status_code = 402
    code = "payment_failed"


class LedgerInconsistency(DentlinkError):
    """
    A derived balance broke an invariant.
    Never auto-corrected: the settlement halts and the problem goes to error_logs.
    """
    status_code = 500
    code = "ledger_inconsistency"
