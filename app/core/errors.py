"""
Typed failures raised by the ledger, group ledger, scanner and oracle.

Every error carries a stable ``code`` and the HTTP ``status_code`` the API
maps it to, so callers always see the distinguishing reason.
"""


class LedgerError(Exception):
    """Base class for application errors"""
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404


class InvalidState(LedgerError):
    """Operation not permitted for the entity's current status"""
    code = "invalid_state"
    status_code = 409


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"
    status_code = 400


class TokenMismatch(LedgerError):
    code = "token_mismatch"
    status_code = 400


class MembershipViolation(LedgerError):
    code = "membership_violation"
    status_code = 403


class InvalidAmount(LedgerError):
    code = "invalid_amount"
    status_code = 422


class ExternalFetchFailure(LedgerError):
    """The event source could not be reached. Retried inside the scanner."""
    code = "external_fetch_failure"
    status_code = 502


class StalePriceError(LedgerError):
    code = "stale_price"
    status_code = 503


class UnknownEventKind(ValueError):
    """Raised by the normalizer for an event kind it does not know."""


class MalformedEvent(ValueError):
    """Raised by the normalizer when a known event lacks a required field."""


class ScanInProgress(InvalidState):
    """A scan of the same vault is already running."""
    code = "scan_in_progress"
