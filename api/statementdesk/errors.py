# api/statementdesk/errors.py
"""
Error taxonomy for the statement engine.

Synchronous errors carry the HTTP status the API answers with; main.py turns
any StatementError into a JSON body. GenerationError and its subclasses only
ever happen inside background tasks and end up on Statement.error_detail.
"""


class StatementError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StatementError):
    status_code = 422


class AccessDenied(StatementError):
    status_code = 403


class StatementNotFound(StatementError):
    status_code = 404


class TransitionRejected(StatementError):
    status_code = 409

    def __init__(self, rule: str, current_status: str | None = None, forbidden: bool = False):
        msg = rule if current_status is None else f"{rule} (current status: {current_status})"
        super().__init__(msg)
        self.rule = rule
        self.current_status = current_status
        if forbidden:
            # role or identity guard rather than a state guard
            self.status_code = 403


class SnapshotNotReady(StatementError):
    status_code = 409


class NumberAllocationConflict(StatementError):
    status_code = 503


class DeliveryFailed(StatementError):
    status_code = 502


class GenerationError(StatementError):
    status_code = 500


class LedgerUnavailable(GenerationError):
    status_code = 503
