"""
Error taxonomy for the claims core.

Every domain failure is a subclass of ClaimsCoreError so callers can branch
on the kind of failure. Storage failures surface as InternalError.
"""

from typing import Any


class ClaimsCoreError(Exception):
    """Base class for all claims core errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(ClaimsCoreError):
    """Malformed or missing input."""


class MissingFieldError(ValidationError):
    """A field required by the requested action was not supplied."""

    def __init__(self, field: str, message: str | None = None, **context: Any):
        super().__init__(message or f"Missing required field: {field}", field=field, **context)
        self.field = field


class NotFoundError(ClaimsCoreError):
    """The referenced record does not exist."""


class InvalidTransitionError(ClaimsCoreError):
    """The current status does not permit the requested action."""


class InvalidStateError(ClaimsCoreError):
    """A payment or reimbursement is not in the status an action requires."""


class AccessDeniedError(ClaimsCoreError):
    """The acting principal may not perform the action on the resource."""


class DuplicateReferenceError(ClaimsCoreError):
    """A unique claim id or payment/reimbursement reference is already taken."""


class DuplicateBatchNumberError(ClaimsCoreError):
    """The (TPA, batch number) pair already exists."""


class BatchAlreadyReimbursedError(ClaimsCoreError):
    """A batch was claimed by another reimbursement first."""

    def __init__(self, batch_ids: list[int], message: str | None = None):
        super().__init__(
            message or f"Batches already reimbursed: {', '.join(str(b) for b in batch_ids)}",
            batch_ids=batch_ids,
        )
        self.batch_ids = batch_ids


class EmptyBatchError(ClaimsCoreError):
    """A batch with no member claims cannot be submitted."""


class InternalError(ClaimsCoreError):
    """Unexpected data-store failure. Details are logged, not exposed."""
