"""Exception hierarchy for bastion.

All bastion-specific exceptions inherit from BastionError. The tree splits
in two: RecoverableError, which callers may catch to retry or roll back,
and FatalError, which signals a broken assumption about resource identity
and should end the calling process after logging.

Every error can carry ``resource``, the partially built entity (rule,
key pair, instance, state) at the time of failure. Its fields are not
meaningful beyond diagnostics.
"""

from __future__ import annotations

from collections.abc import Sequence


class BastionError(Exception):
    """Base exception for all bastion errors."""

    def __init__(self, message: str, *, resource: object | None = None) -> None:
        super().__init__(message)
        self.resource = resource


class RecoverableError(BastionError):
    """An error the caller may handle by retrying, rolling back or aborting."""


class FatalError(BastionError):
    """An invariant violation. Do not catch and continue."""


class NotFoundError(RecoverableError):
    """Raised when a describe call finds no resource for the given ID."""


class APIError(RecoverableError):
    """Raised when the cloud API reports a failure.

    The original botocore exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        code: str = "",
        resource: object | None = None,
    ) -> None:
        super().__init__(message, resource=resource)
        self.operation = operation
        self.code = code


class TimeoutError(RecoverableError):  # noqa: A001
    """Raised when a polling window elapses before the target state."""


class CancelledError(RecoverableError):
    """Raised when a polling loop observes its cancellation event."""


class LaunchError(RecoverableError):
    """Raised when an instance could not be launched as requested."""


class ExhaustedSlotsError(RecoverableError):
    """Raised when an ordered rule set has no free rule number left."""


class KeyMaterialError(RecoverableError):
    """Raised when private key material cannot be parsed."""


class TeardownError(RecoverableError):
    """Raised when one or more teardown steps failed."""

    def __init__(
        self,
        errors: Sequence[BaseException],
        *,
        resource: object | None = None,
    ) -> None:
        self.errors = tuple(errors)
        summary = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"Teardown incomplete ({len(self.errors)} failed): {summary}", resource=resource)


class MultipleResultsError(FatalError):
    """Raised when a describe-by-ID call returns more than one record."""

    def __init__(self, kind: str, resource_id: str, count: int) -> None:
        self.kind = kind
        self.resource_id = resource_id
        self.count = count
        super().__init__(f"Expected one {kind} for {resource_id}, found {count}")
