"""Exception classes for the unified Xen driver.

Includes:
- Base exception carrying an error code and a serialisable payload
- The caller-visible taxonomy: declined, invalid argument, unsupported,
  operation failed, resource error
- Operation-specific failures that carry backend context
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


class XenUnifiedException(Exception):
    """Base exception for all unified driver errors."""

    def __init__(self, detail: str, error_code: str = "INTERNAL_ERROR"):
        self.detail = detail
        self.error_code = error_code
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for the outer API layer."""
        return {
            "error": self.error_code,
            "detail": self.detail,
            "timestamp": self.timestamp,
        }


class ConnectionDeclined(XenUnifiedException):
    """Raised when this driver should not handle a connection target.

    Callers are expected to try an alternative driver.
    """

    def __init__(self, reason: str):
        super().__init__(
            detail=f"Connection declined: {reason}", error_code="DECLINED"
        )
        self.reason = reason


class InvalidArgumentError(XenUnifiedException):
    """Raised when flags or parameters violate a precondition."""

    def __init__(self, detail: str):
        super().__init__(detail=detail, error_code="INVALID_ARG")


class InvalidTargetError(InvalidArgumentError):
    """Raised when a connection target is for this driver but malformed."""

    def __init__(self, target: str, reason: str):
        super().__init__(f"Unexpected Xen URI '{target}': {reason}")
        self.error_code = "INVALID_TARGET"
        self.target = target


class UnsupportedOperationError(XenUnifiedException):
    """Raised when no active backend implements or accepts an operation."""

    def __init__(self, operation: str, detail: str | None = None):
        super().__init__(
            detail=detail or f"Operation '{operation}' is not supported",
            error_code="NO_SUPPORT",
        )
        self.operation = operation


class ArgumentUnsupportedError(UnsupportedOperationError):
    """Raised when an argument is understood but cannot be honoured."""

    def __init__(self, operation: str, detail: str):
        super().__init__(operation, detail)
        self.error_code = "ARGUMENT_UNSUPPORTED"


class ResourceError(XenUnifiedException):
    """Raised on allocation, lock or filesystem failure during orchestration."""

    def __init__(self, detail: str, original_error: Exception | None = None):
        super().__init__(detail=detail, error_code="RESOURCE_ERROR")
        self.original_error = original_error


# =============================================================================
# OPERATION FAILURES (with backend context)
# =============================================================================


class OperationFailedError(XenUnifiedException):
    """An authoritative backend attempted the operation and failed."""

    def __init__(
        self,
        detail: str,
        operation: str = "unknown",
        backend: str | None = None,
        original_error: Exception | None = None,
        context: dict[str, Any] | None = None,
        error_code: str = "OPERATION_FAILED",
    ):
        super().__init__(detail=detail, error_code=error_code)
        self.operation = operation
        self.backend = backend
        self.original_error = original_error
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base.update(
            {
                "operation": self.operation,
                "backend": self.backend,
                "context": self.context,
            }
        )
        return base


class BackendOpenError(OperationFailedError):
    """A mandatory backend failed to open."""

    def __init__(
        self,
        backend: str,
        detail: str,
        original_error: Exception | None = None,
    ):
        super().__init__(
            detail=f"Failed to activate {backend} backend: {detail}",
            operation="open",
            backend=backend,
            original_error=original_error,
            error_code="BACKEND_OPEN_FAILED",
        )


class NoDomainError(OperationFailedError):
    """No domain matches the given identity."""

    def __init__(self, operation: str, identity: Any):
        super().__init__(
            detail=f"Domain not found: {identity}",
            operation=operation,
            context={"identity": str(identity)},
            error_code="NO_DOMAIN",
        )


class OperationInvalidError(OperationFailedError):
    """The operation is not valid for the current domain state."""

    def __init__(self, operation: str, detail: str):
        super().__init__(
            detail=detail, operation=operation, error_code="OPERATION_INVALID"
        )


class MigrationPersistError(OperationFailedError):
    """Persisting a migrated domain on the destination failed."""

    def __init__(
        self,
        detail: str,
        domain_name: str,
        original_error: Exception | None = None,
    ):
        super().__init__(
            detail=detail,
            operation="migrate_finish",
            original_error=original_error,
            context={"domain": domain_name},
            error_code="MIGRATE_PERSIST_FAILED",
        )
