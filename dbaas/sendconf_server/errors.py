"""
Error types for SendConf Server.

This module defines all exception types raised by the store:
- SendConfError: Base exception
- PermissionDeniedError: Capability check failed
- NotFoundError: Referenced record does not exist
- ChangedError: Optimistic concurrency hash mismatch
- ValidationError: Invalid input (mailer type, namespace, move)
- DependencyPresentError: Record is still referenced

Invariants:
    - All errors inherit from SendConfError
    - Each error carries a stable code for programmatic handling
    - Callers can tell retryable conflicts from invalid input

How to change safely:
    - Never change an existing code string, HTTP clients match on it
    - New errors must subclass the closest existing category
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SendConfError(Exception):
    """Base exception for all SendConf errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SENDCONF_ERROR"
        self.details = details or {}


class PermissionDeniedError(SendConfError):
    """Permission denied.

    Raised when:
    - Caller lacks the required operation on the entity
    - Deletion of the system send configuration is attempted
    """

    def __init__(
        self,
        message: str = "Permission denied",
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="PERMISSION_DENIED",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "operation": operation,
            },
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation


class NotFoundError(SendConfError):
    """Resource not found."""

    def __init__(
        self,
        message: str = "Not found",
        resource_type: Optional[str] = None,
        resource_id: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ChangedError(SendConfError):
    """Record changed since the caller read it.

    The caller must reload the record, recompute its hash and retry.
    """

    def __init__(
        self,
        message: str = "Record has been changed in the meantime",
        entity_id: Optional[int] = None,
    ) -> None:
        super().__init__(message, code="CHANGED", details={"entity_id": entity_id})
        self.entity_id = entity_id


class ValidationError(SendConfError):
    """Input validation failed.

    Raised when:
    - Mailer type is unknown
    - Mailer settings are malformed
    - Namespace is missing
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
        code: str = "VALIDATION_ERROR",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class NamespaceNotFoundError(ValidationError):
    """Entity references a namespace that does not exist."""

    def __init__(self, namespace_id: Any) -> None:
        super().__init__(
            f"Namespace not found: {namespace_id}",
            field_name="namespace",
            code="NAMESPACE_NOT_FOUND",
        )
        self.namespace_id = namespace_id


class NamespaceMoveError(ValidationError):
    """Caller may not move the entity between the two namespaces."""

    def __init__(self, source: Any, destination: Any, operation: str) -> None:
        super().__init__(
            f"Moving from namespace {source} to {destination} requires {operation}",
            field_name="namespace",
            code="NAMESPACE_MOVE_DENIED",
        )
        self.source = source
        self.destination = destination
        self.operation = operation


class DependencyPresentError(SendConfError):
    """Entity cannot be deleted while other records reference it.

    Attributes:
        dependencies: List of {"entity_type", "id", "name"} of referencing rows
    """

    def __init__(
        self,
        message: str,
        dependencies: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(
            message,
            code="DEPENDENCY_PRESENT",
            details={"dependencies": dependencies or []},
        )
        self.dependencies = dependencies or []


def enforce(condition: Any, message: str, field_name: Optional[str] = None) -> None:
    """Raise ValidationError unless condition holds."""
    if not condition:
        raise ValidationError(message, field_name=field_name)
