"""
Compliance Engine Exceptions

Error kinds raised by the document store and the lifecycle services.
The API layer maps them onto HTTP responses in main.py.
"""

from typing import Any, Dict, Optional


class SafetyEngineError(Exception):
    """Base exception for compliance engine errors."""

    def __init__(
        self,
        message: str,
        code: str = "SAFETY_ENGINE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(SafetyEngineError):
    """Raised when an operation references an id absent from the store."""

    def __init__(self, collection: str, document_id: str, message: Optional[str] = None):
        msg = message or f"{collection} document not found: {document_id}"
        super().__init__(
            message=msg,
            code="NOT_FOUND",
            details={"collection": collection, "id": document_id},
        )


class ValidationFailure(SafetyEngineError):
    """Raised when a required field is missing or malformed."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            code="VALIDATION_FAILURE",
            details=error_details,
        )


class InvalidTransitionError(SafetyEngineError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, entity: str, current_status: str, new_status: str):
        super().__init__(
            message=f"Cannot move {entity} from '{current_status}' to '{new_status}'",
            code="INVALID_TRANSITION",
            details={
                "entity": entity,
                "current_status": current_status,
                "new_status": new_status,
            },
        )


class ConflictUnsupported(SafetyEngineError):
    """
    Concurrent edits are not coordinated by the engine.

    Never raised by the engine itself; store adapters that do detect a
    conflicting write may raise it so callers see a single error kind.
    """

    def __init__(self, collection: str, document_id: str):
        super().__init__(
            message=f"Concurrent modification of {collection}/{document_id} is not supported",
            code="CONFLICT_UNSUPPORTED",
            details={"collection": collection, "id": document_id},
        )
