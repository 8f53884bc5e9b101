"""
ledgermatch error handling

Specific error types with user-friendly messages and debugging context.
"""
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException
from pydantic import ValidationError


class ErrorCode(str, Enum):
    """Standardized error codes for client handling."""
    # Input errors
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_DECISION = "INVALID_DECISION"

    # Processing errors
    RECONCILIATION_FAILED = "RECONCILIATION_FAILED"
    CLASSIFICATION_FAILED = "CLASSIFICATION_FAILED"


class LedgerMatchError(Exception):
    """Base exception with structured error info."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        detail: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.detail = detail
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        result = {
            "error": self.code.value,
            "message": self.message
        }
        if self.detail:
            result["detail"] = self.detail
        if self.context:
            result["context"] = self.context
        return result


class ConfigError(LedgerMatchError):
    """Error in configuration."""

    def __init__(self, field: str, detail: str):
        super().__init__(
            code=ErrorCode.INVALID_CONFIG,
            message=f"Invalid configuration for '{field}'",
            detail=detail,
            context={"field": field}
        )

    @classmethod
    def from_validation(cls, section: str, exc: ValidationError) -> "ConfigError":
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or section
        return cls(field=f"{section}.{location}" if location != section else section,
                   detail=first.get("msg", str(exc)))


class InvalidDecisionError(LedgerMatchError):
    """A human decision could not be recorded."""

    def __init__(self, detail: str):
        super().__init__(
            code=ErrorCode.INVALID_DECISION,
            message="Invalid review decision",
            detail=detail
        )


class ClassificationError(LedgerMatchError):
    """Error from the entry classification collaborator."""

    def __init__(self, detail: str, entry_id: Optional[str] = None):
        super().__init__(
            code=ErrorCode.CLASSIFICATION_FAILED,
            message="Ledger entry classification failed",
            detail=detail,
            context={"entry_id": entry_id} if entry_id else None
        )


class ReconciliationError(LedgerMatchError):
    """Error during reconciliation."""

    def __init__(self, stage: str, detail: str):
        super().__init__(
            code=ErrorCode.RECONCILIATION_FAILED,
            message=f"Reconciliation failed at {stage}",
            detail=detail,
            context={"stage": stage}
        )


def to_http_exception(error: LedgerMatchError) -> HTTPException:
    """Convert LedgerMatchError to HTTPException."""
    status_map = {
        ErrorCode.INVALID_CONFIG: 400,
        ErrorCode.INVALID_DECISION: 400,
        ErrorCode.RECONCILIATION_FAILED: 500,
        ErrorCode.CLASSIFICATION_FAILED: 502,
    }

    return HTTPException(
        status_code=status_map.get(error.code, 500),
        detail=error.to_dict()
    )
