"""Error taxonomy shared by the intake, lifecycle and sweep services."""
from typing import Dict, Optional


class IssueEngineError(Exception):
    """Base class for failures the HTTP layer knows how to report."""

    status_code = 400
    error_code = "issue_engine_error"

    def to_payload(self) -> dict:
        return {"error": self.error_code, "message": str(self)}


class ValidationError(IssueEngineError):
    """Missing or malformed input; raised before any write."""

    status_code = 422
    error_code = "validation_error"

    def __init__(self, fields: Dict[str, str], message: str = "Invalid input") -> None:
        super().__init__(message)
        self.fields = dict(fields)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["fields"] = self.fields
        return payload


class ConflictError(IssueEngineError):
    """Transition illegal for the current status, or actor lacks role/ownership."""

    status_code = 409
    error_code = "conflict"

    def __init__(self, reason: str, message: Optional[str] = None, current_status: Optional[str] = None) -> None:
        super().__init__(message or reason)
        self.reason = reason
        self.current_status = current_status

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["reason"] = self.reason
        if self.current_status:
            payload["current_status"] = self.current_status
        return payload


class DependencyError(IssueEngineError):
    """An external collaborator (the duplicate oracle) failed or timed out."""

    status_code = 503
    error_code = "dependency_error"


class PersistenceError(IssueEngineError):
    """The store rejected the operation; nothing from it was committed."""

    status_code = 500
    error_code = "persistence_error"

    def to_payload(self) -> dict:
        return {"error": self.error_code, "message": "The operation could not be saved. Please retry."}
