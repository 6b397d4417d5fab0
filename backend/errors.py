"""
Error kinds and the Result value returned by core prop operations.

Recorder and resolver calls never raise for expected failures (missing
identity fields, unknown prop ids, vendor outages). They return a Result so
batch callers can tally failures and keep going.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    COLLABORATOR = "collaborator"
    STORAGE = "storage"


class PropLifecycleError(Exception):
    """Base class for prop lifecycle failures."""

    kind = ErrorKind.STORAGE


class ValidationError(PropLifecycleError):
    kind = ErrorKind.VALIDATION


class NotFoundError(PropLifecycleError):
    kind = ErrorKind.NOT_FOUND


class CollaboratorError(PropLifecycleError):
    """Vendor fetch failed: transport error, timeout or malformed payload."""

    kind = ErrorKind.COLLABORATOR


class StorageError(PropLifecycleError):
    kind = ErrorKind.STORAGE


@dataclass
class Result:
    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> "Result":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Result":
        return cls(ok=False, error=kind, message=message)

    @classmethod
    def from_exception(cls, exc: Exception) -> "Result":
        kind = getattr(exc, "kind", ErrorKind.STORAGE)
        return cls(ok=False, error=kind, message=str(exc))

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> dict:
        """Shape used by the HTTP layer: success flag plus message."""
        body = {"success": self.ok}
        if self.ok:
            body["data"] = self.value.to_row() if hasattr(self.value, "to_row") else self.value
            if self.message:
                body["message"] = self.message
        else:
            body["error"] = self.message
            body["errorKind"] = self.error.value if self.error else None
        return body
