"""Error taxonomy and the response envelope returned by public operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class EngineError(Exception):
    code = "engine_error"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        if code:
            self.code = code
        self.details = details or {}


class ValidationFailure(EngineError):
    """Missing or malformed command payload."""

    code = "validation_error"


class StateConflict(EngineError):
    """Command is not valid for the current session state."""

    code = "state_conflict"


class TransportFailure(EngineError):
    code = "transport_error"


class PersistenceFailure(EngineError):
    code = "persistence_error"


@dataclass(slots=True)
class CommandResponse:
    success: bool
    data: Any = None
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "CommandResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: EngineError | str, *, code: Optional[str] = None) -> "CommandResponse":
        if isinstance(error, EngineError):
            return cls(success=False, error=str(error), code=code or error.code)
        return cls(success=False, error=str(error), code=code or EngineError.code)

    def as_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        payload: Dict[str, Any] = {"success": False, "error": self.error}
        if self.code:
            payload["code"] = self.code
        return payload
