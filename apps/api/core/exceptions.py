"""
Engine error type and constructors.

Every failure the engine reports is an EngineError tagged with an
ErrorKind. Callers dispatch on ``error.kind``; the HTTP layer maps the
kind to a status code and renders ``code``/``message``/``details``.
"""
from enum import Enum
from typing import Any, Dict, Iterable, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    DATABASE = "database"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    DOMAIN = "domain"
    CONFLICT = "conflict"


HTTP_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DATABASE: 500,
    ErrorKind.AUTH: 401,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.DOMAIN: 400,
    ErrorKind.CONFLICT: 409,
}


class EngineError(Exception):
    """Tagged engine error with a stable code and structured details."""

    def __init__(
        self,
        kind: ErrorKind,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.code = code
        self.message = message
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"EngineError(kind={self.kind.value!r}, code={self.code!r}, message={self.message!r})"


def validation_error(message: str, field: Optional[str] = None, **details: Any) -> EngineError:
    code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
    if field:
        details.setdefault("field", field)
    return EngineError(ErrorKind.VALIDATION, code, message, details)


def missing_fields_error(missing: Iterable[str]) -> EngineError:
    missing = list(missing)
    return EngineError(
        ErrorKind.VALIDATION,
        "MISSING_REQUIRED_FIELDS",
        f"Missing required fields: {', '.join(missing)}",
        {"missing_fields": missing},
    )


def not_found(resource: str, identifier: Any) -> EngineError:
    return EngineError(
        ErrorKind.NOT_FOUND,
        "NOT_FOUND",
        f"{resource} not found: {identifier}",
        {"resource": resource, "id": str(identifier)},
    )


def database_error(message: str, **details: Any) -> EngineError:
    return EngineError(ErrorKind.DATABASE, "DATABASE_ERROR", message, details)


def domain_error(code: str, message: str, **details: Any) -> EngineError:
    return EngineError(ErrorKind.DOMAIN, code, message, details)


def conflict_error(code: str, message: str, **details: Any) -> EngineError:
    return EngineError(ErrorKind.CONFLICT, code, message, details)


def is_kind(error: BaseException, kind: ErrorKind) -> bool:
    return isinstance(error, EngineError) and error.kind == kind
