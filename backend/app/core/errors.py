from __future__ import annotations

from dataclasses import dataclass


class DomainError(Exception):
    """Error kind surfaced to the caller; the HTTP layer maps it to a status."""

    status_code: int = 400
    error_code: str = "domain_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Conflict(DomainError):
    status_code = 409
    error_code = "conflict"


class NotFound(DomainError):
    status_code = 404
    error_code = "not_found"


class Forbidden(DomainError):
    status_code = 403
    error_code = "forbidden"


class ValidationError(DomainError):
    status_code = 400
    error_code = "validation_error"


@dataclass(frozen=True)
class AssetCleanupWarning:
    """Non-fatal: an old asset could not be removed after a successful update."""

    reference: str
    reason: str

    def as_dict(self) -> dict[str, str]:
        return {"kind": "asset_cleanup_warning", "reference": self.reference, "reason": self.reason}
