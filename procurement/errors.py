from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    PATH_NOT_FOUND = "path_not_found"
    OPTIMIZATION_FAILED = "optimization_failed"
    VALIDATION_FAILED = "validation_failed"
    NETWORK_NOT_BUILT = "network_not_built"
    INCONSISTENT_DATA = "inconsistent_data"
    INVALID_REQUEST = "invalid_request"
    TIMEOUT = "timeout"


class SupplyChainError(Exception):
    """
    Base class for every error raised by the procurement engine.

    `kind` is the stable, machine-readable category; `details` carries the
    request context (buyer, product, quantity, ...) for logs and events.
    """

    kind: ErrorKind = ErrorKind.OPTIMIZATION_FAILED

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class PathNotFoundError(SupplyChainError):
    kind = ErrorKind.PATH_NOT_FOUND


class OptimizationFailedError(SupplyChainError):
    kind = ErrorKind.OPTIMIZATION_FAILED


class OptimizationTimeoutError(OptimizationFailedError):
    kind = ErrorKind.TIMEOUT


class ValidationFailedError(SupplyChainError):
    kind = ErrorKind.VALIDATION_FAILED


class NetworkNotBuiltError(SupplyChainError):
    kind = ErrorKind.NETWORK_NOT_BUILT


class InconsistentDataError(SupplyChainError):
    kind = ErrorKind.INCONSISTENT_DATA


class InvalidRequestError(SupplyChainError, ValueError):
    """Caller-input error; raised before any graph traversal and never retried."""

    kind = ErrorKind.INVALID_REQUEST


def validate_request(buyer_id: Any, product_id: Any, quantity: Any) -> None:
    if not isinstance(buyer_id, str) or not buyer_id.strip():
        raise InvalidRequestError("buyer_id must be a non-empty string", details={"buyer_id": buyer_id})
    if not isinstance(product_id, str) or not product_id.strip():
        raise InvalidRequestError("product_id must be a non-empty string", details={"product_id": product_id})
    # bool is an int subclass
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequestError(
            "quantity must be a positive integer",
            details={"buyer_id": buyer_id, "product_id": product_id, "quantity": quantity},
        )
