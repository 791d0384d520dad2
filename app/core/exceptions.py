"""
Settlement error types.

Two kinds of failure leave the settlement core:

- SettlementError: validation / business rule failures (missing package,
  rate cap, insufficient funds, already refunded, expired contract, bad
  callback hash). The open transaction is rolled back; retrying the same
  request gives the same answer.
- UpstreamUnavailableError: the payment gateway could not be reached or
  answered with a non-success HTTP status. Nothing was mutated, so the
  caller may retry.
"""

from enum import Enum
from typing import Dict, Optional


class ErrorCode(str, Enum):
    """Tag carried by every SettlementError."""
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    RATE_CAP_VIOLATION = "RATE_CAP_VIOLATION"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    ALREADY_REFUNDED = "ALREADY_REFUNDED"
    CONTRACT_EXPIRED = "CONTRACT_EXPIRED"
    INVALID_HASH = "INVALID_HASH"
    GATEWAY_REJECTED = "GATEWAY_REJECTED"


class SettlementError(Exception):
    """Business/validation error with an HTTP status code."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: ErrorCode = ErrorCode.VALIDATION,
        details: Optional[Dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        super().__init__(f"{code.value} ({status_code}): {message}")

    @classmethod
    def not_found(cls, entity: str) -> "SettlementError":
        return cls(f"{entity} not found", status_code=404, code=ErrorCode.NOT_FOUND)


class UpstreamUnavailableError(Exception):
    """Transport-level failure talking to an external provider."""

    status_code = 503

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        self.message = message
        self.upstream_status = upstream_status
        super().__init__(message)
