"""
Blueprint Protocol v0.1 - Rejection Taxonomy

Every rejected operation surfaces as one named condition so that callers
can branch on it (retry with another blueprint, give up, fix the payload).

SPDX-License-Identifier: AGPL-3.0-or-later
"""

from enum import Enum
from typing import Optional


class RejectionReason(str, Enum):
    """Rejection reason codes."""
    INVALID_HASH = "INVALID_HASH"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    NOT_ACTIVE = "NOT_ACTIVE"
    CEILING_REACHED = "CEILING_REACHED"
    UNAUTHORIZED = "UNAUTHORIZED"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"
    UNKNOWN_TYPE = "UNKNOWN_TYPE"
    DISPATCH_FAILED = "DISPATCH_FAILED"


class BlueprintError(Exception):
    """Base exception for blueprint operations."""

    reason: RejectionReason

    def __init__(self, message: str, blueprint_hash: Optional[str] = None):
        super().__init__(message)
        self.blueprint_hash = blueprint_hash


class InvalidHash(BlueprintError):
    """Attached hash does not match the recomputed canonical hash."""
    reason = RejectionReason.INVALID_HASH


class InvalidSignature(BlueprintError):
    """The publisher did not authorize this blueprint hash."""
    reason = RejectionReason.INVALID_SIGNATURE


class NotActive(BlueprintError):
    """Current time is outside the blueprint's validity window."""
    reason = RejectionReason.NOT_ACTIVE


class CeilingReached(BlueprintError):
    """
    Use count is not below the ceiling.

    Raised both when the ceiling is reached naturally and after the
    publisher destroyed the blueprint; ``destroyed`` tells them apart.
    Under contention this is an expected outcome, not a fault.
    """
    reason = RejectionReason.CEILING_REACHED

    def __init__(
        self,
        message: str,
        blueprint_hash: Optional[str] = None,
        destroyed: bool = False,
    ):
        super().__init__(message, blueprint_hash)
        self.destroyed = destroyed


class Unauthorized(BlueprintError):
    """Caller is not allowed to perform this operation."""
    reason = RejectionReason.UNAUTHORIZED


class MalformedPayload(BlueprintError):
    """Payload framing is invalid (e.g. empty payload)."""
    reason = RejectionReason.MALFORMED_PAYLOAD


class UnknownType(BlueprintError):
    """No executor is registered for the payload's type tag."""
    reason = RejectionReason.UNKNOWN_TYPE

    def __init__(self, type_tag: int, blueprint_hash: Optional[str] = None):
        super().__init__(f"No executor registered for type tag {type_tag:#04x}", blueprint_hash)
        self.type_tag = type_tag


class DispatchError(BlueprintError):
    """The external executor failed; the original error is chained."""
    reason = RejectionReason.DISPATCH_FAILED
