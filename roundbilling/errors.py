"""
Exceptions raised while billing a round.

Every fatal condition aborts the current invocation so the transport can
redeliver it. Each exception carries an error_code and an HTTP status for
the push endpoint.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BillingException(Exception):
    """
    Base exception for round billing errors.

    Attributes:
        detail: Human-readable error message
        error_code: Machine-readable error code
        status_code: HTTP status code to return
        context: Additional context for debugging
    """

    def __init__(
        self,
        detail: str,
        error_code: str = "BILLING_ERROR",
        status_code: int = 400,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.detail = detail
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detail": self.detail,
            "error_code": self.error_code,
            "context": self.context,
        }


class FeeNotFoundError(BillingException):
    """
    No fee is configured for the entity and round size.

    This is a reference-data problem; the event is retried once fees exist.
    """

    def __init__(self, entity_id: str, fee_item: str, hole_count: Optional[int] = None):
        context: Dict[str, Any] = {"entity_id": entity_id, "fee_item": fee_item}
        if hole_count is not None:
            context["hole_count"] = hole_count
        super().__init__(
            detail=f"No fee configured for entity {entity_id} ({fee_item})",
            error_code="BILLING_FEE_NOT_FOUND",
            status_code=500,
            context=context,
        )
        self.entity_id = entity_id
        self.fee_item = fee_item
        self.hole_count = hole_count


class BalanceUnavailableError(BillingException):
    """The golfer has no ledger history, so a post-debit balance cannot be computed."""

    def __init__(self, golfer_id: str):
        super().__init__(
            detail=f"No ledger balance found for golfer {golfer_id}",
            error_code="BILLING_BALANCE_UNAVAILABLE",
            status_code=409,
            context={"golfer_id": golfer_id},
        )
        self.golfer_id = golfer_id


class StoreError(BillingException):
    def __init__(self, detail: str, error_code: str, operation: str, store_error: Optional[str] = None):
        context: Dict[str, Any] = {"operation": operation}
        if store_error:
            context["store_error"] = store_error
        super().__init__(detail=detail, error_code=error_code, status_code=503, context=context)
        self.operation = operation


class StoreReadFailedError(StoreError):
    def __init__(self, operation: str, store_error: Optional[str] = None):
        super().__init__(
            detail=f"Ledger store read failed: {operation}",
            error_code="BILLING_STORE_READ_FAILED",
            operation=operation,
            store_error=store_error,
        )


class StoreWriteFailedError(StoreError):
    def __init__(self, operation: str, store_error: Optional[str] = None):
        super().__init__(
            detail=f"Ledger store write failed: {operation}",
            error_code="BILLING_STORE_WRITE_FAILED",
            operation=operation,
            store_error=store_error,
        )


class MalformedPayloadError(BillingException):
    """The queue message body is not a valid round event."""

    def __init__(self, message_id: Optional[str] = None, reason: Optional[str] = None):
        context: Dict[str, Any] = {}
        if message_id:
            context["message_id"] = message_id
        if reason:
            context["reason"] = reason[:500]
        super().__init__(
            detail="Malformed round event payload",
            error_code="BILLING_MALFORMED_PAYLOAD",
            status_code=400,
            context=context,
        )
