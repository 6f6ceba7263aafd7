"""
Error taxonomy. Every error carries a stable code, a user-facing message and the
context needed to render an actionable message (current vs requested state,
distance vs radius, shortfall amount).
"""
from typing import Any


class MarketplaceError(Exception):
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, context: dict[str, Any] | None = None, code: str | None = None):
        if code is not None:
            self.code = code
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "context": self.context}


class ValidationFailed(MarketplaceError):
    """Client-correctable input error, rejected before any state change."""
    status_code = 422
    code = "VALIDATION_FAILED"


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"


class BusinessRuleError(MarketplaceError):
    """Expected, user-facing rejection."""
    status_code = 400
    code = "BUSINESS_RULE"


class DeliveryDisabledError(BusinessRuleError):
    code = "DELIVERY_DISABLED"

    def __init__(self, merchant_id: str):
        super().__init__("Merchant does not offer delivery", {"merchantId": merchant_id})


class OutOfRangeError(BusinessRuleError):
    code = "OUT_OF_RANGE"

    def __init__(self, distance: float, radius: float, postal_code: str):
        super().__init__(
            f"Delivery is not available to this area ({distance} km, maximum {radius} km)",
            {"distance": distance, "deliveryRadius": radius, "postalCode": postal_code},
        )
        self.distance = distance
        self.radius = radius


class InvalidTransitionError(BusinessRuleError):
    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, current_status: str | None, requested_status: str):
        super().__init__(
            f"Invalid status transition: {current_status} -> {requested_status}",
            {"currentStatus": current_status, "requestedStatus": requested_status},
        )
        self.current_status = current_status
        self.requested_status = requested_status


class MinimumOrderNotMetError(BusinessRuleError):
    code = "MINIMUM_ORDER_NOT_MET"

    def __init__(self, minimum: float, subtotal: float):
        shortfall = round(minimum - subtotal, 2)
        super().__init__(
            f"Minimum order amount is ${minimum:.2f}. Current total: ${subtotal:.2f}",
            {"minimumOrder": minimum, "subtotal": subtotal, "shortfall": shortfall},
        )
        self.shortfall = shortfall


class SessionExpiredError(BusinessRuleError):
    status_code = 410
    code = "SESSION_EXPIRED"

    def __init__(self, session_id: str):
        super().__init__("Checkout session has expired", {"sessionId": session_id})


class SessionCompletedError(BusinessRuleError):
    status_code = 409
    code = "SESSION_COMPLETED"

    def __init__(self, session_id: str):
        super().__init__("Checkout session already completed", {"sessionId": session_id})


class PersistenceError(MarketplaceError):
    """Transaction failed; nothing was committed and the request can be retried."""
    status_code = 503
    code = "PERSISTENCE_UNAVAILABLE"

    def __init__(self, message: str = "Storage is temporarily unavailable, please retry"):
        super().__init__(message, {"retryable": True})
