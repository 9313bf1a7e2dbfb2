# ============================================================
# errors.py — Business errors of the rental engine
# ------------------------------------------------------------
# Expected conditions (bad input, policy refusals, illegal
# transitions, missing records) are raised as RentalError
# subclasses. Each one carries:
#   - code    : stable machine-readable identifier
#   - message : human readable text
#   - detail  : structured context (thresholds, current state)
#   - status  : HTTP status used by the API layer
# Anything that is not a RentalError is an unexpected fault.
# ============================================================
from typing import Any, Dict, Optional


class RentalError(Exception):
    code = "rental_error"
    status = 400

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "detail": self.detail}


class ValidationError(RentalError):
    code = "validation_error"
    status = 422


class EvidenceRequired(ValidationError):
    code = "evidence_required"


class PolicyViolation(RentalError):
    code = "policy_violation"
    status = 400


class CancellationNotAllowed(PolicyViolation):
    code = "cancellation_not_allowed"


class EditWindowClosed(PolicyViolation):
    code = "edit_window_closed"


class StateConflict(RentalError):
    code = "state_conflict"
    status = 409


class InvalidTransition(StateConflict):
    code = "invalid_transition"


class OutOfStock(StateConflict):
    code = "out_of_stock"


class ReturnNotRecorded(StateConflict):
    code = "return_not_recorded"


class NotFoundError(RentalError):
    code = "not_found"
    status = 404


# ------------------------------------------------------------
# Coupon errors
# ------------------------------------------------------------
class CouponError(PolicyViolation):
    code = "coupon_error"


class InvalidCoupon(CouponError):
    code = "invalid_coupon"


class ExpiredCoupon(CouponError):
    code = "expired_coupon"


class MinimumOrderNotMet(CouponError):
    code = "minimum_order_not_met"


class UsageLimitReached(CouponError, StateConflict):
    code = "usage_limit_reached"
    status = 409
