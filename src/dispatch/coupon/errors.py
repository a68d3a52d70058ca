"""Typed coupon failures.

Every failure carries a stable ``kind`` for callers that branch on the cause
and a user-facing ``message``.
"""


class CouponError(Exception):
    kind = "coupon_error"
    default_message = "Coupon cannot be used"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCode(CouponError):
    kind = "invalid_code"
    default_message = "Invalid coupon code"


class Inactive(CouponError):
    kind = "inactive"
    default_message = "Coupon is not active"


class Expired(CouponError):
    kind = "expired"
    default_message = "Coupon has expired"


class NotYetValid(CouponError):
    kind = "not_yet_valid"
    default_message = "Coupon is not yet valid"


class UsageLimitExceeded(CouponError):
    kind = "usage_limit_exceeded"
    default_message = "Coupon usage limit exceeded"


class BelowMinimumOrder(CouponError):
    kind = "below_minimum_order"

    def __init__(self, minimum: float):
        self.minimum = minimum
        super().__init__(f"Minimum order value of ${minimum:.2f} required")


class UserRestricted(CouponError):
    kind = "user_restricted"
    default_message = "This coupon is not available for your account"


class ProductNotApplicable(CouponError):
    kind = "product_not_applicable"
    default_message = "This coupon is not applicable to the selected products"


class CategoryNotApplicable(CouponError):
    kind = "category_not_applicable"
    default_message = "This coupon is not applicable to the selected categories"


class UsageContention(CouponError):
    kind = "usage_contention"
    default_message = "Coupon is being redeemed concurrently, please retry"
