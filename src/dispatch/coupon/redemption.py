"""CouponRedemption aggregate: append-only history of coupon use.

One record per order that used a coupon. Kept apart from Coupon so that the
usage counter can be bumped with a conditional store update without
rewriting the history.
"""

from datetime import UTC, datetime

from protean.fields import DateTime, Float, Identifier, Integer, String

from dispatch.coupon.events import CouponRedeemed
from dispatch.domain import dispatch


@dispatch.aggregate
class CouponRedemption:
    coupon_id = Identifier(required=True)
    coupon_code = String(required=True, max_length=20)
    user_id = Identifier()
    order_id = Identifier(required=True)
    discount_amount = Float(required=True, min_value=0)
    used_at = DateTime(required=True)

    @classmethod
    def record(cls, coupon_id, coupon_code, order_id, discount_amount, user_id=None, usage_count: int = 0):
        now = datetime.now(UTC)
        redemption = cls(
            coupon_id=str(coupon_id),
            coupon_code=coupon_code,
            user_id=str(user_id) if user_id else None,
            order_id=str(order_id),
            discount_amount=discount_amount,
            used_at=now,
        )
        redemption.raise_(
            CouponRedeemed(
                redemption_id=str(redemption.id),
                coupon_id=str(coupon_id),
                coupon_code=coupon_code,
                order_id=str(order_id),
                user_id=str(user_id) if user_id else None,
                discount_amount=discount_amount,
                usage_count=usage_count,
                used_at=now,
            )
        )
        return redemption
