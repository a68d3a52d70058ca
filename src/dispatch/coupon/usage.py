"""RecordCouponUsage: count a coupon use for an order placed elsewhere."""

from protean import handle
from protean.fields import Float, Identifier

from dispatch.coupon import engine
from dispatch.coupon.redemption import CouponRedemption
from dispatch.domain import dispatch


@dispatch.command(part_of="CouponRedemption")
class RecordCouponUsage:
    coupon_id = Identifier(required=True)
    order_id = Identifier(required=True)
    user_id = Identifier()
    discount_amount = Float(required=True, min_value=0)


@dispatch.command_handler(part_of=CouponRedemption)
class RecordCouponUsageHandler:
    @handle(RecordCouponUsage)
    def record_usage(self, command):
        redemption = engine.record_usage(
            coupon_id=command.coupon_id,
            user_id=command.user_id,
            order_id=command.order_id,
            discount_amount=command.discount_amount,
        )
        return str(redemption.id)
