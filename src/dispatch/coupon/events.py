"""Domain events for the Coupon and CouponRedemption aggregates."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from dispatch.domain import dispatch


@dispatch.event(part_of="Coupon")
class CouponCreated:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    discount_type = String(required=True)
    discount_value = Float(required=True)
    usage_limit = Integer(required=True)
    valid_from = DateTime(required=True)
    valid_to = DateTime(required=True)
    created_at = DateTime(required=True)


@dispatch.event(part_of="Coupon")
class CouponUpdated:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    updated_at = DateTime(required=True)


@dispatch.event(part_of="Coupon")
class CouponActivated:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    activated_at = DateTime(required=True)


@dispatch.event(part_of="Coupon")
class CouponDeactivated:
    __version__ = 1

    coupon_id = Identifier(required=True)
    code = String(required=True)
    deactivated_at = DateTime(required=True)


@dispatch.event(part_of="CouponRedemption")
class CouponRedeemed:
    """A coupon was used on an order and its usage counter incremented."""

    __version__ = 1

    redemption_id = Identifier(required=True)
    coupon_id = Identifier(required=True)
    coupon_code = String(required=True)
    order_id = Identifier(required=True)
    user_id = Identifier()
    discount_amount = Float(required=True)
    usage_count = Integer(required=True)
    used_at = DateTime(required=True)
