"""Coupon engine: validate, apply and record coupon usage.

Checks run in a fixed order and stop at the first failure:

    existence -> active -> expired -> not yet valid -> usage cap
    -> minimum order value -> user restrictions -> product/category scope

``record_usage`` increments ``usage_count`` with a conditional store update
filtered on the count it last read (compare-and-set), so two concurrent
redemptions of the last remaining use cannot both succeed. The same write
advances the aggregate version, so an admin edit saved from a snapshot taken
before the increment fails its version check instead of resetting the count.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain
from protean.utils.query import Q

from dispatch.coupon.coupon import Coupon, DiscountType, as_utc, normalize_code
from dispatch.coupon.errors import (
    BelowMinimumOrder,
    CategoryNotApplicable,
    Expired,
    Inactive,
    InvalidCode,
    NotYetValid,
    ProductNotApplicable,
    UsageContention,
    UsageLimitExceeded,
    UserRestricted,
)
from dispatch.coupon.redemption import CouponRedemption

logger = structlog.get_logger(__name__)

MAX_USAGE_ATTEMPTS = 5


@dataclass(frozen=True)
class CouponValidation:
    coupon_id: str
    code: str
    discount_type: str
    discount_value: float
    maximum_discount_amount: float | None
    minimum_order_value: float


@dataclass(frozen=True)
class CouponApplication:
    coupon_id: str
    code: str
    order_value: float
    discount_amount: float
    final_amount: float


@dataclass(frozen=True)
class CouponUsageStats:
    code: str
    usage_count: int
    usage_limit: int
    remaining_uses: int
    total_discount_given: float
    last_used: datetime | None


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def find_coupon_by_code(code: str) -> Coupon | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    repo = current_domain.repository_for(Coupon)
    return repo._dao.query.filter(code=normalized).all().first


def _is_returning_user(user_id: str) -> bool:
    repo = current_domain.repository_for(CouponRedemption)
    return repo._dao.query.filter(user_id=str(user_id)).all().total > 0


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _check_user(coupon: Coupon, user_id: str | None) -> None:
    restrictions = coupon.user_restrictions
    if restrictions is None or user_id is None:
        return

    user_id = str(user_id)
    if restrictions.first_time_users_only and _is_returning_user(user_id):
        raise UserRestricted("This coupon is only for first-time users")

    allowed = restrictions.allowed_users
    if allowed and user_id not in allowed:
        raise UserRestricted()

    if user_id in restrictions.excluded_users:
        raise UserRestricted()


def _check_scope(coupon: Coupon, product_ids, category_ids) -> None:
    applicable_products = coupon.product_ids
    if applicable_products and product_ids is not None:
        if not set(applicable_products) & {str(p) for p in product_ids}:
            raise ProductNotApplicable()

    applicable_categories = coupon.category_ids
    if applicable_categories and category_ids is not None:
        if not set(applicable_categories) & {str(c) for c in category_ids}:
            raise CategoryNotApplicable()


def _check_coupon(coupon, order_value, user_id=None, product_ids=None, category_ids=None, now=None):
    now = now or datetime.now(UTC)

    if not coupon.is_active:
        raise Inactive()
    if now > as_utc(coupon.valid_to):
        raise Expired()
    if now < as_utc(coupon.valid_from):
        raise NotYetValid()
    if (coupon.usage_count or 0) >= coupon.usage_limit:
        raise UsageLimitExceeded()
    if order_value < (coupon.minimum_order_value or 0):
        raise BelowMinimumOrder(coupon.minimum_order_value)

    _check_user(coupon, user_id)
    _check_scope(coupon, product_ids, category_ids)


def validate(
    code: str,
    order_value: float,
    user_id: str | None = None,
    product_ids=None,
    category_ids=None,
) -> CouponValidation:
    """Check that ``code`` can be used on an order; raises a CouponError if not."""
    if order_value is None or order_value < 0:
        raise ValidationError({"order_value": ["Order value must be zero or more"]})

    coupon = find_coupon_by_code(code)
    if coupon is None:
        raise InvalidCode()

    _check_coupon(coupon, order_value, user_id, product_ids, category_ids)

    return CouponValidation(
        coupon_id=str(coupon.id),
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        maximum_discount_amount=coupon.maximum_discount_amount,
        minimum_order_value=coupon.minimum_order_value or 0.0,
    )


def compute_discount(validation: CouponValidation, order_value: float) -> float:
    if validation.discount_type == DiscountType.FIXED.value:
        discount = min(validation.discount_value, order_value)
    else:
        discount = order_value * validation.discount_value / 100
        if validation.maximum_discount_amount is not None:
            discount = min(discount, validation.maximum_discount_amount)
    return round(max(discount, 0.0), 2)


def apply(
    code: str,
    order_value: float,
    user_id: str | None = None,
    product_ids=None,
    category_ids=None,
) -> CouponApplication:
    """Validate the coupon and compute the discount for ``order_value``."""
    validation = validate(code, order_value, user_id, product_ids, category_ids)
    discount = compute_discount(validation, order_value)
    return CouponApplication(
        coupon_id=validation.coupon_id,
        code=validation.code,
        order_value=order_value,
        discount_amount=discount,
        final_amount=max(round(order_value - discount, 2), 0.0),
    )


# ---------------------------------------------------------------------------
# Usage recording
# ---------------------------------------------------------------------------
def record_usage(coupon_id: str, user_id: str | None, order_id: str, discount_amount: float) -> CouponRedemption:
    """Count one use of the coupon against ``order_id``.

    Repeated calls for the same order return the first redemption without
    counting again.
    """
    redemption_repo = current_domain.repository_for(CouponRedemption)
    existing = redemption_repo._dao.query.filter(coupon_id=str(coupon_id), order_id=str(order_id)).all().first
    if existing is not None:
        return existing

    coupon_repo = current_domain.repository_for(Coupon)
    for _ in range(MAX_USAGE_ATTEMPTS):
        try:
            coupon = coupon_repo.get(coupon_id)
        except ObjectNotFoundError:
            raise InvalidCode() from None

        observed = coupon.usage_count or 0
        if observed >= coupon.usage_limit:
            raise UsageLimitExceeded()

        updated = coupon_repo._dao._update_all(
            Q(id=str(coupon.id), usage_count=observed),
            usage_count=observed + 1,
            updated_at=datetime.now(UTC),
            _version=coupon._version + 1,
        )
        if updated:
            redemption = CouponRedemption.record(
                coupon_id=coupon.id,
                coupon_code=coupon.code,
                order_id=order_id,
                discount_amount=discount_amount,
                user_id=user_id,
                usage_count=observed + 1,
            )
            redemption_repo.add(redemption)
            logger.info(
                "Coupon usage recorded",
                coupon_code=coupon.code,
                order_id=str(order_id),
                usage_count=observed + 1,
                usage_limit=coupon.usage_limit,
            )
            return redemption

        logger.debug("Coupon usage count moved, retrying", coupon_code=coupon.code, observed=observed)

    raise UsageContention()


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------
def active_coupons(now: datetime | None = None) -> list[Coupon]:
    """Coupons that can be redeemed right now, ordered by code."""
    now = now or datetime.now(UTC)
    repo = current_domain.repository_for(Coupon)
    candidates = repo._dao.query.filter(is_active=True).all().items
    return sorted((c for c in candidates if c.is_redeemable_at(now)), key=lambda c: c.code)


def usage_stats(coupon_id: str) -> CouponUsageStats:
    coupon = current_domain.repository_for(Coupon).get(coupon_id)
    redemptions = (
        current_domain.repository_for(CouponRedemption)._dao.query.filter(coupon_id=str(coupon.id)).all().items
    )
    last_used = max((as_utc(r.used_at) for r in redemptions), default=None)
    return CouponUsageStats(
        code=coupon.code,
        usage_count=coupon.usage_count or 0,
        usage_limit=coupon.usage_limit,
        remaining_uses=coupon.remaining_uses,
        total_discount_given=round(sum(r.discount_amount or 0 for r in redemptions), 2),
        last_used=last_used,
    )
