"""Coupon aggregate: a discount code an admin defines and customers redeem.

Rules on the aggregate itself:
- code: trimmed, upper-cased, 3..20 characters of A-Z/0-9, unique (handler)
- percentage discounts: value <= 100 and a maximum discount cap is required
- usage_count never exceeds usage_limit
- valid_to after valid_from, and in the future when the coupon is created

``usage_count`` is only ever changed by the conditional store update in
``dispatch.coupon.engine.record_usage``; admin edits leave it alone.
"""

import json
import re
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    ValueObject,
)

from dispatch.coupon.events import (
    CouponActivated,
    CouponCreated,
    CouponDeactivated,
    CouponUpdated,
)
from dispatch.domain import dispatch

CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$")
MAX_DISCOUNT_VALUE = 100000

_UNSET = object()


class DiscountType(Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _dump_ids(ids) -> str | None:
    return json.dumps([str(i) for i in ids]) if ids else None


def _load_ids(raw: str | None) -> list[str]:
    return json.loads(raw) if raw else []


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@dispatch.value_object(part_of="Coupon")
class UserRestrictions:
    """Who may redeem the coupon."""

    first_time_users_only = Boolean(default=False)
    specific_users = Text()  # JSON array of user ids (allow-list)
    exclude_users = Text()  # JSON array of user ids (deny-list)

    @classmethod
    def build(cls, first_time_users_only=False, specific_users=None, exclude_users=None):
        return cls(
            first_time_users_only=bool(first_time_users_only),
            specific_users=_dump_ids(specific_users),
            exclude_users=_dump_ids(exclude_users),
        )

    @property
    def allowed_users(self) -> list[str]:
        return _load_ids(self.specific_users)

    @property
    def excluded_users(self) -> list[str]:
        return _load_ids(self.exclude_users)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@dispatch.aggregate
class Coupon:
    code = String(required=True, max_length=20)
    description = String(required=True, max_length=500)
    discount_type = String(choices=DiscountType, required=True)
    discount_value = Float(required=True, min_value=0, max_value=MAX_DISCOUNT_VALUE)
    minimum_order_value = Float(default=0.0, min_value=0)
    maximum_discount_amount = Float(min_value=0)
    usage_limit = Integer(default=1, min_value=1, max_value=10000)
    usage_count = Integer(default=0, min_value=0)
    valid_from = DateTime(required=True)
    valid_to = DateTime(required=True)
    is_active = Boolean(default=True)
    applicable_categories = Text()  # JSON array of category ids
    applicable_products = Text()  # JSON array of product ids
    user_restrictions = ValueObject(UserRestrictions)
    created_by = String(max_length=255)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def code_must_be_well_formed(self):
        if self.code is not None and not CODE_PATTERN.match(self.code):
            raise ValidationError(
                {"code": ["Coupon code must be 3-20 characters of uppercase letters and numbers"]}
            )

    @invariant.post
    def description_minimum_length(self):
        if self.description is not None and len(self.description.strip()) < 5:
            raise ValidationError({"description": ["Description must be at least 5 characters"]})

    @invariant.post
    def percentage_cannot_exceed_hundred(self):
        if self.discount_type == DiscountType.PERCENTAGE.value and (self.discount_value or 0) > 100:
            raise ValidationError({"discount_value": ["Percentage discount cannot exceed 100%"]})

    @invariant.post
    def percentage_requires_maximum_discount(self):
        if self.discount_type == DiscountType.PERCENTAGE.value and self.maximum_discount_amount is None:
            raise ValidationError(
                {"maximum_discount_amount": ["Maximum discount amount is required for percentage coupons"]}
            )

    @invariant.post
    def usage_within_limit(self):
        if (self.usage_count or 0) > (self.usage_limit or 0):
            raise ValidationError({"usage_count": ["Coupon usage count cannot exceed usage limit"]})

    @invariant.post
    def validity_window_is_ordered(self):
        if self.valid_from and self.valid_to and as_utc(self.valid_to) <= as_utc(self.valid_from):
            raise ValidationError({"valid_to": ["End date must be after start date"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        code,
        description,
        discount_type,
        discount_value,
        valid_from,
        valid_to,
        minimum_order_value=0.0,
        maximum_discount_amount=None,
        usage_limit=1,
        is_active=True,
        applicable_categories=None,
        applicable_products=None,
        user_restrictions=None,
        created_by=None,
    ):
        now = datetime.now(UTC)
        valid_from = as_utc(valid_from)
        valid_to = as_utc(valid_to)
        if valid_to is not None and valid_to <= now:
            raise ValidationError({"valid_to": ["End date must be in the future"]})

        coupon = cls(
            code=normalize_code(code),
            description=description,
            discount_type=discount_type,
            discount_value=discount_value,
            minimum_order_value=minimum_order_value or 0.0,
            maximum_discount_amount=maximum_discount_amount,
            usage_limit=usage_limit or 1,
            usage_count=0,
            valid_from=valid_from,
            valid_to=valid_to,
            is_active=is_active,
            applicable_categories=_dump_ids(applicable_categories),
            applicable_products=_dump_ids(applicable_products),
            user_restrictions=UserRestrictions.build(**(user_restrictions or {})),
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        coupon.raise_(
            CouponCreated(
                coupon_id=str(coupon.id),
                code=coupon.code,
                discount_type=coupon.discount_type,
                discount_value=coupon.discount_value,
                usage_limit=coupon.usage_limit,
                valid_from=valid_from,
                valid_to=valid_to,
                created_at=now,
            )
        )
        return coupon

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def product_ids(self) -> list[str]:
        return _load_ids(self.applicable_products)

    @property
    def category_ids(self) -> list[str]:
        return _load_ids(self.applicable_categories)

    @property
    def remaining_uses(self) -> int:
        return max((self.usage_limit or 0) - (self.usage_count or 0), 0)

    @property
    def has_been_used(self) -> bool:
        return (self.usage_count or 0) > 0

    def is_redeemable_at(self, moment: datetime) -> bool:
        return (
            bool(self.is_active)
            and as_utc(self.valid_from) <= moment <= as_utc(self.valid_to)
            and self.remaining_uses > 0
        )

    # -------------------------------------------------------------------
    # Admin edits
    # -------------------------------------------------------------------
    def update(
        self,
        code=_UNSET,
        description=_UNSET,
        discount_type=_UNSET,
        discount_value=_UNSET,
        minimum_order_value=_UNSET,
        maximum_discount_amount=_UNSET,
        usage_limit=_UNSET,
        valid_from=_UNSET,
        valid_to=_UNSET,
        applicable_categories=_UNSET,
        applicable_products=_UNSET,
        user_restrictions=_UNSET,
    ):
        """Apply a partial admin edit. Invariants are checked once, at the end."""
        now = datetime.now(UTC)
        with atomic_change(self):
            if code is not _UNSET:
                self.code = normalize_code(code)
            if description is not _UNSET:
                self.description = description
            if discount_type is not _UNSET:
                self.discount_type = discount_type
            if discount_value is not _UNSET:
                self.discount_value = discount_value
            if minimum_order_value is not _UNSET:
                self.minimum_order_value = minimum_order_value or 0.0
            if maximum_discount_amount is not _UNSET:
                self.maximum_discount_amount = maximum_discount_amount
            if usage_limit is not _UNSET:
                self.usage_limit = usage_limit
            if valid_from is not _UNSET:
                self.valid_from = as_utc(valid_from)
            if valid_to is not _UNSET:
                self.valid_to = as_utc(valid_to)
            if applicable_categories is not _UNSET:
                self.applicable_categories = _dump_ids(applicable_categories)
            if applicable_products is not _UNSET:
                self.applicable_products = _dump_ids(applicable_products)
            if user_restrictions is not _UNSET:
                self.user_restrictions = UserRestrictions.build(**(user_restrictions or {}))
            self.updated_at = now

        self.raise_(CouponUpdated(coupon_id=str(self.id), code=self.code, updated_at=now))

    def activate(self) -> None:
        now = datetime.now(UTC)
        self.is_active = True
        self.updated_at = now
        self.raise_(CouponActivated(coupon_id=str(self.id), code=self.code, activated_at=now))

    def deactivate(self) -> None:
        now = datetime.now(UTC)
        self.is_active = False
        self.updated_at = now
        self.raise_(CouponDeactivated(coupon_id=str(self.id), code=self.code, deactivated_at=now))
