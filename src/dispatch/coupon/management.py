"""Coupon administration: create, edit, toggle and delete coupons."""

import json
from datetime import datetime

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from dispatch.coupon.coupon import Coupon, normalize_code
from dispatch.coupon.engine import find_coupon_by_code
from dispatch.domain import dispatch


@dispatch.command(part_of="Coupon")
class CreateCoupon:
    code = String(required=True, max_length=50)
    description = String(required=True, max_length=500)
    discount_type = String(required=True, max_length=20)
    discount_value = Float(required=True)
    valid_from = DateTime(required=True)
    valid_to = DateTime(required=True)
    minimum_order_value = Float(default=0.0)
    maximum_discount_amount = Float()
    usage_limit = Integer(default=1)
    is_active = Boolean(default=True)
    applicable_categories = Text()  # JSON array of ids
    applicable_products = Text()  # JSON array of ids
    user_restrictions = Text()  # JSON object
    created_by = String(max_length=255)


@dispatch.command(part_of="Coupon")
class UpdateCoupon:
    """Partial edit; only fields present in ``changes`` are touched."""

    coupon_id = Identifier(required=True)
    changes = Text(required=True)  # JSON object of field -> new value


@dispatch.command(part_of="Coupon")
class ActivateCoupon:
    coupon_id = Identifier(required=True)


@dispatch.command(part_of="Coupon")
class DeactivateCoupon:
    coupon_id = Identifier(required=True)


@dispatch.command(part_of="Coupon")
class DeleteCoupon:
    coupon_id = Identifier(required=True)


_EDITABLE_FIELDS = {
    "code",
    "description",
    "discount_type",
    "discount_value",
    "minimum_order_value",
    "maximum_discount_amount",
    "usage_limit",
    "valid_from",
    "valid_to",
    "applicable_categories",
    "applicable_products",
    "user_restrictions",
}

_DATE_FIELDS = {"valid_from", "valid_to"}


def _loads(raw):
    return json.loads(raw) if raw else None


def _ensure_code_is_free(code: str, coupon_id: str | None = None) -> None:
    existing = find_coupon_by_code(code)
    if existing is not None and str(existing.id) != str(coupon_id):
        raise ValidationError({"code": ["Coupon code already exists"]})


def _parse_changes(raw: str) -> dict:
    changes = json.loads(raw)
    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValidationError({field: ["Field cannot be edited"] for field in sorted(unknown)})
    for field in _DATE_FIELDS & set(changes):
        if isinstance(changes[field], str):
            changes[field] = datetime.fromisoformat(changes[field])
    return changes


@dispatch.command_handler(part_of=Coupon)
class CouponManagementHandler:
    @handle(CreateCoupon)
    def create_coupon(self, command):
        _ensure_code_is_free(normalize_code(command.code))

        coupon = Coupon.create(
            code=command.code,
            description=command.description,
            discount_type=command.discount_type,
            discount_value=command.discount_value,
            valid_from=command.valid_from,
            valid_to=command.valid_to,
            minimum_order_value=command.minimum_order_value,
            maximum_discount_amount=command.maximum_discount_amount,
            usage_limit=command.usage_limit,
            is_active=command.is_active if command.is_active is not None else True,
            applicable_categories=_loads(command.applicable_categories),
            applicable_products=_loads(command.applicable_products),
            user_restrictions=_loads(command.user_restrictions),
            created_by=command.created_by,
        )
        current_domain.repository_for(Coupon).add(coupon)
        return str(coupon.id)

    @handle(UpdateCoupon)
    def update_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.get(command.coupon_id)

        changes = _parse_changes(command.changes)
        if "code" in changes:
            _ensure_code_is_free(normalize_code(changes["code"]), coupon.id)

        coupon.update(**changes)
        repo.add(coupon)

    @handle(ActivateCoupon)
    def activate_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.get(command.coupon_id)
        coupon.activate()
        repo.add(coupon)

    @handle(DeactivateCoupon)
    def deactivate_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.get(command.coupon_id)
        coupon.deactivate()
        repo.add(coupon)

    @handle(DeleteCoupon)
    def delete_coupon(self, command):
        repo = current_domain.repository_for(Coupon)
        coupon = repo.get(command.coupon_id)
        if coupon.has_been_used:
            raise ValidationError({"coupon": ["Cannot delete coupon that has been used"]})
        repo._dao.delete(coupon)
