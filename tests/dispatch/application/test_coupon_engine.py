"""Application tests for coupon validation, application and usage recording."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from protean import current_domain
from protean.utils.query import Q

from dispatch.coupon import engine
from dispatch.coupon.coupon import Coupon
from dispatch.coupon.errors import (
    BelowMinimumOrder,
    CategoryNotApplicable,
    CouponError,
    Expired,
    Inactive,
    InvalidCode,
    NotYetValid,
    ProductNotApplicable,
    UsageLimitExceeded,
    UserRestricted,
)
from dispatch.coupon.redemption import CouponRedemption


def _expire(coupon_id):
    """Push a coupon's window into the past, bypassing the creation rule."""
    repo = current_domain.repository_for(Coupon)
    coupon = repo.get(coupon_id)
    now = datetime.now(UTC)
    coupon.update(valid_from=now - timedelta(days=10), valid_to=now - timedelta(seconds=1))
    repo.add(coupon)


class TestValidationOrder:
    def test_unknown_code(self):
        with pytest.raises(InvalidCode) as exc:
            engine.validate("NOPE", 100)
        assert exc.value.message == "Invalid coupon code"
        assert exc.value.kind == "invalid_code"

    def test_lookup_is_case_insensitive(self, create_coupon):
        create_coupon()
        assert engine.validate("  save10 ", 100).code == "SAVE10"

    def test_inactive_checked_before_expiry(self, create_coupon):
        coupon_id = create_coupon(is_active=False)
        _expire(coupon_id)
        with pytest.raises(Inactive):
            engine.validate("SAVE10", 100)

    def test_expired(self, create_coupon):
        _expire(create_coupon())
        with pytest.raises(Expired) as exc:
            engine.validate("SAVE10", 100)
        assert exc.value.message == "Coupon has expired"

    def test_not_yet_valid(self, create_coupon):
        now = datetime.now(UTC)
        create_coupon(valid_from=now + timedelta(days=2), valid_to=now + timedelta(days=5))
        with pytest.raises(NotYetValid):
            engine.validate("SAVE10", 100)

    def test_usage_cap(self, create_coupon):
        coupon_id = create_coupon(usage_limit=1)
        engine.record_usage(coupon_id, "u1", "order-1", 10)
        with pytest.raises(UsageLimitExceeded):
            engine.validate("SAVE10", 100)

    def test_minimum_order_value(self, create_coupon):
        create_coupon(minimum_order_value=50)
        with pytest.raises(BelowMinimumOrder) as exc:
            engine.validate("SAVE10", 49.99)
        assert exc.value.message == "Minimum order value of $50.00 required"

    def test_minimum_checked_before_user_restrictions(self, create_coupon):
        create_coupon(minimum_order_value=50, user_restrictions=json.dumps({"exclude_users": ["u1"]}))
        with pytest.raises(BelowMinimumOrder):
            engine.validate("SAVE10", 10, user_id="u1")

    def test_negative_order_value_rejected(self, create_coupon):
        from protean.exceptions import ValidationError

        create_coupon()
        with pytest.raises(ValidationError):
            engine.validate("SAVE10", -1)


class TestUserRestrictions:
    def test_first_time_only(self, create_coupon):
        create_coupon(code="WELCOME", user_restrictions=json.dumps({"first_time_users_only": True}))
        create_coupon(code="OTHER")
        engine.validate("WELCOME", 100, user_id="u1")

        other = engine.validate("OTHER", 100, user_id="u1")
        engine.record_usage(other.coupon_id, "u1", "order-1", 10)

        with pytest.raises(UserRestricted) as exc:
            engine.validate("WELCOME", 100, user_id="u1")
        assert exc.value.message == "This coupon is only for first-time users"

    def test_allow_list(self, create_coupon):
        create_coupon(user_restrictions=json.dumps({"specific_users": ["vip-1"]}))
        engine.validate("SAVE10", 100, user_id="vip-1")
        with pytest.raises(UserRestricted) as exc:
            engine.validate("SAVE10", 100, user_id="someone")
        assert exc.value.message == "This coupon is not available for your account"

    def test_deny_list(self, create_coupon):
        create_coupon(user_restrictions=json.dumps({"exclude_users": ["blocked"]}))
        with pytest.raises(UserRestricted):
            engine.validate("SAVE10", 100, user_id="blocked")

    def test_anonymous_callers_skip_user_checks(self, create_coupon):
        create_coupon(user_restrictions=json.dumps({"specific_users": ["vip-1"]}))
        assert engine.validate("SAVE10", 100).code == "SAVE10"


class TestScope:
    def test_product_scope(self, create_coupon):
        create_coupon(applicable_products=json.dumps(["p1", "p2"]))
        engine.validate("SAVE10", 100, product_ids=["p2", "p9"])
        with pytest.raises(ProductNotApplicable):
            engine.validate("SAVE10", 100, product_ids=["p9"])

    def test_category_scope(self, create_coupon):
        create_coupon(applicable_categories=json.dumps(["shoes"]))
        with pytest.raises(CategoryNotApplicable):
            engine.validate("SAVE10", 100, category_ids=["hats"])

    def test_scope_ignored_without_ids(self, create_coupon):
        create_coupon(applicable_products=json.dumps(["p1"]))
        assert engine.validate("SAVE10", 100).code == "SAVE10"

    def test_empty_product_list_is_out_of_scope(self, create_coupon):
        create_coupon(applicable_products=json.dumps(["p1"]))
        with pytest.raises(ProductNotApplicable):
            engine.validate("SAVE10", 100, product_ids=[])

    def test_empty_category_list_is_out_of_scope(self, create_coupon):
        create_coupon(applicable_categories=json.dumps(["shoes"]))
        with pytest.raises(CategoryNotApplicable):
            engine.validate("SAVE10", 100, category_ids=[])

    def test_unscoped_coupon_accepts_empty_lists(self, create_coupon):
        create_coupon()
        assert engine.validate("SAVE10", 100, product_ids=[], category_ids=[]).code == "SAVE10"


class TestApply:
    def test_fixed_discount(self, create_coupon):
        create_coupon()
        application = engine.apply("SAVE10", 100)
        assert application.discount_amount == 10.0
        assert application.final_amount == 90.0

    def test_fixed_discount_never_exceeds_order(self, create_coupon):
        create_coupon(discount_value=500)
        application = engine.apply("SAVE10", 120)
        assert application.discount_amount == 120.0
        assert application.final_amount == 0.0

    def test_percentage_under_cap(self, create_coupon):
        create_coupon(code="PCT20", discount_type="percentage", discount_value=20, maximum_discount_amount=50)
        application = engine.apply("PCT20", 100)
        assert application.discount_amount == 20.0
        assert application.final_amount == 80.0

    def test_percentage_capped(self, create_coupon):
        create_coupon(code="PCT20", discount_type="percentage", discount_value=20, maximum_discount_amount=50)
        application = engine.apply("PCT20", 1000)
        assert application.discount_amount == 50.0
        assert application.final_amount == 950.0

    def test_rounding(self, create_coupon):
        create_coupon(code="PCT15", discount_type="percentage", discount_value=15, maximum_discount_amount=100)
        application = engine.apply("PCT15", 33.33)
        assert application.discount_amount == 5.0
        assert application.final_amount == 28.33

    @pytest.mark.parametrize("order_value", [0.0, 0.01, 9.99, 10.0, 57.5, 99999.0])
    def test_discount_bounded_by_order_value_and_cap(self, create_coupon, order_value):
        create_coupon(code="FIXED", discount_value=10)
        create_coupon(code="PCT", discount_type="percentage", discount_value=30, maximum_discount_amount=25)
        for code, cap in (("FIXED", 10), ("PCT", 25)):
            application = engine.apply(code, order_value)
            assert 0 <= application.discount_amount <= min(order_value, cap)
            assert application.final_amount >= 0


class TestRecordUsage:
    def test_increments_and_appends_history(self, create_coupon):
        coupon_id = create_coupon(usage_limit=5)
        redemption = engine.record_usage(coupon_id, "u1", "order-1", 10.0)

        coupon = current_domain.repository_for(Coupon).get(coupon_id)
        assert coupon.usage_count == 1
        assert redemption.coupon_code == "SAVE10"
        assert str(redemption.order_id) == "order-1"

    def test_idempotent_per_order(self, create_coupon):
        coupon_id = create_coupon(usage_limit=5)
        first = engine.record_usage(coupon_id, "u1", "order-1", 10.0)
        second = engine.record_usage(coupon_id, "u1", "order-1", 10.0)

        assert first.id == second.id
        assert current_domain.repository_for(Coupon).get(coupon_id).usage_count == 1

    def test_never_exceeds_limit(self, create_coupon):
        coupon_id = create_coupon(usage_limit=2)
        engine.record_usage(coupon_id, "u1", "order-1", 10.0)
        engine.record_usage(coupon_id, "u2", "order-2", 10.0)
        with pytest.raises(UsageLimitExceeded):
            engine.record_usage(coupon_id, "u3", "order-3", 10.0)

        redemptions = current_domain.repository_for(CouponRedemption)._dao.query.filter(coupon_id=coupon_id).all()
        assert redemptions.total == 2
        assert current_domain.repository_for(Coupon).get(coupon_id).usage_count == 2

    def test_conditional_update_ignores_stale_count(self, create_coupon):
        coupon_id = create_coupon(usage_limit=2)
        engine.record_usage(coupon_id, "u1", "order-1", 10.0)

        repo = current_domain.repository_for(Coupon)
        updated = repo._dao._update_all(Q(id=coupon_id, usage_count=0), usage_count=1)

        assert updated == 0
        assert repo.get(coupon_id).usage_count == 1

    def test_interleaved_redemptions_of_last_use(self, create_coupon, monkeypatch):
        """Both callers read a count of 0 before either one writes."""
        coupon_id = create_coupon(usage_limit=1)
        repo = current_domain.repository_for(Coupon)
        original_get = type(repo).get
        raced = []

        def get_then_race(self, identifier):
            snapshot = original_get(self, identifier)
            if not raced:
                raced.append(identifier)
                engine.record_usage(coupon_id, "u2", "order-2", 10.0)
            return snapshot

        monkeypatch.setattr(type(repo), "get", get_then_race)

        with pytest.raises(UsageLimitExceeded):
            engine.record_usage(coupon_id, "u1", "order-1", 10.0)

        monkeypatch.undo()
        redemptions = current_domain.repository_for(CouponRedemption)._dao.query.filter(coupon_id=coupon_id).all()
        assert [str(r.order_id) for r in redemptions.items] == ["order-2"]
        assert repo.get(coupon_id).usage_count == 1

    def test_unknown_coupon(self):
        with pytest.raises(InvalidCode):
            engine.record_usage("missing-id", "u1", "order-1", 10.0)

    def test_failures_share_a_base_class(self, create_coupon):
        create_coupon(minimum_order_value=100)
        with pytest.raises(CouponError):
            engine.apply("SAVE10", 5)


class TestReporting:
    def test_usage_stats(self, create_coupon):
        coupon_id = create_coupon(usage_limit=10)
        engine.record_usage(coupon_id, "u1", "order-1", 10.0)
        engine.record_usage(coupon_id, "u2", "order-2", 7.5)

        stats = engine.usage_stats(coupon_id)
        assert stats.code == "SAVE10"
        assert stats.usage_count == 2
        assert stats.usage_limit == 10
        assert stats.remaining_uses == 8
        assert stats.total_discount_given == 17.5
        assert stats.last_used is not None

    def test_usage_stats_for_unused_coupon(self, create_coupon):
        stats = engine.usage_stats(create_coupon())
        assert stats.usage_count == 0
        assert stats.last_used is None

    def test_active_coupons(self, create_coupon):
        now = datetime.now(UTC)
        create_coupon(code="LIVE")
        create_coupon(code="OFF", is_active=False)
        create_coupon(code="LATER", valid_from=now + timedelta(days=1), valid_to=now + timedelta(days=3))
        used_up = create_coupon(code="USED", usage_limit=1)
        engine.record_usage(used_up, "u1", "order-1", 10.0)

        assert [c.code for c in engine.active_coupons()] == ["LIVE"]
