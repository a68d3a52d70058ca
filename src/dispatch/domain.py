"""Dispatch bounded context: coupons, orders and courier fulfillment.

Handles the order-to-delivery pipeline: coupon validation and redemption at
order placement, courier consignment booking through pluggable provider
adapters, and reconciliation of courier delivery status back onto orders.
"""

from protean.domain import Domain

from dispatch.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

dispatch = Domain(name="dispatch")
