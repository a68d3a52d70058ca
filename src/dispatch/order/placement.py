"""PlaceOrder: create an order, applying a coupon if one was given.

A coupon that fails validation blocks the order. When it passes, the usage is
counted in the same unit of work as the order itself.
"""

import json

import structlog
from protean import handle
from protean.fields import Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from dispatch.coupon import engine
from dispatch.domain import dispatch
from dispatch.order.order import Order, PaymentMethod

logger = structlog.get_logger(__name__)


@dispatch.command(part_of="Order")
class PlaceOrder:
    client_id = Identifier(required=True)
    original_price = Float(required=True, min_value=0)
    quantity = Integer(default=1, min_value=1)
    product_ids = Text()  # JSON array of product ids
    category_ids = Text()  # JSON array of category ids, used for coupon scoping
    items = Text()  # JSON array of {name, quantity, weight, price}
    coupon_code = String(max_length=50)
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.CASH_ON_DELIVERY.value)
    shipping = Text()  # JSON object: name, phone, address, city, area, zip_code
    notes = Text()
    order_number = String(max_length=50)


def _loads(raw):
    return json.loads(raw) if raw else None


@dispatch.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        product_ids = _loads(command.product_ids)

        application = None
        if command.coupon_code:
            # Raises a CouponError, which aborts the order
            application = engine.apply(
                command.coupon_code,
                command.original_price,
                user_id=command.client_id,
                product_ids=product_ids,
                category_ids=_loads(command.category_ids),
            )

        order = Order.place(
            client_id=command.client_id,
            original_price=command.original_price,
            quantity=command.quantity,
            product_ids=product_ids,
            items=_loads(command.items),
            discount_amount=application.discount_amount if application else 0.0,
            coupon_code=application.code if application else None,
            coupon_id=application.coupon_id if application else None,
            payment_method=command.payment_method or PaymentMethod.CASH_ON_DELIVERY.value,
            shipping=_loads(command.shipping),
            notes=command.notes,
            order_number=command.order_number,
        )

        if application:
            engine.record_usage(
                coupon_id=application.coupon_id,
                user_id=command.client_id,
                order_id=order.id,
                discount_amount=application.discount_amount,
            )

        current_domain.repository_for(Order).add(order)
        logger.info(
            "Order placed",
            order_number=order.order_number,
            total_price=order.total_price,
            coupon_code=order.coupon_code,
        )
        return str(order.id)
