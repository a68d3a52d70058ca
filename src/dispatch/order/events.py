"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Float, Identifier, Integer, String

from dispatch.domain import dispatch


@dispatch.event(part_of="Order")
class OrderPlaced:
    """A new order was placed, with any coupon discount already applied."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    client_id = Identifier(required=True)
    quantity = Integer(required=True)
    original_price = Float(required=True)
    discount_amount = Float(required=True)
    total_price = Float(required=True)
    coupon_code = String()
    payment_method = String(required=True)
    placed_at = DateTime(required=True)


@dispatch.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    changed_at = DateTime(required=True)


@dispatch.event(part_of="Order")
class CourierBooked:
    """The order was handed to a courier and a consignment was created."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    courier = String(required=True)
    consignment_id = String(required=True)
    tracking_number = String()
    delivery_fee = Float()
    booked_at = DateTime(required=True)


@dispatch.event(part_of="Order")
class CourierStatusUpdated:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    courier = String(required=True)
    from_status = String()
    to_status = String(required=True)
    updated_at = DateTime(required=True)
