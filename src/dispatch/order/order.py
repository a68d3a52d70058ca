"""Order aggregate: the part of an order that discounting and delivery touch.

Two independent state machines live on the order.

Order status (internal lifecycle):
    PENDING → PROCESSING → SHIPPED → DELIVERED
    PENDING → SHIPPED (courier picked up before anyone marked it processing)
    PENDING/PROCESSING → CANCELLED

Courier status (what the courier reports once the order is booked):
    (unbooked) → PENDING → PICKED_UP → IN_TRANSIT → OUT_FOR_DELIVERY → DELIVERED
    forward moves may skip stages; any pre-delivery stage may fail, return or
    be cancelled; FAILED_DELIVERY may be retried. DELIVERED, RETURNED and
    CANCELLED are terminal.

Courier fields are only written by ``book_courier`` and
``apply_courier_status``, after the courier has answered successfully.
"""

import json
import secrets
import string
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    Float,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from dispatch.courier.port import CourierStatus, TrackingStep
from dispatch.domain import dispatch
from dispatch.order.events import (
    CourierBooked,
    CourierStatusUpdated,
    OrderPlaced,
    OrderStatusChanged,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    CASH_ON_DELIVERY = "cash_on_delivery"


class PaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

_FORWARD = [
    CourierStatus.PENDING,
    CourierStatus.PICKED_UP,
    CourierStatus.IN_TRANSIT,
    CourierStatus.OUT_FOR_DELIVERY,
    CourierStatus.DELIVERED,
]


def _courier_transitions() -> dict:
    transitions = {}
    for index, status in enumerate(_FORWARD[:-1]):
        transitions[status] = set(_FORWARD[index + 1 :]) | {
            CourierStatus.FAILED_DELIVERY,
            CourierStatus.RETURNED,
            CourierStatus.CANCELLED,
        }
    # Once out for delivery the parcel can no longer be cancelled
    transitions[CourierStatus.OUT_FOR_DELIVERY].discard(CourierStatus.CANCELLED)
    transitions[CourierStatus.FAILED_DELIVERY] = {
        CourierStatus.IN_TRANSIT,
        CourierStatus.OUT_FOR_DELIVERY,
        CourierStatus.DELIVERED,
        CourierStatus.RETURNED,
    }
    transitions[CourierStatus.DELIVERED] = set()
    transitions[CourierStatus.RETURNED] = set()
    transitions[CourierStatus.CANCELLED] = set()
    return transitions


_COURIER_TRANSITIONS = _courier_transitions()

# Courier progress that means the parcel has left the merchant
_SHIPPED_COURIER_STATES = {
    CourierStatus.PICKED_UP,
    CourierStatus.IN_TRANSIT,
    CourierStatus.OUT_FOR_DELIVERY,
}

# Courier states in which the booking may still be withdrawn
_DELETABLE_COURIER_STATES = {None, CourierStatus.PENDING.value, CourierStatus.CANCELLED.value}


def generate_order_number(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(6))
    return f"ORD-{now.year}-{suffix}"


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@dispatch.value_object(part_of="Order")
class ShippingAddress:
    """Where the parcel goes. Fields may be blank; booking decides what to do about that."""

    name = String(max_length=255)
    phone = String(max_length=30)
    address = String(max_length=500)
    city = String(max_length=100)
    area = String(max_length=100)  # state / zone
    zip_code = String(max_length=20)

    @property
    def is_empty(self) -> bool:
        return not any([self.name, self.phone, self.address, self.city, self.area, self.zip_code])


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@dispatch.aggregate
class Order:
    order_number = String(required=True, max_length=50)
    client_id = Identifier(required=True)
    product_ids = Text()  # JSON array of product ids
    items = Text()  # JSON array of {name, quantity, weight, price}
    quantity = Integer(default=1, min_value=1)

    # Pricing
    original_price = Float(required=True, min_value=0)
    discount_amount = Float(default=0.0, min_value=0)
    total_price = Float(required=True, min_value=0)
    coupon_code = String(max_length=20)
    coupon_id = Identifier()

    # Payment
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.CASH_ON_DELIVERY.value)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)

    # Lifecycle
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    tracking_steps = Text()  # JSON: [{status, timestamp, note}]
    notes = Text()
    shipping = ValueObject(ShippingAddress)

    # Courier
    courier_booking = String(max_length=50)
    consignment_id = String(max_length=100)
    tracking_number = String(max_length=100)
    courier_status = String(choices=CourierStatus)
    courier_delivery_fee = Float()
    courier_estimated_delivery = String(max_length=100)
    courier_tracking_steps = Text()  # JSON: [{status, timestamp, location, note}]
    courier_booked_at = DateTime()
    courier_updated_at = DateTime()

    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def total_matches_discounted_price(self):
        if self.original_price is None or self.total_price is None:
            return
        expected = round(self.original_price - (self.discount_amount or 0), 2)
        if abs(self.total_price - expected) > 0.005:
            raise ValidationError({"total_price": ["Total price must equal original price minus discount"]})

    @invariant.post
    def discount_cannot_exceed_price(self):
        if self.original_price is not None and (self.discount_amount or 0) > self.original_price:
            raise ValidationError({"discount_amount": ["Discount cannot exceed the order value"]})

    @invariant.post
    def courier_fields_require_booking(self):
        if not self.courier_booking and (self.consignment_id or self.courier_status):
            raise ValidationError({"courier_booking": ["Courier details require a courier booking"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        client_id,
        original_price,
        quantity=1,
        product_ids=None,
        items=None,
        discount_amount=0.0,
        coupon_code=None,
        coupon_id=None,
        payment_method=PaymentMethod.CASH_ON_DELIVERY.value,
        shipping=None,
        notes=None,
        order_number=None,
    ):
        now = datetime.now(UTC)
        discount_amount = round(discount_amount or 0.0, 2)
        total_price = max(round(original_price - discount_amount, 2), 0.0)

        order = cls(
            order_number=order_number or generate_order_number(now),
            client_id=client_id,
            product_ids=json.dumps([str(p) for p in product_ids]) if product_ids else None,
            items=json.dumps(items) if items else None,
            quantity=quantity or 1,
            original_price=original_price,
            discount_amount=discount_amount,
            total_price=total_price,
            coupon_code=coupon_code,
            coupon_id=coupon_id,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING.value,
            status=OrderStatus.PENDING.value,
            tracking_steps=json.dumps(
                [{"status": OrderStatus.PENDING.value, "timestamp": now.isoformat(), "note": "Order placed"}]
            ),
            notes=notes,
            shipping=ShippingAddress(**shipping) if shipping else None,
            created_at=now,
            updated_at=now,
        )
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order.order_number,
                client_id=str(client_id),
                quantity=order.quantity,
                original_price=original_price,
                discount_amount=discount_amount,
                total_price=total_price,
                coupon_code=coupon_code,
                payment_method=order.payment_method,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------
    @property
    def product_id_list(self) -> list[str]:
        return json.loads(self.product_ids) if self.product_ids else []

    @property
    def line_items(self) -> list[dict]:
        return json.loads(self.items) if self.items else []

    @property
    def status_history(self) -> list[dict]:
        return json.loads(self.tracking_steps) if self.tracking_steps else []

    @property
    def courier_steps(self) -> list[dict]:
        return json.loads(self.courier_tracking_steps) if self.courier_tracking_steps else []

    @property
    def is_booked(self) -> bool:
        return bool(self.courier_booking)

    # -------------------------------------------------------------------
    # Order status
    # -------------------------------------------------------------------
    def can_transition_to(self, target: OrderStatus) -> bool:
        return target in _VALID_TRANSITIONS.get(OrderStatus(self.status), set())

    def change_status(self, target: OrderStatus, note: str | None = None) -> None:
        current = OrderStatus(self.status)
        if not self.can_transition_to(target):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target.value}"]})

        now = datetime.now(UTC)
        history = self.status_history
        history.append({"status": target.value, "timestamp": now.isoformat(), "note": note})
        self.status = target.value
        self.tracking_steps = json.dumps(history)
        self.updated_at = now

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                from_status=current.value,
                to_status=target.value,
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Courier lifecycle
    # -------------------------------------------------------------------
    def can_change_courier(self) -> bool:
        return not self.is_booked or self.courier_status == CourierStatus.PENDING.value

    def is_courier_deletable(self) -> bool:
        return self.is_booked and self.courier_status in _DELETABLE_COURIER_STATES

    def assert_can_book(self, rebook: bool = False) -> None:
        if not self.is_booked or self.courier_status == CourierStatus.CANCELLED.value:
            return
        if rebook and self.can_change_courier():
            return
        raise ValidationError({"courier_booking": [f"Order is already booked with {self.courier_booking}"]})

    def book_courier(
        self,
        courier: str,
        consignment_id: str,
        tracking_number: str | None = None,
        delivery_fee: float | None = None,
        estimated_delivery: str | None = None,
        rebook: bool = False,
    ) -> None:
        self.assert_can_book(rebook)
        if not consignment_id:
            raise ValidationError({"consignment_id": ["Consignment id is required to book a courier"]})

        now = datetime.now(UTC)
        self.courier_booking = courier
        self.consignment_id = str(consignment_id)
        self.tracking_number = tracking_number
        self.courier_status = CourierStatus.PENDING.value
        self.courier_delivery_fee = delivery_fee
        self.courier_estimated_delivery = estimated_delivery
        self.courier_tracking_steps = json.dumps([])
        self.courier_booked_at = now
        self.courier_updated_at = now
        self.updated_at = now

        self.raise_(
            CourierBooked(
                order_id=str(self.id),
                order_number=self.order_number,
                courier=courier,
                consignment_id=str(consignment_id),
                tracking_number=tracking_number,
                delivery_fee=delivery_fee,
                booked_at=now,
            )
        )

    def replace_courier_steps(self, steps: list[TrackingStep]) -> None:
        self.courier_tracking_steps = json.dumps([step.to_dict() for step in steps])
        self.courier_updated_at = datetime.now(UTC)

    def apply_courier_status(self, status: CourierStatus, steps: list[TrackingStep] | None = None) -> bool:
        """Record a courier-reported status. Returns True when the status changed.

        Reporting the current status again only refreshes the tracking steps.
        """
        if not self.is_booked:
            raise ValidationError({"courier_booking": ["Order does not have courier information"]})

        if steps is not None:
            self.replace_courier_steps(steps)

        current = CourierStatus(self.courier_status) if self.courier_status else CourierStatus.PENDING
        if status == current:
            return False
        if status not in _COURIER_TRANSITIONS[current]:
            raise ValidationError(
                {"courier_status": [f"Cannot transition courier status from {current.value} to {status.value}"]}
            )

        now = datetime.now(UTC)
        self.courier_status = status.value
        self.courier_updated_at = now
        self.updated_at = now
        self.raise_(
            CourierStatusUpdated(
                order_id=str(self.id),
                order_number=self.order_number,
                courier=self.courier_booking,
                from_status=current.value,
                to_status=status.value,
                updated_at=now,
            )
        )

        self._reconcile_with_courier(status)
        return True

    def _reconcile_with_courier(self, status: CourierStatus) -> None:
        if status in _SHIPPED_COURIER_STATES or status == CourierStatus.DELIVERED:
            if self.can_transition_to(OrderStatus.SHIPPED):
                self.change_status(OrderStatus.SHIPPED, note=f"Courier reported {status.value}")
        if status == CourierStatus.DELIVERED and self.can_transition_to(OrderStatus.DELIVERED):
            self.change_status(OrderStatus.DELIVERED, note="Courier reported delivery")
