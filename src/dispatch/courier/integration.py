"""Courier order integration: moves orders to couriers and status back.

Every public method returns an ``IntegrationResult``; failures are reported,
never raised. A failed booking leaves the order exactly as it was, and
tracking reads fall back to what was last persisted when the courier cannot
be reached.
"""

from dataclasses import dataclass
from typing import Any

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from dispatch.courier.port import ShipmentItem, ShipmentPayload
from dispatch.courier.service import CourierService, get_courier_service
from dispatch.order.order import Order, PaymentMethod
from dispatch.settings import PlaceholderPolicy, get_settings

logger = structlog.get_logger(__name__)

PLACEHOLDER = "Unknown"
MAX_PAGE_SIZE = 100

_RECIPIENT_FIELDS = {
    "recipient_name": "name",
    "recipient_phone": "phone",
    "recipient_address": "address",
    "recipient_city": "city",
    "recipient_area": "area",
}


@dataclass(frozen=True)
class IntegrationResult:
    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data=None) -> "IntegrationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "IntegrationResult":
        return cls(success=False, error=error)


class IntegrationError(Exception):
    """Raised internally to abort an operation with a user-facing message."""


def _first_message(error: ValidationError) -> str:
    messages = getattr(error, "messages", None) or {}
    for field_messages in messages.values():
        if field_messages:
            return field_messages[0]
    return str(error)


def courier_summary(order: Order) -> dict:
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "status": order.status,
        "courier": order.courier_booking,
        "consignment_id": order.consignment_id,
        "tracking_number": order.tracking_number,
        "courier_status": order.courier_status,
        "delivery_fee": order.courier_delivery_fee,
        "estimated_delivery": order.courier_estimated_delivery,
        "tracking_steps": order.courier_steps,
        "total_price": order.total_price,
    }


class CourierOrderIntegration:
    def __init__(self, service: CourierService | None = None, settings=None):
        self.service = service or get_courier_service()
        self.settings = settings or get_settings()

    @property
    def repo(self):
        return current_domain.repository_for(Order)

    def _load(self, order_id) -> Order:
        try:
            return self.repo.get(order_id)
        except ObjectNotFoundError:
            raise IntegrationError("Order not found") from None

    def _load_booked(self, order_id) -> Order:
        order = self._load(order_id)
        if not order.consignment_id or not order.courier_booking:
            raise IntegrationError("Order does not have courier information")
        return order

    # -------------------------------------------------------------------
    # Payload construction
    # -------------------------------------------------------------------
    def build_shipment_payload(self, order: Order) -> ShipmentPayload:
        shipping = order.shipping
        if shipping is None or shipping.is_empty:
            raise IntegrationError("Order does not have a shipping address")

        recipient = {}
        missing = []
        for payload_field, address_field in _RECIPIENT_FIELDS.items():
            value = (getattr(shipping, address_field) or "").strip()
            if not value:
                missing.append(address_field)
                value = PLACEHOLDER
            recipient[payload_field] = value

        if missing and self.settings.placeholder_policy == PlaceholderPolicy.STRICT:
            raise IntegrationError(f"Shipping address is missing {', '.join(missing)}")
        if missing:
            logger.info("Shipping address incomplete, using placeholders", order_number=order.order_number, missing=missing)

        items = tuple(
            ShipmentItem(
                name=item.get("name") or "Item",
                quantity=int(item.get("quantity") or 1),
                weight=float(item.get("weight") or 0.0),
                price=float(item.get("price") or 0.0),
            )
            for item in order.line_items
        ) or tuple(ShipmentItem(name=f"Product {product_id}") for product_id in order.product_id_list)

        cash_on_delivery = order.payment_method == PaymentMethod.CASH_ON_DELIVERY.value
        return ShipmentPayload(
            order_number=order.order_number,
            total_amount=order.total_price if cash_on_delivery else 0.0,
            recipient_postcode=shipping.zip_code,
            items=items,
            notes=order.notes,
            merchant_order_id=str(order.id),
            item_quantity=order.quantity,
            item_weight=sum(i.weight * i.quantity for i in items) or self.settings.default_parcel_weight,
            item_price=order.total_price,
            **recipient,
        )

    # -------------------------------------------------------------------
    # Booking
    # -------------------------------------------------------------------
    def create_courier_order_from_existing_order(self, order_id, provider: str, rebook: bool = False):
        try:
            order = self._load(order_id)
            order.assert_can_book(rebook)
            payload = self.build_shipment_payload(order)
        except IntegrationError as exc:
            return IntegrationResult.fail(str(exc))
        except ValidationError as exc:
            return IntegrationResult.fail(_first_message(exc))

        result = self.service.create_order(provider, payload)
        if not result.success:
            return IntegrationResult.fail(result.error or "Courier order creation failed")

        try:
            order.book_courier(
                courier=provider,
                consignment_id=result.consignment_id,
                tracking_number=result.tracking_number,
                delivery_fee=result.delivery_fee,
                estimated_delivery=result.estimated_delivery,
                rebook=rebook,
            )
        except ValidationError as exc:
            return IntegrationResult.fail(_first_message(exc))

        self.repo.add(order)
        return IntegrationResult.ok(courier_summary(order))

    def create_bulk_courier_orders(self, order_ids, provider: str):
        eligible: list[tuple[Order, ShipmentPayload]] = []
        skipped = []
        for order_id in order_ids:
            try:
                order = self._load(order_id)
                order.assert_can_book()
                eligible.append((order, self.build_shipment_payload(order)))
            except (IntegrationError, ValidationError) as exc:
                reason = str(exc) if isinstance(exc, IntegrationError) else _first_message(exc)
                skipped.append({"order_id": str(order_id), "reason": reason})

        if not eligible:
            return IntegrationResult.fail("No eligible orders to submit")

        result = self.service.bulk_order(provider, [payload for _, payload in eligible])
        if not result.success:
            return IntegrationResult.fail(result.error or "Bulk courier order creation failed")

        booked = self._book_from_bulk_response(provider, eligible, result.data)
        return IntegrationResult.ok(
            {
                "submitted": [str(order.id) for order, _ in eligible],
                "booked": booked,
                "skipped": skipped,
            }
        )

    def _book_from_bulk_response(self, provider, eligible, response) -> list[str]:
        """Book the orders the courier answered for with a consignment id."""
        if not isinstance(response, list):
            return []
        by_number = {order.order_number: order for order, _ in eligible}
        booked = []
        for entry in response:
            if not isinstance(entry, dict):
                continue
            order = by_number.get(entry.get("invoice") or entry.get("merchant_order_id"))
            consignment_id = entry.get("consignment_id")
            if order is None or not consignment_id:
                continue
            order.book_courier(
                courier=provider,
                consignment_id=str(consignment_id),
                tracking_number=entry.get("tracking_code") or entry.get("invoice_id"),
                delivery_fee=entry.get("delivery_fee"),
            )
            self.repo.add(order)
            booked.append(str(order.id))
        return booked

    # -------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------
    def update_order_status_from_courier(self, order_id):
        try:
            order = self._load_booked(order_id)
        except IntegrationError as exc:
            return IntegrationResult.fail(str(exc))

        result = self.service.get_status(order.courier_booking, order.consignment_id)
        if not result.success:
            return IntegrationResult.fail(result.error or "Failed to fetch courier status")

        if result.status is None:
            logger.warning(
                "Unrecognised courier status ignored",
                courier=order.courier_booking,
                order_number=order.order_number,
                raw_status=result.raw_status,
            )
            order.replace_courier_steps(result.tracking_steps)
            changed = False
        else:
            try:
                changed = order.apply_courier_status(result.status, result.tracking_steps)
            except ValidationError as exc:
                return IntegrationResult.fail(_first_message(exc))

        self.repo.add(order)
        return IntegrationResult.ok(
            {
                **courier_summary(order),
                "raw_status": result.raw_status,
                "changed": changed,
            }
        )

    def get_order_tracking_info(self, order_id):
        try:
            order = self._load_booked(order_id)
        except IntegrationError as exc:
            return IntegrationResult.fail(str(exc))

        info = {
            "order_number": order.order_number,
            "courier": order.courier_booking,
            "consignment_id": order.consignment_id,
            "tracking_number": order.tracking_number,
        }

        result = self.service.get_status(order.courier_booking, order.consignment_id)
        if result.success:
            return IntegrationResult.ok(
                {
                    **info,
                    "status": result.status.value if result.status else order.courier_status,
                    "raw_status": result.raw_status,
                    "tracking_steps": [step.to_dict() for step in result.tracking_steps],
                    "source": "live",
                }
            )

        logger.info("Serving cached tracking info", order_number=order.order_number, error=result.error)
        return IntegrationResult.ok(
            {
                **info,
                "status": order.courier_status,
                "tracking_steps": order.courier_steps,
                "source": "cached",
            }
        )

    # -------------------------------------------------------------------
    # Pricing and courier choice
    # -------------------------------------------------------------------
    def calculate_delivery_price(self, provider: str, order_id):
        try:
            order = self._load(order_id)
        except IntegrationError as exc:
            return IntegrationResult.fail(str(exc))
        if order.shipping is None or order.shipping.is_empty:
            return IntegrationResult.fail("Order does not have a shipping address")

        params = {
            "item_type": 2,
            "item_weight": self.settings.default_parcel_weight,
            "item_quantity": order.quantity or 1,
            "delivery_type": 48,
            "recipient_city": order.shipping.city,
            "recipient_zone": order.shipping.area,
        }
        result = self.service.calculate_price(provider, params)
        if not result.success:
            return IntegrationResult.fail(result.error or "Price calculation failed")
        return IntegrationResult.ok(
            {
                "courier": provider,
                "delivery_fee": result.delivery_fee,
                "estimated_delivery_time": result.estimated_delivery_time,
            }
        )

    def get_available_couriers_for_order(self, order_id):
        try:
            order = self._load(order_id)
        except IntegrationError as exc:
            return IntegrationResult.fail(str(exc))
        return IntegrationResult.ok(
            {
                "available_couriers": self.service.available_couriers(),
                "current_courier": order.courier_booking,
                "can_change_courier": order.can_change_courier(),
            }
        )

    # -------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------
    def delete_courier_order(self, order_id):
        try:
            order = self._load_booked(order_id)
        except IntegrationError as exc:
            return IntegrationResult.fail(str(exc))
        if not order.is_courier_deletable():
            return IntegrationResult.fail("Cannot delete order that is already in progress or delivered")

        self.repo._dao.delete(order)
        logger.info("Courier order deleted", order_number=order.order_number, courier=order.courier_booking)
        return IntegrationResult.ok({"order_id": str(order.id)})

    def bulk_delete_courier_orders(self, order_ids):
        deletable = []
        for order_id in order_ids:
            try:
                order = self._load(order_id)
            except IntegrationError:
                continue
            if order.is_courier_deletable():
                deletable.append(order)

        if not deletable:
            return IntegrationResult.fail("No orders can be deleted (only pending or cancelled orders can be deleted)")

        for order in deletable:
            self.repo._dao.delete(order)
        deleted_ids = [str(order.id) for order in deletable]
        logger.info("Courier orders deleted", count=len(deleted_ids), requested=len(order_ids))
        return IntegrationResult.ok(
            {
                "deleted_count": len(deleted_ids),
                "deleted_order_ids": deleted_ids,
                "skipped_order_ids": [str(i) for i in order_ids if str(i) not in deleted_ids],
            }
        )

    # -------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------
    def list_courier_orders(self, courier=None, status=None, search=None, page: int = 1, limit: int = 10):
        limit = min(max(int(limit or 10), 1), MAX_PAGE_SIZE)
        page = max(int(page or 1), 1)

        query = self.repo._dao.query
        orders = (query.filter(courier_booking=courier) if courier else query).all().items
        orders = [o for o in orders if o.is_booked]
        if status:
            orders = [o for o in orders if o.courier_status == status]
        if search:
            needle = search.strip().lower()
            orders = [
                o
                for o in orders
                if needle in (o.order_number or "").lower()
                or needle in (o.consignment_id or "").lower()
                or needle in (o.tracking_number or "").lower()
                or (o.shipping is not None and needle in (o.shipping.name or "").lower())
            ]
        orders.sort(key=lambda o: o.courier_booked_at or o.created_at, reverse=True)

        start = (page - 1) * limit
        return IntegrationResult.ok(
            {
                "orders": [courier_summary(o) for o in orders[start : start + limit]],
                "total": len(orders),
                "page": page,
                "limit": limit,
                "pages": (len(orders) + limit - 1) // limit,
            }
        )

    def get_courier_order(self, order_id):
        try:
            order = self._load_booked(order_id)
        except IntegrationError as exc:
            return IntegrationResult.fail(str(exc))
        return IntegrationResult.ok(courier_summary(order))
