"""UpdateOrderStatus: move an order through its internal lifecycle."""

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from dispatch.domain import dispatch
from dispatch.order.order import Order, OrderStatus


@dispatch.command(part_of="Order")
class UpdateOrderStatus:
    order_id = Identifier(required=True)
    status = String(required=True, choices=OrderStatus)
    note = Text()


@dispatch.command_handler(part_of=Order)
class UpdateOrderStatusHandler:
    @handle(UpdateOrderStatus)
    def update_status(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.change_status(OrderStatus(command.status), note=command.note)
        repo.add(order)
        return order.status
