"""Order/booking transition table.

This is the only place that decides which operation is allowed from which
status. Callers receive the ordered list of statuses to flip through; an empty
tuple means the operation is a no-op from the current status.
"""

from __future__ import annotations

from enum import Enum
from typing import Final

from .models import OrderStatus


class ActorRole(str, Enum):
    CUSTOMER = "CUSTOMER"
    BUSINESS = "BUSINESS"
    EITHER = "EITHER"


class Operation(str, Enum):
    CANCEL = "cancel"
    RESET_TO_PENDING = "reset_to_pending"
    REQUEST_CANCEL = "request_cancel"
    REFUND_IF_ELIGIBLE = "refund_if_eligible"
    APPROVE_CANCEL = "approve_cancel"
    REJECT_CANCEL = "reject_cancel"
    MARK_PAID = "mark_paid"
    MARK_REFUNDED = "mark_refunded"
    REJECT_ORDER = "reject_order"
    UNREJECT_ORDER = "unreject_order"


class TransitionConflict(Exception):
    """Raised when an operation is not allowed from the order's current status."""

    def __init__(self, operation: Operation, status: OrderStatus) -> None:
        self.operation = operation
        self.status = status
        super().__init__(f"cannot {operation.value.replace('_', ' ')} an order in status {status.value}")


S = OrderStatus

OPERATION_ROLES: Final[dict[Operation, ActorRole]] = {
    Operation.CANCEL: ActorRole.CUSTOMER,
    Operation.RESET_TO_PENDING: ActorRole.CUSTOMER,
    Operation.REQUEST_CANCEL: ActorRole.CUSTOMER,
    Operation.REFUND_IF_ELIGIBLE: ActorRole.EITHER,
    Operation.APPROVE_CANCEL: ActorRole.BUSINESS,
    Operation.REJECT_CANCEL: ActorRole.BUSINESS,
    Operation.MARK_PAID: ActorRole.BUSINESS,
    Operation.MARK_REFUNDED: ActorRole.BUSINESS,
    Operation.REJECT_ORDER: ActorRole.BUSINESS,
    Operation.UNREJECT_ORDER: ActorRole.BUSINESS,
}

# (operation, current status) -> statuses to flip through. Missing pairs are conflicts.
TRANSITIONS: Final[dict[tuple[Operation, OrderStatus], tuple[OrderStatus, ...]]] = {
    (Operation.CANCEL, S.PENDING): (S.CANCELED,),
    (Operation.CANCEL, S.CANCEL_REQUESTED): (S.CANCELED,),
    (Operation.CANCEL, S.CANCELED): (),
    (Operation.RESET_TO_PENDING, S.PENDING): (),
    (Operation.RESET_TO_PENDING, S.CANCEL_REQUESTED): (S.PENDING,),
    (Operation.RESET_TO_PENDING, S.CANCELED): (S.PENDING,),
    (Operation.RESET_TO_PENDING, S.REJECTED): (S.PENDING,),
    (Operation.REQUEST_CANCEL, S.PENDING): (S.CANCEL_REQUESTED,),
    (Operation.REQUEST_CANCEL, S.CANCEL_REQUESTED): (),
    (Operation.REQUEST_CANCEL, S.CANCELED): (),
    (Operation.REFUND_IF_ELIGIBLE, S.PENDING): (S.CANCELED, S.REFUNDED),
    (Operation.REFUND_IF_ELIGIBLE, S.CANCEL_REQUESTED): (S.CANCELED, S.REFUNDED),
    (Operation.REFUND_IF_ELIGIBLE, S.CANCELED): (S.REFUNDED,),
    (Operation.REFUND_IF_ELIGIBLE, S.REFUNDED): (),
    (Operation.APPROVE_CANCEL, S.CANCEL_REQUESTED): (S.CANCELED,),
    (Operation.APPROVE_CANCEL, S.CANCELED): (),
    (Operation.REJECT_CANCEL, S.CANCEL_REQUESTED): (S.PENDING,),
    (Operation.REJECT_CANCEL, S.COMPLETED): (),
    (Operation.MARK_PAID, S.PENDING): (S.COMPLETED,),
    (Operation.MARK_PAID, S.CANCEL_REQUESTED): (S.COMPLETED,),
    (Operation.MARK_PAID, S.CANCELED): (S.COMPLETED,),
    (Operation.MARK_PAID, S.COMPLETED): (),
    (Operation.MARK_PAID, S.REJECTED): (S.COMPLETED,),
    (Operation.MARK_REFUNDED, S.PENDING): (S.REFUNDED,),
    (Operation.MARK_REFUNDED, S.CANCEL_REQUESTED): (S.REFUNDED,),
    (Operation.MARK_REFUNDED, S.CANCELED): (S.REFUNDED,),
    (Operation.MARK_REFUNDED, S.COMPLETED): (S.REFUNDED,),
    (Operation.MARK_REFUNDED, S.REJECTED): (S.REFUNDED,),
    (Operation.MARK_REFUNDED, S.REFUNDED): (),
    (Operation.REJECT_ORDER, S.PENDING): (S.REJECTED,),
    (Operation.REJECT_ORDER, S.CANCEL_REQUESTED): (S.REJECTED,),
    (Operation.REJECT_ORDER, S.CANCELED): (S.REJECTED,),
    (Operation.REJECT_ORDER, S.REJECTED): (),
    (Operation.UNREJECT_ORDER, S.CANCELED): (S.PENDING,),
    (Operation.UNREJECT_ORDER, S.REJECTED): (S.PENDING,),
}


def plan_transition(operation: Operation, current: OrderStatus) -> tuple[OrderStatus, ...]:
    """Return the statuses ``operation`` walks through from ``current``.

    Raises :class:`TransitionConflict` when the pair is not in the table.
    """

    try:
        return TRANSITIONS[(operation, current)]
    except KeyError:
        raise TransitionConflict(operation, current) from None
