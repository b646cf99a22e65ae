# src/ticket_checkout/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from ticket_checkout.domain.exceptions import InvalidStateTransitionError


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    SESSION_FAILED = "SESSION_FAILED"
    FULFILLED = "FULFILLED"
    PARTIALLY_FULFILLED = "PARTIALLY_FULFILLED"
    UNFULFILLED = "UNFULFILLED"


class OrderStateMachine:
    """
    Central lifecycle controller for pending orders.
    An order leaves PENDING exactly once: either the payment session
    could not be opened, or the payment webhook finalized its line items.
    """

    _ALLOWED_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
        OrderStatus.PENDING: {
            OrderStatus.SESSION_FAILED,
            OrderStatus.FULFILLED,
            OrderStatus.PARTIALLY_FULFILLED,
            OrderStatus.UNFULFILLED,
        },
        OrderStatus.SESSION_FAILED: set(),
        OrderStatus.FULFILLED: set(),
        OrderStatus.PARTIALLY_FULFILLED: set(),
        OrderStatus.UNFULFILLED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: OrderStatus,
        to_status: OrderStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: OrderStatus,
        to_status: OrderStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: OrderStatus) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def fulfillment_status(cls, completed: int, total: int) -> OrderStatus:
        """
        Maps finalized line-item counts to the order's closing status.
        """
        if total > 0 and completed == total:
            return OrderStatus.FULFILLED
        if completed > 0:
            return OrderStatus.PARTIALLY_FULFILLED
        return OrderStatus.UNFULFILLED

    @staticmethod
    def _ensure_valid_status(status: OrderStatus) -> None:
        if not isinstance(status, OrderStatus):
            raise TypeError(
                f"Expected OrderStatus, got {type(status)}"
            )
