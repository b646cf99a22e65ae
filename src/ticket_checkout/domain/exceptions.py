

class TicketCheckoutError(Exception):
    """
    Base exception for all domain-level errors
    inside the ticket checkout engine.
    """


class InvalidStateTransitionError(TicketCheckoutError):
    """
    Raised when an illegal order state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class CheckoutValidationError(TicketCheckoutError):
    """Raised when a cart cannot be checked out as submitted."""


class EmptyCartError(CheckoutValidationError):
    """Raised when the cart is empty or contains a malformed item."""


class TicketNotFoundError(CheckoutValidationError):

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(f"Ticket not found: {ticket_id}")


class TicketEventMismatchError(CheckoutValidationError):

    def __init__(self, ticket_id: str, event_id: str):
        self.ticket_id = ticket_id
        self.event_id = event_id
        super().__init__(
            f"Ticket {ticket_id} does not belong to event {event_id}"
        )


class InsufficientStockError(CheckoutValidationError):

    def __init__(self, ticket_id: str, requested: int, available: int):
        self.ticket_id = ticket_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient ticket stock for {ticket_id}: "
            f"requested {requested}, available {available}"
        )


class PaymentProviderError(TicketCheckoutError):
    """Raised when a call to the hosted payment provider fails."""


class WebhookSignatureError(TicketCheckoutError):
    """Raised when a webhook delivery fails signature verification."""


class MalformedMetadataError(TicketCheckoutError):
    """Raised when provider-echoed order metadata cannot be trusted."""


class InventoryCompensationError(TicketCheckoutError):
    """
    Raised when a stock decrement could not be rolled back after a
    failed booking insert. Stock and bookings may disagree.
    """


class TransactionNotFoundError(TicketCheckoutError):

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class RefundNotAllowedError(TicketCheckoutError):
    """Raised when a transaction is not eligible for a refund."""
