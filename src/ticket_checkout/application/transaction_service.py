from collections import Counter
from datetime import datetime
from decimal import Decimal
import logging
import math

from sqlalchemy.orm import Session

from ticket_checkout.domain.exceptions import RefundNotAllowedError, TransactionNotFoundError
from ticket_checkout.domain.models import TransactionStatus, TransactionType, to_minor_units
from ticket_checkout.infrastructure.db.models import Transaction
from ticket_checkout.infrastructure.payments.gateway import PaymentGateway
from ticket_checkout.infrastructure.repositories.transaction_repository import TransactionRepository


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class RefundService:
    """
    Refunds a completed payment transaction through the provider.
    The original row is left untouched; the refund is a new audit row
    pointing back at it.
    """

    def __init__(self, db: Session, gateway: PaymentGateway):
        self.gateway = gateway
        self.transaction_repository = TransactionRepository(db)

    def refund(self, user_id: str, transaction_id: str) -> Transaction:
        original = self.transaction_repository.lock(transaction_id)
        if original is None or original.user_id != user_id:
            raise TransactionNotFoundError(transaction_id)

        if original.type != TransactionType.PAYMENT or original.status != TransactionStatus.COMPLETED:
            raise RefundNotAllowedError("Transaction is not eligible for refund")
        if not original.provider_payment_id:
            raise RefundNotAllowedError("Transaction has no provider payment to refund")
        if self.transaction_repository.find_refund_for(original.id) is not None:
            raise RefundNotAllowedError("Transaction has already been refunded")

        provider_refund_id = self.gateway.refund(
            original.provider_payment_id,
            to_minor_units(original.amount),
        )
        refund = self.transaction_repository.record(
            user_id=original.user_id,
            event_id=original.event_id,
            ticket_id=original.ticket_id,
            order_id=original.order_id,
            amount=original.amount,
            status=TransactionStatus.REFUNDED,
            transaction_type=TransactionType.REFUND,
            reference_id=original.id,
            provider_payment_id=original.provider_payment_id,
        )
        logger.info(
            "Refunded transaction %s as %s (provider refund %s)",
            original.id,
            refund.id,
            provider_refund_id,
        )
        return refund


class TransactionHistoryService:

    def __init__(self, db: Session):
        self.transaction_repository = TransactionRepository(db)

    def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: TransactionStatus | None = None,
        transaction_type: TransactionType | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict:
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        rows, total = self.transaction_repository.search_for_user(
            user_id=user_id,
            offset=(page - 1) * limit,
            limit=limit,
            status=status,
            transaction_type=transaction_type,
            start_date=start_date,
            end_date=end_date,
        )
        return {
            "transactions": rows,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
            "summary": summarize(rows),
        }


def summarize(transactions: list[Transaction]) -> dict:
    """Totals for the given page of transactions."""
    return {
        "total": len(transactions),
        "total_amount": sum((Decimal(tx.amount) for tx in transactions), Decimal("0")),
        "by_status": dict(Counter(tx.status.value for tx in transactions)),
        "by_type": dict(Counter(tx.type.value for tx in transactions)),
    }
