# src/ticket_checkout/infrastructure/repositories/transaction_repository.py

from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import select, func

from ticket_checkout.infrastructure.db.models import Transaction
from ticket_checkout.domain.models import TransactionStatus, TransactionType


class TransactionRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock(self, transaction_id: str) -> Transaction | None:
        """SELECT ... FOR UPDATE, so refunds of one payment run one at a time."""

        stmt = (
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def find_refund_for(self, transaction_id: str) -> Transaction | None:
        stmt = (
            select(Transaction)
            .where(Transaction.reference_id == transaction_id)
            .where(Transaction.type == TransactionType.REFUND)
        )
        return self.db.execute(stmt).scalars().first()

    def record(
        self,
        user_id: str,
        event_id: str,
        amount: Decimal,
        status: TransactionStatus,
        transaction_type: TransactionType = TransactionType.PAYMENT,
        ticket_id: str | None = None,
        order_id: str | None = None,
        reference_id: str | None = None,
        provider_payment_id: str | None = None,
        failure_reason: str | None = None,
    ) -> Transaction:

        transaction = Transaction(
            user_id=user_id,
            event_id=event_id,
            ticket_id=ticket_id,
            order_id=order_id,
            amount=amount,
            status=status,
            type=transaction_type,
            reference_id=reference_id,
            provider_payment_id=provider_payment_id,
            failure_reason=failure_reason,
        )
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def search_for_user(
        self,
        user_id: str,
        offset: int,
        limit: int,
        status: TransactionStatus | None = None,
        transaction_type: TransactionType | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> tuple[list[Transaction], int]:
        """Returns one page of matching rows, newest first, plus the total count."""

        conditions = [Transaction.user_id == user_id]
        if status is not None:
            conditions.append(Transaction.status == status)
        if transaction_type is not None:
            conditions.append(Transaction.type == transaction_type)
        if start_date is not None:
            conditions.append(Transaction.created_at >= start_date)
        if end_date is not None:
            conditions.append(Transaction.created_at <= end_date)

        count_stmt = select(func.count()).select_from(Transaction).where(*conditions)
        total = self.db.execute(count_stmt).scalar_one()

        page_stmt = (
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.created_at.desc(), Transaction.id)
            .offset(offset)
            .limit(limit)
        )
        rows = list(self.db.execute(page_stmt).scalars().all())
        return rows, total
