"""
Credit ledger - business credit balances and their transaction log

Balance changes are SQL expressions evaluated by the database, never
read-modify-write in Python. Each change and its CreditTransaction row are
committed together.
"""
from typing import Optional, List, Dict, Any
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import desc, func
import logging

from ..db.models.credits import BusinessCredit, CreditTransaction, CreditTransactionType
from ..exceptions import ValidationError, InsufficientCredits

logger = logging.getLogger(__name__)


def _validate_amount(amount) -> int:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("Credit amount must be a positive integer", {"amount": amount})
    return amount


class CreditLedger:
    """Service for crediting and debiting business credit balances"""

    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, business_account_id: str) -> BusinessCredit:
        """
        Current ledger entry for an account

        Accounts that never bought credits get an unsaved zero entry.
        """
        account = self.db.query(BusinessCredit).filter(
            BusinessCredit.business_account_id == business_account_id
        ).first()
        if account is None:
            return BusinessCredit(
                business_account_id=business_account_id,
                total_credits=0,
                used_credits=0,
            )
        return account

    def credit(
        self,
        business_account_id: str,
        order_id: str,
        amount: int,
        description: Optional[str] = None,
    ) -> BusinessCredit:
        """
        Add credits for a paid order

        Idempotent per order_id: if the order was already credited the call
        returns the current balance without changing it.

        Raises:
            ValidationError: amount is not a positive integer
        """
        amount = _validate_amount(amount)

        if self._order_already_credited(order_id):
            logger.info(f"Order {order_id} already credited, skipping")
            return self._fresh_balance(business_account_id)

        self._ensure_account(business_account_id)

        try:
            with self.db.begin_nested():
                # The unique (order_id, type) row is claimed first so a
                # concurrent credit for the same order fails before touching
                # the balance.
                transaction = CreditTransaction(
                    business_account_id=business_account_id,
                    order_id=order_id,
                    type=CreditTransactionType.CREDIT.value,
                    credit_change=amount,
                    balance_after=0,
                    description=description or f"Credit purchase - order {order_id}",
                )
                self.db.add(transaction)
                self.db.flush()

                self.db.query(BusinessCredit).filter(
                    BusinessCredit.business_account_id == business_account_id
                ).update(
                    {
                        BusinessCredit.total_credits: BusinessCredit.total_credits + amount,
                        BusinessCredit.updated_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
                )

                transaction.balance_after = self._available(business_account_id)
                self.db.flush()
        except IntegrityError:
            # Another writer credited this order first; the savepoint is already rolled back
            logger.info(f"Concurrent credit for order {order_id} detected, treating as already applied")
            return self._fresh_balance(business_account_id)

        self.db.commit()
        account = self._fresh_balance(business_account_id)
        logger.info(
            f"Credited {amount} to account {business_account_id} for order {order_id} "
            f"(total={account.total_credits}, used={account.used_credits})"
        )
        return account

    def debit(self, business_account_id: str, amount: int, reason: str) -> BusinessCredit:
        """
        Spend credits

        Raises:
            ValidationError: amount is not a positive integer
            InsufficientCredits: used + amount would exceed total
        """
        amount = _validate_amount(amount)

        updated = self.db.query(BusinessCredit).filter(
            BusinessCredit.business_account_id == business_account_id,
            BusinessCredit.used_credits + amount <= BusinessCredit.total_credits,
        ).update(
            {
                BusinessCredit.used_credits: BusinessCredit.used_credits + amount,
                BusinessCredit.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )

        if updated == 0:
            available = self.get_balance(business_account_id).available_credits
            raise InsufficientCredits(
                f"Insufficient credits: {available} available, {amount} requested",
                {"available": available, "requested": amount},
            )

        self.db.add(CreditTransaction(
            business_account_id=business_account_id,
            order_id=None,
            type=CreditTransactionType.DEBIT.value,
            credit_change=-amount,
            balance_after=self._available(business_account_id),
            description=reason,
        ))
        self.db.commit()

        account = self._fresh_balance(business_account_id)
        logger.info(f"Debited {amount} from account {business_account_id}: {reason}")
        return account

    def list_transactions(
        self,
        business_account_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        return self.db.query(CreditTransaction).filter(
            CreditTransaction.business_account_id == business_account_id
        ).order_by(desc(CreditTransaction.created_at), desc(CreditTransaction.id)).offset(offset).limit(limit).all()

    def reconcile(self, business_account_id: str) -> Dict[str, Any]:
        """Compare the transaction log against the stored balance"""
        logged = self.db.query(func.coalesce(func.sum(CreditTransaction.credit_change), 0)).filter(
            CreditTransaction.business_account_id == business_account_id
        ).scalar()
        account = self.get_balance(business_account_id)
        return {
            "business_account_id": business_account_id,
            "transaction_sum": int(logged),
            "available_credits": account.available_credits,
            "consistent": int(logged) == account.available_credits,
        }

    def _order_already_credited(self, order_id: str) -> bool:
        return self.db.query(CreditTransaction.id).filter(
            CreditTransaction.order_id == order_id,
            CreditTransaction.type == CreditTransactionType.CREDIT.value,
        ).first() is not None

    def _ensure_account(self, business_account_id: str) -> None:
        exists = self.db.query(BusinessCredit.id).filter(
            BusinessCredit.business_account_id == business_account_id
        ).first()
        if exists:
            return
        try:
            with self.db.begin_nested():
                self.db.add(BusinessCredit(
                    business_account_id=business_account_id,
                    total_credits=0,
                    used_credits=0,
                ))
                self.db.flush()
        except IntegrityError:
            # Created concurrently; the row we need exists now
            logger.debug(f"Credit account {business_account_id} created concurrently")

    def _available(self, business_account_id: str) -> int:
        total, used = self.db.query(BusinessCredit.total_credits, BusinessCredit.used_credits).filter(
            BusinessCredit.business_account_id == business_account_id
        ).one()
        return total - used

    def _fresh_balance(self, business_account_id: str) -> BusinessCredit:
        account = self.get_balance(business_account_id)
        if account.id is not None:
            self.db.refresh(account)
        return account
