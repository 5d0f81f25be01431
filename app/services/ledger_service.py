"""
Credit ledger - the only code that changes an account balance.

Balances move through a single server-side `credits = credits + delta`
UPDATE, never a read-modify-write of a loaded value. Two concurrent
generations can both pass the balance check and both debit; the final
balance is still exact, and may be negative.

Credit grants driven by payment events carry an idempotency key (the
processor's session or invoice id). The balance increment and the
Transaction row carrying the key are committed together; the unique
constraint on the key turns a redelivered event into a rollback of both.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models import Account, Transaction, utc_now

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for account balances and the transaction audit trail."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_account(self, user_id: str) -> Optional[Account]:
        result = await self.db.execute(select(Account).where(Account.id == user_id))
        return result.scalar_one_or_none()

    async def get_or_create_account(
        self,
        user_id: str,
        email: Optional[str] = None,
        welcome_credits: bool = True,
    ) -> Account:
        """
        Return the user's account, creating it on first activity.

        A new account starts with NEW_ACCOUNT_CREDITS when `welcome_credits` is
        set, otherwise at 0.
        """
        account = await self.get_account(user_id)
        if account:
            if email and not account.email:
                account.email = email
                await self.db.commit()
            return account

        initial = settings.NEW_ACCOUNT_CREDITS if welcome_credits else 0
        account = Account(id=user_id, email=email, credits=initial)
        self.db.add(account)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request created it first
            await self.db.rollback()
            account = await self.get_account(user_id)
            if account is None:
                raise
            return account

        logger.info(
            "Created account",
            extra={"user_id": user_id, "credits": initial},
        )
        await self.db.refresh(account)
        return account

    async def get_balance(self, user_id: str) -> int:
        """Current balance as stored. Unknown users have 0."""
        result = await self.db.execute(select(Account.credits).where(Account.id == user_id))
        balance = result.scalar_one_or_none()
        return balance if balance is not None else 0

    async def adjust_balance(self, user_id: str, delta: int, commit: bool = True) -> int:
        """
        Atomically add `delta` (negative to debit) and return the new balance.

        Creates a missing account at 0 first, so a grant to a new user adds
        exactly `delta`.
        """
        stmt = (
            update(Account)
            .where(Account.id == user_id)
            .values(credits=Account.credits + delta, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            await self.get_or_create_account(user_id, welcome_credits=False)
            await self.db.execute(stmt)

        balance = await self.get_balance(user_id)
        if commit:
            await self.db.commit()

        if balance < 0:
            logger.warning(
                "Balance went negative",
                extra={"user_id": user_id, "delta": delta, "credits": balance},
            )
        return balance

    async def has_transaction(self, idempotency_key: str) -> bool:
        result = await self.db.execute(
            select(Transaction.id).where(Transaction.idempotency_key == idempotency_key).limit(1)
        )
        return result.scalar_one_or_none() is not None

    def _new_transaction(self, user_id: str, transaction_type: str, credits: int, **fields) -> Transaction:
        transaction = Transaction(user_id=user_id, type=transaction_type, credits=credits, **fields)
        self.db.add(transaction)
        return transaction

    async def record_transaction(
        self,
        user_id: str,
        transaction_type: str,
        credits: int = 0,
        commit: bool = True,
        **fields,
    ) -> Transaction:
        """Append an audit row that does not move the balance."""
        transaction = self._new_transaction(user_id, transaction_type, credits, **fields)
        if commit:
            await self.db.commit()
        return transaction

    async def grant_credits(
        self,
        user_id: str,
        credits: int,
        transaction_type: str,
        idempotency_key: Optional[str] = None,
        **fields,
    ) -> Optional[int]:
        """
        Add credits and append the matching Transaction in one commit.

        With an idempotency key, a second grant for the same key is a no-op
        and returns None. Without one the grant always applies.

        Returns:
            The new balance, or None if the key was already used.
        """
        if idempotency_key and await self.has_transaction(idempotency_key):
            logger.info(
                "Duplicate credit grant ignored",
                extra={"user_id": user_id, "type": transaction_type, "idempotency_key": idempotency_key},
            )
            return None

        balance = await self.adjust_balance(user_id, credits, commit=False)
        self._new_transaction(user_id, transaction_type, credits, idempotency_key=idempotency_key, **fields)
        try:
            await self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same event won the race
            await self.db.rollback()
            logger.info(
                "Duplicate credit grant rolled back",
                extra={"user_id": user_id, "type": transaction_type, "idempotency_key": idempotency_key},
            )
            return None

        logger.info(
            "Credits granted",
            extra={
                "user_id": user_id,
                "type": transaction_type,
                "credits": credits,
                "balance": balance,
                "idempotency_key": idempotency_key,
            },
        )
        return balance

    async def list_transactions(self, user_id: str, limit: int = 50) -> list[Transaction]:
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
