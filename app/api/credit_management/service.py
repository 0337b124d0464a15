from typing import Dict, List, NamedTuple, Optional, Tuple
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.common.http_response_model import PageMeta
from app.logger.logger import logger
from app.models import (
    CreditTransaction,
    Organization,
    OrganizationMember,
    TransactionType,
    User,
    utc_now,
)


class CreditAvailability(NamedTuple):
    available: int
    allocated: int
    used: int
    is_team_member: bool
    organization_id: Optional[UUID] = None


class CreditLedgerService:
    """Balance reads and mutations for personal accounts and team memberships.

    The ledger never commits, the caller owns the unit of work.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _get_user(self, user_id: UUID) -> User:
        result = await self.session.execute(select(User).where(User.id == user_id))
        user = result.scalars().first()
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"User with id {user_id} not found",
            )
        return user

    async def _get_membership(self, user_id: UUID) -> Optional[OrganizationMember]:
        query = select(OrganizationMember).where(OrganizationMember.user_id == user_id)
        result = await self.session.execute(query)
        return result.scalars().first()

    async def check_available(self, user_id: UUID) -> CreditAvailability:
        """Team membership takes precedence over the personal balance"""
        membership = await self._get_membership(user_id)
        if membership:
            await self.session.refresh(membership)
            allocated = membership.allocated_credits
            used = membership.credits_used_this_period
            return CreditAvailability(
                available=max(0, allocated - used),
                allocated=allocated,
                used=used,
                is_team_member=True,
                organization_id=membership.organization_id,
            )

        user = await self._get_user(user_id)
        await self.session.refresh(user)
        return CreditAvailability(
            available=max(0, user.credits_remaining),
            allocated=user.credits_remaining,
            used=0,
            is_team_member=False,
        )

    async def reserve_and_debit(
        self,
        user_id: UUID,
        amount: int,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> bool:
        """Single conditional UPDATE against the member or user row.

        Returns False with no effect when the balance cannot cover `amount`
        at the instant of the update.
        """
        if amount <= 0:
            raise ValueError("Debit amount must be a positive number of credits")

        membership = await self._get_membership(user_id)
        organization_id = None

        if membership:
            organization_id = membership.organization_id
            stmt = (
                update(OrganizationMember)
                .where(
                    OrganizationMember.id == membership.id,
                    OrganizationMember.credits_used_this_period + amount
                    <= OrganizationMember.allocated_credits,
                )
                .values(
                    credits_used_this_period=OrganizationMember.credits_used_this_period
                    + amount
                )
                .execution_options(synchronize_session=False)
            )
        else:
            stmt = (
                update(User)
                .where(User.id == user_id, User.credits_remaining >= amount)
                .values(credits_remaining=User.credits_remaining - amount)
                .execution_options(synchronize_session=False)
            )

        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            logger.warning(
                f"Debit of {amount} credits rejected for user {user_id}: insufficient balance"
            )
            return False

        if membership:
            await self.session.refresh(membership)
            balance_after = max(
                0, membership.allocated_credits - membership.credits_used_this_period
            )
        else:
            balance_after = await self.session.scalar(
                select(User.credits_remaining).where(User.id == user_id)
            )

        await self.log_transaction(
            user_id=user_id,
            organization_id=organization_id,
            transaction_type=TransactionType.STAGING_DEDUCTION,
            amount=amount,
            balance_after=balance_after,
            reference_id=reference_id,
            description=description,
        )
        return True

    async def add(
        self,
        user_id: UUID,
        amount: int,
        transaction_type: TransactionType = TransactionType.TOPUP_PURCHASE,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> int:
        if amount < 0:
            raise ValueError("Credit amount must not be negative")

        await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(credits_remaining=User.credits_remaining + amount)
            .execution_options(synchronize_session=False)
        )
        balance_after = await self.session.scalar(
            select(User.credits_remaining).where(User.id == user_id)
        )
        if balance_after is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"User with id {user_id} not found",
            )

        await self.log_transaction(
            user_id=user_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_after=balance_after,
            reference_id=reference_id,
            description=description,
            metadata=metadata,
        )
        return balance_after

    async def reset(
        self,
        user_id: UUID,
        new_balance: int,
        transaction_type: Optional[
            TransactionType
        ] = TransactionType.SUBSCRIPTION_RENEWAL,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> int:
        """Overwrite the personal balance. Replaying a reset is harmless.

        Pass `transaction_type=None` to skip the ledger entry.
        """
        if new_balance < 0:
            raise ValueError("Credit balance must not be negative")

        await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(credits_remaining=new_balance, credits_reset_at=utc_now())
            .execution_options(synchronize_session=False)
        )

        if transaction_type is not None:
            await self.log_transaction(
                user_id=user_id,
                transaction_type=transaction_type,
                amount=new_balance,
                balance_after=new_balance,
                reference_id=reference_id,
                description=description,
            )
        return new_balance

    async def reset_pool(
        self,
        organization: Organization,
        credits: int,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Organization:
        """Start a new period for a team pool.

        Member usage is zeroed and allocations are kept while they fit inside
        the new total. Otherwise they are cleared and the owner membership
        receives the whole pool.
        """
        if credits < 0:
            raise ValueError("Credit amount must not be negative")

        await self.session.execute(
            update(OrganizationMember)
            .where(OrganizationMember.organization_id == organization.id)
            .values(credits_used_this_period=0)
            .execution_options(synchronize_session=False)
        )

        allocated_sum = await self._allocated_sum(organization.id)
        if allocated_sum > credits:
            logger.warning(
                f"Allocations ({allocated_sum}) exceed new pool of {credits} for "
                f"organization {organization.id}, returning them to the owner"
            )
            await self.session.execute(
                update(OrganizationMember)
                .where(OrganizationMember.organization_id == organization.id)
                .values(allocated_credits=0)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                update(OrganizationMember)
                .where(
                    OrganizationMember.organization_id == organization.id,
                    OrganizationMember.user_id == organization.owner_id,
                )
                .values(allocated_credits=credits)
                .execution_options(synchronize_session=False)
            )
            allocated_sum = await self._allocated_sum(organization.id)

        organization.total_credits = credits
        organization.unallocated_credits = max(0, credits - allocated_sum)
        self.session.add(organization)
        await self.session.flush()

        await self.log_transaction(
            user_id=organization.owner_id,
            organization_id=organization.id,
            transaction_type=TransactionType.SUBSCRIPTION_RENEWAL,
            amount=credits,
            balance_after=credits,
            reference_id=reference_id,
            description=description,
        )
        return organization

    async def zero_pool(self, organization: Organization) -> Organization:
        await self.session.execute(
            update(OrganizationMember)
            .where(OrganizationMember.organization_id == organization.id)
            .values(allocated_credits=0)
            .execution_options(synchronize_session=False)
        )
        organization.total_credits = 0
        organization.unallocated_credits = 0
        self.session.add(organization)
        await self.session.flush()
        return organization

    async def _allocated_sum(self, organization_id: UUID) -> int:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(OrganizationMember.allocated_credits), 0)).where(
                OrganizationMember.organization_id == organization_id
            )
        )
        return int(total or 0)

    async def has_transaction(
        self, reference_id: str, transaction_type: TransactionType
    ) -> bool:
        query = select(func.count(CreditTransaction.id)).where(
            CreditTransaction.reference_id == reference_id,
            CreditTransaction.transaction_type == transaction_type,
        )
        return bool(await self.session.scalar(query))

    async def log_transaction(
        self,
        transaction_type: TransactionType,
        amount: int,
        balance_after: int,
        user_id: Optional[UUID] = None,
        organization_id: Optional[UUID] = None,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> Optional[CreditTransaction]:
        """Append a ledger row inside a savepoint.

        A failed write is logged and leaves the balance mutation in place.
        """
        transaction = CreditTransaction(
            user_id=user_id,
            organization_id=organization_id,
            transaction_type=transaction_type,
            amount=abs(amount),
            balance_after=balance_after,
            reference_id=reference_id,
            description=description,
            credit_metadata=metadata or {},
        )
        try:
            async with self.session.begin_nested():
                self.session.add(transaction)
        except Exception as e:
            logger.error(
                f"Failed to log {transaction_type.value} transaction for user {user_id} "
                f"(reference {reference_id}): {e}"
            )
            return None
        return transaction

    def _format_transaction(self, transaction: CreditTransaction) -> Dict:
        return {
            "id": str(transaction.id),
            "transaction_type": transaction.transaction_type,
            "amount": transaction.amount,
            "balance_after": transaction.balance_after,
            "reference_id": transaction.reference_id,
            "description": transaction.description,
            "organization_id": (
                str(transaction.organization_id) if transaction.organization_id else None
            ),
            "created_at": transaction.created_at,
        }

    async def get_transaction_history(
        self,
        user_id: UUID,
        page: int = 1,
        page_size: int = 20,
        tx_type: Optional[TransactionType] = None,
    ) -> Tuple[List[Dict], PageMeta]:
        query = select(CreditTransaction).where(CreditTransaction.user_id == user_id)
        if tx_type:
            query = query.where(CreditTransaction.transaction_type == tx_type)
        query = query.order_by(CreditTransaction.created_at.desc())

        count_query = select(func.count()).select_from(query.subquery())
        total_count = await self.session.scalar(count_query)

        query = query.offset((page - 1) * page_size).limit(page_size)
        result = await self.session.execute(query)
        transactions = [self._format_transaction(tx) for tx in result.scalars().all()]

        total_pages = (total_count + page_size - 1) // page_size
        pagination = PageMeta(
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            total_items=total_count,
        )
        return transactions, pagination
