from typing import Dict
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.credit_management.service import CreditLedgerService
from app.logger.logger import logger
from app.models import Organization, OrganizationMember, TransactionType, User


class TeamCreditService:
    """Owner-side view and allocation of an organization's credit pool"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.ledger = CreditLedgerService(session)

    async def _get_owned_organization(self, owner: User) -> Organization:
        result = await self.session.execute(
            select(Organization)
            .where(Organization.owner_id == owner.id)
            .execution_options(populate_existing=True)
        )
        organization = result.scalars().first()
        if not organization:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the organization owner can manage team credits",
            )
        return organization

    def _format_member(self, member: OrganizationMember, user: User) -> Dict:
        return {
            "id": str(member.id),
            "user_id": str(member.user_id),
            "email": user.email if user else None,
            "name": user.name if user else None,
            "role": member.role,
            "allocated_credits": member.allocated_credits,
            "credits_used_this_period": member.credits_used_this_period,
            "available_credits": max(
                0, member.allocated_credits - member.credits_used_this_period
            ),
            "joined_at": member.joined_at,
        }

    async def get_pool(self, owner: User) -> Dict:
        organization = await self._get_owned_organization(owner)

        result = await self.session.execute(
            select(OrganizationMember, User)
            .join(User, User.id == OrganizationMember.user_id)
            .where(OrganizationMember.organization_id == organization.id)
            .order_by(OrganizationMember.created_at)
            .execution_options(populate_existing=True)
        )
        members = [self._format_member(member, user) for member, user in result.all()]

        return {
            "organization_id": str(organization.id),
            "name": organization.name,
            "total_credits": organization.total_credits,
            "unallocated_credits": organization.unallocated_credits,
            "allocated_credits": sum(m["allocated_credits"] for m in members),
            "members": members,
        }

    async def allocate_member_credits(
        self, owner: User, member_id: UUID, credits: int
    ) -> Dict:
        if credits < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Credits must not be negative",
            )

        organization = await self._get_owned_organization(owner)

        result = await self.session.execute(
            select(OrganizationMember)
            .where(
                OrganizationMember.id == member_id,
                OrganizationMember.organization_id == organization.id,
            )
            .execution_options(populate_existing=True)
        )
        member = result.scalars().first()
        if not member:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Team member not found"
            )

        if credits < member.credits_used_this_period:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    f"Cannot allocate fewer credits than already used "
                    f"({member.credits_used_this_period})"
                ),
            )

        previous = member.allocated_credits
        delta = credits - previous
        if delta == 0:
            user = await self.session.get(User, member.user_id)
            return self._format_member(member, user)

        if delta > 0:
            taken = await self.session.execute(
                update(Organization)
                .where(
                    Organization.id == organization.id,
                    Organization.unallocated_credits >= delta,
                )
                .values(unallocated_credits=Organization.unallocated_credits - delta)
                .execution_options(synchronize_session=False)
            )
            if taken.rowcount == 0:
                await self.session.rollback()
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Not enough unallocated credits in the team pool",
                )
        else:
            await self.session.execute(
                update(Organization)
                .where(Organization.id == organization.id)
                .values(unallocated_credits=Organization.unallocated_credits - delta)
                .execution_options(synchronize_session=False)
            )

        # the member row must still hold what was read above
        moved = await self.session.execute(
            update(OrganizationMember)
            .where(
                OrganizationMember.id == member.id,
                OrganizationMember.allocated_credits == previous,
                OrganizationMember.credits_used_this_period <= credits,
            )
            .values(allocated_credits=credits)
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount == 0:
            await self.session.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Member allocation changed, please retry",
            )

        await self.ledger.log_transaction(
            user_id=member.user_id,
            organization_id=organization.id,
            transaction_type=(
                TransactionType.ALLOCATION_FROM_OWNER
                if delta > 0
                else TransactionType.ALLOCATION_TO_MEMBER
            ),
            amount=abs(delta),
            balance_after=credits,
            description=f"Allocation changed from {previous} to {credits} credits",
        )
        await self.session.commit()

        await self.session.refresh(member)
        user = await self.session.get(User, member.user_id)
        logger.info(
            f"Organization {organization.id} allocated {credits} credits to member {member.id}"
        )
        return self._format_member(member, user)
