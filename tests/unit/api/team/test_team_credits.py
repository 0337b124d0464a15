import pytest
import pytest_asyncio
from fastapi import HTTPException
from sqlalchemy import select

from app.api.credit_management.service import CreditLedgerService
from app.api.team.service import TeamCreditService
from app.models import (
    CreditTransaction,
    MemberRole,
    Organization,
    OrganizationMember,
    TransactionType,
)


@pytest_asyncio.fixture
async def team(session, make_user):
    owner = await make_user(credits=0, plan_slug="enterprise")
    member = await make_user(credits=0, name="Agent Smith")
    organization = Organization(
        name="Acme Realty", owner_id=owner.id, total_credits=100, unallocated_credits=30
    )
    session.add(organization)
    await session.flush()
    owner_membership = OrganizationMember(
        organization_id=organization.id,
        user_id=owner.id,
        role=MemberRole.OWNER,
        allocated_credits=50,
    )
    member_membership = OrganizationMember(
        organization_id=organization.id,
        user_id=member.id,
        allocated_credits=20,
        credits_used_this_period=5,
    )
    session.add_all([owner_membership, member_membership])
    await session.commit()
    return owner, member, organization, member_membership


async def pool_state(session, organization, membership):
    await session.refresh(organization)
    await session.refresh(membership)
    return organization.unallocated_credits, membership.allocated_credits


@pytest.mark.asyncio
async def test_pool_lists_members_with_availability(session, team):
    owner, member, organization, _ = team

    pool = await TeamCreditService(session).get_pool(owner)

    assert pool["total_credits"] == 100
    assert pool["unallocated_credits"] == 30
    assert pool["allocated_credits"] == 70
    by_user = {m["user_id"]: m for m in pool["members"]}
    assert by_user[str(member.id)]["available_credits"] == 15
    assert by_user[str(member.id)]["name"] == "Agent Smith"


@pytest.mark.asyncio
async def test_only_owner_can_manage_pool(session, team):
    _, member, _, membership = team

    with pytest.raises(HTTPException) as exc_info:
        await TeamCreditService(session).allocate_member_credits(member, membership.id, 25)

    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_increase_draws_from_unallocated(session, team):
    owner, member, organization, membership = team

    result = await TeamCreditService(session).allocate_member_credits(
        owner, membership.id, 45
    )

    assert result["allocated_credits"] == 45
    assert await pool_state(session, organization, membership) == (5, 45)
    logged = (
        await session.execute(
            select(CreditTransaction).where(CreditTransaction.user_id == member.id)
        )
    ).scalars().all()
    assert [tx.transaction_type for tx in logged] == [TransactionType.ALLOCATION_FROM_OWNER]
    assert logged[0].amount == 25


@pytest.mark.asyncio
async def test_increase_beyond_pool_is_rejected(session, team):
    owner, _, organization, membership = team

    with pytest.raises(HTTPException) as exc_info:
        await TeamCreditService(session).allocate_member_credits(owner, membership.id, 51)

    assert exc_info.value.status_code == 400
    assert await pool_state(session, organization, membership) == (30, 20)


@pytest.mark.asyncio
async def test_decrease_returns_credits_to_pool(session, team):
    owner, member, organization, membership = team

    await TeamCreditService(session).allocate_member_credits(owner, membership.id, 8)

    assert await pool_state(session, organization, membership) == (42, 8)
    logged = (
        await session.execute(
            select(CreditTransaction).where(CreditTransaction.user_id == member.id)
        )
    ).scalars().all()
    assert logged[0].transaction_type == TransactionType.ALLOCATION_TO_MEMBER


@pytest.mark.asyncio
async def test_cannot_allocate_below_usage(session, team):
    owner, _, organization, membership = team

    with pytest.raises(HTTPException) as exc_info:
        await TeamCreditService(session).allocate_member_credits(owner, membership.id, 4)

    assert exc_info.value.status_code == 400
    assert await pool_state(session, organization, membership) == (30, 20)


@pytest.mark.asyncio
async def test_allocation_is_what_the_member_can_spend(session, team):
    owner, member, _, membership = team
    await TeamCreditService(session).allocate_member_credits(owner, membership.id, 6)
    ledger = CreditLedgerService(session)

    assert (await ledger.check_available(member.id)).available == 1
    assert await ledger.reserve_and_debit(member.id, 1) is True
    assert await ledger.reserve_and_debit(member.id, 1) is False


@pytest.mark.asyncio
async def test_unknown_member_is_not_found(session, team, make_user):
    owner = team[0]
    outsider = await make_user()

    with pytest.raises(HTTPException) as exc_info:
        await TeamCreditService(session).allocate_member_credits(owner, outsider.id, 1)

    assert exc_info.value.status_code == 404
