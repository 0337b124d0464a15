from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.auth.auth_handler import AuthHandler
from app.context import AppContext
from app.database import db_session
from app.models import User


def get_app_context(request: Request) -> AppContext:
    return request.app.state.context


async def get_current_user(
    email: str = Depends(AuthHandler()), session: AsyncSession = Depends(db_session)
) -> User:
    """
    Dependency for getting the current authenticated user.

    Args:
        email: Email of the authenticated user (from AuthHandler)
        session: Database session

    Returns:
        User: User object
    """
    query = select(User).where(User.email == email)
    result = await session.execute(query)
    user = result.scalars().first()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="User not found"
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="User account is disabled"
        )

    return user
