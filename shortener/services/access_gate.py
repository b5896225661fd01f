"""
Access Gate

Resolves API keys to users and checks tier requirements.
The link registry only ever sees the resolved User (or None).
"""

import logging
import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.core.exceptions import (
    AuthenticationError,
    InsufficientTierError,
    StoreUnavailable,
)
from shortener.core.setting import Tier
from shortener.db.models import User

logger = logging.getLogger(__name__)


class AccessGate:
    """API key lookup and tier enforcement."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(self, api_key: Optional[str]) -> Optional[User]:
        """
        Resolve an API key to its user.

        Returns None when no key was presented (anonymous caller).

        Raises:
            AuthenticationError: If a key was presented but matches no user
            StoreUnavailable: If the lookup fails
        """
        if api_key is None:
            return None

        api_key = api_key.strip()
        if not api_key:
            raise AuthenticationError()

        try:
            result = await self.session.execute(select(User).where(User.api_key == api_key))
            user = result.scalars().first()
        except SQLAlchemyError as e:
            logger.error(f"API key lookup failed: {e}", exc_info=True)
            raise StoreUnavailable("authenticate", original_error=e) from e

        if user is None:
            logger.info("Rejected request with unknown API key")
            raise AuthenticationError()
        return user

    @staticmethod
    def require_tier(user: Optional[User], tier: Tier) -> User:
        """
        Ensure the caller exists and holds at least the given tier.

        Raises:
            AuthenticationError: If there is no authenticated caller
            InsufficientTierError: If the caller's tier ranks below tier
        """
        if user is None:
            raise AuthenticationError("An API key is required for this operation.")

        try:
            user_tier = Tier(user.tier)
        except ValueError:
            raise InsufficientTierError(tier.value, str(user.tier))

        if user_tier.rank < tier.rank:
            raise InsufficientTierError(tier.value, user_tier.value)
        return user

    async def register_user(self, name: str, tier: Tier = Tier.standard) -> User:
        """Create a user with a freshly issued API key."""
        user = User(name=name, api_key=secrets.token_urlsafe(32), tier=Tier(tier).value)
        self.session.add(user)
        try:
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreUnavailable("register_user", original_error=e) from e

        await self.session.refresh(user)
        logger.info(f"Registered user {user.id} ({user.tier})")
        return user
