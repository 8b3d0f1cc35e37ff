from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

import kataba.core.database as db_module
from kataba.core.database import User, to_epoch_ms
from kataba.core.exceptions import NotFoundError, PersistenceError
from kataba.core.principal import Authenticated
from kataba.schemas.users import UserResponse

logger = structlog.get_logger()


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        image_url=user.image_url,
        created_at=to_epoch_ms(user.created_at),
        updated_at=to_epoch_ms(user.updated_at),
    )


class UserService:
    def __init__(self, session_factory: async_sessionmaker | None = None):
        self._session_factory_override = session_factory

    @property
    def _session_factory(self) -> async_sessionmaker:
        return self._session_factory_override or db_module.async_session

    async def ensure_user(self, principal: Authenticated) -> UserResponse:
        """Just-in-time provision: create or refresh the local row for a verified identity."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(User).where(User.id == principal.user_id))
                user = result.scalar_one_or_none()

                if user is None:
                    now = datetime.now(timezone.utc)
                    user = User(
                        id=principal.user_id,
                        email=principal.email,
                        name=principal.name or "User",
                        image_url=principal.image_url,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(user)
                    await session.commit()
                    logger.info("user_provisioned", user_id=principal.user_id)
                    return _user_to_response(user)

                changed = False
                for attr, value in (
                    ("email", principal.email),
                    ("name", principal.name),
                    ("image_url", principal.image_url),
                ):
                    if value and getattr(user, attr) != value:
                        setattr(user, attr, value)
                        changed = True
                if changed:
                    user.updated_at = datetime.now(timezone.utc)
                    await session.commit()
                return _user_to_response(user)
        except SQLAlchemyError as e:
            logger.error("user_provision_failed", user_id=principal.user_id, error=str(e))
            raise PersistenceError()

    async def get_user(self, user_id: str) -> UserResponse:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(User).where(User.id == user_id))
                user = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError() from e
        if user is None:
            raise NotFoundError("User not found.")
        return _user_to_response(user)
