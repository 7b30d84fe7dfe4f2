"""
Shop Follows

Users follow shops to receive new-product and discount notifications.
The shop owner is told about each new follower.
"""

from typing import List, Tuple
import uuid

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database.models import NotificationType, Shop, ShopFollow, User
from marketplace.errors import NotFoundError, ValidationError
from marketplace.fanout import SideEffectRunner
from marketplace.principal import Principal
from marketplace.social.notifications import NotificationService, new_follower_message

logger = structlog.get_logger(__name__)


class FollowService:
    def __init__(self, session: AsyncSession, notifications: NotificationService = None):
        self.session = session
        self.notifications = notifications or NotificationService(session)

    async def follow(self, user: Principal, shop_id: uuid.UUID) -> int:
        """
        Follow a shop.

        Returns:
            The shop's follower count after the follow.
        """
        shop = await self._shop(shop_id)
        if shop.owner_id == user.id:
            raise ValidationError("You cannot follow your own shop", code="CANNOT_FOLLOW_OWN_SHOP")

        if await self._find(user.id, shop_id) is not None:
            raise ValidationError("Already following this shop", code="ALREADY_FOLLOWING")

        self.session.add(ShopFollow(user_id=user.id, shop_id=shop_id))
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ValidationError("Already following this shop", code="ALREADY_FOLLOWING")

        owner_id, shop_name = shop.owner_id, shop.name
        logger.info("Shop followed", shop_id=str(shop_id), user_id=str(user.id))

        runner = SideEffectRunner(self.session, "follow_shop", shop_id=str(shop_id))
        await runner.run("owner_notification", lambda: self._notify_owner(owner_id, shop_id, shop_name, user))
        runner.finish()

        return await self.follower_count(shop_id)

    async def unfollow(self, user: Principal, shop_id: uuid.UUID) -> int:
        follow = await self._find(user.id, shop_id)
        if follow is None:
            raise NotFoundError("You are not following this shop", code="NOT_FOLLOWING")

        await self.session.delete(follow)
        await self.session.commit()
        logger.info("Shop unfollowed", shop_id=str(shop_id), user_id=str(user.id))

        return await self.follower_count(shop_id)

    async def follow_status(self, user: Principal, shop_id: uuid.UUID) -> Tuple[bool, int]:
        await self._shop(shop_id)
        is_following = await self._find(user.id, shop_id) is not None
        return is_following, await self.follower_count(shop_id)

    async def followed_shops(self, user: Principal) -> List[Shop]:
        result = await self.session.execute(
            select(Shop)
            .join(ShopFollow, ShopFollow.shop_id == Shop.id)
            .where(ShopFollow.user_id == user.id)
            .order_by(ShopFollow.created_at.desc())
        )
        return list(result.scalars().all())

    async def follower_count(self, shop_id: uuid.UUID) -> int:
        count = await self.session.scalar(
            select(func.count(ShopFollow.id)).where(ShopFollow.shop_id == shop_id)
        )
        return count or 0

    async def _shop(self, shop_id: uuid.UUID) -> Shop:
        shop = await self.session.get(Shop, shop_id)
        if shop is None:
            raise NotFoundError("Shop not found", code="SHOP_NOT_FOUND")
        return shop

    async def _find(self, user_id: uuid.UUID, shop_id: uuid.UUID):
        return await self.session.scalar(
            select(ShopFollow).where(ShopFollow.user_id == user_id, ShopFollow.shop_id == shop_id)
        )

    async def _notify_owner(self, owner_id: uuid.UUID, shop_id: uuid.UUID, shop_name: str, follower: Principal) -> None:
        name = follower.name
        if not name:
            user = await self.session.get(User, follower.id)
            name = user.name if user else ""
        await self.notifications.notify(
            owner_id,
            NotificationType.NEW_FOLLOWER,
            "New Follower",
            new_follower_message(name, shop_name),
            shop_id=shop_id,
        )
