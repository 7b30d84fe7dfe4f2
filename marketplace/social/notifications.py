"""
Notification Service

Creates inbox records and hands them to push delivery. A record is always
committed before its push is attempted, so the inbox never misses an
event that reached a device.

Also serves the recipient-facing inbox: paging, unread counts, read
flags and deletion.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional
import uuid

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.catalog.pricing import describe_discount
from marketplace.config import get_settings
from marketplace.database.models import DiscountType, Notification, NotificationType, Shop, ShopFollow
from marketplace.errors import AuthorizationError, NotFoundError
from marketplace.social.push import PushDispatcher, PushMessage, PushTransport

logger = structlog.get_logger(__name__)
settings = get_settings()


# =============================================================================
# MESSAGE TEMPLATES
# =============================================================================

def order_placed_message(order_id: uuid.UUID) -> str:
    return f"Your order #{order_short_id(order_id)} has been placed successfully!"


def order_status_message(order_id: uuid.UUID, status: str) -> str:
    phrases = {
        "processing": "is now being processed",
        "shipped": "has been shipped",
        "delivered": "has been delivered",
        "cancelled": "has been cancelled",
    }
    return f"Your order #{order_short_id(order_id)} {phrases.get(status, f'is now {status}')}."


def order_short_id(order_id: uuid.UUID) -> str:
    return str(order_id).replace("-", "")[-6:].upper()


def new_product_message(shop_name: str, product_name: str) -> str:
    return f'{shop_name} just added a new product: "{product_name}"'


def discount_message(shop_name: str, product_name: str, discount_type: DiscountType, value) -> str:
    return f'{shop_name} has a deal: "{product_name}" is now {describe_discount(discount_type, value)}!'


def new_follower_message(follower_name: str, shop_name: str) -> str:
    return f'{follower_name or "Someone"} started following your shop "{shop_name}"'


def shop_review_message(reviewer_name: str, shop_name: str, rating: int) -> str:
    return f'{reviewer_name or "A customer"} rated your shop "{shop_name}" {rating}/5'


@dataclass
class NotificationPage:
    """One page of a recipient inbox"""
    items: List[Notification]
    total: int
    unread_count: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


class NotificationService:
    """Inbox writes, follower fan-out and inbox reads"""

    def __init__(self, session: AsyncSession, transport: Optional[PushTransport] = None):
        self.session = session
        self.push = PushDispatcher(session, transport)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def notify(
        self,
        recipient_id: uuid.UUID,
        type: NotificationType,
        title: str,
        message: str,
        order_id: Optional[uuid.UUID] = None,
        product_id: Optional[uuid.UUID] = None,
        shop_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            order_id=order_id,
            product_id=product_id,
            shop_id=shop_id,
            is_read=False,
        )
        self.session.add(notification)
        await self.session.commit()

        logger.info("Notification created", recipient_id=str(recipient_id), type=type.value)

        await self.push.dispatch(
            [recipient_id],
            PushMessage(title=title, body=message, data=self._push_data(notification)),
        )
        return notification

    async def notify_many(
        self,
        recipient_ids: Iterable[uuid.UUID],
        type: NotificationType,
        title: str,
        message: str,
        product_id: Optional[uuid.UUID] = None,
        shop_id: Optional[uuid.UUID] = None,
    ) -> int:
        """One record per distinct recipient, then a single push batch."""
        recipients = list(dict.fromkeys(recipient_ids))
        if not recipients:
            return 0

        self.session.add_all([
            Notification(
                recipient_id=recipient_id,
                type=type,
                title=title,
                message=message,
                product_id=product_id,
                shop_id=shop_id,
                is_read=False,
            )
            for recipient_id in recipients
        ])
        await self.session.commit()

        logger.info("Bulk notifications created", recipients=len(recipients), type=type.value)

        data = {"type": type.value}
        if product_id:
            data["product_id"] = str(product_id)
        if shop_id:
            data["shop_id"] = str(shop_id)
        await self.push.dispatch(recipients, PushMessage(title=title, body=message, data=data))
        return len(recipients)

    async def notify_followers(
        self,
        shop_id: uuid.UUID,
        type: NotificationType,
        title: str,
        message: str,
        product_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Fan an event out to every follower of a shop except its owner."""
        owner_id = await self.session.scalar(select(Shop.owner_id).where(Shop.id == shop_id))
        result = await self.session.execute(
            select(ShopFollow.user_id).where(ShopFollow.shop_id == shop_id)
        )
        followers = [user_id for user_id in result.scalars().all() if user_id != owner_id]
        if not followers:
            return 0

        return await self.notify_many(followers, type, title, message, product_id=product_id, shop_id=shop_id)

    # -------------------------------------------------------------------------
    # Inbox
    # -------------------------------------------------------------------------

    async def list_for(self, recipient_id: uuid.UUID, page: int = 1, limit: Optional[int] = None) -> NotificationPage:
        limit = limit or settings.catalog.notification_page_size
        page = max(page, 1)

        result = await self.session.execute(
            select(Notification)
            .where(Notification.recipient_id == recipient_id)
            .order_by(Notification.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total = await self.session.scalar(
            select(func.count(Notification.id)).where(Notification.recipient_id == recipient_id)
        )
        return NotificationPage(
            items=list(result.scalars().all()),
            total=total or 0,
            unread_count=await self.unread_count(recipient_id),
            page=page,
            limit=limit,
        )

    async def unread_count(self, recipient_id: uuid.UUID) -> int:
        count = await self.session.scalar(
            select(func.count(Notification.id)).where(
                Notification.recipient_id == recipient_id,
                Notification.is_read.is_(False),
            )
        )
        return count or 0

    async def mark_read(self, recipient_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
        notification = await self._owned(recipient_id, notification_id)
        notification.is_read = True
        await self.session.commit()
        return notification

    async def mark_all_read(self, recipient_id: uuid.UUID) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(Notification.recipient_id == recipient_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def delete(self, recipient_id: uuid.UUID, notification_id: uuid.UUID) -> None:
        notification = await self._owned(recipient_id, notification_id)
        await self.session.delete(notification)
        await self.session.commit()

    async def delete_for_product(self, product_id: uuid.UUID) -> None:
        await self.session.execute(delete(Notification).where(Notification.product_id == product_id))

    async def _owned(self, recipient_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
        notification = await self.session.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError("Notification not found", code="NOTIFICATION_NOT_FOUND")
        if notification.recipient_id != recipient_id:
            raise AuthorizationError("Not your notification", code="NOT_RECIPIENT")
        return notification

    @staticmethod
    def _push_data(notification: Notification) -> dict:
        data = {"type": notification.type.value, "notification_id": str(notification.id)}
        for key in ("order_id", "product_id", "shop_id"):
            value = getattr(notification, key)
            if value:
                data[key] = str(value)
        return data
