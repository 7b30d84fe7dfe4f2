"""
Unit Tests - Shop Follows and Follower Fan-Out
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from marketplace.catalog.products import ProductService
from marketplace.database.models import DiscountType, Notification, NotificationType
from marketplace.errors import NotFoundError, ValidationError
from marketplace.schemas import DiscountInput, ProductUpdate
from marketplace.social.follows import FollowService

TOKEN = "ExponentPushToken[{}]"


async def inbox(session, recipient_id, type=None):
    query = select(Notification).where(Notification.recipient_id == recipient_id)
    if type is not None:
        query = query.where(Notification.type == type)
    return (await session.execute(query)).scalars().all()


@pytest.fixture
async def followed_shop(test_db, notifications, factory):
    """A shop with three followers, each with a push token"""
    vendor, shop = await factory.vendor("Owner")
    service = FollowService(test_db, notifications)
    followers = []
    for n in range(3):
        follower = await factory.buyer(name=f"Fan {n}", push_token=TOKEN.format(n))
        await service.follow(follower, shop.id)
        followers.append(follower)
    category = await factory.category()
    return {"vendor": vendor, "shop_id": shop.id, "followers": followers, "category": category}


class TestFollow:
    """Tests for follow and unfollow"""

    async def test_follow_counts_and_owner_notification(self, test_db, notifications, followed_shop):
        """Test each follow is counted and announced to the owner"""
        service = FollowService(test_db, notifications)

        assert await service.follower_count(followed_shop["shop_id"]) == 3
        owner_inbox = await inbox(test_db, followed_shop["vendor"].id, NotificationType.NEW_FOLLOWER)
        assert len(owner_inbox) == 3
        assert any(n.message.startswith("Fan 0 started following your shop") for n in owner_inbox)

    async def test_cannot_follow_twice(self, test_db, notifications, followed_shop):
        """Test a second follow is rejected"""
        service = FollowService(test_db, notifications)

        with pytest.raises(ValidationError) as exc:
            await service.follow(followed_shop["followers"][0], followed_shop["shop_id"])
        assert exc.value.code == "ALREADY_FOLLOWING"

    async def test_cannot_follow_own_shop(self, test_db, notifications, followed_shop):
        """Test owners cannot follow their own shop"""
        service = FollowService(test_db, notifications)

        with pytest.raises(ValidationError) as exc:
            await service.follow(followed_shop["vendor"], followed_shop["shop_id"])
        assert exc.value.code == "CANNOT_FOLLOW_OWN_SHOP"

    async def test_unfollow(self, test_db, notifications, followed_shop):
        """Test unfollow removes the follow and a second unfollow is not found"""
        service = FollowService(test_db, notifications)
        follower = followed_shop["followers"][1]

        assert await service.unfollow(follower, followed_shop["shop_id"]) == 2
        is_following, count = await service.follow_status(follower, followed_shop["shop_id"])
        assert (is_following, count) == (False, 2)

        with pytest.raises(NotFoundError):
            await service.unfollow(follower, followed_shop["shop_id"])

    async def test_followed_shops(self, test_db, notifications, followed_shop):
        """Test a user's followed shops are listed"""
        service = FollowService(test_db, notifications)

        shops = await service.followed_shops(followed_shop["followers"][2])

        assert [shop.id for shop in shops] == [followed_shop["shop_id"]]


class TestFollowerFanOut:
    """Tests for new-product and discount fan-out"""

    async def test_new_product_reaches_every_follower(self, test_db, push_transport, factory, followed_shop):
        """Test a new product creates one notification and one push per follower"""
        push_transport.sent.clear()

        product = await factory.product(followed_shop["vendor"], followed_shop["category"], name="Trail Shoes")

        for follower in followed_shop["followers"]:
            entries = await inbox(test_db, follower.id, NotificationType.NEW_PRODUCT)
            assert len(entries) == 1
            assert entries[0].product_id == product.id
            assert '"Trail Shoes"' in entries[0].message
        assert await inbox(test_db, followed_shop["vendor"].id, NotificationType.NEW_PRODUCT) == []
        assert sorted(push_transport.tokens) == [TOKEN.format(n) for n in range(3)]

    async def test_discount_activation_fans_out_once(self, test_db, notifications, factory, followed_shop):
        """Test followers hear about a discount when it becomes active, not on every edit"""
        product = await factory.product(followed_shop["vendor"], followed_shop["category"], name="Kettle")
        service = ProductService(test_db, notifications)
        discount = DiscountInput(type=DiscountType.PERCENTAGE, value=Decimal("20"))

        await service.update_product(followed_shop["vendor"], product.id, ProductUpdate(discount=discount))
        await service.update_product(followed_shop["vendor"], product.id, ProductUpdate(stock=50))

        for follower in followed_shop["followers"]:
            entries = await inbox(test_db, follower.id, NotificationType.PRODUCT_DISCOUNT)
            assert len(entries) == 1
            assert entries[0].message == 'Shop 2 has a deal: "Kettle" is now 20% off!'
