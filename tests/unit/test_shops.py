"""
Unit Tests - Shops, Moderation and Vendor Dashboard
"""
import pytest
from sqlalchemy import func, select

from marketplace.database.models import (
    Notification,
    NotificationType,
    Product,
    Shop,
    ShopFollow,
    ShopStatus,
    User,
    UserRole,
)
from marketplace.errors import AuthorizationError, NotFoundError, ValidationError
from marketplace.orders.processor import OrderLine, OrderProcessor
from marketplace.schemas import ShopCreate, ShopUpdate
from marketplace.social.follows import FollowService
from marketplace.vendors.shops import ShopService


async def owner_messages(session, owner_id):
    result = await session.execute(
        select(Notification.title).where(
            Notification.recipient_id == owner_id,
            Notification.type == NotificationType.GENERAL,
        )
    )
    return sorted(result.scalars().all())


@pytest.fixture
async def application(test_db, notifications, factory):
    """A pending shop registered by a plain user"""
    applicant = await factory.buyer(name="Applicant")
    service = ShopService(test_db, notifications)
    shop = await service.register_shop(applicant, ShopCreate(name="Corner Store", city="Lagos"))
    return {"applicant": applicant, "shop_id": shop.id, "service": service}


class TestRegistration:
    """Tests for shop registration"""

    async def test_register_starts_pending(self, application, test_db):
        """Test a new shop is pending, inactive and slugged"""
        shop = await test_db.get(Shop, application["shop_id"])

        assert shop.status == ShopStatus.PENDING
        assert shop.slug == "corner-store"
        assert shop.is_active is False

    async def test_one_shop_per_owner(self, application):
        """Test a second registration is rejected"""
        with pytest.raises(ValidationError) as exc:
            await application["service"].register_shop(application["applicant"], ShopCreate(name="Second Store"))
        assert exc.value.code == "SHOP_EXISTS"

    async def test_resubmit_after_rejection(self, application, factory):
        """Test a rejected application goes back to pending with the new details"""
        service = application["service"]
        admin = await factory.admin()
        await service.reject(admin, application["shop_id"], "Missing address")

        shop = await service.register_shop(application["applicant"], ShopCreate(name="Corner Store Two"))

        assert shop.id == application["shop_id"]
        assert shop.status == ShopStatus.PENDING
        assert shop.status_reason is None
        assert shop.slug == "corner-store-two"

    async def test_only_owner_updates(self, application, factory):
        """Test other users cannot edit the shop"""
        stranger = await factory.buyer()

        with pytest.raises(AuthorizationError) as exc:
            await application["service"].update_shop(stranger, application["shop_id"], ShopUpdate(city="Abuja"))
        assert exc.value.code == "NOT_SHOP_OWNER"

        shop = await application["service"].update_shop(
            application["applicant"], application["shop_id"], ShopUpdate(city="Abuja")
        )
        assert shop.city == "Abuja"

    async def test_my_shop_missing(self, test_db, notifications, factory):
        """Test users without a shop get NO_SHOP"""
        user = await factory.buyer()

        with pytest.raises(NotFoundError) as exc:
            await ShopService(test_db, notifications).get_my_shop(user)
        assert exc.value.code == "NO_SHOP"


class TestModeration:
    """Tests for the admin moderation workflow"""

    async def test_approve_promotes_owner(self, test_db, application, factory):
        """Test approval activates the shop, sets terms and makes the owner a vendor"""
        admin = await factory.admin()

        shop = await application["service"].approve(admin, application["shop_id"], commission_rate=12.5, admin_notes="ok")

        assert shop.status == ShopStatus.APPROVED
        assert shop.is_active is True
        assert shop.commission_rate == 12.5
        owner = await test_db.get(User, application["applicant"].id, populate_existing=True)
        assert owner.role == UserRole.VENDOR
        assert await owner_messages(test_db, owner.id) == ["Shop Approved"]

    async def test_full_lifecycle(self, test_db, application, factory):
        """Test approve, suspend and reactivate each notify the owner"""
        service = application["service"]
        admin = await factory.admin()

        await service.approve(admin, application["shop_id"])
        suspended = await service.suspend(admin, application["shop_id"], "  Fake listings  ")
        assert suspended.status == ShopStatus.SUSPENDED
        assert suspended.status_reason == "Fake listings"
        assert suspended.is_active is False

        reactivated = await service.reactivate(admin, application["shop_id"])
        assert reactivated.status == ShopStatus.APPROVED

        titles = await owner_messages(test_db, application["applicant"].id)
        assert titles == ["Shop Approved", "Shop Reactivated", "Shop Suspended"]

    async def test_reason_required(self, application, factory):
        """Test reject and suspend need a non-blank reason"""
        admin = await factory.admin()

        with pytest.raises(ValidationError) as exc:
            await application["service"].reject(admin, application["shop_id"], "   ")
        assert exc.value.code == "REASON_REQUIRED"

    @pytest.mark.parametrize("action", ["suspend", "reactivate"])
    async def test_invalid_transitions(self, application, factory, action):
        """Test a pending shop cannot be suspended or reactivated"""
        admin = await factory.admin()
        method = getattr(application["service"], action)
        args = (admin, application["shop_id"], "reason") if action == "suspend" else (admin, application["shop_id"])

        with pytest.raises(ValidationError) as exc:
            await method(*args)
        assert exc.value.code == "INVALID_SHOP_TRANSITION"
        assert exc.value.details["from"] == "pending"

    async def test_admin_only(self, application):
        """Test non-admins cannot moderate"""
        with pytest.raises(AuthorizationError) as exc:
            await application["service"].approve(application["applicant"], application["shop_id"])
        assert exc.value.code == "ADMIN_ONLY"

    async def test_list_by_status(self, application, factory):
        """Test the shop list filters on status"""
        await factory.vendor()

        pending = await application["service"].list_shops(status=ShopStatus.PENDING)
        approved = await application["service"].list_shops()

        assert [shop.id for shop in pending] == [application["shop_id"]]
        assert len(approved) == 1


@pytest.fixture
async def trading_shop(test_db, notifications, factory):
    """An approved shop with two products and orders from two buyers"""
    vendor, shop = await factory.vendor("Trader")
    shoes = await factory.category("Shoes")
    bags = await factory.category("Bags")
    boots = await factory.product(vendor, shoes, price="50.00", stock=20)
    tote = await factory.product(vendor, bags, price="20.00", stock=20)
    ada = await factory.buyer(name="Ada")
    bola = await factory.buyer(name="Bola")

    processor = OrderProcessor(test_db, notifications)
    await processor.place_order(ada, [OrderLine(boots.id, 2), OrderLine(tote.id, 1)])
    await processor.place_order(bola, [OrderLine(tote.id, 1)])
    cancelled = await processor.place_order(bola, [OrderLine(boots.id, 5)])
    await processor.cancel_order(bola, cancelled.id)

    return {"vendor": vendor, "shop_id": shop.id, "ada": ada, "bola": bola, "shoes": shoes}


class TestVendorDashboard:
    """Tests for vendor stats, analytics and customers"""

    async def test_vendor_stats_recompute(self, test_db, notifications, trading_shop):
        """Test counters are rebuilt excluding cancelled orders"""
        service = ShopService(test_db, notifications)

        shop = await service.vendor_stats(trading_shop["vendor"])

        assert shop.total_orders == 2
        assert float(shop.total_revenue) == 140.0
        assert shop.total_products == 2

    async def test_shop_analytics(self, test_db, notifications, trading_shop):
        """Test totals, named top categories and engagement"""
        service = ShopService(test_db, notifications)

        analytics = await service.shop_analytics(trading_shop["vendor"], months=3)

        assert analytics["totals"]["total_revenue"] == 140.0
        assert analytics["totals"]["total_customers"] == 2
        assert len(analytics["revenue_by_month"]) == 3
        assert analytics["revenue_by_month"][-1]["revenue"] == 140.0
        assert analytics["top_categories"][0]["name"] == "Shoes"
        assert analytics["engagement"]["followers"] == 0

    async def test_shop_customers(self, test_db, notifications, trading_shop):
        """Test customers are ranked by spend with their names"""
        service = ShopService(test_db, notifications)

        customers = await service.shop_customers(trading_shop["vendor"])

        assert [c["name"] for c in customers] == ["Ada", "Bola"]
        assert customers[0]["total_spent"] == 120.0
        assert customers[1]["orders"] == 1


class TestDeleteShop:
    """Tests for the shop deletion cascade"""

    async def test_cascade_demotes_owner(self, test_db, notifications, factory):
        """Test the shop, its products and follows go and the owner becomes a user"""
        vendor, shop = await factory.vendor()
        shop_id = shop.id
        category = await factory.category()
        await factory.product(vendor, category)
        fan = await factory.buyer()
        await FollowService(test_db, notifications).follow(fan, shop_id)
        admin = await factory.admin()

        await ShopService(test_db, notifications).delete_shop_cascade(admin, shop_id)

        assert await test_db.get(Shop, shop_id) is None
        assert await test_db.scalar(select(func.count(Product.id))) == 0
        assert await test_db.scalar(select(func.count(ShopFollow.id))) == 0
        owner = await test_db.get(User, vendor.id, populate_existing=True)
        assert owner.role == UserRole.USER

    async def test_delete_requires_admin(self, test_db, notifications, factory):
        """Test vendors cannot delete shops"""
        vendor, shop = await factory.vendor()

        with pytest.raises(AuthorizationError):
            await ShopService(test_db, notifications).delete_shop_cascade(vendor, shop.id)

    async def test_owner_deletes_own_shop(self, test_db, notifications, factory):
        """Test an owner can close their shop after confirming its name"""
        vendor, shop = await factory.vendor()
        shop_id, shop_name = shop.id, shop.name
        category = await factory.category()
        await factory.product(vendor, category)
        await factory.product(vendor, category)
        service = ShopService(test_db, notifications)

        with pytest.raises(ValidationError) as exc:
            await service.delete_my_shop(vendor, "not my shop")
        assert exc.value.code == "CONFIRMATION_MISMATCH"
        assert await test_db.get(Shop, shop_id) is not None

        removed = await service.delete_my_shop(vendor, f" {shop_name} ")

        assert removed == 2
        assert await test_db.get(Shop, shop_id) is None
        assert await test_db.scalar(select(func.count(Product.id))) == 0
        owner = await test_db.get(User, vendor.id, populate_existing=True)
        assert owner.role == UserRole.USER

    async def test_owner_without_shop(self, test_db, notifications, factory):
        """Test deleting needs a shop to delete"""
        with pytest.raises(NotFoundError) as exc:
            await ShopService(test_db, notifications).delete_my_shop(await factory.buyer(), "Anything")
        assert exc.value.code == "NO_SHOP"
