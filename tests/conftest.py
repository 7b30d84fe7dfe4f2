"""
Test Suite Configuration
Pytest fixtures and configuration
"""

import os

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "100000")
os.environ.setdefault("PUSH_ENABLED", "false")

from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace.catalog.categories import CategoryService
from marketplace.catalog.products import ProductService
from marketplace.database.connection import create_session_factory, get_db_dependency
from marketplace.database.models import (
    Base,
    Category,
    Shop,
    ShopStatus,
    User,
    UserRole,
)
from marketplace.principal import Principal
from marketplace.schemas import CategoryCreate, DiscountInput, ProductCreate
from marketplace.serving.api.auth import encode_token
from marketplace.social.notifications import NotificationService
from marketplace.social.push import PushMessage, PushTransport


# ==========================================
# DATABASE
# ==========================================

@pytest.fixture
async def test_engine():
    """Create in-memory SQLite engine shared by every session of a test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
async def test_db(session_factory):
    """Create test database session"""
    async with session_factory() as session:
        yield session


# ==========================================
# PUSH
# ==========================================

class RecordingPushTransport(PushTransport):
    """Keeps every push instead of calling Expo"""

    def __init__(self):
        self.sent: List[tuple] = []

    async def send(self, tokens: List[str], message: PushMessage) -> int:
        self.sent.append((list(tokens), message))
        return len(tokens)

    @property
    def tokens(self) -> List[str]:
        return [token for tokens, _ in self.sent for token in tokens]


@pytest.fixture
def push_transport() -> RecordingPushTransport:
    return RecordingPushTransport()


@pytest.fixture
def notifications(test_db, push_transport) -> NotificationService:
    return NotificationService(test_db, push_transport)


# ==========================================
# FACTORIES
# ==========================================

def principal_of(user: User) -> Principal:
    return Principal(id=user.id, role=user.role, name=user.name)


class MarketplaceFactory:
    """Builds users, categories, shops and products for a test"""

    def __init__(self, session, notifications: NotificationService):
        self.session = session
        self.notifications = notifications
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def user(
        self,
        name: Optional[str] = None,
        role: UserRole = UserRole.USER,
        push_token: Optional[str] = None,
        **fields,
    ) -> User:
        n = self._next()
        user = User(
            name=name or f"User {n}",
            email=f"user{n}@example.com",
            role=role,
            expo_push_token=push_token,
            **fields,
        )
        self.session.add(user)
        await self.session.commit()
        return user

    async def admin(self) -> Principal:
        return principal_of(await self.user(name="Admin", role=UserRole.ADMIN))

    async def buyer(self, name: Optional[str] = None, **fields) -> Principal:
        return principal_of(await self.user(name=name, **fields))

    async def category(self, name: Optional[str] = None, parent_id=None) -> Category:
        service = CategoryService(self.session)
        return await service.create_category(
            CategoryCreate(name=name or f"Category {self._next()}", parent_id=parent_id)
        )

    async def shop(
        self,
        owner: Optional[User] = None,
        status: ShopStatus = ShopStatus.APPROVED,
        name: Optional[str] = None,
    ) -> Shop:
        if owner is None:
            owner = await self.user(role=UserRole.VENDOR if status == ShopStatus.APPROVED else UserRole.USER)
        n = self._next()
        shop = Shop(
            name=name or f"Shop {n}",
            slug=f"shop-{n}",
            description="Quality goods",
            owner_id=owner.id,
            status=status,
        )
        self.session.add(shop)
        await self.session.commit()
        return shop

    async def vendor(self, name: Optional[str] = None) -> tuple:
        """Approved shop with its vendor owner as a principal"""
        owner = await self.user(name=name, role=UserRole.VENDOR)
        shop = await self.shop(owner=owner)
        return principal_of(owner), shop

    async def product(
        self,
        vendor: Principal,
        category: Category,
        price: str = "100.00",
        stock: int = 10,
        discount: Optional[DiscountInput] = None,
        **fields,
    ):
        payload = ProductCreate(
            name=fields.pop("name", f"Product {self._next()}"),
            price=Decimal(price),
            stock=stock,
            category_id=category.id,
            discount=discount,
            **fields,
        )
        return await ProductService(self.session, self.notifications).create_product(vendor, payload)


@pytest.fixture
def factory(test_db, notifications) -> MarketplaceFactory:
    return MarketplaceFactory(test_db, notifications)


# ==========================================
# API CLIENT
# ==========================================

@pytest.fixture
def auth_headers():
    """Bearer header builder for a principal"""
    def build(principal: Principal) -> Dict[str, str]:
        return {"Authorization": f"Bearer {encode_token(principal)}"}
    return build


@pytest.fixture
async def api_client(session_factory):
    """HTTP client against the app with the session dependency bound to the test engine"""
    from marketplace.main import create_app

    app = create_app(use_lifespan=False)

    async def override_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_dependency] = override_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
