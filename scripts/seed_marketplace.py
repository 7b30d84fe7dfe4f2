"""
Marketplace Demo Data Seeder
Creates users, a category tree, approved shops, products and orders
through the service layer so every counter and insight is consistent.
"""

import asyncio
import random
from decimal import Decimal

from faker import Faker

from marketplace.catalog.categories import CategoryService
from marketplace.catalog.products import ProductService
from marketplace.database.connection import close_database, get_db, init_database
from marketplace.database.models import DiscountType, User, UserRole
from marketplace.orders.processor import OrderLine, OrderProcessor
from marketplace.principal import Principal
from marketplace.schemas import CategoryCreate, DiscountInput, ProductCreate, ShopCreate
from marketplace.serving.api.auth import encode_token
from marketplace.social.follows import FollowService
from marketplace.social.push import NullPushTransport
from marketplace.social.notifications import NotificationService
from marketplace.vendors.shops import ShopService

fake = Faker()
random.seed(42)
Faker.seed(42)

CATEGORY_TREE = {
    "Electronics": ["Phones", "Laptops", "Audio"],
    "Fashion": ["Men", "Women", "Shoes"],
    "Home & Garden": ["Kitchen", "Furniture"],
    "Sports": ["Fitness", "Outdoor"],
}

BRANDS = ["Acme", "Nova", "Zenith", "Orbit", "Lumen", "Kora"]


# ==========================================
# USERS
# ==========================================
async def seed_users(db, n=30):
    print(f"👤 Creating {n} users...")
    users = []
    for _ in range(n):
        user = User(
            name=fake.name(),
            email=fake.unique.email(),
            role=UserRole.USER,
            city=fake.city(),
            state=fake.state(),
            country=fake.country(),
        )
        db.add(user)
        users.append(user)

    admin = User(name="Admin", email="admin@marketplace.local", role=UserRole.ADMIN)
    db.add(admin)
    await db.commit()
    return users, admin


# ==========================================
# CATEGORIES
# ==========================================
async def seed_categories(db):
    print("🗂️  Creating category tree...")
    service = CategoryService(db)
    leaves = []
    for root_name, children in CATEGORY_TREE.items():
        root = await service.create_category(CategoryCreate(name=root_name))
        for child_name in children:
            child = await service.create_category(CategoryCreate(name=child_name, parent_id=root.id))
            leaves.append((root.id, child.id))
    return leaves


# ==========================================
# SHOPS AND PRODUCTS
# ==========================================
async def seed_shops(db, owners, admin, notifications):
    print(f"🏪 Creating {len(owners)} shops...")
    service = ShopService(db, notifications)
    admin_principal = Principal(id=admin.id, role=UserRole.ADMIN, name=admin.name)
    shops = []
    for owner in owners:
        principal = Principal(id=owner.id, role=UserRole.USER, name=owner.name)
        shop = await service.register_shop(principal, ShopCreate(
            name=f"{fake.company()} Store",
            description=fake.catch_phrase(),
            city=owner.city,
            country=owner.country,
        ))
        await service.approve(admin_principal, shop.id, commission_rate=10.0)
        shops.append((Principal(id=owner.id, role=UserRole.VENDOR, name=owner.name), shop))
    return shops


async def seed_products(db, shops, leaves, notifications, per_shop=8):
    print(f"📦 Creating {len(shops) * per_shop} products...")
    service = ProductService(db, notifications)
    products = []
    for vendor, shop in shops:
        for _ in range(per_shop):
            category_id, subcategory_id = random.choice(leaves)
            price = Decimal(str(round(random.uniform(5, 500), 2)))
            discount = None
            if random.random() < 0.3:
                discount = DiscountInput(type=DiscountType.PERCENTAGE, value=Decimal(random.choice([10, 15, 20, 30])))
            product = await service.create_product(vendor, ProductCreate(
                name=fake.catch_phrase(),
                description=fake.paragraph(nb_sentences=3),
                brand=random.choice(BRANDS),
                price=price,
                cost_price=(price * Decimal("0.6")).quantize(Decimal("0.01")),
                stock=random.randint(0, 120),
                category_id=category_id,
                subcategory_id=subcategory_id,
                tags=fake.words(nb=3),
                discount=discount,
            ))
            products.append(product)
    return products


# ==========================================
# SOCIAL AND ORDERS
# ==========================================
async def seed_follows(db, buyers, shops, notifications):
    print("⭐ Following shops...")
    service = FollowService(db, notifications)
    for buyer in buyers:
        principal = Principal(id=buyer.id, name=buyer.name)
        for _, shop in random.sample(shops, k=min(2, len(shops))):
            await service.follow(principal, shop.id)


async def seed_orders(db, buyers, products, notifications, n=60):
    print(f"🛒 Placing {n} orders...")
    processor = OrderProcessor(db, notifications)
    placed = 0
    for _ in range(n):
        buyer = random.choice(buyers)
        candidates = [product for product in random.sample(products, k=3) if product.stock > 2]
        if not candidates:
            continue
        lines = [OrderLine(product_id=product.id, quantity=random.randint(1, 2)) for product in candidates]
        await processor.place_order(
            Principal(id=buyer.id, name=buyer.name),
            lines,
            shipping_address={"city": buyer.city, "state": buyer.state, "country": buyer.country},
            payment_method="card",
        )
        placed += 1
        for product in candidates:
            await db.refresh(product)
    return placed


async def main():
    await init_database(create_tables=True)
    notifications_transport = NullPushTransport()
    try:
        async with get_db() as db:
            notifications = NotificationService(db, notifications_transport)
            users, admin = await seed_users(db)
            owners, buyers = users[:5], users[5:]

            leaves = await seed_categories(db)
            shops = await seed_shops(db, owners, admin, notifications)
            products = await seed_products(db, shops, leaves, notifications)
            await seed_follows(db, buyers, shops, notifications)
            placed = await seed_orders(db, buyers, products, notifications)

        print("=" * 50)
        print(f"✅ Seeded {len(users)} users, {len(shops)} shops, {len(products)} products, {placed} orders")
        print(f"🔑 Admin token: {encode_token(Principal(id=admin.id, role=UserRole.ADMIN, name=admin.name))}")
    finally:
        await close_database()


if __name__ == "__main__":
    asyncio.run(main())
