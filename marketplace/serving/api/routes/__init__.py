"""
API Routes Module
"""
from .health import router as health_router
from .products import router as products_router
from .categories import router as categories_router
from .orders import router as orders_router
from .reviews import router as reviews_router
from .shops import router as shops_router
from .notifications import router as notifications_router
from .engagement import router as engagement_router
from .assistant import router as assistant_router
from .admin import router as admin_router

__all__ = [
    "health_router",
    "products_router",
    "categories_router",
    "orders_router",
    "reviews_router",
    "shops_router",
    "notifications_router",
    "engagement_router",
    "assistant_router",
    "admin_router",
]
