"""
Vendors Module
"""
from .shops import ShopService

__all__ = ["ShopService"]
