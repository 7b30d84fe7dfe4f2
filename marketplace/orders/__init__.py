"""
Orders Module
"""
from .processor import OrderLine, OrderProcessor

__all__ = [
    "OrderLine",
    "OrderProcessor",
]
