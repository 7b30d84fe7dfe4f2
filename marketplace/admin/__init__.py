"""
Admin Module
"""
from .dashboard import AdminDashboard

__all__ = ["AdminDashboard"]
