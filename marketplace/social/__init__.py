"""
Social Module
"""
from .follows import FollowService
from .notifications import NotificationService
from .reviews import ReviewAggregator

__all__ = [
    "FollowService",
    "NotificationService",
    "ReviewAggregator",
]
