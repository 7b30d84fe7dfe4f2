"""
Shopping Assistant Module
"""
from .tools import ChatModel, RuleBasedChatModel, ShoppingAssistant

__all__ = [
    "ChatModel",
    "RuleBasedChatModel",
    "ShoppingAssistant",
]
