"""Conversation module."""

from .controller import ConversationController, placeholder_body
from .view import ConversationView

__all__ = ["ConversationController", "ConversationView", "placeholder_body"]
