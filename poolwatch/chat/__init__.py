"""
Chat client module for PoolWatch.
Handles delivery of messages to Matrix rooms.
"""

from .client import ChatClient, MatrixChatClient

__all__ = ["ChatClient", "MatrixChatClient"]
