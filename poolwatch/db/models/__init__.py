"""Database models."""

from .base import Base
from .checkpoint import ChatSession, Checkpoint

__all__ = ["Base", "Checkpoint", "ChatSession"]
