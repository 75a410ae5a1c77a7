"""Persistence of checkpoints and chat sessions."""

from .connection import DatabaseConnection, init_database
from .checkpoints import CheckpointStore, SessionPersistence

__all__ = ["DatabaseConnection", "init_database", "CheckpointStore", "SessionPersistence"]
