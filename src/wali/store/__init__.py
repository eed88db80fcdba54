"""Persistent storage for documents, conversations and settings."""

from .base import ConversationStore, DocumentStore, SettingsStore
from .memory_backend import MemoryConversationStore, MemoryDocumentStore, MemorySettingsStore
from .sqlite_backend import (
    SQLiteConversationStore,
    SQLiteDatabase,
    SQLiteDocumentStore,
    SQLiteSettingsStore,
)

__all__ = [
    "DocumentStore",
    "ConversationStore",
    "SettingsStore",
    "MemoryDocumentStore",
    "MemoryConversationStore",
    "MemorySettingsStore",
    "SQLiteDatabase",
    "SQLiteDocumentStore",
    "SQLiteConversationStore",
    "SQLiteSettingsStore",
]
