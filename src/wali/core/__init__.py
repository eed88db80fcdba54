"""
Core conversation types.
"""

from wali.core.message import Conversation, Message, Role, SourceRef, derive_title

__all__ = ["Conversation", "Message", "Role", "SourceRef", "derive_title"]
