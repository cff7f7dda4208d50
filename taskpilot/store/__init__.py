"""
Store System
============

Collaborator stores for tasks, conversation turns and user identity.

    from taskpilot.store import create_store

    store = create_store(config)   # SupabaseClient or InMemoryStore
    await store.append_turn(user_id, "user", "Hello")
"""

from taskpilot.store.base import (
    ActionQuery,
    ConversationStore,
    ConversationTurn,
    IdentityProvider,
    TaskQuery,
    TaskStore,
    UserProfile,
)
from taskpilot.store.memory import InMemoryStore
from taskpilot.store.supabase import SupabaseClient
from taskpilot.utils.config import Config
from taskpilot.utils.logger import Logger

logger = Logger("Store")


def create_store(config: Config) -> SupabaseClient | InMemoryStore:
    """
    Build the store selected by STORE_BACKEND.

    The in-memory backend accepts any user id, since there is no identity
    provider behind it.
    """
    if config.store_backend == "memory":
        logger.warning("Using in-memory store; data is lost on restart")
        return InMemoryStore(accept_any_user=True)

    logger.info(f"Using Supabase store at {config.supabase.url}")
    return SupabaseClient.from_config(config.supabase)


__all__ = [
    "ActionQuery",
    "ConversationStore",
    "ConversationTurn",
    "IdentityProvider",
    "InMemoryStore",
    "SupabaseClient",
    "TaskQuery",
    "TaskStore",
    "UserProfile",
    "create_store",
]
