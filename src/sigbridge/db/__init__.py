"""SQLite database layer.

All functions are async using aiosqlite.
Module-level connection, initialized by init_database().

This package is split into domain-specific submodules:
  _connection: connection lifecycle
  _schema: table definitions
  chats: chat metadata and router state
  messages: message storage and retrieval
  groups: registered groups
"""

# Re-export every public symbol so that `from sigbridge.db import X` keeps working.

from sigbridge.db._connection import (
    _get_db,
    _init_test_database,
    close_database,
    init_database,
)
from sigbridge.db.chats import (
    get_router_state,
    set_router_state,
    store_chat_metadata,
    update_chat_name,
)
from sigbridge.db.groups import (
    get_all_registered_groups,
    set_registered_group,
)
from sigbridge.db.messages import (
    get_messages_since,
    store_message_direct,
)

__all__ = [
    "_get_db",
    "_init_test_database",
    "close_database",
    "get_all_registered_groups",
    "get_messages_since",
    "get_router_state",
    "init_database",
    "set_registered_group",
    "set_router_state",
    "store_chat_metadata",
    "store_message_direct",
    "update_chat_name",
]
