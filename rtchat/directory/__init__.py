"""User directory module."""

from rtchat.directory.provider import (
    FALLBACK_USERS,
    display_name,
    find_user,
    initials,
    load_directory,
    search_users,
)

__all__ = ["FALLBACK_USERS", "load_directory", "find_user", "display_name", "initials", "search_users"]
