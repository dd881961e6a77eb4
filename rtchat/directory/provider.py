"""User directory: remote users.json with a built-in fallback."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import httpx

from rtchat.chat.models import UserIdentity, UserKey
from rtchat.config.schema import USERS_JSON_URL

logger = logging.getLogger(__name__)

FALLBACK_USERS: tuple[UserIdentity, ...] = (
    UserIdentity(id="u1", name="Alice Cooper"),
    UserIdentity(id="u2", name="Bob Marley"),
    UserIdentity(id="u3", name="Carl Sagan"),
    UserIdentity(id="u4", name="Diana Prince"),
)


def _parse_users(data: Any) -> list[UserIdentity]:
    """Turn a users.json payload into identities, skipping unusable records."""
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")

    users: dict[UserKey, UserIdentity] = {}
    for item in data:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        key = item.get("id", name)
        if key is None or key == "":
            continue
        key = str(key)
        name = str(name) if name not in (None, "") else key
        # First occurrence wins
        users.setdefault(key, UserIdentity(id=key, name=name))
    return list(users.values())


async def load_directory(
    url: str = USERS_JSON_URL,
    timeout: float = 5.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[UserIdentity]:
    """
    Fetch the user directory once.

    Any failure (transport, non-2xx, bad JSON, wrong shape, empty result)
    falls back to :data:`FALLBACK_USERS`. Never raises.

    Args:
        url: users.json location.
        timeout: Seconds for the whole request.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).

    Returns:
        Ordered list of identities.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            r = await client.get(url, headers={"Accept": "application/json"})
            r.raise_for_status()
        users = _parse_users(r.json())
        if not users:
            raise ValueError("directory is empty")
        logger.info("Loaded %d users from %s", len(users), url)
        return users
    except Exception as e:
        logger.warning("Directory fetch from %s failed (%s); using built-in users", url, e)
        return list(FALLBACK_USERS)


def find_user(directory: Iterable[UserIdentity], key: UserKey | None) -> UserIdentity | None:
    for u in directory:
        if u.id == key:
            return u
    return None


def display_name(directory: Iterable[UserIdentity], key: UserKey) -> str:
    """Display name for a key; unknown users show as their key."""
    u = find_user(directory, key)
    return u.name if u else key


def initials(name: str) -> str:
    """'Alice Cooper' -> 'AC'."""
    parts = [p for p in (name or "").split() if p]
    return "".join(p[0] for p in parts).upper() or "?"


def search_users(
    directory: Iterable[UserIdentity],
    query: str,
    exclude: Iterable[UserKey] = (),
) -> list[UserIdentity]:
    """Case-insensitive substring search on display names."""
    q = query.strip().lower()
    if not q:
        return []
    skip = set(exclude)
    return [u for u in directory if q in u.name.lower() and u.id not in skip]
