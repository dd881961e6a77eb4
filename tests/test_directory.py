"""Tests for the user directory: remote fetch, fallback, lookup helpers."""

import asyncio

import httpx
import pytest

from rtchat.chat.models import UserIdentity
from rtchat.directory.provider import (
    FALLBACK_USERS,
    display_name,
    initials,
    load_directory,
    search_users,
)

URL = "https://example.test/users.json"


def _load(handler) -> list[UserIdentity]:
    return asyncio.run(load_directory(URL, timeout=1.0, transport=httpx.MockTransport(handler)))


class TestLoadDirectory:
    def test_remote_users(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == URL
            return httpx.Response(200, json=[{"id": 7, "name": "Grace Hopper"}, {"id": "a", "name": "Ada"}])

        users = _load(handler)
        assert users == [UserIdentity(id="7", name="Grace Hopper"), UserIdentity(id="a", name="Ada")]

    def test_name_only_records_use_name_as_key(self):
        users = _load(lambda r: httpx.Response(200, json=[{"name": "Linus"}]))
        assert users == [UserIdentity(id="Linus", name="Linus")]

    def test_unusable_records_and_duplicates_skipped(self):
        payload = [{"id": "x", "name": "First"}, {"id": "x", "name": "Second"}, {}, "junk", {"id": "", "name": ""}]
        users = _load(lambda r: httpx.Response(200, json=payload))
        assert users == [UserIdentity(id="x", name="First")]

    @pytest.mark.parametrize("response", [
        httpx.Response(500, json=[{"id": "x", "name": "X"}]),
        httpx.Response(404),
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json={"users": []}),
        httpx.Response(200, json=[]),
    ])
    def test_bad_responses_fall_back(self, response):
        assert _load(lambda r: response) == list(FALLBACK_USERS)

    def test_network_error_falls_back(self):
        def handler(request):
            raise httpx.ConnectError("offline", request=request)

        assert _load(handler) == list(FALLBACK_USERS)

    def test_fallback_has_four_users(self):
        assert len(FALLBACK_USERS) >= 4
        assert len({u.id for u in FALLBACK_USERS}) == len(FALLBACK_USERS)


class TestHelpers:
    directory = [
        UserIdentity(id="u1", name="Alice Cooper"),
        UserIdentity(id="u2", name="Bob Marley"),
        UserIdentity(id="u3", name="alice liddell"),
    ]

    def test_display_name(self):
        assert display_name(self.directory, "u2") == "Bob Marley"
        assert display_name(self.directory, "ghost") == "ghost"

    @pytest.mark.parametrize("name, expected", [
        ("Alice Cooper", "AC"),
        ("carl sagan", "CS"),
        ("Plato", "P"),
        ("", "?"),
    ])
    def test_initials(self, name, expected):
        assert initials(name) == expected

    def test_search_is_case_insensitive(self):
        assert [u.id for u in search_users(self.directory, "ALICE")] == ["u1", "u3"]

    def test_search_excludes_members(self):
        assert [u.id for u in search_users(self.directory, "alice", exclude=["u1"])] == ["u3"]

    def test_empty_query_finds_nobody(self):
        assert search_users(self.directory, "  ") == []
