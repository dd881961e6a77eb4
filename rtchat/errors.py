"""Failure taxonomy shared by the chat core."""

from __future__ import annotations

from enum import Enum


class Refusal(str, Enum):
    """Why an operation was declined. Refusals are return values, never raised."""

    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_INPUT = "invalid_input"


class TransportFailure(Exception):
    """Directory fetch or store I/O failed."""
