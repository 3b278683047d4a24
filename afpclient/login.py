"""Login, logout and password-change requests."""

from __future__ import annotations

import struct
from typing import Optional

from .protocol import Command, Request, pack_pascal


def build_logout() -> Request:
    """Build an afpLogout request."""
    return Request(Command.LOGOUT, bytes([Command.LOGOUT, 0]))


def build_login(version_name: str, uam_name: str, userauthinfo: bytes = b"") -> Request:
    """Build an afpLogin request for the given AFP version and UAM."""
    payload = (
        bytes([Command.LOGIN])
        + pack_pascal(version_name)
        + pack_pascal(uam_name)
        + bytes(userauthinfo)
    )
    return Request(Command.LOGIN, payload)


def build_logincont(id: int, userauthinfo: bytes = b"") -> Request:
    """Build an afpLoginCont request continuing authentication ``id``."""
    payload = struct.pack(">BBH", Command.LOGIN_CONT, 0, id) + bytes(userauthinfo)
    return Request(Command.LOGIN_CONT, payload)


def build_changepassword(uam_name: str, userauthinfo: bytes = b"") -> Request:
    """Build an afpChangePassword request."""
    payload = bytes([Command.CHANGE_PASSWORD, 0]) + pack_pascal(uam_name) + bytes(userauthinfo)
    return Request(Command.CHANGE_PASSWORD, payload)


def parse_login_reply(body: bytes, maxsize: Optional[int] = None) -> bytes:
    """Return the user authentication info of a login reply, at most ``maxsize`` bytes."""
    data = bytes(body)
    return data if maxsize is None else data[:maxsize]