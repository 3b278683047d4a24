"""User information and name/ID mapping requests."""

from __future__ import annotations

import struct
from typing import Optional, Tuple

from .protocol import AFPError, Command, Request, pack_pascal, unpack_pascal_two

USER_INFO_USER_ID = 0x1
USER_INFO_PRI_GROUP_ID = 0x2


def build_getuserinfo(thisuser: bool, userid: int, bitmap: int) -> Request:
    """Build an afpGetUserInfo request."""
    payload = struct.pack(">BBIH", Command.GET_USER_INFO, 1 if thisuser else 0, userid, bitmap)
    return Request(Command.GET_USER_INFO, payload)


def parse_getuserinfo_reply(code: int, body: bytes) -> Tuple[Optional[int], Optional[int]]:
    """Return ``(uid, gid)``; an ID not named in the reply bitmap is None."""
    if code != 0:
        raise AFPError(code)
    try:
        bitmap, id1, id2 = struct.unpack_from(">HII", body)
    except struct.error:
        try:
            bitmap, id1 = struct.unpack_from(">HI", body)
            id2 = 0
        except struct.error as exc:
            raise ValueError("getuserinfo reply is too short") from exc
    uid: Optional[int] = None
    gid: Optional[int] = None
    if bitmap & USER_INFO_USER_ID:
        uid = id1
        if bitmap & USER_INFO_PRI_GROUP_ID:
            gid = id2
    elif bitmap & USER_INFO_PRI_GROUP_ID:
        gid = id1
    return uid, gid


def build_mapid(subfunction: int, id: int) -> Request:
    """Build an afpMapID request."""
    return Request(Command.MAP_ID, struct.pack(">BBI", Command.MAP_ID, subfunction, id))


def parse_mapid_reply(code: int, body: bytes) -> str:
    """Return the name the server mapped the ID to."""
    if code != 0:
        raise AFPError(code)
    return unpack_pascal_two(body, 0, 255)


def build_mapname(subfunction: int, name: str | bytes) -> Request:
    """Build an afpMapName request."""
    payload = struct.pack(">BB", Command.MAP_NAME, subfunction) + pack_pascal(name)
    return Request(Command.MAP_NAME, payload)


def parse_mapname_reply(body: bytes) -> int:
    """Return the ID the server mapped the name to."""
    try:
        (ident,) = struct.unpack_from(">I", body)
    except struct.error as exc:
        raise ValueError("mapname reply is too short") from exc
    return ident