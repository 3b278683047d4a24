"""Desktop database requests: icons and comments."""

from __future__ import annotations

import struct

from .protocol import Command, Request, encode_path, pack_pascal

_GETICON = struct.Struct(">BBHIIBBH")
_REF_REQUEST = struct.Struct(">BBH")
_DT_PATH_REQUEST = struct.Struct(">BBHI")


def build_geticon(
    dtrefnum: int, filecreator: int, filetype: int, icontype: int, length: int
) -> Request:
    """Build an afpGetIcon request."""
    payload = _GETICON.pack(
        Command.GET_ICON,
        0,
        dtrefnum,
        filecreator & 0xFFFFFFFF,
        filetype & 0xFFFFFFFF,
        icontype,
        0,
        length,
    )
    return Request(Command.GET_ICON, payload)


def parse_geticon_reply(body: bytes, maxsize: int) -> bytes:
    """Return the icon data; the reply must hold at least ``maxsize`` bytes."""
    body = bytes(body)
    if len(body) < maxsize:
        raise ValueError("geticon reply is too short")
    return body


def build_addcomment(
    dtrefnum: int, did: int, pathname: str | bytes, comment: str | bytes, utf8: bool
) -> Request:
    """Build an afpAddComment request; the comment starts on an even boundary."""
    payload = bytearray(_DT_PATH_REQUEST.pack(Command.ADD_COMMENT, 0, dtrefnum, did & 0xFFFFFFFF))
    payload += encode_path(pathname, utf8)
    if len(payload) & 1:
        payload.append(0)
    payload += pack_pascal(comment)
    return Request(Command.ADD_COMMENT, bytes(payload))


def build_getcomment(dtrefnum: int, did: int, pathname: str | bytes, utf8: bool) -> Request:
    """Build an afpGetComment request."""
    payload = _DT_PATH_REQUEST.pack(Command.GET_COMMENT, 0, dtrefnum, did & 0xFFFFFFFF)
    return Request(Command.GET_COMMENT, payload + encode_path(pathname, utf8))


def parse_getcomment_reply(body: bytes, maxsize: int) -> bytes:
    """Return the comment of an afpGetComment reply, at most ``maxsize`` bytes."""
    body = bytes(body)
    if not body:
        raise ValueError("getcomment response is too short")
    length = min(len(body) - 1, maxsize, body[0])
    return body[1:1 + length]


def build_closedt(refnum: int) -> Request:
    """Build an afpCloseDT request."""
    return Request(Command.CLOSE_DT, _REF_REQUEST.pack(Command.CLOSE_DT, 0, refnum))


def build_opendt(volid: int) -> Request:
    """Build an afpOpenDT request."""
    return Request(Command.OPEN_DT, _REF_REQUEST.pack(Command.OPEN_DT, 0, volid))


def parse_opendt_reply(body: bytes) -> int:
    """Return the desktop database reference number."""
    body = bytes(body)
    if len(body) < 2:
        raise ValueError("opendt response is too short")
    (refnum,) = struct.unpack_from(">H", body)
    return refnum