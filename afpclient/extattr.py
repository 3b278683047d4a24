"""Extended attribute requests."""

from __future__ import annotations

import struct

from .protocol import Command, Request, encode_path

NEW_COMMAND_76 = 76

_VOL_REQUEST = struct.Struct(">BBH")
_LISTEXTATTR = struct.Struct(">BBHIHHII")
_LISTEXTATTRS_REPLY = struct.Struct(">HI")
_GETEXTATTR = struct.Struct(">BBHIHQQI")
_SETEXTATTR = struct.Struct(">BBHIHQ")


def build_newcommand76(volid: int, data: bytes) -> Request:
    """Build the undocumented command 76 carrying ``data``."""
    payload = _VOL_REQUEST.pack(NEW_COMMAND_76, 0, volid) + bytes(data)
    return Request(NEW_COMMAND_76, payload)


def build_listextattr(
    volid: int, dirid: int, bitmap: int, pathname: str | bytes, maxsize: int, utf8: bool
) -> Request:
    """Build an afpListExtAttrs request."""
    payload = _LISTEXTATTR.pack(
        Command.LIST_EXT_ATTRS,
        0,
        volid,
        dirid & 0xFFFFFFFF,
        bitmap,
        0,
        0,
        maxsize & 0xFFFFFFFF,
    )
    return Request(Command.LIST_EXT_ATTRS, payload + encode_path(pathname, utf8))


def parse_listextattrs_reply(body: bytes, maxsize: int) -> bytes:
    """Return the attribute name data, at most ``maxsize`` bytes."""
    body = bytes(body)
    if len(body) < _LISTEXTATTRS_REPLY.size:
        raise ValueError("listextattrs reply is too short")
    _reserved, datalength = _LISTEXTATTRS_REPLY.unpack_from(body)
    length = min(maxsize, datalength)
    start = _LISTEXTATTRS_REPLY.size
    return body[start:start + length]


def build_getextattr(
    volid: int,
    dirid: int,
    bitmap: int,
    replysize: int,
    pathname: str | bytes,
    name: str | bytes,
    utf8: bool,
) -> Request:
    """Build an afpGetExtAttr request for attribute ``name``."""
    payload = bytearray(
        _GETEXTATTR.pack(
            Command.GET_EXT_ATTR, 0, volid, dirid & 0xFFFFFFFF, bitmap, 0, 0,
            replysize & 0xFFFFFFFF,
        )
    )
    payload += encode_path(pathname, utf8)
    if len(payload) & 1:
        payload.append(0)
    raw = name.encode("utf-8") if isinstance(name, str) else bytes(name)
    if len(raw) > 0xFFFF:
        raise ValueError("attribute name too long")
    payload += struct.pack(">H", len(raw)) + raw
    return Request(Command.DELETE, bytes(payload))


def build_setextattr(
    volid: int, dirid: int, bitmap: int, offset: int, pathname: str | bytes, utf8: bool
) -> Request:
    """Build an afpSetExtAttr request header for ``pathname``."""
    payload = _SETEXTATTR.pack(
        Command.SET_EXT_ATTR, 0, volid, dirid & 0xFFFFFFFF, bitmap,
        offset & 0xFFFFFFFFFFFFFFFF,
    )
    return Request(Command.DELETE, payload + encode_path(pathname, utf8))