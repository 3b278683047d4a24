"""Directory requests: moving, renaming, creating and enumerating."""

from __future__ import annotations

import struct
from typing import List, Optional

from .protocol import AFPError, Command, Request, encode_path
from .replyblock import FileInfo, parse_reply_block

MAX_REPLY_SIZE = 5280

_MOVEANDRENAME = struct.Struct(">BBHII")
_PATH_REQUEST = struct.Struct(">BBHI")
_ENUMERATE = struct.Struct(">BBHIHHHHH")
_ENUMERATE_EXT2 = struct.Struct(">BBHIHHHII")
_ENUMERATE_REPLY = struct.Struct(">HHH")
_ENTRY = struct.Struct(">BB")
_ENTRY_EXT2 = struct.Struct(">HBB")


def build_moveandrename(
    volid: int,
    src_did: int,
    dst_did: int,
    src_path: Optional[str | bytes],
    dst_path: Optional[str | bytes],
    new_name: Optional[str | bytes],
    utf8: bool,
) -> Request:
    """Build an afpMoveAndRename request; a missing path is sent empty."""
    payload = _MOVEANDRENAME.pack(
        Command.MOVE_AND_RENAME, 0, volid, src_did & 0xFFFFFFFF, dst_did & 0xFFFFFFFF
    )
    for path in (src_path, dst_path, new_name):
        payload += encode_path(path if path is not None else "", utf8)
    return Request(Command.MOVE_AND_RENAME, payload)


def build_rename(
    volid: int, dirid: int, path_from: str | bytes, path_to: str | bytes, utf8: bool
) -> Request:
    """Build an afpRename request."""
    payload = _PATH_REQUEST.pack(Command.RENAME, 0, volid, dirid & 0xFFFFFFFF)
    payload += encode_path(path_from, utf8) + encode_path(path_to, utf8)
    return Request(Command.RENAME, payload)


def build_createdir(volid: int, dirid: int, pathname: str | bytes, utf8: bool) -> Request:
    """Build an afpCreateDir request."""
    payload = _PATH_REQUEST.pack(Command.CREATE_DIR, 0, volid, dirid & 0xFFFFFFFF)
    return Request(Command.CREATE_DIR, payload + encode_path(pathname, utf8))


def parse_createdir_reply(code: int, body: bytes) -> int:
    """Check an afpCreateDir reply and return the new directory id it carries."""
    if code != 0:
        raise AFPError(code)
    body = bytes(body)
    if len(body) < 4:
        raise ValueError("createdir reply is too short")
    (did,) = struct.unpack_from(">I", body)
    return did


def build_enumerate(
    volid: int,
    dirid: int,
    filebitmap: int,
    dirbitmap: int,
    reqcount: int,
    startindex: int,
    pathname: str | bytes,
    utf8: bool,
) -> Request:
    """Build an afpEnumerate request (16-bit start index)."""
    payload = _ENUMERATE.pack(
        Command.ENUMERATE,
        0,
        volid,
        dirid & 0xFFFFFFFF,
        filebitmap,
        dirbitmap,
        reqcount,
        startindex & 0xFFFF,
        MAX_REPLY_SIZE,
    )
    return Request(Command.ENUMERATE, payload + encode_path(pathname, utf8))


def build_enumerateext2(
    volid: int,
    dirid: int,
    filebitmap: int,
    dirbitmap: int,
    reqcount: int,
    startindex: int,
    pathname: str | bytes,
    utf8: bool,
) -> Request:
    """Build an afpEnumerateExt2 request (32-bit start index)."""
    payload = _ENUMERATE_EXT2.pack(
        Command.ENUMERATE_EXT2,
        0,
        volid,
        dirid & 0xFFFFFFFF,
        filebitmap,
        dirbitmap,
        reqcount,
        startindex & 0xFFFFFFFF,
        MAX_REPLY_SIZE,
    )
    return Request(Command.ENUMERATE_EXT2, payload + encode_path(pathname, utf8))


def _parse_entries(code: int, body: bytes, entry: struct.Struct) -> List[FileInfo]:
    if code != 0:
        raise AFPError(code)
    body = bytes(body)
    if len(body) < _ENUMERATE_REPLY.size:
        raise ValueError("enumerate reply is too short")
    filebitmap, dirbitmap, count = _ENUMERATE_REPLY.unpack_from(body)
    pos = _ENUMERATE_REPLY.size
    files: List[FileInfo] = []
    for _ in range(count):
        if pos + entry.size > len(body):
            raise ValueError("enumerate reply is truncated")
        size, isdir = entry.unpack_from(body, pos)[:2]
        if size < entry.size:
            raise ValueError("enumerate entry has a bad size")
        block = body[pos + entry.size:pos + size]
        files.append(parse_reply_block(block, bool(isdir), filebitmap, dirbitmap))
        pos += size
    return files


def parse_enumerate_reply(code: int, body: bytes) -> List[FileInfo]:
    """Decode the entries of an afpEnumerate reply."""
    return _parse_entries(code, body, _ENTRY)


def parse_enumerateext2_reply(code: int, body: bytes) -> List[FileInfo]:
    """Decode the entries of an afpEnumerateExt2 reply."""
    return _parse_entries(code, body, _ENTRY_EXT2)