"""Fork requests: opening, closing, flushing, sizing and byte-range locking."""

from __future__ import annotations

import struct

from .protocol import (
    AFPError,
    Bitmap,
    Command,
    ErrorCode,
    FORK_DATA,
    FORK_RESOURCE,
    Request,
    encode_path,
)

_FORK_HEADER = struct.Struct(">BBHH")
_FORK_ONLY = struct.Struct(">BBH")
_OPENFORK = struct.Struct(">BBHIHH")
_OPENFORK_REPLY = struct.Struct(">HH")
_BYTERANGELOCK = struct.Struct(">BBHII")
_BYTERANGELOCKEXT = struct.Struct(">BBHQQ")


def build_setforkparms(forkid: int, bitmap: int, length: int) -> Request:
    """Build an afpSetForkParms request; extended length bits use a 64-bit length."""
    payload = _FORK_HEADER.pack(Command.SET_FORK_PARMS, 0, forkid, bitmap)
    if bitmap & (Bitmap.EXT_DATA_FORK_LEN | Bitmap.EXT_RSRC_FORK_LEN):
        payload += struct.pack(">Q", length)
    else:
        payload += struct.pack(">I", length & 0xFFFFFFFF)
    return Request(Command.SET_FORK_PARMS, payload)


def build_closefork(forkid: int) -> Request:
    """Build an afpCloseFork request."""
    payload = _FORK_ONLY.pack(Command.CLOSE_FORK, 0, forkid)
    return Request(Command.FLUSH_FORK, payload)


def build_flushfork(forkid: int) -> Request:
    """Build an afpFlushFork request."""
    payload = _FORK_ONLY.pack(Command.FLUSH_FORK, 0, forkid)
    return Request(Command.FLUSH_FORK, payload)


def build_openfork(
    forktype: int,
    volid: int,
    dirid: int,
    accessmode: int,
    filename: str | bytes,
    utf8: bool,
) -> Request:
    """Build an afpOpenFork request; a true ``forktype`` opens the resource fork."""
    payload = _OPENFORK.pack(
        Command.OPEN_FORK,
        FORK_RESOURCE if forktype else FORK_DATA,
        volid,
        dirid & 0xFFFFFFFF,
        0,
        accessmode,
    )
    return Request(Command.OPEN_FORK, payload + encode_path(filename, utf8))


def parse_openfork_reply(code: int, body: bytes) -> int:
    """Return the fork id of an afpOpenFork reply.

    A deny-conflict reply still carries a fork id; any other error raises.
    """
    if code not in (ErrorCode.NO_ERR, ErrorCode.DENY_CONFLICT):
        raise AFPError(code)
    body = bytes(body)
    if len(body) < _OPENFORK_REPLY.size:
        raise ValueError("openfork response is too short")
    _bitmap, forkid = _OPENFORK_REPLY.unpack_from(body)
    return forkid


def build_byterangelock(flag: int, forkid: int, offset: int, length: int) -> Request:
    """Build a 32-bit afpByteRangeLock request."""
    payload = _BYTERANGELOCK.pack(
        Command.BYTE_RANGE_LOCK, flag, forkid, offset & 0xFFFFFFFF, length & 0xFFFFFFFF
    )
    return Request(Command.BYTE_RANGE_LOCK, payload)


def build_byterangelockext(flag: int, forkid: int, offset: int, length: int) -> Request:
    """Build a 64-bit afpByteRangeLockExt request."""
    payload = _BYTERANGELOCKEXT.pack(
        Command.BYTE_RANGE_LOCK_EXT,
        flag,
        forkid,
        offset & 0xFFFFFFFFFFFFFFFF,
        length & 0xFFFFFFFFFFFFFFFF,
    )
    return Request(Command.BYTE_RANGE_LOCK_EXT, payload)


def parse_byterangelock_reply(body: bytes) -> int:
    """Return the range start of an afpByteRangeLock reply, or 0 if it is short."""
    body = bytes(body)
    if len(body) < 8:
        return 0
    (offset,) = struct.unpack_from(">I", body)
    return offset


def parse_byterangelockext_reply(body: bytes) -> int:
    """Return the range start of an afpByteRangeLockExt reply, or 0 if it is short."""
    body = bytes(body)
    if len(body) < 8:
        return 0
    (offset,) = struct.unpack_from(">Q", body)
    return offset