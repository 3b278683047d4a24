"""File-level AFP requests: parameters, deletion, creation, reading and writing."""

from __future__ import annotations

import struct

from .log import log_for_client
from .protocol import (
    AFPError,
    Bitmap,
    Command,
    DSICommand,
    Request,
    ad_date_from_unix,
    encode_path,
)
from .replyblock import FileInfo, parse_reply_block

_LOG_SOURCE = 0
_LOG_ERR = 3

_PATH_REQUEST = struct.Struct(">BBHI")
_SETPARMS = struct.Struct(">BBHIH")
_READ = struct.Struct(">BBHIIBB")
_READEXT = struct.Struct(">BBHQQ")
_GETFILEDIRPARMS = struct.Struct(">BBHIHH")
_GETFILEDIRPARMS_REPLY = struct.Struct(">HHBB")
_WRITE = struct.Struct(">BBHII")
_WRITEEXT = struct.Struct(">BBHQQ")

_SETPARMS_COMMANDS = (
    Command.SET_FILE_PARMS,
    Command.SET_DIR_PARMS,
    Command.SET_FILE_DIR_PARMS,
)


def build_setparms(
    command: int,
    volid: int,
    dirid: int,
    pathname: str | bytes,
    bitmap: int,
    fp: FileInfo,
    utf8: bool,
) -> Request:
    """Build an afpSetFileParms, afpSetDirParms or afpSetFileDirParms request.

    The parameters named in ``bitmap`` are taken from ``fp`` and follow the
    pathname, starting on an even boundary.
    """
    if command not in _SETPARMS_COMMANDS:
        raise ValueError(f"not a set-parameters command: {command}")
    payload = bytearray(_SETPARMS.pack(int(command), 0, volid, dirid & 0xFFFFFFFF, bitmap))
    payload += encode_path(pathname, utf8)
    if len(payload) & 1:
        payload.append(0)

    if bitmap & Bitmap.ATTRIBUTE:
        payload += struct.pack(">H", fp.attributes & 0xFFFF)
    if bitmap & Bitmap.CREATE_DATE:
        payload += struct.pack(">I", ad_date_from_unix(fp.creation_date))
    if bitmap & Bitmap.MOD_DATE:
        payload += struct.pack(">I", ad_date_from_unix(fp.modification_date))
    if bitmap & Bitmap.BACKUP_DATE:
        payload += struct.pack(">I", ad_date_from_unix(fp.backup_date))
    if bitmap & Bitmap.FINDER_INFO:
        payload += bytes(fp.finderinfo[:32]).ljust(32, b"\0")
    if bitmap & Bitmap.UNIX_PRIVS:
        payload += fp.unixprivs.pack()
    return Request(int(command), bytes(payload))


def build_delete(volid: int, dirid: int, pathname: str | bytes, utf8: bool) -> Request:
    """Build an afpDelete request."""
    payload = _PATH_REQUEST.pack(Command.DELETE, 0, volid, dirid & 0xFFFFFFFF)
    return Request(Command.DELETE, payload + encode_path(pathname, utf8))


def build_read(forkid: int, offset: int, count: int) -> Request:
    """Build a 32-bit afpRead request."""
    payload = _READ.pack(
        Command.READ, 0, forkid, offset & 0xFFFFFFFF, count & 0xFFFFFFFF, 0, 0
    )
    return Request(Command.READ, payload)


def build_readext(forkid: int, offset: int, count: int) -> Request:
    """Build a 64-bit afpReadExt request."""
    payload = _READEXT.pack(Command.READ_EXT, 0, forkid, offset, count)
    return Request(Command.READ_EXT, payload)


def parse_read_reply(body: bytes, rx_quantum: int) -> bytes:
    """Return the data of a read reply, dropping whatever exceeds ``rx_quantum``."""
    data = bytes(body)
    if len(data) > rx_quantum:
        log_for_client(
            None,
            _LOG_SOURCE,
            _LOG_ERR,
            "This is definitely weird, I guess I'll just drop %d bytes",
            len(data) - rx_quantum,
        )
        data = data[:rx_quantum]
    return data


def build_getfiledirparms(
    volid: int,
    did: int,
    filebitmap: int,
    dirbitmap: int,
    pathname: str | bytes | None,
    utf8: bool,
) -> Request:
    """Build an afpGetFileDirParms request."""
    if pathname is None:
        raise ValueError("a pathname is required")
    payload = _GETFILEDIRPARMS.pack(
        Command.GET_FILE_DIR_PARMS, 0, volid, did & 0xFFFFFFFF, filebitmap, dirbitmap
    )
    return Request(Command.GET_FILE_DIR_PARMS, payload + encode_path(pathname, utf8))


def parse_getfiledirparms_reply(code: int, body: bytes) -> FileInfo:
    """Decode an afpGetFileDirParms reply into a FileInfo."""
    if code != 0:
        raise AFPError(code)
    body = bytes(body)
    if len(body) < _GETFILEDIRPARMS_REPLY.size:
        raise ValueError("getfiledirparms reply is too short")
    filebitmap, dirbitmap, isdir, _pad = _GETFILEDIRPARMS_REPLY.unpack_from(body)
    info = parse_reply_block(body[_GETFILEDIRPARMS_REPLY.size:], bool(isdir), filebitmap, dirbitmap)
    info.isdir = bool(isdir)
    return info


def build_createfile(flag: int, volid: int, did: int, pathname: str | bytes, utf8: bool) -> Request:
    """Build an afpCreateFile request; ``flag`` selects a soft or hard create."""
    payload = _PATH_REQUEST.pack(Command.CREATE_FILE, flag, volid, did & 0xFFFFFFFF)
    return Request(Command.CREATE_FILE, payload + encode_path(pathname, utf8))


def build_write(forkid: int, offset: int, data: bytes) -> Request:
    """Build a 32-bit afpWrite request carrying ``data``."""
    data = bytes(data)
    header = _WRITE.pack(Command.WRITE, 0, forkid, offset & 0xFFFFFFFF, len(data))
    return Request(Command.WRITE, header + data, DSICommand.WRITE, _WRITE.size)


def build_writeext(forkid: int, offset: int, data: bytes) -> Request:
    """Build a 64-bit afpWriteExt request carrying ``data``."""
    data = bytes(data)
    header = _WRITEEXT.pack(Command.WRITE_EXT, 0, forkid, offset, len(data))
    return Request(Command.WRITE_EXT, header + data, DSICommand.WRITE, _WRITEEXT.size)


def parse_write_reply(body: bytes) -> int:
    """Return the written-offset field of an afpWrite reply, or 0 if it is short."""
    body = bytes(body)
    if len(body) < 8:
        return 0
    (written,) = struct.unpack_from(">I", body)
    return written


def parse_writeext_reply(body: bytes) -> int:
    """Return the written-offset field of an afpWriteExt reply, or 0 if it is short."""
    body = bytes(body)
    if len(body) < 8:
        return 0
    (written,) = struct.unpack_from(">Q", body)
    return written