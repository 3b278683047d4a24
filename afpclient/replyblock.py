"""Parsing of file and directory parameter blocks."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from .protocol import MAX_PATH, Bitmap, ad_date_to_unix, unpack_pascal, unpack_pascal_two

_UNIXPRIVS = struct.Struct(">IIII")


@dataclass
class UnixPrivs:
    """Unix ownership and permission bits of a file or directory."""

    uid: int = 0
    gid: int = 0
    permissions: int = 0
    ua_permissions: int = 0

    def pack(self) -> bytes:
        """Encode as the 16-byte wire block."""
        return _UNIXPRIVS.pack(
            self.uid & 0xFFFFFFFF,
            self.gid & 0xFFFFFFFF,
            self.permissions & 0xFFFFFFFF,
            self.ua_permissions & 0xFFFFFFFF,
        )


@dataclass
class FileInfo:
    """What is known about one file or directory on a volume."""

    name: str = ""
    basename: str = ""
    isdir: bool = False
    attributes: int = 0
    did: int = 0
    fileid: int = 0
    creation_date: int = 0
    modification_date: int = 0
    backup_date: int = 0
    finderinfo: bytes = bytes(32)
    offspring: int = 0
    accessrights: int = 0
    size: int = 0
    resourcesize: int = 0
    unixprivs: UnixPrivs = field(default_factory=UnixPrivs)
    forkid: int = 0
    resource: bool = False
    sync: bool = False


def parse_reply_block(buf: bytes, isdir: bool, filebitmap: int, dirbitmap: int) -> FileInfo:
    """Decode a parameter block laid out according to the relevant bitmap."""
    buf = bytes(buf)
    info = FileInfo(isdir=bool(isdir))
    bitmap = int(dirbitmap if isdir else filebitmap)
    pos = 0

    def take(fmt: str) -> int:
        nonlocal pos
        try:
            (value,) = struct.unpack_from(fmt, buf, pos)
        except struct.error as exc:
            raise ValueError("reply block is truncated") from exc
        pos += struct.calcsize(fmt)
        return value

    def skip(count: int) -> None:
        nonlocal pos
        pos += count

    if bitmap & Bitmap.ATTRIBUTE:
        info.attributes = take(">H")
    if bitmap & Bitmap.PARENT_DIR_ID:
        info.did = take(">I")
    if bitmap & Bitmap.CREATE_DATE:
        info.creation_date = ad_date_to_unix(take(">I"))
    if bitmap & Bitmap.MOD_DATE:
        info.modification_date = ad_date_to_unix(take(">I"))
    if bitmap & Bitmap.BACKUP_DATE:
        info.backup_date = ad_date_to_unix(take(">I"))
    if bitmap & Bitmap.FINDER_INFO:
        if pos + 32 > len(buf):
            raise ValueError("reply block is truncated")
        info.finderinfo = buf[pos:pos + 32]
        skip(32)
    if bitmap & Bitmap.LONG_NAME:
        info.name = unpack_pascal(buf, take(">H"), MAX_PATH)
    if bitmap & Bitmap.SHORT_NAME:
        skip(2)
    if bitmap & Bitmap.NODE_ID:
        info.fileid = take(">I")
    if isdir:
        if bitmap & Bitmap.OFFSPRING_COUNT:
            info.offspring = take(">H")
        if bitmap & Bitmap.OWNER_ID:
            info.unixprivs.uid = take(">I")
        if bitmap & Bitmap.GROUP_ID:
            info.unixprivs.gid = take(">I")
        if bitmap & Bitmap.ACCESS_RIGHTS:
            info.accessrights = take(">I")
    else:
        if bitmap & Bitmap.DATA_FORK_LEN:
            info.size = take(">I")
        if bitmap & Bitmap.RSRC_FORK_LEN:
            info.resourcesize = take(">I")
        if bitmap & Bitmap.EXT_DATA_FORK_LEN:
            info.size = take(">Q")
        if bitmap & Bitmap.LAUNCH_LIMIT:
            skip(2)
    if bitmap & Bitmap.UTF8_NAME:
        info.name = unpack_pascal_two(buf, take(">H") + 4, MAX_PATH)
        skip(4)
    if bitmap & Bitmap.EXT_RSRC_FORK_LEN:
        info.resourcesize = take(">Q")
    if bitmap & Bitmap.UNIX_PRIVS:
        try:
            values = _UNIXPRIVS.unpack_from(buf, pos)
        except struct.error as exc:
            raise ValueError("reply block is truncated") from exc
        info.unixprivs = UnixPrivs(*values)
        skip(_UNIXPRIVS.size)
    return info