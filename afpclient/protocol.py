"""AFP protocol constants, errors and wire encoding helpers."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum, IntFlag

# Offset between the Unix epoch and the AFP epoch (2000-01-01 00:00:00 UTC).
AD_DATE_DELTA = 946684800

MAX_PATH = 768
MAX_AFP2_FILESIZE = 4 * 1024 * 1024 * 1024

SHORT_NAME = 1
LONG_NAME = 2
UTF8_NAME = 3
UTF8_TEXT_ENCODING_HINT = 0x08000103

FORK_DATA = 0x00
FORK_RESOURCE = 0x80

OPENFORK_ALLOW_READ = 0x01
OPENFORK_ALLOW_WRITE = 0x02

SOFT_CREATE = 0x00
HARD_CREATE = 0x80

BYTERANGE_LOCK = 0
BYTERANGE_UNLOCK = 1


class Command(IntEnum):
    """AFP command codes."""

    BYTE_RANGE_LOCK = 1
    CLOSE_VOL = 2
    CLOSE_DIR = 3
    CLOSE_FORK = 4
    COPY_FILE = 5
    CREATE_DIR = 6
    CREATE_FILE = 7
    DELETE = 8
    ENUMERATE = 9
    FLUSH = 10
    FLUSH_FORK = 11
    GET_FORK_PARMS = 14
    GET_SRVR_INFO = 15
    GET_SRVR_PARMS = 16
    GET_VOL_PARMS = 17
    LOGIN = 18
    LOGIN_CONT = 19
    LOGOUT = 20
    MAP_ID = 21
    MAP_NAME = 22
    MOVE_AND_RENAME = 23
    OPEN_VOL = 24
    OPEN_DIR = 25
    OPEN_FORK = 26
    READ = 27
    RENAME = 28
    SET_DIR_PARMS = 29
    SET_FILE_PARMS = 30
    SET_FORK_PARMS = 31
    SET_VOL_PARMS = 32
    WRITE = 33
    GET_FILE_DIR_PARMS = 34
    SET_FILE_DIR_PARMS = 35
    CHANGE_PASSWORD = 36
    GET_USER_INFO = 37
    GET_SRVR_MSG = 38
    CREATE_ID = 39
    DELETE_ID = 40
    RESOLVE_ID = 41
    EXCHANGE_FILES = 42
    CAT_SEARCH = 43
    OPEN_DT = 48
    CLOSE_DT = 49
    GET_ICON = 51
    GET_ICON_INFO = 52
    ADD_APPL = 53
    REMOVE_APPL = 54
    GET_APPL = 55
    ADD_COMMENT = 56
    REMOVE_COMMENT = 57
    GET_COMMENT = 58
    BYTE_RANGE_LOCK_EXT = 59
    READ_EXT = 60
    WRITE_EXT = 61
    GET_AUTH_METHODS = 62
    LOGIN_EXT = 63
    GET_SESSION_TOKEN = 64
    DISCONNECT_OLD_SESSION = 65
    ENUMERATE_EXT = 66
    CAT_SEARCH_EXT = 67
    ENUMERATE_EXT2 = 68
    GET_EXT_ATTR = 69
    SET_EXT_ATTR = 70
    REMOVE_EXT_ATTR = 71
    LIST_EXT_ATTRS = 72
    GET_ACL = 73
    SET_ACL = 74
    ACCESS = 75
    ZZZZZ = 122
    ADD_ICON = 192


class DSICommand(IntEnum):
    """DSI-level command codes."""

    CLOSE_SESSION = 1
    COMMAND = 2
    GET_STATUS = 3
    OPEN_SESSION = 4
    TICKLE = 5
    WRITE = 6
    ATTENTION = 8


class Bitmap(IntFlag):
    """File and directory parameter bitmap bits.

    Several bits mean different things for files and directories and
    therefore share a value.
    """

    ATTRIBUTE = 0x0001
    PARENT_DIR_ID = 0x0002
    CREATE_DATE = 0x0004
    MOD_DATE = 0x0008
    BACKUP_DATE = 0x0010
    FINDER_INFO = 0x0020
    LONG_NAME = 0x0040
    SHORT_NAME = 0x0080
    NODE_ID = 0x0100
    DATA_FORK_LEN = 0x0200
    OFFSPRING_COUNT = 0x0200
    RSRC_FORK_LEN = 0x0400
    OWNER_ID = 0x0400
    EXT_DATA_FORK_LEN = 0x0800
    GROUP_ID = 0x0800
    LAUNCH_LIMIT = 0x1000
    ACCESS_RIGHTS = 0x1000
    PRODOS_INFO = 0x2000
    UTF8_NAME = 0x2000
    EXT_RSRC_FORK_LEN = 0x4000
    UNIX_PRIVS = 0x8000


class ErrorCode(IntEnum):
    """AFP result codes."""

    NO_ERR = 0
    ACCESS_DENIED = -5000
    AUTH_CONTINUE = -5001
    BAD_UAM = -5002
    BAD_VERS_NUM = -5003
    BITMAP_ERR = -5004
    CANT_MOVE = -5005
    DENY_CONFLICT = -5006
    DIR_NOT_EMPTY = -5007
    DISK_FULL = -5008
    EOF_ERR = -5009
    FILE_BUSY = -5010
    FLAT_VOL = -5011
    ITEM_NOT_FOUND = -5012
    LOCK_ERR = -5013
    MISC_ERR = -5014
    NO_MORE_LOCKS = -5015
    NO_SERVER = -5016
    OBJECT_EXISTS = -5017
    OBJECT_NOT_FOUND = -5018
    PARAM_ERR = -5019
    RANGE_NOT_LOCKED = -5020
    RANGE_OVERLAP = -5021
    SESS_CLOSED = -5022
    USER_NOT_AUTH = -5023
    CALL_NOT_SUPPORTED = -5024
    OBJECT_TYPE_ERR = -5025
    TOO_MANY_FILES_OPEN = -5026
    SERVER_GOING_DOWN = -5027
    CANT_RENAME = -5028
    DIR_NOT_FOUND = -5029
    ICON_TYPE_ERROR = -5030
    VOL_LOCKED = -5031
    OBJECT_LOCKED = -5032
    CONTAINS_SHARED_ERR = -5033
    ID_NOT_FOUND = -5034
    ID_EXISTS = -5035
    DIFF_VOL_ERR = -5036
    CATALOG_CHANGED = -5037
    SAME_OBJECT_ERR = -5038
    BAD_ID_ERR = -5039
    PWD_SAME_ERR = -5040
    PWD_TOO_SHORT_ERR = -5041
    PWD_EXPIRED_ERR = -5042
    INSIDE_SHARED_ERR = -5043
    INSIDE_TRASH_ERR = -5044
    PWD_NEEDS_CHANGE_ERR = -5045
    PWD_POLICY_ERR = -5046
    DISK_QUOTA_EXCEEDED = -5047


class AFPError(Exception):
    """An AFP request failed with a non-zero result code."""

    def __init__(self, code: int, message: str | None = None):
        self.code = code
        try:
            name = ErrorCode(code).name
        except ValueError:
            name = "UNKNOWN"
        self.name = name
        super().__init__(message or f"AFP error {code} ({name})")


@dataclass(frozen=True)
class Request:
    """An AFP request ready to be framed by the DSI layer.

    ``subcommand`` is the command the reply is dispatched to; it usually,
    but not always, equals the first byte of ``payload``.
    """

    subcommand: int
    payload: bytes
    dsi_command: DSICommand = DSICommand.COMMAND
    data_offset: int = 0


def ad_date_to_unix(value: int) -> int:
    """Convert a 32-bit AFP date (seconds since 2000) to a Unix time."""
    value &= 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value + AD_DATE_DELTA


def ad_date_from_unix(value: int) -> int:
    """Convert a Unix time to a 32-bit AFP date."""
    return (value - AD_DATE_DELTA) & 0xFFFFFFFF


def _to_bytes(text: str | bytes) -> bytes:
    return text.encode("utf-8") if isinstance(text, str) else bytes(text)


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def pack_pascal(text: str | bytes) -> bytes:
    """Encode a Pascal string: one length byte, then at most 255 bytes."""
    raw = _to_bytes(text)[:255]
    return bytes([len(raw)]) + raw


def unpack_pascal(data: bytes, offset: int = 0, maxlen: int = 255) -> str:
    """Read a one-byte-length Pascal string at ``offset``, keeping at most ``maxlen`` bytes."""
    if offset < 0 or offset >= len(data):
        raise ValueError("Pascal string offset out of range")
    length = min(data[offset], maxlen)
    return _decode(bytes(data[offset + 1:offset + 1 + length]))


def unpack_pascal_two(data: bytes, offset: int = 0, maxlen: int = 65535) -> str:
    """Read a two-byte-length (big-endian) string at ``offset``."""
    if offset < 0 or offset + 2 > len(data):
        raise ValueError("string offset out of range")
    (length,) = struct.unpack_from(">H", data, offset)
    length = min(length, maxlen)
    return _decode(bytes(data[offset + 2:offset + 2 + length]))


def encode_path(name: str | bytes, utf8: bool) -> bytes:
    """Encode a path as an AFP pathname, turning '/' separators into NULs."""
    if isinstance(name, str):
        raw = name.encode("utf-8" if utf8 else "mac_roman", "replace")
    else:
        raw = bytes(name)
    raw = raw.replace(b"/", b"\0")
    if utf8:
        if len(raw) > 0xFFFF:
            raise ValueError("path too long")
        return struct.pack(">BIH", UTF8_NAME, UTF8_TEXT_ENCODING_HINT, len(raw)) + raw
    if len(raw) > 255:
        raise ValueError("path too long")
    return struct.pack(">BB", LONG_NAME, len(raw)) + raw