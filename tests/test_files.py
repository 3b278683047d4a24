import struct

import pytest

from afpclient import files
from afpclient.log import set_log_handler
from afpclient.protocol import (
    AFPError,
    Bitmap,
    Command,
    DSICommand,
    ErrorCode,
    HARD_CREATE,
    ad_date_from_unix,
    encode_path,
)
from afpclient.replyblock import FileInfo, UnixPrivs


def test_build_read_wire_layout():
    req = files.build_read(5, 100, 200)
    assert req.subcommand == Command.READ
    assert req.payload == struct.pack(">BBHIIBB", Command.READ, 0, 5, 100, 200, 0, 0)


def test_build_readext_wire_layout():
    req = files.build_readext(7, 1 << 40, 4096)
    assert req.subcommand == Command.READ_EXT
    assert struct.unpack(">BBHQQ", req.payload) == (Command.READ_EXT, 0, 7, 1 << 40, 4096)


def test_build_delete_has_path():
    req = files.build_delete(3, 2, "dir/file", utf8=False)
    assert req.subcommand == Command.DELETE
    assert struct.unpack_from(">BBHI", req.payload) == (Command.DELETE, 0, 3, 2)
    assert req.payload[8:] == encode_path("dir/file", False)


def test_build_createfile_flag():
    req = files.build_createfile(HARD_CREATE, 1, 2, "x", utf8=True)
    assert req.payload[0] == Command.CREATE_FILE
    assert req.payload[1] == HARD_CREATE
    assert req.payload[8:] == encode_path("x", True)


def test_setparms_mod_date_is_even_aligned():
    fp = FileInfo(modification_date=1_200_000_000)
    req = files.build_setparms(Command.SET_FILE_PARMS, 1, 2, "abc", Bitmap.MOD_DATE, fp, False)
    assert req.subcommand == Command.SET_FILE_PARMS
    assert req.payload.endswith(struct.pack(">I", ad_date_from_unix(1_200_000_000)))
    assert (len(req.payload) - 4) % 2 == 0


def test_setparms_unixprivs_block():
    privs = UnixPrivs(uid=501, gid=20, permissions=0o100644)
    fp = FileInfo(unixprivs=privs)
    req = files.build_setparms(Command.SET_FILE_DIR_PARMS, 1, 2, "ab", Bitmap.UNIX_PRIVS, fp, False)
    assert req.payload.endswith(privs.pack())
    (bitmap,) = struct.unpack_from(">H", req.payload, 8)
    assert bitmap == Bitmap.UNIX_PRIVS


def test_setparms_finderinfo():
    fp = FileInfo(finderinfo=b"slnkrhap" + bytes(24))
    req = files.build_setparms(Command.SET_FILE_DIR_PARMS, 1, 2, "ab", Bitmap.FINDER_INFO, fp, False)
    assert req.payload[-32:] == b"slnkrhap" + bytes(24)


def test_setparms_rejects_other_commands():
    with pytest.raises(ValueError):
        files.build_setparms(Command.DELETE, 1, 2, "a", 0, FileInfo(), False)


def test_parse_read_reply_truncates_and_logs():
    messages = []
    previous = set_log_handler(lambda priv, lvl, typ, msg: messages.append(msg))
    try:
        data = files.parse_read_reply(b"abcdef", 4)
    finally:
        set_log_handler(previous)
    assert data == b"abcd"
    assert len(messages) == 1


def test_parse_read_reply_within_quantum():
    assert files.parse_read_reply(b"hello", 1024) == b"hello"


def test_getfiledirparms_round_trip():
    req = files.build_getfiledirparms(1, 2, Bitmap.NODE_ID, Bitmap.NODE_ID, "f", False)
    assert struct.unpack_from(">BBHIHH", req.payload) == (
        Command.GET_FILE_DIR_PARMS, 0, 1, 2, Bitmap.NODE_ID, Bitmap.NODE_ID)
    body = struct.pack(">HHBB", Bitmap.NODE_ID, Bitmap.NODE_ID, 0x80, 0) + struct.pack(">I", 42)
    info = files.parse_getfiledirparms_reply(0, body)
    assert info.isdir is True
    assert info.fileid == 42


def test_getfiledirparms_requires_path():
    with pytest.raises(ValueError):
        files.build_getfiledirparms(1, 2, 0, 0, None, False)


def test_getfiledirparms_reply_error():
    with pytest.raises(AFPError) as info:
        files.parse_getfiledirparms_reply(ErrorCode.OBJECT_NOT_FOUND, b"")
    assert info.value.code == ErrorCode.OBJECT_NOT_FOUND


def test_getfiledirparms_reply_short():
    with pytest.raises(ValueError):
        files.parse_getfiledirparms_reply(0, b"\0\0")


def test_build_write_uses_dsi_write():
    req = files.build_write(9, 10, b"data")
    assert req.dsi_command == DSICommand.WRITE
    assert req.payload.endswith(b"data")
    assert req.data_offset == len(req.payload) - 4
    assert struct.unpack_from(">BBHII", req.payload) == (Command.WRITE, 0, 9, 10, 4)


def test_build_writeext_uses_dsi_write():
    req = files.build_writeext(9, 1 << 33, b"xyz")
    assert req.dsi_command == DSICommand.WRITE
    assert req.data_offset == len(req.payload) - 3
    assert struct.unpack_from(">BBHQQ", req.payload) == (Command.WRITE_EXT, 0, 9, 1 << 33, 3)


def test_parse_write_replies():
    assert files.parse_write_reply(b"\0\0") == 0
    assert files.parse_write_reply(struct.pack(">II", 77, 0)) == 77
    assert files.parse_writeext_reply(b"") == 0
    assert files.parse_writeext_reply(struct.pack(">Q", 1 << 35)) == 1 << 35