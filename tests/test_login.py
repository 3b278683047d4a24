import struct

from afpclient.login import (
    build_changepassword,
    build_login,
    build_logincont,
    build_logout,
    parse_login_reply,
)
from afpclient.protocol import Command, DSICommand


def test_logout():
    request = build_logout()
    assert request.payload == bytes([Command.LOGOUT, 0])
    assert request.dsi_command == DSICommand.COMMAND


def test_login_layout():
    request = build_login("AFP3.1", "DHCAST128", b"\x01\x02")
    expected = bytes([Command.LOGIN]) + b"\x06AFP3.1" + b"\x09DHCAST128" + b"\x01\x02"
    assert request.payload == expected
    assert request.subcommand == Command.LOGIN


def test_logincont_layout():
    request = build_logincont(513, b"abc")
    assert struct.unpack_from(">BBH", request.payload) == (Command.LOGIN_CONT, 0, 513)
    assert request.payload[4:] == b"abc"


def test_changepassword_has_pad_byte():
    request = build_changepassword("DHX2", b"\xff")
    assert request.payload[:2] == bytes([Command.CHANGE_PASSWORD, 0])
    assert request.payload[2] == len("DHX2")
    assert request.payload[3:7] == b"DHX2"
    assert request.payload[-1:] == b"\xff"


def test_login_reply_truncated_to_maxsize():
    body = bytes(range(20))
    reply = parse_login_reply(body, 8)
    assert reply == body[:8]


def test_login_reply_unbounded():
    body = b"authinfo"
    assert parse_login_reply(body) == body