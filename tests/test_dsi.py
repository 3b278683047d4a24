import socket
import struct
import threading
import time

import pytest

from afpclient.dsi import (
    DSI_REPLY,
    DSI_REQUEST,
    HEADER_SIZE,
    MAINTENANCE_MESSAGE,
    MAX_VERSIONS,
    SUPPORTS_UTF8_SRVR_NAME,
    ATTN_MESSAGE,
    ATTN_SHUTDOWN,
    DSIHeader,
    DSISession,
    parse_getstatus,
    parse_uams,
    parse_versions,
    unpack_header,
)
from afpclient.protocol import Command, DSICommand, Request, pack_pascal


def _recv_exact(sock, count):
    buf = b""
    while len(buf) < count:
        chunk = sock.recv(count - len(buf))
        if not chunk:
            raise ConnectionError
        buf += chunk
    return buf


def _read_packet(sock):
    header = unpack_header(_recv_exact(sock, HEADER_SIZE))
    payload = _recv_exact(sock, header.length) if header.length else b""
    return header, payload


def _reply(sock, header, code=0, body=b"", command=None):
    out = DSIHeader(
        flags=DSI_REPLY,
        command=header.command if command is None else command,
        requestid=header.requestid,
        code=code,
        length=len(body),
    )
    sock.sendall(out.pack() + body)


def _respond_once(sock, code=0, body=b""):
    captured = {}

    def run():
        header, payload = _read_packet(sock)
        captured["header"] = header
        captured["payload"] = payload
        _reply(sock, header, code, body)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, captured


def _counted(names):
    return bytes([len(names)]) + b"".join(pack_pascal(n) for n in names)


def _status_body(flags=0, name=b"srv", utf8_block=None,
                 versions=(b"AFP3.1", b"AFP2.2"), uams=(b"DHX2", b"Cleartxt Passwrd"),
                 signature=bytes(range(16)), machine=b"Macintosh"):
    pos = 10 + 1 + len(name)
    if pos & 1:
        pos += 1
    var_start = pos + 2 + (2 if flags & SUPPORTS_UTF8_SRVR_NAME else 0)
    var = b""
    machine_off = var_start + len(var)
    var += pack_pascal(machine)
    version_off = var_start + len(var)
    var += _counted(versions)
    uams_off = var_start + len(var)
    var += _counted(uams)
    sig_off = var_start + len(var)
    var += signature
    utf8_off = var_start + len(var)
    if utf8_block is not None:
        var += utf8_block
    fixed = struct.pack(">HHHHH", machine_off, version_off, uams_off, 0, flags)
    head = fixed + pack_pascal(name)
    if len(head) & 1:
        head += b"\0"
    head += struct.pack(">H", sig_off)
    if flags & SUPPORTS_UTF8_SRVR_NAME:
        head += struct.pack(">H", utf8_off)
    assert len(head) == var_start
    return head + var


@pytest.fixture
def pair():
    client, server = socket.socketpair()
    server.settimeout(5)
    session = DSISession(client)

    def loop():
        while True:
            try:
                session.receive()
            except (ConnectionError, OSError, ValueError):
                return

    thread = threading.Thread(target=loop, daemon=True)
    thread.start()
    yield session, server
    session.close()
    server.close()
    thread.join(2)


def test_header_pack_bytes():
    header = DSIHeader(flags=DSI_REQUEST, command=DSICommand.TICKLE, requestid=1)
    assert header.pack() == b"\x00\x05\x00\x01" + bytes(12)


def test_header_round_trip_with_negative_code():
    header = DSIHeader(flags=DSI_REPLY, command=2, requestid=77, code=-5000, length=12)
    packed = header.pack()
    assert len(packed) == HEADER_SIZE
    assert unpack_header(packed) == header


def test_unpack_header_too_short():
    with pytest.raises(ValueError):
        unpack_header(b"\x00" * 10)


def test_next_request_id_starts_at_one_and_wraps():
    a, b = socket.socketpair()
    try:
        session = DSISession(a)
        assert session.next_request_id() == 1
        session.last_request_id = 65535
        assert session.next_request_id() == 0
    finally:
        a.close()
        b.close()


def test_parse_versions_and_uams():
    assert parse_versions(_counted([b"AFP2.2", b"AFPX03"])) == ["AFP2.2", "AFPX03"]
    assert parse_uams(_counted([b"DHX2", b"No User Authent"])) == ["DHX2", "No User Authent"]


def test_parse_versions_caps_count():
    names = [b"v%d" % i for i in range(MAX_VERSIONS + 3)]
    assert len(parse_versions(_counted(names))) == MAX_VERSIONS


def test_parse_getstatus_without_utf8_name():
    status = parse_getstatus(_status_body())
    assert status.machine_type == "Macintosh"
    assert status.versions == ["AFP3.1", "AFP2.2"]
    assert status.uams == ["DHX2", "Cleartxt Passwrd"]
    assert status.signature == bytes(range(16))
    assert status.server_name == "srv"
    assert status.server_name_printable == "srv"
    assert status.icon == b""


def test_parse_getstatus_utf8_name_normalized():
    name = "e\u0301t\u00e9".encode("utf-8")
    body = _status_body(flags=SUPPORTS_UTF8_SRVR_NAME,
                        utf8_block=struct.pack(">H", len(name)) + name)
    status = parse_getstatus(body)
    assert status.flags == SUPPORTS_UTF8_SRVR_NAME
    assert status.server_name_utf8 == "e\u0301t\u00e9"
    assert status.server_name_printable == "\u00e9t\u00e9"


def test_parse_getstatus_off_by_one_workaround():
    body = _status_body(flags=SUPPORTS_UTF8_SRVR_NAME, name=b"ab",
                        utf8_block=b"\x00\x00" + pack_pascal(b"hello"))
    status = parse_getstatus(body)
    assert status.server_name_utf8 == "hello"


def test_parse_getstatus_too_short():
    with pytest.raises(ValueError):
        parse_getstatus(b"\x00" * 5)


def test_send_returns_reply(pair):
    session, server = pair
    thread, captured = _respond_once(server, 0, b"abc")
    request = Request(Command.LOGOUT, bytes([Command.LOGOUT, 0]))
    assert session.send(request, 5) == (0, b"abc")
    thread.join(2)
    assert captured["payload"] == request.payload
    assert captured["header"].command == DSICommand.COMMAND
    assert session.stats.tx_bytes == HEADER_SIZE + len(request.payload)
    assert session.stats.requests_pending == 0


def test_send_returns_error_code(pair):
    session, server = pair
    thread, _ = _respond_once(server, -5000, b"")
    code, body = session.send(Request(Command.LOGOUT, bytes([Command.LOGOUT, 0])), 5)
    thread.join(2)
    assert (code, body) == (-5000, b"")


def test_send_times_out(pair):
    session, _server = pair
    with pytest.raises(TimeoutError):
        session.send(Request(Command.LOGOUT, bytes([Command.LOGOUT, 0])), 0.2)
    assert session.stats.requests_pending == 0


def test_send_without_waiting(pair):
    session, server = pair
    result = session.send(Request(0, b"", DSICommand.TICKLE), 0)
    header, payload = _read_packet(server)
    assert result == (0, b"")
    assert header.command == DSICommand.TICKLE
    assert payload == b""


def test_getstatus(pair):
    session, server = pair
    thread, captured = _respond_once(server, 0, _status_body())
    status = session.getstatus()
    thread.join(2)
    assert captured["header"].command == DSICommand.GET_STATUS
    assert status.server_name == "srv"
    assert session.status == status


def test_open_session_sets_tx_quantum(pair):
    session, server = pair
    thread, captured = _respond_once(server, 0, b"\x00\x04" + struct.pack(">I", 65536))
    assert session.open_session() == 65536
    thread.join(2)
    assert captured["payload"] == b"\x01\x04" + struct.pack(">I", session.attention_quantum)


def test_send_after_close_raises(pair):
    session, _server = pair
    session.close()
    assert session.connected is False
    with pytest.raises(ConnectionError):
        session.send(Request(Command.LOGOUT, bytes([Command.LOGOUT, 0])), 0)


def test_close_wakes_waiting_request(pair):
    session, _server = pair
    outcomes = []

    def call():
        try:
            outcomes.append(
                session.send(Request(Command.LOGOUT, bytes([Command.LOGOUT, 0])), 5)
            )
        except ConnectionError as exc:
            outcomes.append(exc)

    thread = threading.Thread(target=call)
    thread.start()
    deadline = time.time() + 2
    while session.stats.requests_pending == 0 and time.time() < deadline:
        time.sleep(0.01)
    session.close()
    thread.join(2)
    assert not thread.is_alive()
    assert len(outcomes) == 1
    assert isinstance(outcomes[0], ConnectionError)
    assert session.connected is False


def test_receive_eof_raises():
    client, server = socket.socketpair()
    session = DSISession(client)
    server.close()
    with pytest.raises(ConnectionError):
        session.receive()
    client.close()


def test_receive_counts_runt_packet():
    client, server = socket.socketpair()
    try:
        session = DSISession(client)
        server.sendall(DSIHeader(flags=DSI_REPLY, command=DSICommand.COMMAND,
                                 requestid=999, length=3).pack() + b"xyz")
        header = session.receive()
        assert header.requestid == 999
        assert session.stats.runt_packets == 1
    finally:
        client.close()
        server.close()


def test_receive_unknown_command_raises():
    client, server = socket.socketpair()
    try:
        session = DSISession(client)
        server.sendall(DSIHeader(flags=DSI_REQUEST, command=99, requestid=3).pack())
        with pytest.raises(ValueError):
            session.receive()
    finally:
        client.close()
        server.close()


def test_incoming_tickle_is_answered():
    client, server = socket.socketpair()
    server.settimeout(5)
    try:
        session = DSISession(client)
        server.sendall(DSIHeader(flags=DSI_REQUEST, command=DSICommand.TICKLE, requestid=4).pack())
        session.receive()
        header, _ = _read_packet(server)
        assert header.command == DSICommand.TICKLE
        assert header.flags == DSI_REQUEST
    finally:
        client.close()
        server.close()


def test_incoming_close_session_disconnects():
    client, server = socket.socketpair()
    try:
        session = DSISession(client)
        server.sendall(DSIHeader(flags=DSI_REQUEST, command=DSICommand.CLOSE_SESSION,
                                 requestid=5).pack())
        session.receive()
        assert session.connected is False
    finally:
        server.close()


def _attention(flags=None):
    if flags is None:
        return DSIHeader(command=DSICommand.ATTENTION, requestid=9).pack()
    return DSIHeader(command=DSICommand.ATTENTION, requestid=9, length=2).pack() + struct.pack(">H", flags)


def test_attention_shutdown_flag_disconnects():
    client, server = socket.socketpair()
    try:
        session = DSISession(client)
        assert session.handle_attention(_attention(ATTN_SHUTDOWN | 5)) is True
        assert session.connected is False
    finally:
        server.close()


def test_attention_maintenance_message_disconnects():
    client, server = socket.socketpair()
    try:
        session = DSISession(client, message_fetcher=lambda: MAINTENANCE_MESSAGE)
        assert session.handle_attention(_attention()) is True
        assert session.connected is False
    finally:
        server.close()


def test_attention_plain_message_keeps_connection():
    client, server = socket.socketpair()
    try:
        seen = []
        session = DSISession(client, message_fetcher=lambda: seen.append(1) or "hello")
        assert session.handle_attention(_attention(ATTN_MESSAGE)) is False
        assert seen == [1]
        assert session.connected is True
    finally:
        client.close()
        server.close()