"""DSI session layer: framing, request tracking and server status parsing."""

from __future__ import annotations

import socket
import struct
import threading
import unicodedata
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .log import log_for_client
from .protocol import DSICommand, Request

HEADER_SIZE = 16
DSI_REQUEST = 0
DSI_REPLY = 1

MAX_VERSIONS = 10
MAX_UAMS = 10
MACHINE_TYPE_LEN = 33
SERVER_NAME_LEN = 33
SERVER_NAME_UTF8_LEN = 255
SIGNATURE_LEN = 16
ICON_LEN = 256

DEFAULT_ATTENTION_QUANTUM = 1024
DEFAULT_TX_QUANTUM = 0x100000
GETSTATUS_WAIT = 60
OPEN_SESSION_WAIT = 1

# Server flags reported by GetStatus.
SUPPORTS_COPYFILE = 0x0001
SUPPORTS_CHG_PWD = 0x0002
DONT_ALLOW_SAVE_PWD = 0x0004
SUPPORTS_SRVR_MSG = 0x0008
SRVR_SIG = 0x0010
SUPPORTS_TCP = 0x0020
SUPPORTS_SRVR_NOTIFY = 0x0040
SUPPORTS_RECONNECT = 0x0080
SUPPORTS_DIR_SERVICES = 0x0100
SUPPORTS_UTF8_SRVR_NAME = 0x0200

# Attention flags.
ATTN_SHUTDOWN = 0x8000
ATTN_CRASH = 0x4000
ATTN_MESSAGE = 0x2000
ATTN_DONT_RECONNECT = 0x1000

MAINTENANCE_MESSAGE = "The server is going down for maintenance."

_LOG_SOURCE = 0
_LOG_ERR = 3
_LOG_WARNING = 4

_HEADER = struct.Struct(">BBHIII")
_STATUS_FIXED = struct.Struct(">HHHHH")


@dataclass
class DSIHeader:
    """The 16-byte header that starts every DSI packet.

    ``code`` is the error code in replies and the data offset in requests.
    """

    flags: int = DSI_REQUEST
    command: int = 0
    requestid: int = 0
    code: int = 0
    length: int = 0
    reserved: int = 0

    def pack(self) -> bytes:
        """Encode the header in network byte order."""
        return _HEADER.pack(
            self.flags,
            int(self.command),
            self.requestid & 0xFFFF,
            self.code & 0xFFFFFFFF,
            self.length,
            self.reserved,
        )


def unpack_header(data: bytes) -> DSIHeader:
    """Decode a DSI header from the start of ``data``."""
    if len(data) < HEADER_SIZE:
        raise ValueError("DSI packet too small")
    flags, command, requestid, code, length, reserved = _HEADER.unpack_from(data)
    if code >= 0x80000000:
        code -= 0x100000000
    return DSIHeader(flags, command, requestid, code, length, reserved)


@dataclass
class ServerStatus:
    """What a server reports about itself in a GetStatus reply."""

    machine_type: str = ""
    versions: List[str] = field(default_factory=list)
    uams: List[str] = field(default_factory=list)
    icon: bytes = b""
    flags: int = 0
    server_name: str = ""
    signature: bytes = b""
    server_name_utf8: str = ""
    server_name_printable: str = ""


def _pascal_raw(data: bytes, offset: int) -> bytes:
    if offset < 0 or offset >= len(data):
        raise ValueError("string offset out of range")
    length = data[offset]
    return bytes(data[offset + 1:offset + 1 + length])


def _pascal_list(data: bytes, limit: int) -> List[str]:
    data = bytes(data)
    if not data:
        raise ValueError("empty list")
    count = min(data[0], limit)
    names = []
    pos = 1
    for _ in range(count):
        raw = _pascal_raw(data, pos)
        names.append(raw.decode("mac_roman"))
        pos += data[pos] + 1
    return names


def parse_versions(data: bytes) -> List[str]:
    """Decode a counted list of AFP version names."""
    return _pascal_list(data, MAX_VERSIONS)


def parse_uams(data: bytes) -> List[str]:
    """Decode a counted list of authentication method names."""
    return _pascal_list(data, MAX_UAMS)


def parse_getstatus(data: bytes) -> ServerStatus:
    """Decode the body of a GetStatus reply."""
    data = bytes(data)
    if len(data) < _STATUS_FIXED.size + 8:
        raise ValueError("incomplete data for getstatus")
    try:
        machine_off, version_off, uams_off, icon_off, flags = _STATUS_FIXED.unpack_from(data)
        status = ServerStatus(flags=flags)
        status.machine_type = _pascal_raw(data, machine_off)[:MACHINE_TYPE_LEN].decode("mac_roman")
        status.versions = parse_versions(data[version_off:])
        status.uams = parse_uams(data[uams_off:])
        if icon_off:
            status.icon = data[icon_off:icon_off + ICON_LEN]

        pos = _STATUS_FIXED.size
        raw_name = _pascal_raw(data, pos)
        status.server_name = raw_name[:SERVER_NAME_LEN].decode("mac_roman")
        pos += len(raw_name) + 1
        if pos & 1:
            pos += 1

        (sig_off,) = struct.unpack_from(">H", data, pos)
        status.signature = data[sig_off:sig_off + SIGNATURE_LEN]
        pos += 2
        if flags & SUPPORTS_TCP:
            pos += 2
        if flags & SUPPORTS_DIR_SERVICES:
            pos += 2
        if flags & SUPPORTS_UTF8_SRVR_NAME:
            (utf8_off,) = struct.unpack_from(">H", data, pos)
            start = utf8_off + 1
            raw = _pascal_raw(data, start)
            if not raw:
                # Some servers place the name one byte further on.
                raw = _pascal_raw(data, start + 1)
            status.server_name_utf8 = raw[:SERVER_NAME_UTF8_LEN].decode("utf-8", "replace")
            status.server_name_printable = unicodedata.normalize("NFC", status.server_name_utf8)
        else:
            status.server_name_printable = status.server_name
    except struct.error as exc:
        raise ValueError("truncated getstatus reply") from exc
    return status


@dataclass
class _Pending:
    requestid: int
    subcommand: int
    event: threading.Event = field(default_factory=threading.Event)
    code: int = 0
    body: bytes = b""
    error: Optional[BaseException] = None


@dataclass
class _Stats:
    tx_bytes: int = 0
    rx_bytes: int = 0
    requests_pending: int = 0
    runt_packets: int = 0


class DSISession:
    """A DSI connection to an AFP server over a connected stream socket.

    One thread calls :meth:`receive` repeatedly; any thread may call
    :meth:`send`, which waits for the matching reply.
    """

    def __init__(
        self,
        sock: socket.socket,
        *,
        attention_quantum: int = DEFAULT_ATTENTION_QUANTUM,
        message_fetcher: Optional[Callable[[], str]] = None,
    ) -> None:
        self._sock = sock
        self.attention_quantum = attention_quantum
        self.tx_quantum = DEFAULT_TX_QUANTUM
        self.status: Optional[ServerStatus] = None
        self.connected = True
        self.last_request_id = 0
        self.stats = _Stats()
        self._message_fetcher = message_fetcher
        self._closed = False
        self._id_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending: Dict[int, _Pending] = {}

    def next_request_id(self) -> int:
        """Allocate the next request id, wrapping from 65535 to 0."""
        with self._id_lock:
            if self.last_request_id >= 0xFFFF:
                self.last_request_id = 0
            else:
                self.last_request_id += 1
            return self.last_request_id

    def send(self, request: Request, wait: Optional[float] = None) -> Tuple[int, bytes]:
        """Send a request and return ``(code, body)`` of its reply.

        ``wait`` is None (or negative) to wait forever, 0 not to wait at
        all, or a number of seconds.  A timed-out wait raises TimeoutError.
        """
        if not self.connected:
            raise ConnectionError("not connected to the server")
        requestid = self.next_request_id()
        header = DSIHeader(
            flags=DSI_REQUEST,
            command=request.dsi_command,
            requestid=requestid,
            code=request.data_offset,
            length=len(request.payload),
        )
        pending = _Pending(requestid, int(request.subcommand))
        with self._pending_lock:
            self._pending[requestid] = pending
            self.stats.requests_pending += 1
        try:
            packet = header.pack() + bytes(request.payload)
            with self._send_lock:
                try:
                    self._sock.sendall(packet)
                except OSError as exc:
                    self.connected = False
                    raise ConnectionError("the server has closed the connection") from exc
                self.stats.tx_bytes += len(packet)
            if wait == 0:
                return pending.code, pending.body
            timeout = None if wait is None or wait < 0 else wait
            if not pending.event.wait(timeout):
                raise TimeoutError(f"no reply to request {requestid}")
            if pending.error is not None:
                raise pending.error
            return pending.code, pending.body
        finally:
            with self._pending_lock:
                if self._pending.pop(requestid, None) is not None:
                    self.stats.requests_pending -= 1

    def _recv_exact(self, count: int) -> bytes:
        buf = bytearray()
        while len(buf) < count:
            try:
                chunk = self._sock.recv(count - len(buf))
            except OSError as exc:
                raise ConnectionError("error reading from the server") from exc
            if not chunk:
                raise ConnectionError("connection closed by the server")
            buf += chunk
            self.stats.rx_bytes += len(chunk)
        return bytes(buf)

    def receive(self) -> DSIHeader:
        """Read one whole packet from the server, handle it and return its header."""
        raw = self._recv_exact(HEADER_SIZE)
        header = unpack_header(raw)
        body = self._recv_exact(header.length) if header.length else b""

        with self._pending_lock:
            request = self._pending.get(header.requestid)
        if request is None and header.flags == DSI_REPLY:
            log_for_client(None, _LOG_SOURCE, _LOG_ERR,
                           "I have no idea what this is a reply to, id %d.", header.requestid)
            self.stats.runt_packets += 1
            return header

        command = header.command
        if command == DSICommand.CLOSE_SESSION:
            self.close()
        elif command == DSICommand.GET_STATUS:
            try:
                self.status = parse_getstatus(body)
            except ValueError as exc:
                log_for_client(None, _LOG_SOURCE, _LOG_ERR, "Bad getstatus reply: %s", exc)
        elif command == DSICommand.OPEN_SESSION:
            if len(body) >= 6:
                (self.tx_quantum,) = struct.unpack_from(">I", body, 2)
            else:
                log_for_client(None, _LOG_SOURCE, _LOG_WARNING, "Short opensession reply")
        elif command == DSICommand.TICKLE:
            self.tickle()
        elif command in (DSICommand.COMMAND, DSICommand.WRITE):
            pass
        elif command == DSICommand.ATTENTION:
            threading.Thread(target=self.handle_attention, args=(raw + body,), daemon=True).start()
        else:
            log_for_client(None, _LOG_SOURCE, _LOG_ERR, "Unknown DSI command %i", command)
            raise ValueError(f"unknown DSI command {command}")

        if request is not None:
            request.code = header.code
            request.body = body
            request.event.set()
        return header

    def getstatus(self) -> Optional[ServerStatus]:
        """Ask the server for its status and return what it reported."""
        self.send(Request(0, b"", DSICommand.GET_STATUS), GETSTATUS_WAIT)
        return self.status

    def open_session(self) -> int:
        """Open the DSI session, advertising our attention quantum; return the server's quantum."""
        payload = struct.pack(">BBI", 1, 4, self.attention_quantum)
        try:
            self.send(Request(0, payload, DSICommand.OPEN_SESSION), OPEN_SESSION_WAIT)
        except TimeoutError:
            pass
        return self.tx_quantum

    def tickle(self) -> None:
        """Send a keep-alive tickle without waiting for an answer."""
        self.send(Request(0, b"", DSICommand.TICKLE), 0)

    def handle_attention(self, data: bytes) -> bool:
        """Handle an attention packet; return True if the server is going down."""
        header = unpack_header(data)
        body = bytes(data[HEADER_SIZE:])
        shutdown = False
        check_message = False
        minutes = 0
        if header.length >= 2 and len(body) >= 2:
            (flags,) = struct.unpack_from(">H", body)
            if flags & ATTN_MESSAGE:
                check_message = True
            if flags & (ATTN_CRASH | ATTN_SHUTDOWN):
                shutdown = True
            minutes = flags & 0xFF
        else:
            check_message = True

        if check_message and self._message_fetcher is not None:
            message = self._message_fetcher() or ""
            if message.startswith(MAINTENANCE_MESSAGE):
                shutdown = True

        if shutdown:
            log_for_client(None, _LOG_SOURCE, _LOG_ERR,
                           "Got a shutdown notice in packet %d, going down in %d mins",
                           header.requestid, minutes)
            self.close()
        return shutdown

    def close(self) -> None:
        """Drop the connection and fail every request still waiting."""
        self.connected = False
        if not self._closed:
            self._closed = True
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self._sock.close()
        with self._pending_lock:
            waiting = list(self._pending.values())
        for pending in waiting:
            if not pending.event.is_set():
                pending.error = ConnectionError("connection closed")
                pending.event.set()