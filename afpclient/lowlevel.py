"""Volume-level file operations built on the AFP request builders."""

from __future__ import annotations

import errno
import os
import stat as _stat
import time
import unicodedata
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Callable, Dict, List, Optional, Tuple

from .directory import (
    build_enumerate,
    build_enumerateext2,
    parse_enumerate_reply,
    parse_enumerateext2_reply,
)
from .files import (
    build_createfile,
    build_getfiledirparms,
    build_read,
    build_readext,
    build_write,
    build_writeext,
    parse_getfiledirparms_reply,
    parse_read_reply,
)
from .fork import (
    build_byterangelock,
    build_byterangelockext,
    build_openfork,
    build_setforkparms,
    parse_openfork_reply,
)
from .forklist import OpenForks
from .protocol import (
    BYTERANGE_LOCK,
    BYTERANGE_UNLOCK,
    MAX_AFP2_FILESIZE,
    OPENFORK_ALLOW_READ,
    OPENFORK_ALLOW_WRITE,
    SOFT_CREATE,
    Bitmap,
    ErrorCode,
    Request,
)
from .replyblock import FileInfo

_O_LARGEFILE = getattr(os, "O_LARGEFILE", 0)
_O_DIRECT = getattr(os, "O_DIRECT", 0)
_O_SYNC = getattr(os, "O_SYNC", 0)

MAX_LOCK_TRIES = 10
REQUEST_BATCH = 20
DEFAULT_TIMEOUT = 5.0
DEFAULT_QUANTUM = 0x100000

SERVER_TYPE_UNKNOWN = 0
SERVER_TYPE_NETATALK = 1
SERVER_TYPE_AIRPORT = 2
SERVER_TYPE_MACINTOSH = 3

SUPPORTS_UTF8_NAMES = 0x0040


class VolumeFlags(IntFlag):
    """Client-side behaviour flags of a mounted volume."""

    NONE = 0
    VOL_SUPPORTS_UNIX = 0x01
    NO_LOCKING = 0x02
    IGNORE_UNIXPRIVS = 0x04
    VOL_CHMOD_KNOWN = 0x08
    VOL_CHMOD_BROKEN = 0x10


@dataclass
class Volume:
    """An open volume and the session its requests travel over.

    ``session`` is anything with ``send(request, wait) -> (code, body)``.
    """

    session: Any
    volid: int = 0
    version: int = 32
    server_type: int = SERVER_TYPE_UNKNOWN
    extra_flags: int = VolumeFlags.NONE
    attributes: int = 0
    rx_quantum: int = DEFAULT_QUANTUM
    tx_quantum: int = DEFAULT_QUANTUM
    readonly: bool = False
    volume_name: str = ""
    connect_time: int = 0
    timeout: Optional[float] = DEFAULT_TIMEOUT
    lock_retry_delay: float = 1.0
    uidgid_to_client: Optional[Callable[[int, int], Tuple[int, int]]] = None
    open_forks: OpenForks = field(default_factory=OpenForks)

    @property
    def utf8(self) -> bool:
        """Whether pathnames are sent as UTF-8 names."""
        return self.version >= 30

    def request(self, request: Request) -> Tuple[int, bytes]:
        """Send a request on the session and return ``(code, body)``."""
        return self.session.send(request, self.timeout)


@dataclass
class Stat:
    """File status in the shape of a stat structure."""

    mode: int = 0
    nlink: int = 0
    uid: int = 0
    gid: int = 0
    size: int = 0
    blksize: int = 0
    blocks: int = 0
    ctime: int = 0
    mtime: int = 0


def _oserror(code: int) -> OSError:
    return OSError(code, os.strerror(code))


def _check(code: int, table: Dict[int, int], default: Optional[int]) -> None:
    if code == ErrorCode.NO_ERR:
        return
    err = table.get(code, default)
    if err:
        raise _oserror(err)


def _nonunix_mode(isdir: bool) -> int:
    return (0o700 | _stat.S_IFDIR) if isdir else (0o600 | _stat.S_IFREG)


def _lock_request(volume: Volume, flag: int, forkid: int, offset: int, size: int) -> Request:
    if volume.version < 30:
        return build_byterangelock(flag, forkid, offset, size)
    return build_byterangelockext(flag, forkid, offset, size)


def handle_locking(volume: Volume, forkid: int, offset: int, size: int) -> None:
    """Lock a byte range, retrying while the server reports it busy.

    Raises OSError(EBUSY) on an unrecoverable locking error.
    """
    if volume.extra_flags & VolumeFlags.NO_LOCKING:
        return
    for _ in range(MAX_LOCK_TRIES):
        code, _body = volume.request(_lock_request(volume, BYTERANGE_LOCK, forkid, offset, size))
        if code == ErrorCode.NO_ERR:
            return
        if code in (ErrorCode.NO_MORE_LOCKS, ErrorCode.LOCK_ERR):
            time.sleep(volume.lock_retry_delay)
            continue
        raise _oserror(errno.EBUSY)


def handle_unlocking(volume: Volume, forkid: int, offset: int, size: int) -> None:
    """Unlock a byte range; raises OSError(EIO) if the server refuses."""
    if volume.extra_flags & VolumeFlags.NO_LOCKING:
        return
    code, _body = volume.request(_lock_request(volume, BYTERANGE_UNLOCK, forkid, offset, size))
    if code != ErrorCode.NO_ERR:
        raise _oserror(errno.EIO)


_ZERO_ERRORS = {
    ErrorCode.ACCESS_DENIED: errno.EACCES,
    ErrorCode.VOL_LOCKED: errno.EBUSY,
    ErrorCode.LOCK_ERR: errno.EBUSY,
    ErrorCode.DISK_FULL: errno.ENOSPC,
    ErrorCode.BITMAP_ERR: errno.EIO,
    ErrorCode.MISC_ERR: errno.EIO,
    ErrorCode.PARAM_ERR: errno.EIO,
}


def zero_file(volume: Volume, forkid: int, resource: bool) -> None:
    """Truncate a fork to zero bytes."""
    # Some servers crash on the short length bits, others reject the long ones.
    if volume.version < 30 or volume.server_type == SERVER_TYPE_NETATALK:
        bitmap = Bitmap.RSRC_FORK_LEN if resource else Bitmap.DATA_FORK_LEN
    else:
        bitmap = Bitmap.EXT_RSRC_FORK_LEN if resource else Bitmap.EXT_DATA_FORK_LEN
    code, _body = volume.request(build_setforkparms(forkid, int(bitmap), 0))
    _check(code, _ZERO_ERRORS, None)


def get_directory_entry(
    volume: Volume, basename: str, dirid: int, filebitmap: int, dirbitmap: int
) -> FileInfo:
    """Fetch the parameters of one entry; raises AFPError on a server error."""
    code, body = volume.request(
        build_getfiledirparms(volume.volid, dirid, filebitmap, dirbitmap, basename, volume.utf8)
    )
    info = parse_getfiledirparms_reply(code, body)
    info.basename = basename
    return info


def _entry_code(volume: Volume, basename: str, dirid: int, filebitmap: int,
                dirbitmap: int) -> Tuple[int, Optional[FileInfo]]:
    code, body = volume.request(
        build_getfiledirparms(volume.volid, dirid, filebitmap, dirbitmap, basename, volume.utf8)
    )
    if code != ErrorCode.NO_ERR:
        return code, None
    info = parse_getfiledirparms_reply(code, body)
    info.basename = basename
    return code, info


_ENTRY_ERRORS = {
    ErrorCode.ACCESS_DENIED: errno.EACCES,
    ErrorCode.OBJECT_NOT_FOUND: errno.ENOENT,
}

_OPEN_ERRORS = {
    ErrorCode.ACCESS_DENIED: errno.EACCES,
    ErrorCode.OBJECT_NOT_FOUND: errno.ENOENT,
    ErrorCode.OBJECT_LOCKED: errno.EROFS,
    ErrorCode.OBJECT_TYPE_ERR: errno.EISDIR,
    ErrorCode.PARAM_ERR: errno.EACCES,
    ErrorCode.TOO_MANY_FILES_OPEN: errno.EMFILE,
}


def open_fork(volume: Volume, dirid: int, basename: str, flags: int, resource: bool) -> FileInfo:
    """Open the data or resource fork of a file according to os.open ``flags``."""
    aflags = OPENFORK_ALLOW_READ
    if flags & os.O_WRONLY:
        aflags |= OPENFORK_ALLOW_WRITE
    if flags & os.O_RDWR:
        aflags |= OPENFORK_ALLOW_READ | OPENFORK_ALLOW_WRITE

    if (aflags & OPENFORK_ALLOW_WRITE) and volume.readonly:
        raise _oserror(errno.EPERM)

    fp = FileInfo(basename=basename, did=dirid, resource=bool(resource))
    fp.sync = bool(flags & (_O_SYNC | _O_DIRECT))

    large = (flags & _O_LARGEFILE) if _O_LARGEFILE else True
    if large and volume.version < 30:
        lenbit = Bitmap.RSRC_FORK_LEN if resource else Bitmap.DATA_FORK_LEN
        code, info = _entry_code(
            volume, basename, dirid,
            int(Bitmap.PARENT_DIR_ID | Bitmap.NODE_ID | lenbit), 0,
        )
        _check(code, _ENTRY_ERRORS, errno.EIO)
        assert info is not None
        # Servers without large-file support report such files as 4GB-1.
        length = info.resourcesize if resource else info.size
        if length >= MAX_AFP2_FILESIZE - 1:
            raise _oserror(errno.EOVERFLOW)

    created = False
    while True:
        code, body = volume.request(
            build_openfork(1 if resource else 0, volume.volid, dirid, aflags, basename,
                           volume.utf8)
        )
        if code == ErrorCode.OBJECT_NOT_FOUND and flags & os.O_CREAT and not created:
            created = True
            ccode, _ = volume.request(
                build_createfile(SOFT_CREATE, volume.volid, dirid, basename, volume.utf8)
            )
            if ccode == ErrorCode.NO_ERR:
                continue
            raise _oserror(errno.ENOENT)
        break
    _check(code, _OPEN_ERRORS, errno.EFAULT)
    fp.forkid = parse_openfork_reply(code, body)
    volume.open_forks.add(fp)

    if flags & os.O_TRUNC:
        zero_file(volume, fp.forkid, fp.resource)
    return fp


_READ_ERRORS = {
    ErrorCode.ACCESS_DENIED: errno.EACCES,
    ErrorCode.LOCK_ERR: errno.EBUSY,
    ErrorCode.MISC_ERR: errno.EIO,
    ErrorCode.PARAM_ERR: errno.EIO,
}


def read(volume: Volume, fp: FileInfo, size: int, offset: int) -> Tuple[bytes, bool]:
    """Read up to ``size`` bytes at ``offset``; return ``(data, eof)``."""
    bufsize = min(volume.rx_quantum, size)
    handle_locking(volume, fp.forkid, offset, size)
    if volume.version < 30:
        request = build_read(fp.forkid, offset, size)
    else:
        request = build_readext(fp.forkid, offset, size)
    code, body = volume.request(request)
    handle_unlocking(volume, fp.forkid, offset, size)
    if code in _READ_ERRORS:
        raise _oserror(_READ_ERRORS[code])
    eof = code == ErrorCode.EOF_ERR
    data = parse_read_reply(body, volume.rx_quantum)[:bufsize]
    return data, eof


_READDIR_EIO = (
    ErrorCode.BITMAP_ERR,
    ErrorCode.MISC_ERR,
    ErrorCode.OBJECT_TYPE_ERR,
    ErrorCode.PARAM_ERR,
    ErrorCode.CALL_NOT_SUPPORTED,
)


def readdir(volume: Volume, dirid: int, basename: str, resource: bool = False) -> List[FileInfo]:
    """List every entry of a directory, fetching them in batches."""
    common = (Bitmap.ATTRIBUTE | Bitmap.PARENT_DIR_ID | Bitmap.CREATE_DATE
              | Bitmap.MOD_DATE | Bitmap.BACKUP_DATE | Bitmap.NODE_ID)
    filebitmap = int(common)
    dirbitmap = int(common | Bitmap.OFFSPRING_COUNT | Bitmap.OWNER_ID | Bitmap.GROUP_ID)
    if volume.extra_flags & VolumeFlags.VOL_SUPPORTS_UNIX:
        filebitmap |= Bitmap.UNIX_PRIVS
        dirbitmap |= Bitmap.UNIX_PRIVS
    if volume.attributes & SUPPORTS_UTF8_NAMES:
        filebitmap |= Bitmap.UTF8_NAME
        dirbitmap |= Bitmap.UTF8_NAME
    else:
        filebitmap |= Bitmap.LONG_NAME | Bitmap.SHORT_NAME
        dirbitmap |= Bitmap.LONG_NAME | Bitmap.SHORT_NAME
    if volume.version < 30:
        filebitmap |= Bitmap.RSRC_FORK_LEN if resource else Bitmap.DATA_FORK_LEN
    else:
        filebitmap |= Bitmap.RSRC_FORK_LEN if resource else Bitmap.EXT_DATA_FORK_LEN

    entries: List[FileInfo] = []
    startindex = 1
    while True:
        if volume.version < 30:
            request = build_enumerate(volume.volid, dirid, filebitmap, dirbitmap,
                                      REQUEST_BATCH, startindex, basename, volume.utf8)
            parse = parse_enumerate_reply
        else:
            request = build_enumerateext2(volume.volid, dirid, filebitmap, dirbitmap,
                                          REQUEST_BATCH, startindex, basename, volume.utf8)
            parse = parse_enumerateext2_reply
        code, body = volume.request(request)
        if code == ErrorCode.NO_ERR:
            batch = parse(code, body)
            if not batch:
                break
            entries.extend(batch)
            startindex += len(batch)
            continue
        if code in (ErrorCode.OBJECT_NOT_FOUND, ErrorCode.DIR_NOT_FOUND):
            break
        if code == ErrorCode.ACCESS_DENIED:
            raise _oserror(errno.EACCES)
        raise _oserror(errno.EIO)

    for entry in entries:
        entry.name = unicodedata.normalize("NFC", entry.name)
        if volume.version < 30:
            entry.unixprivs.permissions = _nonunix_mode(entry.isdir)
    return entries


def getattr(volume: Volume, dirid: int, basename: str, is_root: bool = False,
            resource: bool = False) -> Stat:
    """Return the status of a file or directory."""
    dirbitmap = int(Bitmap.ATTRIBUTE | Bitmap.CREATE_DATE | Bitmap.MOD_DATE
                    | Bitmap.NODE_ID | Bitmap.PARENT_DIR_ID | Bitmap.OFFSPRING_COUNT)
    filebitmap = int(Bitmap.ATTRIBUTE | Bitmap.CREATE_DATE | Bitmap.MOD_DATE
                     | Bitmap.NODE_ID | Bitmap.FINDER_INFO | Bitmap.PARENT_DIR_ID)
    if volume.version < 30:
        if is_root:
            # AFP 2.x refers to the root as a file named after the volume.
            basename = volume.volume_name
            dirid = 1
        filebitmap |= Bitmap.RSRC_FORK_LEN if resource else Bitmap.DATA_FORK_LEN
    else:
        filebitmap |= Bitmap.EXT_RSRC_FORK_LEN if resource else Bitmap.EXT_DATA_FORK_LEN

    if volume.extra_flags & VolumeFlags.VOL_SUPPORTS_UNIX:
        dirbitmap |= Bitmap.UNIX_PRIVS
        filebitmap |= Bitmap.UNIX_PRIVS
    else:
        dirbitmap |= Bitmap.OWNER_ID | Bitmap.GROUP_ID

    code, fp = _entry_code(volume, basename, dirid, filebitmap, dirbitmap)
    _check(code, _ENTRY_ERRORS, errno.EIO)
    assert fp is not None

    st = Stat()
    if volume.version >= 30 and fp.unixprivs.permissions != 0:
        st.mode = fp.unixprivs.permissions
    else:
        st.mode = _nonunix_mode(fp.isdir)

    uid, gid = fp.unixprivs.uid, fp.unixprivs.gid
    if volume.uidgid_to_client is not None:
        try:
            uid, gid = volume.uidgid_to_client(uid, gid)
        except (KeyError, ValueError, LookupError) as exc:
            raise _oserror(errno.EIO) from exc
    st.uid, st.gid = uid, gid

    isdir = bool(st.mode & _stat.S_IFDIR)
    if isdir:
        st.nlink = fp.offspring + 2
        st.size = fp.offspring * 34 + 24
    else:
        st.nlink = 1
        st.size = fp.resourcesize if resource else fp.size
        st.blksize = 4096
        st.blocks = st.size // 4096

    if volume.version < 30 and isdir:
        # AFP 2.x gives no dates for directories.
        st.ctime = st.mtime = volume.connect_time
    else:
        st.ctime = fp.creation_date
        st.mtime = fp.modification_date
    return st


def write(volume: Volume, fp: Optional[FileInfo], data: bytes, offset: int) -> int:
    """Write ``data`` at ``offset`` in packets of at most the transmit quantum.

    Returns the number of bytes sent.
    """
    if fp is None:
        raise _oserror(errno.EBADF)
    if volume.tx_quantum <= 0:
        raise ValueError("transmit quantum must be positive")
    data = bytes(data)
    size = len(data)
    handle_locking(volume, fp.forkid, offset, size)
    written = 0
    while written < size:
        chunk = data[written:written + volume.tx_quantum]
        if volume.version < 30:
            request = build_write(fp.forkid, offset + written, chunk)
        else:
            request = build_writeext(fp.forkid, offset + written, chunk)
        volume.request(request)
        written += len(chunk)
    handle_unlocking(volume, fp.forkid, offset, size)
    return written