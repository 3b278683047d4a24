# afpclient

Pure-Python building blocks for talking to an Apple Filing Protocol (AFP)
server over the Data Stream Interface (DSI) transport. No third-party
dependencies; Python 3.10 or later.

## Layout

- `afpclient.protocol` – command codes (`Command`, `DSICommand`), parameter
  bitmap bits (`Bitmap`), result codes (`ErrorCode`), the `AFPError`
  exception, the `Request` value that every builder returns, AFP/Unix date
  conversion (`ad_date_to_unix`, `ad_date_from_unix`), Pascal-string helpers
  (`pack_pascal`, `unpack_pascal`, `unpack_pascal_two`) and `encode_path`.
- `afpclient.replyblock` – `FileInfo`, `UnixPrivs` and `parse_reply_block`,
  which decodes a file/directory parameter block according to a bitmap.
- Request builders and reply parsers, one module per area:
  - `afpclient.files` – set/get parameters, delete, create, read, write;
  - `afpclient.fork` – open, close, flush, set fork length, byte-range locks;
  - `afpclient.directory` – move-and-rename, rename, create directory,
    enumerate (`parse_enumerate_reply`, `parse_enumerateext2_reply`);
  - `afpclient.desktop` – desktop database, icons and comments;
  - `afpclient.extattr` – extended attributes;
  - `afpclient.login` – login, login continuation, logout, password change;
  - `afpclient.usermap` – user info and name/ID mapping.
- `afpclient.dsi` – `DSIHeader`, `unpack_header`, `parse_getstatus` (into a
  `ServerStatus`) and `DSISession`, which frames and numbers requests, matches
  replies to the requests waiting for them, answers tickles and handles
  attention packets.
- `afpclient.lowlevel` – a `Volume` and the operations `open_fork`, `read`,
  `write`, `readdir`, `getattr` (returning a `Stat`), `zero_file`,
  `get_directory_entry`, `handle_locking` and `handle_unlocking`. AFP result
  codes are turned into `OSError`s carrying the matching `errno`
  (`get_directory_entry` raises `AFPError` instead).
- `afpclient.forklist` – `OpenForks`, the thread-safe record of forks a
  volume has open.
- `afpclient.mapping` – names of user/group mapping modes.
- `afpclient.log` – `log_for_client` and a replaceable handler.

## A session

`DSISession` works over a connected stream socket. One thread must call
`receive()` over and over; `send(request, wait)` returns `(code, body)` of the
matching reply (`wait` in seconds, `None` to wait forever, `0` not to wait).

```python
import socket
import threading

from afpclient.dsi import DSISession
from afpclient.login import build_login

sock = socket.create_connection(("afp.example.com", 548))
session = DSISession(sock)

def pump():
    try:
        while session.connected:
            session.receive()
    except ConnectionError:
        pass

threading.Thread(target=pump, daemon=True).start()

session.open_session()
code, body = session.send(build_login("AFP3.3", "No User Authent"), 5)
```

## Volume operations

`Volume` needs a session (anything with `send(request, wait)`) and the id of
a volume that is already open on the server:

```python
from afpclient.lowlevel import Volume, readdir, getattr

volume = Volume(session, volid=1, version=32)
for entry in readdir(volume, 2, ""):
    print(entry.name, entry.isdir, entry.size)
st = getattr(volume, 2, "notes.txt")
```

## Decoding a parameter block

```python
from afpclient.protocol import Bitmap
from afpclient.replyblock import parse_reply_block

info = parse_reply_block(
    block,
    isdir=False,
    filebitmap=Bitmap.NODE_ID | Bitmap.EXT_DATA_FORK_LEN,
    dirbitmap=0,
)
print(info.fileid, info.size)
```

## Mapping names and logging

```python
from afpclient.mapping import map_string_to_num, mapping_name
from afpclient.log import set_log_handler

assert map_string_to_num("login ids") == 2
print(mapping_name(2))  # "Login ids"

set_log_handler(lambda priv, level, logtype, message: my_logger.info(message))
```

By default log messages are printed to standard output.

## What is not here

- No filesystem mount and no command-line client.
- No authentication methods: `build_login` and `build_logincont` carry
  whatever user authentication bytes you give them.
- No requests for opening volumes or querying volume and server parameters,
  and no resolution of Unix paths to directory ids; `lowlevel` functions take
  a directory id and a name within it.
- No connecting, reconnecting or background receive loop; you supply the
  socket and the thread that calls `DSISession.receive`.

## Running the tests

```
pip install afpclient[test]
pytest
```