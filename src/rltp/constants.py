from __future__ import annotations

VERSION = 1
HEADER_FORMAT = "!BB"  # version, kind

DATA = 0
ACK = 1

NAME_LEN = 32  # on the wire, NUL padded; 31 usable bytes
LINE_LEN = 256  # on the wire, NUL padded; 255 usable bytes
MAX_LINES_PER_PACKET = 3

DATA_FORMAT = HEADER_FORMAT + f"{NAME_LEN}sii" + f"{LINE_LEN}s" * MAX_LINES_PER_PACKET + "i"
ACK_FORMAT = HEADER_FORMAT + "i"

END_ITEM = "END"

# reserved acked values; ordinary sequence numbers are never negative
ACK_UPLOAD_DONE = -2
ACK_DOWNLOAD_DONE = -1

DEFAULT_PORT = 7777
DEFAULT_TIMEOUT_MS = 500
DEFAULT_GRACE_MS = 1000

DEFAULT_ARTIFACT = "combined.txt"
DEFAULT_OUTPUT = "combined_from_server.txt"
