from __future__ import annotations

SHA1_LEN = 20
HEADER_FORMAT = "!4sBHII"  # magic, version, name_len, block_number, declared_size
MAGIC = b"\x00CSB"
VERSION = 1

# largest payload a single IPv4 UDP datagram can carry
MAX_DATAGRAM_SIZE = 65507

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024
DEFAULT_SERVER_PORT = 8888
DEFAULT_CLIENT_PORT = 5678
DEFAULT_SCAN_INTERVAL_S = 5.0
DEFAULT_REPORT_INTERVAL_S = 10.0

# receive timeout used only to re-check stop flags between blocking reads
DEFAULT_POLL_TIMEOUT_MS = 500
