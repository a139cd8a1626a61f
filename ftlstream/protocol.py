"""Ingest control-protocol helpers: response parsing, HMAC challenge, state and status queue."""

from __future__ import annotations

import hashlib
import hmac
import re
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Any

MAX_INGEST_COMMAND_LEN = 512
INGEST_PORT = 8084
MAX_KEY_LEN = 100
VIDEO_PTYPE = 96
AUDIO_PTYPE = 97
SOCKET_RECV_TIMEOUT_MS = 5000
SOCKET_SEND_TIMEOUT_MS = 1000
KEEPALIVE_FREQUENCY_MS = 5000
KEEPALIVE_SEND_WARN_TOLERANCE_MS = 1000
STATUS_THREAD_SLEEP_TIME_MS = 500
MAX_PACKET_BUFFER = 1500
MAX_MTU = 1392
FTL_UDP_MEDIA_PORT = 8082
MAX_STATUS_MESSAGE_QUEUED = 10
VIDEO_RTP_TS_CLOCK_HZ = 90000
AUDIO_SAMPLE_RATE = 48000
AUDIO_PACKET_DURATION_MS = 20
PEAK_BITRATE_KBPS = 10000
HMAC_RESPONSE_BUFSIZE = 2048

_MEDIA_PORT_RE = re.compile(r"[^.]+\.\s*Use\s*UDP\s*port\s*([+-]?\d+)")
_INT_RE = re.compile(r"\s*([+-]?\d+)")


class StatusCode(IntEnum):
    SUCCESS = 0
    SOCKET_NOT_CONNECTED = 1
    MALLOC_FAILURE = 2
    DNS_FAILURE = 3
    CONNECT_ERROR = 4
    INTERNAL_ERROR = 5
    CONFIG_ERROR = 6
    STREAM_REJECTED = 7
    NOT_ACTIVE_STREAM = 8
    UNAUTHORIZED = 9
    AUDIO_SSRC_COLLISION = 10
    VIDEO_SSRC_COLLISION = 11
    BAD_REQUEST = 12
    OLD_VERSION = 13
    BAD_OR_INVALID_STREAM_KEY = 14
    UNSUPPORTED_MEDIA_TYPE = 15
    GAME_BLOCKED = 16
    NOT_CONNECTED = 17
    ALREADY_CONNECTED = 18
    UNKNOWN_ERROR_CODE = 19
    STATUS_TIMEOUT = 20
    QUEUE_FULL = 21
    STATUS_WAITING_FOR_KEY_FRAME = 22
    QUEUE_EMPTY = 23
    NOT_INITIALIZED = 24
    CHANNEL_IN_USE = 25
    REGION_UNSUPPORTED = 26
    NO_MEDIA_TIMEOUT = 27
    USER_DISCONNECT = 28
    INGEST_NO_RESPONSE = 29
    NO_PING_RESPONSE = 30
    SPEED_TEST_ABORTED = 31
    INGEST_SOCKET_CLOSED = 32
    INGEST_SOCKET_TIMEOUT = 33
    INGEST_SERVER_TERMINATE = 34


class ResponseCode(IntEnum):
    """Three-digit codes the ingest answers commands with, plus local pseudo-codes."""

    UNKNOWN = 0
    OK = 200
    PING = 201
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    OLD_VERSION = 402
    AUDIO_SSRC_COLLISION = 403
    VIDEO_SSRC_COLLISION = 404
    INVALID_STREAM_KEY = 405
    CHANNEL_IN_USE = 406
    REGION_UNSUPPORTED = 407
    NO_MEDIA_TIMEOUT = 408
    GAME_BLOCKED = 409
    SERVER_TERMINATE = 410
    INTERNAL_SERVER_ERROR = 500
    INTERNAL_MEMORY_ERROR = 900
    INTERNAL_COMMAND_ERROR = 901
    INTERNAL_SOCKET_CLOSED = 902
    INTERNAL_SOCKET_TIMEOUT = 903


class StateFlag(IntFlag):
    CONNECTED = 0x0001
    MEDIA_READY = 0x0002
    STATUS_QUEUE = 0x0004
    CXN_STATUS_THRD = 0x0008
    KEEPALIVE_THRD = 0x0010
    PING_THRD = 0x0020
    RX_THRD = 0x0040
    TX_THRD = 0x0080
    DISABLE_TX_PING_PKTS = 0x0100
    SPEED_TEST = 0x0200
    BITRATE_THRD = 0x0400
    DISCONNECT_IN_PROGRESS = 0x1000
    DISABLE_TX_SENDER_REPORT = 0x2000


class AudioCodec(IntEnum):
    NULL = 0
    OPUS = 1
    AAC = 2


class VideoCodec(IntEnum):
    NULL = 0
    VP8 = 1
    H264 = 2


class StatusType(IntEnum):
    NONE = 0
    LOG = 1
    EVENT = 2
    VIDEO_PACKETS = 3
    VIDEO_PACKETS_INSTANT = 4
    AUDIO_PACKETS = 5
    VIDEO = 6
    AUDIO = 7


class EventType(IntEnum):
    UNKNOWN = 0
    CONNECTED = 1
    DISCONNECTED = 2
    DESTROYED = 3


class EventReason(IntEnum):
    NONE = 0
    NO_MEDIA = 1
    API_REQUEST = 2
    UNKNOWN = 3


@dataclass
class StatusMessage:
    """A status notification delivered through the status queue."""

    type: StatusType
    event_type: EventType | None = None
    reason: EventReason | None = None
    error_code: StatusCode | None = None
    log_level: int | None = None
    text: str = ""
    stats: dict[str, Any] = field(default_factory=dict)


def _as_text(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("latin-1")
    return value


def read_response_code(text):
    """Return the leading integer of a response line, or -1 if it has none.

    A blank response yields 0.
    """
    text = _as_text(text)
    if not text.strip():
        return 0
    match = _INT_RE.match(text)
    return int(match.group(1)) if match else -1


def read_media_port(text):
    """Extract the port from "... . Use UDP port N", or -1 when absent."""
    match = _MEDIA_PORT_RE.match(_as_text(text))
    return int(match.group(1)) if match else -1


def decode_hex_char(c):
    """Value of one hex digit; letters beyond 'f' keep counting, others give 0."""
    code = ord(c) if isinstance(c, str) else int(c)
    if ord("0") <= code <= ord("9"):
        return code - ord("0")
    code = (code | 0x20) & 0xFF
    if ord("a") <= code <= ord("z"):
        return code - ord("a") + 10
    return 0


def decode_hex(text):
    """Decode a hex string pairwise with :func:`decode_hex_char`."""
    text = _as_text(text)
    if len(text) % 2:
        raise ValueError("hex string must have an even length")
    return bytes(
        ((decode_hex_char(hi) << 4) + decode_hex_char(lo)) & 0xFF
        for hi, lo in zip(text[::2], text[1::2])
    )


_AUDIO_NAMES = {AudioCodec.NULL: "", AudioCodec.OPUS: "OPUS", AudioCodec.AAC: "AAC"}
_VIDEO_NAMES = {VideoCodec.NULL: "", VideoCodec.VP8: "VP8", VideoCodec.H264: "H264"}


def audio_codec_name(codec):
    """Protocol name of an audio codec; empty for unknown codecs."""
    return _AUDIO_NAMES.get(codec, "")


def video_codec_name(codec):
    """Protocol name of a video codec; empty for unknown codecs."""
    return _VIDEO_NAMES.get(codec, "")


def recv_line(sock, bufsize=HMAC_RESPONSE_BUFSIZE, terminator=b"\n"):
    """Receive until the data read so far ends with ``terminator``.

    Returns b"" when the peer closes the connection or when ``bufsize`` bytes
    arrive without the terminator at their end. Socket errors propagate.
    """
    if isinstance(terminator, str):
        terminator = terminator.encode("latin-1")
    buf = bytearray()
    while True:
        remaining = bufsize - len(buf)
        if remaining <= 0:
            return b""
        chunk = sock.recv(remaining)
        if not chunk:
            return b""
        buf += chunk
        if buf.endswith(terminator):
            return bytes(buf)


def get_hmac(sock, auth_key):
    """Ask the ingest for its challenge and return the HMAC-SHA512 as hex.

    Returns None when the ingest gives no usable challenge.
    """
    sock.sendall(b"HMAC\r\n\r\n")
    response = recv_line(sock, HMAC_RESPONSE_BUFSIZE, b"\n")
    if len(response) < 4 or len(response) == HMAC_RESPONSE_BUFSIZE:
        return None
    if read_response_code(response) != ResponseCode.OK:
        return None

    hex_len = len(response) - 5  # strip "200 " and the newline
    if hex_len % 2:
        return None
    message = decode_hex(response[4:4 + hex_len])

    key = auth_key.encode() if isinstance(auth_key, str) else bytes(auth_key)
    return hmac.new(key, message, hashlib.sha512).hexdigest()


class StreamState:
    """Thread-safe set of :class:`StateFlag` bits."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = StateFlag(0)

    @property
    def value(self) -> StateFlag:
        with self._lock:
            return self._value

    def set(self, flag):
        with self._lock:
            self._value |= flag

    def clear(self, flag):
        with self._lock:
            self._value &= ~flag

    def is_set(self, flag):
        with self._lock:
            return bool(self._value & flag)


class StatusQueue:
    """Bounded FIFO of status messages; when full the oldest message is dropped."""

    def __init__(self, state):
        self._state = state
        self._lock = threading.Lock()
        self._items: deque[StatusMessage] = deque()
        self._count = 0
        self._ready = threading.Semaphore(0)
        self.thread_waiting = False

    def put(self, msg):
        """Queue ``msg``; returns QUEUE_FULL if the oldest message was dropped."""
        with self._lock:
            self._items.append(msg)
            if self._count >= MAX_STATUS_MESSAGE_QUEUED:
                self._items.popleft()
                return StatusCode.QUEUE_FULL
            self._count += 1
            self._ready.release()
            return StatusCode.SUCCESS

    def get(self, timeout_ms):
        """Wait up to ``timeout_ms`` (None waits forever) for the next message.

        Raises RuntimeError when the queue is not active, TimeoutError when
        nothing arrives in time and IndexError when the queue was emptied
        while waiting.
        """
        if not self._state.is_set(StateFlag.STATUS_QUEUE):
            raise RuntimeError("status queue is not initialized")

        self.thread_waiting = True
        timeout = None if timeout_ms is None else timeout_ms / 1000.0
        if not self._ready.acquire(timeout=timeout):
            raise TimeoutError("timed out waiting for status message")

        with self._lock:
            if not self._items:
                self.thread_waiting = False
                raise IndexError("status queue is empty")
            msg = self._items.popleft()
            self._count -= 1

        self.thread_waiting = False
        return msg

    def clear(self):
        """Discard every queued message."""
        with self._lock:
            self._items.clear()
            self._count = 0
            self._ready = threading.Semaphore(0)

    def __len__(self):
        with self._lock:
            return self._count