"""Public ingest API: stream-key parsing, status strings and the ingest handle."""

from __future__ import annotations

import logging
import re
import struct
import time
from dataclasses import dataclass
from enum import IntEnum

from .handshake import ControlConnection, IngestError, StreamConfig
from .protocol import (
    AUDIO_PACKET_DURATION_MS,
    MAX_KEY_LEN,
    AudioCodec,
    EventReason,
    EventType,
    StateFlag,
    StatusCode,
    StatusMessage,
    StatusQueue,
    StatusType,
    StreamState,
    VideoCodec,
)

log = logging.getLogger(__name__)

FTL_VERSION_MAJOR = 0
FTL_VERSION_MINOR = 9
FTL_VERSION_MAINTENANCE = 14

VENDOR_FIELD_LEN = 50
_RESTREAM_PREFIX = "re_"
_KEY_SEPARATORS = "-,_"
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_DESTROY_WAIT_RETRIES = 5
_DESTROY_WAIT_S = 0.02


class MediaType(IntEnum):
    AUDIO_DATA = 0
    VIDEO_DATA = 1


@dataclass
class IngestParams:
    """What the caller supplies to create an ingest handle."""

    stream_key: str
    ingest_hostname: str
    video_codec: VideoCodec = VideoCodec.H264
    audio_codec: AudioCodec = AudioCodec.OPUS
    fps_num: int = 30
    fps_den: int = 1
    peak_kbps: int = 0
    vendor_name: str = ""
    vendor_version: str = ""


_STATUS_STRINGS = {
    StatusCode.SUCCESS: "Success",
    StatusCode.SOCKET_NOT_CONNECTED: "The socket is no longer connected",
    StatusCode.MALLOC_FAILURE: "Internal memory allocation error",
    StatusCode.DNS_FAILURE: (
        "Failed to get an ip address for the specified ingest (DNS lookup failure)"
    ),
    StatusCode.CONNECT_ERROR: "An unknown error occurred connecting to the socket",
    StatusCode.INTERNAL_ERROR: "An Internal error occurred",
    StatusCode.CONFIG_ERROR: "The parameters supplied are invalid or incomplete",
    StatusCode.STREAM_REJECTED: "The Ingest rejected the stream",
    StatusCode.NOT_ACTIVE_STREAM: "The stream is not active",
    StatusCode.UNAUTHORIZED: "This channel is not authorized to connect to this ingest",
    StatusCode.AUDIO_SSRC_COLLISION: "The Audio SSRC is already in use",
    StatusCode.VIDEO_SSRC_COLLISION: "The Video SSRC is already in use",
    StatusCode.BAD_REQUEST: "A request to the ingest was invalid",
    StatusCode.OLD_VERSION: "The current version of the FTL-SDK is no longer supported",
    StatusCode.BAD_OR_INVALID_STREAM_KEY: "Invalid stream key",
    StatusCode.UNSUPPORTED_MEDIA_TYPE: "The specified media type is not supported",
    StatusCode.NOT_CONNECTED: "The channel is not connected",
    StatusCode.ALREADY_CONNECTED: "The channel is already connected",
    StatusCode.STATUS_TIMEOUT: "Timed out waiting for status message",
    StatusCode.QUEUE_FULL: "The status queue is full",
    StatusCode.STATUS_WAITING_FOR_KEY_FRAME: "dropping packets until a key frame is received",
    StatusCode.QUEUE_EMPTY: "The status queue is empty",
    StatusCode.NOT_INITIALIZED: "The parameters were not correctly initialized",
    StatusCode.CHANNEL_IN_USE: "Channel is already actively streaming",
    StatusCode.REGION_UNSUPPORTED: (
        "The location you are attempting to stream from is not authorized to do so "
        "by the local government"
    ),
    StatusCode.NO_MEDIA_TIMEOUT: (
        "The ingest did not receive any audio or video media for an extended period of time"
    ),
    StatusCode.USER_DISCONNECT: "ftl ingest disconnect api was called",
    StatusCode.INGEST_NO_RESPONSE: "ingest did not respond to request",
    StatusCode.NO_PING_RESPONSE: "ingest did not respond to keepalive",
    StatusCode.SPEED_TEST_ABORTED: (
        "the speed test was aborted, possibly due to a network interruption"
    ),
    StatusCode.INGEST_SOCKET_CLOSED: "the ingest socket was closed",
    StatusCode.INGEST_SOCKET_TIMEOUT: "the ingest socket was hit a timeout.",
    StatusCode.INGEST_SERVER_TERMINATE: "The server has terminated the stream.",
}


def status_code_to_string(status):
    """Human-readable description of a status code."""
    try:
        return _STATUS_STRINGS.get(StatusCode(status), "Unknown status code")
    except ValueError:
        return "Unknown status code"


def _leading_int(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def parse_stream_key(stream_key):
    """Split a stream key into ``(channel_id, key)``.

    A leading "re_" is dropped; the channel id precedes the first '-', ','
    or '_'. Raises IngestError(BAD_OR_INVALID_STREAM_KEY) when there is none.
    """
    if stream_key is None:
        raise IngestError(StatusCode.BAD_OR_INVALID_STREAM_KEY)
    text = stream_key
    if text.startswith(_RESTREAM_PREFIX):
        text = text[len(_RESTREAM_PREFIX):]

    for pos, char in enumerate(text):
        if char in _KEY_SEPARATORS:
            key = text[pos + 1:]
            if len(key) >= MAX_KEY_LEN:
                raise IngestError(
                    StatusCode.BAD_OR_INVALID_STREAM_KEY, "stream key is too long"
                )
            channel_id = _leading_int(text[:pos]) & 0xFFFFFFFF
            return channel_id, key
    raise IngestError(StatusCode.BAD_OR_INVALID_STREAM_KEY)


def _f32(value: float) -> float:
    return struct.unpack("f", struct.pack("f", value))[0]


class IngestHandle:
    """A stream to one ingest: control connection, state and status messages."""

    def __init__(self, params):
        channel_id, key = parse_stream_key(params.stream_key)
        self.channel_id = channel_id
        self.key = key
        self.state = StreamState()
        self.status_queue = StatusQueue(self.state)
        self.config = StreamConfig(
            channel_id=channel_id,
            key=key,
            vendor_name=(params.vendor_name or "")[: VENDOR_FIELD_LEN - 1],
            vendor_version=(params.vendor_version or "")[: VENDOR_FIELD_LEN - 1],
            video_codec=params.video_codec,
            audio_codec=params.audio_codec,
        )
        self.control = ControlConnection(self.config, self.state, self.status_queue)
        self.control.on_connection_lost = self._internal_disconnect

        self.fps_num = params.fps_num
        self.fps_den = params.fps_den
        self.peak_kbps = params.peak_kbps
        self.param_ingest_hostname = params.ingest_hostname
        self.ingest_hostname: str | None = None

        self.video_dts_usec = 0
        self.audio_dts_usec = 0
        self.video_dts_error = 0.0
        self._destroyed = False

        self.state.set(StateFlag.STATUS_QUEUE)

    def _internal_disconnect(self) -> None:
        self.state.set(StateFlag.DISCONNECT_IN_PROGRESS)
        try:
            self.control.disconnect()
        except OSError as exc:
            log.error("disconnect failed: %s", exc)
        finally:
            self.state.clear(StateFlag.DISCONNECT_IN_PROGRESS)

    def connect(self):
        """Open the control connection and complete the handshake.

        Raises IngestError on failure, after tearing down what was set up.
        """
        try:
            self.ingest_hostname = self.param_ingest_hostname
            self.control.open(self.ingest_hostname)
            self.control.handshake()
        except IngestError:
            lock = self.control.disconnect_lock
            if lock.acquire(blocking=False):
                try:
                    self._internal_disconnect()
                finally:
                    lock.release()
            raise

    def disconnect(self):
        """Disconnect if connected and report it on the status queue."""
        with self.control.disconnect_lock:
            if self.state.is_set(StateFlag.CONNECTED):
                self._internal_disconnect()
                self.status_queue.put(
                    StatusMessage(
                        type=StatusType.EVENT,
                        event_type=EventType.DISCONNECTED,
                        reason=EventReason.API_REQUEST,
                        error_code=StatusCode.USER_DISCONNECT,
                    )
                )

    def destroy(self):
        """Shut down the status queue, waking a waiting reader with a DESTROYED event."""
        if self._destroyed:
            return
        self.state.clear(StateFlag.STATUS_QUEUE)
        if self.status_queue.thread_waiting:
            self.status_queue.put(
                StatusMessage(
                    type=StatusType.EVENT,
                    event_type=EventType.DESTROYED,
                    reason=EventReason.API_REQUEST,
                    error_code=StatusCode.SUCCESS,
                )
            )
        for _ in range(_DESTROY_WAIT_RETRIES):
            if not self.status_queue.thread_waiting:
                break
            time.sleep(_DESTROY_WAIT_S)
        if self.status_queue.thread_waiting:
            log.warning("thread is still waiting for a status message")
        self.status_queue.clear()
        self._destroyed = True

    def get_status(self, timeout_ms):
        """Return the next status message, raising IngestError on timeout or shutdown."""
        if self._destroyed:
            raise IngestError(StatusCode.NOT_INITIALIZED)
        try:
            return self.status_queue.get(timeout_ms)
        except RuntimeError as exc:
            raise IngestError(StatusCode.NOT_INITIALIZED) from exc
        except TimeoutError as exc:
            raise IngestError(StatusCode.STATUS_TIMEOUT) from exc
        except IndexError as exc:
            raise IngestError(StatusCode.QUEUE_EMPTY) from exc

    def update_params(self, params):
        """Take over the peak bitrate and, when given, the ingest hostname."""
        self.peak_kbps = params.peak_kbps
        if params.ingest_hostname is not None:
            self.param_ingest_hostname = params.ingest_hostname

    def next_media_dts(self, media_type, end_of_frame):
        """Return the decode timestamp in µs for the next packet and advance the clock.

        Audio advances one packet duration per call; video advances one frame
        period when ``end_of_frame`` is set, carrying the fractional error over.
        """
        media_type = MediaType(media_type)
        if media_type == MediaType.AUDIO_DATA:
            dts = self.audio_dts_usec
            self.audio_dts_usec += AUDIO_PACKET_DURATION_MS * 1000
            return dts

        dts = self.video_dts_usec
        if end_of_frame:
            period = _f32(_f32(_f32(float(self.fps_den)) * 1000000.0) / _f32(float(self.fps_num)))
            total = _f32(period + self.video_dts_error)
            increment = int(total)
            self.video_dts_error = _f32(total - increment)
            self.video_dts_usec += increment
        return dts