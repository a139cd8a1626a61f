"""Control-channel connection to an ingest: TCP setup, handshake, keepalive and status watch."""

from __future__ import annotations

import logging
import select
import socket
import threading
from dataclasses import dataclass

from .protocol import (
    AUDIO_PTYPE,
    INGEST_PORT,
    KEEPALIVE_FREQUENCY_MS,
    KEEPALIVE_SEND_WARN_TOLERANCE_MS,
    MAX_INGEST_COMMAND_LEN,
    SOCKET_RECV_TIMEOUT_MS,
    STATUS_THREAD_SLEEP_TIME_MS,
    VIDEO_PTYPE,
    AudioCodec,
    EventReason,
    EventType,
    ResponseCode,
    StateFlag,
    StatusCode,
    StatusMessage,
    StatusType,
    VideoCodec,
    audio_codec_name,
    get_hmac,
    read_media_port,
    read_response_code,
    recv_line,
    video_codec_name,
)
from .timeutil import Timeval, ms_elapsed_since

log = logging.getLogger(__name__)

PROTOCOL_VERSION = (0, 9)
KEEPALIVE_LATE_MS = 6 * KEEPALIVE_FREQUENCY_MS
_COMMAND_TERMINATOR = "\r\n\r\n"

_RESPONSE_STATUS = {
    ResponseCode.OK: StatusCode.SUCCESS,
    ResponseCode.PING: StatusCode.SUCCESS,
    ResponseCode.BAD_REQUEST: StatusCode.BAD_REQUEST,
    ResponseCode.UNAUTHORIZED: StatusCode.UNAUTHORIZED,
    ResponseCode.OLD_VERSION: StatusCode.OLD_VERSION,
    ResponseCode.AUDIO_SSRC_COLLISION: StatusCode.AUDIO_SSRC_COLLISION,
    ResponseCode.VIDEO_SSRC_COLLISION: StatusCode.VIDEO_SSRC_COLLISION,
    ResponseCode.INVALID_STREAM_KEY: StatusCode.BAD_OR_INVALID_STREAM_KEY,
    ResponseCode.CHANNEL_IN_USE: StatusCode.CHANNEL_IN_USE,
    ResponseCode.REGION_UNSUPPORTED: StatusCode.REGION_UNSUPPORTED,
    ResponseCode.NO_MEDIA_TIMEOUT: StatusCode.NO_MEDIA_TIMEOUT,
    ResponseCode.INTERNAL_SERVER_ERROR: StatusCode.INTERNAL_ERROR,
    ResponseCode.GAME_BLOCKED: StatusCode.GAME_BLOCKED,
    ResponseCode.INTERNAL_MEMORY_ERROR: StatusCode.INTERNAL_ERROR,
    ResponseCode.INTERNAL_COMMAND_ERROR: StatusCode.INTERNAL_ERROR,
    ResponseCode.INTERNAL_SOCKET_CLOSED: StatusCode.INGEST_SOCKET_CLOSED,
    ResponseCode.INTERNAL_SOCKET_TIMEOUT: StatusCode.INGEST_SOCKET_TIMEOUT,
    ResponseCode.SERVER_TERMINATE: StatusCode.INGEST_SERVER_TERMINATE,
    ResponseCode.UNKNOWN: StatusCode.INTERNAL_ERROR,
}


def response_to_status(code):
    """Map an ingest response code to the status code reported to callers."""
    if code == StatusCode.INGEST_NO_RESPONSE:
        return StatusCode.INGEST_NO_RESPONSE
    try:
        status = _RESPONSE_STATUS[ResponseCode(code)]
    except ValueError:
        return StatusCode.UNKNOWN_ERROR_CODE
    if status != StatusCode.SUCCESS:
        log.error("ingest response %d: %s", int(code), status.name)
    return status


class IngestError(Exception):
    """An ingest operation failed; ``status`` says why."""

    def __init__(self, status, message=None):
        self.status = StatusCode(status)
        super().__init__(message or self.status.name)


@dataclass
class StreamConfig:
    """What the handshake announces about the stream."""

    channel_id: int
    key: str
    vendor_name: str = ""
    vendor_version: str = ""
    video_codec: VideoCodec = VideoCodec.H264
    audio_codec: AudioCodec = AudioCodec.OPUS
    video_width: int = 1280
    video_height: int = 720
    video_payload_type: int = VIDEO_PTYPE
    audio_payload_type: int = AUDIO_PTYPE
    video_ssrc: int | None = None
    audio_ssrc: int | None = None

    def __post_init__(self):
        if self.audio_ssrc is None:
            self.audio_ssrc = self.channel_id
        if self.video_ssrc is None:
            self.video_ssrc = self.channel_id + 1


class ControlConnection:
    """The TCP control channel to an ingest server.

    When the connection drops, ``on_connection_lost`` (default:
    :meth:`disconnect`) is called while ``disconnect_lock`` is held, and a
    DISCONNECTED event is put on the status queue.
    """

    def __init__(self, config, state, status_queue):
        self.config = config
        self.state = state
        self.status_queue = status_queue
        self.sock: socket.socket | None = None
        self.ingest_ip: str | None = None
        self.socket_family: int | None = None
        self.assigned_port: int | None = None
        self.disconnect_lock = threading.Lock()
        self.on_connection_lost = None
        self._keepalive_thread: threading.Thread | None = None
        self._status_thread: threading.Thread | None = None
        self._keepalive_stop = threading.Event()
        self._status_stop = threading.Event()

    def open(self, hostname, port=INGEST_PORT):
        """Resolve ``hostname`` and connect to the first address that accepts."""
        if self.state.is_set(StateFlag.CONNECTED):
            raise IngestError(StatusCode.ALREADY_CONNECTED)

        try:
            candidates = socket.getaddrinfo(
                hostname, port, socket.AF_UNSPEC, socket.SOCK_STREAM
            )
        except socket.gaierror as exc:
            log.error("failed to look up ingest address %s: %s", hostname, exc)
            raise IngestError(StatusCode.DNS_FAILURE) from exc

        last_error: OSError | None = None
        for family, socktype, proto, _name, sockaddr in candidates:
            if family not in (socket.AF_INET, socket.AF_INET6):
                continue
            try:
                sock = socket.socket(family, socktype, proto)
            except OSError as exc:
                log.debug("failed to create socket: %s", exc)
                last_error = exc
                continue

            self.ingest_ip = sockaddr[0]
            self.socket_family = family
            log.debug("got IP: %s", self.ingest_ip)
            try:
                sock.connect(sockaddr)
            except OSError as exc:
                log.debug("failed to connect on candidate: %s", exc)
                last_error = exc
                sock.close()
                continue

            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            except OSError as exc:
                log.debug("failed to enable keep alives: %s", exc)
            sock.settimeout(SOCKET_RECV_TIMEOUT_MS / 1000.0)
            self.sock = sock
            return

        log.error("failed to connect to ingest, last error was: %s", last_error)
        raise IngestError(StatusCode.CONNECT_ERROR)

    def handshake(self):
        """Authenticate and announce the stream; starts keepalive and status threads."""
        if self.state.is_set(StateFlag.CONNECTED):
            raise IngestError(StatusCode.ALREADY_CONNECTED)
        if self.sock is None:
            raise IngestError(StatusCode.SOCKET_NOT_CONNECTED)

        code = self._negotiate()
        if code != ResponseCode.OK:
            self.disconnect()
            status = response_to_status(code)
            if status != StatusCode.SUCCESS:
                raise IngestError(status)
            return

        self.state.set(StateFlag.CONNECTED)
        self._start_threads()
        log.info(
            "successfully connected to ingest, media will be sent to port %d",
            self.assigned_port,
        )

    def _negotiate(self) -> int:
        cfg = self.config
        try:
            digest = get_hmac(self.sock, cfg.key)
        except OSError as exc:
            log.error("could not get a signed HMAC: %s", exc)
            digest = None
        if digest is None:
            log.error("could not get a signed HMAC")
            return StatusCode.INGEST_NO_RESPONSE

        code, _ = self.send_command(f"CONNECT {cfg.channel_id} ${digest}", True)
        if code != ResponseCode.OK:
            return code

        major, minor = PROTOCOL_VERSION
        announcements = [
            f"ProtocolVersion: {major}.{minor}",
            f"VendorName: {cfg.vendor_name}",
            f"VendorVersion: {cfg.vendor_version}",
            "Video: true",
            f"VideoCodec: {video_codec_name(cfg.video_codec)}",
            f"VideoHeight: {cfg.video_height}",
            f"VideoWidth: {cfg.video_width}",
            f"VideoPayloadType: {cfg.video_payload_type}",
            f"VideoIngestSSRC: {cfg.video_ssrc}",
            "Audio: true",
            f"AudioCodec: {audio_codec_name(cfg.audio_codec)}",
            f"AudioPayloadType: {cfg.audio_payload_type}",
            f"AudioIngestSSRC: {cfg.audio_ssrc}",
        ]
        for command in announcements:
            code, _ = self.send_command(command, False)
            if code != ResponseCode.OK:
                return code

        code, response = self.send_command(".", True)
        if code != ResponseCode.OK:
            return code

        self.assigned_port = read_media_port(response)
        return ResponseCode.OK

    def send_command(self, command, need_response=False):
        """Send one command; returns ``(response_code, response_text)``.

        Without ``need_response`` the result is ``(OK, "")``.
        """
        wire = (command + _COMMAND_TERMINATOR).encode("utf-8")
        if len(wire) >= MAX_INGEST_COMMAND_LEN:
            return ResponseCode.INTERNAL_COMMAND_ERROR, ""
        try:
            self.sock.sendall(wire)
        except OSError as exc:
            log.debug("failed to send command: %s", exc)
        if need_response:
            return self.get_response()
        return ResponseCode.OK, ""

    def get_response(self):
        """Read one response line; returns ``(response_code, response_text)``."""
        try:
            data = recv_line(self.sock, MAX_INGEST_COMMAND_LEN, b"\n")
        except OSError:
            return ResponseCode.INTERNAL_SOCKET_TIMEOUT, ""
        if not data:
            return ResponseCode.INTERNAL_SOCKET_CLOSED, ""
        text = data.decode("utf-8", errors="replace")
        return read_response_code(text), text

    def _start_threads(self) -> None:
        self._status_stop = threading.Event()
        self._keepalive_stop = threading.Event()

        self.state.set(StateFlag.CXN_STATUS_THRD)
        self._status_thread = threading.Thread(
            target=self._connection_status_loop, name="ftl-connection-status", daemon=True
        )
        self._status_thread.start()

        self.state.set(StateFlag.KEEPALIVE_THRD)
        self._keepalive_thread = threading.Thread(
            target=self._keepalive_loop, name="ftl-keepalive", daemon=True
        )
        self._keepalive_thread.start()

    def _keepalive_loop(self) -> None:
        last_send = Timeval.now()
        while self.state.is_set(StateFlag.KEEPALIVE_THRD):
            self._keepalive_stop.wait(KEEPALIVE_FREQUENCY_MS / 1000.0)
            if not self.state.is_set(StateFlag.KEEPALIVE_THRD):
                break

            since_send = ms_elapsed_since(last_send)
            if since_send > KEEPALIVE_FREQUENCY_MS + KEEPALIVE_SEND_WARN_TOLERANCE_MS:
                log.info(
                    "ping time tolerance warning, time since last ping %d ms",
                    since_send,
                )
            last_send = Timeval.now()

            code, _ = self.send_command(f"PING {self.config.channel_id}", False)
            if code != ResponseCode.OK:
                log.error("ingest ping failed with %d", code)
        log.info("exited keepalive thread")

    def _connection_status_loop(self) -> None:
        last_ping = Timeval.now()
        while self.state.is_set(StateFlag.CXN_STATUS_THRD):
            self._status_stop.wait(STATUS_THREAD_SLEEP_TIME_MS / 1000.0)
            if not self.state.is_set(StateFlag.CXN_STATUS_THRD):
                break

            error = StatusCode.SUCCESS
            try:
                readable, _, _ = select.select([self.sock], [], [], 0)
            except (OSError, ValueError, TypeError) as exc:
                log.error("failed to poll the ingest socket: %s", exc)
                error = StatusCode.UNKNOWN_ERROR_CODE
                readable = []

            if readable:
                code, _ = self.get_response()
                if code == ResponseCode.PING:
                    last_ping = Timeval.now()
                    continue
                error = response_to_status(code)

            if error == StatusCode.SUCCESS:
                since_ping = ms_elapsed_since(last_ping)
                if since_ping < KEEPALIVE_LATE_MS:
                    continue
                log.error("ingest ping timeout, no ping in %d ms", since_ping)
                error = StatusCode.NO_PING_RESPONSE

            if not self.state.is_set(StateFlag.CXN_STATUS_THRD):
                break
            log.error("ingest connection has dropped: error code %d", error)
            self.state.clear(StateFlag.CXN_STATUS_THRD)

            if self.disconnect_lock.acquire(blocking=False):
                try:
                    handler = self.on_connection_lost or self.disconnect
                    handler()
                finally:
                    self.disconnect_lock.release()

            reason = (
                EventReason.NO_MEDIA
                if error == StatusCode.NO_MEDIA_TIMEOUT
                else EventReason.UNKNOWN
            )
            self.status_queue.put(
                StatusMessage(
                    type=StatusType.EVENT,
                    event_type=EventType.DISCONNECTED,
                    reason=reason,
                    error_code=error,
                )
            )
            break
        log.info("exited connection status thread")

    def _stop_thread(self, flag: StateFlag, stop: threading.Event, thread) -> None:
        if not self.state.is_set(flag):
            return
        self.state.clear(flag)
        stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def disconnect(self):
        """Stop the helper threads, say goodbye to the ingest and close the socket."""
        self._stop_thread(
            StateFlag.KEEPALIVE_THRD, self._keepalive_stop, self._keepalive_thread
        )
        self._stop_thread(
            StateFlag.CXN_STATUS_THRD, self._status_stop, self._status_thread
        )

        if self.state.is_set(StateFlag.CONNECTED):
            self.state.clear(StateFlag.CONNECTED)
            log.info("light-saber disconnect")
            if self.sock is not None:
                code, response = self.send_command("DISCONNECT", False)
                if code != ResponseCode.OK:
                    log.error("ingest disconnect failed with %d (%s)", code, response)

        if self.sock is not None:
            try:
                self.sock.close()
            finally:
                self.sock = None