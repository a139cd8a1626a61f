"""Readers for H.264 Annex B elementary streams and Opus audio files."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from .decoder import H264Decoder
from .paramsets import NalUnitHeader, NaluType, SliceHeader

MAX_OGG_PAGE_LEN = 100000
_OGG_MAGIC = 0x4F676753  # "OggS"
_OGG_HEADER = struct.Struct("<BBQIIIB")
_SLICE_TYPES = (NaluType.NON_IDR_SLICE, NaluType.IDR_SLICE)


def read_annexb_nalu(stream):
    """Read the bytes preceding the next start code in an Annex B stream.

    Leading start codes are skipped, and the start code that ends the unit is
    consumed. Returns ``(data, complete)``; ``complete`` is False when the end
    of the stream was reached before a start code, in which case ``data``
    holds whatever was read.
    """
    buf = bytearray()
    sc = 0
    while True:
        byte = stream.read(1)
        if not byte:
            return bytes(buf), False
        value = byte[0]
        buf.append(value)
        sc = ((sc << 8) | value) & 0xFFFFFFFF
        if sc & 0xFFFFFF == 1:
            del buf[-(4 if sc == 1 else 3):]
            if buf:
                return bytes(buf), True


@dataclass
class OggPage:
    """One Ogg page, without its capture pattern."""

    version: int
    header_type: int
    granule_pos: int
    bitstream_serial: int
    page_sequence: int
    checksum: int
    segment_table: list[int] = field(default_factory=list)
    body: bytes = b""

    @property
    def packets_in_page(self) -> int:
        """Number of packets that end in this page."""
        return sum(1 for seg in self.segment_table if seg != 255)


def _parse_ogg_page(data: bytes) -> OggPage:
    if len(data) < _OGG_HEADER.size:
        raise ValueError("ogg page header is truncated")
    version, header_type, granule, serial, sequence, checksum, nsegs = (
        _OGG_HEADER.unpack_from(data)
    )
    table_end = _OGG_HEADER.size + nsegs
    if len(data) < table_end:
        raise ValueError("ogg segment table is truncated")
    return OggPage(
        version=version,
        header_type=header_type,
        granule_pos=granule,
        bitstream_serial=serial,
        page_sequence=sequence,
        checksum=checksum,
        segment_table=list(data[_OGG_HEADER.size:table_end]),
        body=data[table_end:],
    )


def read_ogg_page(stream):
    """Read the next Ogg page, delimited by the following "OggS" pattern.

    Returns None when the stream ends before a further capture pattern;
    raises ValueError when a page exceeds MAX_OGG_PAGE_LEN.
    """
    buf = bytearray()
    magic = 0
    while byte := stream.read(1):
        value = byte[0]
        buf.append(value)
        if len(buf) >= MAX_OGG_PAGE_LEN:
            raise ValueError("ogg page size exceeds maximum")
        magic = ((magic << 8) | value) & 0xFFFFFFFF
        if magic == _OGG_MAGIC:
            del buf[-4:]
            if not buf:
                continue
            return _parse_ogg_page(bytes(buf))
    return None


@dataclass
class _NaluItem:
    data: bytes
    header: NalUnitHeader
    slice: SliceHeader | None

    @property
    def is_slice(self) -> bool:
        return self.header.nal_unit_type in _SLICE_TYPES


class VideoSource:
    """Yields NAL units from an Annex B file with end-of-frame markers."""

    def __init__(self, path):
        self._file = open(path, "rb")
        self.decoder = H264Decoder()
        self._current: _NaluItem | None = None
        self._eof = False
        try:
            self._store_first_nalu()
        except Exception:
            self._file.close()
            raise

    def _decode(self, data: bytes) -> _NaluItem:
        header = self.decoder.decode_nalu(data)
        return _NaluItem(data, header, self.decoder.slice)

    def _store_first_nalu(self) -> None:
        data, complete = read_annexb_nalu(self._file)
        self._eof = not complete
        self._current = self._decode(data) if data else None

    def reset(self):
        """Rewind to the start of the file."""
        self._file.seek(0)
        self._store_first_nalu()

    def next_packet(self):
        """Return ``(nal_unit, end_of_frame)`` for the next NAL unit.

        Raises EOFError when no NAL unit is left.
        """
        current = self._current
        if current is None:
            raise EOFError("no more NAL units")

        upcoming = None
        if not self._eof:
            data, complete = read_annexb_nalu(self._file)
            if complete:
                upcoming = self._decode(data)
            else:
                self._eof = True

        end_of_frame = False
        if current.is_slice:
            if upcoming is None or not upcoming.is_slice:
                end_of_frame = True
            elif current.slice.frame_num != upcoming.slice.frame_num:
                end_of_frame = True

        self._current = upcoming
        return current.data, end_of_frame

    def at_end(self):
        """True once the end of the file has been reached."""
        return self._eof

    def close(self):
        self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class AudioSource:
    """Yields Opus packets from an Ogg file or a length-prefixed raw file.

    Raw files hold each packet as a 4-byte little-endian length followed by
    the packet bytes.
    """

    def __init__(self, path, raw_opus=False):
        self._file = open(path, "rb")
        self.raw_opus = bool(raw_opus)
        self._page: OggPage | None = None
        self._segment = 0
        self._offset = 0
        self._eof = False

    def reset(self):
        """Rewind to the start of the file."""
        self._file.seek(0)
        self._page = None
        self._segment = 0
        self._offset = 0
        self._eof = False

    def next_packet(self):
        """Return the next packet, or None at the end of the file."""
        if self.raw_opus:
            return self._next_raw_packet()
        return self._next_ogg_packet()

    def _next_raw_packet(self) -> bytes | None:
        if self._eof:
            return None
        prefix = self._file.read(4)
        if len(prefix) < 4:
            self._eof = True
            return None
        (length,) = struct.unpack("<I", prefix)
        data = self._file.read(length)
        if len(data) < length:
            self._eof = True
        return data

    def _next_ogg_packet(self) -> bytes | None:
        while self._page is None or self._segment >= len(self._page.segment_table):
            self._page = read_ogg_page(self._file)
            self._segment = 0
            self._offset = 0
            if self._page is None:
                self._eof = True
                return None

        page = self._page
        packet = bytearray()
        while self._segment < len(page.segment_table):
            seg_len = page.segment_table[self._segment]
            packet += page.body[self._offset:self._offset + seg_len]
            self._offset += seg_len
            self._segment += 1
            if seg_len != 255:
                break
        return bytes(packet)

    def at_end(self):
        """True once the end of the file has been reached."""
        return self._eof

    def close(self):
        self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()