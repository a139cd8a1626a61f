"""Header-level H.264 decoder that tracks parameter sets and slice ordering."""

from __future__ import annotations

import logging

from .bitstream import BitReader
from .nalu import parse_nal_unit, parse_pps, parse_slice_header, parse_sps
from .paramsets import NalUnitHeader, NaluType, ParameterSetStore, SliceHeader

log = logging.getLogger(__name__)

_SLICE_TYPES = (NaluType.NON_IDR_SLICE, NaluType.IDR_SLICE)


class H264Decoder:
    """Parses NAL unit headers, parameter sets and slice headers.

    After each call to :meth:`decode_nalu` the most recent NAL unit header is
    in ``header`` and the most recent slice header in ``slice``. Slices of the
    same frame whose first macroblock does not increase are counted in
    ``slice_order_errors``.
    """

    def __init__(self):
        self.store = ParameterSetStore()
        self.header: NalUnitHeader | None = None
        self.slice: SliceHeader | None = None
        self.slice_order_errors = 0
        self._last_mba: int | None = None
        self._last_frame_num: int | None = None

    def decode_nalu(self, data):
        """Decode one NAL unit (without start code) and return its header."""
        header, rbsp = parse_nal_unit(data)
        self.header = header
        reader = BitReader(rbsp)
        nal_type = header.nal_unit_type

        if nal_type in _SLICE_TYPES:
            self.slice = parse_slice_header(reader, header, self.store)
            self._check_slice_order(self.slice)
        elif nal_type == NaluType.SPS:
            self.store.store_sps(parse_sps(reader))
        elif nal_type == NaluType.PPS:
            self.store.store_pps(parse_pps(reader))
        else:
            log.info("unknown nal unit type: %d", nal_type)

        return header

    def _check_slice_order(self, slice_header: SliceHeader) -> None:
        mba = slice_header.first_mb_in_slice
        frame_num = slice_header.frame_num
        if (
            self._last_mba is not None
            and self._last_frame_num == frame_num
            and self._last_mba >= mba
        ):
            self.slice_order_errors += 1
            log.error(
                "frame %d: current mba is %d, last was %d",
                frame_num,
                mba,
                self._last_mba,
            )
        self._last_mba = mba
        self._last_frame_num = frame_num