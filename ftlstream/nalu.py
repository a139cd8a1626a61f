"""NAL unit header, SPS, PPS and slice header parsing (ITU-T H.264 section 7.3)."""

from __future__ import annotations

import io
import logging

from .bitstream import BitReader
from .paramsets import (
    SVC_NAL_UNIT_TYPES,
    VUI_SAR_EXTENDED,
    HrdParameters,
    NalUnitHeader,
    ParameterSetStore,
    PictureParameterSet,
    SequenceParameterSet,
    SliceHeader,
)

log = logging.getLogger(__name__)

_EMULATION_PREVENTION = 0x000003


def parse_nal_unit(data):
    """Parse the NAL unit header and strip emulation prevention bytes.

    Returns ``(header, rbsp)`` where ``rbsp`` holds the payload following
    the header with every ``00 00 03`` sequence reduced to ``00 00``.
    Raises ValueError for the MVC header extension, which is not supported.
    """
    reader = BitReader(data)
    header = NalUnitHeader(
        forbidden_zero_bit=reader.read_bits(1),
        nal_ref_idc=reader.read_bits(2),
        nal_unit_type=reader.read_bits(5),
    )

    if header.nal_unit_type in SVC_NAL_UNIT_TYPES:
        header.svc_extension_flag = reader.read_bits(1)
        if header.svc_extension_flag != 1:
            raise ValueError("nal_unit_header_mvc_extension() parsing not supported")
        header.idr_flag = reader.read_bits(1)
        header.priority_id = reader.read_bits(6)
        header.no_inter_layer_pred_flag = reader.read_bits(1)
        header.dependency_id = reader.read_bits(3)
        header.quality_id = reader.read_bits(4)
        header.temporal_id = reader.read_bits(3)
        header.use_ref_base_pic_flag = reader.read_bits(1)
        header.discardable_flag = reader.read_bits(1)
        header.output_flag = reader.read_bits(1)
        header.reserved_three_2bits = reader.read_bits(2)

    rbsp = bytearray()
    while reader.bits_left >= 8:
        if reader.bits_left >= 24 and reader.peek(24) == _EMULATION_PREVENTION:
            rbsp.append(reader.read_bits(8))
            rbsp.append(reader.read_bits(8))
            reader.read_bits(8)
        else:
            rbsp.append(reader.read_bits(8))

    return header, bytes(rbsp)


def _parse_hrd(reader: BitReader) -> HrdParameters:
    hrd = HrdParameters(
        cpb_cnt_minus1=reader.read_ue(),
        bit_rate_scale=reader.read_bits(4),
        cpb_size_scale=reader.read_bits(4),
    )
    for _ in range(hrd.cpb_cnt_minus1 + 1):
        hrd.bit_rate_value_minus1.append(reader.read_ue())
        hrd.cpb_size_value_minus1.append(reader.read_ue())
        hrd.cbr_flag.append(reader.read_bits(1))
    hrd.initial_cpb_removal_delay_length_minus1 = reader.read_bits(5)
    hrd.cpb_removal_delay_length_minus1 = reader.read_bits(5)
    hrd.dpb_output_delay_length_minus1 = reader.read_bits(5)
    hrd.time_offset_length = reader.read_bits(5)
    return hrd


def _parse_vui(reader: BitReader, sps: SequenceParameterSet) -> None:
    vui = sps.vui
    vui.aspect_ratio_info_present_flag = reader.read_bits(1)
    if vui.aspect_ratio_info_present_flag:
        vui.aspect_ratio_idc = reader.read_bits(8)
        if vui.aspect_ratio_idc == VUI_SAR_EXTENDED:
            vui.sar_width = reader.read_bits(16)
            vui.sar_height = reader.read_bits(16)

    vui.overscan_info_present_flag = reader.read_bits(1)
    if vui.overscan_info_present_flag:
        vui.overscan_appropriate_flag = reader.read_bits(1)

    vui.video_signal_type_present_flag = reader.read_bits(1)
    if vui.video_signal_type_present_flag:
        vui.video_format = reader.read_bits(3)
        vui.video_full_range_flag = reader.read_bits(1)
        vui.colour_description_present_flag = reader.read_bits(1)
        if vui.colour_description_present_flag:
            vui.colour_primaries = reader.read_bits(8)
            vui.transfer_characteristics = reader.read_bits(8)
            vui.matrix_coefficients = reader.read_bits(8)

    vui.chroma_loc_info_present_flag = reader.read_bits(1)
    if vui.chroma_loc_info_present_flag:
        vui.chroma_sample_loc_type_top_field = reader.read_ue()
        vui.chroma_sample_loc_type_bottom_field = reader.read_ue()

    vui.timing_info_present_flag = reader.read_bits(1)
    if vui.timing_info_present_flag:
        vui.num_units_in_tick = reader.read_bits(32)
        vui.time_scale = reader.read_bits(32)
        vui.fixed_frame_rate_flag = reader.read_bits(1)

    vui.nal_hrd_parameters_present_flag = reader.read_bits(1)
    if vui.nal_hrd_parameters_present_flag:
        vui.nal_hrd = _parse_hrd(reader)

    vui.vcl_hrd_parameters_present_flag = reader.read_bits(1)
    if vui.vcl_hrd_parameters_present_flag:
        vui.vcl_hrd = _parse_hrd(reader)

    if vui.nal_hrd_parameters_present_flag or vui.vcl_hrd_parameters_present_flag:
        vui.low_delay_hrd_flag = reader.read_bits(1)

    vui.pic_struct_present_flag = reader.read_bits(1)
    vui.bitstream_restriction_flag = reader.read_bits(1)
    if vui.bitstream_restriction_flag:
        vui.motion_vectors_over_pic_boundaries_flag = reader.read_bits(1)
        vui.max_bytes_per_pic_denom = reader.read_ue()
        vui.max_bits_per_mb_denom = reader.read_ue()
        vui.log2_max_mv_length_horizontal = reader.read_ue()
        vui.log2_max_mv_length_vertical = reader.read_ue()
        vui.num_reorder_frames = reader.read_ue()
        vui.max_dec_frame_buffering = reader.read_ue()


def parse_sps(reader):
    """Parse a sequence parameter set RBSP (section 7.3.2.1)."""
    sps = SequenceParameterSet(
        profile_idc=reader.read_bits(8),
        constraint_set0_flag=reader.read_bits(1),
        constraint_set1_flag=reader.read_bits(1),
        constraint_set2_flag=reader.read_bits(1),
        constraint_set3_flag=reader.read_bits(1),
        reserved_zero_4bits=reader.read_bits(4),
        level_idc=reader.read_bits(8),
        seq_parameter_set_id=reader.read_ue(),
        log2_max_frame_num_minus4=reader.read_ue(),
        pic_order_cnt_type=reader.read_ue(),
    )

    if sps.pic_order_cnt_type == 0:
        sps.log2_max_pic_order_cnt_lsb_minus4 = reader.read_ue()
    elif sps.pic_order_cnt_type == 1:
        sps.delta_pic_order_always_zero_flag = reader.read_bits(1)
        sps.offset_for_non_ref_pic = reader.read_se()
        sps.offset_for_top_to_bottom_field = reader.read_se()
        sps.num_ref_frames_in_pic_order_cnt_cycle = reader.read_ue()
        sps.offset_for_ref_frame = [
            reader.read_se() for _ in range(sps.num_ref_frames_in_pic_order_cnt_cycle)
        ]

    sps.num_ref_frames = reader.read_ue()
    sps.gaps_in_frame_num_value_allowed_flag = reader.read_bits(1)
    sps.pic_width_in_mbs_minus1 = reader.read_ue()
    sps.pic_height_in_map_units_minus1 = reader.read_ue()
    sps.frame_mbs_only_flag = reader.read_bits(1)
    if not sps.frame_mbs_only_flag:
        sps.mb_adaptive_frame_field_flag = reader.read_bits(1)

    sps.direct_8x8_inference_flag = reader.read_bits(1)
    sps.frame_cropping_flag = reader.read_bits(1)
    if sps.frame_cropping_flag:
        sps.frame_crop_left_offset = reader.read_ue()
        sps.frame_crop_right_offset = reader.read_ue()
        sps.frame_crop_top_offset = reader.read_ue()
        sps.frame_crop_bottom_offset = reader.read_ue()

    sps.vui_parameters_present_flag = reader.read_bits(1)
    if sps.vui_parameters_present_flag:
        _parse_vui(reader, sps)

    rbsp_trailing_bits(reader)
    return sps


def parse_pps(reader):
    """Parse a picture parameter set RBSP (section 7.3.2.2, without the extension)."""
    pps = PictureParameterSet(
        pic_parameter_set_id=reader.read_ue(),
        seq_parameter_set_id=reader.read_ue(),
        entropy_coding_mode_flag=reader.read_bits(1),
        pic_order_present_flag=reader.read_bits(1),
        num_slice_groups_minus1=reader.read_ue(),
    )

    if pps.num_slice_groups_minus1 > 0:
        pps.slice_group_map_type = reader.read_ue()
        map_type = pps.slice_group_map_type
        if map_type == 0:
            pps.run_length_minus1 = [
                reader.read_ue() for _ in range(pps.num_slice_groups_minus1 + 1)
            ]
        elif map_type == 2:
            for _ in range(pps.num_slice_groups_minus1):
                pps.top_left.append(reader.read_ue())
                pps.bottom_right.append(reader.read_ue())
        elif map_type in (3, 4, 5):
            pps.slice_group_change_direction_flag = reader.read_bits(1)
            pps.slice_group_change_rate_minus1 = reader.read_ue()
        elif map_type == 6:
            pps.pic_size_in_map_units_minus1 = reader.read_ue()
            pic_size = pps.pic_size_in_map_units_minus1 + 1
            bits = pic_size.bit_length()
            pps.slice_group_id = [reader.read_bits(bits) for _ in range(pic_size)]

    pps.num_ref_idx_l0_active_minus1 = reader.read_ue()
    pps.num_ref_idx_l1_active_minus1 = reader.read_ue()
    pps.weighted_pred_flag = reader.read_bits(1)
    pps.weighted_bipred_idc = reader.read_bits(2)
    pps.pic_init_qp_minus26 = reader.read_se()
    pps.pic_init_qs_minus26 = reader.read_se()
    pps.chroma_qp_index_offset = reader.read_se()
    pps.deblocking_filter_control_present_flag = reader.read_bits(1)
    pps.constrained_intra_pred_flag = reader.read_bits(1)
    pps.redundant_pic_cnt_present_flag = reader.read_bits(1)

    rbsp_trailing_bits(reader)
    return pps


def parse_slice_header(reader, header, store):
    """Parse the leading slice header fields up to and including frame_num.

    The referenced PPS and SPS must already be in ``store``; LookupError
    is raised otherwise.
    """
    store: ParameterSetStore
    slice_header = SliceHeader(
        first_mb_in_slice=reader.read_ue(),
        slice_type=reader.read_ue() % 5,
        pic_parameter_set_id=reader.read_ue(),
    )

    pps = store.find_pps(slice_header.pic_parameter_set_id)
    if pps is None:
        raise LookupError(
            f"no picture parameter set with id {slice_header.pic_parameter_set_id}"
        )
    sps = store.find_sps(header.nal_unit_type, pps.seq_parameter_set_id)
    if sps is None:
        raise LookupError(
            f"no sequence parameter set with id {pps.seq_parameter_set_id}"
        )

    slice_header.frame_num = reader.read_bits(sps.log2_max_frame_num_minus4 + 4)
    return slice_header


def rbsp_trailing_bits(reader):
    """Consume the stop bit and alignment bits; True if they were well formed."""
    try:
        if reader.read_bits(1) != 1:
            return False
        while not reader.is_byte_aligned():
            if reader.read_bits(1) != 0:
                return False
    except EOFError:
        return False
    return True


def read_nalu(stream):
    """Read the next start-code delimited NAL unit from a seekable binary stream.

    Returns the bytes between this start code and the next one, leaving the
    stream positioned on the next start code, or None when no start code is
    found. Three bytes are dropped before the following start code.
    """
    zeros = 0
    found = False
    while byte := stream.read(1):
        value = byte[0]
        if value == 1 and zeros >= 2:
            found = True
            break
        zeros = zeros + 1 if value == 0 else 0

    if not found:
        return None

    zeros = 0
    found = False
    buf = bytearray()
    while byte := stream.read(1):
        value = byte[0]
        if value == 1 and zeros >= 2:
            found = True
            stream.seek(-3, io.SEEK_CUR)
            del buf[-3:]
            break
        zeros = zeros + 1 if value == 0 else 0
        buf.append(value)

    if zeros > 3:
        log.warning("found packet with too many leading zeros in start code")
    if not found:
        log.debug("end of stream")

    return bytes(buf)