"""H.264 syntax structures and the store of parameter sets seen so far."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import IntEnum

VUI_SAR_EXTENDED = 255
SVC_NAL_UNIT_TYPES = (14, 20)
SVC_PROFILES = (83, 86)


class NaluType(IntEnum):
    NON_IDR_SLICE = 1
    IDR_SLICE = 5
    SPS = 7
    PPS = 8


class SliceType(IntEnum):
    P = 0
    B = 1
    I = 2  # noqa: E741
    SP = 3
    SI = 4


@dataclass
class NalUnitHeader:
    forbidden_zero_bit: int = 0
    nal_ref_idc: int = 0
    nal_unit_type: int = 0
    svc_extension_flag: int = 0
    idr_flag: int = 0
    priority_id: int = 0
    no_inter_layer_pred_flag: int = 0
    dependency_id: int = 0
    quality_id: int = 0
    temporal_id: int = 0
    use_ref_base_pic_flag: int = 0
    discardable_flag: int = 0
    output_flag: int = 0
    reserved_three_2bits: int = 0


@dataclass
class HrdParameters:
    cpb_cnt_minus1: int = 0
    bit_rate_scale: int = 0
    cpb_size_scale: int = 0
    bit_rate_value_minus1: list[int] = field(default_factory=list)
    cpb_size_value_minus1: list[int] = field(default_factory=list)
    cbr_flag: list[int] = field(default_factory=list)
    initial_cpb_removal_delay_length_minus1: int = 0
    cpb_removal_delay_length_minus1: int = 0
    dpb_output_delay_length_minus1: int = 0
    time_offset_length: int = 0


@dataclass
class VuiParameters:
    aspect_ratio_info_present_flag: int = 0
    aspect_ratio_idc: int = 0
    sar_width: int = 0
    sar_height: int = 0
    overscan_info_present_flag: int = 0
    overscan_appropriate_flag: int = 0
    video_signal_type_present_flag: int = 0
    video_format: int = 0
    video_full_range_flag: int = 0
    colour_description_present_flag: int = 0
    colour_primaries: int = 0
    transfer_characteristics: int = 0
    matrix_coefficients: int = 0
    chroma_loc_info_present_flag: int = 0
    chroma_sample_loc_type_top_field: int = 0
    chroma_sample_loc_type_bottom_field: int = 0
    timing_info_present_flag: int = 0
    num_units_in_tick: int = 0
    time_scale: int = 0
    fixed_frame_rate_flag: int = 0
    nal_hrd_parameters_present_flag: int = 0
    nal_hrd: HrdParameters = field(default_factory=HrdParameters)
    vcl_hrd_parameters_present_flag: int = 0
    vcl_hrd: HrdParameters = field(default_factory=HrdParameters)
    low_delay_hrd_flag: int = 0
    pic_struct_present_flag: int = 0
    bitstream_restriction_flag: int = 0
    motion_vectors_over_pic_boundaries_flag: int = 0
    max_bytes_per_pic_denom: int = 0
    max_bits_per_mb_denom: int = 0
    log2_max_mv_length_horizontal: int = 0
    log2_max_mv_length_vertical: int = 0
    num_reorder_frames: int = 0
    max_dec_frame_buffering: int = 0


@dataclass
class SequenceParameterSet:
    profile_idc: int = 0
    constraint_set0_flag: int = 0
    constraint_set1_flag: int = 0
    constraint_set2_flag: int = 0
    constraint_set3_flag: int = 0
    reserved_zero_4bits: int = 0
    level_idc: int = 0
    seq_parameter_set_id: int = 0
    log2_max_frame_num_minus4: int = 0
    pic_order_cnt_type: int = 0
    log2_max_pic_order_cnt_lsb_minus4: int = 0
    delta_pic_order_always_zero_flag: int = 0
    offset_for_non_ref_pic: int = 0
    offset_for_top_to_bottom_field: int = 0
    num_ref_frames_in_pic_order_cnt_cycle: int = 0
    offset_for_ref_frame: list[int] = field(default_factory=list)
    num_ref_frames: int = 0
    gaps_in_frame_num_value_allowed_flag: int = 0
    pic_width_in_mbs_minus1: int = 0
    pic_height_in_map_units_minus1: int = 0
    frame_mbs_only_flag: int = 0
    mb_adaptive_frame_field_flag: int = 0
    direct_8x8_inference_flag: int = 0
    frame_cropping_flag: int = 0
    frame_crop_left_offset: int = 0
    frame_crop_right_offset: int = 0
    frame_crop_top_offset: int = 0
    frame_crop_bottom_offset: int = 0
    vui_parameters_present_flag: int = 0
    vui: VuiParameters = field(default_factory=VuiParameters)


@dataclass
class PictureParameterSet:
    pic_parameter_set_id: int = 0
    seq_parameter_set_id: int = 0
    entropy_coding_mode_flag: int = 0
    pic_order_present_flag: int = 0
    num_slice_groups_minus1: int = 0
    slice_group_map_type: int = 0
    run_length_minus1: list[int] = field(default_factory=list)
    top_left: list[int] = field(default_factory=list)
    bottom_right: list[int] = field(default_factory=list)
    slice_group_change_direction_flag: int = 0
    slice_group_change_rate_minus1: int = 0
    pic_size_in_map_units_minus1: int = 0
    slice_group_id: list[int] = field(default_factory=list)
    num_ref_idx_l0_active_minus1: int = 0
    num_ref_idx_l1_active_minus1: int = 0
    weighted_pred_flag: int = 0
    weighted_bipred_idc: int = 0
    pic_init_qp_minus26: int = 0
    pic_init_qs_minus26: int = 0
    chroma_qp_index_offset: int = 0
    deblocking_filter_control_present_flag: int = 0
    constrained_intra_pred_flag: int = 0
    redundant_pic_cnt_present_flag: int = 0
    transform_8x8_mode_flag: int = 0
    pic_scaling_matrix_present_flag: int = 0
    pic_scaling_list_present_flag: list[int] = field(default_factory=list)
    second_chroma_qp_index_offset: int = 0


@dataclass
class RefPicListEntry:
    reordering_of_pic_nums_idc: int = 0
    abs_diff_pic_num_minus1: int = 0
    long_term_pic_num: int = 0


@dataclass
class RefPicMarking:
    no_output_of_prior_pics_flag: int = 0
    long_term_reference_flag: int = 0
    adaptive_ref_pic_marking_mode_flag: int = 0
    memory_management_control_operations: list[int] = field(default_factory=list)
    difference_of_pic_nums_minus1: int = 0
    long_term_pic_num: int = 0
    long_term_frame_idx: int = 0
    max_long_term_frame_idx_plus1: int = 0


@dataclass
class SliceHeader:
    first_mb_in_slice: int = 0
    slice_type: int = 0
    pic_parameter_set_id: int = 0
    frame_num: int = 0
    field_pic_flag: int = 0
    bottom_field_flag: int = 0
    idr_pic_id: int = 0
    pic_order_cnt_lsb: int = 0
    delta_pic_order_cnt_bottom: int = 0
    delta_pic_order_cnt: list[int] = field(default_factory=lambda: [0, 0])
    redundant_pic_cnt: int = 0
    direct_spatial_mv_pred_flag: int = 0
    num_ref_idx_active_override_flag: int = 0
    num_ref_idx_l0_active_minus1: int = 0
    num_ref_idx_l1_active_minus1: int = 0
    ref_pic_list_reordering_flag_l0: int = 0
    ref_pic_list0: list[RefPicListEntry] = field(default_factory=list)
    ref_pic_list_reordering_flag_l1: int = 0
    ref_pic_list1: list[RefPicListEntry] = field(default_factory=list)
    ref_pic_marking: RefPicMarking = field(default_factory=RefPicMarking)
    cabac_init_idc: int = 0
    slice_qp_delta: int = 0
    sp_for_switch_flag: int = 0
    slice_qs_delta: int = 0
    disable_deblocking_filter_idc: int = 0
    slice_alpha_c0_offset_div2: int = 0
    slice_beta_offset_div2: int = 0
    slice_group_change_cycle: int = 0
    store_ref_base_pic_flag: int = 0
    slice_skip_flag: int = 0
    scan_idx_start: int = 0
    scan_idx_end: int = 0


class ParameterSetStore:
    """Keeps every SPS and PPS in arrival order; lookups return the first match."""

    def __init__(self):
        self._sps: list[SequenceParameterSet] = []
        self._pps: list[PictureParameterSet] = []

    def store_sps(self, sps):
        """Store a private copy of ``sps``."""
        self._sps.append(copy.deepcopy(sps))

    def find_sps(self, nal_unit_type, seq_parameter_set_id):
        """Return the first stored SPS with the given id, or None.

        For SVC NAL unit types only SVC-profile parameter sets match.
        """
        svc = nal_unit_type in SVC_NAL_UNIT_TYPES
        for sps in self._sps:
            if sps.seq_parameter_set_id != seq_parameter_set_id:
                continue
            if svc and sps.profile_idc not in SVC_PROFILES:
                continue
            return sps
        return None

    def store_pps(self, pps):
        """Store a private copy of ``pps``."""
        self._pps.append(copy.deepcopy(pps))

    def find_pps(self, pic_parameter_set_id):
        """Return the first stored PPS with the given id, or None."""
        return next(
            (p for p in self._pps if p.pic_parameter_set_id == pic_parameter_set_id),
            None,
        )