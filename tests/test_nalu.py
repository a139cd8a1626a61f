import io

import pytest

from ftlstream.bitstream import BitReader
from ftlstream.nalu import (
    parse_nal_unit,
    parse_pps,
    parse_slice_header,
    parse_sps,
    rbsp_trailing_bits,
    read_nalu,
)
from ftlstream.paramsets import (
    NalUnitHeader,
    NaluType,
    ParameterSetStore,
    PictureParameterSet,
    SequenceParameterSet,
    SliceType,
)


class _Bits:
    def __init__(self):
        self.bits = []

    def u(self, n, value):
        self.bits.extend((value >> (n - 1 - i)) & 1 for i in range(n))
        return self

    def ue(self, value):
        code = value + 1
        n = code.bit_length()
        self.bits.extend([0] * (n - 1))
        return self.u(n, code)

    def se(self, value):
        return self.ue(2 * value - 1 if value > 0 else -2 * value)

    def trailing(self):
        self.bits.append(1)
        while len(self.bits) % 8:
            self.bits.append(0)
        return self

    def to_bytes(self):
        bits = self.bits + [0] * (-len(self.bits) % 8)
        return bytes(
            int("".join(map(str, bits[i:i + 8])), 2) for i in range(0, len(bits), 8)
        )

    def reader(self):
        return BitReader(self.to_bytes())


def test_nal_header_fields():
    header, rbsp = parse_nal_unit(b"\x67\x42")
    assert header.forbidden_zero_bit == 0
    assert header.nal_ref_idc == 3
    assert header.nal_unit_type == NaluType.SPS
    assert rbsp == b"\x42"


def test_emulation_prevention_removed():
    _, rbsp = parse_nal_unit(b"\x65\x00\x00\x03\x01\xff")
    assert rbsp == b"\x00\x00\x01\xff"


def test_emulation_prevention_at_end():
    _, rbsp = parse_nal_unit(b"\x65\xaa\x00\x00\x03")
    assert rbsp == b"\xaa\x00\x00"


def test_short_tail_kept():
    _, rbsp = parse_nal_unit(b"\x65\x00\x03")
    assert rbsp == b"\x00\x03"


def test_mvc_extension_rejected():
    with pytest.raises(ValueError):
        parse_nal_unit(b"\x0e\x00\x00\x00\x11")


def test_svc_extension_header():
    bits = (
        _Bits().u(1, 0).u(2, 3).u(5, 20)
        .u(1, 1).u(1, 1).u(6, 5).u(1, 1).u(3, 2).u(4, 3).u(3, 1)
        .u(1, 0).u(1, 1).u(1, 1).u(2, 3)
        .u(8, 0x12)
    )
    header, rbsp = parse_nal_unit(bits.to_bytes())
    assert header.nal_unit_type == 20
    assert header.svc_extension_flag == 1
    assert header.idr_flag == 1
    assert header.priority_id == 5
    assert header.no_inter_layer_pred_flag == 1
    assert header.dependency_id == 2
    assert header.quality_id == 3
    assert header.temporal_id == 1
    assert header.use_ref_base_pic_flag == 0
    assert header.discardable_flag == 1
    assert header.output_flag == 1
    assert header.reserved_three_2bits == 3
    assert rbsp == b"\x12"


def _basic_sps_bits():
    return (
        _Bits().u(8, 66).u(1, 1).u(1, 1).u(1, 0).u(1, 0).u(4, 0).u(8, 30)
        .ue(0).ue(0).ue(0).ue(2)
        .ue(1).u(1, 0).ue(79).ue(44).u(1, 1).u(1, 1).u(1, 0).u(1, 0)
        .trailing()
    )


def test_parse_basic_sps():
    reader = _basic_sps_bits().reader()
    sps = parse_sps(reader)
    assert sps.profile_idc == 66
    assert sps.constraint_set0_flag == 1
    assert sps.constraint_set1_flag == 1
    assert sps.level_idc == 30
    assert sps.pic_order_cnt_type == 0
    assert sps.log2_max_pic_order_cnt_lsb_minus4 == 2
    assert sps.num_ref_frames == 1
    assert sps.pic_width_in_mbs_minus1 == 79
    assert sps.pic_height_in_map_units_minus1 == 44
    assert sps.frame_mbs_only_flag == 1
    assert sps.vui_parameters_present_flag == 0
    assert reader.bits_left == 0


def test_parse_sps_poc_type_one():
    bits = (
        _Bits().u(8, 77).u(4, 0).u(4, 0).u(8, 31)
        .ue(1).ue(2).ue(1)
        .u(1, 0).se(-3).se(4).ue(3).se(1).se(-2).se(0)
        .ue(2).u(1, 1).ue(10).ue(20).u(1, 0).u(1, 1).u(1, 1).u(1, 0).u(1, 0)
        .trailing()
    )
    sps = parse_sps(bits.reader())
    assert sps.seq_parameter_set_id == 1
    assert sps.log2_max_frame_num_minus4 == 2
    assert sps.offset_for_non_ref_pic == -3
    assert sps.offset_for_top_to_bottom_field == 4
    assert sps.num_ref_frames_in_pic_order_cnt_cycle == 3
    assert sps.offset_for_ref_frame == [1, -2, 0]
    assert sps.gaps_in_frame_num_value_allowed_flag == 1
    assert sps.frame_mbs_only_flag == 0
    assert sps.mb_adaptive_frame_field_flag == 1


def test_parse_sps_with_cropping_and_vui():
    bits = (
        _Bits().u(8, 100).u(4, 0).u(4, 0).u(8, 40)
        .ue(0).ue(0).ue(2)
        .ue(1).u(1, 0).ue(119).ue(67).u(1, 1).u(1, 1)
        .u(1, 1).ue(0).ue(0).ue(0).ue(4)
        .u(1, 1)
        .u(1, 1).u(8, 255).u(16, 4).u(16, 3)
        .u(1, 1).u(1, 1)
        .u(1, 1).u(3, 5).u(1, 0).u(1, 1).u(8, 1).u(8, 1).u(8, 1)
        .u(1, 1).ue(1).ue(2)
        .u(1, 1).u(32, 1001).u(32, 60000).u(1, 1)
        .u(1, 1).ue(1).u(4, 2).u(4, 3)
        .ue(7).ue(8).u(1, 1).ue(9).ue(10).u(1, 0)
        .u(5, 23).u(5, 22).u(5, 21).u(5, 24)
        .u(1, 0)
        .u(1, 1)
        .u(1, 0)
        .u(1, 1).u(1, 1).ue(2).ue(1).ue(16).ue(15).ue(0).ue(1)
        .trailing()
    )
    reader = bits.reader()
    sps = parse_sps(reader)
    assert sps.frame_cropping_flag == 1
    assert sps.frame_crop_bottom_offset == 4
    vui = sps.vui
    assert vui.aspect_ratio_idc == 255
    assert (vui.sar_width, vui.sar_height) == (4, 3)
    assert vui.overscan_appropriate_flag == 1
    assert vui.video_format == 5
    assert vui.colour_primaries == 1
    assert vui.chroma_sample_loc_type_bottom_field == 2
    assert vui.num_units_in_tick == 1001
    assert vui.time_scale == 60000
    assert vui.nal_hrd.cpb_cnt_minus1 == 1
    assert vui.nal_hrd.bit_rate_value_minus1 == [7, 9]
    assert vui.nal_hrd.cpb_size_value_minus1 == [8, 10]
    assert vui.nal_hrd.cbr_flag == [1, 0]
    assert vui.nal_hrd.time_offset_length == 24
    assert vui.vcl_hrd_parameters_present_flag == 0
    assert vui.low_delay_hrd_flag == 1
    assert vui.max_dec_frame_buffering == 1
    assert reader.bits_left == 0


def _pps_tail(bits):
    return (
        bits.ue(0).ue(0).u(1, 1).u(2, 2).se(-4).se(0).se(2)
        .u(1, 1).u(1, 0).u(1, 1).trailing()
    )


def test_parse_basic_pps():
    reader = _pps_tail(_Bits().ue(3).ue(1).u(1, 1).u(1, 0).ue(0)).reader()
    pps = parse_pps(reader)
    assert pps.pic_parameter_set_id == 3
    assert pps.seq_parameter_set_id == 1
    assert pps.entropy_coding_mode_flag == 1
    assert pps.weighted_pred_flag == 1
    assert pps.weighted_bipred_idc == 2
    assert pps.pic_init_qp_minus26 == -4
    assert pps.chroma_qp_index_offset == 2
    assert pps.deblocking_filter_control_present_flag == 1
    assert pps.redundant_pic_cnt_present_flag == 1
    assert reader.bits_left == 0


def test_pps_slice_group_map_type_zero():
    bits = _pps_tail(_Bits().ue(0).ue(0).u(1, 0).u(1, 0).ue(2).ue(0).ue(5).ue(6).ue(7))
    pps = parse_pps(bits.reader())
    assert pps.run_length_minus1 == [5, 6, 7]


def test_pps_slice_group_map_type_two_reads_minus1_pairs():
    bits = _pps_tail(
        _Bits().ue(0).ue(0).u(1, 0).u(1, 0).ue(2).ue(2).ue(1).ue(2).ue(3).ue(4)
    )
    reader = bits.reader()
    pps = parse_pps(reader)
    assert pps.top_left == [1, 3]
    assert pps.bottom_right == [2, 4]
    assert reader.bits_left == 0


def test_pps_slice_group_map_type_six():
    bits = _pps_tail(
        _Bits().ue(0).ue(0).u(1, 0).u(1, 0).ue(1).ue(6).ue(2)
        .u(2, 0).u(2, 1).u(2, 1)
    )
    reader = bits.reader()
    pps = parse_pps(reader)
    assert pps.pic_size_in_map_units_minus1 == 2
    assert pps.slice_group_id == [0, 1, 1]
    assert reader.bits_left == 0


def test_trailing_bits_valid():
    reader = BitReader(b"\x80")
    assert rbsp_trailing_bits(reader) is True
    assert reader.is_byte_aligned()


def test_trailing_bits_mid_byte():
    reader = BitReader(b"\xb0")
    reader.read_bits(3)
    assert rbsp_trailing_bits(reader) is True
    assert reader.bits_left == 0


def test_trailing_bits_missing_stop_bit():
    assert rbsp_trailing_bits(BitReader(b"\x40")) is False


def test_trailing_bits_bad_alignment_bit():
    assert rbsp_trailing_bits(BitReader(b"\x81")) is False


def _store(log2_max_frame_num_minus4=0):
    store = ParameterSetStore()
    store.store_sps(
        SequenceParameterSet(
            seq_parameter_set_id=0, log2_max_frame_num_minus4=log2_max_frame_num_minus4
        )
    )
    store.store_pps(PictureParameterSet(pic_parameter_set_id=0, seq_parameter_set_id=0))
    return store


def test_parse_slice_header():
    header = NalUnitHeader(nal_ref_idc=3, nal_unit_type=NaluType.IDR_SLICE)
    reader = _Bits().ue(0).ue(7).ue(0).u(4, 5).reader()
    slice_header = parse_slice_header(reader, header, _store())
    assert slice_header.first_mb_in_slice == 0
    assert slice_header.slice_type == SliceType.I
    assert slice_header.pic_parameter_set_id == 0
    assert slice_header.frame_num == 5


def test_slice_header_frame_num_width_from_sps():
    header = NalUnitHeader(nal_unit_type=NaluType.NON_IDR_SLICE)
    reader = _Bits().ue(12).ue(0).ue(0).u(6, 33).reader()
    slice_header = parse_slice_header(reader, header, _store(2))
    assert slice_header.first_mb_in_slice == 12
    assert slice_header.slice_type == SliceType.P
    assert slice_header.frame_num == 33


def test_slice_header_missing_pps():
    header = NalUnitHeader(nal_unit_type=NaluType.NON_IDR_SLICE)
    reader = _Bits().ue(0).ue(0).ue(4).u(4, 0).reader()
    with pytest.raises(LookupError):
        parse_slice_header(reader, header, _store())


def test_slice_header_missing_sps():
    store = ParameterSetStore()
    store.store_pps(PictureParameterSet(pic_parameter_set_id=0, seq_parameter_set_id=2))
    header = NalUnitHeader(nal_unit_type=NaluType.NON_IDR_SLICE)
    reader = _Bits().ue(0).ue(0).ue(0).u(4, 0).reader()
    with pytest.raises(LookupError):
        parse_slice_header(reader, header, store)


def test_read_nalu_sequence():
    data = b"\x00\x00\x00\x01\x67\xaa\x00\x00\x00\x01\x68\xbb"
    stream = io.BytesIO(data)
    assert read_nalu(stream) == b"\x67\xaa"
    assert stream.tell() == 7
    assert read_nalu(stream) == b"\x68\xbb"
    assert read_nalu(stream) is None


def test_read_nalu_without_start_code():
    assert read_nalu(io.BytesIO(b"\x12\x34\x56")) is None