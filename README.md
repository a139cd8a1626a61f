# ftlstream

A pure-Python library with the client-side pieces for streaming to an FTL
ingest server. It has no third-party dependencies.

| Module | What it holds |
| --- | --- |
| `ftlstream.bitstream` | `BitReader`: fixed-width fields and Exp-Golomb codes |
| `ftlstream.paramsets` | H.264 syntax dataclasses and `ParameterSetStore` |
| `ftlstream.nalu` | NAL unit header, SPS, PPS and slice header parsing |
| `ftlstream.decoder` | `H264Decoder`, which tracks parameter sets and slice order |
| `ftlstream.media_files` | `VideoSource`, `AudioSource`, `read_annexb_nalu`, `read_ogg_page` |
| `ftlstream.timeutil` | `Timeval` and elapsed-time helpers |
| `ftlstream.protocol` | status/response codes, HMAC challenge, `StreamState`, `StatusQueue` |
| `ftlstream.handshake` | `ControlConnection`: TCP setup, handshake, keepalive, status watch |
| `ftlstream.sdk` | `IngestHandle`, `IngestParams`, `parse_stream_key`, `status_code_to_string` |

## Reading bits

```python
from ftlstream.bitstream import BitReader

reader = BitReader(bytes([0b1000_1000]))
reader.read_ue()          # 0  (a single "1" bit)
reader.read_bits(3)       # 0
reader.is_byte_aligned()  # False
```

`read_ue` and `read_se` decode unsigned and signed Exp-Golomb codes, `peek`
looks ahead without consuming bits, and reading past the end raises
`EOFError`.

## Parsing H.264 headers

`ftlstream.nalu.parse_nal_unit(data)` returns the NAL unit header and the
payload with emulation prevention bytes removed. `parse_sps` and `parse_pps`
read parameter sets from a `BitReader`; `parse_slice_header` reads the slice
header up to `frame_num` and raises `LookupError` when the referenced PPS or
SPS is not in the `ParameterSetStore`.

`H264Decoder.decode_nalu(data)` does all of this for one NAL unit (without
its start code): parameter sets are stored, the latest slice header is kept in
`decoder.slice`, and slices of one frame whose first macroblock does not
increase are counted in `decoder.slice_order_errors`.

## Walking an H.264 file

```python
from ftlstream.media_files import VideoSource

with VideoSource("clip.h264") as video:
    while True:
        try:
            nal_unit, end_of_frame = video.next_packet()
        except EOFError:
            break
        ...
```

Each packet is one NAL unit without its start code. The source reads one NAL
unit ahead to decide `end_of_frame`: a slice ends its frame when the next unit
is not a slice or has a different `frame_num`. A unit is only handed out once
the start code after it has been seen, so trailing bytes at the end of the
file that are not followed by a start code are not returned. `at_end()`
reports that the end of the file has been reached and `reset()` rewinds.

## Reading Opus audio

```python
from ftlstream.media_files import AudioSource

with AudioSource("audio.ogg", raw_opus=False) as audio:
    while (packet := audio.next_packet()) is not None:
        ...
```

With `raw_opus=True` the file is read as packets, each preceded by a 4-byte
little-endian length. Otherwise Ogg pages are read with `read_ogg_page` and
packets are rebuilt from each page's segment table. `read_ogg_page` raises
`ValueError` for a page longer than `MAX_OGG_PAGE_LEN`.

## Time helpers

```python
from ftlstream.timeutil import Timeval

start = Timeval.from_us(1_500_000)
start.to_ms()      # 1500.0
start.to_us()      # 1500000
```

`Timeval` is immutable: `add_ms` and `add_us` return a new value, and
subtracting two `Timeval`s gives their difference. `Timeval.now()` reads the
wall clock, `to_ntp()` gives a 64-bit NTP timestamp, and `subtract_to_us`,
`subtract_to_ms` and `ms_elapsed_since` measure intervals.

## Talking to an ingest

```python
from ftlstream.sdk import IngestHandle, IngestParams
from ftlstream.handshake import IngestError

params = IngestParams(stream_key="1234-token", ingest_hostname="localhost",
                      vendor_name="example", vendor_version="0.0.1")
handle = IngestHandle(params)
try:
    handle.connect()
    message = handle.get_status(1000)
except IngestError as exc:
    print(exc.status)
finally:
    handle.disconnect()
    handle.destroy()
```

`connect()` opens the TCP control connection (port 8084), answers the HMAC
challenge, announces the stream and starts keepalive and connection-watch
threads; failures raise `IngestError` carrying a `StatusCode`. Events such as
disconnects arrive through `get_status(timeout_ms)`, which raises
`IngestError` on timeout or after `destroy()`. `update_params(params)` takes
over the peak bitrate and ingest hostname. `next_media_dts(media_type,
end_of_frame)` hands out decode timestamps: 20 ms per audio packet, and one
frame period per video frame with the rounding error carried forward.

Stream keys have the form `<channel id>-<key>`; `,` and `_` are accepted as
separators and a leading `re_` is skipped. `parse_stream_key` splits a key and
`status_code_to_string` turns a `StatusCode` into a readable message.

## What it does not do

The package handles the control channel only. It does not packetise or send
audio and video over RTP/UDP, has no speed test, no bitrate adaptation and no
automatic ingest selection (the hostname is used as given). There is no
command-line program; the pieces above are meant to be driven from your own
code. The H.264 parsing stops at `frame_num` in slice headers and does not
decode pictures.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.