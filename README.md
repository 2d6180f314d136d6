# wivrn

Building blocks for a server that streams VR video to a headset: the binary
wire protocol spoken by both ends, framed TCP and UDP transports, clock-offset
estimation, a pose history with interpolation, reading of the user
configuration, encoder selection, and the logic that cuts encoded video into
network shards.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Modules

### `wivrn.serialization`

A type-descriptor system for the wire format. Numbers are little-endian.

- Descriptors: `Arithmetic` (with ready-made `BOOL`, `INT8` ... `INT64`,
  `UINT8` ... `UINT64`, `FLOAT32`, `FLOAT64`), `EnumType`, `Struct` (build one
  from a dataclass with `Struct.of`), `String` (64-bit length prefix),
  `Vector` (16-bit count prefix), `Optional` (presence flag), `Array` (fixed
  length, no prefix), `Variant` (8-bit alternative index), `Duration`
  (`NANOSECONDS` is provided), `Span` (16-bit length, sent as its own chunk),
  `DataHolder` (`DATA_HOLDER`, takes the whole received buffer) and `Pair`.
- `SerializationPacket` collects output; `spans()` returns it as a list of
  chunks and `to_bytes()` as one byte string.
- `DeserializationPacket` reads input with a cursor and raises
  `DeserializationError` on truncated or invalid data.
- `type_hash(descriptor)` is a 64-bit FNV-1a hash of a type's layout, built
  with `HashContext`.

### `wivrn.packets`

Dataclasses for every message: from the headset `HeadsetInfoPacket`,
`Feedback`, `AudioData`, `FromHeadsetHandshake`, `Tracking`, `Inputs`,
`TimesyncResponse`; to the headset `ToHeadsetHandshake`,
`AudioStreamDescription`, `VideoStreamDescription`, `AudioData`,
`VideoStreamDataShard`, `Haptics`, `TimesyncQuery`. They are grouped in the
variants `FROM_HEADSET_PACKETS` and `TO_HEADSET_PACKETS`; `protocol_version()`
hashes both, and the two ends must agree on it. Also defines `DeviceId`,
`VideoCodec`, `TrackingFlags`, `ShardFlags` and `DEFAULT_PORT` (9757).

### `wivrn.sockets`

- `UDP`: one packet per datagram (`bind`, `connect`, `receive_raw`,
  `receive_from_raw`, `send_raw`, buffer size setters).
- `TCP`: messages framed by a 4-byte length. `receive_raw()` reads without
  blocking and returns an empty packet until a message is complete; it raises
  `SocketShutdown` when the peer has closed. `send_raw()` is safe to call from
  several threads.
- `TCPListener(port)`: `accept()` returns a `TCP` and the peer address.
- `TypedSocket(transport, received_type, sent_type)`: `send(packet)` and
  `receive()`, which gives None while no complete packet is available.

All of them are context managers and have `close()`.

### `wivrn.sync_queue`

`SyncQueue`: a thread-safe FIFO whose `pop`, `pop_if` and `peek` block until
an item arrives, and raise `SyncQueueClosed` once `close()` has been called.
`drop_until(pred)` discards items from the front without waiting.

### `wivrn.offset_estimator`

`OffsetEstimator.get_offset(response, now, old_offset)` turns time-sync round
trips into a `ClockOffset` (headset clock minus server clock, in ns), with
`from_headset` and `to_headset` conversions. Answers whose round trip exceeds
three times the filtered mean are skipped.

### `wivrn.pose_list`

`PoseList(device)` keeps the last ten `SpaceRelation` samples of one device.
`update_tracking(tracking, offset)` records the device's pose from a
`Tracking` packet; `get_at(timestamp_ns)` interpolates between samples or
extrapolates from the nearest two. `interpolate` and `extrapolate` are
available on their own.

### `wivrn.configuration`

Reads `$XDG_CONFIG_HOME/wivrn/config.json`, or `$HOME/.config/wivrn/config.json`
when that variable is not set (`config_file_path()`).
`read_user_configuration(path=None)` returns an empty `Configuration` if the
file is missing or invalid; `parse_configuration(data)` accepts JSON text or a
decoded document and raises `ValueError` on bad content. Recognised keys:

- `scale`: a number or a pair of numbers;
- `encoders`: a list of objects with `encoder` (required), `width`, `height`,
  `offset_x`, `offset_y` (fractions of the eye size), `bitrate`, `group`,
  `codec` (`h264`, `avc`, `h265` or `hevc`) and `options` (string to string);
- `application`: a string or a list of strings.

### `wivrn.encoder_settings`

`get_encoder_settings(width, height, nvidia=False, config=None)` builds one
`EncoderSettings` per configured encoder (sizes rounded up, H.264 and 50 Mbit/s
unless set, groups numbered in order unless set). When no encoder is
configured it returns `default_encoder_settings`: a single full-size H.265
stream on `nvenc` for NVIDIA GPUs, `vaapi` otherwise.

### `wivrn.video_encoder`

- `filter_nal(data, codec)` removes access unit delimiters and SEI NAL units
  from an Annex B H.264 or H.265 stream; `should_keep_nal_h264` and
  `should_keep_nal_h265` decide for a single unit.
- `VideoEncoder` is an abstract base. A subclass implements
  `_encode(index, idr, target_timestamp)` and passes the bitstream to
  `send_data(data, end_of_frame)`, which splits it into
  `VideoStreamDataShard`s of at most 1400 bytes (less on the first shard,
  which carries the view information) and hands them to the session's
  `send_stream`. `encode(session, view_info, frame_index, index)` drives one
  frame; `sync_needed()` makes the next frame an IDR frame. The session only
  needs `dump_time` and `send_stream` (see `EncoderSession`).

## Example

```python
from wivrn.packets import TO_HEADSET_PACKETS, DeviceId, Haptics, protocol_version
from wivrn.serialization import DeserializationPacket, SerializationPacket

out = SerializationPacket()
out.serialize(
    TO_HEADSET_PACKETS,
    Haptics(id=DeviceId.LEFT_CONTROLLER_HAPTIC, duration=10_000_000, frequency=160.0, amplitude=0.5),
)
data = out.to_bytes()

decoded = DeserializationPacket(data).deserialize(TO_HEADSET_PACKETS)
assert decoded.frequency == 160.0
print(hex(protocol_version()))
```

## What this package does not do

It is a library with no command to run. It contains no actual video encoder
(`VideoEncoder` must be subclassed with one), no audio capture or playback,
no network service announcement, no headset-side client and no server loop
that ties the pieces together.