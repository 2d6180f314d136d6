"""Packet definitions exchanged between the streaming server and the headset.

Each packet is a dataclass paired with a serialization descriptor.  The two
directions are described by the variants :data:`FROM_HEADSET_PACKETS` and
:data:`TO_HEADSET_PACKETS`; their structural hash is the protocol version.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from .serialization import (
    DATA_HOLDER,
    FLOAT32,
    FLOAT64,
    NANOSECONDS,
    UINT8,
    UINT16,
    UINT32,
    UINT64,
    Array,
    EnumType,
    Optional,
    Pair,
    Span,
    Struct,
    Variant,
    Vector,
    type_hash,
)

__all__ = [
    "DEFAULT_PORT",
    "DeviceId",
    "VideoCodec",
    "Quaternion",
    "Vector3",
    "Pose",
    "Fov",
    "AudioDescription",
    "AudioData",
    "HeadsetInfoPacket",
    "FromHeadsetHandshake",
    "TrackingFlags",
    "TrackingPose",
    "TrackingView",
    "Tracking",
    "InputValue",
    "Inputs",
    "TimesyncResponse",
    "Feedback",
    "ToHeadsetHandshake",
    "AudioStreamDescription",
    "VideoStreamItem",
    "FoveationParameterItem",
    "FoveationParameter",
    "VideoStreamDescription",
    "ShardFlags",
    "ViewInfo",
    "VideoStreamDataShard",
    "Haptics",
    "TimesyncQuery",
    "FROM_HEADSET_PACKETS",
    "TO_HEADSET_PACKETS",
    "PROTOCOL",
    "protocol_version",
]

DEFAULT_PORT = 9757
"""Default port the server listens on, for both TCP and UDP."""


class DeviceId(enum.IntEnum):
    """Tracked devices and input components."""

    HEAD = 0
    LEFT_CONTROLLER_HAPTIC = 1
    RIGHT_CONTROLLER_HAPTIC = 2
    LEFT_GRIP = 3
    LEFT_AIM = 4
    RIGHT_GRIP = 5
    RIGHT_AIM = 6
    X_CLICK = 7
    X_TOUCH = 8
    Y_CLICK = 9
    Y_TOUCH = 10
    MENU_CLICK = 11
    LEFT_SQUEEZE_VALUE = 12
    LEFT_TRIGGER_VALUE = 13
    LEFT_TRIGGER_TOUCH = 14
    LEFT_THUMBSTICK_X = 15
    LEFT_THUMBSTICK_Y = 16
    LEFT_THUMBSTICK_CLICK = 17
    LEFT_THUMBSTICK_TOUCH = 18
    LEFT_THUMBREST_TOUCH = 19
    A_CLICK = 20
    A_TOUCH = 21
    B_CLICK = 22
    B_TOUCH = 23
    SYSTEM_CLICK = 24
    RIGHT_SQUEEZE_VALUE = 25
    RIGHT_TRIGGER_VALUE = 26
    RIGHT_TRIGGER_TOUCH = 27
    RIGHT_THUMBSTICK_X = 28
    RIGHT_THUMBSTICK_Y = 29
    RIGHT_THUMBSTICK_CLICK = 30
    RIGHT_THUMBSTICK_TOUCH = 31
    RIGHT_THUMBREST_TOUCH = 32


class VideoCodec(enum.IntEnum):
    """Video codec of a stream."""

    H264 = 0
    H265 = 1
    HEVC = 1


DEVICE_ID = EnumType(DeviceId, "B")
VIDEO_CODEC = EnumType(VideoCodec, "i")


# Geometry ------------------------------------------------------------------


@dataclass
class Quaternion:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0


@dataclass
class Vector3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass
class Pose:
    orientation: Quaternion = field(default_factory=Quaternion)
    position: Vector3 = field(default_factory=Vector3)


@dataclass
class Fov:
    angle_left: float = 0.0
    angle_right: float = 0.0
    angle_up: float = 0.0
    angle_down: float = 0.0


QUATERNION = Struct.of(Quaternion, x=FLOAT32, y=FLOAT32, z=FLOAT32, w=FLOAT32)
VECTOR3 = Struct.of(Vector3, x=FLOAT32, y=FLOAT32, z=FLOAT32)
POSE = Struct.of(Pose, orientation=QUATERNION, position=VECTOR3)
FOV = Struct.of(Fov, angle_left=FLOAT32, angle_right=FLOAT32, angle_up=FLOAT32, angle_down=FLOAT32)


def _two_fovs() -> list[Fov]:
    return [Fov(), Fov()]


def _two_poses() -> list[Pose]:
    return [Pose(), Pose()]


# Shared ----------------------------------------------------------------------


@dataclass
class AudioDescription:
    """Channel count and sample rate of an audio device."""

    num_channels: int = 0
    sample_rate: int = 0


AUDIO_DESCRIPTION = Struct.of(AudioDescription, num_channels=UINT8, sample_rate=UINT32)


@dataclass
class AudioData:
    """Chunk of audio samples; ``data`` holds the whole received buffer."""

    timestamp: int = 0
    payload: bytes = b""
    data: bytes = b""


AUDIO_DATA = Struct.of(AudioData, timestamp=UINT64, payload=Span(), data=DATA_HOLDER)


# From headset ----------------------------------------------------------------


@dataclass
class HeadsetInfoPacket:
    recommended_eye_width: int = 0
    recommended_eye_height: int = 0
    available_refresh_rates: list[float] = field(default_factory=list)
    preferred_refresh_rate: float = 0.0
    speaker: AudioDescription | None = None
    microphone: AudioDescription | None = None
    fov: list[Fov] = field(default_factory=_two_fovs)


HEADSET_INFO_PACKET = Struct.of(
    HeadsetInfoPacket,
    recommended_eye_width=UINT32,
    recommended_eye_height=UINT32,
    available_refresh_rates=Vector(FLOAT32),
    preferred_refresh_rate=FLOAT32,
    speaker=Optional(AUDIO_DESCRIPTION),
    microphone=Optional(AUDIO_DESCRIPTION),
    fov=Array(FOV, 2),
)


@dataclass
class FromHeadsetHandshake:
    pass


FROM_HEADSET_HANDSHAKE = Struct.of(FromHeadsetHandshake)


class TrackingFlags(enum.IntFlag):
    ORIENTATION_VALID = 1 << 0
    POSITION_VALID = 1 << 1
    LINEAR_VELOCITY_VALID = 1 << 2
    ANGULAR_VELOCITY_VALID = 1 << 3
    ORIENTATION_TRACKED = 1 << 4
    POSITION_TRACKED = 1 << 5


@dataclass
class TrackingPose:
    device: DeviceId = DeviceId.HEAD
    pose: Pose = field(default_factory=Pose)
    linear_velocity: Vector3 = field(default_factory=Vector3)
    angular_velocity: Vector3 = field(default_factory=Vector3)
    flags: int = 0


TRACKING_POSE = Struct.of(
    TrackingPose,
    device=DEVICE_ID,
    pose=POSE,
    linear_velocity=VECTOR3,
    angular_velocity=VECTOR3,
    flags=UINT8,
)


@dataclass
class TrackingView:
    """Eye view, relative to the view reference space."""

    pose: Pose = field(default_factory=Pose)
    fov: Fov = field(default_factory=Fov)


TRACKING_VIEW = Struct.of(TrackingView, pose=POSE, fov=FOV)


def _two_views() -> list[TrackingView]:
    return [TrackingView(), TrackingView()]


@dataclass
class Tracking:
    timestamp: int = 0
    flags: int = 0
    views: list[TrackingView] = field(default_factory=_two_views)
    device_poses: list[TrackingPose] = field(default_factory=list)


TRACKING = Struct.of(
    Tracking,
    timestamp=UINT64,
    flags=UINT64,
    views=Array(TRACKING_VIEW, 2),
    device_poses=Vector(TRACKING_POSE),
)


@dataclass
class InputValue:
    id: DeviceId = DeviceId.HEAD
    value: float = 0.0
    last_change_time: int = 0


INPUT_VALUE = Struct.of(InputValue, id=DEVICE_ID, value=FLOAT32, last_change_time=UINT64)


@dataclass
class Inputs:
    values: list[InputValue] = field(default_factory=list)


INPUTS = Struct.of(Inputs, values=Vector(INPUT_VALUE))


@dataclass
class TimesyncResponse:
    """Answer to a time query: ``query`` is the server time in ns, ``response`` the headset time."""

    query: int = 0
    response: int = 0


TIMESYNC_RESPONSE = Struct.of(TimesyncResponse, query=NANOSECONDS, response=UINT64)


@dataclass
class Feedback:
    frame_index: int = 0
    stream_index: int = 0
    received_first_packet: int = 0
    received_last_packet: int = 0
    sent_to_decoder: int = 0
    received_from_decoder: int = 0
    blitted: int = 0
    displayed: int = 0
    received_pose: list[Pose] = field(default_factory=_two_poses)
    real_pose: list[Pose] = field(default_factory=_two_poses)
    data_packets: int = 0
    received_data_packets: int = 0


FEEDBACK = Struct.of(
    Feedback,
    frame_index=UINT64,
    stream_index=UINT8,
    received_first_packet=UINT64,
    received_last_packet=UINT64,
    sent_to_decoder=UINT64,
    received_from_decoder=UINT64,
    blitted=UINT64,
    displayed=UINT64,
    received_pose=Array(POSE, 2),
    real_pose=Array(POSE, 2),
    data_packets=UINT8,
    received_data_packets=UINT8,
)

FROM_HEADSET_PACKETS = Variant(
    HEADSET_INFO_PACKET,
    FEEDBACK,
    AUDIO_DATA,
    FROM_HEADSET_HANDSHAKE,
    TRACKING,
    INPUTS,
    TIMESYNC_RESPONSE,
)


# To headset ------------------------------------------------------------------


@dataclass
class ToHeadsetHandshake:
    pass


TO_HEADSET_HANDSHAKE = Struct.of(ToHeadsetHandshake)


@dataclass
class AudioStreamDescription:
    speaker: AudioDescription | None = None
    microphone: AudioDescription | None = None


AUDIO_STREAM_DESCRIPTION = Struct.of(
    AudioStreamDescription,
    speaker=Optional(AUDIO_DESCRIPTION),
    microphone=Optional(AUDIO_DESCRIPTION),
)


@dataclass
class VideoStreamItem:
    """One encoded stream: useful size, padded video size, offset and codec."""

    width: int = 0
    height: int = 0
    video_width: int = 0
    video_height: int = 0
    offset_x: int = 0
    offset_y: int = 0
    codec: VideoCodec = VideoCodec.H264
    range: int | None = None
    color_model: int | None = None


VIDEO_STREAM_ITEM = Struct.of(
    VideoStreamItem,
    width=UINT16,
    height=UINT16,
    video_width=UINT16,
    video_height=UINT16,
    offset_x=UINT16,
    offset_y=UINT16,
    codec=VIDEO_CODEC,
    range=Optional(UINT32),
    color_model=Optional(UINT32),
)


@dataclass
class FoveationParameterItem:
    center: float = 0.0
    scale: float = 0.0
    a: float = 0.0
    b: float = 0.0


FOVEATION_PARAMETER_ITEM = Struct.of(
    FoveationParameterItem, center=FLOAT64, scale=FLOAT64, a=FLOAT64, b=FLOAT64
)


@dataclass
class FoveationParameter:
    x: FoveationParameterItem = field(default_factory=FoveationParameterItem)
    y: FoveationParameterItem = field(default_factory=FoveationParameterItem)


FOVEATION_PARAMETER = Struct.of(
    FoveationParameter, x=FOVEATION_PARAMETER_ITEM, y=FOVEATION_PARAMETER_ITEM
)


def _two_foveations() -> list[FoveationParameter]:
    return [FoveationParameter(), FoveationParameter()]


@dataclass
class VideoStreamDescription:
    width: int = 0
    height: int = 0
    fps: float = 0.0
    foveation: list[FoveationParameter] = field(default_factory=_two_foveations)
    items: list[VideoStreamItem] = field(default_factory=list)


VIDEO_STREAM_DESCRIPTION = Struct.of(
    VideoStreamDescription,
    width=UINT16,
    height=UINT16,
    fps=FLOAT32,
    foveation=Array(FOVEATION_PARAMETER, 2),
    items=Vector(VIDEO_STREAM_ITEM),
)


class ShardFlags(enum.IntFlag):
    START_OF_SLICE = 1
    END_OF_SLICE = 1 << 1
    END_OF_FRAME = 1 << 2


@dataclass
class ViewInfo:
    """Pose information of a frame; ``display_time`` is in headset time (ns)."""

    display_time: int = 0
    pose: list[Pose] = field(default_factory=_two_poses)
    fov: list[Fov] = field(default_factory=_two_fovs)


VIEW_INFO = Struct.of(ViewInfo, display_time=UINT64, pose=Array(POSE, 2), fov=Array(FOV, 2))


@dataclass
class VideoStreamDataShard:
    """Piece of an encoded frame; the last shard of a frame carries ``view_info``."""

    MAX_PAYLOAD_SIZE = 1400

    stream_item_idx: int = 0
    frame_idx: int = 0
    shard_idx: int = 0
    flags: int = 0
    view_info: ViewInfo | None = None
    payload: bytes = b""
    data: bytes = b""


VIDEO_STREAM_DATA_SHARD = Struct.of(
    VideoStreamDataShard,
    stream_item_idx=UINT8,
    frame_idx=UINT64,
    shard_idx=UINT16,
    flags=UINT8,
    view_info=Optional(VIEW_INFO),
    payload=Span(),
    data=DATA_HOLDER,
)


@dataclass
class Haptics:
    id: DeviceId = DeviceId.LEFT_CONTROLLER_HAPTIC
    duration: int = 0
    frequency: float = 0.0
    amplitude: float = 0.0


HAPTICS = Struct.of(Haptics, id=DEVICE_ID, duration=NANOSECONDS, frequency=FLOAT32, amplitude=FLOAT32)


@dataclass
class TimesyncQuery:
    query: int = 0


TIMESYNC_QUERY = Struct.of(TimesyncQuery, query=NANOSECONDS)

TO_HEADSET_PACKETS = Variant(
    TO_HEADSET_HANDSHAKE,
    AUDIO_STREAM_DESCRIPTION,
    VIDEO_STREAM_DESCRIPTION,
    AUDIO_DATA,
    VIDEO_STREAM_DATA_SHARD,
    HAPTICS,
    TIMESYNC_QUERY,
)

PROTOCOL = Pair(FROM_HEADSET_PACKETS, TO_HEADSET_PACKETS)


def protocol_version() -> int:
    """Structural hash of both packet sets; peers must agree on it."""
    return type_hash(PROTOCOL)