"""Base video encoder: splits encoded frames into shards sent to the headset.

Also holds the NAL unit filter that removes access unit delimiters and
supplemental enhancement information from H.264 / H.265 bitstreams.
"""

from __future__ import annotations

import abc
import dataclasses
import threading
import time
from typing import Any, Callable, Protocol

from .packets import ShardFlags, VideoCodec, VideoStreamDataShard, ViewInfo

__all__ = [
    "VIEW_INFO_SIZE",
    "EncoderSession",
    "should_keep_nal_h264",
    "should_keep_nal_h265",
    "filter_nal",
    "VideoEncoder",
]

VIEW_INFO_SIZE = 96
"""Room taken in a shard by the view information (timestamp, two poses, two fovs)."""

_START_CODE = b"\x00\x00\x01"

_H264_DROPPED = frozenset({6, 9})  # supplemental enhancement information, access unit delimiter
_H265_DROPPED = frozenset({35, 39})  # access unit delimiter, supplemental enhancement information


class EncoderSession(Protocol):
    """What an encoder needs from the connection to the headset."""

    def dump_time(self, event: str, frame_index: int, timestamp: int, stream: int, extra: str = "") -> None: ...

    def send_stream(self, shard: VideoStreamDataShard) -> None: ...


def _nal_header_byte(header: bytes | memoryview) -> int | None:
    """First byte after a 3- or 4-byte start code, or None if absent."""
    if len(header) < 3:
        return None
    index = 4 if header[2] == 0 else 3
    if index >= len(header):
        return None
    return header[index]


def should_keep_nal_h264(header: bytes | memoryview) -> bool:
    """Whether the H.264 NAL unit starting with this start code is kept."""
    byte = _nal_header_byte(header)
    if byte is None:
        return True
    return (byte & 0x1F) not in _H264_DROPPED


def should_keep_nal_h265(header: bytes | memoryview) -> bool:
    """Whether the H.265 NAL unit starting with this start code is kept."""
    byte = _nal_header_byte(header)
    if byte is None:
        return True
    return ((byte >> 1) & 0x3F) not in _H265_DROPPED


def filter_nal(data: bytes | bytearray | memoryview, codec: VideoCodec) -> bytes:
    """Copy the Annex B stream ``data`` without delimiter and SEI NAL units."""
    data = bytes(data)
    if len(data) < 4:
        return b""
    if codec == VideoCodec.H264:
        keep = should_keep_nal_h264
    elif codec == VideoCodec.H265:
        keep = should_keep_nal_h265
    else:
        return b""

    view = memoryview(data)
    out = bytearray()
    end = len(data)
    start = 0
    while start != end:
        next_start = data.find(_START_CODE, start + 3)
        if next_start < 0:
            next_start = end
        elif data[next_start - 1] == 0:
            next_start -= 1
        if keep(view[start:]):
            out += view[start:next_start]
        start = next_start
    return bytes(out)


class VideoEncoder(abc.ABC):
    """Encodes one stream and sends its frames to the headset as shards.

    Subclasses implement :meth:`_encode`, which encodes the image at an index
    and hands the resulting bitstream to :meth:`send_data`.
    """

    def __init__(self, stream_idx: int = 0, clock: Callable[[], int] = time.monotonic_ns) -> None:
        self.stream_idx = stream_idx
        self._clock = clock
        self._lock = threading.Lock()
        self._sync_lock = threading.Lock()
        self._sync_needed = True
        self._session: Any = None
        self._shard = VideoStreamDataShard()

    def sync_needed(self) -> None:
        """Ask for the next frame to be an IDR frame (the headset lost a frame)."""
        with self._sync_lock:
            self._sync_needed = True

    def _take_sync(self) -> bool:
        with self._sync_lock:
            idr, self._sync_needed = self._sync_needed, False
            return idr

    def encode(self, session: EncoderSession, view_info: ViewInfo, frame_index: int, index: int) -> None:
        """Encode the image at ``index`` as frame ``frame_index`` and send it through ``session``."""
        self._session = session
        target_timestamp = view_info.display_time
        idr = self._take_sync()
        extra = ",idr" if idr else ",p"
        session.dump_time("encode_begin", frame_index, self._clock(), self.stream_idx, extra)

        self._shard.stream_item_idx = self.stream_idx
        self._shard.frame_idx = frame_index
        self._shard.shard_idx = 0
        self._shard.view_info = view_info

        self._encode(index, idr, target_timestamp)
        session.dump_time("encode_end", frame_index, self._clock(), self.stream_idx, extra)

    @abc.abstractmethod
    def _encode(self, index: int, idr: bool, target_timestamp: int) -> None:
        """Encode the image at ``index``; ``target_timestamp`` is the display time in ns."""

    def send_data(self, data: bytes | bytearray | memoryview, end_of_frame: bool) -> None:
        """Split one slice of encoded data into shards and send them."""
        with self._lock:
            session = self._session
            if session is None:
                raise RuntimeError("send_data called before encode")
            shard = self._shard
            if shard.shard_idx == 0:
                session.dump_time("send_begin", shard.frame_idx, self._clock(), self.stream_idx)

            payload = memoryview(bytes(data))
            shard.flags = ShardFlags.START_OF_SLICE
            begin = 0
            end = len(payload)
            while begin != end:
                room = VideoStreamDataShard.MAX_PAYLOAD_SIZE - (
                    VIEW_INFO_SIZE if shard.view_info is not None else 0
                )
                next_begin = min(end, begin + room)
                if next_begin == end:
                    shard.flags |= ShardFlags.END_OF_SLICE
                    if end_of_frame:
                        shard.flags |= ShardFlags.END_OF_FRAME
                shard.payload = bytes(payload[begin:next_begin])
                session.send_stream(dataclasses.replace(shard, flags=int(shard.flags)))
                shard.shard_idx += 1
                shard.flags = 0
                shard.view_info = None
                begin = next_begin

            if end_of_frame:
                session.dump_time("send_end", shard.frame_idx, self._clock(), self.stream_idx)