import pytest

from wivrn.packets import ShardFlags, VideoCodec, VideoStreamDataShard, ViewInfo
from wivrn.video_encoder import (
    VIEW_INFO_SIZE,
    VideoEncoder,
    filter_nal,
    should_keep_nal_h264,
    should_keep_nal_h265,
)


class FakeSession:
    def __init__(self):
        self.events = []
        self.shards = []

    def dump_time(self, event, frame_index, timestamp, stream, extra=""):
        self.events.append((event, frame_index, stream, extra))

    def send_stream(self, shard):
        self.shards.append(shard)


class FakeEncoder(VideoEncoder):
    def __init__(self, payloads, stream_idx=0):
        super().__init__(stream_idx, clock=lambda: 0)
        self.payloads = payloads
        self.calls = []

    def _encode(self, index, idr, target_timestamp):
        self.calls.append((index, idr, target_timestamp))
        for i, payload in enumerate(self.payloads):
            self.send_data(payload, i == len(self.payloads) - 1)


def test_h264_keep_rules():
    assert should_keep_nal_h264(b"\x00\x00\x01\x67") is True
    assert should_keep_nal_h264(b"\x00\x00\x01\x06") is False
    assert should_keep_nal_h264(b"\x00\x00\x00\x01\x09") is False
    assert should_keep_nal_h264(b"\x00\x00\x00\x01\x65") is True


def test_h265_keep_rules():
    assert should_keep_nal_h265(b"\x00\x00\x01\x46\x01") is False  # AUD, type 35
    assert should_keep_nal_h265(b"\x00\x00\x00\x01\x4e\x01") is False  # SEI, type 39
    assert should_keep_nal_h265(b"\x00\x00\x01\x40\x01") is True  # VPS
    assert should_keep_nal_h265(b"\x00\x00\x00\x01\x26\x01") is True  # IDR


def test_filter_nal_h264_drops_aud_and_sei():
    aud = b"\x00\x00\x00\x01\x09\xf0"
    sps = b"\x00\x00\x00\x01\x67\x42"
    sei = b"\x00\x00\x01\x06\x05"
    idr = b"\x00\x00\x01\x65\x88\x84"
    assert filter_nal(aud + sps + sei + idr, VideoCodec.H264) == sps + idr


def test_filter_nal_h265_drops_aud_and_sei():
    aud = b"\x00\x00\x00\x01\x46\x01\x50"
    vps = b"\x00\x00\x00\x01\x40\x01\x0c"
    sei = b"\x00\x00\x01\x4e\x01\x05"
    idr = b"\x00\x00\x01\x26\x01\xaf"
    assert filter_nal(aud + vps + sei + idr, VideoCodec.HEVC) == vps + idr


def test_filter_nal_keeps_clean_stream_and_rejects_short():
    stream = b"\x00\x00\x00\x01\x67\x42" + b"\x00\x00\x01\x65\x88"
    assert filter_nal(stream, VideoCodec.H264) == stream
    assert filter_nal(b"\x00\x00\x01", VideoCodec.H264) == b""


def test_send_data_splits_into_shards():
    data = bytes(range(256)) * 12
    encoder = FakeEncoder([data], stream_idx=3)
    session = FakeSession()
    view_info = ViewInfo(display_time=1234)
    encoder.encode(session, view_info, frame_index=7, index=0)

    shards = session.shards
    assert b"".join(s.payload for s in shards) == data
    assert len(shards[0].payload) == VideoStreamDataShard.MAX_PAYLOAD_SIZE - VIEW_INFO_SIZE
    assert all(len(s.payload) <= VideoStreamDataShard.MAX_PAYLOAD_SIZE for s in shards)
    assert [s.shard_idx for s in shards] == list(range(len(shards)))
    assert all(s.frame_idx == 7 and s.stream_item_idx == 3 for s in shards)
    assert shards[0].view_info == view_info
    assert all(s.view_info is None for s in shards[1:])
    assert shards[0].flags == ShardFlags.START_OF_SLICE
    assert all(s.flags == 0 for s in shards[1:-1])
    assert shards[-1].flags == ShardFlags.END_OF_SLICE | ShardFlags.END_OF_FRAME


def test_multiple_slices_flags_and_events():
    encoder = FakeEncoder([b"a" * 10, b"b" * 20])
    session = FakeSession()
    encoder.encode(session, ViewInfo(), frame_index=1, index=2)

    assert [s.payload for s in session.shards] == [b"a" * 10, b"b" * 20]
    assert session.shards[0].flags == ShardFlags.START_OF_SLICE | ShardFlags.END_OF_SLICE
    assert session.shards[1].flags == (
        ShardFlags.START_OF_SLICE | ShardFlags.END_OF_SLICE | ShardFlags.END_OF_FRAME
    )
    assert [e[0] for e in session.events] == ["encode_begin", "send_begin", "send_end", "encode_end"]


def test_idr_only_when_sync_needed():
    encoder = FakeEncoder([b"x"])
    session = FakeSession()
    encoder.encode(session, ViewInfo(display_time=55), 0, 4)
    encoder.encode(session, ViewInfo(), 1, 5)
    encoder.sync_needed()
    encoder.encode(session, ViewInfo(), 2, 6)

    assert [idr for _, idr, _ in encoder.calls] == [True, False, True]
    assert encoder.calls[0] == (4, True, 55)
    assert session.events[0][3] == ",idr"
    assert session.events[4][3] == ",p"


def test_empty_data_sends_nothing():
    encoder = FakeEncoder([b""])
    session = FakeSession()
    encoder.encode(session, ViewInfo(), 0, 0)
    assert session.shards == []


def test_send_data_without_session_fails():
    encoder = FakeEncoder([])
    with pytest.raises(RuntimeError):
        VideoEncoder.send_data(encoder, b"abc", True)