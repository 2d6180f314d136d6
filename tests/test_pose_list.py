import math

import pytest

from wivrn.offset_estimator import ClockOffset
from wivrn.packets import DeviceId, Pose, Quaternion, Tracking, TrackingFlags, TrackingPose, Vector3
from wivrn.pose_list import (
    History,
    PoseList,
    SpaceRelation,
    SpaceRelationFlags,
    extrapolate,
    interpolate,
)

ALL = (
    SpaceRelationFlags.ORIENTATION_VALID
    | SpaceRelationFlags.POSITION_VALID
    | SpaceRelationFlags.LINEAR_VELOCITY_VALID
    | SpaceRelationFlags.ANGULAR_VELOCITY_VALID
)


def rel(x, flags=ALL, orientation=None):
    return SpaceRelation(
        pose=Pose(orientation=orientation or Quaternion(), position=Vector3(x, 0.0, 0.0)),
        relation_flags=flags,
    )


def quarter_turn_z():
    return Quaternion(0.0, 0.0, math.sin(math.pi / 4), math.cos(math.pi / 4))


def test_interpolate_endpoints():
    a, b = rel(0.0), rel(2.0)
    assert interpolate(a, b, 0.0).pose.position == a.pose.position
    assert interpolate(a, b, 1.0).pose.position == b.pose.position


def test_interpolate_keeps_only_common_flags():
    a = rel(0.0)
    b = rel(2.0, flags=SpaceRelationFlags.ORIENTATION_VALID)
    result = interpolate(a, b, 0.5)
    assert result.relation_flags == SpaceRelationFlags.ORIENTATION_VALID
    assert result.pose.position == Vector3()


def test_slerp_halfway():
    a = rel(0.0)
    b = rel(0.0, orientation=quarter_turn_z())
    q = interpolate(a, b, 0.5).pose.orientation
    assert math.hypot(q.x, q.y, q.z, q.w) == pytest.approx(1.0)
    assert q.w == pytest.approx(math.cos(math.pi / 8))
    assert q.z == pytest.approx(math.sin(math.pi / 8))


def test_extrapolate_outside_range_returns_sample():
    a, b = rel(0.0), rel(1.0)
    assert extrapolate(a, b, 100, 200, 50) is a
    assert extrapolate(a, b, 100, 200, 300) is b


def test_extrapolate_at_last_sample_equals_it():
    a = rel(0.0)
    b = rel(1.0, orientation=quarter_turn_z())
    b.linear_velocity = Vector3(3.0, 0.0, 0.0)
    result = extrapolate(a, b, 100, 200, 200)
    assert result.pose == b.pose
    assert result.linear_velocity == b.linear_velocity
    assert result.relation_flags == b.relation_flags


def test_empty_history_gives_default():
    assert History().get_at(10) == SpaceRelation()


def test_single_sample_always_returned():
    history = History()
    sample = rel(1.0)
    history.add_sample(100, sample)
    assert history.get_at(0) is sample
    assert history.get_at(1000) is sample


def test_before_first_and_after_last():
    history = History()
    first, last = rel(0.0), rel(2.0)
    history.add_sample(100, first)
    history.add_sample(200, last)
    assert history.get_at(50) is first
    assert history.get_at(300) is last


def test_midpoint_interpolation():
    history = History()
    history.add_sample(200, rel(2.0))
    history.add_sample(100, rel(0.0))
    assert history.get_at(150).pose.position.x == pytest.approx(1.0)


def test_same_timestamp_replaces():
    history = History()
    history.add_sample(100, rel(0.0))
    replacement = rel(5.0)
    history.add_sample(100, replacement)
    assert history.get_at(100) is replacement


def test_oldest_sample_dropped():
    history = History(max_samples=3)
    samples = [rel(float(i)) for i in range(4)]
    for i, sample in enumerate(samples):
        history.add_sample(100 * (i + 1), sample)
    assert history.get_at(0) is samples[1]


@pytest.mark.parametrize(
    "tracking_flag, relation_flag",
    [
        (TrackingFlags.ORIENTATION_VALID, SpaceRelationFlags.ORIENTATION_VALID),
        (TrackingFlags.POSITION_VALID, SpaceRelationFlags.POSITION_VALID),
        (TrackingFlags.LINEAR_VELOCITY_VALID, SpaceRelationFlags.LINEAR_VELOCITY_VALID),
        (TrackingFlags.ANGULAR_VELOCITY_VALID, SpaceRelationFlags.ANGULAR_VELOCITY_VALID),
        (TrackingFlags.ORIENTATION_TRACKED, SpaceRelationFlags.ORIENTATION_TRACKED),
        (TrackingFlags.POSITION_TRACKED, SpaceRelationFlags.POSITION_TRACKED),
    ],
)
def test_convert_pose_flags(tracking_flag, relation_flag):
    pose = TrackingPose(flags=int(tracking_flag))
    assert PoseList.convert_pose(pose).relation_flags == relation_flag


def test_convert_pose_copies_values():
    pose = TrackingPose(
        pose=Pose(position=Vector3(1.0, 2.0, 3.0)),
        linear_velocity=Vector3(4.0, 0.0, 0.0),
        angular_velocity=Vector3(0.0, 5.0, 0.0),
    )
    result = PoseList.convert_pose(pose)
    assert result.pose == pose.pose
    assert result.linear_velocity == pose.linear_velocity
    assert result.angular_velocity == pose.angular_velocity
    pose.pose.position.x = 9.0
    assert result.pose.position.x == 1.0


def test_update_tracking_applies_offset():
    poses = PoseList(DeviceId.LEFT_GRIP)
    tracking = Tracking(
        timestamp=1100,
        device_poses=[
            TrackingPose(device=DeviceId.HEAD, pose=Pose(position=Vector3(9.0, 0.0, 0.0))),
            TrackingPose(device=DeviceId.LEFT_GRIP, pose=Pose(position=Vector3(1.0, 0.0, 0.0))),
        ],
    )
    poses.update_tracking(tracking, ClockOffset(100))
    poses.add_sample(2000, rel(7.0))
    assert poses.get_at(500).pose.position.x == 1.0


def test_update_tracking_ignores_other_devices():
    poses = PoseList(DeviceId.RIGHT_AIM)
    tracking = Tracking(timestamp=10, device_poses=[TrackingPose(device=DeviceId.HEAD)])
    poses.update_tracking(tracking, ClockOffset())
    assert poses.get_at(10) == SpaceRelation()