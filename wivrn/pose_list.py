"""Time-stamped pose history with interpolation and extrapolation."""

from __future__ import annotations

import bisect
import copy
import enum
import math
import threading
from dataclasses import dataclass, field
from itertools import pairwise

from .offset_estimator import ClockOffset
from .packets import DeviceId, Pose, Quaternion, Tracking, TrackingFlags, TrackingPose, Vector3

__all__ = [
    "SpaceRelationFlags",
    "SpaceRelation",
    "interpolate",
    "extrapolate",
    "History",
    "PoseList",
]


class SpaceRelationFlags(enum.IntFlag):
    """Which parts of a space relation are valid or tracked."""

    ORIENTATION_VALID = 1 << 0
    POSITION_VALID = 1 << 1
    LINEAR_VELOCITY_VALID = 1 << 2
    ANGULAR_VELOCITY_VALID = 1 << 3
    ORIENTATION_TRACKED = 1 << 4
    POSITION_TRACKED = 1 << 5


@dataclass
class SpaceRelation:
    """Pose and velocities of a device."""

    pose: Pose = field(default_factory=Pose)
    linear_velocity: Vector3 = field(default_factory=Vector3)
    angular_velocity: Vector3 = field(default_factory=Vector3)
    relation_flags: SpaceRelationFlags = SpaceRelationFlags(0)


_FLAG_MAP = (
    (TrackingFlags.POSITION_VALID, SpaceRelationFlags.POSITION_VALID),
    (TrackingFlags.ORIENTATION_VALID, SpaceRelationFlags.ORIENTATION_VALID),
    (TrackingFlags.LINEAR_VELOCITY_VALID, SpaceRelationFlags.LINEAR_VELOCITY_VALID),
    (TrackingFlags.ANGULAR_VELOCITY_VALID, SpaceRelationFlags.ANGULAR_VELOCITY_VALID),
    (TrackingFlags.POSITION_TRACKED, SpaceRelationFlags.POSITION_TRACKED),
    (TrackingFlags.ORIENTATION_TRACKED, SpaceRelationFlags.ORIENTATION_TRACKED),
)


def _lerp_vec(a: Vector3, b: Vector3, t: float) -> Vector3:
    return Vector3(a.x + (b.x - a.x) * t, a.y + (b.y - a.y) * t, a.z + (b.z - a.z) * t)


def _slerp(a: Quaternion, b: Quaternion, t: float) -> Quaternion:
    d = a.x * b.x + a.y * b.y + a.z * b.z + a.w * b.w
    abs_d = abs(d)
    if abs_d >= 1.0 - 1e-7:
        s0, s1 = 1.0 - t, t
    else:
        theta = math.acos(abs_d)
        sin_theta = math.sin(theta)
        s0 = math.sin((1.0 - t) * theta) / sin_theta
        s1 = math.sin(t * theta) / sin_theta
    if d < 0:
        s1 = -s1
    return Quaternion(
        s0 * a.x + s1 * b.x,
        s0 * a.y + s1 * b.y,
        s0 * a.z + s1 * b.z,
        s0 * a.w + s1 * b.w,
    )


def _quat_mul(a: Quaternion, b: Quaternion) -> Quaternion:
    return Quaternion(
        x=a.w * b.x + a.x * b.w + a.y * b.z - a.z * b.y,
        y=a.w * b.y - a.x * b.z + a.y * b.w + a.z * b.x,
        z=a.w * b.z + a.x * b.y - a.y * b.x + a.z * b.w,
        w=a.w * b.w - a.x * b.x - a.y * b.y - a.z * b.z,
    )


def _quat_exp(v: Vector3) -> Quaternion:
    theta = math.sqrt(v.x * v.x + v.y * v.y + v.z * v.z)
    scale = 1.0 if theta < 1e-8 else math.sin(theta) / theta
    return Quaternion(v.x * scale, v.y * scale, v.z * scale, math.cos(theta))


def interpolate(a: SpaceRelation, b: SpaceRelation, t: float) -> SpaceRelation:
    """Blend two relations; only parts valid in both are filled in."""
    flags = SpaceRelationFlags(a.relation_flags & b.relation_flags)
    result = SpaceRelation(relation_flags=flags)
    if flags & SpaceRelationFlags.ORIENTATION_VALID:
        result.pose.orientation = _slerp(a.pose.orientation, b.pose.orientation, t)
    if flags & SpaceRelationFlags.POSITION_VALID:
        result.pose.position = _lerp_vec(a.pose.position, b.pose.position, t)
    if flags & SpaceRelationFlags.LINEAR_VELOCITY_VALID:
        result.linear_velocity = _lerp_vec(a.linear_velocity, b.linear_velocity, t)
    if flags & SpaceRelationFlags.ANGULAR_VELOCITY_VALID:
        result.angular_velocity = _lerp_vec(a.angular_velocity, b.angular_velocity, t)
    return result


def extrapolate(a: SpaceRelation, b: SpaceRelation, ta: int, tb: int, t: int) -> SpaceRelation:
    """Relation at time ``t`` from samples ``a`` at ``ta`` and ``b`` at ``tb``.

    Outside ``[ta, tb]`` the nearest sample is returned unchanged; inside, ``b``
    is moved along its velocities.
    """
    if t < ta:
        return a
    if t > tb:
        return b

    dt = (t - tb) / 1e9
    lv = b.linear_velocity
    av = b.angular_velocity
    position = Vector3(
        b.pose.position.x + lv.x * dt,
        b.pose.position.y + lv.y * dt,
        b.pose.position.z + lv.z * dt,
    )
    dq = _quat_exp(Vector3(av.x * dt, av.y * dt, av.z * dt))
    return SpaceRelation(
        pose=Pose(orientation=_quat_mul(b.pose.orientation, dq), position=position),
        linear_velocity=copy.copy(lv),
        angular_velocity=copy.copy(av),
        relation_flags=b.relation_flags,
    )


class History:
    """Sorted, bounded set of samples keyed by server timestamp (ns)."""

    def __init__(self, max_samples: int = 10) -> None:
        self.max_samples = max_samples
        self._lock = threading.Lock()
        self._timestamps: list[int] = []
        self._samples: list[SpaceRelation] = []

    def add_sample(self, timestamp: int, sample: SpaceRelation) -> None:
        """Insert a sample, replacing one with the same timestamp and dropping the oldest beyond the limit."""
        with self._lock:
            index = bisect.bisect_left(self._timestamps, timestamp)
            if index < len(self._timestamps) and self._timestamps[index] == timestamp:
                self._samples[index] = sample
            else:
                self._timestamps.insert(index, timestamp)
                self._samples.insert(index, sample)
            if len(self._samples) > self.max_samples:
                del self._timestamps[0]
                del self._samples[0]

    def get_at(self, at_timestamp_ns: int) -> SpaceRelation:
        """Estimated relation at the given server time."""
        with self._lock:
            ts = self._timestamps
            samples = self._samples
            if not samples:
                return SpaceRelation()
            if len(samples) == 1:
                return samples[0]
            if ts[0] > at_timestamp_ns:
                return extrapolate(samples[0], samples[1], ts[0], ts[1], at_timestamp_ns)
            for (t0, s0), (t1, s1) in pairwise(zip(ts, samples)):
                if t1 > at_timestamp_ns:
                    t = (t1 - at_timestamp_ns) / (t1 - t0)
                    return interpolate(s0, s1, t)
            return extrapolate(samples[-2], samples[-1], ts[-2], ts[-1], at_timestamp_ns)


class PoseList(History):
    """History of one tracked device, fed from tracking packets."""

    def __init__(self, device: DeviceId, max_samples: int = 10) -> None:
        super().__init__(max_samples)
        self.device = device

    def update_tracking(self, tracking: Tracking, offset: ClockOffset) -> None:
        """Record this device's pose from a tracking packet, if present."""
        for pose in tracking.device_poses:
            if pose.device == self.device:
                self.add_sample(offset.from_headset(tracking.timestamp), self.convert_pose(pose))
                return

    @staticmethod
    def convert_pose(pose: TrackingPose) -> SpaceRelation:
        """Turn a received device pose into a space relation."""
        flags = SpaceRelationFlags(0)
        for tracking_flag, relation_flag in _FLAG_MAP:
            if pose.flags & tracking_flag:
                flags |= relation_flag
        return SpaceRelation(
            pose=copy.deepcopy(pose.pose),
            linear_velocity=copy.copy(pose.linear_velocity),
            angular_velocity=copy.copy(pose.angular_velocity),
            relation_flags=flags,
        )