"""Estimation of the clock offset between the server and the headset.

A query is sent at server time t0, the headset stamps it with its own time
t1 and the answer arrives back at t2.  Assuming symmetric latency would put
the headset reading at (t0 + t2) / 2; because network load is asymmetric the
estimator instead looks for t = t2 + (t0 - t2) * x, choosing x to minimise
the variation of the offset over low-pass filtered samples.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from .packets import TimesyncResponse

__all__ = ["ClockOffset", "OffsetEstimator"]

_log = logging.getLogger(__name__)

LOWPASS = 0.8
MAX_RTT_RATIO = 3.0


def _lerp(a: float, b: float, t: float) -> float:
    return a + t * (b - a)


@dataclass(frozen=True)
class ClockOffset:
    """Headset clock minus server clock, in nanoseconds."""

    epoch_offset: int = 0

    def from_headset(self, timestamp: int) -> int:
        """Convert a headset timestamp to server time."""
        return timestamp - self.epoch_offset

    def to_headset(self, timestamp: int) -> int:
        """Convert a server timestamp to headset time."""
        return timestamp + self.epoch_offset


class OffsetEstimator:
    """Keeps filtered time-sync samples and produces offset estimates."""

    def __init__(self) -> None:
        self._filtered_u = np.zeros(3)
        self._a = np.zeros((3, 3))

    def get_offset(self, packet: TimesyncResponse, now: int, old_offset: ClockOffset) -> ClockOffset:
        """Update the estimate with a time-sync answer received at server time ``now``."""
        rtt = now - packet.query
        u = np.array([packet.query, packet.response, now], dtype=np.float64)

        if not self._filtered_u.any():
            self._filtered_u = u
            offset = int(u[1] - 0.5 * (u[0] + u[2]))
            return ClockOffset(offset)

        mean_rtt = self._filtered_u[2] - self._filtered_u[0]
        self._filtered_u = self._filtered_u + LOWPASS * (u - self._filtered_u)

        # Probably a retransmit: we cannot tell in which direction it was delayed.
        if rtt > MAX_RTT_RATIO * mean_rtt:
            _log.debug("skip packet with RTT %dms", rtt // 1_000_000)
            return old_offset

        tmp = u - self._filtered_u
        self._a = self._a * 0.99 + np.outer(tmp, tmp)
        a = self._a

        denominator = a[0, 0] - 2 * a[0, 2] + a[2, 2]
        numerator = a[0, 1] - a[0, 2] - a[1, 2] + a[2, 2]
        if denominator == 0 or not math.isfinite(numerator / denominator):
            return old_offset
        x = min(max(numerator / denominator, 0.0), 1.0)

        t = int(_lerp(float(now), float(packet.query), x))
        offset = packet.response - t
        _log.debug(
            "offset estimator x=%f offset diff %dus",
            x,
            int((old_offset.epoch_offset - offset) / 1000),
        )
        if old_offset.epoch_offset != 0:
            offset = int(_lerp(float(offset), float(old_offset.epoch_offset), LOWPASS))
        return ClockOffset(offset)