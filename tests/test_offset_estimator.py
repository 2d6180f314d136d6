from wivrn.offset_estimator import ClockOffset, OffsetEstimator
from wivrn.packets import TimesyncResponse


def test_first_sample_assumes_symmetric_latency():
    estimator = OffsetEstimator()
    result = estimator.get_offset(TimesyncResponse(query=100, response=1000), 300, ClockOffset())
    assert result == ClockOffset(800)


def test_clock_offset_conversions_are_inverse():
    offset = ClockOffset(12345)
    assert offset.from_headset(offset.to_headset(1_000_000)) == 1_000_000
    assert offset.to_headset(0) == offset.epoch_offset


def test_retransmitted_packet_keeps_old_offset():
    estimator = OffsetEstimator()
    first = estimator.get_offset(TimesyncResponse(query=1000, response=5000), 1200, ClockOffset())
    # Round trip of 1000 ns against a mean of 200 ns exceeds the allowed ratio.
    result = estimator.get_offset(TimesyncResponse(query=2000, response=6010), 3000, first)
    assert result is first


def test_estimate_lies_between_bounds_without_history():
    estimator = OffsetEstimator()
    estimator.get_offset(TimesyncResponse(query=1000, response=5000), 1200, ClockOffset())
    query, response, now = 2000, 6010, 2300
    result = estimator.get_offset(TimesyncResponse(query=query, response=response), now, ClockOffset(0))
    assert response - now <= result.epoch_offset <= response - query


def test_estimate_is_smoothed_towards_old_offset():
    estimator = OffsetEstimator()
    estimator.get_offset(TimesyncResponse(query=1000, response=5000), 1200, ClockOffset())
    query, response, now = 2000, 6010, 2300
    old = ClockOffset(100_000)
    result = estimator.get_offset(TimesyncResponse(query=query, response=response), now, old)
    assert response - now <= result.epoch_offset <= old.epoch_offset
    assert result.epoch_offset > (response - query + old.epoch_offset) // 2


def test_successive_samples_stay_in_range():
    estimator = OffsetEstimator()
    offset = ClockOffset()
    base_offset = 10_000
    for i in range(20):
        query = 1_000_000 * (i + 1)
        now = query + 200 + (i % 3) * 10
        response = query + base_offset + 100 + (i % 2) * 5
        offset = estimator.get_offset(TimesyncResponse(query=query, response=response), now, offset)
        assert response - now - 100 <= offset.epoch_offset <= response - query + 100