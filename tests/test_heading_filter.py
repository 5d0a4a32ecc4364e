"""Tests for the compass heading filter."""
import pytest

from heading_filter import (
    AbsoluteOrientationSample,
    CompassHeadingSample,
    HeadingFilter,
    HeadingUnavailableError,
    RelativeOrientationSample,
    heading_from_sample,
    normalize_angle,
    shortest_angle_diff,
)


def make_filter(**kwargs):
    params = {'throttle_ms': 200, 'deadzone': 3.0, 'smoothing': 0.15}
    params.update(kwargs)
    return HeadingFilter(**params)


def feed_sequence(heading_filter, headings, spacing=0.5):
    results = []
    for index, heading in enumerate(headings):
        results.append(heading_filter.feed(CompassHeadingSample(heading), timestamp=index * spacing))
    return results


###############################################################################
# Angle helpers
###############################################################################

@pytest.mark.parametrize('target, source, expected', [
    (1, 359, 2),
    (359, 1, -2),
    (10, 350, 20),
    (90, 0, 90),
    (180, 0, 180),
    (0, 180, 180),
    (0, 0, 0),
])
def test_shortest_angle_diff(target, source, expected):
    assert shortest_angle_diff(target, source) == pytest.approx(expected)


def test_shortest_angle_diff_stays_in_half_open_range():
    for target in range(0, 720, 7):
        for source in range(-360, 360, 11):
            diff = shortest_angle_diff(target, source)
            assert -180 < diff <= 180


@pytest.mark.parametrize('angle, expected', [(370, 10), (-10, 350), (360, 0), (0, 0), (-720, 0)])
def test_normalize_angle(angle, expected):
    assert normalize_angle(angle) == pytest.approx(expected)


###############################################################################
# Sample conversion
###############################################################################

def test_compass_heading_is_used_directly():
    assert heading_from_sample(CompassHeadingSample(123.5)) == pytest.approx(123.5)
    assert heading_from_sample(CompassHeadingSample(365)) == pytest.approx(5)


def test_relative_orientation_uses_inverted_yaw():
    assert heading_from_sample(RelativeOrientationSample(90)) == pytest.approx(270)
    assert heading_from_sample(RelativeOrientationSample(0)) == pytest.approx(0)


@pytest.mark.parametrize('yaw, expected', [(0, 0), (90, 270), (180, 180), (270, 90)])
def test_absolute_orientation_held_flat(yaw, expected):
    heading = heading_from_sample(AbsoluteOrientationSample(yaw=yaw, pitch=0, roll=0))
    assert abs(shortest_angle_diff(heading, expected)) < 1e-6


@pytest.mark.parametrize('yaw, expected', [(0, 0), (90, 270), (180, 180)])
def test_absolute_orientation_held_upright(yaw, expected):
    heading = heading_from_sample(AbsoluteOrientationSample(yaw=yaw, pitch=90, roll=0))
    assert abs(shortest_angle_diff(heading, expected)) < 1e-6


def test_unknown_sample_type_is_rejected():
    with pytest.raises(TypeError):
        heading_from_sample((1, 2, 3))


###############################################################################
# Filter behaviour
###############################################################################

def test_first_sample_is_adopted_as_is():
    heading_filter = make_filter()

    assert not heading_filter.calibrated
    assert heading_filter.heading is None
    assert heading_filter.feed(CompassHeadingSample(42.0), timestamp=0) == pytest.approx(42.0)
    assert heading_filter.calibrated


def test_smoothing_moves_part_of_the_way():
    heading_filter = make_filter()
    feed_sequence(heading_filter, [100, 120])

    assert heading_filter.heading == pytest.approx(103.0)


def test_wraparound_stays_near_north():
    heading_filter = make_filter()
    results = feed_sequence(heading_filter, [350, 355, 2, 8])

    for heading in results:
        assert 0 <= heading < 360
        assert abs(shortest_angle_diff(heading, 0)) < 15

    # Each step turns clockwise through north, never back through south
    for earlier, later in zip(results, results[1:]):
        assert 0 < shortest_angle_diff(later, earlier) < 5


def test_deadzone_ignores_small_changes():
    heading_filter = make_filter()
    feed_sequence(heading_filter, [100, 102, 98, 101.5])

    assert heading_filter.heading == pytest.approx(100)


def test_deadzone_applies_across_north():
    heading_filter = make_filter()
    feed_sequence(heading_filter, [359, 1])

    assert heading_filter.heading == pytest.approx(359)


def test_throttle_drops_fast_samples():
    heading_filter = make_filter()
    heading_filter.feed(CompassHeadingSample(100), timestamp=0.0)

    assert heading_filter.feed(CompassHeadingSample(200), timestamp=0.1) == pytest.approx(100)
    assert heading_filter.feed(CompassHeadingSample(200), timestamp=0.15) == pytest.approx(100)
    assert heading_filter.feed(CompassHeadingSample(200), timestamp=0.25) == pytest.approx(115)


def test_deadzone_rejection_does_not_reset_throttle():
    heading_filter = make_filter()
    heading_filter.feed(CompassHeadingSample(100), timestamp=0.0)
    heading_filter.feed(CompassHeadingSample(101), timestamp=0.3)

    # 0.35 is only 50 ms after the rejected sample but 350 ms after the last accepted one
    assert heading_filter.feed(CompassHeadingSample(140), timestamp=0.35) == pytest.approx(106)


@pytest.mark.parametrize('sample', [
    AbsoluteOrientationSample(yaw=float('inf'), pitch=0, roll=0),
    AbsoluteOrientationSample(yaw=90, pitch=float('-inf'), roll=0),
    AbsoluteOrientationSample(yaw=90, pitch=60, roll=float('nan')),
    CompassHeadingSample(float('inf')),
])
def test_non_finite_samples_are_dropped(sample):
    heading_filter = make_filter()
    heading_filter.feed(CompassHeadingSample(90), timestamp=0.0)

    assert heading_filter.feed(sample, timestamp=1.0) == pytest.approx(90)
    assert heading_filter.last_update == 0.0
    assert heading_filter.feed(CompassHeadingSample(130), timestamp=1.0) == pytest.approx(96)



def test_uses_clock_when_no_timestamp():
    now = {'t': 10.0}
    heading_filter = make_filter(clock=lambda: now['t'])

    heading_filter.feed(CompassHeadingSample(10))
    now['t'] = 10.05
    assert heading_filter.feed(CompassHeadingSample(90)) == pytest.approx(10)
    now['t'] = 10.5
    assert heading_filter.feed(CompassHeadingSample(90)) == pytest.approx(22)


def test_unavailable_is_terminal():
    heading_filter = make_filter()
    heading_filter.feed(CompassHeadingSample(50), timestamp=0)

    heading_filter.mark_unavailable('permission denied')

    assert not heading_filter.available
    assert heading_filter.heading is None
    with pytest.raises(HeadingUnavailableError):
        heading_filter.feed(CompassHeadingSample(60), timestamp=1)

    heading_filter.reset()
    assert not heading_filter.available


def test_reset_forgets_calibration():
    heading_filter = make_filter()
    feed_sequence(heading_filter, [10, 50])

    heading_filter.reset()

    assert not heading_filter.calibrated
    assert heading_filter.feed(CompassHeadingSample(200), timestamp=0) == pytest.approx(200)
