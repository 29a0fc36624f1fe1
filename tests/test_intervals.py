import pytest

from clinic_booking.services.intervals import IntervalSet, difference, intersection, normalize, union
from clinic_booking.services.scheduling_errors import InvertedInterval


def test_normalize_sorts_and_merges_touching_intervals():
    assert normalize([(600, 660), (540, 600), (700, 720), (710, 730)]) == [(540, 660), (700, 730)]


def test_inverted_interval_rejected():
    with pytest.raises(InvertedInterval):
        IntervalSet([(600, 600)])
    with pytest.raises(InvertedInterval):
        IntervalSet([(660, 600)])


def test_difference_splits_windows():
    working = IntervalSet([(540, 720)])
    closure = IntervalSet([(600, 660)])
    assert working.difference(closure).intervals == [(540, 600), (660, 720)]
    assert difference(working, IntervalSet([(500, 800)])).is_empty()
    assert difference(working, IntervalSet()) == working


def test_difference_with_several_cuts_across_windows():
    working = IntervalSet([(480, 600), (780, 960)])
    cuts = IntervalSet([(420, 500), (570, 800), (900, 930)])
    assert working.difference(cuts).intervals == [(500, 570), (800, 900), (930, 960)]


def test_union_and_intersection():
    a = IntervalSet([(540, 600), (660, 720)])
    b = IntervalSet([(600, 630), (700, 800)])
    assert union(a, b).intervals == [(540, 630), (660, 800)]
    assert intersection(a, b).intervals == [(700, 720)]
    assert a.total_minutes() == 120


def test_contains_requires_a_single_member():
    windows = IntervalSet([(540, 600), (660, 720)])
    assert windows.contains(540, 570)
    assert windows.contains(570, 600)
    assert not windows.contains(585, 615)
    assert not windows.contains(600, 660)


def test_overlaps_is_half_open():
    busy = IntervalSet([(570, 600)])
    assert busy.overlaps(585, 615)
    assert not busy.overlaps(600, 630)
    assert not busy.overlaps(540, 570)


def test_iteration_is_ascending_and_sets_compare_by_value():
    s = IntervalSet([(700, 720), (540, 560)])
    assert list(s) == [(540, 560), (700, 720)]
    assert s == IntervalSet([(540, 560), (700, 720)])
    assert s.earliest() == 540
    assert IntervalSet().earliest() is None
