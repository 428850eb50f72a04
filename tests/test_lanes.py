from datetime import datetime

from schedule_api.services.lanes import LaneInterval, pack_lanes


def T(h, m=0):
    return datetime(2025, 3, 1, h, m)


def test_empty_row_still_has_one_lane():
    layout = pack_lanes([])
    assert layout.lanes == {}
    assert layout.lanes_count == 1


def test_disjoint_intervals_share_lane_zero():
    layout = pack_lanes([
        LaneInterval("a", T(8), T(10)),
        LaneInterval("b", T(10), T(12)),
        LaneInterval("c", T(13), T(14)),
    ])
    assert layout.lanes == {"a": 0, "b": 0, "c": 0}
    assert layout.lanes_count == 1


def test_fully_overlapping_intervals_get_own_lanes():
    layout = pack_lanes([
        LaneInterval("a", T(8), T(12)),
        LaneInterval("b", T(9), T(12)),
        LaneInterval("c", T(10), T(12)),
    ])
    assert sorted(layout.lanes.values()) == [0, 1, 2]
    assert layout.lanes_count == 3


def test_freed_lane_is_reused_first():
    layout = pack_lanes([
        LaneInterval("a", T(1), T(3)),
        LaneInterval("b", T(2), T(5)),
        LaneInterval("c", T(3), T(4)),
    ])
    assert layout.lane_of("a") == 0
    assert layout.lane_of("b") == 1
    assert layout.lane_of("c") == 0
    assert layout.lanes_count == 2


def test_lane_count_equals_peak_concurrency():
    ivs = [
        LaneInterval(1, T(8), T(9)),
        LaneInterval(2, T(8, 30), T(11)),
        LaneInterval(3, T(9), T(10)),
        LaneInterval(4, T(9, 30), T(12)),
        LaneInterval(5, T(11), T(13)),
    ]
    # 2, 3, 4 all run at 09:30
    assert pack_lanes(ivs).lanes_count == 3


def test_point_and_malformed_intervals_are_placeable():
    layout = pack_lanes([
        LaneInterval("point", T(9), T(9)),
        LaneInterval("no-end", T(9), None),
        LaneInterval("backwards", T(10), T(8)),
    ])
    assert set(layout.lanes) == {"point", "no-end", "backwards"}
    # all collapse to zero length, so nothing blocks anything
    assert layout.lanes_count == 1


def test_input_order_does_not_change_layout():
    ivs = [
        LaneInterval("a", T(8), T(12)),
        LaneInterval("b", T(9), T(10)),
        LaneInterval("c", T(10), T(11)),
        LaneInterval("d", T(11), T(13)),
    ]
    first = pack_lanes(ivs)
    again = pack_lanes(list(reversed(ivs)))
    assert first.lanes == again.lanes
    assert pack_lanes(ivs).to_dict() == first.to_dict()


def test_identical_intervals_keep_input_order():
    layout = pack_lanes([LaneInterval("x", T(8), T(9)), LaneInterval("y", T(8), T(9))])
    assert layout.lanes == {"x": 0, "y": 1}
