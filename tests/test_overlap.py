from datetime import datetime
from types import SimpleNamespace

import pytest

from schedule_api.common.errors import OverlapConflict, ValidationError
from schedule_api.services.overlap import (
    ensure_no_overlap, find_conflicts, intervals_overlap, validate_range,
)


def _a(id, start, end, status="ACTIVE", deleted_at=None):
    return SimpleNamespace(id=id, starts_at=start, ends_at=end, status=status, deleted_at=deleted_at)


D = lambda day, hour=0: datetime(2025, 3, day, hour)


def test_overlapping_ranges_conflict():
    assert intervals_overlap(D(1), D(5), D(3), D(8))
    assert intervals_overlap(D(3), D(8), D(1), D(5))
    # containment
    assert intervals_overlap(D(1), D(10), D(3), D(4))


def test_back_to_back_is_not_overlap():
    # [10:00, 18:00) then [18:00, 22:00)
    assert not intervals_overlap(D(1, 10), D(1, 18), D(1, 18), D(1, 22))
    assert not intervals_overlap(D(1, 18), D(1, 22), D(1, 10), D(1, 18))


def test_open_end_is_unbounded():
    assert intervals_overlap(D(1), None, D(20), D(25))
    assert intervals_overlap(D(20), D(25), D(1), None)
    assert intervals_overlap(D(1), None, D(2), None)
    # open-ended starting after the other ended
    assert not intervals_overlap(D(10), None, D(1), D(10))


def test_archived_existing_never_conflicts():
    others = [_a(1, D(1), D(10), status="ARCHIVED")]
    assert find_conflicts(D(2), D(5), "ACTIVE", others) == []


def test_trashed_existing_never_conflicts():
    others = [_a(1, D(1), D(10), deleted_at=D(11))]
    assert find_conflicts(D(2), D(5), "ACTIVE", others) == []


def test_archived_candidate_skips_check():
    others = [_a(1, D(1), D(10))]
    assert find_conflicts(D(2), D(5), "ARCHIVED", others) == []


def test_edited_assignment_is_excluded():
    others = [_a(7, D(1), D(10))]
    assert find_conflicts(D(2), D(5), "ACTIVE", others, exclude_id=7) == []


def test_ensure_no_overlap_lists_sorted_ids():
    others = [_a(9, D(4), D(6)), _a(3, D(1), D(3)), _a(5, D(20), D(25))]
    with pytest.raises(OverlapConflict) as exc:
        ensure_no_overlap(1, D(2), D(5), "ACTIVE", others)
    assert exc.value.conflicting_ids == [3, 9]
    assert exc.value.status_code == 409
    assert exc.value.code == "ASSIGNMENT_OVERLAP"


def test_ensure_no_overlap_accepts_free_range():
    ensure_no_overlap(1, D(10), D(12), "ACTIVE", [_a(1, D(1), D(10))])


def test_validate_range():
    validate_range(D(1), None)
    validate_range(D(1), D(1))
    with pytest.raises(ValidationError):
        validate_range(D(2), D(1))
    with pytest.raises(ValidationError):
        validate_range(None, D(1))
