import pytest

from school_api import grading


@pytest.mark.parametrize('pct, expected', [
    (100, 'A+'),
    (90, 'A+'),
    (89.99, 'A'),
    (80, 'A'),
    (75, 'B+'),
    (60, 'B'),
    (59.5, 'C'),
    (40, 'D'),
    (39.99, 'F'),
    (0, 'F'),
])
def test_grade_bands(pct, expected):
    assert grading.grade(pct) == expected


def test_absent_is_always_f():
    assert grading.grade(95, absent=True) == 'F'


def test_grade_for_pending_or_zero_max():
    assert grading.grade_for(None, 50) is None
    assert grading.grade_for(10, 0) is None
    assert grading.grade_for(45, 50) == 'A+'


def test_percentage_rounds_to_two_places():
    assert grading.percentage(2, 3) == 66.67
    assert grading.percentage(85, 100) == 85.0
    assert grading.percentage(5, 0) == 0.0


def test_pass_threshold():
    assert grading.is_pass(40)
    assert not grading.is_pass(39.99)
