from datetime import date, timedelta

import pytest

from school_api import daily_tests
from school_api.errors import ApiError


@pytest.fixture
def quiz_id(seed):
    test = daily_tests.create_test(seed.teacher_id, seed.classroom_id, seed.maths_id,
                                   'Algebra quiz', date(2020, 2, 3), 20)
    return test.test_id


def test_status_derivation(seed, quiz_id):
    test = daily_tests.load_test(quiz_id)
    today = date(2020, 2, 3)
    assert daily_tests.derive_test_status(test, 0, today=today - timedelta(days=1)) == 'scheduled'
    assert daily_tests.derive_test_status(test, 0, today=today) == 'conducted'
    assert daily_tests.derive_test_status(test, 2, today=today) == 'graded'
    test.is_declared = True
    assert daily_tests.derive_test_status(test, 2, today=today) == 'published'


def test_create_rejects_non_positive_max(seed):
    with pytest.raises(ApiError) as excinfo:
        daily_tests.create_test(seed.teacher_id, seed.classroom_id, seed.maths_id, 'Quiz', date(2020, 2, 3), 0)
    assert excinfo.value.code == 'VALIDATION_ERROR'


def test_enter_mark_validation(seed, quiz_id):
    with pytest.raises(ApiError) as excinfo:
        daily_tests.enter_mark(quiz_id, seed.student_ids[0], marks=21)
    assert excinfo.value.code == 'INVALID_MARKS'

    with pytest.raises(ApiError) as excinfo:
        daily_tests.enter_mark(quiz_id, seed.student_ids[0], marks=5, is_absent=True)
    assert excinfo.value.code == 'VALIDATION_ERROR'

    _, _, row = daily_tests.enter_mark(quiz_id, seed.student_ids[0], marks=12)
    assert row.marks_obtained == 12
    _, _, row = daily_tests.enter_mark(quiz_id, seed.student_ids[0], marks=14)
    assert row.marks_obtained == 14


def test_rank_list_shares_ranks_and_lists_absent_last(seed, quiz_id):
    daily_tests.enter_mark(quiz_id, seed.student_ids[0], marks=18)
    daily_tests.enter_mark(quiz_id, seed.student_ids[1], marks=18)
    daily_tests.enter_mark(quiz_id, seed.student_ids[2], is_absent=True)

    ranking = daily_tests.rank_list(quiz_id)
    students = ranking['students']

    assert [s['rank'] for s in students] == [1, 1, None]
    assert students[0]['grade'] == 'A+'
    assert students[2]['isAbsent'] is True
    assert students[2]['grade'] == 'F'
    assert ranking['test']['averageMarks'] == 18.0


def test_publish_is_idempotent_and_freezes_marks(seed, quiz_id):
    _, changed = daily_tests.publish_test(quiz_id)
    assert changed
    _, changed = daily_tests.publish_test(quiz_id)
    assert not changed

    with pytest.raises(ApiError) as excinfo:
        daily_tests.enter_mark(quiz_id, seed.student_ids[0], marks=10)
    assert excinfo.value.code == 'EXAM_CANNOT_BE_MODIFIED'


def test_student_results_only_include_published(seed, quiz_id):
    daily_tests.enter_mark(quiz_id, seed.student_ids[0], marks=15)
    assert daily_tests.student_results(seed.student_ids[0]) == []

    daily_tests.publish_test(quiz_id)
    items = daily_tests.student_results(seed.student_ids[0])
    assert len(items) == 1
    assert items[0]['marks'] == 15
    assert items[0]['grade'] == 'B+'


def test_daily_test_routes(client, seed, teacher_headers, outsider_headers, student_headers):
    resp = client.post('/teacher/tests', headers=teacher_headers, json={
        'classId': seed.classroom_id, 'title': 'Spelling', 'subject': seed.english_id,
        'date': '2020-04-01', 'maxMarks': 10,
    })
    assert resp.status_code == 201
    quiz_id = resp.get_json()['data']['id']

    resp = client.get('/teacher/tests?classId=%d&status=past' % seed.classroom_id, headers=teacher_headers)
    items = resp.get_json()['data']
    assert [t['id'] for t in items] == [quiz_id]
    assert items[0]['status'] == 'conducted'
    assert items[0]['studentsCount'] == 3

    resp = client.put('/teacher/tests/%d/students/%d' % (quiz_id, seed.student_ids[0]),
                      headers=teacher_headers, json={'marks': 9})
    assert resp.status_code == 200
    assert resp.get_json()['data']['marks'] == 9

    assert client.put('/teacher/tests/%d/publish' % quiz_id, headers=outsider_headers).status_code == 403
    resp = client.put('/teacher/tests/%d/publish' % quiz_id, headers=teacher_headers)
    assert resp.get_json()['message'] == 'Test published successfully'

    rank = client.get('/teacher/tests/%d/rank' % quiz_id, headers=teacher_headers).get_json()['data']
    assert rank['test']['status'] == 'published'

    results = client.get('/results/tests', headers=student_headers(0)).get_json()['data']
    assert results[0]['marks'] == 9
    assert results[0]['grade'] == 'A+'
