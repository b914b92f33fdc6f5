import logging
from datetime import datetime

from flask import Blueprint, current_app, g, request
from sqlalchemy import not_

from school_api import db, gateway
from school_api import daily_tests, exams, results
from school_api.auth import role_required
from school_api.errors import Forbidden, NotFound, ValidationError, ok
from school_api.models import Notification
from school_api.notifications import orchestrator
from school_api.notifications import tokens as token_registry

logger = logging.getLogger(__name__)

routes = Blueprint('main', __name__)

EXAM_STATUSES = ('scheduled', 'upcoming', 'ongoing', 'declared', 'completed')
PLATFORMS = ('android', 'ios', 'web')


# ==================== REQUEST HELPERS ====================

def _json_body():
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')
    return body


def _parse_date(value, field, required=True):
    if value in (None, ''):
        if required:
            raise ValidationError('%s is required' % field, details=[{'field': field, 'message': 'is required'}])
        return None
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError('%s must be a date (YYYY-MM-DD)' % field,
                              details=[{'field': field, 'message': 'must be a date (YYYY-MM-DD)'}])


def _int_value(value, field, required=True):
    if value in (None, ''):
        if required:
            raise ValidationError('%s is required' % field, details=[{'field': field, 'message': 'is required'}])
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError('%s must be an integer' % field,
                              details=[{'field': field, 'message': 'must be an integer'}])


def _page_args(default_limit=20, max_limit=100):
    page = _int_value(request.args.get('page'), 'page', required=False) or 1
    limit = _int_value(request.args.get('limit'), 'limit', required=False) or default_limit
    if page < 1 or limit < 1 or limit > max_limit:
        raise ValidationError('Invalid pagination', details=[
            {'field': 'page', 'message': 'must be >= 1'},
            {'field': 'limit', 'message': 'must be between 1 and %d' % max_limit},
        ])
    return page, limit


def _pagination(page, limit, total):
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'totalPages': (total + limit - 1) // limit if limit else 0,
    }


def _require_class_assignment(classroom_id):
    teacher_id = g.principal.teacher_id
    if not gateway.is_teacher_assigned(teacher_id, classroom_id):
        raise Forbidden('You are not assigned to this class')


def _teacher_exam(exam_id):
    exam = exams.load_exam(exam_id)
    _require_class_assignment(exam.classroom_id)
    return exam


def _teacher_test(test_id):
    test = daily_tests.load_test(test_id)
    _require_class_assignment(test.classroom_id)
    return test


def _student_row(enrollment):
    student = enrollment.student
    return {
        'enrollmentId': enrollment.enrollment_id,
        'studentId': enrollment.student_id,
        'name': student.name if student else None,
        'rollNo': str(enrollment.roll_no).zfill(4) if enrollment.roll_no is not None else None,
    }


def _mark_row(row):
    return {
        'subjectId': row.subject_id,
        'marksObtained': None if row.marks_obtained is None else float(row.marks_obtained),
        'maxMarks': float(row.max_marks),
        'isAbsent': bool(row.is_absent),
        'remark': row.remark,
    }


# ==================== ADMIN: EXAMS ====================

@routes.route('/exams', methods=['GET'])
@role_required('admin')
def list_exams():
    page, limit = _page_args()
    args = request.args
    today = datetime.now().date()

    filters = {
        'class_name': args.get('class'),
        'section': args.get('section'),
        'exam_type': args.get('examType'),
        'search': args.get('search'),
        'start_date': _parse_date(args.get('startDate'), 'startDate', required=False),
        'end_date': _parse_date(args.get('endDate'), 'endDate', required=False),
    }

    status = args.get('status')
    if status:
        status = status.lower()
        if status not in EXAM_STATUSES:
            raise ValidationError('Invalid status', details=[
                {'field': 'status', 'message': 'must be one of %s' % ', '.join(EXAM_STATUSES)}])
        if status in ('declared', 'completed'):
            filters['declared'] = True
        elif status in ('scheduled', 'upcoming'):
            filters['declared'] = False
            filters['starts_after'] = today
        else:
            filters['declared'] = False
            filters['end_date'] = min(filters['end_date'] or today, today)

    sort_by = args.get('sortBy', 'start_date')
    if sort_by not in ('start_date', 'name'):
        raise ValidationError('Invalid sortBy', details=[{'field': 'sortBy', 'message': 'must be start_date or name'}])
    ascending = args.get('sortOrder', 'desc').lower() == 'asc'

    items, total = gateway.list_exams(filters, page, limit, sort_by=sort_by, ascending=ascending)
    completed = gateway.summary_counts([e.exam_id for e in items])

    data = []
    for exam in items:
        entry = results.exam_header(exam)
        entry['classroomId'] = exam.classroom_id
        entry['completedStudents'] = completed.get(exam.exam_id, 0)
        data.append(entry)

    return ok(data, pagination=_pagination(page, limit, total))


@routes.route('/exams', methods=['POST'])
@role_required('admin')
def create_exam():
    body = _json_body()
    classroom_id = _int_value(body.get('classroomId', body.get('classId')), 'classroomId')
    start_date = _parse_date(body.get('startDate'), 'startDate')
    end_date = _parse_date(body.get('endDate'), 'endDate')
    if not body.get('examType'):
        raise ValidationError('examType is required', details=[{'field': 'examType', 'message': 'is required'}])

    exam, subject_count, seeded = exams.create_exam(
        classroom_id=classroom_id,
        name=body.get('examName'),
        exam_type=body.get('examType'),
        start_date=start_date,
        end_date=end_date,
        subjects=body.get('subjects'),
        session_id=_int_value(body.get('sessionId'), 'sessionId', required=False),
    )

    data = results.exam_header(exam)
    data.update({'classroomId': exam.classroom_id, 'subjectsCount': subject_count, 'markRowsCreated': seeded})
    return ok(data, message='Exam created successfully', status=201)


@routes.route('/exams/<int:exam_id>', methods=['GET'])
@role_required('admin')
def get_exam(exam_id):
    include_results = request.args.get('includeResults', 'true').lower() != 'false'
    include_statistics = request.args.get('includeStatistics', 'true').lower() != 'false'
    return ok(results.exam_detail(exam_id, include_results=include_results,
                                  include_statistics=include_statistics))


@routes.route('/exams/<int:exam_id>', methods=['PUT'])
@role_required('admin')
def update_exam(exam_id):
    body = _json_body()
    exam, changed = exams.update_exam(
        exam_id,
        name=body.get('examName'),
        start_date=_parse_date(body.get('startDate'), 'startDate', required=False),
        end_date=_parse_date(body.get('endDate'), 'endDate', required=False),
        exam_type=body.get('examType'),
    )
    if not changed:
        return ok(results.exam_header(exam), message='No changes')
    return ok(results.exam_header(exam), message='Exam updated successfully')


@routes.route('/exams/<int:exam_id>', methods=['DELETE'])
@role_required('admin')
def delete_exam(exam_id):
    exams.delete_exam(exam_id)
    return ok({'examId': exam_id}, message='Exam deleted successfully')


@routes.route('/exams/<int:exam_id>/subjects', methods=['POST'])
@role_required('admin')
def add_exam_subject(exam_id):
    body = _json_body()
    exam, inserted = exams.add_subject_to_exam(
        exam_id, _int_value(body.get('subjectId'), 'subjectId'), body.get('maxMarks'))
    return ok({'examId': exam.exam_id, 'subjectId': body.get('subjectId'), 'markRowsCreated': inserted},
              message='Subject added to exam', status=201)


@routes.route('/exams/<int:exam_id>/students', methods=['GET'])
@role_required('admin')
def exam_available_students(exam_id):
    students = exams.students_not_in_exam(exam_id)
    return ok([_student_row(e) for e in students])


@routes.route('/exams/<int:exam_id>/students', methods=['POST'])
@role_required('admin')
def add_exam_student(exam_id):
    body = _json_body()
    enrollment_id = _int_value(body.get('enrollmentId'), 'enrollmentId', required=False)
    if enrollment_id is None:
        student_id = _int_value(body.get('studentId'), 'studentId')
        exam = exams.load_exam(exam_id)
        enrollment = gateway.find_enrollment(student_id, exam.classroom_id)
        if enrollment is None:
            raise NotFound("Student is not enrolled in this exam's classroom", code='STUDENT_NOT_FOUND')
        enrollment_id = enrollment.enrollment_id

    enrollment, subjects, inserted = exams.add_student_to_exam(exam_id, enrollment_id)
    data = _student_row(enrollment)
    data.update({
        'examId': exam_id,
        'subjects': [{'subjectId': s, 'maxMarks': float(m)} for s, m in subjects],
        'markRowsCreated': inserted,
    })
    return ok(data, message='Student added to exam', status=201)


@routes.route('/exams/<int:exam_id>/students/<int:student_id>/marks', methods=['PUT'])
@role_required('admin')
def update_student_marks(exam_id, student_id):
    body = _json_body()
    enrollment, rows = exams.update_student_marks(
        exam_id, student_id, body.get('results'), updated_by=g.principal.user_id)
    data = _student_row(enrollment)
    data.update({'examId': exam_id, 'results': [_mark_row(r) for r in rows]})
    return ok(data, message='Marks updated successfully')


@routes.route('/exams/<int:exam_id>/students/<int:student_id>/absent', methods=['PUT'])
@role_required('admin')
def mark_student_absent(exam_id, student_id):
    body = _json_body()
    enrollment, rows = exams.mark_absent(exam_id, student_id, reason=body.get('reason'),
                                         updated_by=g.principal.user_id)
    data = _student_row(enrollment)
    data.update({'examId': exam_id, 'subjectsMarkedAbsent': len(rows)})
    return ok(data, message='Student marked absent')


@routes.route('/exams/<int:exam_id>/students/<int:student_id>', methods=['DELETE'])
@role_required('admin')
def remove_exam_student(exam_id, student_id):
    enrollment, subject_ids = exams.remove_student_from_exam(exam_id, student_id)
    data = _student_row(enrollment)
    data.update({'examId': exam_id, 'removedSubjects': subject_ids})
    return ok(data, message='Student removed from exam')


@routes.route('/exams/<int:exam_id>/generate-results', methods=['PUT'])
@role_required('admin')
def generate_results(exam_id):
    exam, summaries = exams.publish_exam(exam_id)

    try:
        orchestrator.notify_results_declared(exam, summaries)
    except Exception:
        db.session.rollback()
        logger.exception("Could not queue result notifications for exam %s", exam_id)

    return ok({
        'examId': exam_id,
        'isDeclared': True,
        'studentsProcessed': len(summaries),
        'absentStudents': sum(1 for s in summaries if s['is_absent']),
    }, message='Results generated successfully')


# ==================== METADATA ====================

@routes.route('/metadata/exam-types', methods=['GET'])
@role_required('admin', 'teacher')
def exam_types():
    return ok([{'id': t.exam_type_id, 'code': t.code, 'name': t.name} for t in gateway.all_exam_types()])


@routes.route('/metadata/subjects', methods=['GET'])
@role_required('admin', 'teacher')
def subjects():
    return ok([{'id': s.subject_id, 'name': s.name} for s in gateway.all_subjects()])


# ==================== TEACHER: EXAMS ====================

@routes.route('/teacher/exams', methods=['GET'])
@role_required('teacher')
def teacher_exams():
    classroom_id = _int_value(request.args.get('classId'), 'classId')
    _require_class_assignment(classroom_id)
    return ok(results.teacher_exam_list(classroom_id))


@routes.route('/teacher/exams/<int:exam_id>/subjects', methods=['GET'])
@role_required('teacher')
def teacher_exam_subjects(exam_id):
    exam = _teacher_exam(exam_id)
    return ok(results.subject_progress(gateway.exam_marks(exam.exam_id)))


@routes.route('/teacher/exams/<int:exam_id>/subjects/<int:subject_id>/students', methods=['GET'])
@role_required('teacher')
def teacher_subject_students(exam_id, subject_id):
    _teacher_exam(exam_id)
    exam, students = results.subject_students(exam_id, subject_id)
    return ok({'exam': results.exam_header(exam), 'subjectId': subject_id, 'students': students})


@routes.route('/teacher/exams/<int:exam_id>/subjects/<int:subject_id>/students/<int:student_id>',
              methods=['PUT'])
@role_required('teacher')
def teacher_update_mark(exam_id, subject_id, student_id):
    _teacher_exam(exam_id)
    body = _json_body()
    if 'marks' not in body and 'isAbsent' not in body:
        raise ValidationError('Either "marks" or "isAbsent" is required')

    entry = {'subjectId': subject_id}
    if 'marks' in body:
        entry['marksObtained'] = body['marks']
    if 'isAbsent' in body:
        entry['isAbsent'] = bool(body['isAbsent'])
    if 'remark' in body:
        entry['remark'] = body['remark']

    enrollment, rows = exams.update_student_marks(exam_id, student_id, [entry],
                                                  updated_by=g.principal.teacher_id)
    data = _student_row(enrollment)
    data.update(_mark_row(rows[0]))
    return ok(data, message='Marks updated successfully')


@routes.route('/teacher/exams/<int:exam_id>/subjects/<int:subject_id>/publish', methods=['PUT'])
@role_required('teacher')
def teacher_publish_subject(exam_id, subject_id):
    _teacher_exam(exam_id)
    exam, rows = exams.check_subject_complete(exam_id, subject_id)
    return ok({'examId': exam.exam_id, 'subjectId': subject_id, 'totalStudents': len(rows)},
              message='All marks for this subject are filled')


@routes.route('/teacher/exams/<int:exam_id>/rank', methods=['GET'])
@role_required('teacher')
def teacher_exam_rank(exam_id):
    _teacher_exam(exam_id)
    return ok(results.exam_rank_list(exam_id))


# ==================== TEACHER: DAILY TESTS ====================

@routes.route('/teacher/tests', methods=['POST'])
@role_required('teacher')
def create_test():
    body = _json_body()
    classroom_id = _int_value(body.get('classId'), 'classId')
    _require_class_assignment(classroom_id)
    if not body.get('title'):
        raise ValidationError('title is required', details=[{'field': 'title', 'message': 'is required'}])

    test = daily_tests.create_test(
        teacher_id=g.principal.teacher_id,
        classroom_id=classroom_id,
        subject_id=_int_value(body.get('subject'), 'subject'),
        title=body['title'],
        test_date=_parse_date(body.get('date'), 'date'),
        max_marks=body.get('maxMarks'),
    )
    return ok(daily_tests.serialize_test(test, []), message='Test created successfully', status=201)


@routes.route('/teacher/tests', methods=['GET'])
@role_required('teacher')
def list_tests():
    classroom_id = _int_value(request.args.get('classId'), 'classId')
    _require_class_assignment(classroom_id)
    status = request.args.get('status')
    if status and status not in ('upcoming', 'past'):
        raise ValidationError('Invalid status', details=[{'field': 'status', 'message': 'must be upcoming or past'}])
    page, limit = _page_args()

    items, total = daily_tests.list_tests(classroom_id, status=status, limit=limit, offset=(page - 1) * limit)
    return ok(items, pagination=_pagination(page, limit, total))


@routes.route('/teacher/tests/<int:test_id>/students/<int:student_id>', methods=['PUT'])
@role_required('teacher')
def enter_test_mark(test_id, student_id):
    _teacher_test(test_id)
    body = _json_body()
    is_absent = body.get('isAbsent')
    test, enrollment, row = daily_tests.enter_mark(
        test_id, student_id,
        marks=body.get('marks'),
        is_absent=None if is_absent is None else bool(is_absent),
        teacher_id=g.principal.teacher_id,
    )
    data = _student_row(enrollment)
    data.update({
        'testId': test.test_id,
        'marks': None if row.is_absent or row.marks_obtained is None else float(row.marks_obtained),
        'maxMarks': float(test.max_marks),
        'isAbsent': bool(row.is_absent),
    })
    return ok(data, message='Marks saved')


@routes.route('/teacher/tests/<int:test_id>/publish', methods=['PUT'])
@role_required('teacher')
def publish_test(test_id):
    _teacher_test(test_id)
    test, changed = daily_tests.publish_test(test_id)
    message = 'Test published successfully' if changed else 'Test already published'
    return ok({'testId': test.test_id, 'isDeclared': True}, message=message)


@routes.route('/teacher/tests/<int:test_id>/rank', methods=['GET'])
@role_required('teacher')
def test_rank(test_id):
    _teacher_test(test_id)
    return ok(daily_tests.rank_list(test_id))


# ==================== STUDENT RESULTS ====================

@routes.route('/results/exams', methods=['GET'])
@role_required('student')
def student_exams():
    return ok(results.student_exam_list(g.principal.student_id))


@routes.route('/results/exams/<int:exam_id>', methods=['GET'])
@role_required('student')
def student_exam_result(exam_id):
    return ok(results.student_transcript(exam_id, g.principal.student_id))


@routes.route('/results/tests', methods=['GET'])
@role_required('student')
def student_tests():
    return ok(daily_tests.student_results(g.principal.student_id))


# ==================== DEVICES ====================

@routes.route('/devices', methods=['POST'])
@role_required()
def register_device():
    body = _json_body()
    token = body.get('token')
    platform = (body.get('platform') or '').lower()
    details = []
    if not token:
        details.append({'field': 'token', 'message': 'is required'})
    if platform not in PLATFORMS:
        details.append({'field': 'platform', 'message': 'must be one of %s' % ', '.join(PLATFORMS)})
    if details:
        raise ValidationError('Invalid device registration', details=details)

    principal = g.principal
    row = token_registry.register(token, platform, principal.role, principal.user_id)
    return ok({'token': row.token, 'platform': row.platform, 'isValid': row.is_valid},
              message='Device registered', status=201)


@routes.route('/devices', methods=['DELETE'])
@role_required()
def unregister_device():
    token = request.args.get('token') or _json_body().get('token')
    if not token:
        raise ValidationError('token is required', details=[{'field': 'token', 'message': 'is required'}])
    removed = token_registry.unregister(token)
    return ok({'token': token, 'removed': removed}, message='Device unregistered')


# ==================== NOTIFICATIONS ====================

def _notification_row(row, read_at=None):
    if row.recipient_id != 'ALL':
        read_at = row.read_at
    return {
        'id': row.notification_id,
        'title': row.title,
        'body': row.body,
        'data': row.data_json,
        'status': row.status,
        'isRead': read_at is not None,
        'readAt': read_at.isoformat() if read_at else None,
        'createdAt': row.created_at.isoformat() if row.created_at else None,
    }


def _inbox():
    principal = g.principal
    return gateway.inbox_query(principal.role, principal.user_id)


def _read_filter():
    principal = g.principal
    return gateway.inbox_read_filter(principal.role, principal.user_id)


@routes.route('/notifications/event', methods=['POST'])
@role_required('admin')
def notification_event():
    body = _json_body()
    if not body.get('recipients'):
        raise ValidationError('recipients are required', details=[{'field': 'recipients', 'message': 'must not be empty'}])
    data = body.get('data')
    if data is not None and not isinstance(data, dict):
        raise ValidationError('data must be an object', details=[{'field': 'data', 'message': 'must be a JSON object'}])

    rows = orchestrator.create_and_send(
        type=body.get('type'),
        title=body.get('title'),
        body=body.get('body'),
        recipients=body['recipients'],
        data=data,
    )
    return ok({'count': len(rows), 'dispatchMode': current_app.config.get('NOTIFICATION_DRIVER')},
              message='Notifications queued', status=202)


@routes.route('/notifications', methods=['GET'])
@role_required()
def list_notifications():
    page, limit = _page_args()
    status = request.args.get('status', 'all')
    if status not in ('all', 'unread', 'read'):
        raise ValidationError('Invalid status', details=[{'field': 'status', 'message': 'must be all, unread or read'}])

    query = _inbox()
    if status == 'unread':
        query = query.filter(not_(_read_filter()))
    elif status == 'read':
        query = query.filter(_read_filter())

    total = query.count()
    rows = query.order_by(Notification.created_at.desc(), Notification.notification_id.desc()) \
        .offset((page - 1) * limit).limit(limit).all()
    read_times = gateway.broadcast_read_times(
        g.principal.role, g.principal.user_id,
        [r.notification_id for r in rows if r.recipient_id == 'ALL'])
    return ok([_notification_row(r, read_times.get(r.notification_id)) for r in rows],
              pagination=_pagination(page, limit, total))


@routes.route('/notifications/unread-count', methods=['GET'])
@role_required()
def unread_count():
    count = _inbox().filter(not_(_read_filter())).count()
    return ok({'count': count})


@routes.route('/notifications/<int:notification_id>/read', methods=['PATCH'])
@role_required()
def mark_read(notification_id):
    principal = g.principal
    row = _inbox().filter(Notification.notification_id == notification_id).first()
    if row is None:
        raise NotFound('Notification not found')
    read_at = gateway.mark_notification_read(row, principal.role, principal.user_id, datetime.now())
    db.session.commit()
    return ok(_notification_row(row, read_at), message='Notification marked as read')


@routes.route('/notifications/read-all', methods=['PATCH'])
@role_required()
def mark_all_read():
    principal = g.principal
    rows = _inbox().filter(not_(_read_filter())).all()
    now = datetime.now()
    for row in rows:
        gateway.mark_notification_read(row, principal.role, principal.user_id, now)
    db.session.commit()
    return ok({'updated': len(rows)}, message='All notifications marked as read')
