"""
Typed access to the relational store.

No business rules live here: callers decide what is allowed, these helpers only
read and write rows. Nothing in this module commits; the calling operation owns
the transaction.
"""

from collections import OrderedDict
from datetime import datetime

from sqlalchemy import and_, exists, func, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import joinedload

from school_api import db
from school_api.models import (
    Classroom, DailyTest, DailyTestMark, DeviceToken, Enrollment,
    Exam, ExamMark, ExamSummary, ExamType, Notification, NotificationRead, NotificationTemplate,
    SendFailure, Subject, TeacherClass,
)


def _insert_ignoring_duplicates(model, rows, index_elements):
    if not rows:
        return
    dialect = db.engine.dialect.name
    if dialect == 'postgresql':
        stmt = postgresql.insert(model).values(rows).on_conflict_do_nothing(index_elements=index_elements)
    elif dialect == 'sqlite':
        stmt = sqlite.insert(model).values(rows).on_conflict_do_nothing(index_elements=index_elements)
    else:
        db.session.bulk_insert_mappings(model, rows)
        return
    db.session.execute(stmt)


# ==================== CLASSROOMS & ENROLLMENTS ====================

def get_classroom(classroom_id):
    return db.session.get(Classroom, classroom_id)


def classroom_enrollments(classroom_id, session_id=None):
    query = Enrollment.query.options(joinedload(Enrollment.student)).filter(
        Enrollment.classroom_id == classroom_id
    )
    if session_id is not None:
        query = query.filter(Enrollment.session_id == session_id)
    return query.order_by(Enrollment.roll_no, Enrollment.enrollment_id).all()


def find_enrollment(student_id, classroom_id):
    return Enrollment.query.filter_by(student_id=student_id, classroom_id=classroom_id).first()


def get_enrollment(enrollment_id):
    return db.session.get(Enrollment, enrollment_id)


def enrollments_by_ids(enrollment_ids):
    if not enrollment_ids:
        return {}
    rows = Enrollment.query.options(joinedload(Enrollment.student)).filter(
        Enrollment.enrollment_id.in_(list(enrollment_ids))
    ).all()
    return {e.enrollment_id: e for e in rows}


def student_enrollments(student_id):
    return Enrollment.query.filter_by(student_id=student_id).all()


def is_teacher_assigned(teacher_id, classroom_id):
    return TeacherClass.query.filter_by(teacher_id=teacher_id, class_id=classroom_id).first() is not None


# ==================== REFERENCE DATA ====================

def resolve_exam_type(value):
    """Find an exam type by exact code or by name substring."""
    if value is None or str(value).strip() == '':
        return None
    value = str(value).strip()
    by_code = ExamType.query.filter(func.lower(ExamType.code) == value.lower()).first()
    if by_code:
        return by_code
    return ExamType.query.filter(ExamType.name.ilike('%' + value + '%')).order_by(ExamType.exam_type_id).first()


def all_exam_types():
    return ExamType.query.order_by(ExamType.name).all()


def get_subject(subject_id):
    return db.session.get(Subject, subject_id)


def all_subjects():
    return Subject.query.order_by(Subject.name).all()


def subject_names(subject_ids):
    if not subject_ids:
        return {}
    rows = Subject.query.filter(Subject.subject_id.in_(list(subject_ids))).all()
    return {s.subject_id: s.name for s in rows}


# ==================== EXAMS ====================

def get_exam(exam_id):
    return Exam.query.options(
        joinedload(Exam.classroom), joinedload(Exam.exam_type)
    ).filter(Exam.exam_id == exam_id).first()


def list_exams(filters, page, limit, sort_by='start_date', ascending=False):
    query = Exam.query.options(joinedload(Exam.classroom), joinedload(Exam.exam_type)) \
        .outerjoin(Classroom, Exam.classroom_id == Classroom.classroom_id) \
        .outerjoin(ExamType, Exam.exam_type_id == ExamType.exam_type_id)

    if filters.get('declared') is not None:
        query = query.filter(Exam.is_declared == filters['declared'])
    if filters.get('starts_after'):
        query = query.filter(Exam.start_date > filters['starts_after'])
    if filters.get('start_date'):
        query = query.filter(Exam.start_date >= filters['start_date'])
    if filters.get('end_date'):
        query = query.filter(Exam.start_date <= filters['end_date'])
    if filters.get('class_name'):
        query = query.filter(Classroom.class_name == str(filters['class_name']))
    if filters.get('section'):
        query = query.filter(func.lower(Classroom.section) == filters['section'].lower())
    if filters.get('classroom_ids') is not None:
        query = query.filter(Exam.classroom_id.in_(filters['classroom_ids']))
    if filters.get('exam_type'):
        low = filters['exam_type'].lower()
        query = query.filter(or_(func.lower(ExamType.code) == low, func.lower(ExamType.name) == low))
    if filters.get('search'):
        query = query.filter(Exam.name.ilike('%' + filters['search'] + '%'))

    column = Exam.name if sort_by == 'name' else Exam.start_date
    query = query.order_by(column.asc() if ascending else column.desc(), Exam.exam_id.desc())

    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, total


def exams_for_enrollments(enrollment_session_pairs, declared_only=True):
    if not enrollment_session_pairs:
        return []
    classroom_ids = [classroom_id for classroom_id, _ in enrollment_session_pairs]
    query = Exam.query.options(joinedload(Exam.classroom), joinedload(Exam.exam_type)) \
        .filter(Exam.classroom_id.in_(classroom_ids))
    if declared_only:
        query = query.filter(Exam.is_declared.is_(True))
    return query.order_by(Exam.start_date.desc(), Exam.exam_id.desc()).all()


def delete_exam(exam):
    ExamMark.query.filter_by(exam_id=exam.exam_id).delete(synchronize_session=False)
    db.session.delete(exam)


# ==================== EXAM MARKS ====================

def exam_marks(exam_id, enrollment_id=None, subject_id=None):
    query = ExamMark.query.filter(ExamMark.exam_id == exam_id)
    if enrollment_id is not None:
        query = query.filter(ExamMark.enrollment_id == enrollment_id)
    if subject_id is not None:
        query = query.filter(ExamMark.subject_id == subject_id)
    return query.order_by(ExamMark.enrollment_id, ExamMark.mark_id).all()


def exam_subjects(exam_id):
    """Distinct subjects of an exam with the max marks of their first row."""
    subjects = OrderedDict()
    rows = db.session.query(ExamMark.subject_id, ExamMark.max_marks) \
        .filter(ExamMark.exam_id == exam_id) \
        .order_by(ExamMark.mark_id).all()
    for subject_id, max_marks in rows:
        if subject_id not in subjects:
            subjects[subject_id] = max_marks
    return subjects


def existing_mark_keys(exam_id):
    rows = db.session.query(ExamMark.enrollment_id, ExamMark.subject_id) \
        .filter(ExamMark.exam_id == exam_id).all()
    return {(enrollment_id, subject_id) for enrollment_id, subject_id in rows}


def seed_marks(exam_id, enrollment_ids, subjects, updated_by=None):
    """
    Insert null mark rows for every (enrollment, subject) pair not yet present.

    ``subjects`` is an iterable of (subject_id, max_marks). Returns the number
    of rows that were missing and got inserted.
    """
    existing = existing_mark_keys(exam_id)
    now = datetime.now()
    rows = []
    for subject_id, max_marks in subjects:
        for enrollment_id in enrollment_ids:
            if (enrollment_id, subject_id) in existing:
                continue
            existing.add((enrollment_id, subject_id))
            rows.append({
                'exam_id': exam_id,
                'enrollment_id': enrollment_id,
                'subject_id': subject_id,
                'max_marks': max_marks,
                'marks_obtained': None,
                'is_absent': False,
                'remark': None,
                'updated_by': updated_by,
                'updated_at': now,
            })
    _insert_ignoring_duplicates(ExamMark, rows, ['exam_id', 'enrollment_id', 'subject_id'])
    return len(rows)


def delete_marks(exam_id, enrollment_id):
    return ExamMark.query.filter_by(exam_id=exam_id, enrollment_id=enrollment_id) \
        .delete(synchronize_session=False)


# ==================== EXAM SUMMARIES ====================

def exam_summaries(exam_id):
    rows = ExamSummary.query.filter_by(exam_id=exam_id).all()
    return {s.enrollment_id: s for s in rows}


def count_summaries(exam_id):
    return ExamSummary.query.filter_by(exam_id=exam_id).count()


def summary_counts(exam_ids):
    if not exam_ids:
        return {}
    rows = db.session.query(ExamSummary.exam_id, func.count(ExamSummary.summary_id)) \
        .filter(ExamSummary.exam_id.in_(list(exam_ids))) \
        .group_by(ExamSummary.exam_id).all()
    return dict(rows)


def upsert_summaries(exam_id, summaries):
    """Write one ExamSummary per enrollment, replacing values already stored."""
    existing = exam_summaries(exam_id)
    now = datetime.now()
    for values in summaries:
        row = existing.get(values['enrollment_id'])
        if row is None:
            row = ExamSummary(exam_id=exam_id, enrollment_id=values['enrollment_id'])
            db.session.add(row)
        row.total_marks = values['total_marks']
        row.max_marks = values['max_marks']
        row.percentage = values['percentage']
        row.grade = values['grade']
        row.rank = values['rank']
        row.is_absent = values['is_absent']
        row.generated_at = now


def get_summary(exam_id, enrollment_id):
    return ExamSummary.query.filter_by(exam_id=exam_id, enrollment_id=enrollment_id).first()


# ==================== DAILY TESTS ====================

def get_daily_test(test_id):
    return db.session.get(DailyTest, test_id)


def daily_tests_for_classroom(classroom_id, today=None, status=None, limit=20, offset=0, declared_only=False):
    query = DailyTest.query.options(joinedload(DailyTest.subject)).filter(DailyTest.classroom_id == classroom_id)
    if declared_only:
        query = query.filter(DailyTest.is_declared.is_(True))
    if status == 'upcoming':
        query = query.filter(DailyTest.test_date > today)
    elif status == 'past':
        query = query.filter(DailyTest.test_date <= today)
    query = query.order_by(DailyTest.test_date.desc(), DailyTest.test_id.desc())
    total = query.count()
    return query.offset(offset).limit(limit).all(), total


def daily_test_marks(test_ids):
    if not test_ids:
        return []
    return DailyTestMark.query.filter(DailyTestMark.test_id.in_(list(test_ids))).all()


def get_daily_test_mark(test_id, enrollment_id):
    return DailyTestMark.query.filter_by(test_id=test_id, enrollment_id=enrollment_id).first()


# ==================== NOTIFICATIONS ====================

def active_template(template_type):
    if not template_type:
        return None
    return NotificationTemplate.query.filter_by(type=template_type, is_active=True) \
        .order_by(NotificationTemplate.notification_template_id).first()


def insert_notifications(rows):
    notifications = [Notification(**row) for row in rows]
    db.session.add_all(notifications)
    db.session.flush()
    return notifications


def notifications_by_ids(notification_ids):
    if not notification_ids:
        return []
    return Notification.query.filter(Notification.notification_id.in_(list(notification_ids))) \
        .order_by(Notification.notification_id).all()


def mark_notification_sent(notification_id):
    """Move a pending row to 'sent'. Returns False when the row already reached a final status."""
    updated = Notification.query.filter_by(notification_id=notification_id, status='pending') \
        .update({'status': 'sent', 'sent_at': datetime.now()}, synchronize_session=False)
    return updated == 1


def mark_notification_failed(notification_id, error_code, error_msg):
    """Move a pending row to 'failed' and record why. Final rows are left untouched."""
    updated = Notification.query.filter_by(notification_id=notification_id, status='pending') \
        .update({'status': 'failed'}, synchronize_session=False)
    if updated != 1:
        return False
    db.session.add(SendFailure(notification_id=notification_id, error_code=error_code, error_msg=error_msg))
    return True


def stale_pending_notifications(older_than):
    return Notification.query.filter(
        Notification.status == 'pending',
        Notification.created_at < older_than,
    ).all()


def inbox_query(recipient_type, recipient_id):
    return Notification.query.filter(
        Notification.recipient_type == recipient_type,
        Notification.recipient_id.in_([str(recipient_id), 'ALL']),
    )


def _has_read_receipt(recipient_type, recipient_id):
    return exists().where(
        NotificationRead.notification_id == Notification.notification_id,
        NotificationRead.recipient_type == recipient_type,
        NotificationRead.recipient_id == str(recipient_id),
    )


def inbox_read_filter(recipient_type, recipient_id):
    # Personal rows carry read_at themselves; broadcast rows are read per recipient
    return or_(
        and_(Notification.recipient_id != 'ALL', Notification.read_at.isnot(None)),
        and_(Notification.recipient_id == 'ALL', _has_read_receipt(recipient_type, recipient_id)),
    )


def broadcast_read_times(recipient_type, recipient_id, notification_ids):
    if not notification_ids:
        return {}
    rows = NotificationRead.query.filter(
        NotificationRead.notification_id.in_(list(notification_ids)),
        NotificationRead.recipient_type == recipient_type,
        NotificationRead.recipient_id == str(recipient_id),
    ).all()
    return {r.notification_id: r.read_at for r in rows}


def mark_notification_read(notification, recipient_type, recipient_id, when):
    """Record that the recipient read the row; returns the effective read time."""
    if notification.recipient_id != 'ALL':
        Notification.query.filter_by(
            notification_id=notification.notification_id,
            recipient_type=recipient_type,
            recipient_id=str(recipient_id),
            read_at=None,
        ).update({'read_at': when}, synchronize_session=False)
        return notification.read_at or when

    existing = NotificationRead.query.filter_by(
        notification_id=notification.notification_id,
        recipient_type=recipient_type,
        recipient_id=str(recipient_id),
    ).first()
    if existing is not None:
        return existing.read_at
    db.session.add(NotificationRead(notification_id=notification.notification_id,
                                    recipient_type=recipient_type,
                                    recipient_id=str(recipient_id), read_at=when))
    return when


# ==================== DEVICE TOKENS ====================

def get_device_token(token):
    return DeviceToken.query.filter_by(token=token).first()


def valid_tokens(recipient_type, recipient_id):
    rows = DeviceToken.query.filter_by(
        recipient_type=recipient_type,
        recipient_id=str(recipient_id),
        is_valid=True,
    ).order_by(DeviceToken.id).all()
    return [row.token for row in rows]


def invalidate_tokens(tokens):
    if not tokens:
        return 0
    return DeviceToken.query.filter(DeviceToken.token.in_(list(tokens))) \
        .update({'is_valid': False, 'updated_at': datetime.now()}, synchronize_session=False)
