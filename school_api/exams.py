"""
Exam lifecycle: creation and mark seeding, mark entry, absence, publication.

A declared exam is frozen: every mutation below checks ``is_declared`` first and
raises EXAM_CANNOT_BE_MODIFIED. Summaries are a materialised view of the mark
rows and are only ever written by ``publish_exam``.
"""

import logging
from collections import OrderedDict
from datetime import datetime

from school_api import db, gateway, grading
from school_api.errors import (
    Conflict, NotFound, Unprocessable, ValidationError,
    exam_declared, exam_not_found, student_not_found,
)
from school_api.models import Exam

logger = logging.getLogger(__name__)


def to_number(value, field):
    if isinstance(value, bool):
        raise ValidationError('%s must be a number' % field, details=[{'field': field, 'message': 'must be a number'}])
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError('%s must be a number' % field, details=[{'field': field, 'message': 'must be a number'}])


def load_exam(exam_id, for_update=False):
    exam = gateway.get_exam(exam_id)
    if exam is None:
        raise exam_not_found()
    if for_update and exam.is_declared:
        raise exam_declared()
    return exam


def exam_status(exam, today=None):
    if exam.is_declared:
        return 'declared'
    today = today or datetime.now().date()
    if exam.start_date and exam.start_date <= today:
        return 'ongoing'
    return 'scheduled'


def _enrollment_for_student(exam, student_id):
    enrollment = gateway.find_enrollment(student_id, exam.classroom_id)
    if enrollment is None:
        raise student_not_found()
    return enrollment


def _validate_subjects(subjects):
    if not subjects:
        raise ValidationError('At least one subject is required',
                              details=[{'field': 'subjects', 'message': 'must not be empty'}])
    cleaned = OrderedDict()
    errors = []
    for index, entry in enumerate(subjects):
        subject_id = (entry or {}).get('subjectId')
        max_marks = (entry or {}).get('maxMarks')
        if subject_id is None:
            errors.append({'field': 'subjects[%d].subjectId' % index, 'message': 'is required'})
            continue
        try:
            max_marks = float(max_marks)
        except (TypeError, ValueError):
            errors.append({'field': 'subjects[%d].maxMarks' % index, 'message': 'must be a number'})
            continue
        if max_marks <= 0:
            errors.append({'field': 'subjects[%d].maxMarks' % index, 'message': 'must be greater than 0'})
            continue
        if gateway.get_subject(subject_id) is None:
            errors.append({'field': 'subjects[%d].subjectId' % index, 'message': 'unknown subject'})
            continue
        cleaned.setdefault(subject_id, max_marks)
    if errors:
        raise ValidationError('Invalid subjects', details=errors)
    return list(cleaned.items())


def create_exam(classroom_id, name, exam_type, start_date, end_date, subjects, session_id=None):
    if not name:
        raise ValidationError('examName is required', details=[{'field': 'examName', 'message': 'is required'}])
    if end_date < start_date:
        raise ValidationError('endDate must not be before startDate',
                              details=[{'field': 'endDate', 'message': 'must be on or after startDate'}])

    seed_subjects = _validate_subjects(subjects)

    classroom = gateway.get_classroom(classroom_id)
    if classroom is None:
        raise NotFound('Classroom not found', code='CLASSROOM_NOT_FOUND')

    resolved_type = gateway.resolve_exam_type(exam_type)
    if resolved_type is None:
        raise ValidationError('Unknown exam type', details=[{'field': 'examType', 'message': 'no exam type with this code or name'}])

    exam = Exam(
        classroom_id=classroom.classroom_id,
        session_id=session_id or classroom.session_id,
        exam_type_id=resolved_type.exam_type_id,
        name=name,
        start_date=start_date,
        end_date=end_date,
        is_declared=False,
    )
    db.session.add(exam)
    db.session.flush()

    seeded = seed_exam_subjects(exam, seed_subjects)
    db.session.commit()

    logger.info("Created exam %s for classroom %s with %d subjects (%d mark rows)",
                exam.exam_id, classroom.classroom_id, len(seed_subjects), seeded)
    return exam, len(seed_subjects), seeded


def seed_exam_subjects(exam, subjects):
    """Seed null mark rows for every current enrollment; existing cells are kept."""
    enrollments = gateway.classroom_enrollments(exam.classroom_id, exam.session_id)
    enrollment_ids = [e.enrollment_id for e in enrollments]
    return gateway.seed_marks(exam.exam_id, enrollment_ids, subjects)


def update_exam(exam_id, name=None, start_date=None, end_date=None, exam_type=None):
    exam = load_exam(exam_id, for_update=True)

    resolved_type = None
    if exam_type:
        resolved_type = gateway.resolve_exam_type(exam_type)
        if resolved_type is None:
            raise ValidationError('Unknown exam type', details=[{'field': 'examType', 'message': 'no exam type with this code or name'}])
    if (end_date or exam.end_date) < (start_date or exam.start_date):
        raise ValidationError('endDate must not be before startDate',
                              details=[{'field': 'endDate', 'message': 'must be on or after startDate'}])

    if not (name or start_date or end_date or resolved_type):
        return exam, False
    if name:
        exam.name = name
    if start_date:
        exam.start_date = start_date
    if end_date:
        exam.end_date = end_date
    if resolved_type is not None:
        exam.exam_type_id = resolved_type.exam_type_id

    db.session.commit()
    return exam, True


def add_subject_to_exam(exam_id, subject_id, max_marks):
    exam = load_exam(exam_id, for_update=True)
    (subject_id, max_marks), = _validate_subjects([{'subjectId': subject_id, 'maxMarks': max_marks}])
    inserted = seed_exam_subjects(exam, [(subject_id, max_marks)])
    db.session.commit()
    return exam, inserted


def students_not_in_exam(exam_id):
    exam = load_exam(exam_id)
    in_exam = {enrollment_id for enrollment_id, _ in gateway.existing_mark_keys(exam.exam_id)}
    enrollments = gateway.classroom_enrollments(exam.classroom_id, exam.session_id)
    return [e for e in enrollments if e.enrollment_id not in in_exam]


def add_student_to_exam(exam_id, enrollment_id):
    exam = load_exam(exam_id, for_update=True)

    enrollment = gateway.get_enrollment(enrollment_id)
    if enrollment is None or enrollment.classroom_id != exam.classroom_id:
        raise student_not_found("Student is not enrolled in this exam's classroom")

    subjects = gateway.exam_subjects(exam.exam_id)
    if not subjects:
        raise NotFound('No subjects found for this exam. Please add subjects first.', code='NO_SUBJECTS')

    if gateway.exam_marks(exam.exam_id, enrollment_id=enrollment.enrollment_id):
        raise Conflict('Student already has entries for this exam', code='ALREADY_EXISTS')

    inserted = gateway.seed_marks(exam.exam_id, [enrollment.enrollment_id], list(subjects.items()))
    db.session.commit()
    return enrollment, list(subjects.items()), inserted


def remove_student_from_exam(exam_id, student_id):
    exam = load_exam(exam_id, for_update=True)
    enrollment = _enrollment_for_student(exam, student_id)

    rows = gateway.exam_marks(exam.exam_id, enrollment_id=enrollment.enrollment_id)
    if not rows:
        raise NotFound('No exam marks found for this student in this exam', code='NO_MARKS_FOUND')

    subject_ids = [row.subject_id for row in rows]
    gateway.delete_marks(exam.exam_id, enrollment.enrollment_id)
    db.session.commit()
    return enrollment, subject_ids


def _apply_result(row, entry, index):
    """Validate one result entry against its row and return the new column values."""
    subject_id = entry.get('subjectId')
    is_absent = entry.get('isAbsent')
    has_marks = 'marksObtained' in entry and entry['marksObtained'] is not None

    if is_absent is True and has_marks:
        raise ValidationError('Cannot provide marks when marking a subject absent',
                              details=[{'subjectId': subject_id, 'message': 'marksObtained and isAbsent are exclusive'}])

    max_marks = row.max_marks
    if entry.get('maxMarks') is not None:
        max_marks = to_number(entry['maxMarks'], 'results[%d].maxMarks' % index)
        if max_marks <= 0:
            raise Unprocessable('Marks validation failed', code='INVALID_MARKS',
                                details=[{'subjectId': subject_id, 'message': 'maxMarks must be greater than 0'}])

    values = {'max_marks': max_marks}
    if is_absent is True:
        values['is_absent'] = True
        values['marks_obtained'] = 0
    elif 'marksObtained' in entry:
        marks = entry['marksObtained']
        if marks is not None:
            marks = to_number(marks, 'results[%d].marksObtained' % index)
        values['is_absent'] = False
        values['marks_obtained'] = marks
    elif is_absent is False:
        values['is_absent'] = False
        values['marks_obtained'] = None if row.is_absent else row.marks_obtained

    marks = values.get('marks_obtained', row.marks_obtained)
    absent = values.get('is_absent', row.is_absent)
    if marks is not None and not absent and not (0 <= marks <= max_marks):
        raise Unprocessable('Marks validation failed', code='INVALID_MARKS',
                            details=[{'subjectId': subject_id,
                                      'message': 'marksObtained must be between 0 and %g' % max_marks}])

    if 'remark' in entry:
        values['remark'] = entry['remark']
    return values


def update_student_marks(exam_id, student_id, results, updated_by=None):
    """
    Update the mark cells of one student.

    Every entry is validated before the first write so a bad entry leaves the
    student's marks untouched.
    """
    if not isinstance(results, list) or not results:
        raise ValidationError('results required', details=[{'field': 'results', 'message': 'must be a non-empty list'}])

    exam = load_exam(exam_id, for_update=True)
    enrollment = _enrollment_for_student(exam, student_id)
    rows = {row.subject_id: row for row in gateway.exam_marks(exam.exam_id, enrollment_id=enrollment.enrollment_id)}

    planned = []
    for index, entry in enumerate(results):
        if not isinstance(entry, dict) or entry.get('subjectId') is None:
            raise ValidationError('subjectId is required', details=[{'field': 'results[%d].subjectId' % index, 'message': 'is required'}])
        row = rows.get(entry['subjectId'])
        if row is None:
            raise Unprocessable('Marks validation failed', code='INVALID_MARKS',
                                details=[{'subjectId': entry['subjectId'], 'message': 'subject is not part of this exam for the student'}])
        planned.append((row, _apply_result(row, entry, index)))

    now = datetime.now()
    for row, values in planned:
        for column, value in values.items():
            setattr(row, column, value)
        row.updated_by = updated_by
        row.updated_at = now

    db.session.commit()
    return enrollment, [row for row, _ in planned]


def mark_absent(exam_id, student_id, reason=None, updated_by=None):
    exam = load_exam(exam_id, for_update=True)
    enrollment = _enrollment_for_student(exam, student_id)

    rows = gateway.exam_marks(exam.exam_id, enrollment_id=enrollment.enrollment_id)
    if not rows:
        raise student_not_found()
    if any(row.marks_obtained is not None and not row.is_absent for row in rows):
        raise Conflict('Cannot mark student as absent - marks already submitted', code='STUDENT_ALREADY_HAS_MARKS')

    now = datetime.now()
    for row in rows:
        row.is_absent = True
        row.marks_obtained = 0
        row.remark = reason or 'Absent'
        row.updated_by = updated_by
        row.updated_at = now

    db.session.commit()
    return enrollment, rows


def _is_marked(row):
    return row.is_absent or row.marks_obtained is not None


def group_by_enrollment(rows):
    grouped = OrderedDict()
    for row in sorted(rows, key=lambda r: (r.enrollment_id, r.mark_id or 0)):
        grouped.setdefault(row.enrollment_id, []).append(row)
    return grouped


def marking_progress(rows):
    grouped = group_by_enrollment(rows)
    total = len(grouped)
    marked = sum(1 for cells in grouped.values() if all(_is_marked(c) for c in cells))
    pending = total - marked
    return {
        'totalStudents': total,
        'markedStudents': marked,
        'pendingStudents': pending,
        'completionPercentage': round(marked / total * 100, 2) if total else 0,
    }


def compute_summaries(rows):
    """
    Build one summary per enrollment and assign ranks.

    Students with at least one attended subject are ranked 1..N by percentage;
    students absent from every subject are ranked N+1..N+M after them. Sorting
    is stable on enrollment order, so equal percentages never share a rank.
    """
    present, absent = [], []
    for enrollment_id, cells in group_by_enrollment(rows).items():
        total = sum(float(c.marks_obtained or 0) for c in cells if not c.is_absent)
        max_total = sum(float(c.max_marks) for c in cells)
        pct = grading.percentage(total, max_total)
        absent_any = any(c.is_absent for c in cells)
        absent_all = all(c.is_absent for c in cells)
        summary = {
            'enrollment_id': enrollment_id,
            'total_marks': total,
            'max_marks': max_total,
            'percentage': pct,
            'grade': grading.grade(pct, absent=absent_any),
            'rank': None,
            'is_absent': absent_all,
        }
        (absent if absent_all else present).append(summary)

    present.sort(key=lambda s: s['percentage'], reverse=True)
    absent.sort(key=lambda s: s['percentage'], reverse=True)
    for index, summary in enumerate(present):
        summary['rank'] = index + 1
    for index, summary in enumerate(absent):
        summary['rank'] = len(present) + index + 1
    return present + absent


def publish_exam(exam_id):
    """Generate summaries and declare the exam in a single transaction."""
    exam = load_exam(exam_id, for_update=True)

    rows = gateway.exam_marks(exam.exam_id)
    progress = marking_progress(rows)
    if not rows or progress['pendingStudents'] > 0:
        raise Unprocessable('Cannot generate results - marking is incomplete',
                            code='MARKING_INCOMPLETE', details=progress)

    summaries = compute_summaries(rows)
    gateway.upsert_summaries(exam.exam_id, summaries)
    exam.is_declared = True
    exam.declared_at = datetime.now()
    db.session.commit()

    absent_count = sum(1 for s in summaries if s['is_absent'])
    logger.info("Published exam %s: %d students (%d absent)", exam.exam_id, len(summaries), absent_count)
    return exam, summaries


def delete_exam(exam_id):
    exam = load_exam(exam_id)
    if exam.is_declared or gateway.count_summaries(exam.exam_id) > 0:
        raise Conflict('Cannot delete exam with existing student results', code='EXAM_HAS_RESULTS')
    gateway.delete_exam(exam)
    db.session.commit()
    return exam_id


def check_subject_complete(exam_id, subject_id):
    exam = load_exam(exam_id)
    rows = gateway.exam_marks(exam.exam_id, subject_id=subject_id)
    if not rows:
        raise NotFound('Subject is not part of this exam', code='NOT_FOUND')
    pending = [row for row in rows if not _is_marked(row)]
    if pending:
        raise Unprocessable('Not all student marks have been filled', code='MARKING_INCOMPLETE',
                            details={'totalStudents': len(rows), 'pendingStudents': len(pending)})
    return exam, rows
