"""
Read models over exams, enrollments, marks and summaries.

Every projection works before results are generated: missing summaries show up
as ``rank=None`` while the subject-level cells are still reported.
"""

from school_api import gateway, grading
from school_api.errors import NotFound, student_not_found
from school_api.exams import exam_status, group_by_enrollment, load_exam


def _number(value):
    return None if value is None else float(value)


def _roll(roll_no):
    return None if roll_no is None else str(roll_no).zfill(4)


def exam_header(exam):
    return {
        'examId': exam.exam_id,
        'examName': exam.name or (exam.exam_type.name if exam.exam_type else None),
        'examType': exam.exam_type.code if exam.exam_type else None,
        'class': exam.classroom.class_name if exam.classroom else None,
        'section': exam.classroom.section if exam.classroom else None,
        'status': exam_status(exam),
        'startDate': exam.start_date.isoformat() if exam.start_date else None,
        'endDate': exam.end_date.isoformat() if exam.end_date else None,
        'isDeclared': bool(exam.is_declared),
    }


def subject_progress(marks):
    names = gateway.subject_names({m.subject_id for m in marks})
    subjects = {}
    for m in sorted(marks, key=lambda r: r.mark_id or 0):
        entry = subjects.get(m.subject_id)
        if entry is None:
            entry = subjects[m.subject_id] = {
                'subjectId': m.subject_id,
                'subjectName': names.get(m.subject_id, m.subject_id),
                'maxMarks': _number(m.max_marks),
                'markedStudents': 0,
                'absentStudents': 0,
                'totalStudents': 0,
            }
        entry['totalStudents'] += 1
        if m.is_absent:
            entry['absentStudents'] += 1
        elif m.marks_obtained is not None:
            entry['markedStudents'] += 1

    result = []
    for entry in subjects.values():
        entry['markingProgress'] = round(entry['markedStudents'] / entry['totalStudents'] * 100, 2) \
            if entry['totalStudents'] else 0
        result.append(entry)
    return result


def _subject_result(subject, cell):
    if cell is None:
        return {
            'subjectId': subject['subjectId'],
            'subjectName': subject['subjectName'],
            'marksObtained': None,
            'maxMarks': subject['maxMarks'],
            'grade': None,
            'status': 'pending',
        }
    if cell.is_absent:
        return {
            'subjectId': subject['subjectId'],
            'subjectName': subject['subjectName'],
            'marksObtained': 0,
            'maxMarks': _number(cell.max_marks),
            'grade': grading.FAIL_GRADE,
            'status': 'absent',
            'remark': cell.remark or 'Absent',
        }
    return {
        'subjectId': subject['subjectId'],
        'subjectName': subject['subjectName'],
        'marksObtained': _number(cell.marks_obtained),
        'maxMarks': _number(cell.max_marks),
        'grade': grading.grade_for(cell.marks_obtained, cell.max_marks),
        'status': 'marked' if cell.marks_obtained is not None else 'pending',
        'remark': cell.remark,
    }


def overall_status(cells, has_summary):
    absent = [c for c in cells if c.is_absent]
    present = [c for c in cells if not c.is_absent]
    if cells and not present:
        return 'absent'
    if absent and present:
        return 'partial present'
    marked = [c for c in present if c.marks_obtained is not None]
    if has_summary or (present and len(marked) == len(present)):
        return 'completed'
    if marked:
        return 'partial'
    return 'pending'


def _student_transcript_row(enrollment, cells, summary, subjects):
    by_subject = {c.subject_id: c for c in cells}
    subject_results = [_subject_result(s, by_subject.get(s['subjectId'])) for s in subjects]
    all_absent = bool(cells) and all(c.is_absent for c in cells)

    if summary is not None:
        total = _number(summary.total_marks)
        max_total = _number(summary.max_marks)
        pct = _number(summary.percentage)
        grade = summary.grade
    elif all_absent:
        total, max_total, pct, grade = 0, 0, 0, grading.FAIL_GRADE
    else:
        counted = [r for r in subject_results if r['status'] != 'absent']
        total = sum(r['marksObtained'] or 0 for r in counted)
        max_total = sum(r['maxMarks'] or 0 for r in counted)
        pct = grading.percentage(total, max_total) if max_total else None
        grade = None

    student = enrollment.student if enrollment else None
    return {
        'enrollmentId': enrollment.enrollment_id if enrollment else None,
        'studentId': student.student_id if student else None,
        'studentName': student.name if student else None,
        'rollNumber': enrollment.roll_no if enrollment else None,
        'totalMarks': total,
        'maxMarks': max_total,
        'percentage': pct,
        'rank': summary.rank if summary is not None else None,
        'grade': grade,
        'status': overall_status(cells, summary is not None),
        'subjectResults': subject_results,
    }


def exam_statistics(grouped, summaries):
    total = len(grouped)
    absent = sum(1 for cells in grouped.values() if cells and all(c.is_absent for c in cells))
    pending = sum(1 for cells in grouped.values()
                  if any(not c.is_absent and c.marks_obtained is None for c in cells))

    present = [s for s in summaries.values() if not s.is_absent]
    totals = [float(s.total_marks) for s in present]
    percentages = [float(s.percentage) for s in present]
    passed = [p for p in percentages if grading.is_pass(p)]

    distribution = {}
    for s in summaries.values():
        if s.grade:
            distribution[s.grade] = distribution.get(s.grade, 0) + 1

    return {
        'totalStudents': total,
        'gradedStudents': len(summaries),
        'absentStudents': absent,
        'pendingStudents': pending,
        'averageMarks': round(sum(totals) / len(totals), 2) if totals else 0,
        'averagePercentage': round(sum(percentages) / len(percentages), 2) if percentages else 0,
        'highestMarks': max(totals) if totals else 0,
        'lowestMarks': min(totals) if totals else 0,
        'passPercentage': round(len(passed) / len(percentages) * 100, 2) if percentages else 0,
        'gradeDistribution': distribution,
    }


def exam_detail(exam_id, include_results=True, include_statistics=True):
    """Admin view: subjects with marking progress, transcripts and statistics."""
    exam = load_exam(exam_id)
    marks = gateway.exam_marks(exam.exam_id)
    subjects = subject_progress(marks)
    grouped = group_by_enrollment(marks)
    summaries = gateway.exam_summaries(exam.exam_id)

    detail = exam_header(exam)
    detail['maxMarks'] = sum(s['maxMarks'] or 0 for s in subjects)
    detail['subjects'] = subjects

    if include_results:
        enrollments = gateway.enrollments_by_ids(grouped.keys())
        students = [
            _student_transcript_row(enrollments.get(enrollment_id), cells, summaries.get(enrollment_id), subjects)
            for enrollment_id, cells in grouped.items()
        ]
        students.sort(key=lambda s: (s['rollNumber'] is None, s['rollNumber'] or 0, s['enrollmentId']))
        detail['students'] = students

    if include_statistics:
        detail['statistics'] = exam_statistics(grouped, summaries)

    return detail


def exam_rank_list(exam_id):
    """Teacher view: ranked students, absent students last with no rank."""
    exam = load_exam(exam_id)
    marks = gateway.exam_marks(exam.exam_id)
    grouped = group_by_enrollment(marks)
    summaries = gateway.exam_summaries(exam.exam_id)
    enrollments = gateway.enrollments_by_ids(grouped.keys())
    names = gateway.subject_names({m.subject_id for m in marks})

    ranked, unranked, absent = [], [], []
    for enrollment_id, cells in grouped.items():
        enrollment = enrollments.get(enrollment_id)
        summary = summaries.get(enrollment_id)
        all_absent = bool(cells) and all(c.is_absent for c in cells)
        student = enrollment.student if enrollment else None
        row = {
            'rank': None,
            'studentId': student.student_id if student else None,
            'rollNo': _roll(enrollment.roll_no) if enrollment else None,
            'name': student.name if student else None,
            'totalMarks': None,
            'maxMarks': None,
            'percentage': None,
            'grade': None,
            'absent': all_absent,
            'subjectMarks': [{
                'subjectId': c.subject_id,
                'subjectName': names.get(c.subject_id),
                'marksObtained': _number(c.marks_obtained),
                'maxMarks': _number(c.max_marks),
                'isAbsent': bool(c.is_absent),
            } for c in cells],
        }
        if summary is not None:
            row['totalMarks'] = _number(summary.total_marks)
            row['maxMarks'] = _number(summary.max_marks)
            row['percentage'] = _number(summary.percentage)
            row['grade'] = summary.grade

        if all_absent:
            absent.append(row)
        elif summary is not None:
            row['rank'] = summary.rank
            ranked.append((summary.rank, row))
        else:
            unranked.append(row)

    ranked.sort(key=lambda item: item[0])
    students = [row for _, row in ranked] + unranked + absent

    present_totals = [float(s.total_marks) for s in summaries.values() if not s.is_absent]
    return {
        'exam': {
            'id': exam.exam_id,
            'title': exam.name or (exam.exam_type.name if exam.exam_type else 'Exam #%s' % exam.exam_id),
            'date': exam.start_date.isoformat() if exam.start_date else None,
            'isCompleted': bool(exam.is_declared),
            'totalStudents': len(students),
            'gradedStudents': len(ranked),
            'averageMarks': round(sum(present_totals) / len(present_totals), 2) if present_totals else None,
            'highestMarks': max(present_totals) if present_totals else None,
        },
        'students': students,
    }


def student_transcript(exam_id, student_id):
    """Student view of one exam."""
    exam = gateway.get_exam(exam_id)
    if exam is None:
        raise NotFound('Exam not found', code='EXAM_NOT_FOUND')

    enrollment = gateway.find_enrollment(student_id, exam.classroom_id)
    if enrollment is None:
        raise student_not_found('No enrollment for this exam')

    header = {
        'id': exam.exam_id,
        'examName': exam.name or (exam.exam_type.name if exam.exam_type else ''),
        'examDate': exam.start_date.isoformat() if exam.start_date else None,
        'class': exam.classroom.class_name if exam.classroom else None,
        'section': exam.classroom.section if exam.classroom else None,
        'isDeclared': bool(exam.is_declared),
    }

    cells = gateway.exam_marks(exam.exam_id, enrollment_id=enrollment.enrollment_id)
    if not cells:
        header.update({
            'isCompletelyAbsent': True,
            'absentMessage': 'Student was completely absent for this exam',
            'status': 'Absent',
            'totalMarks': None,
            'totalMaxMarks': None,
            'percentage': None,
            'rank': None,
            'grade': None,
            'subjects': [],
        })
        return header

    names = gateway.subject_names({c.subject_id for c in cells})
    subjects = [{
        'subjectId': c.subject_id,
        'subject': names.get(c.subject_id, c.subject_id),
        'marks': None if c.is_absent else _number(c.marks_obtained),
        'maxMarks': _number(c.max_marks),
        'teacherRemarks': c.remark,
        'isAbsent': bool(c.is_absent),
    } for c in cells]

    absent_count = sum(1 for s in subjects if s['isAbsent'])
    if absent_count == len(subjects):
        status = 'Absent'
    elif absent_count:
        status = 'Partial Present'
    else:
        status = 'Present'

    summary = gateway.get_summary(exam.exam_id, enrollment.enrollment_id)
    header.update({
        'isCompletelyAbsent': False,
        'status': status,
        'totalMarks': _number(summary.total_marks) if summary else None,
        'totalMaxMarks': _number(summary.max_marks) if summary else None,
        'percentage': _number(summary.percentage) if summary else None,
        'rank': summary.rank if summary else None,
        'grade': summary.grade if summary else None,
        'subjects': subjects,
    })
    return header


def student_exam_list(student_id):
    """Declared exams of every classroom the student is enrolled in, newest first."""
    enrollments = gateway.student_enrollments(student_id)
    by_classroom = {e.classroom_id: e for e in enrollments}
    exams = gateway.exams_for_enrollments([(e.classroom_id, e.session_id) for e in enrollments])

    items = []
    for exam in exams:
        enrollment = by_classroom.get(exam.classroom_id)
        summary = gateway.get_summary(exam.exam_id, enrollment.enrollment_id) if enrollment else None
        items.append({
            'id': exam.exam_id,
            'examName': exam.name or (exam.exam_type.name if exam.exam_type else ''),
            'examType': exam.exam_type.code if exam.exam_type else None,
            'examDate': exam.start_date.isoformat() if exam.start_date else None,
            'percentage': _number(summary.percentage) if summary else None,
            'rank': summary.rank if summary else None,
            'grade': summary.grade if summary else None,
        })
    return items


def teacher_exam_list(classroom_id):
    exams, total = gateway.list_exams({'classroom_ids': [classroom_id]}, page=1, limit=100)
    items = []
    for exam in exams:
        marks = gateway.exam_marks(exam.exam_id)
        items.append(dict(exam_header(exam), subjects=subject_progress(marks)))
    return items


def subject_students(exam_id, subject_id):
    """Teacher marking sheet for one subject of an exam."""
    exam = load_exam(exam_id)
    cells = gateway.exam_marks(exam.exam_id, subject_id=subject_id)
    if not cells:
        raise NotFound('Subject is not part of this exam', code='NOT_FOUND')
    enrollments = gateway.enrollments_by_ids({c.enrollment_id for c in cells})

    students = []
    for c in cells:
        enrollment = enrollments.get(c.enrollment_id)
        student = enrollment.student if enrollment else None
        students.append({
            'studentId': student.student_id if student else None,
            'name': student.name if student else None,
            'rollNo': _roll(enrollment.roll_no) if enrollment else None,
            'marks': None if c.is_absent else _number(c.marks_obtained),
            'maxMarks': _number(c.max_marks),
            'isAbsent': bool(c.is_absent),
            'grade': grading.FAIL_GRADE if c.is_absent else grading.grade_for(c.marks_obtained, c.max_marks),
            'remark': c.remark,
        })
    students.sort(key=lambda s: (s['rollNo'] is None, s['rollNo'] or ''))
    return exam, students
