"""Fixed grade bands used by exam summaries, subject cells and daily tests."""

PASS_PERCENTAGE = 40

GRADE_BANDS = (
    (90, 'A+'),
    (80, 'A'),
    (70, 'B+'),
    (60, 'B'),
    (50, 'C'),
    (40, 'D'),
)

FAIL_GRADE = 'F'


def grade(percentage, absent=False):
    if absent:
        return FAIL_GRADE
    for threshold, letter in GRADE_BANDS:
        if percentage >= threshold:
            return letter
    return FAIL_GRADE


def grade_for(marks, max_marks):
    """Grade a single score; None when nothing has been entered yet."""
    if marks is None or not max_marks:
        return None
    return grade(float(marks) / float(max_marks) * 100)


def percentage(total, max_marks):
    if not max_marks:
        return 0.0
    return round(float(total) / float(max_marks) * 100, 2)


def is_pass(percentage_value):
    return percentage_value >= PASS_PERCENTAGE
