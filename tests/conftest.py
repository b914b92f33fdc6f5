from datetime import date
from types import SimpleNamespace

import pytest

from school_api import create_app, db
from school_api.auth import issue_token
from school_api.config import TestingConfig
from school_api.models import (
    AcademicSession, Classroom, Enrollment, ExamType, Student, Subject, Teacher, TeacherClass,
)
from school_api.notifications.push import MulticastResult, PushProviderError, TokenResult


class FakePushProvider:
    """Records every provider call; per-token failures are scripted through token_errors."""

    enabled = True

    def __init__(self):
        self.multicasts = []
        self.topics = []
        self.subscriptions = []
        self.unsubscriptions = []
        self.token_errors = {}
        self.topic_error = None
        self.subscribe_error = None

    def multicast(self, tokens, title, body, data=None):
        self.multicasts.append({'tokens': list(tokens), 'title': title, 'body': body, 'data': data})
        responses = []
        for token in tokens:
            if token in self.token_errors:
                responses.append(TokenResult(token, False, self.token_errors[token], 'scripted failure'))
            else:
                responses.append(TokenResult(token, True))
        return MulticastResult(responses)

    def send_to_topic(self, topic, title, body, data=None):
        if self.topic_error:
            raise PushProviderError(self.topic_error, 'topic send failed')
        self.topics.append({'topic': topic, 'title': title, 'body': body, 'data': data})
        return 'projects/test/messages/%d' % len(self.topics)

    def subscribe(self, tokens, topic):
        if self.subscribe_error:
            raise PushProviderError(self.subscribe_error, 'subscribe failed')
        self.subscriptions.append((list(tokens), topic))
        return 0

    def unsubscribe(self, tokens, topic):
        self.unsubscriptions.append((list(tokens), topic))
        return 0


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    app.extensions['push_provider'] = FakePushProvider()
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def background_app(tmp_path):
    """App that hands delivery to the executor; file-backed so worker threads share the database."""
    database_uri = 'sqlite:///%s' % (tmp_path / 'background.db')

    class BackgroundConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = database_uri
        NOTIFICATION_DISPATCH_EAGER = False

    app = create_app(BackgroundConfig)
    app.extensions['push_provider'] = FakePushProvider()
    with app.app_context():
        db.create_all()
        yield app
        app.extensions['notification_dispatch']['executor'].shutdown(wait=True)
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def push(app):
    return app.extensions['push_provider']


@pytest.fixture
def seed(app):
    session = AcademicSession(name='2025-26', start_date=date(2025, 6, 1), end_date=date(2026, 4, 30))
    db.session.add(session)
    db.session.flush()

    classroom = Classroom(class_name='10', section='A', medium='English', session_id=session.session_id)
    other_classroom = Classroom(class_name='9', section='B', medium='English', session_id=session.session_id)
    db.session.add_all([classroom, other_classroom])
    db.session.flush()

    students = [
        Student(name='Asha Rao', email='asha@example.com'),
        Student(name='Bilal Khan', email='bilal@example.com'),
        Student(name='Chitra Iyer', email='chitra@example.com'),
    ]
    db.session.add_all(students)
    db.session.flush()

    enrollments = [
        Enrollment(student_id=s.student_id, classroom_id=classroom.classroom_id,
                   session_id=session.session_id, roll_no=i + 1)
        for i, s in enumerate(students)
    ]
    db.session.add_all(enrollments)

    maths = Subject(name='Mathematics')
    science = Subject(name='Science')
    english = Subject(name='English')
    db.session.add_all([maths, science, english])

    mid_term = ExamType(code='MID', name='Mid Term')
    db.session.add(mid_term)

    teacher = Teacher(name='Meera Nair', email='meera@example.com')
    outsider = Teacher(name='Ravi Das', email='ravi@example.com')
    db.session.add_all([teacher, outsider])
    db.session.flush()

    db.session.add(TeacherClass(teacher_id=teacher.teacher_id, class_id=classroom.classroom_id))
    db.session.commit()

    return SimpleNamespace(
        session_id=session.session_id,
        classroom_id=classroom.classroom_id,
        other_classroom_id=other_classroom.classroom_id,
        student_ids=[s.student_id for s in students],
        enrollment_ids=[e.enrollment_id for e in enrollments],
        maths_id=maths.subject_id,
        science_id=science.subject_id,
        english_id=english.subject_id,
        exam_type_code=mid_term.code,
        teacher_id=teacher.teacher_id,
        outsider_id=outsider.teacher_id,
    )


def bearer(claims):
    return {'Authorization': 'Bearer %s' % issue_token(claims)}


@pytest.fixture
def admin_headers(app):
    return bearer({'role': 'admin', 'adminId': 1, 'id': 'admin-1'})


@pytest.fixture
def teacher_headers(seed):
    return bearer({'role': 'teacher', 'teacherId': seed.teacher_id})


@pytest.fixture
def outsider_headers(seed):
    return bearer({'role': 'teacher', 'teacherId': seed.outsider_id})


@pytest.fixture
def student_headers(seed):
    def make(index=0):
        return bearer({'role': 'student', 'studentId': seed.student_ids[index],
                       'enrollmentId': seed.enrollment_ids[index], 'classroomId': seed.classroom_id})
    return make
