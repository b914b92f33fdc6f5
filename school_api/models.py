from school_api import db


class AcademicSession(db.Model):
    __tablename__ = 'sessions'

    session_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(20), nullable=False, unique=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date)


class Classroom(db.Model):
    __tablename__ = 'classrooms'

    classroom_id = db.Column(db.Integer, primary_key=True)
    class_name = db.Column('class', db.String(20), nullable=False)
    section = db.Column(db.String(10), nullable=False)
    medium = db.Column(db.String(20), nullable=False, default='English')
    session_id = db.Column(db.Integer, db.ForeignKey('sessions.session_id'), nullable=False, index=True)

    session = db.relationship('AcademicSession')

    __table_args__ = (
        db.UniqueConstraint('session_id', 'class', 'section', 'medium', name='uq_classroom_identity'),
    )


class Student(db.Model):
    __tablename__ = 'students'

    student_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(150), unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class Teacher(db.Model):
    __tablename__ = 'teachers'

    teacher_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(150), unique=True)


# Teacher teaches which classroom
class TeacherClass(db.Model):
    __tablename__ = 'teacher_class'

    id = db.Column(db.Integer, primary_key=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.teacher_id', ondelete='CASCADE'), nullable=False, index=True)
    class_id = db.Column(db.Integer, db.ForeignKey('classrooms.classroom_id', ondelete='CASCADE'), nullable=False, index=True)

    __table_args__ = (
        db.UniqueConstraint('teacher_id', 'class_id', name='uq_teacher_class'),
    )


class Enrollment(db.Model):
    __tablename__ = 'student_enrollment'

    enrollment_id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.student_id'), nullable=False, index=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classrooms.classroom_id'), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey('sessions.session_id'), nullable=False, index=True)
    roll_no = db.Column(db.Integer)

    student = db.relationship('Student', backref='enrollments')
    classroom = db.relationship('Classroom', backref='enrollments')

    __table_args__ = (
        db.UniqueConstraint('student_id', 'classroom_id', name='uq_enrollment_student_classroom'),
    )


class Subject(db.Model):
    __tablename__ = 'subject'

    subject_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)


class ExamType(db.Model):
    __tablename__ = 'exam_type'

    exam_type_id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), nullable=False, unique=True)
    name = db.Column(db.String(100), nullable=False)


class Exam(db.Model):
    __tablename__ = 'exam'

    exam_id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classrooms.classroom_id'), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey('sessions.session_id'), nullable=False, index=True)
    exam_type_id = db.Column(db.Integer, db.ForeignKey('exam_type.exam_type_id'))
    name = db.Column(db.String(150), nullable=False)
    start_date = db.Column(db.Date, nullable=False, index=True)
    end_date = db.Column(db.Date, nullable=False)
    is_declared = db.Column(db.Boolean, nullable=False, default=False, index=True)
    declared_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())
    updated_at = db.Column(db.DateTime, default=db.func.current_timestamp(), onupdate=db.func.current_timestamp())

    classroom = db.relationship('Classroom')
    exam_type = db.relationship('ExamType')


class ExamMark(db.Model):
    __tablename__ = 'exam_mark'

    mark_id = db.Column(db.Integer, primary_key=True)
    exam_id = db.Column(db.Integer, db.ForeignKey('exam.exam_id', ondelete='CASCADE'), nullable=False, index=True)
    enrollment_id = db.Column(db.Integer, db.ForeignKey('student_enrollment.enrollment_id'), nullable=False, index=True)
    subject_id = db.Column(db.Integer, db.ForeignKey('subject.subject_id'), nullable=False)
    max_marks = db.Column(db.Float, nullable=False)
    marks_obtained = db.Column(db.Float)
    is_absent = db.Column(db.Boolean, nullable=False, default=False)
    remark = db.Column(db.String(255))
    updated_by = db.Column(db.Integer)
    updated_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    subject = db.relationship('Subject')

    __table_args__ = (
        db.UniqueConstraint('exam_id', 'enrollment_id', 'subject_id', name='uq_exam_mark_cell'),
        db.CheckConstraint('max_marks > 0', name='ck_exam_mark_max_positive'),
        db.Index('idx_exam_mark_exam_enrollment', 'exam_id', 'enrollment_id'),
    )


class ExamSummary(db.Model):
    __tablename__ = 'exam_summary'

    summary_id = db.Column(db.Integer, primary_key=True)
    exam_id = db.Column(db.Integer, db.ForeignKey('exam.exam_id', ondelete='CASCADE'), nullable=False, index=True)
    enrollment_id = db.Column(db.Integer, db.ForeignKey('student_enrollment.enrollment_id'), nullable=False, index=True)
    total_marks = db.Column(db.Float, nullable=False)
    max_marks = db.Column(db.Float, nullable=False)
    percentage = db.Column(db.Float, nullable=False)
    grade = db.Column(db.String(3), nullable=False)
    rank = db.Column(db.Integer)
    is_absent = db.Column(db.Boolean, nullable=False, default=False)
    generated_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    __table_args__ = (
        db.UniqueConstraint('exam_id', 'enrollment_id', name='uq_exam_summary_enrollment'),
    )


class DailyTest(db.Model):
    __tablename__ = 'daily_test'

    test_id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classrooms.classroom_id'), nullable=False, index=True)
    subject_id = db.Column(db.Integer, db.ForeignKey('subject.subject_id'), nullable=False)
    name = db.Column(db.String(150))
    test_date = db.Column(db.Date, nullable=False, index=True)
    max_marks = db.Column(db.Float, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('teachers.teacher_id'))
    is_declared = db.Column(db.Boolean, nullable=False, default=False)
    declared_at = db.Column(db.DateTime)

    subject = db.relationship('Subject')

    __table_args__ = (
        db.CheckConstraint('max_marks > 0', name='ck_daily_test_max_positive'),
    )


class DailyTestMark(db.Model):
    __tablename__ = 'daily_test_mark'

    test_mark_id = db.Column(db.Integer, primary_key=True)
    test_id = db.Column(db.Integer, db.ForeignKey('daily_test.test_id', ondelete='CASCADE'), nullable=False, index=True)
    enrollment_id = db.Column(db.Integer, db.ForeignKey('student_enrollment.enrollment_id'), nullable=False, index=True)
    marks_obtained = db.Column(db.Float)
    is_absent = db.Column(db.Boolean, nullable=False, default=False)
    updated_by = db.Column(db.Integer)
    updated_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    __table_args__ = (
        db.UniqueConstraint('test_id', 'enrollment_id', name='uq_daily_test_mark'),
    )


class NotificationTemplate(db.Model):
    __tablename__ = 'notification_templates'

    notification_template_id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(50), nullable=False, index=True)
    title_template = db.Column(db.String(255), nullable=False)
    body_template = db.Column(db.Text, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class Notification(db.Model):
    __tablename__ = 'notifications'

    notification_id = db.Column(db.Integer, primary_key=True)
    notification_template_id = db.Column(db.Integer, db.ForeignKey('notification_templates.notification_template_id'))
    title = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=False)
    data_json = db.Column(db.JSON)
    dispatch_mode = db.Column(db.String(10), nullable=False, default='sync')
    recipient_type = db.Column(db.String(20), nullable=False)
    recipient_id = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(10), nullable=False, default='pending', index=True)
    sent_at = db.Column(db.DateTime)
    read_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp(), index=True)

    __table_args__ = (
        db.Index('idx_notification_recipient', 'recipient_type', 'recipient_id'),
    )


class NotificationRead(db.Model):
    """Per-recipient read receipt for broadcast ('ALL') notifications."""
    __tablename__ = 'notification_reads'

    id = db.Column(db.Integer, primary_key=True)
    notification_id = db.Column(db.Integer, db.ForeignKey('notifications.notification_id', ondelete='CASCADE'), nullable=False)
    recipient_type = db.Column(db.String(20), nullable=False)
    recipient_id = db.Column(db.String(50), nullable=False)
    read_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('notification_id', 'recipient_type', 'recipient_id', name='uq_notification_read_recipient'),
    )


class SendFailure(db.Model):
    __tablename__ = 'send_failures'

    failure_id = db.Column(db.Integer, primary_key=True)
    notification_id = db.Column(db.Integer, db.ForeignKey('notifications.notification_id', ondelete='CASCADE'), nullable=False, index=True)
    error_code = db.Column(db.String(100), nullable=False)
    error_msg = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())


class DeviceToken(db.Model):
    __tablename__ = 'device_tokens'

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.Text, nullable=False, unique=True)
    platform = db.Column(db.String(20))  # 'ios', 'android' or 'web'
    recipient_type = db.Column(db.String(20), nullable=False)
    recipient_id = db.Column(db.String(50), nullable=False)
    is_valid = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())
    updated_at = db.Column(db.DateTime, default=db.func.current_timestamp(), onupdate=db.func.current_timestamp())

    __table_args__ = (
        db.Index('idx_device_token_recipient', 'recipient_type', 'recipient_id', 'is_valid'),
    )
