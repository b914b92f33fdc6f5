"""Initial schema: classrooms, exams, marks, summaries, daily tests, notifications

Revision ID: 3f2a9c1d7e40
Revises:
Create Date: 2026-10-18 09:12:44.512318

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f2a9c1d7e40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('sessions',
    sa.Column('session_id', sa.Integer(), nullable=False),
    sa.Column('name', sa.String(length=20), nullable=False),
    sa.Column('start_date', sa.Date(), nullable=False),
    sa.Column('end_date', sa.Date(), nullable=True),
    sa.PrimaryKeyConstraint('session_id'),
    sa.UniqueConstraint('name')
    )
    op.create_table('students',
    sa.Column('student_id', sa.Integer(), nullable=False),
    sa.Column('name', sa.String(length=100), nullable=False),
    sa.Column('email', sa.String(length=150), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.PrimaryKeyConstraint('student_id'),
    sa.UniqueConstraint('email')
    )
    op.create_table('teachers',
    sa.Column('teacher_id', sa.Integer(), nullable=False),
    sa.Column('name', sa.String(length=100), nullable=False),
    sa.Column('email', sa.String(length=150), nullable=True),
    sa.PrimaryKeyConstraint('teacher_id'),
    sa.UniqueConstraint('email')
    )
    op.create_table('subject',
    sa.Column('subject_id', sa.Integer(), nullable=False),
    sa.Column('name', sa.String(length=100), nullable=False),
    sa.PrimaryKeyConstraint('subject_id'),
    sa.UniqueConstraint('name')
    )
    op.create_table('exam_type',
    sa.Column('exam_type_id', sa.Integer(), nullable=False),
    sa.Column('code', sa.String(length=20), nullable=False),
    sa.Column('name', sa.String(length=100), nullable=False),
    sa.PrimaryKeyConstraint('exam_type_id'),
    sa.UniqueConstraint('code')
    )
    op.create_table('notification_templates',
    sa.Column('notification_template_id', sa.Integer(), nullable=False),
    sa.Column('type', sa.String(length=50), nullable=False),
    sa.Column('title_template', sa.String(length=255), nullable=False),
    sa.Column('body_template', sa.Text(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.PrimaryKeyConstraint('notification_template_id')
    )
    op.create_index(op.f('ix_notification_templates_type'), 'notification_templates', ['type'], unique=False)
    op.create_table('device_tokens',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('token', sa.Text(), nullable=False),
    sa.Column('platform', sa.String(length=20), nullable=True),
    sa.Column('recipient_type', sa.String(length=20), nullable=False),
    sa.Column('recipient_id', sa.String(length=50), nullable=False),
    sa.Column('is_valid', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('token')
    )
    op.create_index('idx_device_token_recipient', 'device_tokens', ['recipient_type', 'recipient_id', 'is_valid'], unique=False)
    op.create_table('classrooms',
    sa.Column('classroom_id', sa.Integer(), nullable=False),
    sa.Column('class', sa.String(length=20), nullable=False),
    sa.Column('section', sa.String(length=10), nullable=False),
    sa.Column('medium', sa.String(length=20), nullable=False),
    sa.Column('session_id', sa.Integer(), nullable=False),
    sa.ForeignKeyConstraint(['session_id'], ['sessions.session_id'], ),
    sa.PrimaryKeyConstraint('classroom_id'),
    sa.UniqueConstraint('session_id', 'class', 'section', 'medium', name='uq_classroom_identity')
    )
    op.create_index(op.f('ix_classrooms_session_id'), 'classrooms', ['session_id'], unique=False)
    op.create_table('teacher_class',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('teacher_id', sa.Integer(), nullable=False),
    sa.Column('class_id', sa.Integer(), nullable=False),
    sa.ForeignKeyConstraint(['class_id'], ['classrooms.classroom_id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['teacher_id'], ['teachers.teacher_id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('teacher_id', 'class_id', name='uq_teacher_class')
    )
    op.create_index(op.f('ix_teacher_class_class_id'), 'teacher_class', ['class_id'], unique=False)
    op.create_index(op.f('ix_teacher_class_teacher_id'), 'teacher_class', ['teacher_id'], unique=False)
    op.create_table('student_enrollment',
    sa.Column('enrollment_id', sa.Integer(), nullable=False),
    sa.Column('student_id', sa.Integer(), nullable=False),
    sa.Column('classroom_id', sa.Integer(), nullable=False),
    sa.Column('session_id', sa.Integer(), nullable=False),
    sa.Column('roll_no', sa.Integer(), nullable=True),
    sa.ForeignKeyConstraint(['classroom_id'], ['classrooms.classroom_id'], ),
    sa.ForeignKeyConstraint(['session_id'], ['sessions.session_id'], ),
    sa.ForeignKeyConstraint(['student_id'], ['students.student_id'], ),
    sa.PrimaryKeyConstraint('enrollment_id'),
    sa.UniqueConstraint('student_id', 'classroom_id', name='uq_enrollment_student_classroom')
    )
    op.create_index(op.f('ix_student_enrollment_classroom_id'), 'student_enrollment', ['classroom_id'], unique=False)
    op.create_index(op.f('ix_student_enrollment_session_id'), 'student_enrollment', ['session_id'], unique=False)
    op.create_index(op.f('ix_student_enrollment_student_id'), 'student_enrollment', ['student_id'], unique=False)
    op.create_table('exam',
    sa.Column('exam_id', sa.Integer(), nullable=False),
    sa.Column('classroom_id', sa.Integer(), nullable=False),
    sa.Column('session_id', sa.Integer(), nullable=False),
    sa.Column('exam_type_id', sa.Integer(), nullable=True),
    sa.Column('name', sa.String(length=150), nullable=False),
    sa.Column('start_date', sa.Date(), nullable=False),
    sa.Column('end_date', sa.Date(), nullable=False),
    sa.Column('is_declared', sa.Boolean(), nullable=False),
    sa.Column('declared_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['classroom_id'], ['classrooms.classroom_id'], ),
    sa.ForeignKeyConstraint(['exam_type_id'], ['exam_type.exam_type_id'], ),
    sa.ForeignKeyConstraint(['session_id'], ['sessions.session_id'], ),
    sa.PrimaryKeyConstraint('exam_id')
    )
    op.create_index(op.f('ix_exam_classroom_id'), 'exam', ['classroom_id'], unique=False)
    op.create_index(op.f('ix_exam_is_declared'), 'exam', ['is_declared'], unique=False)
    op.create_index(op.f('ix_exam_session_id'), 'exam', ['session_id'], unique=False)
    op.create_index(op.f('ix_exam_start_date'), 'exam', ['start_date'], unique=False)
    op.create_table('exam_mark',
    sa.Column('mark_id', sa.Integer(), nullable=False),
    sa.Column('exam_id', sa.Integer(), nullable=False),
    sa.Column('enrollment_id', sa.Integer(), nullable=False),
    sa.Column('subject_id', sa.Integer(), nullable=False),
    sa.Column('max_marks', sa.Float(), nullable=False),
    sa.Column('marks_obtained', sa.Float(), nullable=True),
    sa.Column('is_absent', sa.Boolean(), nullable=False),
    sa.Column('remark', sa.String(length=255), nullable=True),
    sa.Column('updated_by', sa.Integer(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('max_marks > 0', name='ck_exam_mark_max_positive'),
    sa.ForeignKeyConstraint(['enrollment_id'], ['student_enrollment.enrollment_id'], ),
    sa.ForeignKeyConstraint(['exam_id'], ['exam.exam_id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['subject_id'], ['subject.subject_id'], ),
    sa.PrimaryKeyConstraint('mark_id'),
    sa.UniqueConstraint('exam_id', 'enrollment_id', 'subject_id', name='uq_exam_mark_cell')
    )
    op.create_index('idx_exam_mark_exam_enrollment', 'exam_mark', ['exam_id', 'enrollment_id'], unique=False)
    op.create_index(op.f('ix_exam_mark_enrollment_id'), 'exam_mark', ['enrollment_id'], unique=False)
    op.create_index(op.f('ix_exam_mark_exam_id'), 'exam_mark', ['exam_id'], unique=False)
    op.create_table('exam_summary',
    sa.Column('summary_id', sa.Integer(), nullable=False),
    sa.Column('exam_id', sa.Integer(), nullable=False),
    sa.Column('enrollment_id', sa.Integer(), nullable=False),
    sa.Column('total_marks', sa.Float(), nullable=False),
    sa.Column('max_marks', sa.Float(), nullable=False),
    sa.Column('percentage', sa.Float(), nullable=False),
    sa.Column('grade', sa.String(length=3), nullable=False),
    sa.Column('rank', sa.Integer(), nullable=True),
    sa.Column('is_absent', sa.Boolean(), nullable=False),
    sa.Column('generated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['enrollment_id'], ['student_enrollment.enrollment_id'], ),
    sa.ForeignKeyConstraint(['exam_id'], ['exam.exam_id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('summary_id'),
    sa.UniqueConstraint('exam_id', 'enrollment_id', name='uq_exam_summary_enrollment')
    )
    op.create_index(op.f('ix_exam_summary_enrollment_id'), 'exam_summary', ['enrollment_id'], unique=False)
    op.create_index(op.f('ix_exam_summary_exam_id'), 'exam_summary', ['exam_id'], unique=False)
    op.create_table('daily_test',
    sa.Column('test_id', sa.Integer(), nullable=False),
    sa.Column('classroom_id', sa.Integer(), nullable=False),
    sa.Column('subject_id', sa.Integer(), nullable=False),
    sa.Column('name', sa.String(length=150), nullable=True),
    sa.Column('test_date', sa.Date(), nullable=False),
    sa.Column('max_marks', sa.Float(), nullable=False),
    sa.Column('created_by', sa.Integer(), nullable=True),
    sa.Column('is_declared', sa.Boolean(), nullable=False),
    sa.Column('declared_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('max_marks > 0', name='ck_daily_test_max_positive'),
    sa.ForeignKeyConstraint(['classroom_id'], ['classrooms.classroom_id'], ),
    sa.ForeignKeyConstraint(['created_by'], ['teachers.teacher_id'], ),
    sa.ForeignKeyConstraint(['subject_id'], ['subject.subject_id'], ),
    sa.PrimaryKeyConstraint('test_id')
    )
    op.create_index(op.f('ix_daily_test_classroom_id'), 'daily_test', ['classroom_id'], unique=False)
    op.create_index(op.f('ix_daily_test_test_date'), 'daily_test', ['test_date'], unique=False)
    op.create_table('daily_test_mark',
    sa.Column('test_mark_id', sa.Integer(), nullable=False),
    sa.Column('test_id', sa.Integer(), nullable=False),
    sa.Column('enrollment_id', sa.Integer(), nullable=False),
    sa.Column('marks_obtained', sa.Float(), nullable=True),
    sa.Column('is_absent', sa.Boolean(), nullable=False),
    sa.Column('updated_by', sa.Integer(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['enrollment_id'], ['student_enrollment.enrollment_id'], ),
    sa.ForeignKeyConstraint(['test_id'], ['daily_test.test_id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('test_mark_id'),
    sa.UniqueConstraint('test_id', 'enrollment_id', name='uq_daily_test_mark')
    )
    op.create_index(op.f('ix_daily_test_mark_enrollment_id'), 'daily_test_mark', ['enrollment_id'], unique=False)
    op.create_index(op.f('ix_daily_test_mark_test_id'), 'daily_test_mark', ['test_id'], unique=False)
    op.create_table('notifications',
    sa.Column('notification_id', sa.Integer(), nullable=False),
    sa.Column('notification_template_id', sa.Integer(), nullable=True),
    sa.Column('title', sa.String(length=255), nullable=False),
    sa.Column('body', sa.Text(), nullable=False),
    sa.Column('data_json', sa.JSON(), nullable=True),
    sa.Column('dispatch_mode', sa.String(length=10), nullable=False),
    sa.Column('recipient_type', sa.String(length=20), nullable=False),
    sa.Column('recipient_id', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=10), nullable=False),
    sa.Column('sent_at', sa.DateTime(), nullable=True),
    sa.Column('read_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['notification_template_id'], ['notification_templates.notification_template_id'], ),
    sa.PrimaryKeyConstraint('notification_id')
    )
    op.create_index('idx_notification_recipient', 'notifications', ['recipient_type', 'recipient_id'], unique=False)
    op.create_index(op.f('ix_notifications_created_at'), 'notifications', ['created_at'], unique=False)
    op.create_index(op.f('ix_notifications_status'), 'notifications', ['status'], unique=False)
    op.create_table('send_failures',
    sa.Column('failure_id', sa.Integer(), nullable=False),
    sa.Column('notification_id', sa.Integer(), nullable=False),
    sa.Column('error_code', sa.String(length=100), nullable=False),
    sa.Column('error_msg', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['notification_id'], ['notifications.notification_id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('failure_id')
    )
    op.create_index(op.f('ix_send_failures_notification_id'), 'send_failures', ['notification_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_send_failures_notification_id'), table_name='send_failures')
    op.drop_table('send_failures')
    op.drop_index(op.f('ix_notifications_status'), table_name='notifications')
    op.drop_index(op.f('ix_notifications_created_at'), table_name='notifications')
    op.drop_index('idx_notification_recipient', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index(op.f('ix_daily_test_mark_test_id'), table_name='daily_test_mark')
    op.drop_index(op.f('ix_daily_test_mark_enrollment_id'), table_name='daily_test_mark')
    op.drop_table('daily_test_mark')
    op.drop_index(op.f('ix_daily_test_test_date'), table_name='daily_test')
    op.drop_index(op.f('ix_daily_test_classroom_id'), table_name='daily_test')
    op.drop_table('daily_test')
    op.drop_index(op.f('ix_exam_summary_exam_id'), table_name='exam_summary')
    op.drop_index(op.f('ix_exam_summary_enrollment_id'), table_name='exam_summary')
    op.drop_table('exam_summary')
    op.drop_index(op.f('ix_exam_mark_exam_id'), table_name='exam_mark')
    op.drop_index(op.f('ix_exam_mark_enrollment_id'), table_name='exam_mark')
    op.drop_index('idx_exam_mark_exam_enrollment', table_name='exam_mark')
    op.drop_table('exam_mark')
    op.drop_index(op.f('ix_exam_start_date'), table_name='exam')
    op.drop_index(op.f('ix_exam_session_id'), table_name='exam')
    op.drop_index(op.f('ix_exam_is_declared'), table_name='exam')
    op.drop_index(op.f('ix_exam_classroom_id'), table_name='exam')
    op.drop_table('exam')
    op.drop_index(op.f('ix_student_enrollment_student_id'), table_name='student_enrollment')
    op.drop_index(op.f('ix_student_enrollment_session_id'), table_name='student_enrollment')
    op.drop_index(op.f('ix_student_enrollment_classroom_id'), table_name='student_enrollment')
    op.drop_table('student_enrollment')
    op.drop_index(op.f('ix_teacher_class_teacher_id'), table_name='teacher_class')
    op.drop_index(op.f('ix_teacher_class_class_id'), table_name='teacher_class')
    op.drop_table('teacher_class')
    op.drop_index(op.f('ix_classrooms_session_id'), table_name='classrooms')
    op.drop_table('classrooms')
    op.drop_index('idx_device_token_recipient', table_name='device_tokens')
    op.drop_table('device_tokens')
    op.drop_index(op.f('ix_notification_templates_type'), table_name='notification_templates')
    op.drop_table('notification_templates')
    op.drop_table('exam_type')
    op.drop_table('subject')
    op.drop_table('teachers')
    op.drop_table('students')
    op.drop_table('sessions')
