"""Per-recipient read receipts for broadcast notifications

Revision ID: 8b51d0e6a2c9
Revises: 3f2a9c1d7e40
Create Date: 2026-10-19 10:03:27.118402

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '8b51d0e6a2c9'
down_revision = '3f2a9c1d7e40'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('notification_reads',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('notification_id', sa.Integer(), nullable=False),
    sa.Column('recipient_type', sa.String(length=20), nullable=False),
    sa.Column('recipient_id', sa.String(length=50), nullable=False),
    sa.Column('read_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['notification_id'], ['notifications.notification_id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('notification_id', 'recipient_type', 'recipient_id', name='uq_notification_read_recipient')
    )


def downgrade():
    op.drop_table('notification_reads')
