"""Turns a notification request into persisted rows and hands them to the dispatcher."""

import logging

from flask import current_app

from school_api import db, gateway
from school_api.errors import ValidationError
from school_api.notifications.dispatcher import dispatch

logger = logging.getLogger(__name__)

BROADCAST_IDS = {'ALL', 'BROADCAST', '*'}
RECIPIENT_ROLES = ('student', 'teacher', 'admin')


def expand_recipients(recipients):
    """Normalize recipients to unique (role, id) pairs; broadcast ids become 'ALL'."""
    if not recipients:
        raise ValidationError('At least one recipient is required',
                              details=[{'field': 'recipients', 'message': 'must not be empty'}])

    expanded = []
    seen = set()
    for index, recipient in enumerate(recipients):
        if not isinstance(recipient, dict):
            raise ValidationError('Invalid recipient',
                                  details=[{'field': 'recipients[%d]' % index, 'message': 'must be an object'}])
        role = str(recipient.get('role') or '').lower()
        rid = recipient.get('id')
        if rid is None or str(rid).strip() == '':
            raise ValidationError('Recipient id is required',
                                  details=[{'field': 'recipients[%d].id' % index, 'message': 'is required'}])
        rid = str(rid).strip()
        broadcast = rid.upper() in BROADCAST_IDS

        if role == 'all':
            if not broadcast:
                raise ValidationError('Role "all" requires a broadcast id',
                                      details=[{'field': 'recipients[%d].id' % index,
                                                'message': 'must be one of ALL, BROADCAST, *'}])
            pairs = [(r, 'ALL') for r in RECIPIENT_ROLES]
        elif role in RECIPIENT_ROLES:
            pairs = [(role, 'ALL' if broadcast else rid)]
        else:
            raise ValidationError('Unknown recipient role',
                                  details=[{'field': 'recipients[%d].role' % index,
                                            'message': 'must be student, teacher, admin or all'}])

        for pair in pairs:
            if pair not in seen:
                seen.add(pair)
                expanded.append(pair)
    return expanded


def create_and_send(type=None, title=None, body=None, recipients=None, data=None):
    """Persist one pending row per recipient and start delivery. Returns the rows."""
    pairs = expand_recipients(recipients)

    template = gateway.active_template(type)
    if template is not None:
        title, body = template.title_template, template.body_template
    else:
        details = []
        if not title:
            details.append({'field': 'title', 'message': 'is required'})
        if not body:
            details.append({'field': 'body', 'message': 'is required'})
        if details:
            raise ValidationError('Notification title and body are required', details=details)

    mode = current_app.config.get('NOTIFICATION_DRIVER', 'sync')
    rows = gateway.insert_notifications([
        {
            'notification_template_id': template.notification_template_id if template else None,
            'title': title,
            'body': body,
            'data_json': data or None,
            'dispatch_mode': mode,
            'recipient_type': role,
            'recipient_id': rid,
            'status': 'pending',
        }
        for role, rid in pairs
    ])
    db.session.commit()

    ids = [row.notification_id for row in rows]
    logger.info("Queued %d notifications (type=%s, mode=%s)", len(ids), type, mode)
    dispatch(ids)
    return rows


def notify_results_declared(exam, summaries):
    """Tell every student of a published exam that results are out."""
    enrollments = gateway.enrollments_by_ids({s['enrollment_id'] for s in summaries})
    student_ids = sorted({e.student_id for e in enrollments.values()})
    if not student_ids:
        return []
    return create_and_send(
        type='exam_results',
        title='Exam results published',
        body='Results for %s are now available.' % exam.name,
        recipients=[{'role': 'student', 'id': sid} for sid in student_ids],
        data={'type': 'exam_results', 'examId': exam.exam_id},
    )
