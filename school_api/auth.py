"""
Bearer token authentication.

Tokens are HS256 JWTs issued by the login service. The decoded claims become a
Principal stored on ``flask.g`` for the duration of the request.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Optional

import jwt
from flask import current_app, g, request

from school_api.errors import Forbidden, Unauthorized

ROLES = ('admin', 'teacher', 'student')


@dataclass
class Principal:
    role: str
    id: str
    student_id: Optional[int] = None
    teacher_id: Optional[int] = None
    admin_id: Optional[int] = None
    enrollment_id: Optional[int] = None
    classroom_id: Optional[int] = None

    @property
    def user_id(self):
        return self.student_id or self.teacher_id or self.admin_id or self.id


def principal_from_claims(claims):
    role = claims.get('role')
    if role not in ROLES:
        raise Unauthorized('Invalid token')

    student_id = claims.get('studentId')
    teacher_id = claims.get('teacherId')
    admin_id = claims.get('adminId')
    if role == 'student' and student_id is None:
        raise Unauthorized('Invalid token')
    if role == 'teacher' and teacher_id is None:
        raise Unauthorized('Invalid token')

    subject = claims.get('id') or student_id or teacher_id or admin_id
    return Principal(
        role=role,
        id=str(subject),
        student_id=student_id,
        teacher_id=teacher_id,
        admin_id=admin_id,
        enrollment_id=claims.get('enrollmentId'),
        classroom_id=claims.get('classroomId'),
    )


def issue_token(claims, expires_in=timedelta(days=90)):
    payload = dict(claims)
    payload['exp'] = datetime.now(timezone.utc) + expires_in
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm=current_app.config['JWT_ALGORITHM'])


def authenticate():
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        raise Unauthorized('Missing or invalid authentication token')

    token = auth_header.split(' ', 1)[1].strip()
    try:
        claims = jwt.decode(
            token,
            current_app.config['JWT_SECRET'],
            algorithms=[current_app.config['JWT_ALGORITHM']],
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized('Token expired')
    except jwt.InvalidTokenError:
        raise Unauthorized('Invalid token')

    return principal_from_claims(claims)


def role_required(*roles):
    """Authenticate the request and restrict it to the given roles."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            principal = authenticate()
            if roles and principal.role not in roles:
                raise Forbidden('Access denied for role %s' % principal.role)
            g.principal = principal
            return view(*args, **kwargs)
        return wrapped
    return decorator
