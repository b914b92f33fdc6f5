"""
API error types and the JSON response envelope.

Every response is wrapped as
    {"success": true,  "data": ..., "message": ..., "timestamp": ...}
    {"success": false, "error": {"code", "message", "details"}, "timestamp": ...}
"""

import logging
from datetime import datetime, timezone

from flask import jsonify
from werkzeug.exceptions import HTTPException

from school_api import db

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 400
    code = 'VALIDATION_ERROR'

    def __init__(self, message, code=None, details=None, status_code=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class ValidationError(ApiError):
    status_code = 400
    code = 'VALIDATION_ERROR'


class Unauthorized(ApiError):
    status_code = 401
    code = 'UNAUTHORIZED'


class Forbidden(ApiError):
    status_code = 403
    code = 'FORBIDDEN'


class NotFound(ApiError):
    status_code = 404
    code = 'NOT_FOUND'


class Conflict(ApiError):
    status_code = 409
    code = 'CONFLICT'


class Unprocessable(ApiError):
    status_code = 422
    code = 'UNPROCESSABLE'


def exam_not_found():
    return NotFound('Exam not found', code='EXAM_NOT_FOUND')


def student_not_found(message='Student not found in exam'):
    return NotFound(message, code='STUDENT_NOT_FOUND')


def exam_declared():
    return Conflict('Cannot modify exam after results have been declared', code='EXAM_CANNOT_BE_MODIFIED')


def timestamp():
    return datetime.now(timezone.utc).isoformat()


def ok(data=None, message=None, status=200, **extra):
    body = {'success': True, 'data': data}
    if message:
        body['message'] = message
    body.update(extra)
    body['timestamp'] = timestamp()
    return jsonify(body), status


def error_response(code, message, status, details=None):
    error = {'code': code, 'message': message}
    if details is not None:
        error['details'] = details
    return jsonify({'success': False, 'error': error, 'timestamp': timestamp()}), status


def register_error_handlers(app):

    @app.errorhandler(ApiError)
    def handle_api_error(e):
        db.session.rollback()
        return error_response(e.code, e.message, e.status_code, e.details)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code == 404:
            return error_response('NOT_FOUND', 'Resource not found', 404)
        if e.code == 405:
            return error_response('VALIDATION_ERROR', 'Method not allowed', 405)
        if e.code == 400:
            return error_response('VALIDATION_ERROR', 'Malformed request body', 400)
        return error_response('INTERNAL_ERROR', e.description or 'Request failed', e.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        db.session.rollback()
        logger.exception("Unhandled error while serving request")
        return error_response('INTERNAL_SERVER_ERROR', 'Unexpected error', 500)
