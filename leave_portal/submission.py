import logging
import os
import secrets
from datetime import datetime

from werkzeug.utils import secure_filename

from .errors import AuthorizationError, ValidationError
from .models import ADMIN, FACULTY, PENDING, STUDENT
from .notifications import notify_role, record_audit
from .review import get_leave

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ('leave_type', 'reason', 'start_date', 'end_date')
REQUESTER_ROLES = (STUDENT, FACULTY)


def parse_date(value, field):
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'Invalid date format for {field.replace("_", " ")}')


def parse_bool(value):
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ('1', 'true', 'yes', 'on')


def validate_leave_form(form):
    """Check a submitted leave form and return the cleaned values"""
    missing = [field for field in REQUIRED_FIELDS if not str(form.get(field) or '').strip()]
    if missing:
        raise ValidationError('Missing required fields: ' + ', '.join(missing))

    start_date = parse_date(form['start_date'], 'start_date')
    end_date = parse_date(form['end_date'], 'end_date')
    if start_date > end_date:
        raise ValidationError('Start date cannot be later than end date')

    return {
        'leave_type': str(form['leave_type']).strip(),
        'reason': str(form['reason']).strip(),
        'start_date': start_date,
        'end_date': end_date,
        'is_emergency': parse_bool(form.get('is_emergency')),
        'attachment_url': form.get('attachment_url') or None,
    }


def submit_leave(client, requester, form):
    """Validate and store a new pending leave application for `requester`"""
    if requester.role not in REQUESTER_ROLES:
        raise AuthorizationError('Only students and faculty can apply for leave')

    values = validate_leave_form(form)
    values.update({
        'requester_id': requester.user_id,
        'requester_name': requester.full_name,
        'requester_role': requester.role,
        'status': PENDING,
    })
    leave = client.insert('leave_applications', values)

    record_audit(client, requester.user_id, 'create_leave', 'leave_application', leave.id)
    title = 'New leave application'
    message = (f'{requester.full_name} applied for {leave.leave_type} leave '
               f'from {leave.start_date} to {leave.end_date}')
    notify_role(client, ADMIN, title, message, related_to=leave.id)
    if requester.role == STUDENT:
        notify_role(client, FACULTY, title, message, related_to=leave.id)

    logger.info('Leave %s submitted by user %s', leave.id, requester.user_id)
    return leave


def list_requester_leaves(client, requester_id, limit=None):
    return client.select('leave_applications', where={'requester_id': requester_id},
                         order_by='applied_on', descending=True, limit=limit)


def list_leaves(client, status=None, audience=None):
    """All leave applications, newest first; `audience` is 'student', 'faculty' or None for both"""
    where = {}
    if status:
        where['status'] = status
    if audience in REQUESTER_ROLES:
        where['requester_role'] = audience
    return client.select('leave_applications', where=where, order_by='applied_on', descending=True)


def get_visible_leave(client, actor, leave_id):
    """A leave the actor may see: their own, or any student leave for faculty, any leave for admins"""
    leave = get_leave(client, leave_id)
    if actor.role == ADMIN or leave.requester_id == actor.user_id:
        return leave
    if actor.role == FACULTY and leave.requester_role == STUDENT:
        return leave
    raise AuthorizationError('You are not allowed to view this leave application')


def allowed_attachment(filename, allowed_extensions):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in allowed_extensions


def save_attachment(file_storage, user_id, upload_folder, allowed_extensions):
    """Store an uploaded file under `upload_folder/<user_id>/` and return its relative path"""
    filename = secure_filename(file_storage.filename or '')
    if not filename:
        raise ValidationError('No file selected')
    if not allowed_attachment(filename, allowed_extensions):
        raise ValidationError('File type not allowed')

    extension = filename.rsplit('.', 1)[1].lower()
    relative_path = f'{user_id}/{secrets.token_hex(8)}.{extension}'
    target_dir = os.path.join(upload_folder, str(user_id))
    os.makedirs(target_dir, exist_ok=True)
    file_storage.save(os.path.join(upload_folder, relative_path))
    logger.info('Stored attachment %s for user %s', relative_path, user_id)
    return relative_path
