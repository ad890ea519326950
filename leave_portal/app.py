import io
import logging
import os

from flask import (Flask, Response, current_app, jsonify, request, send_file,
                   send_from_directory, stream_with_context, url_for)

from . import (analytics, auth, bulk, leave_calendar, notifications, policies, review, submission,
               users)
from .certificates import render_leave_certificate
from .config import Config
from .db import PostgresClient
from .errors import AuthorizationError, LeavePortalError, ValidationError
from .init_postgres import init_db
from .mailer import Mailer, send_password_reset
from .models import ADMIN, FACULTY, STUDENT
from .realtime import sse_stream

logger = logging.getLogger(__name__)

CLIENT_KEY = 'leave_portal.client'
MAILER_KEY = 'leave_portal.mailer'


def create_app(config=None, client=None, mailer=None):
    """Create the Flask app; `client` and `mailer` replace the real ones (tests pass their own)"""
    config = config or Config.from_env()
    logging.basicConfig(level=config.log_level)

    app = Flask(__name__)
    app.config.from_mapping(config.as_flask_config())
    app.secret_key = config.SECRET_KEY
    app.config['MAX_CONTENT_LENGTH'] = config.MAX_ATTACHMENT_MB * 1024 * 1024

    if client is None:
        if not config.DATABASE_URL:
            raise RuntimeError('DATABASE_URL environment variable not found')
        client = PostgresClient(config.DATABASE_URL)
        init_db(client, config.REALTIME_CHANNEL)
    app.extensions[CLIENT_KEY] = client
    app.extensions[MAILER_KEY] = mailer or Mailer.from_config(config)

    register_error_handlers(app)
    register_routes(app)
    return app


def get_client():
    return current_app.extensions[CLIENT_KEY]


def get_mailer():
    return current_app.extensions[MAILER_KEY]


def _fresh_session(user_session, *roles):
    """The caller's session re-read from the database, for actions that change records"""
    user_session = auth.refresh_session(get_client(), user_session)
    if roles and not user_session.has_role(*roles):
        raise AuthorizationError('Unauthorized access')
    return user_session


def _payload():
    """JSON body, or form fields for classic form posts"""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _tz():
    return current_app.config['TIMEZONE']


def register_error_handlers(app):

    @app.errorhandler(LeavePortalError)
    def handle_portal_error(error):
        if error.status_code >= 500:
            logger.error('%s: %s', type(error).__name__, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'success': False, 'error': 'Not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(413)
    def handle_too_large(error):
        return jsonify({'success': False, 'error': 'Attachment is too large'}), 413


def register_routes(app):

    @app.route('/')
    def index():
        """Health check"""
        return jsonify({'name': 'College Leave Portal', 'status': 'ok'})

    # Authentication

    @app.route('/login', methods=['POST'])
    def login():
        """User login"""
        data = _payload()
        user_session = auth.sign_in(get_client(), data.get('email'), data.get('password'),
                                    timeout=current_app.config['LOGIN_TIMEOUT_SECONDS'])
        auth.start_session(user_session)
        return jsonify({'success': True, 'user': user_session.to_dict()})

    @app.route('/register', methods=['POST'])
    def register():
        """Student registration"""
        data = _payload()
        profile = auth.sign_up(
            get_client(),
            data.get('email'),
            data.get('password'),
            data.get('confirm_password'),
            data.get('full_name'),
            data.get('student_id'),
            data.get('department'),
        )
        return jsonify({'success': True, 'user': profile.to_dict(),
                        'message': 'Registration successful! Please login.'}), 201

    @app.route('/logout', methods=['GET', 'POST'])
    def logout():
        auth.end_session()
        return jsonify({'success': True, 'message': 'You have been logged out'})

    @app.route('/me')
    @auth.login_required()
    def me(user_session):
        # Re-read the profile so role changes take effect without a new login
        user_session = auth.refresh_session(get_client(), user_session)
        return jsonify({'success': True, 'user': user_session.to_dict()})

    @app.route('/password-reset', methods=['POST'])
    def password_reset_request():
        data = _payload()
        token = auth.request_password_reset(get_client(), data.get('email'), app.secret_key)
        if token:
            reset_url = url_for('password_reset', token=token, _external=True)
            logger.info('Password reset link issued for %s', data.get('email'))
            send_password_reset(get_mailer(), data.get('email').strip().lower(), reset_url,
                                current_app.config['PASSWORD_RESET_MAX_AGE'])
        return jsonify({'success': True,
                        'message': 'If the account exists, a reset link has been sent'})

    @app.route('/password-reset/<token>', methods=['POST'])
    def password_reset(token):
        data = _payload()
        if data.get('password') != data.get('confirm_password'):
            raise ValidationError('Passwords do not match')
        auth.reset_password(get_client(), token, data.get('password'), app.secret_key,
                            current_app.config['PASSWORD_RESET_MAX_AGE'])
        return jsonify({'success': True, 'message': 'Password updated, please login'})

    # Privileged functions

    @app.route('/functions/bootstrap-admin', methods=['POST'])
    def bootstrap_admin_function():
        data = _payload()
        auth.bootstrap_admin(get_client(), data.get('email'), data.get('password'))
        return jsonify({'success': True})

    @app.route('/functions/update-leave-status', methods=['POST'])
    @auth.login_required()
    def update_leave_status_function(user_session):
        data = _payload()
        leave_id = data.get('leaveId')
        status = data.get('status')
        if not str(leave_id or '').isdigit() or status not in ('approved', 'rejected'):
            raise ValidationError('Invalid input')
        options = data.get('options') or {}
        if not isinstance(options, dict):
            raise ValidationError('Invalid input')
        # The role that authorizes the change comes from the database, not the cookie
        user_session = _fresh_session(user_session)
        review.review_leave(
            get_client(),
            user_session,
            int(leave_id),
            status,
            comments=data.get('comments'),
            approver_name=data.get('approverName'),
            override_from=options.get('overrideFrom'),
            tz=_tz(),
            mailer=get_mailer(),
        )
        return jsonify({'success': True})

    # Leave applications

    @app.route('/leaves', methods=['GET'])
    @auth.login_required(STUDENT, FACULTY)
    def leave_history(user_session):
        """View own leave history"""
        leaves = submission.list_requester_leaves(get_client(), user_session.user_id)
        return jsonify({'leaves': [leave.to_dict() for leave in leaves]})

    @app.route('/leaves', methods=['POST'])
    @auth.login_required(STUDENT, FACULTY)
    def apply_leave(user_session):
        """Apply for leave"""
        form = _payload()
        submission.validate_leave_form(form)
        attachment = request.files.get('attachment')
        if attachment and attachment.filename:
            form['attachment_url'] = submission.save_attachment(
                attachment,
                user_session.user_id,
                current_app.config['UPLOAD_FOLDER'],
                current_app.config['ALLOWED_ATTACHMENT_EXTENSIONS'],
            )
        leave = submission.submit_leave(get_client(), user_session, form)
        return jsonify({'success': True, 'leave': leave.to_dict(),
                        'message': 'Leave application submitted successfully'}), 201

    @app.route('/leaves/<int:leave_id>')
    @auth.login_required()
    def leave_detail(leave_id, user_session):
        leave = submission.get_visible_leave(get_client(), user_session, leave_id)
        return jsonify({'leave': leave.to_dict()})

    @app.route('/leaves/<int:leave_id>/review', methods=['POST'])
    @auth.login_required()
    def review_leave(leave_id, user_session):
        """Approve or reject a leave request"""
        data = _payload()
        action = data.get('action')
        if action not in ('approve', 'reject'):
            raise ValidationError('Invalid action')
        status = 'approved' if action == 'approve' else 'rejected'
        user_session = _fresh_session(user_session)

        leave = review.review_leave(
            get_client(),
            user_session,
            leave_id,
            status,
            comments=data.get('comments'),
            approver_name=data.get('approver_name'),
            override_from=data.get('override_from'),
            tz=_tz(),
            mailer=get_mailer(),
        )
        return jsonify({'success': True, 'leave': leave.to_dict(),
                        'message': f'Leave request {status} successfully'})

    @app.route('/leaves/<int:leave_id>/certificate.pdf')
    @auth.login_required()
    def leave_certificate(leave_id, user_session):
        leave = submission.get_visible_leave(get_client(), user_session, leave_id)
        pdf_bytes = render_leave_certificate(leave)
        return send_file(
            io.BytesIO(pdf_bytes),
            mimetype='application/pdf',
            as_attachment=True,
            download_name=f'leave-{leave.id}-certificate.pdf',
        )

    @app.route('/attachments/<path:filename>')
    @auth.login_required()
    def attachment(filename, user_session):
        owner = filename.split('/', 1)[0]
        if owner != str(user_session.user_id) and not user_session.has_role(FACULTY, ADMIN):
            raise AuthorizationError('You are not allowed to view this attachment')
        return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename)

    # Review desk and administration

    @app.route('/admin/leaves')
    @auth.login_required(FACULTY, ADMIN)
    def admin_leaves(user_session):
        audience = request.args.get('audience')
        if user_session.role == FACULTY:
            audience = STUDENT
        leaves = submission.list_leaves(get_client(), status=request.args.get('status'),
                                        audience=audience)
        return jsonify({'leaves': [leave.to_dict() for leave in leaves]})

    @app.route('/admin/leaves/bulk', methods=['POST'])
    @auth.login_required(FACULTY, ADMIN)
    def admin_bulk(user_session):
        data = _payload()
        action = data.get('action')
        if action not in ('approve', 'reject'):
            raise ValidationError('Invalid action')
        leave_ids = data.get('leave_ids')
        if isinstance(leave_ids, str):
            leave_ids = [item for item in leave_ids.split(',') if item.strip()]
        try:
            leave_ids = [int(leave_id) for leave_id in leave_ids or []]
        except (TypeError, ValueError):
            raise ValidationError('Leave ids must be numbers')

        status = 'approved' if action == 'approve' else 'rejected'
        user_session = _fresh_session(user_session, FACULTY, ADMIN)
        result = bulk.bulk_update_status(get_client(), user_session, leave_ids, status,
                                         data.get('comments'), tz=_tz(), mailer=get_mailer())
        return jsonify(result.to_dict()), 200 if result.success else 400

    @app.route('/admin/bulk-operations')
    @auth.login_required(ADMIN)
    def admin_bulk_operations(user_session):
        operations = bulk.list_bulk_operations(get_client())
        return jsonify({'operations': [operation.to_dict() for operation in operations]})

    @app.route('/admin/dashboard')
    @auth.login_required(FACULTY, ADMIN)
    def admin_dashboard(user_session):
        """Admin dashboard"""
        audience = request.args.get('audience', 'all')
        if user_session.role == FACULTY:
            audience = STUDENT
        leaves = submission.list_leaves(get_client())
        return jsonify(analytics.dashboard_stats(leaves, audience=audience))

    @app.route('/admin/analytics')
    @auth.login_required(ADMIN)
    def admin_analytics(user_session):
        months = request.args.get('months', 6, type=int)
        leaves = submission.list_leaves(get_client())
        return jsonify({
            'trends': analytics.monthly_trends(leaves, months=months),
            'type_distribution': analytics.leaves_by_type(leaves),
            'requester_patterns': analytics.requester_patterns(leaves),
        })

    def _report_filters():
        args = request.args
        return {
            'start_date': args.get('start_date') or None,
            'end_date': args.get('end_date') or None,
            'requester_id': args.get('requester_id') or None,
            'leave_type': args.get('leave_type') or None,
            'status': args.get('status') or None,
            'audience': args.get('audience') or None,
        }

    @app.route('/admin/reports')
    @auth.login_required(FACULTY, ADMIN)
    def admin_reports(user_session):
        filters = _report_filters()
        if user_session.role == FACULTY:
            filters['audience'] = STUDENT
        report = analytics.build_report(submission.list_leaves(get_client()), **filters)
        return jsonify(report.to_dict())

    @app.route('/admin/reports/export.csv')
    @auth.login_required(FACULTY, ADMIN)
    def admin_reports_export(user_session):
        filters = _report_filters()
        if user_session.role == FACULTY:
            filters['audience'] = STUDENT
        leaves = analytics.filter_leaves(submission.list_leaves(get_client()), **filters)
        return Response(
            analytics.export_csv(leaves),
            mimetype='text/csv',
            headers={'Content-Disposition': 'attachment; filename=leave_report.csv'},
        )

    @app.route('/admin/audit-logs')
    @auth.login_required(ADMIN)
    def admin_audit_logs(user_session):
        limit = request.args.get('limit', 100, type=int)
        logs = notifications.list_audit_logs(get_client(), limit=limit)
        return jsonify({'logs': [log.to_dict() for log in logs]})

    @app.route('/admin/users')
    @auth.login_required(ADMIN)
    def admin_users(user_session):
        profiles = users.list_users(get_client(), role=request.args.get('role'))
        return jsonify({'users': [profile.to_dict() for profile in profiles]})

    @app.route('/admin/users/<int:user_id>/role', methods=['POST'])
    @auth.login_required(ADMIN)
    def admin_update_role(user_id, user_session):
        data = _payload()
        user_session = _fresh_session(user_session, ADMIN)
        profile = users.update_user_role(get_client(), user_session, user_id, data.get('role'))
        return jsonify({'success': True, 'user': profile.to_dict()})

    # Leave policies

    @app.route('/admin/policies')
    @auth.login_required(ADMIN)
    def admin_policies(user_session):
        active_only = request.args.get('active') in ('1', 'true')
        items = policies.list_policies(get_client(), active_only=active_only)
        return jsonify({'policies': [policy.to_dict() for policy in items]})

    @app.route('/admin/policies', methods=['POST'])
    @auth.login_required(ADMIN)
    def admin_create_policy(user_session):
        user_session = _fresh_session(user_session, ADMIN)
        policy = policies.create_policy(get_client(), user_session, _payload())
        return jsonify({'success': True, 'policy': policy.to_dict()}), 201

    @app.route('/admin/policies/<int:policy_id>', methods=['POST'])
    @auth.login_required(ADMIN)
    def admin_update_policy(policy_id, user_session):
        user_session = _fresh_session(user_session, ADMIN)
        policy = policies.update_policy(get_client(), user_session, policy_id, _payload())
        return jsonify({'success': True, 'policy': policy.to_dict()})

    @app.route('/admin/policies/<int:policy_id>/toggle', methods=['POST'])
    @auth.login_required(ADMIN)
    def admin_toggle_policy(policy_id, user_session):
        user_session = _fresh_session(user_session, ADMIN)
        is_active = _payload().get('is_active')
        if not isinstance(is_active, bool):
            raise ValidationError('is_active must be true or false')
        policy = policies.toggle_policy(get_client(), user_session, policy_id, is_active)
        return jsonify({'success': True, 'policy': policy.to_dict()})

    @app.route('/admin/policies/<int:policy_id>/delete', methods=['POST'])
    @auth.login_required(ADMIN)
    def admin_delete_policy(policy_id, user_session):
        user_session = _fresh_session(user_session, ADMIN)
        policies.delete_policy(get_client(), user_session, policy_id)
        return jsonify({'success': True})

    # Calendar

    def _date_arg(name):
        value = request.args.get(name)
        return submission.parse_date(value, name) if value else None

    @app.route('/calendar')
    @auth.login_required()
    def calendar(user_session):
        """Approved leaves and holidays; students only see their own leaves"""
        start, end = _date_arg('start'), _date_arg('end')
        if user_session.role == STUDENT:
            leaves = submission.list_requester_leaves(get_client(), user_session.user_id)
        else:
            leaves = submission.list_leaves(get_client(), status='approved')
        holidays = leave_calendar.list_holidays(get_client(), start, end)
        return jsonify({'events': leave_calendar.calendar_events(leaves, holidays, start, end)})

    @app.route('/holidays')
    @auth.login_required()
    def holiday_list(user_session):
        holidays = leave_calendar.list_holidays(get_client(), _date_arg('start'), _date_arg('end'))
        return jsonify({'holidays': [holiday.to_dict() for holiday in holidays]})

    @app.route('/holidays', methods=['POST'])
    @auth.login_required(FACULTY, ADMIN)
    def holiday_add(user_session):
        user_session = _fresh_session(user_session, FACULTY, ADMIN)
        data = _payload()
        holiday = leave_calendar.add_holiday(get_client(), user_session, data.get('title'),
                                             data.get('date'), data.get('description'))
        return jsonify({'success': True, 'holiday': holiday.to_dict()}), 201

    @app.route('/holidays/<int:holiday_id>/delete', methods=['POST'])
    @auth.login_required(FACULTY, ADMIN)
    def holiday_delete(holiday_id, user_session):
        user_session = _fresh_session(user_session, FACULTY, ADMIN)
        leave_calendar.delete_holiday(get_client(), user_session, holiday_id)
        return jsonify({'success': True})

    # Notifications

    @app.route('/notifications')
    @auth.login_required()
    def notification_list(user_session):
        items = notifications.list_notifications(get_client(), user_session.user_id)
        return jsonify({'notifications': [item.to_dict() for item in items]})

    @app.route('/notifications/unread-count')
    @auth.login_required()
    def notification_unread_count(user_session):
        return jsonify({'count': notifications.unread_count(get_client(), user_session.user_id)})

    @app.route('/notifications/<int:notification_id>/read', methods=['POST'])
    @auth.login_required()
    def notification_read(notification_id, user_session):
        notifications.mark_read(get_client(), user_session.user_id, notification_id)
        return jsonify({'success': True})

    @app.route('/notifications/read-all', methods=['POST'])
    @auth.login_required()
    def notification_read_all(user_session):
        count = notifications.mark_all_read(get_client(), user_session.user_id)
        return jsonify({'success': True, 'count': count})

    @app.route('/events')
    @auth.login_required()
    def events(user_session):
        """Server-sent events telling the client to re-fetch"""
        conn = get_client().listen(current_app.config['REALTIME_CHANNEL'])
        return Response(stream_with_context(sse_stream(conn)), mimetype='text/event-stream',
                        headers={'Cache-Control': 'no-cache'})


if __name__ == '__main__':
    app = create_app()
    port = int(os.environ.get('PORT', 5000))
    app.run(debug=False, host='0.0.0.0', port=port)
