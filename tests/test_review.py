"""
Tests for the leave review state machine and the same-day override rule
"""
from datetime import datetime, timedelta, timezone

import pytest

from leave_portal.errors import (AuthorizationError, NotFoundError, PolicyError, RemoteError,
                                 ValidationError)
from leave_portal.models import LEAVE_STATUSES
from leave_portal.review import approve_leave, reject_leave, review_leave

JUNE_1_MORNING = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
JUNE_1_EVENING = datetime(2025, 6, 1, 18, 30, tzinfo=timezone.utc)
JUNE_2_MORNING = datetime(2025, 6, 2, 8, 0, tzinfo=timezone.utc)


class TestPendingReview:
    """Reviewing a pending leave"""

    def test_faculty_approves_pending_leave(self, client, faculty, make_leave):
        leave = make_leave()

        updated = approve_leave(client, faculty, leave.id, now=JUNE_1_MORNING)

        assert updated.status == 'approved'
        assert updated.status_decided_at == JUNE_1_MORNING
        assert updated.reviewed_by == faculty.user_id
        assert updated.approved_by_name == 'Dr. Meera Rao'
        assert updated.overridden_by_admin is False

    def test_admin_rejects_with_comments(self, client, admin, make_leave):
        leave = make_leave()

        updated = reject_leave(client, admin, leave.id, '  Need a medical certificate ',
                               now=JUNE_1_MORNING)

        assert updated.status == 'rejected'
        assert updated.comments == 'Need a medical certificate'
        assert updated.status_decided_at == JUNE_1_MORNING

    def test_explicit_approver_name_wins(self, client, faculty, make_leave):
        leave = make_leave()
        updated = approve_leave(client, faculty, leave.id, approver_name='HOD Physics',
                                now=JUNE_1_MORNING)
        assert updated.approved_by_name == 'HOD Physics'

    def test_rejection_without_comments_is_refused_before_any_write(self, client, faculty, make_leave):
        leave = make_leave()

        with pytest.raises(ValidationError):
            review_leave(client, faculty, leave.id, 'rejected', '   ', now=JUNE_1_MORNING)

        assert client.select_one('leave_applications', {'id': leave.id}).status == 'pending'
        assert client.rows['audit_logs'] == []

    def test_invalid_target_status(self, client, admin, make_leave):
        leave = make_leave()
        with pytest.raises(ValidationError):
            review_leave(client, admin, leave.id, 'cancelled', now=JUNE_1_MORNING)

    def test_student_cannot_review(self, client, student, make_leave):
        leave = make_leave()
        with pytest.raises(AuthorizationError):
            approve_leave(client, student, leave.id, now=JUNE_1_MORNING)
        assert client.select_one('leave_applications', {'id': leave.id}).status == 'pending'

    def test_faculty_cannot_review_faculty_leave(self, client, faculty, faculty_profile, make_leave):
        leave = make_leave(requester=faculty_profile)
        with pytest.raises(AuthorizationError):
            approve_leave(client, faculty, leave.id, now=JUNE_1_MORNING)

    def test_admin_reviews_faculty_leave(self, client, admin, faculty_profile, make_leave):
        leave = make_leave(requester=faculty_profile)
        assert approve_leave(client, admin, leave.id, now=JUNE_1_MORNING).status == 'approved'

    def test_missing_leave(self, client, admin):
        with pytest.raises(NotFoundError):
            approve_leave(client, admin, 999, now=JUNE_1_MORNING)

    def test_review_writes_audit_log_and_notifies_requester(self, client, faculty, make_leave,
                                                           student_profile):
        leave = make_leave()

        reject_leave(client, faculty, leave.id, 'Exams that week', now=JUNE_1_MORNING)

        log = client.rows['audit_logs'][-1]
        assert log['action'] == 'rejected_leave'
        assert log['entity_type'] == 'leave_application'
        assert log['entity_id'] == str(leave.id)
        assert log['details'] == {'comments': 'Exams that week'}

        notification = client.rows['notifications'][-1]
        assert notification['user_id'] == student_profile.id
        assert notification['title'] == 'Leave rejected'
        assert 'Exams that week' in notification['message']


class TestDecidedLeaves:
    """Moves out of approved/rejected"""

    def test_same_status_again_is_a_policy_error(self, client, admin, make_leave):
        leave = make_leave()
        approve_leave(client, admin, leave.id, now=JUNE_1_MORNING)

        with pytest.raises(PolicyError):
            approve_leave(client, admin, leave.id, now=JUNE_1_EVENING)

    def test_faculty_cannot_override(self, client, faculty, make_leave):
        leave = make_leave()
        approve_leave(client, faculty, leave.id, now=JUNE_1_MORNING)

        with pytest.raises(AuthorizationError):
            reject_leave(client, faculty, leave.id, 'Changed my mind', now=JUNE_1_EVENING)

        assert client.select_one('leave_applications', {'id': leave.id}).status == 'approved'

    def test_admin_override_on_the_next_day_fails(self, client, faculty, admin, make_leave):
        leave = make_leave()
        approve_leave(client, faculty, leave.id, now=JUNE_1_MORNING)

        with pytest.raises(PolicyError) as exc_info:
            reject_leave(client, admin, leave.id, 'Too late', now=JUNE_2_MORNING)

        assert 'same day' in exc_info.value.message
        current = client.select_one('leave_applications', {'id': leave.id})
        assert current.status == 'approved'
        assert current.overridden_by_admin is False

    def test_admin_override_on_the_same_day(self, client, faculty, admin, make_leave):
        leave = make_leave()
        approve_leave(client, faculty, leave.id, now=JUNE_1_MORNING)

        updated = reject_leave(client, admin, leave.id, 'Attendance shortage',
                               override_from='approved', now=JUNE_1_EVENING)

        assert updated.status == 'rejected'
        assert updated.overridden_by_admin is True
        assert updated.overridden_from == 'approved'
        assert updated.overridden_at == JUNE_1_EVENING
        assert updated.status_decided_at == JUNE_1_MORNING
        assert updated.reviewed_by == admin.user_id
        assert client.rows['audit_logs'][-1]['details'] == {
            'comments': 'Attendance shortage',
            'overridden_from': 'approved',
        }

    def test_override_back_and_forth_keeps_decision_time(self, client, admin, make_leave):
        leave = make_leave()
        reject_leave(client, admin, leave.id, 'Incomplete', now=JUNE_1_MORNING)
        approve_leave(client, admin, leave.id, override_from='rejected', now=JUNE_1_EVENING)

        current = client.select_one('leave_applications', {'id': leave.id})
        assert current.status == 'approved'
        assert current.overridden_from == 'rejected'
        assert current.status_decided_at == JUNE_1_MORNING

    def test_override_uses_configured_timezone(self, client, faculty, admin, make_leave):
        leave = make_leave()
        # 23:00 UTC on June 1 is already June 2 in Kolkata
        approve_leave(client, faculty, leave.id, now=datetime(2025, 6, 1, 17, 0, tzinfo=timezone.utc))
        with pytest.raises(PolicyError):
            reject_leave(client, admin, leave.id, 'Late change', override_from='approved',
                         now=datetime(2025, 6, 1, 23, 0, tzinfo=timezone.utc), tz='Asia/Kolkata')

    def test_stale_override_intent_is_refused(self, client, faculty, admin, make_leave):
        leave = make_leave()
        reject_leave(client, faculty, leave.id, 'No documents', now=JUNE_1_MORNING)

        with pytest.raises(PolicyError):
            approve_leave(client, admin, leave.id, override_from='approved', now=JUNE_1_EVENING)

    def test_same_day_change_without_override_request_is_refused(self, client, faculty, admin, make_leave):
        leave = make_leave()
        reject_leave(client, faculty, leave.id, 'No documents', now=JUNE_1_MORNING)

        with pytest.raises(PolicyError) as exc_info:
            approve_leave(client, admin, leave.id, now=JUNE_1_EVENING)

        assert 'explicit override' in exc_info.value.message
        current = client.select_one('leave_applications', {'id': leave.id})
        assert current.status == 'rejected'
        assert current.overridden_by_admin is False

    def test_override_falls_back_to_updated_at(self, client, admin, make_leave):
        leave = make_leave(status='approved', status_decided_at=None, updated_at=JUNE_1_MORNING)
        updated = reject_leave(client, admin, leave.id, 'Reversed', override_from='approved',
                               now=JUNE_1_EVENING)
        assert updated.overridden_by_admin is True

    def test_override_without_any_decision_time(self, client, admin, make_leave):
        leave = make_leave(status='approved', status_decided_at=None, updated_at=None)
        with pytest.raises(PolicyError):
            reject_leave(client, admin, leave.id, 'Reversed', now=JUNE_1_EVENING)


class TestFollowUps:
    """Audit and notification writes happen after the status change is stored"""

    def test_audit_failure_does_not_fail_the_review(self, client, faculty, make_leave):
        leave = make_leave()
        client.fail_on[('insert', 'audit_logs')] = RemoteError('audit down')

        updated = approve_leave(client, faculty, leave.id, now=JUNE_1_MORNING)

        assert updated.status == 'approved'
        assert client.rows['audit_logs'] == []
        assert len(client.rows['notifications']) == 1

    def test_notification_failure_does_not_fail_the_review(self, client, faculty, make_leave):
        leave = make_leave()
        client.fail_on[('insert', 'notifications')] = RemoteError('notify down')

        updated = approve_leave(client, faculty, leave.id, now=JUNE_1_MORNING)

        assert updated.status == 'approved'
        assert client.rows['audit_logs'][-1]['action'] == 'approved_leave'

    def test_decision_is_emailed_to_requester(self, client, faculty, make_leave, mailer):
        leave = make_leave()
        reject_leave(client, faculty, leave.id, 'Exams that week', now=JUNE_1_MORNING, mailer=mailer)

        to, subject, text = mailer.sent[0]
        assert to == 'student1@college.edu'
        assert subject == 'Leave application rejected'
        assert 'Exams that week' in text


def test_status_is_always_one_of_three(client, faculty, admin, make_leave):
    leaves = [make_leave() for _ in range(4)]
    approve_leave(client, faculty, leaves[0].id, now=JUNE_1_MORNING)
    reject_leave(client, faculty, leaves[1].id, 'No', now=JUNE_1_MORNING)
    reject_leave(client, admin, leaves[0].id, 'Override', override_from='approved', now=JUNE_1_EVENING)
    with pytest.raises(PolicyError):
        approve_leave(client, admin, leaves[1].id, now=JUNE_1_MORNING + timedelta(days=3))

    assert {row['status'] for row in client.rows['leave_applications']} <= set(LEAVE_STATUSES)
