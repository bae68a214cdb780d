import unittest
from datetime import timedelta

from lab_inventory.models.enums import ItemStatus, RequestStatus
from lab_inventory.services.audit_service import list_audit_entries
from lab_inventory.services.errors import ConflictError, ForbiddenError, ValidationError
from lab_inventory.services.issue_service import issue_request
from lab_inventory.services.request_service import (
    approve_request,
    cancel_request,
    create_request,
    list_department_requests,
    list_user_requests,
    reject_request,
)
from lab_inventory.services.settings_service import load_settings, update_settings
from lab_inventory.tests.support import NOW, CollectingNotifier, LabFixture, default_settings, make_session_factory


class RequestWorkflowTests(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.lab = LabFixture(self.db)
        self.settings = default_settings()
        self.notifier = CollectingNotifier()

    def tearDown(self):
        self.db.close()

    def _request(self, user=None, item=None, days=7):
        return create_request(
            self.db,
            user or self.lab.student,
            item_id=(item or self.lab.arduino).ItemID,
            purpose="Robotics coursework",
            requested_days=days,
            settings=self.settings,
            notifier=self.notifier,
            now=NOW,
        )

    def test_create_request_is_pending_and_notifies_incharge(self):
        created = self._request()
        self.assertEqual(created.Status, RequestStatus.PENDING.value)
        self.assertEqual(created.RequestDate, NOW)
        self.assertEqual([message.to for message in self.notifier.messages], ["casey@uni.test"])
        actions = [entry.Action for entry in list_audit_entries(self.db, entity_type="IssueRequest")]
        self.assertEqual(actions, ["CREATE"])

    def test_create_request_validates_input(self):
        with self.assertRaises(ValidationError):
            create_request(self.db, self.lab.student, item_id=self.lab.arduino.ItemID, purpose=" ", requested_days=3, settings=self.settings)
        with self.assertRaises(ValidationError):
            self._request(days=-1)
        # Student limit is 7 days even though the category allows 14.
        with self.assertRaises(ValidationError):
            self._request(days=8)
        with self.assertRaises(ValidationError):
            self._request(item=self.lab.resistors)

    def test_banned_user_cannot_request(self):
        self.lab.student.IsBanned = True
        self.lab.student.BannedUntil = NOW - timedelta(days=10)
        self.db.commit()
        with self.assertRaises(ForbiddenError) as ctx:
            self._request()
        self.assertIn("banned until", ctx.exception.message)

    def test_duplicate_open_request_is_rejected(self):
        self._request()
        with self.assertRaises(ConflictError):
            self._request()

    def test_role_without_approval_is_auto_approved(self):
        update_settings(self.db, [{"key": "faculty_requires_approval", "value": "false"}])
        self.settings = load_settings(self.db)
        created = self._request(user=self.lab.faculty, days=14)
        self.assertEqual(created.Status, RequestStatus.APPROVED.value)
        self.assertEqual(created.ApprovalDate, NOW)

    def test_approve_stores_instructions_and_emails_requester(self):
        created = self._request()
        approved = approve_request(
            self.db,
            self.lab.cs_incharge,
            created.RequestID,
            collection_instructions="Room 204, after 2pm",
            settings=self.settings,
            notifier=self.notifier,
            now=NOW,
        )
        self.assertEqual(approved.Status, RequestStatus.APPROVED.value)
        self.assertEqual(approved.ApprovedBy, self.lab.cs_incharge.UserID)
        self.assertEqual(approved.CollectionInstructions, "Room 204, after 2pm")
        self.assertIn("Request Approved: Arduino Uno Kit", self.notifier.subjects())

    def test_incharge_of_other_department_cannot_approve(self):
        created = self._request()
        with self.assertRaises(ForbiddenError):
            approve_request(self.db, self.lab.ee_incharge, created.RequestID, collection_instructions=None, settings=self.settings)
        with self.assertRaises(ForbiddenError):
            approve_request(self.db, self.lab.faculty, created.RequestID, collection_instructions=None, settings=self.settings)

    def test_second_approval_conflicts(self):
        created = self._request()
        approve_request(self.db, self.lab.admin, created.RequestID, collection_instructions=None, settings=self.settings, now=NOW)
        with self.assertRaises(ConflictError):
            approve_request(self.db, self.lab.cs_incharge, created.RequestID, collection_instructions=None, settings=self.settings, now=NOW)

    def test_approving_request_for_unavailable_item_leaves_item_untouched(self):
        first = self._request()
        second = self._request(user=self.lab.faculty)
        approve_request(self.db, self.lab.admin, first.RequestID, collection_instructions=None, settings=self.settings, now=NOW)
        issue_request(self.db, self.lab.admin, first.RequestID, now=NOW)

        with self.assertRaises(ConflictError):
            approve_request(self.db, self.lab.admin, second.RequestID, collection_instructions=None, settings=self.settings, now=NOW)
        self.db.refresh(self.lab.arduino)
        self.db.refresh(second)
        self.assertEqual(self.lab.arduino.Status, ItemStatus.ISSUED.value)
        self.assertEqual(second.Status, RequestStatus.PENDING.value)

    def test_approval_blocked_when_requester_is_banned(self):
        created = self._request()
        self.lab.student.IsBanned = True
        self.db.commit()
        with self.assertRaises(ConflictError):
            approve_request(self.db, self.lab.admin, created.RequestID, collection_instructions=None, settings=self.settings)

    def test_approval_enforces_borrow_limit(self):
        limited = default_settings(student_max_items="1")
        first = self._request()
        second = self._request(item=self.lab.scope)
        approve_request(self.db, self.lab.admin, first.RequestID, collection_instructions=None, settings=limited, now=NOW)
        with self.assertRaises(ConflictError) as ctx:
            approve_request(self.db, self.lab.admin, second.RequestID, collection_instructions=None, settings=limited, now=NOW)
        self.assertIn("borrow limit", ctx.exception.message)

    def test_reject_requires_reason_before_anything_else(self):
        created = self._request()
        with self.assertRaises(ValidationError):
            reject_request(self.db, self.lab.ee_incharge, created.RequestID, rejection_reason="  ")
        rejected = reject_request(
            self.db,
            self.lab.cs_incharge,
            created.RequestID,
            rejection_reason="Kit reserved for exams",
            notifier=self.notifier,
            now=NOW,
        )
        self.assertEqual(rejected.Status, RequestStatus.REJECTED.value)
        self.assertEqual(rejected.RejectionReason, "Kit reserved for exams")
        self.assertIn("Request Rejected: Arduino Uno Kit", self.notifier.subjects())

    def test_only_owner_can_cancel_pending_request(self):
        created = self._request()
        with self.assertRaises(ForbiddenError):
            cancel_request(self.db, self.lab.faculty, created.RequestID)
        cancelled = cancel_request(self.db, self.lab.student, created.RequestID)
        self.assertEqual(cancelled.Status, RequestStatus.CANCELLED.value)
        with self.assertRaises(ConflictError):
            cancel_request(self.db, self.lab.student, created.RequestID)

    def test_listings_are_scoped(self):
        created = self._request()
        self.assertEqual([row.RequestID for row in list_user_requests(self.db, self.lab.student)], [created.RequestID])
        self.assertEqual(list_user_requests(self.db, self.lab.faculty), [])
        self.assertEqual(len(list_department_requests(self.db, self.lab.cs_incharge)), 1)
        self.assertEqual(list_department_requests(self.db, self.lab.ee_incharge), [])
        self.assertEqual(len(list_department_requests(self.db, self.lab.admin, search="arduino")), 1)
        self.assertEqual(list_department_requests(self.db, self.lab.admin, search="nothing-matches"), [])


if __name__ == "__main__":
    unittest.main()
