import unittest

from sqlalchemy import select

from lab_inventory.models.enums import ItemStatus, TransferStatus
from lab_inventory.models.inventory_models import Item, TransferRecord
from lab_inventory.services.catalog_service import generate_manual_id
from lab_inventory.services.errors import ConflictError, ForbiddenError, ValidationError
from lab_inventory.services.transfer_service import (
    approve_transfer,
    cancel_transfer,
    complete_transfer,
    create_transfer,
    list_transfers,
    reject_transfer,
)
from lab_inventory.tests.support import NOW, LabFixture, make_session_factory


class TransferWorkflowTests(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.lab = LabFixture(self.db)

    def tearDown(self):
        self.db.close()

    def _scope_transfer(self):
        return create_transfer(
            self.db,
            self.lab.ee_incharge,
            item_id=self.lab.scope.ItemID,
            to_department_id=self.lab.ee.DepartmentID,
            purpose="Signals lab",
            now=NOW,
        )

    def _resistor_transfer(self, quantity):
        return create_transfer(
            self.db,
            self.lab.ee_incharge,
            item_id=self.lab.resistors.ItemID,
            to_department_id=self.lab.ee.DepartmentID,
            purpose="Breadboard sessions",
            quantity=quantity,
            now=NOW,
        )

    def test_reject_with_empty_reason_changes_nothing(self):
        transfer = self._scope_transfer()
        with self.assertRaises(ValidationError):
            reject_transfer(self.db, self.lab.cs_incharge, transfer.TransferRequestID, rejection_reason="")
        self.db.refresh(transfer)
        self.assertEqual(transfer.Status, TransferStatus.PENDING.value)
        self.assertIsNone(transfer.RejectionReason)

    def test_reject_with_reason(self):
        transfer = self._scope_transfer()
        rejected = reject_transfer(self.db, self.lab.cs_incharge, transfer.TransferRequestID, rejection_reason="Needed for exams")
        self.assertEqual(rejected.Status, TransferStatus.REJECTED.value)
        self.assertEqual(rejected.RejectionReason, "Needed for exams")

    def test_create_rules(self):
        with self.assertRaises(ForbiddenError):
            create_transfer(
                self.db,
                self.lab.ee_incharge,
                item_id=self.lab.arduino.ItemID,
                to_department_id=self.lab.ee.DepartmentID,
                purpose="Not shared",
            )
        with self.assertRaises(ForbiddenError):
            create_transfer(
                self.db,
                self.lab.cs_incharge,
                item_id=self.lab.scope.ItemID,
                to_department_id=self.lab.ee.DepartmentID,
                purpose="Wrong department",
            )
        with self.assertRaises(ValidationError):
            create_transfer(
                self.db,
                self.lab.admin,
                item_id=self.lab.scope.ItemID,
                to_department_id=self.lab.cs.DepartmentID,
                purpose="Same department",
            )
        with self.assertRaises(ValidationError):
            self._resistor_transfer(101)
        with self.assertRaises(ValidationError):
            self._resistor_transfer(0)
        self.assertEqual(self._scope_transfer().Quantity, 1)

    def test_only_holding_department_approves(self):
        transfer = self._scope_transfer()
        with self.assertRaises(ForbiddenError):
            approve_transfer(self.db, self.lab.ee_incharge, transfer.TransferRequestID, now=NOW)
        approved = approve_transfer(self.db, self.lab.cs_incharge, transfer.TransferRequestID, now=NOW)
        self.assertEqual(approved.Status, TransferStatus.APPROVED.value)
        self.assertEqual(approved.ApprovedBy, self.lab.cs_incharge.UserID)
        with self.assertRaises(ConflictError):
            approve_transfer(self.db, self.lab.admin, transfer.TransferRequestID, now=NOW)

    def test_approval_rechecks_stock(self):
        transfer = self._resistor_transfer(80)
        self.lab.resistors.CurrentStock = 50
        self.db.commit()
        with self.assertRaises(ConflictError):
            approve_transfer(self.db, self.lab.cs_incharge, transfer.TransferRequestID, now=NOW)

    def test_complete_moves_non_consumable_custody(self):
        transfer = self._scope_transfer()
        approve_transfer(self.db, self.lab.cs_incharge, transfer.TransferRequestID, now=NOW)

        record = complete_transfer(self.db, self.lab.ee_incharge, transfer.TransferRequestID, notes="Picked up", now=NOW)

        self.db.refresh(self.lab.scope)
        self.db.refresh(transfer)
        self.assertEqual(self.lab.scope.DepartmentID, self.lab.ee.DepartmentID)
        self.assertEqual(self.lab.scope.SourceDepartmentID, self.lab.cs.DepartmentID)
        self.assertEqual(self.lab.scope.Status, ItemStatus.AVAILABLE.value)
        self.assertEqual(transfer.Status, TransferStatus.COMPLETED.value)
        self.assertEqual(record.Notes, "Picked up")
        self.assertEqual(record.TransferredBy, self.lab.ee_incharge.UserID)

    def test_complete_consumable_creates_then_tops_up_destination_stock(self):
        first = self._resistor_transfer(30)
        approve_transfer(self.db, self.lab.cs_incharge, first.TransferRequestID, now=NOW)
        complete_transfer(self.db, self.lab.cs_incharge, first.TransferRequestID, now=NOW)

        destination = self.db.execute(
            select(Item).where(Item.DepartmentID == self.lab.ee.DepartmentID).where(Item.Name == "Resistor Pack")
        ).scalars().one()
        self.assertEqual(destination.ManualID, "EE-001")
        self.assertEqual(destination.CurrentStock, 30)
        self.assertEqual(destination.SourceDepartmentID, self.lab.cs.DepartmentID)

        second = self._resistor_transfer(20)
        approve_transfer(self.db, self.lab.admin, second.TransferRequestID, now=NOW)
        complete_transfer(self.db, self.lab.admin, second.TransferRequestID, now=NOW)

        self.db.refresh(self.lab.resistors)
        self.db.refresh(destination)
        self.assertEqual(self.lab.resistors.CurrentStock, 50)
        self.assertEqual(destination.CurrentStock, 50)
        self.assertEqual(len(self.db.execute(select(TransferRecord)).scalars().all()), 2)
        self.assertEqual(generate_manual_id(self.db, "ee"), "EE-002")

    def test_complete_requires_approval_and_access(self):
        transfer = self._scope_transfer()
        with self.assertRaises(ConflictError):
            complete_transfer(self.db, self.lab.admin, transfer.TransferRequestID, now=NOW)
        approve_transfer(self.db, self.lab.cs_incharge, transfer.TransferRequestID, now=NOW)
        with self.assertRaises(ForbiddenError):
            complete_transfer(self.db, self.lab.student, transfer.TransferRequestID, now=NOW)

    def test_cancel_by_requester_only_while_pending(self):
        transfer = self._scope_transfer()
        with self.assertRaises(ForbiddenError):
            cancel_transfer(self.db, self.lab.cs_incharge, transfer.TransferRequestID)
        cancelled = cancel_transfer(self.db, self.lab.ee_incharge, transfer.TransferRequestID)
        self.assertEqual(cancelled.Status, TransferStatus.CANCELLED.value)
        with self.assertRaises(ConflictError):
            cancel_transfer(self.db, self.lab.ee_incharge, transfer.TransferRequestID)

    def test_list_directions(self):
        transfer = self._scope_transfer()
        # CS holds the scope, so the EE request lands in CS's incoming queue.
        incoming = list_transfers(self.db, self.lab.cs_incharge, direction="incoming")
        outgoing = list_transfers(self.db, self.lab.ee_incharge, direction="outgoing")
        self.assertEqual([row.TransferRequestID for row in incoming], [transfer.TransferRequestID])
        self.assertEqual([row.TransferRequestID for row in outgoing], [transfer.TransferRequestID])
        self.assertEqual(list_transfers(self.db, self.lab.ee_incharge, direction="incoming"), [])
        self.assertEqual(list_transfers(self.db, self.lab.cs_incharge, direction="outgoing"), [])
        self.assertEqual(len(list_transfers(self.db, self.lab.admin, status="pending")), 1)
        with self.assertRaises(ValidationError):
            list_transfers(self.db, self.lab.admin, direction="sideways")


if __name__ == "__main__":
    unittest.main()
