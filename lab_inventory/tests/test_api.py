import unittest
from datetime import datetime, timedelta

from fastapi.testclient import TestClient

from lab_inventory.tests.support import PASSWORD, LabFixture, make_session_factory

import lab_inventory.LabInventory as app_module
from lab_inventory.models.inventory_models import IssueRecord


class ApiTests(unittest.TestCase):
    def setUp(self):
        self.factory = make_session_factory()
        with self.factory() as db:
            lab = LabFixture(db)
            self.arduino_id = lab.arduino.ItemID
            self.student_id = lab.student.UserID
            self.scope_id = lab.scope.ItemID
            self.ee_id = lab.ee.DepartmentID
            self.cs_id = lab.cs.DepartmentID
            self.ee_incharge_id = lab.ee_incharge.UserID

        def _db_override():
            db = self.factory()
            try:
                yield db
            finally:
                db.close()

        app_module.app.dependency_overrides[app_module.get_db] = _db_override

    def tearDown(self):
        app_module.app.dependency_overrides.clear()

    def login(self, email):
        client = TestClient(app_module.app)
        response = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
        self.assertEqual(response.status_code, 200, response.text)
        return client, response.json()["sessionToken"]

    def borrow_and_issue(self):
        student, _ = self.login("sam@uni.test")
        incharge, _ = self.login("casey@uni.test")
        created = student.post(
            "/api/user/requests",
            json={"itemId": self.arduino_id, "purpose": "Line follower robot", "requestedDays": 7},
        )
        self.assertEqual(created.status_code, 201, created.text)
        request_id = created.json()["request"]["requestID"]

        approved = incharge.post(f"/api/incharge/requests/{request_id}/approve", json={"collectionInstructions": "Lab 2"})
        self.assertEqual(approved.status_code, 200, approved.text)
        self.assertEqual(approved.json()["request"]["status"], "APPROVED")

        issued = incharge.post("/api/incharge/issue", json={"requestId": request_id})
        self.assertEqual(issued.status_code, 201, issued.text)
        return student, incharge, issued.json()["issueRecord"]["issueRecordID"]

    def test_healthz(self):
        client = TestClient(app_module.app)
        self.assertEqual(client.get("/healthz").json(), {"status": "ok"})
        self.assertEqual(client.get("/api/healthz").json(), {"status": "ok"})

    def test_login_logout_revokes_session_token(self):
        client, token = self.login("sam@uni.test")
        headers = {"X-Session-Token": token}

        me_before = client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_before.status_code, 200)
        self.assertEqual(me_before.json()["user"]["role"], "STUDENT")

        logout = client.post("/api/auth/logout", headers=headers)
        self.assertEqual(logout.status_code, 200)

        me_after = client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_after.status_code, 401)
        self.assertEqual(me_after.json(), {"error": "Not logged in."})

    def test_login_persists_with_cookie_session(self):
        client = TestClient(app_module.app)
        login = client.post("/api/auth/login", json={"email": "SAM@uni.test", "password": PASSWORD})
        self.assertEqual(login.status_code, 200)
        self.assertIn("lab_inventory_session=", login.headers.get("set-cookie", ""))
        self.assertEqual(client.get("/api/auth/me").json()["user"]["email"], "sam@uni.test")

    def test_wrong_password_rejected(self):
        client = TestClient(app_module.app)
        response = client.post("/api/auth/login", json={"email": "fran@uni.test", "password": "not-the-password"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Invalid credentials."})
        unknown_field = client.post("/api/auth/login", json={"username": "fran", "password": PASSWORD})
        self.assertEqual(unknown_field.status_code, 400)

    def test_late_return_through_http(self):
        student, incharge, record_id = self.borrow_and_issue()
        with self.factory() as db:
            record = db.get(IssueRecord, record_id)
            record.ExpectedReturnDate = datetime.now() - timedelta(days=2) + timedelta(minutes=5)
            db.commit()

        response = incharge.post("/api/incharge/return", json={"issueRecordId": record_id, "returnCondition": "GOOD"})

        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertEqual(set(body), {"message", "issueRecord", "warnings", "isLate", "daysLate"})
        self.assertTrue(body["isLate"])
        self.assertEqual(body["daysLate"], 2)
        self.assertTrue(body["warnings"]["lateBan"].startswith("User banned until "))
        self.assertIsNone(body["warnings"]["compensationBan"])
        self.assertIsNotNone(body["issueRecord"]["actualReturnDate"])
        self.assertTrue(student.get("/api/auth/me").json()["user"]["isBanned"])

        again = incharge.post("/api/incharge/return", json={"issueRecordId": record_id, "returnCondition": "GOOD"})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json(), {"error": "Item already returned"})

    def test_return_error_bodies(self):
        student, incharge, record_id = self.borrow_and_issue()

        missing_remarks = incharge.post(
            "/api/incharge/return",
            json={"issueRecordId": record_id, "returnCondition": "DAMAGED", "isPendingReplacement": True},
        )
        self.assertEqual(missing_remarks.status_code, 400)
        self.assertEqual(missing_remarks.json(), {"error": "Damage remarks are required for damaged items"})

        forbidden = student.post("/api/incharge/return", json={"issueRecordId": record_id, "returnCondition": "GOOD"})
        self.assertEqual(forbidden.status_code, 403)
        self.assertIn("error", forbidden.json())

        not_found = incharge.post("/api/incharge/return", json={"issueRecordId": 9999, "returnCondition": "GOOD"})
        self.assertEqual(not_found.status_code, 404)
        self.assertEqual(not_found.json(), {"error": "Issue record not found"})

        outstanding = incharge.get("/api/incharge/return")
        self.assertEqual([row["issueRecordID"] for row in outstanding.json()], [record_id])
        self.assertFalse(outstanding.json()[0]["isOverdue"])

    def test_compensation_ban_through_http(self):
        _, incharge, record_id = self.borrow_and_issue()
        response = incharge.post(
            "/api/incharge/return",
            json={
                "issueRecordId": record_id,
                "returnCondition": "DAMAGED",
                "damageRemarks": "Burnt regulator",
                "isPendingReplacement": True,
            },
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()["warnings"], {"lateBan": None, "compensationBan": "User banned pending compensation"})

        admin, _ = self.login("ada@uni.test")
        revoked = admin.post(f"/api/admin/users/{self.student_id}/revoke-ban")
        self.assertEqual(revoked.status_code, 200, revoked.text)
        self.assertFalse(revoked.json()["user"]["isBanned"])

    def test_malformed_body_maps_to_400(self):
        _, incharge, _ = self.borrow_and_issue()
        response = incharge.post("/api/incharge/issue", json={"requestId": "not-a-number"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("requestId", response.json()["error"])

    def test_transfer_reject_needs_reason(self):
        ee, _ = self.login("eli@uni.test")
        cs, _ = self.login("casey@uni.test")
        created = ee.post("/api/incharge/transfers", json={"itemId": self.scope_id, "toDepartmentId": self.ee_id, "purpose": "Signals lab"})
        self.assertEqual(created.status_code, 201, created.text)
        transfer_id = created.json()["transfer"]["transferRequestID"]

        rejected = cs.post(f"/api/incharge/transfers/{transfer_id}/reject", json={"rejectionReason": "  "})
        self.assertEqual(rejected.status_code, 400)
        self.assertEqual(rejected.json(), {"error": "Rejection reason is required"})
        listed = cs.get("/api/incharge/transfers", params={"direction": "incoming"}).json()
        self.assertEqual(listed[0]["status"], "PENDING")

    def test_admin_settings_endpoints(self):
        student, _ = self.login("sam@uni.test")
        self.assertEqual(student.get("/api/admin/settings").status_code, 403)

        admin, _ = self.login("ada@uni.test")
        current = admin.get("/api/admin/settings")
        self.assertEqual(current.json()["late_return_ban_months"], "6")

        updated = admin.put("/api/admin/settings", json={"settings": [{"key": "late_return_ban_months", "value": "2"}]})
        self.assertEqual(updated.status_code, 200, updated.text)
        self.assertEqual(updated.json()["settings"]["late_return_ban_months"], "2")

        invalid = admin.put("/api/admin/settings", json={"settings": [{"key": "late_return_auto_ban", "value": "maybe"}]})
        self.assertEqual(invalid.status_code, 400)

        reset = admin.post("/api/admin/settings/reset")
        self.assertEqual(reset.json()["settings"]["late_return_ban_months"], "6")

    def test_admin_catalogue_and_department_items(self):
        admin, _ = self.login("ada@uni.test")
        department = admin.post("/api/admin/departments", json={"code": "me", "name": "Mechanical"})
        self.assertEqual(department.status_code, 201, department.text)
        department_id = department.json()["departmentID"]
        category = admin.post("/api/admin/categories", json={"name": "Tools", "maxBorrowDuration": 3})
        item = admin.post(
            "/api/admin/items",
            json={
                "name": "Cordless Drill",
                "categoryId": category.json()["categoryID"],
                "departmentId": department_id,
            },
        )
        self.assertEqual(item.status_code, 201, item.text)
        self.assertEqual(item.json()["manualID"], "ME-001")

        duplicate = admin.post("/api/admin/departments", json={"code": "ME", "name": "Mechanical again"})
        self.assertEqual(duplicate.status_code, 409)

        items = admin.get(f"/api/departments/{department_id}/items")
        self.assertEqual([row["name"] for row in items.json()], ["Cordless Drill"])


    def test_department_list_and_incharge_assignment(self):
        student, _ = self.login("sam@uni.test")
        listed = student.get("/api/departments")
        self.assertEqual(listed.status_code, 200, listed.text)
        self.assertEqual([(row["code"], row["itemCount"]) for row in listed.json()], [("CS", 3), ("EE", 0)])

        forbidden = student.put(f"/api/admin/departments/{self.cs_id}/incharge", json={"inchargeIds": [self.ee_incharge_id]})
        self.assertEqual(forbidden.status_code, 403)

        admin, _ = self.login("ada@uni.test")
        assigned = admin.put(f"/api/admin/departments/{self.cs_id}/incharge", json={"inchargeIds": [self.ee_incharge_id]})
        self.assertEqual(assigned.status_code, 200, assigned.text)
        self.assertEqual(assigned.json()["inchargeIds"], [self.ee_incharge_id])

        eli, _ = self.login("eli@uni.test")
        edited = eli.put(f"/api/admin/items/{self.arduino_id}", json={"location": "Shelf B", "condition": "fair"})
        self.assertEqual(edited.status_code, 200, edited.text)
        self.assertEqual((edited.json()["location"], edited.json()["condition"]), ("Shelf B", "FAIR"))

        casey, _ = self.login("casey@uni.test")
        self.assertEqual(casey.put(f"/api/admin/items/{self.arduino_id}", json={"location": "Shelf C"}).status_code, 403)

        audit = admin.get("/api/admin/audit", params={"entityType": "Item", "entityId": self.arduino_id, "action": "update"})
        self.assertEqual(audit.status_code, 200, audit.text)
        self.assertEqual([entry["changes"] for entry in audit.json()], [{"location": "Shelf B", "condition": "fair"}])
        self.assertEqual(student.get("/api/admin/audit").status_code, 403)

    def test_reports_respect_department_scope(self):
        self.borrow_and_issue()
        casey, _ = self.login("casey@uni.test")
        eli, _ = self.login("eli@uni.test")

        issues = casey.get("/api/admin/reports/issues")
        self.assertEqual(issues.status_code, 200, issues.text)
        self.assertEqual(issues.json()["count"], 1)
        self.assertEqual(eli.get("/api/admin/reports/issues").json()["count"], 0)

        other = eli.get("/api/admin/reports/overdue", params={"departmentId": self.cs_id})
        self.assertEqual(other.status_code, 403)
        self.assertEqual(other.json(), {"error": "You do not have access to this department"})

        inventory = casey.get("/api/admin/reports/inventory", params={"status": "ISSUED"})
        self.assertEqual([row["manualID"] for row in inventory.json()["rows"]], ["CS-001"])
        self.assertEqual(casey.get("/api/admin/reports/inventory", params={"status": "LOST"}).status_code, 400)


if __name__ == "__main__":
    unittest.main()
