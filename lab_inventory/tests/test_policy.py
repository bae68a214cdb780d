import unittest
from datetime import datetime, timedelta
from types import SimpleNamespace

from lab_inventory.models.enums import ItemCondition, ItemStatus, Role
from lab_inventory.services.access_service import parse_role, role_of
from lab_inventory.services.policy import (
    BannedIndefinitely,
    BannedUntil,
    NotBanned,
    add_months,
    apply_ban_state,
    ban_state_of,
    days_late,
    decide_return,
    describe_ban,
    is_blocked,
)
from lab_inventory.tests.support import default_settings


NOW = datetime(2026, 3, 2, 10, 0, 0)


class BanStateTests(unittest.TestCase):
    def test_flag_pair_maps_to_variants(self):
        self.assertEqual(ban_state_of(SimpleNamespace(IsBanned=False, BannedUntil=None)), NotBanned())
        self.assertEqual(ban_state_of(SimpleNamespace(IsBanned=True, BannedUntil=None)), BannedIndefinitely())
        self.assertEqual(ban_state_of(SimpleNamespace(IsBanned=True, BannedUntil=NOW)), BannedUntil(NOW))

    def test_not_banned_clears_stale_date(self):
        user = SimpleNamespace(IsBanned=True, BannedUntil=NOW)
        apply_ban_state(user, NotBanned())
        self.assertFalse(user.IsBanned)
        self.assertIsNone(user.BannedUntil)

    def test_expired_timed_ban_still_blocks(self):
        state = BannedUntil(NOW - timedelta(days=30))
        self.assertTrue(is_blocked(state))
        self.assertFalse(is_blocked(NotBanned()))

    def test_describe_ban(self):
        self.assertEqual(describe_ban(BannedUntil(datetime(2026, 9, 2))), "You are banned until 2026-09-02")
        self.assertIn("indefinitely", describe_ban(BannedIndefinitely()))
        self.assertIsNone(describe_ban(NotBanned()))


class CalendarTests(unittest.TestCase):
    def test_add_months_clamps_to_month_end(self):
        self.assertEqual(add_months(datetime(2026, 8, 31, 9), 6), datetime(2027, 2, 28, 9))
        self.assertEqual(add_months(datetime(2026, 3, 2), 6), datetime(2026, 9, 2))
        self.assertEqual(add_months(datetime(2026, 11, 15), 3), datetime(2027, 2, 15))

    def test_days_late_rounds_partial_days_up(self):
        due = datetime(2026, 3, 10, 12, 0)
        self.assertEqual(days_late(due, due), 0)
        self.assertEqual(days_late(due, due - timedelta(days=1)), 0)
        self.assertEqual(days_late(due, due + timedelta(minutes=1)), 1)
        self.assertEqual(days_late(due, due + timedelta(days=2)), 2)
        self.assertEqual(days_late(due, due + timedelta(days=2, hours=1)), 3)

    def test_parse_role(self):
        self.assertEqual(parse_role(" incharge "), Role.INCHARGE)
        self.assertIsNone(parse_role("janitor"))
        self.assertEqual(role_of(SimpleNamespace(Role=" admin ")), Role.ADMIN)
        self.assertIsNone(role_of(SimpleNamespace(Role=None)))


class DecideReturnTests(unittest.TestCase):
    def setUp(self):
        self.settings = default_settings()

    def decide(self, *, late_by=None, condition=ItemCondition.GOOD, pending=False, settings=None):
        expected = NOW - late_by if late_by is not None else NOW + timedelta(days=1)
        return decide_return(
            expected_return=expected,
            condition=condition,
            is_pending_replacement=pending,
            settings=settings or self.settings,
            now=NOW,
        )

    def test_on_time_good_return_changes_nothing(self):
        decision = self.decide()
        self.assertEqual(decision.item_status, ItemStatus.AVAILABLE)
        self.assertIsNone(decision.ban)
        self.assertFalse(decision.is_late)
        self.assertEqual(decision.days_late, 0)

    def test_late_return_bans_for_configured_months_for_every_condition(self):
        for condition in ItemCondition:
            with self.subTest(condition=condition):
                decision = self.decide(late_by=timedelta(days=2), condition=condition)
                self.assertEqual(decision.ban, BannedUntil(datetime(2026, 9, 2, 10, 0)))
                self.assertTrue(decision.late_ban)
                self.assertEqual(decision.days_late, 2)

    def test_ban_length_follows_settings(self):
        decision = self.decide(late_by=timedelta(hours=3), settings=default_settings(late_return_ban_months="2"))
        self.assertEqual(decision.ban, BannedUntil(datetime(2026, 5, 2, 10, 0)))
        self.assertEqual(decision.days_late, 1)

    def test_pending_replacement_bans_indefinitely(self):
        decision = self.decide(condition=ItemCondition.DAMAGED, pending=True)
        self.assertEqual(decision.ban, BannedIndefinitely())
        self.assertTrue(decision.compensation_ban)
        self.assertEqual(decision.item_status, ItemStatus.PENDING_REPLACEMENT)

    def test_late_and_pending_replacement_gets_timed_ban_only(self):
        decision = self.decide(late_by=timedelta(days=1), condition=ItemCondition.DAMAGED, pending=True)
        self.assertIsInstance(decision.ban, BannedUntil)
        self.assertFalse(decision.compensation_ban)
        self.assertEqual(decision.item_status, ItemStatus.PENDING_REPLACEMENT)

    def test_auto_ban_disabled_falls_back_to_compensation_branch(self):
        settings = default_settings(late_return_auto_ban="false")
        self.assertIsNone(self.decide(late_by=timedelta(days=4), settings=settings).ban)
        decision = self.decide(late_by=timedelta(days=4), condition=ItemCondition.DAMAGED, pending=True, settings=settings)
        self.assertEqual(decision.ban, BannedIndefinitely())
        self.assertTrue(decision.is_late)

    def test_item_disposition(self):
        self.assertEqual(self.decide(condition=ItemCondition.UNDER_REPAIR).item_status, ItemStatus.MAINTENANCE)
        self.assertEqual(self.decide(condition=ItemCondition.DAMAGED).item_status, ItemStatus.AVAILABLE)
        self.assertEqual(self.decide(condition=ItemCondition.FAIR, pending=True).item_status, ItemStatus.AVAILABLE)
        self.assertEqual(self.decide(condition=ItemCondition.DAMAGED).item_condition, ItemCondition.DAMAGED)


if __name__ == "__main__":
    unittest.main()
