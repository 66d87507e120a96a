"""
Tests for pairing codes and the allow list they extend.
"""

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

from concurrency.locks import LockManager
from core.database import Database
from core.pairing_codes import generate_pairing_code, normalize_pairing_code
from tracking.errors import AdminOnlyError, InvalidPairingCodeError, PairingError
from tracking.pairing import AccessControl
from tracking.store import ReleaseStore

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
ADMIN = 100


class TestCodeFormat(unittest.TestCase):

    def test_generated_codes_are_canonical(self):
        for _ in range(20):
            code = generate_pairing_code()
            self.assertEqual(normalize_pairing_code(code), code)

    def test_typed_codes_are_normalized(self):
        self.assertEqual(normalize_pairing_code(" 3f9a-07c2 "), "3F9A-07C2")
        self.assertEqual(normalize_pairing_code("3F9A - 07C2"), "3F9A-07C2")

    def test_malformed_codes(self):
        for text in ("", "3F9A07C2", "3F9A-07C", "GGGG-0000", "3F9A_07C2", None, 1234):
            with self.subTest(text=text):
                self.assertIsNone(normalize_pairing_code(text))


class PairingTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        db = Database(Path(self._tmp.name) / "pairing.db", lock_manager=LockManager())
        db.initialize()
        self.store = ReleaseStore(db)

    def tearDown(self):
        self._tmp.cleanup()


class TestStorePairing(PairingTestCase):
    """Code creation and single-use redemption."""

    def test_create_sets_expiry(self):
        pairing = self.store.create_pairing_code(ADMIN, ttl_hours=48, now=T0)
        self.assertEqual(pairing.expires_at, T0 + timedelta(hours=48))
        stored = self.store.get_pairing_code(pairing.code)
        self.assertEqual(stored.created_by, ADMIN)
        self.assertEqual(stored.expires_at, pairing.expires_at)
        self.assertFalse(stored.used)

    def test_redeem_registers_user(self):
        pairing = self.store.create_pairing_code(ADMIN, now=T0)
        redeemed = self.store.redeem_pairing_code(pairing.code.lower(), 7, now=T0 + timedelta(hours=1))
        self.assertEqual(redeemed.used_by, 7)
        self.assertEqual(self.store.list_users(), [7])
        self.assertEqual(self.store.list_paired_users(), [7])
        self.assertTrue(self.store.is_paired_user(7))
        self.assertFalse(self.store.is_paired_user(8))

    def test_code_is_single_use(self):
        pairing = self.store.create_pairing_code(ADMIN, now=T0)
        self.store.redeem_pairing_code(pairing.code, 7, now=T0)
        with self.assertRaises(InvalidPairingCodeError) as ctx:
            self.store.redeem_pairing_code(pairing.code, 8, now=T0)
        self.assertIn("already used", str(ctx.exception))
        self.assertEqual(self.store.get_pairing_code(pairing.code).used_by, 7)
        self.assertFalse(self.store.is_paired_user(8))

    def test_expired_code(self):
        pairing = self.store.create_pairing_code(ADMIN, ttl_hours=48, now=T0)
        with self.assertRaises(InvalidPairingCodeError) as ctx:
            self.store.redeem_pairing_code(pairing.code, 7, now=T0 + timedelta(hours=48))
        self.assertIn("expired", str(ctx.exception))
        self.assertEqual(self.store.list_users(), [])
        self.assertIsNone(self.store.get_pairing_code(pairing.code).used_at)

    def test_bad_format_and_unknown_code(self):
        with self.assertRaises(InvalidPairingCodeError):
            self.store.redeem_pairing_code("not-a-code", 7)
        with self.assertRaises(InvalidPairingCodeError) as ctx:
            self.store.redeem_pairing_code("0000-0000", 7)
        self.assertIn("does not exist", str(ctx.exception))

    def test_colliding_code_is_regenerated(self):
        with patch("tracking.store.generate_pairing_code", side_effect=["AAAA-0001", "AAAA-0001", "AAAA-0002"]):
            first = self.store.create_pairing_code(ADMIN, now=T0)
            second = self.store.create_pairing_code(ADMIN, now=T0)
        self.assertEqual(first.code, "AAAA-0001")
        self.assertEqual(second.code, "AAAA-0002")

    def test_gives_up_when_every_code_collides(self):
        with patch("tracking.store.generate_pairing_code", return_value="AAAA-0001"):
            self.store.create_pairing_code(ADMIN, now=T0)
            with self.assertRaises(PairingError):
                self.store.create_pairing_code(ADMIN, now=T0)


class TestAccessControl(PairingTestCase):
    """Admin gate and the combined allow list."""

    def setUp(self):
        super().setUp()
        self.access = AccessControl(self.store, admin_user=ADMIN, allowed_users=[ADMIN, 5])

    def test_only_admin_issues_codes(self):
        with self.assertRaises(AdminOnlyError):
            self.access.issue_code(5)
        pairing = self.access.issue_code(ADMIN)
        self.assertEqual(pairing.created_by, ADMIN)

    def test_no_admin_configured(self):
        access = AccessControl(self.store)
        with self.assertRaises(AdminOnlyError):
            access.issue_code(0)

    def test_redeemed_user_is_allowed(self):
        self.assertFalse(self.access.is_allowed(7))
        pairing = self.access.issue_code(ADMIN)
        self.access.redeem_code(7, pairing.code)
        self.assertTrue(self.access.is_allowed(7))
        self.assertEqual(self.access.allowed_user_ids(), [5, 7, ADMIN])

    def test_allowed_user_cannot_spend_a_code(self):
        pairing = self.access.issue_code(ADMIN)
        with self.assertRaises(PairingError):
            self.access.redeem_code(5, pairing.code)
        self.assertFalse(self.store.get_pairing_code(pairing.code).used)

    def test_unrestricted_deployment(self):
        access = AccessControl(self.store)
        self.assertTrue(access.is_allowed(12345))
        self.assertIsNone(access.allowed_user_ids())


if __name__ == "__main__":
    unittest.main()
