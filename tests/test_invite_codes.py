import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from bootcamp_store import (
    create_ai_tool,
    create_invite_code,
    create_student,
    fetch_invite_code_by_code,
    fetch_student,
    fetch_student_grants,
    increment_invite_code_usage,
    save_enrollment_config,
)
from db import StoreError
from invite_codes import (
    CODE_ALPHABET,
    CodeAlreadyRedeemed,
    EmailAlreadyRegistered,
    InviteCodeError,
    display_status,
    generate_invite_code,
    join_link,
    redeem_code,
    register_link,
    register_student,
    resolve_join_product,
    sanitize_custom_code,
    toggled_status,
    validate_invite_code,
)
from lms_store import create_cohort, create_week, fetch_enrollments_for_student

from support import memory_engine

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class DisplayStatusTests(unittest.TestCase):
    def test_maxed_out(self):
        code = {"status": "Active", "max_uses": 5, "use_count": 5, "expires_at": None}
        self.assertEqual(display_status(code, NOW), "Maxed Out")

    def test_expired_wins_over_maxed_out(self):
        code = {"status": "Active", "max_uses": 5, "use_count": 5, "expires_at": NOW - timedelta(days=1)}
        self.assertEqual(display_status(code, NOW), "Expired")

    def test_naive_expiry_treated_as_utc(self):
        code = {"status": "Active", "max_uses": None, "use_count": 0, "expires_at": datetime(2026, 2, 28)}
        self.assertEqual(display_status(code, NOW), "Expired")

    def test_stored_status_otherwise(self):
        self.assertEqual(display_status({"status": "Disabled", "max_uses": None, "use_count": 9}, NOW), "Disabled")
        self.assertEqual(display_status({"status": "Active", "max_uses": 5, "use_count": 4}, NOW), "Active")

    def test_toggle(self):
        self.assertEqual(toggled_status("Active"), "Disabled")
        self.assertEqual(toggled_status("Disabled"), "Active")


class GenerationTests(unittest.TestCase):
    def test_generated_codes_use_alphabet(self):
        code = generate_invite_code()
        self.assertEqual(len(code), 8)
        self.assertTrue(set(code) <= set(CODE_ALPHABET))

    def test_custom_codes_are_sanitized(self):
        self.assertEqual(sanitize_custom_code(" spring-2026 vip! "), "SPRING-2026VIP")
        self.assertEqual(sanitize_custom_code(None), "")

    def test_links(self):
        self.assertEqual(register_link("https://x.io/", "ABC"), "https://x.io/bootcamp/register?code=ABC")
        self.assertEqual(join_link("https://x.io", "gtm"), "https://x.io/bootcamp/join?product=gtm")


class RedemptionTests(unittest.TestCase):
    def setUp(self):
        self.engine = memory_engine()
        self.cohort = create_cohort(self.engine, {"name": "Spring", "status": "Active"})
        self.week = create_week(self.engine, self.cohort["id"], {"title": "Bonus week"})
        create_ai_tool(self.engine, "email-writer", "Email Writer")

    def _code(self, code="SPRING", **extra):
        data = {
            "code": code,
            "cohort_id": self.cohort["id"],
            "max_uses": 2,
            "access_level": "Sprint + AI Tools",
            "tool_grants": [{"tool_slug": "email-writer", "credits": 25}, {"tool_slug": "ghost", "credits": 5}],
            "content_grants": [self.week["id"]],
        }
        data.update(extra)
        return create_invite_code(self.engine, data)

    def test_register_creates_enrolls_and_grants(self):
        self._code()
        student = register_student(self.engine, "Ada@Example.com", "spring", name="Ada")

        self.assertEqual(student["email"], "ada@example.com")
        self.assertEqual(student["access_level"], "Sprint + AI Tools")
        enrollment = fetch_enrollments_for_student(self.engine, student["id"])[0]
        self.assertEqual(enrollment["cohort_id"], self.cohort["id"])
        self.assertEqual(enrollment["enrollment_source"], "invite_code")
        self.assertEqual(enrollment["enrollment_metadata"], {"code": "SPRING"})

        grants = fetch_student_grants(self.engine, student["id"])
        self.assertEqual([(t["slug"], t["credits_total"]) for t in grants["tool_credits"]], [("email-writer", 25)])
        self.assertEqual(grants["week_ids"], [self.week["id"]])
        self.assertEqual(grants["redeemed_codes"], ["SPRING"])
        self.assertEqual(fetch_invite_code_by_code(self.engine, "SPRING")["use_count"], 1)

    def test_register_rejects_known_email_and_bad_input(self):
        self._code()
        create_student(self.engine, {"email": "taken@example.com"})
        with self.assertRaises(EmailAlreadyRegistered):
            register_student(self.engine, "TAKEN@example.com", "SPRING")
        with self.assertRaises(ValueError):
            register_student(self.engine, "not-an-email", "SPRING")
        with self.assertRaises(InviteCodeError):
            register_student(self.engine, "new@example.com", "NOPE")
        self.assertEqual(fetch_invite_code_by_code(self.engine, "SPRING")["use_count"], 0)

    def test_seat_released_when_student_creation_fails(self):
        self._code()
        with patch("invite_codes.create_student", side_effect=StoreError("insert failed")):
            with self.assertRaises(StoreError):
                register_student(self.engine, "late@example.com", "SPRING")
        self.assertEqual(fetch_invite_code_by_code(self.engine, "SPRING")["use_count"], 0)

    def test_maxed_out_code_is_rejected(self):
        self._code(max_uses=1)
        register_student(self.engine, "one@example.com", "SPRING")
        with self.assertRaises(InviteCodeError):
            register_student(self.engine, "two@example.com", "SPRING")
        self.assertFalse(increment_invite_code_usage(self.engine, "SPRING"))

    def test_disabled_and_expired_codes_are_invalid(self):
        self._code("OFF", status="Disabled")
        self._code("OLD", expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc))
        for code in ("OFF", "OLD", "MISSING"):
            with self.subTest(code=code), self.assertRaises(InviteCodeError):
                validate_invite_code(self.engine, code)

    def test_redeem_once_per_student(self):
        self._code("UPGRADE", access_level="Full Access", tool_grants=[], content_grants=[])
        student = create_student(self.engine, {"email": "lead@example.com", "access_level": "Lead Magnet"})

        result = redeem_code(self.engine, student["id"], "upgrade")
        self.assertTrue(result["access_upgraded"])
        self.assertEqual(fetch_student(self.engine, student["id"])["access_level"], "Full Access")
        self.assertEqual(
            [e["cohort_id"] for e in fetch_enrollments_for_student(self.engine, student["id"])], [self.cohort["id"]]
        )

        with self.assertRaises(CodeAlreadyRedeemed):
            redeem_code(self.engine, student["id"], "UPGRADE")
        self.assertEqual(fetch_invite_code_by_code(self.engine, "UPGRADE")["use_count"], 1)

    def test_join_product_needs_an_active_code(self):
        save_enrollment_config(
            self.engine,
            {
                "products": {
                    "gtm": {"name": "GTM", "active_cohort_id": self.cohort["id"], "active_invite_code": "SPRING"},
                    "paused": {"name": "Paused", "active_cohort_id": None, "active_invite_code": None},
                }
            },
        )
        self.assertEqual(resolve_join_product(self.engine, "gtm")["active_invite_code"], "SPRING")
        self.assertIsNone(resolve_join_product(self.engine, "paused"))
        self.assertIsNone(resolve_join_product(self.engine, "unknown"))


if __name__ == "__main__":
    unittest.main()
