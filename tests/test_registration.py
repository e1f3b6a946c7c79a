import unittest
from unittest.mock import patch

from bootcamp_store import create_invite_code, create_student, fetch_invite_code_by_code, fetch_student_by_email, save_enrollment_config
from lms_store import create_cohort, fetch_enrollments_for_student

from support import make_app, memory_engine


class RegistrationRouteTests(unittest.TestCase):
    def setUp(self):
        self.engine = memory_engine()
        self.app = make_app(self.engine)
        self.client = self.app.test_client()
        self.cohort = create_cohort(self.engine, {"name": "Spring Sprint", "status": "Active"})
        create_invite_code(self.engine, {"code": "SPRING", "cohort_id": self.cohort["id"], "max_uses": 10})

    def test_valid_code_shows_cohort(self):
        resp = self.client.get("/bootcamp/register?code=spring")
        self.assertEqual(resp.status_code, 200)
        self.assertIn(b"Spring Sprint", resp.data)

    def test_invalid_code_is_404(self):
        resp = self.client.get("/bootcamp/register?code=NOPE")
        self.assertEqual(resp.status_code, 404)
        self.assertIn(b"Invalid or expired invite code", resp.data)

    def test_closed_registration(self):
        with patch("registration.PUBLIC_REGISTRATION_ENABLED", False):
            resp = self.client.get("/bootcamp/register?code=SPRING")
        self.assertEqual(resp.status_code, 403)

    def test_register_signs_in_and_notifies(self):
        with patch("registration.notify_registration") as notify:
            resp = self.client.post(
                "/bootcamp/register", data={"code": "spring", "email": "Ada@Example.com", "name": "Ada"}
            )
        self.assertEqual(resp.status_code, 302)
        self.assertTrue(resp.headers["Location"].endswith("/bootcamp/"))

        student = fetch_student_by_email(self.engine, "ada@example.com")
        notify.assert_called_once()
        self.assertEqual(notify.call_args[0][1:], ("SPRING", "Spring Sprint"))
        with self.client.session_transaction() as sess:
            self.assertEqual(sess["student_id"], student["id"])
        self.assertEqual(fetch_invite_code_by_code(self.engine, "SPRING")["use_count"], 1)

    def test_notification_failure_does_not_block_registration(self):
        with patch("registration.notify_registration", side_effect=RuntimeError("smtp exploded")):
            resp = self.client.post("/bootcamp/register", data={"code": "SPRING", "email": "b@example.com"})
        self.assertEqual(resp.status_code, 302)
        self.assertIsNotNone(fetch_student_by_email(self.engine, "b@example.com"))

    def test_known_email_goes_to_sign_in(self):
        create_student(self.engine, {"email": "known@example.com"})
        resp = self.client.post("/bootcamp/register", data={"code": "SPRING", "email": "known@example.com"})
        self.assertEqual(resp.status_code, 302)
        self.assertIn("/bootcamp/signin?code=SPRING", resp.headers["Location"])

    def test_bad_email_rerenders_form(self):
        resp = self.client.post("/bootcamp/register", data={"code": "SPRING", "email": "nope"})
        self.assertEqual(resp.status_code, 400)
        self.assertIn(b"valid email", resp.data)

    def test_signed_in_student_redeems_and_repeat_visit_is_quiet(self):
        student = create_student(self.engine, {"email": "member@example.com"})
        with self.client.session_transaction() as sess:
            sess["student_id"] = student["id"]

        first = self.client.get("/bootcamp/register?code=SPRING")
        self.assertEqual(first.status_code, 302)
        self.assertEqual(len(fetch_enrollments_for_student(self.engine, student["id"])), 1)

        self.client.get("/bootcamp/register?code=SPRING")
        with self.client.session_transaction() as sess:
            flashes = sess.get("_flashes", [])
        self.assertFalse([m for category, m in flashes if category == "error"])
        self.assertEqual(fetch_invite_code_by_code(self.engine, "SPRING")["use_count"], 1)

    def test_join_link(self):
        save_enrollment_config(
            self.engine,
            {"products": {"gtm": {"name": "GTM", "active_cohort_id": self.cohort["id"], "active_invite_code": "SPRING"}}},
        )
        resp = self.client.get("/bootcamp/join?product=GTM")
        self.assertEqual(resp.status_code, 302)
        self.assertIn("/bootcamp/register?code=SPRING", resp.headers["Location"])
        self.assertEqual(self.client.get("/bootcamp/join?product=other").status_code, 404)


if __name__ == "__main__":
    unittest.main()
