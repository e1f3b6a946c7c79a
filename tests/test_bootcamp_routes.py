import unittest

from bootcamp_store import create_student, fetch_student, fetch_survey
from lms_store import (
    enroll_student,
    fetch_completed_lesson_ids,
    fetch_curriculum,
    fetch_enrollments_for_student,
    update_cohort,
)

from support import make_app, memory_engine, seed_curriculum


class LearnerTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = memory_engine()
        self.app = make_app(self.engine)
        self.client = self.app.test_client()
        self.cohort = seed_curriculum(self.engine)
        self.student = create_student(self.engine, {"email": "learner@example.com", "name": "Lee"})
        enroll_student(self.engine, self.student["id"], self.cohort["id"])

    def sign_in(self):
        with self.client.session_transaction() as sess:
            sess["student_id"] = self.student["id"]


class SignInTests(LearnerTestCase):
    def test_dashboard_requires_sign_in(self):
        resp = self.client.get("/bootcamp/")
        self.assertIn("/bootcamp/signin", resp.headers["Location"])

    def test_sign_in_by_email(self):
        resp = self.client.post("/bootcamp/signin", data={"email": "LEARNER@example.com"})
        self.assertTrue(resp.headers["Location"].endswith("/bootcamp/"))
        dashboard = self.client.get("/bootcamp/")
        self.assertEqual(dashboard.status_code, 200)
        self.assertIn(b"Spring Cohort", dashboard.data)

    def test_unknown_email(self):
        self.client.post("/bootcamp/signin", data={"email": "who@example.com"})
        with self.client.session_transaction() as sess:
            self.assertNotIn("student_id", sess)

    def test_sign_in_with_code_continues_to_redeem(self):
        resp = self.client.post("/bootcamp/signin", data={"email": "learner@example.com", "code": "SPRING"})
        self.assertIn("/bootcamp/register?code=SPRING", resp.headers["Location"])


class CohortPageTests(LearnerTestCase):
    def test_curriculum_renders_and_remembers_active_cohort(self):
        self.sign_in()
        resp = self.client.get(f"/bootcamp/cohorts/{self.cohort['id']}")
        self.assertEqual(resp.status_code, 200)
        self.assertIn(b"Kickoff", resp.data)
        self.assertIn(b"Read me", resp.data)
        with self.client.session_transaction() as sess:
            self.assertEqual(sess["portal.active_cohort_id"], self.cohort["id"])

    def test_not_enrolled_is_404(self):
        other = seed_curriculum(self.engine, name="Other")
        self.sign_in()
        self.assertEqual(self.client.get(f"/bootcamp/cohorts/{other['id']}").status_code, 404)

    def test_lesson_completion_json(self):
        self.sign_in()
        lesson = fetch_curriculum(self.engine, self.cohort["id"])[0]["lessons"][0]
        resp = self.client.post(f"/bootcamp/lessons/{lesson['id']}/complete", json={"completed": True})
        self.assertTrue(resp.get_json()["completed"])
        self.assertEqual(fetch_completed_lesson_ids(self.engine, self.student["id"]), [lesson["id"]])

        self.client.post(f"/bootcamp/lessons/{lesson['id']}/complete", json={"completed": False})
        self.assertEqual(fetch_completed_lesson_ids(self.engine, self.student["id"]), [])

    def test_theme_toggle(self):
        resp = self.client.post("/bootcamp/theme", json={})
        self.assertEqual(resp.get_json()["theme"], "dark")


class OnboardingFlowTests(LearnerTestCase):
    def setUp(self):
        super().setUp()
        update_cohort(
            self.engine,
            self.cohort["id"],
            {
                "onboarding_config": {
                    "enabled": True,
                    "welcome_message": "Hello builders",
                    "survey_enabled": True,
                    "calcom_enabled": True,
                    "calcom_booking_url": "https://cal.com/team/kickoff",
                    "calcom_qualify_field": "company_size",
                    "calcom_qualify_values": ["11-50"],
                    "steps": ["welcome", "survey", "booking", "complete"],
                }
            },
        )
        self.sign_in()
        self.url = f"/bootcamp/cohorts/{self.cohort['id']}/onboarding"

    def test_cohort_page_redirects_until_onboarded(self):
        resp = self.client.get(f"/bootcamp/cohorts/{self.cohort['id']}")
        self.assertIn(self.url, resp.headers["Location"])

    def test_walk_through_wizard(self):
        self.assertIn(b"Hello builders", self.client.get(self.url).data)

        self.client.post(self.url, data={"action": "next"})
        self.assertIn(b"Tell us about you", self.client.get(self.url).data)

        self.client.post(
            self.url,
            data={"action": "next", "company_size": "1", "biggest_challenges": ["Finding leads", "Writing copy"]},
        )
        survey = fetch_survey(self.engine, self.student["id"])
        self.assertEqual(survey["company_size"], "1")
        self.assertEqual(survey["biggest_challenges"], ["Finding leads", "Writing copy"])

        booking = self.client.get(self.url)
        self.assertIn(b"reach out if we think a call would help", booking.data)
        self.assertNotIn(b"cal.com/team/kickoff", booking.data)

        self.client.post(self.url, data={"action": "back"})
        self.assertIn(b"Tell us about you", self.client.get(self.url).data)
        self.client.post(self.url, data={"action": "next", "company_size": "11-50"})
        self.assertIn(b"cal.com/team/kickoff", self.client.get(self.url).data)

        self.client.post(self.url, data={"action": "next"})
        resp = self.client.post(self.url, data={"action": "next"})
        self.assertTrue(resp.headers["Location"].endswith(f"/bootcamp/cohorts/{self.cohort['id']}"))

        enrollment = fetch_enrollments_for_student(self.engine, self.student["id"])[0]
        self.assertIsNotNone(enrollment["onboarding_completed_at"])
        self.assertEqual(fetch_student(self.engine, self.student["id"])["status"], "Active")
        self.assertEqual(self.client.get(f"/bootcamp/cohorts/{self.cohort['id']}").status_code, 200)


class SurveyApiTests(LearnerTestCase):
    def test_json_survey(self):
        self.sign_in()
        resp = self.client.post("/bootcamp/survey", json={"company_name": "Acme", "unknown": "dropped"})
        self.assertTrue(resp.get_json()["ok"])
        self.assertEqual(fetch_survey(self.engine, self.student["id"])["company_name"], "Acme")

    def test_requires_sign_in(self):
        self.assertEqual(self.client.post("/bootcamp/survey", json={}).status_code, 401)


if __name__ == "__main__":
    unittest.main()
