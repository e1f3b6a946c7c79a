import unittest

from client_state import ClientState, MemoryBackend, SessionBackend
from drafts import Draft
from onboarding import NO_CALL_MESSAGE, OnboardingWizard, booking_view, build_steps, qualifies_for_booking


class BuildStepsTests(unittest.TestCase):
    def test_defaults_when_unconfigured(self):
        self.assertEqual(build_steps(None), ["welcome", "complete"])
        self.assertEqual(build_steps({"steps": []}), ["welcome", "complete"])

    def test_drops_unknown_and_switched_off_steps(self):
        config = {
            "steps": ["welcome", "video", "survey", "quiz", "booking", "complete"],
            "survey_enabled": True,
            "calcom_enabled": False,
        }
        self.assertEqual(build_steps(config), ["welcome", "survey", "complete"])

        config["welcome_video_url"] = "https://youtu.be/dQw4w9WgXcQ"
        config["calcom_enabled"] = True
        self.assertEqual(build_steps(config), ["welcome", "video", "survey", "booking", "complete"])


class WizardTests(unittest.TestCase):
    def setUp(self):
        self.config = {"enabled": True, "steps": ["welcome", "survey", "complete"], "survey_enabled": True}

    def test_walks_forward_and_back(self):
        wizard = OnboardingWizard(self.config)
        self.assertEqual((wizard.current_step, wizard.progress_percent), ("welcome", 33))
        self.assertFalse(wizard.go_next())
        self.assertEqual(wizard.current_step, "survey")
        wizard.go_back()
        wizard.go_back()
        self.assertEqual(wizard.index, 0)
        self.assertFalse(wizard.go_next())
        self.assertFalse(wizard.go_next())
        self.assertTrue(wizard.is_last_step)
        self.assertEqual(wizard.progress_percent, 100)
        self.assertTrue(wizard.go_next())
        self.assertEqual(wizard.current_step, "complete")

    def test_stored_index_is_clamped(self):
        self.assertEqual(OnboardingWizard(self.config, 42).current_step, "complete")
        self.assertEqual(OnboardingWizard(self.config, -3).current_step, "welcome")

    def test_welcome_video_embed(self):
        wizard = OnboardingWizard({"welcome_video_url": "https://youtu.be/dQw4w9WgXcQ", "steps": ["video"]})
        self.assertEqual(wizard.welcome_video_embed, "https://www.youtube.com/embed/dQw4w9WgXcQ?rel=0")


class BookingTests(unittest.TestCase):
    config = {
        "calcom_booking_url": "https://cal.com/team/kickoff",
        "calcom_qualify_field": "company_size",
        "calcom_qualify_values": ["11-50", "51-200"],
    }

    def test_qualified_answers_get_the_link(self):
        view = booking_view(self.config, {"company_size": "11-50"})
        self.assertEqual(view, {"qualified": True, "booking_url": "https://cal.com/team/kickoff", "message": None})

    def test_everyone_else_gets_the_message(self):
        self.assertEqual(booking_view(self.config, {"company_size": "1"})["message"], NO_CALL_MESSAGE)
        self.assertFalse(booking_view(self.config, None)["qualified"])

    def test_no_rule_means_everyone_qualifies(self):
        view = booking_view({"calcom_booking_url": "https://cal.com/x"}, {})
        self.assertTrue(view["qualified"])
        self.assertFalse(booking_view({}, {})["qualified"])

    def test_empty_value_list_qualifies_nobody(self):
        config = {"calcom_qualify_field": "company_size", "calcom_qualify_values": []}
        self.assertFalse(qualifies_for_booking(config, {"company_size": "11-50"}))
        self.assertTrue(qualifies_for_booking({"calcom_qualify_field": "company_size"}, {"company_size": "1"}))


class ClientStateTests(unittest.TestCase):
    def test_active_cohort_falls_back_to_first_enrollment(self):
        state = ClientState(MemoryBackend({"portal.active_cohort_id": "gone"}))
        self.assertEqual(state.pick_active_cohort(["a", "b"]), "a")
        state.active_cohort_id = "b"
        self.assertEqual(state.pick_active_cohort(["a", "b"]), "b")
        self.assertIsNone(state.pick_active_cohort([]))
        self.assertNotIn("portal.active_cohort_id", state.backend.data)

    def test_theme_and_onboarding_positions_on_a_mapping(self):
        session = {}
        state = ClientState(SessionBackend(session))
        self.assertEqual(state.theme, "light")
        self.assertEqual(state.toggle_theme(), "dark")
        self.assertEqual(session["portal.theme"], "dark")

        state.set_onboarding_index("c1", 2)
        self.assertEqual(state.onboarding_index("c1"), 2)
        self.assertEqual(state.onboarding_index("c2"), 0)
        state.clear_onboarding("c1")
        self.assertEqual(state.onboarding_index("c1"), 0)


class DraftTests(unittest.TestCase):
    def test_only_changed_fields_are_saved(self):
        draft = Draft({"id": "1", "name": "Ada", "company": None}, ("name", "company"))
        draft.apply({"name": "Ada", "company": "Acme", "ignored": "x"})
        self.assertTrue(draft.is_dirty)

        saved = []
        draft.submit(lambda changes: saved.append(changes) or changes)
        self.assertEqual(saved, [{"company": "Acme"}])
        self.assertFalse(draft.is_dirty)

    def test_clean_draft_skips_save(self):
        draft = Draft({"name": "Ada"}, ("name",)).apply({"name": "Ada"})
        self.assertIsNone(draft.submit(lambda changes: self.fail("save should not be called")))


if __name__ == "__main__":
    unittest.main()
