import unittest

from curriculum_copy import (
    duplicate_cohort,
    import_curriculum_from_cohort,
    is_recording_only,
    preview_cohort_import,
)
from db import StoreError
from lms_store import create_cohort, create_week, fetch_cohort, fetch_curriculum

from support import memory_engine, seed_curriculum


def _lesson(title, *types):
    return {"title": title, "content_items": [{"title": f"{title} {i}", "content_type": t} for i, t in enumerate(types)]}


class RecordingFilterTests(unittest.TestCase):
    def test_recording_lesson_needs_title_and_only_videos(self):
        self.assertTrue(is_recording_only(_lesson("Week 3 Recording", "video", "video")))
        self.assertFalse(is_recording_only(_lesson("Week 3 Recording", "video", "text")))
        self.assertFalse(is_recording_only(_lesson("Kickoff", "video")))
        self.assertFalse(is_recording_only(_lesson("Week 3 Recording")))

    def test_preview_skips_recording_lessons_and_video_items(self):
        curriculum = [
            {
                "title": "Week 3",
                "lessons": [_lesson("Week 3 Recording", "video", "video"), _lesson("Kickoff", "video", "text")],
                "action_items": [{"text": "Do the thing"}],
            }
        ]
        stats = preview_cohort_import(curriculum, exclude_recordings=True)
        self.assertEqual((stats.weeks, stats.lessons, stats.content, stats.actions), (1, 1, 1, 1))
        self.assertEqual((stats.skipped_lessons, stats.skipped_content), (1, 3))
        self.assertEqual(stats.total_steps, 4)

        everything = preview_cohort_import(curriculum, exclude_recordings=False)
        self.assertEqual((everything.lessons, everything.content), (2, 4))
        self.assertEqual((everything.skipped_lessons, everything.skipped_content), (0, 0))


class CrossCohortImportTests(unittest.TestCase):
    def setUp(self):
        self.engine = memory_engine()
        self.source = seed_curriculum(self.engine)
        self.target = create_cohort(self.engine, {"name": "Autumn Cohort"})
        create_week(self.engine, self.target["id"], {"title": "Existing", "sort_order": 0})

    def test_appends_after_existing_weeks_and_excludes_recordings(self):
        progress = []
        result = import_curriculum_from_cohort(
            self.engine,
            self.source["id"],
            self.target["id"],
            exclude_recordings=True,
            on_progress=lambda c, t, label: progress.append((c, t)),
        )
        self.assertEqual(result.failed, [])
        self.assertEqual(
            (result.weeks_created, result.lessons_created, result.content_items_created, result.action_items_created),
            (2, 2, 1, 1),
        )
        self.assertEqual((result.skipped_lessons, result.skipped_content), (1, 2))
        self.assertEqual(progress[-1], (6, 6))

        weeks = fetch_curriculum(self.engine, self.target["id"])
        self.assertEqual([(w["title"], w["sort_order"]) for w in weeks], [("Existing", 0), ("Week 1", 1), ("Week 2", 2)])
        kickoff = weeks[1]["lessons"][0]
        self.assertEqual([i["title"] for i in kickoff["content_items"]], ["Notes"])
        self.assertEqual(kickoff["content_items"][0]["sort_order"], 0)
        self.assertEqual([a["text"] for a in weeks[1]["action_items"]], ["Set up your inbox"])

    def test_include_recordings_copies_everything(self):
        result = import_curriculum_from_cohort(self.engine, self.source["id"], self.target["id"], exclude_recordings=False)
        self.assertEqual((result.lessons_created, result.content_items_created), (3, 3))

    def test_source_must_differ_from_target(self):
        with self.assertRaises(StoreError):
            import_curriculum_from_cohort(self.engine, self.source["id"], self.source["id"])


class DuplicateCohortTests(unittest.TestCase):
    def test_copies_settings_and_full_curriculum(self):
        engine = memory_engine()
        source = seed_curriculum(
            engine,
            sidebar_label="Spring",
            payment_product_id="prod_123",
            onboarding_config={"enabled": True, "steps": ["welcome", "complete"]},
        )
        copy = duplicate_cohort(engine, source["id"], "Spring Cohort (Copy)")

        stored = fetch_cohort(engine, copy["id"])
        self.assertEqual(stored["status"], "Draft")
        self.assertEqual(stored["sidebar_label"], "Spring")
        self.assertEqual(stored["onboarding_config"], {"enabled": True, "steps": ["welcome", "complete"]})
        self.assertIsNone(stored["payment_product_id"])

        result = copy["copy_result"]
        self.assertEqual((result.weeks_created, result.lessons_created, result.content_items_created), (2, 3, 3))
        titles = [[l["title"] for l in w["lessons"]] for w in fetch_curriculum(engine, copy["id"])]
        self.assertEqual(titles, [["Kickoff", "Week 1 Recording"], ["Outreach"]])

    def test_unknown_source(self):
        with self.assertRaises(StoreError):
            duplicate_cohort(memory_engine(), "missing", "Copy")


if __name__ == "__main__":
    unittest.main()
