"""Shared test fixtures: an in-memory database and an app with every blueprint."""
from flask import Flask

from db import create_db_engine
from lms_store import create_action_item, create_cohort, create_content_item, create_lesson, create_week


def memory_engine():
    return create_db_engine("sqlite://")


def make_app(engine):
    from admin import admin_bp
    from admin_bootcamp import admin_bootcamp_bp
    from admin_lms import admin_lms_bp
    from bootcamp import bootcamp_bp
    from registration import register_bp

    app = Flask(__name__)
    app.secret_key = "test-secret"
    app.config.update(TESTING=True, DB_ENGINE=engine)
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(admin_lms_bp, url_prefix="/admin/lms")
    app.register_blueprint(admin_bootcamp_bp, url_prefix="/admin/bootcamp")
    app.register_blueprint(register_bp, url_prefix="/bootcamp")
    app.register_blueprint(bootcamp_bp, url_prefix="/bootcamp")
    return app


def seed_curriculum(engine, name="Spring Cohort", **cohort_fields):
    """One cohort with a kickoff week (mixed lesson + recording lesson) and a second week."""
    cohort = create_cohort(engine, dict({"name": name, "status": "Active"}, **cohort_fields))
    week1 = create_week(engine, cohort["id"], {"title": "Week 1", "sort_order": 0})
    kickoff = create_lesson(engine, week1["id"], {"title": "Kickoff", "sort_order": 0})
    create_content_item(
        engine,
        kickoff["id"],
        {"title": "Intro", "content_type": "video", "embed_url": "https://www.loom.com/embed/x", "sort_order": 0},
    )
    create_content_item(
        engine,
        kickoff["id"],
        {"title": "Notes", "content_type": "text", "content_text": "Read me", "sort_order": 1},
    )
    recording = create_lesson(engine, week1["id"], {"title": "Week 1 Recording", "sort_order": 1})
    create_content_item(
        engine,
        recording["id"],
        {"title": "Call", "content_type": "video", "embed_url": "https://www.loom.com/embed/y", "sort_order": 0},
    )
    create_action_item(engine, week1["id"], {"text": "Set up your inbox", "sort_order": 0})
    week2 = create_week(engine, cohort["id"], {"title": "Week 2", "sort_order": 1})
    create_lesson(engine, week2["id"], {"title": "Outreach", "sort_order": 0})
    return cohort
