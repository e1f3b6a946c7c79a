import os, logging
from flask import Flask, Response, jsonify, redirect, url_for
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.middleware.proxy_fix import ProxyFix

from course_settings import BASE_PATH, BRAND_NAME
from db import create_db_engine

# ---------------- App & config ----------------
app = Flask(__name__)
app.secret_key = os.getenv("SECRET_KEY", "dev-secret-change-me")
app.config.update(
    SESSION_COOKIE_SECURE=os.getenv("SESSION_COOKIE_SECURE", "true").strip().lower() in {"1", "true", "yes"},
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
    MAX_CONTENT_LENGTH=5 * 1024 * 1024,
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL)
log = logging.getLogger("cohort-portal")

# -------------- DB connection --------------
ENGINE = create_db_engine()
app.config["DB_ENGINE"] = ENGINE

# -------------- Template helpers --------------
@app.context_processor
def inject_helpers():
    def bp(path: str) -> str:
        base = (BASE_PATH or "").rstrip("/")
        if not path.startswith("/"):
            path = "/" + path
        return (base + path) or "/"

    return dict(bp=bp, BASE_PATH=BASE_PATH, BRAND_NAME=BRAND_NAME)

# -------------- Routes --------------
@app.get("/")
def home():
    return redirect(url_for("bootcamp.dashboard"))

@app.get("/healthz")
def healthz():
    try:
        with ENGINE.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        log.exception("Health check: database unreachable")
        return jsonify({"ok": False, "db": "down"}), 503
    return jsonify({"ok": True, "db": "up"}), 200

@app.get("/robots.txt")
def robots():
    body = "User-agent: *\nDisallow: /admin/\nDisallow: /bootcamp/\n"
    return Response(body, mimetype="text/plain")

# ---- Blueprints ----
from admin import admin_bp
app.register_blueprint(admin_bp, url_prefix="/admin")

from admin_lms import admin_lms_bp
app.register_blueprint(admin_lms_bp, url_prefix="/admin/lms")

from admin_bootcamp import admin_bootcamp_bp
app.register_blueprint(admin_bootcamp_bp, url_prefix="/admin/bootcamp")

from registration import register_bp
app.register_blueprint(register_bp, url_prefix="/bootcamp")

from bootcamp import bootcamp_bp
app.register_blueprint(bootcamp_bp, url_prefix="/bootcamp")

# Trust the hosting proxy so scheme/host are correct
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)


# ---------------------------------------------------------------
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 8080)), debug=False)
