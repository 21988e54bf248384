from __future__ import annotations

from flask import Flask, jsonify
from flask_cors import CORS
import os
from pathlib import Path
from dotenv import load_dotenv
import logging
from auditlog.logging_setup import start_log
from .errors import register_error_handlers
from .search import bp as bp_auditlogs
import auditlog.db as db
from auditlog.config_loader import initialize_app_config

# Load backend/.env explicitly (does nothing if file doesn't exist)
DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(DOTENV_PATH, override=False)

start_log(app_name="auditlog", level=logging.DEBUG if os.getenv("FLASK_ENV") == "development" else None)
log = logging.getLogger(__name__)


def create_app():
    """Instantiate and fully configure the Flask application instance."""

    app = Flask(__name__)

    # The search API is consumed from browser dashboards on other origins.
    CORS(app)

    log.info("Flask ENV: %s", os.getenv("FLASK_ENV") or "production")
    if os.getenv("FLASK_ENV") == "development":
        log.setLevel(logging.DEBUG)
        app.logger.setLevel(logging.DEBUG)
        log.debug("Start of logger debug level")

    app.register_blueprint(bp_auditlogs)

    initialize_app_config(app)

    # Every blueprint shares the same JSON error format and logging behavior.
    register_error_handlers(app)

    @app.get("/api/health")
    def health():
        """Database reachability probe for monitoring."""
        if not db.ping_db():
            return jsonify(ok=False, error="database unreachable"), 503
        return jsonify(ok=True)

    @app.teardown_appcontext
    def db_cleanup(_exc):
        """Release scoped database resources after every request."""
        db.db_cleanup(_exc)

    return app
