# backend/auditlog/errors.py
from flask import jsonify, request
from flask.signals import got_request_exception
from werkzeug.exceptions import HTTPException
import json

# app.logger and module loggers all propagate to the root logger configured by
# start_log(), so they share the same files and console.

GENERIC_SERVER_ERROR = "Internal Server Error"


def register_error_handlers(app):
    setup_signals(app)

    @app.errorhandler(HTTPException)
    def handle_http(e: HTTPException):
        app.logger.warning("HTTP %s on %s %s: %s", e.code, request.method, request.path, e.description)
        resp = e.get_response()
        payload = {
            "ok": False,
            "error": e.name,
            "code": e.code,
            "description": e.description,
            "path": request.path,
            "method": request.method,
        }
        resp.data = json.dumps(payload)
        resp.content_type = "application/json"
        return resp

    @app.errorhandler(Exception)
    def handle_uncaught(e: Exception):
        app.logger.exception("Unhandled exception on %s %s", request.method, request.path)
        return jsonify(ok=False, error=GENERIC_SERVER_ERROR), 500


def setup_signals(app):
    def on_exc(sender, exception, **extra):
        app.logger.error("Request raised %s", type(exception).__name__)
    got_request_exception.connect(on_exc, app)
