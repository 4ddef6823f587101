# ctidash/errors.py
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised from views and helpers; rendered as ``{"error", "message", ...}``."""

    def __init__(self, status, error, message=None, **extra):
        super().__init__(message or error)
        self.status = status
        self.error = error
        self.message = message
        self.extra = extra

    def to_dict(self):
        body = {"error": self.error}
        if self.message is not None:
            body["message"] = self.message
        body.update(self.extra)
        return body


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def _api_error(e):
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def _http_error(e):
        return jsonify({"error": e.name, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def _unhandled(e):
        logger.exception("unhandled error: %s", e)
        return jsonify({"error": "Internal server error"}), 500
