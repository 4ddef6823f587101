# ctidash/__init__.py
import logging

from flask import Flask, jsonify, request
from flask_cors import CORS

from . import config
from .db import init_mongo
from .errors import ApiError, register_error_handlers
from .ratelimit import FixedWindowRateLimiter
from .utils import iso, utcnow
from .auth import bp as auth_bp
from .users import bp as users_bp
from .organizations import bp as orgs_bp
from .incidents import bp as incidents_bp
from .threat_actors import bp as actors_bp
from .cves import bp as cves_bp
from .software import bp as software_bp
from .notifications import bp as notifications_bp
from .dashboard import bp as dashboard_bp
from .tasks_api import bp as tasks_bp

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'; object-src 'none'",
}

def create_app(test_config=None, mongo_client=None):
    app = Flask(__name__)
    app.config.from_mapping(
        SECRET_KEY=config.SECRET_KEY,
        MONGODB_URI=config.MONGODB_URI,
        DB_NAME=config.DB_NAME,
        TOKEN_MAX_AGE=config.TOKEN_MAX_AGE,
        ENV_NAME=config.ENV,
        LOG_LEVEL=config.LOG_LEVEL,
        GEMINI_API_KEY=config.GEMINI_API_KEY,
        GEMINI_MODEL=config.GEMINI_MODEL,
        GEMINI_API_BASE=config.GEMINI_API_BASE,
        GEMINI_TIMEOUT=config.GEMINI_TIMEOUT,
        AI_RATE_LIMIT=config.AI_RATE_LIMIT,
        GENERAL_RATE_LIMIT=config.GENERAL_RATE_LIMIT,
    )
    if test_config:
        app.config.update(test_config)
    app.secret_key = app.config["SECRET_KEY"]
    app.json.sort_keys = False

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )

    init_mongo(app, client=mongo_client)
    CORS(app, resources={r"/api/*": {"origins": "*"}})
    register_error_handlers(app)

    app.extensions["ctidash.ai_limiter"] = FixedWindowRateLimiter(*app.config["AI_RATE_LIMIT"], name="ai-summary")
    general = app.config["GENERAL_RATE_LIMIT"]
    limiter = FixedWindowRateLimiter(*general, name="api") if general else None

    @app.before_request
    def _rate_limit():
        if limiter is None or not request.path.startswith("/api/"):
            return None
        allowed, retry_after = limiter.hit(request.remote_addr or "unknown")
        if not allowed:
            raise ApiError(429, "Too many requests",
                           "Too many requests from this IP, please try again later.",
                           retryAfter=retry_after)
        return None

    @app.after_request
    def _security_headers(resp):
        for k, v in SECURITY_HEADERS.items():
            resp.headers.setdefault(k, v)
        if app.config["ENV_NAME"] == "production":
            resp.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return resp

    app.register_blueprint(auth_bp, url_prefix="/api/users")
    app.register_blueprint(users_bp, url_prefix="/api/users")
    app.register_blueprint(orgs_bp, url_prefix="/api/organizations")
    app.register_blueprint(incidents_bp, url_prefix="/api/incidents")
    app.register_blueprint(actors_bp, url_prefix="/api/threat-actors")
    app.register_blueprint(cves_bp, url_prefix="/api/cves")
    app.register_blueprint(software_bp, url_prefix="/api/software")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")
    app.register_blueprint(dashboard_bp, url_prefix="/api/dashboard")
    app.register_blueprint(tasks_bp, url_prefix="/api")

    @app.get("/health")
    def health():
        return "API is healthy!"

    @app.get("/server-time")
    def server_time():
        return jsonify({"currentTime": iso(utcnow())})

    logger.info("app created (env=%s)", app.config["ENV_NAME"])
    return app
