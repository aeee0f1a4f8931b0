"""
Mini Social: REST API server.

Production notes:
 - Configure via environment variables (see config.py).
 - Serve with a WSGI server (recommended): e.g.
     gunicorn -w 4 -b 0.0.0.0:5000 'mini_social:create_app()'
 - Set SOCIAL_REDIS_URL to share the cache between workers; without it
   each worker keeps its own in-memory cache.
"""

import atexit
import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from . import db
from .api import api
from .auth import load_request_identity
from .cache import CacheStore
from .config import load_config
from .oauth import GoogleOAuth
from .repository import find_user_by_id
from .sessions import SessionStore

logger = logging.getLogger("mini-social")


def create_app(test_config=None, cache=None, sessions=None):
    """Application factory.

    ``cache`` and ``sessions`` let callers (tests mostly) hand in their own
    CacheStore / SessionStore instead of the ones built from config.
    A cache built here is closed when the interpreter exits.
    """
    app = Flask(__name__, static_folder=None)
    app.config.from_mapping(load_config())
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=app.config["LOG_LEVEL"])

    # CORS; credentials are needed for the session cookie
    CORS(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}}, supports_credentials=True)

    if cache is None:
        cache = CacheStore()
        cache.initialize(app.config["REDIS_URL"], timeout=app.config["CACHE_TIMEOUT"])
        atexit.register(cache.close)
    app.extensions["cache"] = cache
    if sessions is None:
        sessions = SessionStore(find_user_by_id)
    app.extensions["sessions"] = sessions
    app.extensions["oauth"] = GoogleOAuth.from_config(app.config)

    db.init_app(app)
    app.before_request(load_request_identity)
    app.register_blueprint(api)
    register_error_handlers(app)
    app.after_request(set_security_headers)

    with app.app_context():
        db.init_db()
    logger.info("Cache backend: %s", cache.backend)

    return app


# -----------------------
# Security headers
# -----------------------
def set_security_headers(response):
    # Basic security headers; tune for your deployment
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "no-referrer-when-downgrade")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=()")
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    # HSTS - only enable if serving HTTPS
    # response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# -----------------------
# Error handlers
# -----------------------
def register_error_handlers(app):
    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"error": "Request body is too large"}), 413

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "Bad request"}), 400

    @app.errorhandler(Exception)
    def internal_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error"}), 500


# -----------------------
# Run server (for dev only). For production use a WSGI server.
# -----------------------
if __name__ == "__main__":
    create_app().run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 5000)),
        debug=os.environ.get("FLASK_DEBUG", "0") == "1",
    )
