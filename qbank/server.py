"""
HTTP Microservice
=================
Flask-based HTTP API for the interaction state store.

User identity comes from a header set by the upstream auth layer
(``USER_ID_HEADER``, default ``X-User-Id``); requests without it get 401.

Endpoints:
    POST   /favorites/<id>            → Toggle favorite
    POST   /progress/<id>             → Toggle completed
    POST   /progress/<id>/attempts    → Record an attempt
    GET    /favorites                 → User's favorites
    GET    /progress                  → Progress summary + completed list
    GET    /questions/<id>            → Read a question (counts a view)
    GET    /categories                → Categories with question counts
    GET    /api/health                → Health check
"""

from __future__ import annotations

import logging

from flask import Flask, abort, current_app, jsonify, request
from flask_cors import CORS

from . import __version__
from . import crud
from . import database as db
from . import interactions
from .errors import NotFound, TransientError

logger = logging.getLogger(__name__)


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    app = Flask(__name__)
    CORS(app)

    app.config.setdefault("DB_PATH", db.get_db_path())
    app.config.setdefault("USER_ID_HEADER", "X-User-Id")
    if config:
        app.config.update(config)

    # Initialize persistence layer
    db.init_db(app.config["DB_PATH"])

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _db_path() -> str:
    return current_app.config["DB_PATH"]


def _current_user() -> str:
    """User id from the auth header; aborts with 401 when absent."""
    user_id = request.headers.get(current_app.config["USER_ID_HEADER"], "").strip()
    if not user_id:
        abort(401)
    return user_id


# ─── Error Handlers ──────────────────────────────────────────────────────────


def _register_error_handlers(app: Flask):

    @app.errorhandler(NotFound)
    def handle_not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(TransientError)
    def handle_transient(e):
        logger.warning(f"Transient failure on {request.path}: {e}")
        return jsonify({"error": "Conflicting update, please retry"}), 503

    @app.errorhandler(401)
    def handle_unauthorized(e):
        return jsonify({"error": "Missing user identity"}), 401

    @app.errorhandler(404)
    def handle_404(e):
        return jsonify({"error": "Not found"}), 404


# ─── Routes ──────────────────────────────────────────────────────────────────


def _register_routes(app: Flask):

    @app.route("/api/health", methods=["GET"])
    def health():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "service": "qbank",
            "version": __version__,
        })

    # ── Interactions ──────────────────────────────────────────────────

    @app.route("/favorites/<int:question_id>", methods=["POST"])
    def toggle_favorite(question_id: int):
        user_id = _current_user()
        favorited = interactions.toggle_favorite(user_id, question_id, _db_path())
        return jsonify({"question_id": question_id, "favorited": favorited})

    @app.route("/progress/<int:question_id>", methods=["POST"])
    def toggle_completed(question_id: int):
        user_id = _current_user()
        completed = interactions.toggle_completed(user_id, question_id, _db_path())
        return jsonify({"question_id": question_id, "completed": completed})

    @app.route("/progress/<int:question_id>/attempts", methods=["POST"])
    def record_attempt(question_id: int):
        user_id = _current_user()
        attempts = interactions.record_attempt(user_id, question_id, _db_path())
        return jsonify({"question_id": question_id, "attempts": attempts})

    @app.route("/favorites", methods=["GET"])
    def list_favorites():
        user_id = _current_user()
        return jsonify(interactions.list_favorites(user_id, _db_path()))

    @app.route("/progress", methods=["GET"])
    def progress():
        user_id = _current_user()
        summary = interactions.get_progress_summary(user_id, _db_path())
        return jsonify({
            "summary": summary.model_dump(),
            "completed": interactions.list_completed(user_id, _db_path()),
        })

    # ── Catalog ───────────────────────────────────────────────────────

    @app.route("/questions/<int:question_id>", methods=["GET"])
    def get_question(question_id: int):
        user_id = request.headers.get(current_app.config["USER_ID_HEADER"])
        return jsonify(crud.get_question(question_id, user_id, _db_path()))

    @app.route("/categories", methods=["GET"])
    def list_categories():
        return jsonify(crud.list_categories(_db_path()))


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
    db_path: str = None,
):
    """Start the microservice server."""
    app = create_app({"DB_PATH": db_path} if db_path else None)
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
