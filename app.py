import logging
import os
import sqlite3
from logging.handlers import RotatingFileHandler

from flask import Flask, jsonify, request
from flask_login import current_user
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from extensions import db, login_manager, migrate
from models import User
from services.catalog import get_catalog
from services.errors import MutabaahError

logger = logging.getLogger(__name__)


# ======================
# logging
# ======================
def _configure_logging(app):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s"
    )

    if not app.config.get("LOG_TO_FILE"):
        return

    log_dir = app.config.get("LOG_DIR") or "logs"
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "mutabaah.log")

    root = logging.getLogger()
    if any(getattr(h, "baseFilename", None) == os.path.abspath(log_path) for h in root.handlers):
        return

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=1_000_000,   # 1MB
        backupCount=5
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    ))
    root.setLevel(logging.INFO)
    root.addHandler(file_handler)


# ======================
# SQLite tuning
# ======================
@event.listens_for(Engine, "connect")
def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Wait on locks instead of failing at once (surfaces as StoreTimeoutError)."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
    except sqlite3.DatabaseError:
        logger.warning("SQLite pragmas not applied", exc_info=True)
    finally:
        cursor.close()


def _engine_options(app):
    uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    if uri.startswith("sqlite"):
        connect_args = dict(options.get("connect_args") or {})
        connect_args.setdefault("timeout", app.config.get("STORE_TIMEOUT_SECONDS", 15))
        connect_args.setdefault("check_same_thread", False)
        options["connect_args"] = connect_args
    else:
        options.setdefault("pool_pre_ping", True)
    return options


# ======================
# App factory
# ======================
def create_app(config_object="config.DevConfig"):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)
    app.json.sort_keys = False

    _configure_logging(app)

    # ======================
    # Extensions Init
    # ======================
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    with app.app_context():
        # fail fast on a broken catalog file
        catalog = get_catalog()
    logger.info("Activity catalog loaded | activities=%s", len(catalog))

    # ======================
    # Register Blueprints
    # ======================
    from activities.routes import activities_bp
    from admin.routes import admin_bp
    from users.routes import users_bp
    from workflow.routes import workflow_bp

    app.register_blueprint(activities_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(users_bp)

    _register_error_handlers(app)

    @app.teardown_appcontext
    def shutdown_session(exception=None):
        db.session.remove()

    return app


# ======================
# Error Handlers
# ======================
def _register_error_handlers(app):

    @app.errorhandler(MutabaahError)
    def _handle_domain_error(err):
        level = logging.WARNING if err.retryable else logging.INFO
        logger.log(level, "Refused | %s %s | %s: %s", request.method, request.path, err.code, err.message)
        return jsonify(err.to_dict()), err.http_status

    @app.errorhandler(401)
    def _handle_401(err):
        return jsonify({"error": "unauthorized", "message": "Login required"}), 401

    @app.errorhandler(403)
    def _handle_403(err):
        return jsonify({"error": "forbidden", "message": "You do not have permission"}), 403

    @app.errorhandler(404)
    def _handle_404(err):
        return jsonify({"error": "not_found", "message": "Not found"}), 404

    @app.errorhandler(405)
    def _handle_405(err):
        return jsonify({"error": "method_not_allowed", "message": "Method not allowed"}), 405

    @app.errorhandler(SQLAlchemyError)
    def _handle_db_error(err):
        db.session.rollback()
        logger.exception("Database error | %s %s", request.method, request.path)
        return jsonify({"error": "database_error", "message": "Database error"}), 500


# ======================
# Login Manager
# ======================
@login_manager.user_loader
def load_user(user_id):
    """Flask-Login caches the result on g for the rest of the request."""
    try:
        uid = int(user_id)
    except (TypeError, ValueError):
        logger.warning("user_loader invalid user_id: %s", user_id)
        return None

    try:
        user = db.session.get(User, uid)
    except SQLAlchemyError:
        logger.exception("user_loader DB error for user_id=%s", uid)
        return None

    if user is None:
        logger.warning("user_loader: user not found (id=%s)", uid)
        return None
    if not user.is_active_user:
        return None
    return user


@login_manager.unauthorized_handler
def unauthorized():
    logger.warning(
        "Unauthorized access | path=%s | user=%s", request.path, current_user.get_id()
    )
    return jsonify({"error": "unauthorized", "message": "Login required"}), 401


if __name__ == "__main__":
    create_app().run()
