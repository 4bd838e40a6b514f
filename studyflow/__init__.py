"""
StudyFlow Application Factory
"""
import logging
import os
from datetime import datetime, timezone

from flask import Flask, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

from studyflow.config import config

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()
limiter = Limiter(key_func=get_remote_address)


def _configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("studyflow").setLevel(level)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def create_app(config_name='default', overrides=None):
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # Services shared by every request
    from studyflow.repositories import KeyValueStore
    from studyflow.services.extraction import create_pipeline
    from studyflow.services.storage import create_upload_store

    upload_store = create_upload_store(app.config)
    app.extensions["studyflow"] = {
        "guest_store": KeyValueStore(app.config["GUEST_STORE_PATH"]),
        "upload_store": upload_store,
        "pipeline": create_pipeline(app.config, upload_store),
    }

    # Register blueprints
    from studyflow.auth import auth_bp
    from studyflow.api import api_bp
    from studyflow.notes import notes_bp
    from studyflow.stripe_webhook import webhook_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(notes_bp)
    app.register_blueprint(webhook_bp)

    # JSON clients don't send CSRF tokens; the webhook is verified by signature
    for bp in (auth_bp, api_bp, notes_bp, webhook_bp):
        csrf.exempt(bp)

    @app.errorhandler(429)
    def ratelimit_handler(e):
        return jsonify({"ok": False, "error": f"Rate limit exceeded: {e.description}"}), 429

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"ok": False, "error": "File too large"}), 413

    # Health check endpoint
    @app.route('/healthz')
    @limiter.exempt
    def healthz():
        """Health check for load balancers and monitoring"""
        try:
            from sqlalchemy import text
            db.session.execute(text('SELECT 1'))
            db_status = "ok"
        except Exception as e:
            db_status = f"error: {e}"

        return jsonify({
            "status": "ok" if db_status == "ok" else "degraded",
            "version": app.config["APP_VERSION"],
            "database": db_status,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    # Version endpoint
    @app.route('/version')
    def version():
        """Version and build info"""
        return jsonify({
            "version": app.config["APP_VERSION"],
            "build_time": app.config["BUILD_TIME"],
            "git_commit": app.config["GIT_COMMIT"],
            "features": {
                "guest_mode": bool(app.config.get("GUEST_MODE_ENABLED")),
                "remote_extraction": bool(app.config.get("EXTRACTION_SERVICE_URL")),
                "ai_transforms": bool(app.config.get("OPENAI_API_KEY")),
                "text_to_speech": bool(app.config.get("ELEVENLABS_API_KEY") or app.config.get("OPENAI_API_KEY")),
                "pdf_export": True,
            }
        })

    with app.app_context():
        from studyflow import models  # noqa: F401
        from sqlalchemy import inspect

        # Only create tables if they don't exist (safe for existing DB)
        inspector = inspect(db.engine)
        if not inspector.get_table_names():
            app.logger.info('No tables found, creating...')
            db.create_all()

    return app
