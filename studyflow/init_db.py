"""
Initialize database tables.
Run this on first deploy instead of flask db upgrade:

    python -m studyflow.init_db

Set RESET_DB=1 environment variable to drop and recreate all tables.
"""
import os

from studyflow import create_app, db


def init_db(config_name=None):
    """Create all database tables."""
    app = create_app(config_name or os.getenv('FLASK_ENV', 'production'))

    with app.app_context():
        if os.getenv('RESET_DB', '').strip().lower() in ('1', 'true', 'yes'):
            app.logger.warning("RESET_DB is set - dropping all tables...")
            db.drop_all()
            app.logger.warning("Tables dropped.")

        db.create_all()
        app.logger.info("Database tables created successfully")
    return app


if __name__ == '__main__':
    init_db()
