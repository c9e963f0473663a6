from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import create_engine
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from flask_migrate import Migrate
from alembic.runtime.migration import MigrationContext
from alembic.config import Config
from alembic.script import ScriptDirectory
from alembic import command
import os
import shutil
import json
import logging
from constants import DB_FILE, DUCKFLIX_DB, CONFIG_DIR, ALEMBIC_DIR, ALEMBIC_CONF
from utils import now_utc, sanitize_sensitive_data

# Retrieve main logger
logger = logging.getLogger("main")

db = SQLAlchemy()
migrate = Migrate()


# Alembic functions
def get_alembic_cfg():
    cfg = Config(ALEMBIC_CONF)
    cfg.set_main_option("script_location", ALEMBIC_DIR)
    return cfg


def get_current_db_version(database_uri=DUCKFLIX_DB):
    engine = create_engine(database_uri)
    with engine.connect() as connection:
        context = MigrationContext.configure(connection)
        current_rev = context.get_current_revision()
        return current_rev or "0"


def create_db_backup():
    current_revision = get_current_db_version()
    timestamp = now_utc().strftime("%Y%m%d_%H%M%S")
    backup_filename = f".backup_v{current_revision}_{timestamp}.db"
    backup_path = os.path.join(CONFIG_DIR, backup_filename)
    shutil.copy2(DB_FILE, backup_path)
    logger.info(f"Database backup created: {backup_path}")


def is_migration_needed(database_uri=DUCKFLIX_DB):
    alembic_cfg = get_alembic_cfg()
    script = ScriptDirectory.from_config(alembic_cfg)
    latest_revision = script.get_current_head()
    current_revision = get_current_db_version(database_uri)
    if current_revision != latest_revision:
        logger.info(f"Database migration needed, from {current_revision} to {latest_revision}")
        return True
    else:
        logger.info(f"Database version is up to date ({current_revision})")
        return False


def log_activity(action_type, user_id=None, **details):
    """Utility function to log activity"""
    from models.activitylog import ActivityLog

    try:
        log = ActivityLog(user_id=user_id, action_type=action_type, details=json.dumps(sanitize_sensitive_data(details), default=str))
        db.session.add(log)
        db.session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Failed to log activity {action_type}: {e}")
        db.session.rollback()


def _register_sqlite_pragmas(engine):
    # Ensure foreign keys, WAL mode, and timeout are set when connection is opened
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        import sqlite3
        if not isinstance(dbapi_connection, sqlite3.Connection):
            return

        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA busy_timeout=30000;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        # WAL lets sweeps and request handlers read while a lease upsert writes
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.close()


def init_db(app):
    # Register every model on the metadata before create_all
    import models  # noqa: F401

    database_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    with app.app_context():
        _register_sqlite_pragmas(db.engine)

        from sqlalchemy import inspect
        inspector = inspect(db.engine)
        fresh_database = not inspector.has_table("user")

        if not fresh_database and not app.testing and is_migration_needed(database_uri):
            if database_uri == DUCKFLIX_DB and os.path.exists(DB_FILE):
                create_db_backup()
            command.upgrade(get_alembic_cfg(), "head")
            logger.info("Database migrated to the latest version.")

        db.create_all()

        if fresh_database:
            logger.info("Database tables created.")
            if not app.testing:
                command.stamp(get_alembic_cfg(), "head")
                logger.info("Database stamped to the latest migration version.")
