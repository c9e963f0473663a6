"""
DuckFlix RD Access Coordinator
Application factory and initialization
"""
import warnings
import os
import sys
import logging

# Suppress Flask-Limiter in-memory storage warnings
warnings.filterwarnings("ignore", category=UserWarning, module="flask_limiter")

import flask.cli
flask.cli.show_server_banner = lambda *args: None

# Core Flask imports
from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix
import structlog

# Local imports
from constants import ALEMBIC_DIR, BUILD_VERSION, DUCKFLIX_DB
from settings import load_settings
from db import db, migrate, init_db, log_activity
from auth import auth_blueprint, login_manager, limiter, init_users
from exceptions import register_exception_handlers
from metrics import init_metrics
from utils import ColoredFormatter, FilterRemoveDateFromWerkzeugLogs, get_or_create_secret_key

# Routes and services
from routes.session import session_bp
from routes.stream import stream_bp
from routes.admin import admin_bp
from routes.system import system_bp
from app_services.coordinator_service import init_services

# Jobs
from jobs.scheduler import JobScheduler

logger = structlog.get_logger('main')


def configure_logging(level=logging.INFO):
    """Colored stdlib logging plus structlog on top of it"""
    formatter = ColoredFormatter(
        '[%(asctime)s.%(msecs)03d] %(levelname)s (%(module)s) %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler]
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if os.environ.get('LOG_FORMAT') == 'json' else structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Apply filter to hide date from http access logs
    logging.getLogger('werkzeug').addFilter(FilterRemoveDateFromWerkzeugLogs())
    logging.getLogger('alembic.runtime.migration').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)


def create_app(config=None, clock=None, rd_client=None):
    """
    Application factory.

    `config` overrides Flask config keys (tests pass TESTING, a temporary
    SQLALCHEMY_DATABASE_URI and SCHEDULER_ENABLED=False). `clock` and
    `rd_client` replace the wall clock and the Real-Debrid client.
    """
    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = DUCKFLIX_DB
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SCHEDULER_ENABLED'] = os.environ.get('DUCKFLIX_SCHEDULER', 'true').lower() != 'false'
    if config:
        app.config.update(config)
    if not app.config.get('SECRET_KEY'):
        app.config['SECRET_KEY'] = get_or_create_secret_key()

    app_settings = load_settings()

    # Client address for leases comes from X-Forwarded-For only behind a trusted proxy
    if app_settings['server'].get('trust_proxy'):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    # Initialize components
    db.init_app(app)
    migrate.init_app(app, db, directory=ALEMBIC_DIR)

    # Initialize login manager
    login_manager.init_app(app)

    limiter.init_app(app)

    # Register exception handlers
    register_exception_handlers(app)

    # Register blueprints
    app.register_blueprint(auth_blueprint)
    app.register_blueprint(session_bp)
    app.register_blueprint(stream_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(system_bp)

    # Coordinator services
    init_services(app, app_settings, clock=clock, rd_client=rd_client)

    # Initialize metrics
    init_metrics(app)

    # Initialize database
    init_db(app)
    init_users(app)

    with app.app_context():
        log_activity('system_startup', version=BUILD_VERSION)

    # Initialize job scheduler
    if app.config['SCHEDULER_ENABLED']:
        job_scheduler = JobScheduler()
        job_scheduler.init_app(app, app_settings['coordinator'])

    return app


if __name__ == '__main__':
    configure_logging()
    app = create_app()
    server_settings = load_settings()['server']
    logger.info(f'Build Version: {BUILD_VERSION}')
    logger.info(f"Starting server on port {server_settings['port']}...")
    app.run(debug=False, use_reloader=False, host=server_settings['host'], port=server_settings['port'])
