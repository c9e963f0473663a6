"""
System Routes - health and build information
"""

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import socket

from api_responses import success_response, handle_api_errors
from app_services.coordinator_service import get_services
from constants import BUILD_VERSION
from db import db, get_current_db_version
from utils import isoformat_utc
import logging

logger = logging.getLogger("main")

system_bp = Blueprint("system", __name__, url_prefix="/api")


def _scheduler_state():
    job_scheduler = current_app.extensions.get("job_scheduler")
    if job_scheduler is None:
        return "disabled"
    return "running" if job_scheduler.running else "stopped"


@system_bp.route("/health", methods=["GET"])
@handle_api_errors
def health_check_api():
    """
    Health check endpoint for monitoring.
    """
    overall_status = "healthy"
    checks = {
        "timestamp": isoformat_utc(get_services().clock()),
        "version": BUILD_VERSION,
        "hostname": socket.gethostname(),
        "database": "unknown",
        "scheduler": _scheduler_state(),
    }

    # Check Database connection
    try:
        db.session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        logger.error(f"Health check database failure: {e}")
        checks["database"] = f"error: {str(e)}"
        overall_status = "unhealthy"

    if checks["scheduler"] == "stopped":
        overall_status = "degraded" if overall_status == "healthy" else overall_status

    # Determine HTTP status code
    status_code = 200 if overall_status == "healthy" else 503

    return success_response(data={"status": overall_status, "checks": checks}, status_code=status_code)


@system_bp.route("/health/live", methods=["GET"])
def health_live_api():
    return success_response(data={"status": "alive"})


@system_bp.route("/system/info", methods=["GET"])
@handle_api_errors
def system_info_api():
    job_scheduler = current_app.extensions.get("job_scheduler")
    jobs = []
    if job_scheduler is not None:
        jobs = [{**job, "next_run_time": isoformat_utc(job["next_run_time"])} for job in job_scheduler.get_jobs()]

    return success_response(data={
        "build_version": BUILD_VERSION,
        "db_version": get_current_db_version(current_app.config["SQLALCHEMY_DATABASE_URI"]),
        "coordinator": get_services().coordinator_settings,
        "jobs": jobs,
    })
