from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from flask import Response, request
from sqlalchemy.exc import SQLAlchemyError
import logging
import time

logger = logging.getLogger("main")

# API Metrics
api_request_duration_seconds = Histogram(
    "duckflix_api_request_duration_seconds", "API request duration", ["endpoint", "method"]
)

api_requests_total = Counter("duckflix_api_requests_total", "Total API requests", ["endpoint", "method", "status_code"])

# RD Lease Metrics
lease_acquisitions_total = Counter(
    "duckflix_rd_lease_acquisitions_total", "RD lease acquisition attempts", ["outcome"]
)

active_leases = Gauge("duckflix_rd_active_leases", "RD leases with a heartbeat inside the liveness window")

leases_swept_total = Counter("duckflix_rd_leases_swept_total", "Stale RD leases removed by the sweeper")

# Link Cache Metrics
link_cache_lookups_total = Counter("duckflix_link_cache_lookups_total", "Link cache lookups", ["result"])

link_cache_entries = Gauge("duckflix_link_cache_entries", "Rows currently stored in the link cache")

# Expiry Validation Metrics
expiry_checks_total = Counter("duckflix_rd_expiry_checks_total", "RD credential expiry checks", ["outcome"])

users_disabled_total = Gauge("duckflix_users_disabled", "User accounts currently disabled", ["reason"])


def init_metrics(app):
    @app.route("/api/metrics")
    def metrics():
        update_coordinator_metrics(app)
        return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)

    @app.before_request
    def before_request():
        request.start_time = time.time()

    @app.after_request
    def after_request(response):
        duration = time.time() - getattr(request, "start_time", time.time())
        api_request_duration_seconds.labels(endpoint=request.endpoint or "unknown", method=request.method).observe(
            duration
        )
        api_requests_total.labels(
            endpoint=request.endpoint or "unknown", method=request.method, status_code=response.status_code
        ).inc()
        return response

    app.logger.info("Prometheus metrics initialized at /api/metrics")


def update_coordinator_metrics(app):
    """Refresh gauges that are derived from table contents."""
    from app_services.coordinator_service import get_services
    from models import RdLinkCache, User
    from sqlalchemy import func

    lease_manager = get_services(app).lease_manager
    try:
        active_leases.set(len(lease_manager.get_active_leases()))
        link_cache_entries.set(RdLinkCache.query.count())

        rows = (
            User.query.with_entities(User.disabled_reason, func.count(User.id))
            .filter(User.enabled.is_(False))
            .group_by(User.disabled_reason)
            .all()
        )
        users_disabled_total.clear()
        for reason, count in rows:
            users_disabled_total.labels(reason=reason or "unknown").set(count)
    except SQLAlchemyError as e:
        logger.warning(f"Could not refresh coordinator metrics: {e}")
