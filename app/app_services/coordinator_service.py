"""
Coordinator Service - wires the lease, cache and validation services for an app
"""
from flask import current_app

from services.expiry_validator import ExpiryValidator
from services.lease_manager import LeaseManager
from services.link_cache import LinkCache
from services.realdebrid import RealDebridClient
from services.stream_resolver import StreamResolver
from utils import now_utc
import structlog

logger = structlog.get_logger("coordinator")

EXTENSION_KEY = "duckflix"


class CoordinatorServices:
    """Per-app service instances sharing one clock and one upstream client"""

    def __init__(self, settings, clock=now_utc, rd_client=None):
        self.clock = clock
        self.rd_client = rd_client or RealDebridClient.from_settings(settings["realdebrid"])
        self.expiry_validator = ExpiryValidator(self.rd_client, clock)
        self.configure(settings)

    def configure(self, settings):
        """(Re)build the services whose behaviour depends on coordinator settings"""
        coordinator = settings["coordinator"]
        self.coordinator_settings = dict(coordinator)
        self.lease_manager = LeaseManager.from_settings(coordinator, self.clock)
        self.link_cache = LinkCache.from_settings(coordinator, self.clock)
        self.stream_resolver = StreamResolver(self.link_cache, self.rd_client)
        logger.info(
            "Coordinator configured",
            lease_liveness_seconds=coordinator["lease_liveness_seconds"],
            heartbeat_interval_seconds=coordinator["heartbeat_interval_seconds"],
            link_cache_ttl_hours=coordinator["link_cache_ttl_hours"],
        )


def init_services(app, settings, clock=None, rd_client=None):
    services = CoordinatorServices(settings, clock=clock or now_utc, rd_client=rd_client)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services(app=None) -> CoordinatorServices:
    return (app or current_app).extensions[EXTENSION_KEY]
