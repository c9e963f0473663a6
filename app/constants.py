import os

APP_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_DIR = os.environ.get('DUCKFLIX_CONFIG_DIR', os.path.join(APP_DIR, 'config'))
DB_FILE = os.path.join(CONFIG_DIR, 'duckflix.db')
CONFIG_FILE = os.path.join(CONFIG_DIR, 'settings.yaml')
ALEMBIC_DIR = os.path.join(APP_DIR, 'migrations')
ALEMBIC_CONF = os.path.join(ALEMBIC_DIR, 'alembic.ini')

DUCKFLIX_DB = os.environ.get('DUCKFLIX_DATABASE_URI', 'sqlite:///' + DB_FILE)

BUILD_VERSION = '20260203_1626'

REALDEBRID_API_URL = 'https://api.real-debrid.com/rest/1.0'

DEFAULT_SETTINGS = {
    "server": {
        "host": "0.0.0.0",
        "port": 3001,
        "trust_proxy": False,
    },
    "coordinator": {
        # Clients heartbeat every 5s; a lease survives ~6 missed beats
        "heartbeat_interval_seconds": 5,
        "lease_liveness_seconds": 30,
        "lease_sweep_interval_seconds": 300,
        "link_cache_ttl_hours": 48,
        "link_cache_sweep_interval_minutes": 60,
        "expiry_check_initial_delay_seconds": 30,
        "expiry_check_interval_hours": 6,
        "expiry_alert_days": 5,
    },
    "realdebrid": {
        "base_url": REALDEBRID_API_URL,
        "timeout_seconds": 10,
    },
}

MEDIA_TYPE_MOVIE = 'movie'
MEDIA_TYPE_TV = 'tv'
MEDIA_TYPES = [MEDIA_TYPE_MOVIE, MEDIA_TYPE_TV]

DISABLED_REASON_RD_EXPIRED = 'rd_expired'
DISABLED_REASON_MANUAL = 'manual'
DISABLED_REASON_NO_CREDENTIAL = 'no_credential'
