from constants import *
import copy
import yaml
import os

import logging

# Retrieve main logger
logger = logging.getLogger("main")


# Cache variable
_cached_settings = None


def _merge_defaults(settings):
    # Deep merge with defaults so new keys are always present
    merged_settings = copy.deepcopy(DEFAULT_SETTINGS)
    for section, values in (settings or {}).items():
        if isinstance(values, dict) and section in merged_settings and isinstance(merged_settings[section], dict):
            merged_settings[section].update(values)
        else:
            merged_settings[section] = values
    return merged_settings


def load_settings(force=False):
    global _cached_settings

    if _cached_settings and not force:
        return _cached_settings

    if os.path.exists(CONFIG_FILE):
        logger.debug(f"Reading configuration file: {CONFIG_FILE}")
        with open(CONFIG_FILE, "r") as yaml_file:
            settings = _merge_defaults(yaml.safe_load(yaml_file))

    else:
        settings = copy.deepcopy(DEFAULT_SETTINGS)
        try:
            os.makedirs(CONFIG_DIR, exist_ok=True)
            with open(CONFIG_FILE, "w") as yaml_file:
                yaml.dump(settings, yaml_file)
        except OSError as e:
            logger.warning(f"Could not write default configuration to {CONFIG_FILE}: {e}")

    _cached_settings = settings
    return settings


def verify_settings(section, data):
    success = True
    errors = []
    if section == "coordinator":
        for key, value in data.items():
            if key not in DEFAULT_SETTINGS["coordinator"]:
                errors.append({"path": f"coordinator/{key}", "error": "Unknown setting."})
            elif isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append({"path": f"coordinator/{key}", "error": f"{key} must be a number."})
        if errors:
            return False, errors
        liveness = data.get("lease_liveness_seconds", DEFAULT_SETTINGS["coordinator"]["lease_liveness_seconds"])
        cadence = data.get("heartbeat_interval_seconds", DEFAULT_SETTINGS["coordinator"]["heartbeat_interval_seconds"])
        if liveness <= cadence:
            success = False
            errors.append({
                "path": "coordinator/lease_liveness_seconds",
                "error": f"Liveness window ({liveness}s) must be larger than the heartbeat interval ({cadence}s).",
            })
        for key in ("heartbeat_interval_seconds", "link_cache_ttl_hours", "link_cache_sweep_interval_minutes",
                    "expiry_check_interval_hours", "lease_sweep_interval_seconds"):
            if key in data and data[key] <= 0:
                success = False
                errors.append({"path": f"coordinator/{key}", "error": f"{key} must be positive."})
    return success, errors


def set_coordinator_settings(data):
    settings = load_settings()
    success, errors = verify_settings("coordinator", {**settings["coordinator"], **data})
    if not success:
        return success, errors
    settings["coordinator"].update(data)
    with open(CONFIG_FILE, "w") as yaml_file:
        yaml.dump(settings, yaml_file)
    reload_conf()
    return success, errors


def reload_conf():
    """Reload application settings cache"""
    global _cached_settings
    _cached_settings = None
    return load_settings(force=True)
