"""
Settings for the relay and client.

Resolution order (later wins):
    1. Built-in defaults
    2. YAML file: explicit path, else $REDGRAM_SETTINGS, else ./settings.local.yaml
    3. Environment: PORT, REDGRAM_RELAY_URL, REDGRAM_LOG_LEVEL

Example settings.local.yaml:

    relay:
      port: 8080
      outbox_size: 256
    client:
      url: ws://192.168.1.20:8080
      reconnect_interval: 3
    logging:
      level: DEBUG
"""

import copy
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

# === DEFAULTS ===

DEFAULT_PORT = 8080
RECONNECT_INTERVAL = 3.0  # seconds

DEFAULTS = {
    "relay": {
        "host": "0.0.0.0",
        "port": DEFAULT_PORT,
        "heartbeat": 30.0,
        "outbox_size": 256,
    },
    "client": {
        "url": f"ws://localhost:{DEFAULT_PORT}",
        "reconnect_interval": RECONNECT_INTERVAL,
    },
    "logging": {
        "level": "INFO",
    },
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _merge(base: dict, overlay: dict) -> dict:
    for key, value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _settings_path(path: Optional[str]) -> Path:
    if path is None:
        path = os.environ.get("REDGRAM_SETTINGS", "settings.local.yaml")
    return Path(path)


def get_settings(path: Optional[str] = None) -> dict:
    """Load settings from yaml with env overrides applied."""
    settings = copy.deepcopy(DEFAULTS)

    settings_file = _settings_path(path)
    if settings_file.exists():
        try:
            loaded = yaml.safe_load(settings_file.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable settings file %s: %s", settings_file, e)
            loaded = {}
        if isinstance(loaded, dict):
            _merge(settings, loaded)
        else:
            logger.warning("Ignoring settings file %s: expected a mapping", settings_file)

    if "PORT" in os.environ:
        settings["relay"]["port"] = int(os.environ["PORT"])
    if "REDGRAM_RELAY_URL" in os.environ:
        settings["client"]["url"] = os.environ["REDGRAM_RELAY_URL"]
    if "REDGRAM_LOG_LEVEL" in os.environ:
        settings["logging"]["level"] = os.environ["REDGRAM_LOG_LEVEL"]

    return settings


# === GETTERS ===

def get_listen_host(conf: Optional[dict] = None) -> str:
    conf = conf or get_settings()
    return str(conf["relay"]["host"])


def get_listen_port(conf: Optional[dict] = None) -> int:
    conf = conf or get_settings()
    return int(conf["relay"]["port"])


def get_heartbeat(conf: Optional[dict] = None) -> float:
    """Seconds between websocket pings sent by the relay."""
    conf = conf or get_settings()
    return float(conf["relay"]["heartbeat"])


def get_outbox_size(conf: Optional[dict] = None) -> int:
    """Frames buffered per peer before the relay drops that peer."""
    conf = conf or get_settings()
    return int(conf["relay"]["outbox_size"])


def get_relay_url(conf: Optional[dict] = None) -> str:
    conf = conf or get_settings()
    return str(conf["client"]["url"])


def get_reconnect_interval(conf: Optional[dict] = None) -> float:
    conf = conf or get_settings()
    return float(conf["client"]["reconnect_interval"])


def get_log_level(conf: Optional[dict] = None) -> str:
    conf = conf or get_settings()
    return str(conf["logging"]["level"]).upper()


def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
