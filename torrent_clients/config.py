# torrent_clients/config.py
"""
Layered configuration: built-in fallbacks, then environment variables
(a ``.env`` file is honoured through python-dotenv), then an optional JSON
file. Later layers win.
"""
import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from .models import ServerConfig

logger = logging.getLogger(__name__)

FALLBACK_CONFIG = {
    "TORRENT_CLIENT_TYPE": "qbittorrent",
    "TORRENT_CLIENT_NAME": "",
    "TORRENT_CLIENT_URL": "http://localhost:8080",
    "TORRENT_CLIENT_USERNAME": "admin",
    "TORRENT_CLIENT_PASSWORD": "",
    "TORRENT_CLIENT_CATEGORY": "",
    "TORRENT_CLIENT_OPTIONS": "",
    "TORRENT_DOWNLOAD_PATH": "",
    "TORRENT_DIRECTORIES": "",
}


def load_config(config_file=None) -> dict:
    """Returns the merged settings mapping."""
    load_dotenv()
    config = FALLBACK_CONFIG.copy()

    env_config = {key: os.getenv(key) for key in config.keys() if os.getenv(key) is not None}
    config.update(env_config)

    if config_file is not None:
        path = Path(config_file)
        if path.exists():
            with open(path, "r") as f:
                json_config = json.load(f)
            if not isinstance(json_config, dict):
                raise ValueError(f"{path} must contain a JSON object")
            config.update(json_config)
        else:
            logger.debug("Config file %s not found, using environment and defaults", path)
    return config


def _parse_options(raw) -> dict:
    if not raw:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    options = json.loads(raw)
    if not isinstance(options, dict):
        raise ValueError("TORRENT_CLIENT_OPTIONS must be a JSON object")
    return options


def _parse_directories(raw) -> tuple[str, ...]:
    if not raw:
        return ()
    if isinstance(raw, (list, tuple)):
        items = raw
    else:
        items = str(raw).split(",")
    return tuple(d.strip() for d in items if str(d).strip())


def server_config_from_mapping(mapping: dict) -> ServerConfig:
    """Builds a ServerConfig from TORRENT_CLIENT_* style settings."""
    application = (mapping.get("TORRENT_CLIENT_TYPE") or "qbittorrent").lower()
    download_path = mapping.get("TORRENT_DOWNLOAD_PATH") or None
    directories = _parse_directories(mapping.get("TORRENT_DIRECTORIES"))
    if download_path and download_path not in directories:
        directories = (download_path,) + directories

    return ServerConfig(
        name=mapping.get("TORRENT_CLIENT_NAME") or application,
        application=application,
        hostname=mapping.get("TORRENT_CLIENT_URL") or "",
        username=mapping.get("TORRENT_CLIENT_USERNAME") or None,
        password=mapping.get("TORRENT_CLIENT_PASSWORD") or None,
        directories=directories,
        default_directory=download_path,
        default_label=mapping.get("TORRENT_CLIENT_CATEGORY") or None,
        client_options=_parse_options(mapping.get("TORRENT_CLIENT_OPTIONS")),
    )
