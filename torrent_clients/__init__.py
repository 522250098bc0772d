# torrent_clients/__init__.py
from .aria2 import Aria2Client
from .base import TorrentClient
from .deluge import DelugeClient
from .errors import (
    AuthenticationError,
    ConnectivityError,
    HttpError,
    ProtocolError,
    TaskError,
    TorrentClientError,
    TwoFactorRequiredError,
)
from .flood import FloodClient
from .models import AddTorrentOptions, ServerConfig, Torrent, TorrentStatus
from .qbittorrent import QBittorrentClient
from .rtorrent import RTorrentClient
from .synology import SynologyClient
from .transmission import BiglyBTClient, TransmissionClient, VuzeClient
from .utorrent import UTorrentClient

# Registry mapping ServerConfig.application to Client Classes
CLIENT_MAP = {
    "transmission": TransmissionClient,
    "biglybt": BiglyBTClient,
    "vuze_remoteui": VuzeClient,
    "deluge": DelugeClient,
    "rutorrent": RTorrentClient,
    "rtorrent": RTorrentClient,
    "utorrent": UTorrentClient,
    "synology": SynologyClient,
    "aria2": Aria2Client,
    "qbittorrent": QBittorrentClient,
    "flood": FloodClient,
}


def get_torrent_client(config: ServerConfig, transport=None) -> TorrentClient:
    """
    Factory function to create the appropriate torrent client instance.
    """
    client_type = (config.application or "").lower()

    client_class = CLIENT_MAP.get(client_type)
    if client_class:
        return client_class(config, transport=transport)

    raise ValueError(f"Unsupported torrent client type: {client_type}")


def get_client_display_name(client_type: str) -> str:
    """
    Retrieves the display name defined in the client class itself.
    """
    client_type = (client_type or "").lower()
    client_class = CLIENT_MAP.get(client_type)
    if client_class:
        # Constructors are lightweight (no network calls)
        return client_class(ServerConfig(name=client_type, application=client_type, hostname="")).display_name

    # Fallback to title case if class not found
    return client_type.title()


def get_available_clients() -> list[dict]:
    """
    Returns a sorted list of dictionaries for UI pickers.
    Example: [{'id': 'qbittorrent', 'name': 'qBittorrent'}, ...]
    """
    options = [
        {'id': client_id, 'name': get_client_display_name(client_id)}
        for client_id in CLIENT_MAP.keys()
    ]
    return sorted(options, key=lambda x: (x['name'].lower(), x['id']))


__all__ = [
    "CLIENT_MAP",
    "AddTorrentOptions",
    "Aria2Client",
    "AuthenticationError",
    "BiglyBTClient",
    "ConnectivityError",
    "DelugeClient",
    "FloodClient",
    "HttpError",
    "ProtocolError",
    "QBittorrentClient",
    "RTorrentClient",
    "ServerConfig",
    "SynologyClient",
    "TaskError",
    "Torrent",
    "TorrentClient",
    "TorrentClientError",
    "TorrentStatus",
    "TransmissionClient",
    "TwoFactorRequiredError",
    "UTorrentClient",
    "VuzeClient",
    "get_available_clients",
    "get_client_display_name",
    "get_torrent_client",
]
