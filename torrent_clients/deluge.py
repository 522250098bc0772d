# torrent_clients/deluge.py
import base64
import logging
from typing import Any

from .base import Schema, TorrentClient, parse_model
from .errors import AuthenticationError, ConnectivityError, HttpError, ProtocolError
from .metainfo import info_hash, magnet_info_hash
from .models import AddTorrentOptions, Torrent, TorrentStatus

logger = logging.getLogger(__name__)

# Deluge reports "Not authenticated" with error code 1
NOT_AUTHENTICATED = 1

TORRENT_KEYS = [
    "name", "state", "progress", "eta",
    "download_payload_rate", "upload_payload_rate",
    "total_size", "hash", "save_path", "ratio", "queue",
]

STATUS_MAP = {
    "downloading": TorrentStatus.DOWNLOADING,
    "seeding": TorrentStatus.SEEDING,
    "paused": TorrentStatus.PAUSED,
    "checking": TorrentStatus.CHECKING,
    "queued": TorrentStatus.QUEUED,
    "error": TorrentStatus.ERROR,
}


def map_status(state: str) -> TorrentStatus:
    return STATUS_MAP.get((state or "").lower(), TorrentStatus.UNKNOWN)


class DelugeRpcError(Schema):
    message: str
    code: int | None = None


class DelugeRpcResponse(Schema):
    result: Any = None
    error: DelugeRpcError | None = None
    id: int


class DelugeTorrent(Schema):
    hash: str
    name: str
    state: str
    progress: float  # 0-100
    eta: float
    save_path: str
    download_payload_rate: float
    upload_payload_rate: float
    total_size: int
    ratio: float = 0.0
    queue: int = -1


class DelugeUpdateUi(Schema):
    torrents: dict[str, DelugeTorrent] | None = None
    filters: dict[str, Any] | None = None
    stats: dict[str, Any] | None = None
    connected: bool | None = None


class DelugeHost(Schema):
    id: str
    address: str
    port: int


class DelugeClient(TorrentClient):
    """
    Client for the Deluge Web API (JSON-RPC over /json).

    The WebUI is separate from the daemon: after auth.login the session is
    only usable once the WebUI is connected to a daemon host.
    """

    def __init__(self, config, transport=None):
        super().__init__(config, transport)
        raw_url = config.hostname.strip() or "http://localhost:8112"

        # Ensure URL ends with /json
        if not raw_url.rstrip('/').endswith("/json"):
            base_url = f"{raw_url.rstrip('/')}/json"
        else:
            base_url = raw_url
        self.http = self._make_http(base_url)
        self._request_id = 0

    @property
    def display_name(self) -> str:
        return "Deluge"

    def _get_id(self):
        self._request_id += 1
        return self._request_id

    async def _request(self, method: str, params: list | None = None, timeout: float | None = None):
        """Internal helper for Deluge JSON-RPC."""
        payload = {
            "method": method,
            "params": params if params is not None else [],
            "id": self._get_id(),
        }
        headers = {'Accept': 'application/json'}

        try:
            response = await self.http.post(json=payload, headers=headers, timeout=timeout)
        except HttpError as e:
            if e.status_code == 401:
                raise AuthenticationError("Deluge rejected the request as unauthenticated", code=401) from e
            raise

        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON response from Deluge: {response.text[:100]}") from e

        envelope = parse_model(DelugeRpcResponse, body, f"Deluge {method}")
        if envelope.error is not None:
            raise ProtocolError(f"Deluge API Error: {envelope.error.message}", code=envelope.error.code)
        return envelope.result

    # --- Session lifecycle ---

    async def _login(self):
        logger.debug("Deluge handshake with %s", self.http.base_url)
        # 1. Auth with WebUI, which only takes a password
        is_authed = await self._request("auth.login", [self.config.password or ""])
        if is_authed is not True:
            raise AuthenticationError("Deluge rejected the password")

        # 2. Ensure WebUI is connected to a daemon
        await self._ensure_daemon_connection()
        logger.debug("Deluge handshake complete")

    async def _ensure_daemon_connection(self):
        connected = await self._request("web.connected")
        if connected is True:
            return

        hosts = await self._request("web.get_hosts")
        if not isinstance(hosts, list):
            raise ProtocolError("Unexpected Deluge web.get_hosts response")
        if not hosts:
            raise ConnectivityError("No daemons available")

        # host structure: [id, ip, port, status-or-user]
        first = hosts[0]
        if not isinstance(first, list) or len(first) < 3:
            raise ProtocolError("Unexpected Deluge web.get_hosts entry")
        host = parse_model(DelugeHost, {"id": first[0], "address": first[1], "port": first[2]}, "Deluge web.get_hosts")
        logger.info("Connecting Deluge WebUI to daemon %s:%s", host.address, host.port)
        await self._request("web.connect", [host.id])

    async def _logout(self):
        await self._request("auth.delete_session")

    def _drop_session(self):
        self.http.clear_cookies()

    def _is_session_expired(self, error) -> bool:
        if not isinstance(error, ProtocolError):
            return False
        return error.code == NOT_AUTHENTICATED or "not authenticated" in str(error).lower()

    async def _ping(self):
        await self._request("web.connected")

    # --- Torrents ---

    async def get_torrents(self) -> list[Torrent]:
        result = await self._with_session(lambda: self._request("web.update_ui", [TORRENT_KEYS, {}]))
        ui = parse_model(DelugeUpdateUi, result, "Deluge web.update_ui")
        if not ui.torrents:
            return []
        return [self._map_torrent(t) for t in ui.torrents.values()]

    def _map_torrent(self, t: DelugeTorrent) -> Torrent:
        # update_ui carries neither time_added nor the label for these keys
        return Torrent(
            id=t.hash,
            name=t.name,
            status=map_status(t.state),
            progress=t.progress,
            size=t.total_size,
            download_speed=t.download_payload_rate,
            upload_speed=t.upload_payload_rate,
            eta=t.eta,
            save_path=t.save_path,
            added_date=0,
        )

    def _add_options(self, options: AddTorrentOptions) -> dict:
        deluge_options = {"add_paused": bool(options.paused)}
        if options.path:
            deluge_options["download_location"] = options.path
        return deluge_options

    async def add_torrent_url(self, url: str, options: AddTorrentOptions | None = None):
        options = self._resolve_options(options)
        torrent_hash = await self._with_session(
            lambda: self._request("core.add_torrent_url", [url, self._add_options(options), {}])
        )
        if options.label and not torrent_hash:
            # some daemons return no hash for magnet adds
            torrent_hash = magnet_info_hash(url)
        if options.label and torrent_hash:
            await self.set_category(torrent_hash, options.label)

    async def add_torrent_file(self, data: bytes, options: AddTorrentOptions | None = None):
        options = self._resolve_options(options)
        filename = f"{info_hash(data)}.torrent"
        encoded = base64.b64encode(data).decode("ascii")
        torrent_hash = await self._with_session(
            lambda: self._request(
                "core.add_torrent_file", [filename, encoded, self._add_options(options)],
                timeout=self.upload_timeout,
            )
        )
        if options.label and torrent_hash:
            await self.set_category(torrent_hash, options.label)

    async def pause_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._request("core.pause_torrent", [[torrent_id]]))

    async def resume_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._request("core.resume_torrent", [[torrent_id]]))

    async def remove_torrent(self, torrent_id: str, delete_data: bool = False):
        await self._with_session(lambda: self._request("core.remove_torrent", [torrent_id, bool(delete_data)]))

    # --- Labels plugin: labels are categories, there are no separate tags ---

    async def get_categories(self) -> list[str]:
        try:
            labels = await self._with_session(lambda: self._request("label.get_labels"))
        except ProtocolError as e:
            if self._is_session_expired(e):
                raise
            # Label plugin not enabled
            logger.debug("Deluge label plugin unavailable: %s", e)
            return []
        return [str(label) for label in labels or []]

    async def set_category(self, torrent_id: str, category: str):
        existing = await self.get_categories()
        if category and category not in existing:
            await self._with_session(lambda: self._request("label.add", [category]))
        await self._with_session(lambda: self._request("label.set_torrent", [torrent_id, category]))
