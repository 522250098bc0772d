# torrent_clients/transmission.py
import base64
import logging
from typing import Any

from pydantic import Field

from .base import Schema, TorrentClient, parse_model
from .errors import AuthenticationError, HttpError, ProtocolError, TaskError
from .metainfo import read_metainfo
from .models import AddTorrentOptions, Torrent, TorrentStatus

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Transmission-Session-Id"

TORRENT_FIELDS = [
    "id", "name", "status", "totalSize", "percentDone",
    "rateDownload", "rateUpload", "eta", "downloadDir",
    "addedDate", "error", "errorString", "labels",
]

# 0: Stopped, 1: Check wait, 2: Check, 3: Download wait, 4: Download, 5: Seed wait, 6: Seed
STATUS_MAP = {
    0: TorrentStatus.PAUSED,
    1: TorrentStatus.QUEUED,
    2: TorrentStatus.CHECKING,
    3: TorrentStatus.QUEUED,
    4: TorrentStatus.DOWNLOADING,
    5: TorrentStatus.QUEUED,
    6: TorrentStatus.SEEDING,
}


def map_status(status: int) -> TorrentStatus:
    return STATUS_MAP.get(status, TorrentStatus.UNKNOWN)


class TransmissionResponse(Schema):
    result: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class TransmissionTorrent(Schema):
    id: int
    name: str
    status: int
    total_size: int = Field(alias="totalSize")
    percent_done: float = Field(alias="percentDone")
    rate_download: int = Field(alias="rateDownload")
    rate_upload: int = Field(alias="rateUpload")
    eta: int
    download_dir: str = Field(alias="downloadDir")
    added_date: int = Field(alias="addedDate")
    error: int = 0
    error_string: str = Field(default="", alias="errorString")
    labels: list[str] = Field(default_factory=list)


class TorrentList(Schema):
    torrents: list[TransmissionTorrent] = Field(default_factory=list)


class LabelsOnly(Schema):
    id: int
    labels: list[str] = Field(default_factory=list)


class LabelList(Schema):
    torrents: list[LabelsOnly] = Field(default_factory=list)


def _torrent_ids(torrent_id: str) -> list:
    """Transmission accepts numeric ids and info-hash strings."""
    return [int(torrent_id)] if str(torrent_id).isdigit() else [torrent_id]


class TransmissionClient(TorrentClient):
    """
    Client for a Transmission RPC server.

    Basic auth on every request plus the X-Transmission-Session-Id header,
    which the server hands out (and rotates) through HTTP 409 responses.
    """

    def __init__(self, config, transport=None):
        super().__init__(config, transport)
        raw_url = config.hostname.strip() or "http://localhost:9091"

        # Transmission ALWAYS needs /transmission/rpc at the end
        if not raw_url.rstrip('/').endswith("/transmission/rpc"):
            base_url = f"{raw_url.rstrip('/')}/transmission/rpc"
        else:
            base_url = raw_url
        self.http = self._make_http(base_url, auth=self._basic_auth())
        self.session_id: str | None = None

    @property
    def display_name(self) -> str:
        return "Transmission"

    # --- Transport ---

    async def _rpc(self, method: str, arguments: dict | None = None, timeout: float | None = None) -> dict:
        """Performs one RPC call and returns its 'arguments' object."""
        headers = {}
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id

        try:
            response = await self.http.post(
                json={"method": method, "arguments": arguments or {}},
                headers=headers,
                timeout=timeout,
            )
        except HttpError as e:
            if e.status_code == 401:
                raise AuthenticationError("Transmission rejected the username or password", code=401) from e
            raise

        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON response from Transmission: {response.text[:100]}") from e

        envelope = parse_model(TransmissionResponse, body, f"Transmission {method}")
        if envelope.result != "success":
            raise TaskError(f"Transmission {method} failed: {envelope.result}", code=envelope.result)
        return envelope.arguments

    def _adopt_session_id(self, error: HttpError):
        session_id = error.response.headers.get(SESSION_HEADER)
        if not session_id:
            raise ProtocolError("Transmission answered 409 without a session id header") from error
        self.session_id = session_id

    # --- Session lifecycle ---

    async def _login(self):
        try:
            await self._rpc("session-get", {"fields": ["version"]})
        except HttpError as e:
            if e.status_code != 409:
                raise
            self._adopt_session_id(e)
            await self._rpc("session-get", {"fields": ["version"]})

    def _drop_session(self):
        self.session_id = None

    def _is_session_expired(self, error) -> bool:
        return isinstance(error, HttpError) and error.status_code == 409

    async def _recover_session(self, error):
        # The 409 response already carries the renewed id
        if isinstance(error, HttpError) and error.response.headers.get(SESSION_HEADER):
            self._adopt_session_id(error)
        else:
            await self._login()

    async def _ping(self):
        await self._rpc("session-get", {"fields": ["version"]})

    # --- Torrents ---

    async def get_torrents(self) -> list[Torrent]:
        result = await self._with_session(lambda: self._rpc("torrent-get", {"fields": TORRENT_FIELDS}))
        listing = parse_model(TorrentList, result, "Transmission torrent-get")
        return [self._map_torrent(t) for t in listing.torrents]

    def _map_torrent(self, t: TransmissionTorrent) -> Torrent:
        return Torrent(
            id=str(t.id),
            name=t.name,
            status=map_status(t.status),
            progress=t.percent_done * 100,
            size=t.total_size,
            download_speed=t.rate_download,
            upload_speed=t.rate_upload,
            eta=t.eta,
            save_path=t.download_dir,
            added_date=t.added_date * 1000,
            category=t.labels[0] if t.labels else None,
            tags=list(t.labels),
        )

    async def _add(self, arguments: dict, options: AddTorrentOptions, timeout: float | None = None):
        options = self._resolve_options(options)
        if options.path:
            arguments["download-dir"] = options.path
        if options.paused:
            arguments["paused"] = True
        if options.label:
            arguments["labels"] = [options.label]

        result = await self._with_session(lambda: self._rpc("torrent-add", arguments, timeout=timeout))
        if "torrent-duplicate" in result:
            name = result["torrent-duplicate"].get("name", "Unknown")
            logger.info('Torrent "%s" is already present on %s', name, self.config.name)

    async def add_torrent_url(self, url: str, options: AddTorrentOptions | None = None):
        await self._add({"filename": url}, options)

    async def add_torrent_file(self, data: bytes, options: AddTorrentOptions | None = None):
        read_metainfo(data)
        metainfo = base64.b64encode(data).decode("ascii")
        await self._add({"metainfo": metainfo}, options, timeout=self.upload_timeout)

    async def pause_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._rpc("torrent-stop", {"ids": _torrent_ids(torrent_id)}))

    async def resume_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._rpc("torrent-start", {"ids": _torrent_ids(torrent_id)}))

    async def remove_torrent(self, torrent_id: str, delete_data: bool = False):
        arguments = {"ids": _torrent_ids(torrent_id), "delete-local-data": bool(delete_data)}
        await self._with_session(lambda: self._rpc("torrent-remove", arguments))

    # --- Labels: tags natively, category is the first label ---

    async def _labels(self, torrent_id: str | None = None) -> list[LabelsOnly]:
        arguments: dict = {"fields": ["id", "labels"]}
        if torrent_id is not None:
            arguments["ids"] = _torrent_ids(torrent_id)
        result = await self._with_session(lambda: self._rpc("torrent-get", arguments))
        return parse_model(LabelList, result, "Transmission torrent-get").torrents

    async def _set_labels(self, torrent_id: str, labels: list[str]):
        arguments = {"ids": _torrent_ids(torrent_id), "labels": labels}
        await self._with_session(lambda: self._rpc("torrent-set", arguments))

    async def _torrent_labels(self, torrent_id: str) -> list[str]:
        torrents = await self._labels(torrent_id)
        return list(torrents[0].labels) if torrents else []

    async def get_categories(self) -> list[str]:
        return await self.get_tags()

    async def set_category(self, torrent_id: str, category: str):
        current = await self._torrent_labels(torrent_id)
        await self._set_labels(torrent_id, [category] + [l for l in current if l != category])

    async def get_tags(self) -> list[str]:
        labels = set()
        for t in await self._labels():
            labels.update(t.labels)
        return sorted(labels)

    async def add_tags(self, torrent_id: str, tags: list[str]):
        current = await self._torrent_labels(torrent_id)
        merged = current + [t for t in tags if t not in current]
        await self._set_labels(torrent_id, merged)

    async def remove_tags(self, torrent_id: str, tags: list[str]):
        current = await self._torrent_labels(torrent_id)
        await self._set_labels(torrent_id, [l for l in current if l not in tags])


class BiglyBTClient(TransmissionClient):
    """BiglyBT speaks Transmission RPC through its xmwebui plugin."""

    @property
    def display_name(self) -> str:
        return "BiglyBT"


class VuzeClient(TransmissionClient):
    """Vuze Remote WebUI is Transmission RPC compatible."""

    @property
    def display_name(self) -> str:
        return "Vuze"
