# torrent_clients/aria2.py
import asyncio
import base64
import logging
import posixpath
from typing import Any

from pydantic import Field

from .base import Schema, TorrentClient, parse_model
from .errors import AuthenticationError, HttpError, ProtocolError
from .metainfo import read_metainfo
from .models import AddTorrentOptions, Torrent, TorrentStatus, percent

logger = logging.getLogger(__name__)

STATUS_KEYS = [
    "gid", "status", "totalLength", "completedLength", "uploadLength",
    "downloadSpeed", "uploadSpeed", "dir", "files", "bittorrent", "errorMessage",
]

# tellWaiting/tellStopped page window
PAGE_SIZE = 1000

STATUS_MAP = {
    "active": TorrentStatus.DOWNLOADING,
    "waiting": TorrentStatus.QUEUED,
    "paused": TorrentStatus.PAUSED,
    "complete": TorrentStatus.COMPLETED,
    "error": TorrentStatus.ERROR,
    "removed": TorrentStatus.UNKNOWN,
}


def map_status(status: str, completed: bool = False) -> TorrentStatus:
    mapped = STATUS_MAP.get(status, TorrentStatus.UNKNOWN)
    if mapped is TorrentStatus.DOWNLOADING and completed:
        return TorrentStatus.SEEDING
    return mapped


class Aria2RpcError(Schema):
    code: int
    message: str


class Aria2RpcResponse(Schema):
    jsonrpc: str = "2.0"
    id: Any = None
    result: Any = None
    error: Aria2RpcError | None = None


class Aria2File(Schema):
    path: str = ""
    length: str = "0"
    completed_length: str = Field(default="0", alias="completedLength")
    selected: str = "true"


class Aria2InfoDict(Schema):
    name: str | None = None


class Aria2Bittorrent(Schema):
    info: Aria2InfoDict | None = None


class Aria2Download(Schema):
    # aria2 reports every number as a decimal string
    gid: str
    status: str
    total_length: str = Field(alias="totalLength")
    completed_length: str = Field(alias="completedLength")
    upload_length: str = Field(default="0", alias="uploadLength")
    download_speed: str = Field(alias="downloadSpeed")
    upload_speed: str = Field(alias="uploadSpeed")
    dir: str = ""
    files: list[Aria2File] = Field(default_factory=list)
    bittorrent: Aria2Bittorrent | None = None
    error_message: str | None = Field(default=None, alias="errorMessage")


def _int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def download_name(download: Aria2Download) -> str:
    """bittorrent.info.name, else the first file's basename, else the gid."""
    if download.bittorrent and download.bittorrent.info and download.bittorrent.info.name:
        return download.bittorrent.info.name
    for f in download.files:
        if f.path:
            return posixpath.basename(f.path.replace('\\', '/')) or f.path
    return download.gid


class Aria2Client(TorrentClient):
    """
    aria2 via its JSON-RPC 2.0 interface at /jsonrpc.

    Stateless: the RPC secret travels as the first positional parameter
    (``token:<secret>``) of every call. aria2 has no categories or tags.
    """

    def __init__(self, config, transport=None):
        super().__init__(config, transport)
        raw_url = (config.hostname.strip() or "http://localhost:6800").rstrip('/')
        if not raw_url.endswith("/jsonrpc"):
            raw_url = f"{raw_url}/jsonrpc"
        self.http = self._make_http(raw_url)
        self.secret = config.option("rpc_secret") or config.password or ""
        self._request_id = 0

    @property
    def display_name(self) -> str:
        return "Aria2"

    def _get_id(self) -> str:
        self._request_id += 1
        return str(self._request_id)

    async def _call(self, method: str, params: list | None = None, timeout: float | None = None):
        secure_params = list(params or [])
        if self.secret:
            secure_params.insert(0, f"token:{self.secret}")
        payload = {"jsonrpc": "2.0", "method": method, "params": secure_params, "id": self._get_id()}

        try:
            response = await self.http.post(json=payload, timeout=timeout)
        except HttpError as e:
            # aria2 answers JSON-RPC errors with a 4xx status and a JSON body
            response = e.response
            if "json" not in response.headers.get("content-type", ""):
                raise

        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON response from Aria2: {response.text[:100]}") from e

        envelope = parse_model(Aria2RpcResponse, body, f"Aria2 {method}")
        if envelope.error is not None:
            if "unauthorized" in envelope.error.message.lower():
                raise AuthenticationError("Aria2 rejected the RPC secret", code=envelope.error.code)
            raise ProtocolError(f"Aria2 API Error: {envelope.error.message}", code=envelope.error.code)
        return envelope.result

    # --- Session lifecycle (stateless) ---

    async def _login(self):
        await self._call("aria2.getVersion")

    async def _ping(self):
        await self._call("aria2.getVersion")

    # --- Torrents ---

    async def get_torrents(self) -> list[Torrent]:
        async def fetch():
            try:
                # siblings of a failed call are cancelled before the error leaves
                async with asyncio.TaskGroup() as group:
                    tasks = [
                        group.create_task(self._call("aria2.tellActive", [STATUS_KEYS])),
                        group.create_task(self._call("aria2.tellWaiting", [0, PAGE_SIZE, STATUS_KEYS])),
                        group.create_task(self._call("aria2.tellStopped", [0, PAGE_SIZE, STATUS_KEYS])),
                    ]
            except ExceptionGroup as e:
                raise e.exceptions[0]
            return [task.result() for task in tasks]

        active, waiting, stopped = await self._with_session(fetch)
        torrents = []
        for context, batch in (("tellActive", active), ("tellWaiting", waiting), ("tellStopped", stopped)):
            if not isinstance(batch, list):
                raise ProtocolError(f"Unexpected Aria2 aria2.{context} response: expected a list")
            for item in batch:
                torrents.append(self._map_torrent(parse_model(Aria2Download, item, f"Aria2 aria2.{context}")))
        return torrents

    def _map_torrent(self, d: Aria2Download) -> Torrent:
        size = _int(d.total_length)
        done = _int(d.completed_length)
        down = _int(d.download_speed)
        completed = size > 0 and done >= size
        return Torrent(
            id=d.gid,
            name=download_name(d),
            status=map_status(d.status, completed),
            progress=percent(done, size),
            size=size,
            download_speed=down,
            upload_speed=_int(d.upload_speed),
            eta=(size - done) // down if down > 0 and size > done else -1,
            save_path=d.dir,
            added_date=0,
        )

    def _add_options(self, options: AddTorrentOptions) -> dict:
        aria2_options = {}
        if options.path:
            aria2_options["dir"] = options.path
        if options.paused:
            aria2_options["pause"] = "true"
        return aria2_options

    async def add_torrent_url(self, url: str, options: AddTorrentOptions | None = None):
        options = self._resolve_options(options)
        await self._with_session(lambda: self._call("aria2.addUri", [[url], self._add_options(options)]))

    async def add_torrent_file(self, data: bytes, options: AddTorrentOptions | None = None):
        read_metainfo(data)
        options = self._resolve_options(options)
        encoded = base64.b64encode(data).decode("ascii")
        await self._with_session(
            lambda: self._call("aria2.addTorrent", [encoded, [], self._add_options(options)],
                               timeout=self.upload_timeout)
        )

    async def pause_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._call("aria2.pause", [torrent_id]))

    async def resume_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._call("aria2.unpause", [torrent_id]))

    async def remove_torrent(self, torrent_id: str, delete_data: bool = False):
        # aria2 never deletes files over RPC; delete_data is ignored
        await self._with_session(lambda: self._call("aria2.remove", [torrent_id]))
        try:
            await self._call("aria2.removeDownloadResult", [torrent_id])
        except ProtocolError as e:
            # Active downloads keep no result until they actually stop
            logger.debug("Aria2 removeDownloadResult for %s: %s", torrent_id, e)
