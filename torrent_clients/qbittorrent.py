# torrent_clients/qbittorrent.py
import logging

from pydantic import Field, TypeAdapter

from .base import Schema, TorrentClient, parse_model
from .errors import AuthenticationError, HttpError, ProtocolError, TaskError
from .metainfo import read_metainfo
from .models import AddTorrentOptions, Torrent, TorrentStatus

logger = logging.getLogger(__name__)

STATE_MAP = {
    "metaDL": TorrentStatus.DOWNLOADING,
    "forcedMetaDL": TorrentStatus.DOWNLOADING,
    "allocating": TorrentStatus.DOWNLOADING,
    "downloading": TorrentStatus.DOWNLOADING,
    "forcedDL": TorrentStatus.DOWNLOADING,
    "stalledDL": TorrentStatus.DOWNLOADING,
    "uploading": TorrentStatus.SEEDING,
    "forcedUP": TorrentStatus.SEEDING,
    "stalledUP": TorrentStatus.SEEDING,
    "pausedDL": TorrentStatus.PAUSED,
    "pausedUP": TorrentStatus.PAUSED,
    "stoppedDL": TorrentStatus.PAUSED,
    "stoppedUP": TorrentStatus.PAUSED,
    "queuedDL": TorrentStatus.QUEUED,
    "queuedUP": TorrentStatus.QUEUED,
    "checkingDL": TorrentStatus.CHECKING,
    "checkingUP": TorrentStatus.CHECKING,
    "checkingResumeData": TorrentStatus.CHECKING,
    "moving": TorrentStatus.CHECKING,
    "error": TorrentStatus.ERROR,
    "missingFiles": TorrentStatus.ERROR,
}


def map_status(state: str) -> TorrentStatus:
    return STATE_MAP.get(state, TorrentStatus.UNKNOWN)


class QBittorrentTorrent(Schema):
    hash: str
    name: str
    state: str
    size: int
    progress: int | float  # 0-1, whole numbers arrive as int
    dlspeed: int
    upspeed: int
    eta: int
    save_path: str
    added_on: int
    category: str = ""
    tags: str = ""  # comma separated


TorrentInfoList = TypeAdapter(list[QBittorrentTorrent])


class QBittorrentCategory(Schema):
    name: str
    save_path: str = Field(default="", alias="savePath")


CategoryMap = TypeAdapter(dict[str, QBittorrentCategory])
TagList = TypeAdapter(list[str])


class QBittorrentClient(TorrentClient):
    """
    qBittorrent WebUI API v2.

    Cookie session from auth/login; a 403 on any later call means the SID
    cookie expired.
    """

    def __init__(self, config, transport=None):
        super().__init__(config, transport)
        raw_url = (config.hostname.strip() or "http://localhost:8080").rstrip('/')
        self.base_url = raw_url
        self.http = self._make_http(f"{raw_url}/api/v2")

    @property
    def display_name(self) -> str:
        return "qBittorrent"

    def _headers(self) -> dict:
        # qBittorrent v4.1+ requires a Referer header to prevent CSRF errors
        return {"Referer": self.base_url}

    async def _json(self, path: str):
        response = await self._with_session(lambda: self._get(path))
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON response from qBittorrent {path}: {response.text[:100]}") from e

    async def _get(self, path: str, **kwargs):
        return await self.http.get(path, headers=self._headers(), **kwargs)

    async def _post(self, path: str, **kwargs):
        return await self.http.post(path, headers=self._headers(), **kwargs)

    # --- Session lifecycle ---

    async def _login(self):
        logger.info("Logging in to qBittorrent %s as %s", self.base_url, self.config.username)
        try:
            response = await self._post(
                "auth/login",
                data={"username": self.config.username or "", "password": self.config.password or ""},
            )
        except HttpError as e:
            if e.status_code == 403:
                raise AuthenticationError("qBittorrent banned this IP after too many failed logins", code=403) from e
            raise
        if "Fails." in response.text:
            raise AuthenticationError("qBittorrent rejected the username or password")

    async def _logout(self):
        await self._post("auth/logout")

    def _drop_session(self):
        self.http.clear_cookies()

    def _is_session_expired(self, error) -> bool:
        return isinstance(error, HttpError) and error.status_code == 403

    async def _verify_connection(self):
        await self._get("app/version")

    async def _ping(self):
        await self._get("app/version")

    # --- Torrents ---

    async def get_torrents(self) -> list[Torrent]:
        data = await self._json("torrents/info")
        rows = parse_model(TorrentInfoList, data, "qBittorrent torrents/info")
        return [self._map_torrent(t) for t in rows]

    def _map_torrent(self, q: QBittorrentTorrent) -> Torrent:
        return Torrent(
            id=q.hash,
            name=q.name,
            status=map_status(q.state),
            progress=q.progress * 100,
            size=q.size,
            download_speed=q.dlspeed,
            upload_speed=q.upspeed,
            eta=q.eta,
            save_path=q.save_path,
            added_date=q.added_on * 1000,
            category=q.category or None,
            tags=[t.strip() for t in q.tags.split(",") if t.strip()],
        )

    def _add_form(self, options: AddTorrentOptions) -> dict:
        form = {}
        if options.path:
            form["savepath"] = options.path
        if options.label:
            form["category"] = options.label
        if options.paused:
            # "stopped" replaced "paused" in WebUI API 2.11
            form["paused"] = "true"
            form["stopped"] = "true"
        return form

    async def add_torrent_url(self, url: str, options: AddTorrentOptions | None = None):
        options = self._resolve_options(options)
        form = {"urls": url, **self._add_form(options)}
        response = await self._with_session(lambda: self._post("torrents/add", data=form))
        self._check_added(response)

    async def add_torrent_file(self, data: bytes, options: AddTorrentOptions | None = None):
        read_metainfo(data)
        options = self._resolve_options(options)
        form = self._add_form(options)
        files = {"torrents": ("torrent.torrent", data, "application/x-bittorrent")}
        response = await self._with_session(
            lambda: self._post("torrents/add", data=form, files=files, timeout=self.upload_timeout)
        )
        self._check_added(response)

    def _check_added(self, response):
        # invalid or duplicate torrents still answer 200
        if "Fails." in response.text:
            raise TaskError("qBittorrent refused the torrent")

    async def _control(self, legacy: str, current: str, torrent_id: str):
        """Tries the pre-5.0 endpoint first and falls back on 404."""
        try:
            await self._with_session(lambda: self._post(f"torrents/{legacy}", data={"hashes": torrent_id}))
        except HttpError as e:
            if e.status_code != 404:
                raise
            await self._with_session(lambda: self._post(f"torrents/{current}", data={"hashes": torrent_id}))

    async def pause_torrent(self, torrent_id: str):
        await self._control("pause", "stop", torrent_id)

    async def resume_torrent(self, torrent_id: str):
        await self._control("resume", "start", torrent_id)

    async def remove_torrent(self, torrent_id: str, delete_data: bool = False):
        form = {"hashes": torrent_id, "deleteFiles": "true" if delete_data else "false"}
        await self._with_session(lambda: self._post("torrents/delete", data=form))

    # --- Native categories and tags ---

    async def get_categories(self) -> list[str]:
        data = await self._json("torrents/categories")
        return list(parse_model(CategoryMap, data, "qBittorrent torrents/categories"))

    async def set_category(self, torrent_id: str, category: str):
        form = {"hashes": torrent_id, "category": category}
        await self._with_session(lambda: self._post("torrents/setCategory", data=form))

    async def get_tags(self) -> list[str]:
        data = await self._json("torrents/tags")
        return parse_model(TagList, data, "qBittorrent torrents/tags")

    async def add_tags(self, torrent_id: str, tags: list[str]):
        form = {"hashes": torrent_id, "tags": ",".join(tags)}
        await self._with_session(lambda: self._post("torrents/addTags", data=form))

    async def remove_tags(self, torrent_id: str, tags: list[str]):
        form = {"hashes": torrent_id, "tags": ",".join(tags)}
        await self._with_session(lambda: self._post("torrents/removeTags", data=form))
