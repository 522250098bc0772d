# torrent_clients/flood.py
import base64
import logging

from pydantic import Field, TypeAdapter

from .base import Schema, TorrentClient, parse_model
from .errors import AuthenticationError, HttpError, ProtocolError
from .metainfo import read_metainfo
from .models import AddTorrentOptions, Torrent, TorrentStatus

logger = logging.getLogger(__name__)


def map_status(states: list[str]) -> TorrentStatus:
    # Flood reports a set of flags, e.g. ["downloading", "active"]
    if "error" in states:
        return TorrentStatus.ERROR
    if "downloading" in states:
        return TorrentStatus.DOWNLOADING
    if "seeding" in states:
        return TorrentStatus.SEEDING
    if "paused" in states or "stopped" in states:
        return TorrentStatus.PAUSED
    if "checking" in states:
        return TorrentStatus.CHECKING
    if "complete" in states:
        return TorrentStatus.COMPLETED
    return TorrentStatus.UNKNOWN


class FloodAuthResponse(Schema):
    success: bool
    token: str | None = None


class FloodTorrent(Schema):
    hash: str
    name: str
    state: list[str]
    progress: int | float  # 0-1
    up_rate: int = Field(alias="upRate")
    dn_rate: int = Field(alias="dnRate")
    size_bytes: int = Field(alias="sizeBytes")
    eta: int | float
    directory: str = ""
    tags: list[str] = Field(default_factory=list)
    added: int | None = None
    date_added: int | None = Field(default=None, alias="dateAdded")


class FloodTorrentList(Schema):
    # older servers send a list, 4.x an object keyed by hash
    torrents: list[FloodTorrent] | dict[str, FloodTorrent]


TagList = TypeAdapter(list[str])


class FloodClient(TorrentClient):
    """
    Flood web UI REST API under /api.

    auth/authenticate hands back a JWT, sent as a bearer token on every
    later call; servers that only set the jwt cookie are covered by the
    cookie jar. A 401 means the token expired.
    """

    def __init__(self, config, transport=None):
        super().__init__(config, transport)
        raw_url = (config.hostname.strip() or "http://localhost:3000").rstrip('/')
        self.http = self._make_http(f"{raw_url}/api")
        self.token: str | None = None

    @property
    def display_name(self) -> str:
        return "Flood"

    def _headers(self) -> dict:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def _send(self, method: str, path: str, **kwargs):
        return await self._with_session(
            lambda: self.http.request(method, path, headers=self._headers(), **kwargs)
        )

    async def _json(self, path: str):
        response = await self._send("GET", path)
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON response from Flood {path}: {response.text[:100]}") from e

    # --- Session lifecycle ---

    async def _login(self):
        logger.info("Logging in to Flood %s as %s", self.http.base_url, self.config.username)
        try:
            response = await self.http.post(
                "auth/authenticate",
                json={"username": self.config.username or "", "password": self.config.password or ""},
            )
        except HttpError as e:
            if e.status_code == 401:
                raise AuthenticationError("Flood rejected the username or password", code=401) from e
            raise
        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON response from Flood auth/authenticate: {response.text[:100]}") from e
        auth = parse_model(FloodAuthResponse, body, "Flood auth/authenticate")
        if not auth.success:
            raise AuthenticationError("Flood authentication failed")
        self.token = auth.token

    def _drop_session(self):
        self.token = None
        self.http.clear_cookies()

    def _is_session_expired(self, error) -> bool:
        return isinstance(error, HttpError) and error.status_code == 401

    async def _ping(self):
        await self.http.get("torrents", headers=self._headers())

    # --- Torrents ---

    async def get_torrents(self) -> list[Torrent]:
        data = await self._json("torrents")
        listing = parse_model(FloodTorrentList, data, "Flood torrents")
        rows = listing.torrents.values() if isinstance(listing.torrents, dict) else listing.torrents
        return [self._map_torrent(t) for t in rows]

    def _map_torrent(self, f: FloodTorrent) -> Torrent:
        added = f.added or f.date_added or 0
        return Torrent(
            id=f.hash,
            name=f.name,
            status=map_status(f.state),
            progress=f.progress * 100,
            size=f.size_bytes,
            download_speed=f.dn_rate,
            upload_speed=f.up_rate,
            eta=f.eta,
            save_path=f.directory,
            added_date=added * 1000,
            category=f.tags[0] if f.tags else None,
            tags=list(f.tags),
        )

    def _add_body(self, options: AddTorrentOptions) -> dict:
        body = {"start": not options.paused, "tags": [options.label] if options.label else []}
        if options.path:
            body["destination"] = options.path
        return body

    async def add_torrent_url(self, url: str, options: AddTorrentOptions | None = None):
        options = self._resolve_options(options)
        await self._send("POST", "torrents/add-urls", json={"urls": [url], **self._add_body(options)})

    async def add_torrent_file(self, data: bytes, options: AddTorrentOptions | None = None):
        read_metainfo(data)
        options = self._resolve_options(options)
        encoded = base64.b64encode(data).decode("ascii")
        await self._send(
            "POST", "torrents/add-files",
            json={"files": [encoded], **self._add_body(options)},
            timeout=self.upload_timeout,
        )

    async def pause_torrent(self, torrent_id: str):
        await self._send("POST", "torrents/stop", json={"hashes": [torrent_id]})

    async def resume_torrent(self, torrent_id: str):
        await self._send("POST", "torrents/start", json={"hashes": [torrent_id]})

    async def remove_torrent(self, torrent_id: str, delete_data: bool = False):
        await self._send("POST", "torrents/delete", json={"hashes": [torrent_id], "deleteData": delete_data})

    # --- Tags, which double as categories ---

    async def get_categories(self) -> list[str]:
        return await self.get_tags()

    async def set_category(self, torrent_id: str, category: str):
        await self.add_tags(torrent_id, [category])

    async def get_tags(self) -> list[str]:
        try:
            data = await self._json("tags")
        except HttpError as e:
            if e.status_code != 404:
                raise
            # no tag endpoint; collect the tags in use instead
            tags = []
            for torrent in await self.get_torrents():
                for tag in torrent.tags:
                    if tag not in tags:
                        tags.append(tag)
            return tags
        return parse_model(TagList, data, "Flood tags")

    async def _torrent_tags(self, torrent_id: str) -> list[str]:
        for torrent in await self.get_torrents():
            if torrent.id == torrent_id:
                return torrent.tags
        return []

    async def _set_tags(self, torrent_id: str, tags: list[str]):
        # the endpoint replaces the torrent's whole tag set
        await self._send("PATCH", "torrents/tags", json={"hashes": [torrent_id], "tags": tags})

    async def add_tags(self, torrent_id: str, tags: list[str]):
        current = await self._torrent_tags(torrent_id)
        await self._set_tags(torrent_id, current + [t for t in tags if t not in current])

    async def remove_tags(self, torrent_id: str, tags: list[str]):
        current = await self._torrent_tags(torrent_id)
        await self._set_tags(torrent_id, [t for t in current if t not in tags])
