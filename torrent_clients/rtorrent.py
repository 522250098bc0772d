# torrent_clients/rtorrent.py
import logging

from pydantic import TypeAdapter

from .base import Schema, TorrentClient, parse_model
from .errors import AuthenticationError, HttpError
from .metainfo import read_metainfo
from .models import AddTorrentOptions, Torrent, TorrentStatus, percent
from .xmlrpc import Base64, build_call, parse_response

logger = logging.getLogger(__name__)

# Standard ruTorrent label field is d.custom1
LABEL_ATTR = "d.custom1"

# Column order of the d.multicall2 rows, see RTorrentRow
MULTICALL_FIELDS = [
    "d.hash=", "d.name=", "d.size_bytes=", "d.bytes_done=",
    "d.up.rate=", "d.down.rate=", "d.complete=", "d.state=",
    "d.is_active=", LABEL_ATTR + "=", "d.ratio=", "d.hashing=",
    "d.base_path=", "d.up.total=", "d.message=", "d.custom=addtime",
]

# Integer-ish columns: i8 arrives as a digit string, i4 as int
Count = int | str


class RTorrentRow(Schema):
    hash: str
    name: str
    size: Count
    bytes_done: Count
    up_rate: Count
    down_rate: Count
    complete: Count
    state: Count
    is_active: Count
    label: str
    ratio: Count
    hashing: Count
    save_path: str
    up_total: Count
    message: str = ""
    added: str = ""

    @classmethod
    def from_tuple(cls, row) -> "RTorrentRow":
        if not isinstance(row, list):
            return parse_model(cls, row, "rTorrent d.multicall2 row")
        names = list(cls.model_fields)
        return parse_model(cls, dict(zip(names, row)), "rTorrent d.multicall2 row")


RowList = TypeAdapter(list[list])


def _flag(value) -> int:
    return int(value or 0)


def map_status(state, is_active, complete, hashing) -> TorrentStatus:
    if _flag(hashing) != 0:
        return TorrentStatus.CHECKING
    if _flag(state) == 0:
        return TorrentStatus.PAUSED
    if _flag(is_active) == 0:
        return TorrentStatus.PAUSED
    if _flag(complete) == 1:
        return TorrentStatus.SEEDING
    return TorrentStatus.DOWNLOADING


def _quote(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


class RTorrentClient(TorrentClient):
    """
    Client for rTorrent over XML-RPC, either behind ruTorrent's httprpc
    plugin or a plain /RPC2 mount. Stateless: HTTP basic auth on every call.
    """

    def __init__(self, config, transport=None):
        super().__init__(config, transport)
        url = (config.hostname.strip() or "http://localhost").rstrip('/')
        if not url.endswith("/RPC2") and "action.php" not in url:
            # Default to the ruTorrent plugin path, the most common web setup
            url = f"{url}/plugins/httprpc/action.php"
        self.http = self._make_http(url, auth=self._basic_auth())

    @property
    def display_name(self) -> str:
        return "rTorrent"

    async def _request(self, method: str, params: list | None = None, timeout: float | None = None):
        payload = build_call(method, params or [])
        headers = {"Content-Type": "text/xml"}
        try:
            resp = await self.http.post(content=payload.encode("utf-8"), headers=headers, timeout=timeout)
        except HttpError as e:
            if e.status_code in (401, 403):
                raise AuthenticationError("rTorrent rejected the credentials", code=e.status_code) from e
            raise
        return parse_response(resp.text)

    # --- Session lifecycle (stateless) ---

    async def _login(self):
        await self._request("system.client_version")

    async def _ping(self):
        await self._request("system.client_version")

    # --- Torrents ---

    async def get_torrents(self) -> list[Torrent]:
        data = await self._with_session(lambda: self._request("d.multicall2", ["", "main"] + MULTICALL_FIELDS))
        rows = parse_model(RowList, data, "rTorrent d.multicall2")
        return [self._map_torrent(RTorrentRow.from_tuple(row)) for row in rows]

    def _map_torrent(self, row: RTorrentRow) -> Torrent:
        size = int(row.size)
        done = int(row.bytes_done)
        down_rate = int(row.down_rate)
        added = row.added.strip()
        return Torrent(
            id=row.hash,
            name=row.name,
            status=map_status(row.state, row.is_active, row.complete, row.hashing),
            progress=percent(done, size),
            size=size,
            download_speed=down_rate,
            upload_speed=int(row.up_rate),
            eta=(size - done) // down_rate if down_rate > 0 else -1,
            save_path=row.save_path,
            added_date=int(added) * 1000 if added.isdigit() else 0,
            category=row.label or None,
        )

    def _load_commands(self, options: AddTorrentOptions) -> list[str]:
        commands = []
        if options.path:
            commands.append(f'd.directory.set="{_quote(options.path)}"')
        if options.label:
            commands.append(f'{LABEL_ATTR}.set="{_quote(options.label)}"')
        return commands

    async def add_torrent_url(self, url: str, options: AddTorrentOptions | None = None):
        options = self._resolve_options(options)
        method = "load.normal" if options.paused else "load.start"
        params = ["", url] + self._load_commands(options)
        await self._with_session(lambda: self._request(method, params))

    async def add_torrent_file(self, data: bytes, options: AddTorrentOptions | None = None):
        read_metainfo(data)
        options = self._resolve_options(options)
        method = "load.raw" if options.paused else "load.raw_start"
        params = ["", Base64(data)] + self._load_commands(options)
        await self._with_session(lambda: self._request(method, params, timeout=self.upload_timeout))

    async def pause_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._request("d.stop", [torrent_id]))

    async def resume_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._request("d.start", [torrent_id]))

    async def remove_torrent(self, torrent_id: str, delete_data: bool = False):
        if delete_data:
            logger.debug("rTorrent d.erase keeps data on disk; delete_data ignored for %s", torrent_id)
        await self._with_session(lambda: self._request("d.erase", [torrent_id]))

    # --- Labels: d.custom1 is the category, no tags ---

    async def get_categories(self) -> list[str]:
        data = await self._with_session(lambda: self._request("d.multicall2", ["", "main", LABEL_ATTR + "="]))
        rows = parse_model(RowList, data, "rTorrent d.multicall2")
        return sorted({str(r[0]) for r in rows if r and r[0]})

    async def set_category(self, torrent_id: str, category: str):
        await self._with_session(lambda: self._request(LABEL_ATTR + ".set", [torrent_id, category]))
