# torrent_clients/utorrent.py
import logging
import time

from bs4 import BeautifulSoup

from .base import Schema, TorrentClient, parse_model
from .errors import AuthenticationError, HttpError, ProtocolError
from .metainfo import read_metainfo
from .models import AddTorrentOptions, Torrent, TorrentStatus

logger = logging.getLogger(__name__)

# Status bits
STARTED = 1
CHECKING = 2
START_AFTER_CHECK = 4
CHECKED = 8
ERROR = 16
PAUSED = 32
QUEUED = 64
LOADED = 128

# Checked in this order; the first matching bit wins
STATUS_PRIORITY = [
    (ERROR, TorrentStatus.ERROR),
    (PAUSED, TorrentStatus.PAUSED),
    (CHECKING, TorrentStatus.CHECKING),
    (STARTED, TorrentStatus.DOWNLOADING),
    (QUEUED, TorrentStatus.QUEUED),
]

# List row columns
HASH, STATUS, NAME, SIZE, PERCENT_PROGRESS = 0, 1, 2, 3, 4
UPLOAD_SPEED, DOWNLOAD_SPEED, ETA, LABEL = 8, 9, 10, 11
ADDED_ON, SAVE_PATH = 23, 26  # uTorrent 3.x extended columns

COMPLETE_PERMILLE = 1000


def map_status(status: int, permille: int = 0) -> TorrentStatus:
    for bit, mapped in STATUS_PRIORITY:
        if status & bit:
            if mapped is TorrentStatus.DOWNLOADING and permille >= COMPLETE_PERMILLE:
                return TorrentStatus.SEEDING
            return mapped
    if permille >= COMPLETE_PERMILLE:
        return TorrentStatus.COMPLETED
    return TorrentStatus.PAUSED


Cell = str | int | float


class UTorrentList(Schema):
    torrents: list[list[Cell]]
    label: list[list[Cell]] | None = None
    torrentc: str | None = None


def _cell(row: list, index: int, default=None):
    return row[index] if len(row) > index else default


def _number(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class UTorrentClient(TorrentClient):
    """
    Client for the uTorrent WebUI family (/gui/).

    Every call carries an anti-CSRF token scraped from /gui/token.html;
    a 400 or 401 invalidates it.
    """

    def __init__(self, config, transport=None):
        super().__init__(config, transport)
        raw_url = (config.hostname.strip() or "http://localhost:8080").rstrip('/')
        if not raw_url.endswith("/gui"):
            raw_url = f"{raw_url}/gui"
        self.http = self._make_http(raw_url, auth=self._basic_auth())
        self.token: str | None = None

    @property
    def display_name(self) -> str:
        return "uTorrent"

    async def _fetch_token(self) -> str:
        try:
            response = await self.http.get("token.html")
        except HttpError as e:
            if e.status_code in (401, 403):
                raise AuthenticationError("uTorrent rejected the username or password", code=e.status_code) from e
            raise

        soup = BeautifulSoup(response.text, "html.parser")
        token_div = soup.find("div", id="token")
        token = token_div.get_text(strip=True) if token_div else ""
        if not token:
            raise ProtocolError("Failed to retrieve uTorrent token from token.html")
        return token

    async def _login(self):
        self.token = await self._fetch_token()

    def _drop_session(self):
        self.token = None

    def _is_session_expired(self, error) -> bool:
        return isinstance(error, HttpError) and error.status_code in (400, 401)

    async def _ping(self):
        await self._call([("list", "1")])

    async def _call(self, params: list[tuple[str, str]], files=None):
        query = list(params) + [("token", self.token or ""), ("t", str(int(time.time() * 1000)))]
        if files is not None:
            response = await self.http.post("/", params=query, files=files, timeout=self.upload_timeout)
        else:
            response = await self.http.get("/", params=query)
        if not response.content.strip():
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON response from uTorrent: {response.text[:100]}") from e

    async def _list(self) -> UTorrentList:
        body = await self._with_session(lambda: self._call([("list", "1")]))
        return parse_model(UTorrentList, body, "uTorrent list")

    # --- Torrents ---

    async def get_torrents(self) -> list[Torrent]:
        listing = await self._list()
        return [self._map_torrent(row) for row in listing.torrents]

    def _map_torrent(self, row: list) -> Torrent:
        if len(row) <= LABEL:
            raise ProtocolError(f"uTorrent list row has {len(row)} columns, expected at least {LABEL + 1}")
        permille = _number(row[PERCENT_PROGRESS])
        label = str(row[LABEL])
        return Torrent(
            id=str(row[HASH]),
            name=str(row[NAME]),
            status=map_status(_number(row[STATUS]), permille),
            progress=permille / 10,
            size=_number(row[SIZE]),
            download_speed=_number(row[DOWNLOAD_SPEED]),
            upload_speed=_number(row[UPLOAD_SPEED]),
            eta=_number(row[ETA]),
            save_path=str(_cell(row, SAVE_PATH, "")),
            added_date=_number(_cell(row, ADDED_ON, 0)) * 1000,
            category=label or None,
        )

    async def add_torrent_url(self, url: str, options: AddTorrentOptions | None = None):
        options = self._resolve_options(options)
        params = [("action", "add-url"), ("s", url)]
        if options.path:
            params.append(("path", options.path))
        await self._with_session(lambda: self._call(params))

    async def add_torrent_file(self, data: bytes, options: AddTorrentOptions | None = None):
        read_metainfo(data)
        options = self._resolve_options(options)
        params = [("action", "add-file")]
        if options.path:
            params.append(("path", options.path))
        files = {"torrent_file": ("torrent.torrent", data, "application/x-bittorrent")}
        await self._with_session(lambda: self._call(params, files=files))

    async def pause_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._call([("action", "stop"), ("hash", torrent_id)]))

    async def resume_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._call([("action", "start"), ("hash", torrent_id)]))

    async def remove_torrent(self, torrent_id: str, delete_data: bool = False):
        action = "removedata" if delete_data else "remove"
        await self._with_session(lambda: self._call([("action", action), ("hash", torrent_id)]))

    # --- Labels are categories; there are no tags ---

    async def get_categories(self) -> list[str]:
        listing = await self._list()
        return [str(entry[0]) for entry in listing.label or [] if entry]

    async def set_category(self, torrent_id: str, category: str):
        params = [("action", "setprops"), ("hash", torrent_id), ("s", "label"), ("v", category)]
        await self._with_session(lambda: self._call(params))
