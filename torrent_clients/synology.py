# torrent_clients/synology.py
"""
Synology Download Station client.

Session based: SYNO.API.Auth hands out a ``sid`` (plus an optional
``synotoken``) that every later call carries. Real endpoint paths are
discovered through SYNO.API.Info because some DSM versions move them.

Accounts with 2-step verification fail login with code 403 until an OTP is
supplied through ``client_options['otp_code']``. A successful OTP login
returns a device token; store ``SynologyClient.device_token`` as
``client_options['device_token']`` so later logins skip the OTP prompt.
"""
import logging
from typing import Any

from pydantic import TypeAdapter

from .base import Schema, TorrentClient, parse_model
from .errors import AuthenticationError, HttpError, ProtocolError, TaskError, TwoFactorRequiredError
from .metainfo import read_metainfo
from .models import AddTorrentOptions, Torrent, TorrentStatus, percent

logger = logging.getLogger(__name__)

QUERY_API = "SYNO.API.Info"
AUTH_API = "SYNO.API.Auth"
TASK_API = "SYNO.DownloadStation.Task"
INFO_API = "SYNO.DownloadStation.Info"

# Paths used when discovery fails or omits an API
DEFAULT_PATHS = {
    QUERY_API: "query.cgi",
    AUTH_API: "entry.cgi",
    TASK_API: "DownloadStation/task.cgi",
    INFO_API: "DownloadStation/info.cgi",
}
# Highest version we speak per API
DEFAULT_VERSIONS = {
    QUERY_API: 1,
    AUTH_API: 6,
    TASK_API: 1,
    INFO_API: 1,
}

SESSION_NAME = "DownloadStation"

OTP_REQUIRED = 403

AUTH_ERRORS = {
    400: "No such account or incorrect password",
    401: "Account disabled",
    402: "Permission denied",
    403: "2-factor authentication code required",
    404: "2-factor authentication failed",
    406: "Enforce 2FA required",
    407: "Blocked IP source",
    408: "Account is blocked due to too many failed attempts",
    409: "Network failure",
    410: "SID not found",
    411: "Account expired",
}

TASK_ERRORS = {
    400: "File upload failed",
    401: "Max number of tasks reached",
    402: "Destination denied",
    403: "Destination does not exist",
    404: "Invalid task ID",
    405: "Invalid task action",
    406: "No default destination",
    407: "Set destination failed",
    408: "File does not exist",
}

# Common codes shared by every API
COMMON_ERRORS = {
    100: "Unknown error",
    101: "Invalid parameter",
    102: "The requested API does not exist",
    103: "The requested method does not exist",
    104: "The requested version does not support the functionality",
    105: "The logged in session does not have permission",
    106: "Session timeout",
    107: "Session interrupted by duplicate login",
    119: "SID not found",
}
SESSION_EXPIRED_CODES = {106, 107, 119}

# Task status codes
WAITING = 1
DOWNLOADING = 2
PAUSED = 3
FINISHING = 4
FINISHED = 5
HASH_CHECKING = 6
SEEDING = 7
FILEHOSTING_WAITING = 8
EXTRACTING = 9
ERROR = 10

STATUS_MAP = {
    WAITING: TorrentStatus.QUEUED,
    DOWNLOADING: TorrentStatus.DOWNLOADING,
    PAUSED: TorrentStatus.PAUSED,
    FINISHING: TorrentStatus.COMPLETED,
    FINISHED: TorrentStatus.COMPLETED,
    HASH_CHECKING: TorrentStatus.CHECKING,
    SEEDING: TorrentStatus.SEEDING,
    FILEHOSTING_WAITING: TorrentStatus.QUEUED,
    EXTRACTING: TorrentStatus.CHECKING,
    ERROR: TorrentStatus.ERROR,
}

# Download Station 3.x reports the same states by name
STATUS_NAMES = {
    "waiting": WAITING,
    "downloading": DOWNLOADING,
    "paused": PAUSED,
    "finishing": FINISHING,
    "finished": FINISHED,
    "hash_checking": HASH_CHECKING,
    "seeding": SEEDING,
    "filehosting_waiting": FILEHOSTING_WAITING,
    "extracting": EXTRACTING,
    "error": ERROR,
}


def map_status(status: int | str) -> TorrentStatus:
    if isinstance(status, str):
        status = STATUS_NAMES.get(status.lower(), -1)
    return STATUS_MAP.get(status, TorrentStatus.UNKNOWN)


def auth_error(code: int) -> AuthenticationError:
    message = AUTH_ERRORS.get(code) or COMMON_ERRORS.get(code) or f"Authentication failed (code: {code})"
    if code == OTP_REQUIRED:
        return TwoFactorRequiredError(message, code=code)
    return AuthenticationError(message, code=code)


def task_error(code: int) -> TaskError:
    message = TASK_ERRORS.get(code) or COMMON_ERRORS.get(code) or f"Task operation failed (code: {code})"
    return TaskError(message, code=code)


class SynologyError(Schema):
    code: int


class SynologyResponse(Schema):
    success: bool
    data: Any = None
    error: SynologyError | None = None


class SynologyAuthData(Schema):
    sid: str
    synotoken: str | None = None
    did: str | None = None


class SynologyApiInfo(Schema):
    path: str
    minVersion: int
    maxVersion: int


ApiInfoMap = TypeAdapter(dict[str, SynologyApiInfo])


class SynologyTaskDetail(Schema):
    destination: str | None = None
    uri: str | None = None
    create_time: int | None = None


class SynologyTaskTransfer(Schema):
    size_downloaded: int = 0
    size_uploaded: int = 0
    speed_download: int = 0
    speed_upload: int = 0


class SynologyTaskAdditional(Schema):
    detail: SynologyTaskDetail | None = None
    transfer: SynologyTaskTransfer | None = None


class SynologyTask(Schema):
    id: str
    type: str
    title: str
    size: int
    status: int | str
    additional: SynologyTaskAdditional | None = None


class SynologyTaskList(Schema):
    total: int
    offset: int
    tasks: list[SynologyTask]


class SessionExpired(AuthenticationError):
    """A task call was refused because the sid is no longer valid."""


class SynologyClient(TorrentClient):
    """Download Station via the DSM Web API."""

    def __init__(self, config, transport=None):
        super().__init__(config, transport)
        base_url = (config.hostname.strip() or "http://localhost:5000").rstrip('/')
        self.http = self._make_http(f"{base_url}/webapi")
        self.api_paths: dict[str, str] = {}
        self.api_versions: dict[str, int] = {}
        self.sid: str | None = None
        self.synotoken: str | None = None
        self.device_token: str | None = config.option("device_token")

    @property
    def display_name(self) -> str:
        return "Synology Download Station"

    def _path(self, api: str) -> str:
        return self.api_paths.get(api) or DEFAULT_PATHS[api]

    def _version(self, api: str) -> int:
        return self.api_versions.get(api) or DEFAULT_VERSIONS[api]

    def _headers(self) -> dict:
        return {"X-SYNO-TOKEN": self.synotoken} if self.synotoken else {}

    async def _api(self, api: str, method: str, params: dict | None = None, files=None,
                   with_sid: bool = True) -> SynologyResponse:
        """Calls one API method and returns the parsed envelope."""
        query = {"api": api, "version": str(self._version(api)), "method": method}
        query.update(params or {})
        if with_sid and self.sid:
            query["_sid"] = self.sid

        if files is not None:
            response = await self.http.post(
                self._path(api), data=query, files=files,
                headers=self._headers(), timeout=self.upload_timeout,
            )
        else:
            response = await self.http.get(self._path(api), params=query, headers=self._headers())

        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON response from Synology {api}: {response.text[:100]}") from e
        return parse_model(SynologyResponse, body, f"Synology {api}.{method}")

    async def _task(self, method: str, params: dict | None = None, files=None) -> Any:
        envelope = await self._api(TASK_API, method, params, files=files)
        if not envelope.success:
            code = envelope.error.code if envelope.error else 0
            if code in SESSION_EXPIRED_CODES:
                raise SessionExpired(COMMON_ERRORS[code], code=code)
            raise task_error(code)
        return envelope.data

    # --- Session lifecycle ---

    async def _discover_apis(self):
        """Looks up real API paths via SYNO.API.Info; defaults stay on failure."""
        try:
            envelope = await self._api(
                QUERY_API, "query",
                {"query": ",".join([AUTH_API, TASK_API, INFO_API])},
                with_sid=False,
            )
        except (HttpError, ProtocolError) as e:
            logger.warning("Synology API discovery failed, using defaults: %s", e)
            return
        if not envelope.success or not isinstance(envelope.data, dict):
            logger.warning("Synology API discovery unsuccessful, using defaults")
            return

        discovered = parse_model(ApiInfoMap, envelope.data, "Synology SYNO.API.Info")
        for api, info in discovered.items():
            if api not in DEFAULT_VERSIONS or api == QUERY_API:
                continue
            self.api_paths[api] = info.path
            self.api_versions[api] = max(info.minVersion, min(info.maxVersion, DEFAULT_VERSIONS[api]))
        logger.debug("Synology API discovery: %s", self.api_paths)

    async def _login(self):
        logger.info("Logging in to Synology %s as %s", self.http.base_url, self.config.username)
        self.api_paths.clear()
        self.api_versions.clear()
        await self._discover_apis()

        params = {
            "account": self.config.username or "",
            "passwd": self.config.password or "",
            "session": SESSION_NAME,
            "format": "sid",
            "enable_syno_token": "yes",
            "enable_device_token": "yes",
            "device_name": self.config.option("device_name", "torrent-clients"),
        }
        otp_code = self.config.option("otp_code")
        if otp_code:
            params["otp_code"] = str(otp_code)
        if self.device_token:
            params["device_id"] = self.device_token

        envelope = await self._api(AUTH_API, "login", params, with_sid=False)
        if not envelope.success:
            code = envelope.error.code if envelope.error else 0
            raise auth_error(code)

        auth = parse_model(SynologyAuthData, envelope.data, "Synology login")
        self.sid = auth.sid
        self.synotoken = auth.synotoken
        if auth.did and auth.did != self.device_token:
            logger.info("Synology issued a device token for future 2FA bypass")
            self.device_token = auth.did

    async def _logout(self):
        await self._api(AUTH_API, "logout", {"session": SESSION_NAME})

    def _drop_session(self):
        self.sid = None
        self.synotoken = None

    def _is_session_expired(self, error) -> bool:
        return isinstance(error, SessionExpired)

    async def _info(self) -> SynologyResponse:
        envelope = await self._api(INFO_API, "getinfo")
        if not envelope.success:
            code = envelope.error.code if envelope.error else 0
            if code in SESSION_EXPIRED_CODES:
                raise SessionExpired(COMMON_ERRORS[code], code=code)
            raise ProtocolError(f"Synology getinfo failed (code: {code})", code=code)
        return envelope

    async def _verify_connection(self):
        await self._info()

    async def _ping(self):
        await self._info()

    # --- Torrents ---

    async def get_torrents(self) -> list[Torrent]:
        data = await self._with_session(lambda: self._task("list", {"additional": "detail,transfer"}))
        listing = parse_model(SynologyTaskList, data, "Synology task list")
        return [self._map_torrent(t) for t in listing.tasks]

    def _map_torrent(self, task: SynologyTask) -> Torrent:
        additional = task.additional or SynologyTaskAdditional()
        transfer = additional.transfer or SynologyTaskTransfer()
        detail = additional.detail or SynologyTaskDetail()

        eta = -1
        if transfer.speed_download > 0:
            eta = max(task.size - transfer.size_downloaded, 0) // transfer.speed_download

        return Torrent(
            id=task.id,
            name=task.title,
            status=map_status(task.status),
            progress=percent(transfer.size_downloaded, task.size),
            size=task.size,
            download_speed=transfer.speed_download,
            upload_speed=transfer.speed_upload,
            eta=eta,
            save_path=detail.destination or "",
            added_date=(detail.create_time or 0) * 1000,
        )

    async def add_torrent_url(self, url: str, options: AddTorrentOptions | None = None):
        options = self._resolve_options(options)
        params = {"uri": url}
        if options.path:
            params["destination"] = options.path
        await self._with_session(lambda: self._task("create", params))

    async def add_torrent_file(self, data: bytes, options: AddTorrentOptions | None = None):
        read_metainfo(data)
        options = self._resolve_options(options)
        params = {}
        if options.path:
            params["destination"] = options.path
        files = {"file": ("torrent.torrent", data, "application/x-bittorrent")}
        await self._with_session(lambda: self._task("create", params, files=files))

    async def pause_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._task("pause", {"id": torrent_id}))

    async def resume_torrent(self, torrent_id: str):
        await self._with_session(lambda: self._task("resume", {"id": torrent_id}))

    async def remove_torrent(self, torrent_id: str, delete_data: bool = False):
        # The task API cannot delete downloaded data; delete_data is ignored
        await self._with_session(lambda: self._task("delete", {"id": torrent_id, "force_complete": "false"}))

    async def set_category(self, torrent_id: str, category: str):
        logger.debug("Synology has no categories; set_category ignored (use a destination path instead)")
