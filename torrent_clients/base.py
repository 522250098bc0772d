# torrent_clients/base.py
import asyncio
import logging
import time
from abc import ABC, abstractmethod

import httpx
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from .errors import ProtocolError, TorrentClientError
from .http import DEFAULT_TIMEOUT, UPLOAD_TIMEOUT, HttpClient
from .models import AddTorrentOptions, ServerConfig, Torrent

logger = logging.getLogger(__name__)


class Schema(BaseModel):
    """Base for response shapes: strict types, unknown keys ignored."""

    model_config = ConfigDict(strict=True, extra='ignore')


def parse_model(schema, data, context: str):
    """Validates ``data`` against a model or TypeAdapter, failing closed."""
    try:
        if isinstance(schema, TypeAdapter):
            return schema.validate_python(data)
        return schema.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
        raise ProtocolError(
            f"Unexpected {context} response at {location}: {first.get('msg')}"
        ) from e


class TorrentClient(ABC):
    """
    The capability contract every back-end adapter implements.

    Authentication is lazy: any public call made without a session logs in
    first. When a call fails with the back-end's session-expired signal the
    session is renewed once and the call retried once; a second failure
    propagates.
    """

    def __init__(self, config: ServerConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.transport = transport
        self.timeout = float(config.option("timeout", DEFAULT_TIMEOUT))
        self.upload_timeout = float(config.option("upload_timeout", UPLOAD_TIMEOUT))
        self._session_lock = asyncio.Lock()
        self._authenticated = False
        self._session_generation = 0

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Returns the user-friendly display name of the client."""
        pass

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    def _make_http(self, base_url: str, auth=None) -> HttpClient:
        return HttpClient(
            base_url,
            auth=auth,
            timeout=self.timeout,
            verify=bool(self.config.option("verify_ssl", True)),
            transport=self.transport,
        )

    def _basic_auth(self):
        if self.config.has_credentials:
            return (self.config.username or "", self.config.password or "")
        return None

    def _resolve_options(self, options: AddTorrentOptions | None) -> AddTorrentOptions:
        """Fills path and label from the server defaults when the caller left them out."""
        options = options or AddTorrentOptions()
        return AddTorrentOptions(
            path=options.path or self.config.default_directory,
            label=options.label or self.config.default_label,
            paused=bool(options.paused),
        )

    # --- Session lifecycle ---

    async def login(self, force: bool = False):
        """
        Establishes the session. Returns immediately when one is already held,
        unless ``force`` is set.
        """
        async with self._session_lock:
            if self._authenticated and not force:
                return
            self._authenticated = False
            logger.debug("Logging in to %s (%s)", self.config.name, self.display_name)
            await self._login()
            self._authenticated = True
            self._session_generation += 1

    async def logout(self):
        """Drops the session. Server-side logout is best-effort."""
        async with self._session_lock:
            was_authenticated = self._authenticated
            self._authenticated = False
            try:
                if was_authenticated:
                    await self._logout()
            except TorrentClientError as e:
                logger.warning("Logout from %s failed: %s", self.config.name, e)
            finally:
                self._drop_session()

    async def _with_session(self, action):
        """Runs ``action`` with a session, renewing it at most once."""
        await self.login()
        generation = self._session_generation
        try:
            return await action()
        except TorrentClientError as e:
            if not self._is_session_expired(e):
                raise
            logger.info("%s session expired on %s, re-authenticating", self.display_name, self.config.name)
            await self._renew_session(e, generation)
        return await action()

    async def _renew_session(self, error: TorrentClientError, generation: int):
        async with self._session_lock:
            if self._authenticated and self._session_generation != generation:
                # Another call already renewed the session
                return
            self._authenticated = False
            self._drop_session()
            await self._recover_session(error)
            self._authenticated = True
            self._session_generation += 1

    async def _recover_session(self, error: TorrentClientError):
        await self._login()

    @abstractmethod
    async def _login(self):
        """Performs the back-end's authentication handshake."""
        pass

    async def _logout(self):
        pass

    def _drop_session(self):
        pass

    def _is_session_expired(self, error: TorrentClientError) -> bool:
        return False

    # --- Health ---

    async def test_connection(self) -> bool:
        """Runs a full login cycle. Never raises."""
        try:
            await self.login(force=True)
            await self._verify_connection()
            return True
        except Exception as e:
            logger.info("Connection test for %s failed: %s", self.config.name, e)
            return False

    async def _verify_connection(self):
        pass

    async def ping(self) -> float:
        """Round-trip latency in milliseconds of the cheapest authenticated call."""
        await self.login()
        start = time.perf_counter()
        await self._with_session(self._ping)
        return (time.perf_counter() - start) * 1000

    @abstractmethod
    async def _ping(self):
        pass

    # --- Torrents ---

    @abstractmethod
    async def get_torrents(self) -> list[Torrent]:
        """Returns the full current torrent list."""
        pass

    @abstractmethod
    async def add_torrent_url(self, url: str, options: AddTorrentOptions | None = None):
        """Submits a magnet URI or HTTP(S) URL."""
        pass

    @abstractmethod
    async def add_torrent_file(self, data: bytes, options: AddTorrentOptions | None = None):
        """Submits raw .torrent bytes."""
        pass

    @abstractmethod
    async def pause_torrent(self, torrent_id: str):
        pass

    @abstractmethod
    async def resume_torrent(self, torrent_id: str):
        pass

    @abstractmethod
    async def remove_torrent(self, torrent_id: str, delete_data: bool = False):
        pass

    # --- Grouping. Back-ends without a native concept keep these defaults. ---

    async def get_categories(self) -> list[str]:
        return []

    async def set_category(self, torrent_id: str, category: str):
        pass

    async def get_tags(self) -> list[str]:
        return []

    async def add_tags(self, torrent_id: str, tags: list[str]):
        pass

    async def remove_tags(self, torrent_id: str, tags: list[str]):
        pass
