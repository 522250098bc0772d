# torrent_clients/http.py - Minimal async HTTP wrapper shared by the adapters
import logging

import httpx

from .errors import ConnectivityError, HttpError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
UPLOAD_TIMEOUT = 60.0


class HttpClient:
    """
    Wraps httpx.AsyncClient with the bits every adapter needs: a base URL,
    optional basic auth, cookies carried between calls and a per-call timeout.

    A fresh AsyncClient is opened per request; session cookies live on this
    object so they survive between requests.
    """

    def __init__(self, base_url: str, auth=None, timeout: float = DEFAULT_TIMEOUT,
                 verify: bool = True, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip('/')
        self.auth = auth
        self.timeout = timeout
        self.verify = verify
        self.transport = transport
        self.cookies: dict[str, str] = {}

    def url(self, path: str = "") -> str:
        if not path:
            return self.base_url
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def clear_cookies(self):
        self.cookies = {}

    async def request(self, method: str, path: str = "", *, headers: dict | None = None,
                      timeout: float | None = None, auth=None, **kwargs) -> httpx.Response:
        """Performs one request. Raises ConnectivityError or HttpError."""
        url = self.url(path)
        try:
            async with httpx.AsyncClient(
                auth=auth or self.auth,
                cookies=self.cookies,
                timeout=timeout or self.timeout,
                verify=self.verify,
                transport=self.transport,
            ) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise ConnectivityError(f"Timed out talking to {self.base_url}: {e}") from e
        except httpx.RequestError as e:
            raise ConnectivityError(f"Network error communicating with {self.base_url}: {e}") from e

        # Some servers rotate the session cookie on every response
        if response.cookies:
            self.cookies.update(dict(response.cookies))

        if response.is_error:
            logger.debug("%s %s -> %s", method, url, response.status_code)
            raise HttpError(response)
        return response

    async def get(self, path: str = "", **kwargs) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str = "", **kwargs) -> httpx.Response:
        return await self.request("POST", path, **kwargs)
