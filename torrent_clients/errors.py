# torrent_clients/errors.py - Error taxonomy shared by every adapter
import httpx


class TorrentClientError(Exception):
    """Base class for everything this package raises."""


class ConnectivityError(TorrentClientError):
    """DNS, TCP or TLS failure, or a timed out call."""


class AuthenticationError(TorrentClientError):
    """Bad credentials, disabled account, 2FA problems, blocked source.

    ``code`` is the back-end's machine readable reason where one exists
    (Synology's numeric auth codes, for example).
    """

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class TwoFactorRequiredError(AuthenticationError):
    """The server wants an OTP code before it will issue a session."""


class ProtocolError(TorrentClientError):
    """Malformed or unexpected response, RPC error or XML-RPC fault."""

    def __init__(self, message: str, code=None, fault_string: str | None = None):
        super().__init__(message)
        self.code = code
        self.fault_string = fault_string if fault_string is not None else message

    @property
    def fault_code(self):
        return self.code


class TaskError(TorrentClientError):
    """An operation on a task failed (bad id, destination denied, ...)."""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class HttpError(TorrentClientError):
    """Non-2xx HTTP response. Keeps the raw response for header inspection."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.status_code = response.status_code
        super().__init__(f"HTTP Error: {response.status_code} {response.reason_phrase}")
