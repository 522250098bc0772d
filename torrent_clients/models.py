# torrent_clients/models.py - Canonical, client-agnostic data model
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TorrentStatus(str, Enum):
    DOWNLOADING = "downloading"
    SEEDING = "seeding"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CHECKING = "checking"
    QUEUED = "queued"
    UNKNOWN = "unknown"


def clamp_progress(value) -> float:
    """Clamps a percentage into [0, 100]. NaN and None become 0."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 100.0)


def percent(done, total) -> float:
    """Progress from byte counts, guarding division by zero."""
    done = int(done or 0)
    total = int(total or 0)
    if total <= 0:
        return 0.0
    return clamp_progress(done * 100 / total)


def normalize_eta(value) -> int:
    """Seconds remaining; -1 stands for unknown or infinite."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return -1
    if math.isnan(value) or math.isinf(value) or value < 0:
        return -1
    return int(value)


def _non_negative_int(value) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


@dataclass
class Torrent:
    """A torrent as seen by any back-end, normalized to one shape."""

    id: str
    name: str
    status: TorrentStatus
    progress: float  # 0-100
    size: int  # bytes
    download_speed: int  # bytes/sec
    upload_speed: int  # bytes/sec
    eta: int  # seconds, -1 when unknown
    save_path: str
    added_date: int  # epoch ms, 0 when unavailable
    category: str | None = None
    tags: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.id = str(self.id)
        self.progress = clamp_progress(self.progress)
        self.size = _non_negative_int(self.size)
        self.download_speed = _non_negative_int(self.download_speed)
        self.upload_speed = _non_negative_int(self.upload_speed)
        self.eta = normalize_eta(self.eta)
        self.added_date = _non_negative_int(self.added_date)
        if self.tags is None:
            self.tags = []


@dataclass(frozen=True)
class AddTorrentOptions:
    path: str | None = None
    label: str | None = None
    paused: bool | None = None


@dataclass(frozen=True)
class ServerConfig:
    """Connection descriptor for one server, already decrypted by the caller."""

    name: str
    application: str
    hostname: str
    username: str | None = None
    password: str | None = None
    directories: tuple[str, ...] = ()
    default_directory: str | None = None
    default_label: str | None = None
    client_options: dict[str, Any] = field(default_factory=dict)
    show_in_context_menu: bool = False

    def option(self, key: str, default=None):
        return (self.client_options or {}).get(key, default)

    @property
    def has_credentials(self) -> bool:
        return bool(self.username or self.password)
