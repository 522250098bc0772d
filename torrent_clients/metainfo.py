# torrent_clients/metainfo.py - .torrent payload validation and info-hash helpers
import base64
import hashlib
import re
from urllib.parse import parse_qs, urlparse

import bencodepy

from .errors import TaskError

_BTIH = re.compile(r"^urn:btih:([0-9a-fA-F]{40}|[A-Za-z2-7]{32})$")


def read_metainfo(data: bytes) -> dict:
    """
    Decodes a .torrent payload and checks it has an info dictionary.

    Raises TaskError before anything is sent to a server if the bytes are
    not a bencoded metainfo file.
    """
    if not data:
        raise TaskError("Torrent file is empty")
    try:
        decoded = bencodepy.decode(bytes(data))
    except Exception as e:
        raise TaskError(f"Not a valid .torrent file: {e}") from e
    if not isinstance(decoded, dict) or b'info' not in decoded:
        raise TaskError("Not a valid .torrent file: missing info dictionary")
    return decoded


def info_hash(data: bytes) -> str:
    """Returns the v1 info-hash (SHA1 of the bencoded info dict), lowercase hex."""
    metainfo = read_metainfo(data)
    bencoded_info = bencodepy.encode(metainfo[b'info'])
    return hashlib.sha1(bencoded_info).hexdigest()


def magnet_info_hash(url: str) -> str | None:
    """Extracts the btih from a magnet URI as lowercase hex, or None if it has none."""
    parsed = urlparse(url)
    if parsed.scheme != "magnet":
        return None
    for xt in parse_qs(parsed.query).get("xt", []):
        match = _BTIH.match(xt)
        if not match:
            continue
        btih = match.group(1)
        if len(btih) == 32:
            # base32 form used by older clients
            return base64.b32decode(btih.upper()).hex()
        return btih.lower()
    return None
