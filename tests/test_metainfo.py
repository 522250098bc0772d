import base64
import hashlib

import bencodepy
import pytest

from torrent_clients.errors import TaskError
from torrent_clients.metainfo import info_hash, magnet_info_hash, read_metainfo


class TestReadMetainfo:
    def test_valid_payload(self, torrent_file):
        assert b"info" in read_metainfo(torrent_file)

    def test_empty_payload(self):
        with pytest.raises(TaskError):
            read_metainfo(b"")

    def test_garbage_payload(self):
        """Bytes that are not bencode are rejected before any network call."""
        with pytest.raises(TaskError):
            read_metainfo(b"<html>login page</html>")

    def test_missing_info(self):
        with pytest.raises(TaskError):
            read_metainfo(bencodepy.encode({b"announce": b"x"}))


class TestInfoHash:
    def test_sha1_of_info_dict(self, torrent_file):
        info = bencodepy.decode(torrent_file)[b"info"]
        assert info_hash(torrent_file) == hashlib.sha1(bencodepy.encode(info)).hexdigest()

    def test_magnet_hash(self):
        url = "magnet:?xt=urn:btih:ABCDEF0123456789ABCDEF0123456789ABCDEF01&dn=x"
        assert magnet_info_hash(url) == "abcdef0123456789abcdef0123456789abcdef01"

    def test_base32_magnet_hash_as_hex(self):
        hex_hash = "abcdef0123456789abcdef0123456789abcdef01"
        b32 = base64.b32encode(bytes.fromhex(hex_hash)).decode()
        assert magnet_info_hash(f"magnet:?xt=urn:btih:{b32}") == hex_hash

    def test_non_magnet(self):
        assert magnet_info_hash("http://tracker.test/file.torrent") is None
