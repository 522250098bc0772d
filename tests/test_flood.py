import base64

import httpx
import pytest

from conftest import RecordingTransport, json_body, make_config
from torrent_clients.errors import AuthenticationError, HttpError, ProtocolError
from torrent_clients.flood import FloodClient, map_status
from torrent_clients.models import AddTorrentOptions, TorrentStatus

HOST = "http://flood.test:3000"

TORRENT = {
    "hash": "AB" * 20, "name": "Big Buck Bunny", "state": ["downloading", "active"],
    "progress": 0.5, "upRate": 500, "dnRate": 1000, "sizeBytes": 2000,
    "bytesDone": 1000, "eta": 3600, "peers": 10, "seeds": 5, "ratio": 0.5,
    "added": 1700000000, "tags": ["movies", "hd"],
}


class FakeFlood:
    def __init__(self, expire_first=0, auth=None, listing=None, tags=None):
        self.expire_first = expire_first
        self.auth = auth if auth is not None else {"success": True, "token": "jwt-1"}
        self.listing = listing if listing is not None else {"torrents": [TORRENT]}
        self.tags = tags
        self.calls = []

    def __call__(self, request: httpx.Request):
        path = request.url.path.removeprefix("/api/")
        self.calls.append((request.method, path))
        if path == "auth/authenticate":
            return httpx.Response(200, json=self.auth)
        if self.expire_first:
            self.expire_first -= 1
            return httpx.Response(401)
        if path == "torrents":
            return httpx.Response(200, json=self.listing)
        if path == "tags":
            if self.tags is None:
                return httpx.Response(404)
            return httpx.Response(200, json=self.tags)
        return httpx.Response(200, json={})


def make_client(server):
    transport = RecordingTransport(server)
    return FloodClient(make_config("flood", HOST), transport=transport), transport


class TestStatusMapping:
    @pytest.mark.parametrize("states,expected", [
        (["downloading", "active"], TorrentStatus.DOWNLOADING),
        (["seeding", "complete"], TorrentStatus.SEEDING),
        (["stopped", "complete"], TorrentStatus.PAUSED),
        (["paused"], TorrentStatus.PAUSED),
        (["checking"], TorrentStatus.CHECKING),
        (["complete"], TorrentStatus.COMPLETED),
        (["error", "downloading"], TorrentStatus.ERROR),
        ([], TorrentStatus.UNKNOWN),
    ])
    def test_table(self, states, expected):
        assert map_status(states) == expected


class TestSession:
    async def test_token_sent_as_bearer(self):
        client, transport = make_client(FakeFlood())
        await client.get_torrents()
        login, listing = transport.requests
        assert json_body(login) == {"username": "admin", "password": "secret"}
        assert listing.headers["Authorization"] == "Bearer jwt-1"

    async def test_unsuccessful_login(self):
        client, _ = make_client(FakeFlood(auth={"success": False}))
        with pytest.raises(AuthenticationError, match="authentication failed"):
            await client.login()

    async def test_401_on_login(self):
        client, _ = make_client(lambda r: httpx.Response(401))
        with pytest.raises(AuthenticationError):
            await client.login()

    async def test_cookie_only_session(self):
        """Servers that answer without a token still work through the jwt cookie."""
        def handler(request):
            if request.url.path.endswith("authenticate"):
                return httpx.Response(200, json={"success": True}, headers={"set-cookie": "jwt=abc; path=/"})
            return httpx.Response(200, json={"torrents": []})

        client, transport = make_client(handler)
        assert await client.get_torrents() == []
        assert "Authorization" not in transport.requests[-1].headers
        assert "jwt=abc" in transport.requests[-1].headers["cookie"]

    async def test_401_relogs_once(self):
        server = FakeFlood(expire_first=1)
        client, _ = make_client(server)
        assert len(await client.get_torrents()) == 1
        assert server.calls.count(("POST", "auth/authenticate")) == 2

    async def test_retry_bound(self):
        server = FakeFlood(expire_first=100)
        client, _ = make_client(server)
        with pytest.raises(HttpError):
            await client.get_torrents()
        assert server.calls.count(("GET", "torrents")) == 2

    async def test_logout_forgets_token(self):
        client, _ = make_client(FakeFlood())
        await client.login()
        await client.logout()
        assert client.token is None
        assert not client.is_authenticated


class TestTorrents:
    async def test_mapping(self):
        client, _ = make_client(FakeFlood())
        [t] = await client.get_torrents()
        assert t.id == "AB" * 20
        assert t.status == TorrentStatus.DOWNLOADING
        assert t.progress == 50.0
        assert t.size == 2000
        assert t.download_speed == 1000
        assert t.added_date == 1700000000 * 1000
        assert t.category == "movies"
        assert t.tags == ["movies", "hd"]

    async def test_listing_keyed_by_hash(self):
        untagged = {**TORRENT, "tags": [], "dateAdded": 1600000000, "directory": "/data"}
        del untagged["added"]
        client, _ = make_client(FakeFlood(listing={"id": 4, "torrents": {untagged["hash"]: untagged}}))
        [t] = await client.get_torrents()
        assert t.category is None
        assert t.added_date == 1600000000 * 1000
        assert t.save_path == "/data"

    async def test_malformed_listing(self):
        client, _ = make_client(FakeFlood(listing={"torrents": [{"hash": "x"}]}))
        with pytest.raises(ProtocolError):
            await client.get_torrents()

    async def test_add_url_body(self):
        client, transport = make_client(FakeFlood())
        await client.add_torrent_url("magnet:?xt=urn:btih:abc", AddTorrentOptions(path="/tv", label="tv", paused=True))
        request = transport.requests[-1]
        assert request.url.path == "/api/torrents/add-urls"
        assert json_body(request) == {"urls": ["magnet:?xt=urn:btih:abc"], "start": False, "tags": ["tv"], "destination": "/tv"}

    async def test_add_url_defaults(self):
        client, transport = make_client(FakeFlood())
        await client.add_torrent_url("http://tracker.test/a.torrent")
        assert json_body(transport.requests[-1]) == {"urls": ["http://tracker.test/a.torrent"], "start": True, "tags": []}

    async def test_add_file(self, torrent_file):
        client, transport = make_client(FakeFlood())
        await client.add_torrent_file(torrent_file)
        body = json_body(transport.requests[-1])
        assert transport.requests[-1].url.path == "/api/torrents/add-files"
        assert base64.b64decode(body["files"][0]) == torrent_file

    async def test_controls(self):
        client, transport = make_client(FakeFlood())
        await client.pause_torrent("h")
        assert transport.requests[-1].url.path == "/api/torrents/stop"
        await client.resume_torrent("h")
        assert transport.requests[-1].url.path == "/api/torrents/start"
        await client.remove_torrent("h", delete_data=True)
        assert transport.requests[-1].url.path == "/api/torrents/delete"
        assert json_body(transport.requests[-1]) == {"hashes": ["h"], "deleteData": True}


class TestTags:
    async def test_tags_endpoint(self):
        client, _ = make_client(FakeFlood(tags=["movies", "tv"]))
        assert await client.get_tags() == ["movies", "tv"]
        assert await client.get_categories() == ["movies", "tv"]

    async def test_tags_collected_without_endpoint(self):
        other = {**TORRENT, "hash": "CD" * 20, "tags": ["hd", "music"]}
        client, _ = make_client(FakeFlood(listing={"torrents": [TORRENT, other]}))
        assert await client.get_tags() == ["movies", "hd", "music"]

    async def test_set_category_adds_tag(self):
        client, transport = make_client(FakeFlood())
        await client.set_category("AB" * 20, "tv")
        request = transport.requests[-1]
        assert request.method == "PATCH"
        assert json_body(request) == {"hashes": ["AB" * 20], "tags": ["movies", "hd", "tv"]}

    async def test_remove_tags(self):
        client, transport = make_client(FakeFlood())
        await client.remove_tags("AB" * 20, ["hd"])
        assert json_body(transport.requests[-1]) == {"hashes": ["AB" * 20], "tags": ["movies"]}
