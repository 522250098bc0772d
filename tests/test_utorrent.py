import httpx
import pytest

from conftest import RecordingTransport, make_config
from torrent_clients.errors import AuthenticationError, HttpError, ProtocolError, TaskError
from torrent_clients.models import AddTorrentOptions, TorrentStatus
from torrent_clients.utorrent import UTorrentClient, map_status

HOST = "http://utorrent.test:8080"

TOKEN_HTML = "<html><div id='token' style='display:none;'>tok-1</div></html>"


def row(status=201, permille=500, label="tv", extended=True):
    cells = ["HASH1", status, "Big Buck Bunny", 1000, permille, 500, 0, 0, 7, 100, 5, label,
             0, 0, 0, 0, 0, 1, 500]
    if extended:
        cells += ["", "", "", "", 1700000000, 0, "", "C:\\Downloads"]
    return cells


def handler_for(listing=None, token_html=TOKEN_HTML):
    listing = listing if listing is not None else {"build": 1, "torrents": [row()], "label": [["tv", 1]]}

    def handler(request):
        if request.url.path == "/gui/token.html":
            return httpx.Response(200, text=token_html)
        if request.url.params.get("list") == "1":
            return httpx.Response(200, json=listing)
        return httpx.Response(200, json={"build": 1})
    return handler


def make_client(handler):
    transport = RecordingTransport(handler)
    return UTorrentClient(make_config("utorrent", HOST), transport=transport), transport


class TestStatusMapping:
    @pytest.mark.parametrize("status,permille,expected", [
        (1 | 8 | 16, 500, TorrentStatus.ERROR),
        (1 | 8 | 32 | 16, 500, TorrentStatus.ERROR),
        (1 | 8 | 32 | 64 | 128, 500, TorrentStatus.PAUSED),
        (1 | 2 | 128, 500, TorrentStatus.CHECKING),
        (1 | 8 | 64 | 128, 500, TorrentStatus.DOWNLOADING),
        (1 | 8 | 64 | 128, 1000, TorrentStatus.SEEDING),
        (64 | 128, 500, TorrentStatus.QUEUED),
        (8 | 128, 1000, TorrentStatus.COMPLETED),
        (8 | 128, 500, TorrentStatus.PAUSED),
    ])
    def test_priority_order(self, status, permille, expected):
        assert map_status(status, permille) == expected


class TestToken:
    async def test_token_appended_to_calls(self):
        client, transport = make_client(handler_for())
        await client.get_torrents()
        data_call = transport.requests[-1]
        assert data_call.url.path == "/gui/"
        assert data_call.url.params["token"] == "tok-1"
        assert "t" in data_call.url.params

    async def test_missing_token_div(self):
        """A page without the token div rejects login with a ProtocolError about the token."""
        client, _ = make_client(handler_for(token_html="<html><body>nothing</body></html>"))
        with pytest.raises(ProtocolError, match="token"):
            await client.login()

    async def test_unauthorized_token_page(self):
        client, _ = make_client(lambda r: httpx.Response(401))
        with pytest.raises(AuthenticationError):
            await client.login()

    async def test_400_refetches_token_once(self):
        state = {"list_calls": 0, "tokens": 0}

        def handler(request):
            if request.url.path == "/gui/token.html":
                state["tokens"] += 1
                return httpx.Response(200, text=TOKEN_HTML.replace("tok-1", f"tok-{state['tokens']}"))
            state["list_calls"] += 1
            if state["list_calls"] == 1:
                return httpx.Response(400, text="invalid request")
            return httpx.Response(200, json={"torrents": [row()]})

        client, transport = make_client(handler)
        torrents = await client.get_torrents()

        assert len(torrents) == 1
        assert state["tokens"] == 2
        assert transport.requests[-1].url.params["token"] == "tok-2"

    async def test_retry_bound(self):
        state = {"list_calls": 0}

        def handler(request):
            if request.url.path == "/gui/token.html":
                return httpx.Response(200, text=TOKEN_HTML)
            state["list_calls"] += 1
            return httpx.Response(400)

        client, _ = make_client(handler)
        with pytest.raises(HttpError):
            await client.get_torrents()
        assert state["list_calls"] == 2

    async def test_ping_reuses_cached_token(self):
        client, transport = make_client(handler_for())
        await client.login()
        await client.ping()
        paths = [r.url.path for r in transport.requests]
        assert paths.count("/gui/token.html") == 1
        assert transport.requests[-1].url.params["token"] == "tok-1"
        assert transport.requests[-1].url.params["list"] == "1"


class TestTorrents:
    async def test_mapping_with_extended_columns(self):
        client, _ = make_client(handler_for())
        [t] = await client.get_torrents()
        assert t.id == "HASH1"
        assert t.status == TorrentStatus.DOWNLOADING
        assert t.progress == 50.0
        assert t.download_speed == 100
        assert t.upload_speed == 7
        assert t.eta == 5
        assert t.category == "tv"
        assert t.added_date == 1700000000 * 1000
        assert t.save_path == "C:\\Downloads"

    async def test_mapping_without_extended_columns(self):
        client, _ = make_client(handler_for({"torrents": [row(label="", extended=False)]}))
        [t] = await client.get_torrents()
        assert t.added_date == 0
        assert t.save_path == ""
        assert t.category is None

    async def test_add_url(self):
        client, transport = make_client(handler_for())
        await client.add_torrent_url("magnet:?xt=urn:btih:x", AddTorrentOptions(path="D:\\tv"))
        params = transport.requests[-1].url.params
        assert params["action"] == "add-url"
        assert params["s"] == "magnet:?xt=urn:btih:x"
        assert params["path"] == "D:\\tv"

    async def test_add_file_is_multipart(self, torrent_file):
        client, transport = make_client(handler_for())
        await client.add_torrent_file(torrent_file)
        upload = transport.requests[-1]
        assert upload.method == "POST"
        assert upload.url.params["action"] == "add-file"
        assert b'name="torrent_file"' in upload.content

    async def test_invalid_file(self):
        client, transport = make_client(handler_for())
        with pytest.raises(TaskError):
            await client.add_torrent_file(b"garbage")
        assert transport.requests == []

    async def test_remove_with_data(self):
        client, transport = make_client(handler_for())
        await client.remove_torrent("HASH1", delete_data=True)
        assert transport.requests[-1].url.params["action"] == "removedata"


class TestLabels:
    async def test_categories_from_label_list(self):
        client, _ = make_client(handler_for())
        assert await client.get_categories() == ["tv"]

    async def test_set_category(self):
        client, transport = make_client(handler_for())
        await client.set_category("HASH1", "movies")
        params = transport.requests[-1].url.params
        assert (params["action"], params["s"], params["v"]) == ("setprops", "label", "movies")
