import base64

import httpx
import pytest

from conftest import RecordingTransport, json_body, make_config
from torrent_clients.errors import AuthenticationError, HttpError, TaskError
from torrent_clients.models import AddTorrentOptions, TorrentStatus
from torrent_clients.transmission import SESSION_HEADER, STATUS_MAP, TransmissionClient, map_status

HOST = "http://transmission.test:9091"

TORRENT = {
    "id": 3, "name": "Ubuntu ISO", "status": 4, "totalSize": 2000,
    "percentDone": 0.5, "rateDownload": 100, "rateUpload": 20, "eta": 10,
    "downloadDir": "/downloads", "addedDate": 1700000000, "error": 0,
    "errorString": "", "labels": ["linux", "iso"],
}


def success(arguments=None):
    return httpx.Response(200, json={"result": "success", "arguments": arguments or {}})


def conflict(session_id):
    return httpx.Response(409, headers={SESSION_HEADER: session_id})


def make_client(handler, **overrides):
    transport = RecordingTransport(handler)
    client = TransmissionClient(make_config("transmission", HOST, **overrides), transport=transport)
    return client, transport


class TestStatusMapping:
    def test_table(self):
        assert [map_status(i) for i in range(7)] == [
            TorrentStatus.PAUSED, TorrentStatus.QUEUED, TorrentStatus.CHECKING,
            TorrentStatus.QUEUED, TorrentStatus.DOWNLOADING, TorrentStatus.QUEUED,
            TorrentStatus.SEEDING,
        ]
        assert len(STATUS_MAP) == 7

    def test_unknown_value(self):
        assert map_status(42) == TorrentStatus.UNKNOWN


class TestSessionHeader:
    def test_url_gets_rpc_path(self):
        client, _ = make_client(lambda r: success())
        assert client.http.base_url == f"{HOST}/transmission/rpc"

    async def test_409_renewal_propagates_header(self):
        """A 409 on torrent-get hands out a new id that the retry must carry."""
        def handler(request):
            sid = request.headers.get(SESSION_HEADER)
            method = json_body(request)["method"]
            if method == "session-get":
                return success({"version": "4.0.5"}) if sid else conflict("old")
            if sid != "abc123":
                return conflict("abc123")
            return success({"torrents": [TORRENT]})

        client, transport = make_client(handler)
        torrents = await client.get_torrents()

        assert [t.name for t in torrents] == ["Ubuntu ISO"]
        assert transport.requests[-1].headers[SESSION_HEADER] == "abc123"
        assert client.session_id == "abc123"

    async def test_always_409_fails_after_two_calls(self):
        client, transport = make_client(lambda r: conflict("again"))
        with pytest.raises(HttpError) as exc_info:
            await client.login()
        assert exc_info.value.status_code == 409
        assert len(transport.requests) == 2

    async def test_retry_bound_on_data_call(self):
        """torrent-get is attempted exactly twice when every answer is a 409."""
        counter = {"n": 0}

        def handler(request):
            if json_body(request)["method"] == "session-get":
                return success({"version": "4.0.5"})
            counter["n"] += 1
            return conflict(f"id-{counter['n']}")

        client, _ = make_client(handler)
        with pytest.raises(HttpError):
            await client.get_torrents()
        assert counter["n"] == 2

    async def test_bad_credentials(self):
        client, _ = make_client(lambda r: httpx.Response(401))
        with pytest.raises(AuthenticationError):
            await client.login()

    async def test_basic_auth_sent(self):
        client, transport = make_client(lambda r: success())
        await client.login()
        expected = "Basic " + base64.b64encode(b"admin:secret").decode()
        assert transport.requests[0].headers["Authorization"] == expected


class TestTorrents:
    async def test_mapping(self):
        client, _ = make_client(lambda r: success({"torrents": [TORRENT]}))
        [t] = await client.get_torrents()
        assert t.id == "3"
        assert t.status == TorrentStatus.DOWNLOADING
        assert t.progress == 50.0
        assert t.added_date == 1700000000 * 1000
        assert t.category == "linux"
        assert t.tags == ["linux", "iso"]

    async def test_add_file_sends_metainfo(self, torrent_file):
        client, transport = make_client(lambda r: success({"torrent-added": {"id": 1}}))
        await client.add_torrent_file(torrent_file, AddTorrentOptions(path="/movies", label="film", paused=True))
        body = json_body(transport.requests[-1])
        assert body["method"] == "torrent-add"
        assert base64.b64decode(body["arguments"]["metainfo"]) == torrent_file
        assert body["arguments"]["download-dir"] == "/movies"
        assert body["arguments"]["paused"] is True
        assert body["arguments"]["labels"] == ["film"]

    async def test_add_uses_default_directory(self):
        client, transport = make_client(lambda r: success({"torrent-duplicate": {"name": "dup"}}),
                                        default_directory="/default")
        await client.add_torrent_url("magnet:?xt=urn:btih:abc")
        body = json_body(transport.requests[-1])
        assert body["arguments"]["filename"] == "magnet:?xt=urn:btih:abc"
        assert body["arguments"]["download-dir"] == "/default"

    async def test_invalid_file_rejected_before_network(self):
        client, transport = make_client(lambda r: success())
        with pytest.raises(TaskError):
            await client.add_torrent_file(b"not a torrent")
        assert transport.requests == []

    async def test_failed_result_is_task_error(self):
        def handler(request):
            if json_body(request)["method"] == "session-get":
                return success()
            return httpx.Response(200, json={"result": "invalid or corrupt torrent file", "arguments": {}})

        client, _ = make_client(handler)
        with pytest.raises(TaskError):
            await client.pause_torrent("3")

    async def test_remove_with_data(self):
        client, transport = make_client(lambda r: success())
        await client.remove_torrent("3", delete_data=True)
        body = json_body(transport.requests[-1])
        assert body == {"method": "torrent-remove", "arguments": {"ids": [3], "delete-local-data": True}}


class TestLabels:
    async def test_tags_are_sorted_unique_labels(self):
        listing = {"torrents": [{"id": 1, "labels": ["b", "a"]}, {"id": 2, "labels": ["a"]}]}
        client, _ = make_client(lambda r: success(listing))
        assert await client.get_tags() == ["a", "b"]
        assert await client.get_categories() == ["a", "b"]

    async def test_set_category_moves_label_first(self):
        def handler(request):
            body = json_body(request)
            if body["method"] == "torrent-get":
                return success({"torrents": [{"id": 1, "labels": ["x", "tv"]}]})
            return success()

        client, transport = make_client(handler)
        await client.set_category("1", "tv")
        body = json_body(transport.requests[-1])
        assert body["method"] == "torrent-set"
        assert body["arguments"]["labels"] == ["tv", "x"]
