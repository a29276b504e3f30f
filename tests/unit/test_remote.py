"""Tests for the Overpass client and server status parsing."""
import requests

from osmgis.remote import OverpassClient, OverpassStatus

STATUS_TEXT = """Connected as: 1234567890
Current time: 2024-03-01T10:00:00Z
Announced endpoint: none
Rate limit: 2
Slot available after: 2024-03-01T10:00:21Z, in 21 seconds.
Slot available after: 2024-03-01T10:00:09Z, in 9 seconds.
Currently running queries (pid, space limit, time limit, start time):
12345\t536870912\t180\t2024-03-01T09:59:50Z
"""


class FakeResponse:
    def __init__(self, status_code=200, text="", chunks=()):
        self.status_code = status_code
        self.text = text
        self.chunks = list(chunks)

    def iter_content(self, chunk_size=1):
        yield from self.chunks

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    """Records requests and answers with canned responses."""

    def __init__(self, post_response=None, get_response=None, error=None):
        self.headers = {}
        self.post_response = post_response
        self.get_response = get_response or FakeResponse(text=STATUS_TEXT)
        self.error = error
        self.posted = []

    def post(self, url, data=None, stream=False, timeout=None):
        if self.error:
            raise self.error
        self.posted.append((url, data))
        return self.post_response

    def get(self, url, timeout=None):
        return self.get_response


class TestOverpassStatus:
    """Test parsing of the /api/status text."""

    def test_parse(self):
        status = OverpassStatus.parse(STATUS_TEXT)
        assert status.connection_id == 1234567890
        assert status.current_time == "2024-03-01T10:00:00Z"
        assert status.rate_limit == 2
        assert status.slots_available == 0
        assert status.slot_waits == [21, 9]
        assert len(status.running_queries) == 1

    def test_wait_time(self):
        assert OverpassStatus.parse(STATUS_TEXT).slot_wait_time == 9
        assert OverpassStatus.parse("2 slots available now.").slot_wait_time == 0
        assert OverpassStatus.parse("").slot_wait_time == -1

    def test_str(self):
        text = str(OverpassStatus.parse(STATUS_TEXT))
        assert "Rate limit: 2" in text
        assert "Currently running queries: 1" in text


class TestOverpassClient:
    def test_execute_writes_answer(self, tmp_path):
        session = FakeSession(post_response=FakeResponse(chunks=[b"<osm>", b"</osm>"]))
        client = OverpassClient(url="http://overpass.test/api/interpreter", session=session)
        output = tmp_path / "out" / "data.osm"
        assert client.execute("node(0,0,1,1);out;", output)
        assert output.read_bytes() == b"<osm></osm>"
        assert session.posted == [("http://overpass.test/api/interpreter", {"data": "node(0,0,1,1);out;"})]

    def test_http_error(self, tmp_path):
        session = FakeSession(post_response=FakeResponse(status_code=429))
        output = tmp_path / "data.osm"
        assert not OverpassClient(session=session).execute("out;", output)
        assert not output.exists()

    def test_network_error(self, tmp_path):
        session = FakeSession(error=requests.ConnectionError("offline"))
        assert not OverpassClient(session=session).execute("out;", tmp_path / "data.osm")

    def test_empty_query(self, tmp_path):
        assert not OverpassClient(session=FakeSession()).execute("", tmp_path / "data.osm")

    def test_server_status(self):
        status = OverpassClient(session=FakeSession()).server_status()
        assert status.rate_limit == 2
