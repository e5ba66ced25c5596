import json
import time
from datetime import timedelta

import pytest
import requests

from la_archive.client import LogAnalyticsClient, QueryError, rows_to_records
from la_archive.kql import build_count_query, build_fetch_query
from la_archive.planner import TimeRange

from tests.helpers import T0

WINDOW = TimeRange(T0, T0 + timedelta(hours=1))


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text="", chunks=None):
        self.status_code = status_code
        body = json.dumps(payload).encode() if payload is not None else text.encode()
        self.chunks = chunks if chunks is not None else [body]
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            yield chunk

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None, stream=False):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout,
                           "stream": stream})
        if self.error:
            raise self.error
        return self.response


def table(columns, rows):
    return {"tables": [{"name": "PrimaryResult",
                        "columns": [{"name": c, "type": "string"} for c in columns],
                        "rows": rows}]}


def make_client(session):
    return LogAnalyticsClient("ws-123", access_token="token", session=session)


def test_count_query_text():
    kql = build_count_query("AppTraces", WINDOW, where="SeverityLevel >= 3")
    assert kql == ("AppTraces | where TimeGenerated >= datetime(2024-03-01T00:00:00.000000Z) "
                   "and TimeGenerated < datetime(2024-03-01T01:00:00.000000Z) "
                   "| where SeverityLevel >= 3 | count")


def test_blank_filter_is_omitted():
    assert build_fetch_query("AppTraces", WINDOW, where="  ").count("where") == 1


def test_rows_to_records():
    data = table(["a", "b"], [[1, "x"], [2, "y"]])
    assert rows_to_records(data["tables"][0]) == [{"a": 1, "b": "x"}, {"a": 2, "b": "y"}]


def test_query_posts_to_workspace_and_returns_records():
    session = FakeSession(FakeResponse(payload=table(["Message"], [["hi"]])))
    client = make_client(session)

    assert client.query("AppTraces | take 1", timeout=30) == [{"Message": "hi"}]

    post = session.posts[0]
    assert post["url"] == "https://api.loganalytics.io/v1/workspaces/ws-123/query"
    assert post["json"] == {"query": "AppTraces | take 1"}
    assert post["headers"]["Authorization"] == "Bearer token"
    assert post["headers"]["Prefer"] == "wait=30"
    assert post["timeout"] == 30
    assert post["stream"] is True
    assert session.response.closed


def test_count_reads_count_column():
    client = make_client(FakeSession(FakeResponse(payload=table(["Count"], [[1234]]))))
    assert client.count("AppTraces | count") == 1234


def test_count_without_rows_is_none():
    client = make_client(FakeSession(FakeResponse(payload={"tables": []})))
    assert client.count("AppTraces | count") is None


@pytest.mark.parametrize("response", [
    FakeResponse(status_code=429, text="Too Many Requests"),
    FakeResponse(status_code=504, text="Gateway Timeout"),
    FakeResponse(payload={"error": {"code": "BadArgumentError", "message": "syntax"}}),
    FakeResponse(text="<html>"),
])
def test_failures_raise_query_error(response):
    client = make_client(FakeSession(response))
    with pytest.raises(QueryError):
        client.query("AppTraces")


def test_network_errors_raise_query_error():
    client = make_client(FakeSession(error=requests.ConnectionError("reset by peer")))
    with pytest.raises(QueryError):
        client.query("AppTraces")


def test_token_comes_from_credential():
    class Token:
        token = "from-credential"
        expires_on = 4102444800

    class Credential:
        calls = 0

        def get_token(self, scope):
            Credential.calls += 1
            return Token()

    session = FakeSession(FakeResponse(payload={"tables": []}))
    client = LogAnalyticsClient("ws-123", credential=Credential(), session=session)
    client.query("AppTraces")
    client.query("AppTraces")
    assert session.posts[0]["headers"]["Authorization"] == "Bearer from-credential"
    assert Credential.calls == 1


def test_slow_body_stops_at_the_deadline():
    def trickle():
        for _ in range(50):
            time.sleep(0.02)
            yield b" "

    response = FakeResponse(chunks=trickle())
    client = make_client(FakeSession(response))

    started = time.monotonic()
    with pytest.raises(QueryError):
        client.query("AppTraces", timeout=0.1)
    assert time.monotonic() - started < 0.5
    assert response.closed


def test_read_errors_raise_query_error():
    def broken():
        yield b"{"
        raise requests.exceptions.ChunkedEncodingError("connection broken")

    response = FakeResponse(chunks=broken())
    with pytest.raises(QueryError):
        make_client(FakeSession(response)).query("AppTraces", timeout=5)
    assert response.closed
