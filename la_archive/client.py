import json
import logging
import time

import requests
from azure.identity import DefaultAzureCredential

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.loganalytics.io"
TOKEN_SCOPE = "https://api.loganalytics.io/.default"
TOKEN_REFRESH_MARGIN_SECONDS = 300
READ_CHUNK_BYTES = 64 * 1024


class QueryError(Exception):
    """The query service rejected, throttled or failed a query."""

    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)


def rows_to_records(table):
    """Turns one result table into a list of {column: value} dicts."""
    columns = [c["name"] for c in table.get("columns", [])]
    return [dict(zip(columns, row)) for row in table.get("rows", [])]


class LogAnalyticsClient:
    """Thin wrapper over the Log Analytics workspace query API."""

    def __init__(self, workspace_id, endpoint=DEFAULT_ENDPOINT, access_token=None,
                 credential=None, session=None):
        self.workspace_id = workspace_id
        self.endpoint = endpoint.rstrip('/')
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
        self._static_token = access_token
        self._credential = credential
        self._token = None

    @property
    def query_url(self):
        return f"{self.endpoint}/v1/workspaces/{self.workspace_id}/query"

    def _bearer_token(self):
        if self._static_token:
            return self._static_token
        if self._token is None or self._token.expires_on - TOKEN_REFRESH_MARGIN_SECONDS < time.time():
            if self._credential is None:
                self._credential = DefaultAzureCredential()
            self._token = self._credential.get_token(TOKEN_SCOPE)
        return self._token.token

    @staticmethod
    def _read_body(resp, deadline):
        """Reads a streamed response body, giving up once ``deadline`` (monotonic) has passed."""
        chunks = []
        try:
            for chunk in resp.iter_content(chunk_size=READ_CHUNK_BYTES):
                if deadline is not None and time.monotonic() > deadline:
                    raise QueryError("Query exceeded its deadline while reading the response")
                chunks.append(chunk)
        except requests.RequestException as e:
            raise QueryError(f"Failed reading response: {e}") from e
        return b"".join(chunks)

    def query(self, kql, timeout=None):
        """Runs a KQL query and returns the primary result table as records.

        With a ``timeout`` the whole call, including reading the body, stops
        after roughly that many seconds.
        """
        deadline = time.monotonic() + timeout if timeout else None
        headers = {"Authorization": f"Bearer {self._bearer_token()}"}
        if timeout:
            headers["Prefer"] = f"wait={int(timeout)}"
        logger.debug(f"POST {self.query_url}: {kql}")
        try:
            resp = self.session.post(self.query_url, json={"query": kql}, headers=headers,
                                     timeout=timeout, stream=True)
        except requests.RequestException as e:
            raise QueryError(f"Request to {self.query_url} failed: {e}") from e

        try:
            body = self._read_body(resp, deadline)
        finally:
            resp.close()

        text = body.decode("utf-8", errors="replace")
        if resp.status_code == 429:
            raise QueryError("Rate limit hit (429 Too Many Requests)", status_code=429)
        if resp.status_code >= 400:
            raise QueryError(f"Query failed with HTTP {resp.status_code}: {text[:500]}",
                             status_code=resp.status_code)
        try:
            data = json.loads(text)
        except ValueError as e:
            raise QueryError(f"Failed to decode JSON response: {text[:500]}") from e

        if data.get("error"):
            error = data["error"]
            raise QueryError(f"Query returned an error: {error.get('code')}: {error.get('message')}")

        tables = data.get("tables") or []
        if not tables:
            return []
        return rows_to_records(tables[0])

    def count(self, kql, timeout=None):
        """Runs a `| count` query. Returns None when the response carries no count."""
        records = self.query(kql, timeout=timeout)
        if not records:
            return None
        value = records[0].get("Count")
        if value is None:
            return None
        return int(value)
