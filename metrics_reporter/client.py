"""HTTP client for report artifacts stored on a remote server.

Used to fetch a baseline report published by another build (CI artifact
store, static file server).

Usage:
    client = ArtifactClient(url="https://ci.example.com/artifacts", token="xxx")
    data   = client.get_json("/main/metrics-report.json")
    data   = client.get_json("https://other.example.com/report.json")
"""

import json
from decimal import Decimal

import requests

from metrics_reporter.errors import ReportIoError


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ArtifactClientError(ReportIoError):
    """Base exception for all artifact client errors."""


class AuthenticationError(ArtifactClientError):
    """Raised on HTTP 401: invalid or expired token."""


class NotFoundError(ArtifactClientError):
    """Raised on HTTP 404: the artifact does not exist."""


class NetworkError(ArtifactClientError):
    """Raised on connection timeout or unreachable server."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ArtifactClient:
    """Thin wrapper around an artifact server reachable over HTTP(S)."""

    def __init__(self, url: str = "", token: str | None = None, timeout: int = 30) -> None:
        self.base_url = url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def get_json(self, path_or_url: str) -> dict:
        """GET an artifact and parse it as JSON, keeping numbers exact.

        *path_or_url* is either an absolute URL or a path appended to the
        client's base URL.

        Raises:
            AuthenticationError: HTTP 401
            NotFoundError:       HTTP 404
            ArtifactClientError: any other non-2xx response, or a body that
                                 is not a JSON object
            NetworkError:        timeout or connection failure
        """
        response = self._request(self._url(path_or_url))
        try:
            data = json.loads(response.text, parse_float=Decimal)
        except json.JSONDecodeError as exc:
            raise ArtifactClientError(
                f"Response from '{response.url}' is not valid JSON: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ArtifactClientError(f"Response from '{response.url}' is not a JSON object.")
        return data

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("http://", "https://")):
            return path_or_url
        return f"{self.base_url}/{path_or_url.lstrip('/')}"

    def _request(self, url: str) -> requests.Response:
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.exceptions.Timeout as exc:
            raise NetworkError(
                f"Request timed out after {self._timeout}s while contacting '{url}'"
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(f"Unable to reach artifact server at '{url}'") from exc

        if response.status_code == 401:
            raise AuthenticationError(
                "Authentication failed: check that the baseline token is valid and not expired."
            )
        if response.status_code == 404:
            raise NotFoundError(f"Artifact not found: {url}")
        if not response.ok:
            raise ArtifactClientError(
                f"Unexpected response {response.status_code} from {url}: {response.text[:200]}"
            )
        return response
