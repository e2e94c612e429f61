"""SonarQube API client.

Usage:
    client = SonarClient(url="http://localhost:9000", token="squ_xxx")
    data   = client.get("/api/measures/component", {"component": "my.project"})
    issues = client.get_paginated("/api/issues/search", params, results_key="issues")
    client.post("/api/projects/create", {"project": "my.project", "name": "sample"})
"""

import logging
import warnings
from typing import Any

import requests

from scanner_its.errors import ExternalServiceFailure, OperationTimeout

log = logging.getLogger(__name__)

PAGE_SIZE = 500
PAGINATION_WARNING_THRESHOLD = 10_000


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SonarClientError(ExternalServiceFailure):
    """Base exception for all client errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(SonarClientError):
    """Raised on HTTP 401 — invalid or expired token."""


class NotFoundError(SonarClientError):
    """Raised on HTTP 404 — project, component or resource not found."""


class NetworkError(SonarClientError):
    """Raised when the server is unreachable."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class SonarClient:
    """Thin wrapper around the SonarQube REST API."""

    def __init__(self, url: str, token: str, timeout: float = 30) -> None:
        self.base_url = url.rstrip("/")
        self.token = token
        self._timeout = timeout
        self._session = requests.Session()
        # SonarQube auth: token as username, empty password
        if token:
            self._session.auth = (token, "")

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict:
        """Perform a single GET request and return the parsed JSON response.

        Raises:
            AuthenticationError: HTTP 401
            NotFoundError:       HTTP 404
            SonarClientError:    Any other non-2xx response
            NetworkError:        Connection failure
            OperationTimeout:    No response within the client timeout
        """
        return self._request("GET", endpoint, params=params or {})

    def post(
        self,
        endpoint: str,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> dict:
        """Perform a POST request (form or multipart) and return the JSON body.

        Mutating web services answer ``204 No Content``; an empty dict is
        returned in that case. Raises the same exceptions as :meth:`get`.
        """
        return self._request("POST", endpoint, data=data or {}, files=files)

    def get_paginated(
        self,
        endpoint: str,
        params: dict[str, Any],
        results_key: str,
    ) -> list[dict]:
        """Fetch all pages for an endpoint and return a flat list of results.

        SonarQube paginates via ``p`` (page number) and ``ps`` (page size).
        The total result count is in ``response["paging"]["total"]``
        (``response["total"]`` on older servers).

        Emits a warning when total > PAGINATION_WARNING_THRESHOLD (10 000)
        because SonarQube refuses to page beyond that limit.
        """
        all_results: list[dict] = []
        page = 1
        _warning_emitted = False

        while True:
            page_params = {**params, "ps": PAGE_SIZE, "p": page}
            data = self._request("GET", endpoint, params=page_params)

            results = data.get(results_key, [])
            all_results.extend(results)

            paging = data.get("paging", {})
            total: int = paging.get("total", data.get("total", len(all_results)))

            if total > PAGINATION_WARNING_THRESHOLD and not _warning_emitted:
                warnings.warn(
                    f"Result set exceeds {PAGINATION_WARNING_THRESHOLD} items (total={total}). "
                    "SonarQube caps pagination at 10 000 — some results may be missing.",
                    UserWarning,
                    stacklevel=2,
                )
                _warning_emitted = True

            if len(all_results) >= total or not results:
                break

            page += 1

        return all_results

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> dict:
        url = f"{self.base_url}{endpoint}"
        log.debug("%s %s %s", method, url, kwargs.get("params") or kwargs.get("data") or "")
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            raise OperationTimeout(
                f"Request timed out after {self._timeout}s while contacting '{url}'"
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(
                f"Unable to reach SonarQube server at '{self.base_url}'"
            ) from exc

        if response.status_code == 401:
            raise AuthenticationError(
                "Authentication failed — check that your token is valid and not expired.",
                status_code=401,
            )
        if response.status_code == 404:
            raise NotFoundError(f"Resource not found: {url}", status_code=404)
        if not response.ok:
            raise SonarClientError(
                f"Unexpected response {response.status_code} from {url}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()
