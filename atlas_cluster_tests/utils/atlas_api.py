"""Base client for the Atlas Administration API v2.

Handles authentication, rate limiting, error mapping and request statistics. Clients for the
individual API resources are built on top of it.
"""

import collections
import logging
import threading
import time
import typing as tp

import requests
from requests import auth as rauth

from atlas_cluster_tests.utils import configuration
from atlas_cluster_tests.utils import http_client

LOGGER = logging.getLogger(__name__)

BASE_URL_V2 = "https://cloud.mongodb.com/api/atlas/v2"
API_VERSION_V2 = "application/vnd.atlas.2025-03-12+json"

REQUEST_TIMEOUT = 60
ITEMS_PER_PAGE = 500

RATE_LIMIT_MAX_REQUESTS = 100
RATE_LIMIT_WINDOW_SECS = 60.0


class AtlasApiError(Exception):
    """Failed call to the Atlas API."""

    def __init__(self, message: str, *, status_code: int = 0, error_code: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class NotFoundError(AtlasApiError):
    pass


class RateLimiter:
    """Sliding window limit on number of requests.

    When the window is full, `acquire` blocks until the oldest request leaves the window.
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_secs: float = RATE_LIMIT_WINDOW_SECS,
        clock: tp.Callable[[], float] = time.monotonic,
        sleep: tp.Callable[[float], None] = time.sleep,
    ) -> None:
        if max_requests < 1:
            msg = f"Invalid `max_requests`: {max_requests}"
            raise ValueError(msg)
        self.max_requests = max_requests
        self.window_secs = window_secs
        self._clock = clock
        self._sleep = sleep
        self._timestamps: collections.deque[float] = collections.deque()
        self._lock = threading.Lock()

    def requests_in_window(self) -> int:
        with self._lock:
            self._expire(now=self._clock())
            return len(self._timestamps)

    def _expire(self, now: float) -> None:
        cutoff = now - self.window_secs
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def acquire(self) -> float:
        """Record a request, wait first if needed. Return number of seconds waited."""
        waited = 0.0
        with self._lock:
            now = self._clock()
            self._expire(now=now)

            if len(self._timestamps) >= self.max_requests:
                wait_secs = self._timestamps[0] + self.window_secs - now
                if wait_secs > 0:
                    LOGGER.warning(f"Rate limit reached, waiting {wait_secs:.2f}s.")
                    self._sleep(wait_secs)
                    waited = wait_secs
                self._timestamps.popleft()

            self._timestamps.append(self._clock())

        return waited


def _get_api_error(method: str, path: str, response: requests.Response) -> AtlasApiError:
    """Create exception out of an unsuccessful response."""
    error_code = ""
    detail = response.text
    try:
        error_data = response.json()
    except ValueError:
        error_data = None

    if isinstance(error_data, dict):
        error_code = error_data.get("errorCode") or ""
        detail = error_data.get("detail") or error_data.get("reason") or detail

    msg = f"`{method} {path}` failed with HTTP {response.status_code} {error_code}: {detail}"
    exc_cls = NotFoundError if response.status_code == 404 else AtlasApiError
    return exc_cls(msg, status_code=response.status_code, error_code=error_code)


def extract_results(data: dict) -> list[dict]:
    """Extract the `results` list from a paginated response."""
    results = data.get("results")
    if results is None:
        return []
    if not isinstance(results, list):
        msg = f"Unexpected type of `results`: {type(results).__name__}"
        raise AtlasApiError(msg)
    return results


class AtlasApi:
    """Authenticated access to the Atlas Administration API."""

    def __init__(
        self,
        public_key: str,
        private_key: str,
        *,
        base_url: str = BASE_URL_V2,
        rate_limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
        debug_level: int = 0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.auth = rauth.HTTPDigestAuth(public_key, private_key)
        self.rate_limiter = rate_limiter
        self.debug_level = max(0, min(3, debug_level))
        self._session = session

        self._stats_lock = threading.Lock()
        self.total_requests = 0
        self.project_requests: collections.Counter[str] = collections.Counter()
        self.endpoint_requests: collections.Counter[str] = collections.Counter()

    @classmethod
    def from_config(cls, config: configuration.AtlasTestConfig) -> "AtlasApi":
        config.validate()
        rate_limiter = RateLimiter() if config.rate_limit_enabled else None
        return cls(
            config.api_public_key,
            config.api_private_key,
            rate_limiter=rate_limiter,
            debug_level=config.debug_level,
        )

    @property
    def session(self) -> requests.Session:
        return self._session or http_client.get_session()

    def _track_request(self, path: str, project_id: str) -> int:
        endpoint = path.split("?", maxsplit=1)[0]
        with self._stats_lock:
            self.total_requests += 1
            self.endpoint_requests[endpoint] += 1
            if project_id:
                self.project_requests[project_id] += 1
            request_num = self.total_requests

        if self.debug_level >= 1:
            project_str = f" (project: {project_id})" if project_id else ""
            LOGGER.debug(f"Request #{request_num}: {endpoint}{project_str}")
        return request_num

    def request(
        self,
        method: str,
        path: str,
        *,
        project_id: str = "",
        json_body: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        """Make a request and return the decoded JSON body (empty dict for empty body)."""
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()
        self._track_request(path=path, project_id=project_id)

        url = f"{self.base_url}{path}"
        headers = {"Accept": API_VERSION_V2}
        if json_body is not None:
            headers["Content-Type"] = "application/json"

        start = time.monotonic()
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                json=json_body,
                params=params,
                auth=self.auth,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            msg = f"`{method} {path}` failed: {exc}"
            raise AtlasApiError(msg) from exc

        if self.debug_level >= 2:
            LOGGER.debug(f"Response time: {time.monotonic() - start:.3f}s for {method} {url}")

        if not response.ok:
            raise _get_api_error(method=method, path=path, response=response)

        if not response.content or not response.content.strip():
            return {}

        try:
            data = response.json()
        except ValueError as exc:
            msg = f"`{method} {path}` returned invalid JSON: {exc}"
            raise AtlasApiError(msg, status_code=response.status_code) from exc

        if not isinstance(data, dict):
            msg = f"`{method} {path}` returned unexpected JSON type: {type(data).__name__}"
            raise AtlasApiError(msg, status_code=response.status_code)
        return data

    def get(self, path: str, *, project_id: str = "", params: dict | None = None) -> dict:
        return self.request("GET", path, project_id=project_id, params=params)

    def post(self, path: str, *, project_id: str = "", json_body: dict | None = None) -> dict:
        return self.request("POST", path, project_id=project_id, json_body=json_body)

    def patch(self, path: str, *, project_id: str = "", json_body: dict | None = None) -> dict:
        return self.request("PATCH", path, project_id=project_id, json_body=json_body)

    def delete(self, path: str, *, project_id: str = "") -> dict:
        return self.request("DELETE", path, project_id=project_id)

    def get_results(self, path: str, *, project_id: str = "") -> list[dict]:
        """Get all items of a paginated listing endpoint."""
        results: list[dict] = []
        page_num = 1
        while True:
            data = self.get(
                path,
                project_id=project_id,
                params={"itemsPerPage": ITEMS_PER_PAGE, "pageNum": page_num},
            )
            page = extract_results(data)
            results.extend(page)

            total_count = data.get("totalCount")
            if not page or total_count is None or len(results) >= total_count:
                break
            page_num += 1

        return results

    def get_api_stats(self) -> dict[str, tp.Any]:
        with self._stats_lock:
            stats: dict[str, tp.Any] = {
                "totalRequests": self.total_requests,
                "projectStats": dict(self.project_requests),
                "endpointStats": dict(self.endpoint_requests),
            }
        if self.rate_limiter is not None:
            stats["requestsInWindow"] = self.rate_limiter.requests_in_window()
        return stats
