"""SonarQube API session.

Usage:
    client = SonarClient("https://sonar.example.com")
    if client.base_url and client.authenticate("", "", "admin", "secret"):
        issues = client.get_issues_from_project("com.example:app")
        client.do_transition(issues[0].key, Transition.WONTFIX)

The public methods never raise on transport problems: failures are logged and
reported as ``False`` / ``None``.
"""

import base64
import logging
import re
import warnings
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import requests

from sonar_migrate.models import Issue, IssuePage, Transition

log = logging.getLogger(__name__)

API_LOGIN = "api/authentication/login"
API_SEARCH = "api/issues/search"
API_DO_TRANSITION = "api/issues/do_transition"

AUTH_FAILURE_MARKER = "Authentication failed"
XSRF_COOKIE = "XSRF-TOKEN"
SESSION_COOKIE = "JWT-SESSION"

PAGE_SIZE = 500
PAGINATION_WARNING_THRESHOLD = 10_000

# requests folds repeated Set-Cookie headers into one comma-separated value;
# only split on commas that start a new "name=" pair (not inside Expires dates)
_COOKIE_SPLIT = re.compile(r",\s*(?=[^;,=\s]+=)")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SonarClientError(Exception):
    """Base exception for all client errors."""


class AuthenticationError(SonarClientError):
    """Raised on HTTP 401, the session was rejected."""


class NetworkError(SonarClientError):
    """Raised on timeout, unreachable server or TLS failure."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def base_url_from_host(host: str | None) -> str | None:
    """Return the API base URL for *host*, or None if it is malformed.

    ``https://sonar.example.com/sonar/`` gives ``https://sonar.example.com/sonar``.
    """
    if not host:
        log.error("No server URL given.")
        return None
    try:
        parts = urlsplit(host.strip())
        # Accessing port validates it
        parts.port
    except ValueError:
        log.error("Malformed server URL: '%s'", host)
        return None
    if parts.scheme not in ("http", "https") or not parts.hostname:
        log.error("Malformed server URL: '%s'", host)
        return None
    return f"{parts.scheme}://{parts.netloc}{parts.path}".rstrip("/")


def basic_auth_header(user: str, password: str) -> str:
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def _split_set_cookie(value: str) -> list[str]:
    return [part.strip() for part in _COOKIE_SPLIT.split(value) if part.strip()]


def _first_containing(cookies: list[str], marker: str) -> str | None:
    return next((cookie for cookie in cookies if marker in cookie), None)


def _xsrf_token(cookie: str | None) -> str | None:
    """Text between the first ``=`` and the following ``;`` of the cookie."""
    if not cookie or "=" not in cookie:
        return None
    value = cookie.split("=", 1)[1]
    return value.split(";", 1)[0]


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Credentials:
    """Headers obtained by logging in, sent with every later request."""

    authorization: str | None = None
    xsrf_token: str | None = None
    cookie: str | None = None

    def headers(self) -> dict[str, str]:
        headers = {}
        if self.authorization:
            headers["Authorization"] = self.authorization
        if self.xsrf_token:
            headers["X-XSRF-TOKEN"] = self.xsrf_token
        if self.cookie:
            headers["Cookie"] = self.cookie
        return headers


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class SonarClient:
    """One authenticated session against one SonarQube server."""

    def __init__(self, host: str | None, timeout: int = 30, verify: bool = True) -> None:
        self.base_url = base_url_from_host(host)
        self.credentials: Credentials | None = None
        self._timeout = timeout
        self._verify = verify
        self._session = requests.Session()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(
        self,
        basic_auth_user: str | None,
        basic_auth_password: str | None,
        user: str,
        password: str,
    ) -> bool:
        """Log in and keep the resulting XSRF token and session cookie.

        HTTP basic-auth credentials (for servers behind a proxy) are added
        only when both are given. Returns False on rejected credentials or
        any transport failure.
        """
        if self.base_url is None:
            log.error("Cannot authenticate: no valid server URL.")
            return False

        authorization = None
        if basic_auth_user and basic_auth_password:
            authorization = basic_auth_header(basic_auth_user, basic_auth_password)
        anonymous = Credentials(authorization=authorization)

        try:
            response = self._send(
                "POST", API_LOGIN,
                data={"login": user, "password": password},
                headers=anonymous.headers(),
            )
        except SonarClientError as exc:
            log.error("Error authenticating against %s: %s", self.base_url, exc)
            return False

        if response.status_code == 401 or AUTH_FAILURE_MARKER in response.text:
            log.error("Authentication failed for user '%s' on %s", user, self.base_url)
            return False

        cookies = _split_set_cookie(response.headers.get("Set-Cookie", ""))
        self.credentials = Credentials(
            authorization=authorization,
            xsrf_token=_xsrf_token(_first_containing(cookies, XSRF_COOKIE)),
            cookie=_first_containing(cookies, SESSION_COOKIE),
        )
        log.debug("Authenticated as '%s' on %s", user, self.base_url)
        return True

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def get_issues_from_project(self, project_key: str) -> list[Issue] | None:
        """All resolved issues of a project."""
        return self.search_issues({"resolved": "true", "componentKeys": project_key})

    def search_issues_by_rule(self, rule: str, project_key: str) -> list[Issue] | None:
        """All issues of a project raised by *rule*."""
        return self.search_issues({"rules": rule, "componentKeys": project_key})

    def search_issues(self, params: dict[str, Any]) -> list[Issue] | None:
        """Fetch every page of ``api/issues/search`` for *params*.

        The next page requested is the one after the ``pageIndex`` echoed by
        the server. Stops once the number of issues collected reaches
        ``paging.total`` (or a page comes back empty), and never asks for a page
        past the server's 10 000 result cap: the issues collected up to the
        cap are returned.

        Returns None when any page fails: empty body, HTTP error, transport
        error or undecodable JSON. Partial results are never returned.
        """
        if not self._ready():
            return None

        issues: list[Issue] = []
        page_index = 0
        warning_emitted = False

        try:
            while True:
                page_params = {**params, "ps": PAGE_SIZE, "pageIndex": page_index + 1}
                page = self._get_page(page_params)
                if page is None:
                    log.error("Empty response from %s/%s, aborting search.", self.base_url, API_SEARCH)
                    return None

                issues.extend(page.issues)
                page_index = page.page_index

                if page.total > PAGINATION_WARNING_THRESHOLD and not warning_emitted:
                    warnings.warn(
                        f"Result set exceeds {PAGINATION_WARNING_THRESHOLD} items (total={page.total}). "
                        "SonarQube caps pagination at 10 000, only the first 10 000 are fetched.",
                        UserWarning,
                        stacklevel=2,
                    )
                    warning_emitted = True

                if len(issues) >= page.total or not page.issues:
                    break
                if page_index * PAGE_SIZE >= PAGINATION_WARNING_THRESHOLD:
                    break
        except SonarClientError as exc:
            log.error("Error getting issues from %s: %s", self.base_url, exc)
            return None

        return issues

    def do_transition(self, issue_key: str, transition: Transition) -> requests.Response | None:
        """Apply *transition* to the issue. None if the request could not be sent."""
        if not self._ready():
            return None
        try:
            return self._send(
                "POST", API_DO_TRANSITION,
                data={"issue": issue_key, "transition": transition.value},
                headers=self.credentials.headers(),
            )
        except SonarClientError as exc:
            log.error("Error updating issue %s: %s", issue_key, exc)
            return None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _ready(self) -> bool:
        if self.base_url is None:
            log.error("No valid server URL, request skipped.")
            return False
        if self.credentials is None:
            log.error("Not authenticated on %s, request skipped.", self.base_url)
            return False
        return True

    def _get_page(self, params: dict[str, Any]) -> IssuePage | None:
        response = self._send("GET", API_SEARCH, params=params, headers=self.credentials.headers())

        if response.status_code == 401:
            raise AuthenticationError("Session rejected, the login cookie may have expired.")
        if not response.ok:
            raise SonarClientError(
                f"Unexpected response {response.status_code}: {response.text[:200]}"
            )
        if not response.text.strip():
            return None

        try:
            return IssuePage.from_json(response.json())
        except (ValueError, TypeError, AttributeError) as exc:
            raise SonarClientError(f"Invalid search response: {exc}") from exc

    def _send(self, method: str, endpoint: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}/{endpoint}"
        try:
            return self._session.request(
                method, url, timeout=self._timeout, verify=self._verify, **kwargs
            )
        except requests.exceptions.Timeout as exc:
            raise NetworkError(
                f"Request timed out after {self._timeout}s while contacting '{url}'"
            ) from exc
        except requests.exceptions.SSLError as exc:
            raise NetworkError(f"TLS negotiation with '{self.base_url}' failed: {exc}") from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(
                f"Unable to reach SonarQube server at '{self.base_url}'"
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Request to '{url}' failed: {exc}") from exc
