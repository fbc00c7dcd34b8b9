"""
Client side of the session protocol.

SessionClient wraps a requests.Session:
- every request carries the stored access token and no-cache headers
- cookies (the httpOnly refresh token) live in the session's cookie jar
- a 401 triggers one refresh and one retry of that request; if the refresh
  fails the caller gets the original 401 back unchanged

Tokens are kept in a TokenStorage under the same keys the web client uses.
"""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
TOKEN_EXPIRY_KEY = "tokenExpiry"

LOGIN_PATH = "/api/auth/login"
REFRESH_PATH = "/api/auth/refresh"
LOGOUT_PATH = "/api/auth/logout"

DEFAULT_EXPIRES_IN_MS = 15 * 60 * 1000
TOKEN_REFRESH_THRESHOLD_MS = 5 * 60 * 1000

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class TokenStorage:
    """In-memory token storage."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def update(self, values: Dict[str, Any]) -> None:
        self._data.update(values)
        self._persist()

    def clear(self) -> None:
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_EXPIRY_KEY):
            self._data.pop(key, None)
        self._persist()

    def _persist(self) -> None:
        pass


class FileTokenStorage(TokenStorage):
    """Token storage kept in a JSON file so a session survives process restarts."""

    def __init__(self, path):
        self.path = Path(path)
        initial = {}
        if self.path.exists():
            try:
                initial = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                logger.warning("Ignoring unreadable token file %s", self.path)
                initial = {}
        if not isinstance(initial, dict):
            initial = {}
        super().__init__(initial)

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._data), encoding="utf-8")


class SessionClient:
    def __init__(
        self,
        base_url: str = "",
        storage: Optional[TokenStorage] = None,
        http=None,
        timeout: float = 10.0,
        clock: Callable[[], int] = _now_ms,
    ):
        self.base_url = base_url.rstrip("/")
        self.storage = storage if storage is not None else TokenStorage()
        # anything with requests.Session's request() signature
        self.http = http if http is not None else requests.Session()
        self.timeout = timeout
        self._clock = clock

    def _url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.base_url}{url}"

    def _headers(self, extra: Optional[Dict[str, str]], access_token: Optional[str]) -> Dict[str, str]:
        headers = dict(extra or {})
        headers.setdefault("Content-Type", "application/json")
        headers.update(NO_CACHE_HEADERS)
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    def fetch_with_auth(self, url: str, method: str = "GET", headers: Optional[Dict[str, str]] = None, **kwargs):
        """Send a request with the stored access token, refreshing once on 401."""
        kwargs.setdefault("timeout", self.timeout)
        request_headers = self._headers(headers, self.storage.get(ACCESS_TOKEN_KEY))
        response = self.http.request(method, self._url(url), headers=request_headers, **kwargs)

        if response.status_code != 401 or REFRESH_PATH in url:
            return response

        logger.info("Got 401 on %s, attempting to refresh token", url)
        new_token = self.refresh_access_token()
        if not new_token:
            logger.info("Token refresh failed for %s, returning 401 response", url)
            return response

        retry_headers = dict(request_headers)
        retry_headers["Authorization"] = f"Bearer {new_token}"
        return self.http.request(method, self._url(url), headers=retry_headers, **kwargs)

    def refresh_access_token(self) -> Optional[str]:
        """
        Exchange the refresh token for a new pair. The cookie jar carries the
        httpOnly cookie; the stored copy goes in the body for when it does not.
        Returns the new access token, or None without touching storage.
        """
        fallback = self.storage.get(REFRESH_TOKEN_KEY)
        try:
            response = self.http.request(
                "POST",
                self._url(REFRESH_PATH),
                headers={"Content-Type": "application/json", "Cache-Control": "no-cache"},
                json={"refreshToken": fallback} if fallback else None,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Error refreshing token: %s", exc)
            return None

        if not 200 <= response.status_code < 300:
            logger.warning("Token refresh failed: %s", response.status_code)
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("Token refresh returned a malformed body")
            return None
        if not isinstance(data, dict) or not data.get("success") or not data.get("accessToken"):
            return None

        self._store_tokens(data)
        return data["accessToken"]

    def _store_tokens(self, data: Dict[str, Any]) -> None:
        expires_in = data.get("expiresIn")
        if not isinstance(expires_in, (int, float)) or expires_in <= 0:
            expires_in = DEFAULT_EXPIRES_IN_MS
        values = {
            ACCESS_TOKEN_KEY: data["accessToken"],
            TOKEN_EXPIRY_KEY: self._clock() + int(expires_in),
        }
        if data.get("refreshToken"):
            values[REFRESH_TOKEN_KEY] = data["refreshToken"]
        self.storage.update(values)

    def login(self, username: str, password: str):
        """Log in and keep the returned tokens. Returns the raw response."""
        response = self.http.request(
            "POST",
            self._url(LOGIN_PATH),
            headers={"Content-Type": "application/json", **NO_CACHE_HEADERS},
            json={"username": username, "password": password},
            timeout=self.timeout,
        )
        if response.status_code == 200:
            data = response.json()
            if data.get("accessToken"):
                self._store_tokens(data)
        return response

    def logout(self) -> None:
        """Revoke the refresh token server-side (best effort) and forget every token."""
        fallback = self.storage.get(REFRESH_TOKEN_KEY)
        try:
            response = self.http.request(
                "POST",
                self._url(LOGOUT_PATH),
                headers={"Content-Type": "application/json", **NO_CACHE_HEADERS},
                json={"refreshToken": fallback} if fallback else None,
                timeout=self.timeout,
            )
            if response.status_code != 200:
                logger.warning("Logout request returned status %s", response.status_code)
        except requests.RequestException as exc:
            logger.warning("Logout request failed: %s", exc)
        finally:
            self.storage.clear()

    def is_token_expiring_soon(self, threshold_ms: int = TOKEN_REFRESH_THRESHOLD_MS) -> bool:
        expiry = self.storage.get(TOKEN_EXPIRY_KEY)
        if not expiry:
            return True
        try:
            return int(expiry) - self._clock() <= threshold_ms
        except (TypeError, ValueError):
            return True
