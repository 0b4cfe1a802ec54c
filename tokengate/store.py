import logging
import time
from typing import Dict, Tuple
from urllib.parse import quote

import requests

from tokengate.config import Config
from tokengate.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class MemoryStore:
    """In-process key-value store with per-key expiry.

    Stands in for the remote store during local development and tests.
    """

    def __init__(self):
        self._data: Dict[str, Tuple[str, float]] = {}

    def get(self, key: str) -> str | None:
        now = time.time()
        entry = self._data.get(key)
        if not entry:
            return None
        value, expires_at = entry
        if now >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    def set(self, key: str, value: str, ex: int) -> None:
        if ex < 1:
            raise ValueError("expiry must be at least 1 second")
        self._data[key] = (value, time.time() + ex)


class UpstashStore:
    """Client for the Upstash Redis REST API (GET and SET ... EX only)."""

    def __init__(self, base_url: str, token: str, timeout_s: float = 5.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.session.headers["Authorization"] = f"Bearer {token}"

    def get(self, key: str) -> str | None:
        url = f"{self.base_url}/get/{quote(key, safe='')}"
        data = self._call("GET", url)
        return data.get("result")

    def set(self, key: str, value: str, ex: int) -> None:
        if ex < 1:
            raise ValueError("expiry must be at least 1 second")
        url = f"{self.base_url}/set/{quote(key, safe='')}"
        self._call(
            "POST",
            url,
            params={"EX": ex},
            data=value.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )

    def _call(self, method: str, url: str, **kwargs) -> dict:
        try:
            resp = self.session.request(method, url, timeout=self.timeout_s, **kwargs)
        except requests.RequestException as exc:
            logger.warning("store %s failed: %s", method, exc)
            raise UpstreamFailure("store unreachable") from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamFailure(f"store returned non-json response ({resp.status_code})") from exc

        if not isinstance(data, dict):
            raise UpstreamFailure("store returned unexpected payload", {"result": data})
        if data.get("error") or resp.status_code >= 400:
            logger.warning("store %s error %s: %s", method, resp.status_code, data.get("error"))
            raise UpstreamFailure("store error", data)
        return data


def build_store(config: Config):
    if not config.upstash_rest_url:
        logger.warning("UPSTASH_REST_URL not set, using in-process memory store")
        return MemoryStore()
    return UpstashStore(config.upstash_rest_url, config.upstash_rest_token, config.http_timeout_s)
