"""HTTP client with per-call timeouts, optional retry/backoff and request metrics."""
from __future__ import annotations

import logging
import random
import threading
import time
from collections import defaultdict
from typing import Any, Dict, Optional

import requests

from . import config

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class RequestMetrics:
    """Thread-safe per-source counters: network calls, failures and cache hits."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.network: Dict[str, int] = defaultdict(int)
        self.failures: Dict[str, int] = defaultdict(int)
        self.cache_hits: Dict[str, int] = defaultdict(int)

    def inc_network(self, source: str) -> None:
        with self._lock:
            self.network[source] += 1

    def inc_failure(self, source: str) -> None:
        with self._lock:
            self.failures[source] += 1

    def inc_cache_hit(self, source: str) -> None:
        with self._lock:
            self.cache_hits[source] += 1

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {
                "network": dict(self.network),
                "failures": dict(self.failures),
                "cache_hits": dict(self.cache_hits),
            }


class HttpClient:
    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_max: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
    ) -> None:
        # Unset arguments fall back to the current config values.
        self.user_agent = user_agent or config.USER_AGENT
        self.timeout = config.PROVIDER_TIMEOUT_SECONDS if timeout is None else timeout
        self.retry_max = max(1, int(config.HTTP_RETRY_MAX if retry_max is None else retry_max))
        self.backoff_base = config.HTTP_BACKOFF_BASE if backoff_base is None else backoff_base
        self.backoff_max = config.HTTP_BACKOFF_MAX if backoff_max is None else backoff_max
        self.session = requests.Session()

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        headers = self._headers(extra_headers)
        return self._request("GET", url, params=params, headers=headers, timeout=timeout)

    def post_form(
        self,
        url: str,
        data: Dict[str, Any],
        extra_headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        headers = self._headers(extra_headers)
        headers["Content-Type"] = "application/x-www-form-urlencoded"
        return self._request("POST", url, data=data, headers=headers, timeout=timeout)

    def _headers(self, extra_headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        if extra_headers:
            headers.update(extra_headers)
        return headers

    def _request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        timeout: Optional[float],
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        call_timeout = self.timeout if timeout is None else timeout
        for attempt in range(1, self.retry_max + 1):
            try:
                if method == "GET":
                    resp = self.session.get(url, params=params, headers=headers, timeout=call_timeout)
                else:
                    resp = self.session.post(url, data=data, headers=headers, timeout=call_timeout)
            except requests.RequestException:
                if attempt >= self.retry_max:
                    raise
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if status == 200:
                try:
                    return resp.json()
                except ValueError:
                    logger.error("Non-JSON response from %s", url)
                    raise

            if status in RETRYABLE_STATUS:
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    resp.raise_for_status()
                if not self._sleep_retry_after(resp):
                    self._sleep_backoff(attempt)
                continue

            # Non-retryable
            logger.error("HTTP %s from %s", status, url)
            resp.raise_for_status()
            raise requests.HTTPError(f"Unexpected HTTP {status} from {url}", response=resp)

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        time.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        delay = max(0.0, min(delay, self.backoff_max))
        time.sleep(delay)
        return True
