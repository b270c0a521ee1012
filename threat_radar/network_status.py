"""Exit-address probe: is traffic leaving through the proxy, and from where."""

from __future__ import annotations

import concurrent.futures as futures
import dataclasses
import json
import logging
import socket
import threading
import time
from typing import Callable, List, Optional, Sequence, Tuple

import httpx

from .models import NetworkStatus
from .transport import ProxyTransport, describe_error

LOGGER = logging.getLogger(__name__)

PLAIN_ECHO_SERVICES: Tuple[str, ...] = (
    "http://icanhazip.com",
    "http://ifconfig.me/ip",
    "http://ipinfo.io/ip",
    "http://api.ipify.org",
    "http://checkip.amazonaws.com",
    "http://ipecho.net/plain",
    "http://ident.me",
)
JSON_ECHO_SERVICES: Tuple[Tuple[str, str], ...] = (
    ("http://api.ipify.org?format=json", "ip"),
    ("https://api.ipify.org?format=json", "ip"),
    ("https://check.torproject.org/api/ip", "IP"),
)
JSON_FALLBACK_FIELDS = ("ip", "IP", "origin", "Origin", "query", "Query")

CONNECTED_TTL_SECONDS = 15.0
DISCONNECTED_TTL_SECONDS = 1.0
PLAIN_BODY_LIMIT = 50
JSON_BODY_LIMIT = 500


def _strip_candidate(value: str) -> str:
    value = value.strip()
    for junk in ("\n", "\r", '"', "'"):
        value = value.replace(junk, "")
    return value.strip()


def validate_ip_candidate(value: str) -> bool:
    """Return True when ``value`` looks like an IPv4 or IPv6 literal."""

    candidate = _strip_candidate(value)
    if not candidate:
        return False
    if "." in candidate:
        parts = candidate.split(".")
        if len(parts) == 4:
            return all(0 < len(part) <= 3 and part.isascii() and part.isdigit() for part in parts)
    if ":" in candidate:
        return len(candidate) > 2
    return False


def _read_limited(response: httpx.Response, limit: int) -> bytes:
    data = bytearray()
    for chunk in response.iter_bytes():
        data.extend(chunk)
        if len(data) >= limit:
            break
    return bytes(data[:limit])


class NetworkStatusProbe:
    """Race several IP-echo services through the proxy and cache the answer."""

    def __init__(
        self,
        transport: ProxyTransport,
        plain_services: Sequence[str] = PLAIN_ECHO_SERVICES,
        json_services: Sequence[Tuple[str, str]] = JSON_ECHO_SERVICES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.plain_services = tuple(plain_services)
        self.json_services = tuple(json_services)
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[NetworkStatus] = None
        self._cached_at = 0.0

    def _cached_status(self) -> Optional[NetworkStatus]:
        with self._lock:
            if self._cached is None:
                return None
            ttl = CONNECTED_TTL_SECONDS if self._cached.is_connected else DISCONNECTED_TTL_SECONDS
            if self._clock() - self._cached_at < ttl:
                return dataclasses.replace(self._cached)
            return None

    def _store(self, status: NetworkStatus) -> NetworkStatus:
        with self._lock:
            self._cached = status
            self._cached_at = self._clock()
        return dataclasses.replace(status)

    def check_status(self) -> NetworkStatus:
        """Return the current exit address, or a disconnected status. Never raises."""

        cached = self._cached_status()
        if cached is not None:
            return cached

        config = self.transport.config
        host, port = config.host_port
        try:
            with socket.create_connection((host, port), timeout=config.status_dial_timeout_seconds):
                pass
        except OSError as exc:
            return self._store(
                NetworkStatus(
                    is_connected=False,
                    exit_address=None,
                    message=f"SOCKS5 port unreachable at {host}:{port}: {exc}",
                )
            )

        try:
            client = self.transport.client()
        except Exception as exc:
            LOGGER.warning("Could not build proxy client for status check: %s", exc)
            return NetworkStatus(
                is_connected=False,
                exit_address=None,
                message=f"proxy connection failed ({config.address}). Make sure the proxy is running.",
            )

        exit_address, last_error = self._race(client, config.status_timeout_seconds)
        if exit_address:
            LOGGER.info("Retrieved exit address %s", exit_address)
            status = NetworkStatus(is_connected=True, exit_address=exit_address, message="proxy connection active")
        else:
            LOGGER.warning("No exit address received within %.0fs; last error: %s", config.status_timeout_seconds, last_error)
            if last_error:
                message = f"proxy connected but IP check failed: {last_error}. Proxy: {config.address}"
            else:
                message = f"proxy active but unable to retrieve exit address. Proxy: {config.address}"
            status = NetworkStatus(is_connected=False, exit_address=None, message=message)
        return self._store(status)

    def _race(self, client: httpx.Client, timeout: float) -> Tuple[Optional[str], Optional[str]]:
        """Return the first valid address any service reports, plus the first error seen."""

        deadline = time.monotonic() + timeout
        errors: List[str] = []
        errors_lock = threading.Lock()

        def remaining() -> float:
            return max(0.1, deadline - time.monotonic())

        def record(exc: BaseException) -> None:
            with errors_lock:
                errors.append(describe_error(exc))

        def try_plain(url: str) -> Optional[str]:
            try:
                with client.stream(
                    "GET",
                    url,
                    headers={"User-Agent": self.transport.config.user_agent, "Accept": "*/*"},
                    timeout=remaining(),
                ) as response:
                    if response.status_code != 200:
                        return None
                    body = _read_limited(response, PLAIN_BODY_LIMIT)
            except httpx.HTTPError as exc:
                record(exc)
                return None
            candidate = _strip_candidate(body.decode("utf-8", errors="replace"))
            return candidate if validate_ip_candidate(candidate) else None

        def try_json(url: str, field: str) -> Optional[str]:
            try:
                with client.stream(
                    "GET",
                    url,
                    headers={"User-Agent": self.transport.config.user_agent, "Accept": "application/json"},
                    timeout=remaining(),
                ) as response:
                    if response.status_code != 200:
                        return None
                    body = _read_limited(response, JSON_BODY_LIMIT)
            except httpx.HTTPError as exc:
                record(exc)
                return None
            try:
                payload = json.loads(body)
            except ValueError:
                return None
            if not isinstance(payload, dict):
                return None
            for key in (field, *JSON_FALLBACK_FIELDS):
                value = payload.get(key)
                if isinstance(value, str) and validate_ip_candidate(value):
                    return _strip_candidate(value)
            return None

        pool = futures.ThreadPoolExecutor(
            max_workers=len(self.plain_services) + len(self.json_services) or 1,
            thread_name_prefix="exit-probe",
        )
        pending = [pool.submit(try_plain, url) for url in self.plain_services]
        pending += [pool.submit(try_json, url, field) for url, field in self.json_services]
        winner: Optional[str] = None
        try:
            for fut in futures.as_completed(pending, timeout=timeout):
                try:
                    result = fut.result()
                except Exception as exc:
                    record(exc)
                    continue
                if result:
                    winner = result
                    break
        except futures.TimeoutError:
            LOGGER.debug("Exit-address race hit its %.0fs deadline", timeout)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        with errors_lock:
            first_error = errors[0] if errors else None
        return winner, first_error


__all__ = ["NetworkStatusProbe", "validate_ip_candidate"]
