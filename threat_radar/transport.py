"""HTTP transport routed through the SOCKS5 anonymizing proxy."""

from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Callable, List, Optional, Tuple

import httpx

from .config import ProxyConfig
from .models import ReadinessStatus

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[], httpx.Client]

TEXT_CONTENT_PREFIXES = (
    "text/html",
    "text/plain",
    "application/xhtml",
    "application/xml",
)
RETRYABLE_MARKERS = ("timeout", "connection", "refused", "network", "temporary")
BOOTSTRAP_MARKERS = ("connection refused", "no route", "timeout")
MAX_READY_DELAY_SECONDS = 15.0
DEFAULT_RETIRE_GRACE_SECONDS = 120.0
ERROR_BODY_LIMIT = 200


class TransportError(Exception):
    """Raised when a request through the proxy cannot be completed."""


class HTTPStatusError(TransportError):
    """The remote answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"unexpected status code: {status_code}: {body}")


class UnsupportedContentTypeError(TransportError):
    """The remote answered with something other than text."""

    def __init__(self, content_type: str) -> None:
        self.content_type = content_type
        super().__init__(f"unsupported content type: {content_type} (only text/html accepted)")


class ProxyNotReadyError(TransportError):
    """The proxy never reported itself ready within the allowed attempts."""


class DeadlineExceededError(TransportError):
    """A request ran past its whole-call deadline."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(f"deadline exceeded (timeout after {seconds:g}s)")


def describe_error(exc: BaseException) -> str:
    """Render an exception with its class name so substring checks can see it."""

    return f"{type(exc).__name__}: {exc}"


def is_retryable(exc: BaseException) -> bool:
    text = describe_error(exc).lower()
    return any(marker in text for marker in RETRYABLE_MARKERS)


def build_proxy_client(config: ProxyConfig) -> httpx.Client:
    """Create a client that dials exclusively through the configured proxy."""

    return httpx.Client(
        proxy=config.url,
        timeout=httpx.Timeout(config.client_timeout_seconds, connect=15.0),
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
            keepalive_expiry=90.0,
        ),
        follow_redirects=True,
    )


class ClientCache:
    """Hold one client and rebuild it once it is older than ``ttl`` seconds.

    A replaced client may still be serving a request on another thread, so it
    is retired rather than closed and only closed once ``grace`` seconds have
    passed. :meth:`clear` closes the current and every retired client.
    """

    def __init__(
        self,
        factory: ClientFactory,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
        grace: float = DEFAULT_RETIRE_GRACE_SECONDS,
    ) -> None:
        self._factory = factory
        self._ttl = ttl
        self._clock = clock
        self._grace = grace
        self._lock = threading.Lock()
        self._client: Optional[httpx.Client] = None
        self._created_at = 0.0
        self._retired: List[Tuple[float, httpx.Client]] = []

    def get(self) -> httpx.Client:
        with self._lock:
            expired = self._pop_expired_retirees(self._clock())
            current = self._client
            fresh = current is not None and self._clock() - self._created_at < self._ttl
        _close_all(expired)
        if fresh:
            assert current is not None
            return current

        client = self._factory()
        with self._lock:
            previous, self._client = self._client, client
            self._created_at = self._clock()
            if previous is not None:
                self._retired.append((self._created_at, previous))
        return client

    def clear(self) -> None:
        with self._lock:
            clients = [client for _, client in self._retired]
            self._retired.clear()
            if self._client is not None:
                clients.append(self._client)
            self._client = None
        _close_all(clients)

    def _pop_expired_retirees(self, now: float) -> List[httpx.Client]:
        # caller holds the lock
        expired = [client for retired_at, client in self._retired if now - retired_at >= self._grace]
        self._retired = [item for item in self._retired if now - item[0] < self._grace]
        return expired


def _close_all(clients: List[httpx.Client]) -> None:
    for client in clients:
        client.close()


class ProxyTransport:
    """Fetch pages through the proxy and probe whether it is usable."""

    def __init__(
        self,
        config: ProxyConfig,
        client_factory: Optional[ClientFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._clock = clock
        factory = client_factory or (lambda: build_proxy_client(config))
        self._cache = ClientCache(
            factory,
            config.client_ttl_seconds,
            clock=clock,
            grace=config.fetch_timeout_seconds + 30.0,
        )

    def client(self) -> httpx.Client:
        return self._cache.get()

    def close(self) -> None:
        self._cache.clear()

    def _request_headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
        }

    def fetch(self, url: str) -> str:
        """Issue one GET and return the decoded body of a text response.

        ``fetch_timeout_seconds`` bounds the whole call, body included, not
        just each individual network operation.
        """

        client = self.client()
        limit = self.config.fetch_timeout_seconds
        deadline = self._clock() + limit
        try:
            with client.stream(
                "GET",
                url,
                headers=self._request_headers(),
                timeout=limit,
            ) as response:
                if not 200 <= response.status_code < 300:
                    raise HTTPStatusError(response.status_code, _read_prefix(response))

                content_type = response.headers.get("content-type", "")
                media_type = content_type.split(";", 1)[0].strip().lower()
                if media_type and not media_type.startswith(TEXT_CONTENT_PREFIXES):
                    LOGGER.warning("Rejecting non-text content type %s from %s", content_type, url)
                    raise UnsupportedContentTypeError(content_type)

                body = self._read_before(response, deadline, limit)
                return _decode(body, response.charset_encoding)
        except DeadlineExceededError as exc:
            LOGGER.warning("Fetch of %s exceeded its %gs deadline", url, limit)
            raise TransportError(f"failed to fetch URL: {exc}") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportError(f"failed to fetch URL: {describe_error(exc)}") from exc

    def _read_before(self, response: httpx.Response, deadline: float, limit: float) -> bytes:
        if self._clock() > deadline:
            raise DeadlineExceededError(limit)
        data = bytearray()
        for chunk in response.iter_bytes():
            data.extend(chunk)
            if self._clock() > deadline:
                raise DeadlineExceededError(limit)
        return bytes(data)

    def fetch_with_retry(
        self,
        url: str,
        max_attempts: int = 3,
        base_delay: float = 5.0,
    ) -> str:
        """Call :meth:`fetch` up to ``max_attempts`` times and re-raise the last error."""

        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error: Optional[TransportError] = None
        for attempt in range(1, max_attempts + 1):
            try:
                content = self.fetch(url)
            except TransportError as exc:
                last_error = exc
            else:
                if attempt > 1:
                    LOGGER.info("Fetch succeeded on attempt %d/%d for %s", attempt, max_attempts, url)
                return content

            if attempt == max_attempts:
                break

            if is_retryable(last_error):
                LOGGER.info(
                    "Fetch failed on attempt %d/%d for %s: %s. Retrying...",
                    attempt,
                    max_attempts,
                    url,
                    last_error,
                )
            else:
                LOGGER.warning(
                    "Non-retryable error on attempt %d/%d for %s: %s",
                    attempt,
                    max_attempts,
                    url,
                    last_error,
                )

            readiness = self.check_readiness()
            if readiness.is_ready:
                time.sleep(base_delay)
            else:
                LOGGER.warning("Proxy not ready, waiting longer before retry: %s", readiness.message)
                time.sleep(base_delay * 2)

        assert last_error is not None
        LOGGER.error("Giving up on %s after %d attempts: %s", url, max_attempts, last_error)
        raise last_error

    def check_readiness(self) -> ReadinessStatus:
        """Probe the proxy port, then route one lightweight request through it."""

        host, port = self.config.host_port
        try:
            with socket.create_connection((host, port), timeout=self.config.dial_timeout_seconds):
                pass
        except OSError as exc:
            return ReadinessStatus(
                is_ready=False,
                bootstrap_percent=0,
                message=f"SOCKS5 port unreachable at {host}:{port}: {exc}",
            )

        try:
            client = self.client()
        except Exception as exc:
            return ReadinessStatus(
                is_ready=False,
                bootstrap_percent=0,
                message=f"failed to create proxy client: {exc}",
            )

        limit = self.config.readiness_timeout_seconds
        deadline = self._clock() + limit
        try:
            with client.stream(
                "GET",
                self.config.readiness_url,
                headers={"User-Agent": "Mozilla/5.0"},
                timeout=limit,
            ) as response:
                status_code = response.status_code
                self._read_before(response, deadline, limit)
        except (httpx.HTTPError, httpx.InvalidURL, DeadlineExceededError) as exc:
            detail = describe_error(exc)
            if any(marker in detail.lower() for marker in BOOTSTRAP_MARKERS):
                return ReadinessStatus(
                    is_ready=False,
                    bootstrap_percent=50,
                    message=f"proxy bootstrap in progress: {detail}",
                )
            return ReadinessStatus(
                is_ready=False,
                bootstrap_percent=0,
                message=f"proxy routing test failed: {detail}",
            )

        if status_code == 200:
            return ReadinessStatus(
                is_ready=True,
                bootstrap_percent=100,
                message="proxy is ready and routing traffic",
            )
        return ReadinessStatus(
            is_ready=False,
            bootstrap_percent=75,
            message=f"proxy responded but with status {status_code}",
        )

    def wait_for_ready(self, max_attempts: int = 20, initial_delay: float = 3.0) -> ReadinessStatus:
        """Poll :meth:`check_readiness` with exponential backoff.

        Raises :class:`ProxyNotReadyError` once ``max_attempts`` probes have
        come back negative.
        """

        LOGGER.info("Waiting for proxy to become ready...")
        delay = initial_delay
        last_message = "no readiness probe completed"
        for attempt in range(1, max_attempts + 1):
            try:
                status = self.check_readiness()
            except Exception as exc:
                last_message = describe_error(exc)
                LOGGER.warning(
                    "Error checking readiness (attempt %d/%d): %s", attempt, max_attempts, last_message
                )
            else:
                if status.is_ready:
                    LOGGER.info("Proxy is ready (bootstrap %d%%): %s", status.bootstrap_percent, status.message)
                    return status
                last_message = status.message
                LOGGER.info(
                    "Proxy not ready yet (attempt %d/%d): bootstrap %d%%, %s",
                    attempt,
                    max_attempts,
                    status.bootstrap_percent,
                    status.message,
                )

            if attempt < max_attempts:
                LOGGER.debug("Retrying readiness probe in %.1fs", delay)
                time.sleep(delay)
                delay = min(delay * 1.5, MAX_READY_DELAY_SECONDS)

        raise ProxyNotReadyError(
            f"proxy did not become ready after {max_attempts} attempts: {last_message}"
        )


def _decode(body: bytes, charset: Optional[str]) -> str:
    try:
        return body.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


def _read_prefix(response: httpx.Response, limit: int = ERROR_BODY_LIMIT) -> str:
    chunks = bytearray()
    for chunk in response.iter_bytes():
        chunks.extend(chunk)
        if len(chunks) >= limit:
            break
    return chunks[:limit].decode("utf-8", errors="replace")


__all__ = [
    "ClientCache",
    "DeadlineExceededError",
    "HTTPStatusError",
    "ProxyNotReadyError",
    "ProxyTransport",
    "TransportError",
    "UnsupportedContentTypeError",
    "build_proxy_client",
    "describe_error",
    "is_retryable",
]
