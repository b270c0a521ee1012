"""Configuration helpers for the threat radar service."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple
import os


DEFAULT_PROXY_ADDRESS = "tor:9050"
DEFAULT_PROXY_PORT = 9050


@dataclass
class ProxyConfig:
    """Settings for the SOCKS5 path every outbound request goes through."""

    address: str = DEFAULT_PROXY_ADDRESS
    scheme: str = "socks5h"
    client_ttl_seconds: float = 300.0
    client_timeout_seconds: float = 60.0
    fetch_timeout_seconds: float = 90.0
    dial_timeout_seconds: float = 3.0
    readiness_url: str = "http://icanhazip.com"
    readiness_timeout_seconds: float = 8.0
    status_dial_timeout_seconds: float = 1.0
    status_timeout_seconds: float = 10.0
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    @property
    def host_port(self) -> Tuple[str, int]:
        """Split ``address`` into host and port, defaulting the port to 9050."""

        value = self.address.strip()
        host, sep, port = value.rpartition(":")
        if not sep or not host:
            return value, DEFAULT_PROXY_PORT
        try:
            return host, int(port)
        except ValueError:
            return value, DEFAULT_PROXY_PORT

    @property
    def url(self) -> str:
        host, port = self.host_port
        return f"{self.scheme}://{host}:{port}"


@dataclass
class ScraperConfig:
    """Scheduling and retry policy for scrape cycles."""

    scrape_interval_seconds: float = 30.0
    source_pause_seconds: float = 2.0
    fetch_attempts: int = 3
    fetch_retry_delay_seconds: float = 5.0
    startup_ready_attempts: int = 20
    startup_ready_delay_seconds: float = 3.0
    source_ready_attempts: int = 5
    source_ready_delay_seconds: float = 2.0
    history_limit: int = 50
    trigger_workers: int = 2
    trigger_queue_size: int = 32


@dataclass
class AnalyzerConfig:
    """Optional text annotation service invoked after an entry is stored."""

    base_url: Optional[str] = None
    timeout_seconds: float = 30.0
    queue_size: int = 100

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)


@dataclass
class AppConfig:
    """Top-level configuration for the service."""

    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    scraper: ScraperConfig = field(default_factory=ScraperConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    store_path: Optional[Path] = Path("data/threat_radar.json")
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"


_LOCAL_ANALYZER_URLS = {"http://localhost:11434", "http://127.0.0.1:11434"}


def _resolve_analyzer_url() -> Optional[str]:
    """Return the analyzer base URL, or ``None`` when annotation is disabled."""

    base_url = os.getenv("AI_SERVICE_URL", "").strip()
    if not base_url:
        return None
    # Inside the compose network the host's Ollama is not reachable via localhost.
    if base_url.rstrip("/") in _LOCAL_ANALYZER_URLS and os.getenv("DB_HOST"):
        base_url = "http://host.docker.internal:11434"
    return base_url.rstrip("/")


def _float_env(name: str, default: float, positive: bool = False) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if positive and value <= 0:
        raise ValueError(f"{name} must be greater than zero, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {raw!r}")
    return value


def load_config() -> AppConfig:
    """Load configuration from environment variables with sensible defaults."""

    proxy = ProxyConfig(
        address=os.getenv("TOR_PROXY", "").strip() or DEFAULT_PROXY_ADDRESS,
        scheme=os.getenv("TOR_PROXY_SCHEME", "").strip() or "socks5h",
    )
    scraper = ScraperConfig(
        scrape_interval_seconds=_float_env("SCRAPE_INTERVAL_SECONDS", 30.0, positive=True),
        trigger_workers=_int_env("TRIGGER_WORKERS", 2, minimum=1),
        trigger_queue_size=_int_env("TRIGGER_QUEUE_SIZE", 32, minimum=1),
    )
    analyzer = AnalyzerConfig(base_url=_resolve_analyzer_url())

    store_env = os.getenv("STORE_PATH")
    store_path: Optional[Path]
    if store_env is None:
        store_path = Path("data/threat_radar.json")
    elif store_env.strip():
        store_path = Path(store_env).expanduser()
    else:
        store_path = None

    return AppConfig(
        proxy=proxy,
        scraper=scraper,
        analyzer=analyzer,
        store_path=store_path,
        api_host=os.getenv("API_HOST", "0.0.0.0"),
        api_port=_int_env("PORT", 8080, minimum=1),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


__all__ = [
    "AnalyzerConfig",
    "AppConfig",
    "ProxyConfig",
    "ScraperConfig",
    "load_config",
]
