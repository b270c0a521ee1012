"""Threat radar: crawl registered sources through Tor and classify what they publish."""

from .config import AnalyzerConfig, AppConfig, ProxyConfig, ScraperConfig, load_config
from .orchestrator import ScrapeOrchestrator
from .service import ScraperService
from .state import ScrapeStateTracker
from .transport import ProxyTransport

__all__ = [
    "AnalyzerConfig",
    "AppConfig",
    "ProxyConfig",
    "ProxyTransport",
    "ScrapeOrchestrator",
    "ScrapeStateTracker",
    "ScraperConfig",
    "ScraperService",
    "load_config",
]
