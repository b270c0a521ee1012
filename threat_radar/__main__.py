"""Entrypoint for running the threat radar service."""

from __future__ import annotations

import logging

import uvicorn

from .config import load_config
from .server import create_app
from .service import ScraperService


def main() -> None:
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.info("Using proxy %s", config.proxy.url)
    if config.analyzer.enabled:
        logging.info("Analysis service enabled at %s", config.analyzer.base_url)
    else:
        logging.info("Analysis service disabled (AI_SERVICE_URL not set)")

    service = ScraperService(config)
    service.start()

    app = create_app(service)

    logging.info("Starting API server on %s:%s", config.api_host, config.api_port)
    try:
        uvicorn.run(app, host=config.api_host, port=config.api_port)
    finally:
        service.stop()


if __name__ == "__main__":  # pragma: no cover
    main()
