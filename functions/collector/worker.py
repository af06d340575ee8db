"""
Polling loop that expires pending offers once their 48 hour window closes.

Run it next to the API process under systemd/supervisor:

    python -m collector.worker
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from collector.config import get_settings
from collector.dependencies import get_marketplace_service
from collector.marketplace import MarketplaceService

logger = logging.getLogger(__name__)


def process_once(
    service: Optional[MarketplaceService] = None, now: Optional[float] = None
) -> int:
    """Runs one expiry sweep. Returns the number of offers expired."""
    service = service or get_marketplace_service()
    return service.expire_offers(now)


def run_loop(poll_interval_seconds: Optional[float] = None) -> None:
    poll_interval_seconds = poll_interval_seconds or get_settings().expiry_poll_seconds
    service = get_marketplace_service()
    logger.info("Offer expiry worker polling every %ss", poll_interval_seconds)
    while True:
        try:
            process_once(service)
        except Exception:
            logger.exception("Offer expiry sweep failed")
        time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
