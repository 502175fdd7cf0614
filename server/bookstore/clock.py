"""
Clock drift correction for signed third-party uploads.

Cloudinary rejects upload signatures whose timestamp is too far from its own
clock, which happens on hosts with a drifting system clock.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from email.utils import parsedate_to_datetime

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10  # seconds


@dataclass
class ClockSync:
    url: str = "https://www.google.com"
    offset_seconds: float = 0.0

    def sync(self) -> float:
        """Measure the local clock offset against the Date header of ``url``."""
        try:
            response = requests.head(self.url, timeout=REQUEST_TIMEOUT)
            date_header = response.headers.get("date")
            if not date_header:
                logger.warning("Time sync: %s returned no Date header", self.url)
                return self.offset_seconds
            server_time = parsedate_to_datetime(date_header).timestamp()
        except (requests.RequestException, TypeError, ValueError) as exc:
            logger.warning("Time sync failed, using local time: %s", exc)
            return self.offset_seconds

        self.offset_seconds = server_time - time.time()
        logger.info(
            "Time sync: local clock is %s by %.1fs",
            "behind" if self.offset_seconds > 0 else "ahead",
            abs(self.offset_seconds),
        )
        return self.offset_seconds

    def now(self) -> int:
        return int(time.time() + self.offset_seconds)
