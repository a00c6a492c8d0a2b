"""
Throttle for OpenStreetMap Nominatim.

The public instance allows one request per second per application and
answers 429 with a Retry-After header (delta seconds or an HTTP date)
when a client goes faster. Geocode, reverse geocode and place search all
share one process-wide throttle.
"""
import threading
import time
from email.utils import parsedate_to_datetime

from config import NOMINATIM_BACKOFF_SECONDS, NOMINATIM_MIN_DELAY_SECONDS


def retry_after_seconds(header, now=None, default=NOMINATIM_BACKOFF_SECONDS):
    """Seconds to hold off for a Retry-After value; `default` when missing or unreadable."""
    if not header:
        return default
    header = str(header).strip()
    if header.isdigit():
        return float(header)
    try:
        until = parsedate_to_datetime(header).timestamp()
    except (TypeError, ValueError):
        return default
    return max(0.0, until - (time.time() if now is None else now))


class NominatimThrottle:
    def __init__(self, min_interval=NOMINATIM_MIN_DELAY_SECONDS):
        self._lock = threading.Lock()
        self.min_interval = min_interval
        self._next_allowed = 0.0

    def wait(self):
        """Sleep until the next request is within policy, then reserve the slot."""
        with self._lock:
            delay = self._next_allowed - time.time()
            if delay > 0:
                if delay > self.min_interval:
                    print(f"[Nominatim] Throttled, waiting {delay:.1f}s")
                time.sleep(delay)
            self._next_allowed = time.time() + self.min_interval

    def report_429(self, retry_after=None):
        """Push the next slot past the server's Retry-After."""
        hold = retry_after_seconds(retry_after)
        with self._lock:
            self._next_allowed = max(self._next_allowed, time.time() + hold)
        print(f"[Nominatim] 429 received, holding off {hold:.0f}s")


nominatim_throttle = NominatimThrottle()
