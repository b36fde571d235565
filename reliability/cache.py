"""
Cache contract and request coalescing.

TTLCache stores ``{value, timestamp, ttl_millis}`` envelopes in a Django
cache backend and expires them lazily on read, so the same contract holds
whether the backend is the file cache used in production or LocMemCache in
tests.

SingleFlight makes concurrent requests for the same key share one
computation instead of each hitting the stores.
"""

import logging
import threading
import time
from concurrent.futures import Future
from enum import Enum

from django.core.cache import caches

from .conf import get_setting

logger = logging.getLogger(__name__)


class TTLCache:
    """Key-value cache with a TTL stored alongside each value."""

    def __init__(self, alias: str | None = None, clock=time.time):
        self.alias = alias or get_setting("RELIABILITY_CACHE_ALIAS")
        self._clock = clock

    @property
    def backend(self):
        return caches[self.alias]

    def get(self, key: str):
        """Return the cached value, or None if missing, expired or unreadable."""
        try:
            entry = self.backend.get(key)
        except Exception as e:
            logger.error(f"Cache read failed for {key}: {e}")
            return None
        if entry is None:
            return None

        try:
            stored_at = float(entry["timestamp"])
            ttl_millis = float(entry["ttl_millis"])
            value = entry["value"]
        except (KeyError, TypeError, ValueError):
            logger.warning(f"[Cache] Malformed entry for {key}, discarding")
            self.delete(key)
            return None

        now_millis = self._clock() * 1000
        if now_millis > stored_at + ttl_millis:
            logger.debug(f"[Cache] Expired for {key}")
            self.delete(key)
            return None
        return value

    def set(self, key: str, value, ttl: float) -> None:
        """Store ``value`` for ``ttl`` seconds."""
        entry = {
            "value": value,
            "timestamp": self._clock() * 1000,
            "ttl_millis": ttl * 1000,
        }
        try:
            # Expiry is enforced on read, not by the backend.
            self.backend.set(key, entry, timeout=None)
        except Exception as e:
            logger.error(f"[Cache] Set error for {key}: {e}")

    def delete(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except Exception as e:
            logger.error(f"[Cache] Delete error for {key}: {e}")


# --------------------------------------------------------------------------- #
# Single-flight
# --------------------------------------------------------------------------- #


class FlightState(Enum):
    UNSTARTED = "unstarted"
    IN_FLIGHT = "in_flight"
    DONE = "done"


class _Call:
    def __init__(self):
        self.state = FlightState.IN_FLIGHT
        self.future = Future()


class SingleFlight:
    """
    Coalesces concurrent calls that share a key.

    The first caller for a key runs the function; callers arriving while it
    is IN_FLIGHT wait on the same Future and get the same result (or the
    same exception). Once the call finishes it is DONE and dropped from the
    map, so the key reads UNSTARTED again and the next caller starts a
    fresh computation.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: dict[str, _Call] = {}

    def state(self, key: str) -> FlightState:
        with self._lock:
            call = self._calls.get(key)
            return call.state if call else FlightState.UNSTARTED

    def do(self, key: str, fn, *args, **kwargs):
        with self._lock:
            call = self._calls.get(key)
            leader = call is None or call.state is FlightState.DONE
            if leader:
                call = _Call()
                self._calls[key] = call

        if not leader:
            logger.debug(f"[SingleFlight] Joining in-flight call for {key}")
            return call.future.result()

        try:
            result = fn(*args, **kwargs)
        except BaseException as e:
            call.future.set_exception(e)
            raise
        else:
            call.future.set_result(result)
            return result
        finally:
            with self._lock:
                call.state = FlightState.DONE
                # Waiters hold the call; the map only tracks in-flight keys.
                if self._calls.get(key) is call:
                    del self._calls[key]
