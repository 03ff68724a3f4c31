import logging
import time
from dataclasses import dataclass
from threading import Lock

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10
SUCCESSES_BEFORE_SCALE_UP = 3
SCALE_UP_COOLDOWN = 5.0  # seconds


@dataclass
class ConcurrencyState:
    current: int
    consecutive_successes: int
    last_adjustment: float


class ConcurrencyController:
    """
    Adaptive limit on simultaneous catalog API requests, tracked per shop.

    Scales down by one on every 429 and back up by one after
    SUCCESSES_BEFORE_SCALE_UP successful batches, at most once per
    SCALE_UP_COOLDOWN seconds. One instance belongs to one sync job; state
    is in-memory only and a fresh controller starts every shop at the
    default limit.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._states: dict[str, ConcurrencyState] = {}
        self._lock = Lock()

    def _state(self, shop_id) -> ConcurrencyState:
        key = str(shop_id)
        state = self._states.get(key)
        if state is None:
            state = ConcurrencyState(
                current=DEFAULT_CONCURRENCY,
                consecutive_successes=0,
                last_adjustment=self._clock(),
            )
            self._states[key] = state
        return state

    def current_limit(self, shop_id) -> int:
        with self._lock:
            return self._state(shop_id).current

    def on_success(self, shop_id) -> int:
        with self._lock:
            state = self._state(shop_id)
            state.consecutive_successes += 1
            now = self._clock()
            if (
                state.current < MAX_CONCURRENCY
                and state.consecutive_successes >= SUCCESSES_BEFORE_SCALE_UP
                and now - state.last_adjustment >= SCALE_UP_COOLDOWN
            ):
                state.current += 1
                state.consecutive_successes = 0
                state.last_adjustment = now
                logger.info("Shop %s: concurrency scaled up to %d.", shop_id, state.current)
            return state.current

    def on_rate_limited(self, shop_id) -> int:
        with self._lock:
            state = self._state(shop_id)
            old = state.current
            state.current = max(MIN_CONCURRENCY, state.current - 1)
            state.consecutive_successes = 0
            state.last_adjustment = self._clock()
            logger.warning(
                "Shop %s: rate limited, concurrency %d -> %d.", shop_id, old, state.current,
            )
            return state.current

    def reset(self, shop_id):
        with self._lock:
            state = self._states.pop(str(shop_id), None)
        if state is not None:
            logger.debug("Shop %s: concurrency state discarded (final=%d).", shop_id, state.current)

    def stats(self, shop_id):
        with self._lock:
            state = self._states.get(str(shop_id))
            if state is None:
                return None
            return {'current': state.current, 'consecutive_successes': state.consecutive_successes}
