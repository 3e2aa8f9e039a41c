"""
Confirmation tokens: short-lived links that bridge an inbound phone call to a
web session.

Flow:
  1. Caller dials in → /incoming-call issues a token for their phone number
  2. The SMS link carries the token → the confirm page validates it (read-only)
  3. On submit the page consumes it → first consumer wins, later ones get AlreadyUsed

Expiry is enforced on every read, so the background sweep is housekeeping
only: it keeps memory bounded, it never decides validity.
"""

import heapq
import logging
import threading
import time
import uuid
from dataclasses import dataclass

from errors import TokenAlreadyUsed, TokenExpired, TokenNotFound

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_SWEEP_INTERVAL_SECONDS = 15 * 60


@dataclass
class ConfirmationToken:
    """One issued link. `used` only ever goes False → True."""

    token: str
    phone: str
    created_at: float
    used: bool = False


class ConfirmationTokenStore:
    """
    Thread-safe TTL map of token → ConfirmationToken with a min-heap of
    expiry times for eviction.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
                 clock=time.time):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._tokens: dict[str, ConfirmationToken] = {}
        self._expiry_heap: list[tuple[float, str]] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    # ─── Core operations ──────────────────────────────────────────────────

    def issue(self, phone: str) -> str:
        now = self._clock()
        with self._lock:
            token = str(uuid.uuid4())
            while token in self._tokens:
                token = str(uuid.uuid4())
            self._tokens[token] = ConfirmationToken(token=token, phone=phone, created_at=now)
            heapq.heappush(self._expiry_heap, (now + self.ttl_seconds, token))
        logger.info("[Tokens] Issued token for %s", _mask(phone))
        return token

    def validate(self, token: str) -> dict:
        """Read-only lookup. Returns {phone, used, expiresIn}."""
        now = self._clock()
        with self._lock:
            entry = self._live_entry(token, now)
            return {
                "phone": entry.phone,
                "used": entry.used,
                "expiresIn": self._expires_in(entry, now),
            }

    def consume(self, token: str) -> dict:
        """Mark the token used. Exactly one caller per token gets {phone} back."""
        now = self._clock()
        with self._lock:
            entry = self._live_entry(token, now)
            if entry.used:
                raise TokenAlreadyUsed()
            entry.used = True
            phone = entry.phone
        logger.info("[Tokens] Token consumed for %s", _mask(phone))
        return {"phone": phone}

    def sweep(self) -> int:
        """Drop every token past its TTL. Returns how many were removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            while self._expiry_heap and self._expiry_heap[0][0] < now:
                _, token = heapq.heappop(self._expiry_heap)
                if self._tokens.pop(token, None) is not None:
                    removed += 1
        if removed:
            logger.info("[Tokens] Sweep removed %d expired token(s)", removed)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    # ─── Background sweep ─────────────────────────────────────────────────

    def start(self):
        """Run sweep() every sweep_interval_seconds on a daemon thread until stop()."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._run_sweeper, name="token-sweeper", daemon=True)
        self._sweeper.start()

    def stop(self, timeout: float = None):
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    def _run_sweeper(self):
        while not self._stop.wait(self.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("[Tokens] Sweep failed")

    # ─── Helpers ──────────────────────────────────────────────────────────

    def _live_entry(self, token: str, now: float) -> ConfirmationToken:
        # Caller holds the lock.
        entry = self._tokens.get(token)
        if entry is None:
            raise TokenNotFound()
        if now - entry.created_at >= self.ttl_seconds:
            raise TokenExpired()
        return entry

    def _expires_in(self, entry: ConfirmationToken, now: float) -> int:
        return self.ttl_seconds - int(now - entry.created_at)


def _mask(phone: str) -> str:
    if not phone:
        return "Unknown"
    return f"XXX-XXX-{str(phone).strip()[-4:]}"
