"""
Signal store.

Holds the latest accepted signal per (ticker, timeframe) together with its
computed expiry. Writers for the same key are serialized by a single
store lock, so the quality comparison and the swap happen atomically.

Conflict resolution:
- empty slot or expired occupant: the new signal is stored
- live occupant: the new signal wins only with a strictly higher quality;
  equal or lower quality is discarded and the existing entry is kept

Usage:
    >>> store = SignalStore()
    >>> result = store.update(signal)
    >>> active = store.active_snapshot("SPY")  # {"240": StoredSignal, ...}
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from config.constants import MAX_VALIDITY_MINUTES, QUALITY_PRIORITY
from config.logging_config import LogCategory
from core.domain.base import ensure_utc
from core.domain.signal import Signal
from data.validity import (
    calculate_validity_minutes,
    expires_at,
    is_expired,
    remaining_minutes,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredSignal:
    signal: Signal
    received_at: datetime
    expires_at: datetime
    validity_minutes: float

    def is_expired(self, now: datetime) -> bool:
        return is_expired(self.expires_at, now)


@dataclass(frozen=True)
class StoreUpdate:
    """Outcome of a store write."""

    accepted: bool
    reason: str
    stored: Optional[StoredSignal] = None
    replaced: Optional[StoredSignal] = None


class SignalStore:
    """
    Thread-safe per-(ticker, timeframe) signal store with lazy expiry.

    Reads never return an expired signal; expired entries stay in memory
    until cleanup_expired() or a replacing write removes them.
    """

    def __init__(self, max_validity_minutes: int = MAX_VALIDITY_MINUTES):
        self._max_validity_minutes = max_validity_minutes
        self._entries: dict[tuple[str, str], StoredSignal] = {}
        self._lock = threading.RLock()

    def update(self, signal: Signal, now: datetime | None = None) -> StoreUpdate:
        """Store a signal subject to the quality conflict rule."""
        now = ensure_utc(now)
        key = (signal.ticker, signal.timeframe)
        validity = calculate_validity_minutes(signal, self._max_validity_minutes)
        candidate = StoredSignal(
            signal=signal,
            received_at=now,
            expires_at=expires_at(now, validity),
            validity_minutes=validity,
        )

        with self._lock:
            existing = self._entries.get(key)
            if existing is not None and not existing.is_expired(now):
                new_rank = QUALITY_PRIORITY[signal.quality.value]
                old_rank = QUALITY_PRIORITY[existing.signal.quality.value]
                if new_rank <= old_rank:
                    reason = (
                        f"existing {existing.signal.quality.value} signal kept over "
                        f"{signal.quality.value} for {key[0]}/{key[1]}"
                    )
                    logger.debug(f"{LogCategory.SIGNAL} {reason}")
                    return StoreUpdate(accepted=False, reason=reason, stored=existing)
            self._entries[key] = candidate

        replaced = existing
        reason = "replaced" if replaced is not None else "stored"
        logger.info(
            f"{LogCategory.SIGNAL} {signal.direction.value} {key[0]}/{key[1]} "
            f"{signal.quality.value} {reason}, valid {validity:.1f}m"
        )
        return StoreUpdate(accepted=True, reason=reason, stored=candidate, replaced=replaced)

    def get(self, ticker: str, timeframe: str, now: datetime | None = None) -> Optional[StoredSignal]:
        """Active signal for one slot, or None if empty or expired."""
        now = ensure_utc(now)
        with self._lock:
            stored = self._entries.get((ticker.upper(), timeframe))
        if stored is None or stored.is_expired(now):
            return None
        return stored

    def active_snapshot(
        self, ticker: str | None = None, now: datetime | None = None
    ) -> dict:
        """
        Copy of all non-expired signals.

        With a ticker, returns {timeframe: StoredSignal} for that ticker;
        without one, returns {(ticker, timeframe): StoredSignal}.
        """
        now = ensure_utc(now)
        with self._lock:
            items = list(self._entries.items())
        if ticker is not None:
            wanted = ticker.upper()
            return {
                tf: stored for (tk, tf), stored in items
                if tk == wanted and not stored.is_expired(now)
            }
        return {key: stored for key, stored in items if not stored.is_expired(now)}

    def remaining_validity(
        self, ticker: str, timeframe: str, now: datetime | None = None
    ) -> float:
        """Minutes left for a slot; 0.0 when empty or expired."""
        now = ensure_utc(now)
        stored = self.get(ticker, timeframe, now)
        return remaining_minutes(stored.expires_at, now) if stored else 0.0

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Drop expired entries. Returns the number removed."""
        now = ensure_utc(now)
        with self._lock:
            expired = [key for key, stored in self._entries.items() if stored.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"{LogCategory.SIGNAL} Removed {len(expired)} expired signals")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
