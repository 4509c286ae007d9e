"""
Trend store.

Keeps the most recent multi-timeframe trend snapshot per ticker for a
fixed TTL. Snapshots are replaced wholesale; fields are never merged
across payloads.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from config.constants import TREND_TTL_MINUTES
from config.logging_config import LogCategory
from core.domain.base import ensure_utc
from core.domain.trend import TrendAlignment, TrendSnapshot, calculate_trend_alignment
from data.validity import expires_at, is_expired

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredTrend:
    snapshot: TrendSnapshot
    alignment: TrendAlignment
    received_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return is_expired(self.expires_at, now)


class TrendStore:
    def __init__(self, ttl_minutes: int = TREND_TTL_MINUTES):
        self._ttl_minutes = ttl_minutes
        self._entries: dict[str, StoredTrend] = {}
        self._lock = threading.RLock()

    def update(self, snapshot: TrendSnapshot, now: datetime | None = None) -> StoredTrend:
        now = ensure_utc(now)
        alignment = calculate_trend_alignment(snapshot)
        stored = StoredTrend(
            snapshot=snapshot,
            alignment=alignment,
            received_at=now,
            expires_at=expires_at(now, self._ttl_minutes),
        )
        with self._lock:
            self._entries[snapshot.ticker] = stored
        logger.info(
            f"{LogCategory.TREND} {snapshot.ticker} {alignment.dominant_trend.value} "
            f"{alignment.strength.value} ({alignment.alignment_score:.1f}%), htf={alignment.htf_bias.value}"
        )
        return stored

    def get(self, ticker: str, now: datetime | None = None) -> Optional[StoredTrend]:
        now = ensure_utc(now)
        with self._lock:
            stored = self._entries.get(ticker.upper())
        if stored is None or stored.is_expired(now):
            return None
        return stored

    def get_alignment(self, ticker: str, now: datetime | None = None) -> Optional[TrendAlignment]:
        stored = self.get(ticker, now)
        return stored.alignment if stored else None

    def active_snapshot(self, now: datetime | None = None) -> dict[str, StoredTrend]:
        now = ensure_utc(now)
        with self._lock:
            items = list(self._entries.items())
        return {ticker: stored for ticker, stored in items if not stored.is_expired(now)}

    def cleanup_expired(self, now: datetime | None = None) -> int:
        now = ensure_utc(now)
        with self._lock:
            expired = [t for t, stored in self._entries.items() if stored.is_expired(now)]
            for ticker in expired:
                del self._entries[ticker]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
