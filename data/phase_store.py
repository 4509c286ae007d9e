"""
Phase store.

One active phase per (symbol, timeframe role). A new phase for an occupied
slot always replaces the previous one. Each phase decays after the
payload's ``risk_hints.time_decay_minutes`` or, when that is zero, after the
default for its event timeframe.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional

from config.constants import DEFAULT_PHASE_DECAY_MINUTES, TimeframeRole
from config.logging_config import LogCategory
from core.domain.base import ensure_utc
from core.domain.phase import Phase
from data.validity import expires_at, is_expired, remaining_minutes

logger = logging.getLogger(__name__)

PHASE_DECAY_MINUTES: Mapping[str, int] = MappingProxyType({
    "15m": 45,
    "30m": 90,
    "1h": 180,
    "4h": 720,
    "1d": 1440,
})

_TIMEFRAME_ALIASES: Mapping[str, str] = MappingProxyType({
    "15": "15m", "15m": "15m", "15min": "15m",
    "30": "30m", "30m": "30m", "30min": "30m",
    "60": "1h", "60m": "1h", "1h": "1h",
    "240": "4h", "240m": "4h", "4h": "4h",
    "d": "1d", "1d": "1d", "1440": "1d",
})


def normalize_timeframe(label: str) -> str:
    """Map the many spellings of a chart timeframe onto one label."""
    key = label.strip().lower()
    return _TIMEFRAME_ALIASES.get(key, key)


def phase_decay_minutes(phase: Phase, default: int = DEFAULT_PHASE_DECAY_MINUTES) -> int:
    """Explicit decay from the payload, else the per-timeframe default."""
    if phase.risk_hints.time_decay_minutes > 0:
        return phase.risk_hints.time_decay_minutes
    return PHASE_DECAY_MINUTES.get(normalize_timeframe(phase.timeframe.event_tf), default)


@dataclass(frozen=True)
class StoredPhase:
    phase: Phase
    received_at: datetime
    expires_at: datetime
    decay_minutes: int

    def is_expired(self, now: datetime) -> bool:
        return is_expired(self.expires_at, now)


class PhaseStore:
    """Thread-safe (symbol, tf_role) -> phase map with lazy expiry."""

    def __init__(self, default_decay_minutes: int = DEFAULT_PHASE_DECAY_MINUTES):
        self._default_decay = default_decay_minutes
        self._entries: dict[tuple[str, TimeframeRole], StoredPhase] = {}
        self._lock = threading.RLock()

    def update(self, phase: Phase, now: datetime | None = None) -> StoredPhase:
        now = ensure_utc(now)
        decay = phase_decay_minutes(phase, self._default_decay)
        stored = StoredPhase(
            phase=phase,
            received_at=now,
            expires_at=expires_at(now, decay),
            decay_minutes=decay,
        )
        with self._lock:
            replaced = self._entries.get((phase.symbol, phase.role))
            self._entries[(phase.symbol, phase.role)] = stored

        logger.info(
            f"{LogCategory.PHASE} {phase.symbol} {phase.role.value} "
            f"{phase.event.name} ({phase.event.directional_implication.value}) "
            f"{'replaced' if replaced else 'stored'}, decays in {decay}m"
        )
        return stored

    def get(
        self, symbol: str, role: TimeframeRole, now: datetime | None = None
    ) -> Optional[StoredPhase]:
        now = ensure_utc(now)
        with self._lock:
            stored = self._entries.get((symbol.upper(), role))
        if stored is None or stored.is_expired(now):
            return None
        return stored

    def active_snapshot(self, now: datetime | None = None) -> dict[tuple[str, TimeframeRole], StoredPhase]:
        now = ensure_utc(now)
        with self._lock:
            items = list(self._entries.items())
        return {key: stored for key, stored in items if not stored.is_expired(now)}

    def active_for_symbol(
        self, symbol: str, now: datetime | None = None
    ) -> dict[TimeframeRole, StoredPhase]:
        """Active phases for one symbol keyed by role."""
        wanted = symbol.upper()
        return {
            role: stored
            for (sym, role), stored in self.active_snapshot(now).items()
            if sym == wanted
        }

    def remaining_decay(
        self, symbol: str, role: TimeframeRole, now: datetime | None = None
    ) -> float:
        now = ensure_utc(now)
        stored = self.get(symbol, role, now)
        return remaining_minutes(stored.expires_at, now) if stored else 0.0

    def cleanup_expired(self, now: datetime | None = None) -> int:
        now = ensure_utc(now)
        with self._lock:
            expired = [key for key, stored in self._entries.items() if stored.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
