"""Seeded pseudo-random source for reproducible tenant generation.

Mulberry32 over a 32-bit state. Two generators built from the same seed and
driven through the same call sequence return identical values, which is what
makes a generation job resumable and a golden-seed test meaningful.

Independent streams come from ``child()``, never from sharing one instance:

    rng = SeededRNG("acme-demo")
    users_rng = rng.child("users")
    deals_rng = rng.child("deals")
"""

from __future__ import annotations

import math
import secrets
import uuid as _uuid
from datetime import datetime, timedelta, timezone
from typing import Sequence, TypeVar

T = TypeVar("T")

MASK32 = 0xFFFFFFFF
GOLDEN_GAMMA = 0x6D2B79F5

ALPHANUMERIC = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"

# Business day hours (UTC): 9:00 to 18:00
BUSINESS_START_HOUR = 9
BUSINESS_END_HOUR = 18
BUSINESS_DATE_ATTEMPTS = 100


def _imul(a: int, b: int) -> int:
    """32-bit integer multiply, result kept unsigned."""
    return (a * b) & MASK32


_EPOCH = datetime(1970, 1, 1)


def _epoch_ms(value: datetime) -> int:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return (value - _EPOCH) // timedelta(milliseconds=1)


def hash_string(value: str) -> int:
    """Hash a string seed to a non-zero 32-bit state (h * 31 + c)."""
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & MASK32
    # Reinterpret as signed before taking the magnitude
    if h & 0x80000000:
        h -= 1 << 32
    return abs(h) or 1


def generate_seed() -> str:
    """Return a fresh 32-char hex seed for a new job."""
    return secrets.token_hex(16)


class SeededRNG:
    """Deterministic random generator (Mulberry32)."""

    def __init__(self, seed: str | int):
        if isinstance(seed, str):
            self._state = hash_string(seed)
        else:
            self._state = (int(seed) & MASK32) or 1

    @property
    def state(self) -> int:
        return self._state

    def next(self) -> float:
        """Return a float in [0, 1)."""
        self._state = (self._state + GOLDEN_GAMMA) & MASK32
        t = self._state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & MASK32
        return ((t ^ (t >> 14)) & MASK32) / 4294967296

    def randint(self, lo: int, hi: int) -> int:
        """Integer in [lo, hi], both inclusive."""
        return math.floor(self.next() * (hi - lo + 1)) + lo

    def uniform(self, lo: float, hi: float) -> float:
        """Float in [lo, hi)."""
        return self.next() * (hi - lo) + lo

    def chance(self, probability: float = 0.5) -> bool:
        return self.next() < probability

    # --- Sequences ---

    def pick(self, items: Sequence[T]) -> T:
        if not items:
            raise ValueError("Cannot pick from an empty sequence")
        return items[self.randint(0, len(items) - 1)]

    def pick_weighted(self, items: Sequence[T], weights: Sequence[float]) -> T:
        """Pick one item with probability proportional to its weight."""
        if len(items) != len(weights):
            raise ValueError("Items and weights must have the same length")
        if not items:
            raise ValueError("Cannot pick from an empty sequence")

        total = sum(weights)
        r = self.next() * total
        for item, weight in zip(items, weights):
            r -= weight
            if r <= 0:
                return item
        return items[-1]

    def pick_multiple(self, items: Sequence[T], count: int) -> list[T]:
        """Pick ``count`` distinct items (by position)."""
        if count > len(items):
            raise ValueError(
                f"Cannot pick {count} items from a sequence of {len(items)}"
            )
        return self.shuffle(items)[:count]

    def shuffle(self, items: Sequence[T]) -> list[T]:
        """Fisher-Yates shuffle. Returns a new list."""
        out = list(items)
        for i in range(len(out) - 1, 0, -1):
            j = self.randint(0, i)
            out[i], out[j] = out[j], out[i]
        return out

    # --- Distributions ---

    def pareto(self, minimum: float, alpha: float = 1.5) -> float:
        """Pareto-distributed value (heavy right tail)."""
        u = self.next()
        return minimum / math.pow(max(u, 0.0001), 1 / alpha)

    def log_normal(self, mean: float, std_dev: float) -> float:
        """Log-normal value; ``mean``/``std_dev`` are in log space."""
        u1 = self.next()
        u2 = self.next()
        z = math.sqrt(-2 * math.log(max(u1, 0.0001))) * math.cos(2 * math.pi * u2)
        return math.exp(mean + std_dev * z)

    def deal_value(
        self,
        min_value: float,
        max_value: float,
        avg_value: float,
        whale_ratio: float = 0.05,
    ) -> float:
        """Realistic deal value: mostly log-normal around avg, a few whales."""
        if self.chance(whale_ratio):
            lo = min(max(avg_value * 2, min_value), max_value)
            return round(self.uniform(lo, max_value), 2)

        value = self.log_normal(math.log(avg_value), 0.5)
        return round(min(max(value, min_value), max_value), 2)

    # --- Dates ---

    def date(self, start: datetime, end: datetime) -> datetime:
        """Uniform instant in [start, end] at millisecond resolution.

        Naive datetimes are read as UTC and the result is naive UTC.
        """
        if start > end:
            raise ValueError("Start date must be before end date")
        ms = self.randint(_epoch_ms(start), _epoch_ms(end))
        return _EPOCH + timedelta(milliseconds=ms)

    def business_date(self, start: datetime, end: datetime) -> datetime:
        """Random weekday instant between start and end, within business hours."""
        for _ in range(BUSINESS_DATE_ATTEMPTS):
            d = self.date(start, end)
            if d.weekday() >= 5:
                continue
            if d.hour < BUSINESS_START_HOUR:
                d = d.replace(
                    hour=BUSINESS_START_HOUR + self.randint(0, 3),
                    minute=self.randint(0, 59),
                )
            elif d.hour >= BUSINESS_END_HOUR:
                d = d.replace(hour=14 + self.randint(0, 3), minute=self.randint(0, 59))
            return d

        # Fallback: push a weekend draw forward to Monday morning
        d = self.date(start, end)
        if d.weekday() == 6:
            d += timedelta(days=1)
        elif d.weekday() == 5:
            d += timedelta(days=2)
        return d.replace(hour=BUSINESS_START_HOUR + self.randint(0, 3), minute=0)

    # --- Identifiers ---

    def uuid(self) -> str:
        """Deterministic RFC 4122 version-4 UUID string."""
        raw = bytes(self.randint(0, 255) for _ in range(16))
        return str(_uuid.UUID(bytes=raw, version=4))

    def string(self, length: int, charset: str = ALPHANUMERIC) -> str:
        return "".join(self.pick(charset) for _ in range(length))

    def child(self, suffix: str) -> SeededRNG:
        """Derive an independent, reproducible sub-generator."""
        return SeededRNG(f"{self._state}-{suffix}")
