"""Reward lookup and debounced batching of token deposits."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from .config import ConfigSource, RewardRule
from .logging_config import get_logger
from .models import ParsedReward

logger = get_logger(__name__)

DEFAULT_BATCH_DELAY_SEC = 0.5


def compute_tokens(quantity: int, multiplier: Decimal) -> int:
    """Round ``quantity * multiplier`` to the nearest integer, ties away from zero."""
    product = Decimal(quantity) * Decimal(multiplier)
    return int(product.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_token_notice(total: int) -> str:
    return f"You obtain {total:,} archipelago tokens."


@dataclass
class RewardMapper:
    config_source: ConfigSource

    def find_rule(self, item_name: str) -> RewardRule | None:
        wanted = item_name.casefold()
        for rule in self.config_source.current().questing.items:
            if rule.name.casefold() == wanted:
                return rule
        return None

    def tokens_for(self, reward: ParsedReward) -> int | None:
        rule = self.find_rule(reward.item_name)
        if rule is None:
            return None
        return compute_tokens(reward.quantity, rule.multiplier)


class Timer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


def thread_timer(delay: float, callback: Callable[[], None]) -> Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class BatchDepositScheduler:
    """Coalesce rewards into one deposit per fixed window.

    The window opens with the first reward after a flush and is not extended
    by later arrivals.
    """

    def __init__(
        self,
        deposit: Callable[[int], Any],
        notify: Callable[[int], Any],
        delay: float = DEFAULT_BATCH_DELAY_SEC,
        timer_factory: TimerFactory = thread_timer,
    ) -> None:
        self._deposit = deposit
        self._notify = notify
        self._delay = delay
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._pending = 0
        self._timer: Timer | None = None
        self._window = 0

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._timer is not None

    def add(self, amount: int) -> None:
        with self._lock:
            self._pending += amount
            if self._timer is not None or self._pending == 0:
                return
            self._window += 1
            window = self._window
            self._timer = self._timer_factory(self._delay, lambda: self.flush(window))
            self._timer.start()

    def flush(self, window: int | None = None) -> int:
        with self._lock:
            if window is not None and window != self._window:
                return 0
            total = self._take()
        if total:
            logger.info("Flushing token batch", total=total)
            self._deposit(total)
            self._notify(total)
        return total

    def cancel(self) -> int:
        """Disarm the timer and hand back whatever had not been flushed yet."""
        with self._lock:
            return self._take()

    def _take(self) -> int:
        total = self._pending
        self._pending = 0
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._window += 1
        return total
