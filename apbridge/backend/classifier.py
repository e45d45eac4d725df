"""Extract reward candidates from raw host chat text."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from .config import ConfigSource
from .logging_config import get_logger
from .models import ParsedReward

logger = get_logger(__name__)

REWARD_PREFIX = "You obtain"
CURRENCY_NAME = "archipelago tokens"

_DECORATION_RE = re.compile(r"[^\x00-\x7F]+")
_REWARD_RE = re.compile(r"You obtain (?:an? )?(?:(?P<quantity>[0-9][0-9,]*) )?(?P<name>[A-Za-z0-9 '()]+)\.$")


def parse_quantity(raw: str | None) -> int:
    """Parse a thousands-grouped count, defaulting to 1 when absent."""
    if not raw:
        return 1
    return int(raw.replace(",", ""))


def sanitize(text: str) -> str:
    return _DECORATION_RE.sub("", text)


@dataclass
class MessageClassifier:
    config_source: ConfigSource
    development: bool = False
    report: Callable[[str], None] | None = None

    def classify(self, channel_id: int, text: str) -> ParsedReward | None:
        if not text.startswith(REWARD_PREFIX):
            return None

        accepted = self.config_source.current().questing.chat_types
        if channel_id not in accepted:
            self._diagnose(f"[Obtained Item Message Type Fail]: {channel_id}", channel_id=channel_id)
            return None

        sanitized = sanitize(text)
        match = _REWARD_RE.search(sanitized)
        if match is None:
            self._diagnose(f"[Obtained Item Match Fail]: {sanitized}", channel_id=channel_id)
            return None

        quantity = parse_quantity(match.group("quantity"))
        if quantity <= 0:
            self._diagnose(f"[Obtained Item Match Fail]: {sanitized}", channel_id=channel_id)
            return None

        item_name = match.group("name").strip()
        if item_name.casefold() == CURRENCY_NAME:
            return None

        return ParsedReward(item_name=item_name, quantity=quantity)

    def _diagnose(self, message: str, channel_id: int) -> None:
        logger.debug("Reward text rejected", reason=message, channel_id=channel_id)
        if self.development and self.report is not None:
            self.report(message)
