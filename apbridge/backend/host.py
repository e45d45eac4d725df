"""Host chat boundary: what the bridge prints or sends back to the game."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from typing import Protocol

from .logging_config import get_logger
from .models import ChatEntry

logger = get_logger(__name__)

ARCHIPELAGO_TAG = "Archipelago"
BRIDGE_TAG = "APBridge"
CURRENCY_CHANNEL = 2238

EntryListener = Callable[[ChatEntry], None]


class HostChat(Protocol):
    def print_message(self, text: str, tag: str | None = None) -> None:
        """Show an informational line in the host chat."""

    def print_error(self, text: str, tag: str | None = None) -> None:
        """Show an error line in the host chat."""

    def send_entry(self, channel_id: int, text: str) -> None:
        """Emit a line on a specific host channel."""


class ChatRelay:
    """Thread-safe HostChat that keeps recent entries and fans them out to listeners."""

    def __init__(self, history_size: int = 200) -> None:
        self._entries: deque[ChatEntry] = deque(maxlen=history_size)
        self._listeners: list[EntryListener] = []
        self._lock = threading.Lock()

    def print_message(self, text: str, tag: str | None = None) -> None:
        self._emit(ChatEntry(text=text, tag=tag))

    def print_error(self, text: str, tag: str | None = None) -> None:
        self._emit(ChatEntry(text=text, tag=tag, is_error=True))

    def send_entry(self, channel_id: int, text: str) -> None:
        self._emit(ChatEntry(text=text, channel_id=channel_id))

    def recent(self) -> list[ChatEntry]:
        with self._lock:
            return list(self._entries)

    def add_listener(self, listener: EntryListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: EntryListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, entry: ChatEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(entry)
            except Exception:
                logger.exception("Chat listener failed", text=entry.text)
