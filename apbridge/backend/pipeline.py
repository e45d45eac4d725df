"""Host event ingestion: classify, map and batch rewards into deposits."""

from __future__ import annotations

import asyncio

from .classifier import MessageClassifier
from .host import CURRENCY_CHANNEL, HostChat
from .logging_config import get_logger
from .rewards import (
    DEFAULT_BATCH_DELAY_SEC,
    BatchDepositScheduler,
    RewardMapper,
    TimerFactory,
    format_token_notice,
    thread_timer,
)
from .session import SessionManager

logger = get_logger(__name__)


class RewardPipeline:
    """Turns host chat events into token deposits on the session's event loop."""

    def __init__(
        self,
        session: SessionManager,
        host_chat: HostChat,
        classifier: MessageClassifier,
        mapper: RewardMapper,
        batch_delay: float = DEFAULT_BATCH_DELAY_SEC,
        timer_factory: TimerFactory = thread_timer,
    ) -> None:
        self._session = session
        self._host_chat = host_chat
        self._classifier = classifier
        self._mapper = mapper
        self._loop: asyncio.AbstractEventLoop | None = None
        self._attached = False
        self.scheduler = BatchDepositScheduler(
            deposit=self._submit_deposit,
            notify=self._notify,
            delay=batch_delay,
            timer_factory=timer_factory,
        )

    @property
    def attached(self) -> bool:
        return self._attached

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._attached = True
        logger.info("Reward pipeline attached")

    async def stop(self) -> None:
        self._attached = False
        remaining = self.scheduler.cancel()
        if remaining:
            await self._session.deposit(remaining)
            self._notify(remaining)
        logger.info("Reward pipeline detached", flushed=remaining)

    def on_event(self, channel_id: int, text: str) -> bool:
        """Synchronous entrypoint for every chat-like host event.

        Returns True when the event contributed tokens to the pending batch.
        """
        if not self._attached:
            return False
        try:
            return self._ingest(channel_id, text)
        except Exception:
            logger.exception("Reward ingestion failed", channel_id=channel_id)
            return False

    def _ingest(self, channel_id: int, text: str) -> bool:
        reward = self._classifier.classify(channel_id, text)
        if reward is None:
            return False
        if not self._session.is_connected:
            logger.debug("Ignoring reward while disconnected", item=reward.item_name)
            return False
        tokens = self._mapper.tokens_for(reward)
        if tokens is None:
            return False
        logger.debug("Reward accepted", item=reward.item_name, quantity=reward.quantity, tokens=tokens)
        self.scheduler.add(tokens)
        return True

    def _submit_deposit(self, total: int) -> None:
        if self._loop is None or self._loop.is_closed():
            logger.warning("Dropping token batch without event loop", total=total)
            return
        asyncio.run_coroutine_threadsafe(self._session.deposit(total), self._loop)

    def _notify(self, total: int) -> None:
        self._host_chat.send_entry(CURRENCY_CHANNEL, format_token_notice(total))
