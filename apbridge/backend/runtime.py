"""Wiring of the bridge components for one process."""

from __future__ import annotations

from dataclasses import dataclass

from .classifier import MessageClassifier
from .client import Connector, open_connection
from .config import BackendSettings, ConfigSource, create_config_source
from .hints import HintPurchaseCoordinator
from .host import BRIDGE_TAG, ChatRelay
from .pipeline import RewardPipeline
from .rewards import RewardMapper, TimerFactory, thread_timer
from .session import SessionManager


@dataclass(frozen=True)
class BridgeRuntime:
    settings: BackendSettings
    config_source: ConfigSource
    chat: ChatRelay
    session: SessionManager
    pipeline: RewardPipeline
    hints: HintPurchaseCoordinator


def create_runtime(
    settings: BackendSettings,
    config_source: ConfigSource | None = None,
    connector: Connector = open_connection,
    timer_factory: TimerFactory = thread_timer,
) -> BridgeRuntime:
    source = config_source if config_source is not None else create_config_source(settings.config_path)
    chat = ChatRelay()
    session = SessionManager(host_chat=chat, config_source=source, connector=connector)

    def report(message: str) -> None:
        chat.print_error(message, BRIDGE_TAG)

    classifier = MessageClassifier(config_source=source, development=settings.is_development, report=report)
    pipeline = RewardPipeline(
        session=session,
        host_chat=chat,
        classifier=classifier,
        mapper=RewardMapper(config_source=source),
        timer_factory=timer_factory,
    )
    return BridgeRuntime(
        settings=settings,
        config_source=source,
        chat=chat,
        session=session,
        pipeline=pipeline,
        hints=HintPurchaseCoordinator(session=session),
    )
