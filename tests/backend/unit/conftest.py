from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import pytest

from apbridge.backend.config import BridgeConfig, QuestingConfig, RewardRule, StaticConfigSource
from apbridge.backend.host import ChatRelay
from apbridge.backend.models import Hint, LoginFailure, LoginRequest, LoginSuccess, NetworkPlayer
from apbridge.backend.session import TOKENS_KEY, SessionManager


class FakeConnection:
    def __init__(
        self,
        slot: int = 1,
        team: int = 0,
        stored_tokens: int | None = None,
        missing: tuple[int, ...] = (),
        hints: list[Hint] | None = None,
        login_result: LoginSuccess | LoginFailure | None = None,
    ) -> None:
        self.slot = slot
        self.team = team
        self.storage: dict[str, Any] = {}
        if stored_tokens is not None:
            self.storage[TOKENS_KEY] = stored_tokens
        self.missing = set(missing)
        self.hints = list(hints or [])
        self.login_result = login_result or LoginSuccess(
            slot=slot,
            team=team,
            players=(NetworkPlayer(team=team, slot=slot, alias="Me", name="Me"),),
        )
        self.login_requests: list[LoginRequest] = []
        self.login_gate: asyncio.Event | None = None
        self.login_error: Exception | None = None
        self.close_error: Exception | None = None
        self.writes: list[int] = []
        self.scouted: list[int] = []
        self.said: list[str] = []
        self.error_handlers: list[Any] = []
        self.message_handlers: list[Any] = []
        self.hint_handlers: list[Any] = []
        self.close_calls = 0

    async def login(self, request: LoginRequest):
        self.login_requests.append(request)
        if self.login_gate is not None:
            await self.login_gate.wait()
        if self.login_error is not None:
            raise self.login_error
        return self.login_result

    async def initialize_counter(self, key: str, default: int) -> None:
        self.storage.setdefault(key, default)

    async def read_counter(self, key: str) -> int:
        return int(self.storage[key])

    async def write_counter(self, key: str, value: int) -> None:
        self.storage[key] = value
        self.writes.append(value)

    async def track_hints(self, handler) -> None:
        self.hint_handlers.append(handler)
        handler(list(self.hints))

    def clear_hint_handlers(self) -> None:
        self.hint_handlers.clear()

    def missing_locations(self) -> frozenset[int]:
        return frozenset(self.missing)

    def players(self) -> tuple[NetworkPlayer, ...]:
        return (
            NetworkPlayer(team=self.team, slot=self.slot, alias="Me", name="Me"),
            NetworkPlayer(team=self.team, slot=2, alias="Friend", name="Friend"),
        )

    async def scout_as_hint(self, location_id: int) -> None:
        self.scouted.append(location_id)

    async def say(self, text: str) -> None:
        self.said.append(text)

    def add_error_handler(self, handler) -> None:
        self.error_handlers.append(handler)

    def remove_error_handler(self, handler) -> None:
        self.error_handlers.remove(handler)

    def add_message_handler(self, handler) -> None:
        self.message_handlers.append(handler)

    def remove_message_handler(self, handler) -> None:
        self.message_handlers.remove(handler)

    async def close(self, timeout: float = 2.0) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error

    def push_hints(self, hints: list[Hint]) -> None:
        for handler in list(self.hint_handlers):
            handler(hints)

    def push_message(self, packet: dict[str, Any]) -> None:
        for handler in list(self.message_handlers):
            handler(packet)

    def fail(self, message: str = "socket closed") -> None:
        for handler in list(self.error_handlers):
            handler(ConnectionResetError(message), message)


class ManualTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class ManualTimers:
    def __init__(self) -> None:
        self.created: list[ManualTimer] = []

    def __call__(self, delay: float, callback) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.created.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.created[-1]


def make_config(**rules: str) -> BridgeConfig:
    return BridgeConfig(
        slot="Me",
        questing=QuestingConfig(
            items=[RewardRule(name=name.replace("_", " "), multiplier=Decimal(value)) for name, value in rules.items()]
        ),
    )


@pytest.fixture()
def config_source() -> StaticConfigSource:
    return StaticConfigSource(make_config(Cracked_Clusters="2", Allagan_Tomestone="0.5", Gil="0.01"))


@pytest.fixture()
def chat() -> ChatRelay:
    return ChatRelay()


@pytest.fixture()
def connection() -> FakeConnection:
    return FakeConnection(missing=(40, 41, 42, 43))


@pytest.fixture()
def connector(connection: FakeConnection):
    async def connect(host: str) -> FakeConnection:
        connection.host = host
        return connection

    return connect


@pytest.fixture()
def session(chat: ChatRelay, config_source: StaticConfigSource, connector) -> SessionManager:
    return SessionManager(host_chat=chat, config_source=config_source, connector=connector)


@pytest.fixture()
def timers() -> ManualTimers:
    return ManualTimers()
