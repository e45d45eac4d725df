"""Lifecycle of the connection to the Archipelago server and the token balance it stores."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from .client import CLOSE_TIMEOUT_SEC, ArchipelagoConnection, Connector, open_connection
from .config import ConfigSource
from .host import ARCHIPELAGO_TAG, HostChat
from .logging_config import get_logger
from .messages import parse_print_json, should_display
from .models import ConnectOutcome, Hint, LoginRequest, SessionState

logger = get_logger(__name__)

TOKENS_KEY = "ArchipelagoTokens"
CANCELLED_MESSAGE = "Connection attempt was cancelled."
CONNECTION_LOST_MESSAGE = "Connection lost, please sign back in."
NOT_CONNECTED_MESSAGE = "You are not connected to a server."


class SessionManager:
    """Owns the single Archipelago session.

    State transitions and balance mutations are serialized through one
    asyncio lock. ``disconnect`` bumps an epoch before it waits for the
    lock, so a connect that is still logging in discards its result.
    """

    def __init__(
        self,
        host_chat: HostChat,
        config_source: ConfigSource,
        connector: Connector = open_connection,
        close_timeout: float = CLOSE_TIMEOUT_SEC,
    ) -> None:
        self._host_chat = host_chat
        self._config_source = config_source
        self._connector = connector
        self._close_timeout = close_timeout
        self._lock = asyncio.Lock()
        self._epoch = 0
        self._state = SessionState.DISCONNECTED
        self._connection: ArchipelagoConnection | None = None
        self._handlers: tuple[Callable[..., Any], Callable[..., Any]] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._host: str | None = None
        self._slot_name: str | None = None
        self._slot = -1
        self._balance = 0
        self._known_hints: frozenset[int] = frozenset()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def balance(self) -> int:
        return self._balance

    @property
    def known_hints(self) -> frozenset[int]:
        return self._known_hints

    @property
    def host(self) -> str | None:
        return self._host

    @property
    def slot_name(self) -> str | None:
        return self._slot_name

    def missing_locations(self) -> frozenset[int]:
        if self._connection is None or not self.is_connected:
            return frozenset()
        return self._connection.missing_locations()

    async def connect(self, host: str, slot: str, password: str | None = None) -> ConnectOutcome:
        async with self._lock:
            if self._connection is not None:
                await self._teardown()

            self._epoch += 1
            epoch = self._epoch
            self._state = SessionState.CONNECTING
            self._host = host
            self._slot_name = slot
            logger.info("Connecting to Archipelago", host=host, slot=slot)

            connection: ArchipelagoConnection | None = None
            try:
                connection = await self._connector(host)
                result = await connection.login(LoginRequest(slot=slot, password=password or None))
                if not result.successful:
                    return await self._fail_connect(connection, result.message())

                await connection.initialize_counter(TOKENS_KEY, 0)
                balance = await connection.read_counter(TOKENS_KEY)

                if epoch != self._epoch:
                    logger.info("Discarding connect superseded by disconnect", host=host, slot=slot)
                    await self._close_quietly(connection)
                    self._reset()
                    return ConnectOutcome(connected=False, message=CANCELLED_MESSAGE)

                self._slot = result.slot
                self._balance = max(0, balance)
                self._attach(connection, epoch)
                await connection.track_hints(lambda hints: self._on_hints_updated(epoch, hints))
            except asyncio.CancelledError:
                logger.info("Connect cancelled", host=host, slot=slot)
                if self._connection is connection:
                    self._detach()
                if connection is not None:
                    await self._close_quietly(connection)
                self._reset()
                raise
            except Exception as exc:
                if self._connection is connection:
                    self._detach()
                message = str(exc) or type(exc).__name__
                return await self._fail_connect(connection, message)

            self._state = SessionState.CONNECTED
            message = f"Connected to Archipelago session at {host} as {slot}."
            logger.info("Connected to Archipelago", host=host, slot=slot, balance=self._balance)
            self._host_chat.print_message(message, ARCHIPELAGO_TAG)
            return ConnectOutcome(connected=True, message=message)

    async def disconnect(self) -> None:
        self._epoch += 1
        async with self._lock:
            await self._teardown()

    async def deposit(self, amount: int) -> bool:
        if amount < 0:
            raise ValueError("deposit amount must be non-negative")
        async with self._lock:
            connection = self._connection
            if connection is None or not self.is_connected:
                logger.info("Dropping deposit while disconnected", amount=amount)
                return False
            self._balance += amount
            await self._store_balance(connection)
            return True

    async def withdraw(self, amount: int) -> bool:
        async with self._lock:
            connection = self._connection
            if connection is None or not self.is_connected or self._balance < amount:
                return False
            self._balance -= amount
            await self._store_balance(connection)
            return True

    async def request_hint(self, location_id: int) -> bool:
        connection = self._connection
        if connection is None or not self.is_connected:
            return False
        try:
            await connection.scout_as_hint(location_id)
        except Exception as exc:
            logger.warning("Hint request failed", location_id=location_id, error=str(exc))
            return False
        logger.info("Requested hint", location_id=location_id)
        return True

    async def purchase_hint(self, location_id: int, cost: int) -> bool:
        """Scout ``location_id`` as a hint and charge ``cost`` once the request went out.

        The balance check, the request and the debit run under the session
        lock. A failed request charges nothing.
        """
        async with self._lock:
            connection = self._connection
            if connection is None or not self.is_connected or self._balance < cost:
                return False
            try:
                await connection.scout_as_hint(location_id)
            except Exception as exc:
                logger.warning("Hint request failed", location_id=location_id, error=str(exc))
                return False
            self._balance -= cost
            await self._store_balance(connection)
            logger.info("Purchased hint", location_id=location_id, cost=cost, balance=self._balance)
            return True

    async def say(self, text: str) -> bool:
        connection = self._connection
        if connection is None or not self.is_connected:
            self._host_chat.print_error(NOT_CONNECTED_MESSAGE, ARCHIPELAGO_TAG)
            return False
        try:
            await connection.say(text)
        except Exception as exc:
            logger.warning("Chat send failed", error=str(exc))
            return False
        return True

    async def _fail_connect(self, connection: ArchipelagoConnection | None, message: str) -> ConnectOutcome:
        logger.warning("Archipelago login failed", host=self._host, slot=self._slot_name, error=message)
        if connection is not None:
            await self._close_quietly(connection)
        self._reset()
        self._host_chat.print_error(message, ARCHIPELAGO_TAG)
        return ConnectOutcome(connected=False, message=message)

    async def _store_balance(self, connection: ArchipelagoConnection) -> None:
        try:
            await connection.write_counter(TOKENS_KEY, self._balance)
        except Exception as exc:
            logger.warning("Failed to persist token balance", balance=self._balance, error=str(exc))

    def _attach(self, connection: ArchipelagoConnection, epoch: int) -> None:
        def on_error(exc: Exception, message: str) -> None:
            self._on_transport_error(epoch, message)

        def on_message(packet: dict[str, Any]) -> None:
            self._on_message(epoch, packet)

        connection.add_error_handler(on_error)
        connection.add_message_handler(on_message)
        self._connection = connection
        self._handlers = (on_error, on_message)

    def _detach(self) -> None:
        connection = self._connection
        if connection is None:
            return
        if self._handlers is not None:
            on_error, on_message = self._handlers
            connection.remove_error_handler(on_error)
            connection.remove_message_handler(on_message)
            self._handlers = None
        connection.clear_hint_handlers()

    async def _teardown(self) -> None:
        connection = self._connection
        if connection is None:
            self._reset()
            return
        self._detach()
        await self._close_quietly(connection)
        self._reset()
        logger.info("Disconnected from Archipelago", host=self._host, slot=self._slot_name)

    async def _close_quietly(self, connection: ArchipelagoConnection) -> None:
        try:
            await connection.close(timeout=self._close_timeout)
        except Exception as exc:
            logger.warning("Ignoring error while closing connection", error=str(exc))

    def _reset(self) -> None:
        self._connection = None
        self._handlers = None
        self._state = SessionState.DISCONNECTED
        self._slot = -1
        self._balance = 0
        self._known_hints = frozenset()

    def _on_transport_error(self, epoch: int, message: str) -> None:
        if epoch != self._epoch:
            return
        logger.warning("Archipelago connection dropped", error=message)
        task = asyncio.get_running_loop().create_task(self._drop(epoch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _drop(self, epoch: int) -> None:
        async with self._lock:
            if epoch != self._epoch or self._connection is None:
                return
            self._epoch += 1
            await self._teardown()
        self._host_chat.print_error(CONNECTION_LOST_MESSAGE, ARCHIPELAGO_TAG)

    def _on_hints_updated(self, epoch: int, hints: list[Hint]) -> None:
        if epoch != self._epoch or self._connection is None:
            return
        self._known_hints = frozenset(hint.location_id for hint in hints if hint.finding_player == self._slot)
        logger.debug("Hint feed updated", total=len(hints), known=len(self._known_hints))

    def _on_message(self, epoch: int, packet: dict[str, Any]) -> None:
        connection = self._connection
        if epoch != self._epoch or connection is None:
            return
        message = parse_print_json(packet, connection.players())
        if message.text and should_display(message, self._config_source.current(), self._slot):
            self._host_chat.print_message(message.text, ARCHIPELAGO_TAG)
