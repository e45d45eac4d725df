"""Archipelago multiworld client over a JSON websocket.

Only the subset the bridge needs is implemented: login, slot-scoped data
storage for the token counter, the hint feed, missing locations, hint
scouting, chat and the server message log.
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from .logging_config import get_logger
from .models import Hint, LoginFailure, LoginRequest, LoginResult, LoginSuccess, NetworkPlayer

logger = get_logger(__name__)

REQUEST_TIMEOUT_SEC = 10.0
CLOSE_TIMEOUT_SEC = 2.0

HintHandler = Callable[[list[Hint]], Any]
ErrorHandler = Callable[[Exception, str], Any]
PacketHandler = Callable[[dict[str, Any]], Any]

REFUSAL_MESSAGES = {
    "InvalidSlot": "The slot name did not match any slot on the server.",
    "InvalidGame": "The slot is set to a different game on the server.",
    "IncompatibleVersion": "The server rejected the client version.",
    "InvalidPassword": "The password is wrong or was not provided.",
    "InvalidItemsHandling": "The item handling flags are invalid.",
}


class ArchipelagoError(Exception):
    """Base error for the Archipelago wire client."""


class ArchipelagoConnectionError(ArchipelagoError):
    """Raised when the websocket cannot be opened or is lost."""


class ArchipelagoProtocolError(ArchipelagoError):
    """Raised when the server does not answer as the protocol expects."""


class ArchipelagoConnection(Protocol):
    slot: int
    team: int

    async def login(self, request: LoginRequest) -> LoginResult:
        """Send Connect and wait for Connected or ConnectionRefused."""

    async def initialize_counter(self, key: str, default: int) -> None:
        """Create the slot-scoped storage key when it does not exist yet."""

    async def read_counter(self, key: str) -> int:
        """Read the slot-scoped storage key."""

    async def write_counter(self, key: str, value: int) -> None:
        """Replace the slot-scoped storage key."""

    async def track_hints(self, handler: HintHandler) -> None:
        """Subscribe to the hint feed and request an initial snapshot."""

    def missing_locations(self) -> frozenset[int]:
        """Locations the slot has not checked yet."""

    def players(self) -> tuple[NetworkPlayer, ...]:
        """Players known from the Connected packet."""

    async def scout_as_hint(self, location_id: int) -> None:
        """Ask the server to create a hint for the location."""

    async def say(self, text: str) -> None:
        """Send a chat line to the room."""

    def add_error_handler(self, handler: ErrorHandler) -> None: ...

    def remove_error_handler(self, handler: ErrorHandler) -> None: ...

    def add_message_handler(self, handler: PacketHandler) -> None: ...

    def remove_message_handler(self, handler: PacketHandler) -> None: ...

    def clear_hint_handlers(self) -> None: ...

    async def close(self, timeout: float = CLOSE_TIMEOUT_SEC) -> None:
        """Close the websocket, waiting at most ``timeout`` seconds."""


Connector = Callable[[str], Awaitable[ArchipelagoConnection]]


def candidate_uris(host: str) -> list[str]:
    if "://" in host:
        return [host]
    return [f"wss://{host}", f"ws://{host}"]


def login_packet(request: LoginRequest) -> dict[str, Any]:
    major, minor, build = request.version
    return {
        "cmd": "Connect",
        "game": request.game,
        "name": request.slot,
        "password": request.password or "",
        "uuid": "",
        "version": {"major": major, "minor": minor, "build": build, "class": "Version"},
        "items_handling": request.items_handling,
        "tags": list(request.tags),
        "slot_data": request.request_slot_data,
    }


def refusal_to_failure(packet: dict[str, Any]) -> LoginFailure:
    codes = tuple(str(code) for code in packet.get("errors", []) or [])
    messages = tuple(REFUSAL_MESSAGES.get(code, f"Connection refused: {code}") for code in codes)
    if not codes:
        messages = ("Connection refused by the server.",)
    return LoginFailure(errors=messages, error_codes=codes)


def parse_hints(value: Any) -> list[Hint]:
    hints: list[Hint] = []
    for raw in value or []:
        if not isinstance(raw, dict):
            continue
        try:
            hints.append(Hint(location_id=int(raw["location"]), finding_player=int(raw["finding_player"])))
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping malformed hint", hint=raw)
    return hints


def parse_players(value: Any) -> tuple[NetworkPlayer, ...]:
    players: list[NetworkPlayer] = []
    for raw in value or []:
        if not isinstance(raw, dict):
            continue
        players.append(
            NetworkPlayer(
                team=int(raw.get("team", 0)),
                slot=int(raw.get("slot", 0)),
                alias=str(raw.get("alias", "")),
                name=str(raw.get("name", "")),
            )
        )
    return tuple(players)


class ArchipelagoClient:
    """Websocket-backed implementation of :class:`ArchipelagoConnection`."""

    def __init__(self, websocket: Any, request_timeout: float = REQUEST_TIMEOUT_SEC) -> None:
        self._websocket = websocket
        self._request_timeout = request_timeout
        self.slot = -1
        self.team = -1
        self._players: tuple[NetworkPlayer, ...] = ()
        self._missing: set[int] = set()
        self._login_future: asyncio.Future[LoginResult] | None = None
        self._pending_reads: dict[str, list[asyncio.Future[Any]]] = defaultdict(list)
        self._hint_handlers: list[HintHandler] = []
        self._error_handlers: list[ErrorHandler] = []
        self._message_handlers: list[PacketHandler] = []
        self._closing = False
        self._reader: asyncio.Task[None] | None = None

    @classmethod
    async def open(cls, host: str) -> ArchipelagoClient:
        last_error: Exception | None = None
        for uri in candidate_uris(host):
            try:
                websocket = await websockets.connect(uri, max_size=None)
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as exc:
                logger.debug("Websocket open failed", uri=uri, error=str(exc))
                last_error = exc
                continue
            client = cls(websocket)
            client.start()
            logger.info("Websocket opened", uri=uri)
            return client
        raise ArchipelagoConnectionError(f"Unable to reach {host}: {last_error}")

    def start(self) -> None:
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    @property
    def hints_key(self) -> str:
        return f"_read_hints_{self.team}_{self.slot}"

    def slot_key(self, key: str) -> str:
        return f"Slot:{self.slot}:{key}"

    async def login(self, request: LoginRequest) -> LoginResult:
        self._login_future = asyncio.get_running_loop().create_future()
        await self._send(login_packet(request))
        try:
            return await asyncio.wait_for(self._login_future, timeout=self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise ArchipelagoProtocolError("Timed out waiting for the server to accept the login") from exc
        finally:
            self._login_future = None

    async def initialize_counter(self, key: str, default: int) -> None:
        await self._send(
            {
                "cmd": "Set",
                "key": self.slot_key(key),
                "default": default,
                "want_reply": False,
                "operations": [{"operation": "default", "value": default}],
            }
        )

    async def read_counter(self, key: str) -> int:
        value = await self._get(self.slot_key(key))
        return int(value or 0)

    async def write_counter(self, key: str, value: int) -> None:
        await self._send(
            {
                "cmd": "Set",
                "key": self.slot_key(key),
                "default": 0,
                "want_reply": False,
                "operations": [{"operation": "replace", "value": value}],
            }
        )

    async def track_hints(self, handler: HintHandler) -> None:
        self._hint_handlers.append(handler)
        key = self.hints_key
        await self._send({"cmd": "SetNotify", "keys": [key]})
        await self._send({"cmd": "Get", "keys": [key]})

    def clear_hint_handlers(self) -> None:
        self._hint_handlers.clear()

    def missing_locations(self) -> frozenset[int]:
        return frozenset(self._missing)

    def players(self) -> tuple[NetworkPlayer, ...]:
        return self._players

    async def scout_as_hint(self, location_id: int) -> None:
        await self._send({"cmd": "LocationScouts", "locations": [location_id], "create_as_hint": 1})

    async def say(self, text: str) -> None:
        await self._send({"cmd": "Say", "text": text})

    def add_error_handler(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def remove_error_handler(self, handler: ErrorHandler) -> None:
        if handler in self._error_handlers:
            self._error_handlers.remove(handler)

    def add_message_handler(self, handler: PacketHandler) -> None:
        self._message_handlers.append(handler)

    def remove_message_handler(self, handler: PacketHandler) -> None:
        if handler in self._message_handlers:
            self._message_handlers.remove(handler)

    async def close(self, timeout: float = CLOSE_TIMEOUT_SEC) -> None:
        self._closing = True
        try:
            await asyncio.wait_for(self._websocket.close(), timeout=timeout)
        finally:
            if self._reader is not None and not self._reader.done():
                self._reader.cancel()
            for futures in self._pending_reads.values():
                for future in futures:
                    if not future.done():
                        future.cancel()
            self._pending_reads.clear()

    async def _get(self, key: str) -> Any:
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending_reads[key].append(future)
        await self._send({"cmd": "Get", "keys": [key]})
        try:
            return await asyncio.wait_for(future, timeout=self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise ArchipelagoProtocolError(f"Timed out reading {key}") from exc

    async def _send(self, *packets: dict[str, Any]) -> None:
        try:
            await self._websocket.send(json.dumps(list(packets)))
        except ConnectionClosed as exc:
            raise ArchipelagoConnectionError(f"Connection closed: {exc}") from exc

    async def _read_loop(self) -> None:
        try:
            async for frame in self._websocket:
                for packet in json.loads(frame):
                    self.dispatch(packet)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._closing:
                self._fail(exc, f"Connection lost: {exc}")
            return
        if not self._closing:
            self._fail(ArchipelagoConnectionError("Connection closed by server"), "Connection closed by server")

    def _fail(self, exc: Exception, message: str) -> None:
        logger.warning("Archipelago transport error", error=message)
        if self._login_future is not None and not self._login_future.done():
            self._login_future.set_exception(ArchipelagoConnectionError(message))
        for futures in self._pending_reads.values():
            for future in futures:
                if not future.done():
                    future.set_exception(ArchipelagoConnectionError(message))
        self._pending_reads.clear()
        for handler in list(self._error_handlers):
            handler(exc, message)

    def dispatch(self, packet: dict[str, Any]) -> None:
        cmd = packet.get("cmd")
        if cmd == "Connected":
            self._on_connected(packet)
        elif cmd == "ConnectionRefused":
            if self._login_future is not None and not self._login_future.done():
                self._login_future.set_result(refusal_to_failure(packet))
        elif cmd == "RoomUpdate":
            self._missing.difference_update(int(loc) for loc in packet.get("checked_locations", []) or [])
            if "players" in packet:
                self._players = parse_players(packet["players"])
        elif cmd == "Retrieved":
            for key, value in (packet.get("keys") or {}).items():
                self._on_value(key, value)
                for future in self._pending_reads.pop(key, []):
                    if not future.done():
                        future.set_result(value)
        elif cmd == "SetReply":
            self._on_value(str(packet.get("key")), packet.get("value"))
        elif cmd == "PrintJSON":
            for handler in list(self._message_handlers):
                handler(packet)
        else:
            logger.debug("Ignoring packet", cmd=cmd)

    def _on_connected(self, packet: dict[str, Any]) -> None:
        self.slot = int(packet.get("slot", -1))
        self.team = int(packet.get("team", -1))
        self._players = parse_players(packet.get("players"))
        checked = {int(loc) for loc in packet.get("checked_locations", []) or []}
        self._missing = {int(loc) for loc in packet.get("missing_locations", []) or []} - checked
        if self._login_future is not None and not self._login_future.done():
            self._login_future.set_result(LoginSuccess(slot=self.slot, team=self.team, players=self._players))

    def _on_value(self, key: str, value: Any) -> None:
        if key == self.hints_key:
            hints = parse_hints(value)
            for handler in list(self._hint_handlers):
                handler(hints)


async def open_connection(host: str) -> ArchipelagoConnection:
    return await ArchipelagoClient.open(host)
