"""Domain models shared by the reward pipeline, session and control API."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ParsedReward:
    item_name: str
    quantity: int


@dataclass(frozen=True)
class Hint:
    location_id: int
    finding_player: int


@dataclass(frozen=True)
class NetworkPlayer:
    team: int
    slot: int
    alias: str
    name: str


@dataclass(frozen=True)
class LoginRequest:
    slot: str
    password: str | None
    game: str = ""
    version: tuple[int, int, int] = (0, 6, 4)
    tags: tuple[str, ...] = ("AP", "FFXIV", "HintGenerator", "TextOnly")
    items_handling: int = 0b011
    request_slot_data: bool = True


@dataclass(frozen=True)
class LoginSuccess:
    slot: int
    team: int
    players: tuple[NetworkPlayer, ...] = ()
    successful: bool = field(default=True, init=False)


@dataclass(frozen=True)
class LoginFailure:
    errors: tuple[str, ...] = ()
    error_codes: tuple[str, ...] = ()
    successful: bool = field(default=False, init=False)

    def message(self) -> str:
        return "\n".join([*self.errors, *self.error_codes])


LoginResult = LoginSuccess | LoginFailure


@dataclass(frozen=True)
class ConnectOutcome:
    connected: bool
    message: str


@dataclass(frozen=True)
class ChatEntry:
    """A line the bridge hands back to the host chat."""

    text: str
    tag: str | None = None
    channel_id: int | None = None
    is_error: bool = False
