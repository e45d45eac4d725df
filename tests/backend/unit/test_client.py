import asyncio
import json

import pytest

from apbridge.backend.client import (
    ArchipelagoClient,
    ArchipelagoConnectionError,
    ArchipelagoProtocolError,
    candidate_uris,
    login_packet,
    parse_hints,
    refusal_to_failure,
)
from apbridge.backend.models import Hint, LoginFailure, LoginRequest, LoginSuccess


class FakeWebSocket:
    def __init__(self) -> None:
        self.sent: list[list[dict]] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        frame = await self.incoming.get()
        if isinstance(frame, Exception):
            raise frame
        if frame is None:
            raise StopAsyncIteration
        return frame


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def _connected(slot: int = 3, team: int = 0) -> dict:
    return {
        "cmd": "Connected",
        "slot": slot,
        "team": team,
        "players": [{"team": team, "slot": slot, "alias": "Me", "name": "Me"}],
        "missing_locations": [10, 11, 12],
        "checked_locations": [9],
    }


def test_candidate_uris_try_secure_first() -> None:
    assert candidate_uris("archipelago.gg:38281") == ["wss://archipelago.gg:38281", "ws://archipelago.gg:38281"]
    assert candidate_uris("ws://localhost:38281") == ["ws://localhost:38281"]


def test_login_packet_announces_text_only_hint_generator() -> None:
    packet = login_packet(LoginRequest(slot="Me", password=None))

    assert packet["cmd"] == "Connect"
    assert packet["name"] == "Me"
    assert packet["password"] == ""
    assert packet["game"] == ""
    assert packet["items_handling"] == 0b011
    assert packet["tags"] == ["AP", "FFXIV", "HintGenerator", "TextOnly"]
    assert packet["version"] == {"major": 0, "minor": 6, "build": 4, "class": "Version"}


def test_refusal_maps_known_codes() -> None:
    failure = refusal_to_failure({"cmd": "ConnectionRefused", "errors": ["InvalidPassword", "Odd"]})

    assert isinstance(failure, LoginFailure)
    assert failure.successful is False
    assert failure.error_codes == ("InvalidPassword", "Odd")
    assert failure.errors == ("The password is wrong or was not provided.", "Connection refused: Odd")


def test_refusal_without_codes_has_generic_message() -> None:
    assert refusal_to_failure({"cmd": "ConnectionRefused"}).errors == ("Connection refused by the server.",)


def test_parse_hints_skips_malformed_entries() -> None:
    hints = parse_hints([{"location": 5, "finding_player": 1}, {"location": "x"}, "junk", {"finding_player": 2}])

    assert hints == [Hint(location_id=5, finding_player=1)]


@pytest.mark.asyncio
async def test_login_resolves_with_connected_packet() -> None:
    websocket = FakeWebSocket()
    client = ArchipelagoClient(websocket)

    login = asyncio.create_task(client.login(LoginRequest(slot="Me", password="pw")))
    await _settle()
    client.dispatch(_connected())
    result = await login

    assert isinstance(result, LoginSuccess)
    assert result.slot == 3
    assert client.missing_locations() == frozenset({10, 11, 12})
    assert client.players()[0].alias == "Me"
    assert websocket.sent[0][0]["cmd"] == "Connect"
    assert websocket.sent[0][0]["password"] == "pw"


@pytest.mark.asyncio
async def test_login_resolves_with_refusal() -> None:
    client = ArchipelagoClient(FakeWebSocket())

    login = asyncio.create_task(client.login(LoginRequest(slot="Nobody", password=None)))
    await _settle()
    client.dispatch({"cmd": "ConnectionRefused", "errors": ["InvalidSlot"]})
    result = await login

    assert result.successful is False
    assert result.error_codes == ("InvalidSlot",)


@pytest.mark.asyncio
async def test_login_times_out() -> None:
    client = ArchipelagoClient(FakeWebSocket(), request_timeout=0.01)

    with pytest.raises(ArchipelagoProtocolError):
        await client.login(LoginRequest(slot="Me", password=None))


@pytest.mark.asyncio
async def test_counter_storage_uses_slot_scoped_key() -> None:
    websocket = FakeWebSocket()
    client = ArchipelagoClient(websocket)
    client.dispatch(_connected(slot=3))

    await client.initialize_counter("ArchipelagoTokens", 0)
    await client.write_counter("ArchipelagoTokens", 42)
    read = asyncio.create_task(client.read_counter("ArchipelagoTokens"))
    await _settle()
    client.dispatch({"cmd": "Retrieved", "keys": {"Slot:3:ArchipelagoTokens": 42}})

    assert await read == 42
    initialize, write, get = (frame[0] for frame in websocket.sent)
    assert initialize["key"] == "Slot:3:ArchipelagoTokens"
    assert initialize["operations"] == [{"operation": "default", "value": 0}]
    assert write["operations"] == [{"operation": "replace", "value": 42}]
    assert get == {"cmd": "Get", "keys": ["Slot:3:ArchipelagoTokens"]}


@pytest.mark.asyncio
async def test_hint_feed_delivers_snapshot_and_updates() -> None:
    websocket = FakeWebSocket()
    client = ArchipelagoClient(websocket)
    client.dispatch(_connected(slot=3, team=1))
    received: list[list[Hint]] = []

    await client.track_hints(received.append)
    client.dispatch({"cmd": "Retrieved", "keys": {"_read_hints_1_3": [{"location": 10, "finding_player": 3}]}})
    client.dispatch({"cmd": "SetReply", "key": "_read_hints_1_3", "value": []})
    client.dispatch({"cmd": "SetReply", "key": "_read_hints_1_4", "value": [{"location": 1, "finding_player": 4}]})

    assert websocket.sent[0] == [{"cmd": "SetNotify", "keys": ["_read_hints_1_3"]}]
    assert websocket.sent[1] == [{"cmd": "Get", "keys": ["_read_hints_1_3"]}]
    assert received == [[Hint(location_id=10, finding_player=3)], []]

    client.clear_hint_handlers()
    client.dispatch({"cmd": "SetReply", "key": "_read_hints_1_3", "value": []})
    assert len(received) == 2


@pytest.mark.asyncio
async def test_room_update_removes_checked_locations() -> None:
    client = ArchipelagoClient(FakeWebSocket())
    client.dispatch(_connected())

    client.dispatch({"cmd": "RoomUpdate", "checked_locations": [11]})

    assert client.missing_locations() == frozenset({10, 12})


@pytest.mark.asyncio
async def test_scout_and_say_packets() -> None:
    websocket = FakeWebSocket()
    client = ArchipelagoClient(websocket)

    await client.scout_as_hint(12)
    await client.say("hello")

    assert websocket.sent == [
        [{"cmd": "LocationScouts", "locations": [12], "create_as_hint": 1}],
        [{"cmd": "Say", "text": "hello"}],
    ]


@pytest.mark.asyncio
async def test_print_json_reaches_message_handlers() -> None:
    client = ArchipelagoClient(FakeWebSocket())
    packets: list[dict] = []
    client.add_message_handler(packets.append)

    client.dispatch({"cmd": "PrintJSON", "type": "Chat", "data": [{"text": "hi"}]})
    client.remove_message_handler(packets.append)
    client.dispatch({"cmd": "PrintJSON", "type": "Chat", "data": [{"text": "again"}]})

    assert len(packets) == 1


@pytest.mark.asyncio
async def test_reader_reports_lost_connection() -> None:
    websocket = FakeWebSocket()
    client = ArchipelagoClient(websocket)
    errors: list[str] = []
    client.add_error_handler(lambda exc, message: errors.append(message))
    client.start()

    await websocket.incoming.put(json.dumps([{"cmd": "RoomUpdate", "checked_locations": []}]))
    await websocket.incoming.put(ConnectionResetError("reset"))
    await _settle()

    assert errors == ["Connection lost: reset"]


@pytest.mark.asyncio
async def test_reader_failure_rejects_pending_login() -> None:
    websocket = FakeWebSocket()
    client = ArchipelagoClient(websocket)
    client.start()

    login = asyncio.create_task(client.login(LoginRequest(slot="Me", password=None)))
    await _settle()
    await websocket.incoming.put(None)

    with pytest.raises(ArchipelagoConnectionError):
        await login


@pytest.mark.asyncio
async def test_close_is_not_reported_as_error() -> None:
    websocket = FakeWebSocket()
    client = ArchipelagoClient(websocket)
    errors: list[str] = []
    client.add_error_handler(lambda exc, message: errors.append(message))
    client.start()

    await client.close(timeout=0.5)
    await _settle()

    assert websocket.closed is True
    assert errors == []


@pytest.mark.asyncio
async def test_reader_failure_rejects_pending_reads() -> None:
    websocket = FakeWebSocket()
    client = ArchipelagoClient(websocket)
    client.dispatch(_connected())
    client.start()

    read = asyncio.create_task(client.read_counter("ArchipelagoTokens"))
    await _settle()
    await websocket.incoming.put(ConnectionResetError("reset"))

    with pytest.raises(ArchipelagoConnectionError):
        await asyncio.wait_for(read, timeout=1.0)
