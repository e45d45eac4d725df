"""Server message log parsing and display gating."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import BridgeConfig
from .models import NetworkPlayer

CHAT_KINDS = frozenset({"Chat", "ServerChat"})
JOIN_LEAVE_KINDS = frozenset({"Join", "Part"})


@dataclass(frozen=True)
class LogMessage:
    kind: str
    text: str
    sender_slot: int | None = None
    receiver_slot: int | None = None
    found: bool | None = None


def _render_part(part: dict[str, Any], players: dict[int, NetworkPlayer]) -> str:
    text = str(part.get("text", ""))
    part_type = part.get("type")
    if part_type == "player_id":
        try:
            player = players.get(int(text))
        except ValueError:
            player = None
        if player is not None:
            return player.alias or player.name
    elif part_type == "item_id":
        return f"item {text}"
    elif part_type == "location_id":
        return f"location {text}"
    return text


def parse_print_json(packet: dict[str, Any], players: tuple[NetworkPlayer, ...]) -> LogMessage:
    """Flatten a PrintJSON packet into plain text plus the fields used for gating."""
    by_slot = {player.slot: player for player in players}
    text = "".join(_render_part(part, by_slot) for part in packet.get("data", []) or [] if isinstance(part, dict))
    item = packet.get("item") or {}
    sender = item.get("player") if isinstance(item, dict) else None
    receiver = packet.get("receiving")
    return LogMessage(
        kind=str(packet.get("type") or ""),
        text=text,
        sender_slot=int(sender) if sender is not None else None,
        receiver_slot=int(receiver) if receiver is not None else None,
        found=packet.get("found"),
    )


def should_display(message: LogMessage, config: BridgeConfig, active_slot: int) -> bool:
    if message.kind in CHAT_KINDS:
        return config.display_chat_messages

    if message.kind == "Hint" and not config.display_found_hint_messages:
        if message.found or message.text.endswith("(found)"):
            return False

    if message.kind in JOIN_LEAVE_KINDS:
        return config.display_join_leave_messages

    if message.kind == "ItemSend":
        if message.sender_slot == active_slot:
            return config.display_item_sent_messages
        if message.receiver_slot == active_slot:
            return config.display_item_received_messages
        return False

    return True
