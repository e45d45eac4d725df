"""Status snapshots for the control API."""

from __future__ import annotations

from typing import Any

from .hints import HintPurchaseCoordinator
from .models import ChatEntry
from .session import SessionManager


def build_session_status(session: SessionManager, hints: HintPurchaseCoordinator) -> dict[str, Any]:
    """Return the session snapshot shown to the user in place of the connect window."""
    return {
        "state": session.state.value,
        "host": session.host,
        "slot": session.slot_name,
        "balance": session.balance,
        "hintCost": hints.hint_cost,
        "canPurchaseHint": hints.can_purchase(),
        "knownHints": len(session.known_hints),
        "missingLocations": len(session.missing_locations()),
    }


def serialize_entry(entry: ChatEntry) -> dict[str, Any]:
    return {
        "text": entry.text,
        "tag": entry.tag,
        "channelId": entry.channel_id,
        "isError": entry.is_error,
    }
