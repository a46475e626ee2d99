"""
Effects emitted by state transitions.

Transitions never talk to the chat platform directly. They return ``Effect``
values describing what happened and which messages should go out; a dispatcher
delivers the messages after the authoritative write has committed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class OutboundMessage:
    recipient: int  # chat id (group) or user id (private)
    text: str


@dataclass
class Effect:
    type: str  # e.g. "checkin_window.opened"
    payload: Dict[str, Any] = field(default_factory=dict)
    messages: List[OutboundMessage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "payload": self.payload,
            "recipients": [m.recipient for m in self.messages],
        }


@dataclass
class DeliveryResult:
    recipient: int
    ok: bool
    error: Optional[str] = None
