"""
Event system for the federated-voting simulator.

Provides event types, the event dataclass, and the buffer the context fills
while executing actions and the simulation drains once per step.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(Enum):
    """Observable things that happen while actions execute."""

    # Roster events
    NODE_ADDED = "node_added"
    NODE_REMOVED = "node_removed"
    QUORUM_SET_UPDATED = "quorum_set_updated"

    # Overlay events
    CONNECTION_ADDED = "connection_added"
    CONNECTION_REMOVED = "connection_removed"
    CONNECTION_IGNORED = "connection_ignored"  # Full mesh or no-op change

    # Message events
    MESSAGE_SENT = "message_sent"
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_DROPPED = "message_dropped"  # Receiver missing or unreachable
    MESSAGE_DISRUPTED = "message_disrupted"  # Byzantine drop
    MESSAGE_FORGED = "message_forged"
    MESSAGE_RELAYED = "message_relayed"  # Gossip forwarding

    # Federated voting events
    VOTED = "voted"
    VOTE_IGNORED = "vote_ignored"  # Node already voted
    ACCEPTED = "accepted"
    CONFIRMED = "confirmed"

    # Anything else that was a no-op
    ACTION_IGNORED = "action_ignored"


@dataclass(frozen=True)
class Event:
    """Something that happened during a simulation step.

    Attributes:
        event_type: Type of event.
        target_id: Public key of the node the event is about.
        metadata: Additional event-specific data.

    Metadata conventions:
        - MESSAGE_*: {"message": str} - rendered message
        - ACCEPTED: {"statement": str, "reason": "quorum" | "v_blocking"}
        - VOTED, CONFIRMED: {"statement": str}
        - CONNECTION_*: {"peer": str}
        - ACTION_IGNORED, MESSAGE_DROPPED: {"reason": str}
    """

    event_type: EventType
    target_id: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.metadata.items()))
        suffix = f" ({details})" if details else ""
        return f"[{self.event_type.value}] {self.target_id}{suffix}"

    def __repr__(self) -> str:
        return f"Event({self.event_type.value}, {self.target_id})"


class EventBuffer:
    """Accumulates events until the next drain."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def emit(self, event_type: EventType, target_id: str, **metadata: Any) -> Event:
        event = Event(event_type=event_type, target_id=target_id, metadata=metadata)
        self._events.append(event)
        return event

    def drain(self) -> list[Event]:
        """Return all buffered events and clear the buffer."""
        events, self._events = self._events, []
        return events

    def __len__(self) -> int:
        return len(self._events)

    def __repr__(self) -> str:
        return f"EventBuffer({len(self._events)} events)"
