"""
Federated voting simulation package.

This package provides a deterministic, step-driven model of federated voting
in a Federated Byzantine Agreement System: quorum sets, per-node voting
state, the action/event model, and a rewindable simulation engine.
"""

from .quorum_set import (
    ConfigurationError,
    QuorumSet,
    is_slice,
    is_blocking,
    all_validators,
    quorum_slices,
)
from .node import (
    PublicKey,
    Statement,
    Node,
    Vote,
    Message,
    Phase,
    FederatedVotingState,
    NodeSnapshot,
)
from .network import Connection, Overlay
from .events import EventType, Event, EventBuffer
from .actions import (
    ActionType,
    UserAction,
    AddNode,
    RemoveNode,
    UpdateQuorumSet,
    VoteOnStatement,
    AddConnection,
    RemoveConnection,
    ForgeMessage,
    ProtocolAction,
    SendMessage,
    ReceiveMessage,
    user_action_from_dict,
    protocol_action_from_dict,
)
from .protocol import FederatedVotingProtocol
from .context import Context, ContextSnapshot
from .metrics import ConsensusSnapshot
from .simulator import Simulation, SimulationStep, calculate_step_hash

__all__ = [
    # Quorum sets
    "ConfigurationError",
    "QuorumSet",
    "is_slice",
    "is_blocking",
    "all_validators",
    "quorum_slices",
    # Node
    "PublicKey",
    "Statement",
    "Node",
    "Vote",
    "Message",
    "Phase",
    "FederatedVotingState",
    "NodeSnapshot",
    # Overlay
    "Connection",
    "Overlay",
    # Events
    "EventType",
    "Event",
    "EventBuffer",
    # Actions
    "ActionType",
    "UserAction",
    "AddNode",
    "RemoveNode",
    "UpdateQuorumSet",
    "VoteOnStatement",
    "AddConnection",
    "RemoveConnection",
    "ForgeMessage",
    "ProtocolAction",
    "SendMessage",
    "ReceiveMessage",
    "user_action_from_dict",
    "protocol_action_from_dict",
    # Protocol
    "FederatedVotingProtocol",
    # Context
    "Context",
    "ContextSnapshot",
    # Metrics
    "ConsensusSnapshot",
    # Simulation
    "Simulation",
    "SimulationStep",
    "calculate_step_hash",
]
