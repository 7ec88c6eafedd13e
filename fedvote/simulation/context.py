"""
Execution context for the federated-voting simulator.

Owns the live per-node protocol states and the overlay, executes batches of
user and protocol actions against them, and buffers the resulting events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .actions import (
    ActionType,
    ProtocolAction,
    ReceiveMessage,
    SendMessage,
    UpdateQuorumSet,
    UserAction,
    VoteOnStatement,
)
from .events import Event, EventBuffer, EventType
from .network import Connection, Overlay
from .node import FederatedVotingState, Message, Node, NodeSnapshot, PublicKey
from .protocol import FederatedVotingProtocol
from .quorum_set import ConfigurationError, all_validators

logger = logging.getLogger("fedvote.context")


@dataclass(frozen=True)
class ContextSnapshot:
    """Immutable view of the context for readers.

    Attributes:
        nodes: Node snapshots in roster order.
        connections: Peers of every node, keyed by public key.
        overlay_fully_connected: Whether the overlay is a full mesh.
        overlay_gossip_enabled: Whether nodes relay votes.
    """

    nodes: tuple[NodeSnapshot, ...]
    connections: dict[PublicKey, list[PublicKey]]
    overlay_fully_connected: bool
    overlay_gossip_enabled: bool


class Context:
    """Live federated voting state of a network.

    The context is deterministic: executing the same sequence of action
    batches after ``reset()`` always reproduces the same states, actions and
    events. The simulation relies on this to step backwards by replay.

    Args:
        overlay_fully_connected: Connect every node to every other node.
        overlay_gossip_enabled: Nodes relay votes they see for the first time.
        initial_nodes: Nodes present at the start and after every reset.
        initial_connections: Overlay connections present at the start
            (ignored for a full mesh).
    """

    def __init__(
        self,
        overlay_fully_connected: bool = True,
        overlay_gossip_enabled: bool = False,
        initial_nodes: list[Node] | None = None,
        initial_connections: list[tuple[PublicKey, PublicKey]] | None = None,
    ):
        self.events = EventBuffer()
        self.protocol = FederatedVotingProtocol(self.events)

        self._initial_nodes: list[Node] = []
        self._initial_overlay = Overlay(
            fully_connected=overlay_fully_connected,
            gossip_enabled=overlay_gossip_enabled,
        )
        self._states: dict[PublicKey, FederatedVotingState] = {}
        self.overlay = self._initial_overlay.copy()

        if initial_nodes:
            self.load_initial_nodes(initial_nodes, initial_connections)

    # -- setup -----------------------------------------------------------

    def load_initial_nodes(
        self,
        nodes: list[Node],
        connections: list[tuple[PublicKey, PublicKey]] | None = None,
    ) -> None:
        """Install the starting roster and reset to it.

        Raises:
            ConfigurationError: If a key is duplicated, a node trusts an
                unknown node, or a connection names an unknown node.
        """
        keys = [n.public_key for n in nodes]
        if len(set(keys)) != len(keys):
            raise ConfigurationError(f"duplicate public keys in initial nodes: {keys}")

        known = set(keys)
        for node in nodes:
            unknown = all_validators(node.quorum_set) - known
            if unknown:
                raise ConfigurationError(
                    f"node {node.public_key} trusts unknown nodes {sorted(unknown)}"
                )

        overlay = Overlay(
            fully_connected=self._initial_overlay.fully_connected,
            gossip_enabled=self._initial_overlay.gossip_enabled,
        )
        for a, b in connections or []:
            if a not in known or b not in known:
                raise ConfigurationError(f"connection {a}<->{b} names an unknown node")
            overlay.add_connection(a, b)

        self._initial_nodes = list(nodes)
        self._initial_overlay = overlay
        self.reset()
        logger.info(f"Loaded {len(nodes)} initial nodes ({overlay!r})")

    def reset(self) -> None:
        """Return to the initial roster and overlay. Buffered events are kept."""
        self._states = {n.public_key: FederatedVotingState(n) for n in self._initial_nodes}
        self.overlay = self._initial_overlay.copy()

    # -- read API --------------------------------------------------------

    @property
    def overlay_fully_connected(self) -> bool:
        return self.overlay.fully_connected

    @property
    def overlay_gossip_enabled(self) -> bool:
        return self.overlay.gossip_enabled

    @property
    def initial_nodes(self) -> list[Node]:
        return list(self._initial_nodes)

    @property
    def initial_connections(self) -> list[tuple[PublicKey, PublicKey]]:
        return sorted((c.node_a, c.node_b) for c in self._initial_overlay.connections)

    def public_keys(self) -> list[PublicKey]:
        return list(self._states)

    def nodes(self) -> list[Node]:
        return [s.node for s in self._states.values()]

    def get_node_state(self, public_key: PublicKey) -> NodeSnapshot | None:
        state = self._states.get(public_key)
        return state.snapshot() if state else None

    def node_snapshots(self) -> list[NodeSnapshot]:
        return [s.snapshot() for s in self._states.values()]

    def peers_of(self, public_key: PublicKey) -> list[PublicKey]:
        return self.overlay.peers_of(public_key, self.public_keys())

    def get_state(self) -> ContextSnapshot:
        return ContextSnapshot(
            nodes=tuple(self.node_snapshots()),
            connections=self.overlay.adjacency(self.public_keys()),
            overlay_fully_connected=self.overlay.fully_connected,
            overlay_gossip_enabled=self.overlay.gossip_enabled,
        )

    def drain_events(self) -> list[Event]:
        return self.events.drain()

    # -- execution -------------------------------------------------------

    def execute_actions(
        self,
        protocol_actions: list[ProtocolAction],
        user_actions: list[UserAction],
    ) -> list[ProtocolAction]:
        """Execute one step's worth of actions.

        User actions run first, in list order, then protocol actions.

        Args:
            protocol_actions: Actions generated by the previous step.
            user_actions: Pending operator actions.

        Returns:
            Protocol actions generated by this batch, for the next step.
        """
        new_actions: list[ProtocolAction] = []
        for user_action in user_actions:
            new_actions.extend(self._execute_user_action(user_action))
        for protocol_action in protocol_actions:
            new_actions.extend(self._execute_protocol_action(protocol_action))
        return new_actions

    def _execute_user_action(self, action: UserAction) -> list[ProtocolAction]:
        """Dispatch a user action on its type."""
        if action.action_type == ActionType.ADD_NODE:
            return self._add_node(Node(action.node_key, action.quorum_set))

        elif action.action_type == ActionType.REMOVE_NODE:
            return self._remove_node(action.node_key)

        elif action.action_type == ActionType.UPDATE_QUORUM_SET:
            return self._update_quorum_set(action)

        elif action.action_type == ActionType.VOTE_ON_STATEMENT:
            return self._vote(action)

        elif action.action_type == ActionType.ADD_CONNECTION:
            return self._change_connection(action.a, action.b, add=True)

        elif action.action_type == ActionType.REMOVE_CONNECTION:
            return self._change_connection(action.a, action.b, add=False)

        elif action.action_type == ActionType.FORGE_MESSAGE:
            self.events.emit(
                EventType.MESSAGE_FORGED, action.message.sender, message=str(action.message)
            )
            return [SendMessage(action.message)]

        raise TypeError(f"Unsupported user action: {action!r}")

    def _execute_protocol_action(self, action: ProtocolAction) -> list[ProtocolAction]:
        """Dispatch a protocol action on its type."""
        if action.disrupted:
            self.events.emit(
                EventType.MESSAGE_DISRUPTED,
                action.public_key,
                message=str(action.message),
                action=action.action_type.value,
            )
            return []

        if action.action_type == ActionType.SEND_MESSAGE:
            return self.send_message(action.message)

        elif action.action_type == ActionType.RECEIVE_MESSAGE:
            return self.receive_message(action.message)

        raise TypeError(f"Unsupported protocol action: {action!r}")

    def send_message(self, message: Message) -> list[ProtocolAction]:
        """Put a message on the wire; it is delivered in the next step."""
        if message.sender in self._states and not self.overlay.is_connected(
            message.sender, message.receiver, set(self._states)
        ):
            self._drop(message, "not connected")
            return []
        self.events.emit(EventType.MESSAGE_SENT, message.sender, message=str(message))
        return [ReceiveMessage(message)]

    def receive_message(self, message: Message) -> list[ProtocolAction]:
        """Deliver a message to its receiver, if it still exists."""
        state = self._states.get(message.receiver)
        if state is None:
            self._drop(message, "receiver does not exist")
            return []
        self.events.emit(EventType.MESSAGE_RECEIVED, message.receiver, message=str(message))
        return self.protocol.receive(
            state,
            message,
            self.peers_of(message.receiver),
            gossip_enabled=self.overlay.gossip_enabled,
        )

    def _drop(self, message: Message, reason: str) -> None:
        self.events.emit(
            EventType.MESSAGE_DROPPED, message.receiver, message=str(message), reason=reason
        )
        logger.debug(f"Dropped message {message}: {reason}")

    def _ignore(self, public_key: PublicKey, reason: str) -> list[ProtocolAction]:
        self.events.emit(EventType.ACTION_IGNORED, public_key, reason=reason)
        logger.debug(f"Ignored action for {public_key}: {reason}")
        return []

    def _add_node(self, node: Node) -> list[ProtocolAction]:
        if node.public_key in self._states:
            return self._ignore(node.public_key, "node already exists")
        self._states[node.public_key] = FederatedVotingState(node)
        self.events.emit(EventType.NODE_ADDED, node.public_key)
        return []

    def _remove_node(self, public_key: PublicKey) -> list[ProtocolAction]:
        if public_key not in self._states:
            return self._ignore(public_key, "node does not exist")
        del self._states[public_key]
        self.overlay.remove_node(public_key)
        self.events.emit(EventType.NODE_REMOVED, public_key)
        return []

    def _update_quorum_set(self, action: UpdateQuorumSet) -> list[ProtocolAction]:
        state = self._states.get(action.node_key)
        if state is None:
            return self._ignore(action.node_key, "node does not exist")
        state.node = Node(action.node_key, action.quorum_set)
        self.events.emit(
            EventType.QUORUM_SET_UPDATED, action.node_key, quorum_set=str(action.quorum_set)
        )
        # Votes already processed may now complete a slice
        return self.protocol.evaluate(state, self.peers_of(action.node_key))

    def _vote(self, action: VoteOnStatement) -> list[ProtocolAction]:
        state = self._states.get(action.node_key)
        if state is None:
            return self._ignore(action.node_key, "node does not exist")
        return self.protocol.vote(state, action.statement, self.peers_of(action.node_key))

    def _change_connection(self, a: PublicKey, b: PublicKey, add: bool) -> list[ProtocolAction]:
        if a not in self._states or b not in self._states:
            return self._ignore(a, f"connection to {b} names an unknown node")
        changed = self.overlay.add_connection(a, b) if add else self.overlay.remove_connection(a, b)
        if not changed:
            self.events.emit(EventType.CONNECTION_IGNORED, a, peer=b)
            return []
        pair = Connection(a, b)
        event_type = EventType.CONNECTION_ADDED if add else EventType.CONNECTION_REMOVED
        self.events.emit(event_type, pair.node_a, peer=pair.node_b)
        return []

    def __repr__(self) -> str:
        return f"Context({len(self._states)} nodes, {self.overlay!r})"
