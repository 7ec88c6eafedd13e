"""
Federated voting protocol for the simulator.

The protocol moves a single node through vote -> accept -> confirm. It is
the algorithm-specific layer on top of the raw node state: it decides what
the processed votes mean for the node, given its quorum set, and which
messages the node sends as a consequence.

Rules for a node ``v`` and statement ``s``:

* ``v`` votes ``s`` when asked to, if it has not voted yet.
* ``v`` accepts ``s`` if it has accepted nothing yet and either the nodes
  that voted for or accepted ``s`` form a slice of ``v``'s quorum set, or
  the nodes that accepted ``s`` form a v-blocking set.
* ``v`` confirms its accepted statement once the nodes that accepted it
  form a slice. Confirmation is terminal.

The node's own votes count like any other processed vote.
"""

from __future__ import annotations

import logging

from .actions import ProtocolAction, SendMessage
from .events import EventBuffer, EventType
from .node import FederatedVotingState, Message, Phase, PublicKey, Statement, Vote
from .quorum_set import is_blocking, is_slice

logger = logging.getLogger("fedvote.protocol")


class FederatedVotingProtocol:
    """Federated voting state transitions.

    The protocol keeps no state of its own; all progress lives in the
    ``FederatedVotingState`` objects owned by the context. Observable
    transitions are written to the shared event buffer.
    """

    def __init__(self, events: EventBuffer):
        self.events = events

    def vote(
        self,
        state: FederatedVotingState,
        statement: Statement,
        peers: list[PublicKey],
    ) -> list[ProtocolAction]:
        """Cast the node's vote and broadcast it.

        Args:
            state: Voting node.
            statement: Statement to vote for.
            peers: Overlay peers to send the vote to.

        Returns:
            Messages to send, including any that follow from the vote
            completing a slice on its own.
        """
        if state.phase != Phase.UNKNOWN:
            self.events.emit(
                EventType.VOTE_IGNORED,
                state.public_key,
                statement=statement,
                reason=f"already {state.phase.value}",
            )
            return []

        state.voted = statement
        state.phase = Phase.VOTED
        own_vote = Vote(statement, state.public_key, is_accept=False)
        state.processed_votes.append(own_vote)
        self.events.emit(EventType.VOTED, state.public_key, statement=statement)
        logger.debug(f"{state.public_key} voted {statement!r}")

        actions = self._broadcast(state, own_vote, peers)
        actions.extend(self.evaluate(state, peers))
        return actions

    def receive(
        self,
        state: FederatedVotingState,
        message: Message,
        peers: list[PublicKey],
        gossip_enabled: bool = False,
    ) -> list[ProtocolAction]:
        """Process an incoming vote.

        Args:
            state: Receiving node.
            message: Delivered message.
            peers: Overlay peers of the receiving node.
            gossip_enabled: Relay votes seen for the first time.

        Returns:
            Messages the node sends in response.
        """
        vote = message.vote
        actions: list[ProtocolAction] = []

        if gossip_enabled and vote.public_key != state.public_key:
            if vote not in state.forwarded_votes:
                state.forwarded_votes.add(vote)
                relay_to = [p for p in peers if p not in (message.sender, vote.public_key)]
                for peer in relay_to:
                    actions.append(SendMessage(Message(state.public_key, peer, vote)))
                if relay_to:
                    self.events.emit(
                        EventType.MESSAGE_RELAYED,
                        state.public_key,
                        vote=str(vote),
                        peers=",".join(relay_to),
                    )

        if state.has_processed(vote):
            return actions

        state.processed_votes.append(vote)
        actions.extend(self.evaluate(state, peers))
        return actions

    def evaluate(
        self,
        state: FederatedVotingState,
        peers: list[PublicKey],
    ) -> list[ProtocolAction]:
        """Apply the accept and confirm rules until nothing changes.

        Safe to call at any time; also used after a quorum set update.
        """
        actions: list[ProtocolAction] = []
        quorum_set = state.quorum_set

        if state.phase < Phase.ACCEPTED:
            for statement in state.known_statements():
                reason = None
                if is_slice(quorum_set, state.voters_for(statement)):
                    reason = "quorum"
                elif is_blocking(quorum_set, state.accepters_of(statement)):
                    reason = "v_blocking"
                if reason is not None:
                    actions.extend(self._accept(state, statement, reason, peers))
                    break

        if (
            state.phase == Phase.ACCEPTED
            and state.accepted is not None
            and is_slice(quorum_set, state.accepters_of(state.accepted))
        ):
            self._confirm(state, state.accepted)

        return actions

    def _accept(
        self,
        state: FederatedVotingState,
        statement: Statement,
        reason: str,
        peers: list[PublicKey],
    ) -> list[ProtocolAction]:
        if state.voted is None:
            state.voted = statement  # Implied by acceptance
        state.accepted = statement
        state.phase = Phase.ACCEPTED
        own_accept = Vote(statement, state.public_key, is_accept=True)
        state.processed_votes.append(own_accept)
        self.events.emit(
            EventType.ACCEPTED, state.public_key, statement=statement, reason=reason
        )
        logger.debug(f"{state.public_key} accepted {statement!r} via {reason}")
        return self._broadcast(state, own_accept, peers)

    def _confirm(self, state: FederatedVotingState, statement: Statement) -> None:
        state.confirmed = statement
        state.phase = Phase.CONFIRMED
        self.events.emit(EventType.CONFIRMED, state.public_key, statement=statement)
        logger.debug(f"{state.public_key} confirmed {statement!r}")

    @staticmethod
    def _broadcast(
        state: FederatedVotingState, vote: Vote, peers: list[PublicKey]
    ) -> list[ProtocolAction]:
        return [SendMessage(Message(state.public_key, peer, vote)) for peer in peers]
