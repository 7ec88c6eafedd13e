"""
Node model for the federated-voting simulator.

Defines node identity (public key and quorum set), the votes and messages
nodes exchange, and the per-node federated voting state that changes during
simulation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .quorum_set import QuorumSet, all_validators

PublicKey = str
Statement = str


@dataclass(frozen=True)
class Node:
    """A network participant.

    Attributes:
        public_key: Unique node identifier.
        quorum_set: The node's trust configuration.
    """

    public_key: PublicKey
    quorum_set: QuorumSet

    def to_dict(self) -> dict:
        return {"public_key": self.public_key, "quorum_set": self.quorum_set.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> Node:
        return cls(data["public_key"], QuorumSet.from_dict(data["quorum_set"]))


@dataclass(frozen=True)
class Vote:
    """A node's vote for, or acceptance of, a statement.

    Attributes:
        statement: The opaque value being agreed on.
        public_key: The node that cast the vote.
        is_accept: True for "accept statement", False for "vote statement".
    """

    statement: Statement
    public_key: PublicKey
    is_accept: bool = False

    def to_dict(self) -> dict:
        return {
            "statement": self.statement,
            "public_key": self.public_key,
            "is_accept": self.is_accept,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Vote:
        return cls(data["statement"], data["public_key"], bool(data.get("is_accept", False)))

    def __str__(self) -> str:
        verb = "accept" if self.is_accept else "vote"
        return f"{self.public_key} {verb}({self.statement})"


@dataclass(frozen=True)
class Message:
    """A vote travelling over one overlay hop.

    ``sender`` is the node forwarding the message on this hop; the vote's
    own ``public_key`` is the node that cast it. They differ only when
    gossip relays a vote.
    """

    sender: PublicKey
    receiver: PublicKey
    vote: Vote

    def to_dict(self) -> dict:
        return {"sender": self.sender, "receiver": self.receiver, "vote": self.vote.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        return cls(data["sender"], data["receiver"], Vote.from_dict(data["vote"]))

    def __str__(self) -> str:
        return f"From: {self.sender}, To: {self.receiver}, {self.vote}"


class Phase(Enum):
    """Federated voting phases, in protocol order."""

    UNKNOWN = "unknown"
    VOTED = "voted"
    ACCEPTED = "accepted"
    CONFIRMED = "confirmed"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)

    def __lt__(self, other: Phase) -> bool:
        if not isinstance(other, Phase):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: Phase) -> bool:
        if not isinstance(other, Phase):
            return NotImplemented
        return self.rank <= other.rank


_PHASE_ORDER = [Phase.UNKNOWN, Phase.VOTED, Phase.ACCEPTED, Phase.CONFIRMED]


@dataclass
class FederatedVotingState:
    """Dynamic protocol state of one node during simulation.

    Attributes:
        node: Identity and trust configuration.
        phase: Furthest phase reached; never decreases.
        voted: Statement the node voted for (or was implied by acceptance).
        accepted: Statement the node accepted.
        confirmed: Statement the node confirmed. Terminal.
        processed_votes: Votes the node has taken into account, in order.
    """

    node: Node
    phase: Phase = Phase.UNKNOWN
    voted: Statement | None = None
    accepted: Statement | None = None
    confirmed: Statement | None = None
    processed_votes: list[Vote] = field(default_factory=list)
    # Votes already relayed when gossip is on
    forwarded_votes: set[Vote] = field(default_factory=set)

    @property
    def public_key(self) -> PublicKey:
        return self.node.public_key

    @property
    def quorum_set(self) -> QuorumSet:
        return self.node.quorum_set

    def has_processed(self, vote: Vote) -> bool:
        return vote in self.processed_votes

    def voters_for(self, statement: Statement) -> set[PublicKey]:
        """Nodes known to have voted for or accepted ``statement``."""
        return {v.public_key for v in self.processed_votes if v.statement == statement}

    def accepters_of(self, statement: Statement) -> set[PublicKey]:
        """Nodes known to have accepted ``statement``."""
        return {
            v.public_key
            for v in self.processed_votes
            if v.statement == statement and v.is_accept
        }

    def known_statements(self) -> list[Statement]:
        """Statements seen so far, in first-seen order."""
        seen: list[Statement] = []
        for v in self.processed_votes:
            if v.statement not in seen:
                seen.append(v.statement)
        return seen

    def snapshot(self) -> NodeSnapshot:
        return NodeSnapshot(
            public_key=self.public_key,
            quorum_set=self.quorum_set,
            phase=self.phase,
            voted=self.voted,
            accepted=self.accepted,
            confirmed=self.confirmed,
            processed_votes=tuple(self.processed_votes),
        )

    def __repr__(self) -> str:
        value = self.confirmed or self.accepted or self.voted
        value_info = f", {value!r}" if value is not None else ""
        return f"FederatedVotingState({self.public_key}, {self.phase.value}{value_info})"


@dataclass(frozen=True)
class NodeSnapshot:
    """Immutable projection of a node's state for readers."""

    public_key: PublicKey
    quorum_set: QuorumSet
    phase: Phase
    voted: Statement | None
    accepted: Statement | None
    confirmed: Statement | None
    processed_votes: tuple[Vote, ...] = ()

    @property
    def trusted_nodes(self) -> tuple[PublicKey, ...]:
        """Every validator in the quorum set, inner sets included, sorted."""
        return tuple(sorted(all_validators(self.quorum_set)))

    @property
    def trust_threshold(self) -> int:
        return self.quorum_set.threshold
