"""
Consensus outcome metrics for the federated-voting simulator.

Summarizes what the current node states mean for the network as a whole:
did every node confirm the same statement, did the network split, or is it
stuck with nothing left to execute.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from .node import NodeSnapshot, Phase, Statement


@dataclass(frozen=True)
class ConsensusSnapshot:
    """Immutable summary of the network's agreement state.

    Attributes:
        node_count: Number of nodes in the roster.
        confirmed_counts: Confirmed statement -> number of nodes confirming it.
        phase_counts: Phase value -> number of nodes in that phase.
        has_next_step: Whether the simulation can still make progress.
    """

    node_count: int
    confirmed_counts: dict[Statement, int] = field(default_factory=dict)
    phase_counts: dict[str, int] = field(default_factory=dict)
    has_next_step: bool = False

    @classmethod
    def from_states(
        cls, states: list[NodeSnapshot], has_next_step: bool = False
    ) -> ConsensusSnapshot:
        """Build a snapshot from node states.

        Args:
            states: Current node snapshots.
            has_next_step: Whether the simulation has anything left to run.
        """
        confirmed = Counter(s.confirmed for s in states if s.confirmed is not None)
        phases = Counter(s.phase.value for s in states)
        return cls(
            node_count=len(states),
            confirmed_counts=dict(confirmed),
            phase_counts={p.value: phases.get(p.value, 0) for p in Phase},
            has_next_step=has_next_step,
        )

    @property
    def num_confirmed(self) -> int:
        return sum(self.confirmed_counts.values())

    def consensus_reached(self) -> bool:
        """Every node confirmed, and all on the same statement."""
        return (
            self.node_count > 0
            and self.num_confirmed == self.node_count
            and len(self.confirmed_counts) == 1
        )

    def is_network_split(self) -> bool:
        """More than one statement has been confirmed."""
        return len(self.confirmed_counts) > 1

    def is_stuck(self) -> bool:
        """Nothing left to execute, yet no consensus."""
        return not self.has_next_step and not self.consensus_reached()

    def __repr__(self) -> str:
        if self.consensus_reached():
            status = "consensus"
        elif self.is_network_split():
            status = "split"
        elif self.is_stuck():
            status = "stuck"
        else:
            status = "in_progress"
        return (
            f"ConsensusSnapshot({status}, "
            f"{self.num_confirmed}/{self.node_count} confirmed)"
        )
