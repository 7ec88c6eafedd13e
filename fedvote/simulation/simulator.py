"""
Step-driven simulation engine for the federated-voting simulator.

The simulation owns an ordered history of steps. Each step holds the user
and protocol actions that are executed next and the events that led to it.
Stepping forward executes the pending actions against the context; stepping
back resets the context and replays the recorded history, relying on the
context being deterministic.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field

from .actions import CONNECTION_ACTION_TYPES, ActionType, ProtocolAction, UserAction
from .context import Context, ContextSnapshot
from .events import Event
from .metrics import ConsensusSnapshot
from .node import Node, NodeSnapshot, PublicKey

logger = logging.getLogger("fedvote.simulation")


@dataclass
class SimulationStep:
    """One tick of simulation history.

    Attributes:
        user_actions: Operator actions to execute in this step.
        protocol_actions: Actions generated by the previous step.
        previous_events: Events produced by executing the previous step.
        previous_step_hash: Hash of the previous step's actions; a recorded
            step is only reused if the previous step still hashes to this.
    """

    user_actions: list[UserAction] = field(default_factory=list)
    protocol_actions: list[ProtocolAction] = field(default_factory=list)
    previous_events: list[Event] = field(default_factory=list)
    previous_step_hash: str = ""

    def has_pending_actions(self) -> bool:
        return bool(self.user_actions or self.protocol_actions)

    def __repr__(self) -> str:
        return (
            f"SimulationStep({len(self.user_actions)} user, "
            f"{len(self.protocol_actions)} protocol, "
            f"{len(self.previous_events)} events)"
        )


def calculate_step_hash(
    user_actions: list[UserAction], protocol_actions: list[ProtocolAction]
) -> str:
    """Hash a step's actions over their canonical string forms.

    User and protocol actions contribute their ``str()`` in order; protocol
    actions also contribute their content hash, so toggling disruption
    changes the step hash.
    """
    canonical = "|".join(
        [str(a) for a in user_actions] + [str(a) for a in protocol_actions]
    )
    canonical += "|".join(a.content_hash() for a in protocol_actions)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class Simulation:
    """Rewindable, replayable simulation over a context.

    Steps live in a list addressed by index; step ``i``'s previous step is
    ``i - 1`` and its next step is ``i + 1``. The step at index 0 is the
    fixed initial step.

    Args:
        context: The context to execute actions against. The simulation
            takes exclusive ownership of it.
        steps: Pre-recorded steps (e.g. from a scenario). Defaults to a
            single empty initial step.
    """

    def __init__(self, context: Context, steps: list[SimulationStep] | None = None):
        self.context = context
        self._steps: list[SimulationStep] = list(steps) if steps else [SimulationStep()]
        self._cursor = 0
        self.reused_steps = 0

    # -- step navigation -------------------------------------------------

    @property
    def initial_step(self) -> SimulationStep:
        return self._steps[0]

    @property
    def current_step(self) -> SimulationStep:
        return self._steps[self._cursor]

    @property
    def current_index(self) -> int:
        return self._cursor

    @property
    def steps(self) -> tuple[SimulationStep, ...]:
        """All recorded steps, including any ahead of the cursor."""
        return tuple(self._steps)

    def _next_index(self) -> int | None:
        return self._cursor + 1 if self._cursor + 1 < len(self._steps) else None

    def _previous_index(self) -> int | None:
        return self._cursor - 1 if self._cursor > 0 else None

    def has_next_step(self) -> bool:
        return self._next_index() is not None or self.current_step.has_pending_actions()

    def has_previous_step(self) -> bool:
        return self._previous_index() is not None

    # -- read API --------------------------------------------------------

    def pending_user_actions(self) -> list[UserAction]:
        return list(self.current_step.user_actions)

    def pending_protocol_actions(self) -> list[ProtocolAction]:
        return list(self.current_step.protocol_actions)

    def get_latest_events(self) -> list[Event]:
        return list(self.current_step.previous_events)

    def get_full_event_log(self) -> list[list[Event]]:
        """Events of every step up to and including the current one."""
        return [list(step.previous_events) for step in self._steps[: self._cursor + 1]]

    def get_disrupted_nodes(self) -> list[PublicKey]:
        """Nodes that had a protocol action disrupted, up to the current step."""
        disrupted: list[PublicKey] = []
        for step in self._steps[: self._cursor + 1]:
            for action in step.protocol_actions:
                if action.disrupted and action.public_key not in disrupted:
                    disrupted.append(action.public_key)
        return disrupted

    def node_snapshots(self) -> list[NodeSnapshot]:
        """Immutable node states at the current step."""
        return self.context.node_snapshots()

    def get_node_state(self, public_key: PublicKey) -> NodeSnapshot | None:
        return self.context.get_node_state(public_key)

    def get_state(self) -> ContextSnapshot:
        """Immutable view of nodes and overlay at the current step."""
        return self.context.get_state()

    def consensus(self) -> ConsensusSnapshot:
        return ConsensusSnapshot.from_states(
            self.node_snapshots(), has_next_step=self.has_next_step()
        )

    def is_stuck(self) -> bool:
        return self.consensus().is_stuck()

    # -- write API -------------------------------------------------------

    def load_initial_nodes(
        self,
        nodes: list[Node],
        connections: list[tuple[PublicKey, PublicKey]] | None = None,
    ) -> None:
        self.context.load_initial_nodes(nodes, connections)

    def add_user_action(self, action: UserAction) -> None:
        """Queue a user action in the current step.

        Only one action per type and node is kept per step; a newer one
        replaces the older in place. Connection actions are exempt since a
        node may change several connections at once.
        """
        pending = self.current_step.user_actions
        if action.action_type not in CONNECTION_ACTION_TYPES:
            for index, existing in enumerate(pending):
                if (
                    existing.action_type == action.action_type
                    and existing.public_key == action.public_key
                ):
                    pending[index] = action
                    return

        if action.immediate_execution:
            pending.insert(0, action)
        else:
            pending.append(action)

    def cancel_pending_user_action(self, action: UserAction) -> None:
        """Remove a pending user action by identity. No-op if absent."""
        pending = self.current_step.user_actions
        for index, existing in enumerate(pending):
            if existing is action:
                del pending[index]
                return

    def set_protocol_action_disrupted(
        self, action: ProtocolAction, disrupted: bool = True
    ) -> None:
        """Flag a pending protocol action (by identity) as disrupted."""
        for existing in self.current_step.protocol_actions:
            if existing is action:
                existing.disrupted = disrupted
                return

    def disrupt_pending_actions_for(
        self,
        public_key: PublicKey,
        action_type: ActionType | None = None,
    ) -> int:
        """Disrupt every pending protocol action attributed to a node.

        Args:
            public_key: Node whose actions are disrupted (sender of a
                SendMessage, receiver of a ReceiveMessage).
            action_type: If provided, only disrupt actions of this type.

        Returns:
            Number of actions flagged.
        """
        count = 0
        for action in self.current_step.protocol_actions:
            if action.public_key != public_key:
                continue
            if action_type is not None and action.action_type != action_type:
                continue
            action.disrupted = True
            count += 1
        return count

    def execute_step(self) -> None:
        """Execute the current step's pending actions and advance.

        If the recorded next step was produced by exactly these actions it is
        reused, so a pre-authored scenario replays as recorded. Otherwise any
        recorded steps ahead of the cursor are discarded and a new step is
        appended.
        """
        step = self.current_step
        step_hash = calculate_step_hash(step.user_actions, step.protocol_actions)
        new_actions = self.context.execute_actions(step.protocol_actions, step.user_actions)
        events = self.context.drain_events()

        next_index = self._next_index()
        if next_index is not None:
            if self._steps[next_index].previous_step_hash == step_hash:
                self._cursor = next_index
                self.reused_steps += 1
                logger.debug(f"Reused recorded step {next_index}")
                return
            logger.debug(
                f"Step {self._cursor} diverged from the recording; "
                f"discarding {len(self._steps) - next_index} recorded steps"
            )
            del self._steps[next_index:]

        self._steps.append(
            SimulationStep(
                protocol_actions=new_actions,
                previous_events=events,
                previous_step_hash=step_hash,
            )
        )
        self._cursor = len(self._steps) - 1
        logger.debug(
            f"Executed step {self._cursor - 1}: {len(events)} events, "
            f"{len(new_actions)} new protocol actions"
        )

    def run_until_settled(self, max_steps: int = 1000) -> int:
        """Execute steps until there is nothing left to run.

        Args:
            max_steps: Safety cap on the number of steps.

        Returns:
            Number of steps executed.
        """
        executed = 0
        while executed < max_steps and self.has_next_step():
            self.execute_step()
            executed += 1
        return executed

    def go_back_one_step(self) -> None:
        """Move to the previous step, rebuilding context state by replay."""
        previous_index = self._previous_index()
        if previous_index is None:
            return
        self._cursor = previous_index
        self._replay_state()

    def go_to_first_step(self) -> None:
        self._cursor = 0
        self.context.reset()
        self.context.drain_events()

    def _replay_state(self) -> None:
        """Reset the context and re-execute every step before the cursor."""
        self.context.reset()
        for step in self._steps[: self._cursor]:
            self.context.execute_actions(step.protocol_actions, step.user_actions)
            # Generated actions and events are already recorded in the next step
            self.context.drain_events()
        self.context.drain_events()

    def __repr__(self) -> str:
        return (
            f"Simulation(step {self._cursor}/{len(self._steps) - 1}, "
            f"{len(self.current_step.user_actions)} pending user actions)"
        )
