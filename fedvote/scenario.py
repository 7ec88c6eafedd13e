"""
Scenarios for the federated-voting simulator.

A scenario is a named, recorded simulation: the starting roster and overlay
plus the full step chain. Loading a scenario gives a simulation positioned
at the initial step; executing steps without changing the pending actions
replays the recording exactly, while any change branches off it.

Scenarios are stored as YAML documents.
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import SimulationSettings
from .simulation.actions import (
    VoteOnStatement,
    protocol_action_from_dict,
    user_action_from_dict,
)
from .simulation.context import Context
from .simulation.events import Event, EventType
from .simulation.node import Node, PublicKey
from .simulation.quorum_set import QuorumSet
from .simulation.simulator import Simulation, SimulationStep

logger = logging.getLogger("fedvote.scenario")

FORMAT_VERSION = 1


@dataclass
class Scenario:
    """A named, replayable simulation recording.

    Attributes:
        id: Unique identifier.
        name: Human-readable name.
        description: What the scenario demonstrates.
        is_overlay_fully_connected: Overlay mode of the recording.
        is_overlay_gossip_enabled: Whether nodes relay votes.
        initial_nodes: Roster before the first step.
        initial_connections: Overlay connections before the first step.
        steps: Recorded step chain; ``steps[0]`` is the initial step.
    """

    id: str
    name: str
    description: str = ""
    is_overlay_fully_connected: bool = True
    is_overlay_gossip_enabled: bool = False
    initial_nodes: list[Node] = field(default_factory=list)
    initial_connections: list[tuple[PublicKey, PublicKey]] = field(default_factory=list)
    steps: list[SimulationStep] = field(default_factory=lambda: [SimulationStep()])

    @classmethod
    def from_simulation(
        cls, simulation: Simulation, id: str, name: str, description: str = ""
    ) -> Scenario:
        """Record a simulation's full history as a scenario."""
        context = simulation.context
        return cls(
            id=id,
            name=name,
            description=description,
            is_overlay_fully_connected=context.overlay_fully_connected,
            is_overlay_gossip_enabled=context.overlay_gossip_enabled,
            initial_nodes=context.initial_nodes,
            initial_connections=context.initial_connections,
            steps=copy.deepcopy(list(simulation.steps)),
        )

    def with_overlay(
        self,
        fully_connected: bool | None = None,
        gossip_enabled: bool | None = None,
    ) -> Scenario:
        """Copy of this scenario with different overlay flags."""
        return Scenario(
            id=self.id,
            name=self.name,
            description=self.description,
            is_overlay_fully_connected=(
                self.is_overlay_fully_connected if fully_connected is None else fully_connected
            ),
            is_overlay_gossip_enabled=(
                self.is_overlay_gossip_enabled if gossip_enabled is None else gossip_enabled
            ),
            initial_nodes=list(self.initial_nodes),
            initial_connections=list(self.initial_connections),
            steps=copy.deepcopy(self.steps),
        )


class ScenarioSerializer:
    """Converts scenarios to and from plain data and YAML."""

    def to_dict(self, scenario: Scenario) -> dict[str, Any]:
        return {
            "version": FORMAT_VERSION,
            "id": scenario.id,
            "name": scenario.name,
            "description": scenario.description,
            "is_overlay_fully_connected": scenario.is_overlay_fully_connected,
            "is_overlay_gossip_enabled": scenario.is_overlay_gossip_enabled,
            "initial_nodes": [n.to_dict() for n in scenario.initial_nodes],
            "initial_connections": [[a, b] for a, b in scenario.initial_connections],
            "steps": [self._step_to_dict(step) for step in scenario.steps],
        }

    def from_dict(self, data: dict[str, Any]) -> Scenario:
        version = data.get("version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise ValueError(f"Unsupported scenario format version {version}")
        steps = [self._step_from_dict(s) for s in data.get("steps", [])]
        return Scenario(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            is_overlay_fully_connected=bool(data.get("is_overlay_fully_connected", True)),
            is_overlay_gossip_enabled=bool(data.get("is_overlay_gossip_enabled", False)),
            initial_nodes=[Node.from_dict(n) for n in data.get("initial_nodes", [])],
            initial_connections=[(a, b) for a, b in data.get("initial_connections", [])],
            steps=steps or [SimulationStep()],
        )

    def dumps(self, scenario: Scenario) -> str:
        return yaml.safe_dump(self.to_dict(scenario), sort_keys=False)

    def loads(self, text: str) -> Scenario:
        return self.from_dict(yaml.safe_load(text) or {})

    def dump(self, scenario: Scenario, path: str | os.PathLike) -> Path:
        resolved = Path(path)
        with resolved.open("w", encoding="utf-8") as handle:
            handle.write(self.dumps(scenario))
        logger.info(f"Saved scenario {scenario.id!r} ({len(scenario.steps)} steps) to {resolved}")
        return resolved

    def load(self, path: str | os.PathLike) -> Scenario:
        with Path(path).open("r", encoding="utf-8") as handle:
            return self.loads(handle.read())

    @staticmethod
    def _step_to_dict(step: SimulationStep) -> dict[str, Any]:
        return {
            "user_actions": [a.to_dict() for a in step.user_actions],
            "protocol_actions": [a.to_dict() for a in step.protocol_actions],
            "previous_events": [
                {
                    "type": e.event_type.value,
                    "target_id": e.target_id,
                    "metadata": dict(e.metadata),
                }
                for e in step.previous_events
            ],
            "previous_step_hash": step.previous_step_hash,
        }

    @staticmethod
    def _step_from_dict(data: dict[str, Any]) -> SimulationStep:
        return SimulationStep(
            user_actions=[user_action_from_dict(a) for a in data.get("user_actions", [])],
            protocol_actions=[
                protocol_action_from_dict(a) for a in data.get("protocol_actions", [])
            ],
            previous_events=[
                Event(EventType(e["type"]), e["target_id"], dict(e.get("metadata", {})))
                for e in data.get("previous_events", [])
            ],
            previous_step_hash=data.get("previous_step_hash", ""),
        )


def new_simulation(
    settings: SimulationSettings | None = None,
    initial_nodes: list[Node] | None = None,
    initial_connections: list[tuple[PublicKey, PublicKey]] | None = None,
) -> Simulation:
    """Create an empty simulation with overlay defaults from settings."""
    settings = settings or SimulationSettings()
    context = Context(
        overlay_fully_connected=settings.overlay_fully_connected,
        overlay_gossip_enabled=settings.overlay_gossip_enabled,
        initial_nodes=initial_nodes,
        initial_connections=initial_connections,
    )
    return Simulation(context)


class ScenarioLoader:
    """Builds a context and simulation positioned at a scenario's first step."""

    def load(self, scenario: Scenario) -> Simulation:
        context = Context(
            overlay_fully_connected=scenario.is_overlay_fully_connected,
            overlay_gossip_enabled=scenario.is_overlay_gossip_enabled,
            initial_nodes=scenario.initial_nodes,
            initial_connections=scenario.initial_connections,
        )
        simulation = Simulation(context, steps=copy.deepcopy(scenario.steps))
        logger.info(f"Loaded scenario {scenario.id!r} with {len(scenario.steps)} steps")
        return simulation


def _symmetric_nodes(keys: list[str], threshold: int) -> list[Node]:
    """Nodes that all trust the full roster with the same threshold."""
    return [Node(k, QuorumSet(threshold, tuple(keys))) for k in keys]


def _record(
    scenario_id: str,
    name: str,
    description: str,
    nodes: list[Node],
    votes: dict[PublicKey, str],
    max_steps: int,
) -> Scenario:
    simulation = new_simulation(initial_nodes=nodes)
    for public_key, statement in votes.items():
        simulation.add_user_action(VoteOnStatement(public_key, statement))
    simulation.run_until_settled(max_steps=max_steps)
    simulation.go_to_first_step()
    return Scenario.from_simulation(simulation, scenario_id, name, description)


class ScenarioFactory:
    """Built-in demonstration scenarios."""

    @staticmethod
    def basic_consensus(max_steps: int = 1000) -> Scenario:
        keys = ["A", "B", "C"]
        return _record(
            "basic-consensus",
            "Basic consensus",
            "Three nodes trusting each other 2-of-3 all vote x and confirm it.",
            _symmetric_nodes(keys, 2),
            {k: "x" for k in keys},
            max_steps,
        )

    @staticmethod
    def stuck(max_steps: int = 1000) -> Scenario:
        keys = ["A", "B", "C"]
        return _record(
            "stuck",
            "Stuck",
            "Every node votes a different statement, so no slice agrees on anything.",
            _symmetric_nodes(keys, 2),
            {"A": "x", "B": "y", "C": "z"},
            max_steps,
        )

    @staticmethod
    def network_split(max_steps: int = 1000) -> Scenario:
        nodes = _symmetric_nodes(["A", "B"], 2) + _symmetric_nodes(["C", "D"], 2)
        return _record(
            "network-split",
            "Network split",
            "Two groups without quorum intersection confirm different statements.",
            nodes,
            {"A": "x", "B": "x", "C": "y", "D": "y"},
            max_steps,
        )

    @classmethod
    def all(cls) -> list[Scenario]:
        return [cls.basic_consensus(), cls.stuck(), cls.network_split()]
