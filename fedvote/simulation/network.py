"""
Overlay model for the federated-voting simulator.

Models which nodes can exchange messages directly. The overlay is either a
full mesh or an explicit set of undirected connections, optionally with
gossip (nodes relay votes they see for the first time).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .node import PublicKey


@dataclass(frozen=True)
class Connection:
    """An unordered pair of connected nodes.

    The pair is normalized so that node_a <= node_b alphabetically,
    ensuring consistent hashing and equality comparison.
    """

    node_a: PublicKey
    node_b: PublicKey

    def __post_init__(self) -> None:
        if self.node_a > self.node_b:
            a, b = self.node_a, self.node_b
            object.__setattr__(self, "node_a", b)
            object.__setattr__(self, "node_b", a)

    def contains(self, node: PublicKey) -> bool:
        """Check if this connection includes the given node."""
        return node == self.node_a or node == self.node_b

    def __repr__(self) -> str:
        return f"Connection({self.node_a!r}, {self.node_b!r})"


@dataclass
class Overlay:
    """Dynamic state of the overlay network during simulation.

    Attributes:
        fully_connected: Every node is connected to every other node;
            explicit connections are ignored.
        gossip_enabled: Nodes relay votes they see for the first time.
        connections: Explicit undirected connections (unused when fully
            connected).
    """

    fully_connected: bool = True
    gossip_enabled: bool = False
    connections: set[Connection] = field(default_factory=set)

    def add_connection(self, a: PublicKey, b: PublicKey) -> bool:
        """Record a connection. Returns False if nothing changed."""
        if self.fully_connected or a == b:
            return False
        pair = Connection(a, b)
        if pair in self.connections:
            return False
        self.connections.add(pair)
        return True

    def remove_connection(self, a: PublicKey, b: PublicKey) -> bool:
        """Drop a connection. Returns False if nothing changed."""
        if self.fully_connected:
            return False
        pair = Connection(a, b)
        if pair not in self.connections:
            return False
        self.connections.discard(pair)
        return True

    def remove_node(self, node: PublicKey) -> None:
        """Drop every connection touching ``node``."""
        self.connections = {c for c in self.connections if not c.contains(node)}

    def is_connected(self, a: PublicKey, b: PublicKey, nodes: set[PublicKey]) -> bool:
        """Check if two existing nodes share a direct connection."""
        if a == b or a not in nodes or b not in nodes:
            return False
        if self.fully_connected:
            return True
        return Connection(a, b) in self.connections

    def peers_of(self, node: PublicKey, nodes: list[PublicKey]) -> list[PublicKey]:
        """Directly connected peers of ``node``, in roster order."""
        roster = set(nodes)
        return [p for p in nodes if self.is_connected(node, p, roster)]

    def adjacency(self, nodes: list[PublicKey]) -> dict[PublicKey, list[PublicKey]]:
        """Peers of every node, keyed by public key."""
        return {n: self.peers_of(n, nodes) for n in nodes}

    def structure_hash(self, nodes: list[PublicKey]) -> str:
        """Order-independent description of the adjacency, for change detection."""
        adjacency = self.adjacency(sorted(nodes))
        return "|".join(
            f"{node}:[{','.join(sorted(peers))}]" for node, peers in adjacency.items()
        )

    def copy(self) -> Overlay:
        return Overlay(
            fully_connected=self.fully_connected,
            gossip_enabled=self.gossip_enabled,
            connections=set(self.connections),
        )

    def __repr__(self) -> str:
        if self.fully_connected:
            mode = "full mesh"
        else:
            mode = ", ".join(f"{c.node_a}<->{c.node_b}" for c in sorted(
                self.connections, key=lambda c: (c.node_a, c.node_b)
            )) or "no connections"
        gossip = ", gossip" if self.gossip_enabled else ""
        return f"Overlay({mode}{gossip})"
