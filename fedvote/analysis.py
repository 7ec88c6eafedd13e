"""
Quorum structure analysis for federated Byzantine agreement systems.

Given each node's quorum slices, computes quorums, minimal quorums,
dispensable sets (D-Sets), top-tier nodes and whether the network enjoys
quorum intersection.

All searches are exhaustive over subsets of the node set, O(2^n) for quorums
and O(3^n) for D-Sets. Node sets are encoded as bits of an int64 so that all
candidate subsets of a universe can be checked at once with numpy. This is
only meant for analysis-scale networks; the node count is bounded and results
are cached on the structure of the network (see ``NetworkAnalysisCache``).

Definitions, for nodes V and slices Q(v):

* A quorum is a non-empty U ⊆ V such that every v in U has a slice in U.
* B ⊆ V is a D-Set if V \\ B is a quorum (or B = V), and deleting B from
  every slice leaves a system in which every two quorums intersect.
* A node is intact for a set of ill-behaved nodes if it lies outside the
  smallest D-Set that contains them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Protocol

import numpy as np

from .simulation.node import PublicKey
from .simulation.quorum_set import ConfigurationError, QuorumSet, quorum_slices

logger = logging.getLogger("fedvote.analysis")

DEFAULT_MAX_NODES = 12


class HasQuorumSet(Protocol):
    """Anything with a public key and a quorum set (Node, NodeSnapshot)."""

    public_key: PublicKey
    quorum_set: QuorumSet


def build_quorum_slices(nodes: Iterable[HasQuorumSet]) -> dict[PublicKey, list[frozenset[PublicKey]]]:
    """Slices of every node: each minimal slice of its quorum set, plus itself."""
    slices: dict[PublicKey, list[frozenset[PublicKey]]] = {}
    for node in nodes:
        node_slices: list[frozenset[PublicKey]] = []
        for s in quorum_slices(node.quorum_set):
            with_self = s | {node.public_key}
            if with_self not in node_slices:
                node_slices.append(with_self)
        slices[node.public_key] = node_slices
    return slices


def network_structure_hash(nodes: Iterable[HasQuorumSet]) -> str:
    """Order-independent description of who trusts whom.

    One ``public_key:threshold:[sorted trusted]`` entry per node, sorted by
    public key. Analysis results only depend on this.
    """
    entries = sorted(f"{n.public_key}:{n.quorum_set.canonical()}" for n in nodes)
    return "|".join(entries)


def _popcount(mask: int) -> int:
    return bin(mask).count("1")


class _BitmaskSystem:
    """Nodes and slices encoded as int64 bitmasks."""

    def __init__(self, slices: dict[PublicKey, list[frozenset[PublicKey]]]):
        self.node_ids: list[PublicKey] = sorted(slices)
        self.index = {key: i for i, key in enumerate(self.node_ids)}
        self.n = len(self.node_ids)
        self.full = (1 << self.n) - 1
        self.all_masks = np.arange(1, 1 << self.n, dtype=np.int64)

        # Slices naming unknown nodes can never be satisfied, so drop them
        self.slice_masks: list[np.ndarray] = []
        for key in self.node_ids:
            masks = [
                self.mask_of(s) for s in slices[key] if all(m in self.index for m in s)
            ]
            self.slice_masks.append(np.array(masks, dtype=np.int64))

    def mask_of(self, keys: Iterable[PublicKey]) -> int:
        mask = 0
        for key in keys:
            mask |= 1 << self.index[key]
        return mask

    def keys_of(self, mask: int) -> frozenset[PublicKey]:
        return frozenset(key for i, key in enumerate(self.node_ids) if (mask >> i) & 1)

    def quorum_masks(self, universe: int | None = None, deleted: int = 0) -> np.ndarray:
        """All quorums within ``universe``.

        Args:
            universe: Nodes that may be members. Defaults to every node.
            deleted: Nodes removed from every slice; a slice counts as
                satisfied if everything outside ``deleted`` is in the
                candidate.

        Returns:
            Quorum masks in ascending order.
        """
        if universe is None:
            universe = self.full
        candidates = self.all_masks
        if universe != self.full:
            candidates = candidates[(candidates & ~universe) == 0]
        if candidates.size == 0:
            return candidates

        uncovered = ~(candidates | deleted)
        is_quorum = np.ones(candidates.size, dtype=bool)
        for i in range(self.n):
            if not (universe >> i) & 1:
                continue
            member = ((candidates >> i) & 1).astype(bool)
            masks = self.slice_masks[i]
            if masks.size == 0:
                satisfied = np.zeros(candidates.size, dtype=bool)
            else:
                satisfied = ((masks[:, None] & uncovered[None, :]) == 0).any(axis=0)
            is_quorum &= ~member | satisfied
        return candidates[is_quorum]


def _minimal_masks(masks: np.ndarray) -> np.ndarray:
    """Masks with no other mask in the array as a proper subset."""
    if masks.size == 0:
        return masks
    # (masks & q) == masks marks the subsets of q, q itself included
    keep = [q for q in masks if np.count_nonzero((masks & q) == masks) == 1]
    return np.array(keep, dtype=np.int64)


def _all_intersect(masks: np.ndarray) -> bool:
    """Every pair of masks shares at least one node."""
    if masks.size < 2:
        return True
    return not bool(np.any((masks[:, None] & masks[None, :]) == 0))


def _sorted_sets(system: _BitmaskSystem, masks: Iterable[int]) -> list[frozenset[PublicKey]]:
    ordered = sorted((int(m) for m in masks), key=lambda m: (_popcount(m), m))
    return [system.keys_of(m) for m in ordered]


def find_quorums(slices: dict[PublicKey, list[frozenset[PublicKey]]]) -> list[frozenset[PublicKey]]:
    """All quorums, smallest first."""
    system = _BitmaskSystem(slices)
    return _sorted_sets(system, system.quorum_masks())


def find_minimal_quorums(quorums: list[frozenset[PublicKey]]) -> list[frozenset[PublicKey]]:
    """Quorums that have no other quorum as a proper subset."""
    return [q for q in quorums if not any(other < q for other in quorums)]


def find_d_sets(slices: dict[PublicKey, list[frozenset[PublicKey]]]) -> list[frozenset[PublicKey]]:
    """All dispensable sets, smallest first. The full node set is always one."""
    system = _BitmaskSystem(slices)
    return _sorted_sets(system, _d_set_masks(system, system.quorum_masks()))


def _d_set_masks(system: _BitmaskSystem, quorum_masks: np.ndarray) -> list[int]:
    quorum_lookup = {int(q) for q in quorum_masks}
    d_sets: list[int] = []
    for b in range(system.full + 1):
        if b == system.full:
            d_sets.append(b)
            continue
        remaining = system.full & ~b
        if remaining not in quorum_lookup:
            continue
        deleted_quorums = system.quorum_masks(universe=remaining, deleted=b)
        if _all_intersect(_minimal_masks(deleted_quorums)):
            d_sets.append(b)
    return d_sets


def find_intact_nodes(
    nodes: Iterable[PublicKey],
    ill_behaved: Iterable[PublicKey],
    d_sets: list[frozenset[PublicKey]],
) -> frozenset[PublicKey]:
    """Nodes outside every D-Set that contains all ill-behaved nodes."""
    all_nodes = frozenset(nodes)
    ill = frozenset(ill_behaved) & all_nodes
    covering = [d for d in d_sets if ill <= d]
    if not covering:
        return frozenset()
    befouled = frozenset.intersection(*covering)
    return all_nodes - befouled


@dataclass(frozen=True)
class NetworkAnalysis:
    """Immutable analysis snapshot of a network's quorum structure.

    Use ``NetworkAnalysis.analyze(nodes)`` to create an instance.

    Attributes:
        node_ids: Analyzed nodes, sorted.
        quorum_slices: For each node, its slices (each includes the node).
        quorums: All quorums, smallest first.
        minimal_quorums: Quorums with no proper subset that is a quorum.
        d_sets: All dispensable sets, smallest first.
        top_tier_nodes: Nodes that appear in at least one minimal quorum.
        has_quorum_intersection: Every two minimal quorums intersect.
    """

    node_ids: tuple[PublicKey, ...]
    quorum_slices: dict[PublicKey, list[frozenset[PublicKey]]]
    quorums: tuple[frozenset[PublicKey], ...]
    minimal_quorums: tuple[frozenset[PublicKey], ...]
    d_sets: tuple[frozenset[PublicKey], ...]
    top_tier_nodes: frozenset[PublicKey] = field(default_factory=frozenset)
    has_quorum_intersection: bool = True

    @classmethod
    def analyze(
        cls, nodes: Iterable[HasQuorumSet], max_nodes: int = DEFAULT_MAX_NODES
    ) -> NetworkAnalysis:
        """Run the full exhaustive analysis.

        Args:
            nodes: Nodes with their quorum sets.
            max_nodes: Refuse networks larger than this.

        Raises:
            ConfigurationError: If the network exceeds ``max_nodes``.
        """
        nodes = list(nodes)
        if len(nodes) > max_nodes:
            raise ConfigurationError(
                f"network of {len(nodes)} nodes exceeds the analysis limit of {max_nodes}"
            )

        slices = build_quorum_slices(nodes)
        system = _BitmaskSystem(slices)
        quorum_masks = system.quorum_masks()
        minimal_masks = _minimal_masks(quorum_masks)
        minimal_quorums = _sorted_sets(system, minimal_masks)

        top_tier: set[PublicKey] = set()
        for quorum in minimal_quorums:
            top_tier |= quorum

        return cls(
            node_ids=tuple(system.node_ids),
            quorum_slices=slices,
            quorums=tuple(_sorted_sets(system, quorum_masks)),
            minimal_quorums=tuple(minimal_quorums),
            d_sets=tuple(_sorted_sets(system, _d_set_masks(system, quorum_masks))),
            top_tier_nodes=frozenset(top_tier),
            has_quorum_intersection=_all_intersect(minimal_masks),
        )

    @property
    def minimal_quorum_intersections(self) -> list[frozenset[PublicKey]]:
        """Minimal pairwise intersections of distinct minimal quorums.

        Only needed for display; ``has_quorum_intersection`` does not use it.
        """
        intersections: list[frozenset[PublicKey]] = []
        quorums = self.minimal_quorums
        for i, first in enumerate(quorums):
            for second in quorums[i + 1:]:
                common = first & second
                if common not in intersections:
                    intersections.append(common)
        return [s for s in intersections if not any(other < s for other in intersections)]

    def intact_nodes(self, ill_behaved: Iterable[PublicKey]) -> frozenset[PublicKey]:
        return find_intact_nodes(self.node_ids, ill_behaved, list(self.d_sets))

    def befouled_nodes(self, ill_behaved: Iterable[PublicKey]) -> frozenset[PublicKey]:
        return frozenset(self.node_ids) - self.intact_nodes(ill_behaved)

    def __repr__(self) -> str:
        return (
            f"NetworkAnalysis({len(self.node_ids)} nodes, "
            f"{len(self.quorums)} quorums, {len(self.minimal_quorums)} minimal, "
            f"{len(self.d_sets)} d-sets, intersection={self.has_quorum_intersection})"
        )


class NetworkAnalysisCache:
    """Keeps the latest analysis and recomputes it only on structural change.

    Args:
        max_nodes: Passed on to ``NetworkAnalysis.analyze``.

    Attributes:
        computations: Number of times the analysis actually ran.
    """

    def __init__(self, max_nodes: int = DEFAULT_MAX_NODES):
        self.max_nodes = max_nodes
        self.computations = 0
        self._structure_hash: str | None = None
        self._analysis: NetworkAnalysis | None = None

    def get(self, nodes: Iterable[HasQuorumSet]) -> NetworkAnalysis:
        nodes = list(nodes)
        structure_hash = network_structure_hash(nodes)
        if self._analysis is None or structure_hash != self._structure_hash:
            self._analysis = NetworkAnalysis.analyze(nodes, max_nodes=self.max_nodes)
            self._structure_hash = structure_hash
            self.computations += 1
            logger.info(f"Recomputed network analysis: {self._analysis!r}")
        return self._analysis

    @property
    def structure_hash(self) -> str | None:
        return self._structure_hash

    def invalidate(self) -> None:
        self._structure_hash = None
        self._analysis = None
