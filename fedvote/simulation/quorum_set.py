"""
Quorum set model for the federated-voting simulator.

A quorum set describes which nodes a node trusts: a threshold over a list of
validators and nested inner quorum sets. All operations here are pure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations


class ConfigurationError(ValueError):
    """Raised when a trust configuration cannot be satisfied as written."""


@dataclass(frozen=True)
class QuorumSet:
    """A (possibly nested) trust configuration.

    Attributes:
        threshold: Number of members (validators plus inner sets) that must
            agree for this set to be satisfied.
        validators: Ordered, duplicate-free validator public keys.
        inner_quorum_sets: Nested quorum sets, each counting as one member.

    A quorum set without any members is allowed as a degenerate leaf; it can
    never be satisfied.
    """

    threshold: int
    validators: tuple[str, ...] = ()
    inner_quorum_sets: tuple[QuorumSet, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept lists from callers, store tuples so the set stays hashable
        object.__setattr__(self, "validators", tuple(self.validators))
        object.__setattr__(self, "inner_quorum_sets", tuple(self.inner_quorum_sets))

        if self.threshold < 1:
            raise ConfigurationError(f"threshold must be >= 1, got {self.threshold}")

        if len(set(self.validators)) != len(self.validators):
            raise ConfigurationError(f"duplicate validators in {list(self.validators)}")

        members = self.member_count
        if members > 0 and self.threshold > members:
            raise ConfigurationError(
                f"threshold {self.threshold} exceeds the {members} available members"
            )

    @property
    def member_count(self) -> int:
        """Validators plus inner quorum sets."""
        return len(self.validators) + len(self.inner_quorum_sets)

    def is_empty(self) -> bool:
        return self.member_count == 0

    def canonical(self) -> str:
        """Order-independent string form, used for structural hashing."""
        inner = ",".join(sorted(q.canonical() for q in self.inner_quorum_sets))
        validators = ",".join(sorted(self.validators))
        if inner:
            return f"{self.threshold}:[{validators}]({inner})"
        return f"{self.threshold}:[{validators}]"

    def to_dict(self) -> dict:
        return {
            "threshold": self.threshold,
            "validators": list(self.validators),
            "inner_quorum_sets": [q.to_dict() for q in self.inner_quorum_sets],
        }

    @classmethod
    def from_dict(cls, data: dict) -> QuorumSet:
        return cls(
            threshold=int(data["threshold"]),
            validators=tuple(data.get("validators", ())),
            inner_quorum_sets=tuple(
                cls.from_dict(inner) for inner in data.get("inner_quorum_sets", ())
            ),
        )

    def __str__(self) -> str:
        return self.canonical()


def is_slice(quorum_set: QuorumSet, candidates: set[str] | frozenset[str]) -> bool:
    """Check whether ``candidates`` satisfies the quorum set.

    Counts the validators present in ``candidates`` plus the inner quorum
    sets recursively satisfied by it, and compares against the threshold.

    Args:
        quorum_set: Trust configuration to evaluate.
        candidates: Node public keys that agree.

    Returns:
        True if the candidate set contains a slice of the quorum set.
    """
    satisfied = sum(1 for v in quorum_set.validators if v in candidates)
    if satisfied >= quorum_set.threshold:
        return True
    for inner in quorum_set.inner_quorum_sets:
        if is_slice(inner, candidates):
            satisfied += 1
            if satisfied >= quorum_set.threshold:
                return True
    return False


def is_blocking(quorum_set: QuorumSet, nodes: set[str] | frozenset[str]) -> bool:
    """Check whether ``nodes`` is v-blocking for the quorum set.

    A set is v-blocking when it intersects every slice, i.e. the members
    left outside it can no longer reach the threshold. The degenerate empty
    quorum set is never blocked: there is no slice to block. Empty inner sets
    count as blocked, since no slice can go through them.
    """
    if quorum_set.is_empty():
        return False
    remaining = sum(1 for v in quorum_set.validators if v not in nodes)
    # An empty inner set can never be satisfied, so it is blocked already
    remaining += sum(
        1
        for inner in quorum_set.inner_quorum_sets
        if not inner.is_empty() and not is_blocking(inner, nodes)
    )
    return remaining < quorum_set.threshold


def all_validators(quorum_set: QuorumSet) -> set[str]:
    """Return every validator reachable through the nested structure."""
    validators = set(quorum_set.validators)
    for inner in quorum_set.inner_quorum_sets:
        validators |= all_validators(inner)
    return validators


def quorum_slices(quorum_set: QuorumSet) -> list[frozenset[str]]:
    """Enumerate the minimal slices of a quorum set.

    Each slice picks exactly ``threshold`` members; an inner set member is
    replaced by each of its own slices in turn. Supersets of these slices are
    implied and not listed.

    Returns:
        Deduplicated slices, in generation order.
    """
    if quorum_set.is_empty():
        return []

    # Each member expands to the list of node sets that satisfy it
    member_options: list[list[frozenset[str]]] = [
        [frozenset((v,))] for v in quorum_set.validators
    ]
    for inner in quorum_set.inner_quorum_sets:
        inner_slices = quorum_slices(inner)
        if inner_slices:
            member_options.append(inner_slices)

    result: list[frozenset[str]] = []
    seen: set[frozenset[str]] = set()
    for chosen in combinations(member_options, quorum_set.threshold):
        partials = [frozenset()]
        for options in chosen:
            partials = [p | option for p in partials for option in options]
        for candidate in partials:
            if candidate not in seen:
                seen.add(candidate)
                result.append(candidate)
    return result
