"""
Action model for the federated-voting simulator.

User actions are queued by an operator and may be canceled before a step
executes. Protocol actions are generated by the context while executing a
step and carried over to the next one. Both are closed sets of variants
tagged by ``ActionType``; the context dispatches on the tag.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from .node import Message, PublicKey, Statement
from .quorum_set import QuorumSet


class ActionType(Enum):
    """Every action variant the simulation knows how to execute."""

    # User actions
    ADD_NODE = "AddNode"
    REMOVE_NODE = "RemoveNode"
    UPDATE_QUORUM_SET = "UpdateQuorumSet"
    VOTE_ON_STATEMENT = "VoteOnStatement"
    ADD_CONNECTION = "AddConnection"
    REMOVE_CONNECTION = "RemoveConnection"
    FORGE_MESSAGE = "ForgeMessage"

    # Protocol actions
    SEND_MESSAGE = "SendMessage"
    RECEIVE_MESSAGE = "ReceiveMessage"


# Several of these may be pending for the same node in one step
CONNECTION_ACTION_TYPES = frozenset({ActionType.ADD_CONNECTION, ActionType.REMOVE_CONNECTION})


class UserAction(ABC):
    """Base class for operator-issued actions.

    Subclasses are frozen dataclasses. ``immediate_execution`` actions are
    moved to the front of the pending list so previews see them first.
    """

    action_type: ClassVar[ActionType]
    immediate_execution: ClassVar[bool] = False

    @property
    @abstractmethod
    def public_key(self) -> PublicKey:
        """Node the action is attributed to."""

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Plain-data form for scenario files."""


@dataclass(frozen=True)
class AddNode(UserAction):
    action_type: ClassVar[ActionType] = ActionType.ADD_NODE
    immediate_execution: ClassVar[bool] = True

    node_key: PublicKey
    quorum_set: QuorumSet

    @property
    def public_key(self) -> PublicKey:
        return self.node_key

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.action_type.value,
            "public_key": self.node_key,
            "quorum_set": self.quorum_set.to_dict(),
        }

    def __str__(self) -> str:
        return f"Add node {self.node_key} with quorum set {self.quorum_set}"


@dataclass(frozen=True)
class RemoveNode(UserAction):
    action_type: ClassVar[ActionType] = ActionType.REMOVE_NODE
    immediate_execution: ClassVar[bool] = True

    node_key: PublicKey

    @property
    def public_key(self) -> PublicKey:
        return self.node_key

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.action_type.value, "public_key": self.node_key}

    def __str__(self) -> str:
        return f"Remove node {self.node_key}"


@dataclass(frozen=True)
class UpdateQuorumSet(UserAction):
    action_type: ClassVar[ActionType] = ActionType.UPDATE_QUORUM_SET
    immediate_execution: ClassVar[bool] = True

    node_key: PublicKey
    quorum_set: QuorumSet

    @property
    def public_key(self) -> PublicKey:
        return self.node_key

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.action_type.value,
            "public_key": self.node_key,
            "quorum_set": self.quorum_set.to_dict(),
        }

    def __str__(self) -> str:
        return f"Update quorum set of {self.node_key} to {self.quorum_set}"


@dataclass(frozen=True)
class VoteOnStatement(UserAction):
    action_type: ClassVar[ActionType] = ActionType.VOTE_ON_STATEMENT

    node_key: PublicKey
    statement: Statement

    @property
    def public_key(self) -> PublicKey:
        return self.node_key

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.action_type.value,
            "public_key": self.node_key,
            "statement": self.statement,
        }

    def __str__(self) -> str:
        return f"{self.node_key} votes on {self.statement}"


@dataclass(frozen=True)
class AddConnection(UserAction):
    action_type: ClassVar[ActionType] = ActionType.ADD_CONNECTION
    immediate_execution: ClassVar[bool] = True

    a: PublicKey
    b: PublicKey

    @property
    def public_key(self) -> PublicKey:
        return self.a

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.action_type.value, "a": self.a, "b": self.b}

    def __str__(self) -> str:
        return f"Connect {self.a} and {self.b}"


@dataclass(frozen=True)
class RemoveConnection(UserAction):
    action_type: ClassVar[ActionType] = ActionType.REMOVE_CONNECTION
    immediate_execution: ClassVar[bool] = True

    a: PublicKey
    b: PublicKey

    @property
    def public_key(self) -> PublicKey:
        return self.a

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.action_type.value, "a": self.a, "b": self.b}

    def __str__(self) -> str:
        return f"Disconnect {self.a} and {self.b}"


@dataclass(frozen=True)
class ForgeMessage(UserAction):
    """Inject a message whose vote the sender never cast."""

    action_type: ClassVar[ActionType] = ActionType.FORGE_MESSAGE

    message: Message

    @property
    def public_key(self) -> PublicKey:
        return self.message.sender

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.action_type.value, "message": self.message.to_dict()}

    def __str__(self) -> str:
        return f"Forge message {self.message}"


class ProtocolAction(ABC):
    """Base class for engine-generated actions.

    Protocol actions are not cancelable, but while pending they can be
    flagged ``disrupted`` to model a Byzantine node at ``public_key``.
    """

    action_type: ClassVar[ActionType]
    message: Message
    disrupted: bool

    @property
    @abstractmethod
    def public_key(self) -> PublicKey:
        """Node the action is attributed to."""

    def content_hash(self) -> str:
        """Content fingerprint, including the disruption flag."""
        return f"{self.action_type.value}{self.message}{self.public_key}{self.disrupted}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.action_type.value,
            "message": self.message.to_dict(),
            "disrupted": self.disrupted,
        }


@dataclass
class SendMessage(ProtocolAction):
    action_type: ClassVar[ActionType] = ActionType.SEND_MESSAGE

    message: Message
    disrupted: bool = False

    @property
    def public_key(self) -> PublicKey:
        return self.message.sender

    def __str__(self) -> str:
        return f"[SendMessage] {self.message}"


@dataclass
class ReceiveMessage(ProtocolAction):
    action_type: ClassVar[ActionType] = ActionType.RECEIVE_MESSAGE

    message: Message
    disrupted: bool = False

    @property
    def public_key(self) -> PublicKey:
        return self.message.receiver

    def __str__(self) -> str:
        return f"[ReceiveMessage] {self.message}"


def user_action_from_dict(data: dict[str, Any]) -> UserAction:
    """Rebuild a user action from its ``to_dict`` form."""
    action_type = ActionType(data["type"])
    if action_type == ActionType.ADD_NODE:
        return AddNode(data["public_key"], QuorumSet.from_dict(data["quorum_set"]))
    elif action_type == ActionType.REMOVE_NODE:
        return RemoveNode(data["public_key"])
    elif action_type == ActionType.UPDATE_QUORUM_SET:
        return UpdateQuorumSet(data["public_key"], QuorumSet.from_dict(data["quorum_set"]))
    elif action_type == ActionType.VOTE_ON_STATEMENT:
        return VoteOnStatement(data["public_key"], data["statement"])
    elif action_type == ActionType.ADD_CONNECTION:
        return AddConnection(data["a"], data["b"])
    elif action_type == ActionType.REMOVE_CONNECTION:
        return RemoveConnection(data["a"], data["b"])
    elif action_type == ActionType.FORGE_MESSAGE:
        return ForgeMessage(Message.from_dict(data["message"]))
    raise ValueError(f"{action_type.value} is not a user action")


def protocol_action_from_dict(data: dict[str, Any]) -> ProtocolAction:
    """Rebuild a protocol action from its ``to_dict`` form."""
    action_type = ActionType(data["type"])
    message = Message.from_dict(data["message"])
    disrupted = bool(data.get("disrupted", False))
    if action_type == ActionType.SEND_MESSAGE:
        return SendMessage(message, disrupted)
    elif action_type == ActionType.RECEIVE_MESSAGE:
        return ReceiveMessage(message, disrupted)
    raise ValueError(f"{action_type.value} is not a protocol action")
