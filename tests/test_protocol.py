"""
Tests for the federated voting protocol, the overlay and the context.

Protocol tests drive a single node's state directly; context tests execute
action batches the way the simulation does, one step at a time.
"""

import pytest

from fedvote.simulation import (
    AddConnection,
    AddNode,
    ConfigurationError,
    Connection,
    Context,
    EventBuffer,
    EventType,
    FederatedVotingProtocol,
    FederatedVotingState,
    ForgeMessage,
    Message,
    Node,
    Overlay,
    Phase,
    ProtocolAction,
    QuorumSet,
    ReceiveMessage,
    RemoveConnection,
    RemoveNode,
    SendMessage,
    UpdateQuorumSet,
    UserAction,
    Vote,
    VoteOnStatement,
)


def _symmetric_nodes(keys, threshold):
    return [Node(k, QuorumSet(threshold, tuple(keys))) for k in keys]


def _state(public_key="A", threshold=2, keys=("A", "B", "C")):
    return FederatedVotingState(Node(public_key, QuorumSet(threshold, tuple(keys))))


def _deliver(protocol, state, vote, sender=None):
    message = Message(sender or vote.public_key, state.public_key, vote)
    return protocol.receive(state, message, peers=[])


def _event_types(events):
    return [e.event_type for e in events]


def _run_batches(context, user_actions, max_batches=50):
    """Execute batches until no protocol actions remain; return all events."""
    events = []
    pending = context.execute_actions([], user_actions)
    events.extend(context.drain_events())
    for _ in range(max_batches):
        if not pending:
            break
        pending = context.execute_actions(pending, [])
        events.extend(context.drain_events())
    return events


# =============================================================================
# Protocol Tests
# =============================================================================


class TestVote:
    def test_vote_broadcasts_to_peers(self):
        events = EventBuffer()
        protocol = FederatedVotingProtocol(events)
        state = _state()

        actions = protocol.vote(state, "x", peers=["B", "C"])

        assert state.phase == Phase.VOTED
        assert state.voted == "x"
        assert [a.message.receiver for a in actions] == ["B", "C"]
        assert all(isinstance(a, SendMessage) for a in actions)
        assert all(a.message.vote == Vote("x", "A") for a in actions)
        assert _event_types(events.drain()) == [EventType.VOTED]

    def test_second_vote_is_ignored(self):
        events = EventBuffer()
        protocol = FederatedVotingProtocol(events)
        state = _state()
        protocol.vote(state, "x", peers=[])
        events.drain()

        actions = protocol.vote(state, "y", peers=["B"])

        assert actions == []
        assert state.voted == "x"
        assert _event_types(events.drain()) == [EventType.VOTE_IGNORED]

    def test_singleton_slice_accepts_and_confirms_immediately(self):
        protocol = FederatedVotingProtocol(EventBuffer())
        state = FederatedVotingState(Node("A", QuorumSet(1, ("A",))))

        protocol.vote(state, "x", peers=[])

        assert state.phase == Phase.CONFIRMED
        assert state.confirmed == "x"


class TestAcceptAndConfirm:
    def test_accepts_when_voters_form_slice(self):
        events = EventBuffer()
        protocol = FederatedVotingProtocol(events)
        state = _state()
        protocol.vote(state, "x", peers=[])

        actions = protocol.receive(
            state, Message("B", "A", Vote("x", "B")), peers=["B", "C"]
        )

        assert state.phase == Phase.ACCEPTED
        assert state.accepted == "x"
        assert [a.message.vote for a in actions] == [Vote("x", "A", is_accept=True)] * 2
        accepted = [e for e in events.drain() if e.event_type == EventType.ACCEPTED]
        assert accepted[0].metadata["reason"] == "quorum"

    def test_confirms_when_accepters_form_slice(self):
        protocol = FederatedVotingProtocol(EventBuffer())
        state = _state()
        protocol.vote(state, "x", peers=[])
        _deliver(protocol, state, Vote("x", "B"))
        assert state.phase == Phase.ACCEPTED

        _deliver(protocol, state, Vote("x", "B", is_accept=True))

        assert state.phase == Phase.CONFIRMED
        assert state.confirmed == "x"

    def test_v_blocking_accept_overrides_own_vote(self):
        events = EventBuffer()
        protocol = FederatedVotingProtocol(events)
        state = _state(threshold=3, keys=("A", "B", "C", "D"))
        protocol.vote(state, "y", peers=[])

        _deliver(protocol, state, Vote("x", "B", is_accept=True))
        assert state.phase == Phase.VOTED

        _deliver(protocol, state, Vote("x", "C", is_accept=True))

        assert state.accepted == "x"
        assert state.voted == "y"
        accepted = [e for e in events.drain() if e.event_type == EventType.ACCEPTED]
        assert accepted[0].metadata["reason"] == "v_blocking"

    def test_accept_implies_vote_for_silent_node(self):
        protocol = FederatedVotingProtocol(EventBuffer())
        state = _state(public_key="C")

        _deliver(protocol, state, Vote("x", "A"))
        _deliver(protocol, state, Vote("x", "B"))

        assert state.phase == Phase.ACCEPTED
        assert state.voted == "x"

    def test_confirmed_node_ignores_further_votes(self):
        protocol = FederatedVotingProtocol(EventBuffer())
        state = FederatedVotingState(Node("A", QuorumSet(1, ("A",))))
        protocol.vote(state, "x", peers=[])

        _deliver(protocol, state, Vote("y", "B", is_accept=True))

        assert state.confirmed == "x"
        assert state.phase == Phase.CONFIRMED

    def test_duplicate_vote_processed_once(self):
        protocol = FederatedVotingProtocol(EventBuffer())
        state = _state()
        vote = Vote("x", "B")

        _deliver(protocol, state, vote)
        _deliver(protocol, state, vote)

        assert state.processed_votes.count(vote) == 1


class TestGossip:
    def test_relays_first_seen_vote_except_to_hop_and_origin(self):
        events = EventBuffer()
        protocol = FederatedVotingProtocol(events)
        state = _state(public_key="B", keys=("A", "B", "C", "D"))
        message = Message("A", "B", Vote("x", "A"))

        actions = protocol.receive(state, message, peers=["A", "C", "D"], gossip_enabled=True)

        relayed = [a.message for a in actions]
        assert relayed == [
            Message("B", "C", Vote("x", "A")),
            Message("B", "D", Vote("x", "A")),
        ]
        assert EventType.MESSAGE_RELAYED in _event_types(events.drain())

    def test_relays_each_vote_once(self):
        protocol = FederatedVotingProtocol(EventBuffer())
        state = _state(public_key="B", keys=("A", "B", "C", "D"))
        message = Message("A", "B", Vote("x", "A"))

        protocol.receive(state, message, peers=["A", "C"], gossip_enabled=True)
        actions = protocol.receive(state, message, peers=["A", "C"], gossip_enabled=True)

        assert actions == []

    def test_no_relay_without_gossip(self):
        protocol = FederatedVotingProtocol(EventBuffer())
        state = _state(public_key="B", keys=("A", "B", "C", "D"))

        actions = protocol.receive(
            state, Message("A", "B", Vote("x", "A")), peers=["A", "C"], gossip_enabled=False
        )

        assert actions == []


# =============================================================================
# Overlay Tests
# =============================================================================


class TestOverlay:
    def test_connection_is_normalized(self):
        assert Connection("B", "A") == Connection("A", "B")

    def test_full_mesh_ignores_explicit_connections(self):
        overlay = Overlay(fully_connected=True)
        assert not overlay.add_connection("A", "B")
        assert overlay.is_connected("A", "B", {"A", "B"})

    def test_explicit_connections(self):
        overlay = Overlay(fully_connected=False)
        assert overlay.add_connection("A", "B")
        assert not overlay.add_connection("B", "A")
        nodes = ["A", "B", "C"]
        assert overlay.peers_of("A", nodes) == ["B"]
        assert overlay.peers_of("C", nodes) == []
        assert overlay.remove_connection("A", "B")
        assert not overlay.remove_connection("A", "B")

    def test_remove_node_drops_its_connections(self):
        overlay = Overlay(fully_connected=False)
        overlay.add_connection("A", "B")
        overlay.add_connection("B", "C")
        overlay.remove_node("B")
        assert overlay.connections == set()

    def test_structure_hash_is_order_independent(self):
        first = Overlay(fully_connected=False)
        first.add_connection("A", "B")
        first.add_connection("B", "C")
        second = Overlay(fully_connected=False)
        second.add_connection("C", "B")
        second.add_connection("B", "A")
        assert first.structure_hash(["C", "A", "B"]) == second.structure_hash(["A", "B", "C"])


# =============================================================================
# Context Tests
# =============================================================================


class TestContextSetup:
    def test_duplicate_initial_nodes_rejected(self):
        nodes = _symmetric_nodes(["A", "B"], 1) + [Node("A", QuorumSet(1, ("A",)))]
        with pytest.raises(ConfigurationError):
            Context(initial_nodes=nodes)

    def test_unknown_trusted_node_rejected(self):
        with pytest.raises(ConfigurationError):
            Context(initial_nodes=[Node("A", QuorumSet(1, ("A", "Z")))])

    def test_unknown_connection_endpoint_rejected(self):
        with pytest.raises(ConfigurationError):
            Context(
                overlay_fully_connected=False,
                initial_nodes=_symmetric_nodes(["A", "B"], 1),
                initial_connections=[("A", "Z")],
            )

    def test_reset_restores_initial_roster(self):
        context = Context(initial_nodes=_symmetric_nodes(["A", "B"], 2))
        context.execute_actions([], [RemoveNode("B"), VoteOnStatement("A", "x")])
        context.reset()
        assert context.public_keys() == ["A", "B"]
        assert all(s.phase == Phase.UNKNOWN for s in context.node_snapshots())

    def test_snapshot_exposes_trust(self):
        context = Context(initial_nodes=_symmetric_nodes(["A", "B", "C"], 2))
        snapshot = context.get_node_state("A")
        assert snapshot.trusted_nodes == ("A", "B", "C")
        assert snapshot.trust_threshold == 2
        assert context.get_node_state("Z") is None

    def test_snapshot_lists_nested_validators_sorted(self):
        nested = QuorumSet(2, ("C", "A"), (QuorumSet(1, ("D", "B")),))
        nodes = [Node("A", nested)] + [Node(k, QuorumSet(1, (k,))) for k in "BCD"]
        context = Context(initial_nodes=nodes)
        assert context.get_node_state("A").trusted_nodes == ("A", "B", "C", "D")

    def test_state_view_holds_nodes_and_overlay(self):
        context = Context(
            overlay_fully_connected=False,
            initial_nodes=_symmetric_nodes(["A", "B", "C"], 1),
            initial_connections=[("A", "B")],
        )
        state = context.get_state()
        assert [s.public_key for s in state.nodes] == ["A", "B", "C"]
        assert state.connections == {"A": ["B"], "B": ["A"], "C": []}
        assert not state.overlay_fully_connected
        assert not state.overlay_gossip_enabled


class TestContextExecution:
    def test_three_nodes_confirm(self):
        context = Context(initial_nodes=_symmetric_nodes(["A", "B", "C"], 2))
        votes = [VoteOnStatement(k, "x") for k in ["A", "B", "C"]]

        events = _run_batches(context, votes)

        assert all(s.confirmed == "x" for s in context.node_snapshots())
        assert _event_types(events).count(EventType.CONFIRMED) == 3

    def test_send_produces_receive(self):
        context = Context(initial_nodes=_symmetric_nodes(["A", "B"], 2))
        message = Message("A", "B", Vote("x", "A"))

        new_actions = context.execute_actions([SendMessage(message)], [])

        assert new_actions == [ReceiveMessage(message)]
        assert _event_types(context.drain_events()) == [EventType.MESSAGE_SENT]

    def test_disrupted_action_is_dropped(self):
        context = Context(initial_nodes=_symmetric_nodes(["A", "B"], 2))
        message = Message("A", "B", Vote("x", "A"))

        new_actions = context.execute_actions([SendMessage(message, disrupted=True)], [])

        assert new_actions == []
        assert _event_types(context.drain_events()) == [EventType.MESSAGE_DISRUPTED]

    def test_message_to_removed_node_is_dropped(self):
        context = Context(initial_nodes=_symmetric_nodes(["A", "B"], 2))
        context.execute_actions([], [RemoveNode("B")])
        context.drain_events()

        context.execute_actions([ReceiveMessage(Message("A", "B", Vote("x", "A")))], [])

        events = context.drain_events()
        assert _event_types(events) == [EventType.MESSAGE_DROPPED]
        assert events[0].metadata["reason"] == "receiver does not exist"

    def test_unconnected_send_is_dropped(self):
        context = Context(
            overlay_fully_connected=False,
            initial_nodes=_symmetric_nodes(["A", "B"], 2),
        )

        new_actions = context.execute_actions(
            [SendMessage(Message("A", "B", Vote("x", "A")))], []
        )

        assert new_actions == []
        assert _event_types(context.drain_events()) == [EventType.MESSAGE_DROPPED]

    def test_vote_for_missing_node_is_ignored(self):
        context = Context(initial_nodes=_symmetric_nodes(["A"], 1))
        context.execute_actions([], [VoteOnStatement("Z", "x")])
        assert _event_types(context.drain_events()) == [EventType.ACTION_IGNORED]

    def test_add_existing_node_is_ignored(self):
        context = Context(initial_nodes=_symmetric_nodes(["A"], 1))
        context.execute_actions([], [AddNode("A", QuorumSet(1, ("A",)))])
        assert _event_types(context.drain_events()) == [EventType.ACTION_IGNORED]
        assert context.public_keys() == ["A"]

    def test_add_node_then_vote(self):
        context = Context(initial_nodes=_symmetric_nodes(["A"], 1))
        context.execute_actions(
            [], [AddNode("B", QuorumSet(1, ("B",))), VoteOnStatement("B", "x")]
        )
        assert context.get_node_state("B").confirmed == "x"

    def test_quorum_set_update_reevaluates(self):
        context = Context(initial_nodes=_symmetric_nodes(["A", "B"], 2))
        context.execute_actions([], [VoteOnStatement("A", "x")])
        assert context.get_node_state("A").phase == Phase.VOTED

        context.execute_actions([], [UpdateQuorumSet("A", QuorumSet(1, ("A",)))])

        assert context.get_node_state("A").confirmed == "x"

    def test_connection_changes(self):
        context = Context(
            overlay_fully_connected=False,
            initial_nodes=_symmetric_nodes(["A", "B", "C"], 2),
        )
        context.execute_actions([], [AddConnection("A", "B"), AddConnection("A", "B")])
        assert _event_types(context.drain_events()) == [
            EventType.CONNECTION_ADDED,
            EventType.CONNECTION_IGNORED,
        ]
        assert context.peers_of("A") == ["B"]

        context.execute_actions([], [RemoveConnection("B", "A")])
        assert _event_types(context.drain_events()) == [EventType.CONNECTION_REMOVED]
        assert context.peers_of("A") == []

    def test_forged_message_is_sent(self):
        context = Context(initial_nodes=_symmetric_nodes(["A", "B"], 2))
        forged = Message("A", "B", Vote("y", "A", is_accept=True))

        new_actions = context.execute_actions([], [ForgeMessage(forged)])

        assert new_actions == [SendMessage(forged)]
        assert _event_types(context.drain_events()) == [EventType.MESSAGE_FORGED]

    def test_gossip_reaches_unconnected_nodes(self):
        nodes = _symmetric_nodes(["A", "B", "C"], 2)
        connections = [("A", "B"), ("B", "C")]
        plain = Context(
            overlay_fully_connected=False, initial_nodes=nodes, initial_connections=connections
        )
        gossip = Context(
            overlay_fully_connected=False,
            overlay_gossip_enabled=True,
            initial_nodes=nodes,
            initial_connections=connections,
        )

        _run_batches(plain, [VoteOnStatement("A", "x")])
        _run_batches(gossip, [VoteOnStatement("A", "x")])

        assert Vote("x", "A") not in plain.get_node_state("C").processed_votes
        assert Vote("x", "A") in gossip.get_node_state("C").processed_votes

    def test_execution_is_deterministic(self):
        def run():
            context = Context(initial_nodes=_symmetric_nodes(["A", "B", "C", "D"], 3))
            votes = [VoteOnStatement(k, "x") for k in ["A", "B", "C", "D"]]
            return [str(e) for e in _run_batches(context, votes)]

        assert run() == run()


class TestActionBases:
    def test_bases_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            UserAction()
        with pytest.raises(TypeError):
            ProtocolAction()

    def test_user_action_without_to_dict_is_abstract(self):
        class Partial(UserAction):
            @property
            def public_key(self):
                return "A"

        with pytest.raises(TypeError):
            Partial()

    def test_concrete_actions_report_their_node(self):
        message = Message("A", "B", Vote("x", "A"))
        assert VoteOnStatement("C", "x").public_key == "C"
        assert SendMessage(message).public_key == "A"
        assert ReceiveMessage(message).public_key == "B"
