"""
Tests for the benchmark script's run loop.
"""

import logging

from benchmark import make_symmetric_network, run_benchmarks
from fedvote.config import SimulationSettings


def test_symmetric_network_uses_majority_threshold():
    nodes = make_symmetric_network(4)
    assert [n.public_key for n in nodes] == ["N0", "N1", "N2", "N3"]
    assert all(n.quorum_set.threshold == 3 for n in nodes)


def test_run_logs_parameters_and_reports_each_size(caplog, capsys):
    with caplog.at_level(logging.INFO, logger="fedvote.benchmark"):
        run_benchmarks(3, 4, 1, SimulationSettings())

    messages = [r.getMessage() for r in caplog.records if r.name == "fedvote.benchmark"]
    assert messages == ["Benchmarking networks of 3..4 nodes, 1 analysis runs each"]

    out = capsys.readouterr().out
    assert out.count("confirmed 3/3") == 1
    assert out.count("confirmed 4/4") == 1
