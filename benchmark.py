"""Benchmark: quorum analysis and simulation cost as the network grows."""

import argparse
import logging
import time

from fedvote.analysis import NetworkAnalysis, NetworkAnalysisCache
from fedvote.config import load_settings
from fedvote.logging_cfg import setup_logging
from fedvote.scenario import new_simulation
from fedvote.simulation import Node, QuorumSet, VoteOnStatement

logger = logging.getLogger("fedvote.benchmark")


def make_symmetric_network(num_nodes, threshold=None):
    """Every node trusts every node with a majority threshold."""
    keys = [f"N{i}" for i in range(num_nodes)]
    if threshold is None:
        threshold = num_nodes // 2 + 1
    return [Node(k, QuorumSet(threshold, tuple(keys))) for k in keys]


def benchmark_analysis(num_nodes, n_runs, max_nodes):
    nodes = make_symmetric_network(num_nodes)

    start = time.perf_counter()
    for _ in range(n_runs):
        analysis = NetworkAnalysis.analyze(nodes, max_nodes=max_nodes)
    elapsed = time.perf_counter() - start

    # A cache hit should cost only the structure hash
    cache = NetworkAnalysisCache(max_nodes=max_nodes)
    cache.get(nodes)
    cache_start = time.perf_counter()
    for _ in range(n_runs):
        cache.get(nodes)
    cache_elapsed = time.perf_counter() - cache_start

    print(
        f"{num_nodes:>3} nodes | analyze {elapsed / n_runs * 1000:9.2f} ms | "
        f"cached {cache_elapsed / n_runs * 1000:7.3f} ms | "
        f"{len(analysis.quorums)} quorums, {len(analysis.minimal_quorums)} minimal, "
        f"{len(analysis.d_sets)} d-sets"
    )


def benchmark_simulation(num_nodes, settings):
    simulation = new_simulation(settings, initial_nodes=make_symmetric_network(num_nodes))
    for node in simulation.node_snapshots():
        simulation.add_user_action(VoteOnStatement(node.public_key, "x"))

    start = time.perf_counter()
    steps = simulation.run_until_settled(max_steps=settings.max_settle_steps)
    elapsed = time.perf_counter() - start

    snapshot = simulation.consensus()
    print(
        f"{num_nodes:>3} nodes | {steps} steps in {elapsed * 1000:.1f} ms | "
        f"confirmed {snapshot.num_confirmed}/{snapshot.node_count}"
    )


def run_benchmarks(min_nodes, max_nodes, n_runs, settings):
    logger.info(f"Benchmarking networks of {min_nodes}..{max_nodes} nodes, {n_runs} analysis runs each")

    print("Quorum analysis")
    for n in range(min_nodes, max_nodes + 1):
        benchmark_analysis(n, n_runs, max_nodes)

    print("Simulation until settled")
    for n in range(min_nodes, max_nodes + 1):
        benchmark_simulation(n, settings)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Benchmark analysis and simulation performance.")
    parser.add_argument("--min-nodes", type=int, default=3, help="Smallest network size")
    parser.add_argument("--max-nodes", type=int, default=None,
                        help="Largest network size. Default: max_analysis_nodes from settings")
    parser.add_argument("--runs", type=int, default=5, help="Analysis runs per size")
    parser.add_argument("--config", default=None, help="Path to a fedvote.yaml")
    args = parser.parse_args()

    settings = load_settings(args.config)
    setup_logging(settings.log_level)
    max_nodes = args.max_nodes or settings.max_analysis_nodes
    run_benchmarks(args.min_nodes, max_nodes, args.runs, settings)
