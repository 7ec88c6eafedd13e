"""
fedvote: federated voting simulator and quorum structure analyzer.

The simulation engine lives in ``fedvote.simulation``; exhaustive quorum
analysis in ``fedvote.analysis``; recorded, replayable scenarios in
``fedvote.scenario``.
"""

from .analysis import NetworkAnalysis, NetworkAnalysisCache, network_structure_hash
from .config import SimulationSettings, load_settings
from .logging_cfg import setup_logging
from .scenario import (
    Scenario,
    ScenarioFactory,
    ScenarioLoader,
    ScenarioSerializer,
    new_simulation,
)

__version__ = "0.1.0"

__all__ = [
    # Analysis
    "NetworkAnalysis",
    "NetworkAnalysisCache",
    "network_structure_hash",
    # Configuration
    "SimulationSettings",
    "load_settings",
    "setup_logging",
    # Scenarios
    "Scenario",
    "ScenarioFactory",
    "ScenarioLoader",
    "ScenarioSerializer",
    "new_simulation",
]
