"""
Configuration for the federated-voting simulator.

Settings are read from a YAML file (``simulation:`` section), with a few
environment overrides. Search order for the file:

1) the ``config_path`` argument
2) ``$FEDVOTE_CONFIG``
3) ``fedvote.yaml`` at the project root (parent of the fedvote/ package)

If no file is found in 2) or 3) the built-in defaults are used.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from .simulation.quorum_set import ConfigurationError

# Node sets are encoded as bits of an int64
MAX_BITMASK_NODES = 62


@dataclass
class SimulationSettings:
    """Settings for building and analyzing simulations.

    Attributes:
        overlay_fully_connected: Default overlay mode for new contexts.
        overlay_gossip_enabled: Whether nodes relay votes by default.
        max_analysis_nodes: Largest network the quorum analyzer will search.
            The search is exponential in this number.
        max_settle_steps: Safety cap for ``run_until_settled``.
        log_level: Level passed to ``setup_logging``.
    """

    overlay_fully_connected: bool = True
    overlay_gossip_enabled: bool = False
    max_analysis_nodes: int = 12
    max_settle_steps: int = 1000
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            expected = type(f.default)
            # bool is an int subclass, so compare exact types
            if type(value) is not expected:
                raise ConfigurationError(
                    f"{f.name} must be {expected.__name__}, got {value!r}"
                )
        if not 1 <= self.max_analysis_nodes <= MAX_BITMASK_NODES:
            raise ConfigurationError(
                f"max_analysis_nodes must be in [1, {MAX_BITMASK_NODES}], "
                f"got {self.max_analysis_nodes}"
            )
        if self.max_settle_steps < 1:
            raise ConfigurationError(
                f"max_settle_steps must be >= 1, got {self.max_settle_steps}"
            )
        level = logging.getLevelName(str(self.log_level).upper())
        if not isinstance(level, int):
            raise ConfigurationError(f"unknown log_level {self.log_level!r}")
        self.log_level = str(self.log_level).upper()

    @classmethod
    def from_dict(cls, data: dict) -> SimulationSettings:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"unknown settings: {sorted(unknown)}")
        return cls(**data)


def _default_config_path() -> Path:
    """Find fedvote.yaml at the project root (parent of fedvote/ package)."""
    return Path(__file__).resolve().parent.parent / "fedvote.yaml"


def load_settings(config_path: str | os.PathLike | None = None) -> SimulationSettings:
    """Load settings from YAML and the environment.

    Args:
        config_path: Explicit config file. Must exist if given.

    Returns:
        Validated settings.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ConfigurationError: If the file holds unknown or invalid settings.
    """
    if config_path is not None:
        resolved_path: Path | None = Path(config_path)
        if not resolved_path.exists():
            raise FileNotFoundError(f"Missing fedvote config at {resolved_path}")
    else:
        env_path = os.getenv("FEDVOTE_CONFIG")
        resolved_path = Path(env_path) if env_path else _default_config_path()
        if not resolved_path.exists():
            resolved_path = None

    data: dict = {}
    if resolved_path is not None:
        with resolved_path.open("r", encoding="utf-8") as handle:
            config = yaml.safe_load(handle) or {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"{resolved_path} must hold a mapping at the top level")
        section = config.get("simulation") or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"simulation section of {resolved_path} must be a mapping")
        data = dict(section)

    env_level = os.getenv("FEDVOTE_LOG_LEVEL")
    if env_level:
        data["log_level"] = env_level
    env_max_nodes = os.getenv("FEDVOTE_MAX_ANALYSIS_NODES")
    if env_max_nodes:
        try:
            data["max_analysis_nodes"] = int(env_max_nodes)
        except ValueError:
            raise ConfigurationError(
                f"FEDVOTE_MAX_ANALYSIS_NODES must be an integer, got {env_max_nodes!r}"
            ) from None

    return SimulationSettings.from_dict(data)
