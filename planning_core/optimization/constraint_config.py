# =============================================================================
# planning_core/optimization/constraint_config.py
# Optimizer Configuration
# Rooms, special sites, hard exclusions and solver limits
# =============================================================================

from __future__ import annotations
import math
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from planning_core.errors import ConfigurationError
from .score_weights import ScoreWeights


DEFAULT_ROOMS: List[str] = ["rouge", "verte", "jaune"]


@dataclass
class OptimizerConfig:
    """
    Run-time configuration of the planning optimizer.

    Attributes:
        rooms: Fixed set of operating rooms, in fallback order
        undesirable_site_ids: Sites penalised progressively when they are not
            the staff member's top preference
        restricted_site_ids: Sites that must not share a day with a theater
            role for the same staff member
        exclusion_pairs: (staff id, doctor id) pairs that never work together
        admin_site_id: Site id written on administrative assignment rows
        default_doctor_weight: Staff weight of a doctor without an explicit one
        default_time_percentage: Working-time percentage for flexible staff
            without one (60% of a 5-day week = 3 days)
        time_limit: Solver time limit in seconds
        gap: Relative MIP gap accepted by the solver
        max_swap_iterations: Iteration cap of the swap refinement
    """

    rooms: List[str] = field(default_factory=lambda: list(DEFAULT_ROOMS))
    undesirable_site_ids: List[str] = field(default_factory=list)
    restricted_site_ids: List[str] = field(default_factory=list)
    exclusion_pairs: List[Tuple[str, str]] = field(default_factory=list)
    admin_site_id: Optional[str] = None

    default_doctor_weight: float = 1.2
    default_time_percentage: float = 60.0

    time_limit: int = 60
    gap: float = 0.01
    max_swap_iterations: int = 30

    weights: ScoreWeights = field(default_factory=ScoreWeights)

    def __post_init__(self):
        self.exclusion_pairs = [tuple(pair) for pair in self.exclusion_pairs]
        self._exclusions: FrozenSet[Tuple[str, str]] = frozenset(self.exclusion_pairs)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_excluded(self, staff_id: str, doctor_id: Optional[str]) -> bool:
        """True when the staff member must never work with the doctor."""
        return doctor_id is not None and (staff_id, doctor_id) in self._exclusions

    def is_undesirable(self, site_id: str) -> bool:
        return site_id in self.undesirable_site_ids

    def is_restricted(self, site_id: str) -> bool:
        return site_id in self.restricted_site_ids

    def required_days(self, time_percentage: Optional[float]) -> int:
        """Weekly working days implied by a working-time percentage."""
        pct = self.default_time_percentage if time_percentage is None else time_percentage
        # half-days round up: 50% -> 3 days
        return int(math.floor(pct * 5 / 100.0 + 0.5))

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check the configuration.

        Raises:
            ConfigurationError: On the first invalid value found
        """
        if not self.rooms:
            raise ConfigurationError("At least one room is required", config_key="rooms")
        if len(set(self.rooms)) != len(self.rooms):
            raise ConfigurationError("Room names must be unique", config_key="rooms")
        if self.time_limit <= 0:
            raise ConfigurationError(
                "Solver time limit must be positive",
                config_key="time_limit",
                expected_type="int > 0",
            )
        if not 0 <= self.gap < 1:
            raise ConfigurationError(
                "Solver gap must be in [0, 1)",
                config_key="gap",
                expected_type="float",
            )
        if self.max_swap_iterations < 0:
            raise ConfigurationError(
                "Swap iteration cap cannot be negative",
                config_key="max_swap_iterations",
            )
        if self.default_doctor_weight <= 0:
            raise ConfigurationError(
                "Doctor weight must be positive",
                config_key="default_doctor_weight",
            )
        for pair in self.exclusion_pairs:
            if len(pair) != 2:
                raise ConfigurationError(
                    f"Exclusion pair must be (staff_id, doctor_id), got {pair!r}",
                    config_key="exclusion_pairs",
                )

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "rooms": list(self.rooms),
            "undesirable_site_ids": list(self.undesirable_site_ids),
            "restricted_site_ids": list(self.restricted_site_ids),
            "exclusion_pairs": [list(p) for p in self.exclusion_pairs],
            "admin_site_id": self.admin_site_id,
            "default_doctor_weight": self.default_doctor_weight,
            "default_time_percentage": self.default_time_percentage,
            "time_limit": self.time_limit,
            "gap": self.gap,
            "max_swap_iterations": self.max_swap_iterations,
            "weights": self.weights.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> OptimizerConfig:
        """
        Build a configuration from a mapping (e.g. a parsed TOML table).

        Exclusions may be given either as `exclusion_pairs = [[s, d], ...]` or
        as an array of tables `[[exclusions]]` with staff_id/doctor_id keys.
        """
        data = dict(data)
        weights = ScoreWeights.from_dict(data.pop("weights", {}))

        pairs = [tuple(p) for p in data.pop("exclusion_pairs", [])]
        for entry in data.pop("exclusions", []):
            try:
                pairs.append((entry["staff_id"], entry["doctor_id"]))
            except (KeyError, TypeError):
                raise ConfigurationError(
                    "Exclusion entries need staff_id and doctor_id",
                    config_key="exclusions",
                ) from None

        allowed = {
            "rooms", "undesirable_site_ids", "restricted_site_ids", "admin_site_id",
            "default_doctor_weight", "default_time_percentage", "time_limit", "gap",
            "max_swap_iterations",
        }
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ConfigurationError(
                f"Unknown optimizer settings: {', '.join(unknown)}",
                config_key=unknown[0],
            )

        config = cls(exclusion_pairs=pairs, weights=weights, **data)
        config.validate()
        return config

    @classmethod
    def from_toml(cls, path: Union[str, Path], table: str = "optimizer") -> OptimizerConfig:
        """
        Load configuration from a TOML file.

        Args:
            path: TOML file path
            table: Top-level table holding the settings

        Returns:
            Validated configuration
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}", config_key=str(path))

        try:
            with open(path, "rb") as f:
                content = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e

        return cls.from_dict(content.get(table, {}))


# Default configuration
DEFAULT_OPTIMIZER_CONFIG = OptimizerConfig()
