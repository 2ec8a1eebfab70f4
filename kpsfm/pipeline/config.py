"""
kpsfm/pipeline/config.py

All configuration dataclasses for the structure pipeline.
ALL default values live here - no hardcoded numbers elsewhere.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from kpsfm.errors import ConfigError
from kpsfm.features import DescriberType, describer_types_from_string


@dataclass
class FrustumConfig:
    """
    Frustum-based pair selection (used when no matches are supplied).

    Depth range assumed for every camera: [z_near, z_far].
    z_far = None keeps the frustums infinite.
    """
    z_near: float = 0.0
    z_far: Optional[float] = None
    min_slack: float = 1e-6                # Min common inscribed-ball radius to call it an overlap


@dataclass
class MatchingConfig:
    """Parameters for descriptor matching."""
    ratio: float = 0.8                     # Lowe's ratio test
    mutual: bool = True                    # Mutual nearest neighbor
    reuse_external: bool = False           # Use supplied matches as-is instead of descriptor matching


@dataclass
class FilteringConfig:
    """Parameters for the known-pose epipolar filter."""
    max_epipolar_px: float = 4.0           # Max symmetric epipolar distance
    min_matches_per_pair: int = 0          # Pairs keeping fewer matches are dropped
    min_baseline_ratio: float = 1e-6       # Baseline below this fraction of the camera distance = pure rotation


@dataclass
class TriangulationConfig:
    """Parameters for track triangulation."""
    method: str = "dlt"                    # "dlt" | "midpoint"
    min_track_len: int = 2
    max_reproj_px: Optional[float] = 4.0   # Reject tracks above this max residual (None = off)
    rank_tol: float = 1e-9                 # Relative singular value tolerance (degenerate rays)


@dataclass
class CleanupConfig:
    """Parameters for outlier removal."""
    min_angle_deg: float = 2.0             # Remove landmarks whose max viewing angle is below this
    max_reproj_px: Optional[float] = None  # Optional residual filter (None = off)


@dataclass
class StructureConfig:
    """
    Master configuration for the structure-from-known-poses pipeline.

    ALL numeric defaults live in this file. No hardcoded values elsewhere.

    Usage:
        # Default config
        config = StructureConfig()

        # Modify specific values
        config.cleanup.min_angle_deg = 3.0
        config.filtering.max_epipolar_px = 2.0
        config.num_workers = 8
    """
    describers: List[DescriberType] = field(default_factory=lambda: [DescriberType.SIFT])
    frustum: FrustumConfig = field(default_factory=FrustumConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    filtering: FilteringConfig = field(default_factory=FilteringConfig)
    triangulation: TriangulationConfig = field(default_factory=TriangulationConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)

    # Worker pool size for per-pair / per-track / per-landmark work (1 = serial)
    num_workers: int = 1

    def validate(self) -> None:
        """Raise ConfigError on values no stage can work with."""
        if not self.describers:
            raise ConfigError("At least one describer type is required")
        if not 0.0 < self.matching.ratio <= 1.0:
            raise ConfigError(f"matching.ratio must be in (0, 1], got {self.matching.ratio}")
        if self.filtering.max_epipolar_px <= 0:
            raise ConfigError(f"filtering.max_epipolar_px must be > 0, got {self.filtering.max_epipolar_px}")
        if self.filtering.min_baseline_ratio < 0:
            raise ConfigError(f"filtering.min_baseline_ratio must be >= 0, got {self.filtering.min_baseline_ratio}")
        if self.triangulation.method not in ("dlt", "midpoint"):
            raise ConfigError(f"Unknown triangulation method: {self.triangulation.method}. Use 'dlt' or 'midpoint'")
        if self.triangulation.min_track_len < 2:
            raise ConfigError("triangulation.min_track_len must be >= 2")
        if self.cleanup.min_angle_deg < 0:
            raise ConfigError(f"cleanup.min_angle_deg must be >= 0, got {self.cleanup.min_angle_deg}")
        if self.frustum.z_far is not None and self.frustum.z_far <= self.frustum.z_near:
            raise ConfigError("frustum.z_far must be greater than frustum.z_near")
        if self.num_workers < 1:
            raise ConfigError(f"num_workers must be >= 1, got {self.num_workers}")

    @classmethod
    def from_dict(cls, d: dict) -> "StructureConfig":
        """Create config from dictionary (e.g., loaded from YAML/JSON)."""
        d = dict(d or {})
        describers = d.get("describers", ["sift"])
        if isinstance(describers, str):
            describers = describer_types_from_string(describers)
        else:
            describers = [DescriberType.from_string(str(x)) for x in describers]

        try:
            config = cls(
                describers=describers,
                frustum=FrustumConfig(**d.get("frustum", {})),
                matching=MatchingConfig(**d.get("matching", {})),
                filtering=FilteringConfig(**d.get("filtering", {})),
                triangulation=TriangulationConfig(**d.get("triangulation", {})),
                cleanup=CleanupConfig(**d.get("cleanup", {})),
                num_workers=int(d.get("num_workers", 1)),
            )
        except (TypeError, ValueError) as e:
            # unknown keys in a section, non-numeric values
            raise ConfigError(f"Invalid configuration: {e}") from e
        config.validate()
        return config

    def to_dict(self) -> dict:
        """Convert config to dictionary (for saving to YAML/JSON)."""
        d = asdict(self)
        d["describers"] = [x.to_string() for x in self.describers]
        return d


def get_default_config() -> StructureConfig:
    """Get default configuration."""
    return StructureConfig()
