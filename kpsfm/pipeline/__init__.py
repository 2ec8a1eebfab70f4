"""
kpsfm/pipeline/__init__.py

Stage modules of the structure-from-known-poses pipeline.

Usage:
    from kpsfm.pipeline import StructureConfig
    from kpsfm.run_structure import compute_structure_from_known_poses

    config = StructureConfig()
    config.cleanup.min_angle_deg = 3.0
    result = compute_structure_from_known_poses(scene, regions, config=config)

Run functions are not re-exported here (kpsfm.run_structure imports the
stage modules of this package).
"""

from .config import (
    StructureConfig,
    FrustumConfig,
    MatchingConfig,
    FilteringConfig,
    TriangulationConfig,
    CleanupConfig,
    get_default_config,
)

from .state import (
    Stage,
    StructureState,
    PairStats,
    MatchStats,
    FilterStats,
    TriangulationStats,
    CleanupStats,
)

__all__ = [
    # Config
    "StructureConfig",
    "FrustumConfig",
    "MatchingConfig",
    "FilteringConfig",
    "TriangulationConfig",
    "CleanupConfig",
    "get_default_config",
    # State
    "Stage",
    "StructureState",
    "PairStats",
    "MatchStats",
    "FilterStats",
    "TriangulationStats",
    "CleanupStats",
]
