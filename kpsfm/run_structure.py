"""
kpsfm/run_structure.py

Main entry point for structure estimation from known poses.
This is a thin orchestrator that calls the modular components.

ALL numeric defaults come from pipeline/config.py - no hardcoded values here.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from data_io.matches_io import GeometricModel, load_pairwise_matches
from data_io.regions_io import load_regions_per_view
from data_io.scene_io import load_scene, save_scene_outputs

from .features import RegionsPerView
from .logging_utils import timed
from .pipeline.cleanup import run_cleanup
from .pipeline.config import StructureConfig
from .pipeline.filtering import run_filtering
from .pipeline.matching import run_matching
from .pipeline.pairs import run_pair_selection
from .pipeline.state import (
    CleanupStats,
    FilterStats,
    MatchStats,
    Pair,
    PairStats,
    PairwiseMatches,
    Stage,
    StructureState,
    TriangulationStats,
)
from .pipeline.triangulation import run_triangulation
from .scene import Scene


@dataclass
class StructureResult:
    """Final output of a run: the scene with its new landmarks plus per-stage stats."""
    scene: Scene
    stage: Stage
    pairs: List[Pair]
    pair_stats: PairStats
    match_stats: MatchStats
    filter_stats: FilterStats
    triangulation_stats: TriangulationStats
    cleanup_stats: CleanupStats


def run_stages(state: StructureState, config: StructureConfig, logger=None) -> None:
    """Run every stage from pair selection to cleanup on a freshly loaded state."""
    run_pair_selection(state, config.frustum, logger)
    run_matching(state, config.describers, config.matching, config.num_workers, logger)

    # descriptors are not needed after matching
    state.regions = state.regions.without_descriptors()

    run_filtering(state, config.filtering, config.num_workers, logger)
    run_triangulation(state, config.triangulation, config.num_workers, logger)
    run_cleanup(state, config.cleanup, config.num_workers, logger)


def _result(state: StructureState) -> StructureResult:
    return StructureResult(
        scene=state.build_scene(),
        stage=state.stage,
        pairs=list(state.pairs),
        pair_stats=state.pair_stats,
        match_stats=state.match_stats,
        filter_stats=state.filter_stats,
        triangulation_stats=state.triangulation_stats,
        cleanup_stats=state.cleanup_stats,
    )


def compute_structure_from_known_poses(
    scene: Scene,
    regions: RegionsPerView,
    config: Optional[StructureConfig] = None,
    external_matches: Optional[PairwiseMatches] = None,
    logger=None,
) -> StructureResult:
    """
    Run pair selection, matching, geometric filtering, triangulation and
    outlier removal against a scene with fixed poses.

    Args:
        scene: views/intrinsics/poses (landmarks are ignored and replaced)
        regions: per-view keypoints and descriptors
        config: StructureConfig (if None, uses defaults)
        external_matches: pre-computed matches; None selects pairs by frustum overlap
        logger: optional logger for progress reporting

    Returns:
        StructureResult; result.scene is a new Scene, the input is untouched.

    Example:
        scene = load_scene("cameras.json")
        regions = load_regions_per_view(scene, "features/", [DescriberType.SIFT])
        result = compute_structure_from_known_poses(scene, regions)
    """
    if config is None:
        config = StructureConfig()
    config.validate()

    state = StructureState(scene, regions, external_matches)
    run_stages(state, config, logger)
    return _result(state)


def run_structure_from_files(
    scene_path: Union[str, Path],
    features_dirs: Sequence[Union[str, Path]],
    output_path: Union[str, Path],
    config: Optional[StructureConfig] = None,
    matches_dir: Optional[Union[str, Path]] = None,
    geometric_model: GeometricModel = GeometricModel.FUNDAMENTAL,
    logger=None,
) -> StructureResult:
    """
    File-based run: load scene, regions and (optionally) matches, compute, save.

    Each load raises its own error type (SceneLoadError, InvalidRegionsError,
    MatchesLoadError) before any computation; nothing is written on failure.
    A SceneSaveError leaves the computed scene unusable only on disk.
    """
    if config is None:
        config = StructureConfig()
    config.validate()

    scene = load_scene(scene_path)
    if logger:
        logger.info(
            f"Scene: views={len(scene.views)} valid_views={len(scene.valid_views())} "
            f"intrinsics={len(scene.intrinsics)} poses={len(scene.poses)}"
        )

    regions = load_regions_per_view(scene, features_dirs, config.describers, logger=logger)

    external_matches = None
    if matches_dir:
        external_matches = load_pairwise_matches(
            scene.view_ids(), matches_dir, config.describers, geometric_model, logger=logger
        )

    state = StructureState(scene, regions, external_matches)
    if logger:
        with timed(logger, "Structure estimation"):
            run_stages(state, config, logger)
        logger.info(f"#landmark found: {len(state.landmarks)}")
    else:
        run_stages(state, config)

    written = save_scene_outputs(state.build_scene(), output_path)
    state.advance(Stage.SAVED)
    if logger:
        for p in written:
            logger.info(f"Saved {p}")
    return _result(state)
