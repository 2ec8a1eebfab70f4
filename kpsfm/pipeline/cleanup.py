"""
kpsfm/pipeline/cleanup.py

Outlier removal on the triangulated landmarks.
"""

from __future__ import annotations
from typing import Dict, List, Mapping, Tuple

from kpsfm.geometry import max_viewing_angle_deg
from kpsfm.scene import Landmark, Scene

from .config import CleanupConfig
from .matching import parallel_map
from .state import CleanupStats, Stage, StructureState
from .triangulation import landmark_residuals


def landmark_max_angle_deg(scene: Scene, landmark: Landmark) -> float:
    """Largest angle between two observation rays (camera centre -> point)."""
    centers = [scene.camera(vid).C for vid in landmark.view_ids]
    return max_viewing_angle_deg(landmark.X, centers)


def _compact(landmarks: Mapping[int, Landmark], keep: List[bool]) -> Dict[int, Landmark]:
    ids = sorted(landmarks.keys())
    return {lid: landmarks[lid] for lid, k in zip(ids, keep) if k}


def remove_outliers_angle_error(
    scene: Scene,
    landmarks: Mapping[int, Landmark],
    min_angle_deg: float,
    num_workers: int = 1,
) -> Tuple[Dict[int, Landmark], int]:
    """
    Drop landmarks seen only through near-parallel rays.

    A landmark is kept iff its max pairwise viewing angle is >= min_angle_deg.
    Landmark ids are preserved. Running it twice changes nothing.

    Returns:
        kept: surviving landmarks
        removed: number of landmarks dropped
    """
    ids = sorted(landmarks.keys())
    keep = parallel_map(
        lambda lid: landmark_max_angle_deg(scene, landmarks[lid]) >= min_angle_deg,
        ids,
        num_workers,
    )
    kept = _compact(landmarks, keep)
    return kept, len(ids) - len(kept)


def remove_outliers_pixel_residual(
    scene: Scene,
    landmarks: Mapping[int, Landmark],
    max_reproj_px: float,
    num_workers: int = 1,
) -> Tuple[Dict[int, Landmark], int]:
    """Drop landmarks whose reprojection error exceeds max_reproj_px in any view."""
    ids = sorted(landmarks.keys())
    keep = parallel_map(
        lambda lid: max(landmark_residuals(scene, landmarks[lid]).values()) <= max_reproj_px,
        ids,
        num_workers,
    )
    kept = _compact(landmarks, keep)
    return kept, len(ids) - len(kept)


def run_cleanup(
    state: StructureState,
    config: CleanupConfig,
    num_workers: int = 1,
    logger=None,
) -> None:
    """
    Run outlier removal on the landmarks.

    Optional residual filter first, then the minimum viewing-angle filter.
    Updates state.landmarks and state.cleanup_stats in place.
    """
    state.require(Stage.TRIANGULATED)
    stats = CleanupStats(landmarks_in=len(state.landmarks))

    landmarks = dict(state.landmarks)
    if config.max_reproj_px is not None:
        landmarks, stats.removed_residual = remove_outliers_pixel_residual(
            state.scene, landmarks, config.max_reproj_px, num_workers
        )

    landmarks, stats.removed_angle = remove_outliers_angle_error(
        state.scene, landmarks, config.min_angle_deg, num_workers
    )

    stats.landmarks_out = len(landmarks)
    state.landmarks = landmarks
    state.cleanup_stats = stats
    state.advance(Stage.CLEANED)

    if logger:
        logger.info(
            f"[CLEANUP] landmarks={stats.landmarks_in}->{stats.landmarks_out} "
            f"removed_angle={stats.removed_angle} removed_residual={stats.removed_residual} "
            f"(min_angle_deg={config.min_angle_deg})"
        )
