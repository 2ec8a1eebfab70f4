"""
kpsfm/pipeline/filtering.py

Geometric filtering of putative correspondences against the known poses.

Nothing is estimated here: the fundamental matrix of each pair is computed
from the two (fixed) cameras, and correspondences whose symmetric epipolar
distance exceeds the tolerance are dropped. Pairs without a baseline use
the infinite homography transfer error.
"""

from __future__ import annotations
from typing import Dict, Mapping, Sequence, Tuple

import numpy as np

from kpsfm.features import DescriberType, RegionsPerView
from kpsfm.geometry import (
    baseline_ratio,
    compute_fundamental_matrix,
    compute_infinite_homography,
    epipolar_distances,
    transfer_distances,
)
from kpsfm.scene import Scene

from .config import FilteringConfig
from .matching import parallel_map
from .state import FilterStats, Pair, PairwiseMatches, Stage, StructureState, count_correspondences


def epipolar_inlier_mask(
    scene: Scene,
    regions: RegionsPerView,
    pair: Pair,
    describer: DescriberType,
    matches: np.ndarray,
    max_epipolar_px: float,
    min_baseline_ratio: float = 1e-6,
) -> np.ndarray:
    """
    (M,) bool mask of the matches consistent with the pair's known geometry.

    Views sharing a centre (baseline under min_baseline_ratio of the camera
    distance) have no epipolar geometry; their matches are checked against
    the infinite homography instead, with the same pixel tolerance.
    """
    a, b = pair
    matches = np.asarray(matches, dtype=np.int64).reshape(-1, 2)
    if len(matches) == 0:
        return np.zeros((0,), dtype=bool)

    cam_a = scene.camera(a)
    cam_b = scene.camera(b)

    pts_a = regions.get(a, describer).kpts_xy[matches[:, 0]]
    pts_b = regions.get(b, describer).kpts_xy[matches[:, 1]]
    pts_a = cam_a.intrinsics.undistort(pts_a)
    pts_b = cam_b.intrinsics.undistort(pts_b)

    if baseline_ratio(cam_a, cam_b) <= min_baseline_ratio:
        dist = transfer_distances(pts_a, pts_b, compute_infinite_homography(cam_a, cam_b))
    else:
        # F is normalised to unit norm; distances are still in pixels
        dist = epipolar_distances(pts_a, pts_b, compute_fundamental_matrix(cam_a, cam_b))
    return np.isfinite(dist) & (dist <= float(max_epipolar_px))


def filter_pair(
    scene: Scene,
    regions: RegionsPerView,
    pair: Pair,
    per_desc: Mapping[DescriberType, np.ndarray],
    config: FilteringConfig,
) -> Dict[DescriberType, np.ndarray]:
    out: Dict[DescriberType, np.ndarray] = {}
    for describer, m in per_desc.items():
        m = np.asarray(m, dtype=np.int64).reshape(-1, 2)
        keep = epipolar_inlier_mask(
            scene, regions, pair, describer, m, config.max_epipolar_px, config.min_baseline_ratio
        )
        if np.any(keep):
            out[describer] = m[keep]

    n_kept = sum(len(m) for m in out.values())
    if n_kept == 0 or n_kept < config.min_matches_per_pair:
        return {}
    return out


def filter_matches(
    scene: Scene,
    regions: RegionsPerView,
    putative: PairwiseMatches,
    config: FilteringConfig,
    num_workers: int = 1,
) -> Tuple[PairwiseMatches, FilterStats]:
    """
    Keep only correspondences consistent with the fixed relative geometry.

    Pairs are independent and run on the worker pool; results are merged
    in sorted pair order.
    """
    pairs: Sequence[Pair] = sorted(putative.keys())
    results = parallel_map(
        lambda p: filter_pair(scene, regions, p, putative[p], config),
        list(pairs),
        num_workers,
    )
    filtered: PairwiseMatches = {p: r for p, r in zip(pairs, results) if r}

    stats = FilterStats(
        pairs_in=len(putative),
        pairs_out=len(filtered),
        correspondences_in=count_correspondences(putative),
        correspondences_out=count_correspondences(filtered),
    )
    return filtered, stats


def run_filtering(
    state: StructureState,
    config: FilteringConfig,
    num_workers: int = 1,
    logger=None,
) -> None:
    """
    Main entry point for the geometric filter stage.

    Descriptors are not needed from here on; the caller is expected to
    have replaced state.regions with a descriptor-free copy.
    Updates state.filtered and state.filter_stats in place.
    """
    state.require(Stage.MATCHED)
    filtered, stats = filter_matches(state.scene, state.regions, state.putative, config, num_workers)
    state.filtered = filtered
    state.filter_stats = stats
    state.advance(Stage.FILTERED)

    if logger:
        logger.info(
            f"[FILTER] pairs={stats.pairs_in}->{stats.pairs_out} "
            f"correspondences={stats.correspondences_in}->{stats.correspondences_out} "
            f"(max_epipolar_px={config.max_epipolar_px})"
        )
